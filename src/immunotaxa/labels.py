# -*- coding: utf-8 -*-
"""
Resolve raw per-cell annotations into positive / negative / ambiguous labels.
"""

from __future__ import annotations
from typing import Iterable, Optional, Union

import numpy as np
import pandas as pd
from pandas.api.types import is_bool_dtype

from .constants import AMBIGUOUS, NEGATIVE, POSITIVE


def resolve_labels(
    values: Union[pd.Series, np.ndarray, Iterable],
    cell_type: str,
    equivalent_types: Optional[Iterable[str]] = None,
) -> pd.Series:
    """
    Label every cell relative to ``cell_type``.

    Parameters
    ----------
    values : array-like
        Raw per-cell annotation. Either arbitrary labels (strings,
        categories) or an explicit boolean tag column.
    cell_type : str
        Target cell type
    equivalent_types : Optional[Iterable[str]]
        Additional annotation values that count as positive, e.g. the
        sub-types grouped under an umbrella type

    Returns
    -------
    pd.Series
        Categorical of ``positive`` / ``negative`` / ``ambiguous``, indexed
        like ``values`` when it is a Series
    """
    raw = values if isinstance(values, pd.Series) else pd.Series(list(values))
    missing = raw.isna().to_numpy()

    if is_bool_dtype(raw.dtype) or _is_boolean_object(raw):
        positive = np.array([(not m) and bool(v) for v, m in zip(raw, missing)], dtype=bool)
    else:
        targets = {cell_type}
        if equivalent_types is not None:
            if isinstance(equivalent_types, str):
                equivalent_types = [equivalent_types]
            targets.update(equivalent_types)
        positive = raw.astype(object).isin(targets).to_numpy()

    labels = np.where(missing, AMBIGUOUS, np.where(positive, POSITIVE, NEGATIVE))
    return pd.Series(
        pd.Categorical(labels, categories=[POSITIVE, NEGATIVE, AMBIGUOUS]),
        index=raw.index,
        name=cell_type,
    )


def _is_boolean_object(raw: pd.Series) -> bool:
    """True for object columns holding only booleans and missing values."""
    if raw.dtype != object:
        return False
    present = raw.dropna()
    return len(present) > 0 and all(isinstance(v, (bool, np.bool_)) for v in present)


def apply_parent_coherence(labels: pd.Series, parent_positive: np.ndarray) -> pd.Series:
    """
    Demote incoherent positives to ambiguous.

    A cell annotated as the child type but rejected by the parent classifier
    cannot be learned from (the child is only ever evaluated on the parent's
    positive set), so it is excluded.
    """
    parent_positive = np.asarray(parent_positive, dtype=bool)
    incoherent = (labels == POSITIVE).to_numpy() & ~parent_positive
    out = labels.copy()
    out[incoherent] = AMBIGUOUS
    return out


def label_counts(labels: pd.Series) -> dict:
    """Number of cells per label value."""
    counts = labels.value_counts()
    return {lbl: int(counts.get(lbl, 0)) for lbl in (POSITIVE, NEGATIVE, AMBIGUOUS)}
