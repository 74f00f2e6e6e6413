# -*- coding: utf-8 -*-
"""
Hierarchical prediction of cell types with a taxonomy of classifiers.
"""

from __future__ import annotations
from typing import Dict, Iterable, List, Mapping, Optional, Union
from warnings import warn

import numpy as np
import pandas as pd
from anndata import AnnData

from .classifier import CellTypeClassifier
from .constants import (
    CLASS_SUFFIX,
    MOST_PROBABLE_TYPE_COL,
    PREDICTED_TYPES_COL,
    SCORE_SUFFIX,
    TYPE_SEPARATOR,
    UNCLASSIFIED,
)
from .exceptions import DataError, NotFoundError
from .taxonomy import Taxonomy

CellTypes = Union[str, Iterable[str]]


def _select_classifiers(
    classifiers: Union[Iterable[CellTypeClassifier], Mapping[str, CellTypeClassifier]],
    cell_types: CellTypes,
) -> List[CellTypeClassifier]:
    if isinstance(classifiers, Mapping):
        classifiers = list(classifiers.values())
    classifiers = list(classifiers)
    if isinstance(cell_types, str) and cell_types == "all":
        return classifiers
    wanted = [cell_types] if isinstance(cell_types, str) else list(cell_types)
    by_name = {c.cell_type: c for c in classifiers}
    absent = [w for w in wanted if w not in by_name]
    if absent:
        raise NotFoundError(f"No classifier provided for cell types: {absent}")
    return [by_name[w] for w in wanted]


def score_taxonomy(
    adata: AnnData,
    taxonomy: Taxonomy,
    layer: Optional[str] = None,
) -> Dict[str, np.ndarray]:
    """
    Score every classifier of ``taxonomy`` top-down.

    A classifier only scores the cells that passed all of its ancestors;
    other cells keep NaN. A classifier that cannot be applied (for example
    because a marker gene is missing) is reported with a warning and its
    whole branch is skipped.

    Returns
    -------
    Dict[str, np.ndarray]
        Probability per cell type, NaN where the cell was not evaluated
    """
    n = adata.n_obs
    scores: Dict[str, np.ndarray] = {}
    passed: Dict[str, np.ndarray] = {}

    for name, reason in taxonomy.unresolved.items():
        warn(f"[classify_cells] skipping '{name}': {reason}")

    for clf, _ in taxonomy.walk():
        if clf.parent is None:
            active = np.ones(n, dtype=bool)
        elif clf.parent in passed:
            active = passed[clf.parent]
        else:
            warn(f"[classify_cells] skipping '{clf.cell_type}': parent '{clf.parent}' could not be applied")
            continue

        proba = np.full(n, np.nan)
        if active.any():
            try:
                proba[active] = clf.predict_proba(adata, layer=layer, mask=active)
            except DataError as e:
                warn(f"[classify_cells] skipping '{clf.cell_type}' and its sub types: {e}")
                continue

        scores[clf.cell_type] = proba
        # NaN compares False, so cells outside the active set never pass
        passed[clf.cell_type] = np.nan_to_num(proba, nan=-np.inf) >= clf.threshold

    return scores


def _predicted_types(
    passed: pd.DataFrame,
    taxonomy: Taxonomy,
    ignore_ambiguous: bool,
) -> List[str]:
    names = list(passed.columns)
    ancestors = {name: set(taxonomy.ancestors(name)) for name in names}
    out = []
    for row in passed.to_numpy():
        hits = [name for name, hit in zip(names, row) if hit]
        if ignore_ambiguous and len(hits) > 1:
            shadowed = set().union(*(ancestors[h] for h in hits))
            hits = [h for h in hits if h not in shadowed]
        out.append(TYPE_SEPARATOR.join(hits))
    return out


def _most_probable_type(scores: pd.DataFrame, taxonomy: Taxonomy) -> np.ndarray:
    if scores.shape[1] == 0:
        return np.full(scores.shape[0], UNCLASSIFIED, dtype=object)
    # Deeper classifiers first so that argmax resolves ties to the more specific type
    order = sorted(scores.columns, key=lambda c: -taxonomy.depth(c))
    values = scores[order].to_numpy()
    evaluated = ~np.isnan(values)
    best = np.argmax(np.where(evaluated, values, -np.inf), axis=1)
    labels = np.asarray(order, dtype=object)[best]
    labels[~evaluated.any(axis=1)] = UNCLASSIFIED
    return labels


def classify_cells(
    adata: AnnData,
    classifiers: Optional[Union[Iterable[CellTypeClassifier], Mapping[str, CellTypeClassifier]]] = None,
    cell_types: CellTypes = "all",
    registry=None,
    layer: Optional[str] = None,
    ignore_ambiguous: bool = False,
    inplace: bool = True,
    verbose: bool = True,
) -> AnnData:
    """
    Predict cell types with a taxonomy of classifiers.

    Writes to ``.obs``:

    - ``<cell_type>.predscore``: probability, NaN for cells not evaluated
    - ``<cell_type>.class``: whether the cell passed the threshold
    - ``predicted_types``: all passing types, comma-joined (empty if none)
    - ``most_probable_type``: the evaluated type with the highest
      probability, deeper types winning ties; ``unknown`` if no
      classifier could evaluate the cell

    Parameters
    ----------
    adata : AnnData
        Cells to classify
    classifiers : Iterable or Mapping of CellTypeClassifier, optional
        Classifiers to apply. If None they are loaded from ``registry``.
    cell_types : "all" or Iterable[str], default "all"
        Restrict prediction to these cell types. When loading from a
        registry, their ancestors are loaded as well.
    registry : ModelRegistry, optional
        Registry to load classifiers from; defaults to the bundled registry
    layer : Optional[str]
        Layer to read expression from instead of ``.X``
    ignore_ambiguous : bool, default False
        Report only the most specific passing type(s) per cell instead of
        every passing type
    inplace : bool, default True
        Annotate ``adata`` itself rather than a copy
    verbose : bool, default True
        Print a summary of the predictions

    Returns
    -------
    AnnData
        The annotated object
    """
    if classifiers is None:
        if registry is None:
            from .registry import ModelRegistry
            registry = ModelRegistry.default()
        selected = list(registry.load_all(cell_types, include_ancestors=True).values())
    else:
        selected = _select_classifiers(classifiers, cell_types)

    if not inplace:
        adata = adata.copy()

    taxonomy = Taxonomy(selected)
    if verbose:
        print(f"[classify_cells] Applying {len(taxonomy)} classifiers to {adata.n_obs} cells")

    scores = pd.DataFrame(score_taxonomy(adata, taxonomy, layer=layer), index=adata.obs_names)
    thresholds = {name: taxonomy.classifiers[name].threshold for name in scores.columns}
    passed = pd.DataFrame(
        {name: scores[name].fillna(-np.inf).to_numpy() >= thresholds[name] for name in scores.columns},
        index=adata.obs_names,
    )

    for name in scores.columns:
        adata.obs[f"{name}.{SCORE_SUFFIX}"] = scores[name].to_numpy()
        adata.obs[f"{name}.{CLASS_SUFFIX}"] = passed[name].to_numpy()

    adata.obs[PREDICTED_TYPES_COL] = _predicted_types(passed, taxonomy, ignore_ambiguous)
    adata.obs[MOST_PROBABLE_TYPE_COL] = _most_probable_type(scores, taxonomy)

    if verbose:
        counts = adata.obs[MOST_PROBABLE_TYPE_COL].value_counts()
        print("[classify_cells] Most probable cell types:")
        for cell_type, count in counts.items():
            print(f"   {cell_type}: {count}")

    return adata
