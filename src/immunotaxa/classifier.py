# -*- coding: utf-8 -*-
"""
Cell type classifier entity.

A :class:`CellTypeClassifier` bundles a fitted binary model with the marker
genes it was trained on, the probability threshold used to call a cell
positive and, for sub-types, the name of its parent cell type.
"""

from __future__ import annotations
import copy
from numbers import Real
from typing import List, Optional, Sequence
from warnings import warn

import numpy as np
import pandas as pd
from anndata import AnnData

from .constants import DEFAULT_THRESHOLD
from .data import decode_feature, encode_feature, marker_frame
from .exceptions import ValidationError


def _check_cell_type(value) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("'cell_type' must be a non-empty string")
    return value


def _check_marker_genes(value) -> List[str]:
    if isinstance(value, str) or value is None:
        raise ValidationError("'marker_genes' must be a sequence of gene names")
    genes = list(value)
    if len(genes) < 1:
        raise ValidationError("'marker_genes' must contain at least one gene")
    if any(not isinstance(g, str) or not g.strip() for g in genes):
        raise ValidationError("'marker_genes' must not contain blank entries")
    if len(set(genes)) != len(genes):
        raise ValidationError("'marker_genes' must not contain duplicates")
    if len({encode_feature(g) for g in genes}) != len(genes):
        raise ValidationError(f"'marker_genes' {genes} map to duplicate model feature names")
    return genes


def _check_threshold(value) -> float:
    if isinstance(value, bool) or not isinstance(value, Real) or not np.isfinite(value) or value <= 0:
        raise ValidationError(f"Threshold must be a positive number, got {value!r}")
    return float(value)


def _check_parent(value) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("'parent' can be None but not an empty string")
    return value


def _check_model(model):
    if not hasattr(model, "predict_proba"):
        raise ValidationError("'model' must be a fitted classifier exposing predict_proba")
    return model


def model_features(model) -> List[str]:
    """Encoded feature names a fitted model was trained on."""
    features = getattr(model, "feature_names_in_", None)
    if features is None:
        raise ValidationError("Model was not fitted on named features; cannot derive marker genes")
    return [str(f) for f in features]


def model_marker_genes(model, known: Optional[Sequence[str]] = None) -> List[str]:
    """
    Read the gene symbols a fitted model was trained on.

    Parameters
    ----------
    model : ClassifierMixin
        Estimator fitted on a DataFrame (so that ``feature_names_in_`` exists)
    known : Optional[Sequence[str]]
        Gene symbols to prefer over decoding when they encode to the same
        feature, so that symbols holding ``_`` are returned unchanged

    Returns
    -------
    List[str]
        Gene symbols in model feature order
    """
    by_feature = {encode_feature(g): g for g in (known or [])}
    return [by_feature.get(f, decode_feature(f)) for f in model_features(model)]


def positive_proba(model, X: pd.DataFrame) -> np.ndarray:
    """Probability of the positive class for every row of ``X``."""
    proba = model.predict_proba(X)
    classes = list(model.classes_)
    pos = classes.index(True) if True in classes else proba.shape[1] - 1
    return proba[:, pos]


class CellTypeClassifier:
    """
    Binary classifier for one cell type.

    Instances are returned by :func:`immunotaxa.train_classifier` and by the
    registry loaders; there is normally no reason to build one by hand.

    Parameters
    ----------
    cell_type : str
        Name of the cell type
    model : ClassifierMixin or None
        Fitted scikit-learn estimator with ``predict_proba``
    marker_genes : Sequence[str]
        Genes the model was fitted on, in feature order
    threshold : float, default 0.5
        Probability at or above which a cell is called positive
    parent : Optional[str]
        Cell type of the parent classifier, None for a taxonomy root
    """

    def __init__(
        self,
        cell_type: str,
        model,
        marker_genes: Sequence[str],
        threshold: float = DEFAULT_THRESHOLD,
        parent: Optional[str] = None,
    ):
        self._cell_type = _check_cell_type(cell_type)
        self._marker_genes = _check_marker_genes(marker_genes)
        self._threshold = _check_threshold(threshold)
        self._parent = _check_parent(parent)
        self._model = None
        if model is not None:
            _check_model(model)
            fitted = model_features(model)
            if fitted != [encode_feature(g) for g in self._marker_genes]:
                raise ValidationError(
                    f"'marker_genes' {self._marker_genes} do not match the model features {fitted}"
                )
            self._model = model

    # --- accessors

    @property
    def cell_type(self) -> str:
        return self._cell_type

    @cell_type.setter
    def cell_type(self, value: str) -> None:
        self._cell_type = _check_cell_type(value)

    @property
    def model(self):
        return self._model

    @model.setter
    def model(self, value) -> None:
        # Sub-types depend on their parent's positive set; they must be retrained
        if self._parent is not None:
            raise ValidationError(
                "Can only assign a new model to a cell type without parent. "
                "For a sub cell type, train a new classifier based on the parent classifier."
            )
        _check_model(value)
        genes = _check_marker_genes(model_marker_genes(value, known=self._marker_genes))
        self._model = value
        self._marker_genes = genes

    @property
    def marker_genes(self) -> List[str]:
        return list(self._marker_genes)

    @marker_genes.setter
    def marker_genes(self, value: Sequence[str]) -> None:
        if self._model is not None:
            warn(
                f"[{self._cell_type}] marker genes are defined by the fitted model; ignoring new value"
            )
            return
        self._marker_genes = _check_marker_genes(value)

    @property
    def threshold(self) -> float:
        return self._threshold

    @threshold.setter
    def threshold(self, value: float) -> None:
        self._threshold = _check_threshold(value)

    @property
    def parent(self) -> Optional[str]:
        return self._parent

    @parent.setter
    def parent(self, value: str) -> None:
        if value is None:
            raise ValidationError("New parent must be a non-empty string")
        self._parent = _check_parent(value)

    # --- scoring

    def predict_proba(
        self,
        adata: AnnData,
        layer: Optional[str] = None,
        mask: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """
        Positive-class probability for every cell of ``adata``.

        Raw marker expression is handed to the model, which carries the
        scaling fitted on its training cells, so a cell's probability does
        not depend on the other cells of ``adata``. With ``mask`` only the
        selected cells are scored and the returned array has one entry per
        selected cell.

        Raises
        ------
        ValidationError
            If the classifier holds no fitted model
        DataError
            If a marker gene is missing from ``adata``
        """
        if self._model is None:
            raise ValidationError(f"Classifier '{self._cell_type}' has no fitted model")
        X = marker_frame(adata, self._marker_genes, layer=layer)
        if mask is not None:
            X = X.loc[np.asarray(mask, dtype=bool)]
        return positive_proba(self._model, X)

    def predict(self, adata: AnnData, layer: Optional[str] = None) -> np.ndarray:
        """Boolean positive call for every cell of ``adata`` at ``threshold``."""
        return self.predict_proba(adata, layer=layer) >= self._threshold

    def copy(self) -> "CellTypeClassifier":
        return copy.deepcopy(self)

    def summary(self) -> str:
        lines = [
            f"An object of class CellTypeClassifier for {self._cell_type}",
            f"* {len(self._marker_genes)} marker genes applied: {', '.join(self._marker_genes)}",
            f"* Predicting probability threshold: {self._threshold}",
        ]
        if self._parent is not None:
            lines.append(f"* A child model of: {self._parent}")
        else:
            lines.append("* No parent model")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"CellTypeClassifier(cell_type={self._cell_type!r}, "
            f"marker_genes={self._marker_genes!r}, threshold={self._threshold}, "
            f"parent={self._parent!r})"
        )
