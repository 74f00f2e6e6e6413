# -*- coding: utf-8 -*-
"""
Training of new cell type classifiers from labelled data.
"""

from __future__ import annotations
from typing import Iterable, List, Optional, Sequence, Tuple, Union
from warnings import warn

import numpy as np
from anndata import AnnData
from sklearn.calibration import CalibratedClassifierCV
from sklearn.pipeline import make_pipeline
from sklearn.preprocessing import StandardScaler
from sklearn.svm import SVC

from .classifier import CellTypeClassifier, _check_marker_genes
from .constants import AMBIGUOUS, CALIBRATION_FOLDS, DEFAULT_KERNEL, DEFAULT_THRESHOLD, POSITIVE
from .data import marker_frame, missing_genes as _absent_genes, read_tags
from .exceptions import DataError
from .labels import apply_parent_coherence, label_counts, resolve_labels

RandomState = Union[None, int, np.random.Generator]


def resolve_parent(
    parent: Union[None, str, CellTypeClassifier],
    registry=None,
) -> Optional[CellTypeClassifier]:
    """
    Turn a parent given by reference or by name into a classifier.

    Parameters
    ----------
    parent : None, str or CellTypeClassifier
        Parent classifier, or its cell type name
    registry : ModelRegistry, optional
        Registry used to look up a parent given by name

    Returns
    -------
    Optional[CellTypeClassifier]
        The parent classifier, or None when no parent was requested
    """
    if parent is None or isinstance(parent, CellTypeClassifier):
        return parent
    if not isinstance(parent, str):
        raise DataError(f"Parent must be a cell type name or a classifier, got {type(parent).__name__}")
    if registry is None:
        raise DataError(f"Parent '{parent}' given by name but no registry to load it from")
    try:
        return registry.load(parent)
    except KeyError as e:
        raise DataError(f"Parent classifier '{parent}' not found in {registry}") from e


def balance_classes(
    pos_idx: np.ndarray,
    neg_idx: np.ndarray,
    random_state: RandomState = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Subsample the majority class down to the size of the minority class.

    Both returned index arrays are sorted; the minority class is returned
    untouched.
    """
    rng = np.random.default_rng(random_state)
    pos_idx = np.asarray(pos_idx)
    neg_idx = np.asarray(neg_idx)
    n = min(len(pos_idx), len(neg_idx))
    if len(pos_idx) > n:
        pos_idx = np.sort(rng.choice(pos_idx, size=n, replace=False))
    if len(neg_idx) > n:
        neg_idx = np.sort(rng.choice(neg_idx, size=n, replace=False))
    return pos_idx, neg_idx


def build_model(n_folds: int = CALIBRATION_FOLDS):
    """
    Unfitted estimator used for every cell type classifier.

    The scaler is part of the model, so prediction reuses the gene means and
    variances of the training cells instead of rescaling each query. The
    linear SVM's decision function is mapped to probabilities by Platt
    calibration over ``n_folds`` folds.
    """
    svm = CalibratedClassifierCV(SVC(kernel=DEFAULT_KERNEL), method="sigmoid", cv=n_folds, ensemble=False)
    return make_pipeline(StandardScaler(), svm)


def _select_genes(
    adata: AnnData,
    marker_genes: List[str],
    missing_genes: str,
    cell_type: str,
) -> List[str]:
    absent = _absent_genes(adata, marker_genes)
    if not absent:
        return marker_genes
    if missing_genes == "raise":
        raise DataError(f"[{cell_type}] marker genes not found in dataset: {absent}")
    if missing_genes != "drop":
        raise ValueError("missing_genes must be 'raise' or 'drop'")
    warn(f"[{cell_type}] dropping marker genes not found in dataset: {absent}")
    kept = [g for g in marker_genes if g not in absent]
    if not kept:
        raise DataError(f"[{cell_type}] none of the marker genes are present in dataset")
    return kept


def select_training_cells(
    adata: AnnData,
    cell_type: str,
    tag_column: str,
    layer: Optional[str] = None,
    equivalent_types: Optional[Iterable[str]] = None,
    parent: Optional[CellTypeClassifier] = None,
):
    """
    Resolve labels and apply the parent filter.

    Returns
    -------
    Tuple[pd.Series, np.ndarray]
        Per-cell labels (incoherent positives already demoted) and a boolean
        mask of the cells usable for fitting / evaluation
    """
    labels = resolve_labels(read_tags(adata, tag_column), cell_type, equivalent_types)
    keep = np.ones(adata.n_obs, dtype=bool)
    if parent is not None:
        parent_pos = parent.predict(adata, layer=layer)
        labels = apply_parent_coherence(labels, parent_pos)
        keep &= parent_pos
    keep &= (labels != AMBIGUOUS).to_numpy()
    return labels, keep


def train_classifier(
    adata: AnnData,
    cell_type: str,
    marker_genes: Sequence[str],
    tag_column: str,
    layer: Optional[str] = None,
    equivalent_types: Optional[Iterable[str]] = None,
    parent: Union[None, str, CellTypeClassifier] = None,
    registry=None,
    random_state: RandomState = None,
    missing_genes: str = "raise",
    verbose: bool = True,
) -> CellTypeClassifier:
    """
    Train a classifier for ``cell_type`` on labelled cells.

    Parameters
    ----------
    adata : AnnData
        Labelled training population
    cell_type : str
        Cell type to learn
    marker_genes : Sequence[str]
        Genes used as features
    tag_column : str
        ``.obs`` column holding the cell annotation, or an explicit boolean
        tag for ``cell_type``
    layer : Optional[str]
        Layer to read expression from instead of ``.X``
    equivalent_types : Optional[Iterable[str]]
        Other annotation values that also count as ``cell_type``
    parent : None, str or CellTypeClassifier
        Parent classifier. Only cells it calls positive are used.
    registry : ModelRegistry, optional
        Registry to resolve a parent given by name
    random_state : None, int or np.random.Generator
        Seed for class balancing
    missing_genes : {"raise", "drop"}, default "raise"
        What to do with marker genes absent from ``adata``
    verbose : bool, default True
        Print training progress

    Returns
    -------
    CellTypeClassifier
        Classifier with the default threshold of 0.5

    Raises
    ------
    DataError
        If ``cell_type`` (or its negative class) is not represented after
        filtering, or a marker gene is missing with ``missing_genes="raise"``
    """
    genes = _check_marker_genes(marker_genes)
    parent_clf = resolve_parent(parent, registry)
    if parent_clf is not None and parent_clf.cell_type == cell_type:
        raise DataError(f"[{cell_type}] a classifier cannot be its own parent")
    genes = _select_genes(adata, genes, missing_genes, cell_type)

    labels, keep = select_training_cells(
        adata, cell_type, tag_column, layer=layer,
        equivalent_types=equivalent_types, parent=parent_clf,
    )
    is_pos = (labels == POSITIVE).to_numpy()
    pos_idx = np.flatnonzero(keep & is_pos)
    neg_idx = np.flatnonzero(keep & ~is_pos)

    if verbose:
        counts = label_counts(labels)
        print(
            f"[train_classifier] {cell_type}: {len(pos_idx)} positive, {len(neg_idx)} negative, "
            f"{counts[AMBIGUOUS]} ambiguous cells"
        )
    if len(pos_idx) == 0:
        raise DataError(f"Cell type '{cell_type}' is not represented in the training data")
    if len(neg_idx) == 0:
        raise DataError(f"No negative cells left to train '{cell_type}' against")

    pos_idx, neg_idx = balance_classes(pos_idx, neg_idx, random_state)
    if len(pos_idx) < 2:
        raise DataError(
            f"[{cell_type}] at least 2 positive and 2 negative cells are needed to calibrate probabilities"
        )
    train_idx = np.sort(np.concatenate([pos_idx, neg_idx]))
    y = np.isin(train_idx, pos_idx)

    X = marker_frame(adata, genes, layer=layer).iloc[train_idx]
    model = build_model(n_folds=min(CALIBRATION_FOLDS, len(pos_idx)))
    model.fit(X, y)

    if verbose:
        print(f"[train_classifier] {cell_type}: fitted on {len(pos_idx)} vs {len(neg_idx)} balanced cells")

    return CellTypeClassifier(
        cell_type=cell_type,
        model=model,
        marker_genes=genes,
        threshold=DEFAULT_THRESHOLD,
        parent=None if parent_clf is None else parent_clf.cell_type,
    )
