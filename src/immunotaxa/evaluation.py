# -*- coding: utf-8 -*-
"""
Evaluation of a trained classifier on labelled test data.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, Optional, Union
from warnings import warn

import numpy as np
import pandas as pd
from anndata import AnnData
from sklearn import metrics

from .classifier import CellTypeClassifier
from .constants import POSITIVE
from .exceptions import DataError
from .training import resolve_parent, select_training_cells


@dataclass
class EvaluationResult:
    """
    Outcome of :func:`test_classifier`.

    Attributes
    ----------
    labels : pd.Series
        Resolved label of every evaluated cell (ambiguous cells removed)
    probabilities : np.ndarray
        Predicted positive-class probability per evaluated cell
    predictions : np.ndarray
        Boolean call per evaluated cell at the classifier threshold
    accuracy : float
        Accuracy of ``predictions``
    auc : float
        Area under the ROC curve
    roc_curve : pd.DataFrame
        Columns ``threshold``, ``fpr`` and ``tpr``
    threshold : float
        Classifier threshold the predictions were made at
    """

    labels: pd.Series
    probabilities: np.ndarray
    predictions: np.ndarray
    accuracy: float
    auc: float
    roc_curve: pd.DataFrame
    threshold: float

    @property
    def n_positive(self) -> int:
        return int((self.labels == POSITIVE).sum())

    @property
    def n_negative(self) -> int:
        return int(len(self.labels) - self.n_positive)

    def best_threshold(self) -> float:
        """Threshold maximising Youden's J (tpr - fpr) on the ROC curve."""
        roc = self.roc_curve[np.isfinite(self.roc_curve["threshold"])]
        j = (roc["tpr"] - roc["fpr"]).to_numpy()
        return float(roc["threshold"].iloc[int(np.argmax(j))])


def test_classifier(
    classifier: CellTypeClassifier,
    adata: AnnData,
    tag_column: str,
    layer: Optional[str] = None,
    equivalent_types: Optional[Iterable[str]] = None,
    parent: Union[None, str, CellTypeClassifier] = None,
    registry=None,
    verbose: bool = True,
) -> EvaluationResult:
    """
    Evaluate ``classifier`` against the annotation in ``tag_column``.

    Labels are resolved exactly as during training; with a parent
    classifier only its positive cells are evaluated and incoherent
    positives are dropped.

    Parameters
    ----------
    classifier : CellTypeClassifier
        Classifier to evaluate
    adata : AnnData
        Labelled test population
    tag_column : str
        ``.obs`` column with the annotation or an explicit boolean tag
    layer : Optional[str]
        Layer to read expression from instead of ``.X``
    equivalent_types : Optional[Iterable[str]]
        Other annotation values counted as ``classifier.cell_type``
    parent : None, str or CellTypeClassifier
        Parent classifier used for coherence filtering. Defaults to
        ``classifier.parent`` looked up in ``registry`` when a registry is given.
    registry : ModelRegistry, optional
        Registry used to resolve a parent given by name
    verbose : bool, default True
        Print a summary line

    Returns
    -------
    EvaluationResult

    Raises
    ------
    DataError
        If fewer than two classes remain after filtering
    """
    if parent is None and registry is not None:
        parent = classifier.parent
    elif parent is None and classifier.parent is not None:
        warn(
            f"[test_classifier] '{classifier.cell_type}' is a sub type of '{classifier.parent}' but no parent "
            f"or registry was given; evaluating on all labelled cells without the parent filter"
        )
    parent_clf = resolve_parent(parent, registry)

    labels, keep = select_training_cells(
        adata, classifier.cell_type, tag_column, layer=layer,
        equivalent_types=equivalent_types, parent=parent_clf,
    )
    labels = labels[keep]
    y_true = (labels == POSITIVE).to_numpy()
    if y_true.all() or not y_true.any():
        raise DataError(
            f"[{classifier.cell_type}] test data must contain both positive and negative cells; "
            f"got {int(y_true.sum())} positive and {int((~y_true).sum())} negative"
        )

    proba = classifier.predict_proba(adata, layer=layer)[keep]
    pred = proba >= classifier.threshold

    fpr, tpr, thresholds = metrics.roc_curve(y_true, proba, drop_intermediate=False)
    result = EvaluationResult(
        labels=labels,
        probabilities=proba,
        predictions=pred,
        accuracy=float(metrics.accuracy_score(y_true, pred)),
        auc=float(metrics.roc_auc_score(y_true, proba)),
        roc_curve=pd.DataFrame({"threshold": thresholds, "fpr": fpr, "tpr": tpr}),
        threshold=classifier.threshold,
    )
    if verbose:
        print(
            f"[test_classifier] {classifier.cell_type}: accuracy {result.accuracy:.3f}, "
            f"AUC {result.auc:.3f} on {result.n_positive} positive / {result.n_negative} negative cells"
        )
    return result


# keep pytest from collecting the public API as a test
test_classifier.__test__ = False
