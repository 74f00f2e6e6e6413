# -*- coding: utf-8 -*-
"""
immunotaxa - hierarchical immune cell type classification

This package provides end-to-end helpers for:
1. Training binary cell type classifiers on labelled scRNA-seq data
2. Evaluating them (accuracy, ROC curve, AUC)
3. Composing classifiers into a parent / child taxonomy
4. Classifying new cells top-down through that taxonomy
5. Storing classifiers in directory based registries
"""

from __future__ import annotations

from .exceptions import (
    ImmunotaxaError,
    ValidationError,
    DataError,
    NotFoundError,
    ConflictError,
)
from .classifier import CellTypeClassifier
from .labels import resolve_labels, apply_parent_coherence
from .training import train_classifier, balance_classes, resolve_parent
from .evaluation import test_classifier, EvaluationResult
from .taxonomy import Taxonomy
from .prediction import classify_cells, score_taxonomy
from .registry import (
    ModelRegistry,
    get_default_registry_path,
    get_registry,
    list_classifiers,
    load_classifier,
    save_classifier,
    delete_classifier,
)

# Constants
from .constants import (
    DEFAULT_THRESHOLD,
    POSITIVE,
    NEGATIVE,
    AMBIGUOUS,
    PREDICTED_TYPES_COL,
    MOST_PROBABLE_TYPE_COL,
    UNCLASSIFIED,
)

__version__ = "1.0.0"

__all__ = [
    # Errors
    "ImmunotaxaError",
    "ValidationError",
    "DataError",
    "NotFoundError",
    "ConflictError",

    # Classifier
    "CellTypeClassifier",

    # Labels
    "resolve_labels",
    "apply_parent_coherence",

    # Training / evaluation
    "train_classifier",
    "balance_classes",
    "resolve_parent",
    "test_classifier",
    "EvaluationResult",

    # Prediction
    "Taxonomy",
    "classify_cells",
    "score_taxonomy",

    # Registry
    "ModelRegistry",
    "get_default_registry_path",
    "get_registry",
    "list_classifiers",
    "load_classifier",
    "save_classifier",
    "delete_classifier",

    # Constants
    "DEFAULT_THRESHOLD",
    "POSITIVE",
    "NEGATIVE",
    "AMBIGUOUS",
    "PREDICTED_TYPES_COL",
    "MOST_PROBABLE_TYPE_COL",
    "UNCLASSIFIED",
]
