# -*- coding: utf-8 -*-
"""
Constants and configuration for immunotaxa package.
"""

from __future__ import annotations

# Classifier defaults
DEFAULT_THRESHOLD = 0.5
DEFAULT_KERNEL = "linear"
# Folds used for Platt calibration of the SVM decision function
CALIBRATION_FOLDS = 5

# Per-cell label values used during training / evaluation
POSITIVE = "positive"
NEGATIVE = "negative"
AMBIGUOUS = "ambiguous"

# Feature names handed to the fitted model: "G_" + gene, hyphens replaced
FEATURE_PREFIX = "G_"
FEATURE_SUBSTITUTIONS = (("-", "_"),)

# Prediction output columns written to .obs
PREDICTED_TYPES_COL = "predicted_types"
MOST_PROBABLE_TYPE_COL = "most_probable_type"
SCORE_SUFFIX = "predscore"
CLASS_SUFFIX = "class"
TYPE_SEPARATOR = ", "

# Sentinel for cells no classifier could evaluate
UNCLASSIFIED = "unknown"

# Registry layout
REGISTRY_SUFFIX = ".joblib"
REGISTRY_FORMAT_VERSION = 1
DEFAULT_REGISTRY_ENV = "IMMUNOTAXA_DEFAULT_REGISTRY"
DEFAULT_REGISTRY_NAME = "default"
