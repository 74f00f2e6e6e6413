# -*- coding: utf-8 -*-
"""
pytest configuration for immunotaxa tests.
"""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
import anndata as ad

# Add the src directory to the Python path
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from immunotaxa import CellTypeClassifier, ModelRegistry, train_classifier  # noqa: E402
from immunotaxa.data import encode_feature  # noqa: E402

GENES = ["CD19", "CD79A", "HLA-DRA", "SDC1", "XBP1", "CD3E", "CD3D", "ACTB", "GAPDH", "MALAT1"]
B_MARKERS = ["CD19", "CD79A", "HLA-DRA"]
PLASMA_MARKERS = ["SDC1", "XBP1"]
T_MARKERS = ["CD3E", "CD3D"]

_HIGH = {
    "B cells": B_MARKERS,
    "Plasma cells": B_MARKERS + PLASMA_MARKERS,
    "T cells": T_MARKERS,
}


def make_immune_adata(n_b=60, n_plasma=40, n_t=80, n_unlabelled=20, seed=0):
    """
    Synthetic population with clearly separated B, plasma and T cells.

    Unlabelled cells express the T cell program but carry a missing
    annotation.
    """
    rng = np.random.default_rng(seed)
    groups = (
        ["B cells"] * n_b + ["Plasma cells"] * n_plasma
        + ["T cells"] * n_t + [None] * n_unlabelled
    )
    X = rng.poisson(1.0, size=(len(groups), len(GENES))).astype(float)
    for i, group in enumerate(groups):
        for gene in _HIGH[group or "T cells"]:
            X[i, GENES.index(gene)] += rng.poisson(20)

    obs = pd.DataFrame(
        {"cell_type": pd.Categorical(groups, categories=list(_HIGH))},
        index=[f"cell_{i}" for i in range(len(groups))],
    )
    adata = ad.AnnData(X=X, obs=obs, var=pd.DataFrame(index=GENES))
    adata.layers["counts"] = X.copy()
    return adata


class LookupModel:
    """
    Stand-in for a fitted classifier returning fixed probabilities per cell.

    Records the cells it was asked to score in ``seen``.
    """

    def __init__(self, genes, probs, default=0.0):
        self.feature_names_in_ = np.array([encode_feature(g) for g in genes], dtype=object)
        self.classes_ = np.array([False, True])
        self.probs = dict(probs)
        self.default = default
        self.seen = []

    def predict_proba(self, X):
        self.seen.extend(X.index)
        p = np.array([self.probs.get(cell, self.default) for cell in X.index], dtype=float)
        return np.column_stack([1 - p, p])


def lookup_classifier(cell_type, probs, genes=("ACTB",), parent=None, threshold=0.5, default=0.0):
    genes = list(genes)
    return CellTypeClassifier(
        cell_type, LookupModel(genes, probs, default=default), genes,
        threshold=threshold, parent=parent,
    )


@pytest.fixture
def immune_adata():
    return make_immune_adata()


@pytest.fixture(scope="session")
def training_adata():
    return make_immune_adata(seed=1)


@pytest.fixture(scope="session")
def b_classifier(training_adata):
    return train_classifier(
        training_adata, "B cells", B_MARKERS, "cell_type",
        equivalent_types=["Plasma cells"], random_state=0, verbose=False,
    )


@pytest.fixture(scope="session")
def plasma_classifier(training_adata, b_classifier):
    return train_classifier(
        training_adata, "Plasma cells", PLASMA_MARKERS, "cell_type",
        parent=b_classifier, random_state=0, verbose=False,
    )


@pytest.fixture(scope="session")
def t_classifier(training_adata):
    return train_classifier(
        training_adata, "T cells", T_MARKERS, "cell_type", random_state=0, verbose=False,
    )


@pytest.fixture
def registry(tmp_path):
    return ModelRegistry(tmp_path / "models")


@pytest.fixture
def default_registry(tmp_path, monkeypatch):
    """Point the bundled default registry at an empty temporary directory."""
    path = tmp_path / "default_models"
    path.mkdir()
    monkeypatch.setenv("IMMUNOTAXA_DEFAULT_REGISTRY", str(path))
    return path


# Pytest markers
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
