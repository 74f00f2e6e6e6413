# -*- coding: utf-8 -*-
"""
Expression matrix access helpers.

Everything the classifiers need from an AnnData object goes through this
module: reading a marker-gene sub-matrix from ``.X`` or a layer and mapping
gene symbols to the feature names the fitted models are built on.
"""

from __future__ import annotations
from typing import Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd
from anndata import AnnData
from scipy.sparse import issparse

from .constants import FEATURE_PREFIX, FEATURE_SUBSTITUTIONS
from .exceptions import DataError


def encode_feature(gene: str) -> str:
    """Turn a gene symbol into the feature name used by the fitted model."""
    name = str(gene)
    for raw, encoded in FEATURE_SUBSTITUTIONS:
        name = name.replace(raw, encoded)
    return f"{FEATURE_PREFIX}{name}"


def decode_feature(feature: str) -> str:
    """
    Restore the gene symbol from a model feature name.

    Strips the feature prefix and reverts the character substitutions made
    by :func:`encode_feature` (``HLA_DRA`` -> ``HLA-DRA``). A symbol that
    already held ``_`` comes back with ``-``; compare features with
    :func:`encode_feature` when the exact symbol matters.
    """
    name = str(feature)
    if name.startswith(FEATURE_PREFIX):
        name = name[len(FEATURE_PREFIX):]
    for raw, encoded in FEATURE_SUBSTITUTIONS:
        name = name.replace(encoded, raw)
    return name


def get_matrix(adata: AnnData, layer: Optional[str] = None):
    """Return ``adata.X`` or the requested layer."""
    if layer is None:
        return adata.X
    if layer not in adata.layers:
        raise DataError(
            f"Layer '{layer}' not found. Available layers: {list(adata.layers.keys())}"
        )
    return adata.layers[layer]


def missing_genes(adata: AnnData, genes: Iterable[str]) -> List[str]:
    """List the genes absent from ``adata.var_names``, in input order."""
    present = set(adata.var_names)
    return [g for g in genes if g not in present]


def marker_frame(
    adata: AnnData,
    genes: Sequence[str],
    layer: Optional[str] = None,
) -> pd.DataFrame:
    """
    Extract the expression of ``genes`` as a dense cell x feature frame.

    Parameters
    ----------
    adata : AnnData
        Cell population
    genes : Sequence[str]
        Marker genes, in the order the model expects them
    layer : Optional[str]
        Layer to read instead of ``.X``

    Returns
    -------
    pd.DataFrame
        Index is ``adata.obs_names``; columns are the encoded feature names

    Raises
    ------
    DataError
        If any gene is not part of ``adata.var_names`` or the layer is absent
    """
    absent = missing_genes(adata, genes)
    if absent:
        raise DataError(f"Marker genes not found in dataset: {absent}")

    matrix = get_matrix(adata, layer)
    idx = adata.var_names.get_indexer(list(genes))
    X = matrix[:, idx]
    X = X.toarray() if issparse(X) else np.asarray(X)
    X = X.astype(np.float64)

    return pd.DataFrame(
        X,
        index=adata.obs_names,
        columns=[encode_feature(g) for g in genes],
    )


def read_tags(adata: AnnData, tag_column: str) -> pd.Series:
    """Return the per-cell annotation column ``tag_column`` from ``.obs``."""
    if tag_column not in adata.obs.columns:
        raise DataError(f"Annotation column '{tag_column}' not found in adata.obs")
    return adata.obs[tag_column]
