# -*- coding: utf-8 -*-
"""
Tests for classifier training.
"""

import numpy as np
import pytest
from scipy.sparse import csr_matrix

from immunotaxa import DataError, balance_classes, resolve_parent, train_classifier

from conftest import B_MARKERS, PLASMA_MARKERS, T_MARKERS, make_immune_adata


class TestTrainClassifier:

    def test_marker_genes_and_default_threshold(self, b_classifier):
        assert sorted(b_classifier.marker_genes) == sorted(B_MARKERS)
        assert b_classifier.threshold == 0.5
        assert b_classifier.parent is None
        assert b_classifier.cell_type == "B cells"

    def test_hyphenated_gene_round_trips_through_model(self, b_classifier):
        assert "HLA-DRA" in b_classifier.marker_genes
        assert "G_HLA_DRA" in list(b_classifier.model.feature_names_in_)

    def test_separates_training_classes(self, training_adata, t_classifier):
        calls = t_classifier.predict(training_adata)
        is_t = (training_adata.obs["cell_type"] == "T cells").to_numpy()
        assert calls[is_t].mean() > 0.95
        assert calls[~training_adata.obs["cell_type"].isna().to_numpy() & ~is_t].mean() < 0.05

    def test_child_records_parent_name(self, plasma_classifier):
        assert plasma_classifier.parent == "B cells"
        assert sorted(plasma_classifier.marker_genes) == sorted(PLASMA_MARKERS)

    def test_unrepresented_cell_type(self, immune_adata):
        with pytest.raises(DataError, match="not represented"):
            train_classifier(immune_adata, "NK cells", T_MARKERS, "cell_type", verbose=False)

    def test_no_negative_cells(self, immune_adata):
        immune_adata.obs["all_b"] = True
        with pytest.raises(DataError, match="negative"):
            train_classifier(immune_adata, "B cells", B_MARKERS, "all_b", verbose=False)

    def test_missing_tag_column(self, immune_adata):
        with pytest.raises(DataError, match="not_a_column"):
            train_classifier(immune_adata, "B cells", B_MARKERS, "not_a_column", verbose=False)

    def test_missing_marker_gene_raises(self, immune_adata):
        with pytest.raises(DataError, match="MS4A1"):
            train_classifier(immune_adata, "B cells", ["CD19", "MS4A1"], "cell_type", verbose=False)

    def test_missing_marker_gene_dropped(self, immune_adata):
        with pytest.warns(UserWarning, match="MS4A1"):
            clf = train_classifier(
                immune_adata, "B cells", ["CD19", "MS4A1", "CD79A"], "cell_type",
                equivalent_types=["Plasma cells"], missing_genes="drop",
                random_state=0, verbose=False,
            )
        assert clf.marker_genes == ["CD19", "CD79A"]

    def test_explicit_boolean_tag(self, immune_adata):
        immune_adata.obs["is_t"] = (immune_adata.obs["cell_type"] == "T cells").to_numpy()
        clf = train_classifier(immune_adata, "T cells", T_MARKERS, "is_t", random_state=0, verbose=False)
        assert clf.cell_type == "T cells"
        assert clf.predict(immune_adata)[immune_adata.obs["is_t"].to_numpy()].mean() > 0.95

    def test_sparse_layer(self, immune_adata):
        immune_adata.layers["sparse"] = csr_matrix(immune_adata.X)
        dense = train_classifier(immune_adata, "T cells", T_MARKERS, "cell_type", random_state=3, verbose=False)
        sparse = train_classifier(
            immune_adata, "T cells", T_MARKERS, "cell_type", layer="sparse", random_state=3, verbose=False,
        )
        np.testing.assert_allclose(
            dense.predict_proba(immune_adata),
            sparse.predict_proba(immune_adata, layer="sparse"),
        )

    def test_unknown_layer(self, immune_adata):
        with pytest.raises(DataError, match="Layer"):
            train_classifier(immune_adata, "T cells", T_MARKERS, "cell_type", layer="spliced", verbose=False)

    def test_seed_makes_training_reproducible(self, immune_adata):
        a = train_classifier(immune_adata, "T cells", T_MARKERS, "cell_type", random_state=7, verbose=False)
        b = train_classifier(immune_adata, "T cells", T_MARKERS, "cell_type", random_state=7, verbose=False)
        np.testing.assert_array_equal(a.predict_proba(immune_adata), b.predict_proba(immune_adata))

    def test_parent_by_name_needs_registry(self, immune_adata):
        with pytest.raises(DataError, match="no registry"):
            train_classifier(immune_adata, "Plasma cells", PLASMA_MARKERS, "cell_type",
                             parent="B cells", verbose=False)

    def test_parent_by_name_from_registry(self, immune_adata, registry, b_classifier):
        registry.save(b_classifier)
        clf = train_classifier(immune_adata, "Plasma cells", PLASMA_MARKERS, "cell_type",
                               parent="B cells", registry=registry, random_state=0, verbose=False)
        assert clf.parent == "B cells"

    def test_parent_missing_from_registry(self, immune_adata, registry):
        with pytest.raises(DataError, match="not found"):
            train_classifier(immune_adata, "Plasma cells", PLASMA_MARKERS, "cell_type",
                             parent="B cells", registry=registry, verbose=False)

    def test_own_parent_rejected(self, immune_adata, b_classifier):
        with pytest.raises(DataError, match="own parent"):
            train_classifier(immune_adata, "B cells", B_MARKERS, "cell_type",
                             parent=b_classifier, verbose=False)

    def test_child_only_sees_parent_positive_cells(self):
        # plasma cells only exist inside the B compartment; without B cells the
        # parent filter leaves no negatives to learn from
        adata = make_immune_adata(n_b=0, n_plasma=30, n_t=40, n_unlabelled=0, seed=5)
        parent = train_classifier(adata, "B cells", B_MARKERS, "cell_type",
                                  equivalent_types=["Plasma cells"], random_state=0, verbose=False)
        with pytest.raises(DataError, match="negative"):
            train_classifier(adata, "Plasma cells", PLASMA_MARKERS, "cell_type",
                             parent=parent, random_state=0, verbose=False)
        # unfiltered, the T cells serve as negatives
        clf = train_classifier(adata, "Plasma cells", PLASMA_MARKERS, "cell_type",
                               random_state=0, verbose=False)
        assert clf.parent is None

    @pytest.mark.parametrize("symbol", ["CD79_A", "G_CD79A"])
    def test_underscore_gene_symbol(self, immune_adata, symbol):
        immune_adata.var_names = [symbol if g == "CD79A" else g for g in immune_adata.var_names]
        clf = train_classifier(immune_adata, "B cells", ["CD19", symbol], "cell_type",
                               equivalent_types=["Plasma cells"], random_state=0, verbose=False)
        assert clf.marker_genes == ["CD19", symbol]
        is_b = immune_adata.obs["cell_type"].isin(["B cells", "Plasma cells"]).to_numpy()
        assert clf.predict(immune_adata)[is_b].mean() > 0.95

    def test_too_few_cells_to_calibrate(self):
        adata = make_immune_adata(n_b=1, n_plasma=0, n_t=10, n_unlabelled=0, seed=3)
        with pytest.raises(DataError, match="at least 2"):
            train_classifier(adata, "B cells", B_MARKERS, "cell_type", random_state=0, verbose=False)

    def test_scaling_is_stored_with_model(self, training_adata, t_classifier):
        scaler = t_classifier.model[0]
        X = training_adata[:, T_MARKERS].X
        # fitted on the balanced training cells, not on any later query
        assert scaler.mean_.shape == (len(T_MARKERS),)
        assert np.all(scaler.mean_ > X.min(axis=0)) and np.all(scaler.mean_ < X.max(axis=0))


class TestBalanceClasses:

    def test_majority_is_subsampled(self):
        pos, neg = balance_classes(np.arange(51), np.arange(100, 110), random_state=0)
        assert len(pos) == 10
        assert len(neg) == 10
        assert set(pos) <= set(range(51))
        np.testing.assert_array_equal(neg, np.arange(100, 110))

    def test_negative_majority(self):
        pos, neg = balance_classes(np.arange(3), np.arange(10, 40), random_state=0)
        assert (len(pos), len(neg)) == (3, 3)

    def test_balanced_input_unchanged(self):
        pos, neg = balance_classes(np.arange(5), np.arange(5, 10))
        np.testing.assert_array_equal(pos, np.arange(5))
        np.testing.assert_array_equal(neg, np.arange(5, 10))

    def test_seeded(self):
        a = balance_classes(np.arange(100), np.arange(100, 120), random_state=42)
        b = balance_classes(np.arange(100), np.arange(100, 120), random_state=42)
        np.testing.assert_array_equal(a[0], b[0])


def test_training_fits_balanced_sample(monkeypatch):
    """51 positive vs 10 negative cells are fitted as 10 vs 10."""
    import immunotaxa.training as training

    adata = make_immune_adata(n_b=51, n_plasma=0, n_t=10, n_unlabelled=0, seed=2)
    fitted = {}
    original_fit = training.CalibratedClassifierCV.fit

    def spy_fit(self, X, y, *args, **kwargs):
        fitted["n_pos"] = int(np.sum(y))
        fitted["n_neg"] = int(np.sum(~np.asarray(y)))
        return original_fit(self, X, y, *args, **kwargs)

    monkeypatch.setattr(training.CalibratedClassifierCV, "fit", spy_fit)
    train_classifier(adata, "B cells", B_MARKERS, "cell_type", random_state=0, verbose=False)
    assert fitted == {"n_pos": 10, "n_neg": 10}


def test_resolve_parent_passthrough(b_classifier):
    assert resolve_parent(None) is None
    assert resolve_parent(b_classifier) is b_classifier
    with pytest.raises(DataError):
        resolve_parent(42)
