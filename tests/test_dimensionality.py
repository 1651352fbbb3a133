"""Tests for PCA on single sources and overlays."""
import pytest
import pandas as pd
import numpy as np

from dimensionality import compute_overlay_pca, compute_pca, top_variable_genes


@pytest.fixture
def vst_df():
    np.random.seed(42)
    data = np.random.normal(8, 1, size=(8, 60))
    data[:4, :5] += 4  # Responder signal
    return pd.DataFrame(
        data,
        index=[f"responder_{i}" for i in range(4)] + [f"nonresponder_{i}" for i in range(4)],
        columns=[f"gene_{i}" for i in range(60)],
    )


def test_top_variable_genes(vst_df):
    genes = top_variable_genes(vst_df, top_n=5)
    assert len(genes) == 5
    assert set(genes) == {f"gene_{i}" for i in range(5)}
    assert len(top_variable_genes(vst_df, top_n=None)) == 60


class TestComputePCA:
    def test_coordinates(self, vst_df):
        result = compute_pca(vst_df, n_components=3, top_n_genes=20)
        assert list(result.coords.columns) == ["PC1", "PC2", "PC3"]
        assert list(result.coords.index) == list(vst_df.index)
        assert len(result.genes_used) == 20
        assert result.explained_variance_ratio.sum() <= 1.0 + 1e-9
        # Responder signal separates on PC1
        pc1 = result.coords["PC1"]
        assert np.sign(pc1.iloc[:4]).nunique() == 1
        assert np.sign(pc1.iloc[:4].mean()) != np.sign(pc1.iloc[4:].mean())

    def test_components_capped_by_samples(self, vst_df):
        result = compute_pca(vst_df.iloc[:3], n_components=5)
        assert result.coords.shape[1] == 3

    def test_empty_raises(self):
        with pytest.raises(ValueError, match="empty"):
            compute_pca(pd.DataFrame())

    def test_single_sample_raises(self, vst_df):
        with pytest.raises(ValueError, match="at least 2 samples"):
            compute_pca(vst_df.iloc[:1])


class TestOverlayPCA:
    def test_stacks_sources_on_shared_genes(self, vst_df):
        other = vst_df.iloc[:, 10:].copy() + 0.5
        other["extra_gene"] = 1.0
        result = compute_overlay_pca({"kallisto": vst_df, "featurecounts": other}, top_n_genes=None)

        assert len(result.coords) == 16
        assert set(result.coords["source"]) == {"kallisto", "featurecounts"}
        assert "kallisto:responder_0" in result.coords.index
        assert result.coords.loc["featurecounts:responder_0", "sample"] == "responder_0"
        assert len(result.genes_used) == 50
        assert "extra_gene" not in result.genes_used

    def test_requires_two_sources(self, vst_df):
        with pytest.raises(ValueError, match="At least 2"):
            compute_overlay_pca({"kallisto": vst_df})

    def test_no_shared_genes_raises(self, vst_df):
        renamed = vst_df.rename(columns=lambda g: g.upper())
        with pytest.raises(ValueError, match="share no genes"):
            compute_overlay_pca({"kallisto": vst_df, "featurecounts": renamed})
