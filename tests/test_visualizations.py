"""Tests for the comparison visualizations."""
import pytest
import pandas as pd
import numpy as np

from dimensionality import compute_overlay_pca, compute_pca
from visualizations import (
    compute_de_summary,
    create_clustered_heatmap,
    create_effect_size_scatter,
    create_ma_plot,
    create_pca_overlay_plot,
    create_pca_plot,
    create_venn_diagram,
    create_volcano_plot,
)


@pytest.fixture
def de_results_df():
    np.random.seed(42)
    n = 100
    return pd.DataFrame({
        "gene": [f"Gene_{i}" for i in range(n)],
        "log2FoldChange": np.random.randn(n) * 2,
        "padj": np.random.uniform(0, 1, n),
        "baseMean": np.random.uniform(10, 10000, n),
        "pvalue": np.random.uniform(0, 1, n),
    })


@pytest.fixture
def expression_genes_by_samples():
    np.random.seed(42)
    return pd.DataFrame(
        np.random.normal(8, 2, size=(100, 6)),
        index=[f"Gene_{i}" for i in range(100)],
        columns=["R1", "R2", "R3", "N1", "N2", "N3"],
    )


@pytest.fixture
def conditions():
    return {"R1": "responder", "R2": "responder", "R3": "responder",
            "N1": "nonresponder", "N2": "nonresponder", "N3": "nonresponder"}


class TestVolcanoAndMA:
    def test_volcano_plot_creates_figure(self, de_results_df):
        fig = create_volcano_plot(de_results_df)
        assert fig is not None
        assert hasattr(fig, "data")

    def test_volcano_plot_uses_symbols(self, de_results_df):
        de_results_df.loc[0, "padj"] = 1e-10
        fig = create_volcano_plot(de_results_df, gene_symbols={"Gene_0": "CXCL9"}, title="kallisto_wald")
        labels = [t for trace in fig.data if trace.mode == "text" for t in trace.text]
        assert "CXCL9" in labels
        assert fig.layout.title.text == "kallisto_wald"

    def test_volcano_plot_all_nan_raises(self, de_results_df):
        de_results_df["padj"] = np.nan
        with pytest.raises(ValueError, match="all padj values are NaN"):
            create_volcano_plot(de_results_df)

    def test_volcano_plot_empty_raises(self):
        with pytest.raises(ValueError, match="empty"):
            create_volcano_plot(pd.DataFrame())

    def test_ma_plot_creates_figure(self, de_results_df):
        fig = create_ma_plot(de_results_df)
        assert fig is not None
        assert hasattr(fig, "data")


class TestDESummary:
    def test_compute_de_summary_keys(self, de_results_df):
        summary = compute_de_summary(de_results_df)
        assert summary["total_genes"] == 100
        for key in ["significant_genes", "upregulated", "downregulated",
                    "top_up_genes", "top_down_genes", "top_significant"]:
            assert key in summary

    def test_compute_de_summary_counts_consistent(self, de_results_df):
        summary = compute_de_summary(de_results_df)
        assert summary["upregulated"] + summary["downregulated"] <= summary["significant_genes"]
        assert summary["significant_genes"] <= summary["total_genes"]


class TestHeatmap:
    def test_annotation_tracks(self, expression_genes_by_samples, conditions, de_results_df):
        tracks = {
            "response": conditions,
            "batch": {"R1": "b1", "R2": "b2", "R3": "b1", "N1": "b2", "N2": "b1", "N3": "b2"},
        }
        fig = create_clustered_heatmap(
            expression_genes_by_samples, tracks, de_results_df=de_results_df, top_n_genes=20
        )
        heatmaps = [t for t in fig.data if t.type == "heatmap"]
        # One heatmap per track plus the expression heatmap
        assert len(heatmaps) == 3
        assert len(heatmaps[-1].y) == 20
        # Samples grouped by response
        assert list(heatmaps[-1].x) == ["N1", "N2", "N3", "R1", "R2", "R3"]

    def test_variance_fallback_without_results(self, expression_genes_by_samples, conditions):
        fig = create_clustered_heatmap(expression_genes_by_samples, {"response": conditions}, top_n_genes=15)
        assert len(fig.data[-1].y) == 15

    def test_missing_sample_annotation_raises(self, expression_genes_by_samples, conditions):
        del conditions["N3"]
        with pytest.raises(ValueError, match="missing from the 'response' annotation"):
            create_clustered_heatmap(expression_genes_by_samples, {"response": conditions})

    def test_empty_annotations_raise(self, expression_genes_by_samples):
        with pytest.raises(ValueError, match="sample_annotations is empty"):
            create_clustered_heatmap(expression_genes_by_samples, {})


class TestPCAPlots:
    def test_pca_plot(self, expression_genes_by_samples, conditions):
        result = compute_pca(expression_genes_by_samples.T)
        fig = create_pca_plot(result, conditions)
        assert fig is not None
        assert "PC1" in fig.layout.xaxis.title.text

    def test_pca_plot_requires_conditions(self, expression_genes_by_samples):
        result = compute_pca(expression_genes_by_samples.T)
        with pytest.raises(ValueError, match="sample_conditions is empty"):
            create_pca_plot(result, {})

    def test_overlay_plot(self, expression_genes_by_samples, conditions):
        vst = expression_genes_by_samples.T
        overlay = compute_overlay_pca({"kallisto": vst, "featurecounts": vst + 0.3})
        fig = create_pca_overlay_plot(overlay, conditions)
        names = {t.name for t in fig.data if t.mode == "markers"}
        assert names == {
            "responder (kallisto)", "responder (featurecounts)",
            "nonresponder (kallisto)", "nonresponder (featurecounts)",
        }
        # One connector per sample
        assert len([t for t in fig.data if t.mode == "lines"]) == 6

    def test_overlay_plot_requires_overlay_coords(self, expression_genes_by_samples, conditions):
        result = compute_pca(expression_genes_by_samples.T)
        with pytest.raises(ValueError, match="compute_overlay_pca"):
            create_pca_overlay_plot(result, conditions)


class TestComparisonPlots:
    @pytest.fixture
    def combined(self):
        np.random.seed(0)
        x = np.random.normal(0, 2, 80)
        return pd.DataFrame({
            "gene": [f"ENSG{i}" for i in range(80)],
            "log2FoldChange_kallisto_wald": x,
            "log2FoldChange_featurecounts_wald": 0.8 * x + np.random.normal(0, 0.2, 80),
            "padj_kallisto_wald": np.where(np.abs(x) > 2, 0.001, 0.5),
            "padj_featurecounts_wald": np.where(np.abs(x) > 2.5, 0.001, 0.5),
        })

    def test_effect_size_scatter(self, combined):
        fig = create_effect_size_scatter(combined, "kallisto_wald", "featurecounts_wald")
        fit = [t for t in fig.data if t.mode == "lines"][0]
        assert fit.name.startswith("fit: y = 0.")

    def test_effect_size_scatter_missing_pipeline(self, combined):
        with pytest.raises(ValueError, match="missing columns"):
            create_effect_size_scatter(combined, "kallisto_wald", "kallisto_lrt")

    def test_venn_two_sets(self):
        fig = create_venn_diagram({"a": {"g1", "g2", "g3"}, "b": {"g3", "g4"}})
        texts = [a.text for a in fig.layout.annotations]
        assert len(fig.layout.shapes) == 2
        # a only, b only, both
        assert texts[:3] == ["2", "1", "1"]
        assert "a (3)" in texts

    def test_venn_three_sets(self):
        fig = create_venn_diagram({"a": {"g1", "g2"}, "b": {"g2", "g3"}, "c": {"g2", "g4"}})
        assert len(fig.layout.shapes) == 3
        texts = [a.text for a in fig.layout.annotations]
        # Centre region (all three) is the 7th region anchor
        assert texts[6] == "1"

    def test_venn_rejects_four_sets(self):
        with pytest.raises(ValueError, match="2 or 3 gene sets"):
            create_venn_diagram({k: {"g"} for k in "abcd"})
