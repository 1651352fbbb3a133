"""Tests for normalization and the Wald / likelihood-ratio DE engines."""
import pytest
import pandas as pd
import numpy as np

from de_analysis import (
    RESULT_COLUMNS,
    DEAnalysisEngine,
    DEResult,
    LRTAnalysisEngine,
    ensure_gene_column,
    filter_low_counts,
    filter_results,
    size_factor_normalize,
    summarize_pipelines,
    variance_stabilize,
)

COMPARISON = ("responder", "nonresponder")
DE_GENES = [f"gene_{i + 1}" for i in range(10)]


# ---------------------------------------------------------------------------
# ensure_gene_column
# ---------------------------------------------------------------------------


def test_ensure_gene_column_with_named_index():
    df = pd.DataFrame(
        {"log2FoldChange": [1.5, -2.0], "padj": [0.01, 0.05]},
        index=pd.Index(["ENSG00000141510", "ENSG00000012048"], name="Gene"),
    )
    result = ensure_gene_column(df)
    assert "gene" in result.columns
    assert list(result["gene"]) == ["ENSG00000141510", "ENSG00000012048"]


def test_ensure_gene_column_with_uppercase_column():
    df = pd.DataFrame({"Gene": ["TP53", "BRCA1"], "padj": [0.01, 0.05]})
    result = ensure_gene_column(df)
    assert "gene" in result.columns


def test_ensure_gene_column_ens_gene_alias():
    df = pd.DataFrame({"ens_gene": ["ENSG1", "ENSG2"], "padj": [0.01, 0.05]})
    result = ensure_gene_column(df)
    assert list(result["gene"]) == ["ENSG1", "ENSG2"]


def test_ensure_gene_column_idempotent():
    df = pd.DataFrame(
        {"log2FoldChange": [1.5], "padj": [0.01]},
        index=pd.Index(["TP53"], name="Gene"),
    )
    result1 = ensure_gene_column(df)
    result2 = ensure_gene_column(result1)
    assert "gene" in result2.columns
    assert list(result2["gene"]) == ["TP53"]


# ---------------------------------------------------------------------------
# Filtering & normalization
# ---------------------------------------------------------------------------


def test_filter_low_counts_drops_sparse_genes(sample_counts_df):
    counts = sample_counts_df.copy()
    counts["sparse"] = [10, 0, 0, 0, 0, 0, 0, 0]
    counts["borderline"] = [5, 5, 5, 5, 0, 0, 0, 0]
    filtered = filter_low_counts(counts, min_reads=5, min_fraction=0.47)
    assert "sparse" not in filtered.columns
    # 4/8 = 0.5 of samples pass
    assert "borderline" in filtered.columns
    assert filtered.shape[0] == 8


def test_size_factor_normalize(sample_counts_df):
    doubled = sample_counts_df.copy()
    doubled.iloc[0] = doubled.iloc[0] * 2
    normed, size_factors = size_factor_normalize(doubled)
    assert normed.shape == doubled.shape
    assert list(size_factors.index) == list(doubled.index)
    assert (size_factors > 0).all()
    assert size_factors.iloc[0] > size_factors.iloc[1]


def test_size_factor_normalize_every_gene_has_a_zero(sample_counts_df):
    counts = sample_counts_df.astype(float) + 0.4
    for i, gene in enumerate(counts.columns):
        counts.iloc[i % len(counts), i] = 0.0
    normed, size_factors = size_factor_normalize(counts)
    assert np.isfinite(size_factors).all()
    assert (size_factors > 0).all()
    assert np.isfinite(normed.values).all()
    # Estimated counts are scaled, not rounded
    assert normed.iloc[1, 0] * size_factors.iloc[1] == pytest.approx(counts.iloc[1, 0])


def test_variance_stabilize_shape(sample_counts_df, sample_metadata_df):
    vst = variance_stabilize(sample_counts_df, sample_metadata_df, "condition")
    assert vst.shape == sample_counts_df.shape
    assert list(vst.index) == list(sample_counts_df.index)
    assert np.isfinite(vst.values).all()


# ---------------------------------------------------------------------------
# Wald engine
# ---------------------------------------------------------------------------


class TestWaldEngine:
    def test_run_detects_built_in_genes(self, sample_counts_df, sample_metadata_df):
        result = DEAnalysisEngine().run(
            sample_counts_df, sample_metadata_df, COMPARISON, pipeline="kallisto_wald"
        )
        assert not result.failed
        assert result.pipeline == "kallisto_wald"
        assert result.test == "wald"
        assert list(result.results_df.columns) == RESULT_COLUMNS
        assert len(result.results_df) == 100
        assert result.normalized_counts.shape == sample_counts_df.shape

        sig = result.significant_genes(0.05)
        assert len(sig & set(DE_GENES)) >= 8
        lfc = result.results_df.set_index("gene").loc["gene_1", "log2FoldChange"]
        assert lfc > 2

    def test_fit_failure_is_captured(self, sample_counts_df, sample_metadata_df, monkeypatch):
        def broken_fit(*args, **kwargs):
            raise ValueError("design matrix is singular")

        engine = DEAnalysisEngine()
        monkeypatch.setattr(engine, "fit_model", broken_fit)
        result = engine.run(sample_counts_df, sample_metadata_df, COMPARISON, pipeline="featurecounts_wald")

        assert result.failed
        assert result.results_df.empty
        assert result.n_significant == 0
        assert "design matrix is singular" in result.warnings[0]


# ---------------------------------------------------------------------------
# LRT engine
# ---------------------------------------------------------------------------


class TestLRTEngine:
    def test_run_detects_built_in_genes(self, sample_counts_df, sample_metadata_df):
        result = LRTAnalysisEngine().run(
            sample_counts_df.astype(float), sample_metadata_df, COMPARISON, pipeline="kallisto_lrt"
        )
        assert not result.failed
        assert result.test == "lrt"
        assert list(result.results_df.columns) == RESULT_COLUMNS
        assert result.results_df["lfcSE"].isna().all()

        df = result.results_df.set_index("gene")
        assert (df.loc[DE_GENES, "log2FoldChange"] > 2).all()
        assert (df.loc[DE_GENES, "padj"] < 0.05).sum() >= 8
        # BH never lowers a p-value
        tested = df.dropna(subset=["pvalue"])
        assert (tested["padj"] >= tested["pvalue"] - 1e-12).all()

    def test_effect_size_is_log2(self):
        engine = LRTAnalysisEngine()
        indicator = np.array([1.0, 1.0, 1.0, 0.0, 0.0, 0.0])
        noise = np.array([0.01, -0.02, 0.01, 0.02, -0.01, -0.01])
        log_expr = pd.DataFrame({"g": np.log(4.0) * indicator + 3.0 + noise})
        tests = engine.test_genes(log_expr, indicator)
        assert tests.loc["g", "coef"] / np.log(2) == pytest.approx(2.0, abs=0.05)
        assert tests.loc["g", "pvalue"] < 0.001

    def test_constant_gene_is_untested(self):
        engine = LRTAnalysisEngine()
        indicator = np.array([1.0, 1.0, 0.0, 0.0])
        log_expr = pd.DataFrame({"flat": [2.0, 2.0, 2.0, 2.0], "varying": [3.0, 3.5, 1.0, 1.2]})
        tests = engine.test_genes(log_expr, indicator)
        assert np.isnan(tests.loc["flat", "pvalue"])
        assert not np.isnan(tests.loc["varying", "pvalue"])

    def test_every_gene_with_a_zero_still_tested(self, sample_counts_df, sample_metadata_df):
        counts = sample_counts_df.astype(float)
        for i, gene in enumerate(counts.columns):
            counts.iloc[i % len(counts), i] = 0.0
        result = LRTAnalysisEngine().run(counts, sample_metadata_df, COMPARISON, pipeline="kallisto_lrt")
        assert not result.failed
        assert result.results_df["pvalue"].notna().all()
        assert result.n_significant > 0

    def test_no_testable_gene_fails(self, sample_metadata_df):
        flat = pd.DataFrame(
            50.0, index=sample_metadata_df.index, columns=[f"gene_{i}" for i in range(5)]
        )
        result = LRTAnalysisEngine().run(flat, sample_metadata_df, COMPARISON, pipeline="kallisto_lrt")
        assert result.failed
        assert "No gene produced a p-value" in result.warnings[0]
        assert summarize_pipelines({"kallisto_lrt": result}).loc[0, "status"] == "FAILED"

    def test_label_outside_comparison_fails(self, sample_counts_df, sample_metadata_df):
        metadata = sample_metadata_df.copy()
        metadata.iloc[0, 0] = "stable_disease"
        result = LRTAnalysisEngine().run(sample_counts_df, metadata, COMPARISON)
        assert result.failed
        assert "stable_disease" in result.warnings[0]


# ---------------------------------------------------------------------------
# Result helpers
# ---------------------------------------------------------------------------


def test_filter_results(sample_de_results_df):
    sig = filter_results(sample_de_results_df, padj_threshold=0.05, lfc_threshold=1.0)
    assert (sig["padj"] < 0.05).all()
    assert (sig["log2FoldChange"].abs() > 1.0).all()
    assert len(sig) >= 11


def test_summarize_pipelines(sample_de_results_df):
    ok = DEResult(
        pipeline="kallisto_wald",
        test="wald",
        results_df=sample_de_results_df,
        normalized_counts=None,
        comparison=COMPARISON,
        n_significant=11,
    )
    failed = DEResult(
        pipeline="featurecounts_wald",
        test="wald",
        results_df=pd.DataFrame(columns=RESULT_COLUMNS),
        normalized_counts=None,
        comparison=COMPARISON,
        n_significant=0,
        warnings=["Model fit failed: boom"],
    )
    summary = summarize_pipelines({"kallisto_wald": ok, "featurecounts_wald": failed}).set_index("pipeline")
    assert summary.loc["kallisto_wald", "status"] == "SUCCESS"
    assert summary.loc["kallisto_wald", "genes_tested"] == 100
    assert summary.loc["kallisto_wald", "comparison"] == "responder_vs_nonresponder"
    assert summary.loc["featurecounts_wald", "status"] == "FAILED"
    assert summary.loc["featurecounts_wald", "genes_tested"] == 0
