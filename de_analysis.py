"""
Differential expression testing for the pipeline comparison.

Two statistical models are run on the same response contrast:
- Wald test: PyDESeq2 negative binomial GLM ("fit once, contrast many")
- Likelihood-ratio test: per-gene linear models on log normalized counts,
  full (~ response) vs reduced (~ 1), fitted with statsmodels
"""

from dataclasses import dataclass, field
from typing import Dict, List, Tuple, Optional
import logging
import warnings
import pandas as pd
import numpy as np
import statsmodels.api as sm
from statsmodels.stats.multitest import multipletests
from pydeseq2.dds import DeseqDataSet
from pydeseq2.ds import DeseqStats

logger = logging.getLogger(__name__)

RESULT_COLUMNS = ["gene", "baseMean", "log2FoldChange", "lfcSE", "stat", "pvalue", "padj"]


def ensure_gene_column(df: pd.DataFrame) -> pd.DataFrame:
    """
    Ensure DataFrame has a 'gene' column, handling various index/column naming conventions.

    Handles cases where:
    - Gene info is in a named index (e.g., index.name = "Gene")
    - Gene column has different casing (e.g., "Gene", "GENE", "GeneSymbol")
    - Gene column has different naming (e.g., "gene_id", "ens_gene", "target_id")

    Args:
        df: DataFrame that may have gene info in index or with non-standard column name

    Returns:
        DataFrame with a lowercase "gene" column containing gene identifiers
    """
    if "gene" in df.columns:
        return df

    gene_aliases = [
        "Gene", "GENE", "gene_id", "Geneid", "ens_gene", "ensembl_gene_id", "target_id",
    ]
    for alias in gene_aliases:
        if alias in df.columns:
            df = df.copy()
            df.columns = ["gene" if col == alias else col for col in df.columns]
            return df

    # Gene ids in the index
    if df.index.name and df.index.name.lower() in ["gene", "gene_id", "geneid", "ens_gene", "target_id"]:
        df = df.reset_index()
        df.columns = ["gene"] + list(df.columns[1:])
        return df

    if df.index.name is None and len(df) > 0 and isinstance(df.index[0], str):
        df = df.reset_index()
        df.columns = ["gene"] + list(df.columns[1:])
        return df

    return df


def filter_low_counts(
    counts_df: pd.DataFrame, min_reads: float = 5, min_fraction: float = 0.47
) -> pd.DataFrame:
    """
    Keep genes with at least min_reads in at least min_fraction of samples.

    Args:
        counts_df: samples × genes counts
        min_reads: Minimum count for a sample to count as expressing the gene
        min_fraction: Fraction of samples that must pass min_reads

    Returns:
        samples × genes counts restricted to passing genes
    """
    passing = (counts_df >= min_reads).mean(axis=0) >= min_fraction
    n_dropped = int((~passing).sum())
    if n_dropped:
        logger.info(
            f"Filtered {n_dropped}/{counts_df.shape[1]} genes with < {min_reads:g} reads "
            f"in {min_fraction:.0%} of samples"
        )
    return counts_df.loc[:, passing]


def size_factor_normalize(counts_df: pd.DataFrame) -> Tuple[pd.DataFrame, pd.Series]:
    """
    Median-of-ratios normalization.

    Size factors are fitted by PyDESeq2 on rounded counts with an
    intercept-only design, so a matrix where every gene has a zero falls
    back to iterative size factors as in the Wald fit. Fractional estimated
    counts are divided by those factors unrounded.

    Args:
        counts_df: samples × genes counts (estimated counts allowed)

    Returns:
        (normalized samples × genes counts, size factor per sample)

    Raises:
        ValueError: if the fitted size factors are not finite and positive
    """
    intercept = pd.DataFrame({"intercept": 1.0}, index=counts_df.index)
    dds = DeseqDataSet(
        counts=counts_df.round().astype(int),
        metadata=pd.DataFrame(index=counts_df.index),
        design=intercept,
        quiet=True,
    )
    dds.fit_size_factors()

    size_factors = pd.Series(
        np.asarray(dds.obs["size_factors"], dtype=float), index=counts_df.index, name="size_factor"
    )
    if not (np.isfinite(size_factors).all() and (size_factors > 0).all()):
        raise ValueError(
            f"Size factors could not be estimated for "
            f"{', '.join(size_factors.index[~(size_factors > 0)].astype(str)[:3])}. "
            f"Suggestion: check for samples with no counts."
        )
    normed_df = counts_df.astype(float).div(size_factors, axis=0)
    return normed_df, size_factors


def variance_stabilize(
    counts_df: pd.DataFrame,
    metadata_df: pd.DataFrame,
    design_factor: str = "condition",
) -> pd.DataFrame:
    """
    Variance-stabilizing transform of integer counts (blind to the design).

    Args:
        counts_df: samples × genes integer counts
        metadata_df: samples × design factor (index must match counts_df.index)
        design_factor: Column name in metadata_df

    Returns:
        samples × genes VST values
    """
    dds = DeseqDataSet(
        counts=counts_df,
        metadata=metadata_df.loc[counts_df.index],
        design=f"~{design_factor}",
        quiet=True,
    )
    dds.vst(use_design=False)
    return pd.DataFrame(
        dds.layers["vst_counts"], index=dds.obs_names, columns=dds.var_names
    )


@dataclass
class DEResult:
    """Result of one differential expression pipeline."""

    pipeline: str  # e.g. "kallisto_wald"
    test: str  # "wald" or "lrt"
    results_df: pd.DataFrame  # gene, baseMean, log2FoldChange, lfcSE, stat, pvalue, padj
    normalized_counts: Optional[pd.DataFrame]  # samples × genes - None if fit failed
    comparison: Tuple[str, str]  # (test_condition, reference_condition)
    n_significant: int  # Count of genes with padj < padj_threshold
    warnings: List[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.results_df.empty and bool(self.warnings)

    def significant_genes(self, padj_threshold: float = 0.05) -> set:
        if self.results_df.empty:
            return set()
        sig = self.results_df[self.results_df["padj"] < padj_threshold]
        return set(sig["gene"])


def _failed_result(pipeline: str, test: str, comparison: Tuple[str, str], message: str) -> DEResult:
    return DEResult(
        pipeline=pipeline,
        test=test,
        results_df=pd.DataFrame(columns=RESULT_COLUMNS),
        normalized_counts=None,
        comparison=comparison,
        n_significant=0,
        warnings=[message],
    )


class DEAnalysisEngine:
    """Wald-test differential expression using PyDESeq2."""

    def __init__(self, padj_threshold: float = 0.05):
        self.padj_threshold = padj_threshold

    def fit_model(
        self,
        counts_df: pd.DataFrame,
        metadata_df: pd.DataFrame,
        design_factor: str = "condition",
    ) -> Tuple[DeseqDataSet, pd.DataFrame]:
        """
        Fit DESeq2 model ONCE. Returns fitted model + normalized counts.

        Args:
            counts_df: samples × genes DataFrame with integer counts
            metadata_df: samples × conditions DataFrame (index must match counts_df.index)
            design_factor: Column name in metadata_df (default: "condition")

        Returns:
            dds: Fitted DeseqDataSet (reuse for multiple contrasts)
            normalized_df: samples × genes (size-factor normalized)

        Raises:
            Exception if fit fails (caller should abort all comparisons)
        """
        dds = DeseqDataSet(
            counts=counts_df,
            metadata=metadata_df.loc[counts_df.index],
            design=f"~{design_factor}",
            refit_cooks=True,
            quiet=True,
        )

        # Size factors, dispersions, GLM
        dds.deseq2()

        normalized_df = pd.DataFrame(
            dds.layers["normed_counts"],
            index=dds.obs_names,
            columns=dds.var_names,
        )
        return dds, normalized_df

    def get_comparison(
        self,
        dds: DeseqDataSet,
        design_factor: str,
        test_condition: str,
        reference_condition: str,
    ) -> pd.DataFrame:
        """
        Compute a single Wald contrast from the fitted model.

        Returns:
            Results DataFrame: gene, baseMean, log2FoldChange, lfcSE, stat, pvalue, padj
        """
        stat_res = DeseqStats(
            dds,
            contrast=[design_factor, test_condition, reference_condition],
            quiet=True,
        )
        stat_res.summary()

        results_df = stat_res.results_df.copy()
        results_df.index.name = None
        results_df = results_df.reset_index()
        results_df.columns = ["gene"] + list(results_df.columns[1:])
        return results_df[RESULT_COLUMNS]

    def run(
        self,
        counts_df: pd.DataFrame,
        metadata_df: pd.DataFrame,
        comparison: Tuple[str, str],
        design_factor: str = "condition",
        pipeline: str = "wald",
    ) -> DEResult:
        """
        Fit and test one pipeline's count matrix.

        Args:
            counts_df: samples × genes DataFrame with integer counts
            metadata_df: samples × conditions DataFrame
            comparison: (test, reference) response levels
            design_factor: Column name in metadata_df (default: "condition")
            pipeline: Pipeline id recorded on the result

        Returns:
            DEResult; a failed fit yields an empty results_df with warnings populated
        """
        test_cond, ref_cond = comparison
        try:
            dds, normalized_df = self.fit_model(counts_df, metadata_df, design_factor)
            results_df = self.get_comparison(dds, design_factor, test_cond, ref_cond)
        except (ValueError, RuntimeError, TypeError) as e:
            logger.error(f"{pipeline}: DESeq2 Wald test failed: {str(e)}", exc_info=True)
            return _failed_result(pipeline, "wald", comparison, f"Model fit failed: {str(e)}")

        n_sig = int((results_df["padj"] < self.padj_threshold).sum())
        logger.info(
            f"{pipeline}: {n_sig} of {len(results_df)} genes with padj < {self.padj_threshold}"
        )
        return DEResult(
            pipeline=pipeline,
            test="wald",
            results_df=results_df,
            normalized_counts=normalized_df,
            comparison=comparison,
            n_significant=n_sig,
            warnings=[],
        )


class LRTAnalysisEngine:
    """
    Likelihood-ratio test on log-transformed normalized counts.

    Each gene gets two ordinary least squares fits on log(normalized + 0.5):
    the full model with an intercept and a response indicator, and the reduced
    intercept-only model. The LR statistic is chi-square with one degree of
    freedom under the null. The response coefficient, converted from natural
    log to log2, is reported as log2FoldChange.
    """

    def __init__(self, padj_threshold: float = 0.05, pseudocount: float = 0.5):
        self.padj_threshold = padj_threshold
        self.pseudocount = pseudocount

    def test_genes(
        self, log_expr: pd.DataFrame, indicator: np.ndarray
    ) -> pd.DataFrame:
        """
        Run the full vs reduced comparison for every gene.

        Args:
            log_expr: samples × genes log expression
            indicator: 1.0 for test-condition samples, 0.0 for reference

        Returns:
            DataFrame indexed by gene with columns coef, stat, pvalue
        """
        x_full = sm.add_constant(indicator, has_constant="add")
        x_reduced = np.ones((len(indicator), 1))

        rows = {}
        for gene in log_expr.columns:
            y = log_expr[gene].values
            if np.var(y) == 0:
                rows[gene] = (0.0, np.nan, np.nan)
                continue
            full = sm.OLS(y, x_full).fit()
            if full.ssr <= np.finfo(float).eps:
                # Perfect separation leaves the Gaussian likelihood unbounded
                rows[gene] = (full.params[1], np.nan, np.nan)
                continue
            reduced = sm.OLS(y, x_reduced).fit()
            lr_stat, pvalue, _ = full.compare_lr_test(reduced)
            rows[gene] = (full.params[1], lr_stat, pvalue)

        return pd.DataFrame.from_dict(rows, orient="index", columns=["coef", "stat", "pvalue"])

    def run(
        self,
        counts_df: pd.DataFrame,
        metadata_df: pd.DataFrame,
        comparison: Tuple[str, str],
        design_factor: str = "condition",
        pipeline: str = "lrt",
    ) -> DEResult:
        """
        Normalize and test one pipeline's count matrix.

        Args:
            counts_df: samples × genes counts (estimated counts allowed)
            metadata_df: samples × conditions DataFrame
            comparison: (test, reference) response levels
            design_factor: Column name in metadata_df
            pipeline: Pipeline id recorded on the result

        Returns:
            DEResult; a failed run yields an empty results_df with warnings populated
        """
        test_cond, ref_cond = comparison
        try:
            labels = metadata_df.loc[counts_df.index, design_factor]
            unknown = sorted(set(labels) - {test_cond, ref_cond})
            if unknown:
                raise ValueError(
                    f"Samples carry labels {unknown} outside the comparison {test_cond} vs {ref_cond}"
                )
            indicator = (labels == test_cond).astype(float).values

            normalized_df, _ = size_factor_normalize(counts_df)
            log_expr = np.log(normalized_df + self.pseudocount)

            with warnings.catch_warnings():
                warnings.simplefilter("ignore", RuntimeWarning)
                tests = self.test_genes(log_expr, indicator)
            if tests["pvalue"].isna().all():
                raise ValueError(
                    f"No gene produced a p-value ({len(tests)} genes tested). "
                    f"Suggestion: check that the count matrix varies between samples."
                )
        except (ValueError, RuntimeError, TypeError) as e:
            logger.error(f"{pipeline}: likelihood-ratio test failed: {str(e)}", exc_info=True)
            return _failed_result(pipeline, "lrt", comparison, f"Model fit failed: {str(e)}")

        padj = pd.Series(np.nan, index=tests.index)
        tested = tests["pvalue"].notna()
        if tested.any():
            padj[tested] = multipletests(tests.loc[tested, "pvalue"], method="fdr_bh")[1]

        results_df = pd.DataFrame(
            {
                "gene": tests.index,
                "baseMean": normalized_df.mean(axis=0).loc[tests.index].values,
                "log2FoldChange": (tests["coef"] / np.log(2)).values,
                "lfcSE": np.nan,
                "stat": tests["stat"].values,
                "pvalue": tests["pvalue"].values,
                "padj": padj.values,
            }
        )

        n_sig = int((results_df["padj"] < self.padj_threshold).sum())
        logger.info(
            f"{pipeline}: {n_sig} of {len(results_df)} genes with padj < {self.padj_threshold}"
        )
        return DEResult(
            pipeline=pipeline,
            test="lrt",
            results_df=results_df,
            normalized_counts=normalized_df,
            comparison=comparison,
            n_significant=n_sig,
            warnings=[],
        )


def filter_results(
    results_df: pd.DataFrame,
    padj_threshold: float = 0.05,
    lfc_threshold: float = 1.0,
) -> pd.DataFrame:
    """
    Filter DE results to significant genes.

    Args:
        results_df: DE results DataFrame
        padj_threshold: Adjusted p-value threshold (default: 0.05)
        lfc_threshold: Absolute log2 fold change threshold (default: 1.0)

    Returns:
        Filtered DataFrame with significant genes only
    """
    return results_df[
        (results_df["padj"] < padj_threshold)
        & (abs(results_df["log2FoldChange"]) > lfc_threshold)
    ].copy()


def summarize_pipelines(results: Dict[str, DEResult]) -> pd.DataFrame:
    """Status and significant-gene count per pipeline."""
    rows = []
    for name, result in results.items():
        rows.append(
            {
                "pipeline": name,
                "test": result.test,
                "comparison": f"{result.comparison[0]}_vs_{result.comparison[1]}",
                "genes_tested": int(result.results_df["pvalue"].notna().sum()) if not result.results_df.empty else 0,
                "n_significant": result.n_significant,
                "status": "FAILED" if result.failed else "SUCCESS",
                "warnings": "; ".join(result.warnings),
            }
        )
    return pd.DataFrame(rows)
