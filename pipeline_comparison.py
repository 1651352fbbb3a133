"""
Cross-pipeline comparison of differential expression results.

Joins the per-pipeline result tables on gene id, correlates their effect-size
estimates and measures the overlap of their significant gene sets.
"""

from itertools import combinations
from typing import Dict, List, Optional
import logging
import pandas as pd
import numpy as np
from scipy import stats

from de_analysis import DEResult, ensure_gene_column

logger = logging.getLogger(__name__)

JOIN_COLUMNS = ["baseMean", "log2FoldChange", "pvalue", "padj"]


def combine_results(
    results: Dict[str, DEResult],
    gene_symbols: Optional[Dict[str, str]] = None,
) -> pd.DataFrame:
    """
    Outer-join the pipeline result tables on gene id.

    Args:
        results: pipeline id → DEResult (failed pipelines are skipped)
        gene_symbols: Optional gene id → symbol mapping

    Returns:
        DataFrame with a "gene" column, an optional "symbol" column, and
        "<column>_<pipeline>" for each of baseMean, log2FoldChange, pvalue, padj
    """
    combined = None
    for name, result in results.items():
        if result.failed or result.results_df.empty:
            logger.warning(f"Skipping {name} in comparison table: no results")
            continue
        df = ensure_gene_column(result.results_df)[["gene"] + JOIN_COLUMNS].copy()
        df = df.drop_duplicates(subset="gene")
        df.columns = ["gene"] + [f"{c}_{name}" for c in JOIN_COLUMNS]
        combined = df if combined is None else combined.merge(df, on="gene", how="outer")

    if combined is None:
        raise ValueError(
            "Cannot combine results: every pipeline failed or returned no genes."
        )

    if gene_symbols:
        combined.insert(1, "symbol", combined["gene"].map(gene_symbols).fillna(combined["gene"]))
    return combined.sort_values("gene").reset_index(drop=True)


def effect_size_correlations(
    combined: pd.DataFrame, pipelines: List[str]
) -> pd.DataFrame:
    """
    Pairwise agreement of log2 fold changes.

    For every pair of pipelines, on genes with finite estimates in both:
    Pearson r, Spearman rho, and the least-squares fit of the second
    pipeline's estimates on the first's.

    Returns:
        One row per pair: pipeline_x, pipeline_y, n_genes, pearson_r,
        pearson_p, spearman_rho, spearman_p, slope, intercept, r_squared
    """
    rows = []
    for x, y in combinations(pipelines, 2):
        col_x, col_y = f"log2FoldChange_{x}", f"log2FoldChange_{y}"
        if col_x not in combined.columns or col_y not in combined.columns:
            continue
        pair = combined[[col_x, col_y]].replace([np.inf, -np.inf], np.nan).dropna()
        row = {"pipeline_x": x, "pipeline_y": y, "n_genes": len(pair)}
        if len(pair) >= 3:
            pearson_r, pearson_p = stats.pearsonr(pair[col_x], pair[col_y])
            spearman_rho, spearman_p = stats.spearmanr(pair[col_x], pair[col_y])
            fit = stats.linregress(pair[col_x], pair[col_y])
            row.update(
                pearson_r=float(pearson_r),
                pearson_p=float(pearson_p),
                spearman_rho=float(spearman_rho),
                spearman_p=float(spearman_p),
                slope=float(fit.slope),
                intercept=float(fit.intercept),
                r_squared=float(fit.rvalue ** 2),
            )
        else:
            logger.warning(f"Too few shared genes ({len(pair)}) to correlate {x} and {y}")
            row.update(
                pearson_r=np.nan, pearson_p=np.nan, spearman_rho=np.nan, spearman_p=np.nan,
                slope=np.nan, intercept=np.nan, r_squared=np.nan,
            )
        rows.append(row)
    return pd.DataFrame(rows)


def significant_sets(
    results: Dict[str, DEResult], padj_threshold: float = 0.05
) -> Dict[str, set]:
    """Significant gene set per successful pipeline."""
    return {
        name: result.significant_genes(padj_threshold)
        for name, result in results.items()
        if not result.failed
    }


def overlap_table(gene_sets: Dict[str, set]) -> pd.DataFrame:
    """
    Size of every exclusive Venn region.

    Returns:
        One row per non-empty membership combination: one boolean column per
        set, "n_genes", and "genes" (sorted, ';'-joined)
    """
    names = list(gene_sets.keys())
    universe = set().union(*gene_sets.values()) if gene_sets else set()

    regions: Dict[tuple, List[str]] = {}
    for gene in universe:
        key = tuple(gene in gene_sets[n] for n in names)
        regions.setdefault(key, []).append(gene)

    rows = []
    for key, genes in regions.items():
        row = dict(zip(names, key))
        row["n_genes"] = len(genes)
        row["genes"] = ";".join(sorted(genes))
        rows.append(row)

    columns = names + ["n_genes", "genes"]
    if not rows:
        return pd.DataFrame(columns=columns)
    table = pd.DataFrame(rows)[columns]
    # Regions shared by more pipelines first
    table["_n_sets"] = table[names].sum(axis=1)
    table = table.sort_values(["_n_sets", "n_genes"], ascending=[False, False])
    return table.drop(columns="_n_sets").reset_index(drop=True)
