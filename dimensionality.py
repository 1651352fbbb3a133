"""PCA of variance-stabilized expression, per source and across sources."""

from dataclasses import dataclass
from typing import Dict, List, Optional
import logging
import pandas as pd
import numpy as np
from sklearn.decomposition import PCA

logger = logging.getLogger(__name__)


@dataclass
class PCAResult:
    """Sample coordinates in principal-component space."""

    coords: pd.DataFrame  # samples × PCs (PC1, PC2, ...), plus "source" for overlays
    explained_variance_ratio: np.ndarray
    genes_used: List[str]


def top_variable_genes(expression_df: pd.DataFrame, top_n: Optional[int] = 500) -> List[str]:
    """Genes (columns) with the highest variance across samples."""
    variances = expression_df.var(axis=0)
    if top_n is None or top_n >= len(variances):
        return variances.index.tolist()
    return variances.nlargest(top_n).index.tolist()


def compute_pca(
    expression_df: pd.DataFrame,
    n_components: int = 3,
    top_n_genes: Optional[int] = 500,
) -> PCAResult:
    """
    PCA on the most variable genes.

    Args:
        expression_df: samples × genes (VST or log2 normalized)
        n_components: Number of components to keep
        top_n_genes: Restrict to the N most variable genes (None: all genes)

    Returns:
        PCAResult with PC1..PCn coordinates per sample
    """
    if expression_df is None or expression_df.empty:
        raise ValueError(
            "Cannot compute PCA: expression_df is empty or None. "
            "Ensure the expression matrix contains samples and genes."
        )
    if expression_df.shape[0] < 2:
        raise ValueError(
            f"Cannot compute PCA: requires at least 2 samples, but got {expression_df.shape[0]}."
        )

    genes = top_variable_genes(expression_df, top_n_genes)
    data = expression_df[genes]
    n_components = min(n_components, data.shape[0], data.shape[1])

    pca = PCA(n_components=n_components)
    # Centered, not scaled
    coords = pca.fit_transform(data.values)

    coords_df = pd.DataFrame(
        coords,
        index=expression_df.index,
        columns=[f"PC{i + 1}" for i in range(n_components)],
    )
    return PCAResult(
        coords=coords_df,
        explained_variance_ratio=pca.explained_variance_ratio_,
        genes_used=genes,
    )


def compute_overlay_pca(
    matrices: Dict[str, pd.DataFrame],
    n_components: int = 3,
    top_n_genes: Optional[int] = 500,
) -> PCAResult:
    """
    Joint PCA of several sources on their shared genes.

    Each sample appears once per source; rows are labelled "<source>:<sample>"
    and carry "source" and "sample" columns.

    Args:
        matrices: source name → samples × genes VST matrix

    Returns:
        PCAResult whose coords include "source" and "sample" columns
    """
    if len(matrices) < 2:
        raise ValueError("At least 2 expression sources are required for a PCA overlay.")

    shared = None
    for df in matrices.values():
        shared = set(df.columns) if shared is None else shared & set(df.columns)
    if not shared:
        raise ValueError(
            "Cannot overlay PCA: sources share no genes. "
            "Suggestion: check that both matrices use the same gene identifiers."
        )
    shared_genes = sorted(shared)
    logger.info(f"PCA overlay on {len(shared_genes)} genes shared by {', '.join(matrices)}")

    frames = []
    for source, df in matrices.items():
        part = df[shared_genes].copy()
        part.index = [f"{source}:{s}" for s in df.index]
        frames.append(part)
    stacked = pd.concat(frames, axis=0)

    result = compute_pca(stacked, n_components=n_components, top_n_genes=top_n_genes)
    coords = result.coords
    coords["source"] = [label.split(":", 1)[0] for label in coords.index]
    coords["sample"] = [label.split(":", 1)[1] for label in coords.index]
    return result
