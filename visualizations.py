"""
Interactive visualizations for the pipeline comparison using Plotly.

Provides volcano, MA, annotated heatmap, PCA (single source and overlay),
Venn and effect-size scatter plots.
"""

from itertools import product
from typing import Dict, List, Optional
import pandas as pd
import numpy as np
import plotly.graph_objects as go
import plotly.express as px
from plotly.subplots import make_subplots
from scipy.cluster.hierarchy import linkage, leaves_list
from scipy.spatial.distance import pdist

from de_analysis import ensure_gene_column
from dimensionality import PCAResult


def _classify_significance(
    df: pd.DataFrame, padj_threshold: float, lfc_threshold: float
) -> pd.Series:
    significant = df["padj"] < padj_threshold
    labels = pd.Series("NS", index=df.index)
    labels[significant & (df["log2FoldChange"] > lfc_threshold)] = "Up"
    labels[significant & (df["log2FoldChange"] < -lfc_threshold)] = "Down"
    return labels


def create_volcano_plot(
    results_df: pd.DataFrame,
    lfc_threshold: float = 1.0,
    padj_threshold: float = 0.05,
    top_n_labels: int = 10,
    title: str = "Volcano Plot",
    gene_symbols: Optional[Dict[str, str]] = None,
) -> go.Figure:
    """
    Create interactive volcano plot from DE results.

    Args:
        results_df: DataFrame with columns: gene, log2FoldChange, padj
        lfc_threshold: Log2 fold change threshold for significance (default: 1.0)
        padj_threshold: Adjusted p-value threshold (default: 0.05)
        top_n_labels: Number of most significant genes to label
        title: Plot title (usually the pipeline id)
        gene_symbols: Optional gene id → symbol mapping for hover and labels

    Returns:
        Plotly Figure object
    """
    if results_df is None or results_df.empty:
        raise ValueError(
            "Cannot create volcano plot: results_df is empty or None. "
            "Ensure your differential expression analysis produced results."
        )

    results_df = ensure_gene_column(results_df)

    required_cols = ["gene", "log2FoldChange", "padj"]
    missing = [col for col in required_cols if col not in results_df.columns]
    if missing:
        raise ValueError(
            f"Cannot create volcano plot: missing required columns {missing}. "
            f"Found columns: {', '.join(results_df.columns.tolist()[:5])}. "
            f"Suggestion: Ensure your DE results contain 'gene', 'log2FoldChange' and 'padj'."
        )

    # Genes untested by independent filtering carry NaN padj
    df = results_df.dropna(subset=["padj", "log2FoldChange"]).copy()
    if df.empty:
        raise ValueError(
            "Cannot create volcano plot: all padj values are NaN. "
            "Ensure differential expression analysis completed successfully."
        )

    df["-log10_padj"] = -np.log10(df["padj"].clip(lower=1e-300))
    df["significance"] = _classify_significance(df, padj_threshold, lfc_threshold)
    df["label"] = df["gene"].map(gene_symbols).fillna(df["gene"]) if gene_symbols else df["gene"]

    fig = px.scatter(
        df,
        x="log2FoldChange",
        y="-log10_padj",
        color="significance",
        hover_name="label",
        hover_data={
            "gene": True,
            "log2FoldChange": ":.2f",
            "padj": ":.2e",
            "-log10_padj": False,
            "significance": False,
        },
        color_discrete_map={"Up": "red", "Down": "blue", "NS": "lightgray"},
        labels={"log2FoldChange": "log₂(Fold Change)", "-log10_padj": "-log₁₀(padj)"},
    )

    fig.add_hline(y=-np.log10(padj_threshold), line_dash="dash", line_color="gray")
    fig.add_vline(x=lfc_threshold, line_dash="dash", line_color="gray")
    fig.add_vline(x=-lfc_threshold, line_dash="dash", line_color="gray")

    if top_n_labels > 0:
        top_genes = df[df["padj"] < padj_threshold].nsmallest(top_n_labels, "padj")
        if not top_genes.empty:
            fig.add_trace(
                go.Scatter(
                    x=top_genes["log2FoldChange"],
                    y=top_genes["-log10_padj"],
                    mode="text",
                    text=top_genes["label"],
                    textposition="top center",
                    textfont=dict(size=9),
                    showlegend=False,
                    hoverinfo="skip",
                )
            )

    fig.update_layout(title=title, showlegend=True)
    return fig


def create_ma_plot(
    results_df: pd.DataFrame,
    padj_threshold: float = 0.05,
    lfc_threshold: float = 1.0,
    title: str = "MA Plot",
) -> go.Figure:
    """
    Create MA plot (log mean expression vs log2 fold change).

    Args:
        results_df: DataFrame with columns: gene, log2FoldChange, padj, baseMean
        padj_threshold: Adjusted p-value threshold (default: 0.05)
        lfc_threshold: Log2 fold change threshold (default: 1.0)
        title: Plot title

    Returns:
        Plotly Figure object
    """
    if results_df is None or results_df.empty:
        raise ValueError("Cannot create MA plot: results_df is empty or None.")

    results_df = ensure_gene_column(results_df)

    required_cols = ["gene", "log2FoldChange", "padj", "baseMean"]
    missing = [c for c in required_cols if c not in results_df.columns]
    if missing:
        raise ValueError(f"Cannot create MA plot: missing columns {missing}.")

    df = results_df.dropna(subset=["padj", "log2FoldChange", "baseMean"]).copy()
    if df.empty:
        raise ValueError("Cannot create MA plot: no valid data after removing NaN values.")

    df["log10_baseMean"] = np.log10(df["baseMean"] + 1)
    df["significance"] = _classify_significance(df, padj_threshold, lfc_threshold)

    fig = px.scatter(
        df,
        x="log10_baseMean",
        y="log2FoldChange",
        color="significance",
        hover_name="gene",
        hover_data={
            "log2FoldChange": ":.2f",
            "padj": ":.2e",
            "log10_baseMean": False,
            "significance": False,
        },
        color_discrete_map={"Up": "red", "Down": "blue", "NS": "lightgray"},
        labels={
            "log10_baseMean": "log₁₀(baseMean + 1)",
            "log2FoldChange": "log₂(Fold Change)",
        },
    )

    fig.add_hline(y=lfc_threshold, line_dash="dash", line_color="gray")
    fig.add_hline(y=-lfc_threshold, line_dash="dash", line_color="gray")
    fig.add_hline(y=0, line_color="black", line_width=0.5)

    fig.update_layout(title=title, showlegend=True)
    return fig


def _discrete_colorscale(colors: List[str]) -> List[list]:
    """Stepped colorscale mapping integer codes 0..n-1 to colors."""
    n = len(colors)
    if n == 1:
        return [[0.0, colors[0]], [1.0, colors[0]]]
    scale = []
    for i, color in enumerate(colors):
        scale.append([i / n, color])
        scale.append([(i + 1) / n, color])
    return scale


def create_clustered_heatmap(
    expression_df: pd.DataFrame,
    sample_annotations: Dict[str, Dict[str, str]],
    de_results_df: Optional[pd.DataFrame] = None,
    top_n_genes: int = 50,
    z_score: bool = True,
    gene_symbols: Optional[Dict[str, str]] = None,
    sort_by: Optional[str] = None,
    title: Optional[str] = None,
) -> go.Figure:
    """
    Create heatmap with gene clustering and per-sample annotation tracks.

    Gene selection: top N by padj when de_results_df is given, otherwise top N
    by variance (also the fallback when fewer than 10 DE genes are present).

    Args:
        expression_df: genes × samples (VST or log2 normalized)
        sample_annotations: track name → {sample: label}, e.g.
            {"response": {"Pt1": "responder", ...}}
        de_results_df: Optional DE results with 'gene', 'padj' columns
        top_n_genes: Number of genes to display (default: 50)
        z_score: Apply per-gene z-score across samples (default: True)
        gene_symbols: Optional gene id → symbol mapping for row labels
        sort_by: Annotation track used to group samples (default: first track)
        title: Plot title

    Returns:
        Plotly Figure object

    Note: Only genes (rows) are clustered; samples are grouped by annotation.
    """
    if expression_df is None or expression_df.empty:
        raise ValueError(
            "Cannot create heatmap: expression_df is empty or None. "
            "Ensure your expression data contains samples and genes."
        )

    if not sample_annotations:
        raise ValueError(
            "Cannot create heatmap: sample_annotations is empty. "
            "Provide at least one mapping of sample names to labels (e.g. response)."
        )

    track_names = list(sample_annotations.keys())
    sort_track = sort_by or track_names[0]
    missing_samples = [s for s in expression_df.columns if s not in sample_annotations[sort_track]]
    if missing_samples:
        raise ValueError(
            f"Cannot create heatmap: {len(missing_samples)} samples missing from the "
            f"'{sort_track}' annotation. Missing: {', '.join(missing_samples[:3])}"
            f"{'...' if len(missing_samples) > 3 else ''}. "
            f"Suggestion: Ensure all sample names in expression_df are annotated."
        )

    top_genes: List[str] = []
    if de_results_df is not None and not de_results_df.empty:
        de_results_df = ensure_gene_column(de_results_df)
        ranked = de_results_df.dropna(subset=["padj"]).nsmallest(top_n_genes, "padj")["gene"]
        top_genes = [g for g in ranked if g in expression_df.index]
    if len(top_genes) < 10:
        top_genes = expression_df.var(axis=1).nlargest(top_n_genes).index.tolist()

    plot_data = expression_df.loc[top_genes]

    if z_score:
        std = plot_data.std(axis=1).replace(0, np.nan)
        plot_data = plot_data.sub(plot_data.mean(axis=1), axis=0).div(std, axis=0).fillna(0)

    sample_order = sorted(plot_data.columns, key=lambda s: (sample_annotations[sort_track].get(s, ""), s))
    plot_data = plot_data[sample_order]

    if len(plot_data) > 1:
        linkage_matrix = linkage(pdist(plot_data.values, metric="euclidean"), method="average")
        plot_data = plot_data.iloc[leaves_list(linkage_matrix)]

    row_labels = (
        [gene_symbols.get(g, g) for g in plot_data.index] if gene_symbols else plot_data.index.tolist()
    )

    n_tracks = len(track_names)
    fig = make_subplots(
        rows=n_tracks + 1,
        cols=1,
        shared_xaxes=True,
        vertical_spacing=0.01,
        row_heights=[0.04] * n_tracks + [1.0 - 0.04 * n_tracks],
    )

    palette = px.colors.qualitative.Set2 + px.colors.qualitative.Pastel1
    color_offset = 0
    for row, track in enumerate(track_names, start=1):
        labels = [str(sample_annotations[track].get(s, "NA")) for s in sample_order]
        categories = sorted(set(labels))
        colors = palette[color_offset:color_offset + len(categories)]
        color_offset += len(categories)
        codes = [categories.index(label) for label in labels]
        fig.add_trace(
            go.Heatmap(
                z=[codes],
                x=sample_order,
                y=[track],
                text=[labels],
                colorscale=_discrete_colorscale(colors),
                zmin=-0.5,
                zmax=len(categories) - 0.5,
                showscale=False,
                hovertemplate=f"Sample: %{{x}}<br>{track}: %{{text}}<extra></extra>",
            ),
            row=row, col=1,
        )
        # Legend entries for the annotation categories
        for category, color in zip(categories, colors):
            fig.add_trace(
                go.Scatter(
                    x=[None], y=[None], mode="markers",
                    marker=dict(size=10, color=color, symbol="square"),
                    name=f"{track}: {category}",
                    showlegend=True,
                ),
                row=row, col=1,
            )

    fig.add_trace(
        go.Heatmap(
            z=plot_data.values,
            x=sample_order,
            y=row_labels,
            colorscale="RdBu_r",
            zmid=0,
            colorbar=dict(title="z-score" if z_score else "expression"),
            hovertemplate="Gene: %{y}<br>Sample: %{x}<br>Expression: %{z:.2f}<extra></extra>",
        ),
        row=n_tracks + 1, col=1,
    )

    fig.update_layout(
        title=title or f"Clustered Heatmap (Top {len(plot_data)} Genes)",
        height=max(450, len(plot_data) * 12 + 100 * n_tracks),
        legend=dict(orientation="h", y=-0.08),
    )
    fig.update_xaxes(showticklabels=False)
    fig.update_xaxes(showticklabels=True, title_text="Samples", row=n_tracks + 1, col=1)
    return fig


def create_pca_plot(
    pca_result: PCAResult,
    sample_conditions: Dict[str, str],
    show_ellipses: bool = True,
    title: str = "PCA Plot",
) -> go.Figure:
    """
    Create PCA plot for sample clustering visualization.

    Args:
        pca_result: Output of dimensionality.compute_pca
        sample_conditions: Dict[sample_name, condition]
        show_ellipses: Draw 95% confidence ellipses per condition
        title: Plot title

    Returns:
        Plotly Figure object
    """
    if pca_result is None or pca_result.coords.empty:
        raise ValueError("Cannot create PCA plot: no PCA coordinates provided.")
    if pca_result.coords.shape[1] < 2:
        raise ValueError(
            "Cannot create PCA plot: at least 2 principal components are required."
        )
    if not sample_conditions:
        raise ValueError(
            "Cannot create PCA plot: sample_conditions is empty. "
            "Provide a mapping of sample names to experimental conditions for coloring."
        )

    pca_df = pca_result.coords[["PC1", "PC2"]].copy()
    pca_df["condition"] = [sample_conditions.get(s, "Unknown") for s in pca_df.index]
    pca_df["sample"] = pca_df.index
    ratio = pca_result.explained_variance_ratio

    fig = px.scatter(
        pca_df,
        x="PC1",
        y="PC2",
        color="condition",
        hover_name="sample",
        labels={
            "PC1": f"PC1 ({ratio[0] * 100:.1f}%)",
            "PC2": f"PC2 ({ratio[1] * 100:.1f}%)",
        },
    )

    if show_ellipses:
        colors = px.colors.qualitative.Plotly
        for i, cond in enumerate(sorted(pca_df["condition"].unique())):
            group = pca_df[pca_df["condition"] == cond]
            if len(group) < 3:
                continue
            ellipse_pts = _confidence_ellipse(group["PC1"].values, group["PC2"].values)
            fig.add_trace(
                go.Scatter(
                    x=ellipse_pts[:, 0],
                    y=ellipse_pts[:, 1],
                    mode="lines",
                    line=dict(color=colors[i % len(colors)], dash="dash", width=1.5),
                    showlegend=False,
                    hoverinfo="skip",
                )
            )

    fig.update_layout(title=title, showlegend=True)
    return fig


def _confidence_ellipse(x: np.ndarray, y: np.ndarray, chi2_quantile: float = 5.991) -> np.ndarray:
    """Points of the 95% ellipse (chi2 with 2 df) around a 2-D point cloud."""
    cov = np.cov(x, y)
    eigenvalues, eigenvectors = np.linalg.eigh(cov)
    order = eigenvalues.argsort()[::-1]
    eigenvalues = eigenvalues[order]
    eigenvectors = eigenvectors[:, order]
    theta = np.linspace(0, 2 * np.pi, 100)
    circle = np.array([np.cos(theta), np.sin(theta)])
    transform = eigenvectors @ np.diag(np.sqrt(np.maximum(eigenvalues, 0) * chi2_quantile))
    return (transform @ circle).T + np.array([x.mean(), y.mean()])


def create_pca_overlay_plot(
    pca_result: PCAResult,
    sample_conditions: Dict[str, str],
    title: str = "PCA Overlay of Quantification Sources",
) -> go.Figure:
    """
    Joint PCA of several quantification sources.

    Colour encodes the response label, marker symbol the source; a grey line
    connects the two projections of each sample when exactly two sources are
    overlaid.

    Args:
        pca_result: Output of dimensionality.compute_overlay_pca
        sample_conditions: Dict[sample_name, condition]
        title: Plot title

    Returns:
        Plotly Figure object
    """
    coords = pca_result.coords
    if "source" not in coords.columns or "sample" not in coords.columns:
        raise ValueError(
            "Cannot create PCA overlay: coordinates lack 'source'/'sample' columns. "
            "Suggestion: compute them with compute_overlay_pca()."
        )

    df = coords.copy()
    df["condition"] = [sample_conditions.get(s, "Unknown") for s in df["sample"]]
    ratio = pca_result.explained_variance_ratio

    fig = go.Figure()
    sources = list(dict.fromkeys(df["source"]))
    if len(sources) == 2:
        for sample, group in df.groupby("sample"):
            if len(group) == 2:
                fig.add_trace(
                    go.Scatter(
                        x=group["PC1"], y=group["PC2"], mode="lines",
                        line=dict(color="lightgray", width=1),
                        showlegend=False, hoverinfo="skip",
                    )
                )

    colors = px.colors.qualitative.Plotly
    symbols = ["circle", "diamond", "square", "triangle-up"]
    conditions = sorted(df["condition"].unique())
    for (ci, cond), (si, source) in product(enumerate(conditions), enumerate(sources)):
        group = df[(df["condition"] == cond) & (df["source"] == source)]
        if group.empty:
            continue
        fig.add_trace(
            go.Scatter(
                x=group["PC1"],
                y=group["PC2"],
                mode="markers",
                marker=dict(size=10, color=colors[ci % len(colors)], symbol=symbols[si % len(symbols)]),
                name=f"{cond} ({source})",
                text=group["sample"],
                hovertemplate="<b>%{text}</b><br>PC1: %{x:.2f}<br>PC2: %{y:.2f}<extra>" + source + "</extra>",
            )
        )

    fig.update_layout(
        title=title,
        xaxis_title=f"PC1 ({ratio[0] * 100:.1f}%)",
        yaxis_title=f"PC2 ({ratio[1] * 100:.1f}%)",
        showlegend=True,
    )
    return fig


def create_effect_size_scatter(
    combined_df: pd.DataFrame,
    pipeline_x: str,
    pipeline_y: str,
    padj_threshold: float = 0.05,
) -> go.Figure:
    """
    Scatter of log2 fold changes from two pipelines with the least-squares line.

    Args:
        combined_df: Output of pipeline_comparison.combine_results
        pipeline_x: Pipeline on the x axis
        pipeline_y: Pipeline on the y axis
        padj_threshold: Genes significant in both are highlighted

    Returns:
        Plotly Figure object
    """
    col_x, col_y = f"log2FoldChange_{pipeline_x}", f"log2FoldChange_{pipeline_y}"
    missing = [c for c in (col_x, col_y) if c not in combined_df.columns]
    if missing:
        raise ValueError(
            f"Cannot create effect size scatter: missing columns {missing}. "
            f"Suggestion: check pipeline names against the combined table."
        )

    df = combined_df.replace([np.inf, -np.inf], np.nan).dropna(subset=[col_x, col_y]).copy()
    if len(df) < 2:
        raise ValueError(
            f"Cannot create effect size scatter: {len(df)} genes have estimates in both "
            f"{pipeline_x} and {pipeline_y}."
        )

    sig_x = df.get(f"padj_{pipeline_x}", pd.Series(np.nan, index=df.index)) < padj_threshold
    sig_y = df.get(f"padj_{pipeline_y}", pd.Series(np.nan, index=df.index)) < padj_threshold
    df["agreement"] = "neither"
    df.loc[sig_x & ~sig_y, "agreement"] = f"{pipeline_x} only"
    df.loc[~sig_x & sig_y, "agreement"] = f"{pipeline_y} only"
    df.loc[sig_x & sig_y, "agreement"] = "both"
    hover = "symbol" if "symbol" in df.columns else "gene"

    fig = px.scatter(
        df,
        x=col_x,
        y=col_y,
        color="agreement",
        hover_name=hover,
        color_discrete_map={
            "neither": "lightgray",
            f"{pipeline_x} only": "royalblue",
            f"{pipeline_y} only": "crimson",
            "both": "purple",
        },
        labels={col_x: f"log₂FC ({pipeline_x})", col_y: f"log₂FC ({pipeline_y})"},
    )

    slope, intercept = np.polyfit(df[col_x], df[col_y], 1)
    r = np.corrcoef(df[col_x], df[col_y])[0, 1]
    x_line = np.array([df[col_x].min(), df[col_x].max()])
    fig.add_trace(
        go.Scatter(
            x=x_line,
            y=slope * x_line + intercept,
            mode="lines",
            line=dict(color="black", dash="dash"),
            name=f"fit: y = {slope:.2f}x + {intercept:.2f} (r = {r:.2f})",
        )
    )
    fig.update_layout(title=f"Effect sizes: {pipeline_x} vs {pipeline_y}", showlegend=True)
    return fig


# Circle geometry (x0, y0, x1, y1), colour and region label anchors for 2 and 3 sets
_VENN_LAYOUTS = {
    2: {
        "circles": [(0.1, 0.15, 0.55, 0.85), (0.45, 0.15, 0.9, 0.85)],
        "names": [(0.25, 0.9), (0.75, 0.9)],
        "regions": {(1, 0): (0.25, 0.5), (0, 1): (0.75, 0.5), (1, 1): (0.5, 0.5)},
        "size": (550, 450),
    },
    3: {
        "circles": [(0.15, 0.25, 0.6, 0.9), (0.4, 0.25, 0.85, 0.9), (0.27, 0.1, 0.73, 0.65)],
        "names": [(0.2, 0.93), (0.8, 0.93), (0.5, 0.05)],
        "regions": {
            (1, 0, 0): (0.28, 0.72), (0, 1, 0): (0.72, 0.72), (0, 0, 1): (0.5, 0.22),
            (1, 1, 0): (0.5, 0.75), (1, 0, 1): (0.35, 0.42), (0, 1, 1): (0.65, 0.42),
            (1, 1, 1): (0.5, 0.52),
        },
        "size": (600, 550),
    },
}
_VENN_COLORS = [("royalblue", "rgba(65,105,225,0.2)"), ("crimson", "rgba(220,20,60,0.2)"),
                ("forestgreen", "rgba(34,139,34,0.2)")]


def create_venn_diagram(
    gene_sets: Dict[str, set],
    title: str = "Significant Gene Overlap",
) -> go.Figure:
    """
    Create a Venn diagram of 2 or 3 significant gene sets.

    Args:
        gene_sets: Dict mapping pipeline id → set of gene ids
        title: Plot title

    Returns:
        Plotly Figure object
    """
    set_names = list(gene_sets.keys())
    n = len(set_names)
    if n not in _VENN_LAYOUTS:
        raise ValueError(
            f"A Venn diagram needs 2 or 3 gene sets, got {n}. "
            f"Suggestion: drop failed pipelines or compare pipelines pairwise."
        )

    layout = _VENN_LAYOUTS[n]
    sets = [gene_sets[k] for k in set_names]
    universe = set().union(*sets)

    shapes = []
    for (x0, y0, x1, y1), (line_color, fill) in zip(layout["circles"], _VENN_COLORS):
        shapes.append(
            dict(type="circle", x0=x0, y0=y0, x1=x1, y1=y1,
                 line=dict(color=line_color, width=2), fillcolor=fill)
        )

    annotations = []
    for membership, (x, y) in layout["regions"].items():
        region = {g for g in universe if tuple(int(g in s) for s in sets) == membership}
        annotations.append(
            dict(x=x, y=y, text=str(len(region)), showarrow=False, font=dict(size=16))
        )
    for name, (x, y) in zip(set_names, layout["names"]):
        annotations.append(
            dict(x=x, y=y, text=f"{name} ({len(gene_sets[name])})", showarrow=False,
                 font=dict(size=12))
        )

    width, height = layout["size"]
    fig = go.Figure()
    fig.update_layout(
        title=title,
        shapes=shapes,
        annotations=annotations,
        xaxis=dict(visible=False, range=[0, 1]),
        yaxis=dict(visible=False, range=[0, 1], scaleanchor="x"),
        width=width,
        height=height,
    )
    return fig


def compute_de_summary(
    results_df: pd.DataFrame, padj_threshold: float = 0.05, lfc_threshold: float = 1.0
) -> dict:
    """
    Compute summary statistics from DE results.

    Args:
        results_df: DataFrame with columns: gene, log2FoldChange, padj
        padj_threshold: Adjusted p-value threshold (default: 0.05)
        lfc_threshold: Log2 fold change threshold (default: 1.0)

    Returns:
        Dict with total_genes, significant_genes, upregulated, downregulated,
        top_up_genes, top_down_genes, top_significant
    """
    if results_df is None or results_df.empty:
        raise ValueError("Cannot compute DE summary: results_df is empty or None.")

    results_df = ensure_gene_column(results_df)
    df = results_df.dropna(subset=["padj", "log2FoldChange"]).copy()

    sig = df[df["padj"] < padj_threshold]
    up = sig[sig["log2FoldChange"] > lfc_threshold]
    down = sig[sig["log2FoldChange"] < -lfc_threshold]

    def as_tuples(frame: pd.DataFrame) -> list:
        return list(frame[["gene", "log2FoldChange", "padj"]].itertuples(index=False, name=None))

    return {
        "total_genes": len(df),
        "significant_genes": len(sig),
        "upregulated": len(up),
        "downregulated": len(down),
        "top_up_genes": as_tuples(up.nlargest(10, "log2FoldChange")),
        "top_down_genes": as_tuples(down.nsmallest(10, "log2FoldChange")),
        "top_significant": as_tuples(sig.nsmallest(10, "padj")),
    }
