"""Sample QC visualizations for the pipeline comparison."""

from typing import Dict, Optional
import pandas as pd
import numpy as np
import plotly.graph_objects as go
import plotly.express as px


def create_mapping_rate_barplot(
    qc_df: pd.DataFrame, min_percent_mapped: Optional[float] = None
) -> go.Figure:
    """
    Bar plot of percent of reads pseudo-aligned per sample.

    Excluded samples are drawn in red when qc_df carries an "excluded" column.

    Args:
        qc_df: QC summary indexed by sample with percent_mapped (and optionally
            excluded, exclusion_reason) columns
        min_percent_mapped: Absolute floor drawn as a dashed line

    Returns:
        Plotly Figure object
    """
    if qc_df is None or qc_df.empty:
        raise ValueError("Cannot create mapping rate plot: qc_df is empty or None.")

    df = qc_df.sort_values("percent_mapped", ascending=False)
    excluded = df["excluded"] if "excluded" in df.columns else pd.Series(False, index=df.index)
    reasons = df["exclusion_reason"] if "exclusion_reason" in df.columns else pd.Series("", index=df.index)

    fig = go.Figure()
    fig.add_trace(
        go.Bar(
            x=df.index.tolist(),
            y=df["percent_mapped"].values,
            marker_color=["crimson" if e else "steelblue" for e in excluded],
            customdata=reasons.values,
            hovertemplate="Sample: %{x}<br>Mapped: %{y:.1f}%<br>%{customdata}<extra></extra>",
            name="Percent mapped",
        )
    )
    if min_percent_mapped is not None:
        fig.add_hline(
            y=min_percent_mapped,
            line_dash="dash",
            line_color="red",
            annotation_text=f"Minimum: {min_percent_mapped:g}%",
            annotation_position="top right",
        )
    fig.update_layout(
        title="Percent of Reads Pseudo-aligned per Sample",
        xaxis_title="Sample",
        yaxis_title="Percent mapped",
        yaxis=dict(range=[0, 100]),
        showlegend=False,
    )
    return fig


def create_read_depth_barplot(qc_df: pd.DataFrame) -> go.Figure:
    """
    Stacked bar plot of mapped and unmapped reads per sample.

    Args:
        qc_df: QC summary with n_processed and n_pseudoaligned columns

    Returns:
        Plotly Figure object
    """
    if qc_df is None or qc_df.empty:
        raise ValueError("Cannot create read depth plot: qc_df is empty or None.")

    df = qc_df.sort_values("n_processed", ascending=False)
    mean_depth = df["n_processed"].mean()

    fig = go.Figure()
    fig.add_trace(
        go.Bar(x=df.index.tolist(), y=df["n_pseudoaligned"].values,
               marker_color="steelblue", name="Mapped")
    )
    fig.add_trace(
        go.Bar(x=df.index.tolist(), y=(df["n_processed"] - df["n_pseudoaligned"]).values,
               marker_color="lightgray", name="Unmapped")
    )
    fig.add_hline(
        y=mean_depth,
        line_dash="dash",
        line_color="red",
        annotation_text=f"Mean: {mean_depth:,.0f}",
        annotation_position="top right",
    )
    fig.update_layout(
        barmode="stack",
        title="Reads Processed per Sample",
        xaxis_title="Sample",
        yaxis_title="Reads",
    )
    return fig


def create_count_distribution_boxplot(
    counts_df: pd.DataFrame,
    sample_conditions: Optional[Dict[str, str]] = None,
    log_transform: bool = True,
    title: str = "Expression Distribution per Sample",
) -> go.Figure:
    """
    Box plot of expression distribution per sample.

    Args:
        counts_df: features × samples DataFrame
        sample_conditions: Optional sample → condition mapping for colouring
        log_transform: Apply log2(x+1) transformation (default: True)
        title: Plot title

    Returns:
        Plotly Figure object
    """
    data = counts_df.copy()
    if log_transform:
        data = np.log2(data + 1)

    colors = px.colors.qualitative.Set2
    conditions = sorted(set(sample_conditions.values())) if sample_conditions else []
    cond_color = {c: colors[i % len(colors)] for i, c in enumerate(conditions)}

    fig = go.Figure()
    for sample in data.columns:
        condition = sample_conditions.get(sample) if sample_conditions else None
        fig.add_trace(
            go.Box(
                y=data[sample].values,
                name=str(sample),
                marker_color=cond_color.get(condition, "steelblue"),
                showlegend=False,
            )
        )

    ylabel = "log₂(count + 1)" if log_transform else "Count"
    fig.update_layout(title=title, xaxis_title="Sample", yaxis_title=ylabel)
    return fig
