"""Quality-control visualizations for reconciled Perseus tables."""

from typing import Dict, List, Optional
import pandas as pd
import numpy as np
import plotly.graph_objects as go
import plotly.express as px
from scipy.cluster.hierarchy import linkage, leaves_list
from scipy.spatial.distance import squareform

UNASSIGNED_GROUP = "Unassigned"


def sample_groups(sample_level: pd.DataFrame) -> Dict[str, str]:
    """Sample → group mapping from the sample-level table (null groups become 'Unassigned')."""
    pairs = sample_level.loc[:, ["sample", "group"]].drop_duplicates("sample")
    return {
        s: (g if isinstance(g, str) else UNASSIGNED_GROUP)
        for s, g in zip(pairs["sample"], pairs["group"])
    }


def group_colors(groups: List[str]) -> Dict[str, str]:
    """Stable color per group, in order of first appearance."""
    palette = px.colors.qualitative.Plotly
    ordered = list(dict.fromkeys(groups))
    return {g: palette[i % len(palette)] for i, g in enumerate(ordered)}


def pivot_log2_matrix(
    sample_level: pd.DataFrame, complete_cases: bool = False
) -> pd.DataFrame:
    """
    Pivot the sample-level table to a proteins × samples log2 abundance matrix.

    Args:
        sample_level: Long table with accession, sample, log2_abundance columns
        complete_cases: Keep only proteins quantified in every sample

    Returns:
        DataFrame indexed by accession, one column per sample with at least one
        quantified protein (export order)
    """
    if sample_level is None or sample_level.empty:
        raise ValueError(
            "Cannot build abundance matrix: sample-level table is empty or None. "
            "Ensure the export contains protein rows and sample abundance columns."
        )

    samples = list(dict.fromkeys(sample_level["sample"]))
    matrix = sample_level.pivot_table(
        index="accession", columns="sample", values="log2_abundance", aggfunc="mean"
    )
    # samples with no quantified protein (e.g. peptide-count only) carry no signal
    matrix = matrix.reindex(columns=samples).dropna(axis=1, how="all")
    if matrix.shape[1] == 0:
        raise ValueError(
            "Cannot build abundance matrix: no sample has a quantified protein. "
            "Check that the abundance columns contain positive values."
        )
    if complete_cases:
        matrix = matrix.dropna(axis=0, how="any")
    return matrix


def create_correlation_heatmap(
    sample_level: pd.DataFrame, method: str = "pearson"
) -> go.Figure:
    """
    Pairwise sample correlation heatmap, ordered by hierarchical clustering.

    Correlations use pairwise-complete log2 abundances. Samples are seriated by
    average-linkage clustering on (1 - correlation).

    Args:
        sample_level: Sample-level table
        method: Correlation method ('pearson', 'spearman' or 'kendall')

    Returns:
        Plotly Figure object
    """
    matrix = pivot_log2_matrix(sample_level)
    corr_matrix = matrix.corr(method=method)
    groups = sample_groups(sample_level)

    if len(corr_matrix) > 1:
        distance = (1 - corr_matrix).fillna(1.0).clip(lower=0).values
        distance = (distance + distance.T) / 2
        np.fill_diagonal(distance, 0)
        linkage_matrix = linkage(squareform(distance, checks=False), method="average")
        order = [corr_matrix.index[i] for i in leaves_list(linkage_matrix)]
        corr_matrix = corr_matrix.loc[order, order]

    labels = [f"{s} ({groups.get(s, UNASSIGNED_GROUP)})" for s in corr_matrix.columns]
    text_vals = [[f"{v:.3f}" for v in row] for row in corr_matrix.values]

    fig = go.Figure(
        data=go.Heatmap(
            z=corr_matrix.values,
            x=labels,
            y=labels,
            colorscale="RdBu_r",
            zmid=0,
            text=text_vals,
            texttemplate="%{text}",
            hovertemplate="Sample X: %{x}<br>Sample Y: %{y}<br>Correlation: %{z:.3f}<extra></extra>",
        )
    )
    size = max(500, 40 * len(labels) + 200)
    fig.update_layout(
        title=f"Sample Correlation ({method.capitalize()}, clustered)",
        width=size,
        height=size,
    )
    return fig


def compute_cv_table(sample_level: pd.DataFrame, min_values: int = 2) -> pd.DataFrame:
    """
    Coefficient of variation of linear abundance per protein and group.

    CV% = 100 × sd / mean over the group's non-null abundances. Proteins with
    fewer than ``min_values`` values in a group are skipped for that group.

    Returns:
        DataFrame with columns: accession, group, n_values, mean_abundance, cv_percent
    """
    data = sample_level.dropna(subset=["group", "abundance"])
    stats = (
        data.groupby(["accession", "group"], sort=False)["abundance"]
        .agg(["count", "mean", "std"])
        .reset_index()
        .rename(columns={"count": "n_values", "mean": "mean_abundance"})
    )
    stats = stats[(stats["n_values"] >= min_values) & (stats["mean_abundance"] > 0)].copy()
    stats["cv_percent"] = stats["std"] / stats["mean_abundance"] * 100
    return stats.loc[:, ["accession", "group", "n_values", "mean_abundance", "cv_percent"]].reset_index(
        drop=True
    )


def create_cv_violin_plot(sample_level: pd.DataFrame) -> go.Figure:
    """
    Violin plot of per-protein CV% for each group, annotated with the median CV.

    Returns:
        Plotly Figure object
    """
    cv_table = compute_cv_table(sample_level)
    if cv_table.empty:
        raise ValueError(
            "Cannot create CV plot: no group has at least 2 quantified samples for any protein."
        )

    colors = group_colors(list(cv_table["group"]))
    fig = go.Figure()
    for group, color in colors.items():
        values = cv_table.loc[cv_table["group"] == group, "cv_percent"]
        fig.add_trace(
            go.Violin(
                y=values.values,
                name=group,
                box_visible=True,
                meanline_visible=False,
                line_color=color,
                showlegend=False,
                hovertemplate=f"{group}<br>CV: %{{y:.1f}}%<extra></extra>",
            )
        )
        fig.add_annotation(
            x=group,
            y=float(values.max()),
            text=f"median {values.median():.1f}%",
            showarrow=False,
            yshift=15,
        )

    fig.update_layout(
        title="Coefficient of Variation per Group",
        xaxis_title="Group",
        yaxis_title="CV (%)",
    )
    return fig


def create_abundance_violin_plot(
    sample_level: pd.DataFrame, sample_order: Optional[List[str]] = None
) -> go.Figure:
    """
    Violin plot of log2 abundance distribution per sample, colored by group.

    Args:
        sample_level: Sample-level table
        sample_order: Optional explicit sample order (default: export order)

    Returns:
        Plotly Figure object
    """
    if sample_level is None or sample_level.empty:
        raise ValueError("Cannot create abundance plot: sample-level table is empty or None.")

    groups = sample_groups(sample_level)
    colors = group_colors(list(groups.values()))
    samples = sample_order or list(dict.fromkeys(sample_level["sample"]))

    fig = go.Figure()
    for sample in samples:
        group = groups.get(sample, UNASSIGNED_GROUP)
        values = sample_level.loc[sample_level["sample"] == sample, "log2_abundance"].dropna()
        fig.add_trace(
            go.Violin(
                x=[str(sample)] * len(values),
                y=values.values,
                name=group,
                legendgroup=group,
                line_color=colors.get(group, "gray"),
                box_visible=True,
                hovertemplate=f"{sample} ({group})<br>log₂ abundance: %{{y:.2f}}<extra></extra>",
            )
        )

    # One legend entry per group
    seen = set()
    for trace in fig.data:
        trace.showlegend = trace.legendgroup not in seen
        seen.add(trace.legendgroup)

    fig.update_layout(
        title="log₂ Abundance Distribution per Sample",
        xaxis_title="Sample",
        yaxis_title="log₂(abundance)",
        legend_title="Group",
        violinmode="overlay",
    )
    return fig
