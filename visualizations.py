"""
Interactive visualizations for Perseus differential-expression results using Plotly.

Provides PCA and volcano plots, plus regulation classification and summaries.
"""

from typing import Dict, List
import pandas as pd
import numpy as np
import plotly.graph_objects as go
import plotly.express as px
from sklearn.decomposition import PCA
from qc_plots import pivot_log2_matrix, sample_groups, group_colors

REGULATION_COLORS = {"Up": "red", "Down": "blue", "NS": "lightgray"}


def create_pca_plot(
    sample_level: pd.DataFrame,
    show_ellipses: bool = True,
) -> go.Figure:
    """
    Create PCA plot of samples from log2 abundances.

    Only proteins quantified in every sample are used.

    Args:
        sample_level: Sample-level table (accession, sample, group, log2_abundance)
        show_ellipses: Draw 95% confidence ellipses for groups with ≥3 samples

    Returns:
        Plotly Figure object
    """
    matrix = pivot_log2_matrix(sample_level, complete_cases=True).T  # samples × proteins

    if matrix.shape[0] < 2:
        raise ValueError(
            f"Cannot create PCA plot: requires at least 2 samples, but got {matrix.shape[0]}. "
            f"Suggestion: PCA needs multiple samples to compute principal components."
        )
    if matrix.shape[1] < 2:
        raise ValueError(
            f"Cannot create PCA plot: only {matrix.shape[1]} protein(s) are quantified in every sample. "
            f"Suggestion: Check for samples with very few quantified proteins."
        )

    n_components = min(3, matrix.shape[0], matrix.shape[1])
    pca = PCA(n_components=n_components)
    pca_result = pca.fit_transform(matrix.values)

    groups = sample_groups(sample_level)
    pca_df = pd.DataFrame(
        pca_result[:, :2],  # First 2 PCs
        columns=["PC1", "PC2"],
        index=matrix.index.rename(None),
    )
    pca_df["group"] = [groups.get(s, "Unassigned") for s in pca_df.index]
    pca_df["sample"] = pca_df.index
    colors = group_colors(list(pca_df["group"]))

    fig = px.scatter(
        pca_df,
        x="PC1",
        y="PC2",
        color="group",
        hover_name="sample",
        color_discrete_map=colors,
        labels={
            "PC1": f"PC1 ({pca.explained_variance_ratio_[0] * 100:.1f}%)",
            "PC2": f"PC2 ({pca.explained_variance_ratio_[1] * 100:.1f}%)",
        },
    )

    # 95% confidence ellipses per group
    if show_ellipses:
        for group, color in colors.items():
            members = pca_df[pca_df["group"] == group]
            if len(members) < 3:
                continue
            mean_x, mean_y = members["PC1"].mean(), members["PC2"].mean()
            cov = np.cov(members["PC1"].values, members["PC2"].values)
            eigenvalues, eigenvectors = np.linalg.eigh(cov)
            order = eigenvalues.argsort()[::-1]
            eigenvalues = eigenvalues[order]
            eigenvectors = eigenvectors[:, order]
            # chi2(df=2) at 95%
            scale = np.sqrt(5.991)
            theta = np.linspace(0, 2 * np.pi, 100)
            ellipse = np.array([np.cos(theta), np.sin(theta)])
            transform = eigenvectors @ np.diag(np.sqrt(np.maximum(eigenvalues, 0)) * scale)
            ellipse_pts = (transform @ ellipse).T + np.array([mean_x, mean_y])
            fig.add_trace(
                go.Scatter(
                    x=ellipse_pts[:, 0],
                    y=ellipse_pts[:, 1],
                    mode="lines",
                    line=dict(color=color, dash="dash", width=1.5),
                    showlegend=False,
                    hoverinfo="skip",
                )
            )

    fig.update_layout(
        title=f"PCA Plot ({matrix.shape[1]} proteins quantified in all samples)",
        showlegend=True,
    )
    return fig


def classify_regulation(
    comparisons: pd.DataFrame,
    fc_threshold: float = 1.0,
    pvalue_threshold: float = 0.05,
) -> pd.DataFrame:
    """
    Label each (protein, comparison) row as Up, Down or NS.

    Up: log2_fold_change > fc_threshold and p_value < pvalue_threshold
    Down: log2_fold_change < -fc_threshold and p_value < pvalue_threshold
    Rows with a null fold change or p-value are NS.

    Returns:
        Copy of ``comparisons`` with a ``regulation`` column
    """
    df = comparisons.copy()
    significant = df["p_value"] < pvalue_threshold
    df["regulation"] = np.select(
        [
            significant & (df["log2_fold_change"] > fc_threshold),
            significant & (df["log2_fold_change"] < -fc_threshold),
        ],
        ["Up", "Down"],
        default="NS",
    )
    return df


def create_volcano_plot(
    comparisons: pd.DataFrame,
    comparison: str,
    fc_threshold: float = 1.0,
    pvalue_threshold: float = 0.05,
    top_n_labels: int = 10,
) -> go.Figure:
    """
    Create interactive volcano plot for one comparison.

    Args:
        comparisons: Comparison table (accession, gene, comparison, log2_fold_change, p_value)
        comparison: Comparison identifier, e.g. "GroupA/GroupB"
        fc_threshold: log2 fold change threshold (default: 1.0)
        pvalue_threshold: p-value threshold (default: 0.05)
        top_n_labels: Label this many most significant regulated proteins

    Returns:
        Plotly Figure object
    """
    if comparisons is None or comparisons.empty:
        raise ValueError(
            "Cannot create volcano plot: comparison table is empty or None. "
            "Ensure the export contains t-test p-value and difference columns."
        )

    df = comparisons[comparisons["comparison"] == comparison]
    if df.empty:
        available = ", ".join(comparisons["comparison"].unique()[:5])
        raise ValueError(
            f"Cannot create volcano plot: comparison '{comparison}' not found. "
            f"Available comparisons: {available}."
        )

    # Rows without both statistics cannot be placed
    df = df.dropna(subset=["p_value", "log2_fold_change"])
    if df.empty:
        raise ValueError(
            f"Cannot create volcano plot: no protein has both a p-value and a difference "
            f"for '{comparison}'."
        )

    df = classify_regulation(df, fc_threshold, pvalue_threshold)
    df["-log10_p"] = -np.log10(df["p_value"].clip(lower=1e-300))
    df["label"] = df["gene"].fillna(df["accession"]).astype(str)

    fig = px.scatter(
        df,
        x="log2_fold_change",
        y="-log10_p",
        color="regulation",
        hover_name="label",
        hover_data={
            "protein_name": True,
            "log2_fold_change": ":.2f",
            "p_value": ":.2e",
            "-log10_p": False,
            "regulation": False,
        },
        color_discrete_map=REGULATION_COLORS,
        category_orders={"regulation": ["Up", "Down", "NS"]},
        labels={"log2_fold_change": "log₂(Fold Change)", "-log10_p": "-log₁₀(p-value)"},
    )

    fig.add_hline(y=-np.log10(pvalue_threshold), line_dash="dash", line_color="gray")
    fig.add_vline(x=fc_threshold, line_dash="dash", line_color="gray")
    fig.add_vline(x=-fc_threshold, line_dash="dash", line_color="gray")

    if top_n_labels > 0:
        top = df[df["regulation"] != "NS"].nsmallest(top_n_labels, "p_value")
        if not top.empty:
            fig.add_trace(
                go.Scatter(
                    x=top["log2_fold_change"],
                    y=top["-log10_p"],
                    mode="text",
                    text=top["label"],
                    textposition="top center",
                    textfont=dict(size=9),
                    showlegend=False,
                    hoverinfo="skip",
                )
            )

    fig.update_layout(title=f"Volcano Plot: {comparison}", showlegend=True)
    return fig


def create_volcano_plots(
    comparisons: pd.DataFrame,
    fc_threshold: float = 1.0,
    pvalue_threshold: float = 0.05,
    top_n_labels: int = 10,
) -> Dict[str, go.Figure]:
    """One volcano plot per comparison, in export order."""
    return {
        comparison: create_volcano_plot(
            comparisons, comparison, fc_threshold, pvalue_threshold, top_n_labels
        )
        for comparison in dict.fromkeys(comparisons["comparison"])
    }


def compute_regulation_summary(
    comparisons: pd.DataFrame,
    fc_threshold: float = 1.0,
    pvalue_threshold: float = 0.05,
) -> pd.DataFrame:
    """
    Count regulated proteins per comparison.

    Returns:
        DataFrame with columns: comparison, total_proteins, tested, significant,
        upregulated, downregulated
    """
    columns = ["comparison", "total_proteins", "tested", "significant", "upregulated", "downregulated"]
    if comparisons is None or comparisons.empty:
        return pd.DataFrame(columns=columns)

    df = classify_regulation(comparisons, fc_threshold, pvalue_threshold)
    rows: List[dict] = []
    for comparison, part in df.groupby("comparison", sort=False):
        tested = part.dropna(subset=["p_value", "log2_fold_change"])
        rows.append(
            {
                "comparison": comparison,
                "total_proteins": len(part),
                "tested": len(tested),
                "significant": int((tested["p_value"] < pvalue_threshold).sum()),
                "upregulated": int((part["regulation"] == "Up").sum()),
                "downregulated": int((part["regulation"] == "Down").sum()),
            }
        )
    return pd.DataFrame(rows, columns=columns)


def top_regulated(
    comparisons: pd.DataFrame,
    comparison: str,
    n: int = 20,
    fc_threshold: float = 1.0,
    pvalue_threshold: float = 0.05,
) -> pd.DataFrame:
    """Most significant regulated proteins for one comparison (by p-value)."""
    df = classify_regulation(
        comparisons[comparisons["comparison"] == comparison], fc_threshold, pvalue_threshold
    )
    return df[df["regulation"] != "NS"].nsmallest(n, "p_value")
