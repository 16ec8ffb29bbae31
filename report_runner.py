"""
End-to-end report generation: parse → reconcile → figures.

Shared by the Streamlit app and the tests so that the UI holds no analysis logic.
"""

from dataclasses import dataclass, field
from os import PathLike
from typing import Dict, List, Optional, Union
import logging
import pandas as pd
import plotly.graph_objects as go

from perseus_parser import RawExport
from reconciliation import PipelineResult, run_pipeline
from report_settings import ReportSettings
from qc_plots import (
    create_abundance_violin_plot,
    create_correlation_heatmap,
    create_cv_violin_plot,
)
from visualizations import (
    compute_regulation_summary,
    create_pca_plot,
    create_volcano_plot,
)

logger = logging.getLogger(__name__)

VOLCANO_PREFIX = "volcano_"


@dataclass
class ReportResult:
    """Everything produced by one report run."""

    raw_export: RawExport
    pipeline: PipelineResult
    figures: Dict[str, go.Figure]  # Keys: correlation_heatmap, cv_violin, abundance_violin, pca, volcano_<comparison>
    regulation_summary: pd.DataFrame
    settings: ReportSettings
    figure_errors: Dict[str, str] = field(default_factory=dict)

    @property
    def volcano_figures(self) -> Dict[str, go.Figure]:
        """Volcano plots keyed by comparison."""
        return {
            key[len(VOLCANO_PREFIX):]: fig
            for key, fig in self.figures.items()
            if key.startswith(VOLCANO_PREFIX)
        }

    @property
    def warnings(self) -> List[str]:
        """Parser warnings followed by reconciliation issue messages."""
        return list(self.raw_export.warnings) + [i.message for i in self.pipeline.issues]


def build_figures(pipeline: PipelineResult, settings: ReportSettings):
    """
    Draw every report figure.

    A figure that cannot be drawn for this data (e.g. PCA with a single sample)
    is skipped and its error message recorded.

    Returns:
        Tuple of (figures dict, figure_errors dict)
    """
    builders = {
        "correlation_heatmap": lambda: create_correlation_heatmap(
            pipeline.sample_level, method=settings.correlation_method
        ),
        "cv_violin": lambda: create_cv_violin_plot(pipeline.sample_level),
        "abundance_violin": lambda: create_abundance_violin_plot(pipeline.sample_level),
        "pca": lambda: create_pca_plot(pipeline.sample_level),
    }
    for comparison in dict.fromkeys(pipeline.comparisons["comparison"]):
        builders[f"{VOLCANO_PREFIX}{comparison}"] = (
            lambda c=comparison: create_volcano_plot(
                pipeline.comparisons,
                c,
                fc_threshold=settings.fc_threshold,
                pvalue_threshold=settings.pvalue_threshold,
                top_n_labels=settings.top_n_labels,
            )
        )

    figures: Dict[str, go.Figure] = {}
    errors: Dict[str, str] = {}
    for name, build in builders.items():
        try:
            figures[name] = build()
        except ValueError as e:
            logger.warning(f"Skipping figure '{name}': {e}")
            errors[name] = str(e)
    return figures, errors


def generate_report(
    source: Union[str, PathLike, pd.DataFrame],
    settings: Optional[ReportSettings] = None,
) -> ReportResult:
    """
    Run the full report for one Perseus export.

    Args:
        source: Path to the export file, or an already-loaded raw grid
        settings: Report settings (researcher name and work order are required)

    Returns:
        ReportResult

    Raises:
        PerseusValidationError subclasses if the export cannot be reconciled
    """
    settings = settings or ReportSettings()
    parser = settings.make_parser()

    if isinstance(source, pd.DataFrame):
        raw_export = parser.parse_grid(source, settings.researcher_name, settings.work_order)
    else:
        raw_export = parser.parse(source, settings.researcher_name, settings.work_order)

    for message in raw_export.warnings:
        logger.warning(message)

    pipeline = run_pipeline(raw_export, unmatched_samples=settings.unmatched_samples)
    figures, figure_errors = build_figures(pipeline, settings)
    summary = compute_regulation_summary(
        pipeline.comparisons, settings.fc_threshold, settings.pvalue_threshold
    )

    logger.info(
        f"Report ready: {len(figures)} figure(s), {len(figure_errors)} skipped, "
        f"{len(summary)} comparison(s)"
    )
    return ReportResult(
        raw_export=raw_export,
        pipeline=pipeline,
        figures=figures,
        regulation_summary=summary,
        settings=settings,
        figure_errors=figure_errors,
    )
