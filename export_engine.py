"""
Export module for Perseus reconciliation reports.

Exports the reconciled tables to a multi-sheet Excel workbook, the figures to
static images, and the whole report to standalone HTML or PDF.
"""

from typing import List, Union
from datetime import datetime
from pathlib import Path
import html
import io
import logging
import re
import sys
import pandas as pd
import plotly
import plotly.graph_objects as go
from reportlab.lib.pagesizes import letter
from reportlab.platypus import SimpleDocTemplate, Paragraph, Table, Image, Spacer
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.utils import ImageReader

from report_runner import ReportResult
from visualizations import top_regulated

logger = logging.getLogger(__name__)

FIGURE_TITLES = {
    "correlation_heatmap": "Sample Correlation",
    "cv_violin": "Coefficient of Variation",
    "abundance_violin": "Abundance Distribution",
    "pca": "PCA Plot",
}


def figure_title(key: str) -> str:
    """Section title for a figure key."""
    if key.startswith("volcano_"):
        return f"Volcano Plot: {key[len('volcano_'):]}"
    return FIGURE_TITLES.get(key, key.replace("_", " ").title())


class ExportEngine:
    """Export engine for Perseus reconciliation reports."""

    def sanitize_sheet_name(self, name: str, max_length: int = 31) -> str:
        """
        Sanitize sheet name for Excel compatibility.

        Excel sheet name rules:
        - Max 31 characters
        - Cannot contain: [ ] : * ? / \\
        - Cannot start or end with '

        Args:
            name: Raw sheet name (comparisons contain '/')
            max_length: Maximum length (default 31 for Excel)

        Returns:
            Sanitized sheet name
        """
        name = re.sub(r"[\[\]:*?/\\]", "_", name)
        name = name.strip("'")
        return name[:max_length]

    def export_excel(self, filepath: Union[str, Path, io.BytesIO], report: ReportResult) -> None:
        """
        Export reconciled tables to a multi-sheet Excel workbook.

        Sheets: Sample Level, Group Level, Comparisons, Regulation Summary,
        Reconciliation, Settings.

        Args:
            filepath: Output Excel file path (.xlsx) or a writable buffer
            report: Result of generate_report
        """
        pipeline = report.pipeline
        with pd.ExcelWriter(filepath, engine="openpyxl") as writer:
            pipeline.sample_level.to_excel(writer, sheet_name="Sample Level", index=False)
            pipeline.group_level.to_excel(writer, sheet_name="Group Level", index=False)
            pipeline.comparisons.to_excel(writer, sheet_name="Comparisons", index=False)
            report.regulation_summary.to_excel(
                writer, sheet_name="Regulation Summary", index=False
            )
            pipeline.issues_frame().to_excel(writer, sheet_name="Reconciliation", index=False)
            self._write_settings_sheet(writer, report)
        logger.info(f"Excel workbook written to {filepath}")

    def _settings_rows(self, report: ReportResult) -> List[List[str]]:
        """Key-value rows describing the run, shared by Excel and HTML exports."""
        settings = report.settings
        rows = [
            ["Analysis Date", datetime.now().strftime("%Y-%m-%d %H:%M:%S")],
            [
                "Python Version",
                f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
            ],
            ["pandas Version", pd.__version__],
            ["Plotly Version", plotly.__version__],
            ["Researcher", settings.researcher_name],
            ["Work Order", settings.work_order],
            ["Proteins", str(report.raw_export.n_proteins)],
            ["Unmatched Samples", settings.unmatched_samples],
            ["---", "---"],
            ["Thresholds", ""],
            ["p-value Threshold", str(settings.pvalue_threshold)],
            ["log2FC Threshold", str(settings.fc_threshold)],
            ["Correlation Method", settings.correlation_method],
        ]

        if report.raw_export.dropped_columns:
            rows.append(["---", "---"])
            rows.append(["Dropped Columns", ""])
            for column in report.raw_export.dropped_columns:
                rows.append([column, "not used"])

        if report.figure_errors:
            rows.append(["---", "---"])
            rows.append(["Skipped Figures", ""])
            for name, error in report.figure_errors.items():
                rows.append([name, error])

        if report.pipeline.metadata:
            rows.append(["---", "---"])
            rows.append(["Sample Groups", ""])
            for sample, group in report.pipeline.metadata.items():
                rows.append([sample, group])
        return rows

    def _write_settings_sheet(self, writer: pd.ExcelWriter, report: ReportResult) -> None:
        """Write Settings sheet with run parameters and the sample → group mapping."""
        settings_df = pd.DataFrame([["Parameter", "Value"]] + self._settings_rows(report))
        settings_df.to_excel(writer, sheet_name="Settings", index=False, header=False)

    def export_figure(
        self, fig: go.Figure, filepath: str, format: str = "png", scale: int = 3
    ) -> None:
        """
        Export Plotly figure to static image file.

        Args:
            fig: Plotly Figure object
            filepath: Output file path
            format: Image format ('png', 'svg', 'pdf')
            scale: Scale factor for raster formats (default 3 for ~300 DPI)
        """
        fig.write_image(filepath, format=format, scale=scale)

    def export_html_report(self, filepath: Union[str, Path], report: ReportResult) -> None:
        """
        Write a standalone interactive HTML report.

        plotly.js is loaded from the CDN once, by the first figure.
        """
        sections = []
        for i, (key, fig) in enumerate(report.figures.items()):
            plot_html = fig.to_html(
                full_html=False,
                include_plotlyjs="cdn" if i == 0 else False,
                div_id=key.replace("/", "_"),
                config={"displaylogo": False},
            )
            sections.append(
                f'<div class="plot-container"><h3>{html.escape(figure_title(key))}</h3>{plot_html}</div>'
            )

        settings_table = "".join(
            f"<tr><td>{html.escape(str(k))}</td><td>{html.escape(str(v))}</td></tr>"
            for k, v in self._settings_rows(report)
            if k != "---"
        )
        issues = report.pipeline.issues_frame()
        issues_html = (
            issues.to_html(index=False, classes="issues")
            if not issues.empty
            else "<p>All sample, group and comparison identifiers matched.</p>"
        )
        summary_html = report.regulation_summary.to_html(index=False, classes="summary")

        title = (
            f"Perseus Report: {html.escape(report.settings.researcher_name)} "
            f"{html.escape(report.settings.work_order)}"
        )
        content = f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>{title}</title>
    <style>
        body {{ font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif; color: #333; max-width: 1400px; margin: 0 auto; padding: 20px; }}
        table {{ border-collapse: collapse; margin-bottom: 20px; }}
        td, th {{ border: 1px solid #ddd; padding: 4px 8px; }}
        .plot-container {{ margin: 30px 0; }}
    </style>
</head>
<body>
    <h1>{title}</h1>
    <h2>Settings</h2>
    <table>{settings_table}</table>
    <h2>Regulation Summary</h2>
    {summary_html}
    <h2>Reconciliation Issues</h2>
    {issues_html}
    <h2>Figures</h2>
    {''.join(sections)}
</body>
</html>
"""
        output_path = Path(filepath)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(content)
        logger.info(f"HTML report saved to {output_path}")

    def export_pdf_report(self, filepath: str, report: ReportResult) -> None:
        """
        Generate PDF report: run parameters, reconciliation issues, regulation
        summary, top regulated proteins per comparison, and every figure.

        Figures are embedded as in-memory PNG bytes (no temp files).

        Args:
            filepath: Output PDF file path
            report: Result of generate_report
        """
        doc = SimpleDocTemplate(filepath, pagesize=letter)
        styles = getSampleStyleSheet()
        story = []
        settings = report.settings

        # 1. Title page
        story.append(Paragraph("Perseus Proteomics Report", styles["Title"]))
        story.append(Spacer(1, 12))
        story.append(
            Paragraph(
                f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
                styles["Normal"],
            )
        )
        story.append(
            Paragraph(
                f"Researcher: {html.escape(settings.researcher_name)} | "
                f"Work order: {html.escape(settings.work_order)}",
                styles["Normal"],
            )
        )
        story.append(Spacer(1, 24))

        # 2. Methods
        story.append(Paragraph("Methods", styles["Heading1"]))
        story.append(
            Paragraph(
                f"{report.raw_export.n_proteins} proteins, "
                f"{len(report.pipeline.metadata)} samples in "
                f"{len(report.pipeline.groups)} groups.",
                styles["Normal"],
            )
        )
        story.append(
            Paragraph(
                f"Thresholds: p-value &lt; {settings.pvalue_threshold}, "
                f"|log2FC| &gt; {settings.fc_threshold}",
                styles["Normal"],
            )
        )
        story.append(Spacer(1, 24))

        # 3. Reconciliation issues
        story.append(Paragraph("Reconciliation", styles["Heading1"]))
        if report.pipeline.issues:
            for issue in report.pipeline.issues:
                story.append(Paragraph(f"• {html.escape(issue.message)}", styles["Normal"]))
        else:
            story.append(
                Paragraph("All sample, group and comparison identifiers matched.", styles["Normal"])
            )
        story.append(Spacer(1, 24))

        # 4. Regulation summary and top proteins
        if not report.regulation_summary.empty:
            story.append(Paragraph("Regulation Summary", styles["Heading1"]))
            summary = report.regulation_summary
            story.append(Table([list(summary.columns)] + summary.astype(str).values.tolist()))
            story.append(Spacer(1, 12))

            for comparison in summary["comparison"]:
                top = top_regulated(
                    report.pipeline.comparisons,
                    comparison,
                    n=20,
                    fc_threshold=settings.fc_threshold,
                    pvalue_threshold=settings.pvalue_threshold,
                )
                if top.empty:
                    continue
                story.append(
                    Paragraph(f"Top Regulated Proteins: {html.escape(comparison)}", styles["Heading2"])
                )
                table_data = [["Gene", "Accession", "log2FC", "p-value"]] + [
                    [str(g), str(a), f"{fc:.2f}", f"{p:.2e}"]
                    for g, a, fc, p in top[
                        ["gene", "accession", "log2_fold_change", "p_value"]
                    ].values.tolist()
                ]
                story.append(Table(table_data))
                story.append(Spacer(1, 12))
            story.append(Spacer(1, 12))

        # 5. Figures
        for key, fig in report.figures.items():
            story.append(Paragraph(html.escape(figure_title(key)), styles["Heading1"]))
            story.append(Spacer(1, 6))
            png_bytes = fig.to_image(format="png", scale=2, width=800, height=600)
            img_buffer = io.BytesIO(png_bytes)
            story.append(Image(ImageReader(img_buffer), width=400, height=300))
            story.append(Spacer(1, 24))

        doc.build(story)
        logger.info(f"PDF report saved to {filepath}")
