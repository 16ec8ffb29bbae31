"""
Perseus Proteomics Report
A Streamlit application that reconciles a Perseus export and renders QC and
differential-expression plots.
"""

import streamlit as st
import pandas as pd
import io
import os
import tempfile

# Import backend modules
from perseus_parser import PerseusValidationError, read_export_grid
from report_runner import generate_report
from report_settings import CORRELATION_METHODS, ReportSettings, SessionManager, load_settings
from reconciliation import UnmatchedPolicy
from visualizations import top_regulated
from export_engine import ExportEngine, figure_title
from demo_data import DEMO_RESEARCHER, DEMO_WORK_ORDER, get_demo_description, load_demo_export

# --- Page Config ---
st.set_page_config(
    page_title="Perseus Proteomics Report",
    page_icon="🧪",
    layout="wide",
    initial_sidebar_state="expanded",
)

# --- Session State Initialization ---
if "settings" not in st.session_state:
    st.session_state["settings"] = load_settings()
if "grid" not in st.session_state:
    st.session_state["grid"] = None
if "source_name" not in st.session_state:
    st.session_state["source_name"] = None
if "report" not in st.session_state:
    st.session_state["report"] = None

# --- Helper Functions ---


def read_uploaded_grid(uploaded_file) -> pd.DataFrame:
    """Read an uploaded export into a raw grid via a temp file (keeps the suffix)."""
    suffix = f".{uploaded_file.name.split('.')[-1]}"
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as tmp:
        tmp.write(uploaded_file.getvalue())
        tmp_path = tmp.name
    try:
        return read_export_grid(tmp_path)
    finally:
        os.unlink(tmp_path)


def show_validation_error(e: PerseusValidationError):
    st.error(f"{type(e).__name__}: {e.message}")
    if e.details:
        st.json(e.details)


# --- Main App Layout ---

st.title("🧪 Perseus Proteomics Report")
st.markdown("---")

settings: ReportSettings = st.session_state["settings"]

# Sidebar - Setup
with st.sidebar:
    st.header("1. Data Upload")
    uploaded_file = st.file_uploader(
        "Upload Perseus Export (TXT/TSV/CSV/Excel)", type=["txt", "tsv", "csv", "xlsx"]
    )

    if uploaded_file and uploaded_file.name != st.session_state["source_name"]:
        try:
            st.session_state["grid"] = read_uploaded_grid(uploaded_file)
            st.session_state["source_name"] = uploaded_file.name
            st.session_state["report"] = None
            st.success(f"Loaded {uploaded_file.name}")
        except PerseusValidationError as e:
            show_validation_error(e)

    if st.button("Load Demo Export", key="load_demo"):
        st.session_state["grid"] = load_demo_export()
        st.session_state["source_name"] = "demo"
        st.session_state["report"] = None
        settings = settings.with_overrides(
            researcher_name=DEMO_RESEARCHER, work_order=DEMO_WORK_ORDER
        )
        st.session_state["settings"] = settings

    if st.session_state["source_name"] == "demo":
        with st.expander("About the demo export"):
            st.markdown(get_demo_description())

    st.header("2. Run Parameters")
    researcher_name = st.text_input("Researcher name", value=settings.researcher_name)
    work_order = st.text_input("Work order", value=settings.work_order)

    policies = [p.value for p in UnmatchedPolicy]
    unmatched = st.selectbox(
        "Samples missing from the metadata header",
        policies,
        index=policies.index(settings.unmatched_samples),
    )

    st.header("3. Thresholds")
    fc_threshold = st.number_input(
        "log2 fold change threshold", min_value=0.0, value=float(settings.fc_threshold), step=0.1
    )
    pvalue_threshold = st.number_input(
        "p-value threshold",
        min_value=0.0001,
        max_value=1.0,
        value=float(settings.pvalue_threshold),
        step=0.01,
        format="%.4f",
    )
    correlation_method = st.selectbox(
        "Correlation method",
        CORRELATION_METHODS,
        index=CORRELATION_METHODS.index(settings.correlation_method),
    )
    top_n_labels = st.number_input(
        "Volcano labels", min_value=0, max_value=50, value=int(settings.top_n_labels)
    )

    try:
        settings = settings.with_overrides(
            researcher_name=researcher_name.strip(),
            work_order=work_order.strip(),
            unmatched_samples=unmatched,
            fc_threshold=fc_threshold,
            pvalue_threshold=pvalue_threshold,
            correlation_method=correlation_method,
            top_n_labels=int(top_n_labels),
        )
        st.session_state["settings"] = settings
    except ValueError as e:
        st.error(str(e))

    with st.expander("Session"):
        st.download_button(
            "Save Settings (JSON)",
            SessionManager.save_session(settings),
            "perseus_report_settings.json",
            "application/json",
        )
        session_file = st.file_uploader("Load Settings", type=["json"], key="session_upload")
        if session_file and st.button("Apply Settings"):
            try:
                st.session_state["settings"] = SessionManager.load_session(
                    session_file.getvalue().decode("utf-8")
                )
                st.rerun()
            except ValueError as e:
                st.error(f"Invalid settings file: {e}")
        st.json(SessionManager.get_session_summary(settings))

    st.markdown("---")
    run_clicked = st.button(
        "Run Report",
        type="primary",
        key="run_report",
        disabled=st.session_state["grid"] is None,
    )

if run_clicked:
    with st.spinner("Reconciling export and drawing figures..."):
        try:
            st.session_state["report"] = generate_report(st.session_state["grid"], settings)
        except PerseusValidationError as e:
            st.session_state["report"] = None
            show_validation_error(e)

report = st.session_state["report"]

if report is not None:
    pipeline = report.pipeline

    st.header("4. Results")
    m1, m2, m3, m4 = st.columns(4)
    m1.metric("Proteins", report.raw_export.n_proteins)
    m2.metric("Samples", len(pipeline.metadata))
    m3.metric("Groups", len(pipeline.groups))
    m4.metric("Reconciliation issues", len(pipeline.issues))

    for message in report.raw_export.warnings:
        st.warning(message)
    if pipeline.issues:
        st.warning(
            f"{len(pipeline.issues)} identifier(s) do not line up across the export. "
            f"See the Reconciliation tab."
        )

    tab_qc, tab_de, tab_tables, tab_issues = st.tabs(
        ["Quality Control", "Differential Expression", "Tables", "Reconciliation"]
    )

    with tab_qc:
        for key in ["correlation_heatmap", "abundance_violin", "cv_violin", "pca"]:
            if key in report.figures:
                st.subheader(figure_title(key))
                st.plotly_chart(report.figures[key], use_container_width=True)
            elif key in report.figure_errors:
                st.info(f"{figure_title(key)} not available: {report.figure_errors[key]}")

    with tab_de:
        st.dataframe(report.regulation_summary, hide_index=True)
        volcanoes = report.volcano_figures
        if volcanoes:
            comparison = st.selectbox("Comparison", list(volcanoes))
            st.plotly_chart(volcanoes[comparison], use_container_width=True)
            st.write("### Top Regulated Proteins")
            st.dataframe(
                top_regulated(
                    pipeline.comparisons,
                    comparison,
                    n=50,
                    fc_threshold=settings.fc_threshold,
                    pvalue_threshold=settings.pvalue_threshold,
                ),
                hide_index=True,
            )
        else:
            st.info("No comparisons with both p-value and difference columns in this export.")

    with tab_tables:
        for title, table in [
            ("Sample Level", pipeline.sample_level),
            ("Group Level", pipeline.group_level),
            ("Comparisons", pipeline.comparisons),
        ]:
            with st.expander(f"{title} ({len(table)} rows)"):
                st.dataframe(table.head(1000), hide_index=True)
                st.download_button(
                    f"Download {title} (CSV)",
                    table.to_csv(index=False).encode("utf-8"),
                    f"{title.lower().replace(' ', '_')}.csv",
                    "text/csv",
                )

    with tab_issues:
        if pipeline.issues:
            st.dataframe(pipeline.issues_frame(), hide_index=True)
        else:
            st.success("All sample, group and comparison identifiers matched.")

    # Export Section
    st.markdown("---")
    st.header("5. Export Results")

    engine = ExportEngine()
    col1, col2, col3 = st.columns(3)

    with col1:
        if st.button("Generate Excel Report"):
            with st.spinner("Generating Excel..."):
                buffer = io.BytesIO()
                engine.export_excel(buffer, report)
                st.download_button(
                    "Download Excel Report",
                    buffer.getvalue(),
                    "perseus_report.xlsx",
                    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                )

    with col2:
        if st.button("Generate HTML Report"):
            with st.spinner("Generating HTML..."):
                with tempfile.NamedTemporaryFile(delete=False, suffix=".html") as tmp:
                    tmp_path = tmp.name
                engine.export_html_report(tmp_path, report)
                with open(tmp_path, "rb") as f:
                    st.download_button(
                        "Download HTML Report", f.read(), "perseus_report.html", "text/html"
                    )
                os.unlink(tmp_path)

    with col3:
        if st.button("Generate PDF Report"):
            with st.spinner("Generating PDF..."):
                with tempfile.NamedTemporaryFile(delete=False, suffix=".pdf") as tmp:
                    tmp_path = tmp.name
                engine.export_pdf_report(tmp_path, report)
                with open(tmp_path, "rb") as f:
                    st.download_button(
                        "Download PDF Report", f.read(), "perseus_report.pdf", "application/pdf"
                    )
                os.unlink(tmp_path)

else:
    if st.session_state["grid"] is None:
        st.info("👋 Welcome! Upload a Perseus export or load the demo export in the sidebar to begin.")
    else:
        st.info("Enter the researcher name and work order, then click 'Run Report'.")
