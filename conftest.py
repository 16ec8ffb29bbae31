"""
Pytest configuration and fixtures for Perseus report tests.
"""

from pathlib import Path
from typing import List, Optional, Sequence, Tuple
import pytest
import pandas as pd

from demo_data import DEMO_RESEARCHER, DEMO_WORK_ORDER, load_demo_export
from perseus_parser import PerseusParser, SilentMismatchWarning
from reconciliation import run_pipeline
from report_settings import ReportSettings


RESEARCHER = "jdoe"
WORK_ORDER = "23_001"

# (column name, sample label, group label, values)
GridColumn = Tuple[str, Optional[str], Optional[str], Sequence[Optional[object]]]


def _text(value) -> Optional[str]:
    return None if value is None else str(value)


def build_grid(
    columns: List[GridColumn],
    accessions: Sequence[str],
    genes: Optional[Sequence[Optional[str]]] = None,
    protein_names: Optional[Sequence[Optional[str]]] = None,
) -> pd.DataFrame:
    """
    Build an in-memory Perseus export grid (as returned by read_export_grid).

    Annotation columns come first, followed by ``columns`` in order.
    """
    n = len(accessions)
    genes = list(genes) if genes is not None else [f"GENE{i + 1}" for i in range(n)]
    protein_names = (
        list(protein_names) if protein_names is not None else [f"Protein {i + 1}" for i in range(n)]
    )

    header = ["Majority protein IDs", "Gene names", "Protein names"]
    types = ["T", "T", "T"]
    labels: List[Optional[str]] = [None, None, None]
    groups: List[Optional[str]] = [None, None, None]
    body = [[a, g, p] for a, g, p in zip(accessions, genes, protein_names)]

    for name, label, group, values in columns:
        assert len(values) == n, f"column {name} has {len(values)} values for {n} proteins"
        header.append(name)
        types.append("N")
        labels.append(label)
        groups.append(group)
        for row, value in zip(body, values):
            row.append(_text(value))

    return pd.DataFrame([header, types, labels, groups] + body)


def sample_column(sample, group, values, label=True, researcher=RESEARCHER, work_order=WORK_ORDER):
    """Abundance column for one sample, labelled in the metadata header by default."""
    name = f"{researcher}_{sample}_{work_order}"
    return (name, name if label else None, group if label else None, values)


def peptide_column(sample, values, researcher=RESEARCHER, work_order=WORK_ORDER):
    return (f"number_peptides_{researcher}_{sample}_{work_order}", None, None, values)


def pvalue_column(comparison, values, researcher=RESEARCHER, work_order=WORK_ORDER):
    return (f"p_value_{researcher}_{comparison}_{work_order}", None, None, values)


def difference_column(comparison, values, researcher=RESEARCHER, work_order=WORK_ORDER):
    return (f"difference_{researcher}_{comparison}_{work_order}", None, None, values)


def median_column(group, values):
    return (group, None, None, values)


class GridFactory:
    """Column helpers plus the grid builder, handed to tests as one fixture."""

    build = staticmethod(build_grid)
    sample = staticmethod(sample_column)
    peptides = staticmethod(peptide_column)
    pvalue = staticmethod(pvalue_column)
    difference = staticmethod(difference_column)
    median = staticmethod(median_column)


# ============================================================================
# Test Data Fixtures
# ============================================================================


@pytest.fixture
def test_data_dir():
    """Return path to test data directory."""
    return Path(__file__).parent / "tests" / "data"


@pytest.fixture
def perseus_export_path(test_data_dir):
    """Small hand-checkable export: 3 proteins, samples s1-s4 in Group-A/Group-B."""
    return test_data_dir / "perseus_export.txt"


@pytest.fixture
def grid():
    return GridFactory


@pytest.fixture
def parser():
    return PerseusParser()


@pytest.fixture
def raw_export(parser, perseus_export_path):
    """Parsed fixture export."""
    return parser.parse(perseus_export_path, RESEARCHER, WORK_ORDER)


@pytest.fixture
def report_settings():
    return ReportSettings(researcher_name=RESEARCHER, work_order=WORK_ORDER)


@pytest.fixture(scope="session")
def demo_pipeline():
    """Reconciled demo export (9 samples in 3 groups, 200 proteins)."""
    grid = load_demo_export()
    export = PerseusParser().parse_grid(grid, DEMO_RESEARCHER, DEMO_WORK_ORDER)
    return run_pipeline(export)


@pytest.fixture
def fixture_pipeline(raw_export):
    """Reconciled fixture export."""
    return run_pipeline(raw_export)


@pytest.fixture
def simple_grid():
    """Two samples in one group, no peptides or statistics: the minimal valid export."""
    return build_grid(
        [
            sample_column("S1", "GroupA", [10, 100]),
            sample_column("S2", "GroupA", [20, 200]),
        ],
        accessions=["P1", "P2"],
    )


@pytest.fixture
def peptide_only_sample_pipeline(parser):
    """Three quantified samples plus S9, which appears only in the peptide-count block."""
    g = build_grid(
        [
            sample_column("S1", "GroupA", [10, 200, 30, 400]),
            sample_column("S2", "GroupA", [12, 180, 35, 390]),
            sample_column("S3", "GroupB", [40, 50, 300, 100]),
            peptide_column("S1", [3, 5, 2, 8]),
            peptide_column("S9", [4, 6, 1, 7]),
        ],
        accessions=["P1", "P2", "P3", "P4"],
    )
    with pytest.warns(SilentMismatchWarning):
        return run_pipeline(parser.parse_grid(g, RESEARCHER, WORK_ORDER))
