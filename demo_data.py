"""
Demo dataset generator for the Perseus report.

Generates a synthetic Perseus export grid (header, type row, sample and group
label rows, protein rows) with built-in regulation patterns, so the whole
report can be explored without uploading a file.
"""

from typing import List, Optional
import pandas as pd
import numpy as np
from scipy import stats

DEMO_RESEARCHER = "demo"
DEMO_WORK_ORDER = "24_001"

DEMO_GROUPS = {
    "Control": ["C1", "C2", "C3"],
    "Treatment-1": ["T1a", "T1b", "T1c"],
    "Treatment-2": ["T2a", "T2b", "T2c"],
}
DEMO_COMPARISONS = [("Treatment-1", "Control"), ("Treatment-2", "Control")]

UPREGULATED = {"VEGFA", "COL1A1", "FN1", "MMP1", "FGF2", "TGFB1"}
DOWNREGULATED = {"FLG", "LOR", "CLDN1", "IVL", "TIMP1"}
NAMED_GENES = sorted(UPREGULATED | DOWNREGULATED | {"ACTB", "GAPDH", "ALB", "KRT14", "KRT5"})


def _cell(value: float, digits: int = 6) -> Optional[str]:
    """Format a number as export text; missing values become empty cells."""
    if value is None or not np.isfinite(value):
        return None
    return f"{value:.{digits}g}"


def load_demo_export(
    researcher_name: str = DEMO_RESEARCHER,
    work_order: str = DEMO_WORK_ORDER,
    n_proteins: int = 200,
) -> pd.DataFrame:
    """
    Generate a synthetic Perseus export as a raw grid of text cells.

    Returns:
        DataFrame with positional columns, laid out like a file read with
        ``read_export_grid`` (row 0 = column names)

    Dataset characteristics:
    - 9 samples in 3 groups (Control, Treatment-1, Treatment-2)
    - ``n_proteins`` proteins, ~5% missing abundances
    - Treatment-1 up/down-regulates a fixed set of genes ~4x; Treatment-2 ~2x
    - Group medians and Welch t-tests (Treatment vs Control) on log2 values
    - Reproducible with np.random.seed(42)
    """
    np.random.seed(42)

    samples = [(group, s) for group, names in DEMO_GROUPS.items() for s in names]
    genes: List[Optional[str]] = NAMED_GENES + [
        f"GENE{i:03d}" for i in range(1, n_proteins - len(NAMED_GENES) + 1)
    ]
    genes = genes[:n_proteins]
    # A few proteins without gene annotation
    for i in range(len(NAMED_GENES) + 7, n_proteins, 37):
        genes[i] = None

    base_log2 = np.random.normal(loc=22, scale=2.5, size=n_proteins)
    effect = {"Control": 1.0, "Treatment-1": 4.0, "Treatment-2": 2.0}

    abundance = np.zeros((n_proteins, len(samples)))
    for j, (group, _) in enumerate(samples):
        shift = np.zeros(n_proteins)
        for i, gene in enumerate(genes):
            if gene in UPREGULATED:
                shift[i] = np.log2(effect[group])
            elif gene in DOWNREGULATED:
                shift[i] = -np.log2(effect[group])
        abundance[:, j] = 2 ** (base_log2 + shift + np.random.normal(0, 0.3, n_proteins))

    missing = np.random.random(abundance.shape) < 0.05
    abundance[missing] = np.nan
    peptides = np.random.poisson(8, size=abundance.shape) + 1
    peptides = np.where(missing, 0, peptides)

    def qualified(sample: str) -> str:
        return f"{researcher_name}_{sample}_{work_order}"

    columns: List[str] = ["Majority protein IDs", "Gene names", "Protein names"]
    types: List[str] = ["T", "T", "T"]
    labels: List[Optional[str]] = [None, None, None]
    group_row: List[Optional[str]] = [None, None, None]
    values: List[List[Optional[str]]] = [
        [f"P{10000 + i}", genes[i], f"Protein {genes[i] or i}"] for i in range(n_proteins)
    ]

    def add_column(name, kind, label, group, cells):
        columns.append(name)
        types.append(kind)
        labels.append(label)
        group_row.append(group)
        for row, cell in zip(values, cells):
            row.append(cell)

    for j, (group, sample) in enumerate(samples):
        add_column(qualified(sample), "E", qualified(sample), group, [_cell(v) for v in abundance[:, j]])

    for j, (_, sample) in enumerate(samples):
        add_column(
            f"number_peptides_{qualified(sample)}",
            "N",
            None,
            None,
            [_cell(v) for v in peptides[:, j]],
        )

    group_index = {g: [j for j, (grp, _) in enumerate(samples) if grp == g] for g in DEMO_GROUPS}
    for group, idx in group_index.items():
        with np.errstate(all="ignore"):
            medians = np.nanmedian(abundance[:, idx], axis=1)
        add_column(group, "N", None, None, [_cell(v) for v in medians])

    log2_values = np.log2(abundance)
    for first, second in DEMO_COMPARISONS:
        p_values, differences = [], []
        for i in range(n_proteins):
            a = log2_values[i, group_index[first]]
            b = log2_values[i, group_index[second]]
            a, b = a[np.isfinite(a)], b[np.isfinite(b)]
            if len(a) < 2 or len(b) < 2:
                p_values.append(None)
                differences.append(None)
                continue
            result = stats.ttest_ind(a, b, equal_var=False)
            p_values.append(_cell(result.pvalue))
            differences.append(_cell(a.mean() - b.mean()))
        comparison = f"{first}/{second}"
        add_column(f"p_value_{researcher_name}_{comparison}_{work_order}", "N", None, None, p_values)
        add_column(f"difference_{researcher_name}_{comparison}_{work_order}", "N", None, None, differences)

    columns.append("Fasta headers")
    types.append("T")
    labels.append(None)
    group_row.append(None)
    for row, gene in zip(values, genes):
        row.append(f">sp|{row[0]}|{gene or 'UNKNOWN'}_HUMAN")

    return pd.DataFrame([columns, types, labels, group_row] + values)


def get_demo_description() -> str:
    """
    Get markdown description of the demo dataset.

    Returns:
        Markdown string describing dataset characteristics, design, and regulation patterns
    """
    description = f"""# Perseus Demo Export

## Overview
Synthetic Perseus quantification export with built-in regulation patterns.

## Experimental Design
- **Researcher / work order**: `{DEMO_RESEARCHER}` / `{DEMO_WORK_ORDER}`
- **Samples**: 9 total, 3 per group
- **Groups**: Control, Treatment-1, Treatment-2 (exported group names use hyphens;
  the report normalizes them to underscores)
- **Comparisons**: Treatment-1/Control, Treatment-2/Control

### Column Layout
- Abundance: `{DEMO_RESEARCHER}_C1_{DEMO_WORK_ORDER}`
- Peptide counts: `number_peptides_{DEMO_RESEARCHER}_C1_{DEMO_WORK_ORDER}`
- Group medians: `Control`, `Treatment-1`, `Treatment-2`
- t-test: `p_value_{DEMO_RESEARCHER}_Treatment-1/Control_{DEMO_WORK_ORDER}`,
  `difference_{DEMO_RESEARCHER}_Treatment-1/Control_{DEMO_WORK_ORDER}`
- `Fasta headers` is text and is dropped by the parser

## Regulation Patterns
- **Up in treatment**: {', '.join(sorted(UPREGULATED))}
- **Down in treatment**: {', '.join(sorted(DOWNREGULATED))}
- Treatment-1 shifts these ~4x (log2FC ≈ ±2), Treatment-2 ~2x (log2FC ≈ ±1)

## Data Characteristics
- **Abundance**: log-normal, log2 mean 22, replicate noise sd 0.3 (log2)
- **Missing values**: ~5% of abundances are empty (peptide count 0)
- **Statistics**: Welch t-test on log2 abundances
- **Reproducibility**: Generated with `np.random.seed(42)`

## Usage
```python
from demo_data import load_demo_export, DEMO_RESEARCHER, DEMO_WORK_ORDER
from report_runner import generate_report
from report_settings import ReportSettings

grid = load_demo_export()
report = generate_report(grid, ReportSettings(researcher_name=DEMO_RESEARCHER, work_order=DEMO_WORK_ORDER))
```
"""
    return description
