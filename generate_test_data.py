"""
Generate deterministic Perseus export files for the report tests.

- tests/data/perseus_export.txt: small hand-checkable export (3 proteins, 4 samples)
- tests/data/demo_export.txt: the synthetic demo export (200 proteins, 9 samples)
"""

import csv

from demo_data import load_demo_export

RESEARCHER = "jdoe"
WORK_ORDER = "23_001"
SAMPLES = [("s1", "Group-A"), ("s2", "Group-A"), ("s3", "Group-B"), ("s4", "Group-B")]
COMPARISON = "Group-A/Group-B"

# accession, gene, protein name, abundances, peptide counts, medians (A, B),
# p-value, difference, fasta header
PROTEINS = [
    ("P12345", "ALB", "Serum albumin", ["10", "100", "20", "40"], ["5", "6", "7", "8"],
     ["55", "30"], "0.01", "1.5", ">sp|P12345|ALBU_HUMAN"),
    ("Q67890", "", "Uncharacterized protein", ["0", "", "8", "16"], ["0", "0", "3", "4"],
     ["0", "12"], "0.2", "-0.3", ">tr|Q67890|Q67890_HUMAN"),
    ("O11111", "ACTB", "Actin, cytoplasmic 1", ["1000", "1200", "900", "1100"], ["20", "21", "19", "22"],
     ["1100", "1000"], "", "0.1", ">sp|O11111|ACTB_HUMAN"),
]


def fixture_rows():
    """Rows of the small export: header, type row, sample labels, group labels, proteins."""
    qualified = [f"{RESEARCHER}_{s}_{WORK_ORDER}" for s, _ in SAMPLES]
    header = (
        ["Majority protein IDs", "Gene names", "Protein names"]
        + qualified
        + [f"number_peptides_{q}" for q in qualified]
        + ["Group-A", "Group-B"]
        + [f"p_value_{RESEARCHER}_{COMPARISON}_{WORK_ORDER}",
           f"difference_{RESEARCHER}_{COMPARISON}_{WORK_ORDER}"]
        + ["Fasta headers"]
    )
    n_numeric = len(header) - 3 - len(qualified) - 1
    types = ["T"] * 3 + ["E"] * len(qualified) + ["N"] * n_numeric + ["T"]
    trailing = [""] * (n_numeric + 1)
    labels = [""] * 3 + qualified + trailing
    groups = [""] * 3 + [g for _, g in SAMPLES] + trailing

    rows = [header, types, labels, groups]
    for accession, gene, name, abundance, peptides, medians, p_value, difference, fasta in PROTEINS:
        rows.append([accession, gene, name] + abundance + peptides + medians + [p_value, difference, fasta])
    return rows


def write_fixture_export(filepath: str = "tests/data/perseus_export.txt") -> None:
    with open(filepath, "w", newline="") as f:
        writer = csv.writer(f, delimiter="\t", lineterminator="\n")
        writer.writerows(fixture_rows())


def write_demo_export(filepath: str = "tests/data/demo_export.txt") -> None:
    grid = load_demo_export()
    grid.to_csv(filepath, sep="\t", header=False, index=False)


if __name__ == "__main__":
    print("Generating perseus_export.txt...")
    write_fixture_export()
    print("Generating demo_export.txt...")
    write_demo_export()
    print("Test data files generated successfully!")
