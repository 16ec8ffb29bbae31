"""
Perseus export parser module.

Reads a Perseus quantification report (TSV, CSV or Excel) and classifies every
column once, up front, into an explicit header descriptor:
- Annotation columns (protein accession, gene names, protein names)
- Per-sample abundance and peptide-count columns
- Per-group median abundance columns
- Per-comparison t-test p-value and difference columns

Layout of the export (row numbers are positions in the raw grid):
    0   column names
    1   Perseus type row (N, E, C, T ...; blank cells allowed)
    2   raw sample label per abundance column
    3   raw group label per abundance column
    4.. one row per protein

Canonical output: RawExport (positional tables + column descriptors)
"""

from dataclasses import dataclass, field
from enum import Enum
from os import PathLike
from pathlib import Path
from types import MappingProxyType
from typing import Optional, List, Dict, Mapping, Sequence, Tuple, Any, Union, Collection
import logging
import re
import pandas as pd

logger = logging.getLogger(__name__)


# Grid layout
METADATA_HEADER_ROWS = 3
TYPE_ROW = 0  # offsets inside the metadata header
SAMPLE_LABEL_ROW = 1
GROUP_LABEL_ROW = 2

# Perseus column type codes; only these columns can hold group medians
NUMERIC_TYPE_CODES = ("N", "E")
TYPE_CODE_PREFIX = "#!{Type}"

# Raw annotation column -> canonical field
DEFAULT_ANNOTATION_COLUMNS = {
    "Majority protein IDs": "accession",
    "Gene names": "gene",
    "Protein names": "protein_name",
}
ANNOTATION_FIELDS = ["accession", "gene", "protein_name"]

# Measurement-specific column prefixes
PEPTIDE_COUNT_MARKER = "number_peptides_"
PVALUE_MARKER = "p_value_"
DIFFERENCE_MARKER = "difference_"

COMPARISON_DELIMITER = "/"

# <researcher>_<sample>[_<anything>]
SAMPLE_LABEL_PATTERN = r"^([^_]+)_([^_]+)(?:_.*)?$"

# Alias for the sample -> group mapping returned by build_metadata
SampleMetadata = Mapping[str, str]


class ColumnKind(Enum):
    """Role of a column in the Perseus export."""

    ANNOTATION = "annotation"
    ABUNDANCE = "abundance"
    PEPTIDE_COUNT = "peptide_count"
    GROUP_MEDIAN = "group_median"
    PVALUE = "pvalue"
    DIFFERENCE = "difference"
    UNUSED = "unused"


MEASUREMENT_KINDS = [
    ColumnKind.ABUNDANCE,
    ColumnKind.PEPTIDE_COUNT,
    ColumnKind.GROUP_MEDIAN,
    ColumnKind.PVALUE,
    ColumnKind.DIFFERENCE,
]


class PerseusValidationError(Exception):
    """Raised when a Perseus export fails validation checks."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message: str = message
        self.details: dict[str, Any] = details or {}
        super().__init__(self.message)


class MalformedInputError(PerseusValidationError):
    """Export is missing structure the pipeline depends on (labels, qualifiers, columns)."""


class AmbiguousKeyError(PerseusValidationError):
    """Two raw columns or labels collapse to the same identifier."""


class UnmatchedIdentifierError(PerseusValidationError):
    """A sample has no metadata entry and the report is configured to reject it."""


class SilentMismatchWarning(UserWarning):
    """An identifier present in one block of the export is missing from another."""


@dataclass(frozen=True)
class ColumnDescriptor:
    """One classified export column."""

    raw_name: str
    kind: ColumnKind
    key: Optional[str]  # sample, group, comparison or annotation field; None if unused


@dataclass(frozen=True)
class RawExport:
    """Parsed Perseus export.

    All tables share the same positional row index (one row per protein,
    in file order). Measurement columns keep their raw names; ``columns``
    maps each raw name to its kind and stripped key.
    """

    annotations: pd.DataFrame  # accession, gene, protein_name
    measurements: pd.DataFrame  # numeric measurement columns, raw names
    sample_labels: Dict[str, str]  # abundance column -> raw sample label
    group_labels: Dict[str, str]  # abundance column -> raw group label
    columns: List[ColumnDescriptor]
    researcher_name: str
    work_order: str
    warnings: List[str] = field(default_factory=list)
    dropped_columns: List[str] = field(default_factory=list)

    @property
    def n_proteins(self) -> int:
        return len(self.annotations)

    def descriptors(self, kind: ColumnKind) -> List[ColumnDescriptor]:
        return [c for c in self.columns if c.kind == kind]

    def keys(self, kind: ColumnKind) -> List[str]:
        return [c.key for c in self.descriptors(kind)]

    def block(self, kind: ColumnKind, row_column: str = "protein_row") -> pd.DataFrame:
        """
        Wide table for one measurement kind, keyed by stripped identifiers.

        Returns:
            DataFrame with ``row_column`` (protein position), the annotation
            fields, then one column per key in export order.
        """
        descs = self.descriptors(kind)
        values = self.measurements.loc[:, [d.raw_name for d in descs]].copy()
        values.columns = [d.key for d in descs]
        positions = pd.DataFrame({row_column: range(self.n_proteins)})
        return pd.concat([positions, self.annotations, values], axis=1)


def normalize_group_name(label: str) -> str:
    """Make a group label safe to use as a column name (hyphens -> underscores)."""
    return str(label).strip().replace("-", "_")


def split_comparison(comparison: str) -> Tuple[str, str]:
    """
    Decompose a comparison identifier into its ordered pair of groups.

    Raises:
        MalformedInputError: If the identifier is not exactly two non-empty groups
    """
    parts = str(comparison).split(COMPARISON_DELIMITER)
    if len(parts) != 2 or not all(parts):
        raise MalformedInputError(
            f"Comparison '{comparison}' does not name exactly two groups separated by "
            f"'{COMPARISON_DELIMITER}'. "
            f"Suggestion: t-test columns should be named like 'GroupA{COMPARISON_DELIMITER}GroupB'.",
            details={"comparison": comparison},
        )
    return parts[0], parts[1]


def normalize_comparison(comparison: str) -> str:
    """Normalize both group names of a comparison identifier."""
    first, second = split_comparison(comparison)
    return f"{normalize_group_name(first)}{COMPARISON_DELIMITER}{normalize_group_name(second)}"


def is_run_qualified(name: str, researcher_name: str, work_order: str) -> bool:
    """Check if a column name carries both run qualifiers around a non-empty core."""
    prefix = f"{researcher_name}_"
    suffix = f"_{work_order}"
    return (
        name.startswith(prefix)
        and name.endswith(suffix)
        and len(name) > len(prefix) + len(suffix)
    )


def strip_run_qualifiers(
    column_names: Sequence[str],
    researcher_name: str,
    work_order: str,
    extra_prefix: Optional[str] = None,
) -> List[str]:
    """
    Reduce raw measurement column names to bare sample or comparison identifiers.

    Removes, in order, the optional measurement prefix (e.g. ``number_peptides_``),
    the leading ``<researcher>_`` token and the trailing ``_<work_order>`` token.

    Args:
        column_names: Raw column names from one measurement block
        researcher_name: Researcher identifier used in the run
        work_order: Work order identifier used in the run
        extra_prefix: Measurement-specific prefix to strip first (optional)

    Returns:
        Identifiers in the same order as ``column_names``

    Raises:
        MalformedInputError: If a qualifier or the prefix is absent, or nothing remains
        AmbiguousKeyError: If two columns collapse to the same identifier
    """
    if not researcher_name or not work_order:
        raise MalformedInputError(
            "Researcher name and work order are both required to resolve sample columns. "
            "Suggestion: Enter the values used when the samples were submitted.",
            details={"researcher_name": researcher_name, "work_order": work_order},
        )

    prefix = f"{researcher_name}_"
    suffix = f"_{work_order}"
    stripped: List[str] = []
    seen: Dict[str, str] = {}

    for raw in column_names:
        name = str(raw)
        bare = name
        if extra_prefix:
            if not bare.startswith(extra_prefix):
                raise MalformedInputError(
                    f"Column '{name}' does not start with the expected prefix '{extra_prefix}'.",
                    details={"column": name, "expected_prefix": extra_prefix},
                )
            bare = bare[len(extra_prefix):]
        if not bare.startswith(prefix):
            raise MalformedInputError(
                f"Column '{name}' is missing the researcher qualifier '{prefix}'. "
                f"Suggestion: Check the researcher name matches the one used in the export.",
                details={"column": name, "researcher_name": researcher_name},
            )
        bare = bare[len(prefix):]
        if not bare.endswith(suffix) or len(bare) == len(suffix):
            raise MalformedInputError(
                f"Column '{name}' is missing the work order qualifier '{suffix}'. "
                f"Suggestion: Check the work order matches the one used in the export.",
                details={"column": name, "work_order": work_order},
            )
        bare = bare[: -len(suffix)]

        if bare in seen:
            raise AmbiguousKeyError(
                f"Columns '{seen[bare]}' and '{name}' both reduce to '{bare}'.",
                details={"identifier": bare, "columns": [seen[bare], name]},
            )
        seen[bare] = name
        stripped.append(bare)

    return stripped


def describe_columns(
    column_names: Sequence[str],
    researcher_name: str,
    work_order: str,
    sample_labels: Mapping[str, str],
    numeric_columns: Collection[str],
    annotation_columns: Optional[Mapping[str, str]] = None,
    peptide_marker: str = PEPTIDE_COUNT_MARKER,
    pvalue_marker: str = PVALUE_MARKER,
    difference_marker: str = DIFFERENCE_MARKER,
) -> List[ColumnDescriptor]:
    """
    Classify every export column and recover its key.

    Classification (first match wins):
    1. Configured annotation column → ANNOTATION
    2. Peptide-count / p-value / difference prefix → matching kind
    3. Sample label in the metadata header, or run-qualified name → ABUNDANCE
    4. Any other numeric column (type N or E, or untyped with values) → GROUP_MEDIAN
    5. Everything else → UNUSED

    Returns:
        One ColumnDescriptor per input column, in input order
    """
    annotation_columns = annotation_columns or DEFAULT_ANNOTATION_COLUMNS
    markers = [
        (peptide_marker, ColumnKind.PEPTIDE_COUNT),
        (pvalue_marker, ColumnKind.PVALUE),
        (difference_marker, ColumnKind.DIFFERENCE),
    ]

    kinds: Dict[str, ColumnKind] = {}
    for name in column_names:
        if name in annotation_columns:
            kinds[name] = ColumnKind.ANNOTATION
            continue
        marker_kind = next((k for m, k in markers if name.startswith(m)), None)
        if marker_kind is not None:
            kinds[name] = marker_kind
        elif name in sample_labels or is_run_qualified(name, researcher_name, work_order):
            kinds[name] = ColumnKind.ABUNDANCE
        elif name in numeric_columns:
            kinds[name] = ColumnKind.GROUP_MEDIAN
        else:
            kinds[name] = ColumnKind.UNUSED

    def names_of(kind: ColumnKind) -> List[str]:
        return [n for n in column_names if kinds[n] == kind]

    keys: Dict[str, Optional[str]] = {}
    for name in names_of(ColumnKind.ANNOTATION):
        keys[name] = annotation_columns[name]

    abundance = names_of(ColumnKind.ABUNDANCE)
    keys.update(zip(abundance, strip_run_qualifiers(abundance, researcher_name, work_order)))

    peptides = names_of(ColumnKind.PEPTIDE_COUNT)
    keys.update(
        zip(peptides, strip_run_qualifiers(peptides, researcher_name, work_order, peptide_marker))
    )

    for marker, kind in markers[1:]:
        names = names_of(kind)
        stripped = strip_run_qualifiers(names, researcher_name, work_order, marker)
        keys.update(zip(names, [normalize_comparison(c) for c in stripped]))

    for name in names_of(ColumnKind.GROUP_MEDIAN):
        keys[name] = normalize_group_name(name)

    descriptors = [
        ColumnDescriptor(raw_name=name, kind=kinds[name], key=keys.get(name))
        for name in column_names
    ]
    validate_descriptors(descriptors)
    return descriptors


def validate_descriptors(descriptors: Sequence[ColumnDescriptor]) -> None:
    """
    Single validation pass over the header descriptor.

    Raises:
        AmbiguousKeyError: If two columns of the same kind share a key
        MalformedInputError: If there are no abundance columns, or a comparison key
            does not decompose into two groups
    """
    seen: Dict[Tuple[ColumnKind, str], str] = {}
    for desc in descriptors:
        if desc.kind == ColumnKind.UNUSED:
            continue
        slot = (desc.kind, desc.key)
        if slot in seen:
            raise AmbiguousKeyError(
                f"Columns '{seen[slot]}' and '{desc.raw_name}' both map to "
                f"{desc.kind.value} '{desc.key}'.",
                details={"kind": desc.kind.value, "key": desc.key, "columns": [seen[slot], desc.raw_name]},
            )
        seen[slot] = desc.raw_name
        if desc.kind in (ColumnKind.PVALUE, ColumnKind.DIFFERENCE):
            split_comparison(desc.key)

    if not any(d.kind == ColumnKind.ABUNDANCE for d in descriptors):
        raise MalformedInputError(
            "No sample abundance columns found. "
            "Suggestion: Sample columns must be named '<researcher>_<sample>_<work_order>' "
            "and labelled in the sample row of the metadata header.",
        )


def build_metadata(raw_export: RawExport) -> SampleMetadata:
    """
    Build the sample → group mapping from the metadata header.

    The sample identifier is the second underscore-delimited segment of the raw
    label (``<researcher>_<sample>_<work_order>``, trailing suffix optional).
    Group labels are normalized so they can be used as column names downstream.

    Returns:
        Read-only mapping sample → group

    Raises:
        MalformedInputError: If a label lacks the delimiter structure or a group label
        AmbiguousKeyError: If one sample is labelled with two different groups
    """
    metadata: Dict[str, str] = {}
    for column, label in raw_export.sample_labels.items():
        match = re.match(SAMPLE_LABEL_PATTERN, label)
        if not match:
            raise MalformedInputError(
                f"Sample label '{label}' (column '{column}') does not follow "
                f"'<researcher>_<sample>[_<work_order>]'.",
                details={"column": column, "label": label},
            )
        sample = match.group(2)

        group_label = raw_export.group_labels.get(column)
        if not group_label:
            raise MalformedInputError(
                f"Sample label '{label}' (column '{column}') has no group label. "
                f"Suggestion: Fill in the group row of the metadata header for every sample.",
                details={"column": column, "label": label},
            )
        group = normalize_group_name(group_label)

        existing = metadata.get(sample)
        if existing is not None and existing != group:
            raise AmbiguousKeyError(
                f"Sample '{sample}' is assigned to both '{existing}' and '{group}'.",
                details={"sample": sample, "groups": [existing, group]},
            )
        metadata[sample] = group

    return MappingProxyType(metadata)


def _cell_text(value: Any) -> str:
    """Return stripped cell text, or '' for missing cells."""
    if value is None or pd.isna(value):
        return ""
    return str(value).strip()


def _is_numeric_column(values: pd.Series) -> bool:
    """Check that every non-missing value parses as a number."""
    converted = pd.to_numeric(values, errors="coerce")
    return int(converted.isna().sum()) == int(values.isna().sum())


def _type_code(value: Any) -> str:
    """Perseus type code of a column (N, E, C, T, M ...), or '' if the type row is blank."""
    text = _cell_text(value)
    if text.startswith(TYPE_CODE_PREFIX):
        text = text[len(TYPE_CODE_PREFIX):]
    return text.upper()


def _is_median_candidate(values: pd.Series, type_code: str) -> bool:
    """
    Check whether an unlabelled column can hold group medians.

    A typed column must be numeric (N or E). Without a type code the column
    must parse as numbers and hold at least one value.
    """
    if type_code:
        return type_code in NUMERIC_TYPE_CODES and _is_numeric_column(values)
    return _is_numeric_column(values) and bool(values.notna().any())


def read_export_grid(file_path: str) -> pd.DataFrame:
    """
    Read a Perseus export as a raw grid of text cells (no header interpretation).

    Args:
        file_path: Path to .txt/.tsv (tab), .csv (comma) or .xlsx file

    Returns:
        DataFrame with positional columns; row 0 holds the column names

    Raises:
        MalformedInputError: If the file cannot be read
    """
    suffix = Path(file_path).suffix.lower()
    try:
        if suffix in (".xlsx", ".xls"):
            grid = pd.read_excel(file_path, sheet_name=0, header=None, dtype=str)
        else:
            sep = "," if suffix == ".csv" else "\t"
            grid = pd.read_csv(file_path, sep=sep, header=None, dtype=str)
    except pd.errors.EmptyDataError:
        raise MalformedInputError(
            "File is empty or contains no readable data. "
            "Ensure the file is the Perseus export with a header and protein rows."
        )
    except pd.errors.ParserError as e:
        raise MalformedInputError(
            f"Failed to parse export: {str(e)}. "
            f"Suggestion: Perseus text exports are tab-separated; check the file was not re-saved "
            f"with another delimiter."
        )
    except FileNotFoundError:
        raise MalformedInputError(
            f"File not found: {file_path}. "
            f"Suggestion: Check the file path is correct and the file exists."
        )
    except Exception as e:
        raise MalformedInputError(
            f"Error reading file: {str(e)}. "
            f"Suggestion: Ensure the file is not corrupted and is in a supported format "
            f"(TXT, TSV, CSV or Excel)."
        )

    if grid.empty:
        raise MalformedInputError("File is empty. Ensure the export contains data rows.")
    return grid


class PerseusParser:
    """Perseus export parser with an explicit, validated header descriptor."""

    def __init__(
        self,
        annotation_columns: Optional[Mapping[str, str]] = None,
        peptide_marker: str = PEPTIDE_COUNT_MARKER,
        pvalue_marker: str = PVALUE_MARKER,
        difference_marker: str = DIFFERENCE_MARKER,
    ):
        self.annotation_columns = dict(annotation_columns or DEFAULT_ANNOTATION_COLUMNS)
        self.peptide_marker = peptide_marker
        self.pvalue_marker = pvalue_marker
        self.difference_marker = difference_marker

    def parse(
        self,
        file_path: Union[str, PathLike[str]],
        researcher_name: str,
        work_order: str,
    ) -> RawExport:
        """Parse a Perseus export file."""
        file_path = str(file_path)
        grid = read_export_grid(file_path)
        logger.info(f"Read {file_path}: {grid.shape[0]} rows × {grid.shape[1]} columns")
        return self.parse_grid(grid, researcher_name, work_order)

    def parse_grid(
        self, grid: pd.DataFrame, researcher_name: str, work_order: str
    ) -> RawExport:
        """
        Parse an already-loaded export grid (row 0 = column names).

        Raises:
            MalformedInputError: Missing header rows, annotation columns or
                non-numeric measurement values
            AmbiguousKeyError: Duplicate column names or colliding keys
        """
        if len(grid) < 1 + METADATA_HEADER_ROWS:
            raise MalformedInputError(
                f"Export has {len(grid)} rows but needs a header row plus "
                f"{METADATA_HEADER_ROWS} metadata rows before the protein rows.",
                details={"rows": len(grid)},
            )

        column_names = [_cell_text(v) for v in grid.iloc[0].tolist()]
        if any(not name for name in column_names):
            blank = [i for i, name in enumerate(column_names) if not name]
            raise MalformedInputError(
                f"Export has {len(blank)} unnamed column(s) at positions {blank[:5]}.",
                details={"positions": blank},
            )
        duplicated = sorted({n for n in column_names if column_names.count(n) > 1})
        if duplicated:
            raise AmbiguousKeyError(
                f"Duplicate column names in export: {', '.join(duplicated[:5])}.",
                details={"columns": duplicated},
            )

        header = grid.iloc[1 : 1 + METADATA_HEADER_ROWS].reset_index(drop=True)
        header.columns = column_names
        body = grid.iloc[1 + METADATA_HEADER_ROWS :].reset_index(drop=True)
        body.columns = column_names

        missing = [c for c in self.annotation_columns if c not in column_names]
        if missing:
            raise MalformedInputError(
                f"Export is missing annotation columns: {', '.join(missing)}. "
                f"Suggestion: Include protein IDs, gene names and protein names in the Perseus export.",
                details={"missing": missing, "available": column_names[:10]},
            )

        raw_labels = {c: _cell_text(header.at[SAMPLE_LABEL_ROW, c]) for c in column_names}
        raw_groups = {c: _cell_text(header.at[GROUP_LABEL_ROW, c]) for c in column_names}
        labelled = {c: label for c, label in raw_labels.items() if label and c not in self.annotation_columns}
        numeric_columns = {c for c in column_names if _is_numeric_column(body[c])}
        median_candidates = {
            c
            for c in numeric_columns
            if _is_median_candidate(body[c], _type_code(header.at[TYPE_ROW, c]))
        }

        descriptors = describe_columns(
            column_names,
            researcher_name,
            work_order,
            sample_labels=labelled,
            numeric_columns=median_candidates,
            annotation_columns=self.annotation_columns,
            peptide_marker=self.peptide_marker,
            pvalue_marker=self.pvalue_marker,
            difference_marker=self.difference_marker,
        )

        measurement_names = [d.raw_name for d in descriptors if d.kind in MEASUREMENT_KINDS]
        non_numeric = [c for c in measurement_names if c not in numeric_columns]
        if non_numeric:
            examples = {
                c: body[c][pd.to_numeric(body[c], errors="coerce").isna() & body[c].notna()]
                .head(3)
                .tolist()
                for c in non_numeric[:3]
            }
            raise MalformedInputError(
                f"Measurement columns contain non-numeric values: {', '.join(non_numeric[:5])}. "
                f"Suggestion: Check for text placeholders in the quantification columns.",
                details={"columns": non_numeric, "examples": examples},
            )

        measurements = body.loc[:, measurement_names].apply(pd.to_numeric).astype(float)

        annotation_names = [d.raw_name for d in descriptors if d.kind == ColumnKind.ANNOTATION]
        annotations = body.loc[:, annotation_names].rename(columns=self.annotation_columns)
        annotations = annotations.loc[:, ANNOTATION_FIELDS]

        abundance_columns = [d.raw_name for d in descriptors if d.kind == ColumnKind.ABUNDANCE]
        sample_labels = {c: labelled[c] for c in abundance_columns if c in labelled}
        group_labels = {c: raw_groups[c] for c in abundance_columns if raw_groups[c]}

        dropped = [d.raw_name for d in descriptors if d.kind == ColumnKind.UNUSED]
        warnings = []
        if dropped:
            warnings.append(
                f"Dropped {len(dropped)} non-numeric column(s) not recognised as annotation "
                f"or measurement: {', '.join(dropped[:5])}{'...' if len(dropped) > 5 else ''}"
            )

        counts = {
            kind.value: sum(1 for d in descriptors if d.kind == kind) for kind in MEASUREMENT_KINDS
        }
        logger.info(f"Classified export columns for {len(body)} proteins: {counts}")

        return RawExport(
            annotations=annotations,
            measurements=measurements,
            sample_labels=sample_labels,
            group_labels=group_labels,
            columns=descriptors,
            researcher_name=researcher_name,
            work_order=work_order,
            warnings=warnings,
            dropped_columns=dropped,
        )
