"""
Wide-to-long reconciliation of a parsed Perseus export.

Turns a RawExport into three analysis-ready long-format tables:
- sample level: one row per (protein, sample)
- group level: one row per (protein, group), medians as exported
- comparisons: one row per (protein, comparison)

Identifiers that do not line up across blocks are reported as
ReconciliationIssue entries (logged and emitted as SilentMismatchWarning)
instead of silently turning into null join targets.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Sequence, Union
import logging
import warnings
import numpy as np
import pandas as pd

from perseus_parser import (
    ANNOTATION_FIELDS,
    ColumnKind,
    RawExport,
    SampleMetadata,
    SilentMismatchWarning,
    UnmatchedIdentifierError,
    build_metadata,
    split_comparison,
)

logger = logging.getLogger(__name__)

PROTEIN_ROW = "protein_row"
ID_COLUMNS = [PROTEIN_ROW] + ANNOTATION_FIELDS

SAMPLE_LEVEL_COLUMNS = ANNOTATION_FIELDS + [
    "sample",
    "group",
    "abundance",
    "log2_abundance",
    "peptide_count",
]
GROUP_LEVEL_COLUMNS = ANNOTATION_FIELDS + ["group", "median_abundance"]
COMPARISON_COLUMNS = ANNOTATION_FIELDS + ["comparison", "log2_fold_change", "p_value"]


class UnmatchedPolicy(Enum):
    """What to do with sample rows whose sample has no metadata entry."""

    KEEP = "keep"  # retain with a null group (issue still reported)
    DROP = "drop"
    ERROR = "error"


class IssueKind(Enum):
    SAMPLE_NOT_IN_METADATA = "sample_not_in_metadata"
    METADATA_SAMPLE_WITHOUT_ABUNDANCE = "metadata_sample_without_abundance"
    PEPTIDE_SAMPLE_WITHOUT_ABUNDANCE = "peptide_sample_without_abundance"
    GROUP_MEDIAN_WITHOUT_SAMPLES = "group_median_without_samples"
    GROUP_WITHOUT_MEDIAN = "group_without_median"
    COMPARISON_GROUP_UNKNOWN = "comparison_group_unknown"
    UNPAIRED_COMPARISON = "unpaired_comparison"


@dataclass(frozen=True)
class ReconciliationIssue:
    """An identifier present in one block of the export but missing from another."""

    kind: IssueKind
    identifier: str
    message: str


@dataclass(frozen=True)
class PipelineResult:
    """The three reconciled tables plus the metadata they were built from."""

    metadata: SampleMetadata
    sample_level: pd.DataFrame
    group_level: pd.DataFrame
    comparisons: pd.DataFrame
    issues: List[ReconciliationIssue]

    @property
    def groups(self) -> List[str]:
        """Metadata groups in order of first appearance."""
        return list(dict.fromkeys(self.metadata.values()))

    def issues_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [(i.kind.value, i.identifier, i.message) for i in self.issues],
            columns=["kind", "identifier", "message"],
        )


def reshape_long(
    table: pd.DataFrame,
    id_columns: Sequence[str],
    value_name: str,
    key_name: str = "key",
) -> pd.DataFrame:
    """
    Pivot every non-identifying column of a wide table into (key, value) rows.

    No rows are dropped, including rows with null values. Output is ordered by
    the original row first and by source column order second.

    Args:
        table: Wide table (identifying columns + one column per key)
        id_columns: Columns repeated on every output row
        value_name: Name of the value column
        key_name: Name of the key column (e.g. "sample", "comparison")

    Returns:
        Long-format DataFrame with len(table) × n_keys rows
    """
    id_columns = list(id_columns)
    value_columns = [c for c in table.columns if c not in id_columns]

    if not value_columns:
        empty = table.iloc[0:0][id_columns].copy()
        empty[key_name] = pd.Series(dtype=object)
        empty[value_name] = pd.Series(dtype=float)
        return empty.reset_index(drop=True)

    long_df = table.melt(
        id_vars=id_columns,
        value_vars=value_columns,
        var_name=key_name,
        value_name=value_name,
    )
    # melt stacks column by column; reorder to row-major
    order = np.arange(len(long_df)).reshape(len(value_columns), len(table)).T.ravel()
    return long_df.iloc[order].reset_index(drop=True)


def _outer_join(
    left: pd.DataFrame,
    right: pd.DataFrame,
    key_name: str,
    value_name: str,
    raw_export: RawExport,
) -> pd.DataFrame:
    """
    Outer-join two long blocks on (protein row, key), keeping pivot order.

    Annotation fields are re-attached by protein position so that null gene or
    protein names never take part in the join.
    """
    merged = left.drop(columns=ANNOTATION_FIELDS).merge(
        right.loc[:, [PROTEIN_ROW, key_name, value_name]],
        on=[PROTEIN_ROW, key_name],
        how="outer",
    )

    key_order = list(dict.fromkeys(list(left[key_name]) + list(right[key_name])))
    rank = {key: i for i, key in enumerate(key_order)}
    merged["_key_rank"] = merged[key_name].map(rank)
    merged = (
        merged.sort_values([PROTEIN_ROW, "_key_rank"], kind="mergesort")
        .drop(columns="_key_rank")
        .reset_index(drop=True)
    )

    for name in ANNOTATION_FIELDS:
        merged[name] = merged[PROTEIN_ROW].map(raw_export.annotations[name])
    return merged


def assemble_sample_level(
    raw_export: RawExport,
    metadata: SampleMetadata,
    policy: Union[UnmatchedPolicy, str] = UnmatchedPolicy.KEEP,
) -> pd.DataFrame:
    """
    Build the sample-level table.

    Abundance and peptide-count blocks are reshaped independently, outer-joined
    on (protein, sample), left-joined to metadata for the group, and
    log2 abundance is derived (null when abundance is null or ≤ 0).

    Raises:
        UnmatchedIdentifierError: If policy is ERROR and a sample has no group
    """
    policy = UnmatchedPolicy(policy)

    abundance = reshape_long(
        raw_export.block(ColumnKind.ABUNDANCE, PROTEIN_ROW), ID_COLUMNS, "abundance", "sample"
    )
    peptides = reshape_long(
        raw_export.block(ColumnKind.PEPTIDE_COUNT, PROTEIN_ROW), ID_COLUMNS, "peptide_count", "sample"
    )
    table = _outer_join(abundance, peptides, "sample", "peptide_count", raw_export)

    table["group"] = table["sample"].map(dict(metadata))
    unmatched = table["group"].isna()
    if unmatched.any():
        samples = list(dict.fromkeys(table.loc[unmatched, "sample"]))
        if policy == UnmatchedPolicy.ERROR:
            raise UnmatchedIdentifierError(
                f"{len(samples)} sample(s) have no group in the metadata header: "
                f"{', '.join(samples[:5])}{'...' if len(samples) > 5 else ''}. "
                f"Suggestion: Label every sample column in the sample and group header rows.",
                details={"samples": samples},
            )
        if policy == UnmatchedPolicy.DROP:
            logger.info(f"Dropping {int(unmatched.sum())} rows for unassigned samples: {samples}")
            table = table.loc[~unmatched].reset_index(drop=True)

    abundance_values = table["abundance"].astype(float)
    table["log2_abundance"] = np.log2(abundance_values.where(abundance_values > 0))

    return table.loc[:, SAMPLE_LEVEL_COLUMNS]


def assemble_group_level(raw_export: RawExport) -> pd.DataFrame:
    """
    Build the group-level table from the exported group-median columns.

    Medians are taken as exported, not recomputed. Metadata is not consulted;
    mismatching group names are reported by reconcile_identifiers.
    """
    table = reshape_long(
        raw_export.block(ColumnKind.GROUP_MEDIAN, PROTEIN_ROW),
        ID_COLUMNS,
        "median_abundance",
        "group",
    )
    return table.loc[:, GROUP_LEVEL_COLUMNS]


def assemble_comparisons(raw_export: RawExport) -> pd.DataFrame:
    """
    Build the comparison table.

    Difference (log2 fold change) and p-value blocks are reshaped independently
    and outer-joined on (protein row, comparison), so both values of a row come
    from the same source position. A comparison present in only one block gets
    a null for the missing side.
    """
    differences = reshape_long(
        raw_export.block(ColumnKind.DIFFERENCE, PROTEIN_ROW),
        ID_COLUMNS,
        "log2_fold_change",
        "comparison",
    )
    p_values = reshape_long(
        raw_export.block(ColumnKind.PVALUE, PROTEIN_ROW), ID_COLUMNS, "p_value", "comparison"
    )
    table = _outer_join(differences, p_values, "comparison", "p_value", raw_export)
    return table.loc[:, COMPARISON_COLUMNS]


def reconcile_identifiers(
    metadata: SampleMetadata, raw_export: RawExport
) -> List[ReconciliationIssue]:
    """
    List every sample, group or comparison identifier unmatched across blocks.

    Returns:
        Issues in a stable order (by check, then by export order)
    """
    abundance_samples = raw_export.keys(ColumnKind.ABUNDANCE)
    peptide_samples = raw_export.keys(ColumnKind.PEPTIDE_COUNT)
    median_groups = raw_export.keys(ColumnKind.GROUP_MEDIAN)
    pvalue_comparisons = raw_export.keys(ColumnKind.PVALUE)
    difference_comparisons = raw_export.keys(ColumnKind.DIFFERENCE)
    metadata_groups = list(dict.fromkeys(metadata.values()))

    issues: List[ReconciliationIssue] = []

    def add(kind: IssueKind, identifier: str, message: str) -> None:
        issues.append(ReconciliationIssue(kind=kind, identifier=identifier, message=message))

    for sample in abundance_samples:
        if sample not in metadata:
            add(
                IssueKind.SAMPLE_NOT_IN_METADATA,
                sample,
                f"Sample '{sample}' has abundance values but no group in the metadata header",
            )
    for sample in metadata:
        if sample not in abundance_samples:
            add(
                IssueKind.METADATA_SAMPLE_WITHOUT_ABUNDANCE,
                sample,
                f"Metadata sample '{sample}' does not match any abundance column",
            )
    for sample in peptide_samples:
        if sample not in abundance_samples:
            add(
                IssueKind.PEPTIDE_SAMPLE_WITHOUT_ABUNDANCE,
                sample,
                f"Peptide counts for sample '{sample}' have no matching abundance column",
            )
    for group in median_groups:
        if group not in metadata_groups:
            add(
                IssueKind.GROUP_MEDIAN_WITHOUT_SAMPLES,
                group,
                f"Group median column '{group}' matches no sample group",
            )
    for group in metadata_groups:
        if group not in median_groups:
            add(
                IssueKind.GROUP_WITHOUT_MEDIAN,
                group,
                f"Group '{group}' has samples but no group median column",
            )
    for comparison in dict.fromkeys(difference_comparisons + pvalue_comparisons):
        if comparison not in pvalue_comparisons or comparison not in difference_comparisons:
            missing = "p-value" if comparison not in pvalue_comparisons else "difference"
            add(
                IssueKind.UNPAIRED_COMPARISON,
                comparison,
                f"Comparison '{comparison}' has no {missing} column",
            )
        for group in split_comparison(comparison):
            if group not in metadata_groups:
                add(
                    IssueKind.COMPARISON_GROUP_UNKNOWN,
                    comparison,
                    f"Comparison '{comparison}' refers to unknown group '{group}'",
                )

    return issues


def report_issues(issues: Sequence[ReconciliationIssue]) -> None:
    """Log each issue and emit it as a SilentMismatchWarning."""
    for issue in issues:
        logger.warning(f"Reconciliation: {issue.message}")
        warnings.warn(issue.message, SilentMismatchWarning, stacklevel=3)


def run_pipeline(
    raw_export: RawExport,
    unmatched_samples: Union[UnmatchedPolicy, str] = UnmatchedPolicy.KEEP,
) -> PipelineResult:
    """
    Main entry point: RawExport → SampleMetadata → the three long tables.

    Args:
        raw_export: Parsed Perseus export
        unmatched_samples: Policy for samples missing from the metadata header

    Returns:
        PipelineResult with all tables and reconciliation issues

    Raises:
        PerseusValidationError subclasses on any fatal condition (no partial output)
    """
    metadata = build_metadata(raw_export)
    issues = reconcile_identifiers(metadata, raw_export)
    report_issues(issues)

    sample_level = assemble_sample_level(raw_export, metadata, unmatched_samples)
    group_level = assemble_group_level(raw_export)
    comparisons = assemble_comparisons(raw_export)

    logger.info(
        f"Reconciled {raw_export.n_proteins} proteins: {len(sample_level)} sample rows, "
        f"{len(group_level)} group rows, {len(comparisons)} comparison rows, "
        f"{len(issues)} issue(s)"
    )

    return PipelineResult(
        metadata=metadata,
        sample_level=sample_level,
        group_level=group_level,
        comparisons=comparisons,
        issues=issues,
    )
