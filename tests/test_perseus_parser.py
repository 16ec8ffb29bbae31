# pyright: reportMissingImports=false
"""Tests for Perseus export parsing, column classification and metadata."""

import warnings

import pandas as pd
import pytest

from perseus_parser import (
    AmbiguousKeyError,
    ColumnKind,
    MalformedInputError,
    PerseusParser,
    SilentMismatchWarning,
    build_metadata,
    describe_columns,
    normalize_comparison,
    normalize_group_name,
    read_export_grid,
    split_comparison,
    strip_run_qualifiers,
)
from reconciliation import run_pipeline


class TestStripRunQualifiers:
    def test_recovers_sample(self):
        names = ["jdoe_s1_23_001", "jdoe_s2_23_001"]
        assert strip_run_qualifiers(names, "jdoe", "23_001") == ["s1", "s2"]

    @pytest.mark.parametrize(
        "researcher,sample,work_order",
        [("jdoe", "s1", "23_001"), ("lab", "Ctrl", "WO7"), ("a", "b", "c")],
    )
    def test_built_name_recovers_sample(self, researcher, sample, work_order):
        name = f"{researcher}_{sample}_{work_order}"
        assert strip_run_qualifiers([name], researcher, work_order) == [sample]

    def test_strips_extra_prefix_first(self):
        names = ["number_peptides_jdoe_s1_23_001"]
        assert strip_run_qualifiers(names, "jdoe", "23_001", "number_peptides_") == ["s1"]

    def test_comparison_identifier(self):
        names = ["p_value_jdoe_GroupA/GroupB_23_001"]
        assert strip_run_qualifiers(names, "jdoe", "23_001", "p_value_") == ["GroupA/GroupB"]

    def test_preserves_order(self):
        names = ["jdoe_z_23_001", "jdoe_a_23_001", "jdoe_m_23_001"]
        assert strip_run_qualifiers(names, "jdoe", "23_001") == ["z", "a", "m"]

    def test_missing_researcher_qualifier(self):
        with pytest.raises(MalformedInputError, match="researcher qualifier"):
            strip_run_qualifiers(["other_s1_23_001"], "jdoe", "23_001")

    def test_missing_work_order_qualifier(self):
        with pytest.raises(MalformedInputError, match="work order qualifier"):
            strip_run_qualifiers(["jdoe_s1_99_999"], "jdoe", "23_001")

    def test_nothing_left_after_stripping(self):
        with pytest.raises(MalformedInputError):
            strip_run_qualifiers(["jdoe__23_001"], "jdoe", "23_001")

    def test_missing_extra_prefix(self):
        with pytest.raises(MalformedInputError, match="expected prefix"):
            strip_run_qualifiers(["jdoe_s1_23_001"], "jdoe", "23_001", "number_peptides_")

    def test_collision_is_ambiguous(self):
        names = ["jdoe_s1_23_001", "jdoe_s1_23_001"]
        with pytest.raises(AmbiguousKeyError, match="both reduce to 's1'"):
            strip_run_qualifiers(names, "jdoe", "23_001")

    def test_requires_run_parameters(self):
        with pytest.raises(MalformedInputError, match="required"):
            strip_run_qualifiers(["jdoe_s1_23_001"], "", "23_001")

    def test_empty_input(self):
        assert strip_run_qualifiers([], "jdoe", "23_001") == []


class TestNaming:
    def test_normalize_group_name(self):
        assert normalize_group_name("Group-A") == "Group_A"
        assert normalize_group_name(" Control ") == "Control"

    def test_split_comparison(self):
        assert split_comparison("GroupA/GroupB") == ("GroupA", "GroupB")

    @pytest.mark.parametrize("bad", ["GroupA", "A/B/C", "/GroupB", "GroupA/"])
    def test_split_comparison_rejects_malformed(self, bad):
        with pytest.raises(MalformedInputError):
            split_comparison(bad)

    def test_normalize_comparison(self):
        assert normalize_comparison("Group-A/Group-B") == "Group_A/Group_B"


class TestDescribeColumns:
    def test_classification(self):
        names = [
            "Majority protein IDs",
            "Gene names",
            "Protein names",
            "jdoe_s1_23_001",
            "number_peptides_jdoe_s1_23_001",
            "Group-A",
            "p_value_jdoe_Group-A/Group-B_23_001",
            "difference_jdoe_Group-A/Group-B_23_001",
            "Fasta headers",
        ]
        numeric = set(names[3:8])
        descriptors = describe_columns(
            names, "jdoe", "23_001", sample_labels={}, numeric_columns=numeric
        )

        assert [d.raw_name for d in descriptors] == names
        assert [(d.kind, d.key) for d in descriptors] == [
            (ColumnKind.ANNOTATION, "accession"),
            (ColumnKind.ANNOTATION, "gene"),
            (ColumnKind.ANNOTATION, "protein_name"),
            (ColumnKind.ABUNDANCE, "s1"),
            (ColumnKind.PEPTIDE_COUNT, "s1"),
            (ColumnKind.GROUP_MEDIAN, "Group_A"),
            (ColumnKind.PVALUE, "Group_A/Group_B"),
            (ColumnKind.DIFFERENCE, "Group_A/Group_B"),
            (ColumnKind.UNUSED, None),
        ]

    def test_requires_abundance_columns(self):
        with pytest.raises(MalformedInputError, match="No sample abundance columns"):
            describe_columns(
                ["Majority protein IDs", "Gene names", "Protein names", "GroupA"],
                "jdoe",
                "23_001",
                sample_labels={},
                numeric_columns={"GroupA"},
            )

    def test_group_medians_colliding_after_normalization(self):
        with pytest.raises(AmbiguousKeyError, match="Group_A"):
            describe_columns(
                ["jdoe_s1_23_001", "Group-A", "Group_A"],
                "jdoe",
                "23_001",
                sample_labels={},
                numeric_columns={"jdoe_s1_23_001", "Group-A", "Group_A"},
            )


class TestPerseusParser:
    def test_parse_fixture_export(self, raw_export):
        assert raw_export.n_proteins == 3
        assert list(raw_export.annotations.columns) == ["accession", "gene", "protein_name"]
        assert raw_export.annotations["accession"].tolist() == ["P12345", "Q67890", "O11111"]
        assert raw_export.keys(ColumnKind.ABUNDANCE) == ["s1", "s2", "s3", "s4"]
        assert raw_export.keys(ColumnKind.PEPTIDE_COUNT) == ["s1", "s2", "s3", "s4"]
        assert raw_export.keys(ColumnKind.GROUP_MEDIAN) == ["Group_A", "Group_B"]
        assert raw_export.keys(ColumnKind.PVALUE) == ["Group_A/Group_B"]
        assert raw_export.keys(ColumnKind.DIFFERENCE) == ["Group_A/Group_B"]

    def test_unused_columns_dropped_with_warning(self, raw_export):
        assert raw_export.dropped_columns == ["Fasta headers"]
        assert any("Fasta headers" in w for w in raw_export.warnings)
        assert "Fasta headers" not in raw_export.measurements.columns

    def test_measurements_are_float_with_missing_values(self, raw_export):
        s2 = raw_export.measurements["jdoe_s2_23_001"]
        assert s2.dtype == float
        assert s2.iloc[0] == 100.0
        assert pd.isna(s2.iloc[1])

    def test_missing_gene_name_is_null(self, raw_export):
        assert pd.isna(raw_export.annotations["gene"].iloc[1])

    def test_block_is_keyed_by_identifier(self, raw_export):
        block = raw_export.block(ColumnKind.ABUNDANCE)
        assert list(block.columns) == [
            "protein_row", "accession", "gene", "protein_name", "s1", "s2", "s3", "s4",
        ]
        assert block["protein_row"].tolist() == [0, 1, 2]
        assert block["s1"].tolist() == [10.0, 0.0, 1000.0]

    def test_sample_and_group_labels(self, raw_export):
        assert raw_export.sample_labels["jdoe_s3_23_001"] == "jdoe_s3_23_001"
        assert raw_export.group_labels["jdoe_s3_23_001"] == "Group-B"

    def test_parse_csv(self, parser, simple_grid, tmp_path):
        path = tmp_path / "export.csv"
        simple_grid.to_csv(path, header=False, index=False)
        export = parser.parse(path, "jdoe", "23_001")
        assert export.keys(ColumnKind.ABUNDANCE) == ["S1", "S2"]
        assert export.measurements["jdoe_S2_23_001"].tolist() == [20.0, 200.0]

    def test_parse_excel(self, parser, simple_grid, tmp_path):
        path = tmp_path / "export.xlsx"
        simple_grid.to_excel(path, header=False, index=False)
        export = parser.parse(path, "jdoe", "23_001")
        assert export.n_proteins == 2
        assert export.keys(ColumnKind.ABUNDANCE) == ["S1", "S2"]

    def test_file_not_found(self, parser, tmp_path):
        with pytest.raises(MalformedInputError, match="File not found"):
            parser.parse(tmp_path / "missing.txt", "jdoe", "23_001")

    def test_read_export_grid_empty_file(self, tmp_path):
        path = tmp_path / "empty.txt"
        path.write_text("")
        with pytest.raises(MalformedInputError, match="empty"):
            read_export_grid(str(path))

    def test_too_few_rows(self, parser, simple_grid):
        with pytest.raises(MalformedInputError, match="metadata rows"):
            parser.parse_grid(simple_grid.iloc[:3], "jdoe", "23_001")

    def test_missing_annotation_column(self, parser, simple_grid):
        with pytest.raises(MalformedInputError, match="Gene names"):
            parser.parse_grid(simple_grid.drop(columns=1), "jdoe", "23_001")

    def test_custom_annotation_columns(self, grid):
        g = grid.build([grid.sample("S1", "A", [1.0])], accessions=["P1"])
        g.iloc[0, 0] = "Protein IDs"
        parser = PerseusParser(
            annotation_columns={
                "Protein IDs": "accession",
                "Gene names": "gene",
                "Protein names": "protein_name",
            }
        )
        export = parser.parse_grid(g, "jdoe", "23_001")
        assert export.annotations["accession"].tolist() == ["P1"]

    def test_duplicate_column_names(self, parser, grid):
        g = grid.build(
            [grid.sample("S1", "A", [1.0]), grid.sample("S1", "A", [2.0])],
            accessions=["P1"],
        )
        with pytest.raises(AmbiguousKeyError, match="Duplicate column names"):
            parser.parse_grid(g, "jdoe", "23_001")

    def test_non_numeric_abundance(self, parser, grid):
        g = grid.build([grid.sample("S1", "A", ["1.0", "n/a value"])], accessions=["P1", "P2"])
        with pytest.raises(MalformedInputError, match="non-numeric"):
            parser.parse_grid(g, "jdoe", "23_001")

    def test_labelled_column_without_run_qualifiers(self, parser, grid):
        g = grid.build([("S1", "jdoe_S1_23_001", "A", [1.0])], accessions=["P1"])
        with pytest.raises(MalformedInputError, match="researcher qualifier"):
            parser.parse_grid(g, "jdoe", "23_001")

    def test_wrong_work_order(self, parser, simple_grid):
        with pytest.raises(MalformedInputError, match="work order qualifier"):
            parser.parse_grid(simple_grid, "jdoe", "99_999")

    def test_malformed_comparison_column(self, parser, grid):
        g = grid.build(
            [grid.sample("S1", "A", [1.0]), grid.pvalue("GroupA", [0.5])],
            accessions=["P1"],
        )
        with pytest.raises(MalformedInputError, match="exactly two groups"):
            parser.parse_grid(g, "jdoe", "23_001")

    def test_unlabelled_run_qualified_column_is_abundance(self, parser, grid):
        g = grid.build(
            [grid.sample("S1", "A", [1.0]), grid.sample("S2", "A", [2.0], label=False)],
            accessions=["P1"],
        )
        export = parser.parse_grid(g, "jdoe", "23_001")
        assert export.keys(ColumnKind.ABUNDANCE) == ["S1", "S2"]
        assert list(export.sample_labels) == ["jdoe_S1_23_001"]


    @pytest.fixture
    def grid_with_filter_column(self, grid):
        g = grid.build(
            [
                grid.sample("S1", "GroupA", [1.0, 2.0]),
                grid.sample("S2", "GroupA", [3.0, 4.0]),
                grid.median("GroupA", [2.0, 3.0]),
                ("Reverse", None, None, [None, None]),
            ],
            accessions=["P1", "P2"],
        )
        g.iloc[1, -1] = "C"
        return g

    def test_empty_categorical_column_is_unused(self, parser, grid_with_filter_column):
        export = parser.parse_grid(grid_with_filter_column, "jdoe", "23_001")
        assert export.keys(ColumnKind.GROUP_MEDIAN) == ["GroupA"]
        assert export.dropped_columns == ["Reverse"]

        with warnings.catch_warnings():
            warnings.simplefilter("error", SilentMismatchWarning)
            result = run_pipeline(export)
        assert result.group_level["group"].unique().tolist() == ["GroupA"]
        assert result.issues == []

    def test_numeric_values_in_text_typed_column_are_unused(self, parser, grid):
        g = grid.build(
            [grid.sample("S1", "A", [1.0, 2.0]), ("Score", None, None, ["5", "7"])],
            accessions=["P1", "P2"],
        )
        g.iloc[1, -1] = "T"
        export = parser.parse_grid(g, "jdoe", "23_001")
        assert export.keys(ColumnKind.GROUP_MEDIAN) == []
        assert export.dropped_columns == ["Score"]

    def test_untyped_empty_column_is_unused(self, parser, grid_with_filter_column):
        grid_with_filter_column.iloc[1, -1] = None
        export = parser.parse_grid(grid_with_filter_column, "jdoe", "23_001")
        assert export.dropped_columns == ["Reverse"]

    def test_prefixed_type_code(self, parser, grid_with_filter_column):
        grid_with_filter_column.iloc[1, -2] = "#!{Type}N"
        export = parser.parse_grid(grid_with_filter_column, "jdoe", "23_001")
        assert export.keys(ColumnKind.GROUP_MEDIAN) == ["GroupA"]

class TestBuildMetadata:
    def test_fixture_metadata(self, raw_export):
        metadata = build_metadata(raw_export)
        assert dict(metadata) == {
            "s1": "Group_A",
            "s2": "Group_A",
            "s3": "Group_B",
            "s4": "Group_B",
        }

    def test_metadata_is_read_only(self, raw_export):
        metadata = build_metadata(raw_export)
        with pytest.raises(TypeError):
            metadata["s1"] = "Other"

    def test_idempotent(self, raw_export):
        assert dict(build_metadata(raw_export)) == dict(build_metadata(raw_export))

    def test_label_without_trailing_suffix(self, parser, grid):
        g = grid.build([("jdoe_S1_23_001", "jdoe_S1", "A", [1.0])], accessions=["P1"])
        export = parser.parse_grid(g, "jdoe", "23_001")
        assert dict(build_metadata(export)) == {"S1": "A"}

    def test_label_without_delimiters(self, parser, grid):
        g = grid.build([("jdoe_S1_23_001", "badlabel", "A", [1.0])], accessions=["P1"])
        export = parser.parse_grid(g, "jdoe", "23_001")
        with pytest.raises(MalformedInputError, match="badlabel"):
            build_metadata(export)

    def test_missing_group_label(self, parser, grid):
        g = grid.build([("jdoe_S1_23_001", "jdoe_S1_23_001", None, [1.0])], accessions=["P1"])
        export = parser.parse_grid(g, "jdoe", "23_001")
        with pytest.raises(MalformedInputError, match="no group label"):
            build_metadata(export)

    def test_conflicting_groups_for_one_sample(self, parser, grid):
        g = grid.build(
            [
                ("jdoe_S1_23_001", "jdoe_S1_23_001", "A", [1.0]),
                ("jdoe_S1rep_23_001", "jdoe_S1_23_001", "B", [2.0]),
            ],
            accessions=["P1"],
        )
        export = parser.parse_grid(g, "jdoe", "23_001")
        with pytest.raises(AmbiguousKeyError, match="assigned to both"):
            build_metadata(export)

    def test_same_group_after_normalization_is_not_a_conflict(self, parser, grid):
        g = grid.build(
            [
                ("jdoe_S1_23_001", "jdoe_S1_23_001", "Group-A", [1.0]),
                ("jdoe_S1rep_23_001", "jdoe_S1_23_001", "Group_A", [2.0]),
            ],
            accessions=["P1"],
        )
        export = parser.parse_grid(g, "jdoe", "23_001")
        assert dict(build_metadata(export)) == {"S1": "Group_A"}
