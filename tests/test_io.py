"""
Tests for count-matrix loaders and score writers.
"""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from robustde.io.loaders import (
    load_count_matrix,
    load_sample_metadata,
    parse_lineage,
    sniff_delimiter,
)
from robustde.io.writers import write_csv_matrix, write_score_csv, write_score_workbook
from robustde.quality.outliers import filter_outliers
from robustde.stats.scoring import compute_scores

GCT_TEXT = (
    "#1.2\n"
    "3\t3\n"
    "Name\tDescription\t22RV1_PROSTATE\tA549_LUNG\tHCT116_LARGE_INTESTINE\n"
    "ENSG00000141510.16\tTP53\t10\t20\t30\n"
    "ENSG00000133703.12\tKRAS\t0\t5\t1\n"
    "ENSG00000111640.14\tGAPDH\t900\t800\t1000\n"
)


class TestLoaders:
    """GCT and delimited count matrices."""

    def test_load_gct(self, tmp_path):
        path = tmp_path / "counts.gct"
        path.write_text(GCT_TEXT)

        matrix = load_count_matrix(path)

        assert matrix.shape == (3, 3)
        assert list(matrix.feature_ids) == [
            "ENSG00000141510.16", "ENSG00000133703.12", "ENSG00000111640.14"
        ]
        assert list(matrix.sample_ids) == ["22RV1_PROSTATE", "A549_LUNG", "HCT116_LARGE_INTESTINE"]
        np.testing.assert_array_equal(matrix.data[0], [10.0, 20.0, 30.0])
        assert list(matrix.sample_metadata["lineage"]) == ["PROSTATE", "LUNG", "LARGE_INTESTINE"]

    def test_gct_detected_by_header(self, tmp_path):
        path = tmp_path / "counts.txt"
        path.write_text(GCT_TEXT)
        assert load_count_matrix(path).shape == (3, 3)

    def test_load_csv_drops_annotation_column(self, tmp_path):
        path = tmp_path / "counts.csv"
        path.write_text(
            "gene_id,gene_name,A549_LUNG,MCF7_BREAST\n"
            "ENSG1,TP53,1,2\n"
            "ENSG2,KRAS,3,4\n"
        )
        matrix = load_count_matrix(path)
        assert list(matrix.sample_ids) == ["A549_LUNG", "MCF7_BREAST"]
        np.testing.assert_array_equal(matrix.data, [[1.0, 2.0], [3.0, 4.0]])

    def test_load_tsv(self, tmp_path):
        path = tmp_path / "counts.tsv"
        path.write_text("gene\tS1_SKIN\tS2_SKIN\nG1\t1\t2\nG2\t3\t4\n")
        matrix = load_count_matrix(path, infer_lineage=False)
        assert matrix.shape == (2, 2)
        assert list(matrix.sample_metadata.columns) == []

    def test_missing_values_warn(self, tmp_path):
        path = tmp_path / "counts.csv"
        path.write_text("gene,S1,S2\nG1,1,\nG2,3,4\n")
        with pytest.warns(UserWarning, match="missing values"):
            matrix = load_count_matrix(path)
        assert np.isnan(matrix.data[0, 1])

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_count_matrix(tmp_path / "nope.gct")

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_text("")
        with pytest.raises(ValueError):
            load_count_matrix(path, format="delimited")

    def test_sniff_delimiter(self, tmp_path):
        path = tmp_path / "x.txt"
        path.write_text("a;b;c\n1;2;3\n")
        assert sniff_delimiter(path) == ";"

    def test_parse_lineage(self):
        meta = parse_lineage(pd.Index(["HCT116_LARGE_INTESTINE", "WEIRD"]))
        assert list(meta["cell_line"]) == ["HCT116", "WEIRD"]
        assert list(meta["lineage"]) == ["LARGE_INTESTINE", "UNKNOWN"]

    def test_load_sample_metadata(self, tmp_path):
        path = tmp_path / "meta.csv"
        path.write_text("sample,lineage,sex\nA549_LUNG,lung,M\nMCF7_BREAST,breast,F\n")
        meta = load_sample_metadata(path)
        assert list(meta.index) == ["A549_LUNG", "MCF7_BREAST"]
        assert list(meta.columns) == ["lineage", "sex"]


class TestWriters:
    """Workbook and CSV output."""

    @pytest.fixture
    def scores(self):
        rng = np.random.default_rng(0)
        df = pd.DataFrame(
            rng.normal(size=(6, 4)),
            index=[f"GENE{i}" for i in range(6)],
            columns=["A549_LUNG", "MCF7_BREAST", "22RV1_PROSTATE", "K562_HAEMATOPOIETIC"],
        )
        return compute_scores(df)

    def test_workbook_sheets_and_labels(self, tmp_path, scores, planted_outlier):
        matrix, ids = planted_outlier
        partition = filter_outliers(matrix, ids, axis="genes")

        path = write_score_workbook(scores, tmp_path / "out" / "scores",
                                    partitions={"genes": partition})

        assert path.suffix == ".xlsx"
        sheets = pd.read_excel(path, sheet_name=None, index_col=0)
        assert set(sheets) == {"zscore", "fdr", "pvalue_raw", "outliers_genes"}

        z = sheets["zscore"]
        assert list(z.index) == list(scores.z.index)
        assert list(z.columns) == list(scores.z.columns)
        np.testing.assert_allclose(z.to_numpy(), scores.z.to_numpy())
        np.testing.assert_allclose(sheets["fdr"].to_numpy(), scores.p.to_numpy())

        assert list(sheets["outliers_genes"].index) == ["GENE_4"]

    def test_workbook_without_raw(self, tmp_path, scores):
        path = write_score_workbook(scores, tmp_path / "scores.xlsx", include_raw=False)
        assert set(pd.read_excel(path, sheet_name=None)) == {"zscore", "fdr"}

    def test_workbook_type_check(self, tmp_path):
        with pytest.raises(TypeError):
            write_score_workbook(pd.DataFrame(), tmp_path / "x.xlsx")

    def test_score_csv(self, tmp_path, scores):
        z_path, fdr_path = write_score_csv(scores, tmp_path / "scores")

        assert z_path.name == "scores.zscore.csv"
        assert fdr_path.name == "scores.fdr.csv"
        reloaded = pd.read_csv(fdr_path, index_col=0)
        np.testing.assert_allclose(reloaded.to_numpy(), scores.p.to_numpy())

    def test_csv_matrix_round_trip(self, tmp_path, small_matrix):
        path = write_csv_matrix(small_matrix, tmp_path / "counts")
        reloaded = load_count_matrix(path)
        np.testing.assert_array_equal(reloaded.data, small_matrix.data)
        assert list(reloaded.feature_ids) == list(small_matrix.feature_ids)
