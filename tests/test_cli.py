"""
Tests for the robustde command-line interface.
"""

from __future__ import annotations

import pandas as pd
import pytest

from robustde import __version__
from robustde.cli import main
from robustde.io.writers import write_csv_matrix


@pytest.fixture
def counts_csv(tmp_path, count_matrix):
    return write_csv_matrix(count_matrix, tmp_path / "counts")


class TestCli:
    """robustde run / --version."""

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "run" in capsys.readouterr().out

    def test_run_workbook(self, tmp_path, counts_csv):
        output = tmp_path / "results" / "scores"
        code = main(["run", "--input", str(counts_csv), "--output", str(output), "--seed", "0"])

        assert code == 0
        workbook = tmp_path / "results" / "scores.xlsx"
        assert workbook.exists()
        sheets = pd.read_excel(workbook, sheet_name=None, index_col=0)
        assert {"zscore", "fdr", "outliers_genes", "outliers_samples"} <= set(sheets)

    def test_run_csv(self, tmp_path, counts_csv):
        output = tmp_path / "scores"
        code = main(["run", "-i", str(counts_csv), "-o", str(output), "--csv", "--ddof", "1"])

        assert code == 0
        z = pd.read_csv(tmp_path / "scores.zscore.csv", index_col=0)
        fdr = pd.read_csv(tmp_path / "scores.fdr.csv", index_col=0)
        assert z.shape == fdr.shape
        assert ((fdr >= 0) & (fdr <= 1)).all().all()

    def test_run_by_lineage(self, tmp_path, counts_csv):
        output = tmp_path / "scores"
        code = main([
            "run", "--input", str(counts_csv), "--output", str(output),
            "--group-by", "lineage", "--csv",
        ])

        assert code == 0
        assert (tmp_path / "scores.LUNG.zscore.csv").exists()
        assert (tmp_path / "scores.BREAST.fdr.csv").exists()

    def test_config_file(self, tmp_path, counts_csv):
        config = tmp_path / "cfg.yaml"
        config.write_text(
            f"input: {counts_csv}\n"
            f"output: {tmp_path / 'from_config'}\n"
            "outliers: {filter_samples: false}\n"
            "scoring: {ddof: 1}\n"
        )
        code = main(["run", "--config", str(config), "--csv"])

        assert code == 0
        assert (tmp_path / "from_config.zscore.csv").exists()

    def test_invalid_config(self, tmp_path, counts_csv):
        config = tmp_path / "cfg.yaml"
        config.write_text("normalization: {method: tmm}\n")
        code = main(["run", "--config", str(config), "-i", str(counts_csv),
                     "-o", str(tmp_path / "x")])
        assert code == 1

    def test_missing_input_argument(self, tmp_path):
        assert main(["run", "--output", str(tmp_path / "x")]) == 1

    def test_missing_input_file(self, tmp_path):
        code = main(["run", "--input", str(tmp_path / "nope.csv"), "--output", str(tmp_path / "x")])
        assert code == 1

    def test_invalid_alpha_rejected_by_parser(self, tmp_path, counts_csv):
        with pytest.raises(SystemExit) as exc_info:
            main(["run", "-i", str(counts_csv), "-o", str(tmp_path / "x"), "--alpha", "2"])
        assert exc_info.value.code == 2
