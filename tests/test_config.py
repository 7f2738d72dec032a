"""
Tests for YAML/JSON config loading, validation and CLI merging.
"""

from __future__ import annotations

import json
from argparse import Namespace
from pathlib import Path

import pytest

from robustde.cli.config import load_config, merge_config_with_args, validate_config
from robustde.pipeline import PipelineConfig

YAML_TEXT = """
input: counts.gct
output: results/scores
coverage: {min_cpm: 2.0, min_prevalence: 0.2}
outliers: {seed: 7, alpha: 0.8, log_transform: false, filter_samples: false}
normalization: {method: cpm, pseudocount: 0.5}
scoring: {ddof: 1, fdr_method: BY, alpha: 0.01, on_degenerate: nan}
"""


def _cli_defaults(**overrides) -> Namespace:
    values = dict(
        input=None, output=None, mapping=None, metadata=None, group_by=None,
        seed=0, ddof=0, alpha=0.05, normalization="median_of_ratios",
    )
    values.update(overrides)
    return Namespace(**values)


class TestLoadConfig:
    """File formats."""

    def test_yaml(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text(YAML_TEXT)
        config = load_config(path)
        assert config["outliers"]["seed"] == 7
        assert config["scoring"]["fdr_method"] == "BY"

    def test_json(self, tmp_path):
        path = tmp_path / "cfg.json"
        path.write_text(json.dumps({"scoring": {"ddof": 1}}))
        assert load_config(path) == {"scoring": {"ddof": 1}}

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "cfg.yml"
        path.write_text("")
        assert load_config(path) == {}

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "cfg.toml"
        path.write_text("x = 1")
        with pytest.raises(ValueError, match="Unsupported"):
            load_config(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("scoring: [unclosed")
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_config(path)

    def test_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")


class TestValidateConfig:
    """Value checks."""

    def test_valid(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text(YAML_TEXT)
        validate_config(load_config(path))

    @pytest.mark.parametrize("config", [
        {"normalization": {"method": "tmm"}},
        {"scoring": {"fdr_method": "holm"}},
        {"scoring": {"ddof": 2}},
        {"scoring": {"alpha": 1.5}},
        {"scoring": {"on_degenerate": "skip"}},
        {"outliers": {"alpha": 0.3}},
        {"outliers": {"quantile": 1.0}},
        {"outliers": {"seed": "zero"}},
        {"outliers": {"n_components": 0}},
        {"coverage": {"min_prevalence": 2}},
        {"aggregation": {"features": "max"}},
    ])
    def test_invalid(self, config):
        with pytest.raises(ValueError):
            validate_config(config)


class TestMergeConfig:
    """CLI explicit > config > defaults."""

    def test_config_fills_defaults(self):
        config = {"input": "counts.gct", "outliers": {"seed": 7}, "scoring": {"ddof": 1}}
        merged = merge_config_with_args(config, _cli_defaults(), [])

        assert merged.input == Path("counts.gct")
        assert merged.seed == 7
        assert merged.ddof == 1
        assert merged.alpha == 0.05

    def test_explicit_cli_wins(self):
        config = {"input": "counts.gct", "outliers": {"seed": 7}}
        args = _cli_defaults(seed=3, input=Path("other.csv"))
        merged = merge_config_with_args(config, args, ["--seed", "3", "-i", "other.csv"])

        assert merged.seed == 3
        assert merged.input == Path("other.csv")

    def test_equals_form_detected(self):
        config = {"scoring": {"alpha": 0.01}}
        merged = merge_config_with_args(config, _cli_defaults(alpha=0.1), ["--alpha=0.1"])
        assert merged.alpha == 0.1

    def test_original_namespace_untouched(self):
        args = _cli_defaults()
        merge_config_with_args({"outliers": {"seed": 9}}, args, [])
        assert args.seed == 0


class TestPipelineConfigFromDict:
    """Config sections -> PipelineConfig."""

    def test_sections_mapped(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text(YAML_TEXT)
        config = PipelineConfig.from_dict(load_config(path))

        assert config.min_cpm == 2.0
        assert config.min_prevalence == 0.2
        assert config.seed == 7
        assert config.outlier_alpha == 0.8
        assert config.log_transform is False
        assert config.filter_samples is False
        assert config.normalization == "cpm"
        assert config.pseudocount == 0.5
        assert config.ddof == 1
        assert config.fdr_method == "BY"
        assert config.alpha == 0.01
        assert config.on_degenerate == "nan"

    def test_defaults(self):
        assert PipelineConfig.from_dict({}) == PipelineConfig()
