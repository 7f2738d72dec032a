"""
Configuration file support for the robustde CLI.

Supports YAML and JSON config files with CLI argument override. Stage
sections map onto robustde.pipeline.PipelineConfig (see
PipelineConfig.from_dict); top-level keys name the run's files.

Example config::

    input: CCLE_RNAseq_genes_counts.gct
    output: results/scores
    mapping: ensembl_to_symbol.csv
    coverage: {min_cpm: 1.0, min_prevalence: 0.1}
    outliers: {seed: 0, log_transform: true, filter_samples: true}
    normalization: {method: median_of_ratios}
    scoring: {ddof: 0, fdr_method: BH, alpha: 0.05, on_degenerate: raise}
"""

import json
from argparse import Namespace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from robustde.stats.normalization import NormalizationMethod

VALID_FDR_METHODS = ['BH', 'BY', 'bonferroni']
VALID_DEGENERATE_POLICIES = ['raise', 'nan']
VALID_FEATURE_AGGREGATIONS = ['sum', 'mean', 'median']


def load_config(config_path: Path) -> Dict[str, Any]:
    """
    Load configuration from YAML or JSON file.

    Parameters:
        config_path: Path to config file (.yaml, .yml, or .json)

    Returns:
        Dictionary with configuration values

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If file format is unsupported or invalid

    Examples:
        >>> config = load_config(Path("pipeline.yaml"))
        >>> print(config['scoring']['ddof'])
        0
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()

    try:
        with open(config_path, 'r') as f:
            if suffix in ('.yaml', '.yml'):
                config = yaml.safe_load(f)
            elif suffix == '.json':
                config = json.load(f)
            else:
                raise ValueError(
                    f"Unsupported config format: {suffix}. "
                    f"Use .yaml, .yml, or .json"
                )
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file: {e}")
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file: {e}")

    if config is None:
        return {}

    if not isinstance(config, dict):
        raise ValueError("Config file must contain a dictionary/mapping at top level")

    return config


def _merge_value(cli_value: Any, config_value: Any, was_explicitly_set: bool) -> Any:
    """
    Merge a single config value with CLI argument.

    Rules:
    - CLI args ALWAYS override config if explicitly set
    - If CLI arg not set, use config value
    - If neither set, keep CLI default
    """
    if was_explicitly_set:
        return cli_value

    if config_value is not None:
        return config_value

    return cli_value


def _explicit_args(cli_args: Optional[List[str]]) -> set:
    short_to_long = {
        'i': 'input',
        'o': 'output',
        'c': 'config',
    }
    explicit = set()
    for arg in cli_args or []:
        if arg.startswith('--'):
            explicit.add(arg[2:].split('=', 1)[0].replace('-', '_'))
        elif arg.startswith('-') and len(arg) == 2 and arg[1] in short_to_long:
            explicit.add(short_to_long[arg[1]])
    return explicit


def merge_config_with_args(
    config: Dict[str, Any],
    args: Namespace,
    cli_args: Optional[List[str]] = None,
) -> Namespace:
    """
    Merge config file values with CLI arguments.

    Priority (highest to lowest):
    1. Explicitly provided CLI arguments
    2. Config file values
    3. CLI argument defaults

    Parameters:
        config: Configuration dictionary from load_config()
        args: Parsed CLI arguments (argparse.Namespace)
        cli_args: Raw CLI arguments list (for detecting explicit values).
                  If None, assumes all args are defaults

    Returns:
        Updated Namespace with merged values

    Examples:
        >>> config = load_config(Path("pipeline.yaml"))
        >>> args = parser.parse_args(["run", "--input", "counts.gct", "--ddof", "1"])
        >>> merged = merge_config_with_args(config, args, ["--input", "counts.gct", "--ddof", "1"])
        >>> # merged.ddof == 1 from CLI, merged.seed from config
    """
    explicit = _explicit_args(cli_args)
    merged = Namespace(**vars(args))

    # === Top-level paths ===
    for key in ('input', 'output', 'mapping', 'metadata'):
        if key in config:
            value = config[key]
            if value is not None:
                value = Path(value)
            setattr(merged, key, _merge_value(getattr(merged, key), value, key in explicit))

    if 'group_by' in config:
        merged.group_by = _merge_value(merged.group_by, config['group_by'], 'group_by' in explicit)

    # === Stage sections exposed as CLI flags ===
    section_mappings = {
        ('outliers', 'seed'): 'seed',
        ('scoring', 'ddof'): 'ddof',
        ('scoring', 'alpha'): 'alpha',
        ('normalization', 'method'): 'normalization',
    }
    for (section, key), arg_name in section_mappings.items():
        values = config.get(section) or {}
        if key in values:
            setattr(
                merged,
                arg_name,
                _merge_value(getattr(merged, arg_name), values[key], arg_name in explicit),
            )

    return merged


def _check_number(value: Any, name: str, low: float, high: float,
                  inclusive: bool = True) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number, got: {value!r}")
    ok = low <= value <= high if inclusive else low < value < high
    if not ok:
        bounds = f"[{low}, {high}]" if inclusive else f"({low}, {high})"
        raise ValueError(f"{name} must be in {bounds}, got: {value}")


def validate_config(config: Dict[str, Any]) -> None:
    """
    Validate configuration structure and values.

    Parameters:
        config: Configuration dictionary

    Raises:
        ValueError: If configuration is invalid
    """
    for section in ('coverage', 'aggregation', 'outliers', 'normalization', 'scoring'):
        if section in config and not isinstance(config[section] or {}, dict):
            raise ValueError(f"Config section '{section}' must be a mapping")

    coverage = config.get('coverage') or {}
    if 'min_cpm' in coverage:
        _check_number(coverage['min_cpm'], 'coverage.min_cpm', 0, float('inf'))
    if 'min_prevalence' in coverage:
        _check_number(coverage['min_prevalence'], 'coverage.min_prevalence', 0, 1)

    aggregation = config.get('aggregation') or {}
    for key in ('features', 'samples'):
        if key in aggregation and aggregation[key] not in VALID_FEATURE_AGGREGATIONS:
            raise ValueError(
                f"Invalid aggregation.{key} '{aggregation[key]}'. "
                f"Choose from: {', '.join(VALID_FEATURE_AGGREGATIONS)}"
            )

    outliers = config.get('outliers') or {}
    if 'seed' in outliers and (isinstance(outliers['seed'], bool)
                               or not isinstance(outliers['seed'], int)):
        raise ValueError(f"outliers.seed must be an integer, got: {outliers['seed']!r}")
    if 'alpha' in outliers:
        _check_number(outliers['alpha'], 'outliers.alpha', 0.5, 1)
    if 'quantile' in outliers:
        _check_number(outliers['quantile'], 'outliers.quantile', 0, 1, inclusive=False)
    n_components = outliers.get('n_components')
    if n_components is not None and (isinstance(n_components, bool)
                                     or not isinstance(n_components, int)
                                     or n_components < 1):
        raise ValueError(f"outliers.n_components must be a positive integer, got: {n_components!r}")

    normalization = config.get('normalization') or {}
    if 'method' in normalization:
        valid = [m.value for m in NormalizationMethod]
        if normalization['method'] not in valid:
            raise ValueError(
                f"Invalid normalization method '{normalization['method']}'. "
                f"Choose from: {', '.join(valid)}"
            )
    if 'pseudocount' in normalization:
        _check_number(normalization['pseudocount'], 'normalization.pseudocount',
                      0, float('inf'), inclusive=False)

    scoring = config.get('scoring') or {}
    if 'ddof' in scoring and scoring['ddof'] not in (0, 1):
        raise ValueError(f"scoring.ddof must be 0 or 1, got: {scoring['ddof']!r}")
    if 'fdr_method' in scoring and scoring['fdr_method'] not in VALID_FDR_METHODS:
        raise ValueError(
            f"Invalid FDR method '{scoring['fdr_method']}'. "
            f"Choose from: {', '.join(VALID_FDR_METHODS)}"
        )
    if 'alpha' in scoring:
        _check_number(scoring['alpha'], 'scoring.alpha', 0, 1, inclusive=False)
    if 'on_degenerate' in scoring and scoring['on_degenerate'] not in VALID_DEGENERATE_POLICIES:
        raise ValueError(
            f"Invalid on_degenerate policy '{scoring['on_degenerate']}'. "
            f"Choose from: {', '.join(VALID_DEGENERATE_POLICIES)}"
        )
