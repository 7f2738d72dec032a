"""
robustde run command - Outlier filtering and differential scoring.

Usage:
    robustde run --input counts.gct --output results/scores
    robustde run --input counts.gct --output results/scores --group-by lineage
"""

import argparse
import logging
from dataclasses import replace
from datetime import datetime
from pathlib import Path

import pandas as pd

from robustde.cli._validators import _non_negative_int, _probability
from robustde.core.biomatrix import BioMatrix
from robustde.core.errors import RobustDEError
from robustde.io.loaders import load_count_matrix, load_sample_metadata
from robustde.io.writers import write_score_csv, write_score_workbook
from robustde.pipeline import PipelineConfig, PipelineResult, run_by_group, run_pipeline
from robustde.preprocessing.identifiers import load_mapping_table
from robustde.stats.normalization import NormalizationMethod

logger = logging.getLogger(__name__)


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the run subcommand."""
    parser = subparsers.add_parser(
        "run",
        help="Filter outliers and score differential expression",
        description="Robust PCA outlier filtering on genes and samples, "
                    "normalization, and per-gene Z-scores with matrix-wide FDR",
    )

    # Configuration file support
    parser.add_argument("--config", "-c", type=Path, default=None,
                        help="Path to YAML/JSON config file (optional, CLI args override config values)")

    parser.add_argument("--input", "-i", type=Path, required=False,
                        help="Count matrix (GCT, CSV or TSV; genes × samples)")
    parser.add_argument("--output", "-o", type=Path, required=False,
                        help="Output base path (without extension)")
    parser.add_argument("--format", "-f", choices=["auto", "gct", "delimited"], default="auto",
                        help="Input format (default: auto-detect)")
    parser.add_argument("--mapping", type=Path, default=None,
                        help="Identifier mapping table (CSV/TSV: source, target)")
    parser.add_argument("--metadata", type=Path, default=None,
                        help="Sample metadata CSV indexed by sample ID")
    parser.add_argument("--group-by", default=None,
                        help="Sample metadata column to score separately (e.g. lineage)")

    parser.add_argument("--seed", type=int, default=0,
                        help="Random seed for the robust PCA search (default: 0)")
    parser.add_argument("--ddof", type=_non_negative_int, default=0,
                        help="Delta degrees of freedom for the Z-score SD: "
                             "0 = population (default), 1 = sample")
    parser.add_argument("--alpha", type=_probability, default=0.05,
                        help="FDR threshold used in the summary (default: 0.05)")
    parser.add_argument("--normalization", choices=[m.value for m in NormalizationMethod],
                        default="median_of_ratios",
                        help="Library-size normalization (default: median_of_ratios)")
    parser.add_argument("--csv", action="store_true", default=False,
                        help="Write {output}.zscore.csv and {output}.fdr.csv instead of .xlsx")

    parser.set_defaults(func=run_run)


def _attach_metadata(matrix: BioMatrix, metadata: pd.DataFrame) -> BioMatrix:
    """Join external sample metadata onto the matrix; external columns win."""
    aligned = metadata.reindex(matrix.sample_ids)
    n_missing = int(aligned.isna().all(axis=1).sum())
    if n_missing:
        logger.warning(f"{n_missing}/{matrix.n_samples} samples have no metadata row")

    combined = matrix.sample_metadata.drop(
        columns=[c for c in aligned.columns if c in matrix.sample_metadata.columns]
    ).join(aligned)

    return BioMatrix(
        data=matrix.data,
        feature_ids=matrix.feature_ids,
        sample_ids=matrix.sample_ids,
        sample_metadata=combined,
    )


def _write_result(result: PipelineResult, path: Path, as_csv: bool) -> None:
    if as_csv:
        write_score_csv(result.scores, path)
    else:
        write_score_workbook(result.scores, path, partitions=result.partitions)


def run_run(args: argparse.Namespace) -> int:
    """Execute the run command."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    config = {}
    if args.config:
        from robustde.cli.config import load_config, merge_config_with_args, validate_config

        logger.info(f"Loading configuration from: {args.config}")
        try:
            config = load_config(args.config)
            validate_config(config)
            args = merge_config_with_args(config, args, getattr(args, 'argv', None))
        except (FileNotFoundError, ValueError) as e:
            logger.error(f"Config file error: {e}")
            return 1

    # Validate required arguments (after config merge)
    if not args.input:
        logger.error("--input is required (via CLI or config file)")
        return 1
    if not args.output:
        logger.error("--output is required (via CLI or config file)")
        return 1

    start_time = datetime.now()
    print(f"\n{'='*70}")
    print("  Robust outlier filtering and differential scoring")
    print(f"{'='*70}")
    print(f"Started: {start_time.strftime('%Y-%m-%d %H:%M:%S')}\n")

    pipeline_config = replace(
        PipelineConfig.from_dict(config),
        seed=args.seed,
        ddof=args.ddof,
        alpha=args.alpha,
        normalization=args.normalization,
    )

    try:
        matrix = load_count_matrix(
            args.input, format=None if args.format == "auto" else args.format
        )

        if args.metadata:
            matrix = _attach_metadata(matrix, load_sample_metadata(args.metadata))

        mapping = load_mapping_table(args.mapping) if args.mapping else None

        if args.group_by:
            results = run_by_group(matrix, args.group_by, pipeline_config, mapping=mapping)
            if not results:
                logger.error(f"No '{args.group_by}' group completed")
                return 1
            for group, result in results.items():
                _write_result(result, Path(f"{args.output}.{group}"), args.csv)
        else:
            result = run_pipeline(matrix, pipeline_config, mapping=mapping)
            _write_result(result, args.output, args.csv)
            results = {"all": result}

    except (FileNotFoundError, KeyError, ValueError, RobustDEError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1

    elapsed = (datetime.now() - start_time).total_seconds()
    print(f"\n{'='*70}")
    for group, result in results.items():
        summary = result.scores.summary(pipeline_config.alpha)
        print(
            f"  {group}: {summary['n_genes']} genes × {summary['n_samples']} samples, "
            f"{summary['n_significant']} cells at FDR < {pipeline_config.alpha} "
            f"({result.gene_partition.n_outliers} outlier genes removed)"
        )
    print(f"  Finished in {elapsed:.1f}s")
    print(f"{'='*70}\n")

    return 0
