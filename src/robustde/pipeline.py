"""
End-to-end differential expression pipeline.

    raw counts
      -> identifier mapping          (optional, IdentifierMapper)
      -> duplicate aggregation       (genes summed, samples averaged)
      -> coverage filter             (complete, expressed genes)
      -> outlier filter, gene axis   (RobustPCAOutlierFilter)
      -> outlier filter, sample axis (optional)
      -> normalization               (median-of-ratios by default)
      -> Z-scores + matrix-wide FDR

Every stage returns a new BioMatrix and every intermediate is kept on the
PipelineResult, so a run can be inspected stage by stage after the fact.

Examples:
    >>> from robustde.pipeline import PipelineConfig, run_pipeline, run_by_group
    >>>
    >>> result = run_pipeline(counts, PipelineConfig(seed=0))
    >>> result.gene_partition.outlier_ids
    >>> result.scores.summary()
    >>>
    >>> # One run per tissue lineage; failing lineages are skipped
    >>> per_lineage = run_by_group(counts, "lineage", PipelineConfig())
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional

from robustde.core.biomatrix import BioMatrix
from robustde.core.errors import InsufficientDataError, RobustDEError
from robustde.preprocessing.aggregation import DuplicateAggregator
from robustde.preprocessing.identifiers import IdentifierMapper
from robustde.quality.filtering import CoverageFilter
from robustde.quality.outliers import OutlierPartitionResult, RobustPCAOutlierFilter
from robustde.stats.normalization import Normalizer
from robustde.stats.scoring import ScoreMatrix, compute_scores

logger = logging.getLogger(__name__)

__all__ = ['PipelineConfig', 'PipelineResult', 'run_pipeline', 'run_by_group']


@dataclass
class PipelineConfig:
    """All stage parameters of a pipeline run.

    Mirrors the sections of the YAML config file (see from_dict).
    """

    # coverage
    min_cpm: float = 1.0
    min_prevalence: float = 0.1
    drop_missing: bool = True

    # identifier mapping / aggregation
    keep_unmapped: bool = False
    aggregate_features: str = "sum"
    aggregate_samples: str = "mean"

    # outliers
    seed: int = 0
    outlier_alpha: float = 0.75
    outlier_quantile: float = 0.975
    log_transform: bool = True
    n_components: Optional[int] = None
    filter_samples: bool = True

    # normalization
    normalization: str = "median_of_ratios"
    pseudocount: float = 1.0

    # scoring
    ddof: int = 0
    fdr_method: str = "BH"
    alpha: float = 0.05
    on_degenerate: str = "raise"

    @classmethod
    def from_dict(cls, config: Mapping[str, Any]) -> PipelineConfig:
        """
        Build a PipelineConfig from a loaded config file.

        Top-level keys without a stage section (input, output, ...) are
        ignored here; the CLI handles them.
        """
        coverage = config.get('coverage') or {}
        aggregation = config.get('aggregation') or {}
        mapping = config.get('mapping_options') or {}
        outliers = config.get('outliers') or {}
        normalization = config.get('normalization') or {}
        scoring = config.get('scoring') or {}

        values: Dict[str, Any] = {}
        for section, keys in (
            (coverage, {'min_cpm': 'min_cpm', 'min_prevalence': 'min_prevalence',
                        'drop_missing': 'drop_missing'}),
            (aggregation, {'features': 'aggregate_features', 'samples': 'aggregate_samples'}),
            (mapping, {'keep_unmapped': 'keep_unmapped'}),
            (outliers, {'seed': 'seed', 'alpha': 'outlier_alpha', 'quantile': 'outlier_quantile',
                        'log_transform': 'log_transform', 'n_components': 'n_components',
                        'filter_samples': 'filter_samples'}),
            (normalization, {'method': 'normalization', 'pseudocount': 'pseudocount'}),
            (scoring, {'ddof': 'ddof', 'fdr_method': 'fdr_method', 'alpha': 'alpha',
                       'on_degenerate': 'on_degenerate'}),
        ):
            for key, field_name in keys.items():
                if key in section:
                    values[field_name] = section[key]

        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PipelineResult:
    """Every intermediate of one pipeline run.

    Attributes:
        raw: Input matrix
        mapped: After identifier mapping (raw when no mapping was given)
        aggregated: After collapsing duplicate genes and samples
        covered: After the coverage filter
        gene_partition: Gene-axis outlier partition
        sample_partition: Sample-axis outlier partition (None when disabled)
        filtered: Counts after both outlier passes
        normalized: Normalized log-scale expression
        scores: Z-scores and FDR-adjusted p-values
        stages: repr() of each stage, in order
        config: Configuration used
    """

    raw: BioMatrix
    mapped: BioMatrix
    aggregated: BioMatrix
    covered: BioMatrix
    gene_partition: OutlierPartitionResult
    sample_partition: Optional[OutlierPartitionResult]
    filtered: BioMatrix
    normalized: BioMatrix
    scores: ScoreMatrix
    stages: tuple
    config: PipelineConfig

    @property
    def partitions(self) -> Dict[str, OutlierPartitionResult]:
        """{"genes": ..., "samples": ...} for the workbook writer."""
        parts = {'genes': self.gene_partition}
        if self.sample_partition is not None:
            parts['samples'] = self.sample_partition
        return parts


def run_pipeline(
    matrix: BioMatrix,
    config: Optional[PipelineConfig] = None,
    mapping: Optional[Mapping[str, str]] = None,
) -> PipelineResult:
    """
    Run all stages on one count matrix.

    Args:
        matrix: Raw counts (genes × samples)
        config: Stage parameters (defaults when None)
        mapping: Optional source_id -> target_id gene mapping

    Returns:
        PipelineResult with every intermediate

    Raises:
        RobustDEError: A stage could not run on this data; the error names
            the stage, axis and row responsible.
        ValueError: A stage rejected its input during validation
    """
    config = config or PipelineConfig()
    stages = []

    logger.info(f"Pipeline start: {matrix.n_features} genes × {matrix.n_samples} samples")

    if mapping is not None:
        mapper = IdentifierMapper(mapping, keep_unmapped=config.keep_unmapped)
        stages.append(repr(mapper))
        mapped = mapper.apply(matrix)
    else:
        mapped = matrix

    feature_aggregator = DuplicateAggregator(axis="features", how=config.aggregate_features)
    sample_aggregator = DuplicateAggregator(axis="samples", how=config.aggregate_samples)
    stages.extend([repr(feature_aggregator), repr(sample_aggregator)])
    aggregated = sample_aggregator.apply(feature_aggregator.apply(mapped))

    coverage = CoverageFilter(
        min_cpm=config.min_cpm,
        min_prevalence=config.min_prevalence,
        drop_missing=config.drop_missing,
    )
    stages.append(repr(coverage))
    covered = coverage.apply(aggregated)
    if covered.n_features == 0:
        raise InsufficientDataError(
            f"No gene passes coverage (min_cpm={config.min_cpm}, "
            f"min_prevalence={config.min_prevalence})",
            stage="coverage", axis="genes",
        )

    outlier_params = dict(
        seed=config.seed,
        log_transform=config.log_transform,
        n_components=config.n_components,
        alpha=config.outlier_alpha,
        quantile=config.outlier_quantile,
    )

    gene_filter = RobustPCAOutlierFilter(axis="genes", **outlier_params)
    stages.append(repr(gene_filter))
    genes_clean = gene_filter.apply(covered)

    sample_partition = None
    if config.filter_samples:
        sample_filter = RobustPCAOutlierFilter(axis="samples", **outlier_params)
        stages.append(repr(sample_filter))
        filtered = sample_filter.apply(genes_clean)
        sample_partition = sample_filter.partition_
    else:
        filtered = genes_clean

    normalizer = Normalizer(config.normalization, pseudocount=config.pseudocount)
    stages.append(repr(normalizer))
    normalized = normalizer.apply(filtered)

    scores = compute_scores(
        normalized,
        ddof=config.ddof,
        fdr_method=config.fdr_method,
        on_degenerate=config.on_degenerate,
    )
    stages.append(f"compute_scores(ddof={config.ddof}, fdr_method={config.fdr_method})")

    summary = scores.summary(config.alpha)
    logger.info(
        f"Pipeline done: {summary['n_genes']} genes × {summary['n_samples']} samples scored, "
        f"{summary['n_significant']} significant at FDR < {config.alpha} "
        f"({summary['n_up']} up, {summary['n_down']} down)"
    )

    return PipelineResult(
        raw=matrix,
        mapped=mapped,
        aggregated=aggregated,
        covered=covered,
        gene_partition=gene_filter.partition_,
        sample_partition=sample_partition,
        filtered=filtered,
        normalized=normalized,
        scores=scores,
        stages=tuple(stages),
        config=config,
    )


def run_by_group(
    matrix: BioMatrix,
    group_col: str,
    config: Optional[PipelineConfig] = None,
    mapping: Optional[Mapping[str, str]] = None,
) -> Dict[str, PipelineResult]:
    """
    Run the pipeline separately for each value of a sample metadata column.

    A group that fails with a RobustDEError (too few samples for robust
    covariance, a constant gene, ...) is logged and skipped; the remaining
    groups still run.

    Args:
        matrix: Raw counts with group_col in sample_metadata
        group_col: Metadata column to split on (e.g. "lineage")
        config: Stage parameters shared by all groups
        mapping: Optional gene mapping shared by all groups

    Returns:
        {group value: PipelineResult} for the groups that completed

    Raises:
        KeyError: If group_col is not a sample metadata column
    """
    if group_col not in matrix.sample_metadata.columns:
        raise KeyError(
            f"Group column '{group_col}' not in sample metadata. "
            f"Available: {list(matrix.sample_metadata.columns)}"
        )

    labels = matrix.sample_metadata[group_col]
    groups = labels.dropna().unique()
    logger.info(f"Running pipeline for {len(groups)} groups of '{group_col}'")

    results: Dict[str, PipelineResult] = {}
    for group in groups:
        subset = matrix.select_samples((labels == group).to_numpy())
        try:
            results[str(group)] = run_pipeline(subset, config, mapping=mapping)
        except RobustDEError as e:
            logger.error(
                f"Skipping {group_col}={group} ({subset.n_samples} samples): "
                f"stage={e.stage}, axis={e.axis}, row={e.row}: {e.message}"
            )

    logger.info(f"Completed {len(results)}/{len(groups)} groups")
    return results
