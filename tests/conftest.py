"""
Pytest configuration and shared fixtures.

This module provides synthetic count/expression generators and shared
fixtures for all test suites.
"""

import numpy as np
import pandas as pd
import pytest

from robustde.core.biomatrix import BioMatrix
from robustde.io.loaders import parse_lineage


def generate_count_matrix(
    n_genes: int = 200,
    n_samples: int = 24,
    lineages: tuple = ("LUNG", "BREAST"),
    seed: int = 42,
) -> BioMatrix:
    """
    Generate a synthetic RNA-seq count matrix for a cell-line panel.

    Args:
        n_genes: Number of genes (rows)
        n_samples: Number of cell lines (columns)
        lineages: Lineages assigned round-robin to the cell lines
        seed: Random seed for reproducibility

    Returns:
        BioMatrix of Poisson counts with CCLE-style sample names
        (CL000_LUNG, CL001_BREAST, ...) and Ensembl-style versioned gene IDs.

    Design:
        - Gene means are log-normal (typical RNA-seq dynamic range)
        - Per-sample size factors in [0.7, 1.4] mimic sequencing depth
        - Expression is high enough that every gene passes a 1 CPM filter
    """
    rng = np.random.RandomState(seed)

    gene_means = rng.lognormal(mean=5, sigma=1, size=n_genes)
    size_factors = rng.uniform(0.7, 1.4, size=n_samples)
    counts = rng.poisson(gene_means[:, None] * size_factors[None, :]).astype(float)

    feature_ids = pd.Index([f"ENSG{i:011d}.{1 + i % 3}" for i in range(n_genes)])
    sample_ids = pd.Index([
        f"CL{j:03d}_{lineages[j % len(lineages)]}" for j in range(n_samples)
    ])

    return BioMatrix(
        data=counts,
        feature_ids=feature_ids,
        sample_ids=sample_ids,
        sample_metadata=parse_lineage(sample_ids),
    )


def generate_planted_outlier_matrix() -> tuple[np.ndarray, list[str]]:
    """
    5 genes × 6 samples; GENE_4 is 100× the others, no outlier samples.

    The four inlier genes are scaled copies of one profile, so the gene
    axis has a single direction of variation and the planted gene sits far
    out along it.
    """
    base = np.array([10.0, 20.0, 30.0, 40.0, 50.0, 60.0])
    rows = [base * (1.0 + 0.1 * i) for i in range(4)]
    rows.append(base * 100.0)
    return np.vstack(rows), [f"GENE_{i}" for i in range(5)]


def generate_noisy_planted_matrix(seed: int) -> tuple[np.ndarray, list[str]]:
    """
    5 genes × 6 samples of independent uniform expression; GENE_4 is 100×.

    Unlike generate_planted_outlier_matrix the inlier genes share no
    profile, so the clean genes span several robust components.
    """
    rng = np.random.default_rng(seed)
    matrix = rng.uniform(10.0, 60.0, size=(5, 6))
    matrix[4] *= 100.0
    return matrix, [f"GENE_{i}" for i in range(5)]


@pytest.fixture
def count_matrix():
    """200 genes × 24 cell lines of synthetic counts (LUNG and BREAST)."""
    return generate_count_matrix()


@pytest.fixture
def planted_outlier():
    """(matrix, gene_ids) for the 5 × 6 planted-outlier scenario."""
    return generate_planted_outlier_matrix()


@pytest.fixture
def small_matrix():
    """Tiny labelled matrix for stage unit tests."""
    return BioMatrix(
        data=np.array([
            [10.0, 20.0, 30.0],
            [0.0, 0.0, 1.0],
            [5.0, 5.0, 5.0],
            [100.0, 200.0, 300.0],
        ]),
        feature_ids=pd.Index(["TP53", "KRAS", "GAPDH", "MYC"]),
        sample_ids=pd.Index(["A549_LUNG", "HCT116_LARGE_INTESTINE", "MCF7_BREAST"]),
        sample_metadata=parse_lineage(
            pd.Index(["A549_LUNG", "HCT116_LARGE_INTESTINE", "MCF7_BREAST"])
        ),
    )
