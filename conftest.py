"""
Pytest configuration and fixtures for the pipeline comparison tests.
"""

import json
from pathlib import Path
from unittest.mock import MagicMock
import pytest
import pandas as pd
import numpy as np


# ============================================================================
# On-disk Dataset Fixtures
# ============================================================================


@pytest.fixture
def demo_dataset(tmp_path):
    """Small synthetic cohort written to a temporary directory."""
    from demo_data import write_demo_dataset

    return write_demo_dataset(tmp_path / "data", n_per_group=4, n_genes=120, seed=7)


@pytest.fixture
def write_kallisto_sample():
    """Factory writing one kallisto output directory (abundance.tsv + run_info.json)."""

    def _write(directory: Path, est_counts: dict, n_processed: int = 1000, n_pseudoaligned: int = 800):
        directory.mkdir(parents=True, exist_ok=True)
        abundance = pd.DataFrame(
            {
                "target_id": list(est_counts.keys()),
                "length": 1500,
                "eff_length": 1320.0,
                "est_counts": list(est_counts.values()),
            }
        )
        rate = abundance["est_counts"] / abundance["eff_length"]
        abundance["tpm"] = rate / rate.sum() * 1e6 if rate.sum() > 0 else 0.0
        abundance.to_csv(directory / "abundance.tsv", sep="\t", index=False)
        with open(directory / "run_info.json", "w") as f:
            json.dump(
                {
                    "n_processed": n_processed,
                    "n_pseudoaligned": n_pseudoaligned,
                    "p_pseudoaligned": round(100.0 * n_pseudoaligned / n_processed, 1),
                },
                f,
            )
        return directory

    return _write


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def sample_counts_df():
    """
    Sample count matrix with built-in differential expression.
    Shape: (8 samples, 100 genes); gene_1..gene_10 are 8-fold higher in responders.
    """
    np.random.seed(42)
    base = np.random.uniform(50, 500, 100)
    data = np.random.poisson(np.tile(base, (8, 1)))
    data[:4, :10] = np.random.poisson(np.tile(base[:10] * 8, (4, 1)))
    samples = [f"responder_{i + 1}" for i in range(4)] + [f"nonresponder_{i + 1}" for i in range(4)]
    genes = [f"gene_{i + 1}" for i in range(100)]
    return pd.DataFrame(data, index=samples, columns=genes)


@pytest.fixture
def sample_metadata_df(sample_counts_df):
    """samples × condition metadata matching sample_counts_df."""
    return pd.DataFrame(
        {"condition": ["responder"] * 4 + ["nonresponder"] * 4},
        index=sample_counts_df.index,
    )


@pytest.fixture
def sample_conditions_dict(sample_metadata_df):
    """Sample conditions dictionary for testing."""
    return sample_metadata_df["condition"].to_dict()


@pytest.fixture
def sample_de_results_df():
    """
    Sample differential expression results for testing.
    Contains typical DESeq2 output columns.
    """
    np.random.seed(42)
    n_genes = 100
    genes = [f"gene_{i + 1}" for i in range(n_genes)]

    df = pd.DataFrame(
        {
            "gene": genes,
            "baseMean": np.random.uniform(10, 1000, n_genes),
            "log2FoldChange": np.random.normal(0, 2, n_genes),
            "lfcSE": np.random.uniform(0.1, 0.5, n_genes),
            "stat": np.random.normal(0, 3, n_genes),
            "pvalue": np.random.uniform(0, 1, n_genes),
            "padj": np.random.uniform(0, 1, n_genes),
        }
    )

    # Ensure some significant genes
    df.loc[:10, "padj"] = np.random.uniform(0, 0.05, 11)
    df.loc[:10, "log2FoldChange"] = np.random.uniform(1.5, 3, 11)

    return df


# ============================================================================
# External API Mocking Fixtures
# ============================================================================


BIOMART_TSV = (
    "ENST00000456328.2\tENSG00000223972.5\tDDX11L1\t1657\n"
    "ENST00000450305\tENSG00000223972\tDDX11L1\t632\n"
    "ENST00000488147\tENSG00000227232\tWASH7P\t1351\n"
    "ENST00000619216\tENSG00000278267\t\t68\n"
)


@pytest.fixture
def mock_biomart(monkeypatch):
    """Mock requests.get in the annotation module with a canned BioMart TSV response."""
    response = MagicMock()
    response.text = BIOMART_TSV
    response.status_code = 200
    response.raise_for_status = MagicMock()

    mock_get = MagicMock(return_value=response)
    monkeypatch.setattr("annotation.requests.get", mock_get)
    return mock_get
