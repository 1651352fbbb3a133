"""
Quantification loaders for the two expression sources.

- Pseudo-alignment: per-sample kallisto abundance.tsv files merged into
  transcript × sample matrices of estimated counts and TPM, optionally summed
  to gene level through the transcript-to-gene annotation.
- Alignment + counting: a precomputed featureCounts gene × sample matrix,
  with BAM-path headers mapped back to sample identifiers.

Canonical output: features × samples (feature ids as index, sample ids as columns)
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union
import logging
import re
import pandas as pd
import numpy as np

from sample_table import Sample, InputValidationError
from annotation import normalize_target_ids, strip_version

logger = logging.getLogger(__name__)

ABUNDANCE_FILE = "abundance.tsv"
ABUNDANCE_COLUMNS = ["target_id", "length", "eff_length", "est_counts", "tpm"]

# featureCounts annotation columns preceding the per-sample counts
FEATURECOUNTS_ANNOTATION = ["Geneid", "Chr", "Start", "End", "Strand", "Length"]

KNOWN_GENE_HEADERS = ["Geneid", "gene_id", "gene", "Gene", "ens_gene", "ensembl_gene_id"]

# Counter rows appended by HTSeq-count
HTSEQ_SPECIAL_PREFIX = "__"

# Common alignment file suffixes stripped when matching headers to sample ids
ALIGNMENT_SUFFIXES = [
    r"\.Aligned\.sortedByCoord\.out\.bam$",
    r"Aligned\.sortedByCoord\.out\.bam$",
    r"\.sorted\.bam$",
    r"\.bam$",
    r"\.sam$",
]


@dataclass
class ExpressionMatrix:
    """Expression matrix from one quantification source."""

    source: str  # "kallisto" or "featurecounts"
    level: str  # "transcript" or "gene"
    counts: pd.DataFrame  # features × samples (estimated or assigned counts)
    tpm: Optional[pd.DataFrame] = None  # features × samples (kallisto only)
    warnings: List[str] = field(default_factory=list)

    @property
    def samples(self) -> List[str]:
        return self.counts.columns.tolist()

    def samples_by_genes(self) -> pd.DataFrame:
        """Counts transposed to samples × features, the orientation the DE engines take."""
        return self.counts.T


def read_abundance(quant_dir: Union[str, Path]) -> pd.DataFrame:
    """
    Read one kallisto abundance.tsv.

    Args:
        quant_dir: kallisto output directory

    Returns:
        DataFrame indexed by normalized target_id with est_counts, tpm, length, eff_length

    Raises:
        InputValidationError: missing file or missing columns
    """
    abundance_path = Path(quant_dir) / ABUNDANCE_FILE
    if not abundance_path.exists():
        raise InputValidationError(
            f"kallisto abundance file not found: {abundance_path}",
            {"path": str(abundance_path)},
        )

    df = pd.read_csv(abundance_path, sep="\t", dtype={"target_id": str})
    missing = [c for c in ABUNDANCE_COLUMNS if c not in df.columns]
    if missing:
        raise InputValidationError(
            f"{abundance_path} does not look like kallisto abundance.tsv: "
            f"missing columns {missing}",
            {"path": str(abundance_path), "missing": missing},
        )

    df["target_id"] = normalize_target_ids(df["target_id"])
    if df["target_id"].duplicated().any():
        # Version stripping can collapse PAR_Y copies onto the same id
        df = df.groupby("target_id", sort=False).agg(
            {"length": "first", "eff_length": "first", "est_counts": "sum", "tpm": "sum"}
        )
    else:
        df = df.set_index("target_id")
    return df


def load_kallisto_matrix(
    samples: List[Sample],
    annotation: Optional[pd.DataFrame] = None,
    level: str = "gene",
) -> ExpressionMatrix:
    """
    Merge per-sample kallisto output into count and TPM matrices.

    Args:
        samples: Retained samples (matrix columns follow this order)
        annotation: Transcript-to-gene mapping (required when level="gene")
        level: "transcript" or "gene"

    Returns:
        ExpressionMatrix with source="kallisto"
    """
    if level not in ("transcript", "gene"):
        raise ValueError(f"level must be 'transcript' or 'gene', got '{level}'")
    if not samples:
        raise ValueError("Cannot load kallisto matrix: no samples given.")

    counts_cols: Dict[str, pd.Series] = {}
    tpm_cols: Dict[str, pd.Series] = {}
    reference_ids: Optional[pd.Index] = None
    for sample in samples:
        abundance = read_abundance(sample.quant_dir)
        if reference_ids is None:
            reference_ids = abundance.index
        elif not abundance.index.equals(reference_ids):
            # Different index builds would make the columns incomparable
            if set(abundance.index) != set(reference_ids):
                raise InputValidationError(
                    f"Sample {sample.sample_id} was quantified against a different "
                    f"transcriptome ({len(abundance)} vs {len(reference_ids)} targets).",
                    {"sample": sample.sample_id},
                )
        counts_cols[sample.sample_id] = abundance["est_counts"]
        tpm_cols[sample.sample_id] = abundance["tpm"]

    counts = pd.DataFrame(counts_cols).reindex(reference_ids)
    tpm = pd.DataFrame(tpm_cols).reindex(reference_ids)
    counts.index.name = "target_id"
    tpm.index.name = "target_id"
    logger.info(
        f"Loaded kallisto estimates: {counts.shape[0]} transcripts × {counts.shape[1]} samples"
    )

    matrix = ExpressionMatrix(source="kallisto", level="transcript", counts=counts, tpm=tpm)
    if level == "gene":
        if annotation is None:
            raise ValueError(
                "Cannot aggregate to gene level without an annotation. "
                "Suggestion: pass the transcript-to-gene mapping from load_annotation()."
            )
        matrix = aggregate_to_gene(matrix, annotation)
    return matrix


def aggregate_to_gene(matrix: ExpressionMatrix, annotation: pd.DataFrame) -> ExpressionMatrix:
    """
    Sum transcript-level counts and TPM to gene level.

    Transcripts absent from the annotation are dropped and reported in the
    matrix warnings.
    """
    if matrix.level == "gene":
        return matrix

    tx2gene = annotation.drop_duplicates(subset="target_id").set_index("target_id")["ens_gene"]
    genes = matrix.counts.index.map(tx2gene)
    unmapped = int(pd.isna(genes).sum())
    warnings = list(matrix.warnings)
    if unmapped:
        msg = (
            f"{unmapped} of {len(genes)} transcripts have no gene in the annotation "
            f"and were dropped before gene-level aggregation."
        )
        logger.warning(msg)
        warnings.append(msg)
    if unmapped == len(genes):
        raise InputValidationError(
            "No kallisto target ids matched the annotation. "
            "Suggestion: check that the annotation dataset matches the kallisto index.",
            {"example_ids": matrix.counts.index[:3].tolist()},
        )

    keep = ~pd.isna(genes)
    gene_index = pd.Index(genes[keep], name="gene")
    counts = matrix.counts[keep].groupby(gene_index).sum()
    tpm = matrix.tpm[keep].groupby(gene_index).sum() if matrix.tpm is not None else None
    logger.info(f"Aggregated {int(keep.sum())} transcripts to {counts.shape[0]} genes")

    return ExpressionMatrix(
        source=matrix.source, level="gene", counts=counts, tpm=tpm, warnings=warnings
    )


def _strip_alignment_suffix(name: str) -> str:
    base = Path(name).name
    for pattern in ALIGNMENT_SUFFIXES:
        base = re.sub(pattern, "", base)
    return base


def match_columns_to_samples(columns: List[str], sample_ids: List[str]) -> Dict[str, str]:
    """
    Map count-matrix headers to sample ids.

    Headers are matched exactly first, then by file stem after removing
    alignment suffixes, then by the sample id appearing as a path component.
    """
    mapping: Dict[str, str] = {}
    ids = set(sample_ids)
    for col in columns:
        col_str = str(col)
        if col_str in ids:
            mapping[col_str] = col_str
            continue
        stem = _strip_alignment_suffix(col_str)
        if stem in ids:
            mapping[col_str] = stem
            continue
        parts = set(Path(col_str).parts)
        hits = [s for s in sample_ids if s in parts]
        if len(hits) == 1:
            mapping[col_str] = hits[0]
    return mapping


def load_count_matrix(
    path: Union[str, Path],
    samples: List[Sample],
) -> ExpressionMatrix:
    """
    Load a precomputed gene × sample count matrix and keep retained samples.

    Accepts featureCounts output (leading '#' command line, Geneid/Chr/Start/
    End/Strand/Length annotation columns) or a plain TSV with a gene id column
    followed by one column per sample.

    Args:
        path: Count matrix file
        samples: Retained samples (output columns follow this order)

    Returns:
        ExpressionMatrix with source="featurecounts"

    Raises:
        InputValidationError: missing file, no gene column, or retained
            samples absent from the matrix
    """
    path = Path(path)
    if not path.exists():
        raise InputValidationError(f"Count matrix not found: {path}", {"path": str(path)})

    df = pd.read_csv(path, sep="\t", comment="#")
    gene_col = next((c for c in KNOWN_GENE_HEADERS if c in df.columns), None)
    if gene_col is None:
        raise InputValidationError(
            f"Count matrix {path.name} has no gene id column. "
            f"Expected one of {KNOWN_GENE_HEADERS}, found {df.columns[:5].tolist()}.",
            {"columns": df.columns.tolist()},
        )

    warnings: List[str] = []
    df[gene_col] = df[gene_col].astype(str)
    df = df[~df[gene_col].astype(str).str.startswith(HTSEQ_SPECIAL_PREFIX)]
    df = df.set_index(gene_col)
    df.index = pd.Index(strip_version(df.index.to_series()).values, name="gene")
    df = df.drop(columns=[c for c in FEATURECOUNTS_ANNOTATION if c in df.columns])

    sample_ids = [s.sample_id for s in samples]
    mapping = match_columns_to_samples(df.columns.tolist(), sample_ids)
    found = set(mapping.values())
    missing = [s for s in sample_ids if s not in found]
    if missing:
        raise InputValidationError(
            f"{len(missing)} retained samples are not in count matrix {path.name}: "
            f"{', '.join(missing[:3])}{'...' if len(missing) > 3 else ''}",
            {"missing": missing, "columns": df.columns.tolist()},
        )

    unmatched = [c for c in df.columns if c not in mapping]
    if unmatched:
        msg = f"Dropped {len(unmatched)} count-matrix columns not matching a retained sample."
        logger.info(msg)
        warnings.append(msg)

    counts = df[list(mapping.keys())].rename(columns=mapping)
    counts = counts.loc[:, ~counts.columns.duplicated()][sample_ids]
    counts = counts.apply(pd.to_numeric, errors="raise")

    if counts.index.duplicated().any():
        n_dup = int(counts.index.duplicated().sum())
        msg = f"{n_dup} duplicate gene ids summed after version stripping."
        logger.warning(msg)
        warnings.append(msg)
        counts = counts.groupby(level=0).sum()

    logger.info(f"Loaded count matrix {path.name}: {counts.shape[0]} genes × {counts.shape[1]} samples")
    return ExpressionMatrix(source="featurecounts", level="gene", counts=counts, warnings=warnings)


def round_counts(counts: pd.DataFrame) -> pd.DataFrame:
    """Round estimated counts to integers for count-based models."""
    return np.round(counts.clip(lower=0)).astype(int)
