"""Tests for kallisto and featureCounts quantification loading."""
import pytest
import pandas as pd
import numpy as np
from pathlib import Path

from quant_loader import (
    aggregate_to_gene,
    load_count_matrix,
    load_kallisto_matrix,
    match_columns_to_samples,
    read_abundance,
    round_counts,
)
from sample_table import InputValidationError, Sample


@pytest.fixture
def annotation():
    return pd.DataFrame(
        {
            "target_id": ["ENST01", "ENST02", "ENST03"],
            "ens_gene": ["ENSG_A", "ENSG_A", "ENSG_B"],
            "ext_gene": ["GENEA", "GENEA", "GENEB"],
            "transcript_length": [1500, 1200, 900],
        }
    )


@pytest.fixture
def kallisto_samples(tmp_path, write_kallisto_sample):
    counts = {
        "S1": {"ENST01.1": 10.5, "ENST02.3": 4.5, "ENST03.1": 20.0, "ENST04.1": 1.0},
        "S2": {"ENST01.1": 7.25, "ENST02.3": 0.75, "ENST03.1": 30.0, "ENST04.1": 2.0},
    }
    samples = []
    for sample_id, est in counts.items():
        quant_dir = write_kallisto_sample(tmp_path / sample_id, est)
        samples.append(Sample(sample_id, "responder" if sample_id == "S1" else "nonresponder", quant_dir))
    return samples


class TestKallisto:
    def test_read_abundance_strips_versions(self, kallisto_samples):
        df = read_abundance(kallisto_samples[0].quant_dir)
        assert "ENST01" in df.index
        assert df.loc["ENST03", "est_counts"] == 20.0

    def test_read_abundance_gencode_ids(self, tmp_path, write_kallisto_sample):
        quant_dir = write_kallisto_sample(
            tmp_path / "G",
            {"ENST01.1|ENSG_A.2|OTTHUMG1|-|A-201|A|1500|": 3.0},
        )
        assert read_abundance(quant_dir).index.tolist() == ["ENST01"]

    def test_read_abundance_missing_file(self, tmp_path):
        with pytest.raises(InputValidationError, match="abundance file not found"):
            read_abundance(tmp_path)

    def test_transcript_level_matrix(self, kallisto_samples):
        matrix = load_kallisto_matrix(kallisto_samples, level="transcript")
        assert matrix.source == "kallisto"
        assert matrix.level == "transcript"
        assert matrix.samples == ["S1", "S2"]
        assert matrix.counts.shape == (4, 2)
        assert matrix.counts.loc["ENST02", "S2"] == 0.75
        assert matrix.tpm is not None

    def test_gene_level_sums_transcripts(self, kallisto_samples, annotation):
        matrix = load_kallisto_matrix(kallisto_samples, annotation=annotation, level="gene")
        assert matrix.level == "gene"
        assert matrix.counts.index.name == "gene"
        assert matrix.counts.loc["ENSG_A", "S1"] == pytest.approx(15.0)
        assert matrix.counts.loc["ENSG_B", "S2"] == pytest.approx(30.0)
        # ENST04 has no gene
        assert len(matrix.counts) == 2
        assert any("no gene in the annotation" in w for w in matrix.warnings)

    def test_gene_level_requires_annotation(self, kallisto_samples):
        with pytest.raises(ValueError, match="without an annotation"):
            load_kallisto_matrix(kallisto_samples, level="gene")

    def test_no_annotated_transcripts_raises(self, kallisto_samples):
        matrix = load_kallisto_matrix(kallisto_samples, level="transcript")
        unrelated = pd.DataFrame({"target_id": ["ENSTX"], "ens_gene": ["ENSGX"]})
        with pytest.raises(InputValidationError, match="No kallisto target ids"):
            aggregate_to_gene(matrix, unrelated)

    def test_different_transcriptomes_raise(self, kallisto_samples, tmp_path, write_kallisto_sample):
        odd = write_kallisto_sample(tmp_path / "S3", {"ENST99.1": 5.0})
        samples = kallisto_samples + [Sample("S3", "responder", odd)]
        with pytest.raises(InputValidationError, match="different transcriptome"):
            load_kallisto_matrix(samples, level="transcript")

    def test_samples_by_genes(self, kallisto_samples, annotation):
        matrix = load_kallisto_matrix(kallisto_samples, annotation=annotation)
        assert matrix.samples_by_genes().shape == (2, 2)
        assert matrix.samples_by_genes().index.tolist() == ["S1", "S2"]


FEATURECOUNTS = (
    '# Program:featureCounts v2.0.1; Command:"featureCounts" "-a" "genes.gtf"\n'
    "Geneid\tChr\tStart\tEnd\tStrand\tLength\t"
    "bam/S2.Aligned.sortedByCoord.out.bam\tbam/S1.Aligned.sortedByCoord.out.bam\tbam/S9.sorted.bam\n"
    "ENSG_A.4\tchr1\t100\t900\t+\t800\t12\t10\t3\n"
    "ENSG_B.1\tchr2\t100\t500\t-\t400\t0\t5\t1\n"
    "ENSG_B.2\tchr2\t600\t700\t-\t100\t2\t1\t1\n"
)


@pytest.fixture
def count_samples():
    return [Sample("S1", "responder", Path("/tmp/S1")), Sample("S2", "nonresponder", Path("/tmp/S2"))]


class TestCountMatrix:
    def test_featurecounts_format(self, tmp_path, count_samples):
        path = tmp_path / "counts.tsv"
        path.write_text(FEATURECOUNTS)
        matrix = load_count_matrix(path, count_samples)

        assert matrix.source == "featurecounts"
        assert matrix.level == "gene"
        # Manifest order, annotation columns dropped
        assert matrix.samples == ["S1", "S2"]
        assert matrix.counts.loc["ENSG_A", "S1"] == 10
        # ENSG_B.1 and ENSG_B.2 collapse after version stripping
        assert matrix.counts.loc["ENSG_B", "S2"] == 2
        assert matrix.counts.loc["ENSG_B", "S1"] == 6
        assert any("Dropped 1" in w for w in matrix.warnings)
        assert any("duplicate gene ids" in w for w in matrix.warnings)

    def test_plain_matrix(self, tmp_path, count_samples):
        path = tmp_path / "counts.tsv"
        path.write_text("gene_id\tS1\tS2\nENSG_A\t1\t2\n__no_feature\t50\t60\n")
        matrix = load_count_matrix(path, count_samples)
        assert matrix.counts.index.tolist() == ["ENSG_A"]
        assert matrix.warnings == []

    def test_missing_sample_raises(self, tmp_path, count_samples):
        path = tmp_path / "counts.tsv"
        path.write_text("gene_id\tS1\nENSG_A\t1\n")
        with pytest.raises(InputValidationError, match="not in count matrix"):
            load_count_matrix(path, count_samples)

    def test_no_gene_column_raises(self, tmp_path, count_samples):
        path = tmp_path / "counts.tsv"
        path.write_text("feature\tS1\tS2\nA\t1\t2\n")
        with pytest.raises(InputValidationError, match="no gene id column"):
            load_count_matrix(path, count_samples)


def test_match_columns_to_samples():
    mapping = match_columns_to_samples(
        ["S1", "/data/bam/S2.sorted.bam", "/runs/S3/Aligned.sortedByCoord.out.bam", "other.bam"],
        ["S1", "S2", "S3"],
    )
    assert mapping == {
        "S1": "S1",
        "/data/bam/S2.sorted.bam": "S2",
        "/runs/S3/Aligned.sortedByCoord.out.bam": "S3",
    }


def test_round_counts():
    df = pd.DataFrame({"S1": [1.4, 2.6, -0.2]})
    rounded = round_counts(df)
    assert rounded["S1"].tolist() == [1, 3, 0]
    assert np.issubdtype(rounded["S1"].dtype, np.integer)
