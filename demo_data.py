"""
Demo dataset generator for the pipeline comparison.

Writes a small immunotherapy-response cohort in the on-disk layout the
pipeline reads: a sample manifest, one kallisto output directory per sample,
a featureCounts gene matrix, a cached transcript-to-gene annotation and an
analysis config pointing at all of them.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Union
import json
import logging
import pandas as pd
import numpy as np

from config import AnalysisConfig, load_config, write_config

logger = logging.getLogger(__name__)

CONDITIONS = ("responder", "nonresponder")


@dataclass
class DemoDataset:
    """Paths of a written demo dataset plus its loaded config."""

    root: Path
    manifest: Path
    count_matrix: Path
    annotation_cache: Path
    config_path: Path
    config: AnalysisConfig
    up_genes: List[str]  # Higher in responders
    down_genes: List[str]  # Lower in responders
    outlier_sample: str  # Low mapping rate, removed by QC


def _gene_models(n_genes: int, rng: np.random.RandomState) -> pd.DataFrame:
    """One row per transcript: target_id (versioned), ens_gene, ext_gene, transcript_length."""
    rows = []
    tx_number = 1
    for g in range(n_genes):
        gene_id = f"ENSG{g + 1:011d}"
        symbol = f"GENE{g + 1}"
        for _ in range(rng.randint(1, 4)):
            rows.append(
                {
                    "target_id": f"ENST{tx_number:011d}.{rng.randint(1, 6)}",
                    "ens_gene": gene_id,
                    "ext_gene": symbol,
                    "transcript_length": int(rng.randint(500, 6000)),
                }
            )
            tx_number += 1
    return pd.DataFrame(rows)


def write_demo_dataset(
    root: Union[str, Path],
    n_per_group: int = 4,
    n_genes: int = 300,
    seed: int = 42,
) -> DemoDataset:
    """
    Generate and write a synthetic responder / non-responder cohort.

    Args:
        root: Directory to write into (created if needed)
        n_per_group: Samples per response group (>= 3, one responder is a
            low-mapping outlier)
        n_genes: Number of genes
        seed: Random seed

    Returns:
        DemoDataset describing what was written

    Dataset characteristics:
    - Gene base means log-normal, counts negative binomial
    - First 10% of genes up 4-fold in responders, next 10% down 4-fold
    - 1-3 transcripts per gene with fixed isoform proportions
    - Alignment counts track the pseudo-alignment counts with per-gene bias
    - responder_1 pseudo-aligns ~30% of its reads (below the 50% floor)
    """
    if n_per_group < 3:
        raise ValueError(
            f"n_per_group must be at least 3 so QC leaves 2 samples per group, got {n_per_group}"
        )

    rng = np.random.RandomState(seed)
    root = Path(root)
    kallisto_root = root / "kallisto"
    kallisto_root.mkdir(parents=True, exist_ok=True)

    models = _gene_models(n_genes, rng)
    genes = models["ens_gene"].unique().tolist()

    samples = [f"{cond}_{i + 1}" for cond in CONDITIONS for i in range(n_per_group)]
    conditions = [cond for cond in CONDITIONS for _ in range(n_per_group)]
    outlier = samples[0]

    # Built-in differential expression
    n_de = max(1, n_genes // 10)
    up_genes = genes[:n_de]
    down_genes = genes[n_de:2 * n_de]
    fold = pd.Series(1.0, index=genes)
    fold[up_genes] = 4.0
    fold[down_genes] = 0.25

    base_means = pd.Series(np.exp(rng.normal(5.5, 1.2, n_genes)), index=genes)
    dispersion = 0.05

    # Isoform proportions per gene
    proportions = {}
    for gene, group in models.groupby("ens_gene", sort=False):
        proportions[gene] = rng.dirichlet(np.ones(len(group)) * 2)

    gene_counts: Dict[str, pd.Series] = {}
    for sample, condition in zip(samples, conditions):
        library = rng.uniform(0.7, 1.3)
        mu = base_means * library
        if condition == CONDITIONS[0]:
            mu = mu * fold
        n = 1.0 / dispersion
        counts = rng.negative_binomial(n, n / (n + mu.values))
        gene_counts[sample] = pd.Series(counts, index=genes)

    for sample in samples:
        sample_dir = kallisto_root / sample
        sample_dir.mkdir(parents=True, exist_ok=True)

        est_counts = []
        for gene, group in models.groupby("ens_gene", sort=False):
            # Expectation-maximization leaves fractional estimates
            split = gene_counts[sample][gene] * proportions[gene] * rng.uniform(0.95, 1.05, len(group))
            est_counts.extend(split.tolist())

        abundance = models[["target_id", "transcript_length"]].rename(
            columns={"transcript_length": "length"}
        )
        abundance["eff_length"] = (abundance["length"] - 180).clip(lower=1).astype(float)
        abundance["est_counts"] = np.round(est_counts, 4)
        rate = abundance["est_counts"] / abundance["eff_length"]
        abundance["tpm"] = rate / rate.sum() * 1e6
        abundance.to_csv(sample_dir / "abundance.tsv", sep="\t", index=False)

        n_pseudoaligned = int(round(abundance["est_counts"].sum()))
        mapping_rate = 0.3 if sample == outlier else rng.uniform(0.75, 0.9)
        n_processed = int(n_pseudoaligned / mapping_rate)
        run_info = {
            "n_targets": len(abundance),
            "n_bootstraps": 0,
            "n_processed": n_processed,
            "n_pseudoaligned": n_pseudoaligned,
            "n_unique": int(n_pseudoaligned * 0.6),
            "p_pseudoaligned": round(100.0 * n_pseudoaligned / n_processed, 1),
            "p_unique": 0.0,
            "kallisto_version": "0.46.1",
            "index_version": 10,
            "start_time": "Mon Jan  6 10:00:00 2020",
            "call": f"kallisto quant -i index.idx -o {sample} {sample}_R1.fastq.gz {sample}_R2.fastq.gz",
        }
        with open(sample_dir / "run_info.json", "w") as f:
            json.dump(run_info, f, indent=1)

    # featureCounts matrix
    bias = pd.Series(rng.uniform(0.8, 1.05, n_genes), index=genes)
    fc = pd.DataFrame(
        {
            "Geneid": [f"{g}.{rng.randint(1, 12)}" for g in genes],
            "Chr": [f"chr{rng.randint(1, 23)}" for _ in genes],
            "Start": rng.randint(10_000, 100_000_000, n_genes),
        }
    )
    fc["End"] = fc["Start"] + rng.randint(1_000, 50_000, n_genes)
    fc["Strand"] = rng.choice(["+", "-"], n_genes)
    fc["Length"] = models.groupby("ens_gene", sort=False)["transcript_length"].max().values
    for sample in samples:
        aligned = np.round(gene_counts[sample] * bias * rng.uniform(0.95, 1.05, n_genes))
        fc[f"bam/{sample}.Aligned.sortedByCoord.out.bam"] = aligned.astype(int).values

    count_matrix = root / "featurecounts.tsv"
    with open(count_matrix, "w") as f:
        f.write(
            '# Program:featureCounts v2.0.1; Command:"featureCounts" "-p" "-a" '
            '"annotation.gtf" "-o" "featurecounts.tsv" ' + " ".join(
                f'"bam/{s}.Aligned.sortedByCoord.out.bam"' for s in samples
            ) + "\n"
        )
        fc.to_csv(f, sep="\t", index=False)

    annotation_cache = root / "tx2gene.tsv"
    models.to_csv(annotation_cache, sep="\t", index=False)

    manifest = root / "samples.tsv"
    pd.DataFrame(
        {
            "sample": samples,
            "response": conditions,
            "path": [f"kallisto/{s}" for s in samples],
        }
    ).to_csv(manifest, sep="\t", index=False)

    config = AnalysisConfig()
    config.paths.manifest = Path("samples.tsv")
    config.paths.quant_root = None
    config.paths.count_matrix = Path("featurecounts.tsv")
    config.paths.annotation_cache = Path("tx2gene.tsv")
    config.paths.output_dir = Path("results")
    config.manifest.condition_col = "response"
    config.design.test_level, config.design.reference_level = CONDITIONS
    config_path = root / "analysis.yaml"
    write_config(config, config_path)

    logger.info(
        f"Wrote demo dataset to {root}: {len(samples)} samples, {n_genes} genes, "
        f"{len(models)} transcripts"
    )
    return DemoDataset(
        root=root,
        manifest=manifest,
        count_matrix=count_matrix,
        annotation_cache=annotation_cache,
        config_path=config_path,
        config=load_config(config_path),
        up_genes=up_genes,
        down_genes=down_genes,
        outlier_sample=outlier,
    )
