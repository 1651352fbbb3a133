"""
Batch driver for the RNA-seq pipeline comparison.

Runs every stage once, top to bottom:
manifest → annotation → QC → kallisto matrix → featureCounts matrix →
VST/PCA → differential expression (three pipelines) → comparison → export.

Usage:
    rnaseq-compare --config config/analysis.yaml
    rnaseq-compare --demo --output-dir demo_run
"""

from dataclasses import dataclass, field
from itertools import combinations
from pathlib import Path
from typing import Dict, List, Optional, Tuple
import argparse
import logging
import sys
import pandas as pd
import plotly.graph_objects as go

from annotation import gene_symbol_map, load_annotation
from config import (
    AnalysisConfig,
    DEFAULT_CONFIG_PATH,
    KALLISTO_LEVELS,
    PIPELINES,
    load_config,
    write_config,
)
from de_analysis import (
    DEAnalysisEngine,
    DEResult,
    LRTAnalysisEngine,
    filter_low_counts,
    summarize_pipelines,
    variance_stabilize,
)
from dimensionality import PCAResult, compute_overlay_pca, compute_pca
from export_engine import ExportData, ExportEngine
from pipeline_comparison import (
    combine_results,
    effect_size_correlations,
    overlap_table,
    significant_sets,
)
from qc_filter import MappingQC
from qc_plots import (
    create_count_distribution_boxplot,
    create_mapping_rate_barplot,
    create_read_depth_barplot,
)
from quant_loader import (
    ExpressionMatrix,
    aggregate_to_gene,
    load_count_matrix,
    load_kallisto_matrix,
    round_counts,
)
from sample_table import (
    Sample,
    annotate_run_info,
    load_manifest,
    metadata_frame,
    sample_conditions,
)
from visualizations import (
    compute_de_summary,
    create_clustered_heatmap,
    create_effect_size_scatter,
    create_ma_plot,
    create_pca_overlay_plot,
    create_pca_plot,
    create_venn_diagram,
    create_volcano_plot,
)

logger = logging.getLogger(__name__)


@dataclass
class AnalysisOutputs:
    """Everything one run produced."""

    samples: List[Sample]  # Retained after QC
    excluded: List[Sample]
    qc_df: pd.DataFrame
    annotation: pd.DataFrame
    matrices: Dict[str, ExpressionMatrix]  # "kallisto", "featurecounts" (gene level)
    vst: Dict[str, pd.DataFrame]  # source → samples × genes
    pca: Dict[str, PCAResult]
    overlay_pca: Optional[PCAResult]
    de_results: Dict[str, DEResult]
    combined: Optional[pd.DataFrame]
    correlations: pd.DataFrame
    overlaps: pd.DataFrame
    summary: pd.DataFrame
    figures: Dict[str, go.Figure] = field(default_factory=dict)
    written: List[Path] = field(default_factory=list)


class ComparisonPipeline:
    """Runs the three-pipeline comparison described by an AnalysisConfig."""

    def __init__(self, config: AnalysisConfig):
        self.config = config
        self.export_engine = ExportEngine()

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def load_samples(self) -> List[Sample]:
        cfg = self.config
        samples = load_manifest(
            cfg.paths.manifest,
            sample_col=cfg.manifest.sample_col,
            condition_col=cfg.manifest.condition_col,
            path_col=cfg.manifest.path_col,
            quant_root=cfg.paths.quant_root,
        )
        levels = {s.condition for s in samples}
        expected = {cfg.design.test_level, cfg.design.reference_level}
        if levels != expected:
            raise ValueError(
                f"Manifest response levels {sorted(levels)} do not match the configured "
                f"comparison {cfg.design.test_level} vs {cfg.design.reference_level}. "
                f"Suggestion: set design.test_level / design.reference_level in the config."
            )
        return annotate_run_info(samples)

    def load_annotation(self) -> pd.DataFrame:
        cfg = self.config
        return load_annotation(
            cache_path=cfg.paths.annotation_cache,
            dataset=cfg.annotation.dataset,
            host=cfg.annotation.host,
            timeout=cfg.annotation.timeout,
        )

    def run_qc(self, samples: List[Sample]) -> Tuple[List[Sample], List[Sample], pd.DataFrame]:
        qc = MappingQC(
            min_percent_mapped=self.config.qc.min_percent_mapped,
            outlier_sd=self.config.qc.outlier_sd,
            exclude=self.config.qc.exclude,
        )
        return qc.apply(samples)

    def load_kallisto(
        self, samples: List[Sample], annotation: pd.DataFrame
    ) -> Tuple[ExpressionMatrix, ExpressionMatrix]:
        """Returns (transcript-level, gene-level) kallisto matrices."""
        transcripts = load_kallisto_matrix(samples, level="transcript")
        genes = aggregate_to_gene(transcripts, annotation)
        return transcripts, genes

    def load_featurecounts(self, samples: List[Sample]) -> ExpressionMatrix:
        return load_count_matrix(self.config.paths.count_matrix, samples)

    def prepare_counts(self, matrix: ExpressionMatrix) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """
        Low-count filter one gene-level source.

        Returns:
            (estimated counts, rounded integer counts), both samples × genes on
            the genes passing the filter
        """
        rounded = round_counts(matrix.samples_by_genes())
        kept = filter_low_counts(
            rounded,
            min_reads=self.config.filtering.min_reads,
            min_fraction=self.config.filtering.min_fraction,
        )
        estimated = matrix.samples_by_genes()[kept.columns]
        return estimated, kept

    def run_de(
        self,
        kallisto_est: pd.DataFrame,
        kallisto_int: pd.DataFrame,
        featurecounts_int: pd.DataFrame,
        metadata_df: pd.DataFrame,
    ) -> Dict[str, DEResult]:
        cfg = self.config
        factor = cfg.design.factor
        lrt = LRTAnalysisEngine(padj_threshold=cfg.thresholds.padj)
        wald = DEAnalysisEngine(padj_threshold=cfg.thresholds.padj)

        inputs = {
            "kallisto_lrt": (lrt, kallisto_est),
            "kallisto_wald": (wald, kallisto_int),
            "featurecounts_wald": (wald, featurecounts_int),
        }
        results = {}
        for name in PIPELINES:
            engine, counts = inputs[name]
            logger.info(f"Running {name} on {counts.shape[1]} genes × {counts.shape[0]} samples")
            results[name] = engine.run(
                counts, metadata_df, cfg.comparison, design_factor=factor, pipeline=name
            )
        return results

    def summarize(self, de_results: Dict[str, DEResult]) -> pd.DataFrame:
        summary = summarize_pipelines(de_results)
        up, down = [], []
        for name in summary["pipeline"]:
            result = de_results[name]
            if result.failed:
                up.append(0)
                down.append(0)
                continue
            stats = compute_de_summary(
                result.results_df, self.config.thresholds.padj, self.config.thresholds.lfc
            )
            up.append(stats["upregulated"])
            down.append(stats["downregulated"])
        summary["upregulated"] = up
        summary["downregulated"] = down
        return summary

    def build_figures(self, outputs: AnalysisOutputs) -> Dict[str, go.Figure]:
        cfg = self.config
        conditions = sample_conditions(outputs.samples)
        symbols = gene_symbol_map(outputs.annotation)
        padj, lfc = cfg.thresholds.padj, cfg.thresholds.lfc

        figures: Dict[str, go.Figure] = {
            "qc_percent_mapped": create_mapping_rate_barplot(
                outputs.qc_df, min_percent_mapped=cfg.qc.min_percent_mapped
            ),
            "qc_read_depth": create_read_depth_barplot(outputs.qc_df),
        }
        for source, matrix in outputs.matrices.items():
            figures[f"count_distribution_{source}"] = create_count_distribution_boxplot(
                matrix.counts, conditions, title=f"Count Distribution ({source})"
            )
        for source, result in outputs.pca.items():
            figures[f"pca_{source}"] = create_pca_plot(result, conditions, title=f"PCA ({source})")
        if outputs.overlay_pca is not None:
            figures["pca_overlay"] = create_pca_overlay_plot(outputs.overlay_pca, conditions)

        successful = {n: r for n, r in outputs.de_results.items() if not r.failed}
        for name, result in successful.items():
            figures[f"volcano_{name}"] = create_volcano_plot(
                result.results_df,
                lfc_threshold=lfc,
                padj_threshold=padj,
                top_n_labels=cfg.plots.volcano_labels,
                title=f"Volcano Plot ({name})",
                gene_symbols=symbols,
            )
            figures[f"ma_{name}"] = create_ma_plot(
                result.results_df, padj_threshold=padj, lfc_threshold=lfc, title=f"MA Plot ({name})"
            )

        if outputs.combined is not None:
            for x, y in combinations(successful, 2):
                try:
                    figures[f"effect_size_{x}_vs_{y}"] = create_effect_size_scatter(
                        outputs.combined, x, y, padj_threshold=padj
                    )
                except ValueError as e:
                    logger.warning(f"Skipping effect size scatter {x} vs {y}: {str(e)}")

        gene_sets = significant_sets(outputs.de_results, padj)
        if len(gene_sets) in (2, 3):
            figures["venn"] = create_venn_diagram(gene_sets)

        heatmap_source = "kallisto" if "kallisto" in outputs.vst else next(iter(outputs.vst), None)
        heatmap_results = successful.get("kallisto_wald") or next(iter(successful.values()), None)
        if heatmap_source is not None:
            figures["heatmap"] = create_clustered_heatmap(
                outputs.vst[heatmap_source].T,
                sample_annotations={"response": conditions},
                de_results_df=heatmap_results.results_df if heatmap_results else None,
                top_n_genes=cfg.plots.heatmap_top_genes,
                gene_symbols=symbols,
                title=f"Top Genes ({heatmap_source} VST)",
            )
        return figures

    def settings(self, samples: List[Sample], excluded: List[Sample]) -> Dict[str, object]:
        cfg = self.config
        return {
            "comparison": f"{cfg.design.test_level} vs {cfg.design.reference_level}",
            "design_factor": cfg.design.factor,
            "padj_threshold": cfg.thresholds.padj,
            "lfc_threshold": cfg.thresholds.lfc,
            "min_percent_mapped": cfg.qc.min_percent_mapped,
            "outlier_sd": cfg.qc.outlier_sd,
            "min_reads": cfg.filtering.min_reads,
            "min_fraction": cfg.filtering.min_fraction,
            "kallisto_level": cfg.quantification.kallisto_level,
            "samples_retained": len(samples),
            "samples_excluded": ", ".join(s.sample_id for s in excluded) or "none",
        }

    def export(
        self,
        outputs: AnalysisOutputs,
        kallisto_transcripts: ExpressionMatrix,
    ) -> List[Path]:
        cfg = self.config
        output_dir = Path(cfg.paths.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        kallisto = (
            kallisto_transcripts if cfg.quantification.kallisto_level == "transcript"
            else outputs.matrices["kallisto"]
        )
        level = kallisto.level
        expression_matrices = {
            f"kallisto_{level}_counts": kallisto.counts,
            f"kallisto_{level}_tpm": kallisto.tpm,
            "featurecounts_gene_counts": outputs.matrices["featurecounts"].counts,
        }
        for source, vst in outputs.vst.items():
            expression_matrices[f"{source}_vst"] = vst.T

        export_data = ExportData(
            de_results=outputs.de_results,
            sample_qc=outputs.qc_df,
            combined=outputs.combined,
            correlations=outputs.correlations,
            overlaps=outputs.overlaps,
            summary=outputs.summary,
            expression_matrices=expression_matrices,
            figures=outputs.figures,
            settings=self.settings(outputs.samples, outputs.excluded),
            sample_conditions=sample_conditions(outputs.samples),
        )

        written = self.export_engine.export_tables(output_dir, export_data)
        if cfg.plots.formats:
            written += self.export_engine.export_figures(
                output_dir, export_data, formats=cfg.plots.formats, scale=cfg.plots.scale
            )
        if cfg.export.excel:
            path = output_dir / "pipeline_comparison.xlsx"
            self.export_engine.export_excel(path, export_data)
            written.append(path)
        if cfg.export.pdf_report:
            path = output_dir / "report.pdf"
            self.export_engine.export_pdf_report(path, export_data)
            written.append(path)

        config_copy = output_dir / "analysis_config.yaml"
        write_config(cfg, config_copy)
        written.append(config_copy)
        return written

    # ------------------------------------------------------------------

    def run(self) -> AnalysisOutputs:
        """Run every stage in order and write the outputs."""
        cfg = self.config
        if cfg.quantification.kallisto_level not in KALLISTO_LEVELS:
            raise ValueError(
                f"Invalid quantification.kallisto_level '{cfg.quantification.kallisto_level}'. "
                f"Valid values: {KALLISTO_LEVELS}"
            )
        logger.info(
            f"Comparing {cfg.design.test_level} vs {cfg.design.reference_level} "
            f"across {', '.join(PIPELINES)}"
        )

        samples = self.load_samples()
        annotation = self.load_annotation()
        retained, excluded, qc_df = self.run_qc(samples)

        kallisto_tx, kallisto = self.load_kallisto(retained, annotation)
        featurecounts = self.load_featurecounts(retained)
        for matrix in (kallisto, featurecounts):
            for warning in matrix.warnings:
                logger.warning(f"{matrix.source}: {warning}")

        metadata_df = metadata_frame(retained, cfg.design.factor)
        kallisto_est, kallisto_int = self.prepare_counts(kallisto)
        _, featurecounts_int = self.prepare_counts(featurecounts)

        vst = {
            "kallisto": variance_stabilize(kallisto_int, metadata_df, cfg.design.factor),
            "featurecounts": variance_stabilize(featurecounts_int, metadata_df, cfg.design.factor),
        }
        pca = {
            source: compute_pca(matrix, top_n_genes=cfg.plots.pca_top_genes)
            for source, matrix in vst.items()
        }
        try:
            overlay = compute_overlay_pca(vst, top_n_genes=cfg.plots.pca_top_genes)
        except ValueError as e:
            logger.warning(f"Skipping PCA overlay: {str(e)}")
            overlay = None

        de_results = self.run_de(kallisto_est, kallisto_int, featurecounts_int, metadata_df)

        symbols = gene_symbol_map(annotation)
        combined = combine_results(de_results, gene_symbols=symbols)
        correlations = effect_size_correlations(combined, PIPELINES)
        overlaps = overlap_table(significant_sets(de_results, cfg.thresholds.padj))
        summary = self.summarize(de_results)

        outputs = AnalysisOutputs(
            samples=retained,
            excluded=excluded,
            qc_df=qc_df,
            annotation=annotation,
            matrices={"kallisto": kallisto, "featurecounts": featurecounts},
            vst=vst,
            pca=pca,
            overlay_pca=overlay,
            de_results=de_results,
            combined=combined,
            correlations=correlations,
            overlaps=overlaps,
            summary=summary,
        )
        outputs.figures = self.build_figures(outputs)
        outputs.written = self.export(outputs, kallisto_tx)

        logger.info(f"Done: {len(outputs.written)} files in {cfg.paths.output_dir}")
        return outputs


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rnaseq-compare",
        description="Compare kallisto/LRT, kallisto/Wald and featureCounts/Wald "
        "differential expression on one response contrast.",
    )
    parser.add_argument(
        "--config", "-c", default=DEFAULT_CONFIG_PATH,
        help=f"Analysis YAML config (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--output-dir", "-o", default=None,
        help="Output directory (overrides paths.output_dir)",
    )
    parser.add_argument(
        "--demo", action="store_true",
        help="Generate a synthetic dataset under the output directory and analyse it",
    )
    parser.add_argument(
        "--log-level", default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.demo:
        from demo_data import write_demo_dataset

        demo_root = Path(args.output_dir or "demo_run")
        config = write_demo_dataset(demo_root / "data").config
        config.paths.output_dir = demo_root / "results"
    else:
        config = load_config(args.config)
        if args.output_dir:
            config.paths.output_dir = Path(args.output_dir)

    ComparisonPipeline(config).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
