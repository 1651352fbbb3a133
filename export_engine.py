"""
Export module for the pipeline comparison.

Writes the result tables as TSV, the figures as static images and HTML, an
Excel workbook of every table, and a PDF summary report.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, List, Any, Union
from datetime import datetime
import io
import logging
import re
import sys
import pandas as pd
import plotly.graph_objects as go
from reportlab.lib.pagesizes import letter
from reportlab.platypus import SimpleDocTemplate, Paragraph, Table, Image, Spacer
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.utils import ImageReader

from de_analysis import DEResult

logger = logging.getLogger(__name__)


@dataclass
class ExportData:
    """Complete export bundle - assembled by the pipeline after all stages ran."""

    de_results: Dict[str, DEResult]  # pipeline id → result
    sample_qc: pd.DataFrame  # QC summary indexed by sample
    combined: Optional[pd.DataFrame]  # Joined comparison table (None if all failed)
    correlations: pd.DataFrame  # Pairwise effect-size agreement
    overlaps: pd.DataFrame  # Venn region sizes
    summary: pd.DataFrame  # Status and significant-gene count per pipeline
    expression_matrices: Dict[str, pd.DataFrame] = field(default_factory=dict)  # name → features × samples
    figures: Dict[str, go.Figure] = field(default_factory=dict)
    settings: Dict[str, Any] = field(default_factory=dict)
    sample_conditions: Dict[str, str] = field(default_factory=dict)


class ExportEngine:
    """Writes tables, figures and reports for one run."""

    def sanitize_sheet_name(self, name: str, max_length: int = 31) -> str:
        """
        Sanitize sheet name for Excel compatibility.

        Excel sheet name rules:
        - Max 31 characters
        - Cannot contain: [ ] : * ? / \
        - Cannot start or end with '
        """
        name = re.sub(r"[\[\]:*?/\\]", "_", name)
        name = name.strip("'")
        return name[:max_length]

    def export_tables(self, output_dir: Union[str, Path], export_data: ExportData) -> List[Path]:
        """
        Write every table as tab-separated text.

        Files:
        - <pipeline>_results.tsv per pipeline (failed pipelines skipped)
        - sample_qc.tsv, pipeline_summary.tsv, pipeline_comparison.tsv,
          effect_size_correlations.tsv, significant_overlap.tsv
        - <name>_matrix.tsv per expression matrix

        Returns:
            Paths written
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        written = []

        def write(df: pd.DataFrame, filename: str, index: bool = False) -> None:
            path = output_dir / filename
            df.to_csv(path, sep="\t", index=index)
            written.append(path)

        for name, result in export_data.de_results.items():
            if result.failed:
                logger.warning(f"Not writing {name} results: {result.warnings[0]}")
                continue
            write(result.results_df.sort_values("pvalue"), f"{name}_results.tsv")

        write(export_data.sample_qc, "sample_qc.tsv", index=True)
        write(export_data.summary, "pipeline_summary.tsv")
        if export_data.combined is not None:
            write(export_data.combined, "pipeline_comparison.tsv")
        write(export_data.correlations, "effect_size_correlations.tsv")
        write(export_data.overlaps, "significant_overlap.tsv")

        for name, matrix in export_data.expression_matrices.items():
            write(matrix, f"{name}_matrix.tsv", index=True)

        logger.info(f"Wrote {len(written)} tables to {output_dir}")
        return written

    def export_figure(
        self,
        fig: go.Figure,
        filepath: Union[str, Path],
        format: str = "png",
        scale: int = 3,
    ) -> Path:
        """
        Export Plotly figure to a file.

        Args:
            fig: Plotly Figure object
            filepath: Output path without extension
            format: 'png', 'svg', 'pdf' (static, via kaleido) or 'html' (interactive)
            scale: Scale factor for raster formats

        Returns:
            Path written
        """
        path = Path(filepath).with_suffix(f".{format}")
        if format == "html":
            fig.write_html(str(path), include_plotlyjs="cdn")
        else:
            fig.write_image(str(path), format=format, scale=scale)
        return path

    def export_figures(
        self,
        output_dir: Union[str, Path],
        export_data: ExportData,
        formats: Optional[List[str]] = None,
        scale: int = 2,
    ) -> List[Path]:
        """Write every figure in every requested format under output_dir/figures."""
        figure_dir = Path(output_dir) / "figures"
        figure_dir.mkdir(parents=True, exist_ok=True)
        written = []
        for name, fig in export_data.figures.items():
            for fmt in formats or ["png"]:
                written.append(self.export_figure(fig, figure_dir / name, format=fmt, scale=scale))
        logger.info(f"Wrote {len(written)} figure files to {figure_dir}")
        return written

    def export_excel(self, filepath: Union[str, Path], export_data: ExportData) -> None:
        """
        Export all tables to a multi-sheet Excel workbook.

        Sheets: Summary, Sample QC, DE_<pipeline>, Sig_<pipeline>, Comparison,
        Correlations, Overlap, Settings

        Args:
            filepath: Output Excel file path (.xlsx)
            export_data: Complete export data bundle
        """
        padj = export_data.settings.get("padj_threshold", 0.05)
        with pd.ExcelWriter(filepath, engine="openpyxl") as writer:
            export_data.summary.to_excel(writer, sheet_name="Summary", index=False)
            export_data.sample_qc.to_excel(writer, sheet_name="Sample QC")

            for name, result in export_data.de_results.items():
                if result.failed:
                    continue
                result.results_df.to_excel(
                    writer, sheet_name=self.sanitize_sheet_name(f"DE_{name}"), index=False
                )
                sig = result.results_df[result.results_df["padj"] < padj]
                sig.to_excel(
                    writer, sheet_name=self.sanitize_sheet_name(f"Sig_{name}"), index=False
                )

            if export_data.combined is not None:
                export_data.combined.to_excel(writer, sheet_name="Comparison", index=False)
            export_data.correlations.to_excel(writer, sheet_name="Correlations", index=False)
            export_data.overlaps.to_excel(writer, sheet_name="Overlap", index=False)

            self._write_settings_sheet(writer, export_data)
        logger.info(f"Wrote workbook {filepath}")

    def _write_settings_sheet(
        self, writer: pd.ExcelWriter, export_data: ExportData
    ) -> None:
        """
        Write Settings sheet with analysis metadata.

        Key-value rows: analysis date, Python and PyDESeq2 versions, thresholds,
        per-pipeline status, sample → response mapping.
        """
        settings_data = [
            ["Parameter", "Value"],
            ["Analysis Date", datetime.now().strftime("%Y-%m-%d %H:%M:%S")],
            [
                "Python Version",
                f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
            ],
        ]

        try:
            import pydeseq2

            settings_data.append(["PyDESeq2 Version", pydeseq2.__version__])
        except (ImportError, AttributeError):
            settings_data.append(["PyDESeq2 Version", "N/A"])

        if export_data.settings:
            settings_data.append(["---", "---"])
            settings_data.append(["Settings", ""])
            for key, value in export_data.settings.items():
                settings_data.append([key, str(value)])

        if export_data.de_results:
            settings_data.append(["---", "---"])
            settings_data.append(["Pipelines", ""])
            for name, result in export_data.de_results.items():
                if result.failed:
                    status = f"FAILED ({result.warnings[0]})"
                else:
                    status = f"SUCCESS ({result.n_significant} significant genes)"
                settings_data.append([name, status])

        if export_data.sample_conditions:
            settings_data.append(["---", "---"])
            settings_data.append(["Sample Response", ""])
            for sample, condition in sorted(export_data.sample_conditions.items()):
                settings_data.append([sample, condition])

        settings_df = pd.DataFrame(settings_data)
        settings_df.to_excel(writer, sheet_name="Settings", index=False, header=False)

    @staticmethod
    def _frame_to_table(df: pd.DataFrame, float_format: str = "{:.3g}") -> Table:
        rows = [list(map(str, df.columns))]
        for values in df.itertuples(index=False, name=None):
            rows.append(
                [float_format.format(v) if isinstance(v, float) else str(v) for v in values]
            )
        return Table(rows)

    def _figure_image(self, fig: go.Figure) -> Image:
        png_bytes = fig.to_image(format="png", scale=2, width=800, height=600)
        return Image(ImageReader(io.BytesIO(png_bytes)), width=400, height=300)

    def export_pdf_report(self, filepath: Union[str, Path], export_data: ExportData) -> None:
        """
        Generate a PDF summary report from the ExportData bundle.

        Sections: methods, sample QC, pipeline summary, effect-size
        correlations, significant-gene overlap, and any of the figures
        "pca_overlay", "venn", "volcano_<pipeline>", "heatmap" present in the
        bundle. Figures are embedded as in-memory PNG bytes.

        Args:
            filepath: Output PDF file path
            export_data: Complete export data bundle
        """
        doc = SimpleDocTemplate(str(filepath), pagesize=letter)
        styles = getSampleStyleSheet()
        story = []

        story.append(Paragraph("RNA-seq Pipeline Comparison Report", styles["Title"]))
        story.append(Spacer(1, 12))
        story.append(
            Paragraph(
                f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
                styles["Normal"],
            )
        )
        story.append(Spacer(1, 24))

        # Methods
        settings = export_data.settings
        story.append(Paragraph("Methods", styles["Heading1"]))
        story.append(
            Paragraph(
                f"Comparison: {settings.get('comparison', 'n/a')}. "
                f"Thresholds: padj &lt; {settings.get('padj_threshold', 0.05)}, "
                f"|log2FC| &gt; {settings.get('lfc_threshold', 1.0)}.",
                styles["Normal"],
            )
        )
        for name, result in export_data.de_results.items():
            story.append(Paragraph(f"  • {name} ({result.test})", styles["Normal"]))
        story.append(Spacer(1, 24))

        # Sample QC
        story.append(Paragraph("Sample QC", styles["Heading1"]))
        qc = export_data.sample_qc.reset_index()
        qc_cols = [c for c in ["sample_id", "condition", "n_processed", "percent_mapped", "exclusion_reason"] if c in qc.columns]
        story.append(self._frame_to_table(qc[qc_cols]))
        story.append(Spacer(1, 24))

        # Pipeline summary
        story.append(Paragraph("Differential Expression Summary", styles["Heading1"]))
        summary_cols = [c for c in ["pipeline", "test", "genes_tested", "n_significant", "status"] if c in export_data.summary.columns]
        story.append(self._frame_to_table(export_data.summary[summary_cols]))
        story.append(Spacer(1, 24))

        if not export_data.correlations.empty:
            story.append(Paragraph("Effect Size Agreement", styles["Heading1"]))
            corr_cols = [c for c in ["pipeline_x", "pipeline_y", "n_genes", "pearson_r", "spearman_rho", "slope", "r_squared"] if c in export_data.correlations.columns]
            story.append(self._frame_to_table(export_data.correlations[corr_cols]))
            story.append(Spacer(1, 24))

        if not export_data.overlaps.empty:
            story.append(Paragraph("Significant Gene Overlap", styles["Heading1"]))
            story.append(self._frame_to_table(export_data.overlaps.drop(columns=["genes"], errors="ignore")))
            story.append(Spacer(1, 24))

        figure_keys = ["pca_overlay", "venn", "heatmap"] + sorted(
            k for k in export_data.figures if k.startswith("volcano_")
        )
        for key in figure_keys:
            if key not in export_data.figures:
                continue
            story.append(Paragraph(key.replace("_", " ").title(), styles["Heading1"]))
            story.append(Spacer(1, 6))
            story.append(self._figure_image(export_data.figures[key]))
            story.append(Spacer(1, 24))

        doc.build(story)
        logger.info(f"Wrote report {filepath}")
