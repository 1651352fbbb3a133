"""
Analysis configuration.

Settings live in a YAML file (config/analysis.yaml by default) and are loaded
into nested dataclasses. Relative paths resolve against the directory holding
the YAML file.
"""

from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import yaml

DEFAULT_CONFIG_PATH = "config/analysis.yaml"

PIPELINES = ["kallisto_lrt", "kallisto_wald", "featurecounts_wald"]
KALLISTO_LEVELS = ["gene", "transcript"]


@dataclass
class PathsConfig:
    manifest: Path = Path("data/samples.tsv")
    quant_root: Optional[Path] = None  # Base of relative kallisto directories
    count_matrix: Path = Path("data/featurecounts.tsv")
    annotation_cache: Optional[Path] = Path("data/tx2gene.tsv")
    output_dir: Path = Path("results")


@dataclass
class ManifestConfig:
    sample_col: str = "sample"
    condition_col: str = "condition"
    path_col: Optional[str] = "path"


@dataclass
class DesignConfig:
    factor: str = "condition"
    test_level: str = "responder"
    reference_level: str = "nonresponder"


@dataclass
class AnnotationConfig:
    dataset: str = "hsapiens_gene_ensembl"
    host: str = "https://www.ensembl.org"
    timeout: float = 300.0


@dataclass
class QuantificationConfig:
    kallisto_level: str = "gene"  # "gene" or "transcript" for the exported matrices


@dataclass
class QCConfig:
    min_percent_mapped: float = 50.0
    outlier_sd: Optional[float] = 2.0
    exclude: List[str] = field(default_factory=list)


@dataclass
class FilteringConfig:
    min_reads: float = 5
    min_fraction: float = 0.47


@dataclass
class ThresholdsConfig:
    padj: float = 0.05
    lfc: float = 1.0


@dataclass
class PlotsConfig:
    pca_top_genes: Optional[int] = 500
    heatmap_top_genes: int = 50
    volcano_labels: int = 10
    formats: List[str] = field(default_factory=lambda: ["png", "html"])
    scale: int = 2


@dataclass
class ExportConfig:
    excel: bool = True
    pdf_report: bool = True


@dataclass
class AnalysisConfig:
    """Complete configuration of one run."""

    paths: PathsConfig = field(default_factory=PathsConfig)
    manifest: ManifestConfig = field(default_factory=ManifestConfig)
    design: DesignConfig = field(default_factory=DesignConfig)
    annotation: AnnotationConfig = field(default_factory=AnnotationConfig)
    quantification: QuantificationConfig = field(default_factory=QuantificationConfig)
    qc: QCConfig = field(default_factory=QCConfig)
    filtering: FilteringConfig = field(default_factory=FilteringConfig)
    thresholds: ThresholdsConfig = field(default_factory=ThresholdsConfig)
    plots: PlotsConfig = field(default_factory=PlotsConfig)
    export: ExportConfig = field(default_factory=ExportConfig)

    @property
    def comparison(self):
        return (self.design.test_level, self.design.reference_level)

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict with paths as strings (for the Settings sheet and reports)."""
        data = asdict(self)
        for key, value in data["paths"].items():
            data["paths"][key] = None if value is None else str(value)
        return data


_SECTIONS = {f.name: f.default_factory for f in fields(AnalysisConfig)}


def _build_section(name: str, values: Optional[Dict[str, Any]]):
    section = _SECTIONS[name]()
    if not values:
        return section
    known = {f.name for f in fields(section)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValueError(
            f"Unknown keys in config section '{name}': {unknown}. "
            f"Valid keys: {sorted(known)}"
        )
    for key, value in values.items():
        setattr(section, key, value)
    return section


def load_config(path: Union[str, Path] = DEFAULT_CONFIG_PATH) -> AnalysisConfig:
    """
    Load analysis settings from YAML.

    Args:
        path: YAML config file

    Returns:
        AnalysisConfig with absolute paths

    Raises:
        FileNotFoundError: config file does not exist
        ValueError: unknown section or key, or an invalid kallisto_level
    """
    config_file = Path(path)
    if not config_file.exists():
        raise FileNotFoundError(f"Analysis config not found: {path}")

    with open(config_file, "r") as f:
        raw = yaml.safe_load(f) or {}

    unknown = sorted(set(raw) - set(_SECTIONS))
    if unknown:
        raise ValueError(
            f"Unknown config sections: {unknown}. Valid sections: {sorted(_SECTIONS)}"
        )

    config = AnalysisConfig(**{name: _build_section(name, raw.get(name)) for name in _SECTIONS})
    if config.quantification.kallisto_level not in KALLISTO_LEVELS:
        raise ValueError(
            f"Invalid quantification.kallisto_level '{config.quantification.kallisto_level}'. "
            f"Valid values: {KALLISTO_LEVELS}"
        )
    resolve_paths(config, config_file.resolve().parent)
    return config


def resolve_paths(config: AnalysisConfig, base_dir: Path) -> AnalysisConfig:
    """Make every configured path absolute relative to base_dir."""
    for f in fields(config.paths):
        value = getattr(config.paths, f.name)
        if value is None:
            continue
        value = Path(value).expanduser()
        if not value.is_absolute():
            value = base_dir / value
        setattr(config.paths, f.name, value)
    return config


def write_config(config: AnalysisConfig, path: Union[str, Path]) -> None:
    """Write the config back to YAML."""
    with open(path, "w") as f:
        yaml.safe_dump(config.to_dict(), f, sort_keys=False)
