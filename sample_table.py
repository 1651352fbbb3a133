"""
Sample manifest loading for the pipeline comparison.

Reads the tab-separated sample manifest (identifier, response label,
quantification directory) and attaches the read counts reported by kallisto
in each sample's run_info.json.
"""

from dataclasses import dataclass, replace, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import json
import logging
import pandas as pd

logger = logging.getLogger(__name__)

RUN_INFO_FILE = "run_info.json"


class InputValidationError(Exception):
    """Raised when an input file is missing or fails validation checks."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message: str = message
        self.details: Dict[str, Any] = details or {}
        super().__init__(self.message)


@dataclass(frozen=True)
class Sample:
    """One sequenced sample from the manifest."""

    sample_id: str
    condition: str  # Binary response label
    quant_dir: Path  # kallisto output directory
    n_processed: Optional[int] = None  # Total sequenced reads
    n_pseudoaligned: Optional[int] = None  # Total mapped reads
    percent_mapped: Optional[float] = None
    excluded: bool = False
    exclusion_reason: str = ""


def load_manifest(
    path: Union[str, Path],
    sample_col: str = "sample",
    condition_col: str = "condition",
    path_col: Optional[str] = "path",
    quant_root: Optional[Union[str, Path]] = None,
) -> List[Sample]:
    """
    Read the sample manifest and resolve quantification directories.

    Args:
        path: Tab-separated manifest file
        sample_col: Column holding sample identifiers
        condition_col: Column holding the response label
        path_col: Column holding the quantification directory. When the column
            is absent the directory is quant_root/<sample_id>.
        quant_root: Base for relative directories (default: manifest directory)

    Returns:
        List of Sample in manifest order

    Raises:
        InputValidationError: missing file or columns, duplicate ids, or a
            response label that does not have exactly two levels
    """
    path = Path(path)
    if not path.exists():
        raise InputValidationError(
            f"Sample manifest not found: {path}", {"path": str(path)}
        )

    manifest = pd.read_csv(path, sep="\t", dtype=str, comment="#")
    manifest.columns = [c.strip() for c in manifest.columns]

    missing = [c for c in (sample_col, condition_col) if c not in manifest.columns]
    if missing:
        raise InputValidationError(
            f"Sample manifest is missing required columns {missing}. "
            f"Found columns: {', '.join(manifest.columns)}. "
            f"Suggestion: set manifest.sample_col / manifest.condition_col in the config.",
            {"missing": missing, "columns": manifest.columns.tolist()},
        )

    manifest = manifest.dropna(subset=[sample_col])
    manifest[sample_col] = manifest[sample_col].str.strip()
    manifest[condition_col] = manifest[condition_col].str.strip()

    duplicated = manifest[sample_col][manifest[sample_col].duplicated()].tolist()
    if duplicated:
        raise InputValidationError(
            f"Duplicate sample identifiers in manifest: {', '.join(duplicated)}",
            {"duplicates": duplicated},
        )

    unlabelled = manifest[manifest[condition_col].isna()][sample_col].tolist()
    if unlabelled:
        raise InputValidationError(
            f"Samples without a response label: {', '.join(unlabelled)}",
            {"unlabelled": unlabelled},
        )

    levels = sorted(manifest[condition_col].unique())
    if len(levels) != 2:
        raise InputValidationError(
            f"Response label must have exactly 2 levels, found {len(levels)}: {levels}",
            {"levels": levels},
        )

    root = Path(quant_root) if quant_root is not None else path.parent
    has_path_col = path_col is not None and path_col in manifest.columns

    samples = []
    for _, row in manifest.iterrows():
        sample_id = row[sample_col]
        if has_path_col and isinstance(row[path_col], str) and row[path_col].strip():
            quant_dir = Path(row[path_col].strip())
            if not quant_dir.is_absolute():
                quant_dir = root / quant_dir
        else:
            quant_dir = root / sample_id
        samples.append(
            Sample(sample_id=sample_id, condition=row[condition_col], quant_dir=quant_dir)
        )

    counts = pd.Series([s.condition for s in samples]).value_counts().to_dict()
    logger.info(
        f"Loaded manifest {path.name}: {len(samples)} samples "
        + ", ".join(f"{level}={n}" for level, n in sorted(counts.items()))
    )
    return samples


def read_run_info(quant_dir: Union[str, Path]) -> Dict[str, Any]:
    """Parse kallisto's run_info.json for one sample."""
    run_info_path = Path(quant_dir) / RUN_INFO_FILE
    if not run_info_path.exists():
        raise InputValidationError(
            f"kallisto run info not found: {run_info_path}",
            {"path": str(run_info_path)},
        )

    with open(run_info_path, "r") as f:
        run_info = json.load(f)

    for key in ("n_processed", "n_pseudoaligned"):
        if key not in run_info:
            raise InputValidationError(
                f"{run_info_path} has no '{key}' field",
                {"path": str(run_info_path), "keys": sorted(run_info)},
            )
    return run_info


def annotate_run_info(samples: List[Sample]) -> List[Sample]:
    """
    Attach reads processed, reads mapped and percent mapped to each sample.

    Percent mapped is recomputed from the read counts rather than taken from
    p_pseudoaligned, which kallisto rounds.
    """
    annotated = []
    for sample in samples:
        run_info = read_run_info(sample.quant_dir)
        n_processed = int(run_info["n_processed"])
        n_mapped = int(run_info["n_pseudoaligned"])
        percent = 100.0 * n_mapped / n_processed if n_processed > 0 else 0.0
        annotated.append(
            replace(
                sample,
                n_processed=n_processed,
                n_pseudoaligned=n_mapped,
                percent_mapped=percent,
            )
        )
    return annotated


def samples_to_frame(samples: List[Sample]) -> pd.DataFrame:
    """One row per sample, indexed by sample_id."""
    rows = []
    for sample in samples:
        row = asdict(sample)
        row["quant_dir"] = str(sample.quant_dir)
        rows.append(row)
    df = pd.DataFrame(rows)
    if df.empty:
        return df
    return df.set_index("sample_id")


def sample_conditions(samples: List[Sample]) -> Dict[str, str]:
    """Map sample_id → response label."""
    return {s.sample_id: s.condition for s in samples}


def metadata_frame(samples: List[Sample], design_factor: str = "condition") -> pd.DataFrame:
    """samples × design factor DataFrame for the DE engines."""
    return pd.DataFrame(
        {design_factor: [s.condition for s in samples]},
        index=pd.Index([s.sample_id for s in samples], name=None),
    )
