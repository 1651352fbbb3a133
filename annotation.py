"""
Transcript-to-gene annotation from Ensembl BioMart.

The mapping (transcript id, gene id, gene symbol, transcript length) is
fetched once from the BioMart martservice and cached as a TSV next to the
analysis inputs, so reruns do not touch the network.
"""

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union
import io
import logging
import pandas as pd
import requests

logger = logging.getLogger(__name__)

ANNOTATION_COLUMNS = ["target_id", "ens_gene", "ext_gene", "transcript_length"]

BIOMART_ATTRIBUTES = [
    "ensembl_transcript_id",
    "ensembl_gene_id",
    "external_gene_name",
    "transcript_length",
]

DEFAULT_HOST = "https://www.ensembl.org"
DEFAULT_DATASET = "hsapiens_gene_ensembl"


class AnnotationServiceError(Exception):
    """Raised when the annotation service cannot be queried or parsed."""


def build_biomart_query(dataset: str, attributes: Iterable[str]) -> str:
    """Build a BioMart XML query returning TSV without a header row."""
    attribute_xml = "".join(f'<Attribute name="{a}"/>' for a in attributes)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        "<!DOCTYPE Query>"
        '<Query virtualSchemaName="default" formatter="TSV" header="0" '
        'uniqueRows="1" datasetConfigVersion="0.6">'
        f'<Dataset name="{dataset}" interface="default">'
        f"{attribute_xml}"
        "</Dataset>"
        "</Query>"
    )


def fetch_biomart_annotation(
    dataset: str = DEFAULT_DATASET,
    host: str = DEFAULT_HOST,
    timeout: float = 300.0,
) -> pd.DataFrame:
    """
    Query BioMart for the transcript-to-gene mapping of one dataset.

    Args:
        dataset: BioMart dataset (e.g. "hsapiens_gene_ensembl")
        host: Ensembl host, archive hosts included
        timeout: Request timeout in seconds

    Returns:
        DataFrame with columns: target_id, ens_gene, ext_gene, transcript_length

    Raises:
        AnnotationServiceError: on HTTP failure or an error payload
    """
    url = f"{host.rstrip('/')}/biomart/martservice"
    query = build_biomart_query(dataset, BIOMART_ATTRIBUTES)
    logger.info(f"Querying BioMart {url} for dataset {dataset}")

    try:
        response = requests.get(url, params={"query": query}, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise AnnotationServiceError(f"BioMart request failed: {e}") from e

    text = response.text
    # BioMart reports query errors with HTTP 200 and a plain-text body
    if not text.strip() or text.lstrip().startswith("Query ERROR"):
        raise AnnotationServiceError(
            f"BioMart returned no annotation for dataset {dataset}: {text[:200]}"
        )

    annotation = pd.read_csv(
        io.StringIO(text),
        sep="\t",
        header=None,
        names=ANNOTATION_COLUMNS,
        dtype={"target_id": str, "ens_gene": str, "ext_gene": str},
    )
    return clean_annotation(annotation)


def clean_annotation(annotation: pd.DataFrame) -> pd.DataFrame:
    """Drop incomplete rows, fill missing symbols with the gene id, dedupe transcripts."""
    missing = [c for c in ANNOTATION_COLUMNS[:2] if c not in annotation.columns]
    if missing:
        raise AnnotationServiceError(
            f"Annotation is missing columns {missing}. "
            f"Found columns: {', '.join(annotation.columns)}"
        )

    df = annotation.dropna(subset=["target_id", "ens_gene"]).copy()
    if "ext_gene" not in df.columns:
        df["ext_gene"] = df["ens_gene"]
    df["ext_gene"] = df["ext_gene"].fillna(df["ens_gene"])
    if "transcript_length" not in df.columns:
        df["transcript_length"] = pd.NA
    df["transcript_length"] = pd.to_numeric(df["transcript_length"], errors="coerce")

    df["target_id"] = strip_version(df["target_id"])
    df["ens_gene"] = strip_version(df["ens_gene"])
    df = df.drop_duplicates(subset="target_id").reset_index(drop=True)
    return df[ANNOTATION_COLUMNS]


def load_annotation(
    cache_path: Optional[Union[str, Path]] = None,
    dataset: str = DEFAULT_DATASET,
    host: str = DEFAULT_HOST,
    timeout: float = 300.0,
) -> pd.DataFrame:
    """
    Load the annotation from cache, fetching and caching it when absent.

    Args:
        cache_path: TSV cache location (None disables caching)
        dataset: BioMart dataset
        host: Ensembl host
        timeout: Request timeout in seconds

    Returns:
        Annotation DataFrame (target_id, ens_gene, ext_gene, transcript_length)
    """
    if cache_path is not None and Path(cache_path).exists():
        annotation = pd.read_csv(cache_path, sep="\t", dtype={"target_id": str, "ens_gene": str, "ext_gene": str})
        logger.info(f"Loaded {len(annotation)} transcript annotations from {cache_path}")
        return clean_annotation(annotation)

    annotation = fetch_biomart_annotation(dataset=dataset, host=host, timeout=timeout)
    logger.info(
        f"Fetched {len(annotation)} transcripts / "
        f"{annotation['ens_gene'].nunique()} genes from BioMart"
    )

    if cache_path is not None:
        Path(cache_path).parent.mkdir(parents=True, exist_ok=True)
        annotation.to_csv(cache_path, sep="\t", index=False)
        logger.info(f"Cached annotation to {cache_path}")

    return annotation


def strip_version(ids: Union[pd.Series, List[str]]) -> Union[pd.Series, List[str]]:
    """ENST00000456328.2 → ENST00000456328."""
    if isinstance(ids, pd.Series):
        return ids.astype(str).str.replace(r"\.\d+$", "", regex=True)
    return [str(i).rsplit(".", 1)[0] if str(i).rsplit(".", 1)[-1].isdigit() else str(i) for i in ids]


def normalize_target_ids(ids: pd.Series) -> pd.Series:
    """
    Reduce kallisto target ids to bare Ensembl transcript ids.

    GENCODE transcriptomes produce '|'-delimited headers
    (ENST...|ENSG...|OTTHUMG...|...); only the first field is kept.
    """
    return strip_version(ids.astype(str).str.split("|").str[0])


def gene_symbol_map(annotation: pd.DataFrame) -> Dict[str, str]:
    """Map ens_gene → ext_gene."""
    genes = annotation.drop_duplicates(subset="ens_gene")
    return dict(zip(genes["ens_gene"], genes["ext_gene"]))
