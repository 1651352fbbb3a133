"""
Sample-level quality control for the pipeline comparison.

Flags samples whose pseudo-alignment rate is an outlier and removes them
from every downstream pipeline.
"""

from dataclasses import replace
from typing import List, Dict, Tuple, Optional, Iterable
import logging
import pandas as pd
import numpy as np

from sample_table import Sample

logger = logging.getLogger(__name__)


class MappingQC:
    """
    Percent-mapped QC for kallisto runs.

    A sample is excluded when any of the following holds:
    - percent mapped is below an absolute floor
    - percent mapped is more than outlier_sd standard deviations below the
      cohort median
    - the sample is listed for manual exclusion
    """

    def __init__(
        self,
        min_percent_mapped: float = 50.0,
        outlier_sd: Optional[float] = 2.0,
        exclude: Optional[Iterable[str]] = None,
    ):
        self.min_percent_mapped = min_percent_mapped
        self.outlier_sd = outlier_sd
        self.exclude = set(exclude or [])

    def compute_mapping_qc(self, samples: List[Sample]) -> pd.DataFrame:
        """
        Tabulate read counts and mapping rate per sample.

        Parameters
        ----------
        samples : List[Sample]
            Samples annotated with run info

        Returns
        -------
        pd.DataFrame
            Index sample_id; columns condition, n_processed, n_pseudoaligned,
            percent_mapped
        """
        missing = [s.sample_id for s in samples if s.percent_mapped is None]
        if missing:
            raise ValueError(
                f"Cannot compute mapping QC: run info not loaded for {', '.join(missing[:3])}"
                f"{'...' if len(missing) > 3 else ''}. "
                f"Suggestion: call annotate_run_info() on the manifest samples first."
            )

        qc_df = pd.DataFrame(
            {
                "condition": [s.condition for s in samples],
                "n_processed": [s.n_processed for s in samples],
                "n_pseudoaligned": [s.n_pseudoaligned for s in samples],
                "percent_mapped": [s.percent_mapped for s in samples],
            },
            index=pd.Index([s.sample_id for s in samples], name="sample_id"),
        )
        return qc_df

    def flag_outliers(self, qc_df: pd.DataFrame) -> pd.Series:
        """
        Give the exclusion reason for each sample ('' when retained).

        Parameters
        ----------
        qc_df : pd.DataFrame
            Output of compute_mapping_qc

        Returns
        -------
        pd.Series
            Exclusion reason per sample; multiple reasons joined with '; '
        """
        pct = qc_df["percent_mapped"].astype(float)
        reasons: Dict[str, List[str]] = {s: [] for s in qc_df.index}

        for sample in pct[pct < self.min_percent_mapped].index:
            reasons[sample].append(
                f"percent mapped {pct[sample]:.1f} < {self.min_percent_mapped:g}"
            )

        # Relative threshold needs a spread to be meaningful
        if self.outlier_sd is not None and len(pct) >= 3:
            spread = pct.std()
            if spread > 0:
                floor = pct.median() - self.outlier_sd * spread
                for sample in pct[pct < floor].index:
                    reasons[sample].append(
                        f"percent mapped {pct[sample]:.1f} below cohort floor {floor:.1f}"
                    )

        for sample in self.exclude:
            if sample in reasons:
                reasons[sample].append("manually excluded")
            else:
                logger.warning(f"Manual exclusion '{sample}' does not match any sample")

        return pd.Series({s: "; ".join(r) for s, r in reasons.items()}, name="exclusion_reason")

    def apply(
        self, samples: List[Sample]
    ) -> Tuple[List[Sample], List[Sample], pd.DataFrame]:
        """
        Run QC and split the samples.

        Parameters
        ----------
        samples : List[Sample]
            Samples annotated with run info

        Returns
        -------
        Tuple[List[Sample], List[Sample], pd.DataFrame]
            (retained samples, excluded samples, QC summary table)
        """
        qc_df = self.compute_mapping_qc(samples)
        reasons = self.flag_outliers(qc_df)
        qc_df["excluded"] = reasons.loc[qc_df.index] != ""
        qc_df["exclusion_reason"] = reasons.loc[qc_df.index]

        retained, excluded = [], []
        for sample in samples:
            reason = reasons[sample.sample_id]
            if reason:
                excluded.append(replace(sample, excluded=True, exclusion_reason=reason))
                logger.warning(f"Excluding sample {sample.sample_id}: {reason}")
            else:
                retained.append(sample)

        remaining = pd.Series([s.condition for s in retained]).value_counts()
        for level in sorted(set(s.condition for s in samples)):
            if remaining.get(level, 0) < 2:
                raise ValueError(
                    f"QC left {remaining.get(level, 0)} sample(s) labelled '{level}'; "
                    f"at least 2 per response group are needed for differential expression. "
                    f"Suggestion: relax qc.min_percent_mapped or qc.outlier_sd."
                )

        logger.info(
            f"QC retained {len(retained)}/{len(samples)} samples "
            f"(median percent mapped {np.median(qc_df['percent_mapped']):.1f})"
        )
        return retained, excluded, qc_df
