"""
Results processing for SimReg.

``StatisticsAggregator`` turns per-replication coefficient records into the
per-term summary (power, Type-I error, precision). ``ReplicationResult``
bundles the summary with the raw records, the failure table and the run
metadata.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from ..errors import ConfigurationError
from ..stats.distributions import critical_value, critical_values_by_df
from .specs import STATISTICS, PowerTestSpec

BASE_COLUMNS = ["term", "true_value", "n_requested", "n_successful", "n_failed"]
PRECISION_COLUMNS = ["mean_estimate", "bias", "avg_se", "median_se", "empirical_se", "ci_width"]


class StatisticsAggregator:
    """Computes per-term statistics for one sweep combination.

    Args:
        power: Hypothesis-test descriptor.
        statistics: Requested statistics: any of ``"power"``,
            ``"type_1_error"`` and ``"precision"``.
        type_1_error_terms: Terms for which Type-I error is reported. ``None``
            reports it for every term with a zero generating weight.

    Raises:
        ConfigurationError: For an empty or unknown statistics selection.
    """

    def __init__(
        self,
        power: Optional[PowerTestSpec] = None,
        statistics: Sequence[str] = STATISTICS,
        type_1_error_terms: Optional[Sequence[str]] = None,
    ):
        statistics = (statistics,) if isinstance(statistics, str) else tuple(statistics)
        if not statistics:
            raise ConfigurationError(f"At least one statistic must be requested: {', '.join(STATISTICS)}")
        unknown = [s for s in statistics if s not in STATISTICS]
        if unknown:
            raise ConfigurationError(f"Unknown statistics {unknown}. Valid: {', '.join(STATISTICS)}")
        self.power = power or PowerTestSpec()
        self.statistics = statistics
        self.type_1_error_terms = None if type_1_error_terms is None else tuple(type_1_error_terms)

    @property
    def columns(self) -> List[str]:
        cols = list(BASE_COLUMNS)
        if "power" in self.statistics:
            cols.append("power")
        if "type_1_error" in self.statistics:
            cols.append("type_1_error")
        if "precision" in self.statistics:
            cols.extend(PRECISION_COLUMNS)
        return cols

    def critical_values(self, df_resid: np.ndarray, alternative: Optional[str] = None) -> np.ndarray:
        """Critical value per record (residual-df t quantiles when requested).

        *alternative* overrides the test's own alternative; confidence
        intervals always use the two-sided quantile.
        """
        power = self.power
        alternative = alternative or power.alternative
        if power.uses_residual_df:
            return critical_values_by_df(power.alpha, df_resid, alternative)
        crit = critical_value(power.distribution, power.alpha, power.params, alternative)
        return np.full(np.shape(df_resid), crit)

    def rejections(self, statistic: np.ndarray, df_resid: np.ndarray) -> np.ndarray:
        """Boolean rejection decision per record."""
        statistic = np.asarray(statistic, dtype=float)
        crit = self.critical_values(np.asarray(df_resid, dtype=float))
        if self.power.alternative == "greater":
            return statistic > crit
        if self.power.alternative == "less":
            return statistic < -crit
        return np.abs(statistic) > crit

    def summarize(
        self,
        records: pd.DataFrame,
        n_requested: int,
        n_failed: int = 0,
        expected_terms: Optional[Mapping[str, float]] = None,
    ) -> pd.DataFrame:
        """Per-term summary of one combination's successful replications.

        Args:
            records: Coefficient records with ``term``, ``estimate``,
                ``std_error``, ``statistic``, ``df_resid`` and ``true_value``.
            n_requested: Replications requested for the combination.
            n_failed: Replications recorded as failures.
            expected_terms: Term to true value. When no replication
                succeeded, these terms get a row with ``n_successful=0`` and
                NaN statistics.

        Raises:
            ConfigurationError: If Type-I error is requested explicitly for a
                term whose true value is nonzero.
        """
        if records.empty:
            rows = [
                {"term": term, "true_value": truth, "n_requested": n_requested, "n_successful": 0, "n_failed": n_failed}
                for term, truth in (expected_terms or {}).items()
            ]
            return self._typed(pd.DataFrame(rows, columns=self.columns))

        if self.type_1_error_terms is not None and "type_1_error" in self.statistics:
            truths = records.groupby("term", sort=False)["true_value"].first()
            nonzero = [t for t in self.type_1_error_terms if truths.get(t, 0.0) != 0]
            if nonzero:
                raise ConfigurationError(f"Type-I error requested for terms with nonzero true values: {', '.join(nonzero)}")

        rows = []
        for term, group in records.groupby("term", sort=False):
            true_value = float(group["true_value"].iloc[0])
            estimate = group["estimate"].to_numpy(dtype=float)
            se = group["std_error"].to_numpy(dtype=float)
            df_resid = group["df_resid"].to_numpy(dtype=float)
            reject = self.rejections(group["statistic"].to_numpy(dtype=float), df_resid)

            row: Dict[str, Any] = {
                "term": term,
                "true_value": true_value,
                "n_requested": n_requested,
                "n_successful": len(group),
                "n_failed": n_failed,
            }
            if "power" in self.statistics:
                row["power"] = float(reject.mean())
            if "type_1_error" in self.statistics:
                wanted = term in self.type_1_error_terms if self.type_1_error_terms is not None else true_value == 0
                row["type_1_error"] = float(reject.mean()) if wanted else np.nan
            if "precision" in self.statistics:
                mean_estimate = float(estimate.mean())
                row.update(
                    {
                        "mean_estimate": mean_estimate,
                        "bias": mean_estimate - true_value,
                        "avg_se": float(se.mean()),
                        "median_se": float(np.median(se)),
                        "empirical_se": float(estimate.std(ddof=1)) if len(estimate) > 1 else np.nan,
                        "ci_width": float(np.mean(2 * self.critical_values(df_resid, "two-sided") * se)),
                    }
                )
            rows.append(row)
        return self._typed(pd.DataFrame(rows, columns=self.columns))

    def _typed(self, summary: pd.DataFrame) -> pd.DataFrame:
        dtypes = {c: float for c in summary.columns if c not in ("term", "n_requested", "n_successful", "n_failed")}
        dtypes.update({"term": object, "n_requested": "int64", "n_successful": "int64", "n_failed": "int64"})
        return summary.astype(dtypes)


@dataclass
class ReplicationResult:
    """Outcome of a replication run.

    Attributes:
        spec: The ``ReplicationSpec`` that was run.
        summary: One row per combination and term.
        records: One row per successful replication and term.
        failures: One row per failed replication.
        seed: Run seed actually used (drawn from entropy when the spec had
            none).
        cancelled: ``True`` when the run was cancelled before completion.
    """

    spec: Any
    summary: pd.DataFrame
    records: pd.DataFrame
    failures: pd.DataFrame
    seed: int
    cancelled: bool = False

    _TABLES = ("summary", "records", "failures")

    @property
    def sweep_columns(self) -> List[str]:
        return list(self.spec.vary_arguments)

    @property
    def n_failed(self) -> int:
        return len(self.failures)

    def failure_summary(self) -> pd.DataFrame:
        """Per-combination counts of requested, successful and failed replications."""
        rows = []
        for index, (key, spec) in enumerate(self.spec.combinations()):
            failed = self.failures[self.failures["combination"] == index]
            n_successful = self.records.loc[self.records["combination"] == index, "replication"].nunique()
            rows.append(
                {
                    **{col: _sweep_label(key[col]) for col in self.sweep_columns},
                    "combination": index,
                    "n_requested": spec.replications,
                    "n_successful": int(n_successful),
                    "n_failed": len(failed),
                    "n_timeouts": int((failed["kind"] == "timeout").sum()),
                    "failure_rate": len(failed) / spec.replications,
                }
            )
        return pd.DataFrame(rows)

    def table(self, name: str = "summary") -> pd.DataFrame:
        if name not in self._TABLES:
            raise ValueError(f"table must be one of {self._TABLES}, got '{name}'")
        return getattr(self, name)

    def to_csv(self, path, table: str = "summary", **kwargs):
        """Write one of the result tables to *path* as CSV."""
        kwargs.setdefault("index", False)
        self.table(table).to_csv(path, **kwargs)

    def to_records(self, table: str = "summary") -> List[Dict[str, Any]]:
        """Return one of the result tables as a list of plain dicts."""
        return self.table(table).to_dict(orient="records")

    def __repr__(self):
        state = ", cancelled" if self.cancelled else ""
        return (
            f"ReplicationResult({len(self.spec.combinations())} combinations, "
            f"{self.records['replication'].nunique() if not self.records.empty else 0} replications with estimates, "
            f"{self.n_failed} failed{state})"
        )


def _sweep_label(value: Any) -> Any:
    """Scalar sweep values as-is, structured ones as compact JSON."""
    if value is None or isinstance(value, (bool, int, float, str, np.generic)):
        return value
    if hasattr(value, "to_dict"):
        value = value.to_dict()
    return json.dumps(value, default=str, sort_keys=True)
