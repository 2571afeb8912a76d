"""
Plain-text formatting of replication results.
Internal utilities - not part of public API.
"""

from typing import Any, List, Optional

import numpy as np
import pandas as pd

__all__ = []


class _TableFormatter:
    """Fixed-width text tables."""

    def _format_value(self, value: Any, spec: Optional[str] = None) -> str:
        if isinstance(value, (float, np.floating)):
            if np.isnan(value):
                return "-"
            if spec is not None:
                return format(value, spec)
            return f"{value:.6f}" if 0 < abs(value) < 0.001 else f"{value:.4f}"
        return str(value)

    def _create_table(self, headers: List[str], rows: List[List[str]], col_widths: Optional[List[int]] = None) -> str:
        if col_widths is None:
            col_widths = [max(len(str(h)), *(len(str(r[i])) for r in rows)) if rows else len(str(h)) for i, h in enumerate(headers)]
        lines = [" ".join(str(h).ljust(w) for h, w in zip(headers, col_widths))]
        lines.append(" ".join("-" * w for w in col_widths))
        for row in rows:
            lines.append(" ".join(str(c).ljust(w) for c, w in zip(row, col_widths)))
        return "\n".join(lines)


class _ResultFormatter(_TableFormatter):
    """Formats a ``ReplicationResult`` summary, one block per sweep combination."""

    def _combination_header(self, summary: pd.DataFrame, sweep_cols: List[str]) -> str:
        if not sweep_cols:
            return ""
        first = summary.iloc[0]
        return ", ".join(f"{c}={first[c]}" for c in sweep_cols)

    def _format_block(self, block: pd.DataFrame, sweep_cols: List[str], long: bool) -> str:
        headers = ["Term", "True", "Power (%)", "Type I (%)"]
        if long:
            headers += ["Mean est.", "Bias", "Avg SE", "Emp. SE", "CI width"]
        rows = []
        for _, r in block.iterrows():
            row = [
                r["term"],
                self._format_value(r["true_value"], ".3g"),
                self._format_value(r.get("power", np.nan) * 100, ".1f"),
                self._format_value(r.get("type_1_error", np.nan) * 100, ".1f"),
            ]
            if long:
                row += [self._format_value(r.get(c, np.nan)) for c in ("mean_estimate", "bias", "avg_se", "empirical_se", "ci_width")]
            rows.append(row)

        first = block.iloc[0]
        header = self._combination_header(block, sweep_cols)
        counts = f"{int(first['n_successful'])}/{int(first['n_requested'])} replications ({int(first['n_failed'])} failed)"
        title = f"{header}: {counts}" if header else counts
        return f"{title}\n{self._create_table(headers, rows)}"

    def format(self, result, summary: str = "short") -> str:
        table = result.summary
        if table.empty:
            return "No successful replications."
        sweep_cols = result.sweep_columns
        blocks = [self._format_block(block, sweep_cols, summary == "long") for _, block in table.groupby("combination", sort=True)]
        out = "\n\n".join(blocks)
        if result.cancelled:
            out += "\n\nRun cancelled: results are partial."
        if summary == "long" and not result.failures.empty:
            reasons = result.failures["reason"].value_counts()
            out += "\n\nFailure reasons:\n" + "\n".join(f"  {n:>5}  {reason}" for reason, n in reasons.items())
        return out


def _format_results(result, summary: str = "short") -> str:
    """Format *result* as text (``"short"`` or ``"long"``)."""
    if summary not in ("short", "long"):
        raise ValueError(f"summary must be 'short' or 'long', got '{summary}'")
    return _ResultFormatter().format(result, summary)
