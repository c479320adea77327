from __future__ import annotations

import html
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from src.models.results import FitResult

FOOTER_STATS = [
    ("N", "nobs"),
    ("R2", "r2"),
    ("Pseudo R2", "pseudo_r2"),
    ("Log-likelihood", "log_likelihood"),
    ("AIC", "aic"),
    ("rho", "rho"),
    ("lambda", "lambda"),
]


def significance_stars(p: float) -> str:
    if p is None or np.isnan(p):
        return ""
    if p < 0.01:
        return "***"
    if p < 0.05:
        return "**"
    if p < 0.1:
        return "*"
    return ""


def _fmt(value: float, digits: int) -> str:
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return ""
    return f"{value:.{digits}f}"


def coefficient_table(
    results: Sequence[FitResult],
    terms: Optional[Sequence[str]] = None,
    *,
    digits: int = 3,
) -> pd.DataFrame:
    """Side-by-side regression table: coef with stars over (std err), per model column."""

    if terms is None:
        terms = []
        for r in results:
            terms.extend(t for t in r.coefficients["term"] if t not in terms)
    columns = [r.name for r in results]
    if len(set(columns)) != len(columns):
        raise ValueError(f"Model names must be unique in a comparison table: {columns}")

    rows: List[dict] = []
    for term in terms:
        coef_row = {"term": term}
        se_row = {"term": ""}
        for r in results:
            hit = r.coefficients.loc[r.coefficients["term"] == term]
            if hit.empty:
                coef_row[r.name] = ""
                se_row[r.name] = ""
                continue
            c = hit.iloc[0]
            coef_row[r.name] = _fmt(c["coef"], digits) + significance_stars(c["p_value"])
            se = _fmt(c["std_err"], digits)
            se_row[r.name] = f"({se})" if se else ""
        rows.extend([coef_row, se_row])

    for label, key in FOOTER_STATS:
        row = {"term": label}
        for r in results:
            if key == "nobs":
                row[r.name] = str(r.nobs)
            else:
                row[r.name] = _fmt(r.stats.get(key, np.nan), digits)
        if any(row[c] for c in columns):
            rows.append(row)

    return pd.DataFrame(rows, columns=["term"] + columns)


def render_html(df: pd.DataFrame, title: str, note: str = "") -> str:
    body = df.to_html(index=False, na_rep="", border=0, classes="results", escape=True)
    note_html = f"<p class=\"note\">{html.escape(note)}</p>\n" if note else ""
    return (
        "<!DOCTYPE html>\n<html>\n<head>\n<meta charset=\"utf-8\">\n"
        f"<title>{html.escape(title)}</title>\n"
        "<style>table.results{border-collapse:collapse;font-family:sans-serif;font-size:13px}"
        "table.results th,table.results td{padding:2px 10px;text-align:right}"
        "table.results td:first-child{text-align:left}</style>\n"
        "</head>\n<body>\n"
        f"<h2>{html.escape(title)}</h2>\n{body}\n{note_html}</body>\n</html>\n"
    )


STARS_NOTE = "Standard errors in parentheses. *** p<0.01, ** p<0.05, * p<0.1."


def write_table(df: pd.DataFrame, stem: Path, title: str, note: str = "") -> List[Path]:
    """Write `<stem>.csv` and a rendered `<stem>.html`."""

    stem = Path(stem)
    stem.parent.mkdir(parents=True, exist_ok=True)
    csv_path = stem.with_suffix(".csv")
    html_path = stem.with_suffix(".html")
    df.to_csv(csv_path, index=False)
    html_path.write_text(render_html(df, title, note), encoding="utf-8")
    return [csv_path, html_path]
