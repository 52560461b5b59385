"""Render an AnalysisResult as a Markdown or HTML report."""

import base64
import html
import logging
import numbers
from io import BytesIO
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from matplotlib.figure import Figure
from tabulate import tabulate

from censusmonkey.analyses.base import AnalysisResult

logger = logging.getLogger(__name__)

REPORT_FORMATS = {"html": ".html", "markdown": ".md"}
P_VALUE_COLUMNS = {"p_value", "p_adjusted", "f_p_value"}
TEST_COLUMNS = ["test", "method", "statistic", "p_value", "estimate", "ci_low", "ci_high", "df", "n"]

HTML_STYLE = """
body { font-family: -apple-system, "Segoe UI", Helvetica, Arial, sans-serif;
       max-width: 960px; margin: 2em auto; padding: 0 1em; color: #222; }
h1 { border-bottom: 2px solid #333; padding-bottom: 0.2em; }
table { border-collapse: collapse; margin: 1em 0; font-size: 0.9em; }
th, td { border: 1px solid #ccc; padding: 4px 8px; text-align: right; }
th { background: #f2f2f2; }
td:first-child, th:first-child { text-align: left; }
.category { color: #666; font-style: italic; }
figure { margin: 1.5em 0; }
figure img { max-width: 100%; }
"""


def format_p_value(p: float | None) -> str:
    if p is None or not np.isfinite(p):
        return "NA"
    if p < 0.001:
        return "< 0.001"
    return f"{p:.3f}"


def format_value(value) -> str:
    """Thousands separators for large numbers, three significant digits for small ones."""
    if value is None:
        return "NA"
    if isinstance(value, (bool, np.bool_)):
        return str(bool(value))
    if isinstance(value, numbers.Integral):
        return f"{int(value):,}"
    if isinstance(value, numbers.Real):
        value = float(value)
        if not np.isfinite(value):
            return "NA"
        if value.is_integer():
            return f"{value:,.0f}"
        if abs(value) >= 1000:
            return f"{value:,.1f}"
        if abs(value) >= 1:
            return f"{value:.2f}"
        return f"{value:.3g}"
    if isinstance(value, (list, tuple)):
        return ", ".join(format_value(v) for v in value)
    if pd.isna(value):
        return "NA"
    return str(value)


def format_table(df: pd.DataFrame, max_rows: int | None = None) -> pd.DataFrame:
    """Stringify a table for display, truncating to ``max_rows``."""
    if max_rows is not None:
        df = df.head(max_rows)
    formatted = pd.DataFrame(index=df.index)
    for column in df.columns:
        formatter = format_p_value if column in P_VALUE_COLUMNS else format_value
        formatted[str(column)] = [formatter(v) for v in df[column]]
    return formatted.reset_index(drop=True)


def _tests_frame(result: AnalysisResult) -> pd.DataFrame:
    tests = result.tests_table()
    if tests.empty:
        return tests
    return tests[[c for c in TEST_COLUMNS if c in tests.columns]]


def _figure_png(figure: Figure, dpi: int) -> bytes:
    buffer = BytesIO()
    figure.savefig(buffer, format="png", dpi=dpi, bbox_inches="tight")
    plt.close(figure)
    return buffer.getvalue()


def _title_case(name: str) -> str:
    return name.replace("_", " ").capitalize()


def render_markdown(
    result: AnalysisResult,
    figures: dict[str, str] | None = None,
    max_table_rows: int = 20,
) -> str:
    """Markdown report; ``figures`` maps figure names to image paths."""

    def table(df: pd.DataFrame) -> str:
        return tabulate(format_table(df, max_table_rows), headers="keys", tablefmt="pipe", showindex=False)

    lines = [f"# {result.title}", ""]
    if result.category:
        lines += [f"*Category: {result.category}*", ""]
    if result.description:
        lines += [result.description, ""]

    if result.summary:
        lines += ["## Summary", ""]
        lines += [f"- **{_title_case(k)}**: {format_value(v)}" for k, v in result.summary.items()]
        lines.append("")

    if result.findings:
        lines += ["## Findings", ""]
        lines += [f"- {finding}" for finding in result.findings]
        lines.append("")

    tests = _tests_frame(result)
    if not tests.empty:
        lines += ["## Statistical tests", "", table(tests), ""]

    for name, coefficients in result.models.items():
        lines += [f"## Model: {name}", ""]
        fit = result.model_fits.get(name)
        if fit:
            lines += [
                f"n = {format_value(fit['n'])}, R² = {fit['r_squared']:.3f}, "
                f"adjusted R² = {fit['adj_r_squared']:.3f}",
                "",
            ]
        lines += [table(coefficients), ""]

    for name, frame in result.tables.items():
        lines += [f"## {_title_case(name)}", ""]
        if frame.empty:
            lines += ["*No rows.*", ""]
            continue
        lines.append(table(frame))
        if len(frame) > max_table_rows:
            lines.append(f"\n*Showing {max_table_rows} of {len(frame):,} rows.*")
        lines.append("")

    for name, path in (figures or {}).items():
        lines += [f"![{_title_case(name)}]({path})", ""]

    return "\n".join(lines).rstrip() + "\n"


def render_html(
    result: AnalysisResult,
    figures: dict[str, Figure] | None = None,
    max_table_rows: int = 20,
    figure_dpi: int = 110,
) -> str:
    """Self-contained HTML report with figures embedded as base64 PNG."""

    def table(df: pd.DataFrame) -> str:
        return tabulate(
            format_table(df, max_table_rows), headers="keys", tablefmt="html", showindex=False
        )

    esc = html.escape
    parts = [
        "<!DOCTYPE html>",
        '<html lang="en">',
        "<head>",
        '<meta charset="utf-8">',
        f"<title>{esc(result.title)}</title>",
        f"<style>{HTML_STYLE}</style>",
        "</head>",
        "<body>",
        f"<h1>{esc(result.title)}</h1>",
    ]
    if result.category:
        parts.append(f'<p class="category">Category: {esc(result.category)}</p>')
    if result.description:
        parts.append(f"<p>{esc(result.description)}</p>")

    if result.summary:
        parts.append("<h2>Summary</h2><ul>")
        parts += [
            f"<li><strong>{esc(_title_case(k))}</strong>: {esc(format_value(v))}</li>"
            for k, v in result.summary.items()
        ]
        parts.append("</ul>")

    if result.findings:
        parts.append("<h2>Findings</h2><ul>")
        parts += [f"<li>{esc(finding)}</li>" for finding in result.findings]
        parts.append("</ul>")

    tests = _tests_frame(result)
    if not tests.empty:
        parts += ["<h2>Statistical tests</h2>", table(tests)]

    for name, coefficients in result.models.items():
        parts.append(f"<h2>Model: {esc(name)}</h2>")
        fit = result.model_fits.get(name)
        if fit:
            parts.append(
                f"<p>n = {format_value(fit['n'])}, R² = {fit['r_squared']:.3f}, "
                f"adjusted R² = {fit['adj_r_squared']:.3f}</p>"
            )
        parts.append(table(coefficients))

    for name, frame in (figures or {}).items():
        encoded = base64.b64encode(_figure_png(frame, figure_dpi)).decode("ascii")
        parts.append(
            f'<figure><img alt="{esc(_title_case(name))}" src="data:image/png;base64,{encoded}">'
            f"<figcaption>{esc(_title_case(name))}</figcaption></figure>"
        )

    for name, frame in result.tables.items():
        parts.append(f"<h2>{esc(_title_case(name))}</h2>")
        if frame.empty:
            parts.append("<p><em>No rows.</em></p>")
            continue
        parts.append(table(frame))
        if len(frame) > max_table_rows:
            parts.append(f"<p><em>Showing {max_table_rows} of {len(frame):,} rows.</em></p>")

    parts += ["</body>", "</html>"]
    return "\n".join(parts) + "\n"


def write_report(
    result: AnalysisResult,
    output_dir: str | Path,
    format: str = "html",
    figures: dict[str, Figure] | None = None,
    max_table_rows: int = 20,
    figure_dpi: int = 110,
) -> Path:
    """Write ``<name>.html`` or ``<name>.md`` into ``output_dir``.

    Markdown figures are saved as ``<name>_<figure>.png`` beside the report.

    Returns:
        Path of the written report

    Raises:
        ValueError: If the format is not html or markdown
    """
    if format not in REPORT_FORMATS:
        raise ValueError(f"Unknown report format '{format}'. Use: {', '.join(REPORT_FORMATS)}")

    directory = Path(output_dir).expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{result.name}{REPORT_FORMATS[format]}"

    if format == "html":
        content = render_html(result, figures, max_table_rows=max_table_rows, figure_dpi=figure_dpi)
    else:
        links = {}
        for name, figure in (figures or {}).items():
            image = directory / f"{result.name}_{name}.png"
            image.write_bytes(_figure_png(figure, figure_dpi))
            links[name] = image.name
        content = render_markdown(result, links, max_table_rows=max_table_rows)

    path.write_text(content, encoding="utf-8")
    logger.info(f"Wrote {format} report to {path}")
    return path
