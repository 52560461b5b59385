"""CLI output formatting and progress messages for the cmt command."""

import json
import sys
from io import StringIO
from typing import Any

import numpy as np
import pandas as pd
from tabulate import tabulate

FORMATS = ("auto", "json", "jsonl", "csv", "tsv", "table")

# Largest row count that auto mode still prints as a table
AUTO_TABLE_ROWS = 100


def _json_default(value: Any) -> Any:
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return None if np.isnan(value) else float(value)
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, pd.Timestamp):
        return value.isoformat()
    return str(value)


def _records(data: Any) -> Any:
    """DataFrames become lists of row dicts with NaN as None."""
    if isinstance(data, pd.DataFrame):
        return data.astype(object).where(data.notna(), None).to_dict("records")
    if isinstance(data, pd.Series):
        return _records(data.to_frame())
    return data


def _to_frame(data: Any) -> pd.DataFrame:
    if isinstance(data, pd.DataFrame):
        return data
    if isinstance(data, dict):
        return pd.DataFrame([data])
    if isinstance(data, list) and data and not isinstance(data[0], dict):
        return pd.DataFrame({"value": data})
    return pd.DataFrame(data)


class OutputFormatter:
    """Format data for CLI output.

    Supports: json, jsonl, csv, tsv, table, and auto (a table for small
    results on a terminal, JSON otherwise).
    """

    def __init__(self, format: str = "auto", compact: bool = False):
        """Initialize the output formatter.

        Args:
            format: Output format. One of: auto, json, jsonl, csv, tsv, table
            compact: If True, emit single-line JSON
        """
        self.format: str = format.lower()
        self.compact: bool = compact

        if self.format not in FORMATS:
            raise ValueError(
                f"Invalid format '{self.format}'. Must be one of: " + ", ".join(FORMATS)
            )

    def format_output(self, data: Any) -> str:
        """Route to the formatter for the configured format.

        Args:
            data: dict, list, DataFrame or scalar

        Returns:
            Formatted string ready for stdout
        """
        formatters = {
            "json": self._format_json,
            "jsonl": self._format_jsonl,
            "csv": self._format_csv,
            "tsv": self._format_tsv,
            "table": self._format_table,
            "auto": self._format_auto,
        }
        return formatters[self.format](data)

    def _format_json(self, data: Any) -> str:
        data = _records(data)
        if self.compact:
            return json.dumps(data, default=_json_default, separators=(",", ":"))
        return json.dumps(data, indent=2, default=_json_default)

    def _format_jsonl(self, data: Any) -> str:
        data = _records(data)
        if not isinstance(data, list):
            data = [data]
        return "\n".join(json.dumps(item, default=_json_default) for item in data)

    def _format_delimited(self, data: Any, sep: str) -> str:
        output = StringIO()
        _to_frame(data).to_csv(output, sep=sep, index=False)
        return output.getvalue()

    def _format_csv(self, data: Any) -> str:
        return self._format_delimited(data, ",")

    def _format_tsv(self, data: Any) -> str:
        return self._format_delimited(data, "\t")

    def _format_table(self, data: Any) -> str:
        """Pretty table via tabulate; dicts print as key/value rows."""
        if isinstance(data, pd.DataFrame):
            return tabulate(data, headers="keys", tablefmt="simple", showindex=False)
        if isinstance(data, dict):
            rows = [[k, v] for k, v in data.items()]
            return tabulate(rows, headers=["Key", "Value"], tablefmt="simple")
        if isinstance(data, list) and data and isinstance(data[0], dict):
            return tabulate(data, headers="keys", tablefmt="simple")
        if isinstance(data, list):
            return "\n".join(str(item) for item in data)
        return str(data)

    def _format_auto(self, data: Any) -> str:
        is_small = False
        if isinstance(data, (list, pd.DataFrame)):
            is_small = len(data) <= AUTO_TABLE_ROWS
        elif isinstance(data, dict):
            is_small = len(data) <= 50

        if sys.stdout.isatty() and is_small:
            return self._format_table(data)
        return self._format_json(data)


class ProgressTracker:
    """Status messages for CLI operations.

    Messages go to stderr so stdout stays clean for data.
    """

    def __init__(self, show_progress: bool = True, quiet: bool = False):
        """Initialize the progress tracker.

        Args:
            show_progress: If True, show progress messages
            quiet: If True, suppress all non-error output
        """
        self.show_progress: bool = show_progress
        self.quiet: bool = quiet

    def info(self, message: str) -> None:
        if not self.quiet:
            print(f"ℹ {message}", file=sys.stderr)

    def error(self, message: str) -> None:
        """Print an error message; shown even in quiet mode."""
        print(f"✗ Error: {message}", file=sys.stderr)

    def success(self, message: str) -> None:
        if not self.quiet:
            print(f"✓ {message}", file=sys.stderr)

    def warning(self, message: str) -> None:
        if not self.quiet:
            print(f"⚠ {message}", file=sys.stderr)

    def verbose(self, message: str, is_verbose: bool = False) -> None:
        if is_verbose and not self.quiet:
            print(f"  {message}", file=sys.stderr)

    def progress(self, message: str) -> None:
        if self.show_progress and not self.quiet:
            print(f"⋯ {message}", file=sys.stderr)


def format_output(data: Any, format: str = "auto", compact: bool = False) -> str:
    """Format data without creating a formatter instance."""
    return OutputFormatter(format=format, compact=compact).format_output(data)


def print_output(data: Any, format: str = "auto", compact: bool = False) -> None:
    print(format_output(data, format=format, compact=compact))
