"""Tests for CLI output formatting, progress tracking and commands."""

import json
import sys
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import AsyncMock, MagicMock, patch

import numpy as np
import pandas as pd
import pytest

from censusmonkey.__main__ import ConfigCommands, MonkeyCLI
from censusmonkey.analyses import AnalysisResult
from censusmonkey.analyses.toponymic_travel import ToponymicTravelTest
from censusmonkey.loaders import CensusAPIError
from cmt.cli import OutputFormatter, ProgressTracker, format_output, print_output


class TestOutputFormatter:
    """Tests for the OutputFormatter class."""

    def test_init_valid_formats(self):
        """Test initialization with valid formats."""
        for fmt in ["auto", "json", "jsonl", "csv", "tsv", "table"]:
            formatter = OutputFormatter(format=fmt)
            assert formatter.format == fmt

    def test_init_invalid_format(self):
        """Test initialization with invalid format raises ValueError."""
        with pytest.raises(ValueError, match="Invalid format"):
            OutputFormatter(format="invalid")

    def test_format_case_insensitive(self):
        """Test that format is case-insensitive."""
        assert OutputFormatter(format="JSON").format == "json"

    def test_format_json_compact(self):
        """Test compact JSON formatting."""
        formatter = OutputFormatter(format="json", compact=True)
        assert formatter.format_output({"a": 1, "b": 2}) == '{"a":1,"b":2}'

    def test_format_json_dataframe(self):
        """Test DataFrames become records with NaN as null."""
        formatter = OutputFormatter(format="json")
        df = pd.DataFrame({"GEOID": ["48201", "48113"], "value": [1.5, np.nan]})

        records = json.loads(formatter.format_output(df))

        assert records == [
            {"GEOID": "48201", "value": 1.5},
            {"GEOID": "48113", "value": None},
        ]

    def test_format_json_numpy_scalars(self):
        """Test numpy scalars serialize as plain numbers."""
        formatter = OutputFormatter(format="json")
        data = {"n": np.int64(3), "r": np.float64(0.25), "flag": np.bool_(True)}

        assert json.loads(formatter.format_output(data)) == {"n": 3, "r": 0.25, "flag": True}

    def test_format_jsonl(self):
        """Test JSONL formatting."""
        formatter = OutputFormatter(format="jsonl")
        lines = formatter.format_output([{"a": 1}, {"b": 2}]).split("\n")

        assert len(lines) == 2
        assert json.loads(lines[0]) == {"a": 1}
        assert json.loads(lines[1]) == {"b": 2}

    def test_format_jsonl_single_item(self):
        """Test JSONL with single item (should wrap in list)."""
        formatter = OutputFormatter(format="jsonl")
        assert formatter.format_output({"test": "value"}) == '{"test": "value"}'

    def test_format_csv(self):
        """Test CSV formatting."""
        formatter = OutputFormatter(format="csv")
        data = [{"name": "Harris", "pop": 4731145}, {"name": "Dallas", "pop": 2613539}]
        output = formatter.format_output(data)

        assert "name,pop" in output
        assert "Harris,4731145" in output

    def test_format_csv_with_special_chars(self):
        """Test CSV formatting with special characters."""
        formatter = OutputFormatter(format="csv")
        output = formatter.format_output([{"name": "Harris County, Texas"}])

        assert '"Harris County, Texas"' in output

    def test_format_tsv_dataframe(self):
        """Test TSV formatting of a DataFrame."""
        formatter = OutputFormatter(format="tsv")
        df = pd.DataFrame({"GEOID": ["06075"], "value": [12]})
        output = formatter.format_output(df)

        assert "GEOID\tvalue" in output
        assert "06075\t12" in output

    def test_format_table(self):
        """Test table formatting."""
        formatter = OutputFormatter(format="table")
        output = formatter.format_output([{"col1": "a", "col2": 1}, {"col1": "b", "col2": 2}])

        assert "col1" in output
        assert "col2" in output

    def test_format_table_single_dict(self):
        """Test table formatting with single dict."""
        formatter = OutputFormatter(format="table")
        output = formatter.format_output({"key1": "value1"})

        assert "Key" in output
        assert "key1" in output
        assert "value1" in output

    def test_format_table_empty_data(self):
        """Test table formatting with empty data."""
        formatter = OutputFormatter(format="table")
        assert formatter.format_output([]) == ""

    def test_format_table_list_of_non_dicts(self):
        """Test table formatting with list of non-dict items."""
        formatter = OutputFormatter(format="table")
        assert formatter.format_output(["serious", "whimsical"]) == "serious\nwhimsical"

    def test_format_auto_non_tty(self, monkeypatch):
        """Test auto format defaults to JSON when not in TTY."""
        monkeypatch.setattr(sys.stdout, "isatty", lambda: False)
        output = OutputFormatter(format="auto").format_output([{"test": "value"}])

        assert json.loads(output) == [{"test": "value"}]

    def test_format_auto_tty_large_data(self, monkeypatch):
        """Test auto format uses JSON for large data even in TTY."""
        monkeypatch.setattr(sys.stdout, "isatty", lambda: True)
        output = OutputFormatter(format="auto").format_output([{"id": i} for i in range(150)])

        assert len(json.loads(output)) == 150


class TestProgressTracker:
    """Tests for the ProgressTracker class."""

    def test_messages_go_to_stderr(self, capsys):
        """Test every message type writes to stderr with its marker."""
        tracker = ProgressTracker(quiet=False)

        tracker.info("Test info")
        tracker.success("Test success")
        tracker.warning("Test warning")
        tracker.error("Test error")
        tracker.progress("Processing...")

        captured = capsys.readouterr()
        assert captured.out == ""
        assert "ℹ Test info" in captured.err
        assert "✓ Test success" in captured.err
        assert "⚠ Test warning" in captured.err
        assert "Error: Test error" in captured.err
        assert "Processing..." in captured.err

    def test_verbose(self, capsys):
        """Test verbose messages only appear when enabled."""
        tracker = ProgressTracker(quiet=False)

        tracker.verbose("Shown", is_verbose=True)
        tracker.verbose("Hidden", is_verbose=False)

        captured = capsys.readouterr()
        assert "Shown" in captured.err
        assert "Hidden" not in captured.err

    def test_quiet_mode_shows_only_errors(self, capsys):
        """Test quiet mode suppresses everything but errors."""
        tracker = ProgressTracker(show_progress=True, quiet=True)

        tracker.info("Should not appear")
        tracker.success("Should not appear")
        tracker.warning("Should not appear")
        tracker.progress("Should not appear")
        tracker.error("Error message")

        captured = capsys.readouterr()
        assert "Should not appear" not in captured.err
        assert "Error message" in captured.err

    def test_show_progress_false(self, capsys):
        """Test show_progress=False suppresses progress messages."""
        ProgressTracker(show_progress=False).progress("Should not appear")
        assert "Should not appear" not in capsys.readouterr().err

    def test_default_initialization(self):
        """Test default initialization values."""
        tracker = ProgressTracker()
        assert tracker.show_progress is True
        assert tracker.quiet is False


class TestConvenienceFunctions:
    """Tests for convenience functions."""

    def test_format_output_function(self):
        """Test format_output convenience function."""
        assert json.loads(format_output({"test": "value"}, format="json")) == {"test": "value"}

    def test_print_output_function(self, capsys):
        """Test print_output convenience function."""
        print_output({"test": "value"}, format="json")
        assert '"test"' in capsys.readouterr().out


class TestConfigCommands:
    """Tests for the config subcommands."""

    def test_show_command_masks_api_key(self, capsys, monkeypatch):
        """Test config show hides the API key."""
        monkeypatch.setenv("CENSUS_API_KEY", "secret-key")
        ConfigCommands().show()

        captured = capsys.readouterr()
        assert "Using defaults" in captured.out
        assert "secret-key" not in captured.out
        assert "***" in captured.out

    def test_path_command_no_file(self, capsys):
        """Test config path when no config file exists."""
        ConfigCommands().path()
        assert "No config file found" in capsys.readouterr().out

    def test_init_command(self, capsys):
        """Test config init creates a file."""
        with TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "censusmonkey.yml"
            ConfigCommands().init(path=str(config_path))

            assert config_path.exists()
            assert "Created config file" in capsys.readouterr().out

    def test_init_command_existing_file(self, capsys):
        """Test config init leaves an existing file alone."""
        with TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "censusmonkey.yml"
            config_path.write_text("cache:\n  ttl: 5\n")
            ConfigCommands().init(path=str(config_path))

            assert "already exists" in capsys.readouterr().out
            assert config_path.read_text() == "cache:\n  ttl: 5\n"

    def test_get_command(self, capsys):
        """Test config get command."""
        ConfigCommands().get("analysis.significance_level")
        assert "0.05" in capsys.readouterr().out

    def test_get_command_invalid_key(self, capsys):
        """Test config get command with invalid key."""
        ConfigCommands().get("invalid.key")
        assert "Unknown config key" in capsys.readouterr().out


@pytest.fixture
def cli(tmp_path):
    return MonkeyCLI(format="json", quiet=True, cache_dir=str(tmp_path / "cache"))


class TestMonkeyCLI:
    """Tests for the top-level commands."""

    def test_analyses_lists_all(self, cli, capsys):
        """Test every registered analysis is listed."""
        cli.analyses()
        data = json.loads(capsys.readouterr().out)

        assert len(data) == 15
        assert {"name", "title", "category"} <= set(data[0])

    def test_analyses_by_category(self, cli, capsys):
        """Test the category filter."""
        cli.analyses(category="serious")
        data = json.loads(capsys.readouterr().out)

        assert data
        assert all(row["category"] == "serious" for row in data)

    def test_analyses_unknown_category_exits(self, cli):
        """Test an unknown category exits with status 1."""
        with pytest.raises(SystemExit) as excinfo:
            cli.analyses(category="silly")
        assert excinfo.value.code == 1

    def test_search(self, cli, capsys):
        """Test search by keyword."""
        cli.search("migration")
        names = [row["name"] for row in json.loads(capsys.readouterr().out)]

        assert "migration-symmetry-breaking" in names

    def test_categories(self, cli, capsys):
        """Test the category list."""
        cli.categories()
        assert json.loads(capsys.readouterr().out) == ["exploratory", "serious", "whimsical"]

    def test_info(self, cli, capsys):
        """Test analysis metadata."""
        cli.info("goldilocks-zone")
        data = json.loads(capsys.readouterr().out)

        assert data["name"] == "goldilocks-zone"
        assert data["category"] == "whimsical"

    def test_info_unknown_exits(self, cli, capsys):
        """Test an unknown analysis name exits with status 1."""
        with pytest.raises(SystemExit):
            cli.info("not-an-analysis")
        assert "Unknown analysis" in capsys.readouterr().err

    def test_run_writes_report(self, cli, capsys, tmp_path):
        """Test run fetches, computes and writes a report."""
        result = AnalysisResult(
            name="goldilocks-zone",
            title="The Goldilocks Zone",
            summary={"counties": 3},
            findings=["Something average"],
        )
        analysis = MagicMock()
        analysis.run = AsyncMock(return_value=result)
        analysis.figures.return_value = {}

        with patch("censusmonkey.__main__.get_analysis", return_value=analysis) as mock_get:
            cli.run("goldilocks-zone", output_dir=str(tmp_path / "out"), report_format="markdown")

        mock_get.assert_called_once_with("goldilocks-zone", alpha=0.05, seed=42)
        report = tmp_path / "out" / "goldilocks-zone.md"
        assert report.exists()
        assert "Something average" in report.read_text()

        summary = json.loads(capsys.readouterr().out)
        assert summary["counties"] == 3
        assert summary["report"] == str(report)

    def test_run_bad_report_format_exits(self, cli, tmp_path):
        """Test an unknown report format exits with status 1."""
        with pytest.raises(SystemExit):
            cli.run("goldilocks-zone", output_dir=str(tmp_path), report_format="pdf")

    def test_run_all_reports_failures(self, cli, capsys, tmp_path):
        """Test run_all keeps going past failures and exits 1."""
        calls = []

        def fake_run_one(name, output_dir, report_format, no_figures, options):
            calls.append(name)
            if name == "great-dispersion":
                raise ValueError("boom")
            return {"name": name, "report": f"{name}.html"}

        with patch.object(cli, "_run_one", side_effect=fake_run_one):
            with pytest.raises(SystemExit):
                cli.run_all(category="serious", output_dir=str(tmp_path))

        rows = json.loads(capsys.readouterr().out)
        assert len(rows) == len(calls)
        assert {"name": "great-dispersion", "status": "failed", "report": None} in rows

    def test_run_all_skips_failed_fetch(self, cli, capsys, tmp_path):
        """Test an API error inside one analysis fetch fails only that analysis."""
        ok = MagicMock()
        ok.run = AsyncMock(return_value=AnalysisResult(name="ok", title="Ok"))
        ok.figures.return_value = {}

        def fake_get_analysis(name, **kwargs):
            if name == "toponymic-travel-test":
                return ToponymicTravelTest(states=["TX", "LA"], **kwargs)
            return ok

        with (
            patch("censusmonkey.__main__.get_analysis", side_effect=fake_get_analysis),
            patch("censusmonkey.client.fetch_json", new_callable=AsyncMock) as mock_fetch,
        ):
            mock_fetch.side_effect = CensusAPIError("Census API returned 500")
            with pytest.raises(SystemExit) as excinfo:
                cli.run_all(category="whimsical", output_dir=str(tmp_path))

        assert excinfo.value.code == 1
        rows = {row["name"]: row["status"] for row in json.loads(capsys.readouterr().out)}
        assert rows.pop("toponymic-travel-test") == "failed"
        assert set(rows.values()) == {"ok"}

    def test_acs(self, cli, capsys):
        """Test ad hoc ACS fetches pass their arguments through."""
        df = pd.DataFrame({"GEOID": ["48201"], "NAME": ["Harris County, Texas"], "B01003_001E": [4731145]})

        with patch.object(cli._client, "get_acs", new_callable=AsyncMock) as mock_acs:
            mock_acs.return_value = df
            cli.acs("county", "B01003_001", state="TX", county="201")

        mock_acs.assert_awaited_once_with(
            "county", ["B01003_001"], year=2022, survey="acs5", state="TX", county="201"
        )
        assert json.loads(capsys.readouterr().out)[0]["B01003_001E"] == 4731145

    def test_acs_api_error_exits(self, cli, capsys):
        """Test an API error for a state-scoped fetch exits with status 1."""
        with patch("censusmonkey.client.fetch_json", new_callable=AsyncMock) as mock_fetch:
            mock_fetch.side_effect = CensusAPIError("error: unknown variable 'B99999_001E'")
            with pytest.raises(SystemExit) as excinfo:
                cli.acs("county", "B99999_001", state="TX")

        assert excinfo.value.code == 1
        assert "unknown variable" in capsys.readouterr().err

    def test_acs_unknown_state_exits(self, cli, capsys):
        """Test an unrecognized state exits with status 1."""
        with pytest.raises(SystemExit) as excinfo:
            cli.acs("county", "B01003_001", state="ZZ")

        assert excinfo.value.code == 1
        assert "not a recognized state" in capsys.readouterr().err

    def test_acs_requires_variables(self, cli):
        """Test acs without variables exits with status 1."""
        with pytest.raises(SystemExit):
            cli.acs("county")

    def test_variables_search(self, cli, capsys):
        """Test the variable list filter."""
        variables = pd.DataFrame(
            {
                "name": ["B01003_001E", "B19013_001E"],
                "label": ["Estimate!!Total", "Estimate!!Median household income"],
                "concept": ["TOTAL POPULATION", "MEDIAN HOUSEHOLD INCOME"],
            }
        )
        with patch.object(cli._client, "load_variables", new_callable=AsyncMock) as mock_vars:
            mock_vars.return_value = variables
            cli.variables(2022, search="household income")

        data = json.loads(capsys.readouterr().out)
        assert [row["name"] for row in data] == ["B19013_001E"]

    def test_cache_clear_when_disabled_exits(self, capsys):
        """Test cache commands fail cleanly without a cache."""
        cli = MonkeyCLI(format="json", quiet=True, cache=False)
        with pytest.raises(SystemExit):
            cli.cache_clear()
        assert "Cache is not enabled" in capsys.readouterr().err
