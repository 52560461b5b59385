"""Command-line interface for Census Monkey Typewriter."""

import asyncio
import logging
import sys
from pathlib import Path

import httpx
import matplotlib
import yaml
from fire import Fire

from censusmonkey.analyses import ANALYSES, get_analysis, list_analyses
from censusmonkey.client import CensusClient
from censusmonkey.loaders import CensusAPIError
from censusmonkey.report import REPORT_FORMATS, write_report
from censusmonkey.search import build_search_index, list_categories, search
from cmt.cli import OutputFormatter, ProgressTracker

CLI_ERRORS = (ValueError, CensusAPIError, httpx.HTTPError)


class ConfigCommands:
    """Configuration management commands."""

    def __init__(self, config_file: str | None = None):
        self._config_file = config_file

    def show(self) -> None:
        """Show current configuration.

        Examples:
            cmt config show
        """
        from censusmonkey.config import find_config_file, load_config

        config = load_config(self._config_file)
        config_path = self._config_file or find_config_file()

        print(f"# Config file: {config_path or 'Using defaults (no config file found)'}")
        data = config.model_dump()
        if data["census"]["api_key"]:
            data["census"]["api_key"] = "***"
        print(yaml.dump(data, default_flow_style=False))

    def path(self) -> None:
        """Show config file path.

        Examples:
            cmt config path
        """
        from censusmonkey.config import find_config_file

        path = find_config_file()
        if path:
            print(path)
        else:
            print("No config file found. Searched:")
            print("  - ./censusmonkey.yml")
            print("  - ~/.config/censusmonkey/config.yml")

    def init(self, path: str = "./censusmonkey.yml") -> None:
        """Create a new config file with defaults.

        Args:
            path: Path where config file should be created (default: ./censusmonkey.yml)

        Examples:
            cmt config init
            cmt config init --path ~/.config/censusmonkey/config.yml
        """
        from censusmonkey.config import MonkeyConfig

        config_path = Path(path).expanduser()
        if config_path.exists():
            print(f"Config file already exists: {config_path}")
            return

        MonkeyConfig().save_to_file(config_path)
        print(f"Created config file: {config_path}")

    def get(self, key: str) -> None:
        """Get a config value (e.g., cache.ttl, report.format).

        Args:
            key: Dot-separated path to config value

        Examples:
            cmt config get cache.ttl
            cmt config get analysis.significance_level
        """
        from censusmonkey.config import load_config

        value = load_config(self._config_file)
        for part in key.split("."):
            if hasattr(value, part):
                value = getattr(value, part)
            else:
                print(f"Unknown config key: {key}")
                return

        print(value)


class MonkeyCLI:
    """Command-line interface for Census Monkey Typewriter.

    Runs the analysis corpus against the Census Data API and writes reports.

    Examples:
        cmt analyses
        cmt search "migration" --fuzzy
        cmt run goldilocks-zone --report_format markdown
        cmt acs county B01003_001 --state TX
    """

    def __init__(
        self,
        format: str = "auto",
        quiet: bool = False,
        verbose: bool = False,
        cache: bool = True,
        cache_dir: str | None = None,
        cache_ttl: int | None = None,
        config_file: str | None = None,
    ):
        """Initialize the CLI wrapper.

        Args:
            format: Output format (auto, json, jsonl, csv, tsv, table)
            quiet: Suppress all non-error output
            verbose: Show debug logging and verbose progress messages
            cache: Enable caching
            cache_dir: Cache directory path
            cache_ttl: Cache TTL in seconds
            config_file: Path to config file
        """
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.WARNING,
            format="%(asctime)s %(name)s %(levelname)s: %(message)s",
        )
        self._client = CensusClient(
            cache=cache,
            cache_dir=cache_dir,
            cache_ttl=cache_ttl,
            config_file=config_file,
        )
        self._formatter = OutputFormatter(format=format)
        self._progress = ProgressTracker(show_progress=not quiet, quiet=quiet)
        self._verbose = verbose
        self._index = build_search_index(list(ANALYSES.values()))
        self.config = ConfigCommands(config_file)

    def _fail(self, error: Exception) -> None:
        self._progress.error(str(error))
        sys.exit(1)

    def analyses(self, category: str | None = None) -> None:
        """List available analyses.

        Args:
            category: Only list one category (serious, whimsical, exploratory)

        Examples:
            cmt analyses
            cmt analyses --category serious
        """
        try:
            data = [
                {"name": cls.name, "title": cls.title, "category": cls.category}
                for cls in list_analyses(category)
            ]
        except ValueError as e:
            self._fail(e)
        self._progress.success(f"Found {len(data)} analyses")
        print(self._formatter.format_output(data))

    def search(
        self,
        query: str,
        category: str | None = None,
        fuzzy: bool = False,
        limit: int | None = None,
    ) -> None:
        """Search analyses by title, keyword or description.

        Args:
            query: Search query string
            category: Filter by category
            fuzzy: Use fuzzy title matching
            limit: Maximum number of results

        Examples:
            cmt search "migration"
            cmt search "goldilocks" --fuzzy
        """
        self._progress.progress(f"Searching for '{query}'...")
        names = search(self._index, query, category=category, fuzzy=fuzzy, limit=limit)
        data = [{"name": n, "title": ANALYSES[n].title, "category": ANALYSES[n].category} for n in names]
        self._progress.success(f"Found {len(data)} results")
        print(self._formatter.format_output(data))

    def categories(self) -> None:
        """List analysis categories.

        Examples:
            cmt categories
        """
        data = list_categories(self._index)
        self._progress.success(f"Found {len(data)} categories")
        print(self._formatter.format_output(data))

    def info(self, name: str) -> None:
        """Show metadata for an analysis.

        Args:
            name: Analysis slug, e.g. "heat-refuge-highways"

        Examples:
            cmt info loneliness-gradient
        """
        try:
            data = get_analysis(name).describe()
        except ValueError as e:
            self._fail(e)
        print(self._formatter.format_output(data))

    def _run_one(
        self,
        name: str,
        output_dir: str | None,
        report_format: str | None,
        no_figures: bool,
        options: dict,
    ) -> dict:
        settings = self._client.config
        analysis = get_analysis(
            name,
            alpha=settings.analysis.significance_level,
            seed=settings.analysis.random_seed,
            **options,
        )
        report_format = report_format or settings.report.format
        if report_format not in REPORT_FORMATS:
            raise ValueError(
                f"Unknown report format '{report_format}'. Use: {', '.join(REPORT_FORMATS)}"
            )

        self._progress.progress(f"Running '{name}'...")
        result = asyncio.run(analysis.run(self._client))
        figures = {} if no_figures else analysis.figures(result)
        path = write_report(
            result,
            output_dir or settings.report.output_dir,
            format=report_format,
            figures=figures,
            max_table_rows=settings.report.max_table_rows,
            figure_dpi=settings.report.figure_dpi,
        )
        self._progress.success(f"Report written to {path}")
        for finding in result.findings:
            self._progress.verbose(finding, self._verbose)
        return {"name": name, "report": str(path), **result.summary}

    def run(
        self,
        name: str,
        output_dir: str | None = None,
        report_format: str | None = None,
        no_figures: bool = False,
        **options,
    ) -> None:
        """Fetch data, compute an analysis and write its report.

        Extra flags are passed to the analysis (e.g. --states '["CA","TX"]').

        Args:
            name: Analysis slug
            output_dir: Report directory (default: report.output_dir)
            report_format: html or markdown (default: report.format)
            no_figures: Skip chart rendering

        Examples:
            cmt run goldilocks-zone
            cmt run commuting-dead --metros '["Houston"]' --report_format markdown
        """
        matplotlib.use("Agg")
        try:
            summary = self._run_one(name, output_dir, report_format, no_figures, options)
        except CLI_ERRORS as e:
            self._fail(e)
        print(self._formatter.format_output(summary))

    def run_all(
        self,
        category: str | None = None,
        output_dir: str | None = None,
        report_format: str | None = None,
        no_figures: bool = False,
    ) -> None:
        """Run every analysis (optionally one category) and write the reports.

        A failing analysis is reported and skipped; the exit status is 1 if
        any failed.

        Examples:
            cmt run_all
            cmt run_all --category whimsical
        """
        matplotlib.use("Agg")
        try:
            selected = list_analyses(category)
        except ValueError as e:
            self._fail(e)

        rows, failed = [], 0
        for cls in selected:
            try:
                summary = self._run_one(cls.name, output_dir, report_format, no_figures, {})
                rows.append({"name": cls.name, "status": "ok", "report": summary["report"]})
            except CLI_ERRORS as e:
                failed += 1
                self._progress.error(f"{cls.name}: {e}")
                rows.append({"name": cls.name, "status": "failed", "report": None})

        if failed:
            self._progress.warning(f"{failed} of {len(selected)} analyses failed")
        else:
            self._progress.success(f"Ran {len(selected)} analyses")
        print(self._formatter.format_output(rows))
        if failed:
            sys.exit(1)

    def acs(
        self,
        geography: str,
        *variables: str,
        state: str | None = None,
        county: str | None = None,
        year: int = 2022,
        survey: str = "acs5",
    ) -> None:
        """Fetch ACS variables ad hoc.

        Args:
            geography: Census geography, e.g. county, tract, state
            variables: Variable ids such as B01003_001
            state: State FIPS, abbreviation or name
            county: Three-digit county code within the state
            year: Survey end year
            survey: acs5, acs1 or acs3

        Examples:
            cmt acs county B01003_001 B19013_001 --state TX
            cmt acs tract B25044_003 --state CA --county 075 --format csv
        """
        if not variables:
            self._fail(ValueError("At least one variable id is required"))
        self._progress.progress(f"Fetching {len(variables)} variable(s) for {geography}...")
        try:
            data = asyncio.run(
                self._client.get_acs(
                    geography,
                    list(variables),
                    year=year,
                    survey=survey,
                    state=state,
                    county=county,
                )
            )
        except CLI_ERRORS as e:
            self._fail(e)
        self._progress.success(f"Fetched {len(data)} rows")
        print(self._formatter.format_output(data))

    def variables(self, year: int, dataset: str = "acs5", search: str | None = None) -> None:
        """List the variables of a dataset.

        Args:
            year: Data year
            dataset: acs5, acs1, acs5/subject, sf1, dhc, ...
            search: Case-insensitive filter on name, label or concept

        Examples:
            cmt variables 2022 --search "median household income"
        """
        self._progress.progress(f"Loading {dataset} {year} variables...")
        try:
            data = asyncio.run(self._client.load_variables(year, dataset))
        except CLI_ERRORS as e:
            self._fail(e)
        if search:
            text = data["name"] + " " + data["label"] + " " + data["concept"]
            data = data[text.str.contains(search, case=False, regex=False)]
        self._progress.success(f"Found {len(data)} variables")
        print(self._formatter.format_output(data))

    def cache_info(self, source: str | None = None) -> None:
        """Show cache statistics.

        Args:
            source: Optional source to filter by (e.g. "acs/acs5")

        Examples:
            cmt cache_info
        """
        try:
            data = self._client.cache_info(source)
        except RuntimeError as e:
            self._fail(e)
        print(self._formatter.format_output(data))

    def cache_clear(self, source: str | None = None) -> None:
        """Clear cache.

        Args:
            source: Optional source (clears everything if not provided)

        Examples:
            cmt cache_clear
            cmt cache_clear --source boundaries
        """
        self._progress.progress("Clearing cache...")
        try:
            removed = self._client.cache_clear(source)
        except RuntimeError as e:
            self._fail(e)
        self._progress.success(f"Cache cleared ({removed} entries)")


def main() -> None:
    """Entry point for the cmt command."""
    Fire(MonkeyCLI)


if __name__ == "__main__":
    main()
