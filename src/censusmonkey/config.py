"""Configuration management for censusmonkey.

Supports loading configuration from YAML files with priority:
1. ./censusmonkey.yml (project-level)
2. ~/.config/censusmonkey/config.yml (user-level)
3. Default values
"""

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field


class CacheConfig(BaseModel):
    """Cache configuration settings."""

    enabled: bool = True
    directory: str = "~/.cache/censusmonkey"
    ttl: int = 86400
    max_size_mb: float | None = None


class CensusConfig(BaseModel):
    """Census Data API settings."""

    api_key: str | None = Field(
        default_factory=lambda: os.environ.get("CENSUS_API_KEY") or None
    )
    base_url: str = "https://api.census.gov/data"
    boundaries_url: str = "https://www2.census.gov/geo/tiger"
    # The API rejects more than 50 fields per call, NAME and geography included
    max_variables_per_request: int = 48


class NetworkConfig(BaseModel):
    """Network request configuration."""

    timeout: int = 120
    retries: int = 3
    backoff: float = 1.0
    max_concurrency: int = 8
    user_agent: str = "censusmonkey/1.0"


class AnalysisConfig(BaseModel):
    """Defaults shared by every analysis."""

    significance_level: float = 0.05
    random_seed: int = 42
    show_progress: bool = True


class ReportConfig(BaseModel):
    """Report rendering configuration."""

    output_dir: str = "reports"
    format: str = "html"
    figure_dpi: int = 110
    max_table_rows: int = 20


class CLIConfig(BaseModel):
    """CLI-specific configuration."""

    output_format: str = "auto"
    quiet: bool = False
    verbose: bool = False


class MonkeyConfig(BaseModel):
    """Main configuration for censusmonkey."""

    cache: CacheConfig = Field(default_factory=CacheConfig)
    census: CensusConfig = Field(default_factory=CensusConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    report: ReportConfig = Field(default_factory=ReportConfig)
    cli: CLIConfig = Field(default_factory=CLIConfig)

    @classmethod
    def load_from_file(cls, path: Path) -> "MonkeyConfig":
        """Load configuration from a YAML file.

        Args:
            path: Path to the configuration file

        Returns:
            MonkeyConfig instance with loaded settings

        Raises:
            FileNotFoundError: If the file doesn't exist
            yaml.YAMLError: If the file is not valid YAML
        """
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)

        if data is None:
            return cls()

        return cls(**data)

    def save_to_file(self, path: Path) -> None:
        """Save configuration to a YAML file.

        The API key is never written out; it belongs in CENSUS_API_KEY.

        Args:
            path: Path where the configuration should be saved
        """
        path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump()
        data["census"]["api_key"] = None
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def find_config_file() -> Path | None:
    """Find configuration file in priority order.

    Search order:
    1. ./censusmonkey.yml (project-level)
    2. ~/.config/censusmonkey/config.yml (user-level)

    Returns:
        Path to the configuration file, or None if not found
    """
    project_config = Path.cwd() / "censusmonkey.yml"
    if project_config.exists():
        return project_config

    user_config = Path.home() / ".config" / "censusmonkey" / "config.yml"
    if user_config.exists():
        return user_config

    return None


def load_config(config_file: str | Path | None = None) -> MonkeyConfig:
    """Load configuration from file or use defaults.

    Args:
        config_file: Optional path to configuration file.
                    If None, will search in default locations.

    Returns:
        MonkeyConfig instance with loaded or default settings

    Raises:
        FileNotFoundError: If config_file is specified but doesn't exist
        yaml.YAMLError: If the configuration file is not valid YAML
    """
    if config_file is not None:
        path = Path(config_file).expanduser()
        return MonkeyConfig.load_from_file(path)

    config_path = find_config_file()
    if config_path is not None:
        return MonkeyConfig.load_from_file(config_path)

    return MonkeyConfig()
