from censusmonkey.analyses import ANALYSES, Analysis, AnalysisResult, get_analysis, list_analyses
from censusmonkey.client import CensusClient
from censusmonkey.config import (
    AnalysisConfig,
    CacheConfig,
    CensusConfig,
    CLIConfig,
    MonkeyConfig,
    NetworkConfig,
    ReportConfig,
    find_config_file,
    load_config,
)
from censusmonkey.loaders import CensusAPIError
from censusmonkey.report import render_html, render_markdown, write_report
from censusmonkey.stats import InsufficientDataError, TestResult

__all__ = [
    "ANALYSES",
    "Analysis",
    "AnalysisConfig",
    "AnalysisResult",
    "CacheConfig",
    "CensusAPIError",
    "CensusClient",
    "CensusConfig",
    "CLIConfig",
    "InsufficientDataError",
    "MonkeyConfig",
    "NetworkConfig",
    "ReportConfig",
    "TestResult",
    "find_config_file",
    "get_analysis",
    "list_analyses",
    "load_config",
    "render_html",
    "render_markdown",
    "write_report",
]
