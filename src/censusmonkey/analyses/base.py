import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar

import pandas as pd
from matplotlib.figure import Figure

from censusmonkey.client import CensusClient
from censusmonkey.stats import TestResult, model_fit, ols, ols_summary, InsufficientDataError


@dataclass
class AnalysisResult:
    """Everything a report needs: headline numbers, tables, tests and prose."""

    name: str
    title: str
    category: str = ""
    description: str = ""
    summary: dict[str, Any] = field(default_factory=dict)
    tables: dict[str, pd.DataFrame] = field(default_factory=dict)
    tests: list[TestResult] = field(default_factory=list)
    models: dict[str, pd.DataFrame] = field(default_factory=dict)
    model_fits: dict[str, dict[str, float]] = field(default_factory=dict)
    findings: list[str] = field(default_factory=list)
    data: pd.DataFrame | None = None

    def add_test(self, result: TestResult | None) -> TestResult | None:
        if result is not None:
            self.tests.append(result)
        return result

    def get_test(self, name: str) -> TestResult | None:
        return next((t for t in self.tests if t.name == name), None)

    def tests_table(self) -> pd.DataFrame:
        return pd.DataFrame([t.to_dict() for t in self.tests])

    def fit_model(self, name: str, formula: str, data: pd.DataFrame, min_obs: int = 5):
        """Fit an OLS model and store its coefficients; None when data are short."""
        try:
            result = ols(formula, data, min_obs=min_obs)
        except InsufficientDataError as e:
            self.findings.append(f"Skipped model {name}: {e}")
            return None
        self.models[name] = ols_summary(result)
        self.model_fits[name] = model_fit(result)
        return result

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "title": self.title,
            "summary": self.summary,
            "findings": self.findings,
            "tests": [t.to_dict() for t in self.tests],
            "model_fits": self.model_fits,
        }


class Analysis:
    """Base class for a single report.

    Subclasses fetch their inputs in :meth:`fetch`, derive every indicator
    and test in :meth:`compute` (no I/O, so it can run on synthetic frames)
    and draw charts in :meth:`figures`.
    """

    name: ClassVar[str]
    title: ClassVar[str]
    category: ClassVar[str]
    description: ClassVar[str] = ""
    keywords: ClassVar[list[str]] = []

    def __init__(self, alpha: float = 0.05, seed: int = 42, **options: Any) -> None:
        self.alpha = alpha
        self.seed = seed
        self.options = options
        self._logger = logging.getLogger(f"censusmonkey.analyses.{self.name}")

    def new_result(self) -> AnalysisResult:
        return AnalysisResult(
            name=self.name,
            title=self.title,
            category=self.category,
            description=self.description,
        )

    async def fetch(self, client: CensusClient) -> dict[str, pd.DataFrame]:
        raise NotImplementedError

    def compute(self, data: dict[str, pd.DataFrame]) -> AnalysisResult:
        raise NotImplementedError

    def figures(self, result: AnalysisResult) -> dict[str, Figure]:
        return {}

    async def run(self, client: CensusClient) -> AnalysisResult:
        self._logger.info(f"Fetching data for {self.name}")
        data = await self.fetch(client)
        self._logger.info(f"Computing {self.name}")
        return self.compute(data)

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "title": self.title,
            "category": self.category,
            "description": self.description,
            "keywords": list(self.keywords),
        }
