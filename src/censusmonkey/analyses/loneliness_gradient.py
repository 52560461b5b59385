"""The Loneliness Gradient: is social isolation U-shaped in density?

Combines single-person households, long commutes and the elderly share of
each tract into an isolation index and fits it against log population
density with a quadratic term.
"""

import numpy as np
import pandas as pd
from matplotlib.figure import Figure

from censusmonkey import plots
from censusmonkey.analyses.base import Analysis, AnalysisResult
from censusmonkey.client import CensusClient
from censusmonkey.spatial import boundary_metrics
from censusmonkey.stats import anova_oneway, cor_test, safe_test, zscore

ELDERLY_CELLS = [f"B01001_{i:03d}" for i in (*range(20, 26), *range(44, 50))]
LONG_COMMUTE_CELLS = ["B08303_011", "B08303_012", "B08303_013"]
COLLEGE_CELLS = ["B15003_022", "B15003_023", "B15003_024", "B15003_025"]
VARIABLES = [
    "B11001_001",
    "B11001_008",
    "B08303_001",
    *LONG_COMMUTE_CELLS,
    "B01001_001",
    *ELDERLY_CELLS,
    "B25001_001",
    "B19013_001",
    "B15003_001",
    *COLLEGE_CELLS,
]

DENSITY_CATEGORIES = [
    "Rural (< 100/sq mi)",
    "Low Density (100-1000/sq mi)",
    "Medium Density (1000-5000/sq mi)",
    "High Density (5000-15000/sq mi)",
    "Very High Density (15000+/sq mi)",
]
MAX_DENSITY = 50000
MIN_HOUSEHOLDS = 50
COMPONENTS = {
    "pct_single_person": "single-person households",
    "pct_long_commute": "long commutes",
    "pct_elderly": "elderly share",
}


def _sum(raw: pd.DataFrame, cells: list[str]) -> pd.Series:
    return raw[[f"{c}E" for c in cells]].sum(axis=1)


def density_category(density: pd.Series) -> pd.Series:
    labels = np.select(
        [density < 100, density < 1000, density < 5000, density < 15000],
        DENSITY_CATEGORIES[:4],
        default=DENSITY_CATEGORIES[4],
    )
    return pd.Series(
        pd.Categorical(labels, categories=DENSITY_CATEGORIES, ordered=True),
        index=density.index,
    )


def isolation_index(df: pd.DataFrame) -> pd.Series:
    """Mean of the component z-scores; a missing commute z counts as zero."""
    return (
        zscore(df["pct_single_person"])
        + zscore(df["pct_long_commute"]).fillna(0)
        + zscore(df["pct_elderly"])
    ) / 3


class LonelinessGradient(Analysis):
    name = "loneliness-gradient"
    title = "The Loneliness Gradient"
    category = "serious"
    description = (
        "Builds a tract isolation index from living alone, long commutes and age, "
        "and tests whether isolation is U-shaped across population density."
    )
    keywords = ["isolation", "density", "living alone", "commute", "elderly", "tracts"]

    def __init__(self, states: list[str] | None = None, year: int = 2022, **kwargs) -> None:
        super().__init__(**kwargs)
        self.states = states or ["CA"]
        self.year = year

    async def fetch(self, client: CensusClient) -> dict[str, pd.DataFrame]:
        tracts = await client.get_acs("tract", VARIABLES, year=self.year, state=self.states)
        boundaries = await client.load_all(
            [lambda s=s: client.get_boundaries("tract", year=self.year, state=s) for s in self.states]
        )
        areas = pd.concat([boundary_metrics(b) for b in boundaries], ignore_index=True)
        return {"tracts": tracts, "areas": areas}

    def compute(self, data: dict[str, pd.DataFrame]) -> AnalysisResult:
        result = self.new_result()
        raw = data["tracts"].merge(
            data["areas"][["GEOID", "area_sq_km", "area_sq_mi"]], on="GEOID", how="inner"
        )
        raw = raw[
            (raw["B11001_001E"] > 0)
            & (raw["B01001_001E"] > 0)
            & (raw["B25001_001E"] > 0)
            & (raw["area_sq_km"] > 0)
        ]

        commuters = raw["B08303_001E"].where(raw["B08303_001E"] > 0)
        education = raw["B15003_001E"].where(raw["B15003_001E"] > 0)
        df = pd.DataFrame(
            {
                "GEOID": raw["GEOID"],
                "NAME": raw["NAME"],
                "households": raw["B11001_001E"],
                "population": raw["B01001_001E"],
                "pct_single_person": raw["B11001_008E"] / raw["B11001_001E"] * 100,
                "pct_long_commute": _sum(raw, LONG_COMMUTE_CELLS) / commuters * 100,
                "pct_elderly": _sum(raw, ELDERLY_CELLS) / raw["B01001_001E"] * 100,
                "pop_density": raw["B01001_001E"] / raw["area_sq_mi"],
                "housing_density": raw["B25001_001E"] / raw["area_sq_mi"],
                "median_income": raw["B19013_001E"],
                "pct_college": _sum(raw, COLLEGE_CELLS) / education * 100,
            }
        )
        df = df[
            df["pct_single_person"].notna()
            & (df["pop_density"] > 0)
            & (df["pop_density"] < MAX_DENSITY)
            & (df["households"] >= MIN_HOUSEHOLDS)
        ].copy()
        df["log_density"] = np.log(df["pop_density"] + 1)
        df["density_category"] = density_category(df["pop_density"])
        df["isolation_index"] = isolation_index(df)
        df["income_thousands"] = df["median_income"] / 1000
        result.data = df

        result.summary = {
            "tracts": len(df),
            "median_density": float(df["pop_density"].median()),
            "mean_single_person_pct": float(df["pct_single_person"].mean()),
            "mean_long_commute_pct": float(df["pct_long_commute"].mean()),
            "mean_elderly_pct": float(df["pct_elderly"].mean()),
        }
        result.tables["density_categories"] = (
            df.groupby("density_category", observed=True)
            .agg(
                tracts=("GEOID", "count"),
                mean_single_person=("pct_single_person", "mean"),
                mean_long_commute=("pct_long_commute", "mean"),
                mean_elderly=("pct_elderly", "mean"),
                mean_isolation=("isolation_index", "mean"),
                median_isolation=("isolation_index", "median"),
                mean_income=("median_income", "mean"),
            )
            .reset_index()
        )

        quadratic = result.fit_model(
            "quadratic density",
            "isolation_index ~ log_density + I(log_density ** 2)",
            df,
        )
        result.fit_model(
            "single-person with controls",
            "pct_single_person ~ log_density + I(log_density ** 2) + pct_elderly"
            " + income_thousands + pct_college",
            df,
        )
        result.add_test(
            safe_test(
                anova_oneway,
                df,
                "isolation_index",
                "density_category",
                name="isolation by density category",
                findings=result.findings,
            )
        )
        for column, label in COMPONENTS.items():
            result.add_test(
                safe_test(
                    cor_test,
                    df["log_density"],
                    df[column],
                    name=f"log density vs {label}",
                    findings=result.findings,
                )
            )

        if quadratic is not None:
            term = "I(log_density ** 2)"
            coefficient = quadratic.params[term]
            p_value = quadratic.pvalues[term]
            u_shaped = coefficient > 0 and p_value < self.alpha
            result.summary["u_shaped"] = bool(u_shaped)
            if u_shaped:
                turning_point = -quadratic.params["log_density"] / (2 * coefficient)
                result.summary["isolation_minimum_density"] = float(np.exp(turning_point) - 1)
            result.findings.insert(
                0,
                f"Isolation is {'U-shaped' if u_shaped else 'not U-shaped'} in density "
                f"(quadratic term {coefficient:.4f}, p = {p_value:.3g})",
            )
        return result

    def figures(self, result: AnalysisResult) -> dict[str, Figure]:
        df = result.data
        if df is None or df.empty:
            return {}
        order = [c for c in DENSITY_CATEGORIES if c in set(df["density_category"])]
        return {
            "density_vs_isolation": plots.scatter_with_trend(
                df,
                "log_density",
                "isolation_index",
                "Population Density vs Social Isolation Index",
                xlabel="Log population density (per sq mi)",
                ylabel="Isolation index (standardized)",
            ),
            "single_person_by_density": plots.boxplot(
                df,
                "density_category",
                "pct_single_person",
                "Single-Person Households by Density Category",
                ylabel="Single-person households (%)",
                order=order,
            ),
        }
