"""Housing units vs people: where did the two stop growing together?"""

import numpy as np
import pandas as pd
from matplotlib.figure import Figure

from censusmonkey import plots
from censusmonkey.analyses.base import Analysis, AnalysisResult
from censusmonkey.client import CensusClient
from censusmonkey.geography import split_name
from censusmonkey.stats import anova_oneway, cor_test, paired_t_test, safe_test

VARIABLES = {"pop": "B01001_001", "housing": "B25001_001"}
SIZE_ORDER = [
    "Very Large (1M+)",
    "Large (500K-1M)",
    "Medium (100K-500K)",
    "Small (50K-100K)",
    "Very Small (<50K)",
]


def decoupling_category(diff: pd.Series) -> pd.Series:
    return pd.Series(
        np.select(
            [diff >= 10, diff >= 5, diff >= 2, diff >= -2, diff >= -5],
            [
                "Extreme Decoupling (10%+ gap)",
                "Strong Decoupling (5-10% gap)",
                "Moderate Decoupling (2-5% gap)",
                "Coupled Growth (-2 to 2% gap)",
                "Reverse Decoupling (-5 to -2% gap)",
            ],
            default="Strong Reverse Decoupling (<-5% gap)",
        ),
        index=diff.index,
    )


def growth_pattern(pop: pd.Series, housing: pd.Series) -> pd.Series:
    return pd.Series(
        np.select(
            [
                (pop > 0) & (housing > pop),
                (pop > 0) & (housing > 0),
                (pop <= 0) & (housing > 0),
                (pop > 0) & (housing <= 0),
                (pop <= 0) & (housing <= 0),
            ],
            [
                "Housing Outpacing Population",
                "Coupled Positive Growth",
                "Housing Growth, Population Decline",
                "Population Growth, Housing Decline",
                "Dual Decline",
            ],
            default="Other",
        ),
        index=pop.index,
    )


def county_size(population: pd.Series) -> pd.Series:
    return pd.Series(
        np.select(
            [
                population >= 1_000_000,
                population >= 500_000,
                population >= 100_000,
                population >= 50_000,
            ],
            SIZE_ORDER[:4],
            default=SIZE_ORDER[4],
        ),
        index=population.index,
    )


class GreatDecoupling(Analysis):
    name = "great-decoupling"
    title = "The Great Decoupling"
    category = "serious"
    description = (
        "Compares county population and housing unit growth from 2010 to 2022 to "
        "find places where housing supply and population diverged."
    )
    keywords = ["housing", "population", "growth", "supply", "decoupling", "county"]

    def __init__(self, start_year: int = 2010, end_year: int = 2022, **kwargs) -> None:
        super().__init__(**kwargs)
        self.start_year = start_year
        self.end_year = end_year

    async def fetch(self, client: CensusClient) -> dict[str, pd.DataFrame]:
        start, end = await client.load_all(
            [
                lambda: client.get_acs("county", VARIABLES, year=self.start_year),
                lambda: client.get_acs("county", VARIABLES, year=self.end_year),
            ]
        )
        return {"start": start, "end": end}

    def compute(self, data: dict[str, pd.DataFrame]) -> AnalysisResult:
        result = self.new_result()
        start = data["start"].rename(
            columns={"popE": "pop_start", "housingE": "housing_start"}
        )[["GEOID", "pop_start", "housing_start"]]
        end = data["end"].rename(columns={"popE": "pop_end", "housingE": "housing_end"})[
            ["GEOID", "NAME", "pop_end", "housing_end"]
        ]
        df = start.merge(end, on="GEOID", how="inner")

        df["pop_change"] = df["pop_end"] - df["pop_start"]
        df["housing_change"] = df["housing_end"] - df["housing_start"]
        df["pop_growth_rate"] = df["pop_change"] / df["pop_start"].where(df["pop_start"] > 0) * 100
        df["housing_growth_rate"] = (
            df["housing_change"] / df["housing_start"].where(df["housing_start"] > 0) * 100
        )
        df["growth_difference"] = df["housing_growth_rate"] - df["pop_growth_rate"]
        df["decoupling_ratio"] = df["housing_growth_rate"] / df["pop_growth_rate"].where(
            df["pop_growth_rate"] != 0
        )
        df = df.dropna(subset=["pop_growth_rate", "housing_growth_rate"])
        df = df[df["pop_start"] >= 10_000]
        df = df.sort_values("growth_difference", ascending=False).reset_index(drop=True)

        df["decoupling_category"] = decoupling_category(df["growth_difference"])
        df["growth_pattern"] = growth_pattern(df["pop_growth_rate"], df["housing_growth_rate"])
        df["county_size"] = county_size(df["pop_start"])
        df["state"] = df["NAME"].map(lambda n: split_name(n)[1])
        result.data = df

        result.summary = {
            "counties": len(df),
            "mean_pop_growth_pct": float(df["pop_growth_rate"].mean()),
            "mean_housing_growth_pct": float(df["housing_growth_rate"].mean()),
            "mean_growth_difference_pp": float(df["growth_difference"].mean()),
            "decoupled_pct": float((df["growth_difference"] > 2).mean() * 100),
            "strongly_decoupled_pct": float((df["growth_difference"] >= 5).mean() * 100),
        }

        columns = ["GEOID", "NAME", "pop_growth_rate", "housing_growth_rate", "growth_difference"]
        result.tables["strongest_decoupling"] = df.head(15)[columns]
        result.tables["strongest_reverse"] = df.tail(15)[columns].iloc[::-1].reset_index(drop=True)
        result.tables["categories"] = (
            df["decoupling_category"]
            .value_counts()
            .rename_axis("category")
            .reset_index(name="counties")
            .assign(percentage=lambda t: t["counties"] / t["counties"].sum() * 100)
        )
        result.tables["patterns"] = (
            df["growth_pattern"].value_counts().rename_axis("pattern").reset_index(name="counties")
        )
        result.tables["states"] = (
            df.groupby("state")
            .agg(
                counties=("GEOID", "count"),
                mean_pop_growth=("pop_growth_rate", "mean"),
                mean_housing_growth=("housing_growth_rate", "mean"),
                mean_difference=("growth_difference", "mean"),
                strong_decoupling_pct=(
                    "growth_difference",
                    lambda s: (s >= 5).mean() * 100,
                ),
            )
            .sort_values("mean_difference", ascending=False)
            .reset_index()
        )
        result.tables["sizes"] = (
            df.groupby("county_size")
            .agg(
                counties=("GEOID", "count"),
                mean_pop_growth=("pop_growth_rate", "mean"),
                mean_housing_growth=("housing_growth_rate", "mean"),
                mean_difference=("growth_difference", "mean"),
            )
            .reindex([s for s in SIZE_ORDER if s in set(df["county_size"])])
            .reset_index()
        )

        paired = result.add_test(
            safe_test(
                paired_t_test,
                df["housing_growth_rate"],
                df["pop_growth_rate"],
                name="housing vs population growth",
                findings=result.findings,
            )
        )
        result.add_test(
            safe_test(
                cor_test,
                df["pop_growth_rate"],
                df["housing_growth_rate"],
                name="population vs housing growth",
                findings=result.findings,
            )
        )
        result.add_test(
            safe_test(
                anova_oneway,
                df,
                "growth_difference",
                "county_size",
                name="growth difference by county size",
                findings=result.findings,
            )
        )

        if paired is not None:
            if paired.significant(self.alpha):
                direction = "outpaced" if paired.estimate > 0 else "lagged"
                result.findings.insert(
                    0,
                    f"Housing growth {direction} population growth by "
                    f"{abs(paired.estimate):.1f} pp on average (p = {paired.p_value:.3g})",
                )
            else:
                result.findings.insert(0, "Housing and population grew at similar rates")
        return result

    def figures(self, result: AnalysisResult) -> dict[str, Figure]:
        df = result.data
        if df is None or df.empty:
            return {}
        scatter = plots.scatter_with_trend(
            df,
            "pop_growth_rate",
            "housing_growth_rate",
            f"Population vs Housing Unit Growth ({self.start_year}-{self.end_year})",
            xlabel="Population growth (%)",
            ylabel="Housing unit growth (%)",
        )
        ax = scatter.axes[0]
        low = min(df["pop_growth_rate"].min(), df["housing_growth_rate"].min())
        high = max(df["pop_growth_rate"].max(), df["housing_growth_rate"].max())
        ax.plot([low, high], [low, high], "b--", linewidth=1, label="Equal growth")
        return {
            "growth_scatter": scatter,
            "difference_by_size": plots.boxplot(
                df,
                "county_size",
                "growth_difference",
                "Housing minus Population Growth by County Size",
                ylabel="Growth difference (pp)",
                order=[s for s in SIZE_ORDER if s in set(df["county_size"])],
            ),
        }
