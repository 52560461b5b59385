"""The Commuting Dead: tracts without cars and without transit.

Splits metro tracts at the median zero-vehicle and transit-commuting
shares. Tracts with many carless households but little transit use are
the "commuting dead"; the question is whether they carry higher
unemployment than the other quadrants.
"""

import numpy as np
import pandas as pd
from matplotlib.figure import Figure

from censusmonkey import plots
from censusmonkey.analyses.base import Analysis, AnalysisResult
from censusmonkey.client import CensusClient
from censusmonkey.geography import TRANSIT_METROS, counties_by_state
from censusmonkey.stats import anova_oneway, ntile, pairwise_t_tests, safe_test

DEFAULT_METROS = ["Houston", "Seattle", "Atlanta"]

DETAIL_VARIABLES = {
    "total_households": "B25044_001",
    "no_vehicle_owner": "B25044_003",
    "no_vehicle_renter": "B25044_010",
    "total_workers": "B08301_001",
    "transit_workers": "B08301_010",
}
SUBJECT_VARIABLES = {"unemployment_rate": "S2301_C04_001"}

QUADRANTS = ["Commuting Dead", "Transit Dependent", "Transit Choice", "Car Dependent"]


def assign_quadrants(df: pd.DataFrame) -> pd.DataFrame:
    """Median-split quadrants and quartile-based extremes."""
    df = df.copy()
    high_vehicle = df["pct_no_vehicle"] >= df["pct_no_vehicle"].median()
    high_transit = df["pct_public_transit"] >= df["pct_public_transit"].median()
    df["quadrant"] = np.select(
        [
            high_vehicle & ~high_transit,
            high_vehicle & high_transit,
            ~high_vehicle & high_transit,
        ],
        QUADRANTS[:3],
        default=QUADRANTS[3],
    )
    df["vehicle_quartile"] = ntile(df["pct_no_vehicle"], 4)
    df["transit_quartile"] = ntile(df["pct_public_transit"], 4)
    vehicle_q = df["vehicle_quartile"].astype(float)
    transit_q = df["transit_quartile"].astype(float)
    df["extreme_commuting_dead"] = np.select(
        [
            (vehicle_q == 4) & (transit_q == 1),
            (vehicle_q >= 3) & (transit_q <= 2),
        ],
        ["Extreme Commuting Dead", "Moderate Commuting Dead"],
        default="Other",
    )
    return df


class CommutingDead(Analysis):
    name = "commuting-dead"
    title = "The Commuting Dead"
    category = "whimsical"
    description = (
        "Finds tracts with many carless households but little transit use and tests "
        "whether these transit deserts carry higher unemployment."
    )
    keywords = ["transit", "vehicles", "unemployment", "commuting", "tracts", "metro"]

    def __init__(self, metros: list[str] | None = None, year: int = 2022, **kwargs) -> None:
        super().__init__(**kwargs)
        self.metros = metros or DEFAULT_METROS
        unknown = [m for m in self.metros if m not in TRANSIT_METROS]
        if unknown:
            raise ValueError(
                f"Unknown metro(s) {', '.join(unknown)}. Choose from: "
                + ", ".join(TRANSIT_METROS)
            )
        self.year = year

    async def _metro_tracts(self, client: CensusClient, metro: str) -> pd.DataFrame:
        frames = []
        for state, counties in counties_by_state(TRANSIT_METROS[metro]).items():
            detail = await client.get_acs(
                "tract", DETAIL_VARIABLES, year=self.year, state=state, county=counties
            )
            subject = await client.get_acs(
                "tract", SUBJECT_VARIABLES, year=self.year, state=state, county=counties
            )
            frames.append(detail.merge(subject.drop(columns=["NAME"]), on="GEOID", how="left"))
        tracts = pd.concat(frames, ignore_index=True)
        tracts["metro_area"] = metro
        return tracts

    async def fetch(self, client: CensusClient) -> dict[str, pd.DataFrame]:
        frames = await client.load_all(
            [lambda m=m: self._metro_tracts(client, m) for m in self.metros],
            show_progress=client.config.analysis.show_progress,
            ignore_errors=True,
        )
        frames = [f for f in frames if f is not None]
        if not frames:
            raise ValueError("No metro area returned tract data")
        return {"tracts": pd.concat(frames, ignore_index=True)}

    def compute(self, data: dict[str, pd.DataFrame]) -> AnalysisResult:
        result = self.new_result()
        raw = data["tracts"]

        df = pd.DataFrame(
            {
                "GEOID": raw["GEOID"],
                "NAME": raw["NAME"],
                "metro_area": raw["metro_area"],
                "total_households": raw["total_householdsE"],
                "total_workers": raw["total_workersE"],
                "unemployment_rate": raw["unemployment_rateE"],
            }
        )
        df["pct_no_vehicle"] = (
            (raw["no_vehicle_ownerE"] + raw["no_vehicle_renterE"])
            / df["total_households"].where(df["total_households"] > 0)
            * 100
        )
        df["pct_public_transit"] = (
            raw["transit_workersE"] / df["total_workers"].where(df["total_workers"] > 0) * 100
        )
        df = df.dropna(subset=["pct_no_vehicle", "pct_public_transit", "unemployment_rate"])
        df = df[(df["total_households"] >= 100) & (df["total_workers"] >= 50)]
        df = assign_quadrants(df)
        result.data = df

        result.summary = {
            "tracts": len(df),
            "metros": sorted(df["metro_area"].unique().tolist()),
            "median_no_vehicle_pct": float(df["pct_no_vehicle"].median()),
            "median_transit_pct": float(df["pct_public_transit"].median()),
            "median_unemployment_pct": float(df["unemployment_rate"].median()),
            "commuting_dead_tracts": int((df["quadrant"] == "Commuting Dead").sum()),
            "extreme_commuting_dead_tracts": int(
                (df["extreme_commuting_dead"] == "Extreme Commuting Dead").sum()
            ),
        }
        result.tables["quadrants"] = (
            df.groupby("quadrant")
            .agg(
                tracts=("GEOID", "count"),
                mean_unemployment=("unemployment_rate", "mean"),
                median_unemployment=("unemployment_rate", "median"),
                mean_no_vehicle=("pct_no_vehicle", "mean"),
                mean_transit=("pct_public_transit", "mean"),
            )
            .reindex([q for q in QUADRANTS if q in set(df["quadrant"])])
            .reset_index()
        )
        result.tables["metros"] = (
            df.groupby(["metro_area", "quadrant"])
            .agg(tracts=("GEOID", "count"), mean_unemployment=("unemployment_rate", "mean"))
            .reset_index()
        )
        result.tables["extreme_tracts"] = df[
            df["extreme_commuting_dead"] == "Extreme Commuting Dead"
        ].nlargest(15, "unemployment_rate")[
            ["GEOID", "NAME", "metro_area", "pct_no_vehicle", "pct_public_transit", "unemployment_rate"]
        ].reset_index(drop=True)
        result.tables["correlations"] = (
            df[["pct_no_vehicle", "pct_public_transit", "unemployment_rate"]]
            .corr()
            .reset_index()
            .rename(columns={"index": "variable"})
        )

        anova = result.add_test(
            safe_test(
                anova_oneway,
                df,
                "unemployment_rate",
                "quadrant",
                name="unemployment by quadrant",
                findings=result.findings,
            )
        )
        result.tables["pairwise"] = pairwise_t_tests(df, "unemployment_rate", "quadrant")

        result.fit_model(
            "vehicles and transit",
            "unemployment_rate ~ pct_no_vehicle + pct_public_transit",
            df,
        )
        result.fit_model(
            "with quadrant",
            "unemployment_rate ~ pct_no_vehicle + pct_public_transit + C(quadrant)",
            df,
        )
        if df["metro_area"].nunique() > 1:
            result.fit_model(
                "with metro fixed effects",
                "unemployment_rate ~ pct_no_vehicle + pct_public_transit + C(quadrant) + C(metro_area)",
                df,
            )

        quadrants = result.tables["quadrants"].set_index("quadrant")
        if anova is not None and "Commuting Dead" in quadrants.index:
            dead = quadrants.loc["Commuting Dead", "mean_unemployment"]
            others = df.loc[df["quadrant"] != "Commuting Dead", "unemployment_rate"].mean()
            verdict = "differs" if anova.significant(self.alpha) else "does not differ"
            result.findings.insert(
                0,
                f"Unemployment {verdict} across quadrants (p = {anova.p_value:.3g}); "
                f"commuting-dead tracts average {dead:.1f}% vs {others:.1f}% elsewhere",
            )
        return result

    def figures(self, result: AnalysisResult) -> dict[str, Figure]:
        df = result.data
        if df is None or df.empty:
            return {}
        quadrant_plot = plots.scatter_with_trend(
            df,
            "pct_public_transit",
            "pct_no_vehicle",
            "Vehicle Access vs Transit Use",
            xlabel="Workers commuting by transit (%)",
            ylabel="Households without a vehicle (%)",
            hue="quadrant",
        )
        ax = quadrant_plot.axes[0]
        ax.axhline(df["pct_no_vehicle"].median(), linestyle="--", color="grey", alpha=0.7)
        ax.axvline(df["pct_public_transit"].median(), linestyle="--", color="grey", alpha=0.7)
        return {
            "quadrants": quadrant_plot,
            "unemployment_by_quadrant": plots.boxplot(
                df,
                "quadrant",
                "unemployment_rate",
                "Unemployment by Transit Quadrant",
                ylabel="Unemployment rate (%)",
                order=[q for q in QUADRANTS if q in set(df["quadrant"])],
            ),
        }
