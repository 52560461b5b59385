"""Carless Corridors: do car-free households line up along transit lines?

Maps the share of zero-vehicle households across Bay Area tracts and asks
whether the high-carless tracts fall along a line (first principal
component of their centroids), whether they clump (nearest-neighbour ratio)
and whether they track transit commuting.
"""

import numpy as np
import pandas as pd
from matplotlib.figure import Figure

from censusmonkey import plots
from censusmonkey.analyses.base import Analysis, AnalysisResult
from censusmonkey.client import CensusClient
from censusmonkey.geography import BAY_AREA_COUNTIES, county_of_tract
from censusmonkey.spatial import boundary_metrics
from censusmonkey.stats import (
    InsufficientDataError,
    anova_oneway,
    cor_test,
    nearest_neighbor_ratio,
    pca_linearity,
    safe_test,
)

VARIABLES = {
    "total_households": "B25044_001",
    "zero_vehicle_owner": "B25044_003",
    "zero_vehicle_renter": "B25044_010",
    "total_commuters": "B08301_001",
    "transit_commuters": "B08301_010",
}

CATEGORY_ORDER = [
    "Very High (30%+)",
    "High (20-30%)",
    "Moderate (10-20%)",
    "Low (5-10%)",
    "Very Low (<5%)",
]
HIGH_CARLESS_PCT = 20
LINEAR_THRESHOLD = 60
CLUSTERED_RATIO = 1.2
MIN_LINEARITY_TRACTS = 10

VERDICTS = {
    "linear": "Zero-vehicle tracts form linear corridors",
    "clustered but not linear": "Zero-vehicle tracts cluster but do not line up in corridors",
    "random": "Zero-vehicle tracts show no corridor or clustering pattern",
}


def vehicle_category(pct: pd.Series) -> pd.Series:
    return pd.Series(
        np.select(
            [pct >= 30, pct >= 20, pct >= 10, pct >= 5],
            CATEGORY_ORDER[:4],
            default=CATEGORY_ORDER[4],
        ),
        index=pct.index,
    )


def linearity(coords: pd.DataFrame) -> dict[str, float | bool | int]:
    """PCA linearity of a set of centroids; a score of 60%+ reads as linear."""
    score = pca_linearity(coords[["x", "y"]].to_numpy())
    return {
        "tracts": len(coords),
        "linearity_score": score,
        "is_linear": score >= LINEAR_THRESHOLD,
    }


def corridor_verdict(is_linear: bool, is_clustered: bool) -> str:
    if is_linear:
        return "linear"
    if is_clustered:
        return "clustered but not linear"
    return "random"


class CarlessCorridors(Analysis):
    name = "carless-corridors"
    title = "Carless Corridors"
    category = "whimsical"
    description = (
        "Tests whether Bay Area tracts with many zero-vehicle households form linear "
        "corridors and whether they coincide with transit commuting."
    )
    keywords = ["vehicles", "transit", "cars", "bay area", "tracts", "corridors"]

    def __init__(self, year: int = 2022, **kwargs) -> None:
        super().__init__(**kwargs)
        self.year = year

    async def fetch(self, client: CensusClient) -> dict[str, pd.DataFrame]:
        tracts = await client.get_acs(
            "tract", VARIABLES, year=self.year, state="CA", county=BAY_AREA_COUNTIES
        )
        boundaries = await client.get_boundaries("tract", year=self.year, state="CA")
        centroids = boundary_metrics(boundaries)
        return {"tracts": tracts, "centroids": centroids[centroids["GEOID"].isin(tracts["GEOID"])]}

    def compute(self, data: dict[str, pd.DataFrame]) -> AnalysisResult:
        result = self.new_result()
        raw = data["tracts"]

        df = pd.DataFrame(
            {
                "GEOID": raw["GEOID"],
                "NAME": raw["NAME"],
                "total_households": raw["total_householdsE"],
                "zero_vehicle_households": raw["zero_vehicle_ownerE"] + raw["zero_vehicle_renterE"],
            }
        )
        df["zero_vehicle_pct"] = (
            df["zero_vehicle_households"]
            / df["total_households"].where(df["total_households"] > 0)
            * 100
        )
        df["transit_pct"] = (
            raw["transit_commutersE"]
            / raw["total_commutersE"].where(raw["total_commutersE"] > 0)
            * 100
        )
        df = df.dropna(subset=["zero_vehicle_pct"])
        df = df[df["total_households"] >= 100].copy()
        df["vehicle_category"] = vehicle_category(df["zero_vehicle_pct"])
        df["high_carless"] = df["zero_vehicle_pct"] >= HIGH_CARLESS_PCT
        df["county"] = df["NAME"].map(county_of_tract)
        centroids = data.get("centroids")
        if centroids is not None:
            df = df.merge(centroids, on="GEOID", how="left")
        else:
            df = df.assign(x=np.nan, y=np.nan, longitude=np.nan, latitude=np.nan)
        result.data = df

        result.summary = {
            "tracts": len(df),
            "mean_zero_vehicle_pct": float(df["zero_vehicle_pct"].mean()),
            "high_carless_tracts": int(df["high_carless"].sum()),
            "high_carless_pct": float(df["high_carless"].mean() * 100),
        }
        result.tables["categories"] = (
            df["vehicle_category"]
            .value_counts()
            .reindex(CATEGORY_ORDER, fill_value=0)
            .rename_axis("category")
            .reset_index(name="tracts")
        )
        result.tables["counties"] = (
            df.groupby("county")
            .agg(
                tracts=("GEOID", "count"),
                mean_zero_vehicle_pct=("zero_vehicle_pct", "mean"),
                high_carless_tracts=("high_carless", "sum"),
                mean_transit_pct=("transit_pct", "mean"),
            )
            .sort_values("mean_zero_vehicle_pct", ascending=False)
            .reset_index()
        )
        result.tables["most_carless"] = df.nlargest(15, "zero_vehicle_pct")[
            ["GEOID", "NAME", "zero_vehicle_pct", "transit_pct"]
        ].reset_index(drop=True)

        self._linearity(df, result)

        transit = df.dropna(subset=["transit_pct"])
        if len(transit) > 50:
            correlation = result.add_test(
                cor_test(
                    transit["zero_vehicle_pct"],
                    transit["transit_pct"],
                    name="zero vehicle vs transit commuting",
                )
            )
            result.findings.append(
                f"Zero-vehicle share and transit commuting correlate at r = "
                f"{correlation.estimate:.3f} (p = {correlation.p_value:.3g})"
            )
        else:
            result.findings.append(
                f"Only {len(transit)} tracts report commuters; transit correlation skipped"
            )

        result.add_test(
            safe_test(
                anova_oneway,
                df,
                "zero_vehicle_pct",
                "county",
                name="zero vehicle share by county",
                findings=result.findings,
            )
        )
        return result

    def _linearity(self, df: pd.DataFrame, result: AnalysisResult) -> None:
        located = df.dropna(subset=["x", "y"])
        high = located[located["high_carless"]]
        if len(high) < MIN_LINEARITY_TRACTS:
            result.findings.append(
                f"Only {len(high)} high-carless tracts; linearity not assessed"
            )
            result.summary["verdict"] = corridor_verdict(False, False)
            return

        overall = linearity(high)
        result.summary["linearity_score"] = overall["linearity_score"]
        result.summary["is_linear"] = overall["is_linear"]
        result.findings.append(
            f"High-carless tracts are {'linear' if overall['is_linear'] else 'not linear'}: "
            f"the first principal component carries {overall['linearity_score']:.1f}% of the variance"
        )

        try:
            ratio = nearest_neighbor_ratio(high[["x", "y"]].to_numpy())
        except InsufficientDataError as e:
            result.findings.append(f"Clustering not assessed: {e}")
            ratio = float("nan")
        is_clustered = bool(ratio > CLUSTERED_RATIO)
        result.summary["clustering_ratio"] = ratio
        result.summary["is_clustered"] = is_clustered
        if not np.isnan(ratio):
            result.findings.append(
                f"Nearest-neighbour clustering ratio is {ratio:.2f} "
                f"({'clustered' if is_clustered else 'not clustered'}; above 1 means clumped)"
            )
        verdict = corridor_verdict(overall["is_linear"], is_clustered)
        result.summary["verdict"] = verdict
        result.findings.append(VERDICTS[verdict])

        rows = []
        for county, group in high.groupby("county"):
            if len(group) < MIN_LINEARITY_TRACTS:
                continue
            try:
                rows.append({"county": county, **linearity(group)})
            except InsufficientDataError as e:
                self._logger.debug(f"Skipping linearity for {county}: {e}")
        result.tables["county_linearity"] = pd.DataFrame(
            rows, columns=["county", "tracts", "linearity_score", "is_linear"]
        )

    def figures(self, result: AnalysisResult) -> dict[str, Figure]:
        df = result.data
        if df is None or df.empty:
            return {}
        figures = {
            "zero_vehicle_distribution": plots.histogram(
                df,
                "zero_vehicle_pct",
                "Zero-Vehicle Households Across Bay Area Tracts",
                xlabel="Households without a vehicle (%)",
                vline=HIGH_CARLESS_PCT,
            ),
            "carless_vs_transit": plots.scatter_with_trend(
                df,
                "zero_vehicle_pct",
                "transit_pct",
                "Zero-Vehicle Households vs Transit Commuting",
                xlabel="Households without a vehicle (%)",
                ylabel="Workers commuting by transit (%)",
            ),
        }
        located = df.dropna(subset=["longitude", "latitude"])
        if len(located):
            figures["carless_map"] = plots.point_map(
                located, "Zero-Vehicle Share by Tract", hue="vehicle_category"
            )
        return figures
