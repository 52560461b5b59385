"""Heat Refuge Highways: do movers leave hot counties for cooler ones?

Latitude stands in for temperature. Outflows from the most populous
high-heat counties are classified as cooling or warming moves by the
difference in the latitude proxy between origin and destination.
"""

import numpy as np
import pandas as pd
from matplotlib.figure import Figure

from censusmonkey import plots
from censusmonkey.analyses.base import Analysis, AnalysisResult
from censusmonkey.client import CensusClient
from censusmonkey.geography import CONTINENTAL_STATE_FIPS
from censusmonkey.spatial import boundary_metrics
from censusmonkey.stats import binom_test, cor_test, safe_test

VARIABLES = {
    "total_pop": "B01003_001",
    "median_age": "B01002_001",
    "median_income": "B19013_001",
    "white_pop": "B03002_003",
    "total_race": "B03002_001",
}

TEMP_CATEGORIES = ["Cool North", "Moderate North", "Moderate South", "Warm South", "Hot South"]
HEAT_STRESS = ["High Heat", "Moderate Heat", "Low Heat"]
MOVE_TYPES = ["Cooling Move", "Same Temperature", "Warming Move"]

# Share of flows expected to be cooling moves under no preference
NULL_COOLING_SHARE = 0.33
TEMP_MARGIN = 2
MIN_CORRIDOR_FLOW = 20


def temperature_proxy(latitude: pd.Series) -> pd.DataFrame:
    """Latitude-based heat proxy with its category and heat-stress class."""
    return pd.DataFrame(
        {
            "temp_proxy": 50 - latitude,
            "temp_category": np.select(
                [latitude >= 45, latitude >= 40, latitude >= 35, latitude >= 30],
                TEMP_CATEGORIES[:4],
                default=TEMP_CATEGORIES[4],
            ),
            "heat_stress": np.select(
                [latitude < 32, latitude < 37], HEAT_STRESS[:2], default=HEAT_STRESS[2]
            ),
        },
        index=latitude.index,
    )


def classify_moves(flows: pd.DataFrame, counties: pd.DataFrame) -> pd.DataFrame:
    """Attach origin/destination temperatures and label each flow."""
    temps = counties.set_index("GEOID")[["latitude", "temp_proxy", "heat_stress"]]
    df = flows.join(temps.add_prefix("origin_"), on="origin_geoid").join(
        temps.add_prefix("dest_"), on="dest_geoid"
    )
    df = df.dropna(subset=["origin_temp_proxy", "dest_temp_proxy"]).copy()
    df["temp_differential"] = df["origin_temp_proxy"] - df["dest_temp_proxy"]
    df["latitude_change"] = df["dest_latitude"] - df["origin_latitude"]
    df["move_type"] = np.select(
        [df["temp_differential"] > TEMP_MARGIN, df["temp_differential"] < -TEMP_MARGIN],
        [MOVE_TYPES[0], MOVE_TYPES[2]],
        default=MOVE_TYPES[1],
    )
    df["distance_proxy"] = df["latitude_change"].abs()
    return df.reset_index(drop=True)


class HeatRefugeHighways(Analysis):
    name = "heat-refuge-highways"
    title = "Heat Refuge Highways"
    category = "serious"
    description = (
        "Tests whether people leaving the hottest large counties move to cooler "
        "places, using latitude as a temperature proxy."
    )
    keywords = ["heat", "climate", "migration", "latitude", "flows", "temperature"]

    def __init__(
        self,
        year: int = 2022,
        flows_year: int = 2020,
        candidates: int = 15,
        origins: int = 8,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.year = year
        self.flows_year = flows_year
        self.candidates = candidates
        self.origins = origins

    def prepare_counties(self, raw: pd.DataFrame, centroids: pd.DataFrame) -> pd.DataFrame:
        df = raw.merge(centroids[["GEOID", "latitude", "longitude"]], on="GEOID", how="inner")
        df = pd.DataFrame(
            {
                "GEOID": df["GEOID"],
                "NAME": df["NAME"],
                "latitude": df["latitude"],
                "longitude": df["longitude"],
                "total_pop": df["total_popE"],
                "median_age": df["median_ageE"],
                "median_income": df["median_incomeE"],
                "white_pct": df["white_popE"] / df["total_raceE"],
            }
        )
        df = df[df["GEOID"].str[:2].isin(CONTINENTAL_STATE_FIPS) & (df["total_pop"] > 1000)]
        return pd.concat([df, temperature_proxy(df["latitude"])], axis=1).reset_index(drop=True)

    def hot_origins(self, counties: pd.DataFrame) -> pd.DataFrame:
        hot = counties[(counties["heat_stress"] == "High Heat") & (counties["total_pop"] >= 50000)]
        return hot.nlargest(self.candidates, "total_pop").reset_index(drop=True)

    async def _outflows(self, client: CensusClient, geoid: str) -> pd.DataFrame:
        flows = await client.get_flows(
            state=geoid[:2], county=geoid[2:], year=self.flows_year, variables=["MOVEDOUT"]
        )
        flows = flows.dropna(subset=["MOVEDOUT"])
        flows = flows[(flows["MOVEDOUT"] > 0) & (flows["GEOID2"].str.len() == 5)]
        return pd.DataFrame(
            {
                "origin_geoid": flows["GEOID1"],
                "dest_geoid": flows["GEOID2"],
                "outbound_flow": flows["MOVEDOUT"],
            }
        )

    async def fetch(self, client: CensusClient) -> dict[str, pd.DataFrame]:
        raw = await client.get_acs("county", VARIABLES, year=self.year)
        boundaries = await client.get_boundaries("county", year=self.year, resolution="20m")
        centroids = boundary_metrics(boundaries)

        origins = self.hot_origins(self.prepare_counties(raw, centroids)).head(self.origins)
        frames = await client.load_all(
            [lambda g=g: self._outflows(client, g) for g in origins["GEOID"]],
            show_progress=client.config.analysis.show_progress,
            ignore_errors=True,
        )
        frames = [f for f in frames if f is not None]
        flows = (
            pd.concat(frames, ignore_index=True)
            if frames
            else pd.DataFrame(columns=["origin_geoid", "dest_geoid", "outbound_flow"])
        )
        return {"counties": raw, "centroids": centroids, "flows": flows}

    def compute(self, data: dict[str, pd.DataFrame]) -> AnalysisResult:
        result = self.new_result()
        counties = self.prepare_counties(data["counties"], data["centroids"])
        result.tables["temperature_categories"] = (
            counties["temp_category"]
            .value_counts()
            .reindex(TEMP_CATEGORIES, fill_value=0)
            .rename_axis("temp_category")
            .reset_index(name="counties")
        )
        result.tables["hot_origins"] = self.hot_origins(counties)[
            ["GEOID", "NAME", "latitude", "temp_proxy", "total_pop"]
        ]
        result.summary = {
            "counties": len(counties),
            "high_heat_counties": int((counties["heat_stress"] == "High Heat").sum()),
        }

        flows = classify_moves(data["flows"], counties)
        result.data = flows
        if flows.empty:
            result.findings.append("No county-to-county outflows were available")
            return result

        total_migrants = flows["outbound_flow"].sum()
        cooling = flows[flows["move_type"] == "Cooling Move"]
        cooling_share_migrants = cooling["outbound_flow"].sum() / total_migrants
        result.summary.update(
            {
                "flows": len(flows),
                "migrants": int(total_migrants),
                "cooling_flows": len(cooling),
                "cooling_share_flows": len(cooling) / len(flows),
                "cooling_share_migrants": float(cooling_share_migrants),
            }
        )
        result.tables["move_types"] = (
            flows.groupby("move_type")
            .agg(
                flows=("outbound_flow", "size"),
                migrants=("outbound_flow", "sum"),
                mean_flow=("outbound_flow", "mean"),
                mean_temp_differential=("temp_differential", "mean"),
            )
            .sort_values("migrants", ascending=False)
            .reset_index()
        )

        names = counties.set_index("GEOID")["NAME"]
        corridors = cooling[cooling["outbound_flow"] >= MIN_CORRIDOR_FLOW].nlargest(
            20, "outbound_flow"
        )
        result.tables["cooling_corridors"] = pd.DataFrame(
            {
                "origin": corridors["origin_geoid"].map(names),
                "destination": corridors["dest_geoid"].map(names),
                "outbound_flow": corridors["outbound_flow"],
                "temp_differential": corridors["temp_differential"].round(1),
                "latitude_change": corridors["latitude_change"].round(1),
            }
        ).reset_index(drop=True)

        binomial = result.add_test(
            binom_test(
                len(cooling),
                len(flows),
                p=NULL_COOLING_SHARE,
                name="cooling share of flows",
            )
        )
        result.add_test(
            safe_test(
                cor_test,
                flows["distance_proxy"],
                flows["temp_differential"],
                name="distance vs temperature differential",
            )
        )

        if cooling_share_migrants > 0.4:
            verdict = "Movers out of hot counties strongly favor cooler destinations"
        elif cooling_share_migrants < 0.25:
            verdict = "Movers out of hot counties do not seek cooler destinations"
        else:
            verdict = "Movers out of hot counties show a mild preference for cooler places"
        result.findings.insert(
            0,
            f"{verdict}: {cooling_share_migrants:.0%} of migrants make a cooling move "
            f"(binomial p = {binomial.p_value:.3g} against {NULL_COOLING_SHARE:.0%})",
        )
        return result

    def figures(self, result: AnalysisResult) -> dict[str, Figure]:
        flows = result.data
        if flows is None or flows.empty:
            return {}
        return {
            "temp_differentials": plots.histogram(
                flows,
                "temp_differential",
                "Temperature Differentials in Migration",
                xlabel="Temperature differential (origin - destination)",
                vline=0,
            ),
            "flow_vs_differential": plots.scatter_with_trend(
                flows,
                "temp_differential",
                "outbound_flow",
                "Migration Volume vs Temperature Differential",
                xlabel="Temperature differential (origin - destination)",
                ylabel="Movers",
            ),
        }
