"""Which states scatter their movers across Texas, and which pick one county?

Uses ACS county-to-county inflows into ten large Texas counties and
measures, per origin state, how unevenly its movers split between them.
"""

import numpy as np
import pandas as pd
from matplotlib.figure import Figure

from censusmonkey import plots
from censusmonkey.analyses.base import Analysis, AnalysisResult
from censusmonkey.client import CensusClient
from censusmonkey.geography import (
    NORTHEASTERN_STATES,
    SOUTHERN_STATES,
    TEXAS_DESTINATIONS,
    WESTERN_STATES,
    flow_origin_state,
    flow_origin_type,
)
from censusmonkey.stats import anova_oneway, cor_test, gini, safe_test

REGIONS = {
    "South": SOUTHERN_STATES,
    "West": WESTERN_STATES,
    "Northeast": NORTHEASTERN_STATES,
}


def state_inflows(flows: pd.DataFrame) -> pd.DataFrame:
    """State-origin inflows joined to the destination metadata."""
    df = flows.dropna(subset=["MOVEDIN"])
    df = df[df["MOVEDIN"] > 0].copy()
    df["origin_type"] = df["GEOID2"].map(flow_origin_type)
    df = df[df["origin_type"] == "US State"]
    df["origin_state"] = df["GEOID2"].map(flow_origin_state).fillna(df["FULL2_NAME"])
    df = df.merge(TEXAS_DESTINATIONS, left_on="GEOID1", right_on="geoid", how="inner")
    return df.rename(columns={"MOVEDIN": "inbound_flow", "GEOID1": "dest_geoid"})[
        ["origin_state", "dest_geoid", "county_name", "metro_area", "inbound_flow"]
    ].reset_index(drop=True)


def state_asymmetry(inflows: pd.DataFrame) -> pd.DataFrame:
    rows = []
    for state, group in inflows.groupby("origin_state"):
        flows = group["inbound_flow"]
        total = flows.sum()
        rows.append(
            {
                "origin_state": state,
                "total_to_tx": total,
                "n_counties": len(flows),
                "max_flow": flows.max(),
                "min_flow": flows.min(),
                "mean_flow": flows.mean(),
                "median_flow": flows.median(),
                "flow_range": flows.max() - flows.min(),
                "coefficient_variation": flows.std() / flows.mean(),
                "gini_coefficient": gini(flows),
                "top_concentration": flows.max() / total,
            }
        )
    table = pd.DataFrame(rows)
    if table.empty:
        return table
    table = table[(table["total_to_tx"] >= 100) & (table["n_counties"] >= 5)]
    return table.sort_values("coefficient_variation", ascending=False).reset_index(drop=True)


def concentration_pairs(inflows: pd.DataFrame) -> pd.DataFrame:
    """State-to-county pairs receiving at least twice their even share."""
    df = inflows.copy()
    grouped = df.groupby("origin_state")["inbound_flow"]
    df["pct_to_county"] = df["inbound_flow"] / grouped.transform("sum")
    df["concentration_ratio"] = df["pct_to_county"] / (1 / grouped.transform("count"))
    df = df[(df["concentration_ratio"] >= 2) & (df["inbound_flow"] >= 100)]
    return df.sort_values("concentration_ratio", ascending=False).reset_index(drop=True)


def metro_preferences(inflows: pd.DataFrame) -> pd.DataFrame:
    metro = (
        inflows.groupby(["origin_state", "metro_area"])["inbound_flow"]
        .sum()
        .rename("metro_flow")
        .reset_index()
    )
    metro["total_flow"] = metro.groupby("origin_state")["metro_flow"].transform("sum")
    metro["pct_to_metro"] = metro["metro_flow"] / metro["total_flow"]
    metro = metro[metro["total_flow"] >= 200]
    top = (
        metro.sort_values(["origin_state", "pct_to_metro"], ascending=[True, False])
        .groupby("origin_state")
        .head(1)
        .rename(columns={"metro_area": "top_metro", "pct_to_metro": "top_metro_pct"})
    )
    top["strong_preference"] = top["top_metro_pct"] >= 0.6
    return top[["origin_state", "top_metro", "top_metro_pct", "total_flow", "strong_preference"]].sort_values(
        "top_metro_pct", ascending=False
    ).reset_index(drop=True)


class MigrationSymmetry(Analysis):
    name = "migration-symmetry-breaking"
    title = "Migration Symmetry Breaking"
    category = "whimsical"
    description = (
        "Measures how unevenly each origin state's movers split across ten major "
        "Texas counties, finding states with a strong single-county preference."
    )
    keywords = ["migration", "flows", "texas", "asymmetry", "gini", "movers"]

    def __init__(self, year: int = 2020, **kwargs) -> None:
        super().__init__(**kwargs)
        self.year = year

    async def fetch(self, client: CensusClient) -> dict[str, pd.DataFrame]:
        geoids = TEXAS_DESTINATIONS["geoid"].tolist()
        flows = await client.load_all(
            [
                lambda g=g: client.get_flows(g[:2], county=g[2:], year=self.year)
                for g in geoids
            ],
            show_progress=client.config.analysis.show_progress,
        )
        return {"flows": pd.concat(flows, ignore_index=True)}

    def compute(self, data: dict[str, pd.DataFrame]) -> AnalysisResult:
        result = self.new_result()
        inflows = state_inflows(data["flows"])
        result.data = inflows

        asymmetry = state_asymmetry(inflows)
        pairs = concentration_pairs(inflows)
        preferences = metro_preferences(inflows)
        result.tables["state_asymmetry"] = asymmetry
        result.tables["concentration_pairs"] = pairs
        result.tables["metro_preferences"] = preferences

        result.summary = {
            "total_migrants": int(inflows["inbound_flow"].sum()),
            "origin_states": int(inflows["origin_state"].nunique()),
            "destination_counties": int(inflows["dest_geoid"].nunique()),
            "states_analyzed": len(asymmetry),
            "mean_cv": float(asymmetry["coefficient_variation"].mean()) if len(asymmetry) else np.nan,
            "high_asymmetry_states": int((asymmetry["coefficient_variation"] > 1.0).sum())
            if len(asymmetry)
            else 0,
            "strong_metro_preferences": int(preferences["strong_preference"].sum()),
        }

        if asymmetry.empty:
            result.findings.append("No origin state sent at least 100 movers to 5 counties")
            return result

        for _, row in asymmetry.head(5).iterrows():
            favorite = pairs[pairs["origin_state"] == row["origin_state"]]
            text = f"{row['origin_state']} (CV = {row['coefficient_variation']:.2f})"
            if len(favorite):
                text += f" most prefers {favorite.iloc[0]['county_name']} County"
            result.findings.append(text)

        result.add_test(
            safe_test(
                cor_test,
                np.log10(asymmetry["total_to_tx"]),
                asymmetry["coefficient_variation"],
                name="log total flow vs asymmetry",
                findings=result.findings,
            )
        )

        regional = asymmetry.assign(
            region=asymmetry["origin_state"].map(
                lambda s: next((r for r, states in REGIONS.items() if s in states), None)
            )
        ).dropna(subset=["region"])
        result.tables["regions"] = (
            regional.groupby("region")["coefficient_variation"]
            .agg(states="count", mean_cv="mean")
            .reset_index()
        )
        counts = regional["region"].value_counts()
        if len(counts) == len(REGIONS) and (counts >= 2).all():
            result.add_test(
                safe_test(
                    anova_oneway,
                    regional,
                    "coefficient_variation",
                    "region",
                    name="asymmetry by region",
                )
            )
        else:
            result.findings.append("Not every region has two states; regional ANOVA skipped")
        return result

    def figures(self, result: AnalysisResult) -> dict[str, Figure]:
        asymmetry = result.tables.get("state_asymmetry")
        if asymmetry is None or asymmetry.empty:
            return {}
        return {
            "asymmetry_distribution": plots.histogram(
                asymmetry,
                "coefficient_variation",
                "State Migration Asymmetry to Texas",
                bins=15,
                xlabel="Coefficient of variation",
            ),
            "most_asymmetric": plots.bar_chart(
                asymmetry.head(12),
                "origin_state",
                "coefficient_variation",
                "Most Asymmetric State Preferences",
                ylabel="Coefficient of variation",
                horizontal=True,
            ),
            "volume_vs_asymmetry": plots.scatter_with_trend(
                asymmetry,
                "total_to_tx",
                "coefficient_variation",
                "Migration Volume vs Destination Asymmetry",
                xlabel="Total movers to Texas",
                ylabel="Coefficient of variation",
                logx=True,
            ),
        }
