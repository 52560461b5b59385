"""Seniors living alone in houses built for families.

Tracks the share of households that are a single person aged 65+ between
the 2010 and 2020 ACS and compares its growth with the bedroom mix of the
local housing stock.
"""

import numpy as np
import pandas as pd
from matplotlib.figure import Figure

from censusmonkey import plots
from censusmonkey.analyses.base import Analysis, AnalysisResult
from censusmonkey.client import CensusClient
from censusmonkey.geography import split_name
from censusmonkey.stats import cor_test, safe_test, t_test

HOUSEHOLD_VARIABLES = {
    "total_households": "B11007_001",
    "solo_households": "B11007_002",
    "solo_male_65plus": "B11007_008",
    "solo_female_65plus": "B11007_017",
}
BEDROOM_VARIABLES = {f"bedrooms_{i}": f"B25041_00{i}" for i in range(1, 8)}
STRUCTURE_VARIABLES = {
    "total_structures": "B25024_001",
    "detached": "B25024_002",
    "attached": "B25024_003",
}

HIGH_GROWTH = "High Growth (3%+)"


def _pct(part: pd.Series, whole: pd.Series) -> pd.Series:
    return part / whole.where(whole > 0) * 100


def solo_senior_share(households: pd.DataFrame) -> pd.DataFrame:
    solo = households["solo_male_65plusE"] + households["solo_female_65plusE"]
    return pd.DataFrame(
        {
            "GEOID": households["GEOID"],
            "total_households": households["total_householdsE"],
            "solo_65plus": solo,
            "solo_65plus_pct": _pct(solo, households["total_householdsE"]),
        }
    )


def growth_category(change: pd.Series) -> pd.Series:
    return pd.Series(
        np.select(
            [change >= 3, change >= 1.5, change >= 0],
            [HIGH_GROWTH, "Moderate Growth (1.5-3%)", "Low Growth (0-1.5%)"],
            default="Decline",
        ),
        index=change.index,
    )


def mismatch_category(index: pd.Series) -> pd.Series:
    return pd.Series(
        np.select(
            [index >= 2, index >= 1, index >= 0.5],
            ["Severe Mismatch", "Moderate Mismatch", "Mild Mismatch"],
            default="No Mismatch",
        ),
        index=index.index,
    )


def housing_mix(bedrooms: pd.DataFrame, structures: pd.DataFrame) -> pd.DataFrame:
    small = bedrooms[["bedrooms_2E", "bedrooms_3E", "bedrooms_4E"]].sum(axis=1)
    large = bedrooms[["bedrooms_5E", "bedrooms_6E", "bedrooms_7E"]].sum(axis=1)
    total = bedrooms["bedrooms_1E"]
    mix = pd.DataFrame(
        {
            "GEOID": bedrooms["GEOID"],
            "total_units": total,
            "small_units_pct": _pct(small, total),
            "large_units_pct": _pct(large, total),
        }
    )
    single_family = structures.assign(
        single_family_pct=_pct(
            structures["detachedE"] + structures["attachedE"],
            structures["total_structuresE"],
        )
    )[["GEOID", "single_family_pct"]]
    return mix.merge(single_family, on="GEOID", how="left")


class SoloBoomers(Analysis):
    name = "solo-boomers"
    title = "Solo Boomers"
    category = "serious"
    description = (
        "Tracks growth in single-person 65+ households from 2010 to 2020 and tests "
        "whether it concentrates where the housing stock is dominated by large homes."
    )
    keywords = ["aging", "seniors", "households", "living alone", "housing", "bedrooms"]

    def __init__(self, states: list[str] | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.states = states if states is not None else ["CA"]

    async def fetch(self, client: CensusClient) -> dict[str, pd.DataFrame]:
        state = self.states or None
        households_2010, households_2020, bedrooms, structures = await client.load_all(
            [
                lambda: client.get_acs("county", HOUSEHOLD_VARIABLES, year=2010, state=state),
                lambda: client.get_acs("county", HOUSEHOLD_VARIABLES, year=2020, state=state),
                lambda: client.get_acs("county", BEDROOM_VARIABLES, year=2020, state=state),
                lambda: client.get_acs("county", STRUCTURE_VARIABLES, year=2020, state=state),
            ]
        )
        return {
            "households_2010": households_2010,
            "households_2020": households_2020,
            "bedrooms": bedrooms,
            "structures": structures,
        }

    def compute(self, data: dict[str, pd.DataFrame]) -> AnalysisResult:
        result = self.new_result()

        current = solo_senior_share(data["households_2020"]).merge(
            data["households_2020"][["GEOID", "NAME"]], on="GEOID"
        )
        previous = solo_senior_share(data["households_2010"]).add_suffix("_2010")
        df = current.merge(previous, left_on="GEOID", right_on="GEOID_2010", how="inner")
        df = df.drop(columns=["GEOID_2010"])

        df["solo_65plus_change"] = df["solo_65plus"] - df["solo_65plus_2010"]
        df["solo_65plus_pct_change"] = df["solo_65plus_pct"] - df["solo_65plus_pct_2010"]
        df["solo_65plus_growth_rate"] = _pct(df["solo_65plus_change"], df["solo_65plus_2010"])
        df = df.dropna(subset=["solo_65plus_change"])
        df["growth_category"] = growth_category(df["solo_65plus_pct_change"])

        df = df.merge(housing_mix(data["bedrooms"], data["structures"]), on="GEOID", how="left")
        df["mismatch_index"] = df["solo_65plus_pct_change"] * df["large_units_pct"] / 100
        df["supply_demand_gap"] = df["solo_65plus_pct"] - df["small_units_pct"]
        df = df.dropna(subset=["mismatch_index"])
        df["mismatch_category"] = mismatch_category(df["mismatch_index"])
        result.data = df

        total_2010 = df["solo_65plus_2010"].sum()
        total_2020 = df["solo_65plus"].sum()
        result.summary = {
            "counties": len(df),
            "solo_65plus_2010": int(total_2010),
            "solo_65plus_2020": int(total_2020),
            "solo_65plus_growth_pct": float((total_2020 / total_2010 - 1) * 100)
            if total_2010
            else np.nan,
            "mean_large_units_pct": float(df["large_units_pct"].mean()),
            "mean_supply_demand_gap": float(df["supply_demand_gap"].mean()),
            "severe_mismatch_counties": int((df["mismatch_category"] == "Severe Mismatch").sum()),
        }

        columns = [
            "GEOID",
            "NAME",
            "solo_65plus_pct",
            "solo_65plus_pct_change",
            "large_units_pct",
            "mismatch_index",
        ]
        result.tables["top_mismatch"] = df.nlargest(10, "mismatch_index")[columns].reset_index(
            drop=True
        )
        result.tables["growth_categories"] = (
            df.groupby("growth_category")
            .agg(
                counties=("GEOID", "count"),
                mean_large_units_pct=("large_units_pct", "mean"),
                mean_single_family_pct=("single_family_pct", "mean"),
                mean_solo_65plus_pct=("solo_65plus_pct", "mean"),
            )
            .reset_index()
        )
        result.tables["states"] = (
            df.assign(state=df["NAME"].map(lambda n: split_name(n)[1]))
            .groupby("state")
            .agg(
                counties=("GEOID", "count"),
                solo_65plus_2010=("solo_65plus_2010", "sum"),
                solo_65plus_2020=("solo_65plus", "sum"),
                mean_pct_change=("solo_65plus_pct_change", "mean"),
                mean_mismatch=("mismatch_index", "mean"),
            )
            .reset_index()
        )

        result.add_test(
            safe_test(
                cor_test,
                df["solo_65plus_pct"],
                df["large_units_pct"],
                name="solo 65+ share vs large housing share",
                findings=result.findings,
            )
        )
        change = result.add_test(
            safe_test(
                cor_test,
                df["solo_65plus_pct_change"],
                df["large_units_pct"],
                name="solo 65+ change vs large housing share",
                findings=result.findings,
            )
        )

        high = df[df["growth_category"] == HIGH_GROWTH]
        other = df[df["growth_category"] != HIGH_GROWTH]
        if len(high) >= 5 and len(other) >= 5:
            result.add_test(
                t_test(
                    high["large_units_pct"],
                    other["large_units_pct"],
                    name="large housing share: high growth vs others",
                )
            )
        else:
            result.findings.append(
                f"Only {len(high)} high-growth and {len(other)} other counties; t-test skipped"
            )

        if change is not None:
            if change.significant(self.alpha):
                direction = "more" if change.estimate > 0 else "less"
                result.findings.insert(
                    0,
                    f"Solo senior households grew {direction} where large homes dominate "
                    f"(r = {change.estimate:.3f}, p = {change.p_value:.3g})",
                )
            else:
                result.findings.insert(
                    0, "Solo senior growth shows no clear link to the share of large homes"
                )
        return result

    def figures(self, result: AnalysisResult) -> dict[str, Figure]:
        df = result.data
        if df is None or df.empty:
            return {}
        gap = df.nlargest(15, "supply_demand_gap").assign(
            county=lambda t: t["NAME"].map(lambda n: split_name(n)[0])
        )
        return {
            "pct_change": plots.histogram(
                df,
                "solo_65plus_pct_change",
                "Change in Solo 65+ Household Share, 2010-2020",
                xlabel="Change (percentage points)",
                vline=df["solo_65plus_pct_change"].mean(),
            ),
            "change_vs_large_units": plots.scatter_with_trend(
                df,
                "large_units_pct",
                "solo_65plus_pct_change",
                "Solo Senior Growth vs Large Housing Stock",
                xlabel="Housing units with 3+ bedrooms (%)",
                ylabel="Change in solo 65+ share (pp)",
            ),
            "supply_demand_gap": plots.bar_chart(
                gap,
                "county",
                "supply_demand_gap",
                "Largest Gaps Between Solo Seniors and Small Units",
                ylabel="Solo 65+ share minus small unit share (pp)",
                horizontal=True,
            ),
        }
