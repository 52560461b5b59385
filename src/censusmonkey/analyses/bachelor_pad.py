"""The Bachelor Pad Index.

Do PUMAs where men aged 25-39 outnumber women have more renters and
smaller homes? Sex ratios come from B01001, tenure from B25003 and unit
size from B25018/B25041, with income and median age as controls.
"""

import numpy as np
import pandas as pd
from matplotlib.figure import Figure

from censusmonkey import plots
from censusmonkey.analyses.base import Analysis, AnalysisResult
from censusmonkey.client import CensusClient
from censusmonkey.geography import get_state
from censusmonkey.stats import cor_test, safe_test, t_test

STATES = ["CA", "TX", "NY", "FL", "WA"]
PUMA = "public use microdata area"

DEMOGRAPHIC_VARIABLES = {
    "total_pop": "B01001_001",
    "total_male": "B01001_002",
    "total_female": "B01001_026",
    "male_25_29": "B01001_011",
    "male_30_34": "B01001_012",
    "male_35_39": "B01001_013",
    "female_25_29": "B01001_035",
    "female_30_34": "B01001_036",
    "female_35_39": "B01001_037",
}
HOUSING_VARIABLES = {
    "occupied_units": "B25003_001",
    "renter_occupied": "B25003_003",
    "median_rooms": "B25018_001",
    "bedroom_units": "B25041_001",
    "no_bedroom": "B25041_002",
    "one_bedroom": "B25041_003",
    "two_bedrooms": "B25041_004",
    "median_income": "B19013_001",
    "median_age": "B01002_001",
}

MALE_SKEWED = "Male-Skewed (120+)"
FEMALE_SKEWED = "Female-Skewed (<85)"
CATEGORY_ORDER = [
    MALE_SKEWED,
    "Male-Leaning (110-120)",
    "Balanced (95-110)",
    "Female-Leaning (85-95)",
    FEMALE_SKEWED,
]


def sex_ratio_category(ratio: pd.Series) -> pd.Series:
    return pd.Series(
        np.select(
            [ratio >= 120, ratio >= 110, ratio >= 95, ratio >= 85],
            CATEGORY_ORDER[:4],
            default=FEMALE_SKEWED,
        ),
        index=ratio.index,
    )


class BachelorPadIndex(Analysis):
    name = "bachelor-pad-index"
    title = "The Bachelor Pad Index"
    category = "exploratory"
    description = (
        "Tests whether PUMAs with more men than women aged 25-39 have higher "
        "rentership and smaller housing units."
    )
    keywords = ["sex ratio", "renters", "housing", "tenure", "puma", "young adults"]

    def __init__(self, states: list[str] | None = None, year: int = 2022, **kwargs) -> None:
        super().__init__(**kwargs)
        self.states = states or STATES
        self.year = year

    async def fetch(self, client: CensusClient) -> dict[str, pd.DataFrame]:
        demographics = await client.get_acs(
            PUMA, DEMOGRAPHIC_VARIABLES, year=self.year, state=self.states
        )
        housing = await client.get_acs(
            PUMA, HOUSING_VARIABLES, year=self.year, state=self.states
        )
        return {"demographics": demographics, "housing": housing}

    def compute(self, data: dict[str, pd.DataFrame]) -> AnalysisResult:
        result = self.new_result()

        demo = data["demographics"]
        df = pd.DataFrame({"GEOID": demo["GEOID"], "NAME": demo["NAME"]})
        df["total_pop"] = demo["total_popE"]
        df["male_25_39"] = demo[["male_25_29E", "male_30_34E", "male_35_39E"]].sum(axis=1)
        df["female_25_39"] = demo[["female_25_29E", "female_30_34E", "female_35_39E"]].sum(axis=1)
        df["total_25_39"] = df["male_25_39"] + df["female_25_39"]
        df["overall_sex_ratio"] = demo["total_maleE"] / demo["total_femaleE"] * 100
        df["target_sex_ratio"] = (
            df["male_25_39"] / df["female_25_39"].where(df["female_25_39"] > 0) * 100
        )
        df = df.dropna(subset=["target_sex_ratio"])
        df = df[df["total_25_39"] >= 500]
        df["sex_ratio_category"] = sex_ratio_category(df["target_sex_ratio"])

        housing = data["housing"]
        small = housing[["no_bedroomE", "one_bedroomE", "two_bedroomsE"]].sum(axis=1)
        features = pd.DataFrame(
            {
                "GEOID": housing["GEOID"],
                "renter_pct": housing["renter_occupiedE"]
                / housing["occupied_unitsE"].where(housing["occupied_unitsE"] > 0)
                * 100,
                "median_rooms": housing["median_roomsE"],
                "small_units_pct": small
                / housing["bedroom_unitsE"].where(housing["bedroom_unitsE"] > 0)
                * 100,
                "median_income": housing["median_incomeE"],
                "median_age": housing["median_ageE"],
            }
        )
        df = df.merge(features, on="GEOID", how="inner").dropna(
            subset=["renter_pct", "median_rooms", "median_income"]
        )
        df = df[df["median_income"] > 0].copy()
        df["log_median_income"] = np.log(df["median_income"])
        df["state"] = df["GEOID"].str[:2].map(lambda f: get_state(f).name)
        result.data = df

        result.summary = {
            "pumas": len(df),
            "mean_sex_ratio": float(df["target_sex_ratio"].mean()),
            "male_skewed_pumas": int((df["sex_ratio_category"] == MALE_SKEWED).sum()),
            "female_skewed_pumas": int((df["sex_ratio_category"] == FEMALE_SKEWED).sum()),
        }
        result.tables["categories"] = (
            df.groupby("sex_ratio_category")
            .agg(
                pumas=("GEOID", "count"),
                mean_renter_pct=("renter_pct", "mean"),
                mean_median_rooms=("median_rooms", "mean"),
                mean_small_units_pct=("small_units_pct", "mean"),
                mean_income=("median_income", "mean"),
            )
            .reindex([c for c in CATEGORY_ORDER if c in set(df["sex_ratio_category"])])
            .reset_index()
        )
        result.tables["most_male_skewed"] = df.nlargest(10, "target_sex_ratio")[
            ["GEOID", "NAME", "target_sex_ratio", "renter_pct", "median_rooms"]
        ].reset_index(drop=True)

        rent = None
        for column, label in (
            ("renter_pct", "renter share"),
            ("median_rooms", "median rooms"),
            ("small_units_pct", "small unit share"),
            ("median_income", "median income"),
        ):
            test = result.add_test(
                safe_test(
                    cor_test,
                    df["target_sex_ratio"],
                    df[column],
                    name=f"sex ratio vs {label}",
                    findings=result.findings,
                )
            )
            if column == "renter_pct":
                rent = test

        male = df[df["sex_ratio_category"] == MALE_SKEWED]
        female = df[df["sex_ratio_category"] == FEMALE_SKEWED]
        if len(male) >= 3 and len(female) >= 3:
            result.add_test(
                t_test(male["renter_pct"], female["renter_pct"], name="renter share: male vs female skewed")
            )
            result.add_test(
                t_test(male["median_rooms"], female["median_rooms"], name="median rooms: male vs female skewed")
            )
        else:
            result.findings.append(
                f"Only {len(male)} male-skewed and {len(female)} female-skewed PUMAs; t-tests skipped"
            )

        controls = "target_sex_ratio + log_median_income + median_age"
        if df["state"].nunique() > 1:
            controls += " + C(state)"
        result.fit_model("renter share", f"renter_pct ~ {controls}", df)
        result.fit_model("median rooms", f"median_rooms ~ {controls}", df)

        if rent is not None:
            if rent.significant(self.alpha) and rent.estimate > 0:
                verdict = "Supported: male-skewed PUMAs rent more"
            elif rent.significant(self.alpha):
                verdict = "Reversed: male-skewed PUMAs rent less"
            else:
                verdict = "Not supported: sex ratio and rentership are unrelated"
            result.findings.insert(
                0, f"{verdict} (r = {rent.estimate:.3f}, p = {rent.p_value:.3g})"
            )
        return result

    def figures(self, result: AnalysisResult) -> dict[str, Figure]:
        df = result.data
        if df is None or df.empty:
            return {}
        return {
            "sex_ratio_distribution": plots.histogram(
                df,
                "target_sex_ratio",
                "Sex Ratios, Ages 25-39",
                xlabel="Males per 100 females",
                vline=100,
            ),
            "sex_ratio_vs_renters": plots.scatter_with_trend(
                df,
                "target_sex_ratio",
                "renter_pct",
                "Sex Ratio vs Rental Rate",
                xlabel="Males per 100 females (25-39)",
                ylabel="Renter-occupied (%)",
                hue="state",
            ),
            "renters_by_category": plots.boxplot(
                df,
                "sex_ratio_category",
                "renter_pct",
                "Rental Rates by Sex Ratio Category",
                ylabel="Renter-occupied (%)",
                order=[c for c in CATEGORY_ORDER if c in set(df["sex_ratio_category"])],
            ),
        }
