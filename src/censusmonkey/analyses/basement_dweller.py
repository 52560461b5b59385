"""The Basement Dweller Index: dating-market imbalance and men living alone.

Relates the sex ratio of 22-35 year olds in each PUMA to the share of male
householders who live alone, controlling for income and education.
"""

import pandas as pd
from matplotlib.figure import Figure

from censusmonkey import plots
from censusmonkey.analyses.base import Analysis, AnalysisResult
from censusmonkey.client import CensusClient
from censusmonkey.stats import cor_test, ntile, safe_test

PUMA = "public use microdata area"

VARIABLES = {
    "total_pop": "B01001_001",
    "male_22_24": "B01001_010",
    "male_25_29": "B01001_011",
    "male_30_34": "B01001_012",
    "male_35_39": "B01001_013",
    "female_22_24": "B01001_034",
    "female_25_29": "B01001_035",
    "female_30_34": "B01001_036",
    "female_35_39": "B01001_037",
    "male_householders": "B09019_002",
    "male_alone": "B09019_005",
    "female_householders": "B09019_007",
    "female_alone": "B09019_008",
}
CONTROL_VARIABLES = {
    "median_income": "B19013_001",
    "bachelors": "B15003_022",
    "masters": "B15003_023",
    "professional": "B15003_024",
    "doctorate": "B15003_025",
}

# Share of the 35-39 bracket counted as 35 years old
AGE_35_SHARE = 0.2


def sex_ratios(df: pd.DataFrame) -> pd.DataFrame:
    """Sex ratio of 22-35 year olds plus two alternative age windows."""
    males = df["male_22_24E"] + df["male_25_29E"] + df["male_30_34E"]
    females = df["female_22_24E"] + df["female_25_29E"] + df["female_30_34E"]
    males_22_35 = males + df["male_35_39E"] * AGE_35_SHARE
    females_22_35 = females + df["female_35_39E"] * AGE_35_SHARE
    return pd.DataFrame(
        {
            "males_22_35": males_22_35,
            "females_22_35": females_22_35,
            "sex_ratio": males_22_35 / females_22_35 * 100,
            "sex_ratio_22_36": (males_22_35 + df["male_35_39E"] * AGE_35_SHARE)
            / (females_22_35 + df["female_35_39E"] * AGE_35_SHARE)
            * 100,
            "sex_ratio_25_34": (df["male_25_29E"] + df["male_30_34E"])
            / (df["female_25_29E"] + df["female_30_34E"])
            * 100,
        },
        index=df.index,
    )


class BasementDwellerIndex(Analysis):
    name = "basement-dweller-index"
    title = "The Basement Dweller Index"
    category = "whimsical"
    description = (
        "Tests whether PUMAs with a male surplus among 22-35 year olds have more "
        "men living alone, and ranks bachelor hotspots."
    )
    keywords = ["sex ratio", "living alone", "bachelors", "puma", "dating", "households"]

    def __init__(self, states: list[str] | None = None, year: int = 2022, **kwargs) -> None:
        super().__init__(**kwargs)
        self.states = states or ["CA"]
        self.year = year

    async def fetch(self, client: CensusClient) -> dict[str, pd.DataFrame]:
        households, controls = await client.load_all(
            [
                lambda: client.get_acs(PUMA, VARIABLES, year=self.year, state=self.states),
                lambda: client.get_acs(
                    PUMA, CONTROL_VARIABLES, year=self.year, state=self.states
                ),
            ]
        )
        return {"households": households, "controls": controls}

    def compute(self, data: dict[str, pd.DataFrame]) -> AnalysisResult:
        result = self.new_result()
        raw = data["households"]

        df = pd.concat([raw[["GEOID", "NAME"]], sex_ratios(raw)], axis=1)
        df["total_pop"] = raw["total_popE"]
        df["male_living_alone_rate"] = (
            raw["male_aloneE"]
            / raw["male_householdersE"].where(raw["male_householdersE"] > 0)
            * 100
        )
        df["female_living_alone_rate"] = (
            raw["female_aloneE"]
            / raw["female_householdersE"].where(raw["female_householdersE"] > 0)
            * 100
        )
        df = df.dropna(subset=["sex_ratio", "male_living_alone_rate"])
        df = df[df["sex_ratio"].between(50, 200)]

        controls = data["controls"]
        college = controls[["bachelorsE", "mastersE", "professionalE", "doctorateE"]].sum(axis=1)
        df = df.merge(
            pd.DataFrame(
                {
                    "GEOID": controls["GEOID"],
                    "median_income": controls["median_incomeE"],
                    "college_count": college,
                }
            ),
            on="GEOID",
            how="left",
        )
        df["college_rate"] = df["college_count"] / df["total_pop"] * 100
        df["income_thousands"] = df["median_income"] / 1000

        df["sex_ratio_percentile"] = ntile(df["sex_ratio"], 100)
        df["male_alone_percentile"] = ntile(df["male_living_alone_rate"], 100)
        df["hotspot_score"] = df["sex_ratio_percentile"] + df["male_alone_percentile"]
        result.data = df

        result.summary = {
            "pumas": len(df),
            "mean_sex_ratio": float(df["sex_ratio"].mean()),
            "mean_male_living_alone_pct": float(df["male_living_alone_rate"].mean()),
            "mean_female_living_alone_pct": float(df["female_living_alone_rate"].mean()),
        }
        columns = ["GEOID", "NAME", "sex_ratio", "male_living_alone_rate", "hotspot_score"]
        result.tables["hotspots"] = (
            df.sort_values("hotspot_score", ascending=False).head(20)[columns].reset_index(drop=True)
        )
        result.tables["extreme_male_surplus"] = df[
            df["sex_ratio"] > df["sex_ratio"].quantile(0.95)
        ].sort_values("sex_ratio", ascending=False)[columns].reset_index(drop=True)

        main = result.add_test(
            safe_test(
                cor_test,
                df["sex_ratio"],
                df["male_living_alone_rate"],
                name="sex ratio vs male living alone",
                findings=result.findings,
            )
        )
        result.add_test(
            safe_test(
                cor_test,
                df["sex_ratio"],
                df["female_living_alone_rate"],
                name="sex ratio vs female living alone",
                findings=result.findings,
            )
        )
        for column, label in (("sex_ratio_22_36", "22-36"), ("sex_ratio_25_34", "25-34")):
            result.add_test(
                safe_test(
                    cor_test,
                    df[column],
                    df["male_living_alone_rate"],
                    name=f"sex ratio {label} vs male living alone",
                )
            )

        modeled = df.dropna(subset=["median_income", "college_rate"])
        result.fit_model("baseline", "male_living_alone_rate ~ sex_ratio", df)
        controlled = result.fit_model(
            "with controls",
            "male_living_alone_rate ~ sex_ratio + income_thousands + college_rate",
            modeled,
        )
        result.fit_model(
            "quadratic",
            "male_living_alone_rate ~ sex_ratio + I(sex_ratio ** 2) + income_thousands + college_rate",
            modeled,
        )

        if controlled is not None:
            cooks = controlled.get_influence().cooks_distance[0]
            threshold = 4 / len(cooks)
            kept = modeled.loc[controlled.model.data.row_labels[cooks <= threshold]]
            result.summary["influential_pumas"] = int((cooks > threshold).sum())
            if len(kept) >= 10:
                result.fit_model(
                    "without influential points",
                    "male_living_alone_rate ~ sex_ratio + income_thousands + college_rate",
                    kept,
                )
                residuals = modeled.loc[controlled.model.data.row_labels].assign(
                    residual=controlled.resid
                )
                result.tables["residuals"] = residuals[["GEOID", "sex_ratio", "residual"]]

        if main is not None:
            verdict = "more" if main.estimate > 0 else "fewer"
            significance = "significant" if main.significant(self.alpha) else "not significant"
            result.findings.insert(
                0,
                f"Male-surplus PUMAs have {verdict} men living alone "
                f"(r = {main.estimate:.3f}, {significance}, p = {main.p_value:.3g})",
            )
        return result

    def figures(self, result: AnalysisResult) -> dict[str, Figure]:
        df = result.data
        if df is None or df.empty:
            return {}
        figures = {
            "sex_ratio_vs_living_alone": plots.scatter_with_trend(
                df,
                "sex_ratio",
                "male_living_alone_rate",
                "Sex Ratio vs Male Living Alone Rate",
                xlabel="Males per 100 females (22-35)",
                ylabel="Male householders living alone (%)",
            ),
            "sex_ratio_distribution": plots.histogram(
                df,
                "sex_ratio",
                "Sex Ratio Distribution, Ages 22-35",
                xlabel="Males per 100 females",
                vline=100,
            ),
        }
        if "residuals" in result.tables:
            figures["controlled_residuals"] = plots.scatter_with_trend(
                result.tables["residuals"],
                "sex_ratio",
                "residual",
                "Living Alone After Income and Education Controls",
                xlabel="Males per 100 females (22-35)",
                ylabel="Residual male living alone rate",
            )
        return figures
