"""Remote-work reshuffling: did anomalous post-2020 growth bring graduates?

Compares each county's mean population before (2015-2019) and after
(2021-2023) the pandemic, flags counties whose growth is anomalous by
z-score, and tests whether those counties gained college-educated
residents between the 2019 and 2022 ACS.
"""

import numpy as np
import pandas as pd
from matplotlib.figure import Figure

from censusmonkey import plots
from censusmonkey.analyses.base import Analysis, AnalysisResult
from censusmonkey.client import CensusClient
from censusmonkey.geography import CONTINENTAL_STATE_FIPS, split_name
from censusmonkey.stats import cor_test, safe_test, t_test, zscore

PRE_YEARS = [2015, 2016, 2017, 2018, 2019]
POST_YEARS = [2021, 2022, 2023]

EDUCATION_VARIABLES = {
    "total_25plus": "B15003_001",
    "bachelors": "B15003_022",
    "masters": "B15003_023",
    "professional": "B15003_024",
    "doctorate": "B15003_025",
}


def growth_category(z: pd.Series) -> pd.Series:
    return pd.Series(
        np.select(
            [z >= 2, z >= 1, z >= -1, z >= -2],
            [
                "High Anomalous Growth",
                "Moderate Anomalous Growth",
                "Normal Growth",
                "Moderate Decline",
            ],
            default="High Decline",
        ),
        index=z.index,
    )


def period_growth(population: pd.DataFrame) -> pd.DataFrame:
    """Pre/post period means per county and the growth between them.

    A county needs at least two years in each period.
    """
    pre_years = sorted(population.loc[population["year"] <= 2019, "year"].unique())
    post_years = sorted(population.loc[population["year"] >= 2021, "year"].unique())

    def _period(years: list[int], label: str) -> pd.DataFrame:
        subset = population[population["year"].isin(years)]
        summary = subset.groupby("GEOID")["population"].agg(["mean", "count"])
        summary = summary[summary["count"] >= 2]
        return summary.rename(columns={"mean": f"{label}_pop", "count": f"{label}_years"})

    growth = _period(pre_years, "pre").join(_period(post_years, "post"), how="inner")
    years_diff = np.mean(post_years) - np.mean(pre_years) if pre_years and post_years else np.nan

    growth["total_growth_rate"] = (growth["post_pop"] - growth["pre_pop"]) / growth["pre_pop"]
    growth["total_growth_pct"] = growth["total_growth_rate"] * 100
    growth["annual_growth_pct"] = (
        (growth["post_pop"] / growth["pre_pop"]) ** (1 / years_diff) - 1
    ) * 100
    growth["growth_z"] = zscore(growth["total_growth_rate"])
    growth["growth_category"] = growth_category(growth["growth_z"])
    growth["anomalous_growth"] = growth["growth_z"] >= 2
    return growth.reset_index()


def college_share(education: pd.DataFrame) -> pd.Series:
    bachelors_plus = education[
        ["bachelorsE", "mastersE", "professionalE", "doctorateE"]
    ].sum(axis=1, min_count=4)
    total = education["total_25plusE"]
    return (bachelors_plus / total.where(total > 0)) * 100


class GreatDispersion(Analysis):
    name = "great-dispersion"
    title = "The Great Dispersion"
    category = "serious"
    description = (
        "Tests whether counties with anomalous post-pandemic population growth "
        "saw larger increases in college-educated residents, a proxy for remote work."
    )
    keywords = ["remote work", "pandemic", "migration", "education", "population", "county"]

    async def fetch(self, client: CensusClient) -> dict[str, pd.DataFrame]:
        years = PRE_YEARS + POST_YEARS
        jobs = [lambda y=y: client.get_estimates("county", year=y) for y in years]
        jobs += [
            lambda y=y: client.get_acs("county", EDUCATION_VARIABLES, year=y)
            for y in (2019, 2022)
        ]
        results = await client.load_all(
            jobs, show_progress=client.config.analysis.show_progress
        )
        population = pd.concat(results[: len(years)], ignore_index=True)
        return {
            "population": population,
            "education_2019": results[-2],
            "education_2022": results[-1],
        }

    def compute(self, data: dict[str, pd.DataFrame]) -> AnalysisResult:
        result = self.new_result()

        population = data["population"].dropna(subset=["population"])
        population = population[
            (population["population"] >= 1000)
            & population["GEOID"].str[:2].isin(CONTINENTAL_STATE_FIPS)
        ]
        growth = period_growth(population)

        latest = population[population["year"] == population["year"].max()]
        growth = growth.merge(
            latest[["GEOID", "NAME", "population"]].rename(
                columns={"population": "pop_recent"}
            ),
            on="GEOID",
            how="left",
        )

        education = (
            data["education_2019"][["GEOID"]]
            .assign(college_pct_2019=college_share(data["education_2019"]))
            .merge(
                data["education_2022"][["GEOID"]].assign(
                    college_pct_2022=college_share(data["education_2022"])
                ),
                on="GEOID",
            )
        )
        education["college_change"] = (
            education["college_pct_2022"] - education["college_pct_2019"]
        )

        df = growth.merge(education, on="GEOID", how="inner").dropna(
            subset=["growth_z", "college_change", "pop_recent"]
        )
        df["log_pop_recent"] = np.log(df["pop_recent"])
        result.data = df

        result.summary = {
            "counties": len(df),
            "anomalous_growth_counties": int(df["anomalous_growth"].sum()),
            "mean_growth_pct": float(df["total_growth_pct"].mean()),
            "sd_growth_pct": float(df["total_growth_pct"].std()),
            "mean_college_change_pp": float(df["college_change"].mean()),
        }

        columns = ["GEOID", "NAME", "total_growth_pct", "growth_z", "college_change", "pop_recent"]
        result.tables["top_growth"] = df.nlargest(15, "growth_z")[columns].reset_index(drop=True)
        result.tables["top_decline"] = df.nsmallest(15, "growth_z")[columns].reset_index(drop=True)
        result.tables["growth_categories"] = (
            df.groupby("growth_category")
            .agg(
                counties=("GEOID", "count"),
                mean_growth_pct=("total_growth_pct", "mean"),
                mean_college_change=("college_change", "mean"),
            )
            .reset_index()
        )
        states = df.assign(state=df["NAME"].map(lambda n: split_name(n)[1]))
        result.tables["states"] = (
            states.groupby("state")
            .agg(
                counties=("GEOID", "count"),
                mean_growth_pct=("total_growth_pct", "mean"),
                anomalous=("anomalous_growth", "sum"),
                mean_college_change=("college_change", "mean"),
            )
            .sort_values("mean_growth_pct", ascending=False)
            .reset_index()
        )

        if len(df) <= 50:
            result.findings.append(
                f"Only {len(df)} counties have both growth and education data; tests skipped"
            )
            return result

        correlation = result.add_test(
            safe_test(
                cor_test,
                df["growth_z"],
                df["college_change"],
                name="growth anomaly vs college change",
            )
        )
        result.add_test(
            safe_test(
                cor_test,
                df["total_growth_pct"],
                df["college_change"],
                name="total growth vs college change",
            )
        )
        result.fit_model(
            "college change", "college_change ~ growth_z + log_pop_recent", df
        )

        high = df[df["anomalous_growth"]]
        normal = df[df["growth_category"] == "Normal Growth"]
        if len(high) > 3 and len(normal) > 10:
            comparison = result.add_test(
                t_test(
                    high["college_change"],
                    normal["college_change"],
                    name="college change: high anomalous vs normal",
                )
            )
            result.findings.append(
                f"High-growth counties changed {comparison.extra['mean_a']:.2f} pp in "
                f"college share vs {comparison.extra['mean_b']:.2f} pp for normal-growth counties"
            )
        else:
            result.findings.append(
                f"Too few anomalous ({len(high)}) or normal ({len(normal)}) counties to compare"
            )

        if correlation is not None:
            supported = correlation.significant(self.alpha) and correlation.estimate > 0
            result.findings.insert(
                0,
                ("Supported" if supported else "Not supported")
                + f": growth anomaly and college change correlate at r = {correlation.estimate:.3f}"
                f" (p = {correlation.p_value:.3g})",
            )
        return result

    def figures(self, result: AnalysisResult) -> dict[str, Figure]:
        df = result.data
        if df is None or df.empty:
            return {}
        threshold = df["total_growth_pct"].mean() + 2 * df["total_growth_pct"].std()
        return {
            "growth_distribution": plots.histogram(
                df,
                "total_growth_pct",
                "County Population Growth, Pre vs Post Pandemic",
                xlabel="Total growth (%)",
                vline=threshold,
            ),
            "growth_vs_college": plots.scatter_with_trend(
                df,
                "total_growth_pct",
                "college_change",
                "Population Growth vs College Education Change",
                xlabel="Total population growth (%)",
                ylabel="Change in college share (pp)",
            ),
        }
