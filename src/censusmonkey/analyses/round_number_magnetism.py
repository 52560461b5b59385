"""Do county populations cluster around round numbers?

Counties near 50,000 or 100,000 residents gain eligibility for programs and
bragging rights. This report measures how populations sit relative to
round and "psychological" thresholds, whether counts bunch just above
them, and whether growth changes as a milestone comes into reach.
"""

import numpy as np
import pandas as pd
from matplotlib.figure import Figure

from censusmonkey import plots
from censusmonkey.analyses.base import Analysis, AnalysisResult
from censusmonkey.client import CensusClient
from censusmonkey.geography import split_name
from censusmonkey.stats import anova_oneway, chisq_uniform, safe_test

ROUND_THRESHOLDS = [10_000, 25_000, 50_000, 100_000, 250_000, 500_000, 1_000_000]
PSYCHOLOGICAL_NUMBERS = [
    7_500,
    12_500,
    15_000,
    20_000,
    30_000,
    40_000,
    60_000,
    75_000,
    125_000,
    150_000,
    200_000,
    300_000,
    400_000,
    600_000,
    750_000,
]
YEARS = [2010, 2015, 2018, 2019, 2020, 2021, 2022]

THRESHOLD_TOLERANCE = 0.05
APPROACH_WINDOW = 0.10
PRESSURE_ZONES = [
    (0.02, "Critical (<=2%)"),
    (0.05, "High (2-5%)"),
    (0.10, "Moderate (5-10%)"),
    (0.20, "Low (10-20%)"),
]
POSITION_BINS = np.round(np.arange(-0.5, 0.5001, 0.05), 2)


def _matrix(population: pd.Series, thresholds: list[int]) -> tuple[np.ndarray, np.ndarray]:
    pop = population.to_numpy(dtype=float)[:, None]
    return pop, np.asarray(thresholds, dtype=float)[None, :]


def distance_to_round(population: pd.Series, thresholds: list[int]) -> pd.Series:
    """Distance to the nearest threshold as a share of the population."""
    pop, t = _matrix(population, thresholds)
    return pd.Series(np.abs(pop - t).min(axis=1) / pop[:, 0], index=population.index)


def closest_threshold(population: pd.Series, thresholds: list[int]) -> pd.Series:
    pop, t = _matrix(population, thresholds)
    nearest = np.abs(pop - t).argmin(axis=1)
    return pd.Series(np.asarray(thresholds)[nearest], index=population.index)


def approaching_milestone(
    population: pd.Series, thresholds: list[int], window: float = APPROACH_WINDOW
) -> pd.Series:
    """True when a population sits within ``window`` below any threshold."""
    pop, t = _matrix(population, thresholds)
    return pd.Series(((pop >= t * (1 - window)) & (pop < t)).any(axis=1), index=population.index)


def crossed_milestone(
    current: pd.Series, previous: pd.Series, thresholds: list[int]
) -> pd.Series:
    """True when a threshold was crossed upward since the previous year."""
    curr, t = _matrix(current, thresholds)
    prev = previous.to_numpy(dtype=float)[:, None]
    crossed = ((prev < t) & (curr >= t)).any(axis=1)
    return pd.Series(crossed & ~np.isnan(prev[:, 0]), index=current.index)


def magnetic_pull(population: pd.Series, thresholds: list[int]) -> pd.Series:
    """1 - gap to the next threshold above, relative to that threshold."""
    pop, t = _matrix(population, thresholds)
    above = np.where(t > pop, t, np.inf)
    nearest_above = above.min(axis=1)
    pull = 1 - (nearest_above - pop[:, 0]) / nearest_above
    return pd.Series(np.where(np.isinf(nearest_above), np.nan, pull), index=population.index)


def psychological_pressure(distance: pd.Series) -> pd.Series:
    labels = pd.Series("Minimal (>20%)", index=distance.index)
    for limit, label in reversed(PRESSURE_ZONES):
        labels = labels.mask(distance <= limit, label)
    return labels


def size_category(population: pd.Series) -> pd.Series:
    return pd.cut(
        population,
        bins=[-np.inf, 25_000, 100_000, 500_000, np.inf],
        labels=[
            "Small (<25k)",
            "Medium (25k-100k)",
            "Large (100k-500k)",
            "Very Large (500k+)",
        ],
        right=False,
    ).astype(str)


def add_growth_metrics(population: pd.DataFrame) -> pd.DataFrame:
    """Year-over-observation growth per county, with infinities blanked."""
    df = population.sort_values(["GEOID", "year"]).copy()
    grouped = df.groupby("GEOID")["population"]
    df["pop_lag"] = grouped.shift(1)
    df["pop_lag2"] = grouped.shift(2)
    df["growth_rate"] = (df["population"] - df["pop_lag"]) / df["pop_lag"]
    df["growth_rate_2yr"] = (df["population"] - df["pop_lag2"]) / df["pop_lag2"] / 2
    df["absolute_growth"] = df["population"] - df["pop_lag"]
    df["acceleration"] = df["growth_rate"] - df.groupby("GEOID")["growth_rate"].shift(1)
    for column in ("growth_rate", "growth_rate_2yr", "acceleration"):
        df[column] = df[column].replace([np.inf, -np.inf], np.nan)
    return df


def bunching_table(population: pd.Series, thresholds: list[int]) -> pd.DataFrame:
    """Observed vs density-implied counts in narrow bands around each threshold."""
    rows = []
    for threshold in thresholds:
        counts = {
            pct: int(
                population.between(threshold * (1 - pct / 100), threshold * (1 + pct / 100)).sum()
            )
            for pct in (1, 2, 5)
        }
        nearby = population.between(threshold * 0.8, threshold * 1.2).sum()
        density = nearby / (threshold * 0.4)
        just_below = int(((population >= threshold * 0.95) & (population < threshold)).sum())
        just_above = int(((population >= threshold) & (population <= threshold * 1.05)).sum())
        ratio = just_above / max(just_below, 1)

        if ratio > 1.5:
            effect = "Strong attraction"
        elif ratio > 1.2:
            effect = "Moderate attraction"
        elif ratio < 0.8:
            effect = "Potential avoidance"
        else:
            effect = "No clear pattern"

        row = {"threshold": threshold}
        for pct, count in counts.items():
            expected = density * threshold * 2 * pct / 100
            row[f"within_{pct}pct"] = count
            row[f"expected_{pct}pct"] = expected
            row[f"excess_{pct}pct"] = count - expected
        row.update(
            just_below=just_below,
            just_above=just_above,
            bunching_ratio=ratio,
            psychological_effect=effect,
        )
        rows.append(row)
    return pd.DataFrame(rows)


def milestone_story(row: pd.Series, direction: str) -> str:
    county, state = split_name(row["NAME"])
    threshold = row["closest_threshold"]
    gap = abs(row["population"] - threshold)
    share = row["distance_to_round"]
    if direction == "approaching":
        return (
            f"{county}, {state} is approaching the {threshold:,.0f} milestone at "
            f"{row['population']:,.0f} residents ({gap:,.0f} away, {share:.2%})"
        )
    return (
        f"{county}, {state} recently crossed {threshold:,.0f} and now has "
        f"{row['population']:,.0f} residents ({gap:,.0f} above, {share:.2%} over)"
    )


class RoundNumberMagnetism(Analysis):
    name = "round-number-magnetism"
    title = "Round Number Magnetism"
    category = "whimsical"
    description = (
        "Tests whether county populations cluster near round-number milestones "
        "such as 50,000 and 100,000, and whether growth stalls or surges nearby."
    )
    keywords = ["population", "threshold", "milestone", "bunching", "county", "growth"]

    def __init__(self, years: list[int] | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.years = years or YEARS

    async def fetch(self, client: CensusClient) -> dict[str, pd.DataFrame]:
        async def _year(year: int) -> pd.DataFrame:
            if year in (2010, 2020):
                variable = "P001001" if year == 2010 else "P1_001N"
                df = await client.get_decennial(
                    "county", {"population": variable}, year=year
                )
            else:
                df = await client.get_estimates("county", year=year)
            df = df[["GEOID", "NAME", "population"]].copy()
            df["year"] = year
            return df

        frames = await client.load_all(
            [lambda y=y: _year(y) for y in self.years],
            show_progress=client.config.analysis.show_progress,
        )
        return {"population": pd.concat(frames, ignore_index=True)}

    def compute(self, data: dict[str, pd.DataFrame]) -> AnalysisResult:
        result = self.new_result()
        population = data["population"].dropna(subset=["population"])
        population = population[population["population"] > 0]

        df = add_growth_metrics(population)
        df["distance_to_round"] = distance_to_round(df["population"], ROUND_THRESHOLDS)
        df["distance_to_psychological"] = distance_to_round(
            df["population"], PSYCHOLOGICAL_NUMBERS
        )
        df["near_threshold"] = df["distance_to_round"] <= THRESHOLD_TOLERANCE
        df["closest_threshold"] = closest_threshold(df["population"], ROUND_THRESHOLDS)
        df["threshold_direction"] = np.where(
            df["population"] > df["closest_threshold"], "above", "below"
        )
        df["approaching_milestone"] = approaching_milestone(df["population"], ROUND_THRESHOLDS)
        df["magnetic_pull"] = magnetic_pull(df["population"], ROUND_THRESHOLDS)
        df["crossed_milestone"] = crossed_milestone(
            df["population"], df["pop_lag"], ROUND_THRESHOLDS
        )
        df["psychological_pressure"] = psychological_pressure(df["distance_to_round"])

        df["pressure_index"] = "Low pressure"
        df.loc[df["crossed_milestone"], "pressure_index"] = "Relief (just crossed)"
        df.loc[df["approaching_milestone"], "pressure_index"] = "Moderate pressure (approaching)"
        df.loc[
            df["near_threshold"] & (df["threshold_direction"] == "below"), "pressure_index"
        ] = "High pressure (near miss)"

        df["size_category"] = size_category(df["population"])
        for digits in (10, 100, 1000):
            df[f"is_round_{digits}"] = df["population"] % digits == 0

        df["trajectory_toward_milestone"] = np.select(
            [
                df["approaching_milestone"] & (df["growth_rate"] > 0),
                df["approaching_milestone"] & (df["growth_rate"] <= 0),
                ~df["approaching_milestone"] & (df["growth_rate"] > 0),
            ],
            ["Accelerating toward", "Stalling near", "Growing away"],
            default="Declining",
        )

        result.data = df
        result.summary = {
            "counties": int(df["GEOID"].nunique()),
            "observations": len(df),
            "years": sorted(int(y) for y in df["year"].unique()),
            "near_threshold_pct": float(df["near_threshold"].mean() * 100),
            "milestone_crossings": int(df["crossed_milestone"].sum()),
        }

        self._clustering(df, result)
        self._growth_by_pressure(df, result)
        self._regression_discontinuity(df, result)

        bunching = bunching_table(df["population"], ROUND_THRESHOLDS)
        result.tables["bunching"] = bunching
        attracted = bunching[bunching["bunching_ratio"] > 1.2]["threshold"].tolist()
        if attracted:
            result.findings.append(
                "More counties sit just above than just below "
                + ", ".join(f"{t:,}" for t in attracted)
            )

        self._digits(df, result)
        self._stories(df, result)
        return result

    def _clustering(self, df: pd.DataFrame, result: AnalysisResult) -> None:
        scales = {
            "Round thresholds": ROUND_THRESHOLDS,
            "Psychological numbers": PSYCHOLOGICAL_NUMBERS,
            "All attractive numbers": sorted(ROUND_THRESHOLDS + PSYCHOLOGICAL_NUMBERS),
        }
        rows = []
        for scale_name, thresholds in scales.items():
            in_range = df[
                df["population"].between(min(thresholds) * 0.5, max(thresholds) * 1.5)
            ]
            closest = closest_threshold(in_range["population"], thresholds)
            position = (in_range["population"] - closest) / closest
            bins = pd.cut(position, bins=POSITION_BINS, include_lowest=True)
            counts = bins.value_counts(sort=False)
            test = safe_test(
                chisq_uniform, counts.to_numpy(), name=f"clustering: {scale_name}"
            )
            rows.append(
                {
                    "scale": scale_name,
                    "n_thresholds": len(thresholds),
                    "n_observations": int(counts.sum()),
                    "chi_squared": test.statistic if test else np.nan,
                    "p_value": test.p_value if test else np.nan,
                    "significant": bool(test and test.significant(self.alpha)),
                }
            )
            if scale_name == "Round thresholds":
                result.add_test(test)
                result.tables["position_bins"] = counts.rename_axis("bin").reset_index(
                    name="count"
                ).assign(bin=lambda t: t["bin"].astype(str))
                df.loc[in_range.index, "relative_position"] = position
        result.tables["clustering"] = pd.DataFrame(rows)

        main = result.get_test("clustering: Round thresholds")
        if main is not None:
            verdict = "clusters" if main.significant(self.alpha) else "shows no clustering"
            result.findings.append(
                f"Population relative to the nearest round threshold {verdict} "
                f"(chi-square {main.statistic:.1f}, p = {main.p_value:.3g})"
            )

    def _growth_by_pressure(self, df: pd.DataFrame, result: AnalysisResult) -> None:
        growth = df.dropna(subset=["growth_rate"])
        result.tables["growth_by_pressure"] = (
            growth.groupby("pressure_index")["growth_rate"]
            .agg(
                n="count",
                mean_growth="mean",
                median_growth="median",
                sd_growth="std",
                q25_growth=lambda s: s.quantile(0.25),
                q75_growth=lambda s: s.quantile(0.75),
            )
            .sort_values("mean_growth", ascending=False)
            .reset_index()
        )
        result.tables["growth_by_trajectory"] = (
            growth.groupby("trajectory_toward_milestone")
            .agg(
                n=("growth_rate", "count"),
                mean_growth=("growth_rate", "mean"),
                median_growth=("growth_rate", "median"),
                mean_acceleration=("acceleration", "mean"),
            )
            .reset_index()
        )
        result.add_test(
            safe_test(
                anova_oneway,
                growth,
                "growth_rate",
                "pressure_index",
                name="growth rate by pressure",
                findings=result.findings,
            )
        )

        approaching = growth[growth["approaching_milestone"]].dropna(subset=["acceleration"])
        if len(approaching):
            result.summary["approaching_pct_slowing"] = float(
                (approaching["acceleration"] < 0).mean() * 100
            )

    def _regression_discontinuity(self, df: pd.DataFrame, result: AnalysisResult) -> None:
        rd = df[df["population"].between(75_000, 125_000)].dropna(subset=["growth_rate"]).copy()
        if len(rd) <= 50:
            result.findings.append(
                f"Too few counties between 75k and 125k ({len(rd)}) for the 100k discontinuity model"
            )
            return
        rd["above_100k"] = (rd["population"] > 100_000).astype(int)
        rd["distance_from_100k"] = (rd["population"] - 100_000) / 1000
        fitted = result.fit_model(
            "discontinuity at 100k",
            "growth_rate ~ distance_from_100k * above_100k",
            rd,
        )
        if fitted is not None:
            effect = fitted.params["above_100k"]
            result.summary["rd_effect_100k"] = float(effect)
            result.summary["rd_p_value_100k"] = float(fitted.pvalues["above_100k"])

    def _digits(self, df: pd.DataFrame, result: AnalysisResult) -> None:
        last_digit = (df["population"] % 10).astype(int)
        counts = last_digit.value_counts().reindex(range(10), fill_value=0)
        result.tables["last_digit"] = counts.rename_axis("digit").reset_index(name="count")
        result.summary["pct_ending_0"] = float((last_digit == 0).mean() * 100)
        result.summary["pct_ending_5"] = float((last_digit == 5).mean() * 100)
        result.add_test(safe_test(chisq_uniform, counts.to_numpy(), name="last digit uniformity"))

    def _stories(self, df: pd.DataFrame, result: AnalysisResult) -> None:
        latest = df[df["year"] == df["year"].max()]
        near_misses = latest[
            latest["near_threshold"] & (latest["threshold_direction"] == "below")
        ].nsmallest(15, "distance_to_round")
        crossings = df[df["crossed_milestone"]].sort_values(
            ["year", "population"], ascending=[False, False]
        )
        columns = ["GEOID", "NAME", "year", "population", "closest_threshold", "distance_to_round"]
        result.tables["near_misses"] = near_misses[columns].reset_index(drop=True)
        result.tables["crossings"] = crossings[columns].head(20).reset_index(drop=True)
        for _, row in near_misses.head(3).iterrows():
            result.findings.append(milestone_story(row, "approaching"))
        for _, row in crossings.head(3).iterrows():
            result.findings.append(milestone_story(row, "just_crossed"))

    def figures(self, result: AnalysisResult) -> dict[str, Figure]:
        figures = {}
        df = result.data
        if df is not None and "relative_position" in df:
            figures["relative_position"] = plots.histogram(
                df,
                "relative_position",
                "Population Relative to the Nearest Round Threshold",
                bins=list(POSITION_BINS),
                xlabel="(population - threshold) / threshold",
                vline=0,
            )
        if "bunching" in result.tables:
            bunching = result.tables["bunching"].assign(
                threshold=lambda t: t["threshold"].map("{:,}".format)
            )
            figures["bunching"] = plots.bar_chart(
                bunching,
                "threshold",
                "bunching_ratio",
                "Counties Just Above vs Just Below Each Threshold",
                ylabel="Above / below ratio (5% band)",
            )
        return figures
