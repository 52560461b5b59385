"""The Goldilocks Zone: America's most average counties.

Builds a profile of about 35 demographic, economic and housing indicators
for every county and measures how far each one sits from the national
mean, chiefly by Mahalanobis distance. A smaller profile shared with the
2010 ACS shows which counties became more or less average, and rescoring
on indicator subsets shows how stable the most average counties are.
"""

import numpy as np
import pandas as pd
from matplotlib.figure import Figure

from censusmonkey import plots
from censusmonkey.analyses.base import Analysis, AnalysisResult
from censusmonkey.client import CensusClient
from censusmonkey.geography import split_name
from censusmonkey.spatial import boundary_metrics
from censusmonkey.stats import cor_test, mahalanobis_distances, ntile, safe_test, zscore

# With-coverage and with-disability cells of every sex and age group
INSURED = tuple(f"B27001_{i:03d}" for i in [*range(4, 29, 3), *range(32, 57, 3)])
WITH_DISABILITY = tuple(f"B18101_{i:03d}" for i in [*range(4, 20, 3), *range(23, 39, 3)])

VARIABLES = [
    "B01001_001",
    "B01001_002",
    "B03002_003",
    "B03002_004",
    "B03002_006",
    "B03002_012",
    "B15003_001",
    "B15003_017",
    "B15003_022",
    "B15003_023",
    "B19013_001",
    "B19001_001",
    "B19001_002",
    "B19001_017",
    "B23025_001",
    "B23025_002",
    "B23025_005",
    "B08301_001",
    "B08301_002",
    "B08301_010",
    "B08301_021",
    "B25001_001",
    "B25003_002",
    "B25077_001",
    "B17001_001",
    "B17001_002",
    "B11001_001",
    "B11001_002",
    "B16001_001",
    "B16001_002",
    "B16001_003",
    "B18101_001",
    *WITH_DISABILITY,
    "B27001_001",
    *INSURED,
    "B21001_001",
    "B21001_002",
    "B07001_001",
    "B07001_017",
    "B24080_001",
    "B24080_002",
    "B24080_003",
    "B24080_004",
    "B24080_006",
    "B24080_009",
    "B24080_010",
    "B24080_011",
    "B24080_014",
    "B13016_001",
    "B13016_002",
]

# indicator: (numerator cell or cells, denominator, scale)
RATIOS = {
    "pct_male": ("B01001_002", "B01001_001", 100),
    "pct_white": ("B03002_003", "B01001_001", 100),
    "pct_black": ("B03002_004", "B01001_001", 100),
    "pct_asian": ("B03002_006", "B01001_001", 100),
    "pct_hispanic": ("B03002_012", "B01001_001", 100),
    "pct_hs_grad": ("B15003_017", "B15003_001", 100),
    "pct_bachelors": ("B15003_022", "B15003_001", 100),
    "pct_masters": ("B15003_023", "B15003_001", 100),
    "pct_low_income": ("B19001_002", "B19001_001", 100),
    "pct_high_income": ("B19001_017", "B19001_001", 100),
    "unemployment_rate": ("B23025_005", "B23025_002", 100),
    "labor_force_participation": ("B23025_002", "B23025_001", 100),
    "pct_public_transit": ("B08301_010", "B08301_001", 100),
    "pct_work_from_home": ("B08301_021", "B08301_001", 100),
    "pct_drive": ("B08301_002", "B08301_001", 100),
    "pct_owner_occupied": ("B25003_002", "B25001_001", 100),
    "poverty_rate": ("B17001_002", "B17001_001", 100),
    "pct_family_households": ("B11001_002", "B11001_001", 100),
    "pct_english_only": ("B16001_002", "B16001_001", 100),
    "pct_spanish": ("B16001_003", "B16001_001", 100),
    "pct_with_disability": (WITH_DISABILITY, "B18101_001", 100),
    "pct_with_insurance": (INSURED, "B27001_001", 100),
    "pct_veteran": ("B21001_002", "B21001_001", 100),
    "pct_moved_from_other_state": ("B07001_017", "B07001_001", 100),
    "pct_agriculture": ("B24080_002", "B24080_001", 100),
    "pct_construction": ("B24080_003", "B24080_001", 100),
    "pct_manufacturing": ("B24080_004", "B24080_001", 100),
    "pct_retail": ("B24080_006", "B24080_001", 100),
    "pct_finance": ("B24080_009", "B24080_001", 100),
    "pct_professional": ("B24080_010", "B24080_001", 100),
    "pct_education_health": ("B24080_011", "B24080_001", 100),
    "pct_public_admin": ("B24080_014", "B24080_001", 100),
    "birth_rate": ("B13016_002", "B13016_001", 1000),
}
LEVELS = {"median_income": "B19013_001", "median_home_value": "B25077_001"}

QUINTILE_LABELS = {
    1: "Most Average",
    2: "Above Average",
    3: "Moderately Average",
    4: "Below Average",
    5: "Least Average",
}
MIN_VARIANCE = 1e-10
TOP_N = 10

BASELINE_YEAR = 2010

# Indicators the 2010 ACS already publishes, scored in both years for rank changes
TEMPORAL_RATIOS = {
    "pct_male": ("B01001_002", "B01001_001", 100),
    "pct_white": ("B03002_003", "B01001_001", 100),
    "pct_black": ("B03002_004", "B01001_001", 100),
    "pct_hispanic": ("B03002_012", "B01001_001", 100),
    "pct_hs_grad": (("B15002_011", "B15002_028"), "B15002_001", 100),
    "pct_bachelors": (("B15002_015", "B15002_032"), "B15002_001", 100),
    "pct_owner_occupied": ("B25003_002", "B25003_001", 100),
    "poverty_rate": ("B17001_002", "B17001_001", 100),
}
TEMPORAL_LEVELS = {"median_income": "B19013_001"}
TEMPORAL_VARIABLES = [
    "B01001_001",
    "B01001_002",
    "B03002_003",
    "B03002_004",
    "B03002_012",
    "B15002_001",
    "B15002_011",
    "B15002_015",
    "B15002_028",
    "B15002_032",
    "B17001_001",
    "B17001_002",
    "B19013_001",
    "B25003_001",
    "B25003_002",
]

RACE_INDICATORS = ["pct_white", "pct_black", "pct_asian", "pct_hispanic"]
ECONOMIC_INDICATORS = ["median_income", "unemployment_rate", "poverty_rate"]
CORE_INDICATORS = [
    "pct_white",
    "pct_black",
    "pct_hispanic",
    "median_income",
    "pct_bachelors",
    "unemployment_rate",
    "poverty_rate",
]


def ratio_indicators(
    raw: pd.DataFrame, ratios: dict[str, tuple], levels: dict[str, str]
) -> pd.DataFrame:
    df = pd.DataFrame({"GEOID": raw["GEOID"]})
    for name, (numerator, denominator, scale) in ratios.items():
        cells = [numerator] if isinstance(numerator, str) else list(numerator)
        count = raw[[f"{c}E" for c in cells]].sum(axis=1, min_count=len(cells))
        df[name] = count / raw[f"{denominator}E"] * scale
    for name, variable in levels.items():
        df[name] = raw[f"{variable}E"]
    return df


def county_indicators(raw: pd.DataFrame, areas: pd.DataFrame | None = None) -> pd.DataFrame:
    """Percentage and level indicators; log density when areas are given."""
    df = ratio_indicators(raw, RATIOS, LEVELS)
    if areas is not None:
        density = (
            raw[["GEOID", "B01001_001E"]]
            .merge(areas[["GEOID", "area_sq_km"]], on="GEOID", how="left")
            .set_index("GEOID")
        )
        log_density = np.log(density["B01001_001E"] / density["area_sq_km"])
        df["log_density"] = df["GEOID"].map(log_density)
    return df


def impute_medians(df: pd.DataFrame) -> pd.DataFrame:
    """Infinite values become NaN, then NaN becomes the column median."""
    values = df.replace([np.inf, -np.inf], np.nan)
    return values.fillna(values.median(numeric_only=True))


def sensitivity_subsets(columns: list[str]) -> dict[str, list[str]]:
    """Indicator subsets for checking how much the top ten depends on the mix."""
    return {
        "demographics_only": [c for c in columns if c.startswith("pct_")],
        "economics_only": [c for c in ECONOMIC_INDICATORS if c in columns],
        "no_race": [c for c in columns if c not in RACE_INDICATORS],
        "no_income": [c for c in columns if c != "median_income"],
        "core_only": [c for c in CORE_INDICATORS if c in columns],
    }


def distance_profile(raw: pd.DataFrame) -> pd.Series:
    """Mahalanobis distance of each county on the indicators shared across years."""
    indicators = ratio_indicators(raw, TEMPORAL_RATIOS, TEMPORAL_LEVELS).set_index("GEOID")
    indicators = impute_medians(indicators).dropna(axis=1, how="all")
    variances = indicators.var()
    return mahalanobis_distances(indicators.loc[:, variances > MIN_VARIANCE])


class GoldilocksZone(Analysis):
    name = "goldilocks-zone"
    title = "The Goldilocks Zone"
    category = "whimsical"
    description = (
        "Ranks every county by how close its demographic, economic and housing "
        "profile sits to the national average, using Mahalanobis distance."
    )
    keywords = ["average", "typical", "mahalanobis", "profile", "county", "representative"]

    def __init__(
        self, year: int = 2022, baseline_year: int | None = BASELINE_YEAR, **kwargs
    ) -> None:
        super().__init__(**kwargs)
        self.year = year
        self.baseline_year = baseline_year

    async def fetch(self, client: CensusClient) -> dict[str, pd.DataFrame]:
        counties = await client.get_acs("county", VARIABLES, year=self.year)
        boundaries = await client.get_boundaries("county", year=self.year, resolution="20m")
        data = {"counties": counties, "areas": boundary_metrics(boundaries)}
        if self.baseline_year:
            baseline, core = await client.load_all(
                [
                    lambda: client.get_acs("county", TEMPORAL_VARIABLES, year=self.baseline_year),
                    lambda: client.get_acs("county", TEMPORAL_VARIABLES, year=self.year),
                ],
                ignore_errors=True,
            )
            data["baseline_counties"] = baseline
            data["core_counties"] = core
        return data

    def compute(self, data: dict[str, pd.DataFrame]) -> AnalysisResult:
        result = self.new_result()
        raw = data["counties"]

        indicators = county_indicators(raw, data.get("areas")).set_index("GEOID")
        indicators = impute_medians(indicators).dropna(axis=1, how="all")
        variances = indicators.var()
        dropped = variances[~(variances > MIN_VARIANCE)].index.tolist()
        matrix = indicators.drop(columns=dropped)
        if dropped:
            result.findings.append(f"Dropped constant indicators: {', '.join(dropped)}")

        z = matrix.apply(zscore)
        scores = pd.DataFrame(index=matrix.index)
        scores["mahalanobis"] = mahalanobis_distances(matrix)
        scores["euclidean"] = np.sqrt((z**2).sum(axis=1))
        scores["mean_abs_z"] = z.abs().mean(axis=1)
        scores["max_abs_z"] = z.abs().max(axis=1)
        scores["quintile"] = ntile(scores["mahalanobis"], 5)
        scores["averageness"] = scores["quintile"].map(QUINTILE_LABELS)

        names = raw.set_index("GEOID")["NAME"]
        df = scores.join(names).join(matrix).reset_index()
        df["state"] = df["NAME"].map(lambda n: split_name(n)[1])
        result.data = df

        result.summary = {
            "counties": len(df),
            "indicators": matrix.shape[1],
            "most_average_county": df.loc[df["mahalanobis"].idxmin(), "NAME"],
            "least_average_county": df.loc[df["mahalanobis"].idxmax(), "NAME"],
            "median_mahalanobis": float(df["mahalanobis"].median()),
        }

        columns = ["GEOID", "NAME", "mahalanobis", "euclidean", "mean_abs_z", "max_abs_z"]
        result.tables["most_average"] = df.nsmallest(20, "mahalanobis")[columns].reset_index(drop=True)
        result.tables["least_average"] = df.nlargest(20, "mahalanobis")[columns].reset_index(drop=True)
        result.tables["national_means"] = (
            matrix.mean().rename("national_mean").rename_axis("indicator").reset_index()
        )
        result.tables["states"] = (
            df.groupby("state")
            .agg(
                counties=("GEOID", "count"),
                mean_mahalanobis=("mahalanobis", "mean"),
                most_average_share=("quintile", lambda q: (q == 1).mean()),
            )
            .sort_values("mean_mahalanobis")
            .reset_index()
        )

        metrics = ["mahalanobis", "euclidean", "mean_abs_z", "max_abs_z"]
        result.tables["score_agreement"] = (
            df[metrics].corr(method="spearman").reset_index().rename(columns={"index": "score"})
        )
        for metric in metrics[1:]:
            result.add_test(
                safe_test(
                    cor_test,
                    df["mahalanobis"],
                    df[metric],
                    method="spearman",
                    name=f"mahalanobis vs {metric}",
                )
            )

        top_ten = pd.concat([df.nsmallest(TOP_N, m)["GEOID"] for m in metrics])
        consensus = top_ten.value_counts()
        consensus = consensus[consensus > 1]
        result.tables["consensus"] = (
            consensus.rename_axis("GEOID")
            .reset_index(name="metrics_in_top_10")
            .merge(df[["GEOID", "NAME"]], on="GEOID")
        )

        self._sensitivity(matrix, df, result)
        self._temporal(data, result)

        winner = result.tables["most_average"].iloc[0]
        result.findings.insert(
            0,
            f"{winner['NAME']} is the most average county "
            f"(Mahalanobis distance {winner['mahalanobis']:.2f} over {matrix.shape[1]} indicators)",
        )
        return result

    def _sensitivity(
        self, matrix: pd.DataFrame, df: pd.DataFrame, result: AnalysisResult
    ) -> None:
        """Rescore on indicator subsets and count top-ten appearances per county."""
        names = df.set_index("GEOID")["NAME"]
        full_top = set(df.nsmallest(TOP_N, "mahalanobis")["GEOID"])

        rows, tops = [], []
        for subset, columns in sensitivity_subsets(list(matrix.columns)).items():
            if len(columns) < 2:
                result.findings.append(
                    f"Skipped indicator subset {subset}: {len(columns)} indicator(s) left"
                )
                continue
            top = mahalanobis_distances(matrix[columns]).nsmallest(TOP_N).index
            tops.append(pd.Series(top, name="GEOID"))
            rows.append(
                {
                    "subset": subset,
                    "indicators": len(columns),
                    "overlap_with_full": len(full_top & set(top)),
                }
            )
        result.tables["subset_overlap"] = pd.DataFrame(
            rows, columns=["subset", "indicators", "overlap_with_full"]
        )
        if not tops:
            return

        counts = pd.concat(tops).value_counts()
        stable = counts[counts > 1].rename_axis("GEOID").reset_index(name="subsets_in_top_10")
        stable["NAME"] = stable["GEOID"].map(names)
        result.tables["sensitivity"] = stable
        result.summary["subset_stable_counties"] = len(stable)
        if len(stable):
            steadiest = stable.iloc[0]
            result.findings.append(
                f"{steadiest['NAME']} stays in the top {TOP_N} under "
                f"{steadiest['subsets_in_top_10']} of {len(tops)} indicator subsets"
            )

    def _temporal(self, data: dict[str, pd.DataFrame], result: AnalysisResult) -> None:
        """Compare averageness ranks between the baseline year and now."""
        if "baseline_counties" not in data:
            return
        baseline, core = data["baseline_counties"], data.get("core_counties")
        for year, frame in ((self.baseline_year, baseline), (self.year, core)):
            if frame is None or frame.empty:
                result.findings.append(f"Temporal comparison skipped: no county data for {year}")
                return

        comparison = pd.concat(
            {
                "distance_baseline": distance_profile(baseline),
                "distance_current": distance_profile(core),
            },
            axis=1,
            join="inner",
        )
        comparison["rank_baseline"] = comparison["distance_baseline"].rank()
        comparison["rank_current"] = comparison["distance_current"].rank()
        # Positive when a county moved toward the average
        comparison["rank_change"] = comparison["rank_baseline"] - comparison["rank_current"]
        comparison["NAME"] = core.set_index("GEOID")["NAME"]
        comparison = comparison.rename_axis("GEOID").reset_index()
        result.tables["temporal_ranks"] = comparison

        columns = ["GEOID", "NAME", "rank_baseline", "rank_current", "rank_change"]
        baseline_top = comparison.nsmallest(TOP_N, "distance_baseline")
        result.tables["most_average_baseline"] = baseline_top[
            ["GEOID", "NAME", "distance_baseline"]
        ].reset_index(drop=True)
        result.tables["averageness_risers"] = (
            comparison.nlargest(TOP_N, "rank_change")[columns].reset_index(drop=True)
        )
        result.tables["averageness_decliners"] = (
            comparison.nsmallest(TOP_N, "rank_change")[columns].reset_index(drop=True)
        )
        result.summary["temporal_counties"] = len(comparison)
        result.summary["baseline_most_average_county"] = baseline_top["NAME"].iloc[0]

        result.add_test(
            safe_test(
                cor_test,
                comparison["distance_baseline"],
                comparison["distance_current"],
                method="spearman",
                name=f"mahalanobis {self.baseline_year} vs {self.year}",
                findings=result.findings,
            )
        )
        riser = result.tables["averageness_risers"].iloc[0]
        decliner = result.tables["averageness_decliners"].iloc[0]
        result.findings.append(
            f"From {self.baseline_year} to {self.year}, {riser['NAME']} moved most toward the average "
            f"({riser['rank_change']:+.0f} places) and {decliner['NAME']} moved most away "
            f"({decliner['rank_change']:+.0f})"
        )

    def figures(self, result: AnalysisResult) -> dict[str, Figure]:
        df = result.data
        if df is None or df.empty:
            return {}
        figures = {
            "distance_distribution": plots.histogram(
                df,
                "mahalanobis",
                "Distance from the National Average",
                xlabel="Mahalanobis distance",
            ),
            "mahalanobis_vs_euclidean": plots.scatter_with_trend(
                df,
                "euclidean",
                "mahalanobis",
                "Agreement Between Averageness Scores",
                xlabel="Euclidean distance on z-scores",
                ylabel="Mahalanobis distance",
            ),
        }
        ranks = result.tables.get("temporal_ranks")
        if ranks is not None and len(ranks):
            figures["rank_change"] = plots.scatter_with_trend(
                ranks,
                "rank_baseline",
                "rank_current",
                f"Averageness Rank, {self.baseline_year} vs {self.year}",
                xlabel=f"Rank in {self.baseline_year} (1 = most average)",
                ylabel=f"Rank in {self.year}",
            )
        return figures
