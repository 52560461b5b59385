"""Demographic Déjà Vu: temporal twin counties.

Builds a short demographic time series for a stratified sample of counties
and pairs them up by dynamic time warping distance on the standardized
series. Twins are counties whose demographic trajectories move together.
"""

import itertools

import numpy as np
import pandas as pd
from matplotlib.figure import Figure

from censusmonkey import plots
from censusmonkey.analyses.base import Analysis, AnalysisResult
from censusmonkey.client import CensusClient
from censusmonkey.stats import dtw_distance, safe_test, t_test, zscore

YEARS = [2010, 2013, 2016, 2019, 2022]

YOUNG_ADULT_CELLS = ["B01001_008", "B01001_009", "B01001_010", "B01001_011", "B01001_012",
                     "B01001_032", "B01001_033", "B01001_034", "B01001_035", "B01001_036"]
ELDERLY_CELLS = ["B01001_020", "B01001_021", "B01001_022", "B01001_023", "B01001_024",
                 "B01001_025", "B01001_044", "B01001_045", "B01001_046", "B01001_047",
                 "B01001_048", "B01001_049"]
# B15002 (sex by attainment) runs back to 2009; B15003 starts in 2012
COLLEGE_CELLS = ["B15002_015", "B15002_016", "B15002_017", "B15002_018",
                 "B15002_032", "B15002_033", "B15002_034", "B15002_035"]
VARIABLES = [
    "B01001_001",
    *YOUNG_ADULT_CELLS,
    *ELDERLY_CELLS,
    "B03002_001",
    "B03002_003",
    "B03002_004",
    "B03002_012",
    "B15002_001",
    *COLLEGE_CELLS,
    "B19013_001",
    "B25077_001",
]

PROFILE_COLUMNS = [
    "young_adult_share",
    "elderly_share",
    "white_share",
    "black_share",
    "hispanic_share",
    "college_share",
    "log_income",
    "log_home_value",
]
MIN_YEARS = 3
MIN_VARIANCE = 1e-10


def _sum(raw: pd.DataFrame, cells: list[str]) -> pd.Series:
    return raw[[f"{c}E" for c in cells]].sum(axis=1, min_count=1)


def county_profiles(raw: pd.DataFrame) -> pd.DataFrame:
    """One row per county-year with the shares and log levels of a profile."""
    total = raw["B01001_001E"].where(raw["B01001_001E"] > 0)
    race_total = raw["B03002_001E"].where(raw["B03002_001E"] > 0)
    education_total = raw["B15002_001E"].where(raw["B15002_001E"] > 0)
    return pd.DataFrame(
        {
            "GEOID": raw["GEOID"],
            "NAME": raw["NAME"],
            "year": raw["year"],
            "young_adult_share": _sum(raw, YOUNG_ADULT_CELLS) / total,
            "elderly_share": _sum(raw, ELDERLY_CELLS) / total,
            "white_share": raw["B03002_003E"] / race_total,
            "black_share": raw["B03002_004E"] / race_total,
            "hispanic_share": raw["B03002_012E"] / race_total,
            "college_share": _sum(raw, COLLEGE_CELLS) / education_total,
            "log_income": np.log(raw["B19013_001E"].clip(lower=1000)),
            "log_home_value": np.log(raw["B25077_001E"].clip(lower=10000)),
        }
    )


def stratified_sample(geoids: list[str], per_state: int, seed: int) -> list[str]:
    """Up to ``per_state`` counties from every state, drawn reproducibly."""
    if not 1 <= per_state <= 5:
        raise ValueError(f"per_state must be between 1 and 5, got {per_state}")
    rng = np.random.default_rng(seed)
    counties = pd.Series(sorted(set(geoids)))
    sample = []
    for _, group in counties.groupby(counties.str[:2]):
        size = min(per_state, len(group))
        sample.extend(rng.choice(group.to_numpy(), size=size, replace=False).tolist())
    return sorted(sample)


def standardized_series(profiles: pd.DataFrame) -> pd.DataFrame:
    """A county's profile by year, mean-imputed and z-scored per variable."""
    series = profiles.sort_values("year").set_index("year")[PROFILE_COLUMNS]
    series = series.fillna(series.mean()).fillna(0.0)
    return series.apply(zscore)


def series_distance(a: pd.DataFrame, b: pd.DataFrame) -> float:
    """Mean per-variable DTW distance; flat series fall back to RMSE."""
    distances = []
    for column in PROFILE_COLUMNS:
        x = a[column].to_numpy(dtype=float)
        y = b[column].to_numpy(dtype=float)
        if np.var(x, ddof=1) > MIN_VARIANCE and np.var(y, ddof=1) > MIN_VARIANCE:
            distances.append(dtw_distance(x, y))
        elif len(x) == len(y):
            distances.append(float(np.sqrt(np.mean((x - y) ** 2))))
    return float(np.mean(distances)) if distances else np.nan


class DemographicDejaVu(Analysis):
    name = "demographic-deja-vu"
    title = "Demographic Déjà Vu"
    category = "whimsical"
    description = (
        "Finds temporal twin counties whose demographic trajectories move together, "
        "using dynamic time warping on standardized ACS time series."
    )
    keywords = ["twins", "time series", "dtw", "trajectories", "similarity", "county"]

    def __init__(
        self,
        states: list[str] | None = None,
        per_state: int = 3,
        years: list[int] | None = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.states = states
        self.per_state = per_state
        self.years = years or YEARS

    async def fetch(self, client: CensusClient) -> dict[str, pd.DataFrame]:
        frames = await client.load_all(
            [
                lambda y=y: client.get_acs("county", VARIABLES, year=y, state=self.states)
                for y in self.years
            ],
            show_progress=client.config.analysis.show_progress,
            ignore_errors=True,
        )
        kept = []
        for year, frame in zip(self.years, frames):
            if frame is None or frame.empty:
                self._logger.warning(f"No county profile data for {year}")
                continue
            kept.append(frame.assign(year=year))
        if not kept:
            raise ValueError("No year returned county profile data")
        return {"profiles": pd.concat(kept, ignore_index=True)}

    def compute(self, data: dict[str, pd.DataFrame]) -> AnalysisResult:
        result = self.new_result()
        profiles = county_profiles(data["profiles"])
        profiles = profiles[profiles[PROFILE_COLUMNS].isna().sum(axis=1) <= 3]

        years_per_county = profiles.groupby("GEOID")["year"].nunique()
        eligible = years_per_county[years_per_county >= MIN_YEARS].index.tolist()
        sample = stratified_sample(eligible, self.per_state, self.seed)
        self._logger.info(f"Comparing {len(sample)} counties from {len(eligible)} eligible")

        names = profiles.drop_duplicates("GEOID", keep="last").set_index("GEOID")["NAME"]
        series = {
            geoid: standardized_series(group)
            for geoid, group in profiles[profiles["GEOID"].isin(sample)].groupby("GEOID")
        }

        rows = []
        for county1, county2 in itertools.combinations(sorted(series), 2):
            rows.append(
                {
                    "county1": county1,
                    "county2": county2,
                    "county1_name": names[county1],
                    "county2_name": names[county2],
                    "same_state": county1[:2] == county2[:2],
                    "distance": series_distance(series[county1], series[county2]),
                }
            )
        pairs = pd.DataFrame(
            rows,
            columns=["county1", "county2", "county1_name", "county2_name", "same_state", "distance"],
        ).dropna(subset=["distance"])
        result.data = pairs

        result.summary = {
            "eligible_counties": len(eligible),
            "sampled_counties": len(series),
            "pairs": len(pairs),
            "years": sorted(profiles["year"].unique().tolist()),
            "mean_distance": float(pairs["distance"].mean()) if len(pairs) else np.nan,
            "median_distance": float(pairs["distance"].median()) if len(pairs) else np.nan,
        }
        missing = sorted(set(self.years) - set(result.summary["years"]))
        if missing:
            result.findings.append(
                f"No county data for {', '.join(map(str, missing))}; "
                f"trajectories cover {len(result.summary['years'])} years"
            )
        if pairs.empty:
            result.findings.append("No county pairs could be compared")
            return result

        result.tables["twins"] = pairs.nsmallest(20, "distance").reset_index(drop=True)
        result.tables["opposites"] = pairs.nlargest(10, "distance").reset_index(drop=True)
        result.tables["distance_distribution"] = (
            pairs["distance"].describe(percentiles=[0.05, 0.25, 0.5, 0.75, 0.95])
            .rename_axis("statistic")
            .reset_index()
        )
        result.tables["state_comparison"] = (
            pairs.groupby("same_state")
            .agg(pairs=("distance", "size"), mean_distance=("distance", "mean"))
            .reset_index()
        )

        same_state = result.add_test(
            safe_test(
                t_test,
                pairs.loc[pairs["same_state"], "distance"],
                pairs.loc[~pairs["same_state"], "distance"],
                name="same-state vs cross-state distance",
                findings=result.findings,
            )
        )

        twin = result.tables["twins"].iloc[0]
        result.findings.insert(
            0,
            f"Closest temporal twins: {twin['county1_name']} and {twin['county2_name']} "
            f"(distance {twin['distance']:.3f})",
        )
        if same_state is not None:
            closer = "closer" if same_state.estimate < 0 else "no closer"
            result.findings.append(
                f"Same-state pairs are {closer} than cross-state pairs "
                f"({same_state.extra['mean_a']:.3f} vs {same_state.extra['mean_b']:.3f}, "
                f"p = {same_state.p_value:.3g})"
            )
        return result

    def figures(self, result: AnalysisResult) -> dict[str, Figure]:
        pairs = result.data
        if pairs is None or pairs.empty:
            return {}
        labeled = pairs.assign(
            pair_type=np.where(pairs["same_state"], "Same state", "Different states")
        )
        return {
            "distance_distribution": plots.histogram(
                pairs,
                "distance",
                "Distribution of Pairwise DTW Distances",
                xlabel="Mean DTW distance",
            ),
            "same_vs_cross_state": plots.boxplot(
                labeled,
                "pair_type",
                "distance",
                "Trajectory Distance by State Pairing",
                ylabel="Mean DTW distance",
            ),
        }
