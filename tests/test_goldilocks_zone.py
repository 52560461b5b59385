from unittest.mock import AsyncMock, patch

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from shapely.geometry import box

from censusmonkey.analyses.goldilocks_zone import (
    INSURED,
    LEVELS,
    RATIOS,
    TEMPORAL_VARIABLES,
    VARIABLES,
    WITH_DISABILITY,
    GoldilocksZone,
    county_indicators,
    distance_profile,
    impute_medians,
    sensitivity_subsets,
)
from censusmonkey.client import CensusClient

DENOMINATORS = {d for _, d, _ in RATIOS.values()} - {"B23025_002"}


def make_counties(rng, n=100):
    geoids = [f"{'19' if i % 2 else '20'}{i:03d}" for i in range(1, n + 1)]
    raw = {"GEOID": geoids, "NAME": [f"County {i} County, {'Iowa' if i % 2 else 'Kansas'}" for i in range(1, n + 1)]}
    for variable in VARIABLES:
        if variable in DENOMINATORS:
            values = np.full(n, 10_000.0)
        elif variable == "B23025_002":
            values = rng.integers(5_000, 7_000, size=n).astype(float)
        elif variable in LEVELS.values():
            values = rng.normal(60_000, 10_000, size=n)
        else:
            values = rng.integers(500, 3_000, size=n).astype(float)
        raw[f"{variable}E"] = values
    df = pd.DataFrame(raw)

    # Last county far from everything, first one on the mean of the others
    numerators = [f"{v}E" for v in VARIABLES if v not in DENOMINATORS]
    df.loc[n - 1, numerators] = df.loc[n - 1, numerators] * 3
    df.loc[n - 1, "NAME"] = "Outlier County, Kansas"
    numeric = [f"{v}E" for v in VARIABLES]
    df.loc[0, numeric] = df.loc[1:, numeric].mean()
    df.loc[0, "NAME"] = "Average County, Iowa"
    return df


TEMPORAL_DENOMINATORS = {"B01001_001", "B15002_001", "B17001_001", "B25003_001"}


def make_core(rng, average, outlier, n=60):
    """Shared-indicator counties with one county on the mean and one far from it."""
    raw = {
        "GEOID": [f"19{i:03d}" for i in range(1, n + 1)],
        "NAME": [f"County {i} County, Iowa" for i in range(1, n + 1)],
    }
    for variable in TEMPORAL_VARIABLES:
        if variable in TEMPORAL_DENOMINATORS:
            raw[f"{variable}E"] = np.full(n, 10_000.0)
        elif variable == "B19013_001":
            raw[f"{variable}E"] = rng.normal(60_000, 10_000, size=n)
        else:
            raw[f"{variable}E"] = rng.integers(500, 3_000, size=n).astype(float)
    df = pd.DataFrame(raw)

    numerators = [f"{v}E" for v in TEMPORAL_VARIABLES if v not in TEMPORAL_DENOMINATORS]
    df.loc[outlier, numerators] = df.loc[outlier, numerators] * 3
    numeric = [f"{v}E" for v in TEMPORAL_VARIABLES]
    df.loc[average, numeric] = df.drop(index=average)[numeric].mean()
    return df


class TestIndicators:
    """Tests for county_indicators and impute_medians."""

    def test_ratios_and_levels(self, rng):
        """Test ratio scaling and raw levels."""
        raw = make_counties(rng)
        indicators = county_indicators(raw).set_index("GEOID")
        first = raw.iloc[1]

        assert list(indicators.columns) == list(RATIOS) + list(LEVELS)
        assert indicators.loc[first["GEOID"], "pct_male"] == pytest.approx(first["B01001_002E"] / 100)
        assert indicators.loc[first["GEOID"], "birth_rate"] == pytest.approx(first["B13016_002E"] / 10)
        assert indicators.loc[first["GEOID"], "median_income"] == first["B19013_001E"]

    def test_log_density(self, rng):
        """Test density uses total population over land area."""
        raw = make_counties(rng)
        areas = pd.DataFrame({"GEOID": raw["GEOID"], "area_sq_km": 100.0})
        indicators = county_indicators(raw, areas)
        assert indicators["log_density"].iloc[0] == pytest.approx(np.log(10_000 / 100))

    def test_impute_medians(self):
        """Test infinities and gaps become the column median."""
        df = pd.DataFrame({"a": [1.0, 2.0, np.inf, np.nan], "b": [5.0, np.nan, 7.0, 9.0]})
        imputed = impute_medians(df)
        assert imputed["a"].tolist() == [1.0, 2.0, 1.5, 1.5]
        assert imputed["b"].tolist() == [5.0, 7.0, 7.0, 9.0]

    def test_insurance_and_disability_sum_all_groups(self, rng):
        """Test coverage and disability shares pool every sex and age cell."""
        raw = make_counties(rng)
        indicators = county_indicators(raw).set_index("GEOID")
        first = raw.iloc[1]

        assert len(INSURED) == 18 and "B27001_005" not in INSURED
        assert len(WITH_DISABILITY) == 12 and "B18101_005" not in WITH_DISABILITY
        insured = sum(first[f"{c}E"] for c in INSURED)
        disabled = sum(first[f"{c}E"] for c in WITH_DISABILITY)
        assert indicators.loc[first["GEOID"], "pct_with_insurance"] == pytest.approx(insured / 100)
        assert indicators.loc[first["GEOID"], "pct_with_disability"] == pytest.approx(disabled / 100)

    def test_sensitivity_subsets(self):
        """Test subsets only name indicators that survived."""
        columns = ["pct_white", "pct_asian", "pct_bachelors", "median_income", "poverty_rate"]
        subsets = sensitivity_subsets(columns)

        assert list(subsets) == ["demographics_only", "economics_only", "no_race", "no_income", "core_only"]
        assert subsets["demographics_only"] == ["pct_white", "pct_asian", "pct_bachelors"]
        assert subsets["economics_only"] == ["median_income", "poverty_rate"]
        assert subsets["no_race"] == ["pct_bachelors", "median_income", "poverty_rate"]
        assert "median_income" not in subsets["no_income"]
        assert subsets["core_only"] == ["pct_white", "median_income", "pct_bachelors", "poverty_rate"]

    def test_distance_profile(self, rng):
        """Test the shared-indicator distance puts the mean county first."""
        distances = distance_profile(make_core(rng, average=4, outlier=9))
        assert distances.idxmin() == "19005"
        assert distances.idxmax() == "19010"


class TestCompute:
    """Tests for GoldilocksZone.compute."""

    def test_most_and_least_average(self, rng):
        """Test the mean county wins and the outlier loses."""
        result = GoldilocksZone().compute({"counties": make_counties(rng)})

        assert result.summary["counties"] == 100
        assert result.summary["indicators"] == len(RATIOS) + len(LEVELS)
        assert result.summary["most_average_county"] == "Average County, Iowa"
        assert result.summary["least_average_county"] == "Outlier County, Kansas"
        assert result.findings[0].startswith("Average County, Iowa is the most average county")

    def test_quintiles(self, rng):
        """Test quintiles split the counties evenly."""
        df = GoldilocksZone().compute({"counties": make_counties(rng)}).data

        assert df["quintile"].value_counts().tolist() == [20] * 5
        average = df[df["NAME"] == "Average County, Iowa"].iloc[0]
        assert average["averageness"] == "Most Average"
        assert df.loc[df["NAME"] == "Outlier County, Kansas", "averageness"].iloc[0] == "Least Average"

    def test_score_agreement(self, rng):
        """Test rank correlations between scores and the consensus table."""
        result = GoldilocksZone().compute({"counties": make_counties(rng)})

        for metric in ("euclidean", "mean_abs_z", "max_abs_z"):
            assert result.get_test(f"mahalanobis vs {metric}").estimate > 0
        consensus = result.tables["consensus"].set_index("NAME")
        assert consensus.loc["Average County, Iowa", "metrics_in_top_10"] == 4
        assert result.tables["score_agreement"]["score"].tolist() == [
            "mahalanobis",
            "euclidean",
            "mean_abs_z",
            "max_abs_z",
        ]

    def test_constant_indicator_dropped(self, rng):
        """Test indicators without variance are left out."""
        counties = make_counties(rng)
        counties["B13016_002E"] = 120.0
        result = GoldilocksZone().compute({"counties": counties})

        assert "Dropped constant indicators: birth_rate" in result.findings
        assert result.summary["indicators"] == len(RATIOS) + len(LEVELS) - 1

    def test_areas_add_density(self, rng):
        """Test land areas add a log density indicator."""
        counties = make_counties(rng)
        areas = pd.DataFrame({"GEOID": counties["GEOID"], "area_sq_km": rng.uniform(500, 5_000, size=100)})
        result = GoldilocksZone().compute({"counties": counties, "areas": areas})

        assert result.summary["indicators"] == len(RATIOS) + len(LEVELS) + 1
        assert "log_density" in result.tables["national_means"]["indicator"].tolist()

    def test_states_table(self, rng):
        """Test the state rollup."""
        states = GoldilocksZone().compute({"counties": make_counties(rng)}).tables["states"]
        assert set(states["state"]) == {"Iowa", "Kansas"}
        assert states["counties"].sum() == 100

    def test_sensitivity(self, rng):
        """Test the mean county tops every indicator subset."""
        result = GoldilocksZone().compute({"counties": make_counties(rng)})

        overlap = result.tables["subset_overlap"]
        assert len(overlap) == 5
        assert overlap["overlap_with_full"].between(1, 10).all()
        stable = result.tables["sensitivity"].set_index("NAME")
        assert stable.loc["Average County, Iowa", "subsets_in_top_10"] == 5
        assert "Outlier County, Kansas" not in stable.index
        assert result.summary["subset_stable_counties"] == len(stable)

    def test_temporal_evolution(self, rng):
        """Test rank changes between the baseline year and now."""
        data = {
            "counties": make_counties(rng),
            "baseline_counties": make_core(rng, average=59, outlier=0),
            "core_counties": make_core(rng, average=0, outlier=59),
        }
        result = GoldilocksZone().compute(data)

        riser = result.tables["averageness_risers"].iloc[0]
        assert riser["NAME"] == "County 1 County, Iowa"
        assert riser["rank_baseline"] == 60 and riser["rank_current"] == 1
        assert riser["rank_change"] == 59
        decliner = result.tables["averageness_decliners"].iloc[0]
        assert decliner["NAME"] == "County 60 County, Iowa"
        assert decliner["rank_change"] == -59
        assert result.summary["temporal_counties"] == 60
        assert result.summary["baseline_most_average_county"] == "County 60 County, Iowa"
        assert result.get_test("mahalanobis 2010 vs 2022") is not None
        assert any(
            f.startswith("From 2010 to 2022, County 1 County, Iowa moved most toward the average")
            for f in result.findings
        )

    def test_temporal_inner_join(self, rng):
        """Test only counties present in both years are ranked."""
        baseline = make_core(rng, average=59, outlier=0)
        data = {
            "counties": make_counties(rng),
            "baseline_counties": baseline.drop(index=[10, 11]),
            "core_counties": make_core(rng, average=0, outlier=59),
        }
        ranks = GoldilocksZone().compute(data).tables["temporal_ranks"]
        assert len(ranks) == 58
        assert ranks["rank_current"].max() == 58

    def test_temporal_missing_baseline(self, rng):
        """Test a failed baseline download is reported, not fatal."""
        data = {
            "counties": make_counties(rng),
            "baseline_counties": None,
            "core_counties": make_core(rng, average=0, outlier=59),
        }
        result = GoldilocksZone().compute(data)

        assert "Temporal comparison skipped: no county data for 2010" in result.findings
        assert "temporal_ranks" not in result.tables

    def test_figures(self, rng):
        """Test both charts are drawn."""
        analysis = GoldilocksZone()
        figures = analysis.figures(analysis.compute({"counties": make_counties(rng)}))
        assert set(figures) == {"distance_distribution", "mahalanobis_vs_euclidean"}

    def test_rank_change_figure(self, rng):
        """Test the rank comparison chart appears with baseline data."""
        analysis = GoldilocksZone()
        data = {
            "counties": make_counties(rng),
            "baseline_counties": make_core(rng, average=59, outlier=0),
            "core_counties": make_core(rng, average=0, outlier=59),
        }
        assert "rank_change" in analysis.figures(analysis.compute(data))


class TestFetch:
    """Tests for GoldilocksZone.fetch."""

    @pytest.mark.asyncio
    async def test_counties_and_areas(self, rng):
        """Test both years of ACS profiles and 20m county boundaries are requested."""
        client = CensusClient(cache=False)
        counties = make_counties(rng).head(2)
        boundaries = gpd.GeoDataFrame(
            {"GEOID": counties["GEOID"].tolist()},
            geometry=[box(-96, 41, -95, 42), box(-98, 38, -97, 39)],
            crs="EPSG:4326",
        )
        with (
            patch.object(client, "get_acs", new_callable=AsyncMock) as mock_acs,
            patch.object(client, "get_boundaries", new_callable=AsyncMock) as mock_boundaries,
        ):
            mock_acs.return_value = counties
            mock_boundaries.return_value = boundaries
            data = await GoldilocksZone().fetch(client)

        mock_acs.assert_any_await("county", VARIABLES, year=2022)
        mock_acs.assert_any_await("county", TEMPORAL_VARIABLES, year=2010)
        mock_acs.assert_any_await("county", TEMPORAL_VARIABLES, year=2022)
        assert mock_acs.await_count == 3
        mock_boundaries.assert_awaited_once_with("county", year=2022, resolution="20m")
        assert (data["areas"]["area_sq_km"] > 5_000).all()
        assert data["baseline_counties"] is counties

    @pytest.mark.asyncio
    async def test_without_baseline(self, rng):
        """Test no baseline year skips the extra requests."""
        client = CensusClient(cache=False)
        boundaries = gpd.GeoDataFrame({"GEOID": ["19001"]}, geometry=[box(-96, 41, -95, 42)], crs="EPSG:4326")
        with (
            patch.object(client, "get_acs", new_callable=AsyncMock) as mock_acs,
            patch.object(client, "get_boundaries", new_callable=AsyncMock) as mock_boundaries,
        ):
            mock_acs.return_value = make_counties(rng).head(1)
            mock_boundaries.return_value = boundaries
            data = await GoldilocksZone(baseline_year=None).fetch(client)

        mock_acs.assert_awaited_once_with("county", VARIABLES, year=2022)
        assert "baseline_counties" not in data

    @pytest.mark.asyncio
    async def test_failed_baseline_kept_as_none(self, rng):
        """Test a failed baseline request leaves None for compute to report."""
        client = CensusClient(cache=False)
        counties = make_counties(rng).head(1)
        boundaries = gpd.GeoDataFrame({"GEOID": ["19001"]}, geometry=[box(-96, 41, -95, 42)], crs="EPSG:4326")

        async def fake_acs(geography, variables, year):
            if year == 2010:
                raise ValueError("unknown variable 'B15002_011E'")
            return counties

        with (
            patch.object(client, "get_acs", new=fake_acs),
            patch.object(client, "get_boundaries", new_callable=AsyncMock) as mock_boundaries,
        ):
            mock_boundaries.return_value = boundaries
            data = await GoldilocksZone().fetch(client)

        assert data["baseline_counties"] is None
        assert data["core_counties"] is counties
