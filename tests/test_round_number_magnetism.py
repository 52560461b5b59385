from unittest.mock import AsyncMock, patch

import numpy as np
import pandas as pd
import pytest

from censusmonkey.analyses.round_number_magnetism import (
    ROUND_THRESHOLDS,
    RoundNumberMagnetism,
    approaching_milestone,
    bunching_table,
    closest_threshold,
    crossed_milestone,
    distance_to_round,
    magnetic_pull,
    psychological_pressure,
    size_category,
)
from censusmonkey.client import CensusClient


@pytest.fixture
def population(rng):
    geoids = [f"48{c:03d}" for c in range(1, 121, 2)]
    # Sizes at least 25% away from every round threshold
    sizes = [4_000, 18_000, 35_000, 70_000, 140_000, 170_000, 350_000, 700_000]
    base = rng.choice(sizes, size=len(geoids)) * rng.uniform(0.98, 1.02, size=len(geoids))
    rows = []
    for year in (2018, 2019, 2020, 2021, 2022):
        pop = base * rng.normal(1, 0.005, size=len(geoids))
        rows += [
            {"GEOID": g, "NAME": f"County {g[2:]} County, Texas", "population": round(p), "year": year}
            for g, p in zip(geoids, pop)
        ]
    # One county crossing 50,000 in 2021 and one stuck just under 100,000
    for year, crosser, stuck in zip(
        (2018, 2019, 2020, 2021, 2022),
        (48_600, 49_100, 49_700, 50_300, 50_900),
        (98_800, 99_000, 99_100, 99_150, 99_200),
    ):
        rows.append({"GEOID": "48997", "NAME": "Crosser County, Texas", "population": crosser, "year": year})
        rows.append({"GEOID": "48999", "NAME": "Stuck County, Texas", "population": stuck, "year": year})
    return pd.DataFrame(rows)


class TestHelpers:
    """Tests for the threshold helpers."""

    def test_distance_and_closest(self):
        """Test the gap to the nearest threshold."""
        pop = pd.Series([48_000, 104_000])
        assert distance_to_round(pop, ROUND_THRESHOLDS).tolist() == pytest.approx(
            [2_000 / 48_000, 4_000 / 104_000]
        )
        assert closest_threshold(pop, ROUND_THRESHOLDS).tolist() == [50_000, 100_000]

    def test_approaching(self):
        """Test the 10% window below each threshold."""
        pop = pd.Series([46_000, 44_000, 50_000])
        assert approaching_milestone(pop, ROUND_THRESHOLDS).tolist() == [True, False, False]

    def test_crossed(self):
        """Test upward crossings need a previous value."""
        current = pd.Series([51_000, 60_000, 49_000])
        previous = pd.Series([49_000, np.nan, 51_000])
        assert crossed_milestone(current, previous, ROUND_THRESHOLDS).tolist() == [True, False, False]

    def test_magnetic_pull(self):
        """Test pull toward the next threshold above."""
        pull = magnetic_pull(pd.Series([75_000, 2_000_000]), ROUND_THRESHOLDS)
        assert pull.iloc[0] == pytest.approx(0.75)
        assert np.isnan(pull.iloc[1])

    def test_pressure_zones(self):
        """Test the tightest zone wins."""
        labels = psychological_pressure(pd.Series([0.01, 0.03, 0.07, 0.15, 0.3]))
        assert labels.tolist() == [
            "Critical (<=2%)",
            "High (2-5%)",
            "Moderate (5-10%)",
            "Low (10-20%)",
            "Minimal (>20%)",
        ]

    def test_size_category(self):
        """Test size bands are closed on the left."""
        assert size_category(pd.Series([24_999, 25_000, 500_000])).tolist() == [
            "Small (<25k)",
            "Medium (25k-100k)",
            "Very Large (500k+)",
        ]

    def test_bunching(self):
        """Test above/below counts in the 5% band."""
        table = bunching_table(pd.Series([99_000, 101_000, 102_000]), [100_000])
        row = table.iloc[0]
        assert row["just_below"] == 1
        assert row["just_above"] == 2
        assert row["bunching_ratio"] == 2
        assert row["psychological_effect"] == "Strong attraction"
        assert row["within_2pct"] == 3


class TestCompute:
    """Tests for RoundNumberMagnetism.compute."""

    def test_summary_and_tables(self, population):
        """Test the summary, tables and tests on a synthetic panel."""
        result = RoundNumberMagnetism().compute({"population": population})

        assert result.summary["counties"] == 62
        assert result.summary["years"] == [2018, 2019, 2020, 2021, 2022]
        assert result.summary["milestone_crossings"] == 1
        assert len(result.tables["bunching"]) == len(ROUND_THRESHOLDS)
        assert result.tables["last_digit"]["digit"].tolist() == list(range(10))
        assert result.get_test("clustering: Round thresholds") is not None
        assert result.get_test("last digit uniformity") is not None
        assert result.get_test("growth rate by pressure") is not None

    def test_stories(self, population):
        """Test near misses and crossings are narrated."""
        result = RoundNumberMagnetism().compute({"population": population})

        assert "48999" in result.tables["near_misses"]["GEOID"].tolist()
        assert "48997" in result.tables["crossings"]["GEOID"].tolist()
        assert any("Crosser County, Texas recently crossed 50,000" in f for f in result.findings)
        assert any("Stuck County, Texas is approaching the 100,000" in f for f in result.findings)

    def test_growth_metrics(self, population):
        """Test growth is computed within each county."""
        df = RoundNumberMagnetism().compute({"population": population}).data
        crosser = df[df["GEOID"] == "48997"].set_index("year")

        assert np.isnan(crosser.loc[2018, "growth_rate"])
        assert crosser.loc[2021, "growth_rate"] == pytest.approx(600 / 49_700)
        assert bool(crosser.loc[2021, "crossed_milestone"])
        assert crosser.loc[2021, "pressure_index"] == "Relief (just crossed)"

    def test_discontinuity_needs_counties(self, population):
        """Test the 100k model is skipped with few nearby counties."""
        result = RoundNumberMagnetism().compute({"population": population})
        assert "discontinuity at 100k" not in result.models
        assert any("Too few counties between 75k and 125k" in f for f in result.findings)

    def test_drops_missing_and_zero(self, population):
        """Test empty and zero populations are ignored."""
        extra = pd.DataFrame(
            [
                {"GEOID": "48001", "NAME": "x", "population": np.nan, "year": 2023},
                {"GEOID": "48003", "NAME": "y", "population": 0, "year": 2023},
            ]
        )
        result = RoundNumberMagnetism().compute({"population": pd.concat([population, extra])})
        assert 2023 not in result.summary["years"]

    def test_figures(self, population):
        """Test both charts are drawn."""
        analysis = RoundNumberMagnetism()
        figures = analysis.figures(analysis.compute({"population": population}))
        assert set(figures) == {"relative_position", "bunching"}


class TestFetch:
    """Tests for RoundNumberMagnetism.fetch."""

    @pytest.mark.asyncio
    async def test_decennial_and_estimate_years(self):
        """Test census years use decennial counts and others estimates."""
        client = CensusClient(cache=False)
        frame = pd.DataFrame({"GEOID": ["48201"], "NAME": ["Harris County, Texas"], "population": [4_700_000]})

        with (
            patch.object(client, "get_decennial", new_callable=AsyncMock) as mock_dec,
            patch.object(client, "get_estimates", new_callable=AsyncMock) as mock_est,
        ):
            mock_dec.return_value = frame
            mock_est.return_value = frame.assign(year=2019)
            data = await RoundNumberMagnetism(years=[2019, 2020]).fetch(client)

        mock_dec.assert_awaited_once_with("county", {"population": "P1_001N"}, year=2020)
        mock_est.assert_awaited_once_with("county", year=2019)
        assert sorted(data["population"]["year"]) == [2019, 2020]
