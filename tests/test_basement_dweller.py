from unittest.mock import AsyncMock, call, patch

import numpy as np
import pandas as pd
import pytest

from censusmonkey.analyses.basement_dweller import (
    CONTROL_VARIABLES,
    PUMA,
    VARIABLES,
    BasementDwellerIndex,
    sex_ratios,
)
from censusmonkey.client import CensusClient


def make_data(rng, n=60):
    geoids = [f"06{i:05d}" for i in range(101, 101 + n)]
    ratio = np.linspace(85, 125, n)
    scale = ratio / 100
    households = pd.DataFrame(
        {
            "GEOID": geoids,
            "NAME": [f"PUMA {g[2:]}, California" for g in geoids],
            "total_popE": 150_000,
            "male_22_24E": 300 * scale,
            "male_25_29E": 500 * scale,
            "male_30_34E": 500 * scale,
            "male_35_39E": 500 * scale,
            "female_22_24E": 300,
            "female_25_29E": 500,
            "female_30_34E": 500,
            "female_35_39E": 500,
            "male_householdersE": 20_000,
            "male_aloneE": (20 + 0.3 * (ratio - 100) + rng.normal(0, 2, size=n)) * 200,
            "female_householdersE": 25_000,
            "female_aloneE": rng.normal(6_000, 300, size=n),
        }
    )
    controls = pd.DataFrame(
        {
            "GEOID": geoids,
            "median_incomeE": rng.normal(80_000, 10_000, size=n),
            "bachelorsE": rng.normal(25_000, 3_000, size=n),
            "mastersE": 8_000,
            "professionalE": 1_500,
            "doctorateE": 1_000,
        }
    )
    return {"households": households, "controls": controls}


class TestSexRatios:
    """Tests for sex_ratios."""

    def test_windows(self):
        """Test the 22-35 ratio and both alternative windows."""
        raw = pd.DataFrame(
            {
                "male_22_24E": [100],
                "male_25_29E": [200],
                "male_30_34E": [200],
                "male_35_39E": [100],
                "female_22_24E": [100],
                "female_25_29E": [100],
                "female_30_34E": [200],
                "female_35_39E": [200],
            }
        )
        ratios = sex_ratios(raw).iloc[0]

        assert ratios["males_22_35"] == pytest.approx(520)
        assert ratios["females_22_35"] == pytest.approx(440)
        assert ratios["sex_ratio"] == pytest.approx(520 / 440 * 100)
        assert ratios["sex_ratio_22_36"] == pytest.approx(540 / 480 * 100)
        assert ratios["sex_ratio_25_34"] == pytest.approx(400 / 300 * 100)


class TestCompute:
    """Tests for BasementDwellerIndex.compute."""

    def test_male_surplus_lives_alone(self, rng):
        """Test the main correlation and verdict."""
        result = BasementDwellerIndex().compute(make_data(rng))

        assert result.summary["pumas"] == 60
        assert result.summary["mean_sex_ratio"] == pytest.approx(105)
        main = result.get_test("sex ratio vs male living alone")
        assert main.estimate > 0.7
        assert result.findings[0].startswith("Male-surplus PUMAs have more men living alone")
        assert result.get_test("sex ratio 22-36 vs male living alone") is not None
        assert result.get_test("sex ratio 25-34 vs male living alone") is not None
        assert result.get_test("sex ratio vs female living alone") is not None

    def test_models_and_influence(self, rng):
        """Test the controlled models and the Cook's distance refit."""
        result = BasementDwellerIndex().compute(make_data(rng))

        assert {"baseline", "with controls", "quadratic", "without influential points"} <= set(result.models)
        assert result.summary["influential_pumas"] >= 0
        residuals = result.tables["residuals"]
        assert len(residuals) == 60
        assert residuals["residual"].mean() == pytest.approx(0, abs=1e-6)

    def test_controls(self, rng):
        """Test college rate and income scaling."""
        df = BasementDwellerIndex().compute(make_data(rng)).data
        row = df.iloc[0]
        assert row["income_thousands"] == pytest.approx(row["median_income"] / 1000)
        assert row["college_rate"] == pytest.approx(row["college_count"] / 150_000 * 100)

    def test_filters(self, rng):
        """Test implausible ratios and empty householder counts are dropped."""
        data = make_data(rng)
        raw = data["households"]
        raw.loc[0, ["male_22_24E", "male_25_29E", "male_30_34E", "male_35_39E"]] = [900, 1500, 1500, 1500]
        raw.loc[1, ["male_householdersE", "male_aloneE"]] = [0, 0]
        raw.loc[2, "male_householdersE"] = 0

        result = BasementDwellerIndex().compute(data)
        assert result.summary["pumas"] == 57

    def test_hotspots(self, rng):
        """Test hotspot ranking and the extreme surplus table."""
        result = BasementDwellerIndex().compute(make_data(rng))

        hotspots = result.tables["hotspots"]
        assert len(hotspots) == 20
        assert hotspots["hotspot_score"].is_monotonic_decreasing
        extreme = result.tables["extreme_male_surplus"]
        assert len(extreme) == 3
        assert extreme["sex_ratio"].min() > 120

    def test_figures(self, rng):
        """Test the residual chart is drawn when the refit ran."""
        analysis = BasementDwellerIndex()
        figures = analysis.figures(analysis.compute(make_data(rng)))
        assert set(figures) == {"sex_ratio_vs_living_alone", "sex_ratio_distribution", "controlled_residuals"}


class TestFetch:
    """Tests for BasementDwellerIndex.fetch."""

    @pytest.mark.asyncio
    async def test_state_list(self, rng):
        """Test both tables are requested for the chosen states."""
        client = CensusClient(cache=False)
        data = make_data(rng)
        with patch.object(client, "get_acs", new_callable=AsyncMock) as mock_acs:
            mock_acs.return_value = data["controls"]
            await BasementDwellerIndex(states=["NV", "AZ"], year=2021).fetch(client)

        assert call(PUMA, VARIABLES, year=2021, state=["NV", "AZ"]) in mock_acs.await_args_list
        assert call(PUMA, CONTROL_VARIABLES, year=2021, state=["NV", "AZ"]) in mock_acs.await_args_list
