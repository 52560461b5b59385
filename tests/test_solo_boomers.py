from unittest.mock import AsyncMock, call, patch

import numpy as np
import pandas as pd
import pytest

from censusmonkey.analyses.solo_boomers import (
    HIGH_GROWTH,
    HOUSEHOLD_VARIABLES,
    SoloBoomers,
    growth_category,
    housing_mix,
    mismatch_category,
    solo_senior_share,
)
from censusmonkey.client import CensusClient


def make_data(rng, n=40):
    geoids = [f"06{c:03d}" for c in range(1, 2 * n, 2)]
    names = [f"County {g[2:]} County, California" for g in geoids]
    large_pct = np.linspace(30, 80, n)
    pct_change = 0.08 * (large_pct - 30) + rng.normal(0, 0.2, size=n)

    def households(solo_pct):
        solo = np.round(solo_pct * 100)
        return pd.DataFrame(
            {
                "GEOID": geoids,
                "NAME": names,
                "total_householdsE": 10_000,
                "solo_householdsE": 2_500,
                "solo_male_65plusE": solo // 2,
                "solo_female_65plusE": solo - solo // 2,
            }
        )

    large = np.round(large_pct * 10)
    small = 1000 - large
    bedrooms = pd.DataFrame(
        {
            "GEOID": geoids,
            "bedrooms_1E": 1000,
            "bedrooms_2E": small // 3,
            "bedrooms_3E": small // 3,
            "bedrooms_4E": small - 2 * (small // 3),
            "bedrooms_5E": large // 2,
            "bedrooms_6E": large - large // 2,
            "bedrooms_7E": 0,
        }
    )
    structures = pd.DataFrame(
        {"GEOID": geoids, "total_structuresE": 1000, "detachedE": 600, "attachedE": 50}
    )
    return {
        "households_2010": households(np.full(n, 10.0)),
        "households_2020": households(10.0 + pct_change),
        "bedrooms": bedrooms,
        "structures": structures,
    }


class TestHelpers:
    """Tests for share and category helpers."""

    def test_solo_senior_share(self):
        """Test both sexes are summed and empty counties are missing."""
        households = pd.DataFrame(
            {
                "GEOID": ["06001", "06003"],
                "total_householdsE": [1000, 0],
                "solo_male_65plusE": [40, 0],
                "solo_female_65plusE": [80, 0],
            }
        )
        share = solo_senior_share(households)
        assert share["solo_65plus"].tolist() == [120, 0]
        assert share["solo_65plus_pct"].iloc[0] == pytest.approx(12.0)
        assert np.isnan(share["solo_65plus_pct"].iloc[1])

    def test_growth_category(self):
        """Test percentage point bands."""
        assert growth_category(pd.Series([3.0, 2.0, 0.5, -0.1])).tolist() == [
            HIGH_GROWTH,
            "Moderate Growth (1.5-3%)",
            "Low Growth (0-1.5%)",
            "Decline",
        ]

    def test_mismatch_category(self):
        """Test mismatch index bands."""
        assert mismatch_category(pd.Series([2.5, 1.0, 0.7, 0.1])).tolist() == [
            "Severe Mismatch",
            "Moderate Mismatch",
            "Mild Mismatch",
            "No Mismatch",
        ]

    def test_housing_mix(self):
        """Test small, large and single-family shares."""
        bedrooms = pd.DataFrame(
            {
                "GEOID": ["06001"],
                "bedrooms_1E": [100],
                "bedrooms_2E": [10],
                "bedrooms_3E": [20],
                "bedrooms_4E": [20],
                "bedrooms_5E": [30],
                "bedrooms_6E": [15],
                "bedrooms_7E": [5],
            }
        )
        structures = pd.DataFrame(
            {"GEOID": ["06001"], "total_structuresE": [100], "detachedE": [60], "attachedE": [10]}
        )
        mix = housing_mix(bedrooms, structures).iloc[0]
        assert mix["small_units_pct"] == pytest.approx(50.0)
        assert mix["large_units_pct"] == pytest.approx(50.0)
        assert mix["single_family_pct"] == pytest.approx(70.0)


class TestCompute:
    """Tests for SoloBoomers.compute."""

    def test_growth_follows_large_homes(self, rng):
        """Test solo senior growth tracks the large-home share."""
        result = SoloBoomers().compute(make_data(rng))

        assert result.summary["counties"] == 40
        assert result.summary["solo_65plus_2010"] == 40 * 1000
        assert result.summary["solo_65plus_2020"] > result.summary["solo_65plus_2010"]
        change = result.get_test("solo 65+ change vs large housing share")
        assert change.estimate > 0.9
        assert result.findings[0].startswith("Solo senior households grew more where large homes dominate")
        comparison = result.get_test("large housing share: high growth vs others")
        assert comparison.extra["mean_a"] > comparison.extra["mean_b"]
        assert result.summary["severe_mismatch_counties"] > 0

    def test_tables(self, rng):
        """Test the mismatch ranking and state rollup."""
        result = SoloBoomers().compute(make_data(rng))

        top = result.tables["top_mismatch"]
        assert len(top) == 10
        assert top["mismatch_index"].is_monotonic_decreasing
        states = result.tables["states"]
        assert states["state"].tolist() == ["California"]
        assert states["counties"].iloc[0] == 40

    def test_counties_missing_in_2010_dropped(self, rng):
        """Test only counties present in both years are compared."""
        data = make_data(rng)
        data["households_2010"] = data["households_2010"].iloc[5:]
        result = SoloBoomers().compute(data)
        assert result.summary["counties"] == 35

    def test_t_test_needs_five_high_growth(self, rng):
        """Test the group comparison is skipped without enough high-growth counties."""
        data = make_data(rng)
        data["households_2020"] = data["households_2010"].copy()
        result = SoloBoomers().compute(data)

        assert result.get_test("large housing share: high growth vs others") is None
        assert "Only 0 high-growth and 40 other counties; t-test skipped" in result.findings

    def test_figures(self, rng):
        """Test all three charts are drawn."""
        analysis = SoloBoomers()
        figures = analysis.figures(analysis.compute(make_data(rng)))
        assert set(figures) == {"pct_change", "change_vs_large_units", "supply_demand_gap"}


class TestFetch:
    """Tests for SoloBoomers.fetch."""

    @pytest.mark.asyncio
    async def test_default_state(self, rng):
        """Test California is the default and both ACS years are requested."""
        client = CensusClient(cache=False)
        frame = make_data(rng)["structures"]
        with patch.object(client, "get_acs", new_callable=AsyncMock) as mock_acs:
            mock_acs.return_value = frame
            data = await SoloBoomers().fetch(client)

        assert mock_acs.await_count == 4
        assert call("county", HOUSEHOLD_VARIABLES, year=2010, state=["CA"]) in mock_acs.await_args_list
        assert call("county", HOUSEHOLD_VARIABLES, year=2020, state=["CA"]) in mock_acs.await_args_list
        assert set(data) == {"households_2010", "households_2020", "bedrooms", "structures"}

    @pytest.mark.asyncio
    async def test_nationwide(self, rng):
        """Test an empty state list fetches every county."""
        client = CensusClient(cache=False)
        with patch.object(client, "get_acs", new_callable=AsyncMock) as mock_acs:
            mock_acs.return_value = make_data(rng)["structures"]
            await SoloBoomers(states=[]).fetch(client)

        assert all(c.kwargs["state"] is None for c in mock_acs.await_args_list)
