from unittest.mock import AsyncMock, call, patch

import numpy as np
import pandas as pd
import pytest

from censusmonkey.analyses.migration_symmetry import (
    MigrationSymmetry,
    concentration_pairs,
    metro_preferences,
    state_asymmetry,
    state_inflows,
)
from censusmonkey.client import CensusClient
from censusmonkey.geography import TEXAS_DESTINATIONS

EVEN_STATES = {"006": "California", "008": "Colorado", "034": "New Jersey", "036": "New York", "013": "Georgia"}


@pytest.fixture
def flows():
    destinations = TEXAS_DESTINATIONS["geoid"].tolist()
    rows = []
    for scale, (code, name) in enumerate(EVEN_STATES.items(), start=1):
        for i, dest in enumerate(destinations):
            rows.append({"GEOID1": dest, "GEOID2": code, "FULL2_NAME": name, "MOVEDIN": scale * (200 + 10 * i)})
    # Florida movers almost all pick Harris County
    for dest in destinations:
        rows.append(
            {"GEOID1": dest, "GEOID2": "012", "FULL2_NAME": "Florida", "MOVEDIN": 2000 if dest == "48201" else 50}
        )
    rows += [
        {"GEOID1": "48201", "GEOID2": "EUR", "FULL2_NAME": "Europe", "MOVEDIN": 5000},
        {"GEOID1": "48201", "GEOID2": "048", "FULL2_NAME": "Texas", "MOVEDIN": np.nan},
        {"GEOID1": "48113", "GEOID2": "040", "FULL2_NAME": "Oklahoma", "MOVEDIN": 0},
        {"GEOID1": "06037", "GEOID2": "012", "FULL2_NAME": "Florida", "MOVEDIN": 900},
    ]
    return pd.DataFrame(rows)


class TestHelpers:
    """Tests for the inflow helpers."""

    def test_state_inflows_filters(self, flows):
        """Test only positive state-origin flows into the ten counties remain."""
        inflows = state_inflows(flows)

        assert len(inflows) == 60
        assert set(inflows["origin_state"]) == set(EVEN_STATES.values()) | {"Florida"}
        assert set(inflows["dest_geoid"]) == set(TEXAS_DESTINATIONS["geoid"])
        harris = inflows[(inflows["origin_state"] == "Florida") & (inflows["dest_geoid"] == "48201")]
        assert harris["metro_area"].iloc[0] == "Houston"

    def test_state_asymmetry_ranks_by_cv(self, flows):
        """Test the concentrated state ranks first."""
        table = state_asymmetry(state_inflows(flows))

        assert table["origin_state"].iloc[0] == "Florida"
        florida = table.iloc[0]
        assert florida["total_to_tx"] == 2450
        assert florida["top_concentration"] == pytest.approx(2000 / 2450)
        assert florida["n_counties"] == 10

    def test_state_asymmetry_minimums(self):
        """Test states under 100 movers or five counties are dropped."""
        inflows = pd.DataFrame(
            {
                "origin_state": ["Ohio"] * 4 + ["Iowa"] * 5,
                "inbound_flow": [500, 500, 500, 500, 10, 10, 10, 10, 10],
            }
        )
        assert state_asymmetry(inflows).empty

    def test_concentration_pairs(self, flows):
        """Test only pairs with twice their even share are kept."""
        pairs = concentration_pairs(state_inflows(flows))

        assert len(pairs) == 1
        assert pairs["county_name"].iloc[0] == "Harris"
        assert pairs["concentration_ratio"].iloc[0] == pytest.approx(20000 / 2450)

    def test_metro_preferences(self, flows):
        """Test the top metro share and strong preference flag."""
        preferences = metro_preferences(state_inflows(flows)).set_index("origin_state")

        assert preferences.loc["Florida", "top_metro"] == "Houston"
        assert preferences.loc["Florida", "top_metro_pct"] == pytest.approx(2050 / 2450)
        assert bool(preferences.loc["Florida", "strong_preference"])
        assert not preferences.loc["California", "strong_preference"]


class TestCompute:
    """Tests for MigrationSymmetry.compute."""

    def test_summary_and_findings(self, flows):
        """Test headline numbers and the favorite county story."""
        result = MigrationSymmetry().compute({"flows": flows})

        assert result.summary["origin_states"] == 6
        assert result.summary["destination_counties"] == 10
        assert result.summary["states_analyzed"] == 6
        assert result.summary["total_migrants"] == 2450 * (1 + 2 + 3 + 4 + 5) + 2450
        assert result.summary["strong_metro_preferences"] == 1
        assert result.findings[0].startswith("Florida (CV = ")
        assert result.findings[0].endswith("most prefers Harris County")

    def test_tests(self, flows):
        """Test the volume correlation and regional ANOVA run."""
        result = MigrationSymmetry().compute({"flows": flows})

        assert result.get_test("log total flow vs asymmetry") is not None
        assert result.get_test("asymmetry by region") is not None
        regions = result.tables["regions"].set_index("region")
        assert regions.loc["West", "states"] == 2

    def test_regional_anova_needs_two_per_region(self, flows):
        """Test the ANOVA is skipped when a region has one state."""
        result = MigrationSymmetry().compute({"flows": flows[flows["GEOID2"] != "013"]})

        assert result.get_test("asymmetry by region") is None
        assert "Not every region has two states; regional ANOVA skipped" in result.findings

    def test_no_qualifying_states(self, flows):
        """Test sparse flows stop early."""
        sparse = flows[flows["GEOID1"].isin(["48201", "48113", "48029"])]
        result = MigrationSymmetry().compute({"flows": sparse})

        assert result.summary["states_analyzed"] == 0
        assert np.isnan(result.summary["mean_cv"])
        assert result.findings == ["No origin state sent at least 100 movers to 5 counties"]
        assert MigrationSymmetry().figures(result) == {}

    def test_figures(self, flows):
        """Test all three charts are drawn."""
        analysis = MigrationSymmetry()
        figures = analysis.figures(analysis.compute({"flows": flows}))
        assert set(figures) == {"asymmetry_distribution", "most_asymmetric", "volume_vs_asymmetry"}


class TestFetch:
    """Tests for MigrationSymmetry.fetch."""

    @pytest.mark.asyncio
    async def test_one_request_per_destination(self, flows):
        """Test flows are requested for each Texas county."""
        client = CensusClient(cache=False)
        with patch.object(client, "get_flows", new_callable=AsyncMock) as mock_flows:
            mock_flows.return_value = flows.head(2)
            data = await MigrationSymmetry(year=2019).fetch(client)

        assert mock_flows.await_count == 10
        assert call("48", county="201", year=2019) in mock_flows.await_args_list
        assert len(data["flows"]) == 20
