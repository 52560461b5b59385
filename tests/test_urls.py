"""Tests for API URL and query construction."""

import pytest

from censusmonkey.urls import (
    acs_path,
    acs_variable_ids,
    bare_acs_id,
    boundary_url,
    build_api_url,
    decennial_path,
    geography_params,
    normalize_url,
    pep_csv_url,
    pep_date_code,
    table_endpoint,
    variables_url,
)

BASE = "https://api.census.gov/data"


class TestNormalizeUrl:
    """Tests for normalize_url."""

    def test_collapses_whitespace_and_encodes(self):
        """Test whitespace runs become single encoded spaces."""
        url = normalize_url("https://example.com/a  b\n?x=1&y=2")
        assert url == "https://example.com/a%20b%20?x=1&y=2"

    def test_keeps_existing_escapes(self):
        """Test percent escapes are not double-encoded."""
        assert normalize_url("https://example.com/a%20b") == "https://example.com/a%20b"


class TestAcsPaths:
    """Tests for ACS endpoint selection."""

    def test_detailed_tables(self):
        """Test B tables use the base survey endpoint."""
        assert acs_path("acs5", ["B01003_001", "B19013_001"]) == "acs/acs5"

    def test_subject_and_profile_tables(self):
        """Test S, DP and CP tables use their own endpoints."""
        assert acs_path("acs1", ["S0101_C01_001"]) == "acs/acs1/subject"
        assert table_endpoint(["DP05_0001"]) == "/profile"
        assert table_endpoint(["CP02_2019_001"]) == "/cprofile"

    def test_mixed_endpoints_rejected(self):
        """Test detailed and subject tables cannot share a request."""
        with pytest.raises(ValueError, match="requested separately"):
            table_endpoint(["B01003_001", "S0101_C01_001"])

    def test_unknown_survey(self):
        """Test an unknown survey name is rejected."""
        with pytest.raises(ValueError, match="Unknown ACS survey"):
            acs_path("acs2", ["B01003_001"])

    def test_variable_ids(self):
        """Test estimate and margin suffixes."""
        assert bare_acs_id("B01001_001E") == "B01001_001"
        assert bare_acs_id("B01001_001") == "B01001_001"
        assert acs_variable_ids(["B01001_001"]) == ["B01001_001E"]
        assert acs_variable_ids(["B01001_001E"], moe=True) == ["B01001_001E", "B01001_001M"]


class TestDecennialAndEstimates:
    """Tests for decennial and PEP helpers."""

    def test_decennial_summary_files(self):
        """Test SF1 before 2020 and DHC after."""
        assert decennial_path(2010) == "dec/sf1"
        assert decennial_path(2020) == "dec/dhc"
        assert decennial_path(2020, "pl") == "dec/pl"

    def test_decennial_bad_year(self):
        """Test non-census years are rejected."""
        with pytest.raises(ValueError):
            decennial_path(2015)

    def test_pep_date_codes(self):
        """Test July 1 date codes in the 2019 vintage."""
        assert pep_date_code(2010) == 3
        assert pep_date_code(2019) == 12

    def test_pep_date_code_out_of_range(self):
        """Test years outside the vintage are rejected."""
        with pytest.raises(ValueError):
            pep_date_code(2021)

    def test_pep_csv_url(self):
        """Test the intercensal totals file locations."""
        assert pep_csv_url("county", 2023).endswith(
            "/2020-2023/counties/totals/co-est2023-alldata.csv"
        )
        assert pep_csv_url("state", 2023).endswith("/state/totals/NST-EST2023-alldata.csv")
        with pytest.raises(ValueError):
            pep_csv_url("tract", 2023)


class TestGeographyParams:
    """Tests for the for/in predicates."""

    def test_state_level(self):
        """Test all states and one state."""
        assert geography_params("state") == [("for", "state:*")]
        assert geography_params("state", state="TX") == [("for", "state:48")]

    def test_counties_in_state(self):
        """Test counties nested in a state by name or abbreviation."""
        assert geography_params("county", state="California") == [
            ("for", "county:*"),
            ("in", "state:06"),
        ]

    def test_selected_counties(self):
        """Test a county list inside one state."""
        assert geography_params("county", state="06", county=["001", "075"]) == [
            ("for", "county:001,075"),
            ("in", "state:06"),
        ]

    def test_tracts_in_county(self):
        """Test tracts nested in state and county."""
        assert geography_params("tract", state="06", county="037") == [
            ("for", "tract:*"),
            ("in", "state:06 county:037"),
        ]

    def test_tract_requires_state(self):
        """Test tracts cannot be requested nationally."""
        with pytest.raises(ValueError, match="requires a state"):
            geography_params("tract")

    def test_county_selection_requires_state(self):
        """Test a county code alone is ambiguous."""
        with pytest.raises(ValueError):
            geography_params("county", county="001")

    def test_unknown_geography(self):
        """Test unsupported geographies are rejected."""
        with pytest.raises(ValueError, match="Unsupported geography"):
            geography_params("galaxy")

    def test_state_list_rejected(self):
        """Test state lists must be split by the caller."""
        with pytest.raises(ValueError):
            geography_params("county", state=["06", "48"])


class TestUrls:
    """Tests for endpoint URLs."""

    def test_api_urls(self):
        """Test dataset and variables URLs."""
        assert build_api_url(BASE + "/", 2022, "acs/acs5") == f"{BASE}/2022/acs/acs5"
        assert variables_url(BASE, 2020, "dec/dhc") == f"{BASE}/2020/dec/dhc/variables.json"

    def test_national_boundaries(self):
        """Test county files are national."""
        url = boundary_url("https://www2.census.gov/geo/tiger", 2022, "county", resolution="20m")
        assert url == "https://www2.census.gov/geo/tiger/GENZ2022/shp/cb_2022_us_county_20m.zip"

    def test_tract_boundaries_per_state(self):
        """Test tract files are per state and always 1:500k."""
        url = boundary_url("https://www2.census.gov/geo/tiger", 2022, "tract", "CA", "20m")
        assert url.endswith("cb_2022_06_tract_500k.zip")
        url = boundary_url("https://www2.census.gov/geo/tiger", 2022, "block group", "CA")
        assert url.endswith("cb_2022_06_bg_500k.zip")

    def test_tract_boundaries_need_state(self):
        """Test tract files cannot be fetched nationally."""
        with pytest.raises(ValueError):
            boundary_url("https://www2.census.gov/geo/tiger", 2022, "tract")
