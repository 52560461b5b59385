"""URL and query construction for the Census Data API and boundary files."""

from urllib.parse import quote

from censusmonkey.geography import state_fips

ACS_SURVEYS = {"acs1", "acs3", "acs5"}

# Geographies the API nests under a state, and those that need a county too
_STATE_NESTED = {
    "county",
    "tract",
    "block group",
    "place",
    "public use microdata area",
    "county subdivision",
}
_STATE_REQUIRED = {"tract", "block group"}
_COUNTY_NESTED = {"tract", "block group", "county subdivision"}

GEOGRAPHIES = {
    "us",
    "region",
    "division",
    "state",
    "zip code tabulation area",
} | _STATE_NESTED

# Vintage 2019 DATE_CODE for July 1 of a given year: 3 is 7/1/2010
_PEP_2019_FIRST_JULY_CODE = 3


def normalize_url(url: str) -> str:
    """Normalize and encode URLs while preserving common URL separators."""
    collapsed = " ".join(url.split())
    return quote(collapsed, safe=":/?&=%")


def table_endpoint(variables: list[str]) -> str:
    """ACS sub-endpoint implied by the variable table prefixes.

    Subject (S), data profile (DP) and comparison profile (CP) tables live
    under their own endpoints and cannot be mixed with detailed tables.

    Raises:
        ValueError: If the variables span more than one endpoint
    """
    endpoints = set()
    for variable in variables:
        if variable.startswith("DP"):
            endpoints.add("/profile")
        elif variable.startswith("CP"):
            endpoints.add("/cprofile")
        elif variable.startswith("S"):
            endpoints.add("/subject")
        else:
            endpoints.add("")

    if len(endpoints) > 1:
        raise ValueError(
            "Variables from detailed, subject and profile tables must be "
            "requested separately"
        )
    return endpoints.pop() if endpoints else ""


def acs_path(survey: str, variables: list[str]) -> str:
    if survey not in ACS_SURVEYS:
        raise ValueError(
            f"Unknown ACS survey '{survey}'. Must be one of: "
            + ", ".join(sorted(ACS_SURVEYS))
        )
    return f"acs/{survey}{table_endpoint(variables)}"


def decennial_path(year: int, sumfile: str | None = None) -> str:
    if sumfile is None:
        sumfile = "dhc" if year >= 2020 else "sf1"
    if year not in (2000, 2010, 2020):
        raise ValueError(f"No decennial census for {year}")
    return f"dec/{sumfile}"


def pep_date_code(year: int) -> int:
    """DATE_CODE of the July 1 estimate for ``year`` in the 2019 vintage."""
    if not 2010 <= year <= 2019:
        raise ValueError(f"The 2019 vintage has no July estimate for {year}")
    return year - 2010 + _PEP_2019_FIRST_JULY_CODE


def pep_csv_url(geography: str, vintage: int) -> str:
    """Download URL of the post-2020 intercensal totals file."""
    base = f"https://www2.census.gov/programs-surveys/popest/datasets/2020-{vintage}"
    if geography == "county":
        return f"{base}/counties/totals/co-est{vintage}-alldata.csv"
    if geography == "state":
        return f"{base}/state/totals/NST-EST{vintage}-alldata.csv"
    raise ValueError(
        f"Population estimates after 2019 are available for county and state, "
        f"not '{geography}'"
    )


def bare_acs_id(variable: str) -> str:
    """Strip the estimate/margin suffix: B01001_001E -> B01001_001."""
    if len(variable) > 2 and variable[-1] in "EM" and variable[-2].isdigit():
        return variable[:-1]
    return variable


def acs_variable_ids(variables: list[str], moe: bool = False) -> list[str]:
    """Expand bare ACS ids (B01001_001) into estimate and margin columns."""
    ids: list[str] = []
    for variable in variables:
        base = bare_acs_id(variable)
        ids.append(f"{base}E")
        if moe:
            ids.append(f"{base}M")
    return ids


def geography_params(
    geography: str,
    state: str | list[str] | None = None,
    county: str | list[str] | None = None,
) -> list[tuple[str, str]]:
    """Build the ``for``/``in`` query parameters for a geography.

    Args:
        geography: Census geography name, e.g. "county" or "tract"
        state: A single state (FIPS, abbreviation or name); lists must be
            split into separate requests before calling this
        county: Three-digit county FIPS code(s) within ``state``

    Raises:
        ValueError: For unknown geographies or missing required parents
    """
    if geography not in GEOGRAPHIES:
        raise ValueError(
            f"Unsupported geography '{geography}'. Must be one of: "
            + ", ".join(sorted(GEOGRAPHIES))
        )
    if isinstance(state, list):
        raise ValueError("geography_params takes a single state")
    if geography in _STATE_REQUIRED and state is None:
        raise ValueError(f"Geography '{geography}' requires a state")

    counties = [county] if isinstance(county, str) else list(county or [])

    if geography == "us":
        return [("for", "us:1")]

    if geography == "state":
        target = state_fips(state) if state is not None else "*"
        return [("for", f"state:{target}")]

    if geography == "county" and counties:
        if state is None:
            raise ValueError("Counties can only be selected within a state")
        return [
            ("for", f"county:{','.join(counties)}"),
            ("in", f"state:{state_fips(state)}"),
        ]

    params = [("for", f"{geography}:*")]
    if state is not None and geography in _STATE_NESTED:
        within = f"state:{state_fips(state)}"
        if counties and geography in _COUNTY_NESTED:
            within += f" county:{','.join(counties)}"
        params.append(("in", within))
    return params


def build_api_url(base_url: str, year: int, path: str) -> str:
    return f"{base_url.rstrip('/')}/{year}/{path}"


def variables_url(base_url: str, year: int, path: str) -> str:
    return f"{build_api_url(base_url, year, path)}/variables.json"


def boundary_url(
    base_url: str,
    year: int,
    level: str,
    state: str | None = None,
    resolution: str = "500k",
) -> str:
    """Cartographic boundary shapefile URL.

    Counties and states are published as national files; tracts and block
    groups only per state, and only at 1:500k.
    """
    file_level = {"block group": "bg"}.get(level, level)
    if level in ("tract", "block group"):
        if state is None:
            raise ValueError(f"{level} boundaries are published per state")
        scope = state_fips(state)
        resolution = "500k"
    elif level in ("county", "state"):
        scope = "us"
    else:
        raise ValueError(f"No cartographic boundaries for '{level}'")

    return (
        f"{base_url.rstrip('/')}/GENZ{year}/shp/"
        f"cb_{year}_{scope}_{file_level}_{resolution}.zip"
    )
