"""FIPS reference data and the fixed study areas used by the analyses."""

from dataclasses import dataclass

import pandas as pd


@dataclass(frozen=True)
class State:
    fips: str
    abbr: str
    name: str


STATES: list[State] = [
    State("01", "AL", "Alabama"),
    State("02", "AK", "Alaska"),
    State("04", "AZ", "Arizona"),
    State("05", "AR", "Arkansas"),
    State("06", "CA", "California"),
    State("08", "CO", "Colorado"),
    State("09", "CT", "Connecticut"),
    State("10", "DE", "Delaware"),
    State("11", "DC", "District of Columbia"),
    State("12", "FL", "Florida"),
    State("13", "GA", "Georgia"),
    State("15", "HI", "Hawaii"),
    State("16", "ID", "Idaho"),
    State("17", "IL", "Illinois"),
    State("18", "IN", "Indiana"),
    State("19", "IA", "Iowa"),
    State("20", "KS", "Kansas"),
    State("21", "KY", "Kentucky"),
    State("22", "LA", "Louisiana"),
    State("23", "ME", "Maine"),
    State("24", "MD", "Maryland"),
    State("25", "MA", "Massachusetts"),
    State("26", "MI", "Michigan"),
    State("27", "MN", "Minnesota"),
    State("28", "MS", "Mississippi"),
    State("29", "MO", "Missouri"),
    State("30", "MT", "Montana"),
    State("31", "NE", "Nebraska"),
    State("32", "NV", "Nevada"),
    State("33", "NH", "New Hampshire"),
    State("34", "NJ", "New Jersey"),
    State("35", "NM", "New Mexico"),
    State("36", "NY", "New York"),
    State("37", "NC", "North Carolina"),
    State("38", "ND", "North Dakota"),
    State("39", "OH", "Ohio"),
    State("40", "OK", "Oklahoma"),
    State("41", "OR", "Oregon"),
    State("42", "PA", "Pennsylvania"),
    State("44", "RI", "Rhode Island"),
    State("45", "SC", "South Carolina"),
    State("46", "SD", "South Dakota"),
    State("47", "TN", "Tennessee"),
    State("48", "TX", "Texas"),
    State("49", "UT", "Utah"),
    State("50", "VT", "Vermont"),
    State("51", "VA", "Virginia"),
    State("53", "WA", "Washington"),
    State("54", "WV", "West Virginia"),
    State("55", "WI", "Wisconsin"),
    State("56", "WY", "Wyoming"),
    State("72", "PR", "Puerto Rico"),
]

_BY_FIPS = {s.fips: s for s in STATES}
_BY_ABBR = {s.abbr: s for s in STATES}
_BY_NAME = {s.name.lower(): s for s in STATES}

# Lower 48 plus DC
CONTINENTAL_STATE_FIPS: list[str] = [
    s.fips for s in STATES if s.fips not in {"02", "15", "72"}
]

FLOW_INTERNATIONAL_CODES = {"AFR", "ASI", "EUR", "NAM", "SAM", "OCE"}


def get_state(value: str | int) -> State:
    """Look up a state by FIPS code, postal abbreviation or name.

    Raises:
        ValueError: If the value matches no state
    """
    text = str(value).strip()
    if text.isdigit():
        state = _BY_FIPS.get(text.zfill(2))
    elif len(text) == 2:
        state = _BY_ABBR.get(text.upper())
    else:
        state = _BY_NAME.get(text.lower())

    if state is None:
        raise ValueError(f"'{value}' is not a recognized state")
    return state


def state_fips(value: str | int) -> str:
    return get_state(value).fips


def flow_origin_type(code: str | None) -> str:
    """Classify a migration-flow origin code.

    State-level origins come as the state FIPS zero-padded to three digits,
    world regions as three-letter codes.
    """
    if code is None or pd.isna(code):
        return "Other"
    code = str(code)
    if len(code) == 3 and code.isdigit():
        return "US State"
    if code in FLOW_INTERNATIONAL_CODES:
        return "International"
    return "Other"


def flow_origin_state(code: str) -> str | None:
    """Map a three-digit flow origin code to a state name."""
    state = _BY_FIPS.get(str(code)[-2:]) if flow_origin_type(code) == "US State" else None
    return state.name if state else None


def split_name(name: str) -> tuple[str, str]:
    """Split a Census NAME ("Harris County, Texas") into area and state."""
    area, _, rest = str(name).partition(",")
    state = rest.rsplit(",", 1)[-1].strip() if rest else ""
    return area.strip(), state


def county_of_tract(name: str) -> str:
    """County part of a tract NAME.

    Newer vintages separate the parts with semicolons
    ("Census Tract 4001; Alameda County; California"), older ones with commas.
    """
    parts = [p.strip() for p in str(name).replace(";", ",").split(",")]
    return parts[1] if len(parts) >= 3 else ""


# Destination counties for the Texas migration study
TEXAS_DESTINATIONS = pd.DataFrame(
    {
        "geoid": [
            "48201",
            "48113",
            "48029",
            "48453",
            "48439",
            "48085",
            "48157",
            "48121",
            "48491",
            "48027",
        ],
        "county_name": [
            "Harris",
            "Dallas",
            "Bexar",
            "Travis",
            "Tarrant",
            "Collin",
            "Fort Bend",
            "Denton",
            "Williamson",
            "Bell",
        ],
        "metro_area": [
            "Houston",
            "Dallas",
            "San Antonio",
            "Austin",
            "Fort Worth",
            "Dallas",
            "Houston",
            "Dallas",
            "Austin",
            "Killeen",
        ],
    }
)

SOUTHERN_STATES = {
    "Alabama",
    "Arkansas",
    "Florida",
    "Georgia",
    "Kentucky",
    "Louisiana",
    "Mississippi",
    "North Carolina",
    "Oklahoma",
    "South Carolina",
    "Tennessee",
    "Virginia",
    "West Virginia",
}
WESTERN_STATES = {
    "Arizona",
    "California",
    "Colorado",
    "Idaho",
    "Montana",
    "Nevada",
    "New Mexico",
    "Oregon",
    "Utah",
    "Washington",
    "Wyoming",
}
NORTHEASTERN_STATES = {
    "Connecticut",
    "Maine",
    "Massachusetts",
    "New Hampshire",
    "New Jersey",
    "New York",
    "Pennsylvania",
    "Rhode Island",
    "Vermont",
}

HOUSTON_COUNTIES = [
    "48201",
    "48157",
    "48339",
    "48039",
    "48167",
    "48291",
    "48473",
    "48015",
    "48071",
]

BAY_AREA_COUNTIES = ["001", "013", "041", "055", "075", "081", "085", "095", "097"]

LOS_ANGELES_COUNTY = ("06", "037")

# County GEOIDs of metros with significant transit systems
TRANSIT_METROS: dict[str, list[str]] = {
    "New York": [
        "36005",
        "36047",
        "36061",
        "36081",
        "36085",
        "34003",
        "34017",
        "34031",
        "09001",
        "09009",
    ],
    "Los Angeles": ["06037", "06059", "06065", "06071", "06111"],
    "Chicago": ["17031", "17043", "17089", "17093", "17097", "17111"],
    "San Francisco": [f"06{c}" for c in BAY_AREA_COUNTIES],
    "Washington DC": [
        "11001",
        "24031",
        "24033",
        "51013",
        "51059",
        "51107",
        "51153",
        "51177",
        "51179",
        "51510",
    ],
    "Boston": ["25009", "25017", "25021", "25023", "25025"],
    "Philadelphia": [
        "42017",
        "42029",
        "42045",
        "42091",
        "42101",
        "34005",
        "34007",
        "34015",
    ],
    "Seattle": ["53033", "53053", "53061"],
    "Atlanta": ["13089", "13097", "13121", "13135", "13151"],
    "Houston": HOUSTON_COUNTIES,
}


def counties_by_state(geoids: list[str]) -> dict[str, list[str]]:
    """Group five-digit county GEOIDs into {state_fips: [county_fips, ...]}."""
    grouped: dict[str, list[str]] = {}
    for geoid in geoids:
        grouped.setdefault(geoid[:2], [])
        if geoid[2:] not in grouped[geoid[:2]]:
            grouped[geoid[:2]].append(geoid[2:])
    return grouped
