import asyncio
import json
import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from io import BytesIO
from typing import Any

import geopandas as gpd
import httpx
import numpy as np
import pandas as pd

from censusmonkey.urls import normalize_url


logger = logging.getLogger(__name__)

_http_client: ContextVar[httpx.AsyncClient | None] = ContextVar(
    "censusmonkey_http_client", default=None
)

# Annotation values the API returns in place of an estimate
CENSUS_SENTINELS = [
    -111111111,
    -222222222,
    -333333333,
    -555555555,
    -666666666,
    -888888888,
    -999999999,
]

# Columns that identify geography and must stay strings
GEOGRAPHY_COLUMNS = [
    "us",
    "region",
    "division",
    "state",
    "county",
    "county subdivision",
    "place",
    "tract",
    "block group",
    "public use microdata area",
    "zip code tabulation area",
]

_RETRY_STATUS = {429, 500, 502, 503, 504}


class CensusAPIError(RuntimeError):
    """The Census API answered with an error page instead of data."""


@asynccontextmanager
async def use_http_client(client: httpx.AsyncClient):
    token = _http_client.set(client)
    try:
        yield
    finally:
        _http_client.reset(token)


@asynccontextmanager
async def http_session(user_agent: str | None = None):
    """Share one AsyncClient across nested fetches, creating it if needed."""
    client = _http_client.get()
    if client is not None:
        yield client
        return

    headers = {"User-Agent": user_agent} if user_agent else None
    async with httpx.AsyncClient(headers=headers) as client:
        async with use_http_client(client):
            yield client


async def _request(
    client: httpx.AsyncClient,
    url: str,
    params: list[tuple[str, str]] | None,
    timeout: float,
) -> bytes:
    async with client.stream(
        "GET",
        url,
        params=params,
        follow_redirects=True,
        timeout=timeout,
    ) as response:
        if response.status_code == 400:
            # Unknown variables and bad predicates come back as a plain-text 400
            body = (await response.aread()).decode("utf-8", errors="replace")
            raise CensusAPIError(f"Census API rejected {url}: {body.strip()[:300]}")
        response.raise_for_status()
        return await response.aread()


async def get_content(
    url: str,
    params: list[tuple[str, str]] | None = None,
    timeout: float = 120,
    retries: int = 3,
    backoff: float = 1.0,
) -> bytes:
    """GET ``url`` and return the body, retrying transient failures.

    Transport errors and 429/5xx responses are retried with exponential
    backoff; other HTTP errors are raised immediately.
    """
    url = normalize_url(url)
    attempt = 0
    while True:
        try:
            client = _http_client.get()
            if client is None:
                async with httpx.AsyncClient() as client:
                    return await _request(client, url, params, timeout)
            return await _request(client, url, params, timeout)
        except httpx.HTTPStatusError as e:
            if e.response.status_code not in _RETRY_STATUS or attempt >= retries:
                raise
            error: Exception = e
        except httpx.TransportError as e:
            if attempt >= retries:
                raise CensusAPIError(f"Request to {url} failed: {e}") from e
            error = e

        delay = backoff * 2**attempt
        attempt += 1
        logger.warning(
            f"Request to {url} failed ({error}); retry {attempt}/{retries} in {delay:.1f}s"
        )
        await asyncio.sleep(delay)


def decode_json_rows(content: bytes, url: str = "") -> list[list[Any]]:
    """Decode an API body, turning the HTML error pages into exceptions."""
    text = content.decode("utf-8", errors="replace").strip()
    if not text:
        return []

    if not text.startswith("["):
        message = " ".join(text.split())[:300]
        raise CensusAPIError(f"Census API error for {url}: {message}")

    return json.loads(text)


async def fetch_json(
    url: str,
    params: list[tuple[str, str]] | None = None,
    timeout: float = 120,
    retries: int = 3,
    backoff: float = 1.0,
) -> list[list[Any]]:
    content = await get_content(
        url, params=params, timeout=timeout, retries=retries, backoff=backoff
    )
    return decode_json_rows(content, url)


def parse_census_json(rows: list[list[Any]]) -> pd.DataFrame:
    """Turn the API's header-row array into a DataFrame of raw values."""
    if not rows:
        return pd.DataFrame()

    header, *records = rows
    df = pd.DataFrame(records, columns=header, dtype=object)
    return df.where(df.notna(), np.nan)


def coerce_numeric(df: pd.DataFrame, columns: list[str]) -> pd.DataFrame:
    """Convert estimate columns to numbers, blanking annotation sentinels."""
    df = df.copy()
    for column in columns:
        if column not in df.columns:
            continue
        df[column] = pd.to_numeric(df[column], errors="coerce")
        df[column] = df[column].replace(CENSUS_SENTINELS, np.nan)
    return df


def build_geoid(df: pd.DataFrame) -> pd.Series:
    """Concatenate the geography columns present in ``df`` into a GEOID."""
    parts = [c for c in GEOGRAPHY_COLUMNS if c in df.columns and c != "us"]
    if not parts:
        return pd.Series(["1"] * len(df), index=df.index, name="GEOID")

    geoid = df[parts[0]].astype(str)
    for column in parts[1:]:
        geoid = geoid + df[column].astype(str)
    return geoid.rename("GEOID")


async def fetch_boundaries(
    url: str, timeout: float = 120, retries: int = 3, backoff: float = 1.0
) -> gpd.GeoDataFrame:
    content = await get_content(url, timeout=timeout, retries=retries, backoff=backoff)
    with BytesIO(content) as f:
        gdf = gpd.read_file(f)
    return gdf


async def fetch_csv(
    url: str, timeout: float = 120, retries: int = 3, backoff: float = 1.0
) -> pd.DataFrame:
    """Download a Census CSV file; these are published as latin-1."""
    content = await get_content(url, timeout=timeout, retries=retries, backoff=backoff)
    with BytesIO(content) as f:
        return pd.read_csv(f, encoding="latin-1", dtype=str)
