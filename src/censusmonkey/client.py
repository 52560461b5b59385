import asyncio
import hashlib
import json
import logging
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import geopandas as gpd
import pandas as pd
from tqdm import tqdm

from censusmonkey.cache import CacheEntry, FileCache
from censusmonkey.config import MonkeyConfig, load_config
from censusmonkey.geography import state_fips
from censusmonkey.loaders import (
    GEOGRAPHY_COLUMNS,
    build_geoid,
    coerce_numeric,
    fetch_boundaries,
    fetch_csv,
    fetch_json,
    get_content,
    http_session,
    parse_census_json,
)
from censusmonkey.urls import (
    acs_path,
    acs_variable_ids,
    bare_acs_id,
    boundary_url,
    build_api_url,
    decennial_path,
    geography_params,
    pep_csv_url,
    pep_date_code,
    variables_url,
)

T = TypeVar("T")

Variables = list[str] | tuple[str, ...] | dict[str, str]

# Geographies fetched nationally and filtered afterwards, never per state
_NATIONAL_GEOGRAPHIES = {"us", "region", "division", "state", "zip code tabulation area"}

FLOW_ID_COLUMNS = ["GEOID1", "GEOID2", "FULL1_NAME", "FULL2_NAME"]

LATEST_PEP_VINTAGE = 2023


def _variable_aliases(variables: Variables) -> dict[str, str]:
    """Map API variable ids to output names.

    A plain list keeps the ids as names; a mapping is ``{alias: id}``.
    """
    if isinstance(variables, dict):
        return {variable_id: alias for alias, variable_id in variables.items()}
    return {variable_id: variable_id for variable_id in variables}


def _as_list(value: str | list[str] | tuple[str, ...] | None) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    return list(value)


class CensusClient:
    """Async client for the Census Data API with a file cache.

    Every fetch returns a pandas DataFrame keyed by ``GEOID``. Responses are
    cached on disk under a hash of the request, so re-running an analysis
    does not hit the API again until the cache TTL runs out.

    Examples:
        >>> client = CensusClient()
        >>> df = asyncio.run(client.get_acs("county", ["B01003_001"], state="TX"))
    """

    def __init__(
        self,
        cache: bool | None = None,
        cache_dir: str | None = None,
        cache_ttl: int | None = None,
        cache_max_size_mb: float | None = None,
        config_file: str | Path | None = None,
        api_key: str | None = None,
        config: MonkeyConfig | None = None,
    ) -> None:
        self._logger = logging.getLogger(__name__)

        self.config: MonkeyConfig = config or load_config(config_file)

        # Explicit arguments win over the configuration file
        cache_settings = self.config.cache
        self.cache_enabled = cache if cache is not None else cache_settings.enabled
        self.api_key = api_key or self.config.census.api_key

        self._cache: FileCache | None = None
        if self.cache_enabled:
            self._cache = FileCache(
                cache_dir=cache_dir or cache_settings.directory,
                ttl=cache_ttl if cache_ttl is not None else cache_settings.ttl,
                max_size_mb=cache_max_size_mb or cache_settings.max_size_mb,
            )

        if not self.api_key:
            self._logger.info(
                "No Census API key configured; requests are limited to 500 per day"
            )

    # ============================================================================
    # Plumbing
    # ============================================================================

    def _generate_cache_key(
        self, url: str, params: list[tuple[str, str]] | None = None
    ) -> str:
        """Generate unique cache key for a request"""
        key_data = {"url": url, "params": sorted(params or [])}
        key_string = json.dumps(key_data, sort_keys=True)
        return hashlib.sha256(key_string.encode()).hexdigest()

    def _network_kwargs(self) -> dict[str, Any]:
        network = self.config.network
        return {
            "timeout": network.timeout,
            "retries": network.retries,
            "backoff": network.backoff,
        }

    async def _cached(
        self,
        loader: Callable[[], Awaitable[T]],
        url: str,
        params: list[tuple[str, str]] | None,
        source: str,
        year: int | None = None,
        geography: str | None = None,
        use_cache: bool = True,
    ) -> T:
        cache_key = self._generate_cache_key(url, params)

        if use_cache and self._cache:
            cached = self._cache.get(cache_key)
            if cached is not None:
                self._logger.debug(f"Cache hit for {source} {year} {geography}")
                return cached

        self._logger.debug(f"Fetching {url} {params or ''}")
        data = await loader()

        if self._cache:
            current_time = time.time()
            entry = CacheEntry(
                cache_key=cache_key,
                source=source,
                year=year,
                geography=geography,
                url=url,
                cached_at=current_time,
                last_accessed=current_time,
                ttl=self._cache.ttl,
                size_bytes=0,
                query_params=dict(params) if params else None,
            )
            self._cache.set(cache_key, data, entry)

        return data

    async def _fetch_rows(
        self,
        url: str,
        params: list[tuple[str, str]],
        source: str,
        year: int,
        geography: str,
    ) -> list[list[Any]]:
        async def _load() -> list[list[Any]]:
            request_params = list(params)
            if self.api_key:
                request_params.append(("key", self.api_key))
            return await fetch_json(url, request_params, **self._network_kwargs())

        return await self._cached(_load, url, params, source, year, geography)

    async def _fetch_one_geography(
        self,
        path: str,
        year: int,
        fields: list[str],
        geography: str,
        state: str | None,
        county: list[str] | None,
        predicates: list[tuple[str, str]] | None = None,
        include_name: bool = True,
    ) -> pd.DataFrame:
        """Fetch ``fields`` for one state (or nationally), chunked by field count."""
        url = build_api_url(self.config.census.base_url, year, path)
        geo = geography_params(geography, state=state, county=county)
        chunk_size = self.config.census.max_variables_per_request

        chunks = [fields[i : i + chunk_size] for i in range(0, len(fields), chunk_size)]
        frames: list[pd.DataFrame] = []
        for index, chunk in enumerate(chunks):
            get = (["NAME"] if include_name and index == 0 else []) + chunk
            params = [("get", ",".join(get)), *geo, *(predicates or [])]
            rows = await self._fetch_rows(url, params, path, year, geography)
            frames.append(parse_census_json(rows))

        frames = [f for f in frames if not f.empty]
        if not frames:
            return pd.DataFrame()

        geo_columns = [c for c in GEOGRAPHY_COLUMNS if c in frames[0].columns]
        df = frames[0]
        for frame in frames[1:]:
            drop = [c for c in frame.columns if c in df.columns and c not in geo_columns]
            df = df.merge(frame.drop(columns=drop), on=geo_columns, how="outer")
        return df

    async def _fetch_table(
        self,
        path: str,
        year: int,
        fields: list[str],
        geography: str,
        state: str | list[str] | None,
        county: str | list[str] | None,
        predicates: list[tuple[str, str]] | None = None,
        include_name: bool = True,
    ) -> pd.DataFrame:
        """Fetch across one or more states and attach a GEOID column."""
        states = _as_list(state)
        counties = _as_list(county)

        if geography in _NATIONAL_GEOGRAPHIES or len(states) <= 1:
            state_code = states[0] if states and geography not in _NATIONAL_GEOGRAPHIES else None
            async with http_session(self.config.network.user_agent):
                df = await self._fetch_one_geography(
                    path,
                    year,
                    fields,
                    geography,
                    state_code,
                    counties if state_code else None,
                    predicates,
                    include_name,
                )
        else:
            if counties and len(states) > 1:
                raise ValueError("Counties can only be selected within a single state")
            jobs = [
                lambda s=s: self._fetch_one_geography(
                    path, year, fields, geography, s, counties, predicates, include_name
                )
                for s in states
            ]
            frames = [f for f in await self.load_all(jobs) if not f.empty]
            df = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()

        if df.empty:
            return df

        df.insert(0, "GEOID", build_geoid(df))
        if geography == "state" and states:
            wanted = {state_fips(s) for s in states}
            df = df[df["GEOID"].isin(wanted)]

        df = df.drop(columns=[c for c in GEOGRAPHY_COLUMNS if c in df.columns])
        return df.reset_index(drop=True)

    async def load_all(
        self,
        jobs: list[Callable[[], Awaitable[T]]],
        show_progress: bool = False,
        ignore_errors: bool = False,
        max_concurrency: int | None = None,
    ) -> list[T | None]:
        """Run fetch jobs concurrently, bounded by ``network.max_concurrency``.

        Args:
            jobs: Zero-argument coroutine functions
            show_progress: Show a tqdm progress bar
            ignore_errors: Log failures and return None in their place
                instead of cancelling the batch
            max_concurrency: Override the configured concurrency limit

        Returns:
            Results in the same order as ``jobs``
        """
        if not jobs:
            return []

        concurrency = max_concurrency or self.config.network.max_concurrency
        results: list[T | None] = [None] * len(jobs)
        semaphore = asyncio.Semaphore(concurrency)
        progress = tqdm(total=len(jobs)) if show_progress else None

        async def _run_one(index: int, job: Callable[[], Awaitable[T]]) -> None:
            async with semaphore:
                if ignore_errors:
                    try:
                        results[index] = await job()
                    except Exception as e:
                        self._logger.warning(f"Fetch {index} failed: {e}. Skipping.")
                        results[index] = None
                else:
                    results[index] = await job()
            if progress is not None:
                progress.update(1)

        try:
            async with http_session(self.config.network.user_agent):
                async with asyncio.TaskGroup() as tg:
                    for index, job in enumerate(jobs):
                        tg.create_task(_run_one(index, job))
        except ExceptionGroup as eg:
            # Re-raise the first failure unwrapped
            raise eg.exceptions[0] from eg
        finally:
            if progress is not None:
                progress.close()

        return results

    # ============================================================================
    # Data products
    # ============================================================================

    async def get_acs(
        self,
        geography: str,
        variables: Variables,
        year: int = 2022,
        survey: str = "acs5",
        state: str | list[str] | None = None,
        county: str | list[str] | None = None,
        output: str = "wide",
        moe: bool = False,
        geometry: bool = False,
    ) -> pd.DataFrame:
        """Fetch American Community Survey estimates.

        Args:
            geography: Census geography, e.g. "county", "tract",
                "public use microdata area"
            variables: Variable ids ("B01003_001") or an {alias: id} mapping
            year: Survey end year
            survey: "acs5", "acs1" or "acs3"
            state: State(s) as FIPS, abbreviation or name
            county: Three-digit county code(s) within a single state
            output: "wide" (one ``<name>E`` column per variable) or "tidy"
                (GEOID, NAME, variable, estimate[, moe])
            moe: Also return margins of error (``<name>M`` columns)
            geometry: Join cartographic boundaries and return a GeoDataFrame

        Returns:
            DataFrame keyed by GEOID
        """
        names: dict[str, str] = {}
        for variable_id, alias in _variable_aliases(variables).items():
            bare = bare_acs_id(variable_id)
            names[bare] = bare if alias == variable_id else alias
        path = acs_path(survey, list(names))
        fields = acs_variable_ids(list(names), moe=moe)

        df = await self._fetch_table(path, year, fields, geography, state, county)
        if df.empty:
            return df

        df = coerce_numeric(df, fields)
        rename = {}
        for variable_id, alias in names.items():
            rename[f"{variable_id}E"] = f"{alias}E"
            rename[f"{variable_id}M"] = f"{alias}M"
        df = df.rename(columns=rename)

        if output == "tidy":
            df = self._to_tidy(df, list(names.values()), suffixed=True, moe=moe)
        elif output != "wide":
            raise ValueError(f"Unknown output '{output}'. Use 'wide' or 'tidy'")

        if geometry:
            df = await self._attach_geometry(df, geography, year, state)
        return df

    async def get_decennial(
        self,
        geography: str,
        variables: Variables,
        year: int = 2020,
        sumfile: str | None = None,
        state: str | list[str] | None = None,
        county: str | list[str] | None = None,
        output: str = "wide",
        geometry: bool = False,
    ) -> pd.DataFrame:
        """Fetch decennial census counts (SF1 for 2000/2010, DHC for 2020)."""
        aliases = _variable_aliases(variables)
        path = decennial_path(year, sumfile)
        fields = list(aliases)

        df = await self._fetch_table(path, year, fields, geography, state, county)
        if df.empty:
            return df

        df = coerce_numeric(df, fields).rename(columns=aliases)
        if output == "tidy":
            df = self._to_tidy(df, list(aliases.values()), suffixed=False)
        elif output != "wide":
            raise ValueError(f"Unknown output '{output}'. Use 'wide' or 'tidy'")

        if geometry:
            df = await self._attach_geometry(df, geography, year, state)
        return df

    async def get_estimates(
        self,
        geography: str = "county",
        year: int = 2019,
        vintage: int | None = None,
        state: str | list[str] | None = None,
        county: str | list[str] | None = None,
    ) -> pd.DataFrame:
        """Fetch Population Estimates Program totals for one year.

        Years through 2019 come from the 2019 vintage API (``POP`` at the
        July 1 DATE_CODE); later years from the published vintage totals
        files (``POPESTIMATE<year>``).

        Returns:
            DataFrame with GEOID, NAME, population and year
        """
        if year <= 2019:
            predicates = [("DATE_CODE", str(pep_date_code(year)))]
            df = await self._fetch_table(
                "pep/population", 2019, ["POP"], geography, state, county, predicates
            )
            if df.empty:
                return df
            df = coerce_numeric(df, ["POP"]).rename(columns={"POP": "population"})
            df = df[["GEOID", "NAME", "population"]]
        else:
            vintage = vintage or max(LATEST_PEP_VINTAGE, year)
            df = await self._get_pep_totals(geography, year, vintage)
            states = _as_list(state)
            if states:
                df = df[df["GEOID"].str[:2].isin([state_fips(s) for s in states])]
            counties = _as_list(county)
            if counties and geography == "county":
                df = df[df["GEOID"].str[2:].isin(counties)]

        df = df.copy()
        df["year"] = year
        return df.reset_index(drop=True)

    async def _get_pep_totals(
        self, geography: str, year: int, vintage: int
    ) -> pd.DataFrame:
        url = pep_csv_url(geography, vintage)

        async def _load() -> pd.DataFrame:
            return await fetch_csv(url, **self._network_kwargs())

        raw = await self._cached(_load, url, None, "pep/totals", vintage, geography)
        column = f"POPESTIMATE{year}"
        if column not in raw.columns:
            raise ValueError(f"Vintage {vintage} has no estimate for {year}")

        if geography == "county":
            raw = raw[raw["SUMLEV"].astype(int) == 50]
            geoid = raw["STATE"].str.zfill(2) + raw["COUNTY"].str.zfill(3)
            name = raw["CTYNAME"] + ", " + raw["STNAME"]
        else:
            raw = raw[raw["SUMLEV"].astype(int) == 40]
            geoid = raw["STATE"].str.zfill(2)
            name = raw["NAME"]

        return pd.DataFrame(
            {
                "GEOID": geoid,
                "NAME": name,
                "population": pd.to_numeric(raw[column], errors="coerce"),
            }
        )

    async def get_flows(
        self,
        state: str,
        county: str | list[str] | None = None,
        geography: str = "county",
        year: int = 2020,
        variables: Variables = ("MOVEDIN", "MOVEDOUT", "MOVEDNET"),
    ) -> pd.DataFrame:
        """Fetch ACS migration flows for counties of one state.

        Each row is a (GEOID1 focal area, GEOID2 other end) pair. Origins
        outside the county universe use three-character codes in GEOID2.
        """
        aliases = _variable_aliases(list(variables))
        fields = FLOW_ID_COLUMNS + list(aliases)

        df = await self._fetch_table(
            "acs/flows", year, fields, geography, state, county, include_name=False
        )
        if df.empty:
            return df

        df = coerce_numeric(df, list(aliases)).rename(columns=aliases)
        return df.drop(columns=["GEOID"])

    async def load_variables(self, year: int, dataset: str = "acs5") -> pd.DataFrame:
        """List the variables of a dataset, e.g. ("acs5", "acs5/subject", "dhc")."""
        if dataset.startswith("acs"):
            path = f"acs/{dataset}"
        else:
            path = f"dec/{dataset}" if dataset in ("sf1", "dhc", "pl") else dataset
        url = variables_url(self.config.census.base_url, year, path)

        async def _load() -> dict[str, Any]:
            async with http_session(self.config.network.user_agent):
                content = await get_content(url, **self._network_kwargs())
            return json.loads(content)

        payload = await self._cached(_load, url, None, path, year, "variables")
        records = [
            {
                "name": name,
                "label": info.get("label", ""),
                "concept": info.get("concept", ""),
            }
            for name, info in payload.get("variables", {}).items()
            if name not in ("for", "in", "ucgid")
        ]
        return pd.DataFrame(records).sort_values("name").reset_index(drop=True)

    async def get_boundaries(
        self,
        level: str,
        year: int = 2022,
        state: str | None = None,
        resolution: str = "500k",
    ) -> gpd.GeoDataFrame:
        """Cartographic boundary polygons with a GEOID column."""
        url = boundary_url(
            self.config.census.boundaries_url, year, level, state, resolution
        )

        async def _load() -> gpd.GeoDataFrame:
            async with http_session(self.config.network.user_agent):
                return await fetch_boundaries(url, **self._network_kwargs())

        return await self._cached(_load, url, None, "boundaries", year, level)

    async def _attach_geometry(
        self,
        df: pd.DataFrame,
        geography: str,
        year: int,
        state: str | list[str] | None,
    ) -> gpd.GeoDataFrame:
        states = _as_list(state)
        if geography in ("tract", "block group"):
            if not states:
                raise ValueError(f"{geography} geometry requires a state")
            shapes = await self.load_all(
                [lambda s=s: self.get_boundaries(geography, year, s) for s in states]
            )
            boundaries = pd.concat(shapes, ignore_index=True)
        else:
            resolution = "20m" if geography in ("county", "state") else "500k"
            boundaries = await self.get_boundaries(
                geography, year, resolution=resolution
            )

        merged = boundaries[["GEOID", "geometry"]].merge(df, on="GEOID", how="inner")
        return gpd.GeoDataFrame(merged, geometry="geometry", crs=boundaries.crs)

    @staticmethod
    def _to_tidy(
        df: pd.DataFrame, names: list[str], suffixed: bool, moe: bool = False
    ) -> pd.DataFrame:
        id_vars = [c for c in ("GEOID", "NAME") if c in df.columns]
        value_columns = [f"{n}E" if suffixed else n for n in names]
        tidy = df.melt(
            id_vars=id_vars,
            value_vars=value_columns,
            var_name="variable",
            value_name="estimate",
        )
        if suffixed:
            tidy["variable"] = tidy["variable"].str[:-1]
        if moe:
            margins = df.melt(
                id_vars=id_vars,
                value_vars=[f"{n}M" for n in names],
                var_name="variable",
                value_name="moe",
            )
            margins["variable"] = margins["variable"].str[:-1]
            tidy = tidy.merge(margins, on=[*id_vars, "variable"], how="left")
        return tidy.sort_values(["GEOID", "variable"]).reset_index(drop=True)

    # ============================================================================
    # Cache
    # ============================================================================

    def cache_clear(self, source: str | None = None) -> int:
        """Clear cache entries. If source is provided, only clear that source."""
        if not self._cache:
            raise RuntimeError("Cache is not enabled")
        return self._cache.clear(source=source)

    def cache_info(self, source: str | None = None) -> dict[str, Any]:
        """Get cache statistics, optionally for one source (e.g. "acs/acs5")."""
        if not self._cache:
            raise RuntimeError("Cache is not enabled")
        return self._cache.info(source=source)
