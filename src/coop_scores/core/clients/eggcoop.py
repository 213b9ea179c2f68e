"""EggCoop API client — contracts, grade specs, coop statuses and buff history.

API base: https://eggcoop.org/api/
No authentication required. Buff history is one request per contributor,
so callers space those requests out with ``buff_history_delay``.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from datetime import date, datetime, time, timezone
from typing import Any, Optional, Union

import httpx
from pydantic import ValidationError

from ..models import ContractSpec, CoopSnapshot, GradeSpec

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://eggcoop.org"

# Placeholder contract every account starts with; never graded.
EXCLUDED_CONTRACTS = {"first-contract"}


class EggCoopAPIError(RuntimeError):
    """An EggCoop request failed or returned an unexpected payload."""


def get_base_url() -> str:
    return os.environ.get("EGGCOOP_BASE_URL", DEFAULT_BASE_URL).rstrip("/")


def normalize_path(path: str) -> str:
    """Normalize 'contracts', '/contracts', 'api/contracts' to '/api/contracts'."""
    if not path or not path.strip():
        raise EggCoopAPIError("Invalid API path: path cannot be empty.")
    path = re.sub(r"^/?api(?:/|$)", "/api/", path.strip())
    if not path.startswith("/api/"):
        path = "/api/" + path.lstrip("/")
    return path


async def fetch_api(path: str) -> Any:
    """GET an EggCoop API path and return the decoded JSON body."""
    url = get_base_url() + normalize_path(path)
    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0)) as client:
            response = await client.get(url, headers={"Accept": "application/json"})
            response.raise_for_status()
            return response.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise EggCoopAPIError(f"Failed to fetch URL: {url}: {exc}") from exc


async def fetch_contracts() -> list[ContractSpec]:
    """All contracts, oldest first."""
    data = await fetch_api("/contracts")
    contracts = [ContractSpec.model_validate(c) for c in data]
    contracts = [c for c in contracts if c.contract_identifier not in EXCLUDED_CONTRACTS]
    return sorted(contracts, key=lambda c: _as_utc(c.start_time) or datetime.min.replace(tzinfo=timezone.utc))


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_datetime(value: Union[date, datetime, str], end_of_day: bool = False) -> datetime:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError as exc:
            raise ValueError(f"Invalid date format provided: {value!r}") from exc
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.max if end_of_day else time.min)
    elif end_of_day:
        value = datetime.combine(value.date(), time.max, tzinfo=value.tzinfo)
    return _as_utc(value)


async def contracts_by_date(
    start: Union[date, datetime, str],
    end: Union[date, datetime, str],
    season_id: Optional[str] = None,
) -> list[ContractSpec]:
    """Contracts starting between two dates, both inclusive.

    The end date covers its whole day. With ``season_id`` set, contracts that
    belong to a different season are dropped; contracts without a season are
    kept.
    """
    start_dt = _to_datetime(start)
    end_dt = _to_datetime(end, end_of_day=True)
    logger.debug("Filtering contracts between %s and %s", start_dt.isoformat(), end_dt.isoformat())

    selected = []
    for contract in await fetch_contracts():
        started = _as_utc(contract.start_time)
        if started is None or not (start_dt <= started <= end_dt):
            continue
        if season_id and contract.season is not None and contract.season_id != season_id:
            continue
        selected.append(contract)

    logger.info("Found %d contracts between %s and %s", len(selected), start_dt.date(), end_dt.date())
    return selected


async def season_contracts(
    start_season_id: str,
    end_season_id: str,
    seasonal_only: bool = False,
) -> list[ContractSpec]:
    """Contracts between two seasons.

    With ``seasonal_only`` only contracts tagged with the start season are
    returned. Otherwise every contract starting at or after the first start
    season contract and before the end of the first end season contract.
    """
    contracts = await fetch_contracts()

    if seasonal_only:
        selected = [c for c in contracts if c.season_id == start_season_id]
    else:
        season_start: Optional[datetime] = None
        season_end: Optional[datetime] = None
        for contract in contracts:
            if contract.season_id == start_season_id and season_start is None:
                season_start = _as_utc(contract.start_time)
            if contract.season_id == end_season_id and season_end is None:
                season_end = _as_utc(contract.end_time)
                break

        selected = []
        if season_start is not None:
            for contract in contracts:
                started = _as_utc(contract.start_time)
                if started is None or started < season_start:
                    continue
                if season_end is None or started < season_end:
                    selected.append(contract)

    logger.info(
        "Found %d%s contracts for %s..%s",
        len(selected),
        " seasonal" if seasonal_only else "",
        start_season_id,
        end_season_id,
    )
    return selected


async def add_grade_specs(contract: ContractSpec) -> ContractSpec:
    """Return a copy of ``contract`` with its grade specs loaded."""
    if not contract.grade_spec_collection:
        raise EggCoopAPIError(
            f"Grade specification collection URL is missing for {contract.contract_identifier}."
        )
    data = await fetch_api(contract.grade_spec_collection)
    if not isinstance(data, dict) or not data.get("gradeSpecs"):
        raise EggCoopAPIError(
            f"Invalid grade specification payload for {contract.contract_identifier}."
        )
    try:
        grade_specs = [GradeSpec.model_validate(spec) for spec in data["gradeSpecs"]]
    except ValidationError as exc:
        raise EggCoopAPIError(
            f"Invalid grade specification payload for {contract.contract_identifier}: {exc}"
        ) from exc
    return contract.model_copy(update={"grade_specs": grade_specs})


async def fetch_buff_history(ei_uuid: str) -> list[dict]:
    """Buff history of one coop contributor."""
    data = await fetch_api(f"/coop_contributor_uuids/{ei_uuid}")
    if not isinstance(data, dict) or not isinstance(data.get("buffHistory"), list):
        raise EggCoopAPIError(f"No buff history in contributor payload for {ei_uuid}")
    return data["buffHistory"]


async def add_buff_history(snapshot: CoopSnapshot, delay: float = 0.1) -> CoopSnapshot:
    """Return a copy of ``snapshot`` with buff history on every contributor.

    Contributors whose history cannot be fetched get an empty history.
    """
    contributors = snapshot.coop_contributors
    if contributors is None:
        logger.warning("Coop %s has no contributor list, skipping buff history", snapshot.coop)
        return snapshot

    updated = []
    for i, contributor in enumerate(contributors):
        buff_history: list[dict] = []
        if not contributor.ei_uuid:
            logger.warning("Contributor %s has no eiUuid, skipping buff history", contributor.user_name)
        else:
            try:
                buff_history = await fetch_buff_history(contributor.ei_uuid)
            except EggCoopAPIError as exc:
                logger.warning("Error fetching buff history for %s: %s", contributor.ei_uuid, exc)
            if delay and i < len(contributors) - 1:
                await asyncio.sleep(delay)
        updated.append(contributor.model_copy(update={"buff_history": buff_history}))

    return snapshot.model_copy(update={"coop_contributors": updated})


async def fetch_coop_status(
    contract_id: str,
    coop_code: str,
    include_buff_history: bool = False,
    buff_history_delay: float = 0.1,
) -> CoopSnapshot:
    """Latest status of one coop, optionally with contributor buff history."""
    data = await fetch_api(f"/coops/{contract_id}/{coop_code}/statuses/latest")
    if not isinstance(data, dict):
        raise EggCoopAPIError(f"Unexpected coop status payload for {contract_id}/{coop_code}")
    data.setdefault("contractIdentifier", contract_id)
    data.setdefault("coop", coop_code)
    snapshot = CoopSnapshot.model_validate(data)
    if include_buff_history:
        snapshot = await add_buff_history(snapshot, buff_history_delay)
    return snapshot
