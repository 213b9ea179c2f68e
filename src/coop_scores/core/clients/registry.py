"""Grade registry client — achieved grade and members of every graded coop.

The registry endpoint is configured with MAJ_ENDPOINT and takes one
``contract`` query parameter per requested contract. It can return several
snapshots per contract; only the newest one is used.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Iterable, Optional

import httpx
from pydantic import ValidationError

from ..models import RegistryContract

logger = logging.getLogger(__name__)


class RegistryError(RuntimeError):
    """The grade registry could not be queried."""


def _start_time(entry: dict) -> Optional[int]:
    try:
        return int(entry["startTime"])
    except (KeyError, TypeError, ValueError):
        return None


def filter_unique_contracts(entries: Iterable[Any]) -> list[dict]:
    """Keep the entry with the highest startTime for each contract.

    Entries that are not mappings, lack ``contract``/``startTime`` or have a
    non-integer startTime are skipped.
    """
    latest: dict[str, dict] = {}
    latest_start: dict[str, int] = {}
    for entry in entries:
        if not isinstance(entry, dict) or "contract" not in entry:
            continue
        start = _start_time(entry)
        if start is None:
            continue
        contract = entry["contract"]
        if contract not in latest or start > latest_start[contract]:
            latest[contract] = entry
            latest_start[contract] = start
    return list(latest.values())


async def fetch_registry_coops(
    contract_ids: list[str],
    endpoint: Optional[str] = None,
) -> list[RegistryContract]:
    """Graded coops for the given contracts, excluding contracts still running."""
    endpoint = endpoint or os.environ.get("MAJ_ENDPOINT", "")
    if not endpoint:
        raise RegistryError("MAJ_ENDPOINT environment variable is not defined")

    params = [("contract", cid) for cid in contract_ids]
    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0)) as client:
            response = await client.get(endpoint, params=params)
            response.raise_for_status()
            data = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise RegistryError(f"Failed to fetch coop data: {exc}") from exc

    if not isinstance(data, list):
        raise RegistryError("Failed to fetch coop data: expected a list of contracts")

    results = []
    for entry in filter_unique_contracts(data):
        try:
            registry_contract = RegistryContract.model_validate(entry)
        except ValidationError as exc:
            logger.warning("Skipping malformed registry entry for %s: %s", entry.get("contract"), exc)
            continue
        if registry_contract.active_coops:
            logger.info("Excluding %s because coops are still ongoing", registry_contract.contract)
            continue
        results.append(registry_contract)
    return results
