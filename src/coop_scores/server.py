"""Coop Scores MCP Server.

FastMCP server exposing live coop scoring and the local score history.
Run: coop-scores-mcp
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations

from .core.clients import eggcoop
from .core.models import ContractSpec, GradeAssignment
from .db import close_db, init_db
from .ingestors import (
    RunOptions,
    get_coop_results,
    get_leaderboard,
    get_player_history,
    run_season,
    score_registry_coop,
)

logger = logging.getLogger(__name__)

READ_ONLY = ToolAnnotations(readOnlyHint=True, destructiveHint=False, idempotentHint=True, openWorldHint=True)


def _configure_logging() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Initialize the score database for the lifetime of the server."""
    _configure_logging()
    await init_db()
    try:
        yield
    finally:
        await close_db()


mcp = FastMCP(
    "Coop Scores",
    instructions="Estimate Egg, Inc. contract scores (CS) for coop members from live EggCoop statuses, and browse stored season results.",
    lifespan=lifespan,
)


def _contract_dict(contract: ContractSpec) -> dict:
    return {
        "contract_id": contract.contract_identifier,
        "name": contract.name,
        "season_id": contract.season_id,
        "start_time": contract.start_time.isoformat() if contract.start_time else None,
        "max_coop_size": contract.max_coop_size,
    }


async def _find_contract(contract_id: str) -> Optional[ContractSpec]:
    for contract in await eggcoop.fetch_contracts():
        if contract.contract_identifier == contract_id:
            return contract
    return None


# ─── Tool 1: Live coop score ─────────────────────────────────────────────────


@mcp.tool(annotations=READ_ONLY)
async def coop_score(contract_id: str, coop_code: str, grade: str, include_buff_history: bool = True) -> dict:
    """Score every member of one coop from its latest EggCoop status.

    Args:
        contract_id: Contract identifier (e.g., 'spring-cleaning-2025').
        coop_code: The coop's code.
        grade: Grade the coop played at: c, b, a, aa or aaa.
        include_buff_history: Fetch each member's buff history for the teamwork factor. Default True.
    """
    contract = await _find_contract(contract_id)
    if contract is None:
        return {"error": f"Unknown contract: {contract_id}", "user_data": []}
    contract = await eggcoop.add_grade_specs(contract)

    result = await score_registry_coop(
        contract,
        GradeAssignment(code=coop_code, grade=grade),
        include_buff_history=include_buff_history,
    )
    players = sorted(result.user_data, key=lambda p: p.cs, reverse=True)
    if result.error:
        summary = f"Could not score {coop_code}: {result.error}"
    else:
        summary = (
            f"{len(players)} players scored for {coop_code} ({grade.upper()}), "
            f"estimated duration {result.duration_seconds / 3600:.1f}h."
        )
        if players:
            summary += f" Top CS: {players[0].user_name} {players[0].cs:.0f}-{players[0].upper_cs:.0f}."
    return {
        "contract_id": contract_id,
        "coop_code": coop_code,
        "grade": grade,
        "duration_seconds": result.duration_seconds,
        "user_data": [p.model_dump(mode="json") for p in players],
        "error": result.error,
        "summary": summary,
    }


# ─── Tool 2: Season contracts ────────────────────────────────────────────────


@mcp.tool(annotations=READ_ONLY)
async def season_contracts(start_season: str, end_season: str, seasonal_only: bool = False) -> dict:
    """Contracts between two seasons (e.g., 'winter_2025' to 'spring_2025').

    Args:
        start_season: Season id to start from, inclusive.
        end_season: Season id to stop at, exclusive.
        seasonal_only: Only contracts tagged with the start season. Default False.
    """
    contracts = await eggcoop.season_contracts(start_season, end_season, seasonal_only)
    return {
        "contracts": [_contract_dict(c) for c in contracts],
        "count": len(contracts),
        "summary": f"{len(contracts)} contracts from {start_season} to {end_season}.",
    }


# ─── Tool 3: Contracts by date ───────────────────────────────────────────────


@mcp.tool(annotations=READ_ONLY)
async def contracts_between(start_date: str, end_date: str, season_id: str = "") -> dict:
    """Contracts that started between two dates (YYYY-MM-DD), both inclusive.

    Args:
        start_date: First day, e.g. '2025-03-01'.
        end_date: Last day, e.g. '2025-03-31'. The whole day is included.
        season_id: Drop contracts tagged with another season. Leave empty for all.
    """
    try:
        contracts = await eggcoop.contracts_by_date(start_date, end_date, season_id or None)
    except ValueError as exc:
        return {"error": str(exc), "contracts": [], "count": 0}
    return {
        "contracts": [_contract_dict(c) for c in contracts],
        "count": len(contracts),
        "summary": f"{len(contracts)} contracts started between {start_date} and {end_date}.",
    }


# ─── Tool 4: Stored coop results ─────────────────────────────────────────────


@mcp.tool(annotations=READ_ONLY)
async def coop_results(contract_id: str = "", limit: int = 50) -> dict:
    """Coops scored by previous season runs.

    Args:
        contract_id: Filter to one contract. Leave empty for all contracts.
        limit: Maximum number of coops. Default 50.
    """
    coops = await get_coop_results(contract_id or None, limit)
    failed = [c for c in coops if c["error"]]
    return {
        "coops": coops,
        "count": len(coops),
        "failed": len(failed),
        "summary": f"{len(coops)} stored coops, {len(failed)} with errors.",
    }


# ─── Tool 5: Player history ──────────────────────────────────────────────────


@mcp.tool(annotations=READ_ONLY)
async def player_history(ei_uuid: str) -> dict:
    """Every stored CS for one player across contracts.

    Args:
        ei_uuid: The player's EggCoop contributor id.
    """
    history = await get_player_history(ei_uuid)
    scored = [h for h in history if not h["error"]]
    average = sum(h["cs"] for h in scored) / len(scored) if scored else None
    return {
        "ei_uuid": ei_uuid,
        "history": history,
        "count": len(history),
        "average_cs": average,
        "summary": f"{len(history)} stored scores" + (f", average CS {average:.0f}." if average is not None else "."),
    }


# ─── Tool 6: Leaderboard ─────────────────────────────────────────────────────


@mcp.tool(annotations=READ_ONLY)
async def contract_leaderboard(contract_id: str, limit: int = 20) -> dict:
    """Highest stored CS for a contract.

    Args:
        contract_id: Contract identifier.
        limit: Number of players. Default 20.
    """
    leaders = await get_leaderboard(contract_id, limit)
    return {
        "contract_id": contract_id,
        "leaders": leaders,
        "count": len(leaders),
        "summary": f"Top {len(leaders)} players for {contract_id}.",
    }


def main():
    """Entry point for the MCP server command."""
    mcp.run()


async def _run_once() -> None:
    await init_db()
    try:
        summary = await run_season(RunOptions.from_env())
        logger.info("Season run summary: %s", summary.model_dump())
    finally:
        await close_db()


def run():
    """Entry point for a one-off season run configured from the environment."""
    _configure_logging()
    asyncio.run(_run_once())


if __name__ == "__main__":
    main()
