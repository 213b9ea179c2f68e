"""Season scoring run and score history queries.

A run lists the season's contracts on EggCoop, asks the grade registry
which coops were graded, then fetches and scores every coop in small
batches. Scored coops are persisted every ``save_interval`` coops, so an
interrupted run keeps what it already processed.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy import select

from .core.clients import eggcoop, registry
from .core.errors import ScoringError
from .core.grading import parse_grade_code
from .core.models import ContractSpec, CoopResult, GradeAssignment, RegistryContract
from .core.scoring import score_coop
from .db import session_scope
from .sqlmodels import CoopScore, IngestionMeta, PlayerScore

logger = logging.getLogger(__name__)


def _env_ms(name: str, default_ms: int) -> float:
    return int(os.environ.get(name, str(default_ms))) / 1000


class RunOptions(BaseModel):
    """Settings for one season run. Delays are in seconds."""

    start_season: str = "winter_2025"
    end_season: str = "spring_2025"
    max_parallel: int = Field(3, ge=1)
    request_delay: float = Field(0.5, ge=0)
    batch_delay: float = Field(2.0, ge=0)
    include_buff_history: bool = True
    buff_history_delay: float = Field(0.3, ge=0)
    save_interval: int = Field(50, ge=1)
    registry_endpoint: Optional[str] = None

    @classmethod
    def from_env(cls) -> "RunOptions":
        return cls(
            start_season=os.environ.get("START_SEASON", "winter_2025"),
            end_season=os.environ.get("END_SEASON", "spring_2025"),
            max_parallel=int(os.environ.get("MAX_PARALLEL", "3")),
            request_delay=_env_ms("REQUEST_DELAY_MS", 500),
            batch_delay=_env_ms("BATCH_DELAY_MS", 2000),
            include_buff_history=os.environ.get("INCLUDE_BUFF_HISTORY", "true"),
            buff_history_delay=_env_ms("BUFF_HISTORY_DELAY_MS", 300),
            save_interval=int(os.environ.get("SAVE_INTERVAL", "50")),
            registry_endpoint=os.environ.get("MAJ_ENDPOINT") or None,
        )


class RunSummary(BaseModel):
    contracts: int = 0
    coops_total: int = 0
    coops_scored: int = 0
    coops_failed: int = 0
    players: int = 0
    saved: int = 0


def format_eta(seconds: float) -> str:
    """Human-readable duration: '45s', '3m 12s', '2h 5m'."""
    if seconds < 60:
        return f"{round(seconds)}s"
    if seconds < 3600:
        return f"{int(seconds // 60)}m {round(seconds % 60)}s"
    return f"{int(seconds // 3600)}h {int(seconds % 3600 // 60)}m"


def _error_result(contract_id: str, assignment: GradeAssignment, message: str) -> CoopResult:
    return CoopResult(
        coop_data={"contractIdentifier": contract_id, "coop": assignment.code},
        contract_data={"contractIdentifier": contract_id},
        grade_data=assignment.model_dump(mode="json", by_alias=True),
        error=message,
    )


async def score_registry_coop(
    contract: ContractSpec,
    assignment: GradeAssignment,
    include_buff_history: bool = False,
    buff_history_delay: float = 0.3,
) -> CoopResult:
    """Fetch one coop's latest status and score it."""
    try:
        snapshot = await eggcoop.fetch_coop_status(
            contract.contract_identifier,
            assignment.code,
            include_buff_history=include_buff_history,
            buff_history_delay=buff_history_delay,
        )
    except (eggcoop.EggCoopAPIError, ValueError) as exc:
        logger.error("Error fetching coop %s/%s: %s", contract.contract_identifier, assignment.code, exc)
        return _error_result(contract.contract_identifier, assignment, str(exc))
    return score_coop(snapshot, contract, assignment)


def _batches(items: list, size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


async def run_season(options: Optional[RunOptions] = None) -> RunSummary:
    """Score every graded coop of the configured season and persist the results."""
    options = options or RunOptions.from_env()
    logger.info(
        "Season run %s..%s: %d parallel, %.1fs request delay, %.1fs batch delay, buff history %s",
        options.start_season,
        options.end_season,
        options.max_parallel,
        options.request_delay,
        options.batch_delay,
        "on" if options.include_buff_history else "off",
    )

    contracts = await eggcoop.season_contracts(options.start_season, options.end_season, seasonal_only=True)
    contracts_by_id = {c.contract_identifier: c for c in contracts}
    graded = await registry.fetch_registry_coops(list(contracts_by_id), endpoint=options.registry_endpoint)

    summary = RunSummary(contracts=len(graded), coops_total=sum(len(g.coops) for g in graded))
    logger.info(
        "%d contracts with %d graded coops and %d players to process",
        summary.contracts,
        summary.coops_total,
        sum(a.member_count for g in graded for a in g.coops),
    )

    started = time.monotonic()
    processed = 0
    pending: list[CoopResult] = []

    for entry in graded:
        contract = contracts_by_id.get(entry.contract)
        if contract is None:
            logger.warning("Contract data not found for %s, skipping", entry.contract)
            continue

        async for results in _score_contract(contract, entry, options):
            pending.extend(results)
            processed += len(results)
            for result in results:
                if result.ok:
                    summary.coops_scored += 1
                    summary.players += len(result.user_data)
                else:
                    summary.coops_failed += 1
            _log_progress(processed, summary.coops_total, started)

            if len(pending) >= options.save_interval:
                summary.saved += await persist_results(pending, contract.season_id)
                logger.info("Progress saved (%d coops so far)", summary.saved)
                pending = []

        if pending:
            summary.saved += await persist_results(pending, contract.season_id)
            pending = []

    await _set_meta("last_run", datetime.utcnow().isoformat())
    logger.info(
        "Completed %d/%d coops (%d failed) in %s",
        processed,
        summary.coops_total,
        summary.coops_failed,
        format_eta(time.monotonic() - started),
    )
    return summary


async def _score_contract(contract: ContractSpec, entry: RegistryContract, options: RunOptions):
    """Yield scored batches of one contract's coops."""
    if contract.grade_specs is None:
        try:
            contract = await eggcoop.add_grade_specs(contract)
        except (eggcoop.EggCoopAPIError, ValidationError) as exc:
            logger.error("Failed to add grade specs for %s: %s", contract.contract_identifier, exc)
            message = f"Failed to add grade specs: {exc}"
            yield [_error_result(contract.contract_identifier, a, message) for a in entry.coops]
            return

    async def _staggered(index: int, assignment: GradeAssignment) -> CoopResult:
        await asyncio.sleep(index * options.request_delay)
        return await score_registry_coop(
            contract,
            assignment,
            include_buff_history=options.include_buff_history,
            buff_history_delay=options.buff_history_delay,
        )

    batches = list(_batches(entry.coops, options.max_parallel))
    for n, batch in enumerate(batches):
        yield list(await asyncio.gather(*(_staggered(i, a) for i, a in enumerate(batch))))

        if n < len(batches) - 1:
            await asyncio.sleep(options.batch_delay)


def _log_progress(done: int, total: int, started: float) -> None:
    if total <= 0 or done <= 0:
        return
    elapsed = time.monotonic() - started
    eta = (total - done) * elapsed / done
    logger.info("%.1f%% %d/%d coops | ETA: %s", done / total * 100, done, total, format_eta(eta))


# ─── Persistence ─────────────────────────────────────────────────────────────


async def persist_results(results: list[CoopResult], season_id: Optional[str] = None) -> int:
    """Store coop results and their player records. Returns the coops stored."""
    now = datetime.utcnow()
    async with session_scope() as session:
        for result in results:
            contract_id = result.contract_id or "unknown"
            coop_code = result.coop_code or "unknown"
            coop_row = CoopScore(
                contract_id=contract_id,
                coop_code=coop_code,
                grade=_grade_text(result.grade_data.get("grade")),
                season_id=season_id,
                duration_seconds=result.duration_seconds,
                green_scroll=result.green_scroll,
                player_count=len(result.user_data),
                error=result.error,
                computed_at=now,
            )
            for player in result.user_data:
                coop_row.players.append(PlayerScore(
                    contract_id=contract_id,
                    coop_code=coop_code,
                    ei_uuid=player.ei_uuid,
                    user_name=player.user_name,
                    eggs_shipped=player.eggs_shipped,
                    contribution_ratio=player.contribution_ratio,
                    contribution_factor=player.contribution_factor,
                    completion_time_bonus=player.completion_time_bonus,
                    time_to_complete_factor=player.time_to_complete_factor,
                    green_scroll=player.green_scroll,
                    buff_value=player.buff_value,
                    team_work=player.team_work,
                    upper_team_work=player.upper_team_work,
                    cs=player.cs,
                    upper_cs=player.upper_cs,
                    error=player.error,
                    computed_at=now,
                ))
            session.add(coop_row)
    return len(results)


def _grade_text(grade) -> Optional[str]:
    if grade is None:
        return None
    if isinstance(grade, str):
        return grade
    try:
        return parse_grade_code(grade).value
    except ScoringError:
        return str(grade)


async def _set_meta(key: str, value: str) -> None:
    async with session_scope() as session:
        result = await session.execute(select(IngestionMeta).where(IngestionMeta.key == key))
        row = result.scalar_one_or_none()
        if row:
            row.value = value
            row.updated_at = datetime.utcnow()
        else:
            session.add(IngestionMeta(key=key, value=value, updated_at=datetime.utcnow()))


async def get_meta(key: str) -> Optional[str]:
    async with session_scope() as session:
        result = await session.execute(select(IngestionMeta.value).where(IngestionMeta.key == key))
        return result.scalar_one_or_none()


def _player_dict(row: PlayerScore) -> dict:
    return {
        "contract_id": row.contract_id,
        "coop_code": row.coop_code,
        "ei_uuid": row.ei_uuid,
        "user_name": row.user_name,
        "eggs_shipped": row.eggs_shipped,
        "contribution_ratio": row.contribution_ratio,
        "contribution_factor": row.contribution_factor,
        "completion_time_bonus": row.completion_time_bonus,
        "buff_value": row.buff_value,
        "green_scroll": row.green_scroll,
        "cs": row.cs,
        "upper_cs": row.upper_cs,
        "error": row.error,
        "computed_at": row.computed_at.isoformat(),
    }


async def get_coop_results(contract_id: Optional[str] = None, limit: int = 100) -> list[dict]:
    """Most recently processed coops, optionally for one contract."""
    query = select(CoopScore).order_by(CoopScore.computed_at.desc(), CoopScore.id.desc()).limit(limit)
    if contract_id:
        query = query.where(CoopScore.contract_id == contract_id)

    async with session_scope() as session:
        rows = (await session.execute(query)).scalars().all()

    return [
        {
            "contract_id": r.contract_id,
            "coop_code": r.coop_code,
            "grade": r.grade,
            "season_id": r.season_id,
            "duration_seconds": r.duration_seconds,
            "green_scroll": r.green_scroll,
            "player_count": r.player_count,
            "error": r.error,
            "computed_at": r.computed_at.isoformat(),
            "players": [_player_dict(p) for p in r.players],
        }
        for r in rows
    ]


async def get_player_history(ei_uuid: str) -> list[dict]:
    """Every stored score for one player, oldest first."""
    async with session_scope() as session:
        result = await session.execute(
            select(PlayerScore)
            .where(PlayerScore.ei_uuid == ei_uuid)
            .order_by(PlayerScore.computed_at.asc(), PlayerScore.id.asc())
        )
        rows = result.scalars().all()
    return [_player_dict(r) for r in rows]


async def get_leaderboard(contract_id: str, limit: int = 20) -> list[dict]:
    """Highest CS for a contract. Error records are left out."""
    async with session_scope() as session:
        result = await session.execute(
            select(PlayerScore)
            .where(PlayerScore.contract_id == contract_id, PlayerScore.error.is_(None))
            .order_by(PlayerScore.cs.desc())
            .limit(limit)
        )
        rows = result.scalars().all()
    return [_player_dict(r) for r in rows]
