"""Tests for season runs, persistence and score history queries."""

from __future__ import annotations

import httpx
import pytest

from conftest import REGISTRY, contributor_payload, grade_spec_payload, season_api, snapshot_payload
from coop_scores.core.models import CoopSnapshot, GradeAssignment
from coop_scores.core.scoring import score_coop
from coop_scores.db import get_db_url
from coop_scores.ingestors import (
    RunOptions,
    format_eta,
    get_coop_results,
    get_leaderboard,
    get_meta,
    get_player_history,
    persist_results,
    run_season,
    score_registry_coop,
)


def run_options(**overrides) -> RunOptions:
    options = {
        "start_season": "spring_2025",
        "end_season": "summer_2025",
        "max_parallel": 1,
        "request_delay": 0,
        "batch_delay": 0,
        "include_buff_history": False,
        "buff_history_delay": 0,
        "save_interval": 1,
        "registry_endpoint": REGISTRY,
    }
    options.update(overrides)
    return RunOptions(**options)


def scored_result(contract, coop_code="eggsquad", contributors=None):
    snapshot = CoopSnapshot.model_validate(snapshot_payload(
        coopContributors=contributors or [contributor_payload("alice"), contributor_payload("bob", amount=20_000_000)],
    ))
    return score_coop(snapshot, contract, GradeAssignment(code=coop_code, grade="aaa"))


@pytest.mark.parametrize(
    "seconds, expected",
    [(0, "0s"), (45.4, "45s"), (192, "3m 12s"), (3600, "1h 0m"), (7500, "2h 5m")],
)
def test_format_eta(seconds, expected):
    assert format_eta(seconds) == expected


def test_run_options_from_environment(monkeypatch):
    monkeypatch.setenv("START_SEASON", "fall_2024")
    monkeypatch.setenv("MAX_PARALLEL", "5")
    monkeypatch.setenv("REQUEST_DELAY_MS", "250")
    monkeypatch.setenv("INCLUDE_BUFF_HISTORY", "false")
    monkeypatch.setenv("MAJ_ENDPOINT", REGISTRY)

    options = RunOptions.from_env()

    assert options.start_season == "fall_2024"
    assert options.end_season == "spring_2025"
    assert options.max_parallel == 5
    assert options.request_delay == 0.25
    assert options.batch_delay == 2.0
    assert options.include_buff_history is False
    assert options.save_interval == 50
    assert options.registry_endpoint == REGISTRY


def test_run_options_defaults():
    options = RunOptions.from_env()
    assert options.include_buff_history is True
    assert options.buff_history_delay == pytest.approx(0.3)
    assert options.registry_endpoint is None


def test_database_location(tmp_path, monkeypatch):
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "nested"))
    assert get_db_url() == f"sqlite+aiosqlite:///{tmp_path / 'nested' / 'scores.db'}"
    assert (tmp_path / "nested").is_dir()

    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    assert get_db_url() == "sqlite+aiosqlite:///:memory:"


@pytest.mark.asyncio
async def test_score_registry_coop_fetch_failure(mock_http, contract):
    mock_http(season_api)

    result = await score_registry_coop(contract, GradeAssignment(code="ghost", grade="aa"))

    assert not result.ok
    assert result.contract_id == "spring-cleaning"
    assert result.coop_code == "ghost"
    assert result.user_data == []


@pytest.mark.asyncio
async def test_persist_and_query(database, contract):
    mallory = contributor_payload("mallory", amount="lots")
    await persist_results([scored_result(contract)], "spring_2025")
    await persist_results([scored_result(contract, "yolkfolk", [contributor_payload("alice"), mallory])], "spring_2025")

    coops = await get_coop_results("spring-cleaning")
    assert [c["coop_code"] for c in coops] == ["yolkfolk", "eggsquad"]
    assert coops[1]["player_count"] == 2
    assert coops[1]["green_scroll"] is True
    assert coops[1]["season_id"] == "spring_2025"
    assert coops[1]["duration_seconds"] == 129600
    assert {p["user_name"] for p in coops[1]["players"]} == {"alice", "bob"}

    history = await get_player_history("uuid-alice")
    assert [h["coop_code"] for h in history] == ["eggsquad", "yolkfolk"]
    assert history[0]["cs"] == pytest.approx(15750)

    leaders = await get_leaderboard("spring-cleaning")
    assert leaders[0]["user_name"] == "bob"
    assert "mallory" not in [p["user_name"] for p in leaders]
    assert [p["cs"] for p in leaders] == sorted((p["cs"] for p in leaders), reverse=True)

    assert await get_coop_results("other-contract") == []
    assert len(await get_coop_results(limit=1)) == 1


@pytest.mark.asyncio
async def test_failed_coops_are_stored(database, contract):
    failed = score_coop(None, contract, GradeAssignment(code="broken", grade="aaa"))

    await persist_results([failed])

    [coop] = await get_coop_results()
    assert coop["coop_code"] == "broken"
    assert coop["error"] == "Missing coop status data"
    assert coop["players"] == []


@pytest.mark.asyncio
async def test_run_season(database, mock_http):
    requests = mock_http(season_api)

    summary = await run_season(run_options())

    assert summary.contracts == 1
    assert summary.coops_total == 2
    assert summary.coops_scored == 1
    assert summary.coops_failed == 1
    assert summary.players == 2
    assert summary.saved == 2

    registry_request = next(r for r in requests if r.url.host == "registry.test")
    assert registry_request.url.params.get_list("contract") == ["spring-cleaning", "spring-fling"]

    coops = {c["coop_code"]: c for c in await get_coop_results("spring-cleaning")}
    assert coops["eggsquad"]["error"] is None
    assert coops["eggsquad"]["grade"] == "aaa"
    assert coops["ghost"]["error"]
    assert await get_coop_results("spring-fling") == []

    leaders = await get_leaderboard("spring-cleaning")
    assert [p["user_name"] for p in leaders] == ["bob", "alice"]
    assert leaders[1]["cs"] == pytest.approx(15750)
    assert await get_meta("last_run") is not None


@pytest.mark.asyncio
async def test_run_season_grade_spec_failure(database, mock_http):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/grade_specs"):
            return httpx.Response(500)
        return season_api(request)

    mock_http(handler)

    summary = await run_season(run_options(max_parallel=3, save_interval=50))

    assert summary.coops_scored == 0
    assert summary.coops_failed == 2
    coops = await get_coop_results("spring-cleaning")
    assert all(c["error"].startswith("Failed to add grade specs") for c in coops)


@pytest.mark.asyncio
async def test_run_season_survives_unparseable_length(database, mock_http):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/grade_specs"):
            spec = grade_spec_payload("aaa", length="three days")
            return httpx.Response(200, json={"gradeSpecs": [spec, grade_spec_payload("aa", length="259200")]})
        return season_api(request)

    mock_http(handler)

    summary = await run_season(run_options())

    assert summary.coops_scored == 0
    assert summary.coops_failed == 2
    coops = {c["coop_code"]: c for c in await get_coop_results("spring-cleaning")}
    assert "length" in coops["eggsquad"]["error"]


@pytest.mark.asyncio
async def test_run_season_survives_malformed_grade_specs(database, mock_http):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/grade_specs"):
            return httpx.Response(200, json={"gradeSpecs": [{"grade": "GRADE_AAA"}]})
        return season_api(request)

    mock_http(handler)

    summary = await run_season(run_options())

    assert summary.coops_failed == 2
    coops = await get_coop_results("spring-cleaning")
    assert all(c["error"].startswith("Failed to add grade specs") for c in coops)


@pytest.mark.asyncio
async def test_null_contributor_entry_is_skipped(mock_http, contract):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/statuses/latest"):
            return httpx.Response(200, json=snapshot_payload(coopContributors=[contributor_payload("alice"), None]))
        return season_api(request)

    mock_http(handler)

    result = await score_registry_coop(contract, GradeAssignment(code="eggsquad", grade="aaa"))

    assert result.ok
    assert [p.user_name for p in result.user_data] == ["alice"]


@pytest.mark.asyncio
async def test_numeric_grade_is_stored_as_letter(database, contract):
    snapshot = CoopSnapshot.model_validate(snapshot_payload())
    await persist_results([score_coop(snapshot, contract, GradeAssignment(code="eggsquad", grade=5))])

    [coop] = await get_coop_results()

    assert coop["grade"] == "aaa"
    assert coop["error"] is None
