"""Tests for the MCP tool functions."""

from __future__ import annotations

import pytest

from conftest import contributor_payload, season_api, snapshot_payload
from coop_scores import server
from coop_scores.core.models import CoopSnapshot, GradeAssignment
from coop_scores.core.scoring import score_coop
from coop_scores.ingestors import persist_results


@pytest.mark.asyncio
async def test_coop_score(mock_http):
    mock_http(season_api)

    result = await server.coop_score("spring-cleaning", "eggsquad", "AAA", include_buff_history=False)

    assert result["error"] is None
    assert [p["user_name"] for p in result["user_data"]] == ["bob", "alice"]
    assert result["user_data"][1]["cs"] == pytest.approx(15750)
    assert result["duration_seconds"] == 129600
    assert "2 players scored" in result["summary"]


@pytest.mark.asyncio
async def test_coop_score_unknown_contract(mock_http):
    mock_http(season_api)

    result = await server.coop_score("no-such-contract", "eggsquad", "aaa")

    assert result["error"] == "Unknown contract: no-such-contract"
    assert result["user_data"] == []


@pytest.mark.asyncio
async def test_coop_score_missing_grade_spec(mock_http):
    mock_http(season_api)

    result = await server.coop_score("spring-cleaning", "eggsquad", "c", include_buff_history=False)

    assert "GRADE_C" in result["error"]
    assert result["summary"].startswith("Could not score eggsquad")


@pytest.mark.asyncio
async def test_season_contracts_tool(mock_http):
    mock_http(season_api)

    result = await server.season_contracts("spring_2025", "summer_2025", seasonal_only=True)

    assert [c["contract_id"] for c in result["contracts"]] == ["spring-cleaning", "spring-fling"]
    assert result["contracts"][0]["max_coop_size"] == 10


@pytest.mark.asyncio
async def test_history_tools(database, contract):
    snapshot = CoopSnapshot.model_validate(snapshot_payload(coopContributors=[
        contributor_payload("alice"),
        contributor_payload("mallory", amount="lots"),
    ]))
    await persist_results([score_coop(snapshot, contract, GradeAssignment(code="eggsquad", grade="aaa"))])

    coops = await server.coop_results()
    assert coops["count"] == 1
    assert coops["failed"] == 0

    history = await server.player_history("uuid-alice")
    assert history["average_cs"] == pytest.approx(15750)

    missing = await server.player_history("uuid-nobody")
    assert missing["average_cs"] is None
    assert missing["summary"] == "0 stored scores."

    board = await server.contract_leaderboard("spring-cleaning")
    assert [p["user_name"] for p in board["leaders"]] == ["alice"]


@pytest.mark.asyncio
async def test_contracts_between(mock_http):
    mock_http(season_api)

    result = await server.contracts_between("2025-03-01", "2025-03-10", season_id="spring_2025")

    assert [c["contract_id"] for c in result["contracts"]] == ["spring-cleaning", "spring-fling"]
    assert result["count"] == 2


@pytest.mark.asyncio
async def test_contracts_between_bad_date(mock_http):
    mock_http(season_api)

    result = await server.contracts_between("March", "2025-03-10")

    assert "Invalid date format" in result["error"]
    assert result["contracts"] == []
