"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from typing import Any, Callable

import httpx
import pytest
import pytest_asyncio

from coop_scores.core.models import ContractSpec, CoopSnapshot, GradeAssignment
from coop_scores.db import close_db, init_db

GOAL = 100_000_000
LENGTH = 259200
REGISTRY = "https://registry.test/coops"


def grade_spec_payload(grade: str, length: Any = LENGTH, goals: list | None = None) -> dict:
    if goals is None:
        goals = [GOAL // 10, GOAL // 2, GOAL]
    return {
        "grade": {"eiIdentifier": f"GRADE_{grade.upper()}"},
        "lengthSeconds": length,
        "goalCollection": {"goals": [{"targetAmount": g} for g in goals]},
    }


def contract_payload(identifier: str = "spring-cleaning", **overrides: Any) -> dict:
    payload = {
        "contractIdentifier": identifier,
        "name": "Spring Cleaning",
        "startTime": "2025-03-03T17:00:00+00:00",
        "endTime": "2025-03-24T17:00:00+00:00",
        "season": {"eiSeasonId": "spring_2025", "name": "Spring 2025"},
        "maxCoopSize": 10,
        "gradeSpecCollection": f"/api/contracts/{identifier}/grade_specs",
        "gradeSpecs": [grade_spec_payload(g) for g in ("c", "b", "a", "aa", "aaa")],
    }
    payload.update(overrides)
    return payload


def contributor_payload(name: str, amount: Any = GOAL // 10, **overrides: Any) -> dict:
    payload = {
        "eiUuid": f"uuid-{name}",
        "userName": name,
        "contributionAmount": amount,
        "contributionRate": 1000.0,
    }
    payload.update(overrides)
    return payload


def snapshot_payload(**overrides: Any) -> dict:
    """Completed coop that finished exactly halfway through a 3 day contract."""
    payload = {
        "totalAmount": GOAL,
        "secondsRemaining": 129100,
        "allGoalsAchieved": True,
        "allMembersReporting": True,
        "gracePeriodSecondsRemaining": 3600,
        "secondsSinceAllGoalsAchieved": 500,
        "coopContributors": [contributor_payload("alice")],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def contract() -> ContractSpec:
    return ContractSpec.model_validate(contract_payload())


@pytest.fixture
def snapshot() -> CoopSnapshot:
    return CoopSnapshot.model_validate(snapshot_payload())


@pytest.fixture
def assignment() -> GradeAssignment:
    return GradeAssignment.model_validate({"code": "eggsquad", "grade": "aaa", "users": ["alice"]})


def _mock_client_factory(
    transport: httpx.MockTransport,
    original_cls: type[httpx.AsyncClient],
) -> Callable[..., httpx.AsyncClient]:
    def _factory(*args: Any, **kwargs: Any) -> httpx.AsyncClient:
        kwargs["transport"] = transport
        return original_cls(*args, **kwargs)

    return _factory


@pytest.fixture
def mock_http(monkeypatch: pytest.MonkeyPatch) -> Callable[[Callable[[httpx.Request], httpx.Response]], list]:
    """Route every httpx.AsyncClient through a handler; returns the request log."""

    def _install(handler: Callable[[httpx.Request], httpx.Response]) -> list[httpx.Request]:
        requests: list[httpx.Request] = []

        def _recording(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        monkeypatch.setattr(
            httpx,
            "AsyncClient",
            _mock_client_factory(httpx.MockTransport(_recording), httpx.AsyncClient),
        )
        return requests

    return _install


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("EGGCOOP_BASE_URL", "MAJ_ENDPOINT", "DATA_DIR", "DATABASE_URL"):
        monkeypatch.delenv(name, raising=False)


@pytest_asyncio.fixture
async def database(tmp_path, monkeypatch):
    """Fresh score database under a temporary DATA_DIR."""
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    await close_db()
    await init_db()
    yield tmp_path
    await close_db()


def season_api(request: httpx.Request) -> httpx.Response:
    """EggCoop and registry responses for a spring_2025 season run."""
    if request.url.host == "registry.test":
        return httpx.Response(200, json=[
            {
                "contract": "spring-cleaning",
                "startTime": 2,
                "coops": [
                    {"code": "eggsquad", "grade": "aaa", "users": ["alice", "bob"]},
                    {"code": "ghost", "grade": "aa", "users": []},
                ],
            },
            {"contract": "spring-cleaning", "startTime": 1, "coops": []},
            {"contract": "spring-fling", "startTime": 3, "activeCoops": True, "coops": [{"code": "live", "grade": "a"}]},
        ])
    path = request.url.path
    if path == "/api/contracts":
        return httpx.Response(200, json=[
            contract_payload("spring-cleaning", gradeSpecs=None),
            contract_payload("spring-fling", startTime="2025-03-10T17:00:00+00:00", gradeSpecs=None),
            contract_payload("frosty-fields", season={"eiSeasonId": "winter_2025"}, gradeSpecs=None),
        ])
    if path == "/api/contracts/spring-cleaning/grade_specs":
        return httpx.Response(200, json={"gradeSpecs": [grade_spec_payload("aa"), grade_spec_payload("aaa")]})
    if path == "/api/coops/spring-cleaning/eggsquad/statuses/latest":
        return httpx.Response(200, json=snapshot_payload(coopContributors=[
            contributor_payload("alice"),
            contributor_payload("bob", amount=20_000_000),
        ]))
    return httpx.Response(404)
