"""
ReportSync Test Configuration and Fixtures

Shared fakes for the remote API and per-resource fetchers, a virtual clock,
and a fully wired CacheCoordinator.
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio

from reportsync.bootstrap.app import CacheCoordinator
from reportsync.bootstrap.config import ReportSyncConfig
from reportsync.core.clock import ManualClock
from reportsync.core.scope import EVALUATIONS, HIERARCHY, REPORTS, STATISTICS, USERS, ScopeKey
from reportsync.fetch.query_client import FetchContext
from reportsync.kernel.event_dispatcher import EventDispatcher


class FakeBackend:
    """
    In-memory stand-in for the report server's read endpoints.

    Every fetch returns a dict naming the scope, the identity it was
    fetched for and the current server `version`. Resources can be held
    behind an asyncio.Event or made to fail with queued exceptions.
    """

    def __init__(self):
        self.version = 1
        self.calls: List[Tuple[ScopeKey, FetchContext]] = []
        self.gates: Dict[str, asyncio.Event] = {}
        self.failures: Dict[str, List[BaseException]] = {}

    def hold(self, resource: str) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[resource] = gate
        return gate

    def fail(self, resource: str, *errors: BaseException) -> None:
        self.failures.setdefault(resource, []).extend(errors)

    def calls_for(self, key: ScopeKey) -> List[FetchContext]:
        return [context for called, context in self.calls if called == key]

    async def fetch(self, key: ScopeKey, context: FetchContext) -> Dict[str, Any]:
        self.calls.append((key, context))
        gate = self.gates.get(key.resource)
        if gate is not None:
            await gate.wait()
        pending = self.failures.get(key.resource)
        if pending:
            raise pending.pop(0)
        return {
            "scope": str(key),
            "identity": context.identity,
            "version": self.version,
            "token": context.consistency_token,
        }


def make_report_api() -> Mock:
    api = Mock()
    api.create_evaluation = AsyncMock(return_value={"id": "ev-1"})
    api.update_evaluation = AsyncMock(return_value={"id": "ev-1"})
    api.delete_evaluation = AsyncMock(return_value=None)
    api.approve_task = AsyncMock(return_value={"id": "t-1", "isCompleted": True})
    api.reject_task = AsyncMock(return_value={"id": "t-1", "isCompleted": False})
    return api


def employee(user_id: str, rate: float, total: int = 10, completed: Optional[int] = None,
             has_report: bool = True, first_name: str = "", department: str = None) -> Dict[str, Any]:
    """camelCase employee entry as the hierarchy endpoint returns it."""
    if completed is None:
        completed = int(round(total * rate / 100))
    user = {
        "id": user_id,
        "employeeCode": user_id.upper(),
        "firstName": first_name or user_id,
        "lastName": "",
    }
    if department:
        user["jobPosition"] = {"id": "jp", "jobName": "Staff", "department": {"id": department, "name": department}}
    return {
        "user": user,
        "stats": {
            "hasReport": has_report,
            "isCompleted": has_report and completed == total,
            "totalTasks": total,
            "completedTasks": completed,
            "taskCompletionRate": rate,
        },
    }


def staff_view_payload(week: int = 5, year: int = 2025) -> Dict[str, Any]:
    return {
        "viewType": "staff",
        "groupBy": "jobPosition",
        "weekNumber": week,
        "year": year,
        "jobPositions": [
            {
                "jobPosition": {
                    "id": "jp-dev",
                    "jobName": "Developer",
                    "department": {"id": "d-eng", "name": "Engineering"},
                },
                "userCount": 2,
                "users": [
                    employee("u1", 100.0, total=10, completed=10),
                    employee("u2", 50.0, total=90, completed=45),
                ],
            },
            {
                "jobPosition": {
                    "id": "jp-qa",
                    "jobName": "QA",
                    "department": {"id": "d-eng", "name": "Engineering"},
                },
                "userCount": 1,
                "users": [employee("u3", 90.0, total=10, completed=9)],
            },
        ],
    }


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    """Virtual clock; time moves only on advance()."""
    return ManualClock()


@pytest.fixture
def config():
    """Defaults with no purge settle and no post-mutation settle delay."""
    cfg = ReportSyncConfig()
    cfg.isolation.purge_settle_s = 0.0
    cfg.mutation.settle_delay_s = 0.0
    return cfg


@pytest.fixture
def dispatcher():
    return EventDispatcher(session_id="test", max_history=1000)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def api():
    return make_report_api()


@pytest_asyncio.fixture
async def coordinator(api, config, clock, backend):
    """Coordinator with the fake backend registered for every resource."""
    coord = CacheCoordinator(api, config=config, clock=clock, session_id="test")
    for resource in (REPORTS, EVALUATIONS, HIERARCHY, STATISTICS, USERS):
        coord.register_fetcher(resource, backend.fetch)
    yield coord
    await coord.shutdown()


@pytest_asyncio.fixture
async def alice(coordinator):
    """Coordinator with 'alice' confirmed."""
    await coordinator.on_identity_observed("alice")
    return coordinator
