"""
Shared test fixtures and configuration for the nr_guardian test suite.
"""

import tempfile
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional, Union

import pytest

from nr_guardian.client import NerdGraphClient
from nr_guardian.config import GuardianConfig, RetryConfig
from nr_guardian.context import GuardianContext
from nr_guardian.graphql.models import GraphQLRequest, GraphQLResponse
from nr_guardian.utils.rate_limit import RateLimiter

TEST_API_KEY = "NRAK-TESTKEY1234567890ABCDEF"
TEST_ACCOUNT_ID = 12345


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubTransport:
    """
    Transport double that replays scripted outcomes.

    Each scripted item is either a ``data`` dict, a GraphQLResponse, or an
    exception to raise. Sent requests are recorded in ``requests``.
    """

    def __init__(self, outcomes: Optional[List[Union[Dict[str, Any], GraphQLResponse, Exception]]] = None):
        self.api_key = TEST_API_KEY
        self.outcomes = list(outcomes or [])
        self.requests: List[GraphQLRequest] = []
        self.request_count = 0
        self.closed = False

    def add(self, *outcomes: Union[Dict[str, Any], GraphQLResponse, Exception]) -> None:
        self.outcomes.extend(outcomes)

    async def open(self) -> None:
        self.closed = False

    async def close(self) -> None:
        self.closed = True

    async def send(self, request: GraphQLRequest) -> GraphQLResponse:
        self.requests.append(request)
        self.request_count += 1
        if not self.outcomes:
            raise AssertionError(f"Unexpected request: {request.query[:80]}")
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, GraphQLResponse):
            return outcome
        return GraphQLResponse(data=outcome)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def guardian_config() -> GuardianConfig:
    """Configuration with credentials and zero backoff for fast tests."""
    return GuardianConfig(
        api_key=TEST_API_KEY,
        account_id=TEST_ACCOUNT_ID,
        retry=RetryConfig(max_retries=3, base_delay=0.0, max_delay=0.0),
    )


@pytest.fixture
def stub_transport() -> StubTransport:
    return StubTransport()


@pytest.fixture
def client(guardian_config: GuardianConfig, stub_transport: StubTransport) -> NerdGraphClient:
    """Client wired to the stub transport with a generous rate limit."""
    return NerdGraphClient(
        guardian_config,
        transport=stub_transport,
        rate_limiter=RateLimiter(guardian_config.rate_limit.model_copy(update={"max_requests": 1000})),
    )


@pytest.fixture
def guardian_context(guardian_config: GuardianConfig, client: NerdGraphClient) -> GuardianContext:
    return GuardianContext(guardian_config, client=client)


@pytest.fixture
def sample_dashboard() -> Dict[str, Any]:
    """Minimal valid dashboard in DashboardInput shape."""
    return {
        "name": "Service Overview",
        "permissions": "PUBLIC_READ_WRITE",
        "pages": [
            {
                "name": "Overview",
                "widgets": [
                    {
                        "title": "Throughput",
                        "visualization": {"id": "viz.line"},
                        "layout": {"column": 1, "row": 1, "width": 6, "height": 3},
                        "rawConfiguration": {
                            "nrqlQueries": [
                                {
                                    "accountId": TEST_ACCOUNT_ID,
                                    "query": (
                                        f"SELECT rate(count(*), 1 minute) FROM Transaction "
                                        f"WHERE account = {TEST_ACCOUNT_ID} TIMESERIES"
                                    ),
                                }
                            ]
                        },
                    },
                    {
                        "title": "Errors",
                        "visualization": {"id": "viz.billboard"},
                        "layout": {"column": 7, "row": 1, "width": 6, "height": 3},
                        "rawConfiguration": {
                            "nrqlQueries": [
                                {
                                    "accountId": TEST_ACCOUNT_ID,
                                    "query": "SELECT count(*) FROM TransactionError SINCE 1 hour ago",
                                }
                            ]
                        },
                    },
                ],
            }
        ],
    }
