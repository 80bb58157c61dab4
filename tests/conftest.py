"""
Pytest configuration for the query engine test suite.

Provides:
- a HelperConfig bound to a plain test logger
- StubTransport, an in-memory search transport that replays scripted responses
- SleepRecorder, an injectable sleep that records backoff delays instead of waiting
"""
import logging
import random

import pytest

from shared.helper.HelperConfig import HelperConfig
from shared.query.QueryExecutor import QueryExecutor
from shared.query.models.Retry import RetryPolicy


class StubTransport:
    """Replays scripted responses in call order.

    Each scripted response is either an envelope dict, an exception instance to raise,
    or a callable receiving the CompiledRequest and returning one of those.
    """

    def __init__(self, responses=None, responder=None):
        self.responses = list(responses or [])
        self.responder = responder
        self.requests = []

    async def send(self, request, timeout=None):
        self.requests.append(request)
        if self.responder is not None:
            response = self.responder(request)
        elif self.responses:
            response = self.responses.pop(0)
        else:
            raise AssertionError("StubTransport received an unexpected request")
        if callable(response):
            response = response(request)
        if isinstance(response, BaseException):
            raise response
        return response

    @property
    def calls(self) -> int:
        return len(self.requests)


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def envelope_for(request, items_by_collection: dict, errors=None, extensions=None) -> dict:
    """Build a backend envelope answering every member of a compiled request."""
    data: dict = {}
    for member in request.members:
        section = data.setdefault(member.operation, {})
        section[member.result_key] = items_by_collection.get(member.collection, [])
    envelope = {"data": data, "errors": errors or []}
    if extensions:
        envelope["extensions"] = extensions
    return envelope


def answer_with(items_by_collection: dict, errors=None, extensions=None):
    """Scripted response that answers whatever request it receives."""
    return lambda request: envelope_for(request, items_by_collection, errors=errors, extensions=extensions)


@pytest.fixture
def helper_config(monkeypatch):
    for key in ("QUERY_BATCH_STRATEGY", "QUERY_COLLECTIONS", "SEARCH_ENGINE"):
        monkeypatch.delenv(key, raising=False)
    return HelperConfig(logger=logging.getLogger("query_engine.tests"))


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def make_executor(helper_config, sleep_recorder):
    """Factory building an executor over a StubTransport with recorded sleeps."""

    def factory(transport, retry_policy=None, **kwargs):
        return QueryExecutor(
            helper_config=helper_config,
            transport=transport,
            retry_policy=retry_policy or RetryPolicy(attempt_timeout=None),
            sleep=sleep_recorder,
            rng=random.Random(7),
            **kwargs,
        )

    return factory
