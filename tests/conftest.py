"""Pytest configuration and fixtures."""

from dataclasses import replace
from typing import List

import pytest

from cachewatch.config import MonitorConfig, Thresholds
from cachewatch.core import CallError, CallOutcome, Model, UsageSample


class RecordingSleep:
    """Stands in for asyncio.sleep and remembers every delay"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


class ScriptedCaller:
    """Fake resilient caller answering from a script of usages and CallErrors"""

    def __init__(self, responses=None, default: UsageSample = None):
        self.responses = list(responses or [])
        self.default = default or UsageSample(prompt_tokens=1000, cached_tokens=800, completion_tokens=5)
        self.requests = []

    async def call(self, request, timeout: float) -> CallOutcome:
        self.requests.append(request)
        item = self.responses.pop(0) if self.responses else self.default
        payload = request.build_payload()
        if isinstance(item, CallError):
            return CallOutcome(payload=payload, error=str(item), error_kind=item.kind)
        return CallOutcome(payload=payload, usage=replace(item))


class FakeApi:
    """Models listing and balance lookup without a network"""

    def __init__(self, models=None, balance=10.0):
        self.models = list(models or [])
        self.balance = balance
        self.list_calls = 0
        self.balance_calls = 0

    async def list_models(self, model_type: str = "text"):
        self.list_calls += 1
        return list(self.models)

    async def get_balance(self):
        self.balance_calls += 1
        return self.balance


@pytest.fixture
def config(tmp_path):
    return MonitorConfig(
        api_key="test-key",
        base_url="https://api.example.test/api/v1",
        delay_between_requests=3.0,
        isolation_delay=0.0,
        retry_delay=0.0,
        thresholds=Thresholds(),
        data_dir=tmp_path / "data",
        logs_dir=tmp_path / "logs",
    )


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def caller():
    return ScriptedCaller()


@pytest.fixture
def models():
    return [
        Model(id="llama-3.3-70b", display_name="Llama 3.3 70B"),
        Model(id="qwen3-235b", display_name="Qwen3 235B"),
        Model(id="mistral-31-24b", display_name="Mistral 3.1 24B"),
    ]
