from __future__ import annotations

import asyncio
from typing import Any

import pytest
from pydantic import BaseModel, ValidationError

from app.services.ai.errors import ModelResponseError
from app.services.ai.gateway import CallOptions, ModelGateway
from app.services.ai.keys import KeyPool
from app.services.ai.structured import StructuredCallWrapper
from app.services.scheduling.queues import CallBudgetQueue


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class FakeTransport:
    def __init__(self, outcomes: list[Any]) -> None:
        self.outcomes = list(outcomes)
        self.keys: list[str] = []

    async def _next(self, key: str) -> Any:
        self.keys.append(key)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        if asyncio.iscoroutine(outcome):
            return await outcome
        return outcome

    async def generate_text(self, *, key: str, **_: Any) -> str:
        return await self._next(key)

    async def generate_structured(self, *, key: str, schema: type[BaseModel], **_: Any) -> BaseModel:
        outcome = await self._next(key)
        try:
            return schema.model_validate(outcome)
        except ValidationError as exc:
            raise ModelResponseError(str(exc)) from exc


class Verdict(BaseModel):
    ok: bool


def build(caller_cls, outcomes: list[Any], keys: tuple[str, ...] = ("k1", "k2")):
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    clock = FakeClock()
    pool = KeyPool(list(keys), clock=clock)
    transport = FakeTransport(outcomes)
    caller = caller_cls(
        key_pool=pool,
        call_queue=CallBudgetQueue(name="test", concurrency=2, max_calls=100, window_seconds=60, clock=clock),
        transport=transport,
        sleep=fake_sleep,
        jitter=lambda low, high: 0.0,
        rate_limit_backoff_seconds=60,
        backoff_base_seconds=1,
        key_cooldown_seconds=60,
    )
    return caller, transport, pool, sleeps


def options(retries: int = 2, timeout: float = 5.0) -> CallOptions:
    return CallOptions(model="test-model", max_tokens=100, temperature=0.0, retries=retries, timeout_seconds=timeout)


@pytest.mark.asyncio
async def test_rate_limit_cools_key_and_retries_on_next_key_with_long_backoff() -> None:
    gateway, transport, pool, sleeps = build(
        ModelGateway,
        [Exception("429 RESOURCE_EXHAUSTED: quota exceeded"), '```json\n{"a": 1}\n```'],
    )

    result = await gateway.call("prompt", options())

    assert result == '{"a": 1}'
    assert transport.keys == ["k1", "k2"]
    assert pool.is_cooling("k1")
    assert sleeps == [60.0]


@pytest.mark.asyncio
async def test_transient_errors_back_off_exponentially_from_short_base() -> None:
    gateway, transport, _, sleeps = build(
        ModelGateway,
        [RuntimeError("503 service unavailable"), RuntimeError("connection reset"), 'ok {"x": 1}'],
    )

    result = await gateway.call("prompt", options(retries=2))

    assert result == '{"x": 1}'
    assert len(transport.keys) == 3
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_fatal_error_returns_empty_without_retry() -> None:
    gateway, transport, _, sleeps = build(
        ModelGateway,
        [Exception("API key not valid. Please pass a valid API key."), "never used"],
    )

    assert await gateway.call("prompt", options()) == ""
    assert len(transport.keys) == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_exhausted_retries_return_empty_string() -> None:
    gateway, transport, _, _ = build(ModelGateway, [RuntimeError("boom"), RuntimeError("boom again")])

    assert await gateway.call("prompt", options(retries=1)) == ""
    assert len(transport.keys) == 2


@pytest.mark.asyncio
async def test_timeout_is_treated_as_transient() -> None:
    gateway, transport, _, sleeps = build(ModelGateway, [asyncio.sleep(10), '{"late": false}'])

    result = await gateway.call("prompt", options(retries=1, timeout=0.01))

    assert result == '{"late": false}'
    assert len(transport.keys) == 2
    assert sleeps == [1.0]


@pytest.mark.asyncio
async def test_gateway_without_keys_returns_empty() -> None:
    gateway, transport, _, _ = build(ModelGateway, ["unused"], keys=())

    assert await gateway.call("prompt", options()) == ""
    assert transport.keys == []


@pytest.mark.asyncio
async def test_structured_call_returns_parsed_model() -> None:
    wrapper, _, _, _ = build(StructuredCallWrapper, [{"ok": True}])

    result = await wrapper.call("prompt", Verdict, options())

    assert isinstance(result, Verdict)
    assert result.ok is True


@pytest.mark.asyncio
async def test_structured_validation_failure_counts_as_call_failure() -> None:
    wrapper, transport, _, sleeps = build(
        StructuredCallWrapper,
        [{"ok": "not-a-bool-value"}, ModelResponseError("empty"), {"wrong": 1}],
    )

    assert await wrapper.call("prompt", Verdict, options(retries=2)) is None
    assert len(transport.keys) == 3
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_key_is_chosen_after_admission_so_cooling_keys_are_skipped() -> None:
    clock = FakeClock()
    pool = KeyPool(["key-one", "key-two"], clock=clock)

    async def wait_for_window(seconds: float) -> None:
        pool.mark_rate_limited("key-one", 60)
        clock.now += seconds

    queue = CallBudgetQueue(
        name="test", concurrency=2, max_calls=1, window_seconds=10, clock=clock, sleep=wait_for_window
    )
    async with queue.slot():
        pass

    transport = FakeTransport(['{"ok": true}'])
    gateway = ModelGateway(key_pool=pool, call_queue=queue, transport=transport, jitter=lambda low, high: 0.0)

    result = await gateway.call("prompt", options())

    assert result == '{"ok": true}'
    assert transport.keys == ["key-two"]
    assert queue.total_admitted == 2
