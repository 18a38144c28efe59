from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any

from app.services.ai.gateway import CallOptions, ModelGateway
from app.services.ai.keys import KeyPool
from app.services.ai.transport import GeminiTransport
from app.services.scheduling.queues import ModelCallQueue


class LoopBoundClient:
    """Mimics a genai client whose pooled connections belong to one event loop."""

    def __init__(self, key: str, calls: list[str]) -> None:
        self.key = key
        self.calls = calls
        self.loop: Any = None
        self.aio = SimpleNamespace(models=SimpleNamespace(generate_content=self.generate_content))

    async def generate_content(self, **_: Any) -> SimpleNamespace:
        self.calls.append(self.key)
        loop = asyncio.get_running_loop()
        if self.loop is None:
            self.loop = loop
        elif self.loop is not loop:
            raise RuntimeError("Event loop is closed")
        return SimpleNamespace(text='{"ok": true}')


def test_clients_are_rebuilt_when_the_event_loop_changes() -> None:
    calls: list[str] = []
    created: list[LoopBoundClient] = []

    def factory(key: str) -> LoopBoundClient:
        client = LoopBoundClient(key, calls)
        created.append(client)
        return client

    transport = GeminiTransport(client_factory=factory)
    gateway = ModelGateway(
        key_pool=KeyPool(["key-aaaaaaaaaa"]),
        call_queue=ModelCallQueue(key_count=1),
        transport=transport,
        jitter=lambda low, high: 0.0,
    )
    opts = CallOptions(retries=2, timeout_seconds=5.0)

    first = asyncio.run(gateway.call("hello", opts))
    second = asyncio.run(gateway.call("hello", opts))

    assert first == '{"ok": true}'
    assert second == '{"ok": true}'
    assert calls == ["key-aaaaaaaaaa", "key-aaaaaaaaaa"]
    assert len(created) == 2


def test_clients_are_reused_within_one_event_loop() -> None:
    created: list[str] = []

    def factory(key: str) -> LoopBoundClient:
        created.append(key)
        return LoopBoundClient(key, [])

    transport = GeminiTransport(client_factory=factory)

    async def run_twice() -> list[str]:
        return [
            await transport.generate_text(key="k1", model="m", prompt="p", max_tokens=10, temperature=0.0),
            await transport.generate_text(key="k1", model="m", prompt="p", max_tokens=10, temperature=0.0),
        ]

    assert asyncio.run(run_twice()) == ['{"ok": true}', '{"ok": true}']
    assert created == ["k1"]
