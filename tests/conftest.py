"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import json
from typing import Any

import pytest


class FakeSocket:
    """In-memory stand-in for WebSocketChannel."""

    def __init__(self, url: str, listener: Any):
        self.url = url
        self.listener = listener
        self.sent: list[str] = []
        self.closed = False

    def send(self, text: str) -> None:
        self.sent.append(text)

    async def aclose(self) -> None:
        self.closed = True

    @property
    def messages(self) -> list[dict[str, Any]]:
        """Sent frames, decoded."""
        return [json.loads(text) for text in self.sent]

    def open(self) -> None:
        self.listener.handle_open()

    def receive(self, **frame: Any) -> None:
        self.listener.handle_message(json.dumps(frame))

    def ack(self) -> None:
        self.receive(type="connection_ack")


class FakeSocketFactory:
    """Socket factory that records every socket it builds."""

    def __init__(self) -> None:
        self.sockets: list[FakeSocket] = []

    def __call__(self, url: str, listener: Any) -> FakeSocket:
        socket = FakeSocket(url, listener)
        self.sockets.append(socket)
        return socket

    @property
    def last(self) -> FakeSocket:
        return self.sockets[-1]


@pytest.fixture
def socket_factory() -> FakeSocketFactory:
    return FakeSocketFactory()


@pytest.fixture
def log_lines() -> list[str]:
    """A list to use as a diagnostics sink via ``log_lines.append``."""
    return []
