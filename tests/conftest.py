"""Shared fixtures for the relay and participant tests."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

# Make the flat top-level modules importable when tests run from a checkout.
sys.path.append(str(Path(__file__).resolve().parents[1]))

from app import create_app
from backend import RoomStore


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store() -> RoomStore:
    return RoomStore()


@pytest.fixture()
def client(store: RoomStore) -> Iterator[TestClient]:
    # One portal for every websocket opened in a test, so they share an event loop.
    with TestClient(create_app(store)) as test_client:
        yield test_client
