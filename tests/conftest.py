"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from canvasmind.services import telemetry
from canvasmind.services.telemetry import InMemoryTelemetrySink


@pytest.fixture
def telemetry_sink():
    sink = InMemoryTelemetrySink()
    listener = telemetry.attach_sink(sink)
    try:
        yield sink
    finally:
        telemetry.detach_sink(listener)
