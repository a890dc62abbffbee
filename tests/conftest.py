"""
Global pytest configuration and fixtures for LoadBench tests.

This module provides:
- A run-scoped aggregator with exact percentiles
- A scripted random source for deterministic draws
- Small builders for run configurations
"""

from __future__ import annotations

import random
from typing import Any, Iterable

import pytest

from loadbench.core.metrics_aggregator import MetricsAggregator
from loadbench.models import BUILTIN_METRICS


class ScriptedRandom(random.Random):
    """random.Random whose random() replays a fixed sequence (then cycles)."""

    def __init__(self, values: Iterable[float]):
        super().__init__(0)
        self._values = list(values)
        self._pos = 0

    def random(self) -> float:
        value = self._values[self._pos % len(self._values)]
        self._pos += 1
        return value


@pytest.fixture
def aggregator() -> MetricsAggregator:
    """Fresh aggregator with every built-in metric declared."""
    return MetricsAggregator(strategy="exact", kinds=BUILTIN_METRICS)


@pytest.fixture
def seeded_rng() -> random.Random:
    return random.Random(1234)


def constant_config(
    *,
    vus: int = 1,
    duration: Any = 1000,
    scenarios: list[dict[str, Any]] | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Raw run configuration with one constant-vus executor and no think time."""
    config: dict[str, Any] = {
        "executors": {"main": {"executor": "constant-vus", "vus": vus, "duration": duration}},
        "scenarios": scenarios or [{"name": "default", "weight": 100}],
        "think_time": {"min": 0, "max": 0},
        "graceful_ramp_down": 1000,
    }
    config.update(extra)
    return config


@pytest.fixture
def make_config():
    """Builder for raw constant-vus run configurations."""
    return constant_config
