"""
Sample scenario module for scripts/run_load_test.py.

Three weighted flight-search journeys against BASE_URL: homepage load, a
route search and a listing page. Run with:

    python scripts/run_load_test.py scripts/flight_search.yaml \
        --scenarios scripts/flight_search_scenarios.py --probe --report summary.json
"""

from __future__ import annotations

import time
from typing import Any

import httpx

from loadbench.core.checks import check
from loadbench.core.dispatcher import IterationContext
from loadbench.models import IterationResult, Sample

HEADERS = {
    "User-Agent": "loadbench/0.1 (flight search load test)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "tr-TR,tr;q=0.9,en;q=0.8",
}

ROUTES = [
    {"origin": "IST", "destination": "ESB", "departure_date": "2024-12-15", "passenger_count": 1},
    {"origin": "SAW", "destination": "ESB", "departure_date": "2024-12-20", "passenger_count": 2},
    {"origin": "IST", "destination": "ADB", "departure_date": "2024-12-25", "passenger_count": 1},
]


def _contains_any(*needles: str):
    return lambda r: any(n in r.text for n in needles)


async def _get(url: str, timeout: float) -> tuple[httpx.Response, float]:
    async with httpx.AsyncClient(headers=HEADERS, timeout=timeout) as client:
        started = time.perf_counter()
        response = await client.get(url)
        return response, (time.perf_counter() - started) * 1000.0


async def homepage_load(ctx: IterationContext) -> IterationResult:
    response, duration_ms = await _get(ctx.base_url, ctx.timeout_seconds)
    ok, samples = check(
        response,
        {
            "homepage loads successfully": lambda r: r.status_code == 200,
            "homepage response time < 3s": lambda r: duration_ms < 3000,
            "homepage contains search elements": _contains_any("search", "arama", "flight", "uçuş"),
            "homepage size reasonable": lambda r: 1000 < len(r.content) < 5_000_000,
        },
    )
    return IterationResult(success=ok, duration_ms=duration_ms, samples=tuple(samples))


async def flight_search(ctx: IterationContext) -> IterationResult:
    route = ROUTES[0] if ctx.rng.random() < 0.7 else ctx.rng.choice(ROUTES[1:])
    params = "&".join(f"{k}={v}" for k, v in route.items())
    url = f"{ctx.base_url}/ucak-bileti/arama?{params}&trip_type=one_way"

    response, duration_ms = await _get(url, ctx.timeout_seconds)
    ok, samples = check(
        response,
        {
            "flight search request successful": lambda r: r.status_code in (200, 301, 302),
            "flight search response time < 10s": lambda r: duration_ms < 10000,
            "search response contains results": _contains_any(
                "flight", "uçuş", "result", "sonuç", "loading", "yükleniyor"
            ),
        },
    )
    samples.append(Sample.rate("flight_search_success", ok))
    return IterationResult(success=ok, duration_ms=duration_ms, samples=tuple(samples))


async def flight_listing(ctx: IterationContext) -> IterationResult:
    response, duration_ms = await _get(
        f"{ctx.base_url}/ucak-bileti/istanbul-ankara", ctx.timeout_seconds
    )
    ok, samples = check(
        response,
        {
            "flight listing loads": lambda r: r.status_code in (200, 302),
            "listing response time < 5s": lambda r: duration_ms < 5000,
            "listing contains flight data": _contains_any(
                "flight", "uçuş", "price", "fiyat", "search", "arama"
            ),
        },
    )
    return IterationResult(success=ok, duration_ms=duration_ms, samples=tuple(samples))


SCENARIOS = {
    "homepage_load": homepage_load,
    "flight_search_istanbul_ankara": flight_search,
    "flight_listing_performance": flight_listing,
}


def teardown(data: dict[str, Any] | None, snapshot: dict[str, Any]) -> None:
    data = data or {}
    print("\n=== Flight Search Load Test ===")
    print(f"Target available at start: {data.get('available')} (HTTP {data.get('status')})")
    iterations = snapshot.get("iterations")
    if iterations is not None:
        print(f"Iterations: {iterations.total:.0f}")
