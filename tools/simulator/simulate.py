#!/usr/bin/env python3
"""Beacon traffic simulator.

Generates page-view beacons from simulated visitors for testing the server.

Usage:
    # 5 visitors browsing for 1 minute
    python tools/simulator/simulate.py --server http://localhost:8000 --visitors 5 --duration 60

    # Stress test the rate limiter: 20 visitors, 200 page views per minute each
    python tools/simulator/simulate.py --visitors 20 --views-per-minute 200

    # Show server stats at the end (needs the admin password)
    python tools/simulator/simulate.py --password hunter2
"""

from __future__ import annotations

import argparse
import asyncio
import random
import time
from dataclasses import dataclass

import httpx

PAGES = ["/", "/pricing", "/blog", "/blog/launch", "/docs", "/docs/install", "/about", "/contact"]

REFERERS = [
    "",
    "",
    "https://www.google.com/",
    "https://news.ycombinator.com/",
    "https://duckduckgo.com/",
    "https://twitter.com/",
]

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_2) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_2 like Mac OS X) AppleWebKit/605.1.15 Mobile/15E148",
]


@dataclass
class SimVisitor:
    ip: str
    user_agent: str
    page: str
    views_sent: int = 0
    rate_limited: int = 0
    errors: int = 0


def random_public_ip() -> str:
    """An address from the documentation ranges, so nothing real is geolocated."""
    prefix = random.choice(["192.0.2", "198.51.100", "203.0.113"])
    return f"{prefix}.{random.randint(1, 254)}"


def next_page(visitor: SimVisitor) -> str:
    """Mostly follow a link from the current page, sometimes jump anywhere."""
    if random.random() < 0.7:
        related = [p for p in PAGES if p.startswith(visitor.page.rstrip("/")) and p != visitor.page]
        if related:
            return random.choice(related)
    return random.choice(PAGES)


async def run_visitor(
    client: httpx.AsyncClient,
    visitor: SimVisitor,
    server_url: str,
    views_per_minute: float,
    duration_seconds: float,
) -> None:
    """Simulate one visitor browsing the site."""
    interval = 60.0 / views_per_minute
    end_time = time.monotonic() + duration_seconds
    referer = random.choice(REFERERS)

    while time.monotonic() < end_time:
        payload = {
            "path": visitor.page,
            "url": f"https://example.org{visitor.page}",
            "ts": int(time.time()),
        }
        headers = {"x-forwarded-for": visitor.ip, "user-agent": visitor.user_agent}
        if referer:
            headers["referer"] = referer

        try:
            resp = await client.post(f"{server_url}/track", json=payload, headers=headers)
            if resp.status_code == 200:
                visitor.views_sent += 1
            elif resp.status_code == 429:
                visitor.rate_limited += 1
            else:
                visitor.errors += 1
        except httpx.RequestError:
            visitor.errors += 1

        referer = f"https://example.org{visitor.page}"
        visitor.page = next_page(visitor)
        await asyncio.sleep(interval * random.uniform(0.5, 1.5))


async def print_server_stats(server_url: str, password: str) -> None:
    async with httpx.AsyncClient(timeout=10.0) as client:
        resp = await client.post(f"{server_url}/login", data={"password": password})
        if resp.status_code != 303:
            print(f"\nLogin failed ({resp.status_code}), skipping server stats")
            return
        resp = await client.get(f"{server_url}/api/stats")
        if resp.status_code != 200:
            return
        stats = resp.json()
        print("\nServer stats:")
        print(f"  Visits received: {stats['visits_received']}")
        print(f"  Visits stored: {stats['visits_stored']}")
        print(f"  Rate limited: {stats['visits_rate_limited']}")
        print(f"  Active visitors: {stats['active_visitors']['total']}")
        print(f"  Admins connected: {stats['admins_connected']}")


async def run_simulation(args: argparse.Namespace) -> None:
    """Run the full simulation."""
    visitors = [
        SimVisitor(
            ip=random_public_ip(),
            user_agent=random.choice(USER_AGENTS),
            page=random.choice(PAGES),
        )
        for _ in range(args.visitors)
    ]

    print(f"Starting simulation: {args.visitors} visitors, {args.views_per_minute} views/min each")
    print(f"  Duration: {args.duration}s")
    print(f"  Server: {args.server}")
    print()

    start = time.monotonic()

    async with httpx.AsyncClient(timeout=10.0) as client:
        tasks = [
            run_visitor(client, v, args.server, args.views_per_minute, args.duration)
            for v in visitors
        ]
        await asyncio.gather(*tasks)

    elapsed = time.monotonic() - start
    total_views = sum(v.views_sent for v in visitors)
    total_limited = sum(v.rate_limited for v in visitors)
    total_errors = sum(v.errors for v in visitors)

    print(f"\nSimulation complete in {elapsed:.1f}s")
    print(f"  Page views sent: {total_views}")
    print(f"  Rate limited: {total_limited}")
    print(f"  Errors: {total_errors}")
    print(f"  Throughput: {total_views / elapsed:.1f} views/sec")

    if args.password:
        try:
            await print_server_stats(args.server, args.password)
        except httpx.RequestError as exc:
            print(f"\nCould not fetch server stats: {exc}")


def main():
    parser = argparse.ArgumentParser(description="Beacon traffic simulator")
    parser.add_argument("--server", default="http://localhost:8000", help="Server URL")
    parser.add_argument("--visitors", type=int, default=5, help="Number of simulated visitors")
    parser.add_argument("--duration", type=int, default=60, help="Simulation duration in seconds")
    parser.add_argument("--views-per-minute", type=float, default=10, help="Page views per minute per visitor")
    parser.add_argument("--password", default="", help="Admin password, to print server stats at the end")

    args = parser.parse_args()
    asyncio.run(run_simulation(args))


if __name__ == "__main__":
    main()
