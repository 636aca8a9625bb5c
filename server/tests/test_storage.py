"""Tests for the JSON Lines visit store."""

from __future__ import annotations

import asyncio
import json

import pytest

from beacon.core.errors import StoreError
from beacon.core.models import GeoInfo, VisitRecord
from beacon.storage.file_storage import FileVisitStore


def _visit(path: str, ip: str = "203.0.113.5", ts: int = 1_700_000_000, **kwargs) -> VisitRecord:
    return VisitRecord(
        ip=ip,
        user_agent=kwargs.get("user_agent", "Mozilla/5.0"),
        path=path,
        referer=kwargs.get("referer", ""),
        timestamp=ts,
        geo=kwargs.get("geo"),
    )


@pytest.fixture
def store(tmp_path) -> FileVisitStore:
    return FileVisitStore(tmp_path / "logs" / "visits.jsonl")


@pytest.mark.asyncio
async def test_newest_first(store):
    for i in range(3):
        await store.append(_visit(f"/p{i}", ts=1_700_000_000 + i))

    rows = await store.query("")
    assert [r.path for r in rows] == ["/p2", "/p1", "/p0"]
    assert await store.count() == 3


@pytest.mark.asyncio
async def test_same_second_keeps_arrival_order(store):
    await store.append(_visit("/first"))
    await store.append(_visit("/second"))
    rows = await store.query("")
    assert [r.path for r in rows] == ["/second", "/first"]


@pytest.mark.asyncio
async def test_roundtrip_preserves_fields(store):
    geo = GeoInfo(city="Lyon", region="Auvergne-Rhone-Alpes", country="FR", lat=45.76, lon=4.83)
    original = _visit("/geo", referer="https://ref.example/", geo=geo)
    await store.append(original)

    assert (await store.query(""))[0] == original


@pytest.mark.asyncio
async def test_filter_case_insensitive_across_fields(store):
    await store.append(_visit("/Pricing", ip="198.51.100.7"))
    await store.append(_visit("/about", user_agent="CuriousBot/2.0"))
    await store.append(_visit("/contact", referer="https://Search.example/"))
    await store.append(_visit("/x", geo=GeoInfo(city="Montréal", region="Quebec", country="CA")))

    assert [r.path for r in await store.query("pricing")] == ["/Pricing"]
    assert [r.path for r in await store.query("198.51.100.7")] == ["/Pricing"]
    assert [r.path for r in await store.query("curiousbot")] == ["/about"]
    assert [r.path for r in await store.query("SEARCH.example")] == ["/contact"]
    assert [r.path for r in await store.query("quebec")] == ["/x"]
    assert [r.path for r in await store.query("montr")] == ["/x"]
    assert await store.query("nothing-matches-this") == []


@pytest.mark.asyncio
async def test_filter_results_shrink_as_term_grows(store):
    for path in ["/home", "/home/news", "/homework", "/hobbies", "/about"]:
        await store.append(_visit(path, ip="192.0.2.1", user_agent=""))

    everything = await store.query("")
    previous = everything
    for term in ["h", "ho", "hom", "home", "home/", "home/n"]:
        rows = await store.query(term)
        assert set(rows) <= set(everything)
        assert len(rows) <= len(previous)
        previous = rows
    assert [r.path for r in previous] == ["/home/news"]


@pytest.mark.asyncio
async def test_limit_and_offset(store):
    for i in range(10):
        await store.append(_visit(f"/p{i}"))

    rows = await store.query("", limit=3, offset=2)
    assert [r.path for r in rows] == ["/p7", "/p6", "/p5"]
    assert await store.query("", limit=5, offset=50) == []
    assert len(await store.query("", limit=0)) == 1
    assert len(await store.query("", limit=3, offset=-4)) == 3


@pytest.mark.asyncio
async def test_limit_is_capped(tmp_path):
    store = FileVisitStore(tmp_path / "visits.jsonl", max_limit=4)
    for i in range(6):
        await store.append(_visit(f"/p{i}"))
    assert len(await store.query("", limit=2000)) == 4


@pytest.mark.asyncio
async def test_offset_applies_after_filter(store):
    for i in range(6):
        await store.append(_visit(f"/blog/{i}" if i % 2 else f"/shop/{i}"))
    rows = await store.query("blog", limit=10, offset=1)
    assert [r.path for r in rows] == ["/blog/3", "/blog/1"]


@pytest.mark.asyncio
async def test_truncated_trailing_line_is_skipped(tmp_path):
    path = tmp_path / "visits.jsonl"
    store = FileVisitStore(path)
    await store.append(_visit("/one"))
    await store.append(_visit("/two"))

    with open(path, "a") as f:
        f.write('{"ip": "203.0.113.9", "userAgent": "Mozi')

    rows = await store.query("")
    assert [r.path for r in rows] == ["/two", "/one"]


@pytest.mark.asyncio
async def test_reopen_repairs_tail_before_appending(tmp_path):
    path = tmp_path / "visits.jsonl"
    first = FileVisitStore(path)
    await first.append(_visit("/before-crash"))
    with open(path, "a") as f:
        f.write('{"ip": "203.0.113.9", "pa')

    # Simulates a restart after the crash.
    store = FileVisitStore(path)
    await store.append(_visit("/after-restart"))

    rows = await store.query("")
    assert [r.path for r in rows] == ["/after-restart", "/before-crash"]


@pytest.mark.asyncio
async def test_corrupt_lines_in_the_middle_are_skipped(tmp_path):
    path = tmp_path / "visits.jsonl"
    lines = [
        json.dumps(_visit("/ok1").to_dict()),
        "garbage",
        json.dumps({"ip": 5, "timestamp": 1}),
        json.dumps({"path": "/missing-ip", "timestamp": 1}),
        "[1, 2, 3]",
        "",
        json.dumps(_visit("/ok2").to_dict()),
    ]
    path.write_text("\n".join(lines) + "\n")

    store = FileVisitStore(path)
    assert [r.path for r in await store.query("")] == ["/ok2", "/ok1"]


@pytest.mark.asyncio
async def test_records_survive_reopen(tmp_path):
    path = tmp_path / "visits.jsonl"
    await FileVisitStore(path).append(_visit("/durable"))
    assert [r.path for r in await FileVisitStore(path).query("")] == ["/durable"]


@pytest.mark.asyncio
async def test_append_failure_raises_store_error(store, monkeypatch):
    def fail(line):
        raise OSError("No space left on device")

    monkeypatch.setattr(store, "_write_line", fail)
    with pytest.raises(StoreError):
        await store.append(_visit("/lost"))


@pytest.mark.asyncio
async def test_read_failure_returns_empty(store, monkeypatch):
    await store.append(_visit("/there"))

    def fail():
        raise OSError("I/O error")

    monkeypatch.setattr(store, "_read_records", fail)
    assert await store.query("") == []
    assert await store.count() == 0


@pytest.mark.asyncio
async def test_concurrent_appends_never_interleave(store):
    await asyncio.gather(*(
        store.append(_visit(f"/page/{i}", user_agent="Mozilla/5.0 " + "x" * 512, ts=1_700_000_000 + i))
        for i in range(200)
    ))

    assert await store.count() == 200
    lines = store.path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 200
    parsed = [VisitRecord.from_dict(json.loads(line)) for line in lines]
    assert sorted(r.path for r in parsed) == sorted(f"/page/{i}" for i in range(200))
    # Appends are admitted in call order.
    assert [r.timestamp for r in parsed] == [1_700_000_000 + i for i in range(200)]


@pytest.mark.asyncio
async def test_unencodable_text_is_replaced(store):
    await store.append(_visit("/a\ud800b"))
    assert [r.path for r in await store.query("")] == ["/a?b"]
