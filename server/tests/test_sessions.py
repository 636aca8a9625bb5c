"""Tests for server-side admin sessions."""

from __future__ import annotations

from beacon.core.sessions import SessionRegistry


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_700_000_000.0

    def __call__(self) -> float:
        return self.now


def test_create_and_resolve():
    registry = SessionRegistry(secret="s3cret")
    session, token = registry.create()
    assert token != session.session_id
    assert registry.resolve(token) == session
    assert registry.is_valid(token)
    assert registry.active_count() == 1


def test_missing_or_forged_tokens():
    registry = SessionRegistry(secret="s3cret")
    session, token = registry.create()

    assert registry.resolve(None) is None
    assert registry.resolve("") is None
    assert registry.resolve(session.session_id) is None
    assert registry.resolve(token + "x") is None

    other = SessionRegistry(secret="another-secret")
    assert other.resolve(token) is None


def test_token_for_unknown_session_is_rejected():
    """A correctly signed token is useless once the server forgot the session."""
    registry = SessionRegistry(secret="s3cret")
    _, token = registry.create()

    restarted = SessionRegistry(secret="s3cret")
    assert restarted.resolve(token) is None


def test_destroy():
    registry = SessionRegistry(secret="s3cret")
    session, token = registry.create()
    assert registry.destroy(token) == session
    assert registry.resolve(token) is None
    assert registry.destroy(token) is None
    assert registry.destroy(None) is None


def test_expiry():
    clock = FakeClock()
    registry = SessionRegistry(secret="s3cret", max_age_seconds=3600, clock=clock)
    _, token = registry.create()

    clock.now += 3599
    assert registry.is_valid(token)
    clock.now += 2
    assert not registry.is_valid(token)
    assert registry.active_count() == 0


def test_is_live_tracks_expiry_and_destroy():
    clock = FakeClock()
    registry = SessionRegistry(secret="s3cret", max_age_seconds=60, clock=clock)
    session, token = registry.create()
    other, other_token = registry.create()

    assert registry.is_live(session.session_id)
    assert not registry.is_live("no-such-session")

    registry.destroy(other_token)
    assert not registry.is_live(other.session_id)

    clock.now += 61
    assert not registry.is_live(session.session_id)
    assert registry.active_count() == 0
