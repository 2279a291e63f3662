"""
tests/conftest.py
"""
from __future__ import annotations

import datetime as _dt
import itertools
import uuid
from pathlib import Path
from typing import Callable, Generator

import pytest
from flask.testing import FlaskClient
from pytest import MonkeyPatch

# The single-file app lives here:
from fontvote.app import VOTER_COOKIE, app, get_db, init_db, sign_voter

CSRF = "test-token"


@pytest.fixture(scope="session")
def _tmp_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """One temp file for the whole test session (faster than per-test)."""
    db_file = tmp_path_factory.mktemp("data") / "test.sqlite3"
    return db_file


@pytest.fixture(scope="session", autouse=True)
def _configure_app(_tmp_db_path: Path) -> None:
    """
    Configure the Flask app *once* before the first test is collected.
    Always the local sqlite store; rate-limit off unless a test turns it on.
    """
    app.config.update(
        TESTING=True,
        DATABASE=str(_tmp_db_path),
        SESSION_COOKIE_SECURE=False,
        RATE_LIMIT_ENABLED=False,
        SUPABASE_URL="",
        SUPABASE_KEY="",
        VOTE_QUOTA=8,
        QUOTA_POLICY="upvotes",
        VOTING_ENABLED=True,
    )
    with app.app_context():
        init_db()


@pytest.fixture
def client() -> Generator[FlaskClient, None, None]:
    """
    Gives each test an isolated application context *and* test client.

    Yields:
        `flask.testing.FlaskClient`
    """
    with app.test_client() as client:
        with app.app_context():
            yield client


@pytest.fixture
def voter(client) -> str:
    """A fresh voter id, installed as the signed cookie, plus a CSRF token."""
    uid = str(uuid.uuid4())
    client.set_cookie(VOTER_COOKIE, sign_voter(uid))
    with client.session_transaction() as sess:
        sess["csrf"] = CSRF
    return uid


@pytest.fixture
def admin(client) -> FlaskClient:
    with client.session_transaction() as sess:
        sess["admin"] = True
        sess["csrf"] = CSRF
    return client


_font_counter = itertools.count(1)


@pytest.fixture
def make_font() -> Callable[..., int]:
    """Insert a font row with a unique name and return its id."""

    def _make(name: str | None = None, *, up: int = 0, down: int = 0) -> int:
        name = name or f"Test Font {next(_font_counter)} {uuid.uuid4().hex[:6]}"
        db = get_db()
        cur = db.execute(
            "INSERT INTO fonts (name, url, upvotes, downvotes) VALUES (?,?,?,?)",
            (name, f"https://fonts.example/{name}.css", up, down),
        )
        db.commit()
        return cur.lastrowid

    return _make


@pytest.fixture
def make_tag() -> Callable[[str | None], int]:
    def _make(name: str | None = None) -> int:
        db = get_db()
        cur = db.execute(
            "INSERT INTO tags (name) VALUES (?)",
            (name or f"tag-{uuid.uuid4().hex[:8]}",),
        )
        db.commit()
        return cur.lastrowid

    return _make


@pytest.fixture(autouse=True)
def _voting_open():
    """Every test starts with voting open, whatever the last one did."""
    with app.app_context():
        db = get_db()
        db.execute("UPDATE settings SET value='1' WHERE key='voting_open'")
        db.commit()


@pytest.fixture(autouse=True, scope="session")
def _fixed_clock():
    """
    Patch fontvote.app.utc_now for the whole test session so every call
    returns an ever-increasing timestamp.
    """
    import fontvote.app as fontvote_app  # import here to avoid early import

    counter = itertools.count()

    base = _dt.datetime(2099, 6, 15, tzinfo=_dt.timezone.utc)

    def _fake_now():
        return base + _dt.timedelta(seconds=next(counter))

    mp = MonkeyPatch()
    mp.setattr(fontvote_app, "utc_now", _fake_now)

    yield

    mp.undo()
