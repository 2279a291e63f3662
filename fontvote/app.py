#!/usr/bin/env python3
"""
A single-file font voting board.

Visitors up- or down-vote web fonts, browse them by tag and preview the
favourites on an example event flyer.  A password-gated admin page tags the
fonts.  The catalog lives in a local sqlite file unless SUPABASE_URL and
SUPABASE_KEY point at a hosted Postgres, in which case the same tables and
the ``cast_vote`` / ``remove_vote`` functions are reached over PostgREST.
"""

import json
import os
import re
import secrets
import sqlite3
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from time import time
from typing import DefaultDict
from urllib.parse import quote_plus, urlencode

import click
import requests
from flask import (
    Flask,
    Response,
    abort,
    flash,
    g,
    jsonify,
    redirect,
    render_template_string,
    request,
    session,
    url_for,
)
from itsdangerous import BadSignature, Signer
from markupsafe import Markup
from werkzeug.middleware.proxy_fix import ProxyFix
from werkzeug.security import check_password_hash, generate_password_hash

################################################################################
# Imports & constants
################################################################################

ROOT = Path(__file__).parent
DB_FILE = Path(os.environ.get("FONTVOTE_DB", str(ROOT / "fontvote.sqlite3")))

ENV_FILE = ROOT / ".env"
SECRET_FILE = ROOT / ".secret_key"
SECRET_KEY = (
    SECRET_FILE.read_text().strip() if SECRET_FILE.exists() else secrets.token_hex(32)
)
SECRET_FILE.write_text(SECRET_KEY)

SITE_NAME_DFLT = "fontvote"
VOTE_QUOTA = int(os.environ.get("FONTVOTE_VOTE_QUOTA", "8"))
QUOTA_POLICIES = ("upvotes", "total")
QUOTA_POLICY = os.environ.get("FONTVOTE_QUOTA_POLICY", "upvotes")
VOTING_ENABLED = os.environ.get("FONTVOTE_VOTING_ENABLED", "1") != "0"
ADMIN_PASSWORD = os.environ.get("FONTVOTE_ADMIN_PASSWORD", "admin123")
LOG_LEVEL = os.environ.get("FONTVOTE_LOG_LEVEL", "INFO")
SUPABASE_KEYS = ("SUPABASE_URL", "SUPABASE_KEY")
SUPABASE_TIMEOUT = float(os.environ.get("SUPABASE_TIMEOUT", "10"))

DIRECTIONS = ("up", "down")
VOTER_COOKIE = "fontVotingUserId"
VOTER_COOKIE_MAX_AGE = 10 * 365 * 24 * 3600  # ten years, never rotated
voter_signer = Signer(SECRET_KEY, salt="voter-id")

GOOGLE_FONTS_CSS = "https://fonts.googleapis.com/css2"
PREVIEW_TEXT = "The quick brown fox"
FALLBACK_FAMILY = "system-ui"
FONT_NAME_RE = re.compile(r"^[\w .-]{1,80}$", re.U)
RATE_LIMIT_MAX_CLIENTS = int(os.environ.get("FONTVOTE_RATE_LIMIT_MAX_CLIENTS", "4096"))

try:
    __version__ = version("fontvote")
except PackageNotFoundError:
    __version__ = "0.1.0-dev"


def _read_env_file() -> dict[str, str]:
    env = {}
    if not ENV_FILE.exists():
        return env
    for ln in ENV_FILE.read_text().splitlines():
        ln = ln.strip()
        if not ln or ln.startswith("#") or "=" not in ln:
            continue
        k, v = ln.split("=", 1)
        env[k.strip()] = v.strip()
    return env


def supabase_config() -> dict[str, str]:
    """Process environment first, then the .env file next to the package."""
    file_env = _read_env_file()
    return {k: os.environ.get(k) or file_env.get(k, "") for k in SUPABASE_KEYS}


################################################################################
# App
################################################################################
app = Flask(__name__)
app.url_map.strict_slashes = False
app.config.update(SECRET_KEY=SECRET_KEY, DATABASE=str(DB_FILE))
app.config.update(
    SESSION_COOKIE_SAMESITE="Lax",
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SECURE=True,  # only if you serve over HTTPS
    VOTE_QUOTA=VOTE_QUOTA,
    QUOTA_POLICY=QUOTA_POLICY if QUOTA_POLICY in QUOTA_POLICIES else "upvotes",
    VOTING_ENABLED=VOTING_ENABLED,
    ADMIN_PASSWORD_HASH=generate_password_hash(ADMIN_PASSWORD),
    RATE_LIMIT_ENABLED=True,
    **supabase_config(),
)
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)
app.logger.setLevel(LOG_LEVEL)


################################################################################
# Errors
################################################################################
class StoreError(Exception):
    """Any failure talking to the catalog store (local or hosted)."""


class VoteRejected(Exception):
    """A vote refused before the store is contacted."""

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason  # closed | unknown | duplicate | quota
        self.message = message


###############################################################################
# Database helpers
###############################################################################
def get_db():
    if "db" not in g:
        g.db = sqlite3.connect(app.config["DATABASE"])
        g.db.execute("PRAGMA foreign_keys = ON;")
        g.db.row_factory = sqlite3.Row
    return g.db


@app.teardown_appcontext
def close_db(error=None):
    g.pop("store", None)
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db():
    db = get_db()
    db.executescript(
        """
        ------------------------------------------------------------
        -- 1.  Fonts  (counters are aggregates of the votes table)
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS fonts (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            url         TEXT NOT NULL,
            name        TEXT UNIQUE NOT NULL,
            upvotes     INTEGER NOT NULL DEFAULT 0 CHECK (upvotes >= 0),
            downvotes   INTEGER NOT NULL DEFAULT 0 CHECK (downvotes >= 0)
        );

        ------------------------------------------------------------
        -- 2.  Tags
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS tags (
            id   INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT UNIQUE NOT NULL
        );

        CREATE TABLE IF NOT EXISTS font_tags (
            font_id INTEGER NOT NULL,
            tag_id  INTEGER NOT NULL,
            PRIMARY KEY (font_id, tag_id),
            FOREIGN KEY (font_id) REFERENCES fonts(id) ON DELETE CASCADE,
            FOREIGN KEY (tag_id)  REFERENCES tags(id)  ON DELETE CASCADE
        );

        ------------------------------------------------------------
        -- 3.  Votes  (one per voter and font)
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS votes (
            font_id    INTEGER NOT NULL,
            user_id    TEXT NOT NULL,
            vote_type  TEXT NOT NULL CHECK (vote_type IN ('up', 'down')),
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (font_id, user_id),
            FOREIGN KEY (font_id) REFERENCES fonts(id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_votes_user ON votes(user_id);

        ------------------------------------------------------------
        -- 4.  Site-wide key/value settings
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS settings (
            key   TEXT PRIMARY KEY,
            value TEXT
        );
        INSERT OR IGNORE INTO settings (key, value)
            VALUES ('site_name', 'fontvote'),
                   ('voting_open', '1');
        """
    )
    db.commit()


# -------------------------------------------------------------------------
# Time helpers
# -------------------------------------------------------------------------
def utc_now() -> datetime:
    """Return an *aware* datetime in UTC."""
    return datetime.now(timezone.utc)


def get_setting(key, default=None):
    row = get_db().execute("SELECT value FROM settings WHERE key=?", (key,)).fetchone()
    return row["value"] if row else default


def set_setting(key, value):
    db = get_db()
    db.execute(
        "INSERT INTO settings (key,value) VALUES (?,?) "
        "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
        (key, value),
    )
    db.commit()


def site_name() -> str:
    return get_setting("site_name", SITE_NAME_DFLT) or SITE_NAME_DFLT


def voting_enabled() -> bool:
    """Config switch AND the admin-controlled setting must both allow it."""
    return bool(app.config.get("VOTING_ENABLED", True)) and (
        get_setting("voting_open", "1") == "1"
    )


###############################################################################
# Stores
###############################################################################
FONT_ORDERS = {
    "id": "id ASC",
    "name": "LOWER(name) ASC, id ASC",
    "upvotes": "upvotes DESC, id ASC",
}


def _vote_column(vote_type: str) -> str:
    if vote_type not in DIRECTIONS:
        raise ValueError(f"Unknown vote direction “{vote_type}”")
    return "upvotes" if vote_type == "up" else "downvotes"


class SqliteStore:
    """
    The catalog tables in the local sqlite file.

    ``cast_vote`` / ``remove_vote`` and ``replace_font_tags`` each run in one
    transaction, so the vote row and the aggregate counter never disagree.
    """

    def __init__(self, db):
        self.db = db

    def fonts(self, order: str = "id") -> list[dict]:
        sql = (
            "SELECT id, url, name, upvotes, downvotes FROM fonts "
            f"ORDER BY {FONT_ORDERS[order]}"
        )
        try:
            return [dict(r) for r in self.db.execute(sql)]
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot read fonts – {exc}") from exc

    def tags(self) -> list[dict]:
        try:
            return [
                dict(r)
                for r in self.db.execute(
                    "SELECT id, name FROM tags ORDER BY LOWER(name), id"
                )
            ]
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot read tags – {exc}") from exc

    def font_tags(self) -> list[tuple[int, int]]:
        try:
            return [
                (r["font_id"], r["tag_id"])
                for r in self.db.execute("SELECT font_id, tag_id FROM font_tags")
            ]
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot read font tags – {exc}") from exc

    def user_votes(self, user_id: str) -> dict[int, str]:
        try:
            rows = self.db.execute(
                "SELECT font_id, vote_type FROM votes WHERE user_id=?", (user_id,)
            )
            return {r["font_id"]: r["vote_type"] for r in rows}
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot read votes – {exc}") from exc

    def cast_vote(self, font_id: int, user_id: str, vote_type: str) -> None:
        col = _vote_column(vote_type)
        try:
            with self.db:
                self.db.execute(
                    "INSERT INTO votes (font_id, user_id, vote_type, created_at) "
                    "VALUES (?,?,?,?)",
                    (
                        font_id,
                        user_id,
                        vote_type,
                        utc_now().isoformat(timespec="seconds"),
                    ),
                )
                self.db.execute(
                    f"UPDATE fonts SET {col} = {col} + 1 WHERE id=?", (font_id,)
                )
        except sqlite3.Error as exc:
            raise StoreError(f"cast_vote failed – {exc}") from exc

    def remove_vote(self, font_id: int, user_id: str, vote_type: str) -> None:
        col = _vote_column(vote_type)
        try:
            with self.db:
                cur = self.db.execute(
                    "DELETE FROM votes WHERE font_id=? AND user_id=? AND vote_type=?",
                    (font_id, user_id, vote_type),
                )
                if cur.rowcount:
                    self.db.execute(
                        f"UPDATE fonts SET {col} = MAX({col} - 1, 0) WHERE id=?",
                        (font_id,),
                    )
        except sqlite3.Error as exc:
            raise StoreError(f"remove_vote failed – {exc}") from exc

    def add_tag(self, name: str) -> dict:
        try:
            with self.db:
                cur = self.db.execute("INSERT INTO tags (name) VALUES (?)", (name,))
            return {"id": cur.lastrowid, "name": name}
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot add tag “{name}” – {exc}") from exc

    def replace_font_tags(self, font_id: int, tag_ids) -> None:
        """Make *tag_ids* the complete tag set of *font_id*, all or nothing."""
        want = set(tag_ids)
        try:
            with self.db:
                cur = {
                    r["tag_id"]
                    for r in self.db.execute(
                        "SELECT tag_id FROM font_tags WHERE font_id=?", (font_id,)
                    )
                }
                self.db.executemany(
                    "INSERT INTO font_tags (font_id, tag_id) VALUES (?,?)",
                    [(font_id, t) for t in sorted(want - cur)],
                )
                self.db.executemany(
                    "DELETE FROM font_tags WHERE font_id=? AND tag_id=?",
                    [(font_id, t) for t in sorted(cur - want)],
                )
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot update tags of font {font_id} – {exc}") from exc

    def add_font(self, name: str, url: str) -> int:
        try:
            with self.db:
                cur = self.db.execute(
                    "INSERT INTO fonts (name, url) VALUES (?,?)", (name, url)
                )
            return cur.lastrowid
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot add font “{name}” – {exc}") from exc


class SupabaseStore:
    """
    The same tables on a hosted Postgres, through its PostgREST endpoint.

    The vote functions are the database's ``cast_vote`` / ``remove_vote``;
    they must adjust the vote row and the counter exactly once per call.
    """

    def __init__(self, url: str, key: str, *, timeout=SUPABASE_TIMEOUT, http=None):
        self.base = url.rstrip("/") + "/rest/v1"
        self.timeout = timeout
        self.http = http or requests.Session()
        self.http.headers.update(
            {
                "apikey": key,
                "Authorization": f"Bearer {key}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )

    def _request(self, method: str, path: str, *, params=None, payload=None, prefer=None):
        headers = {"Prefer": prefer} if prefer else None
        try:
            resp = self.http.request(
                method,
                f"{self.base}/{path}",
                params=params,
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise StoreError(f"{method} {path} failed – {exc}") from exc
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise StoreError(f"{method} {path} returned invalid JSON") from exc

    def fonts(self, order: str = "id") -> list[dict]:
        if order not in FONT_ORDERS:
            raise KeyError(order)
        pg_order = {"id": "id.asc", "name": "name.asc,id.asc", "upvotes": "upvotes.desc,id.asc"}
        return self._request(
            "GET",
            "fonts",
            params={"select": "id,url,name,upvotes,downvotes", "order": pg_order[order]},
        ) or []

    def tags(self) -> list[dict]:
        return self._request(
            "GET", "tags", params={"select": "id,name", "order": "name.asc"}
        ) or []

    def font_tags(self) -> list[tuple[int, int]]:
        rows = self._request("GET", "font_tags", params={"select": "font_id,tag_id"})
        return [(r["font_id"], r["tag_id"]) for r in rows or []]

    def user_votes(self, user_id: str) -> dict[int, str]:
        rows = self._request(
            "GET",
            "votes",
            params={"select": "font_id,vote_type", "user_id": f"eq.{user_id}"},
        )
        return {r["font_id"]: r["vote_type"] for r in rows or []}

    def cast_vote(self, font_id: int, user_id: str, vote_type: str) -> None:
        _vote_column(vote_type)
        self._request(
            "POST",
            "rpc/cast_vote",
            payload={"p_font_id": font_id, "p_user_id": user_id, "p_vote_type": vote_type},
        )

    def remove_vote(self, font_id: int, user_id: str, vote_type: str) -> None:
        _vote_column(vote_type)
        self._request(
            "POST",
            "rpc/remove_vote",
            payload={"p_font_id": font_id, "p_user_id": user_id, "p_vote_type": vote_type},
        )

    def add_tag(self, name: str) -> dict:
        rows = self._request(
            "POST", "tags", payload=[{"name": name}], prefer="return=representation"
        )
        if not rows:
            raise StoreError(f"Tag “{name}” was not returned by the store")
        return rows[0]

    def replace_font_tags(self, font_id: int, tag_ids) -> None:
        """
        Diff against the stored pairs: insert what is missing *before*
        deleting what was dropped, so a failure half-way never leaves the
        font with fewer tags than either the old or the new selection.
        """
        want = set(tag_ids)
        rows = self._request(
            "GET", "font_tags", params={"select": "tag_id", "font_id": f"eq.{font_id}"}
        )
        cur = {r["tag_id"] for r in rows or []}
        add = sorted(want - cur)
        drop = sorted(cur - want)
        if add:
            self._request(
                "POST",
                "font_tags",
                payload=[{"font_id": font_id, "tag_id": t} for t in add],
                prefer="return=minimal",
            )
        if drop:
            self._request(
                "DELETE",
                "font_tags",
                params={
                    "font_id": f"eq.{font_id}",
                    "tag_id": "in.(" + ",".join(str(t) for t in drop) + ")",
                },
            )

    def add_font(self, name: str, url: str) -> int:
        rows = self._request(
            "POST",
            "fonts",
            payload=[{"name": name, "url": url}],
            prefer="return=representation",
        )
        if not rows:
            raise StoreError(f"Font “{name}” was not returned by the store")
        return rows[0]["id"]


def supabase_is_configured() -> bool:
    return all(app.config.get(k) for k in SUPABASE_KEYS)


def get_store():
    """One store per app context: hosted when configured, sqlite otherwise."""
    if "store" not in g:
        if supabase_is_configured():
            g.store = SupabaseStore(app.config["SUPABASE_URL"], app.config["SUPABASE_KEY"])
        else:
            g.store = SqliteStore(get_db())
    return g.store


###############################################################################
# Voter identity
###############################################################################
def sign_voter(user_id: str) -> str:
    return voter_signer.sign(user_id).decode()


def _unsign_voter(raw: str | None) -> str | None:
    """Return the voter id in *raw*, or None for a missing/forged cookie."""
    if not raw:
        return None
    try:
        value = voter_signer.unsign(raw).decode()
    except BadSignature:
        return None
    try:
        return str(uuid.UUID(value))
    except ValueError:
        return None


@app.before_request
def load_voter():
    """Create-once-if-absent; read on every request; never rotated."""
    existing = _unsign_voter(request.cookies.get(VOTER_COOKIE))
    g.voter_minted = existing is None
    g.voter_id = existing or str(uuid.uuid4())


def voter_id() -> str:
    return g.voter_id


@app.after_request
def persist_voter(resp):
    if getattr(g, "voter_minted", False):
        resp.set_cookie(
            VOTER_COOKIE,
            sign_voter(g.voter_id),
            max_age=VOTER_COOKIE_MAX_AGE,
            httponly=True,
            samesite="Lax",
            secure=app.config.get("SESSION_COOKIE_SECURE", False),
        )
    return resp


###############################################################################
# Catalog
###############################################################################
def net_score(font) -> int:
    return font["upvotes"] - font["downvotes"]


def google_fonts_url(name: str) -> str:
    """Stylesheet URL for a Google Fonts family."""
    return f"{GOOGLE_FONTS_CSS}?family={quote_plus(name.strip())}&display=swap"


def load_catalog(store, user_id: str | None = None, *, order: str = "id") -> dict:
    """
    Fetch fonts, tags, font↔tag pairs and (if known) the voter's own votes,
    and merge them into one view-model:

        {"fonts": [...], "tags": [...], "font_tags": {font_id: [tag_id]},
         "votes": {font_id: "up" | "down"}}

    Every font dict carries ``tags`` (names, in tag order) and a transient
    ``loaded`` flag that only the browser ever flips.
    """
    fonts = [dict(f, loaded=False, tags=[]) for f in store.fonts(order)]
    tags = store.tags()
    pairs = store.font_tags()
    votes = store.user_votes(user_id) if user_id else {}

    tag_rank = {t["id"]: i for i, t in enumerate(tags)}
    tag_name = {t["id"]: t["name"] for t in tags}
    by_font: DefaultDict[int, list[int]] = defaultdict(list)
    for font_id, tag_id in pairs:
        if tag_id in tag_name:
            by_font[font_id].append(tag_id)

    for f in fonts:
        ids = sorted(by_font.get(f["id"], []), key=tag_rank.__getitem__)
        f["tags"] = [tag_name[t] for t in ids]

    return {
        "fonts": fonts,
        "tags": tags,
        "font_tags": {k: sorted(v) for k, v in by_font.items()},
        "votes": votes,
    }


def rank_fonts(fonts) -> list:
    """Highest net score first; ties keep the store's order."""
    return sorted(fonts, key=net_score, reverse=True)


def split_sections(ranked, n: int) -> tuple[list, list]:
    return list(ranked[:n]), list(ranked[n:])


def filter_by_tags(fonts, selected) -> list:
    """Keep fonts carrying *every* selected tag (case-insensitive)."""
    wanted = {s.casefold() for s in selected if s}
    if not wanted:
        return list(fonts)
    return [f for f in fonts if wanted <= {t.casefold() for t in f["tags"]}]


def font_family(font) -> str:
    """CSS family for the first paint; the browser swaps in the real one."""
    return css_family(font["name"]) if font.get("loaded") else FALLBACK_FAMILY


def css_family(name: str) -> str:
    """Quote *name* as a CSS string; HTML escaping happens in the template."""
    return '"' + name.replace("\\", "\\\\").replace('"', '\\"') + '"'


def font_stylesheets(fonts) -> Markup:
    """One <link> per font; its onload swaps the fallback family out."""
    tag = Markup(
        '<link rel="stylesheet" href="{}" data-font-id="{}" onload="fontLoaded(this)">'
    )
    return Markup("\n").join(tag.format(f["url"], f["id"]) for f in fonts)


###############################################################################
# Vote ledger
###############################################################################
class ActionState(Enum):
    IDLE = "idle"
    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled-back"


class VoteLedger:
    """
    The current voter's votes plus the font counters they touch.

    Local state changes only after the store confirms; a failed store call
    leaves fonts and ledger as they were and re-raises the StoreError.
    """

    def __init__(
        self,
        store,
        user_id: str,
        fonts,
        votes: dict | None = None,
        *,
        quota: int = VOTE_QUOTA,
        policy: str = "upvotes",
        enabled: bool = True,
    ):
        if policy not in QUOTA_POLICIES:
            raise ValueError(f"Unknown quota policy “{policy}”")
        self.store = store
        self.user_id = user_id
        self.fonts = {f["id"]: f for f in fonts}
        self.votes = dict(store.user_votes(user_id) if votes is None else votes)
        self.quota = quota
        self.policy = policy
        self.enabled = enabled
        self.last_action = ActionState.IDLE

    def counted(self) -> int:
        if self.policy == "total":
            return len(self.votes)
        return sum(1 for d in self.votes.values() if d == "up")

    def remaining(self) -> int:
        return max(0, self.quota - self.counted())

    def direction(self, font_id: int) -> str | None:
        return self.votes.get(font_id)

    def _font(self, font_id: int):
        font = self.fonts.get(font_id)
        if font is None:
            raise VoteRejected("unknown", "That font does not exist.")
        return font

    def cast_vote(self, font_id: int, direction: str):
        _vote_column(direction)
        if not self.enabled:
            raise VoteRejected("closed", "Voting is closed right now.")
        font = self._font(font_id)
        if font_id in self.votes:
            raise VoteRejected(
                "duplicate", f"Already voted: you've already voted for {font['name']}"
            )
        if self.remaining() <= 0 and (direction == "up" or self.policy == "total"):
            raise VoteRejected(
                "quota",
                f"You've used all {self.quota} votes. Undo one to vote again.",
            )

        self.last_action = ActionState.PENDING
        try:
            self.store.cast_vote(font_id, self.user_id, direction)
        except StoreError:
            self.last_action = ActionState.ROLLED_BACK
            raise
        font[_vote_column(direction)] += 1
        self.votes[font_id] = direction
        self.last_action = ActionState.COMMITTED
        return font

    def undo_vote(self, font_id: int) -> bool:
        """Return False (and touch nothing) when there is no vote to undo."""
        if not self.enabled:
            raise VoteRejected("closed", "Voting is closed right now.")
        direction = self.votes.get(font_id)
        if direction is None:
            return False

        self.last_action = ActionState.PENDING
        try:
            self.store.remove_vote(font_id, self.user_id, direction)
        except StoreError:
            self.last_action = ActionState.ROLLED_BACK
            raise
        col = _vote_column(direction)
        font = self.fonts.get(font_id)
        if font is not None:
            font[col] = max(0, font[col] - 1)
        del self.votes[font_id]
        self.last_action = ActionState.COMMITTED
        return True


def build_ledger(store, user_id: str, fonts=None, votes=None) -> VoteLedger:
    return VoteLedger(
        store,
        user_id,
        store.fonts() if fonts is None else fonts,
        votes,
        quota=app.config["VOTE_QUOTA"],
        policy=app.config["QUOTA_POLICY"],
        enabled=voting_enabled(),
    )


###############################################################################
# Event theming
###############################################################################
GRADIENTS = {
    "posh-theme": {
        "name": "Posh Theme",
        "type": "static",
        "css": "linear-gradient(to top,#3b0764 0%,#1e1b4b 26%,#020617 83%)",
    },
    "none": {"name": "None", "type": "static", "css": "#222222"},
    "blue-green": {
        "name": "Blue to Green",
        "type": "static",
        "css": "linear-gradient(to top,#3b82f6,#22c55e)",
    },
    "radial": {
        "name": "Radial Gradient",
        "type": "static",
        "css": "radial-gradient(125% 125% at 50% 10%,#000 40%,#63e 100%)",
    },
    "particle": {"name": "Particle", "type": "dynamic", "css": "#0b0b12"},
    "glass": {"name": "Glass", "type": "dynamic", "css": "#101820"},
    "pixels": {"name": "Pixels", "type": "dynamic", "css": "#050505"},
    "neon-isometric-maze": {
        "name": "Neon Isometric Maze",
        "type": "dynamic",
        "css": "#07001a",
    },
    "waves": {"name": "Waves", "type": "dynamic", "css": "#020b1a"},
}
GRADIENT_DFLT = "posh-theme"
ASPECT_RATIOS = {"0.5625": "9:16", "0.8": "4:5", "1": "1:1"}
ASPECT_RATIO_DFLT = "0.8"

EVENT_DATA = {
    "organizer": "Amoura",
    "title": "Nick Morgan @ Unveiled",
    "description": (
        "Amoura is taking over Unveiled to bring you Nick Morgan, supported "
        "by NYC's beloved Alta Sounds and Fireware."
    ),
    "location": "Unveiled",
}


def _parse_ratio(raw: str | None) -> str:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return ASPECT_RATIO_DFLT
    for key in ASPECT_RATIOS:
        if abs(float(key) - value) < 1e-9:
            return key
    return ASPECT_RATIO_DFLT


@dataclass(frozen=True)
class ThemeSelection:
    """The four flyer settings; the page URL is their only storage."""

    font: str = ""
    gradient: str = GRADIENT_DFLT
    aspect_ratio: str = ASPECT_RATIO_DFLT
    add_padding: bool = False

    @classmethod
    def from_args(cls, args, default_font: str = "") -> "ThemeSelection":
        font = (args.get("font") or "").strip()
        if not FONT_NAME_RE.match(font):
            font = default_font if FONT_NAME_RE.match(default_font) else ""
        gradient = args.get("gradient") or GRADIENT_DFLT
        if gradient not in GRADIENTS:
            gradient = GRADIENT_DFLT
        return cls(
            font=font,
            gradient=gradient,
            aspect_ratio=_parse_ratio(args.get("aspectRatio")),
            add_padding=(args.get("addPadding") or "").lower() == "true",
        )

    def to_params(self) -> dict[str, str]:
        return {
            "font": self.font,
            "gradient": self.gradient,
            "aspectRatio": self.aspect_ratio,
            "addPadding": "true" if self.add_padding else "false",
        }

    def to_query(self) -> str:
        return urlencode(self.to_params())

    @property
    def max_width(self) -> str:
        """Flyer width inside its frame; padding shrinks it to the ratio."""
        if not self.add_padding:
            return "100%"
        return f"{float(self.aspect_ratio) * 100:g}%"


def event_date() -> str:
    d = utc_now()
    return f"{d:%B} {d.day}, {d.year}"


###############################################################################
# Catalog migration
###############################################################################
MIGRATE_TABLES = ("settings", "fonts", "tags", "font_tags", "votes")


def copy_catalog(src_path, db) -> dict[str, int]:
    """
    Copy the catalog tables from a backup sqlite file into *db*.

    Parents go before children; only columns present on both sides are
    copied and tables absent in the backup are skipped.  Returns the row
    count copied per table.
    """
    src = sqlite3.connect(f"file:{src_path}?mode=ro", uri=True)
    src.row_factory = sqlite3.Row
    copied: dict[str, int] = {}
    db.execute("PRAGMA foreign_keys=OFF;")  # orphans in old backups
    try:
        with db:
            for table in MIGRATE_TABLES:
                src_cols = {c["name"] for c in src.execute(f"PRAGMA table_info({table})")}
                if not src_cols:
                    continue
                common = [
                    c["name"]
                    for c in db.execute(f"PRAGMA table_info({table})")
                    if c["name"] in src_cols
                ]
                if not common:
                    continue
                col_list = ",".join(common)
                qms = ",".join("?" * len(common))
                rows = src.execute(f"SELECT {col_list} FROM {table}").fetchall()
                verb = "INSERT OR REPLACE" if table == "settings" else "INSERT OR IGNORE"
                db.executemany(
                    f"{verb} INTO {table} ({col_list}) VALUES ({qms})",
                    [tuple(r[c] for c in common) for r in rows],
                )
                copied[table] = len(rows)
    finally:
        db.execute("PRAGMA foreign_keys=ON;")
        src.close()
    return copied


###############################################################################
# CLI
###############################################################################
@app.cli.command("init")
def cli_init():
    """Create the database schema (safe to run twice)."""
    init_db()
    click.secho("\n✅  Database ready.", fg="green")
    click.echo(f"   {app.config['DATABASE']}\n")


@app.cli.command("add-font")
@click.argument("name")
@click.option("--url", default=None, help="Stylesheet URL (defaults to Google Fonts)")
def cli_add_font(name: str, url: str | None):
    """Add one font family to the catalog."""
    name = name.strip()
    try:
        font_id = get_store().add_font(name, url or google_fonts_url(name))
    except StoreError as exc:
        raise click.ClickException(str(exc)) from None
    click.secho(f"✅  {name} added (id {font_id}).", fg="green")


@app.cli.command("import-fonts")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def cli_import_fonts(file: Path):
    """
    Bulk-add fonts from a JSON list of family names or {name, url} objects.
    Names already in the catalog are skipped.
    """
    try:
        data = json.loads(file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise click.ClickException(f"Cannot read {file} – {exc}") from None
    if not isinstance(data, list):
        raise click.ClickException("Expected a JSON list")

    store = get_store()
    known = {f["name"].casefold() for f in store.fonts()}
    added = skipped = 0
    for entry in data:
        if isinstance(entry, str):
            name, url = entry.strip(), None
        elif isinstance(entry, dict) and entry.get("name"):
            name, url = str(entry["name"]).strip(), entry.get("url")
        else:
            click.secho(f"  • skipped malformed entry {entry!r}", fg="yellow")
            skipped += 1
            continue
        if not name or name.casefold() in known:
            skipped += 1
            continue
        try:
            store.add_font(name, url or google_fonts_url(name))
        except StoreError as exc:
            raise click.ClickException(str(exc)) from None
        known.add(name.casefold())
        added += 1
    click.secho(f"\n✅  {added} added, {skipped} skipped.", fg="green")


@app.cli.command("migrate")
@click.argument("backup", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def cli_migrate(backup: Path):
    """Copy fonts, tags and votes from a backup database into this one."""
    init_db()
    for table, n in copy_catalog(backup, get_db()).items():
        click.echo(f"  • {table:10}  ({n} rows)")
    click.secho("\n✔  Migration finished.", fg="green")


###############################################################################
# Request helpers
###############################################################################
def _csrf_token() -> str:
    """One token per session, created on first use."""
    if "csrf" not in session:
        session["csrf"] = secrets.token_hex(16)
    return session["csrf"]


def admin_required() -> None:
    if not session.get("admin"):
        abort(403)


def client_ip() -> str:
    """Return best-effort client IP after ProxyFix."""
    return (
        request.access_route[0] if request.access_route else request.remote_addr
    ) or "unknown"


def rate_limit(max_requests: int, window: int = 60):
    hits: DefaultDict[str, deque] = defaultdict(deque)

    def forget_idle(now: float) -> None:
        for ip in [ip for ip, dq in hits.items() if not dq or now - dq[-1] > window]:
            del hits[ip]

    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            if not app.config.get("RATE_LIMIT_ENABLED", True):
                return view(*args, **kwargs)
            now = time()
            if len(hits) > RATE_LIMIT_MAX_CLIENTS:
                forget_idle(now)
            dq = hits[client_ip()]
            while dq and now - dq[0] > window:
                dq.popleft()

            if len(dq) >= max_requests:
                retry_after = int(window - (now - dq[0]))
                return Response(
                    "Too many requests – try again later.",
                    status=429,
                    headers={"Retry-After": str(retry_after)},
                )

            dq.append(now)
            return view(*args, **kwargs)

        wrapped.hits = hits
        return wrapped

    return decorator


def selected_tags(source=None) -> list[str]:
    """Tag filter from repeated ``tag`` parameters, de-duplicated, in order."""
    source = request.args if source is None else source
    seen: dict[str, str] = {}
    for raw in source.getlist("tag"):
        name = raw.strip()
        if name and name.casefold() not in seen:
            seen[name.casefold()] = name
    return list(seen.values())


def tag_toggle_href(name: str, selected: list[str]) -> str:
    """URL the index would have after clicking the *name* pill."""
    folded = {s.casefold() for s in selected}
    if name.casefold() in folded:
        new_sel = [s for s in selected if s.casefold() != name.casefold()]
    else:
        new_sel = selected + [name]
    return url_for("index", tag=new_sel) if new_sel else url_for("index")


def _back_to_index(font_id: int | None = None):
    tags = selected_tags(request.form)
    anchor = f"font-{font_id}" if font_id is not None else None
    return redirect(url_for("index", tag=tags, _anchor=anchor))


SAFE_METHODS = {"GET", "HEAD", "OPTIONS", "TRACE"}


@app.before_request
def csrf_protect():
    if request.method in SAFE_METHODS:
        return

    token = session.get("csrf", "")
    sent = request.form.get("csrf") or request.headers.get("X-CSRFToken", "")
    if not token or not secrets.compare_digest(token.encode(), sent.encode()):
        abort(403)


@app.after_request
def sec_headers(resp):
    resp.headers.update(
        {
            "X-Frame-Options": "DENY",
            "X-Content-Type-Options": "nosniff",
            "Referrer-Policy": "strict-origin-when-cross-origin",
        }
    )
    return resp


app.jinja_env.globals.update(
    csrf_token=_csrf_token,
    site_name=site_name,
    net_score=net_score,
    font_family=font_family,
    font_stylesheets=font_stylesheets,
    css_family=css_family,
    gradients=GRADIENTS,
    aspect_ratios=ASPECT_RATIOS,
    preview_text=PREVIEW_TEXT,
    version=__version__,
)

###############################################################################
# Templates
###############################################################################


def wrap(body: str) -> str:
    """Glue prolog + page-specific body + epilog."""
    return TEMPL_PROLOG + body + TEMPL_EPILOG


TEMPL_PROLOG = """
<!doctype html>
<html lang="en">
<title>{{ title or site_name() }}</title>
<meta name="viewport" content="width=device-width, initial-scale=1">
<meta charset="utf-8">
<meta name="description" content="Vote for the fonts you want to see on our flyers">
<link rel="icon" type="image/svg+xml" href="/favicon.svg">
<style>
html{font-size:62.5%;font-family:-apple-system,BlinkMacSystemFont,"Segoe UI",Roboto,"Helvetica Neue",Arial,sans-serif}
body{font-size:1.7rem;line-height:1.5;margin:0;color:#d6d6d6;background:#1b1b1f}
a{color:#fff;text-decoration:underline;text-decoration-color:transparent;text-underline-offset:.18em}
a:hover{text-decoration-color:currentColor}
.container{max-width:110rem;margin:0 auto;padding:6rem 1.5rem 3rem}
header.site{position:fixed;inset:0 0 auto 0;z-index:50;height:4.8rem;display:flex;align-items:center;justify-content:space-between;padding:0 1.5rem;backdrop-filter:blur(8px);background:rgba(20,20,24,.6)}
header.site .brand{font-weight:700;letter-spacing:.04em}
header.site nav a{margin-left:1.25rem}
nav a[aria-current=page]{text-decoration-color:currentColor;text-decoration-thickness:2px}
h1,h2,h3{line-height:1.15;color:#fff}
.grid{display:grid;gap:1.5rem;grid-template-columns:repeat(auto-fill,minmax(28rem,1fr))}
.card{background:#26262c;border:1px solid #34343c;border-radius:.8rem;overflow:hidden;display:flex;flex-direction:column}
.card .specimen{font-size:3.2rem;text-align:center;padding:2.4rem 1rem 1rem;white-space:nowrap;overflow:hidden;text-overflow:ellipsis;color:#fff}
.card .score{font-size:1.3rem;color:#9a9aa3;text-align:center;margin-bottom:1rem}
.card footer{display:flex;gap:.75rem;padding:1rem;border-top:1px solid #34343c;align-items:center;justify-content:center}
.card footer form{margin:0;flex:1}
button,.button{display:inline-block;padding:.6rem 1.2rem;font:inherit;font-size:1.4rem;border-radius:.5rem;border:1px solid #55555f;background:#2f2f36;color:#eee;cursor:pointer;text-decoration:none}
button:hover,.button:hover{background:#3a3a44}
button[disabled]{opacity:.5;cursor:default}
.card footer button{width:100%}
.ghost{background:transparent;border-color:transparent}
.pill{display:inline-block;padding:.2rem .9rem;margin:.2rem;border-radius:1rem;border:1px solid #55555f;font-size:1.3rem;text-decoration:none}
.pill.active{background:#eee;color:#111;border-color:#eee}
.badge{display:inline-block;padding:.1rem .7rem;margin:.1rem;border-radius:1rem;background:#3a3a44;font-size:1.2rem}
.muted{color:#9a9aa3}
.notice{padding:1rem 1.4rem;border:1px solid #55555f;border-radius:.6rem;margin-bottom:1.5rem}
table{width:100%;border-collapse:collapse}
td,th{padding:.7rem;border-bottom:1px solid #34343c;text-align:left;vertical-align:top}
input,select{font:inherit;font-size:1.5rem;color:#eee;background:#2f2f36;border:1px solid #55555f;border-radius:.5rem;padding:.5rem .8rem}
.up{color:#4ade80}.down{color:#f87171}
</style>
<script>
function fontLoaded(link){
  link.dataset.loaded = "true";
  document.querySelectorAll('[data-family][data-font-id="'+link.dataset.fontId+'"]').forEach(function(el){
    el.dataset.loaded = "true";
    el.style.fontFamily = JSON.stringify(el.dataset.family)+', system-ui';
  });
}
// a cached sheet can fire load before its cards are parsed
document.addEventListener("DOMContentLoaded", function(){
  document.querySelectorAll('link[data-font-id]').forEach(function(link){
    if (link.sheet || link.dataset.loaded === "true") fontLoaded(link);
  });
});
</script>
<body{% if body_style %} style="{{ body_style }}"{% endif %}>
<header class="site">
    <span class="brand"><a href="{{ url_for('index') }}">{{ site_name() }}</a></span>
    <nav aria-label="Primary">
        <a href="{{ url_for('index') }}"
           {% if request.endpoint=='index' %}aria-current="page"{% endif %}>Fonts</a>
        <a href="{{ url_for('event') }}"
           {% if request.endpoint=='event' %}aria-current="page"{% endif %}>Event</a>
        <a href="{{ url_for('admin') }}"
           {% if request.endpoint and request.endpoint.startswith('admin') %}aria-current="page"{% endif %}>Admin</a>
    </nav>
</header>
{% with msgs = get_flashed_messages() %}
{% if msgs %}
    <div role="status" aria-live="polite" aria-atomic="true" class="toast" style="position:fixed;top:5.6rem;right:1rem;background:#323232;color:#fff;padding:.75rem 1rem;border-radius:.4rem;font-size:1.4rem;line-height:1.3;box-shadow:0 2px 6px rgba(0,0,0,.4);max-width:32rem;z-index:999;">
    {% for m in msgs %}{{ m }}{% if not loop.last %}<br>{% endif %}{% endfor %}
    </div>
{% endif %}
{% endwith %}
<main id="main-content" role="main">
"""

TEMPL_EPILOG = """
</main>
<footer style="max-width:110rem;margin:0 auto;padding:1.5rem;font-size:1.2rem;color:#777;">
    fontvote v{{ version }}
</footer>
</body>
</html>
"""

TEMPL_FONT_LINKS = "{{ font_stylesheets(fonts) }}\n"

TEMPL_INDEX = wrap(
    TEMPL_FONT_LINKS
    + """
{% macro font_card(f) -%}
<article class="card" id="font-{{ f.id }}">
    <h2 class="specimen" data-font-id="{{ f.id }}" data-family="{{ f.name }}"
        data-loaded="{{ 'true' if f.loaded else 'false' }}"
        style="font-family:{{ font_family(f) }}">{{ f.name }}</h2>
    <div class="score">Net votes: {{ net_score(f) }}</div>
    {% if f.tags %}
    <div style="text-align:center;margin-bottom:1rem;">
        {% for t in f.tags %}<span class="badge">{{ t }}</span>{% endfor %}
    </div>
    {% endif %}
    <footer>
    {% if votes.get(f.id) %}
        <span class="muted">✓ You voted {{ votes[f.id] }}</span>
        <form method="post" action="{{ url_for('undo_vote', font_id=f.id) }}" style="flex:0">
            <input type="hidden" name="csrf" value="{{ csrf_token() }}">
            {% for t in selected %}<input type="hidden" name="tag" value="{{ t }}">{% endfor %}
            <button class="ghost" {% if not open %}disabled{% endif %}>Undo vote</button>
        </form>
    {% else %}
        {% for d in ('up', 'down') %}
        <form method="post" action="{{ url_for('vote', font_id=f.id) }}">
            <input type="hidden" name="csrf" value="{{ csrf_token() }}">
            <input type="hidden" name="direction" value="{{ d }}">
            {% for t in selected %}<input type="hidden" name="tag" value="{{ t }}">{% endfor %}
            <button aria-label="Vote {{ d }} for {{ f.name }}" {% if not open %}disabled{% endif %}>
                {{ '👍' if d == 'up' else '👎' }} {{ f.upvotes if d == 'up' else f.downvotes }}
            </button>
        </form>
        {% endfor %}
    {% endif %}
        <a class="button ghost" href="{{ url_for('font_preview', font_id=f.id) }}">Preview</a>
    </footer>
</article>
{%- endmacro %}
<div class="container">
    <h1 style="text-align:center;">Font Voting</h1>
    {% if not open %}
    <p class="notice">Voting is closed right now. You can still browse the fonts.</p>
    {% endif %}
    <p class="muted" style="text-align:center;" id="remaining">
        {{ remaining }} of {{ quota }} votes left
    </p>

    {% if tags %}
    <div aria-label="Filter by tag" style="margin-bottom:2rem;text-align:center;">
        {% for t in tags %}
        <a class="pill{% if t.active %} active{% endif %}" href="{{ t.href }}">{{ t.name }}</a>
        {% endfor %}
        {% if selected %}<a class="pill" href="{{ url_for('index') }}">✕ clear</a>{% endif %}
    </div>
    {% endif %}

    {% if not top and not rest %}
    <p class="muted" style="text-align:center;">No fonts match.</p>
    {% endif %}

    {% if top %}
    <h2>Top {{ quota }}</h2>
    <div class="grid">{% for f in top %}{{ font_card(f) }}{% endfor %}</div>
    {% endif %}

    {% if rest %}
    <h2 style="margin-top:3rem;">More fonts</h2>
    <div class="grid">{% for f in rest %}{{ font_card(f) }}{% endfor %}</div>
    {% endif %}
</div>
"""
)

TEMPL_PREVIEW = wrap(
    TEMPL_FONT_LINKS
    + """
<div class="container">
    <h1>Font Preview: {{ font.name }}</h1>
    <div style="display:grid;gap:2rem;grid-template-columns:repeat(auto-fit,minmax(30rem,1fr));">
        <div style="aspect-ratio:3/4;border-radius:.8rem;background:linear-gradient(to bottom right,#6366f1,#7e22ce);display:flex;flex-direction:column;align-items:center;justify-content:center;text-align:center;padding:2.4rem;color:#fff;font-family:{{ css_family(font.name) }},system-ui;">
            <p style="font-size:2rem;margin:0 0 .8rem;">PRESENTING</p>
            <h2 style="font-size:3.6rem;margin:0 0 1.6rem;font-family:inherit;">ANNUAL DESIGN CONFERENCE</h2>
            <p style="font-size:1.8rem;margin:0 0 2.4rem;">FEATURING THE LATEST TRENDS IN TYPOGRAPHY</p>
            <p style="font-size:2rem;margin:0;">JUNE 15-18</p>
        </div>
        <div>
            <h3 class="muted" style="font-size:1.3rem;">Event Title</h3>
            <div style="font-size:3.6rem;font-weight:700;font-family:{{ css_family(font.name) }},system-ui;">Annual Design Conference</div>
            <h3 class="muted" style="font-size:1.3rem;">Heading</h3>
            <div style="font-size:2.4rem;font-weight:600;font-family:{{ css_family(font.name) }},system-ui;">Typography Workshop Sessions</div>
            <h3 class="muted" style="font-size:1.3rem;">Body Text</h3>
            <p>Join us for an immersive experience exploring the art and
               science of typography. From classic serifs to modern sans,
               we'll dive deep into what makes great typography work.</p>
            {% if font.tags %}
            <h3 class="muted" style="font-size:1.3rem;">Tags</h3>
            <div>{% for t in font.tags %}<span class="badge">{{ t }}</span>{% endfor %}</div>
            {% endif %}
        </div>
    </div>
    <p style="margin-top:2rem;"><a href="{{ back or url_for('index') }}">← Back</a></p>
</div>
"""
)

TEMPL_ADMIN_LOGIN = wrap("""
<div class="container" style="max-width:40rem;">
    <h1>Admin Authentication</h1>
    <form method="post">
        <input type="hidden" name="csrf" value="{{ csrf_token() }}">
        <label for="password" style="display:block;margin-bottom:.5rem;">Password</label>
        <input id="password" name="password" type="password" autocomplete="current-password"
               placeholder="Enter admin password" style="width:100%;box-sizing:border-box;">
        <button type="submit" style="margin-top:1rem;width:100%;">Login</button>
    </form>
</div>
""")

TEMPL_ADMIN = wrap(
    TEMPL_FONT_LINKS
    + """
<div class="container">
    <h1>Font Admin Dashboard</h1>
    <p style="text-align:right;"><a href="{{ url_for('admin_logout') }}">Log out</a></p>

    <h2>Voting</h2>
    <form method="post" action="{{ url_for('admin_voting') }}">
        <input type="hidden" name="csrf" value="{{ csrf_token() }}">
        <span>Voting is <strong id="voting-state">{{ 'open' if open else 'closed' }}</strong>.</span>
        <button>{{ 'Close voting' if open else 'Open voting' }}</button>
    </form>

    <h2>Manage Tags</h2>
    <form method="post" action="{{ url_for('admin_add_tag') }}" style="display:flex;gap:.75rem;margin-bottom:1rem;">
        <input type="hidden" name="csrf" value="{{ csrf_token() }}">
        <input name="name" placeholder="New tag name">
        <button>＋ Add Tag</button>
    </form>
    <div>{% for t in tags %}<span class="pill">{{ t.name }}</span>{% endfor %}</div>

    <h2>Manage Fonts</h2>
    <table>
        <thead><tr><th>Font</th><th>Preview</th><th>Votes</th><th>Tags</th><th>Actions</th></tr></thead>
        <tbody>
        {% for f in fonts %}
        <tr id="font-{{ f.id }}">
            <td>{{ f.name }}</td>
            <td><div data-font-id="{{ f.id }}" data-family="{{ f.name }}"
                     style="font-size:2rem;max-width:20rem;white-space:nowrap;overflow:hidden;text-overflow:ellipsis;font-family:{{ font_family(f) }}">{{ preview_text }}</div></td>
            <td>
                <span class="up">+{{ f.upvotes }}</span><br>
                <span class="down">-{{ f.downvotes }}</span><br>
                <strong>Net: {{ net_score(f) }}</strong>
            </td>
            {% if editing == f.id %}
            <td colspan="2">
                <form method="post" action="{{ url_for('admin_font_tags', font_id=f.id) }}">
                    <input type="hidden" name="csrf" value="{{ csrf_token() }}">
                    {% for t in tags %}
                    <label class="pill" style="cursor:pointer;">
                        <input type="checkbox" name="tag_id" value="{{ t.id }}"
                               {% if t.id in font_tags.get(f.id, []) %}checked{% endif %}>
                        {{ t.name }}
                    </label>
                    {% endfor %}
                    <div style="margin-top:.75rem;">
                        <button>💾 Save</button>
                        <a class="button ghost" href="{{ url_for('admin') }}">Cancel</a>
                    </div>
                </form>
            </td>
            {% else %}
            <td>
                {% if f.tags %}
                    {% for t in f.tags %}<span class="badge">{{ t }}</span>{% endfor %}
                {% else %}
                    <span class="muted">No tags</span>
                {% endif %}
            </td>
            <td>
                <a class="button" href="{{ url_for('admin', edit=f.id, _anchor='font-' ~ f.id) }}">Edit Tags</a>
                <a class="button ghost" href="{{ url_for('font_preview', font_id=f.id, back=url_for('admin')) }}" aria-label="Preview {{ f.name }}">👁</a>
            </td>
            {% endif %}
        </tr>
        {% endfor %}
        </tbody>
    </table>
</div>
"""
)

TEMPL_EVENT = wrap(
    TEMPL_FONT_LINKS
    + """
<style>
.event-wrap{position:relative;min-height:100vh;overflow:hidden}
.overlay{position:absolute;inset:0;pointer-events:none;z-index:0}
.overlay-particle{background-image:radial-gradient(rgba(255,255,255,.35) 1px,transparent 1px);background-size:28px 28px;animation:drift 30s linear infinite}
.overlay-glass{background:linear-gradient(120deg,rgba(255,255,255,.08),rgba(255,255,255,0) 60%);backdrop-filter:blur(14px)}
.overlay-pixels{background-image:linear-gradient(rgba(255,255,255,.06) 1px,transparent 1px),linear-gradient(90deg,rgba(255,255,255,.06) 1px,transparent 1px);background-size:40px 40px;animation:flicker 2s steps(2) infinite}
.overlay-neon-isometric-maze{background:repeating-linear-gradient(30deg,rgba(236,72,153,.25) 0 2px,transparent 2px 40px),repeating-linear-gradient(150deg,rgba(34,211,238,.25) 0 2px,transparent 2px 40px);animation:drift 40s linear infinite}
.overlay-waves{background:radial-gradient(ellipse at 30% 40%,rgba(59,130,246,.35),transparent 60%),radial-gradient(ellipse at 70% 60%,rgba(239,68,68,.25),transparent 60%);filter:url(#fractalDistortion)}
@keyframes drift{from{background-position:0 0}to{background-position:560px 280px}}
@keyframes flicker{50%{opacity:.6}}
.event{position:relative;z-index:1;display:grid;gap:2.4rem;grid-template-columns:minmax(0,48rem) 1fr;align-items:start}
@media (max-width:760px){.event{grid-template-columns:1fr}}
.flyer-frame{margin:0 auto;width:100%}
.flyer{border-radius:.8rem;overflow:hidden;background:linear-gradient(160deg,#f97316,#db2777 55%,#312e81);display:flex;flex-direction:column;justify-content:flex-end;padding:2.4rem;box-sizing:border-box;color:#fff}
.flyer .big{font-size:4.2rem;line-height:1;margin:0;text-transform:uppercase}
.settings{position:fixed;right:1rem;bottom:1rem;z-index:10;background:rgba(20,20,24,.92);border:1px solid #34343c;border-radius:.8rem;padding:1.2rem}
.settings summary{cursor:pointer;font-weight:600}
.settings label{display:block;margin:.8rem 0 .3rem;font-size:1.3rem}
</style>
<div class="event-wrap">
    {% if gradient.type == 'dynamic' %}
    <div class="overlay overlay-{{ theme.gradient }}" aria-hidden="true"></div>
    {% if theme.gradient == 'waves' %}
    <svg width="0" height="0" aria-hidden="true"><filter id="fractalDistortion">
        <feTurbulence type="fractalNoise" baseFrequency="0.008" numOctaves="2" result="turb">
            <animate attributeName="baseFrequency" values="0.008;0.015;0.012;0.01;0.008" dur="12s" repeatCount="indefinite"/>
        </feTurbulence>
        <feDisplacementMap in="SourceGraphic" in2="turb" scale="30" xChannelSelector="R" yChannelSelector="G"/>
    </filter></svg>
    {% endif %}
    {% endif %}
    <div class="container">
        <div class="event">
            <div class="flyer-frame" style="max-width:{{ theme.max_width }}">
                <div class="flyer" data-ratio="{{ theme.aspect_ratio }}"
                     style="aspect-ratio:{{ theme.aspect_ratio }};">
                    <p style="margin:0 0 .6rem;">{{ event.organizer }} presents</p>
                    <p class="big" style="font-family:{{ css_family(theme.font) }},system-ui;">{{ event.title }}</p>
                </div>
            </div>
            <div>
                <p style="display:flex;align-items:center;gap:1rem;margin:0;">
                    <span style="display:inline-flex;width:3.2rem;height:3.2rem;border-radius:50%;background:#1e293b;align-items:center;justify-content:center;">👻</span>
                    <strong>{{ event.organizer }}</strong>
                </p>
                <h2 class="event-title" style="font-size:4.8rem;font-weight:500;font-family:{{ css_family(theme.font) }},system-ui;">{{ event.title }}</h2>
                <p style="font-weight:700;margin:0;">{{ event.location }}</p>
                <p style="font-weight:700;margin:0 0 1.5rem;">{{ date }}</p>
                <p>{{ event.description }}</p>
                <p><a class="button" style="background:#fde047;color:#000;border-radius:2rem;">BUY NOW</a></p>
            </div>
        </div>
    </div>
</div>
<details class="settings" open>
    <summary>⚙ Theme Settings</summary>
    <form method="get" action="{{ url_for('event') }}">
        <label for="font-select">Select Font</label>
        <select id="font-select" name="font" onchange="this.form.submit()">
            {% if not theme.font %}<option value="" selected>Select a font</option>{% endif %}
            {% if theme.font and theme.font not in font_names %}
            <option value="{{ theme.font }}" selected>{{ theme.font }}</option>
            {% endif %}
            {% for f in fonts %}
            <option value="{{ f.name }}" {% if f.name == theme.font %}selected{% endif %}>{{ f.name }}</option>
            {% endfor %}
        </select>
        <label for="gradient-select">Select Background Gradient</label>
        <select id="gradient-select" name="gradient" onchange="this.form.submit()">
            {% for gid, gopt in gradients.items() %}
            <option value="{{ gid }}" {% if gid == theme.gradient %}selected{% endif %}>{{ gopt.name }}</option>
            {% endfor %}
        </select>
        <label for="aspect-ratio-select">Select Aspect Ratio</label>
        <select id="aspect-ratio-select" name="aspectRatio" onchange="this.form.submit()">
            {% for value, label in aspect_ratios.items() %}
            <option value="{{ value }}" {% if value == theme.aspect_ratio %}selected{% endif %}>{{ label }}</option>
            {% endfor %}
        </select>
        <label for="add-padding-select">
            <input id="add-padding-select" type="checkbox" name="addPadding" value="true"
                   {% if theme.add_padding %}checked{% endif %} onchange="this.form.submit()">
            Add Padding to Image
        </label>
        <noscript><button>Apply</button></noscript>
    </form>
    <p style="font-size:1.2rem;margin:.8rem 0 0;"><a href="{{ share_url }}">🔗 Share this look</a></p>
</details>
"""
)

TEMPL_404 = wrap("""
<div class="container">
  <h2 style="margin-top:0">Page not found</h2>
  <p>The URL you asked for doesn’t exist.
     <a href="{{ url_for('index') }}">Back to the fonts</a>.</p>
</div>
""")

TEMPL_500 = wrap("""
<div class="container">
  <h2 style="margin-top:0">Internal Server Error</h2>
  <p>Our fault, not yours. Please try again in a minute.</p>
</div>
""")


###############################################################################
# Views – voting
###############################################################################
def _empty_catalog() -> dict:
    return {"fonts": [], "tags": [], "font_tags": {}, "votes": {}}


@app.route("/")
def index():
    store = get_store()
    uid = voter_id()
    try:
        catalog = load_catalog(store, uid)
    except StoreError:
        app.logger.exception("Error fetching fonts")
        flash("Failed to load fonts. Please refresh the page.")
        catalog = _empty_catalog()

    ledger = build_ledger(store, uid, catalog["fonts"], catalog["votes"])
    quota = app.config["VOTE_QUOTA"]
    selected = selected_tags()

    # the Top-N split follows the overall ranking; the filter narrows both parts
    top, rest = split_sections(rank_fonts(catalog["fonts"]), quota)
    pills = [
        {
            "name": t["name"],
            "active": t["name"].casefold() in {s.casefold() for s in selected},
            "href": tag_toggle_href(t["name"], selected),
        }
        for t in catalog["tags"]
    ]

    return render_template_string(
        TEMPL_INDEX,
        fonts=catalog["fonts"],
        top=filter_by_tags(top, selected),
        rest=filter_by_tags(rest, selected),
        tags=pills,
        selected=selected,
        votes=ledger.votes,
        remaining=ledger.remaining(),
        quota=quota,
        open=ledger.enabled,
    )


@app.route("/vote/<int:font_id>", methods=["POST"])
@rate_limit(max_requests=60, window=60)
def vote(font_id):
    direction = request.form.get("direction", "")
    if direction not in DIRECTIONS:
        abort(400)

    store = get_store()
    try:
        ledger = build_ledger(store, voter_id())
        font = ledger.cast_vote(font_id, direction)
    except VoteRejected as exc:
        flash(exc.message)
    except StoreError:
        app.logger.exception("Error voting for font %s", font_id)
        flash("Failed to record your vote. Please try again.")
    else:
        app.logger.info("vote %s font=%s voter=%s", direction, font_id, ledger.user_id)
        flash(f"Vote recorded: you voted {direction} for {font['name']}")
    return _back_to_index(font_id)


@app.route("/vote/<int:font_id>/undo", methods=["POST"])
@rate_limit(max_requests=60, window=60)
def undo_vote(font_id):
    store = get_store()
    try:
        ledger = build_ledger(store, voter_id())
        removed = ledger.undo_vote(font_id)
    except VoteRejected as exc:
        flash(exc.message)
    except StoreError:
        app.logger.exception("Error removing vote for font %s", font_id)
        flash("Failed to remove your vote. Please try again.")
    else:
        if removed:
            app.logger.info("undo font=%s voter=%s", font_id, ledger.user_id)
            name = ledger.fonts[font_id]["name"] if font_id in ledger.fonts else "that font"
            flash(f"Vote removed: your vote for {name} has been removed")
    return _back_to_index(font_id)


def _find_font(catalog: dict, font_id: int):
    for f in catalog["fonts"]:
        if f["id"] == font_id:
            return f
    abort(404)


@app.route("/fonts/<int:font_id>/preview")
def font_preview(font_id):
    try:
        catalog = load_catalog(get_store())
    except StoreError:
        app.logger.exception("Error fetching font %s", font_id)
        abort(503)
    font = _find_font(catalog, font_id)
    back = request.args.get("back", "")
    return render_template_string(
        TEMPL_PREVIEW,
        font=font,
        fonts=[font],
        back=back if back.startswith("/") and not back.startswith("//") else "",
        title=f"{font['name']} – {site_name()}",
    )


@app.route("/api/fonts")
def api_fonts():
    """Ranked catalog as JSON, honouring the ``tag`` filter."""
    store = get_store()
    uid = voter_id()
    try:
        catalog = load_catalog(store, uid)
    except StoreError:
        app.logger.exception("Error fetching fonts")
        return jsonify(error="Failed to load fonts"), 503

    ledger = build_ledger(store, uid, catalog["fonts"], catalog["votes"])
    ranked = filter_by_tags(rank_fonts(catalog["fonts"]), selected_tags())
    return jsonify(
        fonts=[
            {
                "id": f["id"],
                "name": f["name"],
                "url": f["url"],
                "upvotes": f["upvotes"],
                "downvotes": f["downvotes"],
                "net": net_score(f),
                "tags": f["tags"],
            }
            for f in ranked
        ],
        votes={str(k): v for k, v in ledger.votes.items()},
        remaining=ledger.remaining(),
        quota=ledger.quota,
        voting_open=ledger.enabled,
    )


###############################################################################
# Views – admin
###############################################################################
@app.route("/admin/login", methods=["GET", "POST"])
@rate_limit(max_requests=5, window=60)
def admin_login():
    if request.method == "POST":
        password = request.form.get("password", "")
        if password and check_password_hash(app.config["ADMIN_PASSWORD_HASH"], password):
            session["admin"] = True
            session["csrf"] = secrets.token_hex(16)
            app.logger.info("admin login from %s", client_ip())
            return redirect(url_for("admin"))
        flash("Authentication Failed: Incorrect password")

    return render_template_string(TEMPL_ADMIN_LOGIN, title=f"Admin – {site_name()}")


@app.route("/admin/logout")
def admin_logout():
    session.pop("admin", None)
    return redirect(url_for("index"))


@app.route("/admin")
def admin():
    if not session.get("admin"):
        return redirect(url_for("admin_login"))

    try:
        catalog = load_catalog(get_store(), order="name")
    except StoreError:
        app.logger.exception("Error fetching admin data")
        flash("Failed to load data. Please refresh the page.")
        catalog = _empty_catalog()

    editing = request.args.get("edit", type=int)
    return render_template_string(
        TEMPL_ADMIN,
        fonts=catalog["fonts"],
        tags=catalog["tags"],
        font_tags=catalog["font_tags"],
        editing=editing,
        open=voting_enabled(),
        title=f"Admin – {site_name()}",
    )


@app.route("/admin/tags", methods=["POST"])
def admin_add_tag():
    admin_required()
    name = request.form.get("name", "").strip()
    if not name:
        flash("Tag name cannot be empty")
        return redirect(url_for("admin"))
    try:
        get_store().add_tag(name)
    except StoreError:
        app.logger.exception("Error adding tag %r", name)
        flash("Failed to add tag")
    else:
        flash(f'Tag "{name}" added successfully')
    return redirect(url_for("admin"))


@app.route("/admin/fonts/<int:font_id>/tags", methods=["POST"])
def admin_font_tags(font_id):
    admin_required()
    store = get_store()
    try:
        fonts = {f["id"] for f in store.fonts()}
        known = {t["id"] for t in store.tags()}
    except StoreError:
        app.logger.exception("Error loading tags for font %s", font_id)
        flash("Failed to update font tags")
        return redirect(url_for("admin"))
    if font_id not in fonts:
        abort(404)

    wanted = set()
    for raw in request.form.getlist("tag_id"):
        try:
            tag_id = int(raw)
        except ValueError:
            continue
        if tag_id in known:
            wanted.add(tag_id)

    try:
        store.replace_font_tags(font_id, wanted)
    except StoreError:
        app.logger.exception("Error saving font tags for font %s", font_id)
        flash("Failed to update font tags")
        return redirect(url_for("admin", edit=font_id))
    flash("Font tags updated successfully")
    return redirect(url_for("admin", _anchor=f"font-{font_id}"))


@app.route("/admin/voting", methods=["POST"])
def admin_voting():
    admin_required()
    now_open = get_setting("voting_open", "1") != "1"
    set_setting("voting_open", "1" if now_open else "0")
    app.logger.info("voting %s by admin", "opened" if now_open else "closed")
    flash("Voting is open" if now_open else "Voting is closed")
    return redirect(url_for("admin"))


###############################################################################
# Views – event theming
###############################################################################
@app.route("/event")
def event():
    try:
        fonts = get_store().fonts(order="upvotes")
    except StoreError:
        app.logger.exception("Error fetching fonts")
        fonts = []

    theme = ThemeSelection.from_args(
        request.args, default_font=fonts[0]["name"] if fonts else ""
    )
    gradient = GRADIENTS[theme.gradient]
    return render_template_string(
        TEMPL_EVENT,
        fonts=fonts,
        font_names={f["name"] for f in fonts},
        theme=theme,
        gradient=gradient,
        event=EVENT_DATA,
        date=event_date(),
        share_url=url_for("event") + "?" + theme.to_query(),
        body_style=f"background:{gradient['css']};background-attachment:fixed;",
        title=f"{EVENT_DATA['title']} – {site_name()}",
    )


###############################################################################
# Misc
###############################################################################
@app.route("/favicon.svg")
def favicon():
    svg = (
        '<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 64 64">'
        '<rect width="64" height="64" rx="12" fill="#1b1b1f"/>'
        '<text x="32" y="44" font-size="34" text-anchor="middle" '
        'font-family="Georgia,serif" fill="#fff">Aa</text></svg>'
    )
    return Response(
        svg,
        200,
        {"Content-Type": "image/svg+xml", "Cache-Control": "public, max-age=86400"},
    )


@app.errorhandler(404)
def not_found(exc):
    """Site-wide “Not Found” page."""
    return render_template_string(TEMPL_404, title=site_name()), 404


@app.errorhandler(500)
def internal_error(exc):
    """Generic 500 page (the debugger still wins while debug is on)."""
    return render_template_string(TEMPL_500, title=site_name()), 500


###############################################################################
# main
###############################################################################
if __name__ == "__main__":
    import sys

    if len(sys.argv) > 1 and sys.argv[1] == "init":
        with app.app_context():
            init_db()
    else:
        app.run(debug=True)
