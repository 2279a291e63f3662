"""
tests/test_browse.py
"""
from __future__ import annotations

import uuid

from fontvote.app import app, get_db, tag_toggle_href


# ───────────────────────── helpers ──────────────────────────────────
def _tag(fid: int, tid: int) -> None:
    db = get_db()
    db.execute("INSERT INTO font_tags (font_id, tag_id) VALUES (?,?)", (fid, tid))
    db.commit()


# ───────────────────────── index ────────────────────────────────────
def test_index_has_both_sections(client, make_font):
    for _ in range(9):
        make_font()
    html = client.get("/").get_data(as_text=True)
    assert "Top 8" in html
    assert "More fonts" in html
    assert "8 of 8 votes left" in html


def test_fonts_start_on_fallback_family(client, make_font):
    fid = make_font()
    html = client.get("/").get_data(as_text=True)
    assert f'data-font-id="{fid}" onload="fontLoaded(this)"' in html
    assert 'data-loaded="false"' in html
    assert "font-family:system-ui" in html


def test_tag_filter_is_and(client, make_font, make_tag):
    serif, display = make_tag(), make_tag()
    names = [f"Both {uuid.uuid4().hex[:6]}", f"Serif Only {uuid.uuid4().hex[:6]}"]
    both, only = make_font(names[0]), make_font(names[1])
    _tag(both, serif)
    _tag(both, display)
    _tag(only, serif)
    s_name, d_name = (
        get_db().execute("SELECT name FROM tags WHERE id=?", (t,)).fetchone()[0]
        for t in (serif, display)
    )

    html = client.get(f"/?tag={s_name}&tag={d_name}").get_data(as_text=True)
    assert names[0] in html
    assert names[1] not in html

    html = client.get(f"/?tag={s_name.upper()}").get_data(as_text=True)
    assert names[0] in html and names[1] in html


def test_pill_links_toggle_selection():
    with app.test_request_context("/"):
        assert tag_toggle_href("serif", []) == "/?tag=serif"
        assert tag_toggle_href("mono", ["serif"]) == "/?tag=serif&tag=mono"
        assert tag_toggle_href("Serif", ["serif", "mono"]) == "/?tag=mono"
        assert tag_toggle_href("serif", ["serif"]) == "/"


# ───────────────────────── preview ──────────────────────────────────
def test_preview_page(client, make_font, make_tag):
    fid = make_font(name=f"Preview {uuid.uuid4().hex[:6]}")
    tid = make_tag()
    _tag(fid, tid)

    html = client.get(f"/fonts/{fid}/preview").get_data(as_text=True)

    assert "ANNUAL DESIGN CONFERENCE" in html
    assert "Typography Workshop Sessions" in html
    assert 'class="badge"' in html


def test_preview_back_link_only_local(client, make_font):
    fid = make_font()
    html = client.get(f"/fonts/{fid}/preview?back=//evil.example").get_data(as_text=True)
    assert 'href="//evil.example"' not in html


# ───────────────────────── JSON ─────────────────────────────────────
def test_api_fonts_ranked(client, make_font):
    low = make_font(down=50)
    high = make_font(up=5_000)
    data = client.get("/api/fonts").get_json()

    ids = [f["id"] for f in data["fonts"]]
    assert ids.index(high) < ids.index(low)
    entry = next(f for f in data["fonts"] if f["id"] == low)
    assert entry["net"] == -50
    assert data["quota"] == 8
    assert data["voting_open"] is True


def test_cached_stylesheets_are_swept_after_parse(client, make_font):
    """A sheet that loads before its card exists is caught on DOMContentLoaded."""
    make_font()
    html = client.get("/").get_data(as_text=True)
    assert 'addEventListener("DOMContentLoaded"' in html
    assert "querySelectorAll('link[data-font-id]')" in html
    assert "if (link.sheet" in html
