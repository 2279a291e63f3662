"""
tests/test_catalog.py
"""
from __future__ import annotations

from fontvote.app import (
    SqliteStore,
    filter_by_tags,
    font_family,
    get_db,
    google_fonts_url,
    load_catalog,
    net_score,
    rank_fonts,
    split_sections,
)


def _font(fid, name, up=0, down=0, tags=()):
    return {"id": fid, "name": name, "upvotes": up, "downvotes": down, "tags": list(tags)}


# ───────────────────────── ranking ──────────────────────────────────
def test_rank_by_net_score():
    a = _font(1, "A", up=5, down=1)   # net 4
    b = _font(2, "B", up=3, down=0)   # net 3
    assert [f["name"] for f in rank_fonts([b, a])] == ["A", "B"]


def test_rank_keeps_store_order_on_ties():
    fonts = [_font(1, "X", up=3, down=1), _font(2, "Y", up=2), _font(3, "Z", up=9, down=7)]
    assert [f["id"] for f in rank_fonts(fonts)] == [1, 2, 3]


def test_negative_net_scores_sort_last():
    fonts = [_font(1, "Low", down=4), _font(2, "Zero"), _font(3, "High", up=1)]
    ranked = rank_fonts(fonts)
    assert [f["name"] for f in ranked] == ["High", "Zero", "Low"]
    assert net_score(ranked[-1]) == -4


def test_split_sections():
    ranked = [_font(i, str(i)) for i in range(10)]
    top, rest = split_sections(ranked, 8)
    assert len(top) == 8 and len(rest) == 2
    assert top[0]["id"] == 0 and rest[0]["id"] == 8


def test_split_sections_with_fewer_fonts_than_quota():
    top, rest = split_sections([_font(1, "Only")], 8)
    assert len(top) == 1 and rest == []


# ───────────────────────── tag filter ───────────────────────────────
def test_filter_requires_every_selected_tag():
    f1 = _font(1, "F1", tags=["serif", "display"])
    f2 = _font(2, "F2", tags=["serif"])
    assert filter_by_tags([f1, f2], ["serif", "display"]) == [f1]


def test_filter_is_case_insensitive():
    f1 = _font(1, "F1", tags=["Serif"])
    assert filter_by_tags([f1], ["serif"]) == [f1]


def test_empty_filter_keeps_everything():
    fonts = [_font(1, "F1"), _font(2, "F2", tags=["mono"])]
    assert filter_by_tags(fonts, []) == fonts


def test_font_without_tags_never_matches_a_filter():
    assert filter_by_tags([_font(1, "Bare")], ["serif"]) == []


# ───────────────────────── catalog merge ────────────────────────────
def test_load_catalog_merges_tags_and_votes(client, make_font, make_tag):
    fid = make_font(up=2)
    serif = make_tag("aa-serif")
    display = make_tag("ab-display")
    db = get_db()
    db.executemany(
        "INSERT INTO font_tags (font_id, tag_id) VALUES (?,?)",
        [(fid, display), (fid, serif)],
    )
    db.execute(
        "INSERT INTO votes (font_id, user_id, vote_type, created_at) VALUES (?,?,?,?)",
        (fid, "catalog-user", "up", "2099-01-01T00:00:00+00:00"),
    )
    db.commit()

    catalog = load_catalog(SqliteStore(db), "catalog-user")
    font = next(f for f in catalog["fonts"] if f["id"] == fid)

    assert font["tags"] == ["aa-serif", "ab-display"]
    assert font["loaded"] is False
    assert catalog["votes"] == {fid: "up"}
    assert catalog["font_tags"][fid] == sorted([serif, display])


def test_load_catalog_without_voter_has_no_votes(client, make_font):
    make_font()
    catalog = load_catalog(SqliteStore(get_db()))
    assert catalog["votes"] == {}
    assert catalog["fonts"]


def test_font_family_falls_back_until_loaded():
    f = _font(1, "Lobster")
    f["loaded"] = False
    assert font_family(f) == "system-ui"
    f["loaded"] = True
    assert font_family(f) == '"Lobster"'


def test_google_fonts_url_encodes_family():
    assert google_fonts_url("Open Sans") == (
        "https://fonts.googleapis.com/css2?family=Open+Sans&display=swap"
    )
