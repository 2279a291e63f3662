"""
tests/test_ledger.py
"""
from __future__ import annotations

import pytest

from fontvote.app import ActionState, StoreError, VoteLedger, VoteRejected


# ───────────────────────── helpers ──────────────────────────────────
class FakeStore:
    """Records every remote call; optionally fails them."""

    def __init__(self, votes=None, *, fail=False):
        self.calls: list[tuple] = []
        self._votes = dict(votes or {})
        self.fail = fail

    def user_votes(self, user_id):
        return dict(self._votes)

    def cast_vote(self, font_id, user_id, vote_type):
        self.calls.append(("cast", font_id, user_id, vote_type))
        if self.fail:
            raise StoreError("network down")

    def remove_vote(self, font_id, user_id, vote_type):
        self.calls.append(("remove", font_id, user_id, vote_type))
        if self.fail:
            raise StoreError("network down")


def _fonts(n=3, up=0, down=0):
    return [
        {"id": i, "name": f"Font {i}", "url": "", "upvotes": up, "downvotes": down}
        for i in range(1, n + 1)
    ]


def _ledger(store=None, fonts=None, votes=None, **kw):
    return VoteLedger(store or FakeStore(), "user-1", fonts or _fonts(), votes, **kw)


# ─────────────────────────■  tests  ■────────────────────────────────
def test_cast_vote_increments_counter_and_records_direction():
    store = FakeStore()
    fonts = _fonts(up=5)
    ledger = _ledger(store, fonts)

    ledger.cast_vote(1, "up")

    assert fonts[0]["upvotes"] == 6
    assert ledger.votes == {1: "up"}
    assert store.calls == [("cast", 1, "user-1", "up")]
    assert ledger.last_action is ActionState.COMMITTED


def test_second_vote_on_same_font_is_rejected_without_store_call():
    store = FakeStore()
    fonts = _fonts()
    ledger = _ledger(store, fonts, votes={2: "down"})

    with pytest.raises(VoteRejected) as info:
        ledger.cast_vote(2, "up")

    assert info.value.reason == "duplicate"
    assert "already voted for Font 2" in info.value.message
    assert store.calls == []
    assert fonts[1]["upvotes"] == 0 and fonts[1]["downvotes"] == 0


def test_unknown_font_is_rejected():
    with pytest.raises(VoteRejected) as info:
        _ledger().cast_vote(99, "up")
    assert info.value.reason == "unknown"


def test_invalid_direction_raises_value_error():
    with pytest.raises(ValueError):
        _ledger().cast_vote(1, "sideways")


def test_failed_store_call_leaves_state_untouched():
    store = FakeStore(fail=True)
    fonts = _fonts(up=3)
    ledger = _ledger(store, fonts)

    with pytest.raises(StoreError):
        ledger.cast_vote(1, "up")

    assert fonts[0]["upvotes"] == 3
    assert ledger.votes == {}
    assert ledger.last_action is ActionState.ROLLED_BACK


def test_undo_vote_decrements_and_forgets():
    store = FakeStore()
    fonts = _fonts(down=2)
    ledger = _ledger(store, fonts, votes={3: "down"})

    assert ledger.undo_vote(3) is True
    assert fonts[2]["downvotes"] == 1
    assert ledger.votes == {}
    assert store.calls == [("remove", 3, "user-1", "down")]


def test_undo_never_drives_counter_below_zero():
    fonts = _fonts(up=0)
    ledger = _ledger(fonts=fonts, votes={1: "up"})

    ledger.undo_vote(1)

    assert fonts[0]["upvotes"] == 0


def test_undo_without_vote_is_a_no_op():
    store = FakeStore()
    ledger = _ledger(store)

    assert ledger.undo_vote(1) is False
    assert store.calls == []
    assert ledger.last_action is ActionState.IDLE


def test_failed_undo_keeps_the_vote():
    fonts = _fonts(up=4)
    ledger = _ledger(FakeStore(fail=True), fonts, votes={1: "up"})

    with pytest.raises(StoreError):
        ledger.undo_vote(1)

    assert ledger.votes == {1: "up"}
    assert fonts[0]["upvotes"] == 4


def test_ninth_upvote_hits_the_quota():
    store = FakeStore()
    fonts = _fonts(n=10)
    ledger = _ledger(store, fonts, votes={i: "up" for i in range(1, 9)}, quota=8)

    assert ledger.remaining() == 0
    with pytest.raises(VoteRejected) as info:
        ledger.cast_vote(9, "up")

    assert info.value.reason == "quota"
    assert store.calls == []


def test_downvotes_are_free_under_upvote_policy():
    ledger = _ledger(fonts=_fonts(n=10), votes={i: "up" for i in range(1, 9)}, quota=8)

    ledger.cast_vote(9, "down")

    assert ledger.votes[9] == "down"
    assert ledger.remaining() == 0


def test_total_policy_counts_both_directions():
    votes = {1: "up", 2: "down"}
    ledger = _ledger(fonts=_fonts(n=4), votes=votes, quota=2, policy="total")

    assert ledger.remaining() == 0
    with pytest.raises(VoteRejected):
        ledger.cast_vote(3, "down")


def test_undo_frees_a_quota_slot():
    ledger = _ledger(fonts=_fonts(n=3), votes={1: "up", 2: "up"}, quota=2)

    ledger.undo_vote(1)
    ledger.cast_vote(3, "up")

    assert ledger.votes == {2: "up", 3: "up"}


def test_closed_voting_rejects_before_store():
    store = FakeStore()
    ledger = _ledger(store, enabled=False)

    with pytest.raises(VoteRejected) as info:
        ledger.cast_vote(1, "up")

    assert info.value.reason == "closed"
    assert store.calls == []


def test_votes_are_loaded_from_store_when_not_given():
    ledger = _ledger(FakeStore(votes={1: "up"}))
    assert ledger.votes == {1: "up"}


def test_unknown_policy_is_refused():
    with pytest.raises(ValueError):
        _ledger(policy="weekly")
