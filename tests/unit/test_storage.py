"""
Tests for storage.py - Snapshot, restore, save and load
"""

import json
import pytest
from datetime import timedelta

from microlend import CorruptSnapshot, snapshot, restore, save, load
from microlend import storage
from microlend.storage import compute_checksum

from tests.fake_view import OWNER, approve, close_voting


@pytest.fixture
def busy(governed, token):
    """Platform with one repaid loan, one approved loan and one open request."""
    governed.set_voting_period(OWNER, timedelta(days=2))
    first = governed.request_loan("alice", 100, 72)
    approve(governed, first, "gov_a", "gov_b")
    close_voting(governed, first)
    governed.fund_loan(first)
    token.approve("alice", "pool", 100)
    governed.repay_loan(first, "alice")

    second = governed.request_loan("bob", 30, 55)
    approve(governed, second, "gov_a", "gov_b")
    governed.request_loan("alice", 10, 80)
    governed.cast_vote(3, "gov_a", False)
    return governed


def reseal(document):
    document['checksum'] = compute_checksum(document['payload'])
    return document


class TestSnapshot:

    def test_document_shape(self, busy):
        doc = snapshot(busy)
        assert doc['version'] == 1
        assert doc['checksum'] == compute_checksum(doc['payload'])
        payload = doc['payload']
        assert payload['loan_count'] == 3
        assert payload['user_loans'] == {'alice': [1, 3], 'bob': [2]}
        assert payload['required_votes'] == 3
        assert payload['voting_period_seconds'] == timedelta(days=2).total_seconds()

    def test_is_json_serializable(self, busy):
        json.dumps(snapshot(busy))

    def test_checksum_is_stable(self, busy):
        assert snapshot(busy)['checksum'] == snapshot(busy)['checksum']


class TestRestore:

    def test_round_trip_preserves_state(self, busy, token):
        restored = restore(snapshot(busy), token, verbose=False)

        assert restored.owner == busy.owner
        assert restored.current_time == busy.current_time
        assert restored.voting_period == busy.voting_period
        assert restored.required_votes == busy.required_votes
        assert list(restored.list_loans()) == list(busy.list_loans())
        assert restored.get_user_loans("alice") == [1, 3]
        assert restored.list_members() == busy.list_members()
        assert restored.pool_balance() == busy.pool_balance()

    def test_restored_platform_continues(self, busy, token):
        restored = restore(snapshot(busy), token, verbose=False)
        assert restored.request_loan("carol", 5, 60) == 4
        assert restored.event_log[0].sequence_number == len(busy.event_log)

    def test_wrong_version(self, busy, token):
        doc = snapshot(busy)
        doc['version'] = 99
        with pytest.raises(CorruptSnapshot, match="version"):
            restore(doc, token)

    def test_tampered_payload(self, busy, token):
        doc = snapshot(busy)
        doc['payload']['loans'][0]['amount'] = 1
        with pytest.raises(CorruptSnapshot, match="checksum"):
            restore(doc, token)

    def test_broken_invariant_with_valid_checksum(self, busy, token):
        doc = snapshot(busy)
        doc['payload']['loans'][1]['approved'] = False
        doc['payload']['loans'][1]['funded'] = True
        with pytest.raises(CorruptSnapshot):
            restore(reseal(doc), token)

    def test_id_gap(self, busy, token):
        doc = snapshot(busy)
        del doc['payload']['loans'][1]
        with pytest.raises(CorruptSnapshot, match="sequential"):
            restore(reseal(doc), token)

    def test_index_mismatch(self, busy, token):
        doc = snapshot(busy)
        doc['payload']['user_loans']['bob'] = [2, 3]
        with pytest.raises(CorruptSnapshot, match="index"):
            restore(reseal(doc), token)

    def test_zero_weight_member(self, busy, token):
        doc = snapshot(busy)
        doc['payload']['members'][0]['voting_weight'] = 0
        with pytest.raises(CorruptSnapshot):
            restore(reseal(doc), token)

    @pytest.mark.parametrize("field", [
        "current_time", "loan_count", "user_loans", "owner", "pool_wallet", "next_sequence",
    ])
    def test_missing_field(self, busy, token, field):
        doc = snapshot(busy)
        del doc['payload'][field]
        with pytest.raises(CorruptSnapshot):
            restore(reseal(doc), token)

    @pytest.mark.parametrize("field, value", [
        ("owner", ""),
        ("owner", "   "),
        ("owner", 7),
        ("pool_wallet", None),
        ("next_sequence", -1),
        ("next_sequence", "12"),
        ("next_sequence", 1.5),
        ("next_sequence", True),
    ])
    def test_invalid_scalar_field(self, busy, token, field, value):
        doc = snapshot(busy)
        doc['payload'][field] = value
        with pytest.raises(CorruptSnapshot, match=field):
            restore(reseal(doc), token)


class TestFiles:

    def test_save_and_load(self, busy, token, tmp_path):
        path = save(busy, tmp_path / "platform.json")
        loaded = load(path, token, verbose=False)
        assert list(loaded.list_loans()) == list(busy.list_loans())

    def test_load_garbage(self, token, tmp_path):
        path = tmp_path / "platform.json"
        path.write_text("{not json")
        with pytest.raises(CorruptSnapshot):
            load(path, token)

    def test_save_replaces_previous_snapshot(self, busy, token, tmp_path):
        path = tmp_path / "platform.json"
        save(busy, path)
        busy.request_loan("carol", 5, 40)
        save(busy, path)

        assert load(path, token, verbose=False).loan_count == 4
        assert [p.name for p in tmp_path.iterdir()] == ["platform.json"]

    def test_interrupted_save_keeps_previous_snapshot(self, busy, token, tmp_path, monkeypatch):
        path = tmp_path / "platform.json"
        save(busy, path)
        before = path.read_text()
        busy.request_loan("carol", 5, 40)

        def crash(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(storage.os, "replace", crash)
        with pytest.raises(OSError, match="disk full"):
            save(busy, path)

        assert path.read_text() == before
        assert [p.name for p in tmp_path.iterdir()] == ["platform.json"]
