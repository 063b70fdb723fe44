"""
Tests for session_policy.py and session_store.py.

Covers:
  1. Expiry is ``now - t > 24h`` and fail-closed on missing / corrupt records
  2. touch() / clear() are the only writers
  3. JSON file store: persistence, corrupt files, cross-instance visibility
"""

import json

import pytest

from opend.auth.session_policy import LOGIN_TIMESTAMP_KEY, SESSION_TIMEOUT_MS, SessionPolicy
from opend.auth.session_store import JsonFileSessionStore, MemorySessionStore

from conftest import HOUR_MS, FakeClock


# ====================================================================
# 1. Expiry window
# ====================================================================

class TestIsExpired:

    def _policy(self, store, clock):
        return SessionPolicy(store, clock=clock)

    def test_window_is_24_hours(self):
        assert SESSION_TIMEOUT_MS == 24 * HOUR_MS

    def test_no_record_is_expired(self, store, clock):
        assert self._policy(store, clock).is_expired() is True

    @pytest.mark.parametrize("age_ms,expected", [
        (0, False),
        (1 * HOUR_MS, False),
        (24 * HOUR_MS, False),          # exactly at the window is still valid
        (24 * HOUR_MS + 1, True),
        (25 * HOUR_MS, True),
    ])
    def test_age_against_window(self, store, clock, age_ms, expected):
        policy = self._policy(store, clock)
        store.set(LOGIN_TIMESTAMP_KEY, str(policy.now_ms() - age_ms))
        assert policy.is_expired() is expected

    @pytest.mark.parametrize("raw", ["abc", "", "12.5", "  ", "0x10", "None"])
    def test_corrupt_timestamp_is_expired_not_a_crash(self, store, clock, raw):
        store.set(LOGIN_TIMESTAMP_KEY, raw)
        assert self._policy(store, clock).is_expired() is True

    def test_is_expired_does_not_write(self, store, clock):
        policy = self._policy(store, clock)
        store.set(LOGIN_TIMESTAMP_KEY, str(policy.now_ms() - 25 * HOUR_MS))
        policy.is_expired()
        assert store.get(LOGIN_TIMESTAMP_KEY) == str(policy.now_ms() - 25 * HOUR_MS)

    def test_custom_window(self, store, clock):
        policy = SessionPolicy(store, window_ms=1000, clock=clock)
        policy.touch()
        clock.advance_ms(1500)
        assert policy.is_expired() is True


# ====================================================================
# 2. Writers
# ====================================================================

class TestTouchAndClear:

    def test_touch_stamps_current_time(self, store, clock):
        policy = SessionPolicy(store, clock=clock)
        stamped = policy.touch()
        assert stamped == policy.now_ms()
        assert store.get(LOGIN_TIMESTAMP_KEY) == str(stamped)
        assert policy.is_expired() is False

    def test_touch_slides_the_window(self, store, clock):
        policy = SessionPolicy(store, clock=clock)
        policy.touch()
        clock.advance_ms(20 * HOUR_MS)
        policy.touch()
        clock.advance_ms(20 * HOUR_MS)
        assert policy.is_expired() is False

    def test_clear_removes_record(self, store, clock):
        policy = SessionPolicy(store, clock=clock)
        policy.touch()
        policy.clear()
        assert store.get(LOGIN_TIMESTAMP_KEY) is None
        assert policy.is_expired() is True

    def test_remaining_ms(self, store, clock):
        policy = SessionPolicy(store, clock=clock)
        assert policy.remaining_ms() == 0
        policy.touch()
        clock.advance_ms(HOUR_MS)
        assert policy.remaining_ms() == 23 * HOUR_MS
        clock.advance_ms(30 * HOUR_MS)
        assert policy.remaining_ms() == 0


# ====================================================================
# 3. Stores
# ====================================================================

class TestMemorySessionStore:

    def test_values_must_be_strings(self):
        with pytest.raises(TypeError):
            MemorySessionStore().set("login_timestamp", 123)

    def test_delete_missing_key_is_noop(self):
        store = MemorySessionStore({"a": "1"})
        store.delete("missing")
        assert store.keys() == ["a"]

    def test_clear(self):
        store = MemorySessionStore({"a": "1", "b": "2"})
        store.clear()
        assert store.keys() == []


class TestJsonFileSessionStore:

    def test_missing_file_reads_empty(self, tmp_path):
        store = JsonFileSessionStore(str(tmp_path / "state.json"))
        assert store.get("login_timestamp") is None
        assert store.keys() == []

    def test_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "nested" / "state.json")
        JsonFileSessionStore(path).set("login_timestamp", "42")
        assert JsonFileSessionStore(path).get("login_timestamp") == "42"

    def test_writes_are_visible_to_other_instances(self, tmp_path):
        path = str(tmp_path / "state.json")
        tab_a = JsonFileSessionStore(path)
        tab_b = JsonFileSessionStore(path)
        tab_a.set("ii_login_initiated", "true")
        assert tab_b.get("ii_login_initiated") == "true"
        tab_b.delete("ii_login_initiated")
        assert tab_a.get("ii_login_initiated") is None

    def test_corrupt_file_reads_empty_and_is_replaced(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json", encoding="utf-8")
        store = JsonFileSessionStore(str(path))
        assert store.get("login_timestamp") is None
        store.set("login_timestamp", "7")
        assert json.loads(path.read_text(encoding="utf-8")) == {"login_timestamp": "7"}

    @pytest.mark.parametrize("raw", [b"\xff\xfe{garbage", b"\x80\x81\x82", b'{"login_timestamp": "\xe9"}'])
    def test_non_utf8_file_reads_empty_and_is_replaced(self, tmp_path, raw):
        path = tmp_path / "state.json"
        path.write_bytes(raw)
        store = JsonFileSessionStore(str(path))
        assert store.get("login_timestamp") is None
        assert store.keys() == []
        store.set("login_timestamp", "7")
        assert json.loads(path.read_text(encoding="utf-8")) == {"login_timestamp": "7"}
        store.delete("login_timestamp")
        assert store.keys() == []

    def test_non_object_file_reads_empty(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("[1, 2, 3]", encoding="utf-8")
        assert JsonFileSessionStore(str(path)).keys() == []

    def test_non_string_value_in_file_is_ignored(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text('{"login_timestamp": 5}', encoding="utf-8")
        assert JsonFileSessionStore(str(path)).get("login_timestamp") is None

    def test_no_temp_files_left_behind(self, tmp_path):
        store = JsonFileSessionStore(str(tmp_path / "state.json"))
        store.set("a", "1")
        store.set("b", "2")
        store.delete("a")
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_policy_over_file_store(self, tmp_path):
        clock = FakeClock()
        store = JsonFileSessionStore(str(tmp_path / "state.json"))
        SessionPolicy(store, clock=clock).touch()
        assert SessionPolicy(JsonFileSessionStore(str(tmp_path / "state.json")), clock=clock).is_expired() is False
