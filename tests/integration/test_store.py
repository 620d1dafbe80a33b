"""
Integration tests for the session store against a real SQLite database

These walk the request lifecycle: load a session from a request, mutate it,
save it onto a response, and load it again from the cookies a browser would
send back.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import inspect, text
from starlette.responses import Response

from sqlsessions.core.exceptions import CreateError, EncodeError, LoadError, SaveError, StorageError
from sqlsessions.core.utils.encryption import encode_multi
from sqlsessions.store import SessionStore

from conftest import (
    BLOCK_KEY,
    HASH_KEY,
    OLD_BLOCK_KEY,
    OLD_HASH_KEY,
    SESSION_NAME,
)

# Mark all tests in this module as integration tests
pytestmark = pytest.mark.integration


def save_new_session(store, make_request, values):
    """Save a fresh session holding ``values`` and return it with its response"""
    session = store.get(make_request(), SESSION_NAME)
    session.values.update(values)
    response = Response()
    session.save(make_request(), response)
    return session, response


class TestStoreConstruction:
    """Test store creation and table provisioning"""

    def test_creates_table(self, db_engine):
        SessionStore(db_engine, "web_sessions", HASH_KEY)

        inspector = inspect(db_engine)
        assert "web_sessions" in inspector.get_table_names()
        columns = {column["name"] for column in inspector.get_columns("web_sessions")}
        assert {"id", "data", "expires_at"} <= columns

    def test_existing_table_is_reused(self, db_engine, make_request):
        """Test creating a second store on the same table keeps its records"""
        first = SessionStore(db_engine, "sessions", HASH_KEY, BLOCK_KEY)
        session, _ = save_new_session(first, make_request, {"a": 1})

        second = SessionStore(db_engine, "sessions", HASH_KEY, BLOCK_KEY)
        assert second.records.get("sessions", session.id) is not None

    def test_default_options(self, store):
        assert store.options.path == "/"
        assert store.options.max_age == 86400 * 30
        assert store.table == "sessions"

    def test_requires_a_key(self, db_engine):
        with pytest.raises(CreateError):
            SessionStore(db_engine, "sessions")

    def test_schema_failure_is_create_error(self):
        """Test storage failures during provisioning surface as CreateError"""
        records = MagicMock()
        records.ensure_schema.side_effect = StorageError("database is locked")

        with pytest.raises(CreateError) as exc_info:
            SessionStore(records, "sessions", HASH_KEY)
        assert isinstance(exc_info.value.__cause__, StorageError)
        assert "database is locked" in str(exc_info.value)


class TestSessionLifecycle:
    """Test loading and saving sessions across requests"""

    def test_saved_values_survive_requests(self, store, make_request, follow_up_request):
        # Step 1: a new session is created, filled and saved
        request1 = make_request()
        session = store.get(request1, SESSION_NAME)
        assert session is not None
        assert session.is_new

        session.values["foo"] = "Foo"
        session.values["bar"] = "Bar"
        response = Response()
        session.save(request1, response)
        assert response.headers.getlist("set-cookie")

        # Step 2: the cookie set above brings the same values back
        session2 = store.get(follow_up_request(response), SESSION_NAME)
        assert not session2.is_new
        assert session2.id == session.id
        assert session2.values == {"foo": "Foo", "bar": "Bar"}

        # Step 3: a request without cookies gets a blank session
        session3 = store.get(make_request(), SESSION_NAME)
        assert session3.is_new
        assert session3.values == {}

    def test_no_cookie_yields_fresh_session(self, store, make_request):
        session = store.new(make_request(), SESSION_NAME)

        assert session.is_new
        assert session.id == ""
        assert session.values == {}

    def test_bogus_cookie_raises_load_error(self, store, make_request):
        """Test a bogus cookie yields a load error with a usable fresh session"""
        with pytest.raises(LoadError) as exc_info:
            store.get(make_request({SESSION_NAME: "bogus"}), SESSION_NAME)

        session = exc_info.value.session
        assert session.is_new
        assert session.id == ""
        assert session.values == {}
        assert str(exc_info.value).startswith("Could not load session data")

    def test_missing_record_raises_load_error(self, store, make_request, follow_up_request):
        """Test a valid cookie whose record is gone yields a fresh session"""
        session, response = save_new_session(store, make_request, {"a": 1})
        store.records.delete(store.table, session.id)

        with pytest.raises(LoadError) as exc_info:
            store.get(follow_up_request(response), SESSION_NAME)
        assert exc_info.value.session.is_new
        assert exc_info.value.session.values == {}
        assert exc_info.value.session.id == ""

    def test_corrupt_record_raises_load_error(self, store, make_request, follow_up_request, db_engine):
        """Test stored data that fails authentication is not loaded"""
        session, response = save_new_session(store, make_request, {"a": 1})
        with db_engine.begin() as conn:
            conn.execute(
                text("UPDATE sessions SET data = :data WHERE id = :id"),
                {"data": "tampered", "id": session.id},
            )

        with pytest.raises(LoadError) as exc_info:
            store.get(follow_up_request(response), SESSION_NAME)
        assert exc_info.value.session.values == {}

    def test_storage_failure_on_load(self, make_request):
        """Test storage errors while loading surface as LoadError"""
        records = MagicMock()
        store = SessionStore(records, "sessions", HASH_KEY)
        cookie = store.codecs[0].encode(SESSION_NAME, "some-id")
        records.get.side_effect = StorageError("connection reset")

        with pytest.raises(LoadError) as exc_info:
            store.new(make_request({SESSION_NAME: cookie}), SESSION_NAME)
        assert isinstance(exc_info.value.__cause__, StorageError)
        assert exc_info.value.session.is_new

    def test_get_is_memoized_per_request(self, store, make_request):
        request = make_request()

        assert store.get(request, SESSION_NAME) is store.get(request, SESSION_NAME)
        assert store.new(request, SESSION_NAME) is not store.get(request, SESSION_NAME)

    def test_save_overwrites_record(self, store, make_request, follow_up_request):
        """Test saving replaces the stored values rather than merging them"""
        session, response = save_new_session(store, make_request, {"a": 1, "b": 2})

        request2 = follow_up_request(response)
        session2 = store.get(request2, SESSION_NAME)
        session2.values = {"c": 3}
        response2 = Response()
        session2.save(request2, response2)

        session3 = store.get(follow_up_request(response2), SESSION_NAME)
        assert session3.values == {"c": 3}
        assert session3.id == session.id

    def test_identifier_is_stable(self, store, make_request):
        """Test a session keeps its identifier across saves"""
        session, _ = save_new_session(store, make_request, {"a": 1})
        first_id = session.id

        session.save(make_request(), Response())
        assert session.id == first_id

    def test_sessions_are_isolated_by_name(self, store, make_request, follow_up_request):
        """Test one session's cookie cannot be used for another name"""
        _, response = save_new_session(store, make_request, {"a": 1})
        cookie = follow_up_request(response).cookies[SESSION_NAME]

        with pytest.raises(LoadError):
            store.get(make_request({"other-sess": cookie}), "other-sess")


class TestOptions:
    """Test per-session options and store defaults"""

    def test_session_options_are_copies(self, store, make_request):
        """Test changing a session's options leaves the store defaults alone"""
        session = store.get(make_request(), SESSION_NAME)
        session.options.max_age = -1
        session.options.path = "/elsewhere"

        assert store.options.max_age == 86400 * 30
        assert store.options.path == "/"
        assert store.get(make_request(), SESSION_NAME).options.max_age == 86400 * 30

    def test_store_defaults_apply_to_later_sessions(self, store, make_request):
        before = store.get(make_request(), SESSION_NAME)
        store.options.secure = True

        after = store.get(make_request(), SESSION_NAME)
        assert after.options.secure is True
        assert before.options.secure is False

    def test_cookie_uses_session_options(self, store, make_request, response_cookies):
        session = store.get(make_request(), SESSION_NAME)
        session.options.max_age = 3600
        session.options.path = "/app"
        response = Response()
        session.save(make_request(), response)

        morsel = response_cookies(response)[SESSION_NAME]
        assert morsel["max-age"] == "3600"
        assert morsel["path"] == "/app"
        assert morsel["httponly"]

    def test_ttl_follows_session_max_age(self, store, make_request):
        """Test the record expiry is derived from the session's own max-age"""
        session = store.get(make_request(), SESSION_NAME)
        session.options.max_age = 60
        session.save(make_request(), Response())
        now = datetime.now(timezone.utc)

        with patch("sqlsessions.db.record_store._utcnow", return_value=now + timedelta(seconds=30)):
            assert store.records.get(store.table, session.id) is not None
        with patch("sqlsessions.db.record_store._utcnow", return_value=now + timedelta(seconds=120)):
            assert store.records.get(store.table, session.id) is None

    def test_max_age_updates_codecs(self, store):
        store.max_age(600)

        assert store.options.max_age == 600
        assert all(codec.max_age == 600 for codec in store.codecs)

    def test_max_length_allows_large_sessions(self, store, make_request, follow_up_request):
        """Test lifting the codec length limit lets big payloads be stored"""
        big = {"blob": "x" * 8000}
        session = store.get(make_request(), SESSION_NAME)
        session.values.update(big)
        with pytest.raises(SaveError):
            session.save(make_request(), Response())

        store.max_length(0)
        response = Response()
        session.save(make_request(), response)
        assert store.get(follow_up_request(response), SESSION_NAME).values == big


class TestDeletion:
    """Test deleting sessions through a non-positive max-age"""

    def test_negative_max_age_deletes_record(self, store, make_request, follow_up_request, response_cookies):
        session, response = save_new_session(store, make_request, {"a": 1})

        request2 = follow_up_request(response)
        session2 = store.get(request2, SESSION_NAME)
        session2.options.max_age = -1
        response2 = Response()
        session2.save(request2, response2)

        assert store.records.get(store.table, session.id) is None
        morsel = response_cookies(response2)[SESSION_NAME]
        assert morsel.value == ""
        assert morsel["max-age"] == "-1"
        # In-memory values are left alone
        assert session2.values == {"a": 1}

    def test_zero_max_age_deletes_record(self, store, make_request):
        session, _ = save_new_session(store, make_request, {"a": 1})
        session.options.max_age = 0
        session.save(make_request(), Response())

        assert store.records.get(store.table, session.id) is None

    def test_deleting_unsaved_session(self, store, make_request, response_cookies):
        """Test deleting a session that was never saved only clears the cookie"""
        session = store.get(make_request(), SESSION_NAME)
        session.options.max_age = -1
        response = Response()
        session.save(make_request(), response)

        assert session.id == ""
        assert response_cookies(response)[SESSION_NAME].value == ""

    def test_delete_is_idempotent(self, store, make_request):
        session, _ = save_new_session(store, make_request, {"a": 1})
        session.options.max_age = -1

        session.save(make_request(), Response())
        session.save(make_request(), Response())

        assert store.records.get(store.table, session.id) is None


class TestSaveFailures:
    """Test save error handling"""

    def test_unserializable_values(self, store, make_request):
        session = store.get(make_request(), SESSION_NAME)
        session.values["when"] = object()
        response = Response()

        with pytest.raises(SaveError):
            session.save(make_request(), response)
        assert not response.headers.getlist("set-cookie")

    def test_storage_failure_sets_no_cookie(self, make_request):
        """Test a failed write leaves the response without a cookie"""
        records = MagicMock()
        records.put.side_effect = StorageError("disk full")
        store = SessionStore(records, "sessions", HASH_KEY)
        session = store.get(make_request(), SESSION_NAME)
        session.values["a"] = 1
        response = Response()

        with pytest.raises(SaveError) as exc_info:
            session.save(make_request(), response)
        assert "disk full" in str(exc_info.value)
        assert not response.headers.getlist("set-cookie")

    def test_cookie_encode_failure_keeps_record(self, store, make_request):
        """Test a failed cookie encode after the write leaves the record stored"""
        real_encode = encode_multi
        calls = []

        def encode_values_then_fail(name, value, *codecs):
            calls.append(value)
            if len(calls) == 1:
                return real_encode(name, value, *codecs)
            raise EncodeError("the value is too long")

        session = store.get(make_request(), SESSION_NAME)
        session.values["a"] = 1
        response = Response()

        with patch("sqlsessions.store.encode_multi", side_effect=encode_values_then_fail):
            with pytest.raises(SaveError, match="too long"):
                session.save(make_request(), response)

        assert len(calls) == 2
        assert session.id
        assert store.records.get(store.table, session.id) is not None
        assert not response.headers.getlist("set-cookie")

    def test_delete_failure(self, make_request):
        records = MagicMock()
        records.delete.side_effect = StorageError("connection lost")
        store = SessionStore(records, "sessions", HASH_KEY)
        session = store.get(make_request(), SESSION_NAME)
        session.id = "some-id"
        session.options.max_age = -1

        with pytest.raises(SaveError):
            session.save(make_request(), Response())


class TestKeyRotation:
    """Test sessions survive a key rotation"""

    def test_old_sessions_load_after_rotation(self, db_engine, make_request, follow_up_request):
        old_store = SessionStore(db_engine, "sessions", OLD_HASH_KEY, OLD_BLOCK_KEY)
        session, response = save_new_session(old_store, make_request, {"counter": 4})

        rotated = SessionStore(db_engine, "sessions", HASH_KEY, BLOCK_KEY, OLD_HASH_KEY, OLD_BLOCK_KEY)
        loaded = rotated.get(follow_up_request(response), SESSION_NAME)
        assert loaded.values == {"counter": 4}

        # Saving again re-encodes under the new primary key
        response2 = Response()
        loaded.save(make_request(), response2)
        new_only = SessionStore(db_engine, "sessions", HASH_KEY, BLOCK_KEY)
        assert new_only.get(follow_up_request(response2), SESSION_NAME).values == {"counter": 4}

    def test_retired_keys_stop_working(self, db_engine, make_request, follow_up_request):
        old_store = SessionStore(db_engine, "sessions", OLD_HASH_KEY, OLD_BLOCK_KEY)
        _, response = save_new_session(old_store, make_request, {"counter": 4})

        new_only = SessionStore(db_engine, "sessions", HASH_KEY, BLOCK_KEY)
        with pytest.raises(LoadError):
            new_only.get(follow_up_request(response), SESSION_NAME)
