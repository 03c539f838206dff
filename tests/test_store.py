import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import Session, select

from passman.core.errors import (
    DuplicateEntry,
    InvalidMasterPassword,
    MasterPasswordNotSet,
    NotFound,
    StoreUnavailable,
    VaultLocked,
)
from passman.core.models import Entry
from passman.server.database import create_vault_engine
from passman.server.models import VaultEntry
from passman.server.store import VaultStore

from conftest import FAST_KDF_ITERATIONS


def make_entry(service="github", username="alice", password="p1", notes="work", expiry=None):
    return Entry(service=service, username=username, password=password, notes=notes, expiry=expiry)


def count_rows(engine, service, username):
    with Session(engine) as session:
        statement = select(VaultEntry).where(VaultEntry.service == service, VaultEntry.username == username)
        return len(session.exec(statement).all())


class TestInitialization:
    def test_operations_before_initialize_are_rejected(self, engine):
        store = VaultStore(engine)
        assert not store.is_ready
        with pytest.raises(StoreUnavailable):
            store.add(make_entry())
        with pytest.raises(StoreUnavailable):
            store.list()
        with pytest.raises(StoreUnavailable):
            store.lock("master")

    def test_initialize_is_idempotent(self, engine):
        VaultStore(engine).initialize()
        store = VaultStore(engine)
        store.initialize()
        assert store.is_ready

    def test_schema_failure_is_store_unavailable(self, tmp_path):
        engine = create_vault_engine(tmp_path / "missing" / "dir" / "vault.db")
        store = VaultStore(engine)
        with pytest.raises(StoreUnavailable):
            store.initialize()
        assert not store.is_ready
        engine.dispose()


class TestAddGet:
    def test_round_trip(self, store):
        expiry = datetime(2031, 5, 1, 12, 0)
        store.add(make_entry(expiry=expiry))
        entry = store.get("github", "alice")
        assert entry.password == "p1"
        assert entry.notes == "work"
        assert entry.expiry == expiry

    def test_empty_password_allowed(self, store):
        store.add(make_entry(password="", notes=""))
        assert store.get("github", "alice").password == ""

    def test_duplicate_rejected_not_overwritten(self, store, engine):
        store.add(make_entry(password="first"))
        with pytest.raises(DuplicateEntry):
            store.add(make_entry(password="second"))
        assert store.get("github", "alice").password == "first"
        assert count_rows(engine, "github", "alice") == 1

    def test_same_service_other_username(self, store):
        store.add(make_entry(username="alice"))
        store.add(make_entry(username="bob"))
        assert len(store.list()) == 2

    def test_get_missing(self, store):
        with pytest.raises(NotFound):
            store.get("github", "nobody")

    def test_aware_expiry_stored_as_utc(self, store):
        tz = timezone(timedelta(hours=2))
        store.add(make_entry(expiry=datetime(2030, 1, 1, 12, 0, tzinfo=tz)))
        assert store.get("github", "alice").expiry == datetime(2030, 1, 1, 10, 0)

    def test_timestamps_are_recorded(self, store, engine):
        before = datetime.now()
        store.add(make_entry())
        store.update("github", "alice", "p2", "")
        with Session(engine) as session:
            row = session.exec(select(VaultEntry)).one()
        assert row.created_at.tzinfo is None
        assert before <= row.created_at <= row.updated_at


class TestConcurrentAdd:
    def test_exactly_one_of_many_wins(self, store, engine):
        workers = 8
        barrier = threading.Barrier(workers)
        results = []
        results_lock = threading.Lock()

        def worker(i):
            barrier.wait()
            try:
                store.add(make_entry(service="x", username="y", password=f"pw{i}"))
                outcome = "ok"
            except DuplicateEntry:
                outcome = "dup"
            with results_lock:
                results.append(outcome)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert results.count("ok") == 1
        assert results.count("dup") == workers - 1
        assert count_rows(engine, "x", "y") == 1


class TestUpdate:
    def test_changes_only_password_and_notes(self, store):
        expiry = datetime(2030, 6, 1)
        store.add(make_entry(expiry=expiry))
        store.add(make_entry(service="gitlab", password="other", notes="keep"))

        store.update("github", "alice", "p2", "")

        entry = store.get("github", "alice")
        assert (entry.service, entry.username) == ("github", "alice")
        assert entry.password == "p2"
        assert entry.notes == ""
        assert entry.expiry == expiry

        untouched = store.get("gitlab", "alice")
        assert untouched.password == "other"
        assert untouched.notes == "keep"

    def test_missing_is_not_found(self, store):
        with pytest.raises(NotFound):
            store.update("github", "ghost", "p", "n")
        assert store.list() == []

    def test_row_removed_by_another_connection(self, store, engine):
        store.add(make_entry())
        with Session(engine) as session:
            session.delete(session.exec(select(VaultEntry)).one())
            session.commit()
        with pytest.raises(NotFound):
            store.update("github", "alice", "p2", "")


class TestConcurrentUpdateDelete:
    def test_update_racing_delete_only_misses(self, store):
        rounds = 20
        for i in range(rounds):
            store.add(make_entry(service=f"s{i}"))
        barrier = threading.Barrier(2)
        errors = []

        def updater():
            barrier.wait()
            for i in range(rounds):
                try:
                    store.update(f"s{i}", "alice", "changed", "")
                except NotFound:
                    pass
                except Exception as e:
                    errors.append(e)

        def deleter():
            barrier.wait()
            for i in range(rounds):
                try:
                    store.delete(f"s{i}", "alice")
                except Exception as e:
                    errors.append(e)

        threads = [threading.Thread(target=updater), threading.Thread(target=deleter)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        assert store.list() == []


class TestDelete:
    def test_delete_then_get(self, store):
        store.add(make_entry())
        assert store.delete("github", "alice") is True
        with pytest.raises(NotFound):
            store.get("github", "alice")

    def test_delete_is_idempotent(self, store):
        store.add(make_entry())
        store.delete("github", "alice")
        assert store.delete("github", "alice") is False

    def test_delete_leaves_other_entries(self, store):
        store.add(make_entry(username="alice"))
        store.add(make_entry(username="bob"))
        store.delete("github", "alice")
        assert [e.username for e in store.list()] == ["bob"]

    def test_key_can_be_reused_after_delete(self, store):
        store.add(make_entry(password="old"))
        store.delete("github", "alice")
        store.add(make_entry(password="new"))
        assert store.get("github", "alice").password == "new"


class TestList:
    @pytest.fixture
    def populated(self, store):
        store.add(make_entry(service="github", username="alice"))
        store.add(make_entry(service="Mail", username="alice@example.com"))
        store.add(make_entry(service="bank", username="bob"))
        store.add(make_entry(service="gitlab", username="carol"))
        return store

    def test_empty_query_returns_all_in_insertion_order(self, populated):
        entries = populated.list("")
        assert [e.service for e in entries] == ["github", "Mail", "bank", "gitlab"]

    def test_query_matches_service_or_username(self, populated):
        assert [e.service for e in populated.list("git")] == ["github", "gitlab"]
        assert [e.service for e in populated.list("alice")] == ["github", "Mail"]

    def test_query_is_case_sensitive(self, populated):
        assert [e.service for e in populated.list("Mail")] == ["Mail"]
        assert populated.list("mail") == []
        assert populated.list("GIT") == []

    def test_no_match(self, populated):
        assert populated.list("zzz") == []

    def test_empty_vault(self, store):
        assert store.list() == []


class TestLockGate:
    def test_first_lock_sets_master_password(self, store):
        store.lock("master")
        assert store.is_locked
        with pytest.raises(VaultLocked):
            store.add(make_entry())
        with pytest.raises(VaultLocked):
            store.get("github", "alice")
        with pytest.raises(VaultLocked):
            store.list()
        with pytest.raises(VaultLocked):
            store.update("github", "alice", "p", "n")
        with pytest.raises(VaultLocked):
            store.delete("github", "alice")

    def test_unlock_restores_access(self, store):
        store.add(make_entry())
        store.lock("master")
        store.unlock("master")
        assert not store.is_locked
        assert store.get("github", "alice").password == "p1"

    def test_wrong_unlock_keeps_vault_locked(self, store):
        store.lock("master")
        with pytest.raises(InvalidMasterPassword):
            store.unlock("guess")
        assert store.is_locked

    def test_relock_requires_same_password(self, store):
        store.lock("master")
        store.unlock("master")
        with pytest.raises(InvalidMasterPassword):
            store.lock("different")
        assert not store.is_locked

    def test_empty_master_password_rejected(self, store):
        with pytest.raises(InvalidMasterPassword):
            store.lock("")
        assert not store.is_locked

    def test_unlock_without_master_password(self, store):
        with pytest.raises(MasterPasswordNotSet):
            store.unlock("anything")

    def test_lock_on_start(self, engine, store):
        store.lock("master")

        reopened = VaultStore(engine, kdf_iterations=FAST_KDF_ITERATIONS)
        reopened.initialize()
        assert reopened.is_locked
        reopened.unlock("master")

        relaxed = VaultStore(engine, kdf_iterations=FAST_KDF_ITERATIONS, lock_on_start=False)
        relaxed.initialize()
        assert not relaxed.is_locked

    def test_fresh_vault_starts_unlocked(self, store):
        assert not store.is_locked

    def test_lock_waits_for_running_call(self, store, monkeypatch):
        store.add(make_entry())
        entered = threading.Event()
        release = threading.Event()
        real_find = store._find

        def slow_find(session, service, username):
            entered.set()
            release.wait(timeout=5)
            return real_find(session, service, username)

        monkeypatch.setattr(store, "_find", slow_find)
        results = {}
        reader = threading.Thread(target=lambda: results.setdefault("entry", store.get("github", "alice")))
        reader.start()
        assert entered.wait(timeout=5)

        locker = threading.Thread(target=store.lock, args=("master",))
        locker.start()
        locker.join(timeout=0.3)
        assert locker.is_alive()
        assert not store.is_locked

        release.set()
        reader.join(timeout=5)
        locker.join(timeout=5)
        assert results["entry"].password == "p1"
        assert store.is_locked
        with pytest.raises(VaultLocked):
            store.get("github", "alice")
