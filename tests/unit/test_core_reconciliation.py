"""Unit tests for the reconciliation engine."""
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import CountingStore, FakeDirectory, NonUniqueStore, make_profile
from sso_gateway.core.directory import DirectoryStatus
from sso_gateway.core.exceptions import (
    DirectoryUnreachable,
    LocalStoreUnavailable,
    MissingIdentityAttribute,
    NoAccount,
    UserCreationFailed,
)
from sso_gateway.core.models import DirectoryRecord
from sso_gateway.core.store import InMemoryUserStore
from sso_gateway.core.reconciliation import (
    DIRECTORY_CREATE_ATTEMPTS,
    EmailLockRegistry,
    ReconciliationEngine,
    build_sso_credentials,
)


def test_same_email_twice_creates_one_user(store, directory):
    engine = ReconciliationEngine(store, directory)

    first = engine.reconcile(make_profile("a@x.com"))
    second = engine.reconcile(make_profile("a@x.com"))

    assert first.id == second.id
    assert store.create_calls == 1
    assert len(store) == 1


def test_new_user_gets_directory_id_from_registration(store, directory):
    engine = ReconciliationEngine(store, directory)

    result = engine.reconcile_detailed(make_profile("new@x.com"))

    assert result.created is True
    assert result.directory_lookup.status is DirectoryStatus.NOT_FOUND
    assert result.directory_create.status is DirectoryStatus.CREATED
    assert result.user.sso_credentials["directory_user_id"] == result.directory_create.record.id
    assert result.user.username == "new@x.com"


def test_directory_username_preferred_over_email(store):
    directory = FakeDirectory(records={
        "bob@x.com": DirectoryRecord(id="77", email="bob@x.com", username="bobby"),
    })
    engine = ReconciliationEngine(store, directory)

    user = engine.reconcile(make_profile("bob@x.com"))

    assert user.username == "bobby"
    assert user.directory_user_id == "77"
    assert directory.create_calls == 0


def test_directory_outage_still_creates_local_user(store):
    directory = FakeDirectory(available=False)
    engine = ReconciliationEngine(store, directory)

    user = engine.reconcile(make_profile("a@x.com"))

    assert user.email == "a@x.com"
    assert user.username == "a@x.com"
    assert user.sso_type == "google"
    assert "directory_user_id" not in user.sso_credentials
    assert store.create_calls == 1
    assert directory.lookup_calls == 1
    assert directory.create_calls == DIRECTORY_CREATE_ATTEMPTS


def test_registration_retried_once_after_transient_failure(store, directory):
    directory.create_failures = 1
    engine = ReconciliationEngine(store, directory)

    result = engine.reconcile_detailed(make_profile("retry@x.com"))

    assert directory.create_calls == 2
    assert result.directory_create.status is DirectoryStatus.CREATED
    assert result.user.directory_user_id is not None


def test_registration_not_retried_when_already_exists(store, directory, monkeypatch):
    # Lookup misses but the directory already has the record on insert
    directory.records["dup@x.com"] = DirectoryRecord(id="9", email="dup@x.com", username="dup")
    monkeypatch.setattr(directory, "lookup_by_email", lambda email: FakeDirectory().lookup_by_email(email))
    engine = ReconciliationEngine(store, directory)

    result = engine.reconcile_detailed(make_profile("dup@x.com"))

    assert directory.create_calls == 1
    assert result.directory_create.status is DirectoryStatus.ALREADY_EXISTS
    assert "directory_user_id" not in result.user.sso_credentials


@pytest.mark.parametrize("email", ["", "   "])
def test_missing_email_fails_before_store(store, directory, email):
    engine = ReconciliationEngine(store, directory)

    with pytest.raises(MissingIdentityAttribute) as exc_info:
        engine.reconcile(make_profile(email))

    assert exc_info.value.error_code == "auth_failed"
    assert store.lookup_calls == 0
    assert store.create_calls == 0
    assert directory.lookup_calls == 0


def test_existing_user_with_other_provider_returned_unchanged(store, directory, audit):
    legacy = store.create_user("legacy-user", "old@x.com", "legacy", {"token": "t"})
    store.create_calls = 0
    engine = ReconciliationEngine(store, directory, audit=audit)

    result = engine.reconcile_detailed(make_profile("old@x.com", provider="google"))

    assert result.user.id == legacy.id
    assert result.user.sso_type == "legacy"
    assert result.user.sso_credentials == {"token": "t"}
    assert result.provider_mismatch is True
    assert result.created is False
    assert store.create_calls == 0
    assert store.get_user(legacy.id).sso_type == "legacy"

    events = audit.log_file.read_text().splitlines()
    assert any('"provider_mismatch"' in line for line in events)


def test_store_failure_raises_user_creation_failed(directory):
    store = CountingStore(fail_create=True)
    engine = ReconciliationEngine(store, directory)

    with pytest.raises(UserCreationFailed) as exc_info:
        engine.reconcile(make_profile("a@x.com"))

    assert exc_info.value.error_code == "auth_failed"
    assert str(exc_info.value.original_error) == "disk full"


def test_store_read_failure_raises_local_store_unavailable(directory):
    store = CountingStore(fail_read=True)
    engine = ReconciliationEngine(store, directory)

    with pytest.raises(LocalStoreUnavailable) as exc_info:
        engine.reconcile(make_profile("a@x.com"))

    assert exc_info.value.error_code == "auth_failed"
    assert str(exc_info.value.original_error) == "connection refused"
    assert store.create_calls == 0
    assert len(engine.locks) == 0


def test_reread_failure_after_duplicate_raises_local_store_unavailable(directory):
    class FlakyStore(CountingStore):
        """Misses the first read, then loses its connection."""

        def get_user_by_email(self, email):
            if self.lookup_calls == 0:
                self.lookup_calls += 1
                return None
            self.fail_read = True
            return super().get_user_by_email(email)

    store = FlakyStore()
    InMemoryUserStore.create_user(store, "a@x.com", "a@x.com", "google", {})
    engine = ReconciliationEngine(store, directory)

    with pytest.raises(LocalStoreUnavailable):
        engine.reconcile(make_profile("a@x.com"))


def test_duplicate_from_store_resolves_to_existing_record(directory):
    class StaleReadStore(CountingStore):
        """First read misses a record another process already wrote."""

        def __init__(self):
            super().__init__()
            self.stale = True

        def get_user_by_email(self, email):
            if self.stale:
                self.stale = False
                return None
            return super().get_user_by_email(email)

    store = StaleReadStore()
    winner = store.create_user("a@x.com", "a@x.com", "google", {})
    engine = ReconciliationEngine(store, directory)

    result = engine.reconcile_detailed(make_profile("a@x.com"))

    assert result.user.id == winner.id
    assert result.created is False
    assert len(store) == 1


def test_concurrent_first_logins_create_one_user(directory):
    store = NonUniqueStore(delay=0.05)
    engine = ReconciliationEngine(store, directory)
    workers = 12
    barrier = threading.Barrier(workers)

    def login():
        barrier.wait()
        return engine.reconcile(make_profile("race@x.com")).id

    with ThreadPoolExecutor(max_workers=workers) as pool:
        ids = list(pool.map(lambda _: login(), range(workers)))

    assert len(set(ids)) == 1
    assert store.create_calls == 1
    assert len(store.rows) == 1
    assert len(engine.locks) == 0


def test_locks_for_different_emails_do_not_block_each_other():
    locks = EmailLockRegistry()
    entered = threading.Event()

    with locks.hold("a@x.com"):
        def other():
            with locks.hold("b@x.com"):
                entered.set()

        t = threading.Thread(target=other)
        t.start()
        assert entered.wait(timeout=2)
        t.join()

    assert len(locks) == 0


class TestPreRegistrationPolicy:
    def test_unknown_email_raises_no_account(self, store, directory):
        engine = ReconciliationEngine(store, directory, require_directory_account=True)

        with pytest.raises(NoAccount) as exc_info:
            engine.reconcile(make_profile("stranger@x.com"))

        assert exc_info.value.error_code == "no_account"
        assert directory.create_calls == 0
        assert store.create_calls == 0

    def test_directory_outage_raises_unreachable(self, store):
        engine = ReconciliationEngine(store, FakeDirectory(available=False), require_directory_account=True)

        with pytest.raises(DirectoryUnreachable) as exc_info:
            engine.reconcile(make_profile("a@x.com"))

        assert exc_info.value.error_code == "api_unavailable"

    def test_existing_local_user_still_logs_in_during_outage(self, store):
        existing = store.create_user("a@x.com", "a@x.com", "google", {})
        engine = ReconciliationEngine(store, FakeDirectory(available=False), require_directory_account=True)

        assert engine.reconcile(make_profile("a@x.com")).id == existing.id

    def test_registered_email_is_created_locally(self, store):
        directory = FakeDirectory(records={
            "known@x.com": DirectoryRecord(id="5", email="known@x.com", username="known"),
        })
        engine = ReconciliationEngine(store, directory, require_directory_account=True)

        user = engine.reconcile(make_profile("known@x.com"))

        assert user.username == "known"
        assert user.directory_user_id == "5"


def test_sso_credentials_omit_directory_id_when_absent():
    creds = build_sso_credentials(make_profile())
    assert creds["access_token"] == "access-123"
    assert creds["refresh_token"] == "refresh-456"
    assert creds["profile_id"] == "sub-1"
    assert creds["name"] == "Alice Example"
    assert "directory_user_id" not in creds
