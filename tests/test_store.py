"""Tests for credmarket.store and credmarket.storage — credentials, revocation, backends."""

import threading

import pytest

from credmarket.core import Credential
from credmarket.errors import DuplicateId, NotFound
from credmarket.events import EventBus, EventType
from credmarket.storage import MemoryBackend, SQLiteBackend
from credmarket.store import (
    CredentialStore, RevocationPolicy, RevocationReason, RevocationRecord,
)


def make_credential(cred_id="cred-1", type_="age-verification", **claims):
    return Credential(id=cred_id, type=type_, issuer="did:air:id:test:issuer",
                      claims=claims or {"age": 25})


@pytest.fixture
def memory():
    return MemoryBackend()


@pytest.fixture
def sqlite_backend(tmp_path):
    db = SQLiteBackend(str(tmp_path / "test.db"))
    yield db
    db.close()


@pytest.fixture
def store():
    return CredentialStore()


# ─── StorageBackend interface (parametrized) ───────────────────────

ALL_BACKENDS = ["memory", "sqlite_backend"]


class TestBackends:
    @pytest.fixture(params=ALL_BACKENDS)
    def backend(self, request):
        return request.getfixturevalue(request.param)

    def test_save_and_load(self, backend):
        backend.save("credential:a", {"id": "a", "n": 1})
        assert backend.load("credential:a") == {"id": "a", "n": 1}

    def test_load_missing(self, backend):
        assert backend.load("nope") is None

    def test_overwrite(self, backend):
        backend.save("k", {"v": 1})
        backend.save("k", {"v": 2})
        assert backend.load("k") == {"v": 2}

    def test_exists(self, backend):
        assert not backend.exists("k")
        backend.save("k", {"v": 1})
        assert backend.exists("k")

    def test_list_keys_prefix(self, backend):
        backend.save("credential:a", {})
        backend.save("credential:b", {})
        backend.save("revocation:a", {})
        assert sorted(backend.list_keys("credential:")) == ["credential:a", "credential:b"]
        assert len(backend.list_keys()) == 3

    def test_loaded_data_is_a_copy(self, backend):
        backend.save("k", {"claims": {"age": 25}})
        loaded = backend.load("k")
        loaded["claims"]["age"] = 99
        assert backend.load("k") == {"claims": {"age": 25}}


class TestSQLitePersistence:
    def test_survives_reopen(self, tmp_path):
        path = str(tmp_path / "creds.db")
        first = CredentialStore(SQLiteBackend(path))
        first.put(make_credential("persisted"))
        first.revoke("persisted", RevocationReason.FRAUD)
        first.backend.close()

        second = CredentialStore(SQLiteBackend(path))
        assert "persisted" in second
        assert second.is_revoked("persisted")
        assert second.get("persisted").revoked is True
        second.backend.close()


# ─── Credential ────────────────────────────────────────────────────

class TestCredential:
    def test_dict_uses_wire_names(self):
        c = make_credential()
        d = c.to_dict()
        assert d["issuedAt"] == c.issued_at
        assert Credential.from_dict(d) == c

    def test_is_active(self):
        c = make_credential()
        assert c.is_active
        c.revoked = True
        assert not c.is_active

    def test_unverified_is_not_active(self):
        c = Credential(id="x", type="trust-score", claims={"trustScore": 90}, verified=False)
        assert not c.is_active

    def test_presented_shape_without_id(self):
        c = Credential.from_dict({"type": "trust-score", "trustScore": 80})
        assert c.id == ""
        assert c.claims == {"trustScore": 80}

    def test_explicit_claims_win_over_top_level(self):
        c = Credential.from_dict({"id": "t1", "type": "trust-score", "trustScore": 10,
                                  "claims": {"trustScore": 80}, "verified": False})
        assert c.claims == {"trustScore": 80}
        assert c.verified is False


# ─── CredentialStore ───────────────────────────────────────────────

class TestCredentialStore:
    def test_put_and_get(self, store):
        store.put(make_credential())
        got = store.get("cred-1")
        assert got.claims == {"age": 25}
        assert got.revoked is False

    def test_duplicate_id(self, store):
        store.put(make_credential())
        with pytest.raises(DuplicateId) as exc:
            store.put(make_credential())
        assert exc.value.record_id == "cred-1"

    def test_put_requires_id(self, store):
        with pytest.raises(ValueError):
            store.put(Credential.from_dict({"type": "human-verification"}))
        assert len(store) == 0

    def test_get_unknown(self, store):
        with pytest.raises(NotFound):
            store.get("missing")

    def test_get_returns_copy(self, store):
        store.put(make_credential())
        store.get("cred-1").claims["age"] = 3
        assert store.get("cred-1").claims["age"] == 25

    def test_len_and_contains(self, store):
        store.put(make_credential("a"))
        store.put(make_credential("b"))
        assert len(store) == 2
        assert "a" in store
        assert "z" not in store


class TestRevocation:
    def test_revoke(self, store):
        store.put(make_credential())
        record = store.revoke("cred-1", RevocationReason.KEY_COMPROMISE, revoked_by="admin")
        assert isinstance(record, RevocationRecord)
        assert record.reason == "key_compromise"
        assert store.is_revoked("cred-1")
        assert store.get("cred-1").revoked is True

    def test_revoke_is_idempotent(self, store):
        store.put(make_credential())
        first = store.revoke("cred-1", "fraud", revoked_by="alice")
        second = store.revoke("cred-1", "superseded", revoked_by="bob")
        assert second.to_dict() == first.to_dict()
        assert store.revoked_ids == {"cred-1"}
        assert store.is_revoked("cred-1")

    def test_revoke_unknown(self, store):
        with pytest.raises(NotFound):
            store.revoke("ghost")

    def test_record_wire_shape(self, store):
        store.put(make_credential())
        d = store.revoke("cred-1", "fraud", revoked_by="admin").to_dict()
        assert d["credentialId"] == "cred-1"
        assert d["revoked"] is True
        assert d["revokedBy"] == "admin"
        assert d["revokedAt"]

    def test_status(self, store):
        store.put(make_credential())
        assert store.revocation_status("cred-1") == {
            "credentialId": "cred-1", "isRevoked": False, "status": "ACTIVE",
        }
        store.revoke("cred-1")
        assert store.revocation_status("cred-1")["status"] == "REVOKED"

    def test_get_revocation(self, store):
        store.put(make_credential())
        assert store.get_revocation("cred-1") is None
        store.revoke("cred-1", "fraud")
        assert store.get_revocation("cred-1").reason == "fraud"

    def test_unknown_id_fail_open(self, store):
        assert store.is_revoked("never-seen") is False

    def test_unknown_id_fail_closed(self):
        store = CredentialStore(revocation_policy=RevocationPolicy.FAIL_CLOSED)
        assert store.is_revoked("never-seen") is True

    def test_policy_from_string(self):
        store = CredentialStore(revocation_policy="fail-closed")
        assert store.revocation_policy is RevocationPolicy.FAIL_CLOSED

    def test_revocation_event(self):
        bus = EventBus()
        store = CredentialStore(event_bus=bus)
        store.put(make_credential())
        store.revoke("cred-1", "fraud", revoked_by="admin")
        store.revoke("cred-1", "fraud", revoked_by="admin")
        events = bus.history(EventType.CREDENTIAL_REVOKED.value)
        assert len(events) == 1
        assert events[0].data["credentialId"] == "cred-1"

    def test_concurrent_revokes_produce_one_record(self, store):
        store.put(make_credential())
        records = []

        def worker(n):
            records.append(store.revoke("cred-1", f"reason-{n}"))

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len({r.reason for r in records}) == 1
        assert store.is_revoked("cred-1")
