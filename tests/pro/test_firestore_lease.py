from __future__ import annotations

from datetime import timedelta

from gcp_adapter import firestore_lease


class _Snapshot:
    def __init__(self, data: dict | None):
        self._data = data

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> dict:
        return dict(self._data or {})


class _Document:
    def __init__(self, store: dict, doc_id: str):
        self.store = store
        self.doc_id = doc_id

    def get(self, transaction=None):
        return _Snapshot(self.store.get(self.doc_id))


class _Collection:
    def __init__(self, store: dict):
        self.store = store

    def document(self, doc_id: str) -> _Document:
        return _Document(self.store, doc_id)


class _Transaction:
    def __init__(self, store: dict):
        self.store = store

    def set(self, doc: _Document, data: dict) -> None:
        self.store[doc.doc_id] = dict(data)

    def delete(self, doc: _Document) -> None:
        self.store.pop(doc.doc_id, None)


class _Client:
    def __init__(self):
        self.store: dict[str, dict] = {}
        self.collections: list[str] = []

    def collection(self, name: str) -> _Collection:
        self.collections.append(name)
        return _Collection(self.store)

    def transaction(self) -> _Transaction:
        return _Transaction(self.store)


def _identity_transactional(func):
    def wrapper(transaction):
        return func(transaction)

    return wrapper


def _provider(monkeypatch, ttl: timedelta):
    monkeypatch.setattr(
        firestore_lease.firestore, "transactional", _identity_transactional
    )
    client = _Client()
    provider = firestore_lease.FirestoreLeaseProvider(
        client=client,
        collection="rollout_leases",
        ttl=ttl,
    )
    return provider, client


def test_firestore_lease_acquire_and_release(monkeypatch):
    provider, client = _provider(monkeypatch, timedelta(seconds=60))

    assert provider.try_acquire("r1", "worker-a")
    assert client.store["r1"]["owner"] == "worker-a"
    assert client.collections[-1] == "rollout_leases"
    assert not provider.try_acquire("r1", "worker-b")
    assert provider.try_acquire("r1", "worker-a")

    provider.release("r1", "worker-b")
    assert "r1" in client.store
    provider.release("r1", "worker-a")
    assert "r1" not in client.store
    provider.release("r1", "worker-a")

    assert provider.try_acquire("r1", "worker-b")


def test_firestore_lease_expired_can_be_taken_over(monkeypatch):
    provider, client = _provider(monkeypatch, timedelta(0))

    assert provider.try_acquire("r1", "worker-a")
    assert provider.try_acquire("r1", "worker-b")
    assert client.store["r1"]["owner"] == "worker-b"
