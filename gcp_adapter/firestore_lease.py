from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from google.cloud import firestore

from cadence_core.errors import LeaseUnavailableError


@dataclass(frozen=True)
class FirestoreLeaseProvider:
    """Rollout leases as Firestore documents keyed by rollout id.

    Acquire and release both run in a transaction so two workers racing for
    the same expired lease cannot both win.
    """

    client: firestore.Client
    collection: str
    ttl: timedelta

    def try_acquire(self, rollout_id: str, owner: str) -> bool:
        doc_ref = self.client.collection(self.collection).document(rollout_id)
        now = datetime.now(timezone.utc)

        @firestore.transactional
        def _txn(transaction: firestore.Transaction) -> bool:
            snapshot = doc_ref.get(transaction=transaction)
            if snapshot.exists:
                data = snapshot.to_dict() or {}
                holder = data.get("owner")
                expires_at = data.get("expires_at")
                if holder != owner and expires_at and expires_at > now:
                    return False
            transaction.set(
                doc_ref,
                {
                    "rollout_id": rollout_id,
                    "owner": owner,
                    "acquired_at": now,
                    "expires_at": now + self.ttl,
                },
            )
            return True

        try:
            return _txn(self.client.transaction())
        except Exception as exc:  # pragma: no cover - infrastructure errors
            raise LeaseUnavailableError(
                f"Firestore lease acquire failed: {exc}"
            ) from exc

    def release(self, rollout_id: str, owner: str) -> None:
        doc_ref = self.client.collection(self.collection).document(rollout_id)

        @firestore.transactional
        def _txn(transaction: firestore.Transaction) -> None:
            snapshot = doc_ref.get(transaction=transaction)
            if not snapshot.exists:
                return
            data = snapshot.to_dict() or {}
            if data.get("owner") == owner:
                transaction.delete(doc_ref)

        try:
            _txn(self.client.transaction())
        except Exception as exc:  # pragma: no cover - infrastructure errors
            raise LeaseUnavailableError(
                f"Firestore lease release failed: {exc}"
            ) from exc
