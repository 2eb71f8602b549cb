from __future__ import annotations

from datetime import timedelta

from google.cloud import firestore

from cadence_core.config import Config, get_config
from cadence_core.events.types import LifecycleNotifier
from cadence_core.leases.types import LeaseProvider
from cadence_core.runtime import (
    Runtime,
    build_lease_provider,
    build_notifier,
)
from cadence_core.runtime import build_runtime as build_core_runtime
from gcp_adapter.firestore_lease import FirestoreLeaseProvider
from gcp_adapter.pubsub_notifier import PubSubLifecycleNotifier


def build_gcp_notifier(config: Config) -> LifecycleNotifier:
    if config.notifier_backend == "pubsub":
        if not config.pubsub_topic:
            raise ValueError("PUBSUB_TOPIC is required for the pubsub notifier")
        return PubSubLifecycleNotifier(config.pubsub_topic)
    return build_notifier(config)


def build_gcp_lease_provider(config: Config) -> LeaseProvider:
    if config.lease_backend == "firestore":
        return FirestoreLeaseProvider(
            client=firestore.Client(),
            collection=config.lease_collection,
            ttl=timedelta(seconds=config.lease_ttl_seconds),
        )
    return build_lease_provider(config)


def build_runtime(config: Config | None = None) -> Runtime:
    config = config or get_config()
    return build_core_runtime(
        config,
        notifier=build_gcp_notifier(config),
        leases=build_gcp_lease_provider(config),
    )
