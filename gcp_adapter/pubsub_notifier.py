from __future__ import annotations

import json

from google.cloud import pubsub_v1

from cadence_core.events.types import LifecycleEvent, event_to_dict


class PubSubLifecycleNotifier:
    def __init__(self, topic: str) -> None:
        self.topic = topic
        self.client = pubsub_v1.PublisherClient()

    def publish(self, event: LifecycleEvent) -> None:
        self.publish_event(event)

    def publish_event(self, event: LifecycleEvent) -> str:
        data = json.dumps(event_to_dict(event), ensure_ascii=True).encode("utf-8")
        future = self.client.publish(
            self.topic,
            data,
            tenant=event.tenant,
            event_type=event.event_type,
        )
        return future.result(timeout=30)
