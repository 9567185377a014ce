"""Redis-backed job broker: work queue, processing registry, results channel."""

from __future__ import annotations

import json
from typing import Any, Protocol

import redis

from skill_worker.config import BrokerSettings
from skill_worker.orchestrator.models import ProcessingRecord


class JobBroker(Protocol):
    """Broker operations used by the queue loop."""

    def ping(self) -> bool:
        """Verify the broker connection."""

    def pop_job(self) -> str | None:
        """Wait up to one poll interval for a serialized job; ``None`` when none arrived."""

    def mark_processing(self, job_id: str, record: ProcessingRecord) -> None:
        """Register a job as in progress."""

    def clear_processing(self, job_id: str) -> None:
        """Remove the in-progress entry of a job."""

    def publish_result(self, payload: dict[str, Any]) -> None:
        """Publish a serialized job result."""


class RedisJobBroker:
    """`JobBroker` on top of Redis lists, hashes, and pub/sub."""

    def __init__(self, *, client: redis.Redis, settings: BrokerSettings) -> None:
        self.client = client
        self.settings = settings

    @classmethod
    def from_settings(cls, settings: BrokerSettings) -> RedisJobBroker:
        client = redis.Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=settings.socket_timeout_seconds,
        )
        return cls(client=client, settings=settings)

    def ping(self) -> bool:
        return bool(self.client.ping())

    def pop_job(self) -> str | None:
        # Bounded wait so the caller can notice a stop request between rounds.
        popped = self.client.blpop(
            [self.settings.job_queue],
            timeout=self.settings.poll_timeout_seconds,
        )
        if not popped:
            return None
        _, payload = popped
        return payload

    def push_job(self, payload: str) -> int:
        return int(self.client.rpush(self.settings.job_queue, payload))

    def mark_processing(self, job_id: str, record: ProcessingRecord) -> None:
        self.client.hset(self.settings.processing_key, job_id, record.to_json())

    def clear_processing(self, job_id: str) -> None:
        self.client.hdel(self.settings.processing_key, job_id)

    def publish_result(self, payload: dict[str, Any]) -> None:
        self.client.publish(
            self.settings.results_channel,
            json.dumps(payload, ensure_ascii=False, default=str),
        )

    def close(self) -> None:
        self.client.close()
