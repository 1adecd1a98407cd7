from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

from kafka import KafkaProducer

from video_pipeline.models.domain import Job, JobStatus, StageState


def event_type(status: JobStatus) -> str:
    if status.terminal:
        return f"video.job.{status.value}"
    return "video.job.updated"


def job_event(job: Job) -> dict[str, Any]:
    """Compact progress event for one job snapshot."""
    running = next((record.name for record in job.stages if record.state == StageState.RUNNING), None)
    return {
        "type": event_type(job.status),
        "job_id": str(job.id),
        "status": job.status.value,
        "progress": job.progress,
        "current_step": job.current_step,
        "stage": running,
        "result": job.result.model_dump(mode="json") if job.result else None,
        "error": job.error.model_dump(mode="json") if job.error else None,
        "emitted_at": datetime.utcnow().isoformat(),
    }


class JobEventPublisher:
    """Pushes job progress to a Kafka topic, one message per visible change.

    Updates that leave status, progress and step untouched (stage bookkeeping,
    timestamps) are not re-sent. Messages are keyed by job id so a consumer
    sees each job's events in order.
    """

    def __init__(self, bootstrap_servers: str, topic: str, logger: logging.Logger | None = None) -> None:
        if not bootstrap_servers:
            raise ValueError("bootstrap_servers is required")
        if not topic:
            raise ValueError("topic is required")
        self.topic = topic
        self.log = logger or logging.getLogger(__name__)
        self._last_sent: dict[str, tuple[str, int, str]] = {}
        self._producer = KafkaProducer(
            bootstrap_servers=bootstrap_servers,
            key_serializer=str.encode,
            value_serializer=lambda event: json.dumps(event, ensure_ascii=False).encode("utf-8"),
            linger_ms=5,
        )

    def publish_job(self, job: Job) -> bool:
        """Send an event for ``job`` unless nothing a subscriber shows has changed."""
        job_id = str(job.id)
        signature = (job.status.value, job.progress, job.current_step)
        if self._last_sent.get(job_id) == signature:
            return False
        event = job_event(job)
        try:
            self._producer.send(
                self.topic,
                event,
                key=job_id,
                headers=[("event-type", event["type"].encode("utf-8"))],
            )
        except Exception:
            self.log.warning(
                "job event not sent",
                extra={"job_id": job_id, "topic": self.topic, "event": event["type"]},
                exc_info=True,
            )
            return False
        if job.status.terminal:
            self._last_sent.pop(job_id, None)
        else:
            self._last_sent[job_id] = signature
        return True

    def close(self) -> None:
        self._last_sent.clear()
        try:
            self._producer.flush()
            self._producer.close()
        except Exception:
            self.log.debug("job event producer close failed", exc_info=True)
