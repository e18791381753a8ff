"""JSON-file metrics sink for AI interactions.

Layout under ``log_dir``:

- ``ai.log``: one JSON object per line (interaction, error, feedback, status)
- ``interactions/<id>.json``: full record of one interaction
- ``ai_metrics.json``: aggregate counters

Metrics are best-effort. Write failures are logged and never propagate to
the send/receive path. Pass ``log_dir=None`` for an in-memory sink.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from chatterm.core.errors import PersistenceError
from chatterm.services.base import MetricsSink, SendStatus

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4


class ErrorCounts(BaseModel):
    total: int = 0
    errors: int = 0


class FeedbackCounts(BaseModel):
    positive: int = 0
    negative: int = 0


class DeliveryCounts(BaseModel):
    total: int = 0
    sent: int = 0
    failed: int = 0


class AIMetrics(BaseModel):
    """Aggregate counters persisted to ``ai_metrics.json``."""

    total_requests: int = 0
    total_tokens: int = 0
    total_response_time_ms: int = 0
    average_response_time_ms: float = 0.0
    prompt_usage: dict[str, int] = Field(default_factory=dict)
    errors: ErrorCounts = Field(default_factory=ErrorCounts)
    feedback: FeedbackCounts = Field(default_factory=FeedbackCounts)
    delivery: DeliveryCounts = Field(default_factory=DeliveryCounts)
    recent_interactions: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def error_rate(self) -> float:
        if not self.errors.total:
            return 0.0
        return self.errors.errors / self.errors.total

    @property
    def delivery_rate(self) -> float:
        if not self.delivery.total:
            return 0.0
        return self.delivery.sent / self.delivery.total


def estimate_tokens(text: Optional[str]) -> int:
    if not text:
        return 0
    return -(-len(text) // CHARS_PER_TOKEN)


def new_interaction_id(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"{now.strftime('%Y-%m-%d')}_{uuid.uuid4().hex}"


class JsonMetricsSink(MetricsSink):
    """MetricsSink writing JSON files under ``log_dir``."""

    def __init__(self, log_dir: Optional[Path] = None, recent_limit: int = 20) -> None:
        self.log_dir = Path(log_dir) if log_dir is not None else None
        self.recent_limit = recent_limit
        self.metrics = AIMetrics()
        self._records: dict[str, dict[str, Any]] = {}
        self._load()

    @property
    def log_file(self) -> Optional[Path]:
        return self.log_dir / "ai.log" if self.log_dir else None

    @property
    def metrics_file(self) -> Optional[Path]:
        return self.log_dir / "ai_metrics.json" if self.log_dir else None

    @property
    def interactions_dir(self) -> Optional[Path]:
        return self.log_dir / "interactions" if self.log_dir else None

    def _load(self) -> None:
        path = self.metrics_file
        if path is None or not path.exists():
            return
        try:
            self.metrics = AIMetrics.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable metrics file {path}: {e}")
            self.metrics = AIMetrics()

    # -- MetricsSink ----------------------------------------------------------

    def record_interaction(self, data: dict[str, Any]) -> str:
        interaction_id = new_interaction_id()
        timestamp = datetime.now().isoformat()
        response_time = int(data.get("response_time_ms") or 0)
        slug = data.get("prompt_slug")
        tokens = sum(
            estimate_tokens(data.get(key)) for key in ("prompt", "context", "content", "response")
        )

        m = self.metrics
        m.total_requests += 1
        m.total_tokens += tokens
        m.total_response_time_ms += response_time
        m.average_response_time_ms = m.total_response_time_ms / m.total_requests
        m.errors.total += 1
        if slug:
            m.prompt_usage[slug] = m.prompt_usage.get(slug, 0) + 1

        record = {
            "id": interaction_id,
            "timestamp": timestamp,
            **data,
            "estimated_tokens": tokens,
            "sent_status": SendStatus.UNKNOWN.value,
            "feedback": None,
        }
        self._records[interaction_id] = record
        # Feedback and send status only ever target recent drafts.
        while len(self._records) > max(self.recent_limit, 1):
            self._records.pop(next(iter(self._records)))
        m.recent_interactions.insert(
            0,
            {
                "id": interaction_id,
                "timestamp": timestamp,
                "prompt_slug": slug,
                "model": data.get("model"),
                "response_time_ms": response_time,
                "sent_status": SendStatus.UNKNOWN.value,
            },
        )
        del m.recent_interactions[self.recent_limit :]

        self._safe(self._append_log, {"type": "interaction", **record})
        self._safe(self._write_record, record)
        self._safe(self._save_metrics)
        logger.info(f"Recorded AI interaction {interaction_id}")
        return interaction_id

    def record_error(self, data: dict[str, Any]) -> None:
        self.metrics.errors.total += 1
        self.metrics.errors.errors += 1
        entry = {"type": "error", "timestamp": datetime.now().isoformat(), **data}
        self._safe(self._append_log, entry)
        self._safe(self._save_metrics)
        logger.info(f"Recorded AI error: {data.get('error')}")

    def record_feedback(self, interaction_id: str, positive: bool, note: str = "") -> None:
        record = self._records.get(interaction_id)
        previous = record.get("feedback") if record is not None else None
        counts = self.metrics.feedback
        if previous is not None:
            # Last write wins: retract the earlier vote.
            if previous["positive"]:
                counts.positive -= 1
            else:
                counts.negative -= 1
        if positive:
            counts.positive += 1
        else:
            counts.negative += 1

        feedback = {
            "positive": positive,
            "note": note,
            "timestamp": datetime.now().isoformat(),
        }
        if record is not None:
            record["feedback"] = feedback
            self._safe(self._write_record, record)
        self._safe(
            self._append_log,
            {"type": "feedback", "interaction_id": interaction_id, **feedback},
        )
        self._safe(self._save_metrics)

    def update_send_status(
        self,
        interaction_id: str,
        status: SendStatus,
        error: Optional[str] = None,
    ) -> None:
        record = self._records.get(interaction_id)
        if record is None:
            logger.warning(f"Unknown interaction id {interaction_id}")
            return
        if record["sent_status"] != SendStatus.UNKNOWN.value:
            logger.debug(f"Send status of {interaction_id} already resolved")
            return
        if status is SendStatus.UNKNOWN:
            return

        record["sent_status"] = status.value
        record["send_error"] = error
        delivery = self.metrics.delivery
        delivery.total += 1
        if status is SendStatus.SENT:
            delivery.sent += 1
        else:
            delivery.failed += 1
        for item in self.metrics.recent_interactions:
            if item["id"] == interaction_id:
                item["sent_status"] = status.value
                break

        self._safe(self._write_record, record)
        self._safe(
            self._append_log,
            {
                "type": "status",
                "interaction_id": interaction_id,
                "sent_status": status.value,
                "error": error,
                "timestamp": datetime.now().isoformat(),
            },
        )
        self._safe(self._save_metrics)

    def get_metrics(self) -> dict[str, Any]:
        data = self.metrics.model_dump(mode="json")
        data["error_rate"] = self.metrics.error_rate
        data["delivery_rate"] = self.metrics.delivery_rate
        return data

    def get_interaction(self, interaction_id: str) -> Optional[dict[str, Any]]:
        return self._records.get(interaction_id)

    # -- persistence ----------------------------------------------------------

    def _safe(self, fn, *args) -> None:
        if self.log_dir is None:
            return
        try:
            fn(*args)
        except PersistenceError as e:
            logger.warning(f"Metrics write failed: {e}")

    def _append_log(self, entry: dict[str, Any]) -> None:
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            with open(self.log_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, default=str) + "\n")
        except OSError as e:
            raise PersistenceError(f"Failed to append to {self.log_file}: {e}") from e

    def _write_record(self, record: dict[str, Any]) -> None:
        path = self.interactions_dir / f"{record['id']}.json"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(record, indent=2, default=str), encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Failed to write {path}: {e}") from e

    def _save_metrics(self) -> None:
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self.metrics_file.write_text(self.metrics.model_dump_json(indent=2), encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Failed to write {self.metrics_file}: {e}") from e
