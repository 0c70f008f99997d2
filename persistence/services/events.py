"""
Domain events.

A typed publish/subscribe bus built on :class:`django.dispatch.Signal`: one
signal per topic, one payload dataclass per topic. Subscribers receive the
payload object; a failing subscriber is logged and does not stop the others.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from django.dispatch import Signal

logger = logging.getLogger(__name__)

PATIENT_CHANGED = "patient.changed"
ESTIMATE_CREATED = "estimate.created"
ESTIMATE_UPDATED = "estimate.updated"
SYNC_COMPLETE = "sync.complete"


@dataclass(frozen=True)
class PatientChanged:
    id: str
    patch: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EstimateChanged:
    id: str
    patient_id: str | None
    services: list[dict[str, Any]] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SyncComplete:
    type: str  # "patient" | "estimate"
    id: str
    payload: dict[str, Any] = field(default_factory=dict)


TOPICS: dict[str, type] = {
    PATIENT_CHANGED: PatientChanged,
    ESTIMATE_CREATED: EstimateChanged,
    ESTIMATE_UPDATED: EstimateChanged,
    SYNC_COMPLETE: SyncComplete,
}


class EventBus:
    def __init__(self) -> None:
        self._signals = {topic: Signal() for topic in TOPICS}

    def _signal(self, topic: str) -> Signal:
        try:
            return self._signals[topic]
        except KeyError:
            raise ValueError(f"unknown topic: {topic}") from None

    def subscribe(self, topic: str, handler: Callable[[Any], Any]) -> Callable[[], None]:
        """Register ``handler`` for ``topic``; returns an unsubscribe callable."""
        signal = self._signal(topic)

        def receiver(sender, event, **kwargs):
            return handler(event)

        signal.connect(receiver, weak=False)
        return lambda: signal.disconnect(receiver)

    def publish(self, topic: str, event: Any) -> int:
        """Deliver ``event`` to every subscriber; returns how many succeeded."""
        signal = self._signal(topic)
        expected = TOPICS[topic]
        if not isinstance(event, expected):
            raise TypeError(f"{topic} expects {expected.__name__}, got {type(event).__name__}")
        delivered = 0
        for receiver, result in signal.send_robust(sender=self.__class__, event=event):
            if isinstance(result, Exception):
                logger.error("subscriber for %s failed", topic, exc_info=result)
            else:
                delivered += 1
        return delivered
