"""
Notifications
=============
Fire-and-forget status change events for UIs and integrations.

A sink must never affect engine correctness: every delivery error is logged
and dropped.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import httpx

from .models import utc_now

log = logging.getLogger("outreach.notifications")


class NotificationSink(ABC):

    @abstractmethod
    def task_status_changed(self, task_id: str, status: str):
        pass

    @abstractmethod
    def campaign_status_changed(self, campaign_id: str, status: str):
        pass


class LogNotifier(NotificationSink):
    """Default sink. Writes events to the log."""

    def task_status_changed(self, task_id: str, status: str):
        log.info(f"Task {task_id} -> {status}")

    def campaign_status_changed(self, campaign_id: str, status: str):
        log.info(f"Campaign {campaign_id} -> {status}")


class WebhookNotifier(NotificationSink):
    """POST each event as JSON to a URL."""

    def __init__(self, url: str, headers: Optional[Dict[str, str]] = None,
                 timeout: float = 10.0):
        self.url = url
        self.headers = headers or {}
        self.timeout = timeout

    def task_status_changed(self, task_id: str, status: str):
        self._post("task_status_changed", task_id, status)

    def campaign_status_changed(self, campaign_id: str, status: str):
        self._post("campaign_status_changed", campaign_id, status)

    def _post(self, event: str, entity_id: str, status: str):
        payload = {"event": event, "id": entity_id, "status": status, "timestamp": utc_now()}
        try:
            resp = httpx.post(self.url, json=payload, headers=self.headers, timeout=self.timeout)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            log.warning(f"Webhook notification {event} for {entity_id} failed: {e}")


class CompositeNotifier(NotificationSink):
    """Fan out to several sinks. One failing sink does not stop the others."""

    def __init__(self, sinks: List[NotificationSink]):
        self.sinks = list(sinks)

    def task_status_changed(self, task_id: str, status: str):
        for sink in self.sinks:
            try:
                sink.task_status_changed(task_id, status)
            except Exception as e:
                log.warning(f"Notification sink {type(sink).__name__} failed: {e}")

    def campaign_status_changed(self, campaign_id: str, status: str):
        for sink in self.sinks:
            try:
                sink.campaign_status_changed(campaign_id, status)
            except Exception as e:
                log.warning(f"Notification sink {type(sink).__name__} failed: {e}")
