"""Post-ready notifications.

WHY: Alignment of a long video takes anywhere from minutes to hours, so the
author is told when the digest is ready instead of being asked to poll.

HOW: A Notifier receives the READY record. LogNotifier just logs it.
WebhookNotifier posts a small JSON summary to a configured URL with httpx.
The orchestrator calls notify() from its best-effort post-ready step, so
any exception raised here is logged there and never fails the digest.

RULES:
- notify() may raise; callers treat notification as best-effort
- The webhook payload never includes the transcript itself
"""

from __future__ import annotations

import abc
import logging
from typing import Any, Dict, Optional

import httpx

from video_digest.core.ir import DigestRecord

logger = logging.getLogger(__name__)


def ready_payload(record: DigestRecord) -> Dict[str, Any]:
    words = record.align_trans.words if record.align_trans else []
    return {
        "event": "digest.ready",
        "digestId": record.id,
        "videoId": record.video_id,
        "title": record.title,
        "videoLength": record.video_length,
        "wordCount": len(words),
    }


class Notifier(abc.ABC):
    """Tells someone a digest is ready for editing."""

    @abc.abstractmethod
    def notify(self, record: DigestRecord) -> None:
        raise NotImplementedError


class LogNotifier(Notifier):

    def notify(self, record: DigestRecord) -> None:
        logger.info(
            "Digest %s (%s) is ready for editing", record.id, record.title or record.video_id
        )


class WebhookNotifier(Notifier):
    """POSTs ready_payload() as JSON to ``url``."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._transport = transport

    def notify(self, record: DigestRecord) -> None:
        with httpx.Client(timeout=self.timeout, transport=self._transport) as http:
            resp = http.post(self.url, json=ready_payload(record))
            resp.raise_for_status()
        logger.info("Notified %s for digest %s", self.url, record.id)
