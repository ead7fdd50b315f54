# Overview: Outbound email transport; HTTP send-email endpoint or an in-memory outbox.

from __future__ import annotations

import threading
from dataclasses import dataclass

import httpx
from flask import current_app

from ..errors import ExternalServiceError


@dataclass(frozen=True)
class SentEmail:
    to: str
    subject: str
    html: str


class EmailSender:
    """send(to, subject, html) -> True, or raise ExternalServiceError."""

    def send(self, to: str, subject: str, html: str) -> bool:
        raise NotImplementedError


class HttpEmailSender(EmailSender):
    """
    POSTs {"to", "subject", "html"} as JSON to a send-email endpoint.

    No retries: a failed attempt is reported to the caller, which decides
    whether to surface or swallow it.
    """

    def __init__(self, endpoint_url: str, api_key: str = "", timeout: float = 10.0):
        if not endpoint_url:
            raise ValueError("MAIL_ENDPOINT_URL is required for the http mail backend")
        self.endpoint_url = endpoint_url
        self.api_key = api_key
        self.timeout = timeout

    def send(self, to: str, subject: str, html: str) -> bool:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            resp = httpx.post(
                self.endpoint_url,
                json={"to": to, "subject": subject, "html": html},
                headers=headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ExternalServiceError(
                f"Mail endpoint returned {exc.response.status_code}",
                details={"to": to, "status": exc.response.status_code},
            ) from exc
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"Mail endpoint unreachable: {exc}", details={"to": to}) from exc
        return True


class MemoryEmailSender(EmailSender):
    """Keeps sent messages in an outbox (tests and local development)."""

    def __init__(self):
        self.outbox: list[SentEmail] = []
        self._lock = threading.Lock()

    def send(self, to: str, subject: str, html: str) -> bool:
        with self._lock:
            self.outbox.append(SentEmail(to=to, subject=subject, html=html))
        return True

    def clear(self) -> None:
        with self._lock:
            self.outbox.clear()


def get_email_sender() -> EmailSender:
    """
    Per-app sender selected by MAIL_BACKEND ("memory" or "http").

    Tests may replace app.extensions["quotedesk.mail"] with their own sender.
    """
    sender = current_app.extensions.get("quotedesk.mail")
    if sender is not None:
        return sender

    cfg = current_app.config
    backend = (cfg.get("MAIL_BACKEND") or "memory").lower()
    if backend == "http":
        sender = HttpEmailSender(
            endpoint_url=cfg.get("MAIL_ENDPOINT_URL", ""),
            api_key=cfg.get("MAIL_API_KEY", ""),
            timeout=float(cfg.get("MAIL_TIMEOUT_SECONDS", 10)),
        )
    elif backend == "memory":
        sender = MemoryEmailSender()
    else:
        raise ValueError(f"Unknown MAIL_BACKEND '{backend}'")

    current_app.extensions["quotedesk.mail"] = sender
    return sender
