from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import requests

log = logging.getLogger("monitor.notifier")


class HttpNotifier:
    """
    Best-effort JSON POST to a notification endpoint.
    One attempt, no retry. Returns True on 2xx.
    """

    def __init__(self, url: str, token: str = "", timeout_s: float = 10.0, session: Optional[requests.Session] = None):
        self.url = url
        self.token = token
        self.timeout_s = float(timeout_s)
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def send_sync(self, payload: Dict[str, Any]) -> bool:
        try:
            r = self.session.post(self.url, json=payload, headers=self._headers(), timeout=self.timeout_s)
        except requests.RequestException as e:
            log.error("[NOTIFY] POST %s failed: %s", self.url, e)
            return False
        if not r.ok:
            log.error("[NOTIFY] POST %s returned %s: %s", self.url, r.status_code, r.text[:200])
            return False
        return True

    async def send(self, payload: Dict[str, Any]) -> bool:
        return await asyncio.to_thread(self.send_sync, payload)


class LogNotifier:
    """Used when no endpoint is configured: events are only logged."""

    def __init__(self, name: str = "notify"):
        self.name = name

    async def send(self, payload: Dict[str, Any]) -> bool:
        log.info("[%s] %s", self.name.upper(), payload)
        return True


def build_notifier(url: str, token: str, timeout_s: float, name: str):
    if url:
        return HttpNotifier(url, token=token, timeout_s=timeout_s)
    return LogNotifier(name)
