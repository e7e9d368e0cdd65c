from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import requests

log = logging.getLogger("monitor.analysis")


class AnalysisError(RuntimeError):
    pass


class HttpAnalysisInvoker:
    """Hands a trigger to the downstream analysis function (one attempt)."""

    def __init__(self, url: str, token: str = "", timeout_s: float = 10.0, session: Optional[requests.Session] = None):
        self.url = url
        self.token = token
        self.timeout_s = float(timeout_s)
        self.session = session or requests.Session()

    def invoke_sync(self, symbol: str, trigger_id: int) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            r = self.session.post(
                self.url,
                json={"symbol": symbol, "triggerId": trigger_id},
                headers=headers,
                timeout=self.timeout_s,
            )
        except requests.RequestException as e:
            raise AnalysisError(f"request failed: {e}") from e

        if not r.ok:
            raise AnalysisError(f"HTTP {r.status_code}: {r.text[:200]}")

        try:
            return r.json()
        except ValueError:
            return {"status": r.status_code}

    async def invoke(self, symbol: str, trigger_id: int) -> Dict[str, Any]:
        return await asyncio.to_thread(self.invoke_sync, symbol, trigger_id)


def build_invoker(url: str, token: str, timeout_s: float) -> Optional[HttpAnalysisInvoker]:
    if not url:
        log.info("[ANALYSIS] ANALYSIS_URL not set; triggers are recorded without hand-off")
        return None
    return HttpAnalysisInvoker(url, token=token, timeout_s=timeout_s)
