"""Target Invoker: Ein einzelner ausgehender HTTP-Besuch.

Führt einen Request per httpx aus und liefert immer ein VisitOutcome --
Netzwerkfehler, Timeouts und 5xx werden in das Ergebnis übersetzt und
niemals über diese Grenze hinaus geworfen.

Sensible Header (Authorization, Cookies, API-Keys) werden vor dem
Logging maskiert.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from typing import Any

import httpx

from fangwen import USER_AGENT
from fangwen.errors import ExecutionFailure
from fangwen.models import BODY_METHODS, DEFAULT_TIMEOUT_MILLIS, VisitOutcome, VisitRequest
from fangwen.utils.logging import get_logger

log = get_logger(__name__)

# Erst ab diesem Statuscode gilt ein Besuch als fehlgeschlagen. 4xx-Antworten
# zählen als zugestellt (fachlicher, kein Transportfehler). Reviewbare Policy.
FAILURE_STATUS_THRESHOLD = 500

MASK = "***"

_SENSITIVE_HEADERS = frozenset({
    "authorization",
    "proxy-authorization",
    "cookie",
    "set-cookie",
    "x-api-key",
})
_SENSITIVE_PATTERNS = ("token", "secret", "api-key", "apikey", "api_key", "password")


def _is_sensitive_header(name: str) -> bool:
    lower = name.lower()
    if lower in _SENSITIVE_HEADERS:
        return True
    return any(pat in lower for pat in _SENSITIVE_PATTERNS)


def sanitize_headers(headers: Mapping[str, str] | None) -> dict[str, str]:
    """Gibt eine Kopie der Header zurück, sensible Werte durch ``***`` ersetzt."""
    if not headers:
        return {}
    return {k: (MASK if _is_sensitive_header(k) else v) for k, v in headers.items()}


def merge_headers(user_agent: str, headers: Mapping[str, str] | None) -> dict[str, str]:
    """Legt den User-Agent unter die Aufrufer-Header (Aufrufer gewinnt)."""
    merged = {"User-Agent": user_agent}
    for key, value in (headers or {}).items():
        if key.lower() == "user-agent":
            merged.pop("User-Agent", None)
        merged[key] = value
    return merged


def _response_body(response: httpx.Response) -> Any:
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text


class TargetInvoker:
    """Besucht URLs über einen geteilten ``httpx.AsyncClient``.

    Der Invoker kennt keine Zeitpläne; er wird pro Ausführung vom
    TaskScheduler aufgerufen.
    """

    def __init__(
        self,
        *,
        user_agent: str = USER_AGENT,
        default_timeout_millis: int = DEFAULT_TIMEOUT_MILLIS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialisiert den Invoker.

        Args:
            user_agent: Kennung, die unter die Aufrufer-Header gelegt wird.
            default_timeout_millis: Timeout, wenn der Request keinen eigenen hat.
            transport: Optionaler httpx-Transport (Tests: ``httpx.MockTransport``).
        """
        self.user_agent = user_agent or USER_AGENT
        self.default_timeout_millis = default_timeout_millis
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                transport=self._transport,
                timeout=self.default_timeout_millis / 1000,
                follow_redirects=True,
            )
        return self._client

    async def visit(self, request: VisitRequest) -> VisitOutcome:
        """Führt einen Besuch aus.

        Args:
            request: URL, Methode, Header, Body und Timeout.

        Returns:
            VisitOutcome -- wirft nie.
        """
        method = (request.method or "GET").upper()
        headers = merge_headers(self.user_agent, request.headers)
        timeout_s = (request.timeout_millis or self.default_timeout_millis) / 1000

        log.info(
            "visit_started",
            method=method,
            url=request.url,
            headers=sanitize_headers(headers),
            has_data=request.body is not None,
        )

        kwargs: dict[str, Any] = {"headers": headers, "timeout": timeout_s}
        if request.body is not None and method in BODY_METHODS:
            if isinstance(request.body, (str, bytes)):
                kwargs["content"] = request.body
            else:
                kwargs["json"] = request.body

        start = time.monotonic()
        response: httpx.Response | None = None
        try:
            response = await self._get_client().request(method, request.url, **kwargs)
            if response.status_code >= FAILURE_STATUS_THRESHOLD:
                msg = f"Server antwortete mit {response.status_code} {response.reason_phrase}"
                raise ExecutionFailure(msg, error_code=f"HTTP_{response.status_code}")
        except Exception as exc:  # noqa: BLE001
            duration = int((time.monotonic() - start) * 1000)
            error_code = getattr(exc, "error_code", None) or type(exc).__name__
            status_code = response.status_code if response is not None else None
            log.error(
                "visit_failed",
                method=method,
                url=request.url,
                error=str(exc) or type(exc).__name__,
                code=error_code,
                status_code=status_code,
                duration_ms=duration,
            )
            return VisitOutcome(
                success=False,
                error_message=str(exc) or type(exc).__name__,
                error_code=error_code,
                status_code=status_code,
                duration_millis=duration,
            )

        duration = int((time.monotonic() - start) * 1000)
        body = _response_body(response)
        log.info(
            "visit_succeeded",
            method=method,
            url=request.url,
            status_code=response.status_code,
            status_text=response.reason_phrase,
            duration_ms=duration,
            response_size=len(response.content),
        )
        return VisitOutcome(
            success=True,
            status_code=response.status_code,
            status_text=response.reason_phrase,
            body=body,
            headers=sanitize_headers(dict(response.headers)),
            duration_millis=duration,
        )

    async def aclose(self) -> None:
        """Schließt den geteilten HTTP-Client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
