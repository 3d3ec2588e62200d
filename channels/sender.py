"""
Outbound Sender — per-turn, serialized delivery of response payloads.

Provides:
- SendError: structured delivery failure (403 = permission, not transient)
- HttpTransport: JSON POST to the platform send API via httpx, with retry
- MessageSender: the turn's queue; one payload in flight at a time
- SenderFactory: builds a MessageSender for every turn

Usage:
    factory = SenderFactory(HttpTransport(url), token="page-token")
    sender = factory(sender_id, event, page_id, response_handler)
    sender.send({"recipient": {...}, "message": {"text": "Hi"}})   # enqueue
    result = await sender.flush()                                  # SendResult
"""
from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from models.schemas import Event, SendResult

logger = structlog.get_logger()

PERMISSION_DENIED = 403

Transport = Callable[[dict[str, Any], Optional[str]], Awaitable[Any]]
ResponseHandler = Callable[[Any, dict[str, Any]], Any]
SendErrorHandler = Callable[[Exception, Event], Optional[bool]]


# ══════════════════════════════════════════════════════════════
#  ERRORS
# ══════════════════════════════════════════════════════════════

class SendError(Exception):
    """Delivery failure reported by a transport."""

    def __init__(self, message: str, code: Optional[int] = None, retryable: bool = False):
        self.code = code
        self.retryable = retryable
        super().__init__(message)

    @property
    def is_permission(self) -> bool:
        return self.code == PERMISSION_DENIED


# ══════════════════════════════════════════════════════════════
#  HTTP TRANSPORT
# ══════════════════════════════════════════════════════════════

class HttpTransport:
    """Posts payloads as JSON to the platform send API."""

    def __init__(self, url: str, timeout_s: float = 10.0):
        self.url = url
        self.timeout_s = timeout_s
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_s, connect=5.0))
        return self._client

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(min=1, max=5),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def __call__(self, payload: dict[str, Any], token: Optional[str] = None) -> Any:
        client = await self._get_client()
        params = {"access_token": token} if token else None
        resp = await client.post(self.url, params=params, json=payload)
        if resp.status_code >= 400:
            message = resp.text[:500]
            try:
                error = resp.json().get("error", {})
                message = error.get("message", message)
            except ValueError:
                pass
            raise SendError(message, code=resp.status_code,
                            retryable=resp.status_code >= 500)
        return resp.json()

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()


# ══════════════════════════════════════════════════════════════
#  MESSAGE SENDER
# ══════════════════════════════════════════════════════════════

class MessageSender:
    """
    Delivery queue owned by one turn (and the postbacks it spawns).

    `send()` only enqueues; a single worker task delivers in order. A
    `{"wait": ms}` payload pauses the worker instead of being delivered.
    After a failure the remaining payloads are dropped.
    """

    def __init__(
        self,
        transport: Transport,
        token: Optional[str],
        sender_id: Optional[str],
        event: Optional[Event] = None,
        page_id: Optional[str] = None,
        response_handler: Optional[ResponseHandler] = None,
        on_send_error: Optional[SendErrorHandler] = None,
    ):
        self.sender_id = sender_id
        self.event = event
        self.page_id = page_id
        self.sent: list[dict[str, Any]] = []
        self.responses: list[Any] = []

        self._transport = transport
        self._token = token
        self._response_handler = response_handler
        self._on_send_error = on_send_error
        self._queue: deque[dict[str, Any]] = deque()
        self._worker: Optional[asyncio.Task] = None
        self._error: Optional[Exception] = None

    def send(self, payload: dict[str, Any]) -> None:
        if self._error is not None:
            return
        self._queue.append(payload)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._work())

    async def _work(self) -> None:
        while self._queue:
            payload = self._queue.popleft()
            if "wait" in payload and len(payload) == 1:
                await asyncio.sleep(payload["wait"] / 1000)
                continue
            try:
                response = await self._transport(payload, self._token)
            except Exception as e:
                self._fail(e)
                return
            self.sent.append(payload)
            self.responses.append(response)
            if self._response_handler is not None:
                self._response_handler(response, payload)

    def _fail(self, error: Exception) -> None:
        self._error = error
        self._queue.clear()

        suppressed = False
        if self._on_send_error is not None:
            suppressed = self._on_send_error(error, self.event) is True

        is_permission = isinstance(error, SendError) and error.is_permission
        if is_permission:
            logger.info("send_permission_denied", sender_id=self.sender_id, error=str(error))
        elif not suppressed:
            logger.error("send_failed", sender_id=self.sender_id, error=str(error),
                         sent=len(self.sent))

    async def flush(self) -> SendResult:
        """Wait until everything queued so far is delivered (or failed)."""
        while self._worker is not None and not self._worker.done():
            await self._worker

        if self._error is None:
            return SendResult(status=200, responses=list(self.responses))

        code = getattr(self._error, "code", None)
        status = PERMISSION_DENIED if code == PERMISSION_DENIED else 500
        return SendResult(status=status, responses=list(self.responses),
                          error=str(self._error), code=code)


class SenderFactory:
    """Creates the per-turn MessageSender."""

    def __init__(
        self,
        transport: Transport,
        token: Optional[str] = None,
        on_send_error: Optional[SendErrorHandler] = None,
    ):
        self.transport = transport
        self.token = token
        self.on_send_error = on_send_error

    def __call__(
        self,
        sender_id: Optional[str],
        event: Optional[Event] = None,
        page_id: Optional[str] = None,
        response_handler: Optional[ResponseHandler] = None,
    ) -> MessageSender:
        return MessageSender(
            self.transport, self.token, sender_id, event, page_id,
            response_handler, self.on_send_error,
        )
