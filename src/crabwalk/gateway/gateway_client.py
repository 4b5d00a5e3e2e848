"""
gateway/gateway_client.py — Async Gateway Client

Owns one logical WebSocket connection to the agent gateway: the
challenge/response handshake, request/response correlation and the
multi-subscriber event stream. Knows nothing about sessions, actions or
layout — those live in crabwalk.monitor and crabwalk.layout.

Usage:
    async with GatewayClient("ws://127.0.0.1:18789", token="...") as client:
        sessions = await client.list_sessions(active_minutes=60)
        unsubscribe = client.on_event(lambda frame: print(frame.event))

State machine:
    DISCONNECTED --connect()--> CONNECTING --hello-ok--> CONNECTED
    CONNECTED --unclean close--> DISCONNECTED (reconnect timer armed)
    reconnect timer fires --> CONNECTING
    CONNECTED --disconnect()--> DISCONNECTED (no timer)
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from crabwalk.exceptions import (
    AuthFailure,
    ConnectionTimeout,
    Disconnected,
    GatewayConnectionError,
    GatewayError,
    ProtocolParseError,
    RemoteError,
    RequestTimeout,
)
from crabwalk.gateway.protocol import (
    CHALLENGE_EVENT,
    ClientInfo,
    ErrorShape,
    EventFrame,
    HelloOk,
    RequestFrame,
    ResponseFrame,
    SessionInfo,
    as_hello_ok,
    create_connect_params,
    parse_challenge,
    parse_frame,
    sessions_list_params,
)
from crabwalk.observability.logger import get_logger

log = get_logger(__name__)

DEFAULT_URL = "ws://127.0.0.1:18789"

CONNECT_TIMEOUT_SECONDS = 10.0
REQUEST_TIMEOUT_SECONDS = 30.0
RECONNECT_DELAY_SECONDS = 5.0

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006

MAX_FRAME_BYTES = 4 * 2**20

EventCallback = Callable[[EventFrame], None]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING   = "connecting"
    CONNECTED    = "connected"


@dataclass
class PendingRequest:
    method: str
    future: asyncio.Future


def _settle(future: Optional[asyncio.Future], exc: BaseException) -> None:
    """Fail a handshake future that may have no waiter left."""
    if future is None or future.done():
        return
    future.set_exception(exc)
    # Mark retrieved so an abandoned attempt does not warn at GC time.
    future.exception()


class GatewayClient:
    """
    Async WebSocket client for the agent gateway.

    Construct one per connection target and pass it to whatever needs it;
    the client never reads configuration on its own.
    """

    def __init__(
        self,
        url: str = DEFAULT_URL,
        token: Optional[str] = None,
        *,
        client_info: Optional[ClientInfo] = None,
        connect_timeout: float = CONNECT_TIMEOUT_SECONDS,
        request_timeout: float = REQUEST_TIMEOUT_SECONDS,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
    ):
        self._url = url
        self._token = token
        self._client_info = client_info or ClientInfo()
        self._connect_timeout = connect_timeout
        self._request_timeout = request_timeout
        self._reconnect_delay = reconnect_delay

        self._ws = None
        self._state = ConnectionState.DISCONNECTED
        self._hello: Optional[HelloOk] = None
        self._reader_task: Optional[asyncio.Task] = None

        self._connect_future: Optional[asyncio.Future] = None
        self._handshake_id: Optional[str] = None

        self._request_seq = 0
        self._pending: dict[str, PendingRequest] = {}  # request id → pending
        self._listeners: list[EventCallback] = []

        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._closing = False

    async def __aenter__(self) -> "GatewayClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.disconnect()

    # ─────────────────────────────────────────────────────────────────────────
    # Introspection
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def hello(self) -> Optional[HelloOk]:
        return self._hello

    @property
    def pending_requests(self) -> int:
        return len(self._pending)

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    # ─────────────────────────────────────────────────────────────────────────
    # Connection lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def connect(self) -> HelloOk:
        """
        Open the socket and complete the handshake.

        Idempotent: returns the stored HelloOk when already connected, and
        joins the in-flight attempt when one is running. The socket open and
        the handshake share one deadline of `connect_timeout` seconds.
        """
        if self._state is ConnectionState.CONNECTED and self._hello is not None:
            return self._hello
        if self._state is ConnectionState.CONNECTING and self._connect_future is not None:
            return await asyncio.shield(self._connect_future)

        loop = asyncio.get_running_loop()
        self._cancel_reconnect()
        self._closing = False
        self._hello = None
        self._handshake_id = None
        self._state = ConnectionState.CONNECTING
        attempt = loop.create_future()
        self._connect_future = attempt
        deadline = loop.time() + self._connect_timeout

        log.info("gateway_client.connecting", url=self._url)

        try:
            ws = await asyncio.wait_for(
                websockets.connect(self._url, max_size=MAX_FRAME_BYTES),
                timeout=self._connect_timeout,
            )
        except asyncio.TimeoutError:
            exc = ConnectionTimeout(self._url, self._connect_timeout)
            self._abandon_attempt(attempt, exc)
            log.warning("gateway_client.connect_timeout", url=self._url)
            raise exc from None
        except (OSError, WebSocketException) as e:
            exc = GatewayConnectionError(f"Failed to open WebSocket to {self._url}: {e}")
            self._abandon_attempt(attempt, exc)
            log.warning("gateway_client.connect_failed", url=self._url, error=str(e))
            raise exc from e

        if self._connect_future is not attempt:
            # disconnect() ran while the socket was opening
            await ws.close(code=NORMAL_CLOSURE)
            raise Disconnected("Disconnected while connecting")

        self._ws = ws
        self._reader_task = asyncio.create_task(self._reader_loop(ws))

        remaining = max(0.0, deadline - loop.time())
        try:
            hello = await asyncio.wait_for(asyncio.shield(attempt), timeout=remaining)
        except asyncio.TimeoutError:
            exc = ConnectionTimeout(self._url, self._connect_timeout)
            _settle(attempt, exc)
            log.warning("gateway_client.handshake_timeout", url=self._url)
            await self._abort(ws)
            raise exc from None
        except GatewayError as e:
            log.warning("gateway_client.handshake_failed", url=self._url, error=str(e))
            await self._abort(ws)
            raise

        log.info(
            "gateway_client.connected",
            url=self._url,
            protocol=hello.protocol,
            methods=len(hello.methods),
            presence=hello.presence_count,
        )
        return hello

    async def disconnect(self) -> None:
        """
        Close the connection cleanly. Cancels any pending reconnect; no
        reconnection follows until connect() is called again.
        """
        self._closing = True
        self._cancel_reconnect()
        if self._reconnect_task is not None and self._reconnect_task is not asyncio.current_task():
            self._reconnect_task.cancel()
        self._reconnect_task = None

        ws, reader = self._ws, self._reader_task
        self._ws = None
        self._reader_task = None
        self._state = ConnectionState.DISCONNECTED
        self._hello = None
        self._fail_pending("Client disconnected")
        _settle(self._connect_future, Disconnected("Client disconnected"))

        if reader is not None:
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        if ws is not None:
            await ws.close(code=NORMAL_CLOSURE)
        log.info("gateway_client.disconnected", url=self._url)

    def _abandon_attempt(self, attempt: asyncio.Future, exc: GatewayError) -> None:
        _settle(attempt, exc)
        if self._connect_future is attempt:
            self._state = ConnectionState.DISCONNECTED

    async def _abort(self, ws) -> None:
        """Tear down a connection whose handshake failed."""
        reader = None
        if self._ws is ws:
            reader = self._reader_task
            self._ws = None
            self._reader_task = None
            self._state = ConnectionState.DISCONNECTED
            self._fail_pending("Handshake failed")
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        await ws.close(code=NORMAL_CLOSURE)

    # ─────────────────────────────────────────────────────────────────────────
    # Reconnect timer
    # ─────────────────────────────────────────────────────────────────────────

    def _schedule_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self._reconnect_delay, self._fire_reconnect)
        log.info("gateway_client.reconnect_scheduled", delay=self._reconnect_delay)

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _fire_reconnect(self) -> None:
        self._reconnect_handle = None
        self._reconnect_task = asyncio.ensure_future(self._reconnect())

    async def _reconnect(self) -> None:
        try:
            await self.connect()
        except GatewayError as e:
            log.warning("gateway_client.reconnect_failed", url=self._url, error=str(e))

    # ─────────────────────────────────────────────────────────────────────────
    # Reader loop — decodes frames and dispatches them
    # ─────────────────────────────────────────────────────────────────────────

    async def _reader_loop(self, ws) -> None:
        try:
            async for raw in ws:
                await self._dispatch(raw)
        except ConnectionClosed:
            pass
        self._handle_close(ws)

    async def _dispatch(self, raw: str | bytes) -> None:
        try:
            frame = parse_frame(raw)
        except ProtocolParseError as e:
            log.warning("gateway_client.parse_error", reason=e.reason)
            return

        if isinstance(frame, EventFrame):
            if frame.event == CHALLENGE_EVENT:
                await self._answer_challenge(frame)
            else:
                self._emit(frame)
        elif isinstance(frame, HelloOk):
            self._complete_handshake(frame)
        elif isinstance(frame, ResponseFrame):
            self._handle_response(frame)
        else:
            log.debug("gateway_client.unexpected_request", id=frame.id, method=frame.method)

    async def _answer_challenge(self, frame: EventFrame) -> None:
        challenge = parse_challenge(frame.payload)
        ws = self._ws
        if self._state is not ConnectionState.CONNECTING or ws is None:
            log.debug("gateway_client.challenge_ignored", state=self._state.value)
            return
        self._handshake_id = self._next_id("connect")
        req = RequestFrame(
            id=self._handshake_id,
            method="connect",
            params=create_connect_params(self._token, self._client_info),
        )
        log.debug("gateway_client.challenge", ts=challenge.ts, authenticated=bool(self._token))
        await ws.send(req.to_json())

    def _complete_handshake(self, hello: HelloOk) -> None:
        attempt = self._connect_future
        if (
            attempt is None
            or attempt.done()
            or self._state is not ConnectionState.CONNECTING
        ):
            log.debug("gateway_client.duplicate_hello", protocol=hello.protocol)
            return
        self._hello = hello
        self._state = ConnectionState.CONNECTED
        attempt.set_result(hello)

    def _reject_handshake(self, error: Optional[ErrorShape]) -> None:
        code = error.code if error else "auth_failed"
        message = error.message if error else "Handshake rejected"
        _settle(self._connect_future, AuthFailure(code, message))

    def _handle_response(self, res: ResponseFrame) -> None:
        in_handshake = (
            self._state is ConnectionState.CONNECTING or res.id == self._handshake_id
        )
        hello = as_hello_ok(res.payload) if res.ok and in_handshake else None
        if hello is not None:
            if res.id == self._handshake_id:
                self._handshake_id = None
            self._complete_handshake(hello)
            return
        if res.id == self._handshake_id:
            self._handshake_id = None
            if not res.ok:
                self._reject_handshake(res.error)
            else:
                log.debug("gateway_client.handshake_ack", id=res.id)
            return

        pending = self._pending.pop(res.id, None)
        if pending is None or pending.future.done():
            log.debug("gateway_client.late_response", id=res.id)
            return
        if res.ok:
            pending.future.set_result(res.payload)
        else:
            code = res.error.code if res.error else ""
            message = res.error.message if res.error else "Request failed"
            pending.future.set_exception(RemoteError(code, message, method=pending.method))

    def _emit(self, frame: EventFrame) -> None:
        for listener in list(self._listeners):
            try:
                listener(frame)
            except Exception:
                log.exception("gateway_client.listener_error", gateway_event=frame.event)

    def _handle_close(self, ws) -> None:
        if ws is not self._ws:
            return
        code = getattr(ws, "close_code", None)
        if code is None:
            code = ABNORMAL_CLOSURE
        was_connected = self._state is ConnectionState.CONNECTED

        self._ws = None
        self._reader_task = None
        self._state = ConnectionState.DISCONNECTED
        self._hello = None
        self._fail_pending("Connection closed")
        _settle(
            self._connect_future,
            GatewayConnectionError(f"Connection closed during handshake (code {code})"),
        )
        log.warning("gateway_client.connection_lost", code=code, was_connected=was_connected)

        if was_connected and code != NORMAL_CLOSURE and not self._closing:
            self._schedule_reconnect()

    # ─────────────────────────────────────────────────────────────────────────
    # Request / response
    # ─────────────────────────────────────────────────────────────────────────

    def _next_id(self, prefix: str) -> str:
        self._request_seq += 1
        return f"{prefix}-{self._request_seq}"

    def _fail_pending(self, message: str) -> None:
        pending, self._pending = self._pending, {}
        for entry in pending.values():
            if not entry.future.done():
                entry.future.set_exception(Disconnected(message))

    async def request(self, method: str, params: Optional[dict[str, Any]] = None) -> Any:
        """
        Send a request and wait for the correlated response payload.

        Raises:
            Disconnected:   not connected, or the socket closed mid-flight.
            RequestTimeout: no response within `request_timeout` seconds.
            RemoteError:    the gateway answered ok=false.
        """
        ws = self._ws
        if self._state is not ConnectionState.CONNECTED or ws is None:
            raise Disconnected()

        request_id = self._next_id("req")
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = PendingRequest(method=method, future=future)
        frame = RequestFrame(id=request_id, method=method, params=params)
        try:
            await ws.send(frame.to_json())
            return await asyncio.wait_for(future, timeout=self._request_timeout)
        except asyncio.TimeoutError:
            log.warning("gateway_client.request_timeout", method=method, id=request_id)
            raise RequestTimeout(method, request_id, self._request_timeout) from None
        except ConnectionClosed as e:
            raise Disconnected(f"Connection closed while sending '{method}'") from e
        finally:
            self._pending.pop(request_id, None)

    def on_event(self, callback: EventCallback) -> Callable[[], None]:
        """
        Register a listener for every inbound event frame (the handshake
        challenge excluded). Returns a function that unregisters it.
        """
        self._listeners.append(callback)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(callback)
            except ValueError:
                pass

        return unsubscribe

    # ─────────────────────────────────────────────────────────────────────────
    # High-level API
    # ─────────────────────────────────────────────────────────────────────────

    async def list_sessions(
        self,
        limit: Optional[int] = None,
        active_minutes: Optional[int] = None,
        include_last_message: Optional[bool] = None,
        agent_id: Optional[str] = None,
    ) -> list[SessionInfo]:
        """Call `sessions.list` and decode its entries. Malformed entries are skipped."""
        params = sessions_list_params(limit, active_minutes, include_last_message, agent_id)
        result = await self.request("sessions.list", params or None)
        raw_sessions = result.get("sessions") if isinstance(result, dict) else None

        sessions: list[SessionInfo] = []
        for entry in raw_sessions or []:
            try:
                sessions.append(SessionInfo.from_dict(entry))
            except ProtocolParseError as e:
                log.warning("gateway_client.bad_session_entry", reason=e.reason)
        return sessions
