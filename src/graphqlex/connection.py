"""Persistent subscription connection.

A Connection owns one socket and multiplexes any number of subscription
channels over it. It is driven entirely by callbacks: the socket reports
open/message/error/close events through the SocketListener methods, and
callers register, start and remove channels.

Handshake state machine:

    CONNECTING --connection_ack--> ESTABLISHED

Channel starts requested while CONNECTING are deferred and flushed once, in
submission order, when the acknowledgement arrives. There is no reconnection:
a socket error or close is reported as a diagnostic and nothing else.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Protocol

from .errors import DuplicateChannelError, SubscriptionError
from .protocol import FAILURE_TYPES, InvalidFrame, MessageType, OperationMessage

logger = logging.getLogger(__name__)

LOG_PREFIX = "graphqlex: "

LogSink = Callable[[str], Any]
DataHandler = Callable[[Any], Any]
ErrorHandler = Callable[[SubscriptionError], Any]


class ConnectionState(str, Enum):
    """Handshake state."""

    CONNECTING = "connecting"
    ESTABLISHED = "established"


class SocketListener(Protocol):
    """Callbacks a socket driver invokes on its owner."""

    def handle_open(self) -> None: ...

    def handle_message(self, raw: str | bytes) -> None: ...

    def handle_error(self, error: BaseException) -> None: ...

    def handle_close(self, code: int | None, reason: str) -> None: ...


class ChannelSocket(Protocol):
    """Outbound side of a socket driver."""

    def send(self, text: str) -> None: ...

    async def aclose(self) -> None: ...


SocketFactory = Callable[[str, SocketListener], ChannelSocket]


@dataclass(eq=False)
class ChannelRegistration:
    """One logical channel on a Connection."""

    channel_id: str
    data_handler: DataHandler | None = None
    error_handler: ErrorHandler | None = None
    is_open: bool = True
    started: bool = False


def _default_socket_factory(url: str, listener: SocketListener) -> ChannelSocket:
    from .websocket import WebSocketChannel

    return WebSocketChannel(url, listener)


class Connection:
    """A handshake-gated, multiplexed subscription socket.

    Args:
        url: WebSocket URL to connect to.
        headers: Sent as the ``connection_init`` payload.
        socket_factory: Builds the socket; receives the URL and this
            connection as listener. Defaults to ``WebSocketChannel``.
        close_on_failure: Remove a channel's registration when the server
            reports ``error`` or ``subscription_fail`` for it.
        log: Optional diagnostics sink receiving one string per event.
    """

    def __init__(
        self,
        url: str,
        headers: Mapping[str, Any] | None = None,
        *,
        socket_factory: SocketFactory | None = None,
        close_on_failure: bool = True,
        log: LogSink | None = None,
    ):
        self.url = url
        self.headers = dict(headers or {})
        self.close_on_failure = close_on_failure
        self.log = log
        self._state = ConnectionState.CONNECTING
        self._registrations: dict[str, ChannelRegistration] = {}
        self._deferred: list[Callable[[], None]] = []

        factory = socket_factory or _default_socket_factory
        self.socket = factory(url, self)

    @property
    def state(self) -> ConnectionState:
        """Current handshake state."""
        return self._state

    @property
    def is_established(self) -> bool:
        """Check if the handshake has completed."""
        return self._state == ConnectionState.ESTABLISHED

    @property
    def registrations(self) -> Mapping[str, ChannelRegistration]:
        """Read-only view of the open channels, keyed by channel id."""
        return MappingProxyType(self._registrations)

    @property
    def pending_actions(self) -> int:
        """Number of actions waiting for the handshake."""
        return len(self._deferred)

    # =========================================================================
    # Channel registrations
    # =========================================================================

    def get(self, channel_id: str) -> ChannelRegistration | None:
        return self._registrations.get(channel_id)

    def register(self, channel_id: str) -> ChannelRegistration:
        """Add an open channel.

        Raises:
            DuplicateChannelError: If a channel with this id is open.
        """
        existing = self._registrations.get(channel_id)
        if existing is not None and existing.is_open:
            raise DuplicateChannelError(channel_id)
        registration = ChannelRegistration(channel_id=channel_id)
        self._registrations[channel_id] = registration
        return registration

    def unregister(self, registration: ChannelRegistration) -> bool:
        """Close a channel and drop its registration.

        Sends ``stop`` if the channel's ``start`` already went out. A
        registration that was replaced by a newer one with the same id
        leaves the newer one untouched.

        Returns:
            True if the registration was open and has now been removed.
        """
        if not registration.is_open:
            return False
        registration.is_open = False
        if self._registrations.get(registration.channel_id) is registration:
            del self._registrations[registration.channel_id]
        if registration.started:
            self.send(OperationMessage.stop(registration.channel_id))
        return True

    def start(
        self,
        registration: ChannelRegistration,
        query: str,
        variables: dict[str, Any] | None = None,
    ) -> None:
        """Send the channel's ``start`` message, or defer it until the handshake."""
        message = OperationMessage.start(registration.channel_id, query, variables)

        def send_start() -> None:
            # Closed before the handshake finished: nothing to start
            if not registration.is_open:
                return
            self.send(message)
            registration.started = True

        self.when_established(send_start)

    def when_established(self, action: Callable[[], None]) -> None:
        """Run ``action`` now if established, otherwise after the acknowledgement."""
        if self.is_established:
            action()
        else:
            self._deferred.append(action)

    def send(self, message: OperationMessage) -> None:
        self.socket.send(message.to_json())

    async def aclose(self) -> None:
        """Close the underlying socket."""
        await self.socket.aclose()

    # =========================================================================
    # SocketListener
    # =========================================================================

    def handle_open(self) -> None:
        """Socket is open: begin the handshake."""
        logger.debug(f"Socket open to {self.url}, sending connection_init")
        self.send(OperationMessage.connection_init(self.headers))

    def handle_message(self, raw: str | bytes) -> None:
        """Dispatch one inbound frame."""
        try:
            message = OperationMessage.from_json(raw)
        except InvalidFrame as e:
            self._diagnose(f"invalid message received from WebSocket server: {e}")
            return

        msg_type = message.type
        if msg_type in FAILURE_TYPES:
            self._fail_channel(message)
        elif msg_type == MessageType.DATA.value:
            self._deliver(message)
        elif msg_type == MessageType.KEEP_ALIVE.value:
            return
        elif msg_type == MessageType.CONNECTION_ACK.value:
            self._acknowledge()
            self._diagnose(f"[{message.id}] connection_ack, the handshake is complete")
        elif msg_type == MessageType.INIT_FAIL.value:
            self._diagnose(f"[{message.id}] init_fail returned from the WebSocket server")
        elif msg_type == MessageType.SUBSCRIPTION_SUCCESS.value:
            self._diagnose(f"[{message.id}] subscription_success")
        elif msg_type == MessageType.CONNECTION_ERROR.value:
            self._diagnose(f"connection_error returned from the WebSocket server {message.payload_message}".rstrip())
        elif msg_type == MessageType.COMPLETE.value:
            self._complete(message)
        else:
            self._diagnose(f"unexpected message type [{msg_type}] received from WebSocket server")

    def handle_error(self, error: BaseException) -> None:
        self._diagnose(f"WebSocket error on {self.url}: {error}", level=logging.WARNING)

    def handle_close(self, code: int | None, reason: str) -> None:
        detail = f" ({reason})" if reason else ""
        self._diagnose(f"WebSocket closed with code {code}{detail}", level=logging.INFO)

    # =========================================================================
    # Dispatch
    # =========================================================================

    def _acknowledge(self) -> None:
        if self.is_established:
            # Repeated acknowledgement: the queue has already been flushed
            return
        self._state = ConnectionState.ESTABLISHED
        deferred, self._deferred = self._deferred, []
        logger.debug(f"Handshake complete, flushing {len(deferred)} deferred action(s)")
        for action in deferred:
            action()

    def _deliver(self, message: OperationMessage) -> None:
        registration = self._registrations.get(message.id) if message.id is not None else None
        if registration is None or registration.data_handler is None:
            self._diagnose(f"data received for channel [{message.id}] with no subscription handler")
            return
        try:
            registration.data_handler(message.payload_data)
        except Exception as e:
            logger.exception(f"Data handler for channel [{message.id}] raised")
            self._diagnose(f"data handler for channel [{message.id}] raised {type(e).__name__}: {e}")

    def _fail_channel(self, message: OperationMessage) -> None:
        text = f"GraphQL {message.type} for channel {message.id} {message.payload_message}".rstrip()
        registration = self._registrations.get(message.id) if message.id is not None else None
        if registration is None:
            self._diagnose(text, level=logging.WARNING)
            return
        if self.close_on_failure:
            # The server has dropped the channel, so no stop is sent
            registration.started = False
            self.unregister(registration)
        if registration.error_handler is not None:
            error = SubscriptionError(text, message.id, message.type, message.payload)
            try:
                registration.error_handler(error)
            except Exception:
                logger.exception(f"Error handler for channel [{message.id}] raised")
        self._diagnose(text, level=logging.WARNING)

    def _complete(self, message: OperationMessage) -> None:
        registration = self._registrations.get(message.id) if message.id is not None else None
        if registration is not None:
            registration.started = False
            self.unregister(registration)
        self._diagnose(f"[{message.id}] complete")

    def _diagnose(self, text: str, level: int = logging.DEBUG) -> None:
        logger.log(level, text)
        if self.log is not None:
            try:
                self.log(f"{LOG_PREFIX}{text}")
            except Exception:
                logger.exception("Diagnostics sink raised")
