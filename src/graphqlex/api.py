"""GraphQL endpoint client.

``Api`` is the user-facing facade:

- ``run`` executes a query or mutation as one HTTP POST (httpx)
- ``subscribe`` opens a channel on a shared, lazily created Connection

Usage:
    api = Api("https://example.com/graphql", headers={"Authorization": token})
    data = await api.run(gql("query { allPosts { nodes { headline } } }"))

    sub = api.subscribe("subscription { postAdded { headline } }")
    sub.on_data(lambda data: print(data["postAdded"]))
"""

from __future__ import annotations

import functools
import json
import logging
import secrets
from collections.abc import Mapping
from types import TracebackType
from typing import Any, Protocol, cast

import httpx

from .config import ApiConfig
from .connection import (
    ChannelRegistration,
    Connection,
    DataHandler,
    ErrorHandler,
    LogSink,
    SocketFactory,
)
from .errors import (
    DEFAULT_NETWORK_MESSAGE,
    ErrorHook,
    ErrorPolicy,
    FieldError,
    InvalidResponseError,
    NetworkError,
    RequestError,
)
from .websocket import WebSocketChannel

logger = logging.getLogger(__name__)

STANDARD_HEADERS: dict[str, str] = {
    "Content-type": "application/json",
    "Accept": "application/json",
}

MAX_CHANNEL_NUMBER = 1_000_000


class ResponseLike(Protocol):
    """The parts of an HTTP response that ``run`` reads."""

    @property
    def text(self) -> str: ...

    @property
    def status_code(self) -> int: ...


class FetchProtocol(Protocol):
    """Protocol for a fetch-like POST function."""

    async def __call__(self, url: str, *, headers: dict[str, str], content: str) -> ResponseLike: ...


def merge_headers(*layers: Mapping[str, str] | None) -> dict[str, str]:
    """Merge header mappings left to right, later layers winning.

    Header names compare case-insensitively; the winning layer's spelling
    is kept.
    """
    merged: dict[str, str] = {}
    for layer in layers:
        for name, value in (layer or {}).items():
            for existing in [key for key in merged if key.lower() == name.lower()]:
                del merged[existing]
            merged[name] = value
    return merged


class Subscription:
    """Handle for one subscription channel."""

    def __init__(self, connection: Connection, registration: ChannelRegistration):
        self._connection = connection
        self._registration = registration

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<Subscription channel={self.channel_id!r} {state}>"

    @property
    def channel_id(self) -> str:
        return self._registration.channel_id

    @property
    def closed(self) -> bool:
        return not self._registration.is_open

    def on_data(self, handler: DataHandler) -> Subscription:
        """Attach or replace the data handler.

        The handler receives ``payload.data`` of every ``data`` message for
        this channel.
        """
        self._registration.data_handler = handler
        return self

    def on_error(self, handler: ErrorHandler) -> Subscription:
        """Attach or replace the handler for server-reported channel failures."""
        self._registration.error_handler = handler
        return self

    def close(self) -> None:
        """Close the channel. Later data for its id is treated as unknown."""
        if self._connection.unregister(self._registration):
            logger.debug(f"Closed subscription channel [{self.channel_id}]")


class Api:
    """A remote GraphQL API reached over HTTP and WebSocket.

    Args:
        url: HTTP(S) endpoint for queries and mutations.
        ws_url: WebSocket endpoint for subscriptions. Derived from ``url``
            when omitted (``http`` -> ``ws``, ``https`` -> ``wss``).
        headers: Extra request headers. Also sent as the WebSocket
            ``connection_init`` payload.
        fetch: Replaces the built-in httpx POST.
        on_error: Reporting hook called with ``(message, error)`` before a
            classified error is raised.
        http_client: httpx client to use instead of an owned one. It is not
            closed by ``aclose``.
        socket_factory: Builds the subscription socket. Defaults to
            ``WebSocketChannel``.
        timeout: Timeout in seconds for the owned httpx client.
        ping_interval: WebSocket keep-alive ping interval.
        ping_timeout: WebSocket keep-alive ping timeout.
        close_on_failure: Remove a channel when the server reports it failed.

    Raises:
        ValueError: If ``url`` is not an ``http://`` or ``https://`` URL.
    """

    def __init__(
        self,
        url: str,
        ws_url: str | None = None,
        *,
        headers: Mapping[str, str] | None = None,
        fetch: FetchProtocol | None = None,
        on_error: ErrorHook | None = None,
        http_client: httpx.AsyncClient | None = None,
        socket_factory: SocketFactory | None = None,
        timeout: float = 30.0,
        ping_interval: float | None = 30.0,
        ping_timeout: float | None = 10.0,
        close_on_failure: bool = True,
    ):
        self.config = ApiConfig(
            url=url,
            ws_url=ws_url,
            headers=dict(headers or {}),
            timeout=timeout,
            ping_interval=ping_interval,
            ping_timeout=ping_timeout,
            close_on_failure=close_on_failure,
        )
        self._fetch = fetch
        self._errors = ErrorPolicy(on_error)
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._socket_factory = socket_factory
        self._connection: Connection | None = None
        self._log: LogSink | None = None

    @classmethod
    def from_config(
        cls,
        config: ApiConfig,
        *,
        fetch: FetchProtocol | None = None,
        on_error: ErrorHook | None = None,
        http_client: httpx.AsyncClient | None = None,
        socket_factory: SocketFactory | None = None,
    ) -> Api:
        """Create an Api from an ``ApiConfig`` plus runtime hooks."""
        return cls(
            config.url,
            config.ws_url,
            headers=config.headers,
            fetch=fetch,
            on_error=on_error,
            http_client=http_client,
            socket_factory=socket_factory,
            timeout=config.timeout,
            ping_interval=config.ping_interval,
            ping_timeout=config.ping_timeout,
            close_on_failure=config.close_on_failure,
        )

    @property
    def url(self) -> str:
        return self.config.url

    @property
    def ws_url(self) -> str:
        return cast(str, self.config.ws_url)

    @property
    def headers(self) -> dict[str, str]:
        return self.config.headers

    @property
    def connection(self) -> Connection | None:
        """The subscription connection, or None before the first subscribe."""
        return self._connection

    @property
    def log(self) -> LogSink | None:
        """Diagnostics sink for the subscription connection."""
        return self._log

    @log.setter
    def log(self, sink: LogSink | None) -> None:
        self._log = sink
        if self._connection is not None:
            self._connection.log = sink

    # =========================================================================
    # Queries and mutations
    # =========================================================================

    async def run(self, query: str, variables: dict[str, Any] | None = None) -> Any:
        """Execute a query or mutation.

        Args:
            query: GraphQL document.
            variables: Variable values, sent as ``{}`` when omitted.

        Returns:
            The response's ``data`` value, which may be None.

        Raises:
            NetworkError: The HTTP call failed.
            InvalidResponseError: The body is not a JSON object.
            RequestError: The server returned errors and no data.
            FieldError: The server returned errors with partial data.
        """
        headers = merge_headers(STANDARD_HEADERS, self.headers)
        body = json.dumps({"query": query, "variables": variables or {}})

        try:
            response = await self._post(headers, body)
        except Exception as e:
            detail = str(e)
            error = NetworkError(f"Network request to {self.url} failed: {detail}" if detail else DEFAULT_NETWORK_MESSAGE)
            error.__cause__ = e
            self._errors.fail(error)

        raw = response.text
        status_code = getattr(response, "status_code", None)
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            error = InvalidResponseError(f"Invalid GraphQL response (HTTP {status_code}): {e}", raw, status_code)
            error.__cause__ = e
            self._errors.fail(error)

        if not isinstance(payload, dict):
            self._errors.fail(
                InvalidResponseError(f"Invalid GraphQL response (HTTP {status_code}): expected a JSON object", raw, status_code)
            )

        errors = payload.get("errors")
        data = payload.get("data")
        if isinstance(errors, list) and errors:
            if data is None:
                self._errors.fail(RequestError(errors))
            self._errors.fail(FieldError(errors, data))
        return data

    async def _post(self, headers: dict[str, str], body: str) -> ResponseLike:
        if self._fetch is not None:
            return await self._fetch(self.url, headers=headers, content=body)
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.config.timeout)
        logger.debug(f"POST {self.url}")
        return await self._http_client.post(self.url, headers=headers, content=body)

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(
        self,
        query: str,
        variables: dict[str, Any] | None = None,
        channel_id: str | None = None,
    ) -> Subscription:
        """Open a subscription channel.

        The first call creates the WebSocket connection; with the default
        socket driver this requires a running event loop. The channel's
        ``start`` message is sent once the handshake has completed.

        Args:
            query: GraphQL subscription document.
            variables: Variable values, sent as ``{}`` when omitted.
            channel_id: Channel id; a random one is generated when omitted.

        Returns:
            A Subscription handle.

        Raises:
            DuplicateChannelError: A channel with ``channel_id`` is open.
        """
        connection = self._ensure_connection()
        if channel_id is None:
            channel_id = self._new_channel_id(connection)
        registration = connection.register(str(channel_id))
        connection.start(registration, query, variables)
        return Subscription(connection, registration)

    def _ensure_connection(self) -> Connection:
        if self._connection is None:
            factory = self._socket_factory or functools.partial(
                WebSocketChannel,
                ping_interval=self.config.ping_interval,
                ping_timeout=self.config.ping_timeout,
            )
            logger.debug(f"Opening subscription connection to {self.ws_url}")
            self._connection = Connection(
                self.ws_url,
                self.headers,
                socket_factory=factory,
                close_on_failure=self.config.close_on_failure,
                log=self._log,
            )
        return self._connection

    @staticmethod
    def _new_channel_id(connection: Connection) -> str:
        while True:
            channel_id = str(secrets.randbelow(MAX_CHANNEL_NUMBER) + 1)
            if channel_id not in connection.registrations:
                return channel_id

    # =========================================================================
    # Cleanup
    # =========================================================================

    async def aclose(self) -> None:
        """Close the subscription socket and the owned HTTP client."""
        if self._connection is not None:
            await self._connection.aclose()
            self._connection = None
        if self._http_client is not None and self._owns_http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> Api:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
