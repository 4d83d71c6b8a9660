"""graphqlex - a small GraphQL client over HTTP and WebSocket.

Queries and mutations run as single HTTP POSTs; subscriptions share one
WebSocket connection using the ``graphql-subscriptions`` protocol.
"""

from .api import Api, FetchProtocol, ResponseLike, Subscription, merge_headers
from .config import ApiConfig, derive_ws_url
from .connection import ChannelRegistration, Connection, ConnectionState
from .errors import (
    DuplicateChannelError,
    ErrorPolicy,
    FieldError,
    GraphQLClientError,
    GraphQLResponseError,
    InvalidResponseError,
    NetworkError,
    RequestError,
    SubscriptionError,
)
from .protocol import MessageType, OperationMessage
from .websocket import WebSocketChannel


def gql(source: str) -> str:
    """Mark a string as a GraphQL document.

    Returns the text unchanged. Editors and linters that know the ``gql``
    convention can highlight the literal.
    """
    return source


__all__ = [
    # Client
    "Api",
    "Subscription",
    "gql",
    # Configuration
    "ApiConfig",
    "derive_ws_url",
    "FetchProtocol",
    "ResponseLike",
    "merge_headers",
    # Connection
    "Connection",
    "ConnectionState",
    "ChannelRegistration",
    "WebSocketChannel",
    "MessageType",
    "OperationMessage",
    # Errors
    "GraphQLClientError",
    "NetworkError",
    "InvalidResponseError",
    "GraphQLResponseError",
    "RequestError",
    "FieldError",
    "SubscriptionError",
    "DuplicateChannelError",
    "ErrorPolicy",
]
