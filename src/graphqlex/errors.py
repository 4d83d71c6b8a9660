"""Error types and the error-reporting policy.

Unary errors share one reporting path but stay distinguishable by class:

- NetworkError: the HTTP call itself failed
- InvalidResponseError: the body could not be read as a GraphQL response
- RequestError: the server returned errors and no data
- FieldError: the server returned errors alongside partial data

Subscription problems are reported as SubscriptionError to channel handlers.
DuplicateChannelError is a programming error and is raised directly.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, NoReturn

logger = logging.getLogger(__name__)

DEFAULT_NETWORK_MESSAGE = "GraphQL error. Try: Check network connection / Turn off ad blockers"

ErrorHook = Callable[[str, "GraphQLClientError"], Any]


class GraphQLClientError(Exception):
    """Base class for every error raised by graphqlex."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NetworkError(GraphQLClientError):
    """The transport call failed before a response was received."""

    def __init__(self, message: str | None = None):
        super().__init__(message or DEFAULT_NETWORK_MESSAGE)


class InvalidResponseError(GraphQLClientError):
    """The response body is not a JSON object."""

    def __init__(self, message: str, raw_body: str, status_code: int | None = None):
        super().__init__(message)
        self.raw_body = raw_body
        self.status_code = status_code


class GraphQLResponseError(GraphQLClientError):
    """The server answered with a non-empty ``errors`` list."""

    def __init__(self, errors: list[Any]):
        self.errors = errors
        self.error = errors[0]
        super().__init__(f"GraphQL Server Error: {_error_message(self.error)}")


class RequestError(GraphQLResponseError):
    """Errors without data: the request as a whole failed."""


class FieldError(GraphQLResponseError):
    """Errors with data: some fields resolved, others failed."""

    def __init__(self, errors: list[Any], data: Any):
        super().__init__(errors)
        self.data = data


class SubscriptionError(GraphQLClientError):
    """The server reported a failure for one subscription channel."""

    def __init__(self, message: str, channel_id: str | None, message_type: str, payload: Any = None):
        super().__init__(message)
        self.channel_id = channel_id
        self.message_type = message_type
        self.payload = payload


class DuplicateChannelError(GraphQLClientError, ValueError):
    """A channel with the same id is already open on the connection."""

    def __init__(self, channel_id: str):
        super().__init__(f"Subscription already exists for channel [{channel_id}]")
        self.channel_id = channel_id


def _error_message(error: Any) -> str:
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return str(error)


class ErrorPolicy:
    """Reports a classified error, then raises it.

    Reporting and propagation are kept apart: the optional hook is called
    with a readable message and the error object, and the error is raised
    afterwards whether or not a hook exists. If the hook itself raises, its
    exception propagates instead, chained to the classified error.
    """

    def __init__(self, hook: ErrorHook | None = None):
        self.hook = hook

    def fail(self, error: GraphQLClientError) -> NoReturn:
        if self.hook is not None:
            try:
                self.hook(error.message, error)
            except Exception as hook_error:
                raise hook_error from error
        else:
            logger.debug(f"Raising {type(error).__name__}: {error.message}")
        raise error
