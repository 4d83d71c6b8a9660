"""Client configuration."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field

_HTTP_URL = re.compile(r"^(https?)://(.*)$", re.IGNORECASE | re.DOTALL)


def derive_ws_url(url: str) -> str:
    """Map an HTTP(S) endpoint URL to its WebSocket equivalent.

    ``http://`` becomes ``ws://`` and ``https://`` becomes ``wss://``; the
    rest of the URL is kept as is.

    Raises:
        ValueError: If the URL does not start with ``http://`` or ``https://``.
    """
    match = _HTTP_URL.match(url)
    if not match:
        raise ValueError(f"Unexpected API URL [{url}]")
    scheme, rest = match.groups()
    secure = scheme.lower().endswith("s")
    return f"{'wss' if secure else 'ws'}://{rest}"


@dataclass
class ApiConfig:
    """Connection settings for an Api.

    Hooks (fetch override, error callback, socket factory) are not part of
    the config; pass them to ``Api.from_config``.
    """

    url: str
    ws_url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)

    # HTTP
    timeout: float = 30.0

    # WebSocket keep-alive
    ping_interval: float | None = 30.0
    ping_timeout: float | None = 10.0

    # Remove a channel's registration when the server reports it failed
    close_on_failure: bool = True

    def __post_init__(self) -> None:
        if self.ws_url is None:
            self.ws_url = derive_ws_url(self.url)
        else:
            # Validates the base URL even when the socket URL is explicit
            derive_ws_url(self.url)

    @classmethod
    def from_env(cls, prefix: str = "GRAPHQLEX_") -> ApiConfig:
        """Build a config from environment variables.

        Reads ``<prefix>URL`` (required), ``<prefix>WS_URL`` and
        ``<prefix>TIMEOUT``.

        Raises:
            ValueError: If the URL is missing or the timeout is not a number.
        """
        url = os.getenv(f"{prefix}URL")
        if not url:
            raise ValueError(f"{prefix}URL is not set")

        timeout_value = os.getenv(f"{prefix}TIMEOUT")
        try:
            timeout = float(timeout_value) if timeout_value else 30.0
        except ValueError as e:
            raise ValueError(f"{prefix}TIMEOUT must be a number, got {timeout_value!r}") from e

        return cls(url=url, ws_url=os.getenv(f"{prefix}WS_URL") or None, timeout=timeout)
