"""Unit tests for error types and the reporting policy."""

from unittest.mock import MagicMock

import pytest

from graphqlex.errors import (
    DEFAULT_NETWORK_MESSAGE,
    DuplicateChannelError,
    ErrorPolicy,
    FieldError,
    GraphQLClientError,
    GraphQLResponseError,
    NetworkError,
    RequestError,
)


class TestErrorTypes:
    def test_network_error_default_message(self):
        assert NetworkError().message == DEFAULT_NETWORK_MESSAGE

    def test_response_error_uses_first_entry(self):
        error = RequestError([{"message": "boom"}, {"message": "second"}])

        assert "boom" in str(error)
        assert error.error == {"message": "boom"}
        assert len(error.errors) == 2

    def test_response_error_without_message_field(self):
        error = RequestError(["plain text"])

        assert "plain text" in error.message

    def test_field_error_keeps_partial_data(self):
        error = FieldError([{"message": "denied"}], {"user": None})

        assert isinstance(error, GraphQLResponseError)
        assert error.data == {"user": None}

    def test_duplicate_channel_is_value_error(self):
        error = DuplicateChannelError("9")

        assert isinstance(error, ValueError)
        assert isinstance(error, GraphQLClientError)
        assert error.channel_id == "9"
        assert "[9]" in error.message


class TestErrorPolicy:
    def test_raises_without_hook(self):
        policy = ErrorPolicy()

        with pytest.raises(NetworkError):
            policy.fail(NetworkError("down"))

    def test_hook_is_called_then_error_raised(self):
        hook = MagicMock()
        policy = ErrorPolicy(hook)
        error = NetworkError("down")

        with pytest.raises(NetworkError) as exc_info:
            policy.fail(error)

        hook.assert_called_once_with("down", error)
        assert exc_info.value is error

    def test_hook_exception_replaces_error(self):
        def hook(message, error):
            raise RuntimeError(f"handled: {message}")

        policy = ErrorPolicy(hook)

        with pytest.raises(RuntimeError, match="handled: down") as exc_info:
            policy.fail(NetworkError("down"))

        assert isinstance(exc_info.value.__cause__, NetworkError)
