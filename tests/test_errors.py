import pytest

from parley.errors import (
    AuthenticationError,
    GenerationError,
    GenerationHTTPError,
    StreamError,
    is_auth_failure,
)


@pytest.mark.parametrize(
    "message",
    [
        "M_UNKNOWN_TOKEN: Unrecognised access token",
        "Invalid token",
        "invalid access token",
        "SASL failure: not-authorized",
        "credentials-expired",
        "HTTP 401 Unauthorized",
    ],
)
def test_auth_failure_signatures(message):
    assert is_auth_failure(RuntimeError(message)) is True


@pytest.mark.parametrize(
    "exc",
    [None, StreamError("read timeout"), RuntimeError("HTTP 4010 weird"), OSError("reset")],
)
def test_other_errors_are_transient(exc):
    assert is_auth_failure(exc) is False


def test_authentication_error_is_always_auth_failure():
    assert is_auth_failure(AuthenticationError("")) is True


def test_http_error_message_and_type():
    exc = GenerationHTTPError(
        529, method="POST", url="https://api.example/v1/messages", detail=" overloaded "
    )

    assert isinstance(exc, GenerationError)
    assert exc.status == 529
    assert str(exc) == "Backend HTTP 529 POST https://api.example/v1/messages: overloaded"
