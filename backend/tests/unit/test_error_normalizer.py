"""Unit tests for provider error classification."""

import pytest

from integrations.exceptions import (
    ProviderAPIError,
    ProviderConnectionError,
    RawProviderError,
)
from services.error_normalizer import (
    ACTIONS,
    MESSAGES,
    ErrorAction,
    ErrorKind,
    classify,
    is_auth_config_error,
    is_connection_disabled,
    is_rate_limited,
    is_registration_required,
    is_user_mismatch,
    normalize,
)


class TestClassify:
    """Each raw error maps to exactly one kind, first matching rule wins."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            (RawProviderError(status=428), ErrorKind.REGISTRATION_REQUIRED),
            (RawProviderError(code="USER_NOT_REGISTERED"), ErrorKind.REGISTRATION_REQUIRED),
            (RawProviderError(status=400, message="User is not registered"), ErrorKind.REGISTRATION_REQUIRED),
            (RawProviderError(status=409), ErrorKind.USER_MISMATCH),
            (RawProviderError(status=400, code="user_mismatch"), ErrorKind.USER_MISMATCH),
            (RawProviderError(status=401), ErrorKind.AUTH_CONFIG_ERROR),
            (RawProviderError(code="1076"), ErrorKind.AUTH_CONFIG_ERROR),
            (RawProviderError(status=403, message="Unable to verify signature"), ErrorKind.AUTH_CONFIG_ERROR),
            (RawProviderError(status=429), ErrorKind.RATE_LIMITED),
            (RawProviderError(status=400, message="Rate limit exceeded"), ErrorKind.RATE_LIMITED),
            (RawProviderError(status=403, code="BROKERAGE_AUTHORIZATION_DISABLED"), ErrorKind.CONNECTION_DISABLED),
            (RawProviderError(status=400, message="Connection disabled by brokerage"), ErrorKind.CONNECTION_DISABLED),
            (RawProviderError(status=403, code="TOKEN_EXPIRED"), ErrorKind.AUTH_EXPIRED),
            (RawProviderError(status=400, message="Reauth required"), ErrorKind.AUTH_EXPIRED),
            (RawProviderError(transport_error="ConnectTimeoutError"), ErrorKind.NETWORK_ERROR),
            (RawProviderError(status=500), ErrorKind.PROVIDER_UNAVAILABLE),
            (RawProviderError(status=503), ErrorKind.PROVIDER_UNAVAILABLE),
            (RawProviderError(status=404), ErrorKind.CLIENT_REQUEST_ERROR),
            (RawProviderError(status=422, message="Invalid ticker"), ErrorKind.CLIENT_REQUEST_ERROR),
            (RawProviderError(), ErrorKind.UNKNOWN_ERROR),
            (RawProviderError(message="something odd"), ErrorKind.UNKNOWN_ERROR),
        ],
    )
    def test_kinds(self, raw, expected):
        assert classify(raw) is expected

    def test_mismatch_message_beats_401(self):
        """A 401 whose message says user mismatch is a mismatch, not a config error."""
        raw = RawProviderError(status=401, message="User mismatch for this secret")
        assert classify(raw) is ErrorKind.USER_MISMATCH

    def test_rate_limit_message_beats_5xx(self):
        raw = RawProviderError(status=503, message="Too many requests")
        assert classify(raw) is ErrorKind.RATE_LIMITED

    def test_registration_beats_mismatch(self):
        raw = RawProviderError(status=409, code="USER_NOT_REGISTERED")
        assert classify(raw) is ErrorKind.REGISTRATION_REQUIRED

    def test_transport_with_status_uses_status(self):
        raw = RawProviderError(status=502, transport_error="ProtocolError")
        assert classify(raw) is ErrorKind.PROVIDER_UNAVAILABLE

    def test_message_match_is_case_insensitive(self):
        raw = RawProviderError(message="TOKEN EXPIRED")
        assert classify(raw) is ErrorKind.AUTH_EXPIRED

    def test_numeric_code_is_compared_as_text(self):
        raw = RawProviderError(code=1076)
        assert classify(raw) is ErrorKind.AUTH_CONFIG_ERROR

    def test_deterministic(self):
        raw = RawProviderError(status=409, code="USER_MISMATCH", message="user mismatch")
        assert {classify(raw) for _ in range(5)} == {ErrorKind.USER_MISMATCH}


class TestNormalize:

    def test_every_kind_has_message_and_action(self):
        for kind in ErrorKind:
            assert MESSAGES[kind]
            assert kind in ACTIONS

    def test_rate_limited_message_and_action(self):
        result = normalize(RawProviderError(status=429))
        assert result.kind is ErrorKind.RATE_LIMITED
        assert result.message == "Please try again in a moment. Too many requests"
        assert result.action is ErrorAction.RETRY_WITH_BACKOFF
        assert result.status == 429

    def test_user_mismatch_from_provider_error(self):
        exc = ProviderAPIError(
            "409",
            provider_name="SnapTrade",
            raw=RawProviderError(status=409, code="USER_MISMATCH", request_id="req-9"),
        )
        result = normalize(exc)
        assert result.kind is ErrorKind.USER_MISMATCH
        assert result.message == (
            "Your brokerage connection needs to be reset. Please reconnect your account"
        )
        assert result.action is ErrorAction.MARK_FOR_ROTATION
        assert result.code == "USER_MISMATCH"
        assert result.request_id == "req-9"

    def test_network_error_from_connection_error(self):
        exc = ProviderConnectionError(
            "refused", raw=RawProviderError(transport_error="NewConnectionError")
        )
        result = normalize(exc)
        assert result.kind is ErrorKind.NETWORK_ERROR
        assert result.message == "Network connection error. Please check your internet connection"

    def test_arbitrary_exception_is_unknown(self):
        result = normalize(RuntimeError("boom"))
        assert result.kind is ErrorKind.UNKNOWN_ERROR
        assert result.message == "An unexpected error occurred. Please try again"
        assert result.action is ErrorAction.NONE

    def test_message_never_contains_raw_text(self):
        result = normalize(RawProviderError(status=500, message="stack trace at line 42"))
        assert "stack trace" not in result.message

    def test_breaks_connection(self):
        assert normalize(RawProviderError(code="TOKEN_EXPIRED")).breaks_connection
        assert normalize(RawProviderError(code="CONNECTION_DISABLED")).breaks_connection
        assert not normalize(RawProviderError(status=409)).breaks_connection
        assert not normalize(RawProviderError(status=500)).breaks_connection

    def test_to_dict(self):
        data = normalize(RawProviderError(status=404, code="NOT_FOUND")).to_dict()
        assert data == {
            "kind": "ClientRequestError",
            "message": "Request error. Please check your input",
            "action": "fix_request",
            "status": 404,
            "code": "NOT_FOUND",
            "request_id": None,
        }


class TestPredicates:

    def test_predicates(self):
        assert is_registration_required(RawProviderError(status=428))
        assert is_user_mismatch(RawProviderError(status=409))
        assert is_auth_config_error(RawProviderError(status=401))
        assert is_rate_limited(RawProviderError(status=429))
        assert is_connection_disabled(RawProviderError(code="CONNECTION_DISABLED"))

    def test_predicates_are_exclusive(self):
        raw = RawProviderError(status=429)
        assert not is_user_mismatch(raw)
        assert not is_auth_config_error(raw)
        assert not is_connection_disabled(raw)
