"""Classify raw provider errors into canonical, provider-agnostic kinds.

The normalizer is a pure function: it never logs, retries, or touches the
database.  Both the refresh batch and the on-demand API paths call
:func:`classify` on the :class:`~integrations.exceptions.RawProviderError`
attached to a provider exception, so the same raw failure always yields the
same outcome regardless of which path observed it.

Rules are ordered; the first match wins.
"""

from dataclasses import dataclass
from enum import Enum

from integrations.exceptions import ProviderError, RawProviderError


class ErrorKind(str, Enum):
    """Canonical error kinds."""

    REGISTRATION_REQUIRED = "RegistrationRequired"
    USER_MISMATCH = "UserMismatch"
    AUTH_CONFIG_ERROR = "AuthConfigError"
    RATE_LIMITED = "RateLimited"
    CONNECTION_DISABLED = "ConnectionDisabled"
    AUTH_EXPIRED = "AuthExpired"
    NETWORK_ERROR = "NetworkError"
    PROVIDER_UNAVAILABLE = "ProviderUnavailable"
    CLIENT_REQUEST_ERROR = "ClientRequestError"
    UNKNOWN_ERROR = "UnknownError"


class ErrorAction(str, Enum):
    """What the caller should do about an error."""

    RETRY_WITH_BACKOFF = "retry_with_backoff"
    PROMPT_RECONNECT = "prompt_reconnect"
    PROMPT_FINISH_SETUP = "prompt_finish_setup"
    MARK_FOR_ROTATION = "mark_for_rotation"
    FIX_REQUEST = "fix_request"
    NONE = "none"


MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.REGISTRATION_REQUIRED: "Please finish your brokerage registration to continue",
    ErrorKind.USER_MISMATCH: "Your brokerage connection needs to be reset. Please reconnect your account",
    ErrorKind.AUTH_CONFIG_ERROR: "Authentication configuration error. Please contact support",
    ErrorKind.RATE_LIMITED: "Please try again in a moment. Too many requests",
    ErrorKind.CONNECTION_DISABLED: "Your brokerage connection has been disabled. Please reconnect",
    ErrorKind.AUTH_EXPIRED: "Your brokerage login has expired. Please reconnect",
    ErrorKind.NETWORK_ERROR: "Network connection error. Please check your internet connection",
    ErrorKind.PROVIDER_UNAVAILABLE: "Server error occurred. Please try again later",
    ErrorKind.CLIENT_REQUEST_ERROR: "Request error. Please check your input",
    ErrorKind.UNKNOWN_ERROR: "An unexpected error occurred. Please try again",
}

ACTIONS: dict[ErrorKind, ErrorAction] = {
    ErrorKind.REGISTRATION_REQUIRED: ErrorAction.PROMPT_FINISH_SETUP,
    ErrorKind.USER_MISMATCH: ErrorAction.MARK_FOR_ROTATION,
    ErrorKind.AUTH_CONFIG_ERROR: ErrorAction.PROMPT_RECONNECT,
    ErrorKind.RATE_LIMITED: ErrorAction.RETRY_WITH_BACKOFF,
    ErrorKind.CONNECTION_DISABLED: ErrorAction.PROMPT_RECONNECT,
    ErrorKind.AUTH_EXPIRED: ErrorAction.PROMPT_RECONNECT,
    ErrorKind.NETWORK_ERROR: ErrorAction.RETRY_WITH_BACKOFF,
    ErrorKind.PROVIDER_UNAVAILABLE: ErrorAction.RETRY_WITH_BACKOFF,
    ErrorKind.CLIENT_REQUEST_ERROR: ErrorAction.FIX_REQUEST,
    ErrorKind.UNKNOWN_ERROR: ErrorAction.NONE,
}

# Kinds that move a connection from active to broken.
CONNECTION_BREAKING_KINDS = frozenset({ErrorKind.AUTH_EXPIRED, ErrorKind.CONNECTION_DISABLED})


@dataclass(frozen=True)
class _Rule:
    kind: ErrorKind
    statuses: frozenset[int] = frozenset()
    codes: frozenset[str] = frozenset()
    phrases: tuple[str, ...] = ()


def _rule(kind: ErrorKind, statuses=(), codes=(), phrases=()) -> _Rule:
    return _Rule(
        kind=kind,
        statuses=frozenset(statuses),
        codes=frozenset(c.upper() for c in codes),
        phrases=tuple(p.lower() for p in phrases),
    )


# Status/code/message rules, in priority order.  Transport and status-range
# fallbacks follow in classify().
RULES: tuple[_Rule, ...] = (
    _rule(
        ErrorKind.REGISTRATION_REQUIRED,
        statuses=[428],
        codes=["USER_NOT_REGISTERED", "SNAPTRADE_NOT_REGISTERED"],
        phrases=["not registered", "register user"],
    ),
    _rule(
        ErrorKind.USER_MISMATCH,
        statuses=[409],
        codes=["USER_MISMATCH", "SNAPTRADE_USER_MISMATCH"],
        phrases=["user mismatch", "different user"],
    ),
    _rule(
        ErrorKind.AUTH_CONFIG_ERROR,
        statuses=[401],
        codes=["1076", "SIGNATURE_INVALID", "INVALID_SIGNATURE"],
        phrases=["signature", "unable to verify"],
    ),
    _rule(
        ErrorKind.RATE_LIMITED,
        statuses=[429],
        codes=["RATE_LIMITED", "TOO_MANY_REQUESTS"],
        phrases=["rate limit", "too many requests"],
    ),
    _rule(
        ErrorKind.CONNECTION_DISABLED,
        codes=["BROKERAGE_AUTHORIZATION_DISABLED", "CONNECTION_DISABLED", "AUTHORIZATION_DISABLED"],
        phrases=["authorization disabled", "connection disabled"],
    ),
    _rule(
        ErrorKind.AUTH_EXPIRED,
        codes=["EXPIRED_CREDENTIALS", "TOKEN_EXPIRED", "REAUTH_REQUIRED", "INVALID_CREDENTIALS"],
        phrases=["token expired", "reauth required", "expired credentials"],
    ),
)


@dataclass(frozen=True)
class NormalizedError:
    """A classified error, safe to show to a user."""

    kind: ErrorKind
    message: str
    action: ErrorAction
    status: int | None = None
    code: str | None = None
    request_id: str | None = None

    @property
    def breaks_connection(self) -> bool:
        """True for kinds that move an active connection to broken."""
        return self.kind in CONNECTION_BREAKING_KINDS

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "action": self.action.value,
            "status": self.status,
            "code": self.code,
            "request_id": self.request_id,
        }


def _matches(rule: _Rule, status: int | None, code: str, message: str) -> bool:
    if status is not None and status in rule.statuses:
        return True
    if code and code in rule.codes:
        return True
    return any(phrase in message for phrase in rule.phrases)


def classify(raw: RawProviderError) -> ErrorKind:
    """Return the canonical kind for a raw provider error."""
    code = str(raw.code).strip().upper() if raw.code is not None else ""
    message = (raw.message or "").lower()

    for rule in RULES:
        if _matches(rule, raw.status, code, message):
            return rule.kind

    if raw.transport_error and raw.status is None:
        return ErrorKind.NETWORK_ERROR
    if raw.status is not None and raw.status >= 500:
        return ErrorKind.PROVIDER_UNAVAILABLE
    if raw.status is not None and 400 <= raw.status < 500:
        return ErrorKind.CLIENT_REQUEST_ERROR
    return ErrorKind.UNKNOWN_ERROR


def normalize(error: RawProviderError | ProviderError | Exception) -> NormalizedError:
    """Classify an error and attach its user message and recommended action.

    Accepts a :class:`RawProviderError`, any :class:`ProviderError` (its
    ``.raw`` record is used), or an arbitrary exception (classified from its
    text alone).
    """
    if isinstance(error, RawProviderError):
        raw = error
    elif isinstance(error, ProviderError):
        raw = error.raw
    else:
        raw = RawProviderError(message=str(error))

    kind = classify(raw)
    return NormalizedError(
        kind=kind,
        message=MESSAGES[kind],
        action=ACTIONS[kind],
        status=raw.status,
        code=raw.code,
        request_id=raw.request_id,
    )


def is_registration_required(raw: RawProviderError) -> bool:
    return classify(raw) is ErrorKind.REGISTRATION_REQUIRED


def is_user_mismatch(raw: RawProviderError) -> bool:
    return classify(raw) is ErrorKind.USER_MISMATCH


def is_auth_config_error(raw: RawProviderError) -> bool:
    return classify(raw) is ErrorKind.AUTH_CONFIG_ERROR


def is_rate_limited(raw: RawProviderError) -> bool:
    return classify(raw) is ErrorKind.RATE_LIMITED


def is_connection_disabled(raw: RawProviderError) -> bool:
    return classify(raw) is ErrorKind.CONNECTION_DISABLED
