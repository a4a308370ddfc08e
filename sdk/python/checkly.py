#!/usr/bin/env python3
"""
checkly — Python client for the Checkly monitoring API

Zero-dependency client library for the Checkly REST API (v1).
Works with Python 3.9+ using only the standard library.

Quick start:
    from checkly import Checkly, Check, Request, TYPE_API

    client = Checkly("my-api-key")

    # Create a check
    check_id = client.create_check(Check(
        name="My API",
        check_type=TYPE_API,
        activated=True,
        request=Request(method="GET", url="https://api.example.com/health"),
    ))

    # Read it back
    check = client.get_check(check_id)
    print(f"{check.name}: every {check.frequency} min")

    # Remove it
    client.delete_check(check_id)

Set CHECKLY_API_URL to point the client at another API host, and pass
debug=sys.stderr to dump every request and response.
"""

from __future__ import annotations

import http.client
import json
import logging
import os
import re
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import MISSING, dataclass, field, fields, is_dataclass
from datetime import datetime
from typing import (
    Any,
    Dict,
    List,
    Optional,
    TextIO,
    Tuple,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)


__version__ = "1.0.0"

DEFAULT_API_URL = "https://api.checklyhq.com"

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ChecklyError(Exception):
    """Base exception for Checkly client errors."""

    def __init__(self, message: str, status_code: int = 0, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class SerializationError(ChecklyError):
    """Entity could not be encoded to JSON. Raised before any request is sent."""
    pass


class TransportError(ChecklyError):
    """Request could not be built or sent, or the response body could not be read.

    status_code is 0 unless a status line was received before the failure.
    """
    pass


class UnexpectedStatusError(ChecklyError):
    """Response status differs from the one the operation expects."""

    def __init__(self, message: str, expected: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.expected = expected


class AuthError(UnexpectedStatusError):
    """API key missing or invalid (401/403)."""
    pass


class NotFoundError(UnexpectedStatusError):
    """Check not found (404)."""
    pass


class DecodeError(ChecklyError):
    """Success response body could not be decoded into the expected entity."""
    pass


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Check types
TYPE_BROWSER = "BROWSER"
TYPE_API = "API"

# Escalation types, for AlertSettings.escalation_type
RUN_BASED = "RUN_BASED"
TIME_BASED = "TIME_BASED"

# Assertion sources
STATUS_CODE = "STATUS_CODE"
JSON_BODY = "JSON_BODY"
TEXT_BODY = "TEXT_BODY"
HEADERS = "HEADERS"
RESPONSE_TIME = "RESPONSE_TIME"

# Assertion comparisons
EQUALS = "EQUALS"
NOT_EQUALS = "NOT_EQUALS"
IS_EMPTY = "IS_EMPTY"
NOT_EMPTY = "NOT_EMPTY"
GREATER_THAN = "GREATER_THAN"
LESS_THAN = "LESS_THAN"
CONTAINS = "CONTAINS"
NOT_CONTAINS = "NOT_CONTAINS"


# ---------------------------------------------------------------------------
# Wire mapping
# ---------------------------------------------------------------------------

# Alert channel config values: str, number, bool, or a nested mapping of the same.
ConfigValue = Union[str, int, float, bool, Dict[str, Any]]
ConfigMap = Dict[str, ConfigValue]


def _wire(name: str, default: Any = MISSING, *, default_factory: Any = MISSING, omitempty: bool = False):
    """Declare a dataclass field with its JSON name.

    omitempty fields are left out of the encoded object when they hold a
    zero value ("", 0, False, None, empty list/dict). Nested entities are
    always sent.
    """
    return field(
        default=default,
        default_factory=default_factory,
        metadata={"json": name, "omitempty": omitempty},
    )


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if is_dataclass(value):
        return False
    if isinstance(value, (str, list, dict, bool, int, float)):
        return not value
    return False


def _encode_value(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return value.to_dict()
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_encode_value(v) for v in value]
    if isinstance(value, dict):
        return {k: _encode_value(v) for k, v in value.items()}
    return value


_FRACTION = re.compile(r"\.(\d+)")


def _parse_time(value: str) -> datetime:
    # Before 3.11 fromisoformat() rejects a trailing "Z" and fractions other
    # than 3 or 6 digits; RFC 3339 allows any number of them.
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    value = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value, count=1)
    return datetime.fromisoformat(value)


def _decode_config(value: Any, path: str) -> Any:
    if isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, dict):
        return {str(k): _decode_config(v, f"{path}.{k}") for k, v in value.items()}
    raise TypeError(f"{path}: unsupported config value {value!r}")


def _decode_value(tp: Any, value: Any, path: str) -> Any:
    """Decode a JSON value into `tp`. Raises TypeError/ValueError on mismatch."""
    if tp is Any:
        return value
    if tp == ConfigMap:
        if not isinstance(value, dict):
            raise TypeError(f"{path}: expected object, got {type(value).__name__}")
        return _decode_config(value, path)

    origin = get_origin(tp)
    if origin is Union:
        if value is None:
            return None
        inner = [a for a in get_args(tp) if a is not type(None)]
        return _decode_value(inner[0], value, path)
    if origin in (list, List):
        if not isinstance(value, list):
            raise TypeError(f"{path}: expected array, got {type(value).__name__}")
        (item_tp,) = get_args(tp)
        return [_decode_value(item_tp, v, f"{path}[{i}]") for i, v in enumerate(value)]
    if origin in (dict, Dict):
        if not isinstance(value, dict):
            raise TypeError(f"{path}: expected object, got {type(value).__name__}")
        _, item_tp = get_args(tp)
        return {k: _decode_value(item_tp, v, f"{path}.{k}") for k, v in value.items()}

    if isinstance(tp, type) and is_dataclass(tp):
        if not isinstance(value, dict):
            raise TypeError(f"{path}: expected object, got {type(value).__name__}")
        return tp._from_wire(value, path)
    if tp is datetime:
        if not isinstance(value, str):
            raise TypeError(f"{path}: expected timestamp string, got {type(value).__name__}")
        return _parse_time(value)
    if tp is bool:
        if not isinstance(value, bool):
            raise TypeError(f"{path}: expected bool, got {type(value).__name__}")
        return value
    if tp is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"{path}: expected integer, got {value!r}")
        return value
    if tp is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError(f"{path}: expected number, got {value!r}")
        return float(value)
    if tp is str:
        if not isinstance(value, str):
            raise TypeError(f"{path}: expected string, got {type(value).__name__}")
        return value
    raise TypeError(f"{path}: cannot decode into {tp!r}")


class _WireModel:
    """Mixin giving dataclasses JSON encode/decode driven by their _wire() fields."""

    def to_dict(self) -> Dict[str, Any]:
        """Return the JSON-ready wire representation."""
        out: Dict[str, Any] = {}
        for f in fields(self):
            name = f.metadata.get("json", f.name)
            value = getattr(self, f.name)
            if f.metadata.get("omitempty") and _is_empty(value):
                continue
            out[name] = _encode_value(value)
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        """Build an instance from a decoded JSON object.

        Unknown keys are ignored; missing keys and nulls keep the default.
        Raises TypeError or ValueError when a value has the wrong shape.
        """
        return cls._from_wire(data, cls.__name__)

    @classmethod
    def _from_wire(cls, data: Dict[str, Any], path: str):
        if not isinstance(data, dict):
            raise TypeError(f"{path}: expected object, got {type(data).__name__}")
        hints = get_type_hints(cls)
        kwargs: Dict[str, Any] = {}
        for f in fields(cls):
            name = f.metadata.get("json", f.name)
            raw = data.get(name)
            if raw is None:
                continue
            kwargs[f.name] = _decode_value(hints[f.name], raw, f"{path}.{name}")
        return cls(**kwargs)


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class KeyValue(_WireModel):
    """A request header or query parameter."""
    key: str = _wire("key", "")
    value: str = _wire("value", "")
    locked: bool = _wire("locked", False)


@dataclass
class EnvironmentVariable(_WireModel):
    """A variable exposed to the check script while it runs."""
    key: str = _wire("key", "")
    value: str = _wire("value", "")
    locked: bool = _wire("locked", False)


@dataclass
class BasicAuth(_WireModel):
    username: str = _wire("username", "", omitempty=True)
    password: str = _wire("password", "", omitempty=True)


@dataclass
class Assertion(_WireModel):
    """A pass/fail rule evaluated against an API check's response.

    Example:
        Assertion(source=STATUS_CODE, comparison=EQUALS, target="200")
    """
    edit: bool = _wire("edit", False)
    order: int = _wire("order", 0)
    array_index: int = _wire("arrayIndex", 0)
    array_selector: int = _wire("arraySelector", 0)
    source: str = _wire("source", "")
    property: str = _wire("property", "")
    comparison: str = _wire("comparison", "")
    target: str = _wire("target", "")


@dataclass
class Request(_WireModel):
    """The HTTP request an API check performs."""
    method: str = _wire("method", "")
    url: str = _wire("url", "")
    follow_redirects: bool = _wire("followRedirects", False)
    body: str = _wire("body", "")
    body_type: str = _wire("bodyType", "", omitempty=True)
    headers: List[KeyValue] = _wire("headers", default_factory=list)
    query_parameters: List[KeyValue] = _wire("queryParameters", default_factory=list)
    assertions: List[Assertion] = _wire("assertions", default_factory=list)
    basic_auth: BasicAuth = _wire("basicAuth", default_factory=BasicAuth)


@dataclass
class RunBasedEscalation(_WireModel):
    """Alert after this many consecutive failed runs."""
    failed_run_threshold: int = _wire("failedRunThreshold", 0, omitempty=True)


@dataclass
class TimeBasedEscalation(_WireModel):
    """Alert once the check has been failing for this many minutes."""
    minutes_failing_threshold: int = _wire("minutesFailingThreshold", 0, omitempty=True)


@dataclass
class Reminders(_WireModel):
    """Number of reminders sent after an alert, and minutes between them."""
    amount: int = _wire("amount", 0, omitempty=True)
    interval: int = _wire("interval", 0, omitempty=True)


@dataclass
class SSLCertificates(_WireModel):
    """Alert when the certificate expires within alert_threshold days."""
    enabled: bool = _wire("enabled", False)
    alert_threshold: int = _wire("alertThreshold", 0)


@dataclass
class AlertSettings(_WireModel):
    """Escalation policy for a failing check.

    escalation_type selects which of run_based_escalation or
    time_based_escalation applies (RUN_BASED / TIME_BASED).
    """
    escalation_type: str = _wire("escalationType", "", omitempty=True)
    run_based_escalation: RunBasedEscalation = _wire("runBasedEscalation", default_factory=RunBasedEscalation)
    time_based_escalation: TimeBasedEscalation = _wire("timeBasedEscalation", default_factory=TimeBasedEscalation)
    reminders: Reminders = _wire("reminders", default_factory=Reminders)
    ssl_certificates: SSLCertificates = _wire("sslCertificates", default_factory=SSLCertificates)


@dataclass
class AlertChannel(_WireModel):
    """A notification channel. Read-only: the API does not accept writes here."""
    id: str = _wire("id", "")
    type: str = _wire("type", "", omitempty=True)
    config: ConfigMap = _wire("config", default_factory=dict, omitempty=True)
    created_at: Optional[datetime] = _wire("created_at", None, omitempty=True)
    updated_at: Optional[datetime] = _wire("updated_at", None, omitempty=True)


@dataclass
class Subscription(_WireModel):
    """Binding of a check to an alert channel. Read-only."""
    id: str = _wire("id", "", omitempty=True)
    check_id: str = _wire("checkId", "", omitempty=True)
    alert_channel_id: int = _wire("alertChannelId", 0, omitempty=True)
    activated: bool = _wire("activated", False)


@dataclass
class Check(_WireModel):
    """A monitoring check.

    id, created_at and updated_at are assigned by the server and are only
    populated on checks returned by the API. frequency is in minutes;
    response times are in milliseconds.
    """
    id: str = _wire("id", "", omitempty=True)
    name: str = _wire("name", "")
    check_type: str = _wire("checkType", "")
    frequency: int = _wire("frequency", 0)
    activated: bool = _wire("activated", False)
    muted: bool = _wire("muted", False)
    should_fail: bool = _wire("shouldFail", False)
    locations: List[str] = _wire("locations", default_factory=list)
    degraded_response_time: int = _wire("degradedResponseTime", 0)
    max_response_time: int = _wire("maxResponseTime", 0)
    script: str = _wire("script", "", omitempty=True)
    created_at: Optional[datetime] = _wire("created_at", None, omitempty=True)
    updated_at: Optional[datetime] = _wire("updated_at", None, omitempty=True)
    environment_variables: List[EnvironmentVariable] = _wire("environmentVariables", default_factory=list)
    double_check: bool = _wire("doubleCheck", False)
    tags: List[str] = _wire("tags", default_factory=list, omitempty=True)
    ssl_check: bool = _wire("sslCheck", False)
    ssl_check_domain: str = _wire("sslCheckDomain", "")
    setup_snippet_id: int = _wire("setupSnippetId", 0, omitempty=True)
    tear_down_snippet_id: int = _wire("tearDownSnippetId", 0, omitempty=True)
    local_setup_script: str = _wire("localSetupScript", "", omitempty=True)
    local_tear_down_script: str = _wire("localTearDownScript", "", omitempty=True)
    alert_settings: AlertSettings = _wire("alertSettings", default_factory=AlertSettings)
    use_global_alert_settings: bool = _wire("useGlobalAlertSettings", False)
    request: Request = _wire("request", default_factory=Request)
    alert_channel_subscriptions: List[Subscription] = _wire("alertChannelSubscriptions", default_factory=list)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClientConfig:
    """Immutable settings shared by every call a client makes.

    Args:
        api_key: Checkly API key, sent as a bearer token.
        base_url: API host. Defaults to $CHECKLY_API_URL, else the production API.
        opener: Anything with urllib's OpenerDirector.open(request, timeout=...).
                Swap it for test doubles, proxies or custom TLS handling.
        debug: Text stream receiving a dump of every request and response.
        timeout: Socket timeout in seconds handed to the opener. None leaves
                 the opener's default in place.
    """
    api_key: str = field(repr=False)
    base_url: str = field(default_factory=lambda: os.environ.get("CHECKLY_API_URL", DEFAULT_API_URL))
    opener: Any = field(default_factory=urllib.request.build_opener, repr=False)
    debug: Optional[TextIO] = field(default=None, repr=False)
    timeout: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))


# ---------------------------------------------------------------------------
# Trace dumps
# ---------------------------------------------------------------------------


def _format_request(req: urllib.request.Request) -> str:
    parts = urllib.parse.urlsplit(req.full_url)
    target = parts.path or "/"
    if parts.query:
        target += "?" + parts.query
    lines = [f"{req.get_method()} {target} HTTP/1.1", f"Host: {parts.netloc}"]
    lines += [f"{k}: {v}" for k, v in req.header_items()]
    body = req.data.decode("utf-8", errors="replace") if req.data else ""
    return "\r\n".join(lines) + "\r\n\r\n" + body


def _format_response(resp: Any, body: str) -> str:
    lines = [f"HTTP/1.1 {resp.status} {resp.reason}"]
    if resp.headers is not None:
        lines += [f"{k}: {v}" for k, v in resp.headers.items()]
    return "\r\n".join(lines) + "\r\n\r\n" + body


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class Checkly:
    """Client for the Checkly API.

    Args:
        api_key: Checkly API key.
        base_url: API host (e.g. "https://api.checklyhq.com").
        opener: Custom urllib opener; see ClientConfig.
        debug: Text stream for request/response dumps (e.g. sys.stderr).
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: Optional[str] = None,
        opener: Any = None,
        debug: Optional[TextIO] = None,
        timeout: Optional[float] = None,
    ):
        overrides: Dict[str, Any] = {}
        if base_url is not None:
            overrides["base_url"] = base_url
        if opener is not None:
            overrides["opener"] = opener
        self.config = ClientConfig(api_key=api_key, debug=debug, timeout=timeout, **overrides)

    @classmethod
    def from_config(cls, config: ClientConfig) -> "Checkly":
        """Create a client around an already-built ClientConfig."""
        client = cls.__new__(cls)
        client.config = config
        return client

    def __repr__(self) -> str:
        return f"Checkly(base_url={self.config.base_url!r})"

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def make_api_call(self, method: str, path: str, data: Optional[bytes] = None) -> Tuple[int, str]:
        """Send one request to /v1/<path> and return (status code, body text).

        Any status is returned as-is; interpreting it is up to the caller.
        Raises TransportError if the request cannot be built or sent, or if
        the body cannot be read.
        """
        url = f"{self.config.base_url}/v1/{path}"
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "content-type": "application/json",
        }
        try:
            req = urllib.request.Request(url, data=data, headers=headers, method=method)
        except ValueError as e:
            raise TransportError(f"failed to create HTTP request: {e}") from e

        if self.config.debug is not None:
            self._trace(_format_request(req))

        kwargs: Dict[str, Any] = {}
        if self.config.timeout is not None:
            kwargs["timeout"] = self.config.timeout
        try:
            resp = self.config.opener.open(req, **kwargs)
        except urllib.error.HTTPError as e:
            # urllib raises for 4xx/5xx; the error doubles as the response.
            resp = e
        except (OSError, http.client.HTTPException, ValueError) as e:
            raise TransportError(f"HTTP request failed: {e}") from e

        try:
            status = resp.status
            try:
                raw = resp.read()
            except (OSError, http.client.HTTPException) as e:
                if self.config.debug is not None:
                    self._trace(_format_response(resp, ""))
                raise TransportError(f"failed to read response body: {e}", status_code=status) from e
            body = raw.decode("utf-8", errors="replace")
            if self.config.debug is not None:
                self._trace(_format_response(resp, body))
        finally:
            resp.close()

        logger.debug("%s %s -> %d", method, url, status)
        return status, body

    def _trace(self, dump: str) -> None:
        # Best-effort: a broken debug sink must not change the call's outcome.
        try:
            self.config.debug.write(dump + "\n\n")
        except Exception as e:
            logger.debug("discarding trace dump: %s", e)

    @staticmethod
    def _encode(check: Check) -> bytes:
        try:
            return json.dumps(check.to_dict(), allow_nan=False).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise SerializationError(f"cannot encode check: {e}") from e

    @staticmethod
    def _expect(status: int, body: str, expected: int) -> None:
        if status == expected:
            return
        msg = f"unexpected response status {status}: {body!r}"
        if status == 404:
            raise NotFoundError(msg, expected=expected, status_code=status, body=body)
        if status in (401, 403):
            raise AuthError(msg, expected=expected, status_code=status, body=body)
        raise UnexpectedStatusError(msg, expected=expected, status_code=status, body=body)

    @staticmethod
    def _decode(status: int, body: str) -> Check:
        try:
            return Check.from_dict(json.loads(body))
        except (TypeError, ValueError, RecursionError) as e:
            raise DecodeError(f"decoding error for data {body}: {e}", status_code=status, body=body) from e

    # ------------------------------------------------------------------
    # Checks — CRUD
    # ------------------------------------------------------------------

    def create_check(self, check: Check) -> str:
        """Create a new check. Returns the ID the server assigned to it."""
        data = self._encode(check)
        status, body = self.make_api_call("POST", "checks", data)
        self._expect(status, body, 201)
        return self._decode(status, body).id

    def update_check(self, check_id: str, check: Check) -> None:
        """Replace an existing check with `check`.

        This is a full replace, not a patch: fields left at their defaults
        are sent as such.
        """
        data = self._encode(check)
        status, body = self.make_api_call("PUT", f"checks/{check_id}", data)
        self._expect(status, body, 200)
        self._decode(status, body)

    def delete_check(self, check_id: str) -> None:
        """Delete a check."""
        status, body = self.make_api_call("DELETE", f"checks/{check_id}")
        self._expect(status, body, 204)

    def get_check(self, check_id: str) -> Check:
        """Get a check by ID."""
        status, body = self.make_api_call("GET", f"checks/{check_id}")
        self._expect(status, body, 200)
        return self._decode(status, body)
