"""Keep gateway tokens and other credentials out of log output."""

from __future__ import annotations

import logging
import re
import traceback
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx

REDACTED = "***"
SENSITIVE_PARAMS = frozenset({"token", "access-token", "auth", "apikey", "api-key", "key", "secret", "password"})

_SECRET_WORDS = r"(?:token|access_token|auth|apikey|api_key|key|secret|password)"
_URL_RE = re.compile(r"(?i)\b(?:https?|wss?)://[^\s\"'<>]+")
_JSON_SECRET_RE = re.compile(rf"(?i)(\"{_SECRET_WORDS}\"\s*:\s*\")([^\"]*)(\")")
_ASSIGNMENT_RE = re.compile(rf"(?i)(\b{_SECRET_WORDS}\b\s*[=:]\s*)([^&\s,;\"'<>]+)")
_FLAG_RE = re.compile(rf"(?i)(--{_SECRET_WORDS}[ =])(\S+)")
_BEARER_RE = re.compile(r"(?i)\bBearer\s+[A-Za-z0-9._~+\-/]+=*")

_REDACTED_LOGGERS = ("", "uvicorn", "uvicorn.error", "uvicorn.access", "httpx", "httpcore", "mission_control")
_gateway_logger = logging.getLogger("mission_control.gateway.http")


def _is_sensitive_param(name: str) -> bool:
    return name.strip().lower().replace("_", "-") in SENSITIVE_PARAMS


def redact_url(url: str) -> str:
    """Mask sensitive query parameter values, leaving host and path readable."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.query:
        return url

    pairs = parse_qsl(parts.query, keep_blank_values=True)
    if not any(_is_sensitive_param(name) for name, _ in pairs):
        return url
    masked = [(name, REDACTED if _is_sensitive_param(name) else value) for name, value in pairs]
    query = urlencode(masked, safe="*")
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def redact_text(value: str | None) -> str | None:
    """Mask URLs, bearer tokens, JSON secrets, ``key=value`` pairs and ``--token`` flags."""
    if value is None:
        return None
    text = _URL_RE.sub(lambda match: redact_url(match.group(0)), str(value))
    text = _JSON_SECRET_RE.sub(rf"\1{REDACTED}\3", text)
    text = _FLAG_RE.sub(rf"\1{REDACTED}", text)
    text = _ASSIGNMENT_RE.sub(rf"\1{REDACTED}", text)
    return _BEARER_RE.sub(f"Bearer {REDACTED}", text)


class SecretRedactionFilter(logging.Filter):
    """Rewrites each record's message (and traceback) with secrets masked."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            message = str(record.msg)
        record.msg = redact_text(message) or ""
        record.args = ()
        if record.exc_info:
            record.exc_text = redact_text("".join(traceback.format_exception(*record.exc_info)))
        return True


def install_log_redaction() -> None:
    """Attach the redaction filter to our loggers and their handlers (idempotent)."""
    redaction = SecretRedactionFilter()
    for name in _REDACTED_LOGGERS:
        logger = logging.getLogger(name)
        for target in (logger, *logger.handlers):
            if not any(isinstance(existing, SecretRedactionFilter) for existing in target.filters):
                target.addFilter(redaction)

    # httpx logs full request lines at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


async def _on_request(request: httpx.Request) -> None:
    _gateway_logger.debug("Gateway request method=%s url=%s", request.method, redact_url(str(request.url)))


async def _on_response(response: httpx.Response) -> None:
    _gateway_logger.info(
        "Gateway response method=%s url=%s status=%d",
        response.request.method,
        redact_url(str(response.request.url)),
        response.status_code,
    )


def httpx_event_hooks() -> dict[str, list]:
    return {"request": [_on_request], "response": [_on_response]}
