"""CloudWatch Logs Insights deep links for a deployed service."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from .scope import Scope

QUERY_WINDOW_SECONDS = 1800

BASE_QUERY = (
    "fields @timestamp, level, message, meta.fileName, error.message, request.uri\n"
    "| filter ispresent(level) # and level != 'trace'\n"
    '| filter message != "Measurement of flush time"'
    ' and message != "Measurement of execution time"'
)

# Characters encodeURIComponent leaves alone besides ASCII alphanumerics and -_.~
URI_COMPONENT_SAFE = "!*'()"


def _escape(value: str) -> str:
    # The console escapes everything but alphanumerics and -_.~ as *XX
    out = []
    for ch in value:
        if ch.isascii() and (ch.isalnum() or ch in "-_.~"):
            out.append(ch)
        else:
            out.append(f"*{ord(ch):02x}")
    return "".join(out)


def serialize(value: Any) -> str:
    """Serialize ``value`` in the console's ``~(key~value)`` URL notation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return f"'{_escape(value)}"
    if isinstance(value, (list, tuple)):
        return "(~" + "~".join(serialize(v) for v in value) + ")"
    if isinstance(value, dict):
        return "~(" + "~".join(f"{k}~{serialize(v)}" for k, v in value.items()) + ")"
    raise TypeError(f"Cannot serialize {type(value).__name__}")


def query_text(revision: str | None) -> str:
    query = BASE_QUERY
    if revision:
        query += f'\n| filter meta.revision = "{revision}"'
    return query + "\n| sort @timestamp desc\n| limit 10000"


def log_query_link(
    region: str,
    environment: str,
    service: str,
    names: list[str],
    revision: str | None,
) -> str:
    """Logs Insights URL over the last 30 minutes of the given functions' logs."""
    scope = Scope(environment, service)
    detail = serialize(
        {
            "end": 0,
            "start": -QUERY_WINDOW_SECONDS,
            "timeType": "RELATIVE",
            "tz": "UTC",
            "unit": "seconds",
            "editorString": query_text(revision),
            "source": [scope.log_group(name) for name in names],
            "lang": "CWLI",
        }
    )
    encoded = quote(detail, safe=URI_COMPONENT_SAFE).replace("'", "%27")
    return (
        f"https://{region}.console.aws.amazon.com/cloudwatch/home"
        f"?#logsV2:logs-insights$3FqueryDetail$3D{encoded}"
    )
