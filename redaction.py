"""
Credential redaction for recorded URLs, warnings and log records.

Every URL that reaches a RequestTrace, a warning string or a log line passes
through here first, so authentication-bearing query parameters are never
persisted to the emitted JSON files.
"""

import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

REDACTED = "REDACTED"
SECRET_QUERY_KEYS = frozenset({"app_key", "api_key", "key", "token"})

# key=value pairs inside arbitrary text; the lookbehind keeps `key` from matching inside `app_key`
_SECRET_PAIR_PATTERN = re.compile(
    r"(?<![A-Za-z0-9_])(" + "|".join(sorted(SECRET_QUERY_KEYS)) + r")=([^&\s#\"']*)",
    re.IGNORECASE,
)


def sanitize_url_for_lineage(url: str) -> str:
    """
    Replace the value of every credential query parameter with REDACTED.

    Credential pairs in the fragment are redacted too. All other parameters,
    their order and the rest of the URL are preserved.
    """
    parts = urlsplit(url)
    if not parts.query:
        return redact_secrets(url)
    pairs = parse_qsl(parts.query, keep_blank_values=True)
    if not pairs:
        return redact_secrets(url)
    sanitized = [
        (name, REDACTED if name.lower() in SECRET_QUERY_KEYS else value)
        for name, value in pairs
    ]
    query = urlencode(sanitized, safe=",:/@")
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, redact_secrets(parts.fragment)))


def redact_secrets(text: str) -> str:
    """Redact credential `key=value` pairs embedded in free text such as error messages"""
    return _SECRET_PAIR_PATTERN.sub(lambda match: f"{match.group(1)}={REDACTED}", text)
