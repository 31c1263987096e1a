"""
Threat Detection Module

Pattern-based detection of XSS and SQL-injection payloads, HTML
sanitization, and a per-client heuristic for repeated probing.

These are pattern matchers, not parsers: obfuscated payloads can slip
through. The goal is to catch the canonical payload families and to make
sanitization additive wherever a field allows it.
"""

import re
import time
from html import escape
from html.parser import HTMLParser
from threading import Lock
from typing import Callable, Iterable, List, Optional, Pattern

from cachetools import TTLCache
from loguru import logger

from eduguard.core.constants import (
    ALLOWED_HTML_TAGS,
    ALLOWED_HTML_ATTRIBUTES,
    DEFAULT_PROBE_THRESHOLD,
    DEFAULT_PROBE_WINDOW_MS,
    MAX_TRACKED_CLIENTS,
)
from eduguard.core.logging_config import preview


def _compile(patterns: Iterable[str]) -> List[Pattern]:
    return [re.compile(p, re.IGNORECASE | re.DOTALL) for p in patterns]


# Event handler attributes a quote break-out typically injects
EVENT_HANDLERS = (
    r'(abort|blur|change|click|dblclick|error|focus|focusin|input|key(down|press|up)|load'
    r'|mouse(down|enter|leave|move|out|over|up)|pointer(down|enter|leave|move|over|up)'
    r'|reset|resize|scroll|select|submit|toggle|unload|animationstart|transitionend|begin|wheel)'
)

XSS_PATTERNS = _compile([
    r'<\s*script\b',                                   # Script tags
    r'<[^>]*[\s/"\']on\w+\s*=',                        # Event handler inside a tag
    r'["\']\s*on' + EVENT_HANDLERS + r'\s*=',         # Event handler breaking out of an attribute
    r'javascript\s*:',                                 # JavaScript protocol
    r'vbscript\s*:',                                   # VBScript protocol
    r'data\s*:\s*text/html',                           # HTML data URIs
    r'<\s*(iframe|object|embed|applet|frame|frameset|meta|base)\b',
    r'\bsrcdoc\s*=',
    r'style\s*=[^>]*expression\s*\(',                  # Legacy IE CSS expressions
])

SQL_INJECTION_PATTERNS = _compile([
    r'\bunion\b(\s+all)?\s+select\b',
    r';\s*(drop|delete|insert|update|create|alter|truncate|exec|execute|grant|revoke|shutdown)\b',
    r'[\'"]\s*(--|#|/\*)',                             # Quote closed then comment
    r'[\'"]\s*\)?\s*\b(or|and)\b\s+[\'"]?\w+[\'"]?\s*(=|like)\s*[\'"]?\w+',
    r'\b(or|and)\s+(\d+)\s*=\s*\2\b',                  # Numeric tautology (OR 1=1)
    r'\bdrop\s+(table|database|schema)\b',
    r'\b(sleep|pg_sleep|benchmark)\s*\(\s*\d',
    r'\bwaitfor\s+delay\b',
    r';\s*--',
])

# High-confidence probing payloads; a single hit is enough.
PROBE_PATTERNS = _compile([
    r'\bunion\s+(all\s+)?select\b',
    r'\bdrop\s+table\b',
    r'<\s*script',
    r'javascript\s*:',
    r'\beval\s*\(',
    r'document\s*\.\s*cookie',
    r'window\s*\.\s*location',
])

# Schemes that are not XSS on their own but never belong in free text.
SUSPICIOUS_SCHEME_PATTERNS = _compile([
    r'\bdata\s*:[^,\s]*;base64',
    r'\bdata\s*:\s*(text|application)/',
])

SAFE_URL_SCHEMES = ("http:", "https:", "mailto:")

# Tags whose whole content is dropped, not just the tag.
DROP_CONTENT_TAGS = frozenset({"script", "style", "iframe", "object", "embed", "noscript", "template"})

VOID_TAGS = frozenset({"br"})


def _matches_any(text: str, patterns: List[Pattern]) -> bool:
    return any(p.search(text) for p in patterns)


def detect_xss(text: str) -> bool:
    """
    Check input for markup-execution vectors.

    Example:
        >>> detect_xss("<script>alert(1)</script>")
        True
        >>> detect_xss("<img onerror=alert(1)>")
        True
        >>> detect_xss("hello world")
        False
    """
    if not text or not isinstance(text, str):
        return False
    return _matches_any(text, XSS_PATTERNS)


def detect_sql_injection(text: str) -> bool:
    """
    Check input for SQL keyword/operator sequences typical of injection.

    Plain prose that merely contains words such as "select" or "update"
    is not flagged.

    Example:
        >>> detect_sql_injection("'; DROP TABLE users; --")
        True
        >>> detect_sql_injection("normal search text")
        False
    """
    if not text or not isinstance(text, str):
        return False
    return _matches_any(text, SQL_INJECTION_PATTERNS)


def detect_suspicious_scheme(text: str) -> bool:
    """Check input for data: URIs that carry documents or base64 blobs."""
    if not text or not isinstance(text, str):
        return False
    return _matches_any(text, SUSPICIOUS_SCHEME_PATTERNS)


def is_probe_payload(text: str) -> bool:
    """Check input for high-confidence probing payloads."""
    if not text or not isinstance(text, str):
        return False
    return _matches_any(text, PROBE_PATTERNS)


class _AllowListSanitizer(HTMLParser):
    """HTMLParser that re-emits only allow-listed tags and attributes."""

    def __init__(self, allowed_tags: Iterable[str], allowed_attributes: Iterable[str]):
        super().__init__(convert_charrefs=True)
        self.allowed_tags = frozenset(t.lower() for t in allowed_tags)
        self.allowed_attributes = frozenset(a.lower() for a in allowed_attributes)
        self._parts: List[str] = []
        self._skip_depth = 0

    def _render_attrs(self, attrs) -> str:
        rendered = []
        for name, value in attrs:
            name = name.lower()
            if name not in self.allowed_attributes or name.startswith("on"):
                continue
            value = value or ""
            if name == "href":
                scheme_check = re.sub(r'\s+', '', value).lower()
                if ":" in scheme_check.split("/")[0] and not scheme_check.startswith(SAFE_URL_SCHEMES):
                    continue
            rendered.append(f' {name}="{escape(value, quote=True)}"')
        return "".join(rendered)

    def handle_starttag(self, tag, attrs):
        if tag in DROP_CONTENT_TAGS:
            self._skip_depth += 1
            return
        if self._skip_depth or tag not in self.allowed_tags:
            return
        self._parts.append(f"<{tag}{self._render_attrs(attrs)}>")

    def handle_startendtag(self, tag, attrs):
        if self._skip_depth or tag not in self.allowed_tags:
            return
        self._parts.append(f"<{tag}{self._render_attrs(attrs)}>")

    def handle_endtag(self, tag):
        if tag in DROP_CONTENT_TAGS:
            if self._skip_depth:
                self._skip_depth -= 1
            return
        if self._skip_depth or tag not in self.allowed_tags or tag in VOID_TAGS:
            return
        self._parts.append(f"</{tag}>")

    def handle_data(self, data):
        if self._skip_depth:
            return
        self._parts.append(escape(data, quote=False))

    def result(self) -> str:
        return "".join(self._parts)


def sanitize_html(
    html: str,
    allowed_tags: Optional[Iterable[str]] = None,
    allowed_attributes: Optional[Iterable[str]] = None
) -> str:
    """
    Strip disallowed tags and attributes, keeping an allow-listed subset.

    - Allowed tags (default b, i, em, strong, p, br) are re-emitted in a
      normalized form with only allowed attributes
    - script/style/iframe/object/embed are removed with their content
    - Other tags are removed but their text is kept
    - Text is entity-escaped, comments are dropped

    The output is a fixed point: sanitize_html(sanitize_html(x)) == sanitize_html(x).

    Example:
        >>> sanitize_html('<p onclick="x()">Hi <script>alert(1)</script><b>there</b></p>')
        '<p>Hi <b>there</b></p>'
    """
    if not html:
        return ""

    parser = _AllowListSanitizer(
        allowed_tags if allowed_tags is not None else ALLOWED_HTML_TAGS,
        allowed_attributes if allowed_attributes is not None else ALLOWED_HTML_ATTRIBUTES,
    )
    parser.feed(html.replace('\x00', ''))
    parser.close()
    return parser.result()


class ThreatDetector:
    """
    Detector with a per-client memory of recent threat hits.

    The pattern checks are stateless; ``detect_suspicious_activity`` adds
    a frequency heuristic so that a client repeatedly sending payloads
    that trip the XSS/SQL detectors is flagged as probing even when no
    single payload is a high-confidence probe.

    Example:
        >>> detector = ThreatDetector(probe_threshold=3, probe_window_ms=60000)
        >>> detector.detect_suspicious_activity('c1', "1' UNION SELECT password FROM users")
        True
    """

    def __init__(
        self,
        probe_threshold: int = DEFAULT_PROBE_THRESHOLD,
        probe_window_ms: int = DEFAULT_PROBE_WINDOW_MS,
        max_clients: int = MAX_TRACKED_CLIENTS,
        clock: Optional[Callable[[], float]] = None,
        allowed_tags: Optional[Iterable[str]] = None,
    ):
        if probe_threshold <= 0:
            raise ValueError("probe_threshold must be positive")

        self.probe_threshold = probe_threshold
        self.probe_window_ms = probe_window_ms
        self.allowed_tags = list(allowed_tags) if allowed_tags is not None else list(ALLOWED_HTML_TAGS)
        self._clock = clock or time.monotonic
        # client_id -> timestamps of recent detector hits
        self._hits: TTLCache = TTLCache(
            maxsize=max_clients,
            ttl=probe_window_ms / 1000.0,
            timer=self._clock
        )
        self._lock = Lock()

    def detect_xss(self, text: str) -> bool:
        return detect_xss(text)

    def detect_sql_injection(self, text: str) -> bool:
        return detect_sql_injection(text)

    def sanitize_html(self, html: str) -> str:
        return sanitize_html(html, allowed_tags=self.allowed_tags)

    def detect_suspicious_activity(self, client_id: str, text: str) -> bool:
        """
        Flag probing behaviour from ``client_id``.

        Returns True when the input is a high-confidence probe, or when
        XSS/SQL detector hits from this client reach ``probe_threshold``
        within ``probe_window_ms``.
        """
        if not text or not isinstance(text, str):
            return False

        xss = detect_xss(text)
        sql = detect_sql_injection(text)
        probe = is_probe_payload(text)
        if not (xss or sql or probe):
            return False

        now = self._clock()
        window = self.probe_window_ms / 1000.0
        with self._lock:
            recent = [t for t in self._hits.get(client_id, []) if now - t < window]
            recent.append(now)
            self._hits[client_id] = recent
            count = len(recent)

        suspicious = probe or count >= self.probe_threshold
        if suspicious:
            logger.warning(
                f"Suspicious activity from '{client_id}' "
                f"(hits={count}, xss={xss}, sql={sql}): {preview(text)!r}"
            )
        return suspicious

    def suspicious_count(self, client_id: str) -> int:
        """Number of detector hits from ``client_id`` inside the probe window."""
        now = self._clock()
        window = self.probe_window_ms / 1000.0
        with self._lock:
            return len([t for t in self._hits.get(client_id, []) if now - t < window])

    def reset(self, client_id: str) -> None:
        with self._lock:
            self._hits.pop(client_id, None)
