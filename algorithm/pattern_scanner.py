"""
goal: count occurrences of named signature sets inside a file. a signature category is either a list of
raw byte sequences (file headers, OLE/ZIP magic) or a list of case-insensitive regular expressions that are
searched in the best-effort text view of the buffer (API names, script keywords, obfuscation markers).

matching rules
• byte signatures count OVERLAPPING matches: every start offset that matches is one hit, so b"AAA" holds
  b"AA" twice. each signature is one linear bytes.find() walk over the buffer.
• text patterns count non-overlapping matches per pattern (re.finditer semantics), summed over all patterns.
  the text view is decoded with errors="replace", so scanning never raises on binary input.

categories
the built-in table below always exists. an optional JSON file can replace categories by name, e.g.
  [{"name": "mutex_apis", "severity": "high", "kind": "text", "patterns": ["CreateMutex", "OpenMutex"]},
   {"name": "executable_headers", "kind": "bytes", "patterns": ["4d5a", "7f454c46"]}]
byte patterns in JSON are hex strings. unknown or malformed entries are skipped with a warning.
"""

from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from algorithm.byte_stats import BytesLike, decode_text

logger = logging.getLogger("threatlens.features")

SEVERITIES = ("low", "medium", "high", "critical")


@dataclass(frozen=True)
class SignatureCategory:
    name: str  # stable key used by the feature rules
    severity: str  # low | medium | high | critical
    kind: str  # "bytes" for raw signatures, "text" for regex patterns
    patterns: tuple[Any, ...]  # tuple[bytes, ...] or tuple[str, ...] depending on kind
    description: str = ""  # short human text for the signature table in the UI


def _b(*sigs: bytes) -> tuple[bytes, ...]:
    return tuple(sigs)


DEFAULT_CATEGORIES: tuple[SignatureCategory, ...] = (
    SignatureCategory(
        "executable_headers",
        "high",
        "bytes",
        _b(b"MZ", b"PE", b"\x7fELF"),
        "Executable header signatures (MZ, PE, ELF)",
    ),
    SignatureCategory(
        "import_names",
        "medium",
        "text",
        ("kernel32", "ntdll", "user32", "advapi32"),
        "Windows system library names",
    ),
    SignatureCategory(
        "event_apis",
        "medium",
        "text",
        ("CreateEvent", "OpenEvent", "SetEvent"),
        "Event object API names",
    ),
    SignatureCategory(
        "mutex_apis",
        "high",
        "text",
        ("CreateMutex", "OpenMutex", "ReleaseMutex"),
        "Mutex API names",
    ),
    SignatureCategory(
        "script_keywords",
        "high",
        "text",
        (
            "eval",
            "exec",
            "shell",
            "cmd",
            "powershell",
            "download",
            "invoke",
            "bypass",
            "hidden",
            "base64",
            "decode",
            "encrypt",
            "obfuscate",
        ),
        "Suspicious scripting keywords",
    ),
    SignatureCategory(
        "obfuscation_markers",
        "high",
        "text",
        (r"[A-Za-z0-9+/]{20,}={0,2}", r"\\x[0-9a-f]{2}", r"\\u[0-9a-f]{4}"),
        "Long base64 runs and escaped byte sequences",
    ),
    SignatureCategory(
        "script_events",
        "low",
        "text",
        ("addEventListener", "onload", "onclick", "setTimeout"),
        "Script event hooks",
    ),
    SignatureCategory(
        "script_locks",
        "low",
        "text",
        ("lock", "mutex", "semaphore", "critical"),
        "Script locking keywords",
    ),
    SignatureCategory(
        "macro_signatures",
        "high",
        "bytes",
        _b(b"\xd0\xcf\x11\xe0", b"PK\x03\x04"),
        "OLE and Office Open XML containers",
    ),
    SignatureCategory(
        "embedded_objects",
        "medium",
        "text",
        ("application/x-msdownload", "application/octet-stream", "application/x-executable"),
        "Embedded executable object MIME types",
    ),
    SignatureCategory(
        "document_events",
        "high",
        "text",
        ("AutoOpen", "Document_Open", "Workbook_Open"),
        "Auto-run macro entry points",
    ),
    SignatureCategory(
        "archive_risky_entries",
        "high",
        "text",
        (r"[\w\-. ]{1,64}\.(?:exe|dll|scr|com|bat|cmd|ps1|vbs|js|jar)\b",),
        "Archive entries with executable or script extensions",
    ),
)


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str]:
    # compiled regexes are shared by every scan, lru_cache keeps this thread-safe and cheap
    return re.compile(pattern, re.IGNORECASE)


def scan_byte_signatures(buffer: BytesLike, signatures: Iterable[bytes]) -> int:
    """Count overlapping exact matches of every signature in the buffer."""
    data = bytes(buffer)
    count = 0
    for sig in signatures:
        if not sig or len(sig) > len(data):  # empty or longer than the buffer can never match
            continue
        idx = data.find(sig)
        while idx != -1:
            count += 1
            idx = data.find(sig, idx + 1)  # step one byte so overlapping hits are counted
    return count


def scan_text_patterns(text: str, patterns: Iterable[str]) -> int:
    """Count case-insensitive regex matches of all patterns in text."""
    count = 0
    for pat in patterns:
        count += sum(1 for _ in _compile(pat).finditer(text))
    return count


def _category_from_json(obj: Mapping[str, Any]) -> SignatureCategory:
    # build one category from a JSON row, raising ValueError on anything we can not use
    name = str(obj.get("name") or "").strip()
    kind = str(obj.get("kind") or "text").lower()
    severity = str(obj.get("severity") or "medium").lower()
    raw = obj.get("patterns")
    if not name or kind not in ("bytes", "text") or not isinstance(raw, list) or not raw:
        raise ValueError(f"invalid signature category: {obj!r}")
    if severity not in SEVERITIES:
        raise ValueError(f"invalid severity {severity!r} for {name}")
    if kind == "bytes":
        patterns: tuple[Any, ...] = tuple(bytes.fromhex(str(p)) for p in raw)
    else:
        patterns = tuple(str(p) for p in raw)
        for p in patterns:
            _compile(p)  # surface bad regexes at load time, not mid-scan
    return SignatureCategory(name, severity, kind, patterns, str(obj.get("description") or ""))


def load_categories(path: str | os.PathLike[str] | None) -> tuple[SignatureCategory, ...]:
    """
    Built-in categories, with entries from the JSON file at path replacing or adding by name.
    A missing file means defaults only.
    """
    table = {c.name: c for c in DEFAULT_CATEGORIES}
    if not path or not os.path.exists(path):
        return tuple(table.values())
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("could not read signature file %s: %s", path, e)
        return tuple(table.values())
    if not isinstance(data, list):
        logger.warning("signature file %s is not a JSON list, using defaults", path)
        return tuple(table.values())
    for row in data:
        if not isinstance(row, dict):
            continue
        try:
            cat = _category_from_json(row)
        except (ValueError, re.error) as e:
            logger.warning("skipping signature entry: %s", e)
            continue
        table[cat.name] = cat
    return tuple(table.values())


class PatternScanner:
    """Scans buffers for a fixed table of signature categories."""

    def __init__(self, categories: Iterable[SignatureCategory] = DEFAULT_CATEGORIES) -> None:
        self._categories: dict[str, SignatureCategory] = {c.name: c for c in categories}

    @property
    def names(self) -> list[str]:
        return list(self._categories)

    def category(self, name: str) -> SignatureCategory:
        return self._categories[name]  # KeyError for unknown names on purpose

    def count(self, name: str, buffer: BytesLike = b"", text: str | None = None) -> int:
        """
        Match count for one category. Byte categories scan `buffer`; text categories scan
        `text` when given, otherwise the decoded view of `buffer`.
        """
        cat = self.category(name)
        if cat.kind == "bytes":
            return scan_byte_signatures(buffer, cat.patterns)
        if text is None:
            text = decode_text(buffer)
        return scan_text_patterns(text, cat.patterns)

    def count_all(self, buffer: BytesLike, text: str | None = None) -> dict[str, int]:
        # every category at once, decoding the text view a single time
        if text is None:
            text = decode_text(buffer)
        return {name: self.count(name, buffer, text) for name in self._categories}
