# ruff: noqa: E501
"""
goal: turn the raw bytes of an uploaded file into a fixed 5-element feature vector that the classifier can score.
every value is normalized to [0, 1] and the order never changes, whatever kind of file came in.

how it decides
1. the filename extension picks a coarse category: executable, script, archive, document, or generic (fallback).
   this is a documented simplification, we do not parse PE/ELF/Office structures.
2. shared inputs are computed once per file: Shannon entropy, byte uniqueness, and match counts for every
   signature category in the pattern scanner.
3. the category's rule combines those inputs into the five named features, each clamped with min(1, max(0, x)).

the five features (fixed order)
  svcscan_nservices                 activity proxy: header/keyword/macro density depending on category
  handles_avg_handles_per_proc      resource proxy: imports, obfuscation, compression ratio, embedded objects
  svcscan_shared_process_services   packing proxy: entropy / 8 in every category
  handles_nevent                    event API / event keyword count over a fixed divisor
  handles_nmutant                   mutex / lock pattern count over a fixed divisor

failure policy
• an empty buffer raises EmptyInputError, that single analysis fails.
• anything else that goes wrong while reading or decoding the buffer raises ExtractionError; callers replace
  the vector with FeatureVector.zeros() and mark the result degraded instead of aborting.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import logging
import os
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from algorithm import byte_stats
from algorithm.byte_stats import BytesLike, clamp
from algorithm.errors import EmptyInputError, ExtractionError
from algorithm.pattern_scanner import PatternScanner

logger = logging.getLogger("threatlens.features")

FEATURE_NAMES: tuple[str, ...] = (
    "svcscan_nservices",
    "handles_avg_handles_per_proc",
    "svcscan_shared_process_services",
    "handles_nevent",
    "handles_nmutant",
)


class FileCategory(str, Enum):
    EXECUTABLE = "executable"
    SCRIPT = "script"
    ARCHIVE = "archive"
    DOCUMENT = "document"
    GENERIC = "generic"


# extension -> category, anything not listed falls back to generic
EXTENSIONS: dict[FileCategory, tuple[str, ...]] = {
    FileCategory.EXECUTABLE: (".exe", ".dll", ".sys", ".bin", ".msi"),
    FileCategory.SCRIPT: (".bat", ".cmd", ".ps1", ".vbs", ".js"),
    FileCategory.ARCHIVE: (".zip", ".rar", ".7z", ".tar", ".gz"),
    FileCategory.DOCUMENT: (".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx"),
}


def classify_file_type(filename: str) -> FileCategory:
    # only the last extension counts, so "report.pdf.exe" is an executable
    ext = os.path.splitext((filename or "").strip())[1].lower()
    for category, exts in EXTENSIONS.items():
        if ext in exts:
            return category
    return FileCategory.GENERIC


@dataclass(frozen=True)
class FeatureVector:
    """Five normalized features in FEATURE_NAMES order. Values are clamped into [0, 1] on creation."""

    values: tuple[float, ...]

    def __post_init__(self) -> None:
        vals = tuple(float(v) for v in self.values)
        if len(vals) != len(FEATURE_NAMES):
            raise ValueError(f"feature vector needs {len(FEATURE_NAMES)} values, got {len(vals)}")
        object.__setattr__(self, "values", tuple(clamp(v) for v in vals))

    @classmethod
    def zeros(cls) -> FeatureVector:
        # documented default used when extraction fails
        return cls((0.0,) * len(FEATURE_NAMES))

    @classmethod
    def from_mapping(cls, features: Mapping[str, Any]) -> FeatureVector:
        """
        Build from a name -> value mapping. Dotted names ("svcscan.nservices") are accepted too.
        Missing names raise KeyError, non-numeric values raise ValueError.
        """
        norm = {str(k).replace(".", "_"): v for k, v in features.items()}
        missing = [n for n in FEATURE_NAMES if n not in norm]
        if missing:
            raise KeyError(f"missing features: {', '.join(missing)}")
        return cls(tuple(float(norm[n]) for n in FEATURE_NAMES))

    @property
    def names(self) -> tuple[str, ...]:
        return FEATURE_NAMES

    def as_dict(self) -> dict[str, float]:
        return dict(zip(FEATURE_NAMES, self.values))

    def mean(self) -> float:
        return sum(self.values) / len(self.values)

    def __len__(self) -> int:
        return len(self.values)

    def __iter__(self) -> Iterator[float]:
        return iter(self.values)

    def __getitem__(self, index: int) -> float:
        return self.values[index]


@dataclass(frozen=True)
class RawFile:
    name: str  # original filename, only used for the category
    data: BytesLike = field(repr=False)  # raw bytes, never modified during analysis

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def category(self) -> FileCategory:
        return classify_file_type(self.name)


@dataclass(frozen=True)
class _Inputs:
    # everything a category rule may look at, computed once per file
    entropy: float
    uniqueness: float
    complexity: float
    matches: dict[str, int]


Rule = Callable[[_Inputs], tuple[float, float, float, float, float]]


def _executable(x: _Inputs) -> tuple[float, float, float, float, float]:
    m = x.matches
    return (
        m["executable_headers"] / 10,
        m["import_names"] / 10,
        x.entropy / 8,
        m["event_apis"] / 5,
        m["mutex_apis"] / 3,
    )


def _script(x: _Inputs) -> tuple[float, float, float, float, float]:
    m = x.matches
    return (
        m["script_keywords"] / 20,
        m["obfuscation_markers"] / 10,
        x.entropy / 8,
        m["script_events"] / 10,
        m["script_locks"] / 5,
    )


def _archive(x: _Inputs) -> tuple[float, float, float, float, float]:
    m = x.matches
    return (
        m["archive_risky_entries"] / 5,
        x.uniqueness,  # compression ratio proxy
        x.entropy / 8,
        m["event_apis"] / 5,
        m["mutex_apis"] / 3,
    )


def _document(x: _Inputs) -> tuple[float, float, float, float, float]:
    m = x.matches
    return (
        m["macro_signatures"] / 3,
        m["embedded_objects"] / 5,
        x.entropy / 8,
        m["document_events"] / 3,
        m["mutex_apis"] / 3,
    )


def _generic(x: _Inputs) -> tuple[float, float, float, float, float]:
    m = x.matches
    randomness = x.entropy / 8
    return (
        randomness * 0.5,
        x.complexity,
        randomness,
        randomness * 0.3 + m["event_apis"] / 5,
        randomness * 0.2 + m["mutex_apis"] / 3,
    )


RULES: dict[FileCategory, Rule] = {
    FileCategory.EXECUTABLE: _executable,
    FileCategory.SCRIPT: _script,
    FileCategory.ARCHIVE: _archive,
    FileCategory.DOCUMENT: _document,
    FileCategory.GENERIC: _generic,
}

# one rule per category, no more and no less
if set(RULES) != set(FileCategory):
    raise RuntimeError("feature rules do not cover every FileCategory")


class FeatureExtractor:
    """
    Builds FeatureVectors from RawFiles. Holds only the read-only pattern scanner, so one
    instance is created at startup and shared by every request.
    """

    def __init__(self, scanner: PatternScanner | None = None) -> None:
        self.scanner = scanner or PatternScanner()

    def extract(self, raw: RawFile) -> FeatureVector:
        return self.extract_with_details(raw)[0]

    def extract_bytes(self, name: str, data: BytesLike) -> FeatureVector:
        return self.extract(RawFile(name, data))

    def extract_with_details(self, raw: RawFile) -> tuple[FeatureVector, dict[str, Any]]:
        """
        Feature vector plus the intermediate numbers (file type, entropy, uniqueness,
        per-category match counts) for the record metadata.
        """
        try:
            data = bytes(raw.data)  # snapshot the buffer so nothing can change under us
        except Exception as e:
            raise ExtractionError(f"could not read bytes of {raw.name!r}: {e}") from e
        if not data:
            raise EmptyInputError(f"{raw.name!r} is empty")

        category = raw.category
        try:
            text = byte_stats.decode_text(data)
            inputs = _Inputs(
                entropy=byte_stats.entropy(data),
                uniqueness=byte_stats.byte_uniqueness(data),
                complexity=byte_stats.pattern_complexity(data),
                matches=self.scanner.count_all(data, text),
            )
            vector = FeatureVector(RULES[category](inputs))
        except EmptyInputError:
            raise
        except Exception as e:
            raise ExtractionError(f"feature extraction failed for {raw.name!r}: {e}") from e

        logger.debug("extracted %s as %s: %s", raw.name, category.value, vector.values)
        details = {
            "file_type": category.value,
            "size": len(data),
            "entropy": inputs.entropy,
            "byte_uniqueness": inputs.uniqueness,
            "matches": dict(inputs.matches),
        }
        return vector, details
