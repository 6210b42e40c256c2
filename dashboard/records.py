# ruff: noqa: E501
"""
goal: assemble the persisted AnalysisRecord from a finished analysis. merges the classifier verdict with file
metadata and adds the display fields the dashboard shows: threat level bucket, malware-type tags, matched
signatures, recommendations, and a short analysis log. everything here is derived from the feature vector,
the verdict, and the real scanner counts, nothing is simulated.

display rules
• threat level from the feature mean: > 0.7 high, > 0.4 medium, otherwise low ("critical" is still accepted
  when reading older records).
• tags "Trojan" + "Suspicious Behavior" when the feature mean is above 0.6.
• signatures for high service activity (> 0.5), excessive handle usage (> 0.7) and mutex manipulation (> 0.6),
  plus one row per scanner category that actually matched.
• a degraded record (extraction failed, all-zero features) always recommends a retry.
"""

from __future__ import annotations

import hashlib
import secrets
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any

from algorithm.classifier import Verdict
from algorithm.feature_extractor import FeatureVector, RawFile
from algorithm.pattern_scanner import SignatureCategory

THREAT_LEVELS = ("low", "medium", "high", "critical")
THREAT_RANK = {lvl: i for i, lvl in enumerate(THREAT_LEVELS)}  # for sorting by severity

MANUAL_FILENAME = "ML Feature Analysis"


def _read_only(obj: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType({k: _read_only(v) if isinstance(v, Mapping) else v for k, v in obj.items()})


def _plain(obj: Mapping[str, Any]) -> dict[str, Any]:
    # back to JSON-serializable dicts
    return {k: _plain(v) if isinstance(v, Mapping) else v for k, v in obj.items()}


@dataclass(frozen=True)
class AnalysisRecord:
    id: str
    filename: str
    timestamp: str  # ISO-8601, UTC
    verdict: Verdict
    features: FeatureVector
    threat_level: str
    malware_types: tuple[str, ...] = ()
    signatures: tuple[dict[str, Any], ...] = ()
    recommendations: tuple[dict[str, Any], ...] = ()
    logs: tuple[dict[str, Any], ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)  # read-only, nested maps included
    degraded: bool = False  # True when features fell back to all zeros

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", _read_only(self.metadata))

    @property
    def confidence(self) -> float:
        return self.verdict.confidence

    def to_dict(self) -> dict[str, Any]:
        # label and confidence are repeated at the top level for tables and exports
        return {
            "id": self.id,
            "filename": self.filename,
            "timestamp": self.timestamp,
            "label": self.verdict.label,
            "confidence": self.verdict.confidence,
            "threat_level": self.threat_level,
            "degraded": self.degraded,
            "verdict": self.verdict.to_dict(),
            "features": self.features.as_dict(),
            "malware_types": list(self.malware_types),
            "signatures": [dict(s) for s in self.signatures],
            "recommendations": [dict(r) for r in self.recommendations],
            "logs": [dict(entry) for entry in self.logs],
            "metadata": _plain(self.metadata),
        }

    @classmethod
    def from_dict(cls, obj: Mapping[str, Any]) -> AnalysisRecord:
        """Inverse of to_dict. Raises KeyError/ValueError/TypeError on malformed rows."""
        return cls(
            id=str(obj["id"]),
            filename=str(obj["filename"]),
            timestamp=str(obj["timestamp"]),
            verdict=Verdict.from_dict(obj["verdict"]),
            features=FeatureVector.from_mapping(obj["features"]),
            threat_level=str(obj.get("threat_level") or "low"),
            malware_types=tuple(str(t) for t in obj.get("malware_types") or ()),
            signatures=tuple(dict(s) for s in obj.get("signatures") or ()),
            recommendations=tuple(dict(r) for r in obj.get("recommendations") or ()),
            logs=tuple(dict(entry) for entry in obj.get("logs") or ()),
            metadata=dict(obj.get("metadata") or {}),
            degraded=bool(obj.get("degraded", False)),
        )


def new_record_id() -> str:
    # millisecond prefix keeps ids roughly sortable, the random suffix keeps them unique
    return f"mal-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def threat_level_for(features: FeatureVector) -> str:
    avg = features.mean()
    if avg > 0.7:
        return "high"
    if avg > 0.4:
        return "medium"
    return "low"


def malware_types_for(features: FeatureVector) -> tuple[str, ...]:
    return ("Trojan", "Suspicious Behavior") if features.mean() > 0.6 else ()


def signatures_for(
    features: FeatureVector,
    matches: Mapping[str, int] | None = None,
    categories: Mapping[str, SignatureCategory] | None = None,
) -> tuple[dict[str, Any], ...]:
    f = features.as_dict()
    out: list[dict[str, Any]] = []
    if f["svcscan_nservices"] > 0.5:
        out.append(
            {
                "name": "High Service Activity",
                "description": "Unusual number of system services detected",
                "matched": True,
                "severity": "medium",
                "match_count": int(f["svcscan_nservices"] * 10),
            }
        )
    if f["handles_avg_handles_per_proc"] > 0.7:
        out.append(
            {
                "name": "Excessive Handle Usage",
                "description": "High average handles per process detected",
                "matched": True,
                "severity": "high",
                "match_count": int(f["handles_avg_handles_per_proc"] * 15),
            }
        )
    if f["handles_nmutant"] > 0.6:
        out.append(
            {
                "name": "Mutex Manipulation",
                "description": "Suspicious mutex handle activity detected",
                "matched": True,
                "severity": "critical",
                "match_count": int(f["handles_nmutant"] * 8),
            }
        )
    # raw scanner hits, so the table shows which patterns actually fired
    for name, count in (matches or {}).items():
        if count <= 0:
            continue
        cat = (categories or {}).get(name)
        out.append(
            {
                "name": name,
                "description": cat.description if cat else "",
                "matched": True,
                "severity": cat.severity if cat else "medium",
                "match_count": int(count),
            }
        )
    return tuple(out)


def recommendations_for(features: FeatureVector, degraded: bool = False) -> tuple[dict[str, Any], ...]:
    if degraded:
        return (
            {
                "action": "retry",
                "priority": "medium",
                "description": "Feature extraction failed, the verdict uses default features. Try uploading again.",
            },
        )
    if features.mean() > 0.6:
        return (
            {"action": "isolate", "priority": "high", "description": "Immediately isolate the system from network"},
            {"action": "scan", "priority": "high", "description": "Perform full system antivirus scan"},
            {"action": "backup", "priority": "medium", "description": "Backup critical data before remediation"},
        )
    return (
        {"action": "monitor", "priority": "low", "description": "Continue monitoring system for suspicious activity"},
    )


def _log(ts: str, level: str, message: str, module: str) -> dict[str, Any]:
    return {"timestamp": ts, "level": level, "message": message, "module": module}


def logs_for(
    ts: str,
    filename: str,
    features: FeatureVector,
    verdict: Verdict,
    details: Mapping[str, Any],
    error: str | None = None,
) -> tuple[dict[str, Any], ...]:
    f = features.as_dict()
    entries = [_log(ts, "info", f"Started analysis of {filename}", "scanner")]
    if error:
        entries.append(_log(ts, "error", f"Feature extraction failed, using default features: {error}", "scanner"))
    if "file_type" in details:
        entries.append(_log(ts, "info", f"File type: {details['file_type']} ({details.get('size', 0)} bytes)", "static"))
    if "entropy" in details:
        ent = float(details["entropy"])
        entries.append(_log(ts, "warning" if ent > 7 else "info", f"Entropy level: {ent:.2f}", "static"))
    api = f["handles_avg_handles_per_proc"]
    entries.append(_log(ts, "warning" if api > 0.7 else "info", f"API usage score: {api:.2f}", "behavior"))
    packed = f["svcscan_shared_process_services"]
    entries.append(_log(ts, "error" if packed > 0.8 else "info", f"Packed probability: {packed:.2f}", "static"))
    entries.append(_log(ts, "info", f"Verdict: {verdict.label} ({verdict.confidence:.1f}% confidence)", "scanner"))
    return tuple(entries)


def file_metadata(raw: RawFile, details: Mapping[str, Any]) -> dict[str, Any]:
    data = bytes(raw.data)
    meta: dict[str, Any] = {
        "file_type": details.get("file_type", raw.category.value),
        "size": len(data),
        "md5": hashlib.md5(data).hexdigest(),
        "sha1": hashlib.sha1(data).hexdigest(),
        "sha256": hashlib.sha256(data).hexdigest(),
    }
    for key in ("entropy", "byte_uniqueness"):
        if key in details:
            meta[key] = float(details[key])
    if "matches" in details:
        meta["matches"] = {str(k): int(v) for k, v in details["matches"].items()}
    return meta


def assemble_record(
    raw: RawFile,
    features: FeatureVector,
    verdict: Verdict,
    details: Mapping[str, Any] | None = None,
    categories: Mapping[str, SignatureCategory] | None = None,
    error: str | None = None,
) -> AnalysisRecord:
    """Build the record for an uploaded file. `error` marks a degraded (all-zero feature) analysis."""
    details = details or {}
    ts = utc_now_iso()
    degraded = error is not None
    return AnalysisRecord(
        id=new_record_id(),
        filename=raw.name,
        timestamp=ts,
        verdict=verdict,
        features=features,
        threat_level=threat_level_for(features),
        malware_types=malware_types_for(features),
        signatures=signatures_for(features, details.get("matches"), categories),
        recommendations=recommendations_for(features, degraded),
        logs=logs_for(ts, raw.name, features, verdict, details, error),
        metadata=file_metadata(raw, details),
        degraded=degraded,
    )


def assemble_manual_record(features: FeatureVector, verdict: Verdict) -> AnalysisRecord:
    """Record for features typed in by hand, no file behind it."""
    ts = utc_now_iso()
    if verdict.is_malicious:
        recs: tuple[dict[str, Any], ...] = (
            {"action": "investigate", "priority": "high", "description": "ML model detected potential malware behavior"},
        )
    else:
        recs = ({"action": "monitor", "priority": "low", "description": "ML analysis indicates benign behavior"},)
    return AnalysisRecord(
        id=new_record_id(),
        filename=MANUAL_FILENAME,
        timestamp=ts,
        verdict=verdict,
        features=features,
        threat_level="high" if verdict.is_malicious else "low",
        malware_types=("ML Detected Threat",) if verdict.is_malicious else (),
        signatures=signatures_for(features),
        recommendations=recs,
        logs=(_log(ts, "info", "ML feature analysis completed", "scanner"),),
        metadata={"file_type": "manual"},
    )
