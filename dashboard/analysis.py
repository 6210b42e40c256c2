"""
goal: run one analysis request end to end: feature extraction, classification, record assembly, persistence.
the extractor, classifier, and store are built once at startup and handed in, this class holds no other state.

error policy
• EmptyInputError (zero-byte file): propagates, that analysis fails.
• ExtractionError: degrade, score an all-zero feature vector and mark the record degraded.
• ModelNotLoadedError: propagates, no verdict is shown or stored.
• OSError from the file source: propagates, nothing is analyzed.
the store append is the last step, so a request that fails or is abandoned earlier persists nothing.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from agent.file_source import FileSource
from algorithm.classifier import Classifier
from algorithm.errors import ExtractionError
from algorithm.feature_extractor import FeatureExtractor, FeatureVector, RawFile
from dashboard.records import AnalysisRecord, assemble_manual_record, assemble_record
from dashboard.store import AnalysisStore

logger = logging.getLogger("threatlens.analysis")


class AnalysisService:
    def __init__(
        self,
        extractor: FeatureExtractor,
        classifier: Classifier,
        store: AnalysisStore | None = None,
    ) -> None:
        self.extractor = extractor
        self.classifier = classifier
        self.store = store  # None means score only, never persist

    def _commit(self, record: AnalysisRecord, save: bool) -> AnalysisRecord:
        if save and self.store is not None:
            self.store.append(record)
        return record

    def analyze(self, raw: RawFile, save: bool = True) -> AnalysisRecord:
        details: dict[str, Any] = {}
        error: str | None = None
        try:
            features, details = self.extractor.extract_with_details(raw)
        except ExtractionError as e:
            logger.warning("extraction failed for %s, using default features: %s", raw.name, e)
            features = FeatureVector.zeros()
            error = str(e)

        verdict = self.classifier.classify(features)  # ModelNotLoadedError goes to the caller
        record = assemble_record(
            raw,
            features,
            verdict,
            details=details,
            categories={name: self.extractor.scanner.category(name) for name in self.extractor.scanner.names},
            error=error,
        )
        logger.info(
            "analyzed %s: %s (%.1f%%)%s",
            raw.name,
            verdict.label,
            verdict.confidence,
            " [degraded]" if error else "",
        )
        return self._commit(record, save)

    def analyze_bytes(self, filename: str, data: bytes, save: bool = True) -> AnalysisRecord:
        return self.analyze(RawFile(filename, data), save=save)

    def analyze_path(self, path: str, source: FileSource, save: bool = True) -> AnalysisRecord:
        return self.analyze(source.read_path(path), save=save)

    def predict_features(self, features: Mapping[str, Any], save: bool = True) -> AnalysisRecord:
        """Score five hand-entered features. KeyError/ValueError for bad input."""
        vector = FeatureVector.from_mapping(features)
        verdict = self.classifier.classify(vector)
        return self._commit(assemble_manual_record(vector, verdict), save)
