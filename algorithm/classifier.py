# ruff: noqa: E501
"""
goal: map a 5-element feature vector to a verdict: a binary label, a 0..100 confidence, and one attribution
value per feature. two strategies share one scoring contract so the UI and the history never care which is active.

the scoring contract (shared by every strategy)
• a strategy produces a scalar score in [0, 1].
• label is "Malicious" when score > 0.5, otherwise "Benign". the label flips exactly at 0.5.
• confidence = clamp(|score - 0.5| * 200, 0, 100), so it only grows as the score moves away from 0.5.
• attributions have exactly the feature names as keys, each value clamped to [0, 1].
changing the threshold or the confidence formula changes what stored records mean, so both live in
score_to_verdict() and nowhere else.

strategies
• HeuristicClassifier: score is the mean of the five features, attribution is the feature value itself.
  this is the reference implementation and the default.
• WeightedClassifier: logistic score sigmoid(bias + sum(w_i * x_i)) with weights read from a JSON file
  ({"weights": [w1..w5], "bias": b}). attribution is occlusion based: how far the score moves when a
  single feature is set to zero, doubled and clamped.

lifecycle
load_model() is the explicit initialization step and may fail (missing or malformed weights). classify()
before a successful load raises ModelNotLoadedError. after loading, nothing mutates the model, so a single
instance is shared read-only by every concurrent request.
"""

from __future__ import annotations

import json
import logging
import math
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType

from algorithm.byte_stats import clamp
from algorithm.errors import ModelNotLoadedError
from algorithm.feature_extractor import FEATURE_NAMES, FeatureVector

logger = logging.getLogger("threatlens.analysis")

LABEL_MALICIOUS = "Malicious"
LABEL_BENIGN = "Benign"
THRESHOLD = 0.5


@dataclass(frozen=True)
class Verdict:
    label: str  # "Malicious" | "Benign"
    confidence: float  # 0..100
    score: float  # raw strategy score in 0..1
    attributions: Mapping[str, float] = field(default_factory=dict)  # feature name -> 0..1, read-only

    def __post_init__(self) -> None:
        # copy into a read-only view so nobody can add keys or change values after creation
        object.__setattr__(self, "attributions", MappingProxyType(dict(self.attributions)))

    @property
    def is_malicious(self) -> bool:
        return self.label == LABEL_MALICIOUS

    def to_dict(self) -> dict[str, object]:
        return {
            "label": self.label,
            "confidence": self.confidence,
            "score": self.score,
            "attributions": dict(self.attributions),
        }

    @classmethod
    def from_dict(cls, obj: dict) -> Verdict:
        return cls(
            label=str(obj["label"]),
            confidence=float(obj["confidence"]),
            score=float(obj["score"]),
            attributions={str(k): float(v) for k, v in (obj.get("attributions") or {}).items()},
        )


def score_to_verdict(score: float, attributions: Sequence[float]) -> Verdict:
    """Apply the threshold and confidence rule to a score in [0, 1]."""
    score = clamp(score)
    label = LABEL_MALICIOUS if score > THRESHOLD else LABEL_BENIGN
    confidence = clamp(abs(score - THRESHOLD) * 200, 0.0, 100.0)
    attrs = {name: clamp(a) for name, a in zip(FEATURE_NAMES, attributions)}
    return Verdict(label=label, confidence=confidence, score=score, attributions=attrs)


class Classifier:
    """Base class. Subclasses set `strategy` and implement _score/_attribute."""

    strategy = "base"

    def __init__(self) -> None:
        self._loaded = False

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def load_model(self) -> Classifier:
        self._loaded = True
        logger.info("classifier %s ready", self.strategy)
        return self

    def classify(self, vector: FeatureVector) -> Verdict:
        if not self._loaded:
            raise ModelNotLoadedError(f"{self.strategy} classifier used before load_model()")
        values = tuple(vector.values)
        score = self._score(values)
        return score_to_verdict(score, self._attribute(values, score))

    def describe(self) -> dict[str, object]:
        return {"strategy": self.strategy, "loaded": self._loaded, "features": list(FEATURE_NAMES)}

    def _score(self, values: tuple[float, ...]) -> float:
        raise NotImplementedError

    def _attribute(self, values: tuple[float, ...], score: float) -> list[float]:
        raise NotImplementedError


class HeuristicClassifier(Classifier):
    strategy = "heuristic"

    def _score(self, values: tuple[float, ...]) -> float:
        return sum(values) / len(values)

    def _attribute(self, values: tuple[float, ...], score: float) -> list[float]:
        return [clamp(v) for v in values]


def _sigmoid(z: float) -> float:
    # split on sign so exp() never overflows for large |z|
    if z >= 0:
        return 1.0 / (1.0 + math.exp(-z))
    ez = math.exp(z)
    return ez / (1.0 + ez)


class WeightedClassifier(Classifier):
    """Logistic scorer over the five features with weights from a JSON file or passed in directly."""

    strategy = "weighted"

    def __init__(
        self,
        weights_path: str | os.PathLike[str] | None = None,
        weights: Sequence[float] | None = None,
        bias: float = 0.0,
    ) -> None:
        super().__init__()
        self.weights_path = weights_path
        self._pending = (tuple(weights), float(bias)) if weights is not None else None
        self.weights: tuple[float, ...] = ()
        self.bias = 0.0

    def load_model(self) -> WeightedClassifier:
        if self.weights_path:
            # OSError for a missing file and JSONDecodeError (a ValueError) for bad JSON propagate
            with open(self.weights_path, encoding="utf-8") as f:
                obj = json.load(f)
            if not isinstance(obj, dict):
                raise ValueError(f"{self.weights_path}: expected an object with weights and bias")
            weights = obj.get("weights")
            bias = obj.get("bias", 0.0)
        elif self._pending is not None:
            weights, bias = self._pending
        else:
            raise ValueError("weighted classifier needs a weights file or explicit weights")

        if not isinstance(weights, list | tuple) or len(weights) != len(FEATURE_NAMES):
            raise ValueError(f"expected {len(FEATURE_NAMES)} weights, got {weights!r}")
        self.weights = tuple(float(w) for w in weights)
        self.bias = float(bias)
        super().load_model()
        return self

    def _score(self, values: tuple[float, ...]) -> float:
        z = self.bias + sum(w * x for w, x in zip(self.weights, values))
        return _sigmoid(z)

    def _attribute(self, values: tuple[float, ...], score: float) -> list[float]:
        out = []
        for i in range(len(values)):
            occluded = values[:i] + (0.0,) + values[i + 1 :]
            out.append(clamp(abs(score - self._score(occluded)) * 2))
        return out

    def describe(self) -> dict[str, object]:
        info = super().describe()
        info["weights"] = list(self.weights)
        info["bias"] = self.bias
        return info


def build_classifier(name: str, weights_path: str | os.PathLike[str] | None = None) -> Classifier:
    """Pick a strategy by config name. The result still needs load_model()."""
    key = (name or "heuristic").strip().lower()
    if key == "heuristic":
        return HeuristicClassifier()
    if key == "weighted":
        return WeightedClassifier(weights_path=weights_path)
    raise ValueError(f"unknown classifier strategy: {name!r}")
