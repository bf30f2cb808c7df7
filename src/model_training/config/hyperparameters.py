# /forecast-training/src/model_training/config/hyperparameters.py

"""
Hyperparameter search space definitions.

Each parameter has its own sampling spec: continuous ranges (linear or log
scale), discrete value sets and inclusive integer ranges. All specs are
immutable and report problems through `validate()` rather than raising, so
callers can collect every error before failing.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Tuple


# camelCase keys used by forwarded request payloads
HYPERPARAMETER_ALIASES = {
    "learningRate": "learning_rate",
    "batchSize": "batch_size",
    "hiddenSize": "hidden_size",
    "numLayers": "num_layers",
}


@dataclass(frozen=True)
class ContinuousRange:
    """Continuous range sampled uniformly, either linearly or in log space."""
    min: float
    max: float
    scale: str = "linear"  # linear, log

    def validate(self, name: str) -> List[str]:
        errors = []
        if self.scale not in ("linear", "log"):
            errors.append(f"{name}: unknown scale '{self.scale}'")
        if not (math.isfinite(self.min) and math.isfinite(self.max)):
            errors.append(f"{name}: bounds must be finite: [{self.min}, {self.max}]")
        elif self.min > self.max:
            errors.append(f"{name}: min {self.min} exceeds max {self.max}")
        if self.scale == "log" and self.min <= 0:
            errors.append(f"{name}: log scale requires positive bounds: [{self.min}, {self.max}]")
        return errors

    @property
    def is_log(self) -> bool:
        return self.scale == "log"


@dataclass(frozen=True)
class DiscreteChoice:
    """Finite set of values sampled uniformly."""
    values: Tuple[Any, ...]

    def validate(self, name: str) -> List[str]:
        if not self.values:
            return [f"{name}: discrete value set is empty"]
        return []


@dataclass(frozen=True)
class IntegerRange:
    """Integer range sampled uniformly, inclusive of both bounds."""
    min: int
    max: int

    def validate(self, name: str) -> List[str]:
        errors = []
        if int(self.min) != self.min or int(self.max) != self.max:
            errors.append(f"{name}: integer bounds required: [{self.min}, {self.max}]")
        elif self.min > self.max:
            errors.append(f"{name}: min {self.min} exceeds max {self.max}")
        return errors


@dataclass(frozen=True)
class HyperparameterConfig:
    """
    Search space for the hyperparameter optimizer.
    """
    learning_rate: ContinuousRange = field(
        default_factory=lambda: ContinuousRange(1e-4, 1e-1, "log"))
    batch_size: DiscreteChoice = field(
        default_factory=lambda: DiscreteChoice((16, 32, 64, 128)))
    epochs: IntegerRange = field(
        default_factory=lambda: IntegerRange(10, 100))
    dropout: ContinuousRange = field(
        default_factory=lambda: ContinuousRange(0.0, 0.5))
    hidden_size: DiscreteChoice = field(
        default_factory=lambda: DiscreteChoice((64, 128, 256, 512)))
    num_layers: IntegerRange = field(
        default_factory=lambda: IntegerRange(1, 5))

    def validate(self) -> List[str]:
        """Validate every parameter spec."""
        errors = []
        errors.extend(self.learning_rate.validate("learning_rate"))
        errors.extend(self.batch_size.validate("batch_size"))
        errors.extend(self.epochs.validate("epochs"))
        errors.extend(self.dropout.validate("dropout"))
        if self.dropout.is_log:
            errors.append("dropout: log scale is not supported")
        errors.extend(self.hidden_size.validate("hidden_size"))
        errors.extend(self.num_layers.validate("num_layers"))
        return errors

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'HyperparameterConfig':
        """
        Build a config from a mapping such as::

            {
                "learning_rate": {"min": 1e-4, "max": 1e-2, "type": "log"},
                "batch_size": {"values": [32, 64]},
                "epochs": {"min": 10, "max": 50},
                ...
            }

        camelCase names (`learningRate`, `batchSize`, ...) are accepted.
        Missing parameters keep their defaults. Malformed entries raise
        ValueError.
        """
        data = {HYPERPARAMETER_ALIASES.get(key, key): value for key, value in data.items()}
        kwargs: Dict[str, Any] = {}
        for name in ("learning_rate", "dropout"):
            if name in data:
                spec = data[name]
                kwargs[name] = ContinuousRange(
                    float(spec["min"]), float(spec["max"]),
                    spec.get("scale", spec.get("type", "linear")))
        for name in ("batch_size", "hidden_size"):
            if name in data:
                kwargs[name] = DiscreteChoice(tuple(data[name]["values"]))
        for name in ("epochs", "num_layers"):
            if name in data:
                kwargs[name] = IntegerRange(data[name]["min"], data[name]["max"])

        unknown = set(data) - {"learning_rate", "dropout", "batch_size",
                               "hidden_size", "epochs", "num_layers"}
        if unknown:
            raise ValueError(f"Unknown hyperparameters: {sorted(unknown)}")

        return cls(**kwargs)
