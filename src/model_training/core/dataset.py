# /forecast-training/src/model_training/core/dataset.py

"""
Dataset normalisation and numeric encoding for the training loop.

Records arrive from the feature-engineering stage as mappings, DataFrames or
numeric arrays. Everything downstream works on an ordered list of mappings;
`encode_records` turns those into a feature matrix and target vector sized
for a given network input.
"""

import math
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..config.training_config import ConfigurationError


Record = Mapping[str, Any]


def records_from_dataset(dataset: Any, target_field: str = "target") -> List[Record]:
    """
    Normalise a dataset into an ordered list of records.

    Accepts a sequence of mappings, a pandas DataFrame, or a 2-D numeric
    array whose last column is the target.
    """
    if isinstance(dataset, pd.DataFrame):
        return dataset.to_dict(orient="records")

    if isinstance(dataset, np.ndarray):
        if dataset.ndim != 2 or dataset.shape[1] < 2:
            raise ConfigurationError(
                f"Array datasets must be 2-D with a target column, got shape {dataset.shape}"
            )
        return [
            {**{f"f{i}": float(v) for i, v in enumerate(row[:-1])}, target_field: float(row[-1])}
            for row in dataset
        ]

    if dataset is None:
        raise ConfigurationError("Dataset is required")

    records = list(dataset)
    for index, record in enumerate(records):
        if not isinstance(record, Mapping):
            raise ConfigurationError(
                f"Record {index} is {type(record).__name__}, expected a mapping"
            )
    return records


def _encode_value(value: Any, out: List[float]) -> None:
    # bool before int: bool is an int subclass
    if isinstance(value, (bool, np.bool_)):
        out.append(1.0 if value else 0.0)
    elif isinstance(value, (int, float, np.integer, np.floating)):
        out.append(float(value) if math.isfinite(value) else 0.0)
    elif isinstance(value, str):
        out.append(len(value) / 100.0)
    elif isinstance(value, (list, tuple, np.ndarray)):
        for item in value:
            if isinstance(item, (bool, np.bool_)):
                out.append(1.0 if item else 0.0)
            elif isinstance(item, (int, float, np.integer, np.floating)):
                out.append(float(item) if math.isfinite(item) else 0.0)
            else:
                out.append(0.0)


def encode_features(record: Record, input_size: int, target_field: str = "target") -> np.ndarray:
    """
    Encode one record as a fixed-width feature vector.

    Numbers pass through, booleans become 1/0, strings become len/100 and
    sequences are flattened element-wise; anything else is skipped. The
    target field never contributes a feature. The vector is zero-padded or
    truncated to `input_size`.
    """
    values: List[float] = []
    for key, value in record.items():
        if key == target_field:
            continue
        _encode_value(value, values)

    vector = np.zeros(input_size, dtype=np.float64)
    n = min(len(values), input_size)
    vector[:n] = values[:n]
    return vector


def encode_records(records: Sequence[Record], input_size: int,
                   rng: np.random.Generator,
                   target_field: str = "target") -> Tuple[np.ndarray, np.ndarray]:
    """
    Encode records into `(X, y)`.

    Records without a numeric target get one drawn uniformly from [0, 1)
    using `rng`, once, at encoding time.
    """
    X = np.zeros((len(records), input_size), dtype=np.float64)
    y = np.zeros(len(records), dtype=np.float64)

    for i, record in enumerate(records):
        X[i] = encode_features(record, input_size, target_field)
        target = record.get(target_field)
        if isinstance(target, (bool, np.bool_)):
            y[i] = 1.0 if target else 0.0
        elif isinstance(target, (int, float, np.integer, np.floating)) and math.isfinite(target):
            y[i] = float(target)
        else:
            y[i] = rng.random()

    return X, y


def train_validation_split(records: Sequence[Record], validation_split: float,
                           rng: np.random.Generator) -> Tuple[List[Record], List[Record]]:
    """
    Shuffle with `rng` and split at `floor(n * (1 - validation_split))`.

    Raises:
        ConfigurationError: If either side of the split would be empty
    """
    n = len(records)
    order = rng.permutation(n)
    split_index = int(math.floor(n * (1 - validation_split)))

    train = [records[i] for i in order[:split_index]]
    validation = [records[i] for i in order[split_index:]]

    if not train or not validation:
        raise ConfigurationError(
            f"Validation split {validation_split} leaves an empty partition "
            f"for {n} records (train={len(train)}, validation={len(validation)})"
        )

    return train, validation


def generate_synthetic_records(n: int, seed: Optional[int] = 42,
                               n_features: int = 8) -> List[Dict[str, Any]]:
    """
    Generate labelled records for demos and tests.

    The target is a squashed linear function of the features, so it lies in
    [0, 1] and carries learnable signal.
    """
    rng = np.random.default_rng(seed)
    features = rng.normal(0.0, 1.0, size=(n, n_features))
    coefficients = rng.normal(0.0, 0.5, size=n_features)
    logits = features @ coefficients + rng.normal(0.0, 0.1, size=n)
    targets = 1.0 / (1.0 + np.exp(-logits))

    return [
        {
            **{f"feature_{j}": round(float(features[i, j]), 6) for j in range(n_features)},
            "is_remote": bool(rng.random() < 0.3),
            "target": round(float(targets[i]), 6),
        }
        for i in range(n)
    ]
