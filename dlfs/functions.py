"""
functions.py
~~~~~~~~~~~~

Stateless activation and loss functions on scalars and vectors.
"""

import math
import sys
from typing import Callable, List, Sequence

from dlfs.errors import NumericDomainError, ShapeError

# Substituted for an exact zero prediction so ln() stays finite
EPSILON = sys.float_info.epsilon


def step(x: float) -> float:
    return 1.0 if x > 0 else 0.0


def identity(x: float) -> float:
    return x


def sigmoid(x: float) -> float:
    """Logistic function 1 / (1 + e^-x)."""
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    # Same value, written so exp() cannot overflow for large negative x
    z = math.exp(x)
    return z / (1.0 + z)


def relu(x: float) -> float:
    """Rectified linear unit max(0, x)."""
    return x if x > 0 else 0.0


def softmax(xs: Sequence[float]) -> List[float]:
    """
    Normalize a vector into a probability distribution.

    The maximum is subtracted before exponentiating so that inputs such as
    ``[1010, 1000, 990]`` do not overflow.

    Args:
        xs: Input scores

    Returns:
        list: Probabilities summing to 1.0
    """
    if not xs:
        return []
    max_x = max(xs)
    exps = [math.exp(x - max_x) for x in xs]
    total = sum(exps)
    return [e / total for e in exps]


def _require_same_length(predicted: Sequence[float], observed: Sequence[float]) -> None:
    if len(predicted) != len(observed):
        raise ShapeError(
            f"Predicted length {len(predicted)} does not match observed length {len(observed)}"
        )


def cross_entropy_error(predicted: Sequence[float], observed: Sequence[float]) -> float:
    """
    Cross-entropy -sum(observed_i * ln(predicted_i)).

    A prediction of exactly 0 is replaced by machine epsilon.

    Args:
        predicted: Predicted probabilities
        observed: Target distribution, usually one-hot

    Returns:
        float: The loss

    Raises:
        ShapeError: If the two vectors differ in length
        NumericDomainError: If a prediction is negative
    """
    _require_same_length(predicted, observed)
    total = 0.0
    for p, o in zip(predicted, observed):
        if p < 0:
            raise NumericDomainError(f"Negative probability {p} in cross-entropy")
        total += o * math.log(EPSILON if p == 0 else p)
    return -total


def mean_squared_error(predicted: Sequence[float], observed: Sequence[float]) -> float:
    """Half the sum of squared differences."""
    _require_same_length(predicted, observed)
    return 0.5 * sum((p - o) ** 2 for p, o in zip(predicted, observed))


def argmax(xs: Sequence[float]) -> int:
    """
    Index of the first maximum value.

    Raises:
        ValueError: If ``xs`` is empty
    """
    if len(xs) == 0:
        raise ValueError("argmax of an empty sequence")
    max_index = 0
    max_value = xs[0]
    for i in range(1, len(xs)):
        if max_value < xs[i]:
            max_value = xs[i]
            max_index = i
    return max_index


def numerical_diff(f: Callable[[float], float], x: float) -> float:
    """Central-difference derivative of ``f`` at ``x`` with h = 1e-4."""
    h = 1e-4
    return (f(x + h) - f(x - h)) / (2 * h)
