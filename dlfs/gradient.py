"""
gradient.py
~~~~~~~~~~~

Finite-difference gradient and plain gradient descent over flat vectors.

These are verification tools: each gradient costs two evaluations of
``f`` per coordinate.
"""

import logging
from typing import Callable, List, Sequence

logger = logging.getLogger(__name__)

VectorFunction = Callable[[Sequence[float]], float]


def numerical_gradient(f: VectorFunction, xs: Sequence[float]) -> List[float]:
    """
    Central-difference gradient of ``f`` at ``xs``.

    Args:
        f: Scalar function of a vector
        xs: Point at which to evaluate the gradient (not modified)

    Returns:
        list: One partial derivative per coordinate
    """
    h = 1e-4
    probe = list(xs)
    grad = []
    for i, x in enumerate(xs):
        probe[i] = x + h
        fxh1 = f(probe)

        probe[i] = x - h
        fxh2 = f(probe)

        grad.append((fxh1 - fxh2) / (2 * h))
        probe[i] = x
    return grad


def gradient_descent(
    f: VectorFunction,
    init_x: Sequence[float],
    learning_rate: float = 0.01,
    step_num: int = 100
) -> List[float]:
    """
    Minimize ``f`` by repeatedly stepping against its numerical gradient.

    Args:
        f: Scalar function of a vector
        init_x: Starting point (not modified)
        learning_rate: Step size
        step_num: Number of steps

    Returns:
        list: The point reached after ``step_num`` steps
    """
    xs = list(init_x)
    for _ in range(step_num):
        grads = numerical_gradient(f, xs)
        xs = [x - learning_rate * g for x, g in zip(xs, grads)]
    logger.debug(f"gradient_descent finished after {step_num} steps at {xs}")
    return xs
