"""
optimizers.py
~~~~~~~~~~~~~

First-order update rules that consume ``(parameter, gradient)`` pairs.

Optimizers with per-parameter state (Momentum, AdaGrad) keep one
accumulator per parameter slot. The slot list is fixed either explicitly
with ``register`` or by the first ``update`` call; later calls must pass
the same number of pairs with the same shapes in the same order.
"""

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from dlfs.errors import ShapeError, StateError
from dlfs.matrix import Matrix

logger = logging.getLogger(__name__)

Shape = Tuple[int, int]
ParamGradPair = Tuple[Matrix, Matrix]


class Optimizer:
    """Base class holding the learning rate and the slot registry."""

    def __init__(self, learning_rate: float, shapes: Optional[Sequence[Shape]] = None):
        """
        Args:
            learning_rate: Step size
            shapes: Parameter shapes in update order; registered from the
                first ``update`` call when omitted
        """
        if learning_rate <= 0:
            raise ValueError(f"learning_rate must be positive, got {learning_rate}")
        self.learning_rate = learning_rate
        self._shapes: Optional[List[Shape]] = None
        if shapes is not None:
            self.register(shapes)

    @property
    def shapes(self) -> Optional[List[Shape]]:
        """Registered slot shapes, or None before registration."""
        return None if self._shapes is None else list(self._shapes)

    def register(self, shapes: Sequence[Shape]) -> None:
        """
        Fix the parameter slots for the lifetime of this optimizer.

        Raises:
            StateError: If slots were already registered
        """
        if self._shapes is not None:
            raise StateError(f"{type(self).__name__} slots already registered")
        self._shapes = [tuple(shape) for shape in shapes]
        self._init_state(self._shapes)
        logger.debug(f"{type(self).__name__} registered slots {self._shapes}")

    def update(self, pairs: Iterable[ParamGradPair]) -> None:
        """
        Apply one update step to every parameter in place.

        Every pair is validated before any parameter changes.

        Args:
            pairs: ``(parameter, gradient)`` pairs in a stable order

        Raises:
            ShapeError: If a gradient does not match its parameter, or the
                pairs do not match the registered slots
        """
        pairs = list(pairs)
        for i, (param, grad) in enumerate(pairs):
            if param.shape != grad.shape:
                raise ShapeError(
                    f"Slot {i}: parameter {param.shape} and gradient "
                    f"{grad.shape} differ"
                )

        shapes = [param.shape for param, _ in pairs]
        if self._shapes is None:
            self.register(shapes)
        elif shapes != self._shapes:
            raise ShapeError(
                f"{type(self).__name__} expects slots {self._shapes}, got {shapes}"
            )

        for i, (param, grad) in enumerate(pairs):
            self._update_slot(i, param, grad)

    def _init_state(self, shapes: List[Shape]) -> None:
        """Allocate per-slot state; stateless optimizers keep none."""

    def _update_slot(self, i: int, param: Matrix, grad: Matrix) -> None:
        raise NotImplementedError


class SGD(Optimizer):
    """Stochastic gradient descent: ``param -= lr * grad``."""

    def _update_slot(self, i: int, param: Matrix, grad: Matrix) -> None:
        param.sub_(grad.scale(self.learning_rate))


class Momentum(Optimizer):
    """
    Gradient descent with a velocity term.

        v = momentum * v - lr * grad
        param += v
    """

    def __init__(
        self,
        learning_rate: float = 0.01,
        momentum: float = 0.9,
        shapes: Optional[Sequence[Shape]] = None
    ):
        self.momentum = momentum
        self.velocities: List[Matrix] = []
        super().__init__(learning_rate, shapes)

    def _init_state(self, shapes: List[Shape]) -> None:
        self.velocities = [Matrix.zeros(rows, cols) for rows, cols in shapes]

    def _update_slot(self, i: int, param: Matrix, grad: Matrix) -> None:
        v = self.velocities[i].scale(self.momentum).sub(grad.scale(self.learning_rate))
        self.velocities[i] = v
        param.add_(v)


class AdaGrad(Optimizer):
    """
    Per-entry adaptive learning rate.

        h += grad * grad
        param -= lr * grad / (sqrt(h) + 1e-7)
    """

    EPSILON = 1e-7

    def __init__(self, learning_rate: float = 0.01, shapes: Optional[Sequence[Shape]] = None):
        self.accumulators: List[Matrix] = []
        super().__init__(learning_rate, shapes)

    def _init_state(self, shapes: List[Shape]) -> None:
        self.accumulators = [Matrix.zeros(rows, cols) for rows, cols in shapes]

    def _update_slot(self, i: int, param: Matrix, grad: Matrix) -> None:
        h = self.accumulators[i]
        h.add_(grad.multiply(grad))
        denominator = h.sqrt() + self.EPSILON
        param.sub_(grad.scale(self.learning_rate).divide(denominator))


OPTIMIZERS = {
    'sgd': SGD,
    'momentum': Momentum,
    'adagrad': AdaGrad,
}


def create_optimizer(name: str, learning_rate: float) -> Optimizer:
    """
    Build an optimizer by name ('sgd', 'momentum' or 'adagrad').

    Raises:
        ValueError: If the name is unknown
    """
    try:
        cls = OPTIMIZERS[name.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown optimizer '{name}', expected one of {sorted(OPTIMIZERS)}"
        ) from None
    return cls(learning_rate=learning_rate)
