"""
Cost functions and cost layers shared by both backends.

A cost layer sits on top of the last layer of a network. It connects the
previous layer's output to the layout of the training targets `y`, computes
`a - y` into the previous layer's `diff_input` and starts back-propagation.

Two flavors exist:

- `UniversalCost` evaluates a cost that only needs `a - y` (quadratic,
  mean absolute). The cost function receives the tensor engine and the
  `a - y` tensor.
- `CustomCost` evaluates a cost that needs `y` and `a` separately (sigmoid
  cross-entropy). The cost function receives both tensors.

Calling a cost layer connects the current output of the previous layer and
returns its cost. `backward()` subtracts `y` only once per connected output,
whether or not the cost was evaluated first.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

import numpy as np

from ..domain._resource import release
from ..domain._tensor_desc import TensorDesc
from ._connector import connector, connector_into

logger = logging.getLogger(__name__)


def quadratic_cost(engine: Any, a_y: Any) -> float:
    """||a - y||^2 / (2 * count(a - y))."""
    n = engine.nrm2(a_y)
    return n * n / (2 * a_y.count())


def mean_absolute_cost(engine: Any, a_y: Any) -> float:
    """sum(|a - y|) / count(a - y)."""
    return engine.asum(a_y) / a_y.count()


def _host(x: Any) -> np.ndarray:
    to_numpy = getattr(x, "to_numpy", None)
    return np.asarray(to_numpy() if to_numpy is not None else x, dtype=np.float64)


def sigmoid_crossentropy_cost(n: int, y: Any, a: Any) -> float:
    """
    -sum(y * log(a) + (1 - y) * log(1 - a)) / n.

    `y` and `a` may be tensors or array-likes; the sum is computed on the host
    in double precision.
    """
    y, a = _host(y), _host(a)
    return float(-np.sum(y * np.log(a) + (1.0 - y) * np.log(1.0 - a)) / n)


def _output_desc(prev_layer: Any, train_tz: Any) -> TensorDesc:
    return TensorDesc(tuple(prev_layer.output.shape), train_tz.data_type, tuple(train_tz.layout))


class _CostLayer:
    def __init__(self, fact: Any, prev_layer: Any, train_tz: Any) -> None:
        self._fact = fact
        self._prev = prev_layer
        self._y = train_tz
        self._engine = fact.tensor_engine(train_tz.data_type)
        desc = _output_desc(prev_layer, train_tz)
        self._connect_output = self._connect_diff = None
        try:
            self._connect_output = connector(fact, prev_layer.output, desc)
            self._connect_diff = connector_into(fact, desc, prev_layer.diff_input)
        except BaseException:
            self.release()
            raise
        self._a_y = self._connect_diff.input
        self._diff_ready = False

    @property
    def input(self) -> Any:
        return self._prev.output

    @property
    def output(self) -> Any:
        return self._connect_output.output

    @property
    def diff_input(self) -> Any:
        return self._y

    @property
    def diff_output(self) -> Any:
        return self._a_y

    def _diff(self) -> None:
        if not self._diff_ready:
            self._engine.copy(self._connect_output.output, self._a_y)
            self._engine.axpy(-1.0, self._y, self._a_y)
            self._diff_ready = True

    def _refresh(self) -> None:
        self._connect_output()
        self._diff_ready = False

    def forward(self):
        self._refresh()
        return self

    def backward(self):
        self._diff()
        self._connect_diff()
        self._prev.backward()
        return self

    def release(self) -> bool:
        release(self._connect_output)
        release(self._connect_diff)
        return True


class UniversalCost(_CostLayer):
    """Cost layer for costs of `a - y` alone."""

    def __init__(
        self,
        fact: Any,
        prev_layer: Any,
        train_tz: Any,
        cost: Callable[[Any, Any], float],
    ) -> None:
        super().__init__(fact, prev_layer, train_tz)
        self._cost = cost

    def __call__(self) -> float:
        self._refresh()
        self._diff()
        return self._cost(self._engine, self._a_y)


class CustomCost(_CostLayer):
    """Cost layer for costs of `y` and `a`."""

    def __init__(
        self,
        fact: Any,
        prev_layer: Any,
        train_tz: Any,
        cost: Callable[[Any, Any], float],
    ) -> None:
        super().__init__(fact, prev_layer, train_tz)
        self._cost = cost

    def __call__(self) -> float:
        self._refresh()
        return self._cost(self._y, self._connect_output.output)


def cost_layer(fact: Any, prev_layer: Any, train_tz: Any, kind: str):
    """
    Build a cost layer of `kind` ("quadratic", "mean-absolute",
    "sigmoid-crossentropy").
    """
    if kind == "quadratic":
        layer = UniversalCost(fact, prev_layer, train_tz, quadratic_cost)
    elif kind == "mean-absolute":
        layer = UniversalCost(fact, prev_layer, train_tz, mean_absolute_cost)
    elif kind == "sigmoid-crossentropy":
        n = int(prev_layer.output.shape[0])

        def cost(y: Any, a: Any) -> float:
            return sigmoid_crossentropy_cost(n, y, a)

        layer = CustomCost(fact, prev_layer, train_tz, cost)
    else:
        raise ValueError(
            f"Unknown cost {kind!r}. Expected one of "
            "['mean-absolute', 'quadratic', 'sigmoid-crossentropy']"
        )
    logger.debug("Created %s cost over %s", kind, tuple(train_tz.shape))
    return layer
