"""
Fully-connected layers composed of an inner product and an activation.

The composition is backend-agnostic: it only needs an inner product
blueprint and an activation blueprint built by the same factory.

Forward pass: `z = x * W^T + b` (inner product), then `a = f(z)`.
Backward pass: the activation turns `da` into `dz` (stored in `z`), then the
inner product computes `dW`, `db` and optionally `dx`.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ...domain._resource import let_release, release

logger = logging.getLogger(__name__)

_LINEAR_ACTIVATIONS = ("linear", "identity")


def default_alpha(activ: str) -> float:
    """Linear activations scale by 1.0 unless told otherwise; others use 0.0."""
    return 1.0 if activ in _LINEAR_ACTIVATIONS else 0.0


def _source(prev: Any) -> Any:
    # Accepts a previous layer or a plain tensor.
    return prev.output if hasattr(prev, "output") else prev


class FullyConnectedInference:
    def __init__(self, ip: Any, activ: Any) -> None:
        self._ip = ip
        self._activ = activ

    @property
    def input(self) -> Any:
        return self._ip.input

    @property
    def output(self) -> Any:
        return self._activ.output

    @property
    def weights(self) -> Any:
        return self._ip.weights

    @property
    def bias(self) -> Any:
        return self._ip.bias

    def __call__(self) -> Any:
        self._ip()
        return self._activ()

    def forward(self) -> "FullyConnectedInference":
        self()
        return self

    def release(self) -> bool:
        release(self._activ)
        release(self._ip)
        return True


class FullyConnectedTraining:
    """
    Training fully-connected layer.

    `diff_input` receives the gradient with respect to `output`;
    `diff_output` holds the gradient with respect to `input` after
    `backward()`, or is None when the layer was built without `prop_diff`.
    """

    def __init__(self, ip: Any, activ: Any, a_tz: Any) -> None:
        self._ip = ip
        self._activ = activ
        self._a = a_tz

    @property
    def input(self) -> Any:
        return self._ip.input

    @property
    def output(self) -> Any:
        return self._activ.output

    @property
    def diff_input(self) -> Any:
        return self._activ.diff_input

    @property
    def diff_output(self) -> Any:
        return self._ip.diff_output

    @property
    def weights(self) -> Any:
        return self._ip.weights

    @property
    def bias(self) -> Any:
        return self._ip.bias

    @property
    def diff_weights(self) -> Any:
        return self._ip.diff_weights

    @property
    def diff_bias(self) -> Any:
        return self._ip.diff_bias

    def __call__(self) -> Any:
        self._ip()
        return self._activ()

    def forward(self) -> "FullyConnectedTraining":
        self()
        return self

    def backward(self) -> "FullyConnectedTraining":
        self._activ.backward()
        self._ip.backward()
        return self

    def release(self) -> bool:
        release(self._activ)
        release(self._ip)
        release(self._a)
        return True


class FullyConnectedBlueprint:
    """
    Blueprint of a fully-connected layer.

    Parameters
    ----------
    fact : object
        Factory that built both blueprints; used to allocate activations.
    ip_bluep : object
        Inner product blueprint: `ip_bluep(src)` / `ip_bluep(src, prop_diff)`.
    activ_bluep : object
        Activation blueprint over the inner product output.

    Notes
    -----
    The blueprint owns both sub-blueprints.
    """

    def __init__(self, fact: Any, ip_bluep: Any, activ_bluep: Any) -> None:
        self._fact = fact
        self.ip_bluep = ip_bluep
        self.activ_bluep = activ_bluep

    def __call__(self, prev: Any, prop_diff: Optional[bool] = None):
        src = _source(prev)
        if prop_diff is None:
            with let_release(self.ip_bluep(src)) as ip:
                return FullyConnectedInference(ip, self.activ_bluep(ip.output))
        with let_release(self.ip_bluep(src, prop_diff)) as ip:
            with let_release(self._fact.create_tensor(ip.output, False)) as a_tz:
                activ = self.activ_bluep(ip.output, a_tz)
                logger.debug("Built fully-connected training layer %s -> %s", src.shape, a_tz.shape)
                return FullyConnectedTraining(ip, activ, a_tz)

    def release(self) -> bool:
        release(self.activ_bluep)
        release(self.ip_bluep)
        return True
