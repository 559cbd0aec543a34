"""
DNNL implementations of the sum, activation and inner product blueprints.

A blueprint holds the primitive descriptors for one layer configuration
(shapes, data types, algorithm). Calling a blueprint instantiates a layer
bound to concrete tensors:

- `blueprint(src)` gives an inference layer;
- `blueprint(src, dst)` (activation) or `blueprint(src, prop_diff)` (inner
  product) gives a training layer with `forward()` / `backward()`.

Layers follow the `Transfer` / `DiffTransfer` naming: `input` / `output` for
the forward pass, `diff_input` (gradient coming from the next layer) and
`diff_output` (gradient handed to the previous layer) for the backward pass.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

from ...domain._errors import DiamondError
from ...domain._layout import default_tag
from ...domain._resource import let_release, release
from . import _core as dnnl
from ._tensor import DnnlTensor

if TYPE_CHECKING:
    from ._factory import DnnlFactory

logger = logging.getLogger(__name__)

_SEPARATE_DIFF_ACTIVATIONS = ("logistic", "sigmoid")


# ================================ Sum ===========================================


class DnnlSum:
    """Executes a prepared sum primitive; calling it returns the destination."""

    def __init__(self, fact: "DnnlFactory", pd: Any, args: Any, dst: DnnlTensor) -> None:
        self._fact = fact
        self._pd = pd
        self._prim = dnnl.primitive(pd)
        self._args = args
        self._dst = dst

    def __call__(self) -> DnnlTensor:
        self._fact.execute(self._prim, self._args)
        return self._dst

    def release(self) -> bool:
        release(self._prim)
        release(self._pd)
        return True


class DnnlSumBlueprint:
    """
    Scaled sums of tensors with the same shape.

    - `bluep(x)`: x = (scale_src + scale_dst) * x
    - `bluep(src, dst)`: dst = scale_src * src + scale_dst * dst
    """

    def __init__(self, fact: "DnnlFactory", scale_src: float, scale_dst: float = 0.0) -> None:
        self._fact = fact
        self.scale_src = float(scale_src)
        self.scale_dst = float(scale_dst)

    def __call__(self, src: DnnlTensor, dst: Optional[DnnlTensor] = None) -> DnnlSum:
        eng = self._fact.eng
        if dst is None or dst is src:
            pd = dnnl.sum_pd(eng, self.scale_src + self.scale_dst, src.md)
            return DnnlSum(self._fact, pd, dnnl.args(src.mem), src)
        if src.shape != dst.shape:
            raise DiamondError("Sum needs tensors of equal shapes.", {"src": src.shape, "dst": dst.shape})
        if self.scale_dst == 0.0:
            pd = dnnl.sum_pd(eng, dst.md, self.scale_src, src.md)
            return DnnlSum(self._fact, pd, dnnl.args(dst.mem, src.mem), dst)
        # dst must come first when it is also a source
        pd = dnnl.sum_pd(eng, dst.md, self.scale_dst, dst.md, self.scale_src, src.md)
        return DnnlSum(self._fact, pd, dnnl.args(dst.mem, dst.mem, src.mem), dst)

    def release(self) -> bool:
        return True


# ================================ Activation ====================================


class DnnlActivationInference:
    """In-place activation: input and output are the same tensor."""

    def __init__(self, fact: "DnnlFactory", bluep: "DnnlActivationBlueprint", a_tz: DnnlTensor) -> None:
        self._fact = fact
        self._bluep = bluep
        self._a = a_tz
        self._prim = dnnl.primitive(bluep.infer_pd)
        self._args = dnnl.eltwise_args(a_tz.mem)

    @property
    def input(self) -> DnnlTensor:
        return self._a

    @property
    def output(self) -> DnnlTensor:
        return self._a

    def __call__(self) -> DnnlTensor:
        self._fact.execute(self._prim, self._args)
        return self._a

    def forward(self) -> "DnnlActivationInference":
        self()
        return self

    def info(self) -> dict[str, Any]:
        return {"activation": self._bluep.activ, "a": self._a.info()}

    def release(self) -> bool:
        return release(self._prim)


class DnnlActivationTraining:
    """
    Activation `a = f(z)` with gradient propagation.

    `backward()` reads the gradient from `diff_input` and writes the
    gradient with respect to `z` back into `z`.
    """

    def __init__(
        self,
        fact: "DnnlFactory",
        bluep: "DnnlActivationBlueprint",
        z_tz: DnnlTensor,
        a_tz: DnnlTensor,
        da_tz: DnnlTensor,
    ) -> None:
        self._fact = fact
        self._bluep = bluep
        self._z = z_tz
        self._a = a_tz
        self._da = da_tz
        self._fwd_prim = self._bwd_prim = None
        try:
            self._fwd_prim = dnnl.primitive(bluep.train_pd)
            self._bwd_prim = dnnl.primitive(bluep.bwd_pd)
        except BaseException:
            self.release()
            raise
        self._fwd_args = dnnl.eltwise_args(z_tz.mem, a_tz.mem)
        self._bwd_args = dnnl.eltwise_args(z_tz.mem, da_tz.mem, z_tz.mem)

    @property
    def input(self) -> DnnlTensor:
        return self._z

    @property
    def output(self) -> DnnlTensor:
        return self._a

    @property
    def diff_input(self) -> DnnlTensor:
        return self._da

    @property
    def diff_output(self) -> DnnlTensor:
        return self._z

    def __call__(self) -> DnnlTensor:
        self._fact.execute(self._fwd_prim, self._fwd_args)
        return self._a

    def forward(self) -> "DnnlActivationTraining":
        self()
        return self

    def backward(self) -> "DnnlActivationTraining":
        self._fact.execute(self._bwd_prim, self._bwd_args)
        return self

    def info(self) -> dict[str, Any]:
        return {
            "activation": self._bluep.activ,
            "z": self._z.info(),
            "a": self._a.info(),
            "da": self._da.info(),
        }

    def release(self) -> bool:
        release(self._fwd_prim)
        release(self._bwd_prim)
        release(self._da)
        return True


class DnnlActivationBlueprint:
    """
    Elementwise activation over tensors described by `md`.

    Holds the inference, training and backward eltwise primitive
    descriptors.
    """

    def __init__(
        self, fact: "DnnlFactory", md: Any, activ: str, alpha: float, beta: float
    ) -> None:
        self._fact = fact
        self.activ = activ
        self.alpha = float(alpha)
        self.beta = float(beta)
        self.md = md
        lib, eng = fact.lib, fact.eng
        self.infer_pd = self.train_pd = self.bwd_pd = None
        try:
            self.infer_pd = dnnl.primitive_desc(
                eng, dnnl.eltwise_fwd_desc("inference", activ, md, alpha, beta, lib=lib)
            )
            self.train_pd = dnnl.primitive_desc(
                eng, dnnl.eltwise_fwd_desc("training", activ, md, alpha, beta, lib=lib)
            )
            self.bwd_pd = dnnl.primitive_desc(
                eng,
                dnnl.eltwise_bwd_desc(activ, md, md, alpha, beta, lib=lib),
                self.train_pd,
            )
        except BaseException:
            self.release()
            raise

    def __call__(self, src_tz: DnnlTensor, dst_tz: Optional[DnnlTensor] = None):
        if dst_tz is None:
            return DnnlActivationInference(self._fact, self, src_tz)
        if self.activ in _SEPARATE_DIFF_ACTIVATIONS:
            da = self._fact.create_tensor(dst_tz, False)
        else:
            da = dst_tz.view()
        with let_release(da):
            return DnnlActivationTraining(self._fact, self, src_tz, dst_tz, da)

    def info(self) -> dict[str, Any]:
        return {"activation": self.activ, "alpha": self.alpha, "beta": self.beta}

    def release(self) -> bool:
        release(self.infer_pd)
        release(self.train_pd)
        release(self.bwd_pd)
        return True


# ================================ Inner product =================================


class DnnlInnerProductInference:
    """`dst = src * weights^T + bias`, with weights and bias owned by the layer."""

    def __init__(self, fact: "DnnlFactory", bluep: "DnnlInnerProductBlueprint", src_tz: DnnlTensor) -> None:
        self._fact = fact
        self._bluep = bluep
        self._src = src_tz
        self._weights = self._bias = self._dst = None
        self._prim = None
        try:
            self._weights = fact.create_tensor(bluep.weights_md, True)
            self._bias = fact.create_tensor(bluep.bias_md, True)
            self._dst = fact.create_tensor(bluep.dst_md, True)
            self._prim = dnnl.primitive(bluep.infer_pd)
        except BaseException:
            self.release()
            raise
        self._args = dnnl.fwd_args(src_tz.mem, self._weights.mem, self._bias.mem, self._dst.mem)

    @property
    def input(self) -> DnnlTensor:
        return self._src

    @property
    def output(self) -> DnnlTensor:
        return self._dst

    @property
    def weights(self) -> DnnlTensor:
        return self._weights

    @property
    def bias(self) -> DnnlTensor:
        return self._bias

    def __call__(self) -> DnnlTensor:
        self._fact.execute(self._prim, self._args)
        return self._dst

    def forward(self) -> "DnnlInnerProductInference":
        self()
        return self

    def release(self) -> bool:
        release(self._prim)
        release(self._weights)
        release(self._bias)
        release(self._dst)
        return True


class DnnlInnerProductTraining:
    """
    Inner product with weight / bias gradients.

    `backward()` expects the gradient with respect to `output` to be in
    `output` itself. It fills `diff_weights` and `diff_bias` and, with
    `prop_diff`, writes the gradient with respect to the source into
    `diff_output` (a view of the source tensor).
    """

    def __init__(
        self,
        fact: "DnnlFactory",
        bluep: "DnnlInnerProductBlueprint",
        src_tz: DnnlTensor,
        prop_diff: bool,
    ) -> None:
        self._fact = fact
        self._bluep = bluep
        self._src = src_tz
        self.prop_diff = bool(prop_diff)
        self._weights = self._bias = self._dst = None
        self._diff_weights = self._diff_bias = self._diff_src = None
        self._fwd_prim = self._bwd_weights_prim = self._bwd_data_prim = None
        try:
            self._weights = fact.create_tensor(bluep.weights_md, True)
            self._bias = fact.create_tensor(bluep.bias_md, True)
            self._dst = fact.create_tensor(bluep.dst_md, True)
            self._diff_weights = fact.create_tensor(bluep.weights_md, True)
            self._diff_bias = fact.create_tensor(bluep.bias_md, True)
            self._fwd_prim = dnnl.primitive(bluep.train_pd)
            self._bwd_weights_prim = dnnl.primitive(bluep.bwd_weights_pd)
            if self.prop_diff:
                self._diff_src = src_tz.view()
                self._bwd_data_prim = dnnl.primitive(bluep.bwd_data_pd)
        except BaseException:
            self.release()
            raise
        self._fwd_args = dnnl.fwd_args(
            src_tz.mem, self._weights.mem, self._bias.mem, self._dst.mem
        )
        self._bwd_weights_args = dnnl.bwd_args(
            src_tz.mem, self._dst.mem, self._diff_weights.mem, self._diff_bias.mem
        )
        self._bwd_data_args = (
            dnnl.bwd_args(self._dst.mem, self._weights.mem, self._diff_src.mem)
            if self.prop_diff
            else None
        )

    @property
    def input(self) -> DnnlTensor:
        return self._src

    @property
    def output(self) -> DnnlTensor:
        return self._dst

    @property
    def diff_input(self) -> DnnlTensor:
        return self._dst

    @property
    def diff_output(self) -> Optional[DnnlTensor]:
        return self._diff_src

    @property
    def weights(self) -> DnnlTensor:
        return self._weights

    @property
    def bias(self) -> DnnlTensor:
        return self._bias

    @property
    def diff_weights(self) -> DnnlTensor:
        return self._diff_weights

    @property
    def diff_bias(self) -> DnnlTensor:
        return self._diff_bias

    def __call__(self) -> DnnlTensor:
        self._fact.execute(self._fwd_prim, self._fwd_args)
        return self._dst

    def forward(self) -> "DnnlInnerProductTraining":
        self()
        return self

    def backward(self) -> "DnnlInnerProductTraining":
        self._fact.execute(self._bwd_weights_prim, self._bwd_weights_args)
        if self.prop_diff:
            self._fact.execute(self._bwd_data_prim, self._bwd_data_args)
        return self

    def release(self) -> bool:
        release(self._fwd_prim)
        release(self._bwd_weights_prim)
        release(self._bwd_data_prim)
        release(self._weights)
        release(self._bias)
        release(self._dst)
        release(self._diff_weights)
        release(self._diff_bias)
        release(self._diff_src)
        return True


class DnnlInnerProductBlueprint:
    """
    Inner product from `src_md` to a 2D `[n, out]` destination.

    Weights have shape `[out] + src_shape[1:]` in row-major order, bias has
    shape `[out]`.
    """

    def __init__(
        self,
        fact: "DnnlFactory",
        src_md: Any,
        dst_shape: tuple[int, ...],
        dst_type: str,
        weights_type: str,
    ) -> None:
        self._fact = fact
        lib, eng = fact.lib, fact.eng
        src_dims = dnnl.dims(src_md)
        n, out = int(dst_shape[0]), int(dst_shape[1])
        if n != src_dims[0]:
            raise DiamondError(
                "Source and destination batch sizes differ.",
                {"src": src_dims, "dst": list(dst_shape)},
            )
        weights_dims = [out] + src_dims[1:]
        self.src_md = src_md
        self.weights_md = dnnl.memory_desc(weights_dims, weights_type, default_tag(len(weights_dims)), lib=lib)
        self.bias_md = dnnl.memory_desc([out], weights_type, "x", lib=lib)
        self.dst_md = dnnl.memory_desc([n, out], dst_type, "nc", lib=lib)
        logger.debug("Inner product blueprint %s -> %s", src_dims, [n, out])
        self.infer_pd = self.train_pd = self.bwd_data_pd = self.bwd_weights_pd = None
        try:
            self.infer_pd = dnnl.primitive_desc(
                eng,
                dnnl.inner_product_fwd_desc(
                    "inference", src_md, self.weights_md, self.bias_md, self.dst_md, lib=lib
                ),
            )
            self.train_pd = dnnl.primitive_desc(
                eng,
                dnnl.inner_product_fwd_desc(
                    "training", src_md, self.weights_md, self.bias_md, self.dst_md, lib=lib
                ),
            )
            self.bwd_data_pd = dnnl.primitive_desc(
                eng,
                dnnl.inner_product_bwd_desc(src_md, self.weights_md, self.dst_md, lib=lib),
                self.train_pd,
            )
            self.bwd_weights_pd = dnnl.primitive_desc(
                eng,
                dnnl.inner_product_bwd_desc(
                    src_md, self.weights_md, self.bias_md, self.dst_md, lib=lib
                ),
                self.train_pd,
            )
        except BaseException:
            self.release()
            raise

    def __call__(self, src_tz: DnnlTensor, prop_diff: Optional[bool] = None):
        if not dnnl.equal_desc(src_tz.md, self.src_md, lib=self._fact.lib):
            raise DiamondError(
                "Source tensor does not match the blueprint.",
                {"src": src_tz.info(), "expected": dnnl.info(self.src_md)},
            )
        if prop_diff is None:
            return DnnlInnerProductInference(self._fact, self, src_tz)
        return DnnlInnerProductTraining(self._fact, self, src_tz, prop_diff)

    def release(self) -> bool:
        release(self.infer_pd)
        release(self.train_pd)
        release(self.bwd_data_pd)
        release(self.bwd_weights_pd)
        return True
