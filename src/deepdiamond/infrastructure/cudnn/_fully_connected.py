"""
cuDNN implementations of the sum, activation and inner product blueprints.

Activations run through cuDNN activation descriptors. cuDNN rejects the
identity activation in `cudnnActivationForward`, so linear activations are
plain scaled copies. The inner product has no cuDNN primitive; it is three
cuBLAS products plus a cuDNN bias add and bias reduction.

Layers follow the same `input` / `output` / `diff_input` / `diff_output`
naming as the DNNL backend.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any, Optional

from ...domain._errors import DiamondError, UnsupportedDataTypeError
from ...domain._layout import default_tag, dense_strides
from ...domain._resource import let_release, release
from ...domain._tensor_desc import TensorDesc, data_type_info
from . import _core as cudnn
from ._cublas import fc_backward_data, fc_backward_weights, fc_forward
from ._tensor import CudnnTensor

if TYPE_CHECKING:
    from ._factory import CudnnFactory

logger = logging.getLogger(__name__)

_LINEAR_ACTIVATIONS = ("linear", "identity")
_SEPARATE_DIFF_ACTIVATIONS = ("logistic", "sigmoid")


# ================================ Sum ===========================================


class CudnnSum:
    """`dst = scale_src * src + scale_dst * dst`; calling it returns `dst`."""

    def __init__(
        self, fact: "CudnnFactory", scale_src: float, src: CudnnTensor, scale_dst: float, dst: CudnnTensor
    ) -> None:
        self._fact = fact
        self._src = src
        self._dst = dst
        self.scale_src = scale_src
        self.scale_dst = scale_dst

    def __call__(self) -> CudnnTensor:
        s, d = self._src, self._dst
        if s is d:
            cudnn.scale_tensor(self._fact.hdl, self.scale_src + self.scale_dst, d.td, d.buf, d.offset)
        else:
            cudnn.add_tensor(
                self._fact.hdl, self.scale_src, s.td, s.buf, self.scale_dst, d.td, d.buf, s.offset, d.offset
            )
        return d

    def release(self) -> bool:
        return True


class CudnnSumBlueprint:
    """Same contract as the DNNL sum blueprint."""

    def __init__(self, fact: "CudnnFactory", scale_src: float, scale_dst: float = 0.0) -> None:
        self._fact = fact
        self.scale_src = float(scale_src)
        self.scale_dst = float(scale_dst)

    def __call__(self, src: CudnnTensor, dst: Optional[CudnnTensor] = None) -> CudnnSum:
        if dst is None:
            dst = src
        elif src.shape != dst.shape:
            raise DiamondError("Sum needs tensors of equal shapes.", {"src": src.shape, "dst": dst.shape})
        return CudnnSum(self._fact, self.scale_src, src, self.scale_dst, dst)

    def release(self) -> bool:
        return True


# ================================ Activation ====================================


class CudnnActivationInference:
    """In-place activation."""

    def __init__(self, fact: "CudnnFactory", bluep: "CudnnActivationBlueprint", a_tz: CudnnTensor) -> None:
        self._fact = fact
        self._bluep = bluep
        self._a = a_tz

    @property
    def input(self) -> CudnnTensor:
        return self._a

    @property
    def output(self) -> CudnnTensor:
        return self._a

    def __call__(self) -> CudnnTensor:
        a, bluep = self._a, self._bluep
        if bluep.linear:
            if bluep.alpha != 1.0:
                cudnn.scale_tensor(self._fact.hdl, bluep.alpha, a.td, a.buf, a.offset)
        else:
            cudnn.activation_forward(
                self._fact.hdl, bluep.ad, 1.0, a.td, a.buf, 0.0, a.td, a.buf, a.offset, a.offset
            )
        return a

    def forward(self) -> "CudnnActivationInference":
        self()
        return self

    def info(self) -> dict[str, Any]:
        return {"activation": self._bluep.activ, "a": self._a.info()}

    def release(self) -> bool:
        return True


class CudnnLinearActivationTraining:
    """`a = alpha * z`; backward writes `alpha * da` into `z`."""

    def __init__(
        self, fact: "CudnnFactory", bluep: "CudnnActivationBlueprint", z_tz: CudnnTensor, a_tz: CudnnTensor
    ) -> None:
        self._fact = fact
        self._bluep = bluep
        self._z = z_tz
        self._a = a_tz

    @property
    def input(self) -> CudnnTensor:
        return self._z

    @property
    def output(self) -> CudnnTensor:
        return self._a

    @property
    def diff_input(self) -> CudnnTensor:
        return self._a

    @property
    def diff_output(self) -> CudnnTensor:
        return self._z

    def __call__(self) -> CudnnTensor:
        z, a = self._z, self._a
        cudnn.transform_tensor(self._fact.hdl, self._bluep.alpha, z.td, z.buf, 0.0, a.td, a.buf, z.offset, a.offset)
        return a

    def forward(self) -> "CudnnLinearActivationTraining":
        self()
        return self

    def backward(self) -> "CudnnLinearActivationTraining":
        z, a = self._z, self._a
        cudnn.transform_tensor(self._fact.hdl, self._bluep.alpha, a.td, a.buf, 0.0, z.td, z.buf, a.offset, z.offset)
        return self

    def info(self) -> dict[str, Any]:
        return {"activation": self._bluep.activ, "z": self._z.info(), "a": self._a.info()}

    def release(self) -> bool:
        return True


class CudnnActivationTraining:
    """
    Activation `a = f(z)` with gradient propagation.

    `backward()` reads `da` and writes the gradient with respect to `z`
    into `z`.
    """

    def __init__(
        self,
        fact: "CudnnFactory",
        bluep: "CudnnActivationBlueprint",
        z_tz: CudnnTensor,
        a_tz: CudnnTensor,
        da_tz: CudnnTensor,
    ) -> None:
        self._fact = fact
        self._bluep = bluep
        self._z = z_tz
        self._a = a_tz
        self._da = da_tz

    @property
    def input(self) -> CudnnTensor:
        return self._z

    @property
    def output(self) -> CudnnTensor:
        return self._a

    @property
    def diff_input(self) -> CudnnTensor:
        return self._da

    @property
    def diff_output(self) -> CudnnTensor:
        return self._z

    def __call__(self) -> CudnnTensor:
        z, a = self._z, self._a
        cudnn.activation_forward(self._fact.hdl, self._bluep.ad, 1.0, z.td, z.buf, 0.0, a.td, a.buf, z.offset, a.offset)
        return a

    def forward(self) -> "CudnnActivationTraining":
        self()
        return self

    def backward(self) -> "CudnnActivationTraining":
        z, a, da = self._z, self._a, self._da
        cudnn.activation_backward(
            self._fact.hdl, self._bluep.ad, 1.0, a.td, a.buf, da.td, da.buf, z.td, z.buf, 0.0, z.td, z.buf,
            a.offset, da.offset, z.offset, z.offset,
        )
        return self

    def info(self) -> dict[str, Any]:
        return {
            "activation": self._bluep.activ,
            "z": self._z.info(),
            "a": self._a.info(),
            "da": self._da.info(),
        }

    def release(self) -> bool:
        return release(self._da)


class CudnnActivationBlueprint:
    """
    Activation over tensors of one shape.

    `alpha` scales linear activations and is the cuDNN coefficient (clipping
    threshold, ELU alpha) otherwise.
    """

    def __init__(self, fact: "CudnnFactory", desc: Any, activ: str, alpha: float, beta: float = 0.0) -> None:
        self._fact = fact
        self.activ = activ
        self.alpha = float(alpha)
        self.beta = float(beta)
        self.shape = tuple(int(d) for d in desc.shape)
        self.linear = activ in _LINEAR_ACTIVATIONS
        self.ad = None if self.linear else cudnn.activation_descriptor(activ, True, self.alpha, lib=fact.hdl.lib)

    def __call__(self, src_tz: CudnnTensor, dst_tz: Optional[CudnnTensor] = None):
        if dst_tz is None:
            return CudnnActivationInference(self._fact, self, src_tz)
        if self.linear:
            return CudnnLinearActivationTraining(self._fact, self, src_tz, dst_tz)
        if self.activ in _SEPARATE_DIFF_ACTIVATIONS:
            da = self._fact.create_tensor(dst_tz, False)
        else:
            da = dst_tz.view()
        with let_release(da):
            return CudnnActivationTraining(self._fact, self, src_tz, dst_tz, da)

    def info(self) -> dict[str, Any]:
        return {"activation": self.activ, "alpha": self.alpha, "beta": self.beta}

    def release(self) -> bool:
        return release(self.ad)


# ================================ Inner product =================================


def _check_dense(tz: CudnnTensor, name: str) -> None:
    expected = dense_strides(tz.shape, default_tag(len(tz.shape)))
    if tuple(tz.layout) != tuple(expected):
        raise DiamondError(
            f"The {name} tensor must be dense and in row-major order.",
            {"shape": tz.shape, "strides": tz.layout},
        )


class _CudnnInnerProduct:
    """Tensors and products shared by the inference and training layers."""

    def __init__(self, fact: "CudnnFactory", bluep: "CudnnInnerProductBlueprint", src_tz: CudnnTensor) -> None:
        self._fact = fact
        self._bluep = bluep
        self._src = src_tz
        self._weights = self._bias = self._dst = None
        self._bias_td = None
        try:
            self._weights = fact.create_tensor(bluep.weights_desc, True)
            self._bias = fact.create_tensor(bluep.bias_desc, True)
            self._dst = fact.create_tensor(bluep.dst_desc, True)
            # bias seen as a [1, out] row broadcast over the batch
            self._bias_td = fact.tensor_desc((1, bluep.n_out), bluep.dst_type, (bluep.n_out, 1))
        except BaseException:
            self.release()
            raise

    @property
    def input(self) -> CudnnTensor:
        return self._src

    @property
    def output(self) -> CudnnTensor:
        return self._dst

    @property
    def weights(self) -> CudnnTensor:
        return self._weights

    @property
    def bias(self) -> CudnnTensor:
        return self._bias

    def __call__(self) -> CudnnTensor:
        b, fact = self._bluep, self._fact
        dst = self._dst
        fc_forward(fact.cublas, b.dst_type, b.batch, b.n_in, b.n_out, self._weights.address, self._src.address, dst.address)
        cudnn.add_tensor(fact.hdl, 1.0, self._bias_td, self._bias.buf, 1.0, dst.td, dst.buf, self._bias.offset, dst.offset)
        return dst

    def release(self) -> bool:
        release(self._bias_td)
        release(self._weights)
        release(self._bias)
        release(self._dst)
        return True


class CudnnInnerProductInference(_CudnnInnerProduct):
    def forward(self) -> "CudnnInnerProductInference":
        self()
        return self


class CudnnInnerProductTraining(_CudnnInnerProduct):
    """
    Inner product with weight / bias gradients.

    `backward()` expects the gradient with respect to `output` in `output`.
    With `prop_diff`, the gradient with respect to the source is written
    into the source tensor after the weight gradient has been computed.
    """

    def __init__(
        self, fact: "CudnnFactory", bluep: "CudnnInnerProductBlueprint", src_tz: CudnnTensor, prop_diff: bool
    ) -> None:
        super().__init__(fact, bluep, src_tz)
        self.prop_diff = bool(prop_diff)
        self._diff_weights = self._diff_bias = self._diff_src = None
        try:
            self._diff_weights = fact.create_tensor(bluep.weights_desc, True)
            self._diff_bias = fact.create_tensor(bluep.bias_desc, True)
            if self.prop_diff:
                self._diff_src = src_tz.view()
        except BaseException:
            self.release()
            raise

    @property
    def diff_input(self) -> CudnnTensor:
        return self._dst

    @property
    def diff_output(self) -> Optional[CudnnTensor]:
        return self._diff_src

    @property
    def diff_weights(self) -> CudnnTensor:
        return self._diff_weights

    @property
    def diff_bias(self) -> CudnnTensor:
        return self._diff_bias

    def forward(self) -> "CudnnInnerProductTraining":
        self()
        return self

    def backward(self) -> "CudnnInnerProductTraining":
        b, fact = self._bluep, self._fact
        dz, db = self._dst, self._diff_bias
        fc_backward_weights(
            fact.cublas, b.dst_type, b.batch, b.n_in, b.n_out, self._src.address, dz.address, self._diff_weights.address
        )
        cudnn.reduce_tensor(
            fact.hdl, b.bias_reduction, 1.0, dz.td, dz.buf, 0.0, self._bias_td, db.buf, dz.offset, db.offset
        )
        if self.prop_diff:
            fc_backward_data(
                fact.cublas, b.dst_type, b.batch, b.n_in, b.n_out, self._weights.address, dz.address, self._diff_src.address
            )
        return self

    def release(self) -> bool:
        release(self._diff_weights)
        release(self._diff_bias)
        release(self._diff_src)
        return super().release()


class CudnnInnerProductBlueprint:
    """
    Inner product from a dense row-major source to a `[n, out]` destination,
    computed with cuBLAS.

    Weights have shape `[out] + src_shape[1:]`, bias has shape `[out]`.
    """

    def __init__(
        self,
        fact: "CudnnFactory",
        src_desc: Any,
        dst_shape: tuple[int, ...],
        dst_type: str,
        weights_type: str,
    ) -> None:
        self._fact = fact
        src_shape = tuple(int(d) for d in src_desc.shape)
        n, out = int(dst_shape[0]), int(dst_shape[1])
        if n != src_shape[0]:
            raise DiamondError(
                "Source and destination batch sizes differ.",
                {"src": list(src_shape), "dst": list(dst_shape)},
            )
        src_type = data_type_info(src_desc.data_type).name
        if weights_type != dst_type or src_type != dst_type:
            raise UnsupportedDataTypeError(f"{src_type}/{weights_type}/{dst_type}", "cuBLAS")
        self.src_shape = src_shape
        self.dst_type = dst_type
        self.batch = n
        self.n_in = int(math.prod(src_shape[1:]))
        self.n_out = out
        weights_shape = (out,) + src_shape[1:]
        self.weights_desc = TensorDesc(weights_shape, weights_type, default_tag(len(weights_shape)))
        self.bias_desc = TensorDesc((out,), weights_type, "x")
        self.dst_desc = TensorDesc((n, out), dst_type, "nc")
        self.bias_reduction = cudnn.reduce_tensor_descriptor("add", dst_type, lib=fact.hdl.lib)
        logger.debug("Inner product blueprint %s -> %s", list(src_shape), [n, out])

    def __call__(self, src_tz: CudnnTensor, prop_diff: Optional[bool] = None):
        if src_tz.shape != self.src_shape or src_tz.data_type != self.dst_type:
            raise DiamondError(
                "Source tensor does not match the blueprint.",
                {"src": src_tz.info(), "expected": list(self.src_shape)},
            )
        _check_dense(src_tz, "source")
        if prop_diff is None:
            return CudnnInnerProductInference(self._fact, self, src_tz)
        return CudnnInnerProductTraining(self._fact, self, src_tz, prop_diff)

    @property
    def dst_md(self) -> TensorDesc:
        return self.dst_desc

    def release(self) -> bool:
        return release(self.bias_reduction)
