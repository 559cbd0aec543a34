"""
cuDNN backend factory.

`CudnnFactory` owns (or borrows) a CUDA stream with the cuDNN and cuBLAS
handles bound to it, and creates device tensors, transfers, tensor engines,
layer blueprints and cost layers on one GPU. Host-side tensors come from its
native factory, a DNNL factory created on first use.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ...domain._errors import UnsupportedDataTypeError, UnsupportedOperationError
from ...domain._layout import ANY
from ...domain._resource import let_release, release
from ...domain._tensor_desc import Layout, TensorDescriptor, data_type_info, tensor_desc
from .._cost import cost_layer
from ..fully_connected import FullyConnectedBlueprint, default_alpha
from . import _core as cudnn
from ._cublas import CublasHandle, cublas_handle
from ._cuda_runtime import CudaStream, cudart_lib, set_device, stream_create, synchronize
from ._fully_connected import CudnnActivationBlueprint, CudnnInnerProductBlueprint, CudnnSumBlueprint
from ._impl import CudnnHandle, CudnnTensorDesc
from ._tensor import (
    CudnnBatcher,
    CudnnShuffler,
    CudnnTensor,
    CudnnTensorEngine,
    CudnnTransformer,
    cudnn_tensor,
)

logger = logging.getLogger(__name__)

SUPPORTED_DATA_TYPES = ("float", "double")


def _check_data_type(data_type: str) -> str:
    dt = data_type_info(data_type).name
    if dt not in SUPPORTED_DATA_TYPES:
        raise UnsupportedDataTypeError(dt, "cuDNN")
    return dt


class CudnnFactory:
    """
    Factory of cuDNN tensors, operations and layers.

    Parameters
    ----------
    strm : CudaStream
        Stream all work is queued on.
    hdl : CudnnHandle
        cuDNN handle bound to `strm`.
    cublas : CublasHandle
        cuBLAS handle bound to `strm`.
    device_id : int, optional
        CUDA device index.
    master : bool, optional
        If True, the stream is released with the factory.
    native_fact : object, optional
        Host-side factory to hand out from `native_diamond_factory`. When
        omitted, a DNNL factory is created on first use and owned.
    """

    def __init__(
        self,
        strm: CudaStream,
        hdl: CudnnHandle,
        cublas: CublasHandle,
        device_id: int = 0,
        master: bool = True,
        native_fact: Any = None,
    ) -> None:
        self.strm = strm
        self.hdl = hdl
        self.cublas = cublas
        self.device_id = int(device_id)
        self.master = bool(master)
        self.cudart = strm.lib
        self._native = native_fact
        self._own_native = native_fact is None
        self._engines: dict[str, CudnnTensorEngine] = {}
        logger.debug("Created cuDNN factory on %s (master=%s)", self.device, self.master)

    @property
    def device(self) -> str:
        return f"cuda:{self.device_id}"

    def synchronize(self) -> None:
        synchronize(self.cudart, self.strm)

    # ------------------------------------------------------------------
    # TensorFactory
    # ------------------------------------------------------------------
    def create_tensor_desc(
        self,
        shape: Any,
        data_type: Optional[str] = None,
        layout: Optional[Layout] = None,
    ):
        if isinstance(shape, TensorDescriptor):
            return tensor_desc(shape.shape, shape.data_type, shape.layout)
        return tensor_desc(shape, data_type or "float", layout)

    def tensor_desc(self, shape: Any, data_type: str, layout: Any = None) -> CudnnTensorDesc:
        """Native cuDNN descriptor; `layout` is a tag, "any" / None or strides."""
        return cudnn.tensor_descriptor(shape, _check_data_type(data_type), layout, lib=self.hdl.lib)

    def create_tensor(self, desc: Any, init: bool = True) -> CudnnTensor:
        layout = desc.layout
        if isinstance(layout, str) and layout == ANY:
            layout = None
        td = self.tensor_desc(desc.shape, desc.data_type, layout)
        with let_release(td):
            return cudnn_tensor(self, td, init)

    def create_transformer(self, in_tz: CudnnTensor, out_tz: CudnnTensor) -> CudnnTransformer:
        return CudnnTransformer(self, in_tz, out_tz)

    def create_shuffler(self, src_tz: CudnnTensor, dst_tz: CudnnTensor) -> CudnnShuffler:
        return CudnnShuffler(self, src_tz, dst_tz)

    def create_batcher(self, src_tz: CudnnTensor, dst_tz: CudnnTensor, mb_size: int) -> CudnnBatcher:
        return CudnnBatcher(self, src_tz, dst_tz, mb_size)

    def create_sum(self, scale_src: float, scale_dst: Optional[float] = None) -> CudnnSumBlueprint:
        return CudnnSumBlueprint(self, scale_src, 0.0 if scale_dst is None else scale_dst)

    def tensor_engine(self, data_type: str) -> CudnnTensorEngine:
        dt = _check_data_type(data_type)
        eng = self._engines.get(dt)
        if eng is None:
            eng = self._engines[dt] = CudnnTensorEngine(self, dt)
        return eng

    # ------------------------------------------------------------------
    # DnnFactory
    # ------------------------------------------------------------------
    def activ_blueprint(
        self,
        src_desc: Any,
        activ: str,
        alpha: Optional[float] = None,
        beta: float = 0.0,
    ) -> CudnnActivationBlueprint:
        _check_data_type(src_desc.data_type)
        alpha = default_alpha(activ) if alpha is None else alpha
        return CudnnActivationBlueprint(self, src_desc, activ, alpha, beta)

    def inner_product_blueprint(self, src_desc: Any, dst_desc: Any, weights_type: Optional[str] = None):
        raise UnsupportedOperationError("cuDNN engine does not implement inner product blueprint.")

    def fc_blueprint(
        self,
        src_desc: Any,
        dst_desc: TensorDescriptor,
        activ: str,
        alpha: Optional[float] = None,
        beta: float = 0.0,
        weights_type: Optional[str] = None,
    ) -> FullyConnectedBlueprint:
        dst_type = _check_data_type(dst_desc.data_type)
        ip = CudnnInnerProductBlueprint(
            self,
            src_desc,
            tuple(dst_desc.shape),
            dst_type,
            _check_data_type(weights_type or dst_type),
        )
        with let_release(ip):
            activ_bluep = self.activ_blueprint(ip.dst_desc, activ, alpha, beta)
            return FullyConnectedBlueprint(self, ip, activ_bluep)

    # ------------------------------------------------------------------
    # CostFactory
    # ------------------------------------------------------------------
    def quadratic_cost(self, prev_layer: Any, train_tz: CudnnTensor):
        return cost_layer(self, prev_layer, train_tz, "quadratic")

    def mean_absolute_cost(self, prev_layer: Any, train_tz: CudnnTensor):
        return cost_layer(self, prev_layer, train_tz, "mean-absolute")

    def sigmoid_crossentropy_cost(self, prev_layer: Any, train_tz: CudnnTensor):
        return cost_layer(self, prev_layer, train_tz, "sigmoid-crossentropy")

    # ------------------------------------------------------------------
    # DiamondFactoryProvider
    # ------------------------------------------------------------------
    def diamond_factory(self) -> "CudnnFactory":
        return self

    def native_diamond_factory(self) -> Any:
        if self._native is None:
            from ..dnnl import dnnl_factory

            self._native = dnnl_factory()
        return self._native

    def release(self) -> bool:
        for eng in self._engines.values():
            release(eng)
        self._engines.clear()
        if self._own_native:
            release(self._native)
            self._native = None
        release(self.cublas)
        release(self.hdl)
        if self.master:
            release(self.strm)
        logger.debug("Released cuDNN factory on %s", self.device)
        return True

    def __enter__(self) -> "CudnnFactory":
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()


def cudnn_factory(stream: Any = None, device: int = 0, native_fact: Any = None) -> CudnnFactory:
    """
    Create a cuDNN factory on CUDA device `device`.

    With no `stream` the factory creates and owns one. A supplied stream
    (`CudaStream` or raw address) stays owned by the caller.
    """
    rt = cudart_lib()
    set_device(rt, device)
    if stream is None:
        strm, master = stream_create(rt), True
    elif isinstance(stream, CudaStream):
        strm, master = stream, False
    else:
        strm, master = CudaStream(rt, int(stream), owned=False), False
    try:
        with let_release(cudnn.cudnn_handle(strm)) as hdl:
            with let_release(cublas_handle(strm.extract() or 0)) as blas:
                return CudnnFactory(strm, hdl, blas, device, master, native_fact)
    except BaseException:
        if master:
            strm.release()
        raise
