"""
DNNL backend factory.

`DnnlFactory` owns (or borrows) a DNNL engine and stream and creates
everything else a network needs on the CPU: tensors, data transfers, tensor
engines, layer blueprints and cost layers. It implements the `TensorFactory`,
`DnnFactory`, `CostFactory` and `DiamondFactoryProvider` protocols.

Every primitive is executed synchronously: `execute` queues the primitive
and waits for the stream.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ...domain._layout import ANY, default_tag
from ...domain._resource import let_release, release
from ...domain._tensor_desc import Layout, TensorDescriptor, data_type_info, tensor_desc
from .._cost import cost_layer
from ..fully_connected import FullyConnectedBlueprint, default_alpha
from . import _core as dnnl
from ._constants import enc_data_type
from ._fully_connected import DnnlActivationBlueprint, DnnlInnerProductBlueprint, DnnlSumBlueprint
from ._impl import Engine, Stream, dnnl_lib
from ._structs import dnnl_memory_desc_t
from ._tensor import (
    DnnlBatcher,
    DnnlShuffler,
    DnnlTensor,
    DnnlTensorEngine,
    DnnlTransformer,
    dnnl_tensor,
)

logger = logging.getLogger(__name__)


class DnnlFactory:
    """
    Factory of DNNL tensors, operations and layers.

    Parameters
    ----------
    eng : Engine
        The engine all memory and primitives are created on.
    strm : Stream
        The stream primitives are executed on.
    master : bool, optional
        If True, the factory releases `eng` and `strm` when it is released.
    own_stream : bool | None, optional
        Whether the factory releases `strm`. Defaults to `master`.
    """

    device = "cpu"

    def __init__(
        self,
        eng: Engine,
        strm: Stream,
        master: bool = True,
        own_stream: Optional[bool] = None,
    ) -> None:
        self.eng = eng
        self.strm = strm
        self.master = bool(master)
        self._own_stream = self.master if own_stream is None else bool(own_stream)
        self._engines: dict[str, DnnlTensorEngine] = {}
        logger.debug("Created DNNL factory (master=%s)", self.master)

    @property
    def lib(self) -> Any:
        return self.eng.lib

    def execute(self, prim: Any, args: Any) -> None:
        dnnl.execute(self.strm, prim, args)
        dnnl.wait(self.strm)

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

    def memory_desc(self, desc: Any) -> dnnl_memory_desc_t:
        """Translate a tensor descriptor (or tensor) into a DNNL memory descriptor."""
        if isinstance(desc, dnnl_memory_desc_t):
            return desc
        if isinstance(desc, DnnlTensor):
            return desc.md
        shape = [int(d) for d in desc.shape]
        layout = desc.layout
        if isinstance(layout, str) and layout == ANY:
            layout = default_tag(len(shape))
        return dnnl.memory_desc(shape, desc.data_type, layout, lib=self.lib)

    def create_tensor(self, desc: Any, init: bool = True) -> DnnlTensor:
        return dnnl_tensor(self, self.memory_desc(desc), init)

    def create_transformer(self, in_tz: DnnlTensor, out_tz: DnnlTensor) -> DnnlTransformer:
        return DnnlTransformer(self, in_tz, out_tz)

    def create_shuffler(self, src_tz: DnnlTensor, dst_tz: DnnlTensor) -> DnnlShuffler:
        return DnnlShuffler(self, src_tz, dst_tz)

    def create_batcher(self, src_tz: DnnlTensor, dst_tz: DnnlTensor, mb_size: int) -> DnnlBatcher:
        return DnnlBatcher(self, src_tz, dst_tz, mb_size)

    def create_sum(self, scale_src: float, scale_dst: Optional[float] = None) -> DnnlSumBlueprint:
        return DnnlSumBlueprint(self, scale_src, 0.0 if scale_dst is None else scale_dst)

    def tensor_engine(self, data_type: str) -> DnnlTensorEngine:
        dt = data_type_info(data_type).name
        enc_data_type(dt)
        eng = self._engines.get(dt)
        if eng is None:
            eng = self._engines[dt] = DnnlTensorEngine(self, dt)
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
    ) -> DnnlActivationBlueprint:
        alpha = default_alpha(activ) if alpha is None else alpha
        return DnnlActivationBlueprint(self, self.memory_desc(src_desc), activ, alpha, beta)

    def inner_product_blueprint(
        self,
        src_desc: Any,
        dst_desc: TensorDescriptor,
        weights_type: Optional[str] = None,
    ) -> DnnlInnerProductBlueprint:
        dst_type = data_type_info(dst_desc.data_type).name
        return DnnlInnerProductBlueprint(
            self,
            self.memory_desc(src_desc),
            tuple(dst_desc.shape),
            dst_type,
            weights_type or dst_type,
        )

    def fc_blueprint(
        self,
        src_desc: Any,
        dst_desc: TensorDescriptor,
        activ: str,
        alpha: Optional[float] = None,
        beta: float = 0.0,
        weights_type: Optional[str] = None,
    ) -> FullyConnectedBlueprint:
        with let_release(self.inner_product_blueprint(src_desc, dst_desc, weights_type)) as ip:
            activ_bluep = self.activ_blueprint(ip.dst_md, activ, alpha, beta)
            return FullyConnectedBlueprint(self, ip, activ_bluep)

    # ------------------------------------------------------------------
    # CostFactory
    # ------------------------------------------------------------------
    def quadratic_cost(self, prev_layer: Any, train_tz: DnnlTensor):
        return cost_layer(self, prev_layer, train_tz, "quadratic")

    def mean_absolute_cost(self, prev_layer: Any, train_tz: DnnlTensor):
        return cost_layer(self, prev_layer, train_tz, "mean-absolute")

    def sigmoid_crossentropy_cost(self, prev_layer: Any, train_tz: DnnlTensor):
        return cost_layer(self, prev_layer, train_tz, "sigmoid-crossentropy")

    # ------------------------------------------------------------------
    # DiamondFactoryProvider
    # ------------------------------------------------------------------
    def diamond_factory(self) -> "DnnlFactory":
        return self

    def native_diamond_factory(self) -> "DnnlFactory":
        return self

    def release(self) -> bool:
        self._engines.clear()
        if self._own_stream:
            release(self.strm)
        if self.master:
            release(self.eng)
        logger.debug("Released DNNL factory")
        return True

    def __enter__(self) -> "DnnlFactory":
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()


def dnnl_factory(
    eng: Optional[Engine] = None,
    strm: Optional[Stream] = None,
    lib_path: Optional[str] = None,
) -> DnnlFactory:
    """
    Create a DNNL factory.

    With no arguments the factory creates and owns a CPU engine and an
    in-order stream. A supplied engine or stream stays owned by the caller.
    """
    if eng is None:
        with let_release(dnnl.engine(0, "cpu", lib=dnnl_lib(lib_path))) as e:
            with let_release(dnnl.stream(e)) as s:
                return DnnlFactory(e, s, True)
    if strm is None:
        with let_release(dnnl.stream(eng)) as s:
            return DnnlFactory(eng, s, False, own_stream=True)
    return DnnlFactory(eng, strm, False)
