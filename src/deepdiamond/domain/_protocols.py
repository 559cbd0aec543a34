"""
Structural contracts shared by both backends.

The DNNL and cuDNN backends never import each other's classes; they meet
at the protocols below. Factories create tensors, tensor operations and
layer blueprints; blueprints create layers; layers move data between
tensors they expose through `Transfer` / `DiffTransfer`.

Naming follows the flow of a layer:

- `input` / `output`: tensors read and written by the forward pass.
- `diff_input` / `diff_output`: tensors read and written by the backward
  pass (`diff_input` receives the gradient from the next layer,
  `diff_output` holds the gradient passed to the previous layer).
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from ._tensor_desc import Layout, TensorDescriptor


@runtime_checkable
class Transfer(Protocol):
    @property
    def input(self) -> Any: ...

    @property
    def output(self) -> Any: ...


@runtime_checkable
class DiffTransfer(Protocol):
    @property
    def diff_input(self) -> Any: ...

    @property
    def diff_output(self) -> Any: ...


@runtime_checkable
class Backprop(Protocol):
    def forward(self) -> Any: ...

    def backward(self) -> Any: ...


@runtime_checkable
class Parameters(Protocol):
    @property
    def weights(self) -> Any: ...

    @property
    def bias(self) -> Any: ...


@runtime_checkable
class DiffParameters(Protocol):
    @property
    def diff_weights(self) -> Any: ...

    @property
    def diff_bias(self) -> Any: ...


@runtime_checkable
class TensorEngine(Protocol):
    """
    BLAS-like operations over whole tensors of one data type.

    All mutating operations return their destination tensor.
    """

    def copy(self, x: Any, y: Any) -> Any: ...

    def axpy(self, alpha: float, x: Any, y: Any) -> Any: ...

    def axpby(self, alpha: float, x: Any, beta: float, y: Any) -> Any: ...

    def scal(self, alpha: float, x: Any) -> Any: ...

    def set_all(self, value: float, x: Any) -> Any: ...

    def sum(self, x: Any) -> float: ...

    def asum(self, x: Any) -> float: ...

    def nrm2(self, x: Any) -> float: ...

    def amax(self, x: Any) -> float: ...

    def equals(self, x: Any, y: Any) -> bool: ...


@runtime_checkable
class TensorFactory(Protocol):
    def create_tensor_desc(
        self,
        shape: Any,
        data_type: Optional[str] = None,
        layout: Optional[Layout] = None,
    ) -> Any: ...

    def create_tensor(self, desc: TensorDescriptor, init: bool = True) -> Any: ...

    def create_transformer(self, in_tz: Any, out_tz: Any) -> Any: ...

    def create_shuffler(self, src_tz: Any, dst_tz: Any) -> Any: ...

    def create_batcher(self, src_tz: Any, dst_tz: Any, mb_size: int) -> Any: ...

    def create_sum(self, scale_src: float, scale_dst: Optional[float] = None) -> Any: ...

    def tensor_engine(self, data_type: str) -> TensorEngine: ...


@runtime_checkable
class DnnFactory(Protocol):
    def activ_blueprint(
        self, src_desc: TensorDescriptor, activ: str, alpha: float = ..., beta: float = ...
    ) -> Any: ...

    def inner_product_blueprint(
        self,
        src_desc: TensorDescriptor,
        dst_desc: TensorDescriptor,
        weights_type: Optional[str] = None,
    ) -> Any: ...

    def fc_blueprint(
        self,
        src_desc: TensorDescriptor,
        dst_desc: TensorDescriptor,
        activ: str,
        alpha: float = ...,
        beta: float = ...,
        weights_type: Optional[str] = None,
    ) -> Any: ...


@runtime_checkable
class CostFactory(Protocol):
    def quadratic_cost(self, prev_layer: Any, train_tz: Any) -> Any: ...

    def mean_absolute_cost(self, prev_layer: Any, train_tz: Any) -> Any: ...

    def sigmoid_crossentropy_cost(self, prev_layer: Any, train_tz: Any) -> Any: ...


@runtime_checkable
class DiamondFactoryProvider(Protocol):
    def diamond_factory(self) -> Any: ...

    def native_diamond_factory(self) -> Any: ...
