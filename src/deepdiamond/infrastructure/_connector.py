"""
Connectors: move a tensor into a different layout only when needed.

A connector is a transfer with `input`, `output` and `__call__`. When the
source already matches the requested descriptor the connector is the
identity and calling it does nothing; otherwise it owns the tensor it
created plus a transformer from the factory.

Two directions exist:

- `connector(fact, src_tz, dst_desc)`: the source tensor exists, the output
  tensor is created to match `dst_desc`.
- `connector_into(fact, src_desc, dst_tz)`: the destination tensor exists,
  the input tensor is created to match `src_desc`.
"""

from __future__ import annotations

from typing import Any

from ..domain._errors import DeviceMismatchError
from ..domain._layout import ANY
from ..domain._resource import let_release, release
from ..domain._tensor_desc import TensorDescriptor, data_type_info, desc_of, strides_of


def matches(tz: TensorDescriptor, desc: TensorDescriptor) -> bool:
    """True if tensor `tz` already has the shape, data type and layout of `desc`."""
    d = desc_of(desc)
    if tuple(tz.shape) != d.shape:
        return False
    if data_type_info(tz.data_type).name != d.data_type:
        return False
    if isinstance(d.layout, str) and d.layout == ANY:
        return True
    return tuple(strides_of(tz)) == tuple(strides_of(d))


class IdentityConnector:
    def __init__(self, tz: Any) -> None:
        self._tz = tz

    @property
    def input(self) -> Any:
        return self._tz

    @property
    def output(self) -> Any:
        return self._tz

    def __call__(self) -> Any:
        return self._tz

    def release(self) -> bool:
        return True


class TransformingConnector:
    """Runs `transformer` on each call; releases the tensor it owns."""

    def __init__(self, transformer: Any, owned: Any) -> None:
        self._transformer = transformer
        self._owned = owned

    @property
    def input(self) -> Any:
        return self._transformer.input

    @property
    def output(self) -> Any:
        return self._transformer.output

    def __call__(self) -> Any:
        return self._transformer()

    def release(self) -> bool:
        release(self._transformer)
        release(self._owned)
        return True


def _check_device(fact: Any, tz: Any) -> None:
    dev = getattr(fact, "device", None)
    if dev is not None and tz.device != dev:
        raise DeviceMismatchError(str(tz.device), str(dev))


def connector(fact: Any, src_tz: Any, dst_desc: TensorDescriptor):
    """Connect existing `src_tz` to a tensor described by `dst_desc`."""
    _check_device(fact, src_tz)
    if matches(src_tz, dst_desc):
        return IdentityConnector(src_tz)
    with let_release(fact.create_tensor(dst_desc, False)) as dst_tz:
        return TransformingConnector(fact.create_transformer(src_tz, dst_tz), dst_tz)


def connector_into(fact: Any, src_desc: TensorDescriptor, dst_tz: Any):
    """Connect a tensor described by `src_desc` to existing `dst_tz`."""
    _check_device(fact, dst_tz)
    if matches(dst_tz, src_desc):
        return IdentityConnector(dst_tz)
    with let_release(fact.create_tensor(src_desc, False)) as src_tz:
        return TransformingConnector(fact.create_transformer(src_tz, dst_tz), src_tz)
