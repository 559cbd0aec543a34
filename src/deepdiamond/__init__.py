"""
deepdiamond: tensor and neural-network building blocks over DNNL (CPU) and
cuDNN (GPU), bound with ctypes.

>>> from deepdiamond import diamond_factory
>>> with diamond_factory("cpu") as fact:
...     x = fact.create_tensor(fact.create_tensor_desc([2, 3], "float", "nc"))
"""

from ._api import diamond_factory
from .domain import (
    DeviceMismatchError,
    DeviceNotSupportedError,
    DiamondError,
    NativeError,
    TensorDesc,
    UnsupportedDataTypeError,
    UnsupportedOperationError,
    let_release,
    release,
    tensor_desc,
    with_release,
)

__version__ = "0.1.0"

__all__ = [
    "DeviceMismatchError",
    "DeviceNotSupportedError",
    "DiamondError",
    "NativeError",
    "TensorDesc",
    "UnsupportedDataTypeError",
    "UnsupportedOperationError",
    "diamond_factory",
    "let_release",
    "release",
    "tensor_desc",
    "with_release",
]
