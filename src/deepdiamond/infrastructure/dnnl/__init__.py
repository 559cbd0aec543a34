"""
DNNL (oneDNN) backend.

`_core` is the keyword-driven functional API over the C library; the
factory builds tensors and layers on top of it.
"""

from ._factory import DnnlFactory, dnnl_factory
from ._impl import Engine, Memory, Primitive, PrimitiveDesc, Stream, dnnl_lib
from ._tensor import DnnlTensor, DnnlTensorEngine

__all__ = [
    "DnnlFactory",
    "DnnlTensor",
    "DnnlTensorEngine",
    "Engine",
    "Memory",
    "Primitive",
    "PrimitiveDesc",
    "Stream",
    "dnnl_factory",
    "dnnl_lib",
]
