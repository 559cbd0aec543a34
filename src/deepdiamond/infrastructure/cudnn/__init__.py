"""
cuDNN backend (GPU).

`_cuda_runtime` and `_cublas` bind the parts of the CUDA runtime and cuBLAS
the backend needs, `_core` is the keyword-driven API over cuDNN, and the
factory builds device tensors and layers on top of them.
"""

from ._cuda_runtime import CudaStream, DeviceBuffer, cudart_lib, device_count
from ._factory import CudnnFactory, cudnn_factory
from ._impl import cudnn_lib
from ._tensor import CudnnTensor, CudnnTensorEngine

__all__ = [
    "CudaStream",
    "CudnnFactory",
    "CudnnTensor",
    "CudnnTensorEngine",
    "DeviceBuffer",
    "cudart_lib",
    "cudnn_factory",
    "cudnn_lib",
    "device_count",
]
