"""
ctypes bindings for the parts of the CUDA runtime the cuDNN backend needs.

Device pointers are plain integers (`uintptr_t` addresses) on the Python
side and are passed to the runtime as `c_void_p`. `DeviceBuffer` owns one
allocation; `CudaStream` owns one stream.

Every call returning `cudaError_t` goes through `_check`, which raises
`CudaError` on failure.
"""

from __future__ import annotations

import functools
import logging
from ctypes import POINTER, byref, c_int, c_size_t, c_void_p
from typing import Any, Optional

import numpy as np

from ...domain._errors import CudaError, DiamondError
from ...domain._resource import NativeHandle
from ..native import load_native
from ._constants import dec_cuda_status, enc_memcpy_kind

logger = logging.getLogger(__name__)

DevPtr = int


def _bind_cudart(lib: Any) -> None:
    if getattr(lib, "_deepdiamond_cudart_bound", False):
        return

    def sig(name: str, argtypes: list, restype: Any = c_int) -> None:
        fn = getattr(lib, name)
        fn.argtypes = argtypes
        fn.restype = restype

    sig("cudaGetDeviceCount", [POINTER(c_int)])
    sig("cudaSetDevice", [c_int])
    sig("cudaDeviceSynchronize", [])
    sig("cudaMalloc", [POINTER(c_void_p), c_size_t])
    sig("cudaFree", [c_void_p])
    sig("cudaMemcpy", [c_void_p, c_void_p, c_size_t, c_int])
    sig("cudaMemset", [c_void_p, c_int, c_size_t])
    sig("cudaStreamCreate", [POINTER(c_void_p)])
    sig("cudaStreamDestroy", [c_void_p])
    sig("cudaStreamSynchronize", [c_void_p])

    setattr(lib, "_deepdiamond_cudart_bound", True)


def cudart_lib(lib_path: Optional[str] = None) -> Any:
    """Load the CUDA runtime and declare the signatures used by this package."""
    lib = load_native("cudart", lib_path)
    _bind_cudart(lib)
    return lib


def _check(status: int, details: Any = None) -> None:
    if status != 0:
        raise CudaError(status, dec_cuda_status(status), details)


def _destroy(fn: Any, handle: int) -> None:
    _check(fn(c_void_p(handle)), "destroy")


# ================================ Handles ======================================


class CudaStream(NativeHandle):
    """A CUDA stream. Handle 0 is the default (legacy) stream and is never destroyed."""

    kind = "cuda_stream"

    def __init__(self, lib: Any, handle: int, owned: bool = True) -> None:
        destructor = (
            functools.partial(_destroy, lib.cudaStreamDestroy) if owned and handle else None
        )
        super().__init__(lib, handle, destructor)

    def synchronize(self) -> "CudaStream":
        _check(self.lib.cudaStreamSynchronize(c_void_p(self.checked() or None)))
        return self


class DeviceBuffer(NativeHandle):
    """
    One device allocation of `size` bytes.

    Attributes
    ----------
    size : int
        Capacity in bytes.
    """

    kind = "device_buffer"

    def __init__(self, lib: Any, handle: int, size: int, owned: bool = True) -> None:
        destructor = functools.partial(_destroy, lib.cudaFree) if owned else None
        super().__init__(lib, handle, destructor)
        self.size = int(size)

    @property
    def address(self) -> int:
        return self.checked()

    def __repr__(self) -> str:
        h = self.extract()
        state = "released" if h is None else f"{h:#x}"
        return f"<DeviceBuffer {state} size={self.size}>"


# ================================ Device =======================================


def device_count(lib: Any) -> int:
    n = c_int()
    status = lib.cudaGetDeviceCount(byref(n))
    if status != 0:
        # No driver or no device: there is nothing to count.
        logger.debug("cudaGetDeviceCount failed with %s", dec_cuda_status(status))
        return 0
    return int(n.value)


def set_device(lib: Any, device: int) -> None:
    _check(lib.cudaSetDevice(int(device)), {"device": device})


def synchronize(lib: Any, stream: Optional[CudaStream] = None) -> None:
    if stream is None:
        _check(lib.cudaDeviceSynchronize())
    else:
        stream.synchronize()


# ================================ Memory =======================================


def malloc(lib: Any, nbytes: int) -> DeviceBuffer:
    """Allocate `nbytes` (at least one byte) of device memory."""
    nbytes = max(int(nbytes), 1)
    p = c_void_p()
    _check(lib.cudaMalloc(byref(p), c_size_t(nbytes)), {"size": nbytes})
    return DeviceBuffer(lib, int(p.value or 0), nbytes)


def _address(buf: Any) -> int:
    return buf.address if isinstance(buf, DeviceBuffer) else int(buf)


def _check_range(buf: Any, offset: int, nbytes: int) -> None:
    if isinstance(buf, DeviceBuffer) and (offset < 0 or offset + nbytes > buf.size):
        raise DiamondError(
            "The requested region is outside the device buffer.",
            {"offset": offset, "nbytes": nbytes, "capacity": buf.size},
        )


def memcpy_htod(lib: Any, dst: Any, src_host: np.ndarray, offset: int = 0) -> None:
    """Copy the whole contiguous host array `src_host` to `dst` at byte `offset`."""
    if not isinstance(src_host, np.ndarray):
        raise TypeError("src_host must be a numpy.ndarray")
    src = np.ascontiguousarray(src_host)
    _check_range(dst, offset, src.nbytes)
    _check(
        lib.cudaMemcpy(
            c_void_p(_address(dst) + offset),
            c_void_p(src.ctypes.data),
            c_size_t(src.nbytes),
            enc_memcpy_kind("host-to-device"),
        )
    )


def memcpy_dtoh(lib: Any, dst_host: np.ndarray, src: Any, offset: int = 0) -> np.ndarray:
    """Fill the contiguous host array `dst_host` from `src` at byte `offset`."""
    if not isinstance(dst_host, np.ndarray) or not dst_host.flags.c_contiguous:
        raise TypeError("dst_host must be a C-contiguous numpy.ndarray")
    _check_range(src, offset, dst_host.nbytes)
    _check(
        lib.cudaMemcpy(
            c_void_p(dst_host.ctypes.data),
            c_void_p(_address(src) + offset),
            c_size_t(dst_host.nbytes),
            enc_memcpy_kind("device-to-host"),
        )
    )
    return dst_host


def memcpy_dtod(
    lib: Any, dst: Any, src: Any, nbytes: int, dst_offset: int = 0, src_offset: int = 0
) -> None:
    _check_range(dst, dst_offset, nbytes)
    _check_range(src, src_offset, nbytes)
    _check(
        lib.cudaMemcpy(
            c_void_p(_address(dst) + dst_offset),
            c_void_p(_address(src) + src_offset),
            c_size_t(int(nbytes)),
            enc_memcpy_kind("device-to-device"),
        )
    )


def memset(lib: Any, buf: Any, value: int = 0, nbytes: Optional[int] = None, offset: int = 0) -> None:
    """Set `nbytes` bytes (default: the rest of the buffer) to `value`."""
    if nbytes is None:
        if not isinstance(buf, DeviceBuffer):
            raise ValueError("nbytes is required for raw device pointers")
        nbytes = buf.size - offset
    _check_range(buf, offset, nbytes)
    _check(lib.cudaMemset(c_void_p(_address(buf) + offset), int(value), c_size_t(int(nbytes))))


# ================================ Streams ======================================


def stream_create(lib: Any) -> CudaStream:
    s = c_void_p()
    _check(lib.cudaStreamCreate(byref(s)))
    return CudaStream(lib, int(s.value or 0))
