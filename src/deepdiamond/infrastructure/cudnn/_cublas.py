"""
cuBLAS bindings used by the GPU fully-connected layer.

cuBLAS is column-major. Row-major matrices are handled by the usual
identity: a row-major `M` (rows x cols, leading dimension cols) is the
column-major `M^T`. The helpers `fc_forward`, `fc_backward_weights` and
`fc_backward_data` encode the three products of a fully-connected layer in
those terms.
"""

from __future__ import annotations

import functools
from ctypes import POINTER, byref, c_double, c_float, c_int, c_void_p
from typing import Any, Optional

from ...domain._errors import CublasError, UnsupportedDataTypeError
from ...domain._resource import NativeHandle
from ..native import load_native
from ._constants import dec_cublas_status, enc_cublas_operation


def _bind_cublas(lib: Any) -> None:
    if getattr(lib, "_deepdiamond_cublas_bound", False):
        return

    def sig(name: str, argtypes: list, restype: Any = c_int) -> None:
        fn = getattr(lib, name)
        fn.argtypes = argtypes
        fn.restype = restype

    sig("cublasCreate_v2", [POINTER(c_void_p)])
    sig("cublasDestroy_v2", [c_void_p])
    sig("cublasSetStream_v2", [c_void_p, c_void_p])
    gemm_args = [
        c_void_p,
        c_int,
        c_int,
        c_int,
        c_int,
        c_int,
        c_void_p,
        c_void_p,
        c_int,
        c_void_p,
        c_int,
        c_void_p,
        c_void_p,
        c_int,
    ]
    sig("cublasSgemm_v2", gemm_args)
    sig("cublasDgemm_v2", gemm_args)

    setattr(lib, "_deepdiamond_cublas_bound", True)


def cublas_lib(lib_path: Optional[str] = None) -> Any:
    lib = load_native("cublas", lib_path)
    _bind_cublas(lib)
    return lib


def _check(status: int, details: Any = None) -> None:
    if status != 0:
        raise CublasError(status, dec_cublas_status(status), details)


def _destroy(fn: Any, handle: int) -> None:
    _check(fn(c_void_p(handle)), "destroy")


class CublasHandle(NativeHandle):
    kind = "cublas_handle"

    def __init__(self, lib: Any, handle: int) -> None:
        super().__init__(lib, handle, functools.partial(_destroy, lib.cublasDestroy_v2))


def cublas_handle(stream: int = 0, lib: Any = None) -> CublasHandle:
    """Create a cuBLAS handle bound to the raw CUDA `stream` (0 is the default stream)."""
    lib = cublas_lib() if lib is None else lib
    h = c_void_p()
    _check(lib.cublasCreate_v2(byref(h)))
    hdl = CublasHandle(lib, int(h.value or 0))
    try:
        _check(lib.cublasSetStream_v2(c_void_p(hdl.checked()), c_void_p(stream or None)))
    except BaseException:
        hdl.release()
        raise
    return hdl


def gemm(
    hdl: CublasHandle,
    data_type: str,
    transa: str,
    transb: str,
    m: int,
    n: int,
    k: int,
    alpha: float,
    a: int,
    lda: int,
    b: int,
    ldb: int,
    beta: float,
    c: int,
    ldc: int,
) -> CublasHandle:
    """
    Column-major C = alpha * op(A) * op(B) + beta * C on device addresses.

    `transa` / `transb` are "n" or "t". Only "float" and "double" exist.
    """
    lib = hdl.lib
    if data_type == "float":
        fn, scalar = lib.cublasSgemm_v2, c_float
    elif data_type == "double":
        fn, scalar = lib.cublasDgemm_v2, c_double
    else:
        raise UnsupportedDataTypeError(data_type, "cuBLAS")
    _check(
        fn(
            c_void_p(hdl.checked()),
            enc_cublas_operation(transa),
            enc_cublas_operation(transb),
            int(m),
            int(n),
            int(k),
            byref(scalar(alpha)),
            c_void_p(a),
            int(lda),
            c_void_p(b),
            int(ldb),
            byref(scalar(beta)),
            c_void_p(c),
            int(ldc),
        ),
        {"m": m, "n": n, "k": k},
    )
    return hdl


def fc_forward(hdl, data_type, batch, n_in, n_out, w, x, z, beta=0.0):
    """Row-major z[batch, out] = x[batch, in] * w[out, in]^T + beta * z."""
    return gemm(hdl, data_type, "t", "n", n_out, batch, n_in, 1.0, w, n_in, x, n_in, beta, z, n_out)


def fc_backward_weights(hdl, data_type, batch, n_in, n_out, x, dz, dw, beta=0.0):
    """Row-major dw[out, in] = dz[batch, out]^T * x[batch, in] + beta * dw."""
    return gemm(hdl, data_type, "n", "t", n_in, n_out, batch, 1.0, x, n_in, dz, n_out, beta, dw, n_in)


def fc_backward_data(hdl, data_type, batch, n_in, n_out, w, dz, dx, beta=0.0):
    """Row-major dx[batch, in] = dz[batch, out] * w[out, in] + beta * dx."""
    return gemm(hdl, data_type, "n", "n", n_in, batch, n_out, 1.0, w, n_in, dz, n_out, beta, dx, n_in)
