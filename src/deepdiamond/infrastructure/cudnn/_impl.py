"""
Low-level ctypes bindings for the cuDNN C API.

Functions here take the loaded library first and raw values after it; see
`deepdiamond.infrastructure.cudnn._core` for the keyword-driven API. Every
call returning `cudnnStatus_t` is checked by `_check`, which raises
`CudnnError`.

cuDNN tensor descriptors need at least four dimensions for most
operations, so `CudnnTensorDesc` keeps the logical shape and strides on the
Python side and pads the native descriptor with trailing unit dimensions.
"""

from __future__ import annotations

import functools
from ctypes import POINTER, byref, c_double, c_float, c_int, c_size_t, c_void_p
from typing import Any, Optional, Sequence

from ...domain._errors import CudnnError
from ...domain._resource import NativeHandle
from ..native import load_native
from ._constants import dec_data_type, dec_status

MIN_NATIVE_DIMS = 4
MAX_DIMS = 8


def _bind_cudnn(lib: Any) -> None:
    if getattr(lib, "_deepdiamond_cudnn_bound", False):
        return

    def sig(name: str, argtypes: list, restype: Any = c_int) -> None:
        fn = getattr(lib, name)
        fn.argtypes = argtypes
        fn.restype = restype

    # handle
    sig("cudnnCreate", [POINTER(c_void_p)])
    sig("cudnnDestroy", [c_void_p])
    sig("cudnnSetStream", [c_void_p, c_void_p])
    sig("cudnnGetStream", [c_void_p, POINTER(c_void_p)])

    # tensor descriptor
    sig("cudnnCreateTensorDescriptor", [POINTER(c_void_p)])
    sig("cudnnDestroyTensorDescriptor", [c_void_p])
    sig("cudnnSetTensorNdDescriptor", [c_void_p, c_int, c_int, POINTER(c_int), POINTER(c_int)])
    sig("cudnnGetTensorSizeInBytes", [c_void_p, POINTER(c_size_t)])

    # activation
    sig("cudnnCreateActivationDescriptor", [POINTER(c_void_p)])
    sig("cudnnDestroyActivationDescriptor", [c_void_p])
    sig("cudnnSetActivationDescriptor", [c_void_p, c_int, c_int, c_double])
    sig(
        "cudnnGetActivationDescriptor",
        [c_void_p, POINTER(c_int), POINTER(c_int), POINTER(c_double)],
    )
    sig(
        "cudnnActivationForward",
        [c_void_p, c_void_p, c_void_p, c_void_p, c_void_p, c_void_p, c_void_p, c_void_p],
    )
    sig(
        "cudnnActivationBackward",
        [c_void_p] * 12,
    )

    # reduction
    sig("cudnnCreateReduceTensorDescriptor", [POINTER(c_void_p)])
    sig("cudnnDestroyReduceTensorDescriptor", [c_void_p])
    sig("cudnnSetReduceTensorDescriptor", [c_void_p, c_int, c_int, c_int, c_int, c_int])
    sig("cudnnGetReductionIndicesSize", [c_void_p, c_void_p, c_void_p, c_void_p, POINTER(c_size_t)])
    sig(
        "cudnnGetReductionWorkspaceSize",
        [c_void_p, c_void_p, c_void_p, c_void_p, POINTER(c_size_t)],
    )
    sig(
        "cudnnReduceTensor",
        [
            c_void_p,
            c_void_p,
            c_void_p,
            c_size_t,
            c_void_p,
            c_size_t,
            c_void_p,
            c_void_p,
            c_void_p,
            c_void_p,
            c_void_p,
            c_void_p,
        ],
    )

    # tensor ops
    sig("cudnnTransformTensor", [c_void_p] * 7)
    sig("cudnnSetTensor", [c_void_p] * 4)
    sig("cudnnScaleTensor", [c_void_p] * 4)
    sig("cudnnAddTensor", [c_void_p] * 7)

    setattr(lib, "_deepdiamond_cudnn_bound", True)


def cudnn_lib(lib_path: Optional[str] = None) -> Any:
    """Load cuDNN and declare the signatures used by this package."""
    lib = load_native("cudnn", lib_path)
    _bind_cudnn(lib)
    return lib


def _check(status: int, details: Any = None) -> None:
    if status != 0:
        raise CudnnError(status, dec_status(status), details)


def _destroy(fn: Any, handle: int) -> None:
    _check(fn(c_void_p(handle)), "destroy")


def _out_handle(ref: c_void_p) -> int:
    return int(ref.value or 0)


def _ptr(x: Any) -> c_void_p:
    if isinstance(x, NativeHandle):
        return c_void_p(x.checked())
    return c_void_p(int(x) if x else None)


def scaling_factor(data_type: str, value: float):
    """Host scalar passed by pointer: `double` for double tensors, `float` otherwise."""
    return c_double(value) if data_type == "double" else c_float(value)


# ================================ Handles ======================================


class CudnnHandle(NativeHandle):
    kind = "cudnn_handle"

    def __init__(self, lib: Any, handle: int) -> None:
        super().__init__(lib, handle, functools.partial(_destroy, lib.cudnnDestroy))


class CudnnTensorDesc(NativeHandle):
    """
    A cuDNN tensor descriptor plus the logical view it was created from.

    Satisfies the `TensorDescriptor` protocol: `layout` is the tuple of
    element strides.
    """

    kind = "tensor_descriptor"

    def __init__(
        self,
        lib: Any,
        handle: int,
        shape: Sequence[int],
        data_type: str,
        strides: Sequence[int],
        size: int,
    ) -> None:
        super().__init__(
            lib, handle, functools.partial(_destroy, lib.cudnnDestroyTensorDescriptor)
        )
        self.shape = tuple(int(d) for d in shape)
        self.data_type = data_type
        self.strides = tuple(int(s) for s in strides)
        self.size = int(size)

    @property
    def layout(self) -> tuple[int, ...]:
        return self.strides

    @property
    def ndims(self) -> int:
        return len(self.shape)

    def __repr__(self) -> str:
        return (
            f"CudnnTensorDesc(shape={self.shape}, data_type={self.data_type!r}, "
            f"strides={self.strides})"
        )


class ActivationDesc(NativeHandle):
    kind = "activation_descriptor"

    def __init__(self, lib: Any, handle: int) -> None:
        super().__init__(
            lib, handle, functools.partial(_destroy, lib.cudnnDestroyActivationDescriptor)
        )


class ReduceTensorDesc(NativeHandle):
    kind = "reduce_tensor_descriptor"

    def __init__(self, lib: Any, handle: int) -> None:
        super().__init__(
            lib, handle, functools.partial(_destroy, lib.cudnnDestroyReduceTensorDescriptor)
        )


# ================================ Handle ========================================


def create_handle(lib: Any, stream: int) -> CudnnHandle:
    h = c_void_p()
    _check(lib.cudnnCreate(byref(h)))
    hdl = CudnnHandle(lib, _out_handle(h))
    try:
        _check(lib.cudnnSetStream(c_void_p(hdl.checked()), c_void_p(stream or None)))
    except BaseException:
        hdl.release()
        raise
    return hdl


def get_stream(lib: Any, hdl: CudnnHandle) -> int:
    s = c_void_p()
    _check(lib.cudnnGetStream(_ptr(hdl), byref(s)))
    return _out_handle(s)


# ================================ Tensor descriptors ============================


def _padded(shape: Sequence[int], strides: Sequence[int]) -> tuple[list[int], list[int]]:
    dims = [int(d) for d in shape]
    ss = [int(s) for s in strides]
    while len(dims) < MIN_NATIVE_DIMS:
        dims.append(1)
        ss.append(1)
    return dims, ss


def tensor_desc_create(
    lib: Any, shape: Sequence[int], data_type: int, strides: Sequence[int]
) -> CudnnTensorDesc:
    if not 0 < len(shape) <= MAX_DIMS or len(shape) != len(strides):
        raise ValueError(f"Invalid tensor shape {tuple(shape)} with strides {tuple(strides)}")
    td = c_void_p()
    _check(lib.cudnnCreateTensorDescriptor(byref(td)))
    handle = _out_handle(td)
    try:
        dims, ss = _padded(shape, strides)
        n = len(dims)
        _check(
            lib.cudnnSetTensorNdDescriptor(
                c_void_p(handle), int(data_type), n, (c_int * n)(*dims), (c_int * n)(*ss)
            ),
            {"shape": list(shape), "strides": list(strides)},
        )
        size = c_size_t()
        _check(lib.cudnnGetTensorSizeInBytes(c_void_p(handle), byref(size)))
    except BaseException:
        _destroy(lib.cudnnDestroyTensorDescriptor, handle)
        raise
    return CudnnTensorDesc(lib, handle, shape, dec_data_type(data_type), strides, size.value)


# ================================ Activation ===================================


def activation_desc_create(lib: Any, mode: int, nan_opt: int, coef: float) -> ActivationDesc:
    ad = c_void_p()
    _check(lib.cudnnCreateActivationDescriptor(byref(ad)))
    res = ActivationDesc(lib, _out_handle(ad))
    try:
        _check(lib.cudnnSetActivationDescriptor(_ptr(res), int(mode), int(nan_opt), c_double(coef)))
    except BaseException:
        res.release()
        raise
    return res


def activation_desc_query(lib: Any, ad: ActivationDesc) -> tuple[int, int, float]:
    mode, nan_opt, coef = c_int(), c_int(), c_double()
    _check(lib.cudnnGetActivationDescriptor(_ptr(ad), byref(mode), byref(nan_opt), byref(coef)))
    return int(mode.value), int(nan_opt.value), float(coef.value)


def activation_forward(
    lib: Any, hdl: Any, ad: Any, alpha: Any, desc_x: Any, x: int, beta: Any, desc_y: Any, y: int
) -> None:
    _check(
        lib.cudnnActivationForward(
            _ptr(hdl), _ptr(ad), byref(alpha), _ptr(desc_x), _ptr(x), byref(beta), _ptr(desc_y), _ptr(y)
        )
    )


def activation_backward(
    lib: Any,
    hdl: Any,
    ad: Any,
    alpha: Any,
    desc_y: Any,
    y: int,
    desc_dy: Any,
    dy: int,
    desc_x: Any,
    x: int,
    beta: Any,
    desc_dx: Any,
    dx: int,
) -> None:
    _check(
        lib.cudnnActivationBackward(
            _ptr(hdl),
            _ptr(ad),
            byref(alpha),
            _ptr(desc_y),
            _ptr(y),
            _ptr(desc_dy),
            _ptr(dy),
            _ptr(desc_x),
            _ptr(x),
            byref(beta),
            _ptr(desc_dx),
            _ptr(dx),
        )
    )


# ================================ Reduction ====================================


def reduce_desc_create(
    lib: Any, op: int, comp_type: int, nan_opt: int, indices: int, indices_type: int
) -> ReduceTensorDesc:
    rd = c_void_p()
    _check(lib.cudnnCreateReduceTensorDescriptor(byref(rd)))
    res = ReduceTensorDesc(lib, _out_handle(rd))
    try:
        _check(
            lib.cudnnSetReduceTensorDescriptor(
                _ptr(res), int(op), int(comp_type), int(nan_opt), int(indices), int(indices_type)
            )
        )
    except BaseException:
        res.release()
        raise
    return res


def reduction_sizes(lib: Any, hdl: Any, rd: Any, desc_x: Any, desc_y: Any) -> tuple[int, int]:
    """Return (indices bytes, workspace bytes) needed to reduce `desc_x` into `desc_y`."""
    isize, wsize = c_size_t(), c_size_t()
    _check(lib.cudnnGetReductionIndicesSize(_ptr(hdl), _ptr(rd), _ptr(desc_x), _ptr(desc_y), byref(isize)))
    _check(lib.cudnnGetReductionWorkspaceSize(_ptr(hdl), _ptr(rd), _ptr(desc_x), _ptr(desc_y), byref(wsize)))
    return int(isize.value), int(wsize.value)


def reduce_tensor(
    lib: Any,
    hdl: Any,
    rd: Any,
    indices: int,
    indices_size: int,
    workspace: int,
    workspace_size: int,
    alpha: Any,
    desc_x: Any,
    x: int,
    beta: Any,
    desc_y: Any,
    y: int,
) -> None:
    _check(
        lib.cudnnReduceTensor(
            _ptr(hdl),
            _ptr(rd),
            _ptr(indices),
            c_size_t(indices_size),
            _ptr(workspace),
            c_size_t(workspace_size),
            byref(alpha),
            _ptr(desc_x),
            _ptr(x),
            byref(beta),
            _ptr(desc_y),
            _ptr(y),
        )
    )


# ================================ Tensor ops ===================================


def transform_tensor(
    lib: Any, hdl: Any, alpha: Any, desc_x: Any, x: int, beta: Any, desc_y: Any, y: int
) -> None:
    _check(
        lib.cudnnTransformTensor(
            _ptr(hdl), byref(alpha), _ptr(desc_x), _ptr(x), byref(beta), _ptr(desc_y), _ptr(y)
        )
    )


def set_tensor(lib: Any, hdl: Any, desc_y: Any, y: int, value: Any) -> None:
    _check(lib.cudnnSetTensor(_ptr(hdl), _ptr(desc_y), _ptr(y), byref(value)))


def scale_tensor(lib: Any, hdl: Any, desc_y: Any, y: int, alpha: Any) -> None:
    _check(lib.cudnnScaleTensor(_ptr(hdl), _ptr(desc_y), _ptr(y), byref(alpha)))


def add_tensor(
    lib: Any, hdl: Any, alpha: Any, desc_a: Any, a: int, beta: Any, desc_c: Any, c: int
) -> None:
    _check(
        lib.cudnnAddTensor(
            _ptr(hdl), byref(alpha), _ptr(desc_a), _ptr(a), byref(beta), _ptr(desc_c), _ptr(c)
        )
    )
