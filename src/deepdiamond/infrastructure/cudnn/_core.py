"""
Public, keyword-driven API over cuDNN.

Enums are keywords (see `deepdiamond.infrastructure.cudnn._constants`);
descriptors and handles are releaseable wrappers. Device buffers are
`DeviceBuffer` objects or raw device addresses (ints); operations that take
a buffer also take an optional byte offset into it.

Every operation returns the cuDNN handle it ran on, so calls can be chained
and checked in tests. Scaling factors (`alpha`, `beta`, fill values) are
marshalled as `double` for double tensors and as `float` otherwise.

Examples
--------
>>> with with_release(cudnn_handle(None), tensor_descriptor([2, 3], "float", "nc")) as (hdl, td):
...     buf = malloc(cudart_lib(), size(td))
...     set_tensor(hdl, td, buf, 1.0)
"""

from __future__ import annotations

from typing import Any, Sequence, Union

from ...domain._errors import DiamondError
from ...domain._layout import ANY, default_tag, dense_strides
from ...domain._resource import release
from ...domain._tensor_desc import DATA_TYPES, data_type_info
from . import _impl
from ._constants import (
    dec_activation_mode,
    enc_activation_mode,
    enc_data_type,
    enc_indices_type,
    enc_nan_propagation,
    enc_reduce_tensor_indices,
    enc_reduce_tensor_op,
)
from ._cuda_runtime import CudaStream, DeviceBuffer, cudart_lib, malloc
from ._impl import ActivationDesc, CudnnHandle, CudnnTensorDesc, ReduceTensorDesc, cudnn_lib

Buffer = Union[DeviceBuffer, int]


def _lib(lib: Any) -> Any:
    return cudnn_lib() if lib is None else lib


def _stream_handle(stream: Any) -> int:
    if stream is None:
        return 0
    if isinstance(stream, CudaStream):
        return stream.checked()
    return int(stream)


# ===================== Handle ===============================================


def cudnn_handle(stream: Any = None, lib: Any = None) -> CudnnHandle:
    """
    Create a cuDNN handle whose operations run on `stream`.

    `stream` is a `CudaStream`, a raw stream address, or None for the
    default stream. The handle has to be released.
    """
    return _impl.create_handle(_lib(lib), _stream_handle(stream))


def get_cudnn_stream(hdl: CudnnHandle) -> CudaStream:
    """Return the stream of `hdl`. The result is borrowed and never destroyed."""
    return CudaStream(cudart_lib(), _impl.get_stream(hdl.lib, hdl), owned=False)


# ===================== Tensor descriptor ====================================


def tensor_descriptor(
    shape: Sequence[int],
    data_type: str = "float",
    layout: Union[str, Sequence[int], None] = None,
    lib: Any = None,
) -> CudnnTensorDesc:
    """
    Create a tensor descriptor.

    Parameters
    ----------
    shape : Sequence[int]
        Logical dimensions (1 to 8).
    data_type : str, optional
        Data type keyword.
    layout : str | Sequence[int] | None, optional
        A tag keyword ("nchw", "nhwc", "nc", ...), explicit element strides,
        or None / "any" for row-major order.

    Examples
    --------
    >>> tensor_descriptor([2, 3, 4, 5], "float", "nchw")
    >>> tensor_descriptor([1, 1, 1, 1], "float", [1, 1, 1, 1])
    """
    shape = [int(d) for d in shape]
    if layout is None or (isinstance(layout, str) and layout == ANY):
        strides = dense_strides(shape, default_tag(len(shape)))
    elif isinstance(layout, str):
        strides = dense_strides(shape, layout)
    else:
        strides = tuple(int(s) for s in layout)
    return _impl.tensor_desc_create(_lib(lib), shape, enc_data_type(data_type), strides)


def ndims(td: CudnnTensorDesc) -> int:
    return td.ndims


def dims(td: CudnnTensorDesc) -> list[int]:
    return list(td.shape)


def strides(td: CudnnTensorDesc) -> list[int]:
    return list(td.strides)


def data_type(td: CudnnTensorDesc) -> str:
    return td.data_type


def size(td: CudnnTensorDesc) -> int:
    """Bytes cuDNN needs to store a tensor described by `td`."""
    return td.size


def extent(td: CudnnTensorDesc) -> int:
    """Bytes between the first and the last addressed element, inclusive."""
    item = DATA_TYPES[data_type_info(td.data_type).name].size
    return (sum((d - 1) * s for d, s in zip(td.shape, td.strides)) + 1) * item


def _address(buf: Buffer, offset: int, td: CudnnTensorDesc) -> int:
    offset = int(offset)
    if isinstance(buf, DeviceBuffer):
        needed = offset + extent(td)
        if offset < 0 or needed > buf.size:
            raise DiamondError(
                "There is not enough capacity in the device buffer for this offset.",
                {"offset": offset, "requested": needed, "available": buf.size},
            )
        return buf.address + offset
    return int(buf) + offset


def _scale(td: CudnnTensorDesc, value: float):
    return _impl.scaling_factor(td.data_type, float(value))


# ===================== Activation ===========================================


def activation_descriptor(
    mode: str, relu_nan_opt: bool = True, coef: float = 0.0, lib: Any = None
) -> ActivationDesc:
    """
    Describe an activation.

    `mode` is one of "logistic" (alias "sigmoid"), "relu", "tanh",
    "clipped-relu", "elu", "identity" (alias "linear"). `coef` is the
    clipping threshold or the ELU alpha.
    """
    return _impl.activation_desc_create(
        _lib(lib), enc_activation_mode(mode), enc_nan_propagation(relu_nan_opt), float(coef)
    )


def get_activation_descriptor(ad: ActivationDesc) -> dict[str, Any]:
    mode, nan_opt, coef = _impl.activation_desc_query(ad.lib, ad)
    return {"mode": dec_activation_mode(mode), "relu_nan_opt": nan_opt == 1, "coef": coef}


def activation_forward(
    hdl: CudnnHandle,
    ad: ActivationDesc,
    alpha: float,
    desc_x: CudnnTensorDesc,
    buf_x: Buffer,
    beta: float,
    desc_y: CudnnTensorDesc,
    buf_y: Buffer,
    ofst_x: int = 0,
    ofst_y: int = 0,
) -> CudnnHandle:
    """y = alpha * f(x) + beta * y."""
    _impl.activation_forward(
        hdl.lib,
        hdl,
        ad,
        _scale(desc_x, alpha),
        desc_x,
        _address(buf_x, ofst_x, desc_x),
        _scale(desc_y, beta),
        desc_y,
        _address(buf_y, ofst_y, desc_y),
    )
    return hdl


def activation_backward(
    hdl: CudnnHandle,
    ad: ActivationDesc,
    alpha: float,
    desc_y: CudnnTensorDesc,
    buf_y: Buffer,
    desc_dy: CudnnTensorDesc,
    buf_dy: Buffer,
    desc_x: CudnnTensorDesc,
    buf_x: Buffer,
    beta: float,
    desc_dx: CudnnTensorDesc,
    buf_dx: Buffer,
    ofst_y: int = 0,
    ofst_dy: int = 0,
    ofst_x: int = 0,
    ofst_dx: int = 0,
) -> CudnnHandle:
    """dx = alpha * f'(x) * dy + beta * dx, where y = f(x)."""
    _impl.activation_backward(
        hdl.lib,
        hdl,
        ad,
        _scale(desc_x, alpha),
        desc_y,
        _address(buf_y, ofst_y, desc_y),
        desc_dy,
        _address(buf_dy, ofst_dy, desc_dy),
        desc_x,
        _address(buf_x, ofst_x, desc_x),
        _scale(desc_dx, beta),
        desc_dx,
        _address(buf_dx, ofst_dx, desc_dx),
    )
    return hdl


# ===================== Reduction ============================================


def reduce_tensor_descriptor(
    op: str,
    comp_type: str = "float",
    nan_opt: bool = True,
    indices: bool = False,
    indices_type: str = "32bit",
    lib: Any = None,
) -> ReduceTensorDesc:
    """
    Describe a reduction ("add", "mul", "min", "max", "amax", "avg",
    "norm1", "norm2", "mul-no-zeros") computed in `comp_type`.
    """
    return _impl.reduce_desc_create(
        _lib(lib),
        enc_reduce_tensor_op(op),
        enc_data_type(comp_type),
        enc_nan_propagation(nan_opt),
        enc_reduce_tensor_indices(indices),
        enc_indices_type(indices_type),
    )


def reduce_tensor(
    hdl: CudnnHandle,
    rd: ReduceTensorDesc,
    alpha: float,
    desc_x: CudnnTensorDesc,
    buf_x: Buffer,
    beta: float,
    desc_y: CudnnTensorDesc,
    buf_y: Buffer,
    ofst_x: int = 0,
    ofst_y: int = 0,
) -> CudnnHandle:
    """
    y = alpha * reduce(x) + beta * y, over every dimension where `desc_y`
    has extent 1.

    Scratch space for indices and workspace is allocated for the call.
    """
    isize, wsize = _impl.reduction_sizes(hdl.lib, hdl, rd, desc_x, desc_y)
    indices = workspace = None
    try:
        if isize:
            indices = malloc(cudart_lib(), isize)
        if wsize:
            workspace = malloc(cudart_lib(), wsize)
        _impl.reduce_tensor(
            hdl.lib,
            hdl,
            rd,
            indices.address if indices else 0,
            isize,
            workspace.address if workspace else 0,
            wsize,
            _scale(desc_x, alpha),
            desc_x,
            _address(buf_x, ofst_x, desc_x),
            _scale(desc_y, beta),
            desc_y,
            _address(buf_y, ofst_y, desc_y),
        )
    finally:
        release(workspace)
        release(indices)
    return hdl


# ===================== Tensor operations ====================================


def transform_tensor(
    hdl: CudnnHandle,
    alpha: float,
    desc_x: CudnnTensorDesc,
    buf_x: Buffer,
    beta: float,
    desc_y: CudnnTensorDesc,
    buf_y: Buffer,
    ofst_x: int = 0,
    ofst_y: int = 0,
) -> CudnnHandle:
    """y = alpha * x + beta * y, converting between layouts."""
    _impl.transform_tensor(
        hdl.lib,
        hdl,
        _scale(desc_x, alpha),
        desc_x,
        _address(buf_x, ofst_x, desc_x),
        _scale(desc_y, beta),
        desc_y,
        _address(buf_y, ofst_y, desc_y),
    )
    return hdl


def set_tensor(
    hdl: CudnnHandle, desc_y: CudnnTensorDesc, buf_y: Buffer, value: float, ofst_y: int = 0
) -> CudnnHandle:
    """Set every element of y to `value`."""
    _impl.set_tensor(hdl.lib, hdl, desc_y, _address(buf_y, ofst_y, desc_y), _scale(desc_y, value))
    return hdl


def scale_tensor(
    hdl: CudnnHandle, alpha: float, desc_y: CudnnTensorDesc, buf_y: Buffer, ofst_y: int = 0
) -> CudnnHandle:
    """y = alpha * y."""
    _impl.scale_tensor(hdl.lib, hdl, desc_y, _address(buf_y, ofst_y, desc_y), _scale(desc_y, alpha))
    return hdl


def add_tensor(
    hdl: CudnnHandle,
    alpha: float,
    desc_x: CudnnTensorDesc,
    buf_x: Buffer,
    beta: float,
    desc_y: CudnnTensorDesc,
    buf_y: Buffer,
    ofst_x: int = 0,
    ofst_y: int = 0,
) -> CudnnHandle:
    """
    y = alpha * x + beta * y.

    `x` may have extent 1 in any dimension where `y` does not (broadcast),
    which is how biases are added.
    """
    _impl.add_tensor(
        hdl.lib,
        hdl,
        _scale(desc_x, alpha),
        desc_x,
        _address(buf_x, ofst_x, desc_x),
        _scale(desc_y, beta),
        desc_y,
        _address(buf_y, ofst_y, desc_y),
    )
    return hdl


def info(td: CudnnTensorDesc) -> dict[str, Any]:
    return {
        "shape": list(td.shape),
        "data_type": td.data_type,
        "strides": list(td.strides),
    }
