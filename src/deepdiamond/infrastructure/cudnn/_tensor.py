"""
Device tensors backed by CUDA buffers and cuDNN tensor descriptors.

`CudnnTensor` mirrors the surface of `DnnlTensor`: it satisfies the
`TensorDescriptor` protocol, knows its byte offset into the underlying
buffer, and supports views, host round trips and release. Data never moves
implicitly between host and device; `to_numpy` / `copy_from_numpy` are the
explicit crossings.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable

import numpy as np

from ...domain._errors import DeviceMismatchError, DiamondError, UnsupportedOperationError
from ...domain._resource import release
from ...domain._tensor_desc import DATA_TYPES, TensorDesc
from . import _core as cudnn
from ._cuda_runtime import DeviceBuffer, memcpy_dtoh, memcpy_htod, malloc
from ._impl import CudnnTensorDesc

if TYPE_CHECKING:
    from ._factory import CudnnFactory

INEFFICIENT_OPERATION_MSG = (
    "This operation would be inefficient because it does not use cuDNN capabilities. "
    "Please use dedicated tensor operations."
)


class CudnnTensor:
    """
    Tensor in device memory.

    Parameters
    ----------
    fact : CudnnFactory
        Factory that created the tensor.
    td : CudnnTensorDesc
        Descriptor owned by the tensor.
    buf : DeviceBuffer
        Device memory the tensor lives in.
    offset : int, optional
        Byte offset of the first element in `buf`.
    master : bool, optional
        If True, `buf` is freed together with the tensor.
    """

    def __init__(
        self,
        fact: "CudnnFactory",
        td: CudnnTensorDesc,
        buf: DeviceBuffer,
        offset: int = 0,
        master: bool = True,
    ) -> None:
        self._fact = fact
        self.td = td
        self.buf = buf
        self.master = bool(master)
        self._offset = 0
        self._dtype = DATA_TYPES[td.data_type].numpy
        self.set_offset(offset)

    @property
    def device(self) -> str:
        return self._fact.device

    @property
    def shape(self) -> tuple[int, ...]:
        return self.td.shape

    @property
    def data_type(self) -> str:
        return self.td.data_type

    @property
    def layout(self) -> tuple[int, ...]:
        return self.td.strides

    @property
    def desc(self) -> TensorDesc:
        return TensorDesc(self.td.shape, self.td.data_type, self.td.strides)

    @property
    def factory(self) -> "CudnnFactory":
        return self._fact

    @property
    def offset(self) -> int:
        return self._offset

    def set_offset(self, n: int) -> "CudnnTensor":
        """Move the start of the tensor to byte `n` of its buffer."""
        n = int(n)
        needed = n + cudnn.extent(self.td)
        if n < 0 or needed > self.buf.size:
            raise DiamondError(
                "There is not enough capacity in the underlying buffer for this offset.",
                {"n": n, "requested": needed, "available": self.buf.size},
            )
        self._offset = n
        return self

    @property
    def address(self) -> int:
        return self.buf.address + self._offset

    @property
    def item_size(self) -> int:
        return int(self._dtype.itemsize)

    def count(self) -> int:
        return int(np.prod(self.td.shape, dtype=np.int64))

    @property
    def engine(self) -> "CudnnTensorEngine":
        return self._fact.tensor_engine(self.data_type)

    # ------------------------------------------------------------------
    # Host round trips
    # ------------------------------------------------------------------
    def _host_region(self) -> np.ndarray:
        return memcpy_dtoh(
            self._fact.cudart,
            np.empty(cudnn.extent(self.td), dtype=np.uint8),
            self.buf,
            self._offset,
        )

    def _strided(self, region: np.ndarray) -> np.ndarray:
        item = self.item_size
        return np.ndarray(
            self.shape,
            dtype=self._dtype,
            buffer=region,
            strides=tuple(s * item for s in self.layout),
        )

    def to_numpy(self) -> np.ndarray:
        """Copy the tensor to a new C-contiguous host array."""
        self._fact.synchronize()
        return np.array(self._strided(self._host_region()), copy=True)

    def copy_from_numpy(self, arr: Any) -> "CudnnTensor":
        """Copy `arr` (broadcastable to `shape`) into the tensor."""
        self._fact.synchronize()
        region = self._host_region()
        self._strided(region)[...] = np.asarray(arr, dtype=self._dtype)
        memcpy_htod(self._fact.cudart, self.buf, region, self._offset)
        return self

    def view(self) -> "CudnnTensor":
        """A non-owning tensor over the same buffer and offset."""
        td = self._fact.tensor_desc(self.shape, self.data_type, self.layout)
        return CudnnTensor(self._fact, td, self.buf, self._offset, False)

    def info(self) -> dict[str, Any]:
        res = cudnn.info(self.td)
        res.update({"device": self.device, "offset": self._offset, "master": self.master})
        return res

    def release(self) -> bool:
        release(self.td)
        if self.master:
            release(self.buf)
        return True

    def __enter__(self) -> "CudnnTensor":
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()

    def __repr__(self) -> str:
        return (
            f"CudnnTensor(shape={self.shape}, data_type={self.data_type!r}, "
            f"strides={self.layout}, offset={self._offset}, device={self.device!r})"
        )


def cudnn_tensor(fact: "CudnnFactory", td: CudnnTensorDesc, init: bool = True) -> CudnnTensor:
    """Allocate a device tensor for `td`; the tensor takes over `td`."""
    buf = malloc(fact.cudart, max(cudnn.size(td), cudnn.extent(td)))
    tz = CudnnTensor(fact, td, buf, 0, True)
    if init:
        cudnn.set_tensor(fact.hdl, td, buf, 0.0)
    return tz


def _check_same_device(x: Any, y: Any) -> None:
    if x.device != y.device:
        raise DeviceMismatchError(str(x.device), str(y.device))


# =============================== Transfers ======================================


class CudnnTransformer:
    """Copy `in_tz` into `out_tz` (any layouts) each time it is called."""

    def __init__(self, fact: "CudnnFactory", in_tz: CudnnTensor, out_tz: CudnnTensor) -> None:
        _check_same_device(in_tz, out_tz)
        if in_tz.shape != out_tz.shape:
            raise DiamondError(
                "Transformer needs tensors of equal shapes.",
                {"input": in_tz.shape, "output": out_tz.shape},
            )
        self._fact = fact
        self._in = in_tz
        self._out = out_tz

    @property
    def input(self) -> CudnnTensor:
        return self._in

    @property
    def output(self) -> CudnnTensor:
        return self._out

    def __call__(self) -> CudnnTensor:
        i, o = self._in, self._out
        cudnn.transform_tensor(self._fact.hdl, 1.0, i.td, i.buf, 0.0, o.td, o.buf, i.offset, o.offset)
        return o

    def release(self) -> bool:
        return True


class CudnnBatcher:
    """
    Copy `mb_size` consecutive entries of the first dimension.

    `batcher(src_n, dst_n)` copies source entries `src_n .. src_n + mb_size`
    into destination entries `dst_n .. dst_n + mb_size`.
    """

    def __init__(
        self, fact: "CudnnFactory", src_tz: CudnnTensor, dst_tz: CudnnTensor, mb_size: int
    ) -> None:
        _check_same_device(src_tz, dst_tz)
        mb_size = int(mb_size)
        if mb_size <= 0 or mb_size > src_tz.shape[0] or mb_size > dst_tz.shape[0]:
            raise DiamondError(
                "Mini-batch size must fit in both the source and the destination.",
                {"mb_size": mb_size, "src": src_tz.shape, "dst": dst_tz.shape},
            )
        if src_tz.shape[1:] != dst_tz.shape[1:]:
            raise DiamondError(
                "Source and destination entries must have the same shape.",
                {"src": src_tz.shape, "dst": dst_tz.shape},
            )
        self._fact = fact
        self._src = src_tz
        self._dst = dst_tz
        self.mb_size = mb_size
        self._src_stride = src_tz.layout[0] * src_tz.item_size
        self._dst_stride = dst_tz.layout[0] * dst_tz.item_size
        shape = (mb_size,) + tuple(src_tz.shape[1:])
        self._src_td = self._dst_td = None
        try:
            self._src_td = fact.tensor_desc(shape, src_tz.data_type, src_tz.layout)
            self._dst_td = fact.tensor_desc(shape, dst_tz.data_type, dst_tz.layout)
        except BaseException:
            self.release()
            raise

    @property
    def input(self) -> CudnnTensor:
        return self._src

    @property
    def output(self) -> CudnnTensor:
        return self._dst

    def _check_position(self, n: int, tz: CudnnTensor, name: str) -> None:
        if n < 0 or n + self.mb_size > tz.shape[0]:
            raise DiamondError(
                f"Requested {name} entries are out of bounds.",
                {name: n, "mb_size": self.mb_size, "available": tz.shape[0]},
            )

    def __call__(self, src_n: int = 0, dst_n: int = 0) -> CudnnTensor:
        src_n, dst_n = int(src_n), int(dst_n)
        self._check_position(src_n, self._src, "src_n")
        self._check_position(dst_n, self._dst, "dst_n")
        cudnn.transform_tensor(
            self._fact.hdl,
            1.0,
            self._src_td,
            self._src.buf,
            0.0,
            self._dst_td,
            self._dst.buf,
            self._src.offset + src_n * self._src_stride,
            self._dst.offset + dst_n * self._dst_stride,
        )
        return self._dst

    def release(self) -> bool:
        release(self._src_td)
        release(self._dst_td)
        return True


class CudnnShuffler:
    """Gather entries of the source into consecutive destination entries."""

    def __init__(self, fact: "CudnnFactory", src_tz: CudnnTensor, dst_tz: CudnnTensor) -> None:
        self._batcher = CudnnBatcher(fact, src_tz, dst_tz, 1)

    @property
    def input(self) -> CudnnTensor:
        return self._batcher.input

    @property
    def output(self) -> CudnnTensor:
        return self._batcher.output

    def __call__(self, cols: Iterable[int]) -> CudnnTensor:
        for j, col in enumerate(cols):
            self._batcher(col, j)
        return self._batcher.output

    def release(self) -> bool:
        return self._batcher.release()


# =============================== Tensor engine ==================================


class CudnnTensorEngine:
    """
    Whole-tensor operations for one data type, run through cuDNN.

    Reductions use cuDNN reduce descriptors created on first use; `equals`
    compares host copies.
    """

    _REDUCTIONS = {"sum": "add", "asum": "norm1", "nrm2": "norm2", "amax": "amax"}

    def __init__(self, fact: "CudnnFactory", data_type: str) -> None:
        self._fact = fact
        self.data_type = data_type
        self._reduce_descs: dict[str, Any] = {}

    def _check(self, *tzs: CudnnTensor) -> None:
        shape = tzs[0].shape
        for tz in tzs:
            if tz.data_type != self.data_type:
                raise DiamondError(
                    "Tensor data type does not match the engine.",
                    {"engine": self.data_type, "tensor": tz.data_type},
                )
            if tz.shape != shape:
                raise DiamondError("Tensor shapes must match.", {"x": shape, "y": tz.shape})

    def copy(self, x: CudnnTensor, y: CudnnTensor) -> CudnnTensor:
        self._check(x, y)
        if x.address != y.address or x.layout != y.layout:
            cudnn.transform_tensor(self._fact.hdl, 1.0, x.td, x.buf, 0.0, y.td, y.buf, x.offset, y.offset)
        return y

    def axpby(self, alpha: float, x: CudnnTensor, beta: float, y: CudnnTensor) -> CudnnTensor:
        """y = alpha * x + beta * y."""
        self._check(x, y)
        cudnn.add_tensor(self._fact.hdl, alpha, x.td, x.buf, beta, y.td, y.buf, x.offset, y.offset)
        return y

    def axpy(self, alpha: float, x: CudnnTensor, y: CudnnTensor) -> CudnnTensor:
        return self.axpby(alpha, x, 1.0, y)

    def scal(self, alpha: float, x: CudnnTensor) -> CudnnTensor:
        self._check(x)
        cudnn.scale_tensor(self._fact.hdl, alpha, x.td, x.buf, x.offset)
        return x

    def set_all(self, value: float, x: CudnnTensor) -> CudnnTensor:
        self._check(x)
        cudnn.set_tensor(self._fact.hdl, x.td, x.buf, value, x.offset)
        return x

    def _reduce(self, what: str, x: CudnnTensor) -> float:
        self._check(x)
        rd = self._reduce_descs.get(what)
        if rd is None:
            rd = self._reduce_descs[what] = cudnn.reduce_tensor_descriptor(
                self._REDUCTIONS[what], self.data_type, lib=self._fact.hdl.lib
            )
        ones = (1,) * len(x.shape)
        with self._fact.create_tensor(TensorDesc(ones, self.data_type), False) as res:
            cudnn.reduce_tensor(self._fact.hdl, rd, 1.0, x.td, x.buf, 0.0, res.td, res.buf, x.offset, 0)
            return float(res.to_numpy().reshape(-1)[0])

    def sum(self, x: CudnnTensor) -> float:
        return self._reduce("sum", x)

    def asum(self, x: CudnnTensor) -> float:
        return self._reduce("asum", x)

    def nrm2(self, x: CudnnTensor) -> float:
        return self._reduce("nrm2", x)

    def amax(self, x: CudnnTensor) -> float:
        return self._reduce("amax", x)

    def equals(self, x: CudnnTensor, y: CudnnTensor) -> bool:
        if x.shape != y.shape or x.data_type != y.data_type:
            return False
        return bool(np.array_equal(x.to_numpy(), y.to_numpy()))

    def sigmoid(self, a: Any, y: Any) -> Any:
        raise UnsupportedOperationError(INEFFICIENT_OPERATION_MSG)

    def relu(self, alpha: float, a: Any, y: Any) -> Any:
        raise UnsupportedOperationError(INEFFICIENT_OPERATION_MSG)

    def elu(self, alpha: float, a: Any, y: Any) -> Any:
        raise UnsupportedOperationError(INEFFICIENT_OPERATION_MSG)

    def release(self) -> bool:
        for rd in self._reduce_descs.values():
            release(rd)
        self._reduce_descs.clear()
        return True
