"""
Host tensors backed by DNNL memory objects.

A `DnnlTensor` couples a DNNL memory object with the host byte buffer it
points into, so the same data is reachable from DNNL primitives and from
NumPy. Tensors satisfy the `TensorDescriptor` protocol: `shape`, `data_type`
and `layout` (element strides).

Data movement between tensors is expressed with callables that own their
primitives:

- `DnnlTransformer`: reorder one tensor into another (any layouts).
- `DnnlBatcher`: reorder `mb_size` consecutive entries along the first
  dimension, from a chosen source position to a chosen destination position.
- `DnnlShuffler`: gather arbitrary entries of the first dimension.

`DnnlTensorEngine` provides the BLAS-like whole-tensor operations of the
`TensorEngine` protocol.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable, Optional

import numpy as np

from ...domain._errors import DiamondError
from ...domain._resource import release
from ...domain._tensor_desc import DATA_TYPES, TensorDesc
from . import _core as dnnl
from ._impl import Memory

if TYPE_CHECKING:
    from ._factory import DnnlFactory


class DnnlTensor:
    """
    Tensor over a DNNL memory object in host memory.

    Parameters
    ----------
    fact : DnnlFactory
        Factory that created the tensor; provides engine and stream.
    mem : Memory
        The DNNL memory object. It is released together with the tensor.

    Notes
    -----
    Views share the buffer of their parent but own a separate memory
    object, so a view and its parent can be released independently.
    """

    device = "cpu"

    def __init__(self, fact: "DnnlFactory", mem: Memory) -> None:
        self._fact = fact
        self.mem = mem
        dt = dnnl.data_type(mem.md)
        self._data_type = dt
        self._dtype = DATA_TYPES[dt].numpy
        self._shape = tuple(dnnl.dims(mem.md))
        self._strides = tuple(dnnl.strides(mem.md))

    # ------------------------------------------------------------------
    # TensorDescriptor
    # ------------------------------------------------------------------
    @property
    def shape(self) -> tuple[int, ...]:
        return self._shape

    @property
    def data_type(self) -> str:
        return self._data_type

    @property
    def layout(self) -> tuple[int, ...]:
        return self._strides

    @property
    def desc(self) -> TensorDesc:
        return TensorDesc(self._shape, self._data_type, self._strides)

    @property
    def md(self):
        return self.mem.md

    @property
    def factory(self) -> "DnnlFactory":
        return self._fact

    @property
    def offset(self) -> int:
        """Byte offset of the first element in the underlying buffer."""
        return self.mem.offset

    @property
    def address(self) -> int:
        return self.mem.base_address + self.mem.offset

    @property
    def item_size(self) -> int:
        return int(self._dtype.itemsize)

    def count(self) -> int:
        return int(np.prod(self._shape, dtype=np.int64))

    @property
    def engine(self) -> "DnnlTensorEngine":
        return self._fact.tensor_engine(self._data_type)

    # ------------------------------------------------------------------
    # Host access
    # ------------------------------------------------------------------
    def host(self) -> np.ndarray:
        """Writable NumPy view of the tensor data, honoring its strides."""
        buf = self.mem.buf
        if buf is None:
            raise ValueError("Tensor has already been released")
        item = self.item_size
        return np.ndarray(
            self._shape,
            dtype=self._dtype,
            buffer=buf,
            offset=self.mem.offset,
            strides=tuple(s * item for s in self._strides),
        )

    def to_numpy(self) -> np.ndarray:
        """Return a C-contiguous copy of the tensor data."""
        return np.array(self.host(), copy=True)

    def copy_from_numpy(self, arr: Any) -> "DnnlTensor":
        """Copy `arr` (broadcastable to `shape`) into the tensor."""
        self.host()[...] = np.asarray(arr, dtype=self._dtype)
        return self

    def view(self) -> "DnnlTensor":
        """A new tensor sharing this tensor's buffer and offset."""
        mem = dnnl.memory(self._fact.eng, self.mem.md, self.mem.buf, False)
        dnnl.set_offset(mem, self.mem.offset)
        return DnnlTensor(self._fact, mem)

    def info(self) -> dict[str, Any]:
        res = dnnl.info(self.mem)
        res["master"] = self.mem.owns_buffer
        return res

    def release(self) -> bool:
        return self.mem.release()

    def __enter__(self) -> "DnnlTensor":
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()

    def __repr__(self) -> str:
        return (
            f"DnnlTensor(shape={self._shape}, data_type={self._data_type!r}, "
            f"strides={self._strides}, offset={self.offset})"
        )


def dnnl_tensor(fact: "DnnlFactory", md: Any, init: bool = True) -> DnnlTensor:
    """Allocate a tensor described by the DNNL memory descriptor `md`."""
    nbytes = max(dnnl.size(md, fact.lib), 1)
    buf = np.zeros(nbytes, dtype=np.uint8) if init else np.empty(nbytes, dtype=np.uint8)
    return DnnlTensor(fact, dnnl.memory(fact.eng, md, buf, True))


# =============================== Transfers ======================================


class DnnlTransformer:
    """Reorder `in_tz` into `out_tz` each time it is called."""

    def __init__(self, fact: "DnnlFactory", in_tz: DnnlTensor, out_tz: DnnlTensor) -> None:
        self._fact = fact
        self._in = in_tz
        self._out = out_tz
        self._pd = dnnl.reorder(fact.eng, in_tz.md, out_tz.md)
        self._prim = dnnl.primitive(self._pd)
        self._args = dnnl.fwd_args(in_tz.mem, out_tz.mem)

    @property
    def input(self) -> DnnlTensor:
        return self._in

    @property
    def output(self) -> DnnlTensor:
        return self._out

    def __call__(self) -> DnnlTensor:
        self._fact.execute(self._prim, self._args)
        return self._out

    def release(self) -> bool:
        release(self._prim)
        release(self._pd)
        return True


class DnnlBatcher:
    """
    Copy a mini-batch of `mb_size` entries (along the first dimension).

    Calling `batcher(src_n, dst_n)` copies entries `src_n .. src_n + mb_size`
    of the source into positions `dst_n .. dst_n + mb_size` of the
    destination; layouts may differ.
    """

    def __init__(
        self, fact: "DnnlFactory", src_tz: DnnlTensor, dst_tz: DnnlTensor, mb_size: int
    ) -> None:
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
        lib = fact.lib
        self._src_stride = src_tz.layout[0] * src_tz.item_size
        self._dst_stride = dst_tz.layout[0] * dst_tz.item_size
        self._src_mem = self._dst_mem = None
        self._pd = self._prim = None
        try:
            src_sub = dnnl.submemory_desc(src_tz.md, mb_size, lib=lib)
            dst_sub = dnnl.submemory_desc(dst_tz.md, mb_size, lib=lib)
            self._src_mem = dnnl.memory(fact.eng, src_sub, src_tz.mem.buf, False)
            self._dst_mem = dnnl.memory(fact.eng, dst_sub, dst_tz.mem.buf, False)
            self._pd = dnnl.reorder(fact.eng, src_sub, dst_sub)
            self._prim = dnnl.primitive(self._pd)
        except BaseException:
            self.release()
            raise
        self._args = dnnl.fwd_args(self._src_mem, self._dst_mem)

    @property
    def input(self) -> DnnlTensor:
        return self._src

    @property
    def output(self) -> DnnlTensor:
        return self._dst

    def _check_position(self, n: int, tz: DnnlTensor, name: str) -> None:
        if n < 0 or n + self.mb_size > tz.shape[0]:
            raise DiamondError(
                f"Requested {name} entries are out of bounds.",
                {name: n, "mb_size": self.mb_size, "available": tz.shape[0]},
            )

    def __call__(self, src_n: int = 0, dst_n: int = 0) -> DnnlTensor:
        src_n, dst_n = int(src_n), int(dst_n)
        self._check_position(src_n, self._src, "src_n")
        self._check_position(dst_n, self._dst, "dst_n")
        dnnl.set_offset(self._src_mem, self._src.offset + src_n * self._src_stride)
        dnnl.set_offset(self._dst_mem, self._dst.offset + dst_n * self._dst_stride)
        self._fact.execute(self._prim, self._args)
        return self._dst

    def release(self) -> bool:
        release(self._prim)
        release(self._pd)
        release(self._src_mem)
        release(self._dst_mem)
        return True


class DnnlShuffler:
    """Gather entries of the source into consecutive destination entries."""

    def __init__(self, fact: "DnnlFactory", src_tz: DnnlTensor, dst_tz: DnnlTensor) -> None:
        self._batcher = DnnlBatcher(fact, src_tz, dst_tz, 1)

    @property
    def input(self) -> DnnlTensor:
        return self._batcher.input

    @property
    def output(self) -> DnnlTensor:
        return self._batcher.output

    def __call__(self, cols: Iterable[int]) -> DnnlTensor:
        """Copy source entry `cols[j]` into destination entry `j`, for each `j`."""
        for j, col in enumerate(cols):
            self._batcher(col, j)
        return self._batcher.output

    def release(self) -> bool:
        return self._batcher.release()


# =============================== Tensor engine ==================================


def _check_same_shape(x: DnnlTensor, y: DnnlTensor) -> None:
    if x.shape != y.shape:
        raise DiamondError("Tensor shapes must match.", {"x": x.shape, "y": y.shape})


class DnnlTensorEngine:
    """
    Whole-tensor BLAS-like operations for one data type.

    `copy`, `axpy`, `axpby` and `scal` run as DNNL reorder / sum primitives;
    reductions, `set_all` and `equals` read the host buffer directly.
    """

    def __init__(self, fact: "DnnlFactory", data_type: str) -> None:
        self._fact = fact
        self.data_type = data_type

    def _run(self, pd: Any, args: Any) -> None:
        prim = dnnl.primitive(pd)
        try:
            self._fact.execute(prim, args)
        finally:
            prim.release()
            pd.release()

    def copy(self, x: DnnlTensor, y: DnnlTensor) -> DnnlTensor:
        _check_same_shape(x, y)
        if x.address != y.address or x.layout != y.layout:
            self._run(dnnl.reorder(self._fact.eng, x.md, y.md), dnnl.fwd_args(x.mem, y.mem))
        return y

    def axpby(self, alpha: float, x: DnnlTensor, beta: float, y: DnnlTensor) -> DnnlTensor:
        """y = alpha * x + beta * y."""
        _check_same_shape(x, y)
        eng = self._fact.eng
        self._run(
            dnnl.sum_pd(eng, y.md, beta, y.md, alpha, x.md),
            dnnl.args(y.mem, y.mem, x.mem),
        )
        return y

    def axpy(self, alpha: float, x: DnnlTensor, y: DnnlTensor) -> DnnlTensor:
        """y = alpha * x + y."""
        return self.axpby(alpha, x, 1.0, y)

    def scal(self, alpha: float, x: DnnlTensor) -> DnnlTensor:
        """x = alpha * x."""
        self._run(dnnl.sum_pd(self._fact.eng, alpha, x.md), dnnl.args(x.mem))
        return x

    def set_all(self, value: float, x: DnnlTensor) -> DnnlTensor:
        x.host()[...] = value
        return x

    def sum(self, x: DnnlTensor) -> float:
        return float(np.sum(x.host(), dtype=np.float64))

    def asum(self, x: DnnlTensor) -> float:
        return float(np.sum(np.abs(x.host()), dtype=np.float64))

    def nrm2(self, x: DnnlTensor) -> float:
        h = x.host().astype(np.float64)
        return float(np.sqrt(np.sum(h * h)))

    def amax(self, x: DnnlTensor) -> float:
        return float(np.max(np.abs(x.host())))

    def equals(self, x: DnnlTensor, y: DnnlTensor) -> bool:
        if x.shape != y.shape or x.data_type != y.data_type:
            return False
        return bool(np.array_equal(x.host(), y.host()))
