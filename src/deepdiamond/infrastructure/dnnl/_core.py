"""
Public, keyword-driven API over the DNNL (oneDNN v1.x) C library.

Every function here accepts enum values as keywords (see
`deepdiamond.infrastructure.dnnl._constants`), wraps native handles into
releaseable objects, and validates arguments that the native library would
otherwise trust blindly (buffer capacities, offsets).

Functions that create a handle from scratch take an optional `lib` argument;
when omitted the process-wide library from `dnnl_lib()` is used. Functions
that receive a handle use the library that created it.

Memory descriptors are `dnnl_memory_desc_t` values. Anywhere a descriptor is
expected, a `Memory` (or any object exposing `.md`) may be passed instead.

Examples
--------
>>> with with_release(engine()) as (eng,):
...     md = memory_desc([2, 3], "float", "nc")
...     mem = memory(eng, md)
"""

from __future__ import annotations

import ctypes
from typing import Any, Optional, Sequence, Union

import numpy as np

from ...domain._errors import DiamondError
from . import _impl
from ._constants import (
    ARG_BIAS,
    ARG_DIFF_BIAS,
    ARG_DIFF_DST,
    ARG_DIFF_SRC,
    ARG_DIFF_WEIGHTS,
    ARG_DST,
    ARG_MULTIPLE_SRC,
    ARG_SRC,
    ARG_WEIGHTS,
    ARG_WORKSPACE,
    QUERY,
    STREAM_DEFAULT_FLAGS,
    STREAM_FLAGS,
    dec_data_type,
    dec_engine_kind,
    dec_primitive_kind,
    enc_data_type,
    enc_eltwise_alg_kind,
    enc_engine_kind,
    enc_format_tag,
    enc_forward_prop_kind,
    mask,
)
from ._impl import Engine, Memory, Primitive, PrimitiveDesc, Stream, dnnl_lib
from ._structs import OP_DESCS, dnnl_memory_desc_t

MemoryDescLike = Union[dnnl_memory_desc_t, Memory, Any]


def _lib(lib: Any) -> Any:
    return dnnl_lib() if lib is None else lib


def desc(x: MemoryDescLike) -> dnnl_memory_desc_t:
    """Return the memory descriptor of `x` (a descriptor, a memory, or a tensor)."""
    if isinstance(x, dnnl_memory_desc_t):
        return x
    md = getattr(x, "md", None)
    if isinstance(md, dnnl_memory_desc_t):
        return md
    raise TypeError(f"{type(x).__name__} does not provide a DNNL memory descriptor")


# ===================== Engine ===============================================


def engine(id: int = 0, kind: str = "cpu", lib: Any = None) -> Engine:
    """
    Create an engine for device `id` of the given `kind` ("cpu", "gpu", "any").

    The engine has to be released.

    Raises
    ------
    ValueError
        If `kind` is not a known engine kind.
    DnnlError
        If `id` does not correspond to a physical device.
    """
    return _impl.engine_create(_lib(lib), enc_engine_kind(kind), id)


def engine_count(kind: str = "cpu", lib: Any = None) -> int:
    """Return the number of physical engines of `kind`."""
    return _impl.engine_count(_lib(lib), enc_engine_kind(kind))


def engine_kind(eng: Engine) -> str:
    """Return the kind of `eng` as a keyword, typically "cpu" or "gpu"."""
    return dec_engine_kind(_impl.engine_kind(eng.lib, eng))


# ===================== Stream ===============================================


def stream(eng: Engine, *flags: str) -> Stream:
    """
    Create a stream executing primitives on `eng`.

    `flags` are keywords from `STREAM_FLAGS` ("in-order", "out-of-order",
    "default-order"); none means DNNL's default flags.
    """
    f = mask(STREAM_FLAGS, flags, "stream flag") if flags else STREAM_DEFAULT_FLAGS
    return _impl.stream_create(eng.lib, eng, f)


def wait(strm: Stream) -> Stream:
    """Block until `strm` has finished all queued operations."""
    return _impl.stream_wait(strm.lib, strm)


def execute(strm: Stream, p: Primitive, args: ctypes.Array) -> Stream:
    """Queue primitive `p` with execution arguments `args` on `strm`."""
    return _impl.primitive_execute(strm.lib, strm, p, args)


# ===================== Memory descriptors ===================================


def memory_desc(
    dims: Sequence[int],
    data_type: str = "float",
    fmt: Union[str, Sequence[int]] = "any",
    lib: Any = None,
) -> dnnl_memory_desc_t:
    """
    Create a logical description of data.

    Parameters
    ----------
    dims : Sequence[int]
        Dimensions in "abcdef" order regardless of the physical layout.
    data_type : str, optional
        Data type keyword ("float", "int", "half", ...).
    fmt : str | Sequence[int], optional
        Physical layout: a tag keyword ("nc", "nchw", "acdb", "any", ...) or
        explicit strides matching `dims`.

    Examples
    --------
    >>> memory_desc([2, 3], "float", "nc")
    >>> memory_desc([2, 3, 4, 5], "float", [120, 3, 4, 5])
    """
    lib = _lib(lib)
    dt = enc_data_type(data_type)
    if isinstance(fmt, str):
        return _impl.memory_desc_by_tag(lib, dims, dt, enc_format_tag(fmt))
    return _impl.memory_desc_by_strides(lib, dims, dt, list(fmt))


def submemory_desc(
    parent: MemoryDescLike,
    dims: Union[int, Sequence[int]],
    offsets: Optional[Sequence[int]] = None,
    lib: Any = None,
) -> dnnl_memory_desc_t:
    """
    Describe a section of `parent`.

    With an int `dims`, the section keeps all dimensions of `parent` except
    the first, which becomes `dims`. Missing `offsets` are zeros.
    """
    pmd = desc(parent)
    if isinstance(dims, (int, np.integer)):
        ds = _impl.md_dims(pmd)
        ds[0] = int(dims)
    else:
        ds = [int(d) for d in dims]
    offs = [0] * len(ds) if offsets is None else [int(o) for o in offsets]
    return _impl.submemory_desc(_lib(lib), pmd, ds, offs)


def equal_desc(x: MemoryDescLike, y: MemoryDescLike, lib: Any = None) -> bool:
    """Compare two descriptors for logical equality."""
    return _impl.memory_desc_equal(_lib(lib), desc(x), desc(y))


def data_type(md: MemoryDescLike) -> str:
    return dec_data_type(desc(md).data_type)


def ndims(md: MemoryDescLike) -> int:
    return int(desc(md).ndims)


def dims(md: MemoryDescLike) -> list[int]:
    return _impl.md_dims(desc(md))


def size(md: MemoryDescLike, lib: Any = None) -> int:
    """Return the number of bytes needed to store data described by `md`."""
    if isinstance(md, Memory):
        return md.size
    return _impl.memory_desc_size(_lib(lib), desc(md))


def strides(md: MemoryDescLike) -> list[int]:
    return _impl.md_strides(desc(md))


# ===================== Memory ===============================================


def memory(
    eng: Engine,
    md: MemoryDescLike,
    buf: Any = None,
    master: bool = False,
) -> Memory:
    """
    Create an engine-specific memory object over a host buffer.

    Parameters
    ----------
    eng : Engine
        The engine that owns the memory.
    md : dnnl_memory_desc_t
        Logical memory descriptor.
    buf : buffer-like, optional
        Existing contiguous host buffer (NumPy array, bytearray, ...). When
        omitted, a zeroed buffer of `size(md)` bytes is allocated and owned by
        the memory.
    master : bool, optional
        Whether the memory takes over the life cycle of a supplied `buf`.

    Raises
    ------
    DiamondError
        If `buf` is smaller than `size(md)`.
    """
    lib = eng.lib
    m = desc(md)
    needed = _impl.memory_desc_size(lib, m)
    if buf is None:
        return _impl.memory_create(lib, m, eng, np.zeros(max(needed, 1), dtype=np.uint8), True)
    data = _impl.byte_view(buf)
    if data.nbytes < needed:
        raise DiamondError(
            "The buffer has to be large enough for mem-desc",
            {"size": needed, "capacity": int(data.nbytes)},
        )
    return _impl.memory_create(lib, m, eng, data, bool(master))


def offset(mem: Memory) -> int:
    """Return the byte position in the buffer where `mem` starts."""
    return mem.offset


def set_offset(mem: Memory, n: int) -> Memory:
    """
    Move the start of `mem` to byte `n` of its buffer.

    Raises
    ------
    DiamondError
        If `n` is negative or the data described by `mem` would not fit in
        the buffer from that position.
    """
    n = int(n)
    capacity = mem.capacity
    if n < 0 or n + mem.extent > capacity:
        raise DiamondError(
            "There is not enough capacity in the underlying buffer for this offset.",
            {"n": n, "requested": n + mem.extent, "available": capacity},
        )
    _impl.memory_set_data_handle(mem.lib, mem, mem.base_address + n)
    mem.offset = n
    return mem


def get_engine(mem: Memory) -> Engine:
    """Return the engine of `mem`. The result is borrowed and need not be released."""
    return _impl.memory_get_engine(mem.lib, mem)


# ===================== Primitive descriptors =================================


def primitive_kind(op_desc: Any) -> str:
    """Return the kind of primitive an operation descriptor describes."""
    return dec_primitive_kind(op_desc.primitive_kind)


def primitive_desc(
    eng: Engine,
    op_desc: Any,
    hint_pd: Optional[PrimitiveDesc] = None,
    attr: Any = None,
) -> PrimitiveDesc:
    """
    Create a primitive descriptor from an operation descriptor.

    `hint_pd` is the complementary forward primitive descriptor required by
    backward operations.
    """
    if not isinstance(op_desc, OP_DESCS):
        raise TypeError(f"{type(op_desc).__name__} is not a DNNL operation descriptor")
    return _impl.primitive_desc_create(eng.lib, op_desc, eng, hint_pd, attr)


def primitive(pd: PrimitiveDesc) -> Primitive:
    """Create an executable primitive from `pd`."""
    return _impl.primitive_create(pd.lib, pd)


def _query(pd: PrimitiveDesc, what: str) -> Optional[dnnl_memory_desc_t]:
    return _impl.query_md(pd.lib, pd, QUERY[what])


def src_md(pd: PrimitiveDesc) -> Optional[dnnl_memory_desc_t]:
    return _query(pd, "src-md")


def diff_src_md(pd: PrimitiveDesc) -> Optional[dnnl_memory_desc_t]:
    return _query(pd, "diff-src-md")


def weights_md(pd: PrimitiveDesc) -> Optional[dnnl_memory_desc_t]:
    return _query(pd, "weights-md")


def diff_weights_md(pd: PrimitiveDesc) -> Optional[dnnl_memory_desc_t]:
    return _query(pd, "diff-weights-md")


def dst_md(pd: PrimitiveDesc) -> Optional[dnnl_memory_desc_t]:
    return _query(pd, "dst-md")


def diff_dst_md(pd: PrimitiveDesc) -> Optional[dnnl_memory_desc_t]:
    return _query(pd, "diff-dst-md")


def workspace_md(pd: PrimitiveDesc) -> Optional[dnnl_memory_desc_t]:
    return _query(pd, "workspace-md")


# ===================== Eltwise ==============================================


def eltwise_fwd_desc(
    prop_kind: str,
    alg_kind: str,
    md: MemoryDescLike,
    alpha: float = 0.0,
    beta: float = 0.0,
    lib: Any = None,
):
    """
    Describe a forward elementwise operation.

    Parameters
    ----------
    prop_kind : str
        "inference", "training" or "scoring".
    alg_kind : str
        Algorithm keyword such as "relu" or "logistic".
    md : dnnl_memory_desc_t
        Layout of the data.
    alpha, beta : float, optional
        Algorithm coefficients.
    """
    return _impl.eltwise_forward_desc(
        _lib(lib),
        enc_forward_prop_kind(prop_kind),
        enc_eltwise_alg_kind(alg_kind),
        desc(md),
        alpha,
        beta,
    )


def eltwise_bwd_desc(
    alg_kind: str,
    diff_desc: MemoryDescLike,
    src_desc: MemoryDescLike,
    alpha: float = 0.0,
    beta: float = 0.0,
    lib: Any = None,
):
    """Describe the backward pass of an elementwise operation."""
    return _impl.eltwise_backward_desc(
        _lib(lib), enc_eltwise_alg_kind(alg_kind), desc(diff_desc), desc(src_desc), alpha, beta
    )


def eltwise_args(*mems: Memory) -> ctypes.Array:
    """
    Execution arguments of elementwise operations.

    - `(src_and_dst)`: in-place forward.
    - `(src, dst)`: out-of-place forward.
    - `(src, diff_dst, diff_src)`: backward.
    """
    if len(mems) == 1:
        return _impl.exec_args([(ARG_SRC, mems[0]), (ARG_DST, mems[0])])
    if len(mems) == 2:
        return _impl.exec_args([(ARG_SRC, mems[0]), (ARG_DST, mems[1])])
    if len(mems) == 3:
        return _impl.exec_args(
            [(ARG_SRC, mems[0]), (ARG_DIFF_DST, mems[1]), (ARG_DIFF_SRC, mems[2])]
        )
    raise TypeError(f"eltwise_args takes 1 to 3 memory objects, got {len(mems)}")


# ===================== Sum ==================================================


def sum_pd(eng: Engine, *args: Any) -> PrimitiveDesc:
    """
    Primitive descriptor that scales a tensor or sums scaled tensors.

    - `sum_pd(eng, scale, dst)`: dst = scale * dst.
    - `sum_pd(eng, dst, scale, src, scale1, src1, ...)`:
      dst = scale * src + scale1 * src1 + ...

    When `dst` is also one of the sources, it has to be the first source.

    Examples
    --------
    >>> sum_pd(eng, md, 2.0, md, 3.0, md)
    """
    if len(args) == 2:
        scale, dst = args
        d = desc(dst)
        return _impl.sum_primitive_desc(eng.lib, eng, d, [scale], [d])
    if len(args) < 3 or (len(args) - 3) % 2 != 0:
        raise TypeError("sum_pd expects (scale, dst) or (dst, scale, src, *scale_srcs)")
    dst, rest = desc(args[0]), args[1:]
    scales = [float(s) for s in rest[0::2]]
    srcs = [desc(s) for s in rest[1::2]]
    if srcs[0] is not dst and any(s is dst for s in srcs[1:]):
        raise DiamondError(
            "The destination has to be the first source when it is also summed.",
            {"sources": len(srcs)},
        )
    return _impl.sum_primitive_desc(eng.lib, eng, dst, scales, srcs)


# ===================== Execution arguments ==================================


def args(*mems: Memory) -> ctypes.Array:
    """
    Arguments for operations with one destination and several sources.

    - `(src_and_dst)`: the same memory is the only source and the destination.
    - `(dst, src0, src1, ...)`: sources are keyed `MULTIPLE_SRC + i`.
    """
    if len(mems) == 1:
        return _impl.exec_args([(ARG_MULTIPLE_SRC, mems[0]), (ARG_DST, mems[0])])
    if not mems:
        raise TypeError("args needs at least one memory object")
    dst, srcs = mems[0], mems[1:]
    return _impl.exec_args(
        [(ARG_DST, dst)] + [(ARG_MULTIPLE_SRC + i, s) for i, s in enumerate(srcs)]
    )


def fwd_args(*mems: Memory) -> ctypes.Array:
    """
    Arguments of forward operations.

    - `(src, dst)`
    - `(src, dst, workspace)`
    - `(src, weights, bias, dst)`
    """
    if len(mems) == 2:
        return _impl.exec_args([(ARG_SRC, mems[0]), (ARG_DST, mems[1])])
    if len(mems) == 3:
        return _impl.exec_args(
            [(ARG_SRC, mems[0]), (ARG_DST, mems[1]), (ARG_WORKSPACE, mems[2])]
        )
    if len(mems) == 4:
        return _impl.exec_args(
            [
                (ARG_SRC, mems[0]),
                (ARG_WEIGHTS, mems[1]),
                (ARG_BIAS, mems[2]),
                (ARG_DST, mems[3]),
            ]
        )
    raise TypeError(f"fwd_args takes 2 to 4 memory objects, got {len(mems)}")


def bwd_args(*mems: Memory) -> ctypes.Array:
    """
    Arguments of backward operations.

    - `(diff_dst, weights, diff_src)`: gradient of data.
    - `(src, diff_dst, diff_weights, diff_bias)`: gradient of weights.
    """
    if len(mems) == 3:
        return _impl.exec_args(
            [(ARG_DIFF_DST, mems[0]), (ARG_WEIGHTS, mems[1]), (ARG_DIFF_SRC, mems[2])]
        )
    if len(mems) == 4:
        return _impl.exec_args(
            [
                (ARG_SRC, mems[0]),
                (ARG_DIFF_DST, mems[1]),
                (ARG_DIFF_WEIGHTS, mems[2]),
                (ARG_DIFF_BIAS, mems[3]),
            ]
        )
    raise TypeError(f"bwd_args takes 3 or 4 memory objects, got {len(mems)}")


# ===================== Reorder ==============================================


def reorder(*args: Any) -> PrimitiveDesc:
    """
    Primitive descriptor copying data between physical layouts (and engines).

    - `reorder(input_eng, input, output_eng, output)`
    - `reorder(eng, input, output)`
    """
    if len(args) == 3:
        eng, inp, out = args
        return _impl.reorder_primitive_desc(eng.lib, desc(inp), eng, desc(out), eng)
    if len(args) == 4:
        in_eng, inp, out_eng, out = args
        return _impl.reorder_primitive_desc(in_eng.lib, desc(inp), in_eng, desc(out), out_eng)
    raise TypeError(f"reorder takes 3 or 4 arguments, got {len(args)}")


# ===================== Inner product ========================================


def inner_product_fwd_desc(
    prop_kind: str,
    src_desc: MemoryDescLike,
    weights_desc: MemoryDescLike,
    bias_desc: MemoryDescLike,
    dst_desc: MemoryDescLike,
    lib: Any = None,
):
    """Describe the forward inner product `dst <- src * weights + bias`."""
    return _impl.inner_product_forward_desc(
        _lib(lib),
        enc_forward_prop_kind(prop_kind),
        desc(src_desc),
        desc(weights_desc),
        desc(bias_desc),
        desc(dst_desc),
    )


def inner_product_bwd_desc(*descs: MemoryDescLike, lib: Any = None):
    """
    Describe a backward inner product.

    - `(diff_src, weights, diff_dst)`: gradient of data.
    - `(src, diff_weights, diff_bias, diff_dst)`: gradients of weights and bias.
    """
    mds = [desc(d) for d in descs]
    if len(mds) == 3:
        return _impl.inner_product_backward_data_desc(_lib(lib), *mds)
    if len(mds) == 4:
        return _impl.inner_product_backward_weights_desc(_lib(lib), *mds)
    raise TypeError(f"inner_product_bwd_desc takes 3 or 4 descriptors, got {len(mds)}")


# ===================== Info =================================================


def info(x: MemoryDescLike) -> dict[str, Any]:
    """Describe a memory descriptor or a memory object as a plain dict."""
    md = desc(x)
    res: dict[str, Any] = {
        "device": "cpu",
        "shape": _impl.md_dims(md),
        "data_type": dec_data_type(md.data_type),
        "strides": _impl.md_strides(md),
    }
    if isinstance(x, Memory):
        res["offset"] = x.offset
    return res
