"""
Low-level ctypes bindings for the DNNL (oneDNN v1.x) C API.

Functions in this module take the loaded library as their first argument,
receive raw handles / ctypes structures, and return raw results. They perform
no keyword encoding; see `deepdiamond.infrastructure.dnnl._core` for the
public API.

Every call returning `dnnl_status_t` is checked by `_check`, which raises
`DnnlError` on a non-success status.

Handles
-------
`Engine`, `Stream`, `PrimitiveDesc` and `Primitive` own one native handle
each and destroy it exactly once. `Memory` additionally keeps a reference to
the host byte buffer the native memory object points into.
"""

from __future__ import annotations

import ctypes
import functools
import logging
from ctypes import POINTER, byref, c_float, c_int, c_int64, c_size_t, c_void_p
from typing import Any, Optional, Sequence

import numpy as np

from ...domain._errors import DiamondError, DnnlError
from ...domain._resource import NativeHandle
from ..native import load_native
from ._constants import FORMAT_KIND, dec_status
from ._structs import (
    dnnl_eltwise_desc_t,
    dnnl_exec_arg_t,
    dnnl_inner_product_desc_t,
    dnnl_memory_desc_t,
)

logger = logging.getLogger(__name__)

_MD_P = POINTER(dnnl_memory_desc_t)


def _bind_dnnl(lib: Any) -> None:
    if getattr(lib, "_deepdiamond_dnnl_bound", False):
        return

    def sig(name: str, argtypes: list, restype: Any = c_int) -> None:
        fn = getattr(lib, name)
        fn.argtypes = argtypes
        fn.restype = restype

    # engine / stream
    sig("dnnl_engine_create", [POINTER(c_void_p), c_int, c_size_t])
    sig("dnnl_engine_get_count", [c_int], c_size_t)
    sig("dnnl_engine_get_kind", [c_void_p, POINTER(c_int)])
    sig("dnnl_engine_destroy", [c_void_p])
    sig("dnnl_stream_create", [POINTER(c_void_p), c_void_p, ctypes.c_uint])
    sig("dnnl_stream_wait", [c_void_p])
    sig("dnnl_stream_destroy", [c_void_p])

    # memory descriptors
    sig("dnnl_memory_desc_init_by_tag", [_MD_P, c_int, POINTER(c_int64), c_int, c_int])
    sig(
        "dnnl_memory_desc_init_by_strides",
        [_MD_P, c_int, POINTER(c_int64), c_int, POINTER(c_int64)],
    )
    sig(
        "dnnl_memory_desc_init_submemory",
        [_MD_P, _MD_P, POINTER(c_int64), POINTER(c_int64)],
    )
    sig("dnnl_memory_desc_equal", [_MD_P, _MD_P])
    sig("dnnl_memory_desc_get_size", [_MD_P], c_size_t)

    # memory
    sig("dnnl_memory_create", [POINTER(c_void_p), _MD_P, c_void_p, c_void_p])
    sig("dnnl_memory_set_data_handle", [c_void_p, c_void_p])
    sig("dnnl_memory_get_engine", [c_void_p, POINTER(c_void_p)])
    sig("dnnl_memory_destroy", [c_void_p])

    # primitive descriptors / primitives
    sig("dnnl_primitive_desc_create", [POINTER(c_void_p), c_void_p, c_void_p, c_void_p, c_void_p])
    sig("dnnl_primitive_desc_clone", [POINTER(c_void_p), c_void_p])
    sig("dnnl_primitive_desc_query_md", [c_void_p, c_int, c_int], _MD_P)
    sig("dnnl_primitive_desc_destroy", [c_void_p])
    sig("dnnl_primitive_create", [POINTER(c_void_p), c_void_p])
    sig("dnnl_primitive_execute", [c_void_p, c_void_p, c_int, POINTER(dnnl_exec_arg_t)])
    sig("dnnl_primitive_destroy", [c_void_p])

    # operation descriptors
    sig(
        "dnnl_eltwise_forward_desc_init",
        [POINTER(dnnl_eltwise_desc_t), c_int, c_int, _MD_P, c_float, c_float],
    )
    sig(
        "dnnl_eltwise_backward_desc_init",
        [POINTER(dnnl_eltwise_desc_t), c_int, _MD_P, _MD_P, c_float, c_float],
    )
    sig(
        "dnnl_sum_primitive_desc_create",
        [POINTER(c_void_p), _MD_P, c_int, POINTER(c_float), _MD_P, c_void_p, c_void_p],
    )
    sig(
        "dnnl_reorder_primitive_desc_create",
        [POINTER(c_void_p), _MD_P, c_void_p, _MD_P, c_void_p, c_void_p],
    )
    sig(
        "dnnl_inner_product_forward_desc_init",
        [POINTER(dnnl_inner_product_desc_t), c_int, _MD_P, _MD_P, _MD_P, _MD_P],
    )
    sig(
        "dnnl_inner_product_backward_data_desc_init",
        [POINTER(dnnl_inner_product_desc_t), _MD_P, _MD_P, _MD_P],
    )
    sig(
        "dnnl_inner_product_backward_weights_desc_init",
        [POINTER(dnnl_inner_product_desc_t), _MD_P, _MD_P, _MD_P, _MD_P],
    )

    setattr(lib, "_deepdiamond_dnnl_bound", True)


def dnnl_lib(lib_path: Optional[str] = None) -> Any:
    """Load the DNNL library and declare the signatures used by this package."""
    lib = load_native("dnnl", lib_path)
    _bind_dnnl(lib)
    return lib


def _check(status: int, details: Any = None) -> None:
    if status != 0:
        raise DnnlError(status, dec_status(status), details)


def _destroy(fn: Any, handle: int) -> None:
    _check(fn(c_void_p(handle)), "destroy")


def _out_handle(ref: c_void_p) -> int:
    return int(ref.value or 0)


# ================================ Handles ======================================


class Engine(NativeHandle):
    kind = "engine"

    def __init__(self, lib: Any, handle: int, owned: bool = True) -> None:
        destructor = functools.partial(_destroy, lib.dnnl_engine_destroy) if owned else None
        super().__init__(lib, handle, destructor)


class Stream(NativeHandle):
    kind = "stream"

    def __init__(self, lib: Any, handle: int) -> None:
        super().__init__(lib, handle, functools.partial(_destroy, lib.dnnl_stream_destroy))


class PrimitiveDesc(NativeHandle):
    kind = "primitive_desc"

    def __init__(self, lib: Any, handle: int) -> None:
        super().__init__(
            lib, handle, functools.partial(_destroy, lib.dnnl_primitive_desc_destroy)
        )

    def clone(self) -> "PrimitiveDesc":
        return primitive_desc_clone(self.lib, self)


class Primitive(NativeHandle):
    kind = "primitive"

    def __init__(self, lib: Any, handle: int) -> None:
        super().__init__(lib, handle, functools.partial(_destroy, lib.dnnl_primitive_destroy))


class Memory(NativeHandle):
    """
    A DNNL memory object over a host byte buffer.

    Attributes
    ----------
    md : dnnl_memory_desc_t
        The descriptor the memory was created with.
    buf : np.ndarray | None
        Flat uint8 view of the underlying buffer (None once released).
    owns_buffer : bool
        True if the buffer was allocated for (and dies with) this memory.
    size : int
        Bytes DNNL reports for `md`.
    extent : int
        Bytes from the data handle to the last addressed element, inclusive.
    """

    kind = "memory"

    def __init__(
        self,
        lib: Any,
        handle: int,
        md: dnnl_memory_desc_t,
        buf: np.ndarray,
        owns_buffer: bool,
        size: int,
    ) -> None:
        super().__init__(lib, handle, functools.partial(_destroy, lib.dnnl_memory_destroy))
        self.md = md
        self.buf: Optional[np.ndarray] = buf
        self.owns_buffer = owns_buffer
        self.size = int(size)
        self.extent = md_extent(md, size)
        self.offset = 0

    @property
    def capacity(self) -> int:
        return 0 if self.buf is None else int(self.buf.nbytes)

    @property
    def base_address(self) -> int:
        return 0 if self.buf is None else int(self.buf.ctypes.data)

    def release(self) -> bool:
        super().release()
        self.buf = None
        return True


# ================================ Engine / stream ===============================


def engine_create(lib: Any, kind: int, index: int) -> Engine:
    h = c_void_p()
    _check(lib.dnnl_engine_create(byref(h), int(kind), int(index)), {"kind": kind, "id": index})
    logger.debug("Created DNNL engine kind=%d id=%d", kind, index)
    return Engine(lib, _out_handle(h))


def engine_count(lib: Any, kind: int) -> int:
    return int(lib.dnnl_engine_get_count(int(kind)))


def engine_kind(lib: Any, eng: Engine) -> int:
    k = c_int()
    _check(lib.dnnl_engine_get_kind(c_void_p(eng.checked()), byref(k)))
    return int(k.value)


def stream_create(lib: Any, eng: Engine, flags: int) -> Stream:
    h = c_void_p()
    _check(lib.dnnl_stream_create(byref(h), c_void_p(eng.checked()), int(flags)))
    return Stream(lib, _out_handle(h))


def stream_wait(lib: Any, strm: Stream) -> Stream:
    _check(lib.dnnl_stream_wait(c_void_p(strm.checked())))
    return strm


# ================================ Memory descriptors ============================


def _dims_array(values: Sequence[int]) -> ctypes.Array:
    return (c_int64 * len(values))(*[int(v) for v in values])


def memory_desc_by_tag(lib: Any, dims: Sequence[int], data_type: int, tag: int) -> dnnl_memory_desc_t:
    md = dnnl_memory_desc_t()
    _check(
        lib.dnnl_memory_desc_init_by_tag(
            byref(md), len(dims), _dims_array(dims), int(data_type), int(tag)
        ),
        {"dims": list(dims), "tag": tag},
    )
    return md


def memory_desc_by_strides(
    lib: Any, dims: Sequence[int], data_type: int, strides: Sequence[int]
) -> dnnl_memory_desc_t:
    if len(strides) != len(dims):
        raise DiamondError(
            "Strides must match the dimensions.",
            {"dims": list(dims), "strides": list(strides)},
        )
    md = dnnl_memory_desc_t()
    _check(
        lib.dnnl_memory_desc_init_by_strides(
            byref(md), len(dims), _dims_array(dims), int(data_type), _dims_array(strides)
        ),
        {"dims": list(dims), "strides": list(strides)},
    )
    return md


def submemory_desc(
    lib: Any, parent: dnnl_memory_desc_t, dims: Sequence[int], offsets: Sequence[int]
) -> dnnl_memory_desc_t:
    md = dnnl_memory_desc_t()
    _check(
        lib.dnnl_memory_desc_init_submemory(
            byref(md), byref(parent), _dims_array(dims), _dims_array(offsets)
        ),
        {"dims": list(dims), "offsets": list(offsets)},
    )
    return md


def memory_desc_equal(lib: Any, x: dnnl_memory_desc_t, y: dnnl_memory_desc_t) -> bool:
    return x is y or int(lib.dnnl_memory_desc_equal(byref(x), byref(y))) == 1


def memory_desc_size(lib: Any, md: dnnl_memory_desc_t) -> int:
    return int(lib.dnnl_memory_desc_get_size(byref(md)))


def md_dims(md: dnnl_memory_desc_t) -> list[int]:
    return [int(d) for d in md.dims[: md.ndims]]


def md_strides(md: dnnl_memory_desc_t) -> list[int]:
    return [int(s) for s in md.format_desc.blocking.strides[: md.ndims]]


_ITEM_SIZE = {1: 2, 2: 2, 3: 4, 4: 4, 5: 1, 6: 1}


def md_extent(md: dnnl_memory_desc_t, size: int) -> int:
    """
    Bytes spanned from the start of the handle to the last element addressed
    by `md`, `offset0` included.

    Exact for plain strided layouts; blocked and opaque layouts fall back to
    `size`.
    """
    if md.format_kind != FORMAT_KIND["blocked"] or md.format_desc.blocking.inner_nblks != 0:
        return int(size)
    item = _ITEM_SIZE.get(int(md.data_type))
    if item is None or md.ndims == 0:
        return int(size)
    last = sum((d - 1) * s for d, s in zip(md_dims(md), md_strides(md)))
    return (int(md.offset0) + last + 1) * item


# ================================ Memory ========================================


def byte_view(buf: Any) -> np.ndarray:
    """Return a flat, writable uint8 view of any contiguous host buffer."""
    if isinstance(buf, np.ndarray):
        if not buf.flags["C_CONTIGUOUS"]:
            raise DiamondError("Memory buffers must be C-contiguous.", {"strides": buf.strides})
        return buf.reshape(-1).view(np.uint8)
    return np.frombuffer(buf, dtype=np.uint8)


def memory_create(
    lib: Any,
    md: dnnl_memory_desc_t,
    eng: Engine,
    buf: np.ndarray,
    owns_buffer: bool,
) -> Memory:
    size = memory_desc_size(lib, md)
    h = c_void_p()
    _check(
        lib.dnnl_memory_create(
            byref(h), byref(md), c_void_p(eng.checked()), c_void_p(int(buf.ctypes.data))
        ),
        {"size": size},
    )
    return Memory(lib, _out_handle(h), md, buf, owns_buffer, size)


def memory_set_data_handle(lib: Any, mem: Memory, address: int) -> Memory:
    _check(lib.dnnl_memory_set_data_handle(c_void_p(mem.checked()), c_void_p(int(address))))
    return mem


def memory_get_engine(lib: Any, mem: Memory) -> Engine:
    h = c_void_p()
    _check(lib.dnnl_memory_get_engine(c_void_p(mem.checked()), byref(h)))
    # the engine is still owned by whoever created the memory
    return Engine(lib, _out_handle(h), owned=False)


# ================================ Primitives ====================================


def _opt_handle(x: Optional[NativeHandle]) -> Optional[c_void_p]:
    return None if x is None else c_void_p(x.checked())


def primitive_desc_create(
    lib: Any,
    op_desc: Any,
    eng: Engine,
    hint_pd: Optional[PrimitiveDesc] = None,
    attr: Optional[NativeHandle] = None,
) -> PrimitiveDesc:
    h = c_void_p()
    _check(
        lib.dnnl_primitive_desc_create(
            byref(h),
            byref(op_desc),
            _opt_handle(attr),
            c_void_p(eng.checked()),
            _opt_handle(hint_pd),
        ),
        {"op": type(op_desc).__name__},
    )
    return PrimitiveDesc(lib, _out_handle(h))


def primitive_desc_clone(lib: Any, pd: PrimitiveDesc) -> PrimitiveDesc:
    h = c_void_p()
    _check(lib.dnnl_primitive_desc_clone(byref(h), c_void_p(pd.checked())))
    return PrimitiveDesc(lib, _out_handle(h))


def query_md(lib: Any, pd: PrimitiveDesc, what: int, index: int = 0) -> Optional[dnnl_memory_desc_t]:
    p = lib.dnnl_primitive_desc_query_md(c_void_p(pd.checked()), int(what), int(index))
    if not p:
        return None
    return dnnl_memory_desc_t.from_buffer_copy(p.contents)


def primitive_create(lib: Any, pd: PrimitiveDesc) -> Primitive:
    h = c_void_p()
    _check(lib.dnnl_primitive_create(byref(h), c_void_p(pd.checked())))
    return Primitive(lib, _out_handle(h))


def exec_args(pairs: Sequence[tuple[int, Memory]]) -> ctypes.Array:
    """Build a `dnnl_exec_arg_t` array from (argument key, memory) pairs."""
    args = (dnnl_exec_arg_t * len(pairs))()
    for i, (key, mem) in enumerate(pairs):
        args[i].arg = int(key)
        args[i].memory = mem.checked()
    return args


def primitive_execute(lib: Any, strm: Stream, p: Primitive, args: ctypes.Array) -> Stream:
    _check(
        lib.dnnl_primitive_execute(
            c_void_p(p.checked()), c_void_p(strm.checked()), len(args), args
        ),
        {"nargs": len(args)},
    )
    return strm


# ================================ Operation descriptors =========================


def eltwise_forward_desc(
    lib: Any, prop_kind: int, alg_kind: int, md: dnnl_memory_desc_t, alpha: float, beta: float
) -> dnnl_eltwise_desc_t:
    desc = dnnl_eltwise_desc_t()
    _check(
        lib.dnnl_eltwise_forward_desc_init(
            byref(desc), int(prop_kind), int(alg_kind), byref(md), float(alpha), float(beta)
        )
    )
    return desc


def eltwise_backward_desc(
    lib: Any,
    alg_kind: int,
    diff_md: dnnl_memory_desc_t,
    md: dnnl_memory_desc_t,
    alpha: float,
    beta: float,
) -> dnnl_eltwise_desc_t:
    desc = dnnl_eltwise_desc_t()
    _check(
        lib.dnnl_eltwise_backward_desc_init(
            byref(desc), int(alg_kind), byref(diff_md), byref(md), float(alpha), float(beta)
        )
    )
    return desc


def sum_primitive_desc(
    lib: Any,
    eng: Engine,
    dst: dnnl_memory_desc_t,
    scales: Sequence[float],
    srcs: Sequence[dnnl_memory_desc_t],
) -> PrimitiveDesc:
    n = len(srcs)
    c_scales = (c_float * n)(*[float(s) for s in scales])
    c_srcs = (dnnl_memory_desc_t * n)(*srcs)
    h = c_void_p()
    _check(
        lib.dnnl_sum_primitive_desc_create(
            byref(h), byref(dst), n, c_scales, c_srcs, None, c_void_p(eng.checked())
        ),
        {"n": n, "scales": list(scales)},
    )
    return PrimitiveDesc(lib, _out_handle(h))


def reorder_primitive_desc(
    lib: Any,
    src: dnnl_memory_desc_t,
    src_eng: Engine,
    dst: dnnl_memory_desc_t,
    dst_eng: Engine,
) -> PrimitiveDesc:
    h = c_void_p()
    _check(
        lib.dnnl_reorder_primitive_desc_create(
            byref(h),
            byref(src),
            c_void_p(src_eng.checked()),
            byref(dst),
            c_void_p(dst_eng.checked()),
            None,
        )
    )
    return PrimitiveDesc(lib, _out_handle(h))


def inner_product_forward_desc(
    lib: Any,
    prop_kind: int,
    src: dnnl_memory_desc_t,
    weights: dnnl_memory_desc_t,
    bias: dnnl_memory_desc_t,
    dst: dnnl_memory_desc_t,
) -> dnnl_inner_product_desc_t:
    desc = dnnl_inner_product_desc_t()
    _check(
        lib.dnnl_inner_product_forward_desc_init(
            byref(desc), int(prop_kind), byref(src), byref(weights), byref(bias), byref(dst)
        )
    )
    return desc


def inner_product_backward_data_desc(
    lib: Any,
    diff_src: dnnl_memory_desc_t,
    weights: dnnl_memory_desc_t,
    diff_dst: dnnl_memory_desc_t,
) -> dnnl_inner_product_desc_t:
    desc = dnnl_inner_product_desc_t()
    _check(
        lib.dnnl_inner_product_backward_data_desc_init(
            byref(desc), byref(diff_src), byref(weights), byref(diff_dst)
        )
    )
    return desc


def inner_product_backward_weights_desc(
    lib: Any,
    src: dnnl_memory_desc_t,
    diff_weights: dnnl_memory_desc_t,
    diff_bias: dnnl_memory_desc_t,
    diff_dst: dnnl_memory_desc_t,
) -> dnnl_inner_product_desc_t:
    desc = dnnl_inner_product_desc_t()
    _check(
        lib.dnnl_inner_product_backward_weights_desc_init(
            byref(desc), byref(src), byref(diff_weights), byref(diff_bias), byref(diff_dst)
        )
    )
    return desc
