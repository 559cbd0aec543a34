"""
Backend-agnostic tensor descriptors.

A tensor descriptor is the triple (shape, data type, layout). Backends
translate it into their own native descriptor (a DNNL memory descriptor or a
cuDNN tensor descriptor), but factories, blueprints and user code exchange
the plain Python form defined here.

- `shape` is a tuple of positive ints in logical "abcdef" order.
- `data_type` is a keyword from `DATA_TYPES`.
- `layout` is a tag keyword (see `deepdiamond.domain._layout`), the keyword
  "any" (let the backend decide), or an explicit tuple of element strides.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, Union, runtime_checkable

import numpy as np

from ._layout import ANY, canonical_tag, dense_strides

Layout = Union[str, tuple[int, ...]]


@dataclass(frozen=True)
class DataType:
    """
    Metadata of one element type.

    Attributes
    ----------
    name : str
        Canonical keyword.
    size : int
        Size of one element in bytes.
    numpy : np.dtype
        Host dtype used to view buffers of this type.
    """

    name: str
    size: int
    numpy: np.dtype


DATA_TYPES: dict[str, DataType] = {
    "float": DataType("float", 4, np.dtype(np.float32)),
    "double": DataType("double", 8, np.dtype(np.float64)),
    "half": DataType("half", 2, np.dtype(np.float16)),
    "bf16": DataType("bf16", 2, np.dtype(np.uint16)),
    "int": DataType("int", 4, np.dtype(np.int32)),
    "long": DataType("long", 8, np.dtype(np.int64)),
    "byte": DataType("byte", 1, np.dtype(np.int8)),
    "uint8": DataType("uint8", 1, np.dtype(np.uint8)),
}

_DATA_TYPE_ALIASES = {
    "f32": "float",
    "float32": "float",
    "f64": "double",
    "float64": "double",
    "f16": "half",
    "float16": "half",
    "s32": "int",
    "int32": "int",
    "s64": "long",
    "int64": "long",
    "s8": "byte",
    "int8": "byte",
    "u8": "uint8",
}


def data_type_info(data_type: str) -> DataType:
    """
    Look up metadata for a data type keyword (or a common alias).

    Raises
    ------
    ValueError
        If the keyword is unknown.
    """
    key = str(data_type).lower()
    key = _DATA_TYPE_ALIASES.get(key, key)
    try:
        return DATA_TYPES[key]
    except KeyError:
        raise ValueError(
            f"Unknown data type {data_type!r}. Expected one of {sorted(DATA_TYPES)}"
        ) from None


def data_type_of(dtype: np.dtype) -> str:
    """Return the keyword matching a NumPy dtype (bf16 excluded)."""
    dt = np.dtype(dtype)
    for name, info in DATA_TYPES.items():
        if name != "bf16" and info.numpy == dt:
            return name
    raise ValueError(f"No data type keyword for numpy dtype {dt}")


@runtime_checkable
class TensorDescriptor(Protocol):
    """
    Structural contract of anything that describes a tensor.

    Tensors themselves satisfy it, so any tensor can be passed wherever a
    descriptor is expected.
    """

    @property
    def shape(self) -> tuple[int, ...]: ...

    @property
    def data_type(self) -> str: ...

    @property
    def layout(self) -> Layout: ...


@dataclass(frozen=True)
class TensorDesc:
    """
    Immutable tensor descriptor value.

    Parameters
    ----------
    shape : tuple[int, ...]
        Logical dimensions, all positive.
    data_type : str
        Canonical data type keyword.
    layout : str | tuple[int, ...]
        Tag keyword, "any", or element strides (same length as `shape`).
    """

    shape: tuple[int, ...]
    data_type: str = "float"
    layout: Layout = ANY

    def __post_init__(self) -> None:
        shape = tuple(int(d) for d in self.shape)
        if not shape or any(d <= 0 for d in shape):
            raise ValueError(f"Tensor shape must be non-empty and positive: {shape}")
        object.__setattr__(self, "shape", shape)
        object.__setattr__(self, "data_type", data_type_info(self.data_type).name)

        layout = self.layout
        if isinstance(layout, str):
            if layout != ANY:
                t = canonical_tag(layout)
                if len(t) != len(shape):
                    raise ValueError(
                        f"Layout {layout!r} does not match shape {shape}"
                    )
        else:
            layout = tuple(int(s) for s in layout)
            if len(layout) != len(shape):
                raise ValueError(f"Strides {layout} do not match shape {shape}")
            object.__setattr__(self, "layout", layout)

    @property
    def ndims(self) -> int:
        return len(self.shape)

    @property
    def item_size(self) -> int:
        return DATA_TYPES[self.data_type].size

    def count(self) -> int:
        """Return the number of elements."""
        return int(np.prod(self.shape, dtype=np.int64))


def tensor_desc(
    shape: Sequence[int],
    data_type: str = "float",
    layout: Optional[Layout] = None,
) -> TensorDesc:
    """
    Build a `TensorDesc`.

    Parameters
    ----------
    shape : Sequence[int]
        Logical dimensions.
    data_type : str, optional
        Data type keyword. Defaults to "float".
    layout : str | Sequence[int] | None, optional
        Tag, "any", or strides. None means "any".

    Returns
    -------
    TensorDesc
    """
    return TensorDesc(tuple(shape), data_type, ANY if layout is None else layout)


def desc_of(x: TensorDescriptor) -> TensorDesc:
    """Snapshot any `TensorDescriptor` (including tensors) as a `TensorDesc`."""
    if isinstance(x, TensorDesc):
        return x
    return TensorDesc(tuple(x.shape), x.data_type, x.layout)


def strides_of(desc: TensorDescriptor) -> tuple[int, ...]:
    """
    Resolve the element strides of a descriptor.

    A tag layout resolves to dense strides in that tag order; "any" resolves
    to row-major strides.
    """
    layout = desc.layout
    shape = tuple(desc.shape)
    if isinstance(layout, str):
        if layout == ANY:
            return dense_strides(shape, "abcdef"[: len(shape)])
        return dense_strides(shape, layout)
    return tuple(int(s) for s in layout)
