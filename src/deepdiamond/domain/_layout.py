"""
Physical layout tags for dense tensors.

Both backends describe a tensor by its logical dimensions (always given in
"abcdef" order, e.g. N, C, H, W) plus a physical layout. A layout is either
an explicit strides vector or a *tag*: a string naming the order in which
logical dimensions are laid out in memory, outermost first.

Tags come in two spellings:

- generic tags, one letter per logical dimension: "a", "ab", "acdb", ...
- familiar aliases: "nc", "nchw", "nhwc", "oihw", "hwio", "tnc", ...

Every alias resolves to exactly one generic tag. The DNNL backend passes
tags to the native library; the cuDNN backend, which only understands
strides for most shapes, converts tags into dense strides with
`dense_strides`.
"""

from __future__ import annotations

from typing import Sequence

ANY = "any"

TAG_ALIASES: dict[str, str] = {
    "x": "a",
    "nc": "ab",
    "cn": "ba",
    "tn": "ab",
    "nt": "ba",
    "ncw": "abc",
    "nwc": "acb",
    "nchw": "abcd",
    "nhwc": "acdb",
    "chwn": "bcda",
    "ncdhw": "abcde",
    "ndhwc": "acdeb",
    "oi": "ab",
    "io": "ba",
    "oiw": "abc",
    "wio": "cba",
    "oihw": "abcd",
    "hwio": "cdba",
    "ihwo": "bcda",
    "iohw": "bacd",
    "oidhw": "abcde",
    "dhwio": "cdeba",
    "goiw": "abcd",
    "goihw": "abcde",
    "hwigo": "decab",
    "giohw": "acbde",
    "goidhw": "abcdef",
    "tnc": "abc",
    "ntc": "bac",
    "ldnc": "abcd",
    "ldigo": "abcde",
    "ldgoi": "abdec",
    "ldgo": "abcd",
}

_LETTERS = "abcdef"


def canonical_tag(tag: str) -> str:
    """
    Resolve a tag or alias into its generic "abc" spelling.

    Parameters
    ----------
    tag : str
        A generic tag ("acdb") or an alias ("nhwc").

    Returns
    -------
    str
        The generic tag.

    Raises
    ------
    ValueError
        If `tag` is neither a known alias nor a permutation of the first
        letters of "abcdef".
    """
    t = str(tag).lower()
    t = TAG_ALIASES.get(t, t)
    n = len(t)
    if n == 0 or n > len(_LETTERS) or sorted(t) != list(_LETTERS[:n]):
        raise ValueError(f"Unknown layout tag: {tag!r}")
    return t


def tag_ndims(tag: str) -> int:
    """Return the number of logical dimensions described by `tag`."""
    return len(canonical_tag(tag))


def default_tag(ndims: int) -> str:
    """
    Return the row-major generic tag for `ndims` dimensions.

    Raises
    ------
    ValueError
        If `ndims` is not in [1, 6].
    """
    if not 1 <= int(ndims) <= len(_LETTERS):
        raise ValueError(f"Unsupported number of dimensions: {ndims}")
    return _LETTERS[: int(ndims)]


def dense_strides(shape: Sequence[int], tag: str) -> tuple[int, ...]:
    """
    Compute element strides of a dense tensor stored in `tag` order.

    Parameters
    ----------
    shape : Sequence[int]
        Logical dimensions in "abcdef" order.
    tag : str
        Physical layout, outermost dimension first.

    Returns
    -------
    tuple[int, ...]
        Strides, in elements, indexed by logical dimension.

    Raises
    ------
    ValueError
        If the tag rank differs from `len(shape)`.

    Examples
    --------
    >>> dense_strides((2, 3, 4, 5), "nchw")
    (60, 20, 5, 1)
    >>> dense_strides((2, 3, 4, 5), "nhwc")
    (60, 1, 15, 3)
    """
    t = canonical_tag(tag)
    if len(t) != len(shape):
        raise ValueError(
            f"Layout {tag!r} describes {len(t)} dimensions, shape has {len(shape)}"
        )
    strides = [0] * len(shape)
    acc = 1
    for letter in reversed(t):
        d = _LETTERS.index(letter)
        strides[d] = acc
        acc *= int(shape[d])
    return tuple(strides)


def is_dense(shape: Sequence[int], strides: Sequence[int]) -> bool:
    """
    Check whether `strides` describe a gap-free layout of `shape`.

    A layout is dense when sorting dimensions by decreasing stride yields
    exactly the strides of some tag order.
    """
    if len(shape) != len(strides):
        return False
    order = sorted(range(len(shape)), key=lambda d: (-int(strides[d]), d))
    acc = 1
    for d in reversed(order):
        if int(shape[d]) != 1 and int(strides[d]) != acc:
            return False
        acc *= int(shape[d])
    return True
