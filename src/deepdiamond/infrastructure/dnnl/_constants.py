"""
Keyword tables for the DNNL (oneDNN v1.x) C API.

Every enum the public API accepts is passed as a keyword (a lowercase,
hyphenated string such as "backward-data"); these tables translate keywords
into the integer values defined by `dnnl_types.h`. Underscores are accepted in
place of hyphens.

Decoding goes the other way and always yields the canonical keyword, never an
alias ("sigmoid" encodes to the logistic algorithm, which decodes as
"logistic").
"""

from __future__ import annotations

from ...domain._errors import UnsupportedDataTypeError
from ...domain._layout import TAG_ALIASES
from ...domain._tensor_desc import data_type_info
from .._keywords import decoder, enc_keyword, mask, normalize

ENGINE_KIND: dict[str, int] = {"any": 0, "cpu": 1, "gpu": 2}

STREAM_FLAGS: dict[str, int] = {
    "default-order": 0x1,
    "in-order": 0x2,
    "out-of-order": 0x4,
}
STREAM_DEFAULT_FLAGS = STREAM_FLAGS["in-order"]

DATA_TYPE: dict[str, int] = {
    "undef": 0,
    "half": 1,
    "bf16": 2,
    "float": 3,
    "int": 4,
    "byte": 5,
    "uint8": 6,
}

FORMAT_KIND: dict[str, int] = {
    "undef": 0,
    "any": 1,
    "blocked": 2,
    "wino": 3,
    "rnn-packed": 4,
}

_GENERIC_TAGS: dict[str, int] = {
    "undef": 0,
    "any": 1,
    "a": 2,
    "ab": 3,
    "abc": 4,
    "abcd": 5,
    "abcde": 6,
    "abcdef": 7,
    "abdec": 8,
    "acb": 9,
    "acbde": 10,
    "acdb": 11,
    "acdeb": 12,
    "ba": 13,
    "bac": 14,
    "bacd": 15,
    "bca": 16,
    "bcda": 17,
    "bcdea": 18,
    "cba": 19,
    "cdba": 20,
    "cdeba": 21,
    "decab": 22,
}

FORMAT_TAG: dict[str, int] = dict(_GENERIC_TAGS)
FORMAT_TAG.update(
    {alias: _GENERIC_TAGS[tag] for alias, tag in TAG_ALIASES.items() if tag in _GENERIC_TAGS}
)

FORWARD_PROP_KIND: dict[str, int] = {
    "training": 64,
    "inference": 96,
    "scoring": 96,
}

BACKWARD_PROP_KIND: dict[str, int] = {
    "backward": 128,
    "backward-data": 160,
    "backward-weights": 192,
    "backward-bias": 193,
}

PROP_KIND: dict[str, int] = {"undef": 0, **FORWARD_PROP_KIND, **BACKWARD_PROP_KIND}

PRIMITIVE_KIND: dict[str, int] = {
    "undef": 0,
    "reorder": 1,
    "shuffle": 2,
    "concat": 3,
    "sum": 4,
    "convolution": 5,
    "deconvolution": 6,
    "eltwise": 7,
    "softmax": 8,
    "pooling": 9,
    "lrn": 10,
    "batch-normalization": 11,
    "layer-normalization": 12,
    "inner-product": 13,
    "rnn": 14,
    "gemm": 15,
    "binary": 16,
    "logsoftmax": 17,
    "matmul": 18,
    "resampling": 19,
}

ELTWISE_ALG_KIND: dict[str, int] = {
    "relu": 0x1F,
    "tanh": 0x2F,
    "elu": 0x3F,
    "square": 0x4F,
    "abs": 0x5F,
    "sqrt": 0x6F,
    "linear": 0x7F,
    "bounded-relu": 0x8F,
    "soft-relu": 0x9F,
    "logistic": 0xAF,
    "exp": 0xBF,
    "gelu": 0xCF,
}

_ELTWISE_ALIASES: dict[str, str] = {"sigmoid": "logistic", "identity": "linear"}

QUERY: dict[str, int] = {
    "primitive-kind": 2,
    "src-md": 129,
    "diff-src-md": 130,
    "weights-md": 131,
    "diff-weights-md": 132,
    "dst-md": 133,
    "diff-dst-md": 134,
    "workspace-md": 135,
    "scratchpad-md": 136,
}

ARG_SRC = 1
ARG_DST = 17
ARG_WEIGHTS = 33
ARG_BIAS = 41
ARG_WORKSPACE = 64
ARG_DIFF_SRC = 129
ARG_DIFF_DST = 145
ARG_DIFF_WEIGHTS = 161
ARG_DIFF_BIAS = 169
ARG_MULTIPLE_SRC = 1024

STATUS: dict[int, str] = {
    0: "success",
    1: "out-of-memory",
    2: "invalid-arguments",
    3: "unimplemented",
    4: "iterator-ends",
    5: "runtime-error",
    6: "not-required",
}


dec_engine_kind = decoder(ENGINE_KIND, "engine kind")
dec_data_type = decoder(DATA_TYPE, "data type")
dec_format_tag = decoder(_GENERIC_TAGS, "format tag")
dec_prop_kind = decoder(PROP_KIND, "prop kind")
dec_primitive_kind = decoder(PRIMITIVE_KIND, "primitive kind")
dec_eltwise_alg_kind = decoder(ELTWISE_ALG_KIND, "eltwise algorithm")


def dec_status(code: int) -> str:
    return STATUS.get(int(code), "unknown")


def enc_engine_kind(kind: str) -> int:
    return enc_keyword(ENGINE_KIND, kind, "engine kind")


def enc_format_tag(tag: str) -> int:
    return enc_keyword(FORMAT_TAG, tag, "format tag")


def enc_prop_kind(kind: str) -> int:
    return enc_keyword(PROP_KIND, kind, "prop kind")


def enc_forward_prop_kind(kind: str) -> int:
    return enc_keyword(FORWARD_PROP_KIND, kind, "forward prop kind")


def enc_eltwise_alg_kind(alg: str) -> int:
    k = normalize(alg)
    return enc_keyword(ELTWISE_ALG_KIND, _ELTWISE_ALIASES.get(k, k), "eltwise algorithm")


def enc_data_type(data_type: str) -> int:
    """
    Encode a data type keyword for DNNL.

    Raises
    ------
    ValueError
        If the keyword is not a known data type at all.
    UnsupportedDataTypeError
        If the data type exists but DNNL does not provide it
        (e.g. "double").
    """
    name = data_type_info(data_type).name
    try:
        return DATA_TYPE[name]
    except KeyError:
        raise UnsupportedDataTypeError(data_type, "DNNL") from None
