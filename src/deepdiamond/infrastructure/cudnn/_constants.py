"""
Keyword tables for the cuDNN, CUDA runtime and cuBLAS C APIs.

Values follow `cudnn.h` (v7 / v8), `driver_types.h` and `cublas_api.h`.
As with DNNL, aliases encode to the same value and decode to the canonical
keyword ("sigmoid" decodes as "logistic", "linear" as "identity").
"""

from __future__ import annotations

from ...domain._errors import UnsupportedDataTypeError
from ...domain._tensor_desc import data_type_info
from .._keywords import decoder, enc_keyword, normalize

DATA_TYPE: dict[str, int] = {
    "float": 0,
    "double": 1,
    "half": 2,
    "byte": 3,
    "int": 4,
    "byte-x4": 5,
    "uint8": 6,
    "uint8-x4": 7,
    "byte-x32": 8,
    "bf16": 9,
    "long": 10,
}

TENSOR_FORMAT: dict[str, int] = {
    "nchw": 0,
    "nhwc": 1,
    "nchw-vect-c": 2,
}

ACTIVATION_MODE: dict[str, int] = {
    "logistic": 0,
    "relu": 1,
    "tanh": 2,
    "clipped-relu": 3,
    "elu": 4,
    "identity": 5,
}
_ACTIVATION_ALIASES = {"sigmoid": "logistic", "linear": "identity"}

NAN_PROPAGATION: dict[str, int] = {
    "not-propagate": 0,
    "propagate": 1,
}

REDUCE_TENSOR_OP: dict[str, int] = {
    "add": 0,
    "mul": 1,
    "min": 2,
    "max": 3,
    "amax": 4,
    "avg": 5,
    "norm1": 6,
    "norm2": 7,
    "mul-no-zeros": 8,
}

REDUCE_TENSOR_INDICES: dict[str, int] = {
    "no-indices": 0,
    "flattened-indices": 1,
}

INDICES_TYPE: dict[str, int] = {
    "32bit": 0,
    "64bit": 1,
    "16bit": 2,
    "8bit": 3,
}

STATUS: dict[int, str] = {
    0: "success",
    1: "not-initialized",
    2: "alloc-failed",
    3: "bad-param",
    4: "internal-error",
    5: "invalid-value",
    6: "arch-mismatch",
    7: "mapping-error",
    8: "execution-failed",
    9: "not-supported",
    10: "license-error",
    11: "runtime-prerequisite-missing",
    12: "runtime-in-progress",
    13: "runtime-fp-overflow",
}

# CUDA runtime

MEMCPY_KIND: dict[str, int] = {
    "host-to-host": 0,
    "host-to-device": 1,
    "device-to-host": 2,
    "device-to-device": 3,
    "default": 4,
}

CUDA_STATUS: dict[int, str] = {
    0: "success",
    1: "invalid-value",
    2: "memory-allocation",
    3: "initialization-error",
    4: "cudart-unloading",
    35: "insufficient-driver",
    100: "no-device",
    101: "invalid-device",
    209: "no-kernel-image-for-device",
    400: "invalid-resource-handle",
    700: "illegal-address",
    999: "unknown",
}

# cuBLAS

CUBLAS_OPERATION: dict[str, int] = {"n": 0, "t": 1, "c": 2}

CUBLAS_STATUS: dict[int, str] = {
    0: "success",
    1: "not-initialized",
    3: "alloc-failed",
    7: "invalid-value",
    8: "arch-mismatch",
    11: "mapping-error",
    13: "execution-failed",
    14: "internal-error",
    15: "not-supported",
    16: "license-error",
}


dec_data_type = decoder(DATA_TYPE, "data type")
dec_activation_mode = decoder(ACTIVATION_MODE, "activation mode")
dec_reduce_tensor_op = decoder(REDUCE_TENSOR_OP, "reduce tensor op")


def dec_status(code: int) -> str:
    return STATUS.get(int(code), "unknown")


def dec_cuda_status(code: int) -> str:
    return CUDA_STATUS.get(int(code), "unknown")


def dec_cublas_status(code: int) -> str:
    return CUBLAS_STATUS.get(int(code), "unknown")


def enc_data_type(data_type: str) -> int:
    """
    Encode a data type keyword for cuDNN.

    Raises
    ------
    ValueError
        If the keyword is not a known data type.
    UnsupportedDataTypeError
        If cuDNN has no matching data type.
    """
    key = normalize(data_type)
    if key in DATA_TYPE:
        return DATA_TYPE[key]
    name = data_type_info(data_type).name
    try:
        return DATA_TYPE[name]
    except KeyError:
        raise UnsupportedDataTypeError(data_type, "CUDA") from None


def enc_tensor_format(fmt: str) -> int:
    return enc_keyword(TENSOR_FORMAT, fmt, "tensor format")


def enc_activation_mode(mode: str) -> int:
    k = normalize(mode)
    return enc_keyword(ACTIVATION_MODE, _ACTIVATION_ALIASES.get(k, k), "activation mode")


def enc_nan_propagation(propagate: bool) -> int:
    return NAN_PROPAGATION["propagate" if propagate else "not-propagate"]


def enc_reduce_tensor_op(op: str) -> int:
    return enc_keyword(REDUCE_TENSOR_OP, op, "reduce tensor op")


def enc_reduce_tensor_indices(indices: bool) -> int:
    return REDUCE_TENSOR_INDICES["flattened-indices" if indices else "no-indices"]


def enc_indices_type(indices_type: str) -> int:
    return enc_keyword(INDICES_TYPE, indices_type, "indices type")


def enc_memcpy_kind(kind: str) -> int:
    return enc_keyword(MEMCPY_KIND, kind, "memcpy kind")


def enc_cublas_operation(op: str) -> int:
    return enc_keyword(CUBLAS_OPERATION, op, "cuBLAS operation")
