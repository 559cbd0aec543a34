"""
Exceptions raised by the deepdiamond binding layer.

Two families of errors exist:

- Errors detected on the Python side of the boundary (bad keywords,
  undersized buffers, unsupported data types, operations a backend does
  not provide). These derive from `DiamondError` and carry a structured
  `info` dict describing the offending arguments.
- Errors reported by a native library through a non-success status code.
  These derive from `NativeError` and remember the raw `code`, its decoded
  `status` name, and any call-site `details`.

Device placement errors are shared by both backends and mirror the
semantics of the device abstraction in `deepdiamond.domain._device`.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional


class DiamondError(RuntimeError):
    """
    Base class for errors raised by deepdiamond.

    Parameters
    ----------
    message : str
        Human readable description.
    info : Mapping[str, Any], optional
        Structured details (sizes, shapes, keywords) useful for debugging.
    """

    def __init__(self, message: str, info: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message)
        self.info: dict[str, Any] = dict(info or {})


class NativeError(DiamondError):
    """
    A native library call returned a non-success status.

    Attributes
    ----------
    code : int
        The raw status code returned by the library.
    status : str
        Decoded status name (e.g. "invalid-arguments").
    details : Any
        Optional call-site context.
    """

    library: str = "native"

    def __init__(self, code: int, status: str, details: Any = None) -> None:
        super().__init__(
            f"{self.library} error {int(code)} {status}.",
            {"code": int(code), "error": status, "details": details},
        )
        self.code = int(code)
        self.status = status
        self.details = details


class DnnlError(NativeError):
    """Non-success status returned by the DNNL (oneDNN) library."""

    library = "DNNL"


class CudnnError(NativeError):
    """Non-success status returned by the cuDNN library."""

    library = "cuDNN"


class CudaError(NativeError):
    """Non-success status returned by the CUDA runtime."""

    library = "CUDA"


class CublasError(NativeError):
    """Non-success status returned by cuBLAS."""

    library = "cuBLAS"


class UnsupportedDataTypeError(DiamondError):
    """
    Raised when a backend is asked for a data type it cannot handle.

    Attributes
    ----------
    data_type : str
        The requested data type keyword.
    """

    def __init__(self, data_type: Any, backend: str) -> None:
        super().__init__(
            f"The requested data type {data_type!r} is not supported on the "
            f"{backend} platform.",
            {"data_type": data_type, "backend": backend},
        )
        self.data_type = data_type


class UnsupportedOperationError(DiamondError):
    """Raised when a backend does not implement (or refuses) an operation."""


class DeviceNotSupportedError(RuntimeError):
    """
    Raised when an operation is requested on a device with no backend.

    Attributes
    ----------
    op : str
        The name of the operation that was attempted.
    device : str
        String representation of the requested device.
    """

    def __init__(self, op: str, device: str) -> None:
        super().__init__(f"{op} is not implemented for device '{device}'.")
        self.op = op
        self.device = device


class DeviceMismatchError(RuntimeError):
    """
    Raised when tensors living on different devices are combined.

    Moving data between a host tensor and a device tensor always needs an
    explicit transfer; transformers and cost layers refuse to guess.
    """

    def __init__(self, device_a: str, device_b: str) -> None:
        super().__init__(f"Device mismatch: '{device_a}' vs '{device_b}'.")
        self.device_a = device_a
        self.device_b = device_b
