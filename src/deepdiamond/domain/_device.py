"""
Device abstraction utilities.

This module defines lightweight abstractions for representing the two
computation devices deepdiamond can dispatch to:

- `DeviceType`: an enumeration of supported device categories
- `Device`: a concrete device descriptor that validates and normalizes
  user-facing device strings such as "cpu" or "cuda:0"

The CPU device is served by the DNNL backend, CUDA devices by the cuDNN
backend. The class itself allocates nothing.
"""

from __future__ import annotations

from enum import Enum
import re
from typing import Union


class DeviceType(Enum):
    """
    Enumeration of supported device categories.

    Attributes
    ----------
    CPU : DeviceType
        Host processor, driven through DNNL.
    CUDA : DeviceType
        NVIDIA GPU, driven through the CUDA runtime and cuDNN.
    """

    CPU = "cpu"
    CUDA = "cuda"


class Device:
    """
    Concrete computation device descriptor.

    Parameters
    ----------
    device : str
        Device identifier string. Must be either:
        - "cpu"
        - "cuda" (shorthand for "cuda:0")
        - "cuda:<index>", where <index> is a non-negative integer

    Raises
    ------
    ValueError
        If the provided device string does not match the supported formats.
    """

    __slots__ = ("type", "index")

    _CUDA_PATTERN = re.compile(r"^cuda:(\d+)$")

    def __init__(self, device: str):
        if device == "cpu":
            self.type = DeviceType.CPU
            self.index = None
        elif device == "cuda":
            self.type = DeviceType.CUDA
            self.index = 0
        else:
            m = self._CUDA_PATTERN.match(device)
            if not m:
                raise ValueError(
                    f"Invalid device '{device}'. Expected 'cpu' or 'cuda:<index>'"
                )
            self.type = DeviceType.CUDA
            self.index = int(m.group(1))

    def __str__(self) -> str:
        return "cpu" if self.type is DeviceType.CPU else f"cuda:{self.index}"

    def __repr__(self) -> str:
        return f"Device('{self}')"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Device):
            return NotImplemented
        return (self.type, self.index) == (other.type, other.index)

    def __hash__(self) -> int:
        return hash((self.type, self.index))

    def is_cpu(self) -> bool:
        """Return True if this device is the host CPU."""
        return self.type is DeviceType.CPU

    def is_cuda(self) -> bool:
        """Return True if this device is a CUDA GPU."""
        return self.type is DeviceType.CUDA


def as_device(device: Union[str, Device]) -> Device:
    """
    Normalize a device string or `Device` into a `Device`.

    Parameters
    ----------
    device : str | Device
        Device descriptor or its string form.

    Returns
    -------
    Device
        The normalized device.
    """
    if isinstance(device, Device):
        return device
    return Device(str(device))
