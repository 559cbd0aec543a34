"""
Device dispatch.

`diamond_factory` is the entry point of the library: it maps a device
string onto the backend factory serving that device.
"""

from __future__ import annotations

import logging
from typing import Any, Union

from .domain._device import Device, as_device
from .domain._errors import DeviceNotSupportedError

logger = logging.getLogger(__name__)


def diamond_factory(device: Union[str, Device] = "cpu", **kwargs: Any):
    """
    Create the factory for `device`.

    Parameters
    ----------
    device : str | Device, optional
        "cpu" (DNNL), "cuda" or "cuda:<index>" (cuDNN).
    **kwargs
        Forwarded to `dnnl_factory` / `cudnn_factory`.

    Raises
    ------
    DeviceNotSupportedError
        If no backend serves `device`.
    """
    try:
        dev = as_device(device)
    except ValueError:
        raise DeviceNotSupportedError("diamond_factory", str(device)) from None
    logger.debug("Dispatching diamond_factory to %s", dev)
    if dev.is_cpu():
        from .infrastructure.dnnl import dnnl_factory

        return dnnl_factory(**kwargs)
    from .infrastructure.cudnn import cudnn_factory

    return cudnn_factory(device=dev.index, **kwargs)
