"""
Native shared library loader and deployment policy.

This module centralizes the logic for resolving and loading the four native
libraries deepdiamond binds through `ctypes`:

- "dnnl"   : the oneDNN / DNNL CPU primitive library
- "cudart" : the CUDA runtime
- "cudnn"  : the cuDNN GPU primitive library
- "cublas" : cuBLAS (matrix products for fully-connected layers on GPU)

Resolution policy
-----------------
For each library, the first match wins:

1. An explicit `lib_path` argument.
2. An environment variable override (`DEEPDIAMOND_DNNL_LIB`,
   `DEEPDIAMOND_CUDART_LIB`, `DEEPDIAMOND_CUDNN_LIB`,
   `DEEPDIAMOND_CUBLAS_LIB`).
3. Platform-specific candidate file names, versioned first, handed to the
   system loader (so `LD_LIBRARY_PATH`, `DYLD_LIBRARY_PATH` and `PATH`
   apply as usual).

Windows-specific considerations
-------------------------------
On Windows (Python 3.8+), dependent DLL discovery is restricted. The loader
registers `CUDA_PATH/bin`, `CUDNN_PATH/bin` and the directory of an explicit
library path with `os.add_dll_directory(...)`. Directory handles are retained
on the loaded library to prevent premature removal.

Scope
-----
This module only guarantees that the right library is located and loaded
once per process. C signatures are declared by each binding module.
"""

from __future__ import annotations

import ctypes
import logging
import os
import sys
from functools import lru_cache
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

ENV_OVERRIDES: dict[str, str] = {
    "dnnl": "DEEPDIAMOND_DNNL_LIB",
    "cudart": "DEEPDIAMOND_CUDART_LIB",
    "cudnn": "DEEPDIAMOND_CUDNN_LIB",
    "cublas": "DEEPDIAMOND_CUBLAS_LIB",
}

_CANDIDATES: dict[str, dict[str, list[str]]] = {
    "dnnl": {
        "win": ["dnnl.dll", "mkldnn.dll"],
        "darwin": ["libdnnl.1.dylib", "libdnnl.dylib"],
        "linux": ["libdnnl.so.1", "libdnnl.so.2", "libdnnl.so"],
    },
    "cudart": {
        "win": ["cudart64_110.dll", "cudart64_102.dll", "cudart64_101.dll"],
        "darwin": ["libcudart.dylib"],
        "linux": [
            "libcudart.so",
            "libcudart.so.12",
            "libcudart.so.11.0",
            "libcudart.so.10.2",
        ],
    },
    "cudnn": {
        "win": ["cudnn64_8.dll", "cudnn64_7.dll"],
        "darwin": ["libcudnn.dylib"],
        "linux": ["libcudnn.so", "libcudnn.so.8", "libcudnn.so.7"],
    },
    "cublas": {
        "win": ["cublas64_11.dll", "cublas64_10.dll"],
        "darwin": ["libcublas.dylib"],
        "linux": [
            "libcublas.so",
            "libcublas.so.12",
            "libcublas.so.11",
            "libcublas.so.10",
        ],
    },
}


def _platform_key() -> str:
    if sys.platform.startswith("win"):
        return "win"
    if sys.platform == "darwin":
        return "darwin"
    return "linux"


def candidate_names(name: str) -> list[str]:
    """
    Return the file names tried for library `name` on the current platform.

    Raises
    ------
    ValueError
        If `name` is not one of the known libraries.
    """
    try:
        table = _CANDIDATES[name]
    except KeyError:
        raise ValueError(
            f"Unknown native library {name!r}. Expected one of {sorted(_CANDIDATES)}"
        ) from None
    return list(table[_platform_key()])


def _windows_dll_dirs(extra: Optional[Path]) -> list[object]:
    handles: list[object] = []
    if not (sys.platform.startswith("win") and hasattr(os, "add_dll_directory")):
        return handles
    dirs = []
    for var in ("CUDA_PATH", "CUDNN_PATH"):
        root = os.environ.get(var, "")
        if root:
            dirs.append(os.path.join(root, "bin"))
    if extra is not None:
        dirs.append(str(extra))
    for d in dirs:
        if not os.path.isdir(d):
            continue
        try:
            handles.append(os.add_dll_directory(d))
        except OSError as e:
            raise OSError(
                f"add_dll_directory failed for {d!r} "
                f"winerror={getattr(e, 'winerror', None)} strerror={e.strerror!r}"
            ) from e
    return handles


def _load_cdll(target: str, dll_dir: Optional[Path] = None) -> ctypes.CDLL:
    handles = _windows_dll_dirs(dll_dir)
    lib = ctypes.CDLL(target)
    setattr(lib, "_deepdiamond_dll_dir_handles", handles)
    return lib


@lru_cache(maxsize=None)
def load_native(name: str, lib_path: Optional[str] = None) -> ctypes.CDLL:
    """
    Load native library `name` via ctypes, once per process and path.

    Parameters
    ----------
    name : str
        One of "dnnl", "cudart", "cudnn", "cublas".
    lib_path : Optional[str]
        Exact library file to load. Takes precedence over the environment
        override and the candidate search.

    Returns
    -------
    ctypes.CDLL
        The loaded library.

    Raises
    ------
    FileNotFoundError
        If an explicit path (argument or environment override) does not exist.
    OSError
        If none of the candidates can be loaded.
    """
    explicit = lib_path or os.environ.get(ENV_OVERRIDES.get(name, ""), "") or None
    if explicit is not None:
        p = Path(explicit).resolve()
        if not p.exists():
            raise FileNotFoundError(f"Native library {name!r} not found: {p}")
        lib = _load_cdll(str(p), p.parent)
        logger.debug("Loaded native library %s from %s", name, p)
        return lib

    errors: list[str] = []
    for candidate in candidate_names(name):
        try:
            lib = _load_cdll(candidate)
        except OSError as e:
            errors.append(f"- {candidate} ({e})")
            continue
        logger.debug("Loaded native library %s as %s", name, candidate)
        return lib

    raise OSError(
        f"Failed to load native library {name!r}. Tried:\n" + "\n".join(errors)
    )


def native_available(name: str) -> bool:
    """Return True if `load_native(name)` succeeds."""
    try:
        load_native(name)
    except OSError:
        return False
    return True
