"""
Lifecycle management for native resources.

Every object handed out by the bindings (engines, streams, primitives,
descriptors, memory, device buffers, tensors, layers, factories) owns
something that must be given back to a native library exactly once. This
module defines the shared vocabulary:

- `Releaseable`: structural contract, `release() -> bool`.
- `NativeHandle`: base class owning one raw pointer plus its destructor.
- `release`, `with_release`, `let_release`: helpers for deterministic
  cleanup of groups of resources.

Native handles also install a `weakref.finalize` safety net, so a handle
that is garbage collected without an explicit release is still destroyed.
Normal code paths should release deterministically.
"""

from __future__ import annotations

import threading
import warnings
import weakref
from contextlib import ExitStack, contextmanager
from typing import Any, Callable, Iterator, Optional, Protocol, TypeVar, runtime_checkable

T = TypeVar("T")


@runtime_checkable
class Releaseable(Protocol):
    """Anything that holds resources that must be explicitly released."""

    def release(self) -> bool: ...


def _destroy_quietly(destructor: Callable[[int], Any], handle: int, name: str) -> None:
    try:
        destructor(handle)
    except Exception as e:
        warnings.warn(
            f"Failed to release {name} handle {handle:#x}: {e}", ResourceWarning
        )


class NativeHandle:
    """
    Owner of a single native handle.

    Parameters
    ----------
    lib : object
        The loaded native library that created the handle.
    handle : int
        Raw pointer value of the handle.
    destructor : Callable[[int], Any] | None
        Called with the raw handle on release. None means the handle is
        borrowed and is never destroyed by this wrapper.

    Notes
    -----
    - `release()` is idempotent and thread-safe.
    - After release, `extract()` returns None.
    """

    kind = "native"

    def __init__(
        self,
        lib: Any,
        handle: int,
        destructor: Optional[Callable[[int], Any]] = None,
    ) -> None:
        self.lib = lib
        self._handle: Optional[int] = int(handle)
        self._lock = threading.Lock()
        self._finalizer: Optional[weakref.finalize] = None
        if destructor is not None and self._handle:
            self._finalizer = weakref.finalize(
                self, _destroy_quietly, destructor, self._handle, self.kind
            )

    @property
    def master(self) -> bool:
        """True if this wrapper owns (and will destroy) the handle."""
        return self._finalizer is not None

    def extract(self) -> Optional[int]:
        """Return the raw handle, or None once released."""
        return self._handle

    def checked(self) -> int:
        """Return the raw handle, raising if it was already released."""
        h = self._handle
        if h is None:
            raise ValueError(f"{self.kind} handle has already been released")
        return h

    def release(self) -> bool:
        with self._lock:
            if self._handle is None:
                return True
            finalizer, self._finalizer = self._finalizer, None
            self._handle = None
        if finalizer is not None and finalizer.alive:
            finalizer()
        return True

    def __enter__(self: T) -> T:
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()

    def __repr__(self) -> str:
        h = self._handle
        state = "released" if h is None else f"{h:#x}"
        return f"<{type(self).__name__} {state}>"


def release(x: Any) -> bool:
    """
    Release `x` if it is releaseable; plain values are ignored.

    Returns
    -------
    bool
        Always True, so calls can be chained in boolean expressions.
    """
    if x is not None and isinstance(x, Releaseable):
        x.release()
    return True


@contextmanager
def with_release(*resources: Any) -> Iterator[tuple[Any, ...]]:
    """
    Use resources inside a block and release them afterwards.

    Resources are released in reverse order, also when the block raises.

    Examples
    --------
    >>> with with_release(engine(), memory_desc([2, 3])) as (eng, md):
    ...     ...
    """
    with ExitStack() as stack:
        for r in resources:
            stack.callback(release, r)
        yield resources


@contextmanager
def let_release(resource: T) -> Iterator[T]:
    """
    Guard a freshly created resource while it is being wired up.

    The resource is released only if the block raises; on success it is
    handed over to the caller.
    """
    try:
        yield resource
    except BaseException:
        release(resource)
        raise
