"""Cooperative cancellation for long-running stages."""

from __future__ import annotations

import threading
from typing import Optional

from ..errors import CancelledError


class CancelToken:
    """Thread-safe cancellation flag checked by long-running loops.

    Stages poll :meth:`raise_if_cancelled` between units of work (Louvain
    sweeps, permutation batches). Already returned results are untouched.

    Example
    -------
    >>> token = CancelToken()
    >>> threading.Timer(30.0, token.cancel).start()
    >>> engine.cluster(graph, cancel_token=token)
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, where: str = "") -> None:
        """Raise CancelledError if the token was cancelled."""
        if self._event.is_set():
            location = f" during {where}" if where else ""
            raise CancelledError(f"Aborted{location}: {self._reason}")


def check_cancelled(token: Optional[CancelToken], where: str = "") -> None:
    """Poll an optional token."""
    if token is not None:
        token.raise_if_cancelled(where)
