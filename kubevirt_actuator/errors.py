"""Error taxonomy shared by the clients, the machine scope and the reconciler.

The operator relies on kopf's error contract: a ``kopf.PermanentError`` is
never retried, a ``kopf.TemporaryError`` is retried after its ``delay``, and
anything else falls back to kopf's default backoff.
"""
from __future__ import annotations

from typing import Optional

import kopf


class ActuatorError(Exception):
    """A failed reconciliation step; the caller applies its default backoff."""


class InvalidConfiguration(kopf.PermanentError):
    """The machine cannot be reconciled until its configuration is fixed."""


class RequeueAfterError(kopf.TemporaryError):
    """Ask the caller to re-run the same operation no earlier than ``delay`` seconds."""

    def __init__(self, delay: float, reason: str = "") -> None:
        message = f"requeue in {delay:g}s"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, delay=delay)


class KubevirtError(ActuatorError):
    """Base class for failures reported by the KubeVirt API."""


class VMNotFound(KubevirtError):
    """The requested VirtualMachine does not exist."""

    def __init__(self, name: str, namespace: str) -> None:
        super().__init__(f"virtual machine {namespace}/{name} not found")
        self.name = name
        self.namespace = namespace


class RemoteFailure(KubevirtError):
    """Any other API failure; ``cause`` is the original exception."""

    def __init__(self, cause: Exception, context: Optional[str] = None) -> None:
        reason = getattr(cause, "reason", None) or str(cause)
        status = getattr(cause, "status", None)
        message = f"{status} {reason}" if status else reason
        if context:
            message = f"{context}: {message}"
        super().__init__(message)
        self.cause = cause
        self.status = status
