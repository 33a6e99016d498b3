"""
Access Gate errors.

Rejections raised by the gateway all derive from :class:`CallRejected` so that
monitoring can separate "authorization failed" from "business logic failed".
Exceptions raised by a protected resource are never wrapped.

There is deliberately no ``ConfigurationConflict``: the policy store has no
"already configured" failure mode, overwriting an operation's role is always
legal and last writer wins.
"""

from __future__ import annotations

from datetime import timedelta


class AccessGateError(Exception):
    """Base class for every error raised by access_gate."""


class CallRejected(AccessGateError):
    """A call was rejected before reaching the protected resource."""

    def __init__(self, caller: str, target: str, operation: bytes, message: str) -> None:
        super().__init__(message)
        self.caller = caller
        self.target = target
        self.operation = operation


class Unauthorized(CallRejected):
    """The evaluator denied the call. Not retried, not recoverable without a policy change."""

    def __init__(self, caller: str, target: str, operation: bytes) -> None:
        super().__init__(
            caller,
            target,
            operation,
            f"Caller {caller!r} is not authorized to call 0x{operation.hex()} on {target!r}",
        )


class TargetClosed(Unauthorized):
    """The target is closed: every call to it is denied regardless of role."""

    def __init__(self, caller: str, target: str, operation: bytes) -> None:
        CallRejected.__init__(
            self,
            caller,
            target,
            operation,
            f"Target {target!r} is closed (call 0x{operation.hex()} by {caller!r})",
        )


class SchedulingRequired(CallRejected):
    """The caller is authorized but must go through the external schedule first."""

    def __init__(
        self, caller: str, target: str, operation: bytes, delay: timedelta
    ) -> None:
        super().__init__(
            caller,
            target,
            operation,
            f"Call 0x{operation.hex()} on {target!r} by {caller!r} requires "
            f"scheduling with a delay of {int(delay.total_seconds())}s",
        )
        self.delay = delay


class MalformedCall(AccessGateError):
    """Encoded call data could not be decoded."""


class UnknownOperation(AccessGateError):
    """The operation identifier does not name any callable on the resource."""

    def __init__(self, target: str, operation: bytes) -> None:
        super().__init__(f"Target {target!r} has no operation 0x{operation.hex()}")
        self.target = target
        self.operation = operation


class InvalidRole(AccessGateError, ValueError):
    """A role id is out of range or cannot be used for the requested change."""


class InvalidTarget(AccessGateError, ValueError):
    """The target cannot be administered this way."""


class PolicyDocumentError(AccessGateError):
    """A declarative policy document is invalid."""


class LedgerIntegrityError(AccessGateError):
    """Raised when the audit ledger hash chain is broken or uninitialized."""
