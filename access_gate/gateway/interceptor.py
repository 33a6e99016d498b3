"""
Call Interception Gateway — sits between callers and a protected resource.

For every incoming call the gateway:
1. extracts the operation id (fixed-width prefix of the encoded call)
2. asks the policy evaluator for a verdict on (caller, target, operation)
3. forwards the call unchanged on IMMEDIATE_ALLOW, or rejects it before the
   resource is touched

The resource contains no authorization logic. It can read the identity of
the account it is serving through :func:`current_caller`.
"""

from __future__ import annotations

import contextvars
import inspect
import logging
from typing import Any, Callable, Protocol

import structlog

from access_gate.errors import (
    InvalidTarget,
    SchedulingRequired,
    TargetClosed,
    Unauthorized,
    UnknownOperation,
)
from access_gate.gateway.calldata import decode_arguments, encode_call, split_call
from access_gate.policy.evaluator import PolicyEvaluator
from access_gate.policy.schema import (
    Decision,
    OperationId,
    Verdict,
    VerdictBasis,
    format_operation_id,
    operation_id,
)

logger = logging.getLogger(__name__)

_current_caller: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "access_gate_current_caller", default=None
)


def current_caller() -> str | None:
    """Account on whose behalf the gateway is currently forwarding, if any."""
    return _current_caller.get()


class ScheduleAuthority(Protocol):
    """External scheduler that can vouch for a completed, time-delayed call."""

    def consume_scheduled(self, caller: str, target: str, data: bytes) -> bool:
        """Return True (and consume the schedule) if the call may execute now."""
        ...


def resource_interface(resource: Any) -> dict[OperationId, str]:
    """
    Map operation ids to the public callables of ``resource``.

    Attributes are looked up statically, so properties and other data
    descriptors are skipped without running their getters.

    Raises:
        InvalidTarget: If two public names share an operation id.
    """
    interface: dict[OperationId, str] = {}
    for name in dir(resource):
        if name.startswith("_"):
            continue
        try:
            attr = inspect.getattr_static(resource, name)
        except AttributeError:
            continue
        if inspect.isdatadescriptor(attr):
            continue
        if not (callable(attr) or isinstance(attr, (staticmethod, classmethod))):
            continue
        op = operation_id(name)
        if op in interface:
            raise InvalidTarget(
                f"Operations {interface[op]!r} and {name!r} share id "
                f"{format_operation_id(op)}"
            )
        interface[op] = name
    return interface


class CallGateway:
    """
    Authorization gateway in front of one protected resource.

    Usage:
        gateway = CallGateway("counter", Counter(), evaluator)
        gateway.call("alice", encode_call("increment", 1))
        gateway.as_caller("alice").increment(1)
    """

    def __init__(
        self,
        target: str,
        resource: Any,
        evaluator: PolicyEvaluator,
        schedule_authority: ScheduleAuthority | None = None,
    ) -> None:
        self.target = target
        self.resource = resource
        self.evaluator = evaluator
        self.schedule_authority = schedule_authority
        self.interface = resource_interface(resource)

    def call(self, caller: str, data: bytes) -> Any:
        """
        Authorize and forward one encoded call.

        Raises:
            MalformedCall: If the operation id or payload cannot be decoded.
            Unauthorized: If the evaluator denied the call.
            TargetClosed: If the call was denied because the target is closed.
            SchedulingRequired: If the caller must schedule the call first.
            UnknownOperation: If the resource has no such operation.

        Anything raised by the resource itself propagates unchanged.
        """
        op, payload = split_call(data)
        verdict = self.evaluator.evaluate(caller, self.target, op)
        if not verdict.is_allowed and not self._may_be_scheduled(verdict):
            raise self._rejection(verdict)

        args, kwargs = decode_arguments(payload)
        method = self._resolve(op)
        # A schedule is consumed only once the call is known to be executable
        if not verdict.is_allowed and not self._consume_schedule(verdict, data):
            raise self._rejection(verdict)
        return self._forward(caller, op, method, args, kwargs)

    def as_caller(self, caller: str) -> _CallerProxy:
        """A proxy that encodes attribute calls and routes them through :meth:`call`."""
        return _CallerProxy(self, caller)

    # ── Internal ────────────────────────────────────────────────

    def _may_be_scheduled(self, verdict: Verdict) -> bool:
        return (
            verdict.decision == Decision.DELAYED_ALLOW
            and self.schedule_authority is not None
        )

    def _consume_schedule(self, verdict: Verdict, data: bytes) -> bool:
        if not self._may_be_scheduled(verdict):
            return False
        return self.schedule_authority.consume_scheduled(verdict.caller, self.target, data)

    def _resolve(self, op: OperationId) -> Callable[..., Any]:
        name = self.interface.get(op)
        if name is None:
            raise UnknownOperation(self.target, op)
        return getattr(self.resource, name)

    def _forward(
        self,
        caller: str,
        op: OperationId,
        method: Callable[..., Any],
        args: list[Any],
        kwargs: dict[str, Any],
    ) -> Any:
        token = _current_caller.set(caller)
        try:
            with structlog.contextvars.bound_contextvars(
                caller=caller,
                target=self.target,
                operation=format_operation_id(op),
            ):
                return method(*args, **kwargs)
        finally:
            _current_caller.reset(token)

    def _rejection(self, verdict: Verdict) -> Exception:
        logger.warning(
            "Call rejected: caller=%s target=%s op=%s decision=%s reason=%s",
            verdict.caller,
            verdict.target,
            format_operation_id(verdict.operation),
            verdict.decision.value,
            verdict.reason,
        )
        if verdict.decision == Decision.DELAYED_ALLOW:
            return SchedulingRequired(
                verdict.caller, verdict.target, verdict.operation, verdict.delay
            )
        if verdict.basis == VerdictBasis.TARGET_CLOSED:
            return TargetClosed(verdict.caller, verdict.target, verdict.operation)
        return Unauthorized(verdict.caller, verdict.target, verdict.operation)


class _CallerProxy:
    """Binds a caller identity to a gateway; ``proxy.name(...)`` is a gated call."""

    def __init__(self, gateway: CallGateway, caller: str) -> None:
        self._gateway = gateway
        self._caller = caller

    def __getattr__(self, name: str) -> Callable[..., Any]:
        if name.startswith("_"):
            raise AttributeError(name)

        def _call(*args: Any, **kwargs: Any) -> Any:
            return self._gateway.call(self._caller, encode_call(name, *args, **kwargs))

        _call.__name__ = name
        return _call
