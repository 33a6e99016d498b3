"""
Tests for the Call Interception Gateway.

Validates:
- Transparent forwarding on allow (return values and resource errors)
- Rejection before any resource state is touched
- Distinct rejection errors carrying the caller identity
- Caller identity visible to the resource
- Delayed calls and the external schedule authority
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from access_gate.errors import (
    CallRejected,
    InvalidTarget,
    MalformedCall,
    SchedulingRequired,
    TargetClosed,
    Unauthorized,
    UnknownOperation,
)
from access_gate.gateway.calldata import decode_arguments, encode_call, split_call
from access_gate.gateway.interceptor import CallGateway, current_caller, resource_interface
from access_gate.policy.evaluator import PolicyEvaluator
from access_gate.policy.registry import InMemoryRoleRegistry
from access_gate.policy.schema import ADMIN_ROLE, PUBLIC_ROLE, operation_id
from access_gate.policy.store import PolicyStore

R1 = 1


class Counter:
    """A protected resource with no authorization logic."""

    def __init__(self) -> None:
        self.value = 0
        self.last_caller = None

    def increment(self, by: int = 1) -> int:
        self.value += by
        self.last_caller = current_caller()
        return self.value

    def setValue(self, value: int) -> int:
        if value < 0:
            raise ValueError("value must not be negative")
        self.value = value
        return self.value

    def reset(self) -> None:
        self.value = 0

    def get_value(self) -> int:
        return self.value

    def _internal(self) -> None:
        raise AssertionError("never exposed")


class Gauge:
    """A resource whose property must not be read while it is being gated."""

    @property
    def reading(self) -> float:
        raise AssertionError("property read during gating")

    def calibrate(self) -> str:
        return "ok"


class ScheduleStub:
    """External scheduler that has one completed schedule per (caller, data)."""

    def __init__(self) -> None:
        self.ready: set[tuple[str, str, bytes]] = set()
        self.consumed: list[tuple[str, str, bytes]] = []

    def consume_scheduled(self, caller, target, data):
        key = (caller, target, data)
        if key in self.ready:
            self.ready.remove(key)
            self.consumed.append(key)
            return True
        return False


class TestCallData:
    """Operation id prefix and JSON payload."""

    def test_prefix_is_operation_id(self):
        """Encoded calls start with the operation id."""
        data = encode_call("increment", 5)
        op, payload = split_call(data)
        assert op == operation_id("increment")
        assert decode_arguments(payload) == ([5], {})

    def test_call_without_arguments_is_just_the_prefix(self):
        """A call with no arguments carries no payload."""
        assert encode_call("reset") == operation_id("reset")
        assert decode_arguments(b"") == ([], {})

    def test_short_data_is_malformed(self):
        """Data shorter than an operation id is malformed."""
        with pytest.raises(MalformedCall):
            split_call(b"\x01\x02")

    def test_invalid_payload_is_malformed(self):
        """Payloads that are not the expected JSON object are malformed."""
        with pytest.raises(MalformedCall):
            decode_arguments(b"{not json")
        with pytest.raises(MalformedCall):
            decode_arguments(b"[1, 2]")
        with pytest.raises(MalformedCall):
            decode_arguments(b'{"args": {}}')

    def test_interface_lists_public_callables_only(self):
        """Only public methods become operations."""
        interface = resource_interface(Counter())
        assert operation_id("increment") in interface
        assert operation_id("_internal") not in interface
        assert operation_id("value") not in interface

    def test_interface_skips_properties_without_reading_them(self):
        """Building the interface never runs a property getter."""
        gateway = CallGateway("gauge", Gauge(), PolicyEvaluator(PolicyStore(), InMemoryRoleRegistry()))
        assert operation_id("reading") not in gateway.interface
        assert gateway.interface[operation_id("calibrate")] == "calibrate"

    def test_interface_rejects_colliding_operation_ids(self, monkeypatch):
        """Two public names sharing an operation id cannot be gated."""
        monkeypatch.setattr(
            "access_gate.gateway.interceptor.operation_id", lambda name: b"\x00\x00\x00\x00"
        )
        with pytest.raises(InvalidTarget):
            resource_interface(Counter())


class TestGatewayForwarding:

    def setup_method(self):
        self.store = PolicyStore()
        self.registry = InMemoryRoleRegistry()
        self.evaluator = PolicyEvaluator(self.store, self.registry)
        self.counter = Counter()
        self.gateway = CallGateway("counter", self.counter, self.evaluator)

        self.registry.grant_role(ADMIN_ROLE, "admin")
        self.registry.grant_role(R1, "alice")
        self.store.set_required_role("counter", ["increment", "setValue"], R1)
        self.store.set_required_role("counter", ["reset"], ADMIN_ROLE)

    def test_allowed_call_is_forwarded(self):
        """An allowed call reaches the resource and returns its result."""
        assert self.gateway.call("alice", encode_call("increment", 2)) == 2
        assert self.counter.value == 2

    def test_proxy_call(self):
        """The caller proxy encodes positional and keyword arguments."""
        alice = self.gateway.as_caller("alice")
        alice.increment()
        assert alice.increment(by=3) == 4

    def test_public_call_needs_no_role(self):
        """Unconfigured operations are open to any caller."""
        self.counter.value = 9
        assert self.gateway.as_caller("bob").get_value() == 9

    def test_resource_sees_caller(self):
        """The resource reads the caller only while it is serving a call."""
        self.gateway.as_caller("alice").increment()
        assert self.counter.last_caller == "alice"
        assert current_caller() is None

    def test_resource_errors_pass_through_unwrapped(self):
        """Resource exceptions propagate unchanged."""
        with pytest.raises(ValueError, match="must not be negative"):
            self.gateway.as_caller("alice").setValue(-1)

    def test_unknown_operation(self):
        """An allowed call to a missing method raises UnknownOperation."""
        with pytest.raises(UnknownOperation):
            self.gateway.call("alice", encode_call("explode"))

    def test_private_methods_not_reachable(self):
        """Underscore methods are never forwarded."""
        with pytest.raises(UnknownOperation):
            self.gateway.call("alice", encode_call("_internal"))


class TestGatewayRejection:

    def setup_method(self):
        self.store = PolicyStore()
        self.registry = InMemoryRoleRegistry()
        self.evaluator = PolicyEvaluator(self.store, self.registry)
        self.counter = Counter()
        self.counter.value = 5
        self.gateway = CallGateway("counter", self.counter, self.evaluator)

        self.registry.grant_role(ADMIN_ROLE, "admin")
        self.registry.grant_role(R1, "alice")
        self.store.set_required_role("counter", ["increment", "setValue"], R1)
        self.store.set_required_role("counter", ["reset"], ADMIN_ROLE)

    def test_denied_call_leaves_resource_untouched(self):
        """A denied call names the caller and never reaches the resource."""
        with pytest.raises(Unauthorized) as exc_info:
            self.gateway.as_caller("bob").setValue(100)
        assert exc_info.value.caller == "bob"
        assert exc_info.value.target == "counter"
        assert exc_info.value.operation == operation_id("setValue")
        assert self.counter.value == 5

    def test_rejection_happens_before_argument_decoding(self):
        """Garbage arguments from a denied caller still get Unauthorized."""
        data = operation_id("setValue") + b"{garbage"
        with pytest.raises(Unauthorized):
            self.gateway.call("bob", data)

    def test_closed_target_rejects_admin(self):
        """Closing rejects even ADMIN_ROLE holders with TargetClosed."""
        self.store.set_closed("counter", True)
        with pytest.raises(TargetClosed) as exc_info:
            self.gateway.as_caller("admin").reset()
        assert isinstance(exc_info.value, Unauthorized)
        assert exc_info.value.caller == "admin"
        assert self.counter.value == 5

    def test_closed_target_blocks_public_reads(self):
        """Closing blocks read-only public operations too."""
        self.store.set_closed("counter", True)
        with pytest.raises(TargetClosed):
            self.gateway.as_caller("bob").get_value()

    def test_reopened_target_forwards_again(self):
        """A reopened target forwards calls again."""
        self.store.set_closed("counter", True)
        self.store.set_closed("counter", False)
        self.gateway.as_caller("admin").reset()
        assert self.counter.value == 0

    def test_reconfigured_to_public(self):
        """Unsetting a restriction lets any caller through."""
        with pytest.raises(Unauthorized):
            self.gateway.as_caller("bob").setValue(1)
        self.store.set_required_role("counter", ["setValue"], PUBLIC_ROLE)
        assert self.gateway.as_caller("bob").setValue(1) == 1

    def test_rejections_are_distinguishable_from_resource_errors(self):
        """Rejections and resource errors have separate hierarchies."""
        with pytest.raises(CallRejected):
            self.gateway.as_caller("bob").increment()
        with pytest.raises(ValueError) as exc_info:
            self.gateway.as_caller("alice").setValue(-1)
        assert not isinstance(exc_info.value, CallRejected)


class TestDelayedCalls:

    def setup_method(self):
        self.store = PolicyStore()
        self.registry = InMemoryRoleRegistry()
        self.evaluator = PolicyEvaluator(self.store, self.registry)
        self.counter = Counter()
        self.schedule = ScheduleStub()
        self.store.set_required_role("counter", ["increment"], R1)
        self.registry.grant_role(R1, "dave", timedelta(hours=2))

    def test_delayed_member_must_schedule(self):
        """A delayed member without a schedule gets SchedulingRequired."""
        gateway = CallGateway("counter", self.counter, self.evaluator)
        with pytest.raises(SchedulingRequired) as exc_info:
            gateway.as_caller("dave").increment()
        assert exc_info.value.delay == timedelta(hours=2)
        assert exc_info.value.caller == "dave"
        assert self.counter.value == 0

    def test_completed_schedule_is_forwarded_once(self):
        """A completed schedule lets the call through exactly once."""
        gateway = CallGateway("counter", self.counter, self.evaluator, self.schedule)
        data = encode_call("increment", 3)
        self.schedule.ready.add(("dave", "counter", data))

        assert gateway.call("dave", data) == 3
        assert self.schedule.consumed == [("dave", "counter", data)]
        with pytest.raises(SchedulingRequired):
            gateway.call("dave", data)
        assert self.counter.value == 3

    def test_schedule_does_not_help_non_members(self):
        """A schedule does not authorize a non-member."""
        gateway = CallGateway("counter", self.counter, self.evaluator, self.schedule)
        data = encode_call("increment")
        self.schedule.ready.add(("bob", "counter", data))
        with pytest.raises(Unauthorized):
            gateway.call("bob", data)
        assert self.schedule.consumed == []

    def test_malformed_arguments_keep_the_schedule(self):
        """A scheduled call with a bad payload fails without using up its schedule."""
        gateway = CallGateway("counter", self.counter, self.evaluator, self.schedule)
        data = operation_id("increment") + b"{bad"
        self.schedule.ready.add(("dave", "counter", data))
        with pytest.raises(MalformedCall):
            gateway.call("dave", data)
        assert self.schedule.consumed == []
        assert ("dave", "counter", data) in self.schedule.ready

    def test_unknown_operation_keeps_the_schedule(self):
        """A scheduled call to a missing method fails without using up its schedule."""
        self.store.set_required_role("counter", ["explode"], R1)
        gateway = CallGateway("counter", self.counter, self.evaluator, self.schedule)
        data = encode_call("explode")
        self.schedule.ready.add(("dave", "counter", data))
        with pytest.raises(UnknownOperation):
            gateway.call("dave", data)
        assert self.schedule.consumed == []
        assert self.counter.value == 0
