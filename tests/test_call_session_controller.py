"""
Test suite for CallSessionController.

Tests cover:
- Placement guards (NotReady, InvalidAddress, single active call)
- Address classification and caller id handling
- Backend-driven transitions and the reset round trip
- hang_up semantics
- Listener isolation
"""

import asyncio
import logging

import pytest
from azure.communication.identity import CommunicationUserIdentifier, PhoneNumberIdentifier
from src.calling.errors import (
    BackendUnavailable,
    CallAlreadyActive,
    InvalidAddress,
    NoActiveCall,
    NotReady,
)
from src.calling.models import AddressKind, CallSession, CallState, TargetAddress


# ---------- Placement guards ----------


async def test_place_call_before_agent_is_not_ready(controller):
    result = await controller.place_call("+14155550123")

    assert not result.accepted
    assert isinstance(result.error, NotReady)
    assert controller.state is CallState.IDLE
    assert controller.session == CallSession()


@pytest.mark.parametrize("address", ["", "   ", None])
async def test_place_call_without_address_is_invalid(ready_controller, fake_agent, address):
    result = await ready_controller.place_call(address)

    assert isinstance(result.error, InvalidAddress)
    assert fake_agent.calls == []
    assert ready_controller.state is CallState.IDLE


async def test_place_call_uses_last_target_address(ready_controller, fake_agent):
    ready_controller.set_target_address(" +14155550123 ")

    result = await ready_controller.place_call()

    assert result.accepted
    assert len(fake_agent.calls) == 1
    assert ready_controller.session.target_address == "+14155550123"


async def test_whitespace_address_uses_stored_target(ready_controller, fake_agent):
    ready_controller.set_target_address("8:acs:abc-123")

    result = await ready_controller.place_call("   ")

    assert result.accepted
    assert ready_controller.session.target_address == "8:acs:abc-123"
    assert fake_agent.calls[0].identifier.properties["id"] == "8:acs:abc-123"


async def test_place_call_transitions_to_dialing(ready_controller, fake_agent):
    result = await ready_controller.place_call("+14155550123")

    assert result.ok
    assert result.state is CallState.DIALING
    assert ready_controller.session.backend_handle is fake_agent.calls[0]
    assert ready_controller.session.started_at is None


async def test_second_place_call_is_rejected_while_active(ready_controller, fake_agent):
    await ready_controller.place_call("+14155550123")

    result = await ready_controller.place_call("+14155550199")

    assert isinstance(result.error, CallAlreadyActive)
    assert len(fake_agent.calls) == 1
    assert ready_controller.session.target_address == "+14155550123"


async def test_concurrent_placements_start_one_call(ready_controller, fake_agent):
    results = await asyncio.gather(
        *(ready_controller.place_call(f"+1415555010{i}") for i in range(5))
    )

    assert sum(r.accepted for r in results) == 1
    assert len(fake_agent.calls) == 1
    assert ready_controller.state is CallState.DIALING


async def test_place_call_rejected_from_call_summary(ready_controller, fake_agent):
    await ready_controller.place_call("+14155550123")
    fake_agent.calls[0].emit_state("Disconnected")

    result = await ready_controller.place_call("+14155550199")

    assert isinstance(result.error, CallAlreadyActive)
    assert ready_controller.state is CallState.CALL_SUMMARY


async def test_backend_failure_keeps_idle(ready_controller, fake_agent):
    fake_agent.fail_start_call = True

    result = await ready_controller.place_call("+14155550123")

    assert isinstance(result.error, BackendUnavailable)
    assert ready_controller.state is CallState.IDLE
    assert ready_controller.session.backend_handle is None
    assert ready_controller.last_error is result.error

    fake_agent.fail_start_call = False
    retry = await ready_controller.place_call("+14155550123")
    assert retry.accepted
    assert ready_controller.last_error is None


# ---------- Address classification ----------


def test_pstn_address_classification():
    target = TargetAddress.parse("+14155550123")

    assert target.kind is AddressKind.PSTN
    identifier = target.to_identifier()
    assert isinstance(identifier, PhoneNumberIdentifier)
    assert identifier.properties["value"] == "+14155550123"


def test_subject_address_classification():
    target = TargetAddress.parse("8:acs:abc-123")

    assert target.kind is AddressKind.SUBJECT
    identifier = target.to_identifier()
    assert isinstance(identifier, CommunicationUserIdentifier)
    assert identifier.properties["id"] == "8:acs:abc-123"


async def test_alternate_caller_id_only_on_pstn(ready_controller, fake_agent):
    await ready_controller.place_call("+14155550123")
    pstn_call = fake_agent.calls[0]
    assert pstn_call.alternate_caller_id.properties["value"] == "+18005550100"

    pstn_call.emit_state("Disconnected")
    ready_controller.reset()
    await ready_controller.place_call("8:acs:abc-123")

    assert fake_agent.calls[1].alternate_caller_id is None


# ---------- Backend-driven transitions ----------


async def test_full_round_trip_returns_to_initial_shape(ready_controller, fake_agent):
    await ready_controller.place_call("+14155550123")
    handle = fake_agent.calls[0]

    handle.emit_state("Connecting")
    assert ready_controller.state is CallState.DIALING

    handle.emit_state("Connected")
    assert ready_controller.state is CallState.ONGOING
    assert ready_controller.session.started_at is not None

    handle.emit_state("Disconnected")
    assert ready_controller.state is CallState.CALL_SUMMARY
    assert ready_controller.session.backend_handle is None
    assert ready_controller.session.ended_at is not None

    result = ready_controller.reset()

    assert result.accepted
    assert ready_controller.session == CallSession()
    assert ready_controller.session.target_address == ""
    assert ready_controller.session.started_at is None


async def test_disconnect_while_dialing_goes_to_summary(ready_controller, fake_agent):
    await ready_controller.place_call("8:acs:abc-123")

    fake_agent.calls[0].emit_state("Disconnected")

    assert ready_controller.state is CallState.CALL_SUMMARY
    assert ready_controller.session.started_at is None
    assert ready_controller.session.duration_seconds is None


async def test_stale_handle_notifications_are_ignored(ready_controller, fake_agent):
    await ready_controller.place_call("+14155550123")
    first = fake_agent.calls[0]
    first.emit_state("Disconnected")
    ready_controller.reset()
    await ready_controller.place_call("+14155550199")

    first.emit_state("Connected")

    assert ready_controller.state is CallState.DIALING
    assert ready_controller.session.backend_handle is fake_agent.calls[1]


async def test_unknown_backend_states_do_not_transition(ready_controller, fake_agent):
    await ready_controller.place_call("+14155550123")
    handle = fake_agent.calls[0]
    handle.emit_state("Connected")

    for state in ("LocalHold", "RemoteHold", "SomethingNew"):
        handle.emit_state(state)

    assert ready_controller.state is CallState.ONGOING


async def test_reset_is_noop_outside_call_summary(ready_controller):
    assert not ready_controller.reset().accepted

    await ready_controller.place_call("+14155550123")
    result = ready_controller.reset()

    assert not result.accepted
    assert ready_controller.state is CallState.DIALING


async def test_session_object_survives_reset(ready_controller, fake_agent):
    session = ready_controller.session
    await ready_controller.place_call("+14155550123")
    fake_agent.calls[0].emit_state("Disconnected")
    ready_controller.reset()

    assert ready_controller.session is session


# ---------- hang_up ----------


async def test_hang_up_in_idle_is_benign_noop(ready_controller):
    result = await ready_controller.hang_up()

    assert isinstance(result.error, NoActiveCall)
    assert result.ok
    assert ready_controller.state is CallState.IDLE


async def test_hang_up_in_call_summary_is_noop(ready_controller, fake_agent):
    await ready_controller.place_call("+14155550123")
    handle = fake_agent.calls[0]
    handle.emit_state("Disconnected")

    result = await ready_controller.hang_up()

    assert isinstance(result.error, NoActiveCall)
    assert handle.hang_up_calls == 0
    assert ready_controller.state is CallState.CALL_SUMMARY


async def test_hang_up_waits_for_backend_disconnect(ready_controller, fake_agent):
    await ready_controller.place_call("+14155550123")
    handle = fake_agent.calls[0]
    handle.emit_state("Connected")

    result = await ready_controller.hang_up()

    assert result.accepted
    assert handle.hang_up_calls == 1
    assert ready_controller.state is CallState.ONGOING
    assert ready_controller.session.backend_handle is handle

    handle.emit_state("Disconnected")
    assert ready_controller.state is CallState.CALL_SUMMARY


async def test_hang_up_backend_failure_is_reported(ready_controller, fake_agent):
    await ready_controller.place_call("+14155550123")
    handle = fake_agent.calls[0]
    handle.fail_hang_up = True

    result = await ready_controller.hang_up()

    assert isinstance(result.error, BackendUnavailable)
    assert ready_controller.state is CallState.DIALING


# ---------- Listeners and agent events ----------


async def test_state_listeners_see_transitions(ready_controller, fake_agent):
    seen = []
    ready_controller.add_state_listener(lambda prev, cur, session: seen.append((prev, cur)))

    await ready_controller.place_call("+14155550123")
    fake_agent.calls[0].emit_state("Connected")
    fake_agent.calls[0].emit_state("Disconnected")
    ready_controller.reset()

    assert seen == [
        (CallState.IDLE, CallState.DIALING),
        (CallState.DIALING, CallState.ONGOING),
        (CallState.ONGOING, CallState.CALL_SUMMARY),
        (CallState.CALL_SUMMARY, CallState.IDLE),
    ]


async def test_failing_listener_does_not_break_controller(ready_controller, fake_agent):
    def _boom(prev, cur, session):
        raise RuntimeError("listener bug")

    ready_controller.add_state_listener(_boom)

    result = await ready_controller.place_call("+14155550123")
    fake_agent.calls[0].emit_state("Connected")

    assert result.accepted
    assert ready_controller.state is CallState.ONGOING


async def test_incoming_call_is_observed_only(ready_controller, fake_agent):
    assert "incomingCall" in fake_agent.callbacks

    for callback in fake_agent.callbacks["incomingCall"]:
        callback({"callId": "inbound-1"})

    assert ready_controller.state is CallState.IDLE


async def test_target_address_ignored_while_active(ready_controller):
    await ready_controller.place_call("+14155550123")

    ready_controller.set_target_address("+14155550199")

    assert ready_controller.session.target_address == "+14155550123"


async def test_async_listener_failure_is_logged(ready_controller, caplog):
    async def _boom(prev, cur, session):
        raise RuntimeError("async listener bug")

    ready_controller.add_state_listener(_boom)

    with caplog.at_level(logging.ERROR, logger="calling.controller"):
        result = await ready_controller.place_call("+14155550123")
        for _ in range(5):
            await asyncio.sleep(0)

    assert result.accepted
    assert "Async state listener failed" in caplog.text
    assert not ready_controller._listener_tasks
