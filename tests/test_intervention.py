import asyncio

import pytest

from autofill_errors import InterventionRequired, RunCancelled
from conftest import EventRecorder
from engine_events import NOTICE, NOTICE_CLEARED, REQUIRES_USER_INTERVENTION, EventBus
from execution_run import ExecutionRun, PauseOrigin, RunState
from intervention import InterventionGate
from plan_schema import PauseForInputStep, Plan


def _running():
    run = ExecutionRun(plan=Plan(steps=(PauseForInputStep(),)))
    run.transition(RunState.RUNNING)
    return run


def _bus():
    bus = EventBus()
    recorder = EventRecorder()
    for name in (REQUIRES_USER_INTERVENTION, NOTICE, NOTICE_CLEARED):
        bus.on(name, recorder)
    return bus, recorder


@pytest.mark.asyncio
async def test_request_pauses_notifies_and_returns_on_resume():
    bus, recorder = _bus()
    resolved = []

    async def on_resolved(run):
        resolved.append(run.run_id)

    gate = InterventionGate(bus, on_resolved=on_resolved)
    run = _running()

    task = asyncio.create_task(gate.request(run, "Solve the CAPTCHA"))
    await asyncio.sleep(0.01)

    assert run.state is RunState.PAUSED
    assert run.pause_origin is PauseOrigin.INTERVENTION
    [required] = recorder.named(REQUIRES_USER_INTERVENTION)
    assert required.to_message() == {"action": "requiresUserIntervention", "message": "Solve the CAPTCHA"}
    [notice] = recorder.named(NOTICE)
    assert notice.severity == "warning"
    assert notice.auto_dismiss_ms == 0
    assert "Solve the CAPTCHA" in notice.message

    run.transition(RunState.RUNNING)
    await asyncio.wait_for(task, timeout=1)

    assert resolved == [run.run_id]
    assert len(recorder.named(NOTICE_CLEARED)) == 1


@pytest.mark.asyncio
async def test_cancel_while_waiting_raises_cancelled():
    bus, recorder = _bus()
    run = _running()
    task = asyncio.create_task(InterventionGate(bus).request(run, "Upload ID"))
    await asyncio.sleep(0.01)

    run.transition(RunState.CANCELLED)

    with pytest.raises(RunCancelled):
        await asyncio.wait_for(task, timeout=1)
    assert len(recorder.named(NOTICE_CLEARED)) == 1


@pytest.mark.asyncio
async def test_configured_timeout_raises_and_hands_back_control():
    bus, _ = _bus()
    run = _running()

    with pytest.raises(InterventionRequired) as excinfo:
        await InterventionGate(bus, timeout_ms=10).request(run, "Verify email")

    assert excinfo.value.timeout_ms == 10
    assert run.state is RunState.RUNNING


@pytest.mark.asyncio
async def test_existing_user_pause_is_honoured_before_intervening():
    bus, recorder = _bus()
    run = _running()
    run.pause(PauseOrigin.USER)

    task = asyncio.create_task(InterventionGate(bus).request(run, "Sign here"))
    await asyncio.sleep(0.01)
    assert recorder.named(REQUIRES_USER_INTERVENTION) == []

    run.transition(RunState.RUNNING)
    await asyncio.sleep(0.01)
    assert run.pause_origin is PauseOrigin.INTERVENTION
    assert len(recorder.named(REQUIRES_USER_INTERVENTION)) == 1

    run.transition(RunState.RUNNING)
    await asyncio.wait_for(task, timeout=1)
