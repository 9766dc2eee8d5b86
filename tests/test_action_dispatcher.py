from datetime import datetime, timedelta, timezone

import httpx
import pytest

from exceptions import DispatchError
from rules_engine.actions import (
    ActionDispatcher,
    ConfirmationGate,
    ConfirmationStatus,
    LogActionHandler,
    WebhookActionHandler
)
from rules_engine.models import (
    ActionType,
    LightAction,
    NotificationAction,
    OutcomeStatus,
    PoliceAction,
    SpeakerAction
)

from conftest import FailingHandler, RecordingHandler, SlowHandler

pytestmark = pytest.mark.anyio


VEXOR_ACTIONS = [
    SpeakerAction(value="Leave the property now."),
    LightAction(value="red_flash"),
    NotificationAction(value="Intruder detected"),
]


async def test_all_actions_succeed():
    recorder = RecordingHandler()
    dispatcher = ActionDispatcher({t: recorder for t in ActionType})

    result = await dispatcher.dispatch(VEXOR_ACTIONS, {"event_id": "e1"}, rule_id="vexor-warning")

    assert result.all_succeeded
    assert [o.action_type for o in result.outcomes] == ["speaker", "light", "notification"]
    assert sorted(recorder.action_types) == ["light", "notification", "speaker"]
    assert all(ctx["rule_id"] == "vexor-warning" for _, ctx in recorder.calls)


async def test_one_failure_does_not_block_siblings():
    recorder = RecordingHandler()
    dispatcher = ActionDispatcher({
        ActionType.SPEAKER: recorder,
        ActionType.LIGHT: FailingHandler("bulb unreachable"),
        ActionType.NOTIFICATION: recorder,
    })

    result = await dispatcher.dispatch(VEXOR_ACTIONS, rule_id="vexor-warning")

    assert [o.status for o in result.outcomes] == [
        OutcomeStatus.SUCCEEDED, OutcomeStatus.FAILED, OutcomeStatus.SUCCEEDED
    ]
    assert result.outcomes[1].reason == "bulb unreachable"
    assert [o.action_type for o in result.succeeded] == ["speaker", "notification"]


async def test_unexpected_exception_is_contained():
    class Exploding:
        def handle(self, action, context):
            raise RuntimeError("boom")

    dispatcher = ActionDispatcher({ActionType.LIGHT: Exploding()})
    result = await dispatcher.dispatch([LightAction(value="red_flash")])

    assert result.outcomes[0].status == OutcomeStatus.FAILED
    assert result.outcomes[0].reason == "RuntimeError: boom"


async def test_timeout_marks_action_failed():
    recorder = RecordingHandler()
    dispatcher = ActionDispatcher(
        {ActionType.SPEAKER: SlowHandler(delay=5), ActionType.LIGHT: recorder},
        timeout_seconds=0.05
    )

    result = await dispatcher.dispatch(VEXOR_ACTIONS[:2])

    assert result.outcomes[0].status == OutcomeStatus.FAILED
    assert result.outcomes[0].reason == "timeout"
    assert result.outcomes[1].status == OutcomeStatus.SUCCEEDED


async def test_missing_handler_is_skipped():
    dispatcher = ActionDispatcher({ActionType.NOTIFICATION: RecordingHandler()})

    result = await dispatcher.dispatch(VEXOR_ACTIONS)

    assert [o.status for o in result.outcomes] == [
        OutcomeStatus.SKIPPED, OutcomeStatus.SKIPPED, OutcomeStatus.SUCCEEDED
    ]
    assert result.outcomes[0].reason == "no handler registered"
    assert len(result.attempted) == 1


async def test_police_waits_for_confirmation():
    recorder = RecordingHandler()
    gate = ConfirmationGate()
    dispatcher = ActionDispatcher({t: recorder for t in ActionType}, confirmation_gate=gate)

    actions = [PoliceAction(value="emergency"), NotificationAction(value="Police contacted")]
    result = await dispatcher.dispatch(actions, rule_id="auto-police-contact")

    police = result.outcomes[0]
    assert police.status == OutcomeStatus.SKIPPED
    assert police.reason == "awaiting confirmation"
    assert recorder.action_types == ["notification"]

    token = gate.get(police.details["confirmation_token"])
    assert token.status == ConfirmationStatus.PENDING
    assert token.rule_id == "auto-police-contact"

    approved = gate.approve(token.token_id, "admin")
    outcome = await dispatcher.execute_confirmed(approved)

    assert outcome.status == OutcomeStatus.SUCCEEDED
    assert recorder.action_types == ["notification", "police"]
    assert approved.result["status"] == "succeeded"


async def test_police_auto_confirm():
    recorder = RecordingHandler()
    dispatcher = ActionDispatcher(
        {ActionType.POLICE: recorder},
        confirmation_gate=ConfirmationGate(auto_confirm=True)
    )

    result = await dispatcher.dispatch([PoliceAction(value="emergency")])

    assert result.all_succeeded
    assert recorder.action_types == ["police"]


def test_pending_request_is_reused():
    gate = ConfirmationGate()
    action = PoliceAction(value="emergency")

    first = gate.request(action, {"rule_id": "r1"})
    second = gate.request(action, {"rule_id": "r1"})
    other = gate.request(action, {"rule_id": "r2"})

    assert first is second
    assert other is not first
    assert len(gate.pending()) == 2


def test_decided_token_cannot_be_decided_again():
    gate = ConfirmationGate()
    token = gate.request(PoliceAction(value="emergency"), {"rule_id": "r1"})

    assert gate.reject(token.token_id, "admin", "false alarm") is token
    assert token.status == ConfirmationStatus.REJECTED
    assert gate.approve(token.token_id, "admin") is None
    assert gate.approve("unknown", "admin") is None


def test_expired_tokens():
    gate = ConfirmationGate(timeout_minutes=-1, retention_minutes=0)
    token = gate.request(PoliceAction(value="emergency"), {"rule_id": "r1"})

    assert gate.approve(token.token_id, "admin") is None
    assert token.status == ConfirmationStatus.EXPIRED
    assert token.decided_at == token.expires_at
    assert gate.cleanup() == 1
    assert gate.get(token.token_id) is None


def test_decided_tokens_are_dropped_after_retention():
    gate = ConfirmationGate(timeout_minutes=120, retention_minutes=30)
    approved = gate.request(PoliceAction(value="emergency"), {"rule_id": "r1"})
    rejected = gate.request(PoliceAction(value="emergency"), {"rule_id": "r2"})
    waiting = gate.request(PoliceAction(value="emergency"), {"rule_id": "r3"})
    gate.approve(approved.token_id, "admin")
    gate.reject(rejected.token_id, "admin")

    assert gate.cleanup() == 0
    assert len(gate.list_tokens()) == 3

    later = datetime.now(timezone.utc) + timedelta(minutes=31)
    assert gate.cleanup(now=later) == 2
    assert [t.token_id for t in gate.list_tokens()] == [waiting.token_id]


def test_new_request_drops_stale_tokens():
    gate = ConfirmationGate(retention_minutes=0)
    first = gate.request(PoliceAction(value="emergency"), {"rule_id": "r1"})
    gate.approve(first.token_id, "admin")

    second = gate.request(PoliceAction(value="emergency"), {"rule_id": "r2"})

    assert gate.get(first.token_id) is None
    assert gate.get(second.token_id) is second


def test_register_rejects_non_handlers():
    dispatcher = ActionDispatcher()
    with pytest.raises(TypeError):
        dispatcher.register(ActionType.LIGHT, object())
    with pytest.raises(ValueError):
        dispatcher.register("laser", RecordingHandler())


async def test_log_handler_keeps_history():
    handler = LogActionHandler(max_history=2)
    dispatcher = ActionDispatcher({t: handler for t in ActionType})

    await dispatcher.dispatch(VEXOR_ACTIONS, {"event_id": "e1"}, rule_id="vexor-warning")

    assert len(handler.history) == 2
    assert handler.history[-1]["rule_id"] == "vexor-warning"


async def test_webhook_handler_posts_action():
    seen = []

    def respond(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    async with httpx.AsyncClient(transport=httpx.MockTransport(respond)) as client:
        handler = WebhookActionHandler("http://hub.local/actions", client=client)
        result = await handler.handle(LightAction(value="red_flash"), {"rule_id": "vexor-warning", "event_id": "e1"})

    assert result["status_code"] == 204
    assert seen[0].method == "POST"
    assert b'"red_flash"' in seen[0].content


async def test_webhook_handler_error_status():
    transport = httpx.MockTransport(lambda request: httpx.Response(503))
    async with httpx.AsyncClient(transport=transport) as client:
        handler = WebhookActionHandler("http://hub.local/actions", client=client)
        with pytest.raises(DispatchError, match="HTTP 503"):
            await handler.handle(LightAction(value="red_flash"), {})
