"""Tests for the action dispatcher and the built-in handlers."""

from datetime import datetime, timedelta

import pytest

from automation_engine.actions.base import ActionHandler, ActionInvocation
from automation_engine.actions.delay import DelayHandler, compute_resume_at
from automation_engine.core.action_dispatcher import ActionDispatcher
from automation_engine.core.exceptions import ConfigurationError, SchedulingError, TransientActionError
from automation_engine.models.core import ActionResultStatus

from conftest import FakeResponse, RecordingHandler, http_error


INVOCATION = ActionInvocation(run_id="run-1", node_id="node-1", record_id="rec-1", object_id="deals")


class ExplodingHandler(ActionHandler):
    action_type = "EXPLODE"

    def execute(self, config, invocation=None):
        raise RuntimeError("boom")


class TestActionDispatcher:
    """Test cases for handler registration and dispatch."""

    def test_register_and_list(self):
        dispatcher = ActionDispatcher()
        dispatcher.register_handler(RecordingHandler())
        assert dispatcher.has_handler("RECORD")
        assert dispatcher.list_action_types() == ["RECORD"]
        assert dispatcher.required_config_for("RECORD") == ["label"]

    def test_duplicate_registration_rejected(self):
        dispatcher = ActionDispatcher()
        dispatcher.register_handler(RecordingHandler())
        with pytest.raises(ConfigurationError):
            dispatcher.register_handler(RecordingHandler())
        dispatcher.register_handler(RecordingHandler(), replace=True)

    def test_unregister(self):
        dispatcher = ActionDispatcher()
        dispatcher.register_handler(RecordingHandler())
        assert dispatcher.unregister_handler("RECORD") is True
        assert dispatcher.unregister_handler("RECORD") is False

    def test_unknown_type_is_a_fatal_failure(self):
        result = ActionDispatcher().dispatch("NOPE", {}, INVOCATION)
        assert result.status == ActionResultStatus.FAILED
        assert result.error_details["fatal"] is True
        assert "Unknown action type" in result.error

    def test_handler_crash_becomes_failed_result(self):
        dispatcher = ActionDispatcher()
        dispatcher.register_handler(ExplodingHandler())
        result = dispatcher.dispatch("EXPLODE", {}, INVOCATION)
        assert result.status == ActionResultStatus.FAILED
        assert "boom" in result.error

    def test_result_is_stamped(self, recorder):
        dispatcher = ActionDispatcher()
        dispatcher.register_handler(recorder)
        invocation = ActionInvocation(run_id="r", node_id="n7", iteration=(2,))
        result = dispatcher.dispatch("RECORD", {"label": "x"}, invocation)

        assert result.status == ActionResultStatus.SUCCEEDED
        assert result.node_id == "n7"
        assert result.action_type == "RECORD"
        assert result.iteration == [2]
        assert recorder.calls == [{"label": "x"}]

    def test_builtin_catalogue(self, dispatcher):
        types = {entry["type"] for entry in dispatcher.describe_actions()}
        assert {"SEND_EMAIL", "SEND_TELEGRAM", "CREATE_TASK", "CREATE_NOTIFICATION",
                "UPDATE_FIELD", "WEBHOOK", "DELAY"} <= types

    def test_update_field_value_is_nullable(self, dispatcher):
        assert dispatcher.required_config_for("UPDATE_FIELD") == ["field"]
        assert dispatcher.nullable_config_for("UPDATE_FIELD") == ["value"]
        [entry] = [entry for entry in dispatcher.describe_actions() if entry["type"] == "UPDATE_FIELD"]
        assert entry["nullableConfig"] == ["value"]


class TestWebhookAction:
    """Test cases for WEBHOOK retries and error classification."""

    def test_success(self, dispatcher, fake_session):
        fake_session.queue(FakeResponse(201, {"id": 9}, reason="Created"))
        result = dispatcher.dispatch("WEBHOOK", {"url": "https://hooks.example.com/a", "body": {"x": 1}}, INVOCATION)

        assert result.status == ActionResultStatus.SUCCEEDED
        assert result.output == {"status": 201, "statusText": "Created", "body": {"id": 9}}
        assert result.attempts == 1

        call = fake_session.calls[0]
        assert call["method"] == "POST"
        assert call["json"] == {"x": 1}
        assert call["headers"]["Content-Type"] == "application/json"
        assert call["headers"]["Idempotency-Key"] == INVOCATION.idempotency_key

    def test_server_errors_are_retried_then_fail(self, dispatcher, fake_session, config):
        fake_session.queue(*[FakeResponse(500, text="down") for _ in range(config.webhook_max_attempts)])
        result = dispatcher.dispatch("WEBHOOK", {"url": "https://hooks.example.com/a"}, INVOCATION)

        assert result.status == ActionResultStatus.FAILED
        assert result.attempts == config.webhook_max_attempts
        assert len(fake_session.calls) == config.webhook_max_attempts
        assert result.error_details["transient"] is True
        assert result.error_details["statusCode"] == 500

    def test_retry_recovers(self, dispatcher, fake_session):
        fake_session.queue(http_error(), FakeResponse(200, {"ok": True}))
        result = dispatcher.dispatch("WEBHOOK", {"url": "https://hooks.example.com/a"}, INVOCATION)

        assert result.status == ActionResultStatus.SUCCEEDED
        assert result.attempts == 2

    def test_client_error_fails_immediately(self, dispatcher, fake_session):
        fake_session.queue(FakeResponse(404, text="missing", reason="Not Found"))
        result = dispatcher.dispatch("WEBHOOK", {"url": "https://hooks.example.com/a"}, INVOCATION)

        assert result.status == ActionResultStatus.FAILED
        assert result.attempts == 1
        assert len(fake_session.calls) == 1
        assert result.error_details["transient"] is False
        assert result.error_details["statusCode"] == 404

    def test_same_iteration_reuses_idempotency_key(self):
        first = ActionInvocation(run_id="r", node_id="n", iteration=(1,))
        again = ActionInvocation(run_id="r", node_id="n", iteration=(1,))
        other = ActionInvocation(run_id="r", node_id="n", iteration=(2,))
        assert first.idempotency_key == again.idempotency_key
        assert first.idempotency_key != other.idempotency_key

    def test_get_sends_no_body_and_string_body_is_raw(self, dispatcher, fake_session):
        dispatcher.dispatch("WEBHOOK", {"url": "https://x.io", "method": "get", "body": {"a": 1}}, INVOCATION)
        dispatcher.dispatch("WEBHOOK", {"url": "https://x.io", "method": "PUT", "body": "raw"}, INVOCATION)

        get_call, put_call = fake_session.calls
        assert get_call["method"] == "GET" and get_call["json"] is None
        assert put_call["data"] == b"raw" and put_call["json"] is None

    def test_unsupported_method(self, dispatcher):
        result = dispatcher.dispatch("WEBHOOK", {"url": "https://x.io", "method": "TRACE"}, INVOCATION)
        assert result.status == ActionResultStatus.FAILED
        assert result.error_details["fatal"] is True


class TestBuiltinHandlers:
    """Test cases for the CRM-facing handlers."""

    def test_send_email(self, dispatcher, gateway):
        result = dispatcher.dispatch(
            "SEND_EMAIL",
            {"templateId": "welcome", "to": "a@x.io, b@x.io", "data": {"name": "Ada"}},
            INVOCATION,
        )
        assert result.status == ActionResultStatus.SUCCEEDED
        assert gateway.emails[0]["to"] == ["a@x.io", "b@x.io"]
        assert gateway.emails[0]["data"] == {"name": "Ada"}

    def test_send_email_is_idempotent_per_invocation(self, dispatcher, gateway):
        config = {"templateId": "welcome", "to": "a@x.io"}
        dispatcher.dispatch("SEND_EMAIL", config, INVOCATION)
        dispatcher.dispatch("SEND_EMAIL", config, INVOCATION)
        assert len(gateway.emails) == 1

    def test_send_email_requires_recipients(self, dispatcher):
        result = dispatcher.dispatch("SEND_EMAIL", {"templateId": "welcome", "to": ""}, INVOCATION)
        assert result.status == ActionResultStatus.FAILED

    def test_create_task(self, dispatcher, gateway):
        result = dispatcher.dispatch("CREATE_TASK", {"title": "Call", "priority": "high", "dueInDays": 2}, INVOCATION)
        assert result.status == ActionResultStatus.SUCCEEDED
        task = gateway.tasks[0]
        assert task["priority"] == "HIGH"
        assert task["recordId"] == "rec-1"
        assert task["dueDate"] is not None

    def test_create_task_rejects_unknown_priority(self, dispatcher, gateway):
        result = dispatcher.dispatch("CREATE_TASK", {"title": "Call", "priority": "someday"}, INVOCATION)
        assert result.status == ActionResultStatus.FAILED
        assert gateway.tasks == []

    def test_create_notification_defaults_type(self, dispatcher, gateway):
        dispatcher.dispatch("CREATE_NOTIFICATION", {"userId": "u1", "title": "Hi", "message": "Deal won"}, INVOCATION)
        assert gateway.notifications[0]["type"] == "info"

    def test_update_field_targets_triggering_record(self, dispatcher, gateway):
        dispatcher.dispatch("UPDATE_FIELD", {"field": "status", "value": "closed"}, INVOCATION)
        assert gateway.field_updates == [
            {"objectId": "deals", "recordId": "rec-1", "field": "status", "value": "closed"}
        ]

    def test_send_telegram(self, dispatcher, fake_session, config):
        fake_session.queue(FakeResponse(200, {"ok": True, "result": {"message_id": 5}}))
        result = dispatcher.dispatch("SEND_TELEGRAM", {"chatId": "42", "message": "<b>won</b>"}, INVOCATION)

        assert result.status == ActionResultStatus.SUCCEEDED
        call = fake_session.calls[0]
        assert call["url"] == f"{config.telegram_api_base}/bot{config.telegram_bot_token}/sendMessage"
        assert call["json"] == {"chat_id": "42", "text": "<b>won</b>", "parse_mode": "HTML"}

    def test_send_telegram_api_error(self, dispatcher, fake_session):
        fake_session.queue(FakeResponse(200, {"ok": False, "description": "chat not found"}))
        result = dispatcher.dispatch("SEND_TELEGRAM", {"chatId": "42", "message": "hi"}, INVOCATION)
        assert result.status == ActionResultStatus.FAILED
        assert "chat not found" in result.error


class TestDelay:
    """Test cases for delay scheduling."""

    def test_compute_resume_at(self):
        now = datetime(2024, 1, 1, 12, 0, 0)
        assert compute_resume_at({"duration": 2, "unit": "hours"}, now) == now + timedelta(hours=2)
        assert compute_resume_at({"duration": "30"}, now) == now + timedelta(minutes=30)

    @pytest.mark.parametrize("config", [
        {"duration": 0},
        {"duration": -1},
        {"duration": "soon"},
        {},
        {"duration": 5, "unit": "fortnights"},
    ])
    def test_invalid_delay(self, config):
        with pytest.raises(SchedulingError):
            DelayHandler().schedule(config, datetime(2024, 1, 1))

    def test_transient_error_is_retryable(self):
        assert TransientActionError("x").recoverable is True
