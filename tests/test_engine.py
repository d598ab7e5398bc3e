"""Tests for definition management and the engine facade."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from automation_engine.core.catalog import list_operators, list_triggers, list_variables
from automation_engine.core.definition_manager import DefinitionManager
from automation_engine.core.engine import WorkflowEngine
from automation_engine.core.exceptions import (
    ConfigurationError,
    DefinitionNotFoundError,
    ExecutionEngineError,
    GraphValidationError,
)
from automation_engine.core.graph_validator import GraphValidator
from automation_engine.models.core import ExecutionRun, RunStatus

from conftest import action_node, edge, linear_definition, make_definition, make_event, trigger_node


NOW = datetime(2024, 1, 15, 10, 0, 0)


@pytest.fixture
def manager(memory_store, dispatcher):
    return DefinitionManager(memory_store, GraphValidator(dispatcher))


@pytest.fixture
def engine(memory_store, dispatcher, config):
    engine = WorkflowEngine(memory_store, dispatcher, config=config, clock=lambda: NOW)
    yield engine
    engine.shutdown()


class TestDefinitionManager:
    """Test cases for DefinitionManager."""

    def test_save_valid_definition(self, manager):
        stored = manager.save(linear_definition("a1"))
        assert stored.id == "wf-1"
        assert stored.version == 1

    def test_invalid_definition_is_not_saved(self, manager, memory_store):
        payload = make_definition([trigger_node(), action_node("a1"), action_node("orphan")], [edge("trigger", "a1")])
        with pytest.raises(GraphValidationError) as exc_info:
            manager.save(payload)

        assert [issue.code for issue in exc_info.value.issues] == ["unreachable_node"]
        assert exc_info.value.details["validation_errors"][0]["node_id"] == "orphan"
        assert memory_store.list_definitions() == []

    def test_malformed_payload(self, manager):
        with pytest.raises(GraphValidationError) as exc_info:
            manager.save({"id": "x", "name": "No object"})
        assert all(issue.code == "invalid_definition" for issue in exc_info.value.issues)

    def test_create_generates_id(self, manager):
        payload = linear_definition("a1")
        del payload["id"]
        stored = manager.create(payload)
        assert stored.id
        assert manager.get(stored.id).name == "Test workflow"

    def test_toggle(self, manager):
        manager.save(linear_definition("a1", is_active=False))
        assert manager.toggle("wf-1").is_active is True
        assert manager.toggle("wf-1").is_active is False

    def test_duplicate(self, manager):
        manager.save(linear_definition("a1", is_active=True))
        copy = manager.duplicate("wf-1")

        assert copy.id != "wf-1"
        assert copy.name == "Test workflow (Copy)"
        assert copy.is_active is False
        assert copy.version == 1
        assert manager.page_summaries().meta.total == 2

    def test_summaries(self, manager):
        manager.save(linear_definition("a1", "a2"))
        summary = manager.page_summaries().data[0]
        assert summary.trigger_type == "RECORD_UPDATED"
        assert summary.node_count == 3

    def test_delete(self, manager):
        manager.save(linear_definition("a1"))
        assert manager.delete("wf-1") is True
        assert manager.delete("wf-1") is False

    def test_page_summaries(self, manager):
        for definition_id in ("a", "b", "c"):
            manager.save(linear_definition("a1", definition_id=definition_id))

        page = manager.page_summaries(page=2, limit=2)

        assert len(page.data) == 1
        assert page.meta.to_wire() == {"total": 3, "page": 2, "limit": 2, "totalPages": 2}
        assert manager.page_summaries(object_id="contacts").meta.total_pages == 0

    def test_page_runs(self, manager, memory_store):
        stored = manager.save(linear_definition("a1"))
        for _ in range(3):
            memory_store.create_run(
                ExecutionRun(
                    id=str(uuid.uuid4()),
                    definition_id=stored.id,
                    definition_version=stored.version,
                    event=make_event(),
                )
            )

        page = manager.page_runs("wf-1", page=1, limit=2)

        assert len(page.data) == 2
        assert page.meta.total == 3
        assert page.meta.total_pages == 2
        assert manager.page_runs("wf-1", status=RunStatus.FAILED).meta.total == 0

    def test_page_runs_of_missing_definition(self, manager):
        with pytest.raises(DefinitionNotFoundError):
            manager.page_runs("nope")


class TestWorkflowEngine:
    """Test cases for event intake and the timer hook."""

    def test_event_starts_every_matching_definition(self, engine):
        engine.definitions.save(linear_definition("a1", definition_id="wf-1"))
        engine.definitions.save(linear_definition("a1", definition_id="wf-2"))
        engine.definitions.save(linear_definition("a1", definition_id="other", object_id="contacts"))
        engine.definitions.save(linear_definition("a1", definition_id="off", is_active=False))

        runs = engine.handle_event(make_event())

        assert sorted(run.definition_id for run in runs) == ["wf-1", "wf-2"]
        assert all(run.status == RunStatus.COMPLETED for run in runs)

    def test_non_matching_event_starts_nothing(self, engine):
        engine.definitions.save(linear_definition("a1"))
        assert engine.handle_event(make_event(event_type="RECORD_DELETED")) == []

    def test_malformed_event_starts_nothing(self, engine):
        engine.definitions.save(linear_definition("a1"))
        assert engine.handle_event({"eventType": "RECORD_UPDATED"}) == []

    def test_runs_are_isolated(self, engine, recorder):
        def fail_for_second(config, invocation):
            if config.get("label") == "boom":
                raise RuntimeError("handler crashed")

        recorder.on_execute = fail_for_second
        engine.definitions.save(linear_definition("a1", definition_id="ok"))
        engine.definitions.save(make_definition(
            [trigger_node(), action_node("a1", config={"label": "boom"})],
            [edge("trigger", "a1")],
            definition_id="bad",
        ))

        runs = {run.definition_id: run for run in engine.handle_event(make_event())}
        assert runs["ok"].status == RunStatus.COMPLETED
        assert runs["bad"].status == RunStatus.FAILED

    def test_resume_due_runs(self, engine):
        engine.definitions.save(make_definition(
            [trigger_node(), action_node("wait", action_type="DELAY", config={"duration": 10, "unit": "seconds"}),
             action_node("a2")],
            [edge("trigger", "wait"), edge("wait", "a2")],
        ))
        [run] = engine.handle_event(make_event())
        assert run.status == RunStatus.SUSPENDED

        assert engine.resume_due_runs(NOW + timedelta(seconds=5)) == []
        [resumed] = engine.resume_due_runs(NOW + timedelta(seconds=10))
        assert resumed.id == run.id
        assert resumed.status == RunStatus.COMPLETED

    def test_resume_due_runs_with_aware_time(self, engine):
        engine.definitions.save(make_definition(
            [trigger_node(), action_node("wait", action_type="DELAY", config={"duration": 10, "unit": "seconds"}),
             action_node("a2")],
            [edge("trigger", "wait"), edge("wait", "a2")],
        ))
        [run] = engine.handle_event(make_event())

        aware = (NOW + timedelta(seconds=10)).replace(tzinfo=timezone.utc)
        [resumed] = engine.resume_due_runs(aware)

        assert resumed.id == run.id
        assert resumed.status == RunStatus.COMPLETED

    def test_start_directly(self, engine):
        engine.definitions.save(linear_definition("a1"))
        run = engine.start("wf-1", make_event(event_type="RECORD_CREATED"))
        assert run.status == RunStatus.COMPLETED
        assert engine.get_run(run.id).id == run.id

    def test_shutdown_refuses_new_events(self, memory_store, dispatcher, config):
        engine = WorkflowEngine(memory_store, dispatcher, config=config)
        engine.shutdown()
        with pytest.raises(ExecutionEngineError):
            engine.submit_event(make_event())


class TestCatalog:
    """Test cases for editor metadata."""

    def test_triggers(self):
        types = [trigger["type"] for trigger in list_triggers()]
        assert types == ["RECORD_CREATED", "RECORD_UPDATED", "RECORD_DELETED", "FIELD_CHANGED", "STAGE_CHANGED"]

    def test_operators(self):
        operators = {op["value"]: op for op in list_operators()}
        assert operators["is_empty"]["requiresValue"] is False
        assert operators["equals"]["requiresValue"] is True

    def test_variables_per_trigger(self):
        names = [variable["name"] for variable in list_variables("FIELD_CHANGED")]
        assert "{{record.id}}" in names
        assert "{{field.new}}" in names
        assert "{{stage.new}}" not in names

    def test_unknown_trigger(self):
        with pytest.raises(ConfigurationError):
            list_variables("TIME_BASED")
