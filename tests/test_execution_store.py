"""Tests for the in-memory and SQL execution stores."""

import uuid
from datetime import datetime, timedelta

import pytest

from automation_engine.core.exceptions import DefinitionNotFoundError, RunNotFoundError
from automation_engine.models.core import (
    ActionResult,
    ActionResultStatus,
    ExecutionRun,
    LoopFrame,
    RunStatus,
    SuspensionPoint,
    WorkflowDefinition,
)

from conftest import linear_definition, make_event


def definition(definition_id="wf-1", name="Test workflow", object_id="deals", is_active=True):
    return WorkflowDefinition.model_validate(
        linear_definition("a1", definition_id=definition_id, name=name, object_id=object_id, is_active=is_active)
    )


def new_run(stored, status=RunStatus.RUNNING, started_at=None):
    run = ExecutionRun(
        id=str(uuid.uuid4()),
        definition_id=stored.id,
        definition_version=stored.version,
        event=make_event(),
        status=status,
        variables={"threshold": 3},
    )
    if started_at is not None:
        run.started_at = started_at
    return run


class TestDefinitions:
    """Definition storage and versioning, run against both stores."""

    def test_save_and_get(self, store):
        stored = store.save_definition(definition())
        assert stored.version == 1
        assert stored.created_at is not None

        loaded = store.get_definition("wf-1")
        assert loaded.name == "Test workflow"
        assert [node.id for node in loaded.nodes] == ["trigger", "a1"]

    def test_missing_definition(self, store):
        with pytest.raises(DefinitionNotFoundError):
            store.get_definition("nope")

    def test_resave_without_runs_updates_in_place(self, store):
        store.save_definition(definition())
        updated = store.save_definition(definition(name="Renamed"))
        assert updated.version == 1
        assert store.get_definition("wf-1").name == "Renamed"

    def test_resave_with_runs_creates_new_version(self, store):
        v1 = store.save_definition(definition())
        store.create_run(new_run(v1))

        v2 = store.save_definition(definition(name="Renamed"))
        assert v2.version == 2
        assert store.get_definition("wf-1").version == 2
        assert store.get_definition("wf-1", 1).name == "Test workflow"
        with pytest.raises(DefinitionNotFoundError):
            store.get_definition("wf-1", 3)

    def test_list_filters(self, store):
        store.save_definition(definition("a", name="Welcome deals", object_id="deals"))
        store.save_definition(definition("b", name="Chase contacts", object_id="contacts"))
        store.save_definition(definition("c", name="Dormant", is_active=False))

        assert {d.id for d in store.list_definitions()} == {"a", "b", "c"}
        assert {d.id for d in store.list_definitions(object_id="deals")} == {"a", "c"}
        assert {d.id for d in store.list_definitions(is_active=False)} == {"c"}
        assert {d.id for d in store.list_definitions(search="WELCOME")} == {"a"}
        assert {d.id for d in store.list_active_for_object("deals")} == {"a"}

    def test_list_window_and_count(self, store):
        for definition_id in ("a", "b", "c"):
            store.save_definition(definition(definition_id))
        store.save_definition(definition("a", name="Second"))

        first = store.list_definitions(limit=2)
        rest = store.list_definitions(limit=2, offset=2)
        assert len(first) == 2
        assert len(rest) == 1
        assert {d.id for d in first + rest} == {"a", "b", "c"}
        assert store.count_definitions() == 3
        assert store.count_definitions(search="second") == 1
        assert store.list_definitions(limit=2, offset=4) == []

    def test_list_returns_latest_version_only(self, store):
        v1 = store.save_definition(definition())
        store.create_run(new_run(v1))
        store.save_definition(definition(name="Second"))

        listed = store.list_definitions()
        assert len(listed) == 1
        assert listed[0].version == 2

    def test_set_active(self, store):
        store.save_definition(definition(is_active=True))
        assert store.set_active("wf-1", False).is_active is False
        assert store.get_definition("wf-1").is_active is False

    def test_delete_removes_runs(self, store):
        v1 = store.save_definition(definition())
        run = store.create_run(new_run(v1))

        assert store.delete_definition("wf-1") is True
        assert store.delete_definition("wf-1") is False
        with pytest.raises(RunNotFoundError):
            store.get_run(run.id)


class TestRuns:
    """Run persistence, results and suspension, run against both stores."""

    def test_create_and_get(self, store):
        v1 = store.save_definition(definition())
        run = store.create_run(new_run(v1))

        loaded = store.get_run(run.id)
        assert loaded.status == RunStatus.RUNNING
        assert loaded.definition_version == 1
        assert loaded.variables == {"threshold": 3}
        assert loaded.event["recordId"] == "rec-1"
        assert loaded.results == []

    def test_missing_run(self, store):
        with pytest.raises(RunNotFoundError):
            store.get_run("nope")

    def test_results_keep_order(self, store):
        v1 = store.save_definition(definition())
        run = store.create_run(new_run(v1))

        for index in range(3):
            store.append_result(run.id, ActionResult(
                node_id="a1",
                action_type="RECORD",
                status=ActionResultStatus.SUCCEEDED,
                output={"index": index},
                iteration=[index],
            ))
        store.append_result(run.id, ActionResult(
            node_id="a2", status=ActionResultStatus.FAILED, error="nope", error_details={"fatal": True},
        ))

        results = store.get_run(run.id).results
        assert [r.output for r in results[:3]] == [{"index": 0}, {"index": 1}, {"index": 2}]
        assert [r.iteration for r in results[:3]] == [[0], [1], [2]]
        assert results[3].status == ActionResultStatus.FAILED
        assert results[3].error_details == {"fatal": True}

    def test_save_run_does_not_drop_results(self, store):
        v1 = store.save_definition(definition())
        run = store.create_run(new_run(v1))
        store.append_result(run.id, ActionResult(node_id="a1", status=ActionResultStatus.SUCCEEDED))

        run.status = RunStatus.COMPLETED
        store.save_run(run)

        loaded = store.get_run(run.id)
        assert loaded.status == RunStatus.COMPLETED
        assert len(loaded.results) == 1

    def test_suspension_round_trip_and_due_runs(self, store):
        v1 = store.save_definition(definition())
        now = datetime(2024, 1, 1, 12, 0, 0)

        due = store.create_run(new_run(v1))
        later = store.create_run(new_run(v1))
        for run, offset in ((due, -1), (later, 60)):
            run.status = RunStatus.SUSPENDED
            run.suspension = SuspensionPoint(
                delay_node_id="wait",
                resume_node_id="a1",
                resume_at=now + timedelta(minutes=offset),
                loop_frames=[LoopFrame(loop_node_id="each", item_variable="item", items=[1, 2], index=1)],
                visited=["trigger#", "each#1"],
            )
            store.save_run(run)

        assert store.find_due_runs(now) == [due.id]

        loaded = store.get_run(due.id)
        assert loaded.suspension.resume_node_id == "a1"
        assert loaded.suspension.loop_frames[0].index == 1
        assert loaded.suspension.visited == ["trigger#", "each#1"]

    def test_cancel_flag(self, store):
        v1 = store.save_definition(definition())
        run = store.create_run(new_run(v1))

        assert store.is_cancel_requested(run.id) is False
        assert store.request_cancel(run.id) is True
        assert store.is_cancel_requested(run.id) is True

        # a later save from the traversal must not clear the flag
        run.status = RunStatus.RUNNING
        store.save_run(run)
        assert store.is_cancel_requested(run.id) is True

    def test_cancel_terminal_run_is_refused(self, store):
        v1 = store.save_definition(definition())
        run = store.create_run(new_run(v1, status=RunStatus.COMPLETED))
        assert store.request_cancel(run.id) is False

    def test_list_runs(self, store):
        v1 = store.save_definition(definition())
        base = datetime(2024, 1, 1)
        first = store.create_run(new_run(v1, status=RunStatus.COMPLETED, started_at=base))
        second = store.create_run(new_run(v1, status=RunStatus.FAILED, started_at=base + timedelta(hours=1)))

        assert [r.id for r in store.list_runs(definition_id="wf-1")] == [second.id, first.id]
        assert [r.id for r in store.list_runs(status=RunStatus.COMPLETED)] == [first.id]
        assert len(store.list_runs(limit=1)) == 1
        assert [r.id for r in store.list_runs(limit=1, offset=1)] == [first.id]
        assert store.count_runs(definition_id="wf-1") == 2
        assert store.count_runs(definition_id="wf-1", status=RunStatus.FAILED) == 1
        assert store.count_runs(definition_id="other") == 0

    def test_run_lock_is_reentrant(self, store):
        with store.run_lock("r1"):
            with store.run_lock("r1"):
                pass
        store.release_run_lock("r1")
