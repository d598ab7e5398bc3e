"""Tests for trigger matching."""

import pytest

from automation_engine.core.exceptions import MatchError
from automation_engine.core.trigger_matcher import TriggerMatcher, matches
from automation_engine.models.core import WorkflowDefinition

from conftest import linear_definition, make_event


def definition(trigger_type="RECORD_UPDATED", trigger_field=None, is_active=True):
    return WorkflowDefinition.model_validate(
        linear_definition("a1", trigger_type=trigger_type, trigger_field=trigger_field, is_active=is_active)
    )


class TestTriggerMatcher:
    """Test cases for TriggerMatcher."""

    def test_matching_type_and_object(self):
        assert matches(definition(), make_event()) is True

    def test_event_type_mismatch(self):
        assert matches(definition(), make_event(event_type="RECORD_CREATED")) is False

    def test_object_type_mismatch(self):
        assert matches(definition(), make_event(object_type="contacts")) is False

    def test_field_changed_requires_watched_field(self):
        wf = definition("FIELD_CHANGED", trigger_field="status")
        assert matches(wf, make_event("FIELD_CHANGED", changed_fields=["status", "amount"])) is True
        assert matches(wf, make_event("FIELD_CHANGED", changed_fields=["amount"])) is False
        assert matches(wf, make_event("FIELD_CHANGED")) is False

    def test_stage_changed_requires_different_stage(self):
        wf = definition("STAGE_CHANGED")
        moved = make_event("STAGE_CHANGED", before={"stage": "lead"}, after={"stage": "won"})
        same = make_event("STAGE_CHANGED", before={"stage": "won"}, after={"stage": "won"})
        assert matches(wf, moved) is True
        assert matches(wf, same) is False

    def test_malformed_event_does_not_match(self):
        assert matches(definition(), {"eventType": "RECORD_UPDATED"}) is False
        assert matches(definition(), "not an event") is False

    def test_coerce_event_raises_for_malformed_input(self):
        with pytest.raises(MatchError):
            TriggerMatcher().coerce_event({"objectType": "deals"})

    def test_inactive_definition_never_activates(self):
        matcher = TriggerMatcher()
        wf = definition(is_active=False)
        assert matcher.matches(wf, make_event()) is True
        assert matcher.matches_definition(wf, make_event()) is False

    def test_matching_does_not_mutate_event(self):
        event = make_event()
        snapshot = dict(event)
        matches(definition(), event)
        assert event == snapshot
