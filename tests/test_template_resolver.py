"""Tests for template resolution and run context assembly."""

from datetime import datetime

from automation_engine.core.context import Context, build_run_context
from automation_engine.core.template_resolver import TemplateResolver, resolve, stringify
from automation_engine.models.core import DomainEvent, TriggerSpec

from conftest import make_event


NOW = datetime(2024, 1, 15, 10, 30, 0)


def run_context(**event_kwargs):
    event = DomainEvent.model_validate(make_event(**event_kwargs))
    return build_run_context(event, variables={"threshold": 200}, now=NOW, results={"hook": {"status": 201}})


class TestResolve:
    """Test cases for token substitution."""

    def test_substitutes_nested_paths(self):
        context = {"record": {"owner": {"name": "Ada"}}}
        assert resolve("Hello {{record.owner.name}}!", context) == "Hello Ada!"

    def test_tolerates_whitespace_inside_braces(self):
        assert resolve("{{  record.name  }}", {"record": {"name": "Acme"}}) == "Acme"

    def test_missing_path_becomes_empty_string(self):
        assert resolve("[{{record.missing}}]", {"record": {}}) == "[]"
        assert resolve("[{{nothing.here.at.all}}]", {}) == "[]"

    def test_text_without_tokens_is_unchanged(self):
        assert resolve("plain text", {}) == "plain text"

    def test_single_pass_does_not_rescan_substituted_text(self):
        context = {"record": {"note": "{{record.secret}}", "secret": "s3cr3t"}}
        assert resolve("{{record.note}}", context) == "{{record.secret}}"

    def test_list_index_in_path(self):
        context = {"record": {"contacts": [{"email": "a@x.io"}, {"email": "b@x.io"}]}}
        assert resolve("{{record.contacts.1.email}}", context) == "b@x.io"

    def test_value_formatting(self):
        assert stringify(None) == ""
        assert stringify(True) == "true"
        assert stringify(False) == "false"
        assert stringify(3) == "3"
        assert stringify({"a": 1}) == '{"a": 1}'
        assert stringify([1, 2]) == "[1, 2]"
        assert stringify(NOW) == "2024-01-15T10:30:00"


class TestResolveValue:
    """Test cases for resolving nested action config."""

    def test_resolves_strings_in_nested_structures(self):
        resolver = TemplateResolver()
        config = {
            "url": "https://hooks.example.com/{{record.id}}",
            "body": {"amount": "{{record.amount}}", "tags": ["{{record.status}}", "static"]},
            "retries": 2,
        }
        resolved = resolver.resolve_config(config, run_context())

        assert resolved["url"] == "https://hooks.example.com/rec-1"
        assert resolved["body"] == {"amount": "150", "tags": ["won", "static"]}
        assert resolved["retries"] == 2

    def test_lookup_expression_returns_raw_value(self):
        resolver = TemplateResolver()
        context = Context({"record": {"items": [1, 2, 3]}})

        assert resolver.lookup_expression("{{record.items}}", context) == [1, 2, 3]
        assert resolver.lookup_expression("record.items", context) == [1, 2, 3]
        assert resolver.lookup_expression("count: {{record.items}}", context) == "count: [1, 2, 3]"


class TestRunContext:
    """Test cases for the context built from a domain event."""

    def test_record_fields_and_id(self):
        context = run_context()
        assert context.lookup("record.status") == "won"
        assert context.lookup("record.id") == "rec-1"
        assert context.lookup("object.name") == "deals"
        assert context.lookup("trigger.type") == "RECORD_UPDATED"

    def test_now_and_aliases(self):
        context = run_context()
        assert context.lookup("now") == "2024-01-15T10:30:00Z"
        assert context.lookup("now.date") == "2024-01-15"
        assert context.lookup("now.time") == "10:30:00"

    def test_changes_are_computed_from_before_and_after(self):
        context = run_context()
        assert context.lookup("changes.status") == {"old": "open", "new": "won"}
        assert context.lookup("changes.amount.new") == 150

    def test_explicit_changed_fields_win(self):
        context = run_context(changed_fields=["status"])
        assert context.has("changes.status")
        assert not context.has("changes.amount")

    def test_field_entry_for_watched_field(self):
        event = DomainEvent.model_validate(make_event(event_type="FIELD_CHANGED", changed_fields=["status"]))
        context = build_run_context(event, trigger=TriggerSpec(type="FIELD_CHANGED", field="status"), now=NOW)
        assert context.lookup("field") == {"name": "status", "old": "open", "new": "won"}

    def test_stage_entry(self):
        context = run_context(
            event_type="STAGE_CHANGED",
            before={"stage": "lead"},
            after={"stage": "qualified"},
        )
        assert context.lookup("stage.old") == "lead"
        assert context.lookup("stage.new") == "qualified"

    def test_variables_are_bare_and_under_vars(self):
        context = run_context()
        assert context.lookup("threshold") == 200
        assert context.lookup("vars.threshold") == 200

    def test_results_of_earlier_actions(self):
        assert run_context().lookup("results.hook.status") == 201

    def test_child_scope_shadows_and_inherits(self):
        context = run_context().child(item={"email": "x@y.io"}, loop={"index": 0})
        assert context.lookup("item.email") == "x@y.io"
        assert context.lookup("loop.index") == 0
        assert context.lookup("record.id") == "rec-1"
