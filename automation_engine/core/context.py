"""Run context: the data visible to template resolution and condition evaluation."""

from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from ..models.core import DomainEvent, EventType, RESERVED_CONTEXT_NAMES, TriggerSpec, utcnow


_MISSING = object()


class Context:
    """Immutable view over nested run data with dotted-path lookup.

    ``aliases`` hold flat keys such as ``now.date`` that take precedence over
    nested traversal, the same way the editor's variable list presents them.
    """

    def __init__(self, data: Optional[Mapping[str, Any]] = None, aliases: Optional[Mapping[str, Any]] = None):
        self._data: Dict[str, Any] = dict(data or {})
        self._aliases: Dict[str, Any] = dict(aliases or {})

    @classmethod
    def coerce(cls, value: Any) -> "Context":
        """Accept a Context, a plain mapping, or None."""
        if isinstance(value, Context):
            return value
        return cls(value or {})

    def lookup(self, path: str, default: Any = None) -> Any:
        """Resolve ``a.b.c`` against the context; missing paths yield ``default``."""
        value = self._lookup(path)
        return default if value is _MISSING else value

    def has(self, path: str) -> bool:
        return self._lookup(path) is not _MISSING

    def _lookup(self, path: str) -> Any:
        path = (path or "").strip()
        if not path:
            return _MISSING
        if path in self._aliases:
            return self._aliases[path]

        current: Any = self._data
        for part in path.split("."):
            part = part.strip()
            if isinstance(current, Mapping):
                if part not in current:
                    return _MISSING
                current = current[part]
            elif isinstance(current, (list, tuple)) and part.lstrip("-").isdigit():
                index = int(part)
                if not -len(current) <= index < len(current):
                    return _MISSING
                current = current[index]
            else:
                return _MISSING
        return current

    def child(self, **bindings: Any) -> "Context":
        """New context with extra bindings layered on top (loop items, results)."""
        data = dict(self._data)
        data.update(bindings)
        return Context(data, self._aliases)


def build_run_context(
    event: DomainEvent,
    trigger: Optional[TriggerSpec] = None,
    variables: Optional[Mapping[str, Any]] = None,
    now: Optional[datetime] = None,
    results: Optional[Mapping[str, Any]] = None,
) -> Context:
    """Assemble the context for one run from its triggering event.

    System entries (``record``, ``user``, ``now``...) always win over run
    variables of the same name; variables stay reachable under ``vars``.
    """
    now = now or utcnow()
    before = dict(event.before or {})
    after = dict(event.after or {})

    record = event.record_data()
    record["id"] = event.record_id

    data: Dict[str, Any] = {}
    for name, value in (variables or {}).items():
        if name not in RESERVED_CONTEXT_NAMES:
            data[name] = value

    data.update({
        "record": record,
        "user": dict(event.user or {}),
        "object": {"id": event.object_type, "name": event.object_type},
        "trigger": {"type": event.event_type},
        "event": event.to_wire(),
        "before": before,
        "after": after,
        "now": now.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "vars": dict(variables or {}),
        "results": dict(results or {}),
    })

    changed = event.changed_fields
    if changed is None and event.before is not None and event.after is not None:
        changed = sorted(key for key in set(before) | set(after) if before.get(key) != after.get(key))
    if changed:
        data["changes"] = {
            name: {"old": before.get(name), "new": after.get(name)} for name in changed
        }

    if trigger is not None and trigger.field:
        data["field"] = {
            "name": trigger.field,
            "old": before.get(trigger.field),
            "new": after.get(trigger.field),
        }

    if event.event_type == EventType.STAGE_CHANGED.value or "stage" in before or "stage" in after:
        data["stage"] = {"old": before.get("stage"), "new": after.get("stage")}

    aliases = {
        "now.date": now.strftime("%Y-%m-%d"),
        "now.time": now.strftime("%H:%M:%S"),
    }
    if "data" not in record:
        aliases["record.data"] = event.record_data()

    return Context(data, aliases)
