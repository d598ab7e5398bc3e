"""Base interface for action handlers."""

import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..core.exceptions import PermanentActionError


@dataclass(frozen=True)
class ActionInvocation:
    """Where an action runs: identifies one node visit within one run.

    The idempotency key is stable for a given run, node and loop iteration, so
    retries of the same attempt share it while separate runs never do.
    """
    run_id: str
    node_id: str
    iteration: Tuple[int, ...] = ()
    record_id: Optional[str] = None
    object_id: Optional[str] = None
    user: Dict[str, Any] = field(default_factory=dict)

    @property
    def idempotency_key(self) -> str:
        suffix = ".".join(str(i) for i in self.iteration)
        raw = f"{self.run_id}:{self.node_id}:{suffix}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


class ActionHandler:
    """Executes one action type with an already-resolved config.

    Subclasses set ``action_type``, list their ``required_config`` keys and
    implement :meth:`execute`. Keys in ``nullable_config`` must be present but
    may hold an empty value. A handler returns its output (any JSON-friendly
    value or an ``ActionResult``) and raises ``ActionError`` on failure.
    """

    action_type: str = ""
    label: str = ""
    description: str = ""
    required_config: List[str] = []
    nullable_config: List[str] = []
    config_defaults: Dict[str, Any] = {}
    optional_config: List[str] = []

    def execute(self, config: Dict[str, Any], invocation: Optional[ActionInvocation] = None) -> Any:
        raise NotImplementedError

    def with_defaults(self, config: Dict[str, Any]) -> Dict[str, Any]:
        merged = dict(self.config_defaults)
        merged.update({key: value for key, value in (config or {}).items() if value is not None})
        return merged

    def require(self, config: Dict[str, Any], *keys: str) -> None:
        """Raise a permanent error if any resolved key came out empty."""
        missing = [key for key in keys if is_blank(config.get(key))]
        if missing:
            raise PermanentActionError(
                f"{self.action_type} requires {', '.join(missing)}",
                action_type=self.action_type,
            )

    def describe(self) -> Dict[str, Any]:
        """Catalogue entry used by the metadata endpoints."""
        return {
            "type": self.action_type,
            "label": self.label or self.action_type,
            "description": self.description,
            "requiredConfig": list(self.required_config),
            "nullableConfig": list(self.nullable_config),
            "optionalConfig": list(self.optional_config),
            "defaults": dict(self.config_defaults),
        }


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False
