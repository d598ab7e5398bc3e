"""Trigger Matcher: decides whether a domain event activates a definition."""

from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from ..models.core import DomainEvent, EventType, TriggerSpec, WorkflowDefinition
from .exceptions import MatchError
from .logging import get_logger

logger = get_logger(__name__)


EventLike = Union[DomainEvent, Dict[str, Any]]


class TriggerMatcher:
    """
    Matches domain events against definition triggers.

    Matching never mutates its inputs. A malformed event is not an error for
    the caller: it simply does not activate anything.
    """

    def coerce_event(self, event: EventLike) -> DomainEvent:
        """Parse a wire event, raising MatchError when it is malformed."""
        if isinstance(event, DomainEvent):
            return event
        if not isinstance(event, dict):
            raise MatchError(f"Event must be a mapping, got {type(event).__name__}")
        try:
            return DomainEvent.model_validate(event)
        except ValidationError as e:
            raise MatchError(f"Malformed event: {e.error_count()} invalid field(s)").add_details(
                errors=[err["msg"] for err in e.errors()]
            )

    def matches_trigger(self, trigger: TriggerSpec, object_id: str, event: EventLike) -> bool:
        """
        Check one trigger against one event.

        Args:
            trigger: The definition's trigger spec
            object_id: The definition's target object type
            event: A DomainEvent or its wire mapping

        Returns:
            True if the event activates the trigger
        """
        try:
            parsed = self.coerce_event(event)
            return self._match(trigger, object_id, parsed)
        except MatchError as e:
            logger.debug(f"Event ignored: {e.message}")
            return False

    def matches(self, definition: WorkflowDefinition, event: EventLike) -> bool:
        """Trigger match for a definition, ignoring its active flag."""
        return self.matches_trigger(definition.trigger, definition.object_id, event)

    def matches_definition(self, definition: WorkflowDefinition, event: EventLike) -> bool:
        """True only for active definitions whose trigger matches the event."""
        return definition.is_active and self.matches(definition, event)

    def _match(self, trigger: TriggerSpec, object_id: str, event: DomainEvent) -> bool:
        if event.event_type != trigger.type:
            return False
        if event.object_type != object_id:
            return False

        if trigger.type == EventType.FIELD_CHANGED.value:
            if not trigger.field:
                return False
            return trigger.field in (event.changed_fields or [])

        if trigger.type == EventType.STAGE_CHANGED.value:
            before = _stage_of(event.before)
            after = _stage_of(event.after)
            return before != after

        return True


def _stage_of(snapshot: Optional[Dict[str, Any]]) -> Any:
    if snapshot is None:
        return None
    if not isinstance(snapshot, dict):
        raise MatchError("Record snapshot must be a mapping")
    return snapshot.get("stage")


_default_matcher = TriggerMatcher()


def matches(definition: WorkflowDefinition, event: EventLike) -> bool:
    """Module-level shortcut for :meth:`TriggerMatcher.matches`."""
    return _default_matcher.matches(definition, event)
