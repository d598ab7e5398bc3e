"""Graph Validator: structural checks run when a definition is saved."""

from collections import defaultdict, deque
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from pydantic import ValidationError

from ..actions.base import is_blank
from ..actions.delay import DelayHandler, parse_duration
from ..actions.messaging import SendEmailHandler, SendTelegramHandler
from ..actions.records import CreateNotificationHandler, CreateTaskHandler, UpdateFieldHandler
from ..actions.webhook import WebhookHandler
from ..models.core import (
    ActionNode,
    ConditionLogic,
    ConditionNode,
    ConditionOperator,
    EdgePort,
    EventType,
    LoopNode,
    RESERVED_CONTEXT_NAMES,
    TriggerNode,
    ValidationIssue,
    ValidationResult,
    VARIABLE_NAME_PATTERN,
    WorkflowDefinition,
)
from .exceptions import SchedulingError
from .logging import get_logger
from .template_resolver import TemplateResolver

logger = get_logger(__name__)

_BUILTIN_HANDLERS = (
    SendEmailHandler,
    SendTelegramHandler,
    CreateTaskHandler,
    CreateNotificationHandler,
    UpdateFieldHandler,
    WebhookHandler,
    DelayHandler,
)

_REQUIRED_PORTS = {
    "condition": (EdgePort.TRUE.value, EdgePort.FALSE.value),
    "loop": (EdgePort.BODY.value, EdgePort.EXIT.value),
}

_OPERATORS = {op.value for op in ConditionOperator}
_LOGIC = {logic.value for logic in ConditionLogic}


class GraphValidator:
    """
    Validates workflow definitions and reports every problem found.

    Checks run in a fixed order: trigger, reachability, branch ports, action
    config, cycles. Later checks still run when earlier ones fail so authors
    get the complete list in one pass.
    """

    def __init__(self, dispatcher: Optional[Any] = None):
        """
        Args:
            dispatcher: ActionDispatcher whose registered types and required
                config keys are authoritative. Without one, the built-in
                action catalogue is used.
        """
        self.dispatcher = dispatcher
        self.resolver = TemplateResolver()

    def known_action_types(self) -> Set[str]:
        if self.dispatcher is not None:
            return set(self.dispatcher.list_action_types())
        return {handler.action_type for handler in _BUILTIN_HANDLERS}

    def required_config(self, action_type: str) -> List[str]:
        if self.dispatcher is not None:
            return self.dispatcher.required_config_for(action_type)
        for handler in _BUILTIN_HANDLERS:
            if handler.action_type == action_type:
                return list(handler.required_config)
        return []

    def nullable_config(self, action_type: str) -> List[str]:
        if self.dispatcher is not None:
            return self.dispatcher.nullable_config_for(action_type)
        for handler in _BUILTIN_HANDLERS:
            if handler.action_type == action_type:
                return list(handler.nullable_config)
        return []

    def validate(self, definition: Union[WorkflowDefinition, Dict[str, Any]]) -> ValidationResult:
        """
        Validate a definition for structural correctness.

        Args:
            definition: A WorkflowDefinition or its JSON mapping

        Returns:
            ValidationResult: all errors (blocking) and warnings (advisory)
        """
        errors: List[ValidationIssue] = []
        warnings: List[str] = []

        if not isinstance(definition, WorkflowDefinition):
            try:
                definition = WorkflowDefinition.model_validate(definition)
            except ValidationError as e:
                for err in e.errors():
                    location = ".".join(str(part) for part in err["loc"])
                    errors.append(ValidationIssue(
                        code="invalid_definition",
                        message=f"{location}: {err['msg']}",
                    ))
                return ValidationResult(is_valid=False, errors=errors, warnings=warnings)

        node_map = self._check_references(definition, errors)
        trigger = self._check_trigger(definition, node_map, errors)
        reachable = self._check_reachability(definition, node_map, trigger, errors)
        self._check_ports(definition, node_map, errors)
        self._check_node_data(definition, errors, warnings)
        self._check_cycles(definition, node_map, trigger, reachable, errors, warnings)

        result = ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)
        logger.debug(
            f"Validated definition '{definition.id}': valid={result.is_valid}, "
            f"errors={len(errors)}, warnings={len(warnings)}"
        )
        return result

    def _check_references(self, definition: WorkflowDefinition, errors: List[ValidationIssue]) -> Dict[str, Any]:
        node_map: Dict[str, Any] = {}
        for node in definition.nodes:
            if node.id in node_map:
                errors.append(ValidationIssue(
                    code="duplicate_node_id",
                    message=f"Node id '{node.id}' is used more than once",
                    node_id=node.id,
                ))
                continue
            node_map[node.id] = node

        for edge in definition.edges:
            for end in (edge.source, edge.target):
                if end not in node_map:
                    errors.append(ValidationIssue(
                        code="unknown_edge_node",
                        message=f"Edge {edge.source} -> {edge.target} references non-existent node '{end}'",
                        node_id=end,
                    ))
        return node_map

    def _check_trigger(
        self,
        definition: WorkflowDefinition,
        node_map: Dict[str, Any],
        errors: List[ValidationIssue],
    ) -> Optional[TriggerNode]:
        """(a) exactly one trigger node, with no incoming edges."""
        event_types = {event_type.value for event_type in EventType}
        if definition.trigger.type not in event_types:
            errors.append(ValidationIssue(
                code="unknown_trigger_type",
                message=f"Unknown trigger type '{definition.trigger.type}'",
            ))
        if definition.trigger.type == EventType.FIELD_CHANGED.value and is_blank(definition.trigger.field):
            errors.append(ValidationIssue(
                code="missing_trigger_field",
                message="FIELD_CHANGED triggers must name the field to watch",
            ))

        triggers = [node for node in node_map.values() if isinstance(node, TriggerNode)]
        if not triggers:
            errors.append(ValidationIssue(
                code="missing_trigger",
                message="Workflow must have exactly one trigger node, found none",
            ))
            return None
        if len(triggers) > 1:
            for node in triggers:
                errors.append(ValidationIssue(
                    code="multiple_triggers",
                    message=f"Workflow must have exactly one trigger node, found {len(triggers)}",
                    node_id=node.id,
                ))
            return None

        trigger = triggers[0]
        incoming = [edge for edge in definition.edges if edge.target == trigger.id]
        if incoming:
            errors.append(ValidationIssue(
                code="trigger_has_incoming_edges",
                message=f"Trigger node '{trigger.id}' must not have incoming edges",
                node_id=trigger.id,
            ))
        if trigger.data.trigger_type != definition.trigger.type:
            errors.append(ValidationIssue(
                code="trigger_type_mismatch",
                message=(
                    f"Trigger node '{trigger.id}' is '{trigger.data.trigger_type}' "
                    f"but the workflow trigger is '{definition.trigger.type}'"
                ),
                node_id=trigger.id,
            ))
        return trigger

    def _check_reachability(
        self,
        definition: WorkflowDefinition,
        node_map: Dict[str, Any],
        trigger: Optional[TriggerNode],
        errors: List[ValidationIssue],
    ) -> Set[str]:
        """(b) every node reachable from the trigger."""
        if trigger is None:
            return set()

        adjacency = _adjacency(definition, node_map)
        reachable = {trigger.id}
        queue = deque([trigger.id])
        while queue:
            current = queue.popleft()
            for target in adjacency[current]:
                if target not in reachable:
                    reachable.add(target)
                    queue.append(target)

        for node_id in node_map:
            if node_id not in reachable:
                errors.append(ValidationIssue(
                    code="unreachable_node",
                    message=f"Node '{node_id}' is not reachable from the trigger",
                    node_id=node_id,
                ))
        return reachable

    def _check_ports(self, definition: WorkflowDefinition, node_map: Dict[str, Any], errors: List[ValidationIssue]):
        """(c) condition and loop nodes carry exactly their two tagged edges."""
        for node_id, node in node_map.items():
            edges = definition.outgoing(node_id)
            required = _REQUIRED_PORTS.get(node.type)

            if required is None:
                for edge in edges:
                    if edge.source_port:
                        errors.append(ValidationIssue(
                            code="unexpected_port",
                            message=f"{node.type.capitalize()} node '{node_id}' edges must not carry a port, found '{edge.source_port}'",
                            node_id=node_id,
                        ))
                if len(edges) > 1:
                    errors.append(ValidationIssue(
                        code="too_many_successors",
                        message=f"{node.type.capitalize()} node '{node_id}' has {len(edges)} outgoing edges; at most one is allowed",
                        node_id=node_id,
                    ))
                continue

            for port in required:
                count = sum(1 for edge in edges if edge.source_port == port)
                if count == 0:
                    errors.append(ValidationIssue(
                        code="missing_port_edge",
                        message=f"{node.type.capitalize()} node '{node_id}' is missing its '{port}' edge",
                        node_id=node_id,
                    ))
                elif count > 1:
                    errors.append(ValidationIssue(
                        code="duplicate_port_edge",
                        message=f"{node.type.capitalize()} node '{node_id}' has {count} '{port}' edges",
                        node_id=node_id,
                    ))
            for edge in edges:
                if edge.source_port not in required:
                    errors.append(ValidationIssue(
                        code="unexpected_port",
                        message=(
                            f"{node.type.capitalize()} node '{node_id}' has an edge on port "
                            f"'{edge.source_port}'; expected one of {', '.join(required)}"
                        ),
                        node_id=node_id,
                    ))

    def _check_node_data(self, definition: WorkflowDefinition, errors: List[ValidationIssue], warnings: List[str]):
        """(d) action types and their required config, plus condition and loop data."""
        known_types = self.known_action_types()

        for node in definition.nodes:
            if isinstance(node, ActionNode):
                self._check_action(node, known_types, errors, warnings)
            elif isinstance(node, ConditionNode):
                self._check_condition(node, errors)
            elif isinstance(node, LoopNode):
                self._check_loop(node, errors)

    def _check_action(self, node: ActionNode, known_types: Set[str], errors: List[ValidationIssue], warnings: List[str]):
        action_type = node.data.action_type
        if action_type not in known_types:
            errors.append(ValidationIssue(
                code="unknown_action_type",
                message=f"Action node '{node.id}' has unknown action type '{action_type}'",
                node_id=node.id,
            ))
            return

        config = node.data.config or {}
        for key in self.required_config(action_type):
            if is_blank(config.get(key)):
                errors.append(ValidationIssue(
                    code="missing_required_config",
                    message=f"Action node '{node.id}' ({action_type}) requires config '{key}'",
                    node_id=node.id,
                ))
        for key in self.nullable_config(action_type):
            if key not in config:
                errors.append(ValidationIssue(
                    code="missing_required_config",
                    message=f"Action node '{node.id}' ({action_type}) requires config '{key}', even if empty",
                    node_id=node.id,
                ))

        if action_type == DelayHandler.action_type:
            duration = config.get("duration")
            if not is_blank(duration) and not self.resolver.has_tokens(duration):
                try:
                    parse_duration(config)
                except SchedulingError as e:
                    warnings.append(f"Delay node '{node.id}' will continue immediately: {e.message}")

    def _check_condition(self, node: ConditionNode, errors: List[ValidationIssue]):
        clauses = node.data.clauses()
        if not clauses:
            errors.append(ValidationIssue(
                code="empty_condition",
                message=f"Condition node '{node.id}' has no field to compare",
                node_id=node.id,
            ))
        for index, clause in enumerate(clauses):
            if is_blank(clause.field):
                errors.append(ValidationIssue(
                    code="empty_condition",
                    message=f"Condition node '{node.id}' clause {index + 1} has no field",
                    node_id=node.id,
                ))
            if clause.operator not in _OPERATORS:
                errors.append(ValidationIssue(
                    code="unknown_operator",
                    message=f"Condition node '{node.id}' uses unknown operator '{clause.operator}'",
                    node_id=node.id,
                ))
            if clause.logic is not None and clause.logic.upper() not in _LOGIC:
                errors.append(ValidationIssue(
                    code="unknown_logic",
                    message=f"Condition node '{node.id}' uses unknown logic '{clause.logic}'",
                    node_id=node.id,
                ))

    def _check_loop(self, node: LoopNode, errors: List[ValidationIssue]):
        if is_blank(node.data.collection):
            errors.append(ValidationIssue(
                code="missing_collection",
                message=f"Loop node '{node.id}' has no collection expression",
                node_id=node.id,
            ))
        name = node.data.item_variable
        if not VARIABLE_NAME_PATTERN.match(name or ""):
            errors.append(ValidationIssue(
                code="invalid_item_variable",
                message=f"Loop node '{node.id}' item variable '{name}' must contain only letters, digits and underscores",
                node_id=node.id,
            ))
        elif name in RESERVED_CONTEXT_NAMES:
            errors.append(ValidationIssue(
                code="invalid_item_variable",
                message=f"Loop node '{node.id}' item variable '{name}' is a reserved name",
                node_id=node.id,
            ))

    def _check_cycles(
        self,
        definition: WorkflowDefinition,
        node_map: Dict[str, Any],
        trigger: Optional[TriggerNode],
        reachable: Set[str],
        errors: List[ValidationIssue],
        warnings: List[str],
    ):
        """(e) no cycle made only of non-action nodes.

        Cycles that do contain an action but never pass through a loop node
        are allowed structurally; at run time the revisit fails the run, so
        they are reported as warnings.
        """
        if trigger is None:
            return

        adjacency = _adjacency(definition, node_map)

        silent = {
            node_id for node_id in reachable
            if not isinstance(node_map[node_id], ActionNode)
        }
        for component in _strongly_connected(silent, adjacency):
            if _is_cycle(component, adjacency):
                first = sorted(component)[0]
                errors.append(ValidationIssue(
                    code="cycle_without_action",
                    message=f"Nodes {', '.join(sorted(component))} form a cycle with no action inside it",
                    node_id=first,
                ))

        for component in _strongly_connected(reachable, adjacency):
            if not _is_cycle(component, adjacency):
                continue
            if any(isinstance(node_map[node_id], LoopNode) for node_id in component):
                continue
            warnings.append(
                f"Nodes {', '.join(sorted(component))} form a cycle outside any loop; "
                "a run that revisits one of them will fail"
            )


def _adjacency(definition: WorkflowDefinition, node_map: Dict[str, Any]) -> Dict[str, List[str]]:
    adjacency: Dict[str, List[str]] = defaultdict(list)
    for edge in definition.edges:
        if edge.source in node_map and edge.target in node_map:
            adjacency[edge.source].append(edge.target)
    return adjacency


def _is_cycle(component: Set[str], adjacency: Dict[str, List[str]]) -> bool:
    if len(component) > 1:
        return True
    node_id = next(iter(component))
    return node_id in adjacency[node_id]


def _strongly_connected(nodes: Iterable[str], adjacency: Dict[str, List[str]]) -> List[Set[str]]:
    """Tarjan's algorithm restricted to ``nodes``, iterative to avoid recursion limits."""
    allowed = set(nodes)
    index_of: Dict[str, int] = {}
    lowlink: Dict[str, int] = {}
    on_stack: Set[str] = set()
    stack: List[str] = []
    components: List[Set[str]] = []
    counter = 0

    for root in sorted(allowed):
        if root in index_of:
            continue
        work = [(root, 0)]
        while work:
            node_id, child_index = work.pop()
            if child_index == 0:
                index_of[node_id] = lowlink[node_id] = counter
                counter += 1
                stack.append(node_id)
                on_stack.add(node_id)

            successors = [t for t in adjacency[node_id] if t in allowed]
            recursed = False
            for i in range(child_index, len(successors)):
                target = successors[i]
                if target not in index_of:
                    work.append((node_id, i + 1))
                    work.append((target, 0))
                    recursed = True
                    break
                if target in on_stack:
                    lowlink[node_id] = min(lowlink[node_id], index_of[target])
            if recursed:
                continue

            if lowlink[node_id] == index_of[node_id]:
                component = set()
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.add(member)
                    if member == node_id:
                        break
                components.append(component)

            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[node_id])

    return components


_default_validator = GraphValidator()


def validate(definition: Union[WorkflowDefinition, Dict[str, Any]]) -> ValidationResult:
    """Module-level shortcut for :meth:`GraphValidator.validate`."""
    return _default_validator.validate(definition)
