"""Run Scheduler: walks a definition graph for one triggering event."""

import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Union

from ..actions.base import ActionInvocation
from ..actions.delay import DelayHandler
from ..models.core import (
    ActionNode,
    ActionResult,
    ActionResultStatus,
    ActionType,
    ConditionNode,
    DomainEvent,
    EdgePort,
    ExecutionRun,
    LoopFrame,
    LoopNode,
    RunStatus,
    SuspensionPoint,
    TriggerNode,
    WorkflowDefinition,
    as_naive_utc,
    utcnow,
)
from .action_dispatcher import ActionDispatcher
from .condition_evaluator import ConditionEvaluator
from .context import Context, build_run_context
from .exceptions import ExecutionEngineError, RunStateError, SchedulingError, WorkflowEngineError
from .execution_store import ExecutionStore
from .logging import clear_logging_context, get_logger, set_logging_context
from .template_resolver import TemplateResolver
from .trigger_matcher import TriggerMatcher

logger = get_logger(__name__)


class _Traversal:
    """Mutable cursor for one segment of a run (start to suspension or end)."""

    def __init__(self, definition: WorkflowDefinition, run: ExecutionRun, frames: List[LoopFrame], visited: Set[str]):
        self.definition = definition
        self.run = run
        self.event = DomainEvent.model_validate(run.event)
        self.node_map = definition.node_map()
        self.frames = frames
        self.visited = visited
        self.outputs: Dict[str, Any] = {
            result.node_id: result.output
            for result in run.results
            if result.status == ActionResultStatus.SUCCEEDED
        }
        self.steps = 0

    @property
    def iteration(self) -> List[int]:
        return [frame.index for frame in self.frames]

    def visit_key(self, node_id: str) -> str:
        return f"{node_id}#{'.'.join(str(i) for i in self.iteration)}"

    def successor(self, node_id: str, port: Optional[str] = None) -> Optional[str]:
        for edge in self.definition.edges:
            if edge.source != node_id:
                continue
            if port is None or edge.source_port == port:
                return edge.target
        return None


class RunScheduler:
    """
    Starts, resumes and cancels execution runs.

    Traversal is sequential along the active path. Each run segment holds the
    store's per-run lock, so concurrent ``resume`` calls for one run never
    traverse it at the same time. DELAY actions persist the cursor and return
    control; ``resume`` picks up after the delay node.
    """

    def __init__(
        self,
        store: ExecutionStore,
        dispatcher: ActionDispatcher,
        resolver: Optional[TemplateResolver] = None,
        evaluator: Optional[ConditionEvaluator] = None,
        max_steps: int = 10000,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.resolver = resolver or TemplateResolver()
        self.evaluator = evaluator or ConditionEvaluator(self.resolver)
        self.matcher = TriggerMatcher()
        self.max_steps = max_steps
        self.clock = clock

    def start(
        self,
        definition: WorkflowDefinition,
        event: Union[DomainEvent, Dict[str, Any]],
        user: Optional[Dict[str, Any]] = None,
        variables: Optional[Dict[str, Any]] = None,
    ) -> ExecutionRun:
        """
        Create a run for ``event`` and execute it until it suspends or ends.

        Args:
            definition: The definition version to execute
            event: Triggering domain event
            user: Acting user, overriding ``event.user``
            variables: Values overriding the definition's variable defaults

        Returns:
            ExecutionRun: The run after this segment, results included

        Raises:
            RunStateError: If the definition is inactive
            MatchError: If the event is malformed
        """
        if not definition.is_active:
            raise RunStateError(
                f"Workflow '{definition.id}' is inactive and cannot start runs",
                definition_id=definition.id,
            )

        parsed = self.matcher.coerce_event(event)
        if user is not None:
            parsed = parsed.model_copy(update={"user": dict(user)})

        run_variables = {variable.name: variable.value for variable in definition.variables}
        run_variables.update(variables or {})

        run = ExecutionRun(
            id=str(uuid.uuid4()),
            definition_id=definition.id,
            definition_version=definition.version,
            event=parsed.to_wire(),
            status=RunStatus.RUNNING,
            variables=run_variables,
        )
        self.store.create_run(run)

        set_logging_context(run_id=run.id, definition_id=definition.id)
        try:
            logger.info(
                f"Starting run {run.id} of '{definition.name}' v{definition.version} "
                f"for {parsed.event_type} on {parsed.object_type}/{parsed.record_id}"
            )
            with self.store.run_lock(run.id):
                triggers = definition.trigger_nodes()
                if len(triggers) != 1:
                    return self._finish(run, RunStatus.FAILED, "Workflow must have exactly one trigger node")

                trigger = triggers[0]
                cursor = _Traversal(definition, run, frames=[], visited=set())
                cursor.visited.add(cursor.visit_key(trigger.id))
                return self._traverse(cursor, cursor.successor(trigger.id))
        finally:
            clear_logging_context()

    def resume(self, run_id: str, now: Optional[datetime] = None) -> ExecutionRun:
        """
        Continue a suspended run from the node after its DELAY.

        Args:
            run_id: Run to resume
            now: When given, the run is only resumed if its wake-up time has
                passed; otherwise it is returned unchanged

        Returns:
            ExecutionRun: The run after this segment

        Raises:
            RunNotFoundError: If the run does not exist
            RunStateError: If the run already completed, failed or was cancelled
        """
        now = as_naive_utc(now)
        set_logging_context(run_id=run_id)
        try:
            with self.store.run_lock(run_id):
                run = self.store.get_run(run_id)

                if run.status.is_terminal:
                    raise RunStateError(
                        f"Run {run_id} is {run.status.value} and cannot be resumed",
                        run_id=run_id,
                        definition_id=run.definition_id,
                    )
                if run.status != RunStatus.SUSPENDED or run.suspension is None:
                    logger.info(f"Run {run_id} is {run.status.value}; nothing to resume")
                    return run

                suspension = run.suspension
                if now is not None and suspension.resume_at > now:
                    logger.debug(f"Run {run_id} is not due until {suspension.resume_at.isoformat()}")
                    return run

                if run.cancel_requested:
                    return self._finish(run, RunStatus.CANCELLED)

                definition = self.store.get_definition(run.definition_id, run.definition_version)
                set_logging_context(definition_id=definition.id)

                run.status = RunStatus.RUNNING
                run.suspension = None
                self.store.save_run(run)
                logger.info(f"Resuming run {run_id} after delay node {suspension.delay_node_id}")

                cursor = _Traversal(
                    definition,
                    run,
                    frames=[frame.model_copy(deep=True) for frame in suspension.loop_frames],
                    visited=set(suspension.visited),
                )
                return self._traverse(cursor, suspension.resume_node_id)
        finally:
            clear_logging_context()

    def cancel(self, run_id: str) -> ExecutionRun:
        """
        Request cancellation.

        A suspended run is cancelled immediately. A running one stops before
        its next node; the action in flight always completes. Terminal runs
        are returned unchanged.
        """
        run = self.store.get_run(run_id)
        if run.status.is_terminal:
            logger.info(f"Run {run_id} already {run.status.value}; cancel ignored")
            return run

        self.store.request_cancel(run_id)
        logger.info(f"Cancellation requested for run {run_id}")

        # a traversal may have suspended since the first read
        run = self.store.get_run(run_id)
        if run.status in (RunStatus.SUSPENDED, RunStatus.PENDING):
            with self.store.run_lock(run_id):
                run = self.store.get_run(run_id)
                if run.status in (RunStatus.SUSPENDED, RunStatus.PENDING):
                    return self._finish(run, RunStatus.CANCELLED)

        return self.store.get_run(run_id)

    # Traversal

    def _traverse(self, cursor: _Traversal, current: Optional[str]) -> ExecutionRun:
        run = cursor.run
        try:
            while True:
                if current is None:
                    if not cursor.frames:
                        return self._finish(run, RunStatus.COMPLETED)
                    current = self._next_iteration(cursor)
                    continue

                owner = _owning_frame(cursor.frames, current)
                if owner is not None:
                    # body wired back to its loop node: this iteration is done
                    del cursor.frames[owner + 1:]
                    current = self._next_iteration(cursor)
                    continue

                if self.store.is_cancel_requested(run.id):
                    logger.info(f"Run {run.id} cancelled before node {current}")
                    return self._finish(run, RunStatus.CANCELLED)

                cursor.steps += 1
                if cursor.steps > self.max_steps:
                    return self._finish(run, RunStatus.FAILED, f"Run exceeded {self.max_steps} steps")

                node = cursor.node_map.get(current)
                if node is None:
                    return self._finish(run, RunStatus.FAILED, f"Edge points to unknown node '{current}'")

                key = cursor.visit_key(current)
                if key in cursor.visited:
                    return self._finish(run, RunStatus.FAILED, f"Node '{current}' reached twice in one run")
                cursor.visited.add(key)

                if isinstance(node, ActionNode):
                    if node.data.action_type == ActionType.DELAY.value:
                        suspended = self._delay(cursor, node)
                        if suspended is not None:
                            return suspended
                        current = cursor.successor(node.id)
                        continue

                    result = self._execute_action(cursor, node)
                    if result.status == ActionResultStatus.FAILED and result.error_details.get("fatal", True):
                        if not node.data.continue_on_error:
                            return self._finish(run, RunStatus.FAILED, f"Action '{node.id}' failed: {result.error}")
                        logger.warning(f"Action '{node.id}' failed; continuing because continueOnError is set")
                    current = cursor.successor(node.id)

                elif isinstance(node, ConditionNode):
                    outcome = self.evaluator.evaluate_clauses(node.data.clauses(), self._context(cursor))
                    port = EdgePort.TRUE.value if outcome else EdgePort.FALSE.value
                    logger.debug(f"Condition '{node.id}' evaluated {outcome}")
                    current = cursor.successor(node.id, port)

                elif isinstance(node, LoopNode):
                    current = self._enter_loop(cursor, node)

                elif isinstance(node, TriggerNode):
                    current = cursor.successor(node.id)

        except WorkflowEngineError as e:
            logger.error(f"Run {run.id} aborted: {e.message}")
            self._finish(run, RunStatus.FAILED, e.message)
            raise
        except Exception as e:
            logger.error(f"Unexpected error in run {run.id}: {str(e)}", exc_info=True)
            self._finish(run, RunStatus.FAILED, f"Unexpected error: {str(e)}")
            raise ExecutionEngineError(
                f"Run {run.id} failed unexpectedly: {str(e)}",
                run_id=run.id,
                definition_id=run.definition_id,
            )

    def _context(self, cursor: _Traversal) -> Context:
        context = build_run_context(
            cursor.event,
            trigger=cursor.definition.trigger,
            variables=cursor.run.variables,
            now=self.clock(),
            results=cursor.outputs,
        )
        for frame in cursor.frames:
            item = frame.items[frame.index] if frame.index < len(frame.items) else None
            context = context.child(**{
                frame.item_variable: item,
                "loop": {"index": frame.index, "count": len(frame.items), "item": item},
            })
        return context

    def _invocation(self, cursor: _Traversal, node_id: str) -> ActionInvocation:
        return ActionInvocation(
            run_id=cursor.run.id,
            node_id=node_id,
            iteration=tuple(cursor.iteration),
            record_id=cursor.event.record_id,
            object_id=cursor.event.object_type,
            user=dict(cursor.event.user or {}),
        )

    def _execute_action(self, cursor: _Traversal, node: ActionNode) -> ActionResult:
        set_logging_context(node_id=node.id)
        logger.info(f"Executing {node.data.action_type} at node {node.id}")

        config = self.resolver.resolve_config(node.data.config, self._context(cursor))
        result = self.dispatcher.dispatch(node.data.action_type, config, self._invocation(cursor, node.id))

        self.store.append_result(cursor.run.id, result)
        cursor.run.results.append(result)
        if result.status == ActionResultStatus.SUCCEEDED:
            cursor.outputs[node.id] = result.output
            logger.info(f"Node {node.id} completed after {result.attempts} attempt(s)")
        return result

    def _delay(self, cursor: _Traversal, node: ActionNode) -> Optional[ExecutionRun]:
        """Suspend at a DELAY node. Returns None when the delay is skipped."""
        run = cursor.run
        config = self.resolver.resolve_config(node.data.config, self._context(cursor))
        now = self.clock()
        stamp = {
            "node_id": node.id,
            "action_type": node.data.action_type,
            "iteration": cursor.iteration or None,
        }

        try:
            output = self._delay_handler().schedule(config, now)
        except SchedulingError as e:
            logger.warning(f"Delay node {node.id} skipped: {e.message}")
            result = ActionResult(status=ActionResultStatus.SKIPPED, error=e.message, **stamp)
            self.store.append_result(run.id, result)
            run.results.append(result)
            return None

        result = ActionResult(status=ActionResultStatus.SUCCEEDED, output=output, **stamp)
        self.store.append_result(run.id, result)
        run.results.append(result)
        cursor.outputs[node.id] = output

        resume_at = datetime.fromisoformat(output["resumeAt"])
        run.status = RunStatus.SUSPENDED
        run.suspension = SuspensionPoint(
            delay_node_id=node.id,
            resume_node_id=cursor.successor(node.id),
            resume_at=resume_at,
            loop_frames=[frame.model_copy(deep=True) for frame in cursor.frames],
            visited=sorted(cursor.visited),
        )
        self.store.save_run(run)
        if self.store.is_cancel_requested(run.id):
            logger.info(f"Run {run.id} cancelled while suspending at {node.id}")
            return self._finish(run, RunStatus.CANCELLED)
        logger.info(f"Run {run.id} suspended at {node.id} until {resume_at.isoformat()}")
        return self.store.get_run(run.id)

    def _delay_handler(self) -> DelayHandler:
        if self.dispatcher.has_handler(ActionType.DELAY.value):
            handler = self.dispatcher.get_handler(ActionType.DELAY.value)
            if callable(getattr(handler, "schedule", None)):
                return handler
        return DelayHandler()

    def _enter_loop(self, cursor: _Traversal, node: LoopNode) -> Optional[str]:
        items = self.resolver.lookup_expression(node.data.collection, self._context(cursor))
        if not isinstance(items, (list, tuple)) or not items:
            logger.debug(f"Loop '{node.id}' has nothing to iterate; following exit")
            return cursor.successor(node.id, EdgePort.EXIT.value)

        cursor.frames.append(LoopFrame(
            loop_node_id=node.id,
            item_variable=node.data.item_variable,
            items=list(items),
            index=0,
        ))
        logger.debug(f"Loop '{node.id}' iterating over {len(items)} item(s)")
        return self._body_start(cursor, node.id)

    def _body_start(self, cursor: _Traversal, loop_node_id: str) -> Optional[str]:
        target = cursor.successor(loop_node_id, EdgePort.BODY.value)
        if target is None:
            # no body: skip straight to exit
            cursor.frames.pop()
            return cursor.successor(loop_node_id, EdgePort.EXIT.value)
        return target

    def _next_iteration(self, cursor: _Traversal) -> Optional[str]:
        frame = cursor.frames[-1]
        frame.index += 1
        if frame.index < len(frame.items):
            return self._body_start(cursor, frame.loop_node_id)
        cursor.frames.pop()
        return cursor.successor(frame.loop_node_id, EdgePort.EXIT.value)

    def _finish(self, run: ExecutionRun, status: RunStatus, error_message: Optional[str] = None) -> ExecutionRun:
        run.status = status
        run.suspension = None
        run.error_message = error_message
        run.completed_at = utcnow()
        self.store.save_run(run)
        self.store.release_run_lock(run.id)

        if status == RunStatus.FAILED:
            logger.error(f"Run {run.id} failed: {error_message}")
        else:
            logger.info(f"Run {run.id} {status.value}")
        return self.store.get_run(run.id)


def _owning_frame(frames: List[LoopFrame], node_id: str) -> Optional[int]:
    for position in range(len(frames) - 1, -1, -1):
        if frames[position].loop_node_id == node_id:
            return position
    return None
