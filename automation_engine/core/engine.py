"""Workflow engine facade: event intake, concurrent runs and timed resumption."""

import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from ..config import AppConfig, get_config
from ..models.core import DomainEvent, ExecutionRun, WorkflowDefinition, as_naive_utc, utcnow
from .action_dispatcher import ActionDispatcher
from .definition_manager import DefinitionManager
from .exceptions import ExecutionEngineError, MatchError, RunStateError, WorkflowEngineError
from .execution_store import ExecutionStore
from .graph_validator import GraphValidator
from .logging import get_logger
from .run_scheduler import RunScheduler
from .trigger_matcher import TriggerMatcher

logger = get_logger(__name__)


class WorkflowEngine:
    """
    Ties the components together for the host application.

    Each matching definition gets its own run; runs execute concurrently on a
    bounded thread pool and share nothing but the execution store.
    """

    def __init__(
        self,
        store: ExecutionStore,
        dispatcher: ActionDispatcher,
        config: Optional[AppConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or get_config()
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock
        self.matcher = TriggerMatcher()
        self.definitions = DefinitionManager(store, GraphValidator(dispatcher))
        self.scheduler = RunScheduler(
            store,
            dispatcher,
            max_steps=self.config.max_steps_per_run,
            clock=clock,
        )
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_concurrent_runs,
            thread_name_prefix="workflow-run",
        )
        self._shutdown = False
        self._shutdown_lock = threading.Lock()

        logger.info(f"WorkflowEngine initialized with max_concurrent_runs={self.config.max_concurrent_runs}")

    def matching_definitions(self, event: Union[DomainEvent, Dict[str, Any]]) -> List[WorkflowDefinition]:
        """Active definitions for the event's object type whose trigger matches."""
        try:
            parsed = self.matcher.coerce_event(event)
        except MatchError as e:
            logger.warning(f"Ignoring malformed event: {e.message}")
            return []

        candidates = self.store.list_active_for_object(parsed.object_type)
        return [definition for definition in candidates if self.matcher.matches_definition(definition, parsed)]

    def submit_event(
        self,
        event: Union[DomainEvent, Dict[str, Any]],
        user: Optional[Dict[str, Any]] = None,
    ) -> List[Future]:
        """Start a run per matching definition in the background."""
        self._ensure_running()
        futures = []
        for definition in self.matching_definitions(event):
            futures.append(self._executor.submit(self.scheduler.start, definition, event, user))
        if futures:
            logger.info(f"Submitted {len(futures)} run(s) for event")
        return futures

    def handle_event(
        self,
        event: Union[DomainEvent, Dict[str, Any]],
        user: Optional[Dict[str, Any]] = None,
    ) -> List[ExecutionRun]:
        """
        Run every matching definition for ``event`` and wait for each segment.

        A run that fails does not affect the others; its failure is recorded
        on the run and logged here.

        Returns:
            List[ExecutionRun]: Runs that were started, in no particular order
        """
        runs: List[ExecutionRun] = []
        for future in as_completed(self.submit_event(event, user)):
            try:
                runs.append(future.result())
            except WorkflowEngineError as e:
                logger.error(f"Run for event failed to execute: {e.message}")
        return runs

    def start(self, definition_id: str, event: Union[DomainEvent, Dict[str, Any]],
              user: Optional[Dict[str, Any]] = None,
              variables: Optional[Dict[str, Any]] = None) -> ExecutionRun:
        """Start the latest version of one definition directly, bypassing matching."""
        definition = self.store.get_definition(definition_id)
        return self.scheduler.start(definition, event, user=user, variables=variables)

    def resume(self, run_id: str) -> ExecutionRun:
        return self.scheduler.resume(run_id)

    def cancel(self, run_id: str) -> ExecutionRun:
        return self.scheduler.cancel(run_id)

    def get_run(self, run_id: str) -> ExecutionRun:
        return self.store.get_run(run_id)

    def resume_due_runs(self, now: Optional[datetime] = None) -> List[ExecutionRun]:
        """
        Resume every suspended run whose wake-up time has passed.

        This is the hook an external timer calls periodically.
        """
        now = as_naive_utc(now or self.clock())
        resumed: List[ExecutionRun] = []
        for run_id in self.store.find_due_runs(now):
            try:
                resumed.append(self.scheduler.resume(run_id, now=now))
            except RunStateError as e:
                logger.info(f"Skipping run {run_id}: {e.message}")
        if resumed:
            logger.info(f"Resumed {len(resumed)} due run(s)")
        return resumed

    def _ensure_running(self) -> None:
        with self._shutdown_lock:
            if self._shutdown:
                raise ExecutionEngineError("WorkflowEngine has been shut down")

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting events and wait for in-flight runs."""
        with self._shutdown_lock:
            if self._shutdown:
                return
            self._shutdown = True
        logger.info("Shutting down WorkflowEngine")
        self._executor.shutdown(wait=wait)
        logger.info("WorkflowEngine shutdown completed")
