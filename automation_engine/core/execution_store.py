"""Execution Store: persistence for definitions, runs and per-node results."""

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from pydantic import TypeAdapter
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..models.core import (
    ActionResult,
    ActionResultStatus,
    ExecutionRun,
    RunStatus,
    SuspensionPoint,
    WorkflowDefinition,
    as_naive_utc,
    utcnow,
)
from ..storage.models import ActionResultModel, ExecutionRunModel, WorkflowDefinitionModel
from .exceptions import (
    DefinitionNotFoundError,
    RunNotFoundError,
    StorageError,
    WorkflowEngineError,
)
from .logging import get_logger

logger = get_logger(__name__)

_JSON_ADAPTER = TypeAdapter(Any)


class ExecutionStore(ABC):
    """
    Storage contract shared by the in-memory and SQL implementations.

    Definitions are versioned: saving a definition whose latest version
    already has runs creates a new version, so a run always executes the
    graph it started with. Run results are append-only.

    Concurrent traversals of the same run are serialized with
    :meth:`run_lock`; every other operation is safe to call concurrently.
    """

    def __init__(self):
        self._run_locks: Dict[str, threading.RLock] = {}
        self._lock_manager = threading.Lock()

    @contextmanager
    def run_lock(self, run_id: str) -> Iterator[None]:
        """Hold the per-run isolation lock for the duration of the block."""
        with self._lock_manager:
            lock = self._run_locks.get(run_id)
            if lock is None:
                lock = threading.RLock()
                self._run_locks[run_id] = lock
        with lock:
            yield

    def release_run_lock(self, run_id: str) -> None:
        """Forget the lock of a run that reached a terminal state."""
        with self._lock_manager:
            self._run_locks.pop(run_id, None)

    # Definitions

    @abstractmethod
    def save_definition(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        """Persist a definition and return it with its assigned version."""

    @abstractmethod
    def get_definition(self, definition_id: str, version: Optional[int] = None) -> WorkflowDefinition:
        """Latest version, or the given one. Raises DefinitionNotFoundError."""

    @abstractmethod
    def list_definitions(
        self,
        object_id: Optional[str] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[WorkflowDefinition]:
        """Latest version of every definition matching the filters, newest first."""

    @abstractmethod
    def count_definitions(
        self,
        object_id: Optional[str] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
    ) -> int:
        """Number of definitions matching the filters, counting each id once."""

    @abstractmethod
    def set_active(self, definition_id: str, is_active: bool) -> WorkflowDefinition:
        """Flip the active flag on the latest version."""

    @abstractmethod
    def delete_definition(self, definition_id: str) -> bool:
        """Delete every version along with its runs. False if it did not exist."""

    def list_active_for_object(self, object_id: str) -> List[WorkflowDefinition]:
        return self.list_definitions(object_id=object_id, is_active=True)

    # Runs

    @abstractmethod
    def create_run(self, run: ExecutionRun) -> ExecutionRun:
        """Insert a new run (without results)."""

    @abstractmethod
    def get_run(self, run_id: str) -> ExecutionRun:
        """Load a run with its results in append order. Raises RunNotFoundError."""

    @abstractmethod
    def save_run(self, run: ExecutionRun) -> None:
        """Persist run fields. Never clears a pending cancel request; never touches results."""

    @abstractmethod
    def append_result(self, run_id: str, result: ActionResult) -> int:
        """Append one result and return its 0-based position."""

    @abstractmethod
    def list_runs(
        self,
        definition_id: Optional[str] = None,
        status: Optional[RunStatus] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[ExecutionRun]:
        """Runs newest first."""

    @abstractmethod
    def count_runs(self, definition_id: Optional[str] = None, status: Optional[RunStatus] = None) -> int:
        """Number of runs matching the filters."""

    @abstractmethod
    def find_due_runs(self, now: Optional[datetime] = None) -> List[str]:
        """Ids of suspended runs whose wake-up time is at or before ``now``."""

    @abstractmethod
    def request_cancel(self, run_id: str) -> bool:
        """Flag a run for cancellation. False if the run is already terminal."""

    @abstractmethod
    def is_cancel_requested(self, run_id: str) -> bool:
        """Current cancel flag, read fresh from storage."""


class InMemoryExecutionStore(ExecutionStore):
    """Dictionary-backed store used in tests and single-process deployments."""

    def __init__(self):
        super().__init__()
        self._lock = threading.RLock()
        self._definitions: Dict[str, Dict[int, WorkflowDefinition]] = {}
        self._runs: Dict[str, ExecutionRun] = {}

    def save_definition(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        with self._lock:
            versions = self._definitions.setdefault(definition.id, {})
            now = utcnow()
            if not versions:
                version, created_at = 1, now
            else:
                latest = max(versions)
                referenced = any(
                    run.definition_id == definition.id and run.definition_version == latest
                    for run in self._runs.values()
                )
                version = latest + 1 if referenced else latest
                created_at = versions[latest].created_at if not referenced else now

            stored = definition.model_copy(
                update={"version": version, "created_at": created_at, "updated_at": now},
                deep=True,
            )
            versions[version] = stored
            logger.debug(f"Saved definition '{definition.id}' as version {version}")
            return stored.model_copy(deep=True)

    def get_definition(self, definition_id: str, version: Optional[int] = None) -> WorkflowDefinition:
        with self._lock:
            versions = self._definitions.get(definition_id)
            if not versions:
                raise DefinitionNotFoundError(definition_id)
            key = max(versions) if version is None else version
            if key not in versions:
                raise DefinitionNotFoundError(definition_id, version)
            return versions[key].model_copy(deep=True)

    def list_definitions(self, object_id=None, is_active=None, search=None, limit=None, offset=0) -> List[WorkflowDefinition]:
        matched = self._matching_definitions(object_id, is_active, search)
        matched.sort(key=lambda d: d.updated_at or datetime.min, reverse=True)
        window = matched[offset:offset + limit] if limit else matched[offset:]
        return [definition.model_copy(deep=True) for definition in window]

    def count_definitions(self, object_id=None, is_active=None, search=None) -> int:
        return len(self._matching_definitions(object_id, is_active, search))

    def _matching_definitions(self, object_id, is_active, search) -> List[WorkflowDefinition]:
        with self._lock:
            latest = [versions[max(versions)] for versions in self._definitions.values() if versions]
        needle = (search or "").strip().lower()
        return [
            definition for definition in latest
            if (object_id is None or definition.object_id == object_id)
            and (is_active is None or definition.is_active == is_active)
            and (not needle or needle in definition.name.lower())
        ]

    def set_active(self, definition_id: str, is_active: bool) -> WorkflowDefinition:
        with self._lock:
            versions = self._definitions.get(definition_id)
            if not versions:
                raise DefinitionNotFoundError(definition_id)
            latest = max(versions)
            versions[latest] = versions[latest].model_copy(
                update={"is_active": is_active, "updated_at": utcnow()}
            )
            return versions[latest].model_copy(deep=True)

    def delete_definition(self, definition_id: str) -> bool:
        with self._lock:
            if self._definitions.pop(definition_id, None) is None:
                return False
            for run_id in [rid for rid, run in self._runs.items() if run.definition_id == definition_id]:
                del self._runs[run_id]
            return True

    def create_run(self, run: ExecutionRun) -> ExecutionRun:
        with self._lock:
            if run.id in self._runs:
                raise StorageError(f"Execution run '{run.id}' already exists", operation="create_run",
                                   recoverable=False)
            self._runs[run.id] = run.model_copy(update={"results": []}, deep=True)
            return self._runs[run.id].model_copy(deep=True)

    def get_run(self, run_id: str) -> ExecutionRun:
        with self._lock:
            run = self._runs.get(run_id)
            if run is None:
                raise RunNotFoundError(run_id)
            return run.model_copy(deep=True)

    def save_run(self, run: ExecutionRun) -> None:
        with self._lock:
            stored = self._runs.get(run.id)
            if stored is None:
                raise RunNotFoundError(run.id)
            self._runs[run.id] = run.model_copy(
                update={
                    "results": stored.results,
                    "cancel_requested": stored.cancel_requested or run.cancel_requested,
                    "updated_at": utcnow(),
                },
                deep=True,
            )

    def append_result(self, run_id: str, result: ActionResult) -> int:
        with self._lock:
            stored = self._runs.get(run_id)
            if stored is None:
                raise RunNotFoundError(run_id)
            stored.results.append(result.model_copy(deep=True))
            return len(stored.results) - 1

    def list_runs(self, definition_id=None, status=None, limit=None, offset=0) -> List[ExecutionRun]:
        with self._lock:
            runs = [
                run.model_copy(deep=True) for run in self._runs.values()
                if (definition_id is None or run.definition_id == definition_id)
                and (status is None or run.status == RunStatus(status))
            ]
        runs.sort(key=lambda r: r.started_at, reverse=True)
        return runs[offset:offset + limit] if limit else runs[offset:]

    def count_runs(self, definition_id=None, status=None) -> int:
        with self._lock:
            return sum(
                1 for run in self._runs.values()
                if (definition_id is None or run.definition_id == definition_id)
                and (status is None or run.status == RunStatus(status))
            )

    def find_due_runs(self, now: Optional[datetime] = None) -> List[str]:
        now = as_naive_utc(now) or utcnow()
        with self._lock:
            due = [
                run for run in self._runs.values()
                if run.status == RunStatus.SUSPENDED
                and run.suspension is not None
                and run.suspension.resume_at <= now
            ]
        due.sort(key=lambda r: r.suspension.resume_at)
        return [run.id for run in due]

    def request_cancel(self, run_id: str) -> bool:
        with self._lock:
            run = self._runs.get(run_id)
            if run is None:
                raise RunNotFoundError(run_id)
            if run.status.is_terminal:
                return False
            run.cancel_requested = True
            return True

    def is_cancel_requested(self, run_id: str) -> bool:
        with self._lock:
            run = self._runs.get(run_id)
            if run is None:
                raise RunNotFoundError(run_id)
            return run.cancel_requested


class SqlExecutionStore(ExecutionStore):
    """SQLAlchemy-backed store. Every operation runs in its own short session."""

    def __init__(self, session_factory: sessionmaker):
        super().__init__()
        self._session_factory = session_factory

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except WorkflowEngineError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database error during {operation}: {str(e)}")
            raise StorageError(f"Failed to {operation.replace('_', ' ')}: {str(e)}", operation=operation)
        finally:
            session.close()

    # Definitions

    def save_definition(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        with self._session("save_definition") as session:
            latest = self._latest_definition_row(session, definition.id)
            now = utcnow()

            if latest is None:
                version, created_at = 1, now
                row = None
            else:
                referenced = session.query(ExecutionRunModel.id).filter(
                    ExecutionRunModel.definition_id == definition.id,
                    ExecutionRunModel.definition_version == latest.version,
                ).first() is not None
                if referenced:
                    version, created_at, row = latest.version + 1, now, None
                else:
                    version, created_at, row = latest.version, latest.created_at, latest

            stored = definition.model_copy(update={"version": version, "created_at": created_at, "updated_at": now})
            if row is None:
                row = WorkflowDefinitionModel(id=definition.id, version=version, created_at=created_at)
                session.add(row)
            row.name = stored.name
            row.object_id = stored.object_id
            row.trigger_type = stored.trigger.type
            row.is_active = stored.is_active
            row.definition = stored.to_wire()
            row.updated_at = now

            logger.debug(f"Saved definition '{definition.id}' as version {version}")
            return stored

    def get_definition(self, definition_id: str, version: Optional[int] = None) -> WorkflowDefinition:
        with self._session("get_definition") as session:
            if version is None:
                row = self._latest_definition_row(session, definition_id)
                if row is None:
                    raise DefinitionNotFoundError(definition_id)
            else:
                row = session.get(WorkflowDefinitionModel, (definition_id, version))
                if row is None:
                    raise DefinitionNotFoundError(definition_id, version)
            return self._definition_from_row(row)

    def list_definitions(self, object_id=None, is_active=None, search=None, limit=None, offset=0) -> List[WorkflowDefinition]:
        with self._session("list_definitions") as session:
            query = self._latest_definitions_query(session, object_id, is_active, search)
            query = query.order_by(WorkflowDefinitionModel.updated_at.desc(), WorkflowDefinitionModel.id)
            if offset:
                query = query.offset(offset)
            if limit:
                query = query.limit(limit)
            return [self._definition_from_row(row) for row in query.all()]

    def count_definitions(self, object_id=None, is_active=None, search=None) -> int:
        with self._session("count_definitions") as session:
            return self._latest_definitions_query(session, object_id, is_active, search).count()

    @staticmethod
    def _latest_definitions_query(session: Session, object_id, is_active, search):
        latest = session.query(
            WorkflowDefinitionModel.id,
            func.max(WorkflowDefinitionModel.version).label("version"),
        ).group_by(WorkflowDefinitionModel.id).subquery()

        query = session.query(WorkflowDefinitionModel).join(
            latest,
            (WorkflowDefinitionModel.id == latest.c.id)
            & (WorkflowDefinitionModel.version == latest.c.version),
        )
        if object_id is not None:
            query = query.filter(WorkflowDefinitionModel.object_id == object_id)
        if is_active is not None:
            query = query.filter(WorkflowDefinitionModel.is_active == is_active)
        if search:
            query = query.filter(WorkflowDefinitionModel.name.ilike(f"%{search.strip()}%"))
        return query

    def set_active(self, definition_id: str, is_active: bool) -> WorkflowDefinition:
        with self._session("set_active") as session:
            row = self._latest_definition_row(session, definition_id)
            if row is None:
                raise DefinitionNotFoundError(definition_id)
            row.is_active = is_active
            row.definition = {**row.definition, "isActive": is_active}
            row.updated_at = utcnow()
            return self._definition_from_row(row)

    def delete_definition(self, definition_id: str) -> bool:
        with self._session("delete_definition") as session:
            rows = session.query(WorkflowDefinitionModel).filter(WorkflowDefinitionModel.id == definition_id).all()
            if not rows:
                return False
            run_ids = [
                run_id for (run_id,) in
                session.query(ExecutionRunModel.id).filter(ExecutionRunModel.definition_id == definition_id)
            ]
            if run_ids:
                session.query(ActionResultModel).filter(
                    ActionResultModel.run_id.in_(run_ids)
                ).delete(synchronize_session=False)
                session.query(ExecutionRunModel).filter(
                    ExecutionRunModel.id.in_(run_ids)
                ).delete(synchronize_session=False)
            for row in rows:
                session.delete(row)
            return True

    # Runs

    def create_run(self, run: ExecutionRun) -> ExecutionRun:
        with self._session("create_run") as session:
            if session.get(ExecutionRunModel, run.id) is not None:
                raise StorageError(f"Execution run '{run.id}' already exists", operation="create_run",
                                   recoverable=False)
            row = ExecutionRunModel(
                id=run.id,
                definition_id=run.definition_id,
                definition_version=run.definition_version,
                started_at=run.started_at,
            )
            self._apply_run(row, run)
            row.cancel_requested = run.cancel_requested
            session.add(row)
        return run.model_copy(update={"results": []}, deep=True)

    def get_run(self, run_id: str) -> ExecutionRun:
        with self._session("get_run") as session:
            row = session.get(ExecutionRunModel, run_id)
            if row is None:
                raise RunNotFoundError(run_id)
            return self._run_from_row(row, include_results=True)

    def save_run(self, run: ExecutionRun) -> None:
        with self._session("save_run") as session:
            row = session.get(ExecutionRunModel, run.id)
            if row is None:
                raise RunNotFoundError(run.id)
            self._apply_run(row, run)
            row.cancel_requested = bool(row.cancel_requested) or run.cancel_requested

    def append_result(self, run_id: str, result: ActionResult) -> int:
        with self._session("append_result") as session:
            if session.get(ExecutionRunModel, run_id) is None:
                raise RunNotFoundError(run_id)
            current = session.query(func.max(ActionResultModel.sequence)).filter(
                ActionResultModel.run_id == run_id
            ).scalar()
            sequence = 0 if current is None else current + 1
            session.add(ActionResultModel(
                run_id=run_id,
                sequence=sequence,
                node_id=result.node_id,
                action_type=result.action_type,
                status=ActionResultStatus(result.status).value,
                output=_jsonable(result.output),
                error=result.error,
                error_details=_jsonable(result.error_details),
                attempts=result.attempts,
                iteration=result.iteration,
                timestamp=result.timestamp,
            ))
            return sequence

    def list_runs(self, definition_id=None, status=None, limit=None, offset=0) -> List[ExecutionRun]:
        with self._session("list_runs") as session:
            query = self._runs_query(session, definition_id, status)
            query = query.order_by(ExecutionRunModel.started_at.desc(), ExecutionRunModel.id)
            if offset:
                query = query.offset(offset)
            if limit:
                query = query.limit(limit)
            return [self._run_from_row(row, include_results=True) for row in query.all()]

    def count_runs(self, definition_id=None, status=None) -> int:
        with self._session("count_runs") as session:
            return self._runs_query(session, definition_id, status).count()

    @staticmethod
    def _runs_query(session: Session, definition_id, status):
        query = session.query(ExecutionRunModel)
        if definition_id is not None:
            query = query.filter(ExecutionRunModel.definition_id == definition_id)
        if status is not None:
            query = query.filter(ExecutionRunModel.status == RunStatus(status).value)
        return query

    def find_due_runs(self, now: Optional[datetime] = None) -> List[str]:
        now = as_naive_utc(now) or utcnow()
        with self._session("find_due_runs") as session:
            rows = session.query(ExecutionRunModel.id).filter(
                ExecutionRunModel.status == RunStatus.SUSPENDED.value,
                ExecutionRunModel.resume_at.isnot(None),
                ExecutionRunModel.resume_at <= now,
            ).order_by(ExecutionRunModel.resume_at).all()
            return [run_id for (run_id,) in rows]

    def request_cancel(self, run_id: str) -> bool:
        with self._session("request_cancel") as session:
            row = session.get(ExecutionRunModel, run_id)
            if row is None:
                raise RunNotFoundError(run_id)
            if RunStatus(row.status).is_terminal:
                return False
            row.cancel_requested = True
            return True

    def is_cancel_requested(self, run_id: str) -> bool:
        with self._session("is_cancel_requested") as session:
            value = session.query(ExecutionRunModel.cancel_requested).filter(
                ExecutionRunModel.id == run_id
            ).scalar()
            if value is None:
                raise RunNotFoundError(run_id)
            return bool(value)

    # Row mapping

    @staticmethod
    def _latest_definition_row(session: Session, definition_id: str) -> Optional[WorkflowDefinitionModel]:
        return session.query(WorkflowDefinitionModel).filter(
            WorkflowDefinitionModel.id == definition_id
        ).order_by(WorkflowDefinitionModel.version.desc()).first()

    @staticmethod
    def _definition_from_row(row: WorkflowDefinitionModel) -> WorkflowDefinition:
        definition = WorkflowDefinition.model_validate(row.definition)
        return definition.model_copy(update={
            "version": row.version,
            "is_active": bool(row.is_active),
            "created_at": row.created_at,
            "updated_at": row.updated_at,
        })

    @staticmethod
    def _apply_run(row: ExecutionRunModel, run: ExecutionRun) -> None:
        row.status = RunStatus(run.status).value
        row.event = _jsonable(run.event)
        row.variables = _jsonable(run.variables)
        if run.suspension is not None:
            row.suspension = run.suspension.model_dump(mode="json", by_alias=True)
            row.resume_at = run.suspension.resume_at
        else:
            row.suspension = None
            row.resume_at = None
        row.error_message = run.error_message
        row.updated_at = utcnow()
        row.completed_at = run.completed_at

    @staticmethod
    def _run_from_row(row: ExecutionRunModel, include_results: bool) -> ExecutionRun:
        results = []
        if include_results:
            results = [
                ActionResult(
                    node_id=result.node_id,
                    action_type=result.action_type,
                    status=ActionResultStatus(result.status),
                    output=result.output,
                    error=result.error,
                    error_details=result.error_details or {},
                    attempts=result.attempts or 1,
                    iteration=result.iteration,
                    timestamp=result.timestamp,
                )
                for result in row.results
            ]
        return ExecutionRun(
            id=row.id,
            definition_id=row.definition_id,
            definition_version=row.definition_version,
            event=row.event or {},
            status=RunStatus(row.status),
            results=results,
            variables=row.variables or {},
            suspension=SuspensionPoint.model_validate(row.suspension) if row.suspension else None,
            cancel_requested=bool(row.cancel_requested),
            error_message=row.error_message,
            started_at=row.started_at,
            updated_at=row.updated_at,
            completed_at=row.completed_at,
        )


def _jsonable(value: Any) -> Any:
    """Convert datetimes and models so JSON columns accept the value."""
    if value is None:
        return None
    return _JSON_ADAPTER.dump_python(value, mode="json")
