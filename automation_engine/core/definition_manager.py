"""Definition Manager: validated, versioned storage of workflow definitions."""

import uuid
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from ..models.core import (
    DefinitionSummary,
    Page,
    PageMeta,
    RunStatus,
    ValidationIssue,
    ValidationResult,
    WorkflowDefinition,
)
from .exceptions import GraphValidationError
from .execution_store import ExecutionStore
from .graph_validator import GraphValidator
from .logging import get_logger

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 50

DefinitionPayload = Union[WorkflowDefinition, Dict[str, Any]]


class DefinitionManager:
    """Manages workflow definitions: validation, versioned storage and listing."""

    def __init__(self, store: ExecutionStore, validator: Optional[GraphValidator] = None):
        self.store = store
        self.validator = validator or GraphValidator()

    def validate(self, payload: DefinitionPayload) -> ValidationResult:
        """Validate without saving."""
        return self.validator.validate(payload)

    def save(self, payload: DefinitionPayload) -> WorkflowDefinition:
        """
        Validate and persist a definition.

        Args:
            payload: Definition model or its JSON mapping

        Returns:
            WorkflowDefinition: The stored definition with its assigned version

        Raises:
            GraphValidationError: If validation finds any error; nothing is saved
            StorageError: If the store fails
        """
        definition = self._parse(payload)
        result = self.validator.validate(definition)

        if not result.is_valid:
            message = f"Workflow validation failed: {'; '.join(issue.message for issue in result.errors)}"
            logger.error(message)
            raise GraphValidationError(message, issues=result.errors, definition_id=definition.id)

        if result.warnings:
            logger.warning(f"Workflow '{definition.id}' validation warnings: {'; '.join(result.warnings)}")

        stored = self.store.save_definition(definition)
        logger.info(f"Saved workflow '{stored.name}' ({stored.id}) as version {stored.version}")
        return stored

    def create(self, payload: DefinitionPayload) -> WorkflowDefinition:
        """Save a new definition, generating an id when the payload has none."""
        if isinstance(payload, dict) and not payload.get("id"):
            payload = {**payload, "id": str(uuid.uuid4())}
        return self.save(payload)

    def get(self, definition_id: str, version: Optional[int] = None) -> WorkflowDefinition:
        return self.store.get_definition(definition_id, version)

    def page_summaries(self, page: int = 1, limit: int = DEFAULT_PAGE_SIZE, **filters) -> Page:
        """One page of definition summaries, newest first, with total counts."""
        page, limit = max(page, 1), max(limit, 1)
        definitions = self.store.list_definitions(limit=limit, offset=(page - 1) * limit, **filters)
        return Page(
            data=[_summary(definition) for definition in definitions],
            meta=PageMeta.build(self.store.count_definitions(**filters), page, limit),
        )

    def set_active(self, definition_id: str, is_active: bool) -> WorkflowDefinition:
        definition = self.store.set_active(definition_id, is_active)
        logger.info(f"Workflow '{definition_id}' {'activated' if is_active else 'deactivated'}")
        return definition

    def toggle(self, definition_id: str) -> WorkflowDefinition:
        """Flip the active flag of the latest version."""
        current = self.store.get_definition(definition_id)
        return self.set_active(definition_id, not current.is_active)

    def duplicate(self, definition_id: str) -> WorkflowDefinition:
        """Copy the latest version under a new id, named ``<name> (Copy)`` and inactive."""
        source = self.store.get_definition(definition_id)
        copy = source.model_copy(
            update={
                "id": str(uuid.uuid4()),
                "name": f"{source.name} (Copy)",
                "is_active": False,
                "version": 1,
                "created_at": None,
                "updated_at": None,
            },
            deep=True,
        )
        stored = self.store.save_definition(copy)
        logger.info(f"Duplicated workflow '{definition_id}' as '{stored.id}'")
        return stored

    def delete(self, definition_id: str) -> bool:
        deleted = self.store.delete_definition(definition_id)
        if deleted:
            logger.info(f"Deleted workflow '{definition_id}'")
        else:
            logger.warning(f"Workflow '{definition_id}' not found for deletion")
        return deleted

    def page_runs(
        self,
        definition_id: str,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        status: Optional[RunStatus] = None,
    ) -> Page:
        """One page of a definition's execution history, newest first."""
        self.store.get_definition(definition_id)
        page, limit = max(page, 1), max(limit, 1)
        runs = self.store.list_runs(
            definition_id=definition_id, status=status, limit=limit, offset=(page - 1) * limit
        )
        total = self.store.count_runs(definition_id=definition_id, status=status)
        return Page(data=runs, meta=PageMeta.build(total, page, limit))

    @staticmethod
    def _parse(payload: DefinitionPayload) -> WorkflowDefinition:
        if isinstance(payload, WorkflowDefinition):
            return payload
        try:
            return WorkflowDefinition.model_validate(payload)
        except ValidationError as e:
            issues = [
                ValidationIssue(
                    code="invalid_definition",
                    message=f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}",
                )
                for err in e.errors()
            ]
            raise GraphValidationError(
                f"Workflow definition is malformed: {'; '.join(issue.message for issue in issues)}",
                issues=issues,
                definition_id=payload.get("id") if isinstance(payload, dict) else None,
            )


def _summary(definition: WorkflowDefinition) -> DefinitionSummary:
    return DefinitionSummary(
        id=definition.id,
        name=definition.name,
        object_id=definition.object_id,
        trigger_type=definition.trigger.type,
        is_active=definition.is_active,
        version=definition.version,
        node_count=len(definition.nodes),
        updated_at=definition.updated_at,
    )
