"""Condition Evaluator: compares resolved values and combines clause chains."""

from typing import Any, Iterable, List, Optional

from ..models.core import ConditionClause, ConditionLogic, ConditionOperator
from .context import Context
from .exceptions import EvaluationError
from .logging import get_logger
from .template_resolver import TemplateResolver, stringify

logger = get_logger(__name__)


NUMERIC_OPERATORS = frozenset({
    ConditionOperator.GREATER_THAN.value,
    ConditionOperator.LESS_THAN.value,
    ConditionOperator.GREATER_OR_EQUAL.value,
    ConditionOperator.LESS_OR_EQUAL.value,
})

UNARY_OPERATORS = frozenset({
    ConditionOperator.IS_EMPTY.value,
    ConditionOperator.IS_NOT_EMPTY.value,
})


class ConditionEvaluator:
    """
    Evaluates condition clauses against a run context.

    Evaluation is fail-closed: unknown operators and operands that cannot be
    coerced make the clause false. Nothing raised while comparing leaves this
    class.
    """

    def __init__(self, resolver: Optional[TemplateResolver] = None):
        self.resolver = resolver or TemplateResolver()

    def evaluate(self, field: str, operator: str, value: Any, context: Any) -> bool:
        """
        Evaluate one comparison.

        Args:
            field: A context path (``record.status``) or a template string
                (``{{record.status}}``)
            operator: One of :class:`ConditionOperator`
            value: The right-hand operand; strings may contain tokens
            context: A :class:`Context` or plain mapping

        Returns:
            True if the comparison holds, False otherwise
        """
        ctx = Context.coerce(context)
        try:
            left = self._resolve_field(field, ctx)
            right = self.resolver.resolve_value(value, ctx)
            return self._compare(left, operator, right)
        except EvaluationError as e:
            logger.debug(f"Condition '{field} {operator}' evaluated to false: {e.message}")
            return False

    def evaluate_clauses(self, clauses: Iterable[ConditionClause], context: Any) -> bool:
        """
        Combine clauses strictly left to right.

        The first clause seeds the result; each later clause joins it with its
        own ``logic`` tag (``OR`` or, by default, ``AND``). There is no operator
        precedence: ``a OR b AND c`` is ``(a OR b) AND c``.
        An empty clause list is true.
        """
        ctx = Context.coerce(context)
        result: Optional[bool] = None

        for clause in clauses:
            outcome = self.evaluate(clause.field, clause.operator, clause.value, ctx)
            if result is None:
                result = outcome
            elif (clause.logic or "").upper() == ConditionLogic.OR.value:
                result = result or outcome
            else:
                result = result and outcome

        return True if result is None else result

    def _resolve_field(self, field: Any, ctx: Context) -> Any:
        if not isinstance(field, str):
            return field
        return self.resolver.lookup_expression(field, ctx)

    def _compare(self, left: Any, operator: str, right: Any) -> bool:
        op = (operator or "").strip().lower()

        if op == ConditionOperator.EQUALS.value:
            return _equals(left, right)
        if op == ConditionOperator.NOT_EQUALS.value:
            return not _equals(left, right)
        if op == ConditionOperator.CONTAINS.value:
            return _contains(left, right)
        if op == ConditionOperator.NOT_CONTAINS.value:
            return not _contains(left, right)
        if op == ConditionOperator.STARTS_WITH.value:
            return stringify(left).startswith(stringify(right))
        if op == ConditionOperator.ENDS_WITH.value:
            return stringify(left).endswith(stringify(right))
        if op in NUMERIC_OPERATORS:
            lhs = _to_number(left, op)
            rhs = _to_number(right, op)
            if op == ConditionOperator.GREATER_THAN.value:
                return lhs > rhs
            if op == ConditionOperator.LESS_THAN.value:
                return lhs < rhs
            if op == ConditionOperator.GREATER_OR_EQUAL.value:
                return lhs >= rhs
            return lhs <= rhs
        if op == ConditionOperator.IS_EMPTY.value:
            return _is_empty(left)
        if op == ConditionOperator.IS_NOT_EMPTY.value:
            return not _is_empty(left)
        if op == ConditionOperator.IN.value:
            return _member_of(left, right)
        if op == ConditionOperator.NOT_IN.value:
            return not _member_of(left, right)

        raise EvaluationError(f"Unknown operator '{operator}'", operator=operator)


def _equals(left: Any, right: Any) -> bool:
    if left == right:
        return True
    return stringify(left) == stringify(right)


def _contains(left: Any, right: Any) -> bool:
    if isinstance(left, (list, tuple, set)):
        return right in left or stringify(right) in [stringify(item) for item in left]
    return stringify(right) in stringify(left)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def _candidates(value: Any) -> List[str]:
    if isinstance(value, (list, tuple, set)):
        return [stringify(item) for item in value]
    if isinstance(value, str):
        return [part.strip() for part in value.split(",")]
    return [stringify(value)]


def _member_of(left: Any, right: Any) -> bool:
    return stringify(left) in _candidates(right)


def _to_number(value: Any, operator: str) -> float:
    if value is None or isinstance(value, bool):
        raise EvaluationError(f"Cannot compare {value!r} numerically", operator=operator)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise EvaluationError(f"Cannot compare {value!r} numerically", operator=operator)


_default_evaluator = ConditionEvaluator()


def evaluate(field: str, operator: str, value: Any, context: Any) -> bool:
    """Module-level shortcut for :meth:`ConditionEvaluator.evaluate`."""
    return _default_evaluator.evaluate(field, operator, value, context)
