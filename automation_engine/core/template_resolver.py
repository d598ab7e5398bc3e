"""Template Resolver: substitutes ``{{dotted.path}}`` tokens from a run context."""

import json
import re
from datetime import date, datetime
from typing import Any

from .context import Context
from .logging import get_logger

logger = get_logger(__name__)

TOKEN_PATTERN = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")


def stringify(value: Any) -> str:
    """Render a context value the way it appears inside a template."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


class TemplateResolver:
    """Resolves template tokens against a :class:`Context`.

    Resolution is best-effort and single-pass: a missing path becomes an empty
    string and substituted text is never scanned for further tokens.
    """

    def resolve(self, template: Any, context: Any) -> str:
        """Replace every token in ``template``; never raises for missing data."""
        if template is None:
            return ""
        if not isinstance(template, str):
            return stringify(template)

        ctx = Context.coerce(context)

        def _substitute(match: re.Match) -> str:
            return stringify(ctx.lookup(match.group(1)))

        return TOKEN_PATTERN.sub(_substitute, template)

    def resolve_value(self, value: Any, context: Any) -> Any:
        """Resolve strings inside arbitrarily nested config values."""
        ctx = Context.coerce(context)
        if isinstance(value, str):
            return self.resolve(value, ctx) if self.has_tokens(value) else value
        if isinstance(value, dict):
            return {key: self.resolve_value(item, ctx) for key, item in value.items()}
        if isinstance(value, list):
            return [self.resolve_value(item, ctx) for item in value]
        return value

    def resolve_config(self, config: dict, context: Any) -> dict:
        """Resolve an action node's config mapping."""
        return self.resolve_value(dict(config or {}), context)

    def lookup_expression(self, expression: Any, context: Any) -> Any:
        """Evaluate an expression to a raw (unstringified) value.

        ``{{a.b}}`` and bare ``a.b`` both return the value at that path; any
        other text containing tokens is resolved as a string.
        """
        if not isinstance(expression, str):
            return expression
        ctx = Context.coerce(context)
        text = expression.strip()
        match = TOKEN_PATTERN.fullmatch(text)
        if match:
            return ctx.lookup(match.group(1))
        if self.has_tokens(text):
            return self.resolve(text, ctx)
        return ctx.lookup(text)

    @staticmethod
    def has_tokens(text: Any) -> bool:
        return isinstance(text, str) and TOKEN_PATTERN.search(text) is not None


_default_resolver = TemplateResolver()


def resolve(template: str, context: Any) -> str:
    """Module-level shortcut for :meth:`TemplateResolver.resolve`."""
    return _default_resolver.resolve(template, context)
