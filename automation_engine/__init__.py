"""Event-driven workflow automation engine for CRM records."""

__version__ = "1.0.0"
