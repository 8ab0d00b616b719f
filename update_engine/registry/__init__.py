"""Update descriptor registry."""

from update_engine.registry.update_registry import UpdateRegistry, format_validation_errors

__all__ = ["UpdateRegistry", "format_validation_errors"]
