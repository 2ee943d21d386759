"""
Exception hierarchy for DatoCMS schema synchronization.

ConfigurationError and its subclasses are fatal: they abort a run before
any remote mutation. Everything else is reported per module.
"""

from typing import Any, List, Optional


class SchemaSyncError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(SchemaSyncError):
    """Fatal configuration problem. Never retried."""


class ModuleLoadError(ConfigurationError):
    """A definition file could not be loaded or exposes no valid entry point."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


class CycleError(ConfigurationError):
    """The dependency graph contains a cycle."""

    def __init__(self, cycle: List[str]):
        self.cycle = list(cycle)
        super().__init__(f"Circular dependency detected: {' -> '.join(self.cycle)}")


class DefinitionError(SchemaSyncError):
    """An entry point produced an invalid item type definition."""


class ItemNotFoundError(SchemaSyncError):
    """A forward lookup referenced an item type that does not exist."""

    def __init__(self, message: str, kind: str, name: str,
                 available: Optional[List[str]] = None):
        self.kind = kind
        self.name = name
        self.available = available or []
        super().__init__(message)


class DependencyFailedError(SchemaSyncError):
    """A forward lookup referenced a module whose build did not succeed."""

    def __init__(self, key: str, reason: str = ""):
        self.key = key
        message = f"Dependency {key} did not build"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class ApiError(SchemaSyncError):
    """Error returned by the DatoCMS Content Management API."""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 code: Optional[str] = None, inner_code: Optional[str] = None,
                 details: Any = None, doc_url: Optional[str] = None,
                 transient: bool = False):
        self.status_code = status_code
        self.code = code
        self.inner_code = inner_code
        self.details = details
        self.doc_url = doc_url
        self.transient = transient
        super().__init__(message)


class NotFoundError(ApiError):
    """The requested remote resource does not exist."""


class UniquenessError(ApiError):
    """A uniqueness validation failed remotely (e.g. duplicate api_key)."""
