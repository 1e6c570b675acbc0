"""
Error taxonomy for the PodMonitor compiler.

Every error raised while compiling a monitor derives from CompileError and
carries enough context (namespace, name, endpoint index, field) to diagnose it.
"""

from typing import Any, Optional


class CompileError(Exception):
    """Base exception for scrape config compilation errors."""

    def __init__(
        self,
        message: str,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        endpoint_index: Optional[int] = None,
        field: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.namespace = namespace
        self.name = name
        self.endpoint_index = endpoint_index
        self.field = field

    def with_context(self, **context: Any) -> "CompileError":
        """
        Return a copy of this error with missing context filled in.

        Context already set on the error wins over the supplied values, so the
        innermost component keeps ownership of the field it complained about.
        """
        merged = {
            "namespace": self.namespace,
            "name": self.name,
            "endpoint_index": self.endpoint_index,
            "field": self.field,
        }
        for key, value in context.items():
            if merged.get(key) is None:
                merged[key] = value
        return type(self)(self.message, **merged)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary representation."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "namespace": self.namespace,
            "name": self.name,
            "endpoint_index": self.endpoint_index,
            "field": self.field,
        }

    def __str__(self) -> str:
        parts = []
        if self.namespace is not None and self.name is not None:
            parts.append(f"{self.namespace}/{self.name}")
        if self.endpoint_index is not None:
            parts.append(f"endpoint {self.endpoint_index}")
        if self.field:
            parts.append(self.field)
        if not parts:
            return self.message
        return f"{', '.join(parts)}: {self.message}"


class ValidationError(CompileError):
    """Raised for malformed regexes, selectors, durations or relabel rules."""
    pass


class UnsupportedFeatureError(CompileError):
    """Raised when a credential source cannot be expressed in the output."""
    pass


class SecretResolutionError(CompileError):
    """Raised when an eager secret or config map fetch fails."""
    pass


class ConfigValidationError(Exception):
    """Raised when settings or manifest validation fails."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []
