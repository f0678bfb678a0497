"""Error taxonomy for apm operations.

Every error raised by the core derives from ApmError so that callers
(TransactionCoordinator, services, CLI) can turn it into an error
Response at their boundary.
"""

from typing import Any, Dict, List, Sequence


class ApmError(Exception):
    """Base class for all apm errors."""


class InvalidFieldError(ApmError):
    """A filter, sort or update field is not on the table allow-list."""

    def __init__(self, field: str, allowed: Sequence[str], kind: str = "filter"):
        self.field = field
        self.allowed = list(allowed)
        self.kind = kind
        super().__init__(
            f"Invalid {kind} field: {field}. "
            f"Available fields: {', '.join(self.allowed)}"
        )


class NotFoundError(ApmError):
    """Requested package or container is absent from the cache."""

    def __init__(self, name: str, alternatives: List[str] = None, what: str = "package"):
        self.name = name
        self.alternatives = list(alternatives or [])
        self.what = what
        super().__init__(f"Failed to get information about {what} {name}")


class ClassifiedPackageError(ApmError):
    """A recognized package manager complaint.

    Attributes:
        code: ErrorCode of the matched rule
        params: Literal values captured from the message
        line: Raw output line
    """

    def __init__(self, code, params: Sequence[str], message: str, line: str = ""):
        self.code = code
        self.params = list(params)
        self.line = line
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code.value,
            'params': list(self.params),
            'message': str(self),
        }

    def __repr__(self):
        return f"ClassifiedPackageError({self.code.value}, {self.params!r})"


class UnclassifiedError(ApmError):
    """Package manager error line that matched no known rule."""

    def __init__(self, line: str):
        self.line = line
        super().__init__(line)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': 'Unclassified',
            'params': [],
            'message': str(self),
            'line': self.line,
        }


class NothingToDoError(ApmError):
    """Simulation implies no change and no drift was found.

    Attributes:
        reasons: Messages of the benign errors that explain the no-op
    """

    def __init__(self, message: str, reasons: Sequence[str] = None):
        self.reasons = list(reasons or [])
        super().__init__(message)


class ExecutionError(ApmError):
    """The real package operation failed after a clean simulation."""


class StoreError(ApmError):
    """A database operation failed; wraps the sqlite3 error."""


class BackendError(ApmError):
    """An external collaborator (apt, distrobox, podman, bootc) failed.

    Attributes:
        output: Combined stdout/stderr of the failed command, if any
    """

    def __init__(self, message: str, output: str = ""):
        self.output = output
        super().__init__(message)


class OperationCancelled(ApmError):
    """The surrounding request was cancelled between two batches."""
