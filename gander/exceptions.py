"""Gander exception classes."""

from __future__ import annotations

from pathlib import Path


class GanderError(RuntimeError):
    """Base exception for Gander errors."""


class UserError(GanderError):
    """Errors that should be shown to user without traceback."""

    def __init__(self, message: str, rc: int = 2):
        super().__init__(message)
        self.rc = rc


class CommandFailureError(GanderError):
    """Command failed - results already printed, just need to exit."""

    def __init__(self, rc: int = 1):
        super().__init__("")
        self.rc = rc


class ManifestError(GanderError):
    """An inventory fragment could not be read or parsed."""

    def __init__(self, path: Path, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path


class ValidationError(GanderError):
    """A fully merged host configuration is invalid."""


class MissingFieldError(ValidationError):
    """A required key is not set anywhere in a host's scope chain."""

    def __init__(self, field: str, host_path: str):
        super().__init__(f"host {host_path}: missing key: `{field}`")
        self.field = field
        self.host_path = host_path


class PlaybookError(GanderError):
    """The playbook could not be read, parsed, or resolved."""

    def __init__(self, path: Path, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path


class AgentError(GanderError):
    """The credential relay could not serve a request."""
