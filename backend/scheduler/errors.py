"""Exception types raised by the orchestrator and its collaborators."""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base exception for orchestrator errors."""

    def __init__(self, message: str, task: str | None = None) -> None:
        super().__init__(message)
        self.task = task


class CollaboratorUnavailableError(OrchestratorError):
    """A source processor or posting pipeline call failed or timed out."""

    pass


class PersistenceError(OrchestratorError):
    """Error reading or writing the state store."""

    pass


class ConfigurationMissingError(OrchestratorError):
    """Posting settings or credentials are absent."""

    pass
