from __future__ import annotations


class EngineError(Exception):
    pass


class DecodeError(EngineError):
    """The backend event stream is structurally malformed. Fatal."""


class BackendError(EngineError):
    """Transport, auth or HTTP failure talking to the model. Fatal."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AssemblyError(EngineError):
    """A single tool call carried bad JSON or failed schema validation."""


class DispatchError(EngineError):
    """A handler raised, returned garbage, or its name is not registered."""
