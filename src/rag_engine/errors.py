"""Error taxonomy shared by the engine components."""

from __future__ import annotations


class RagEngineError(Exception):
    """Base class for engine errors."""


class ConfigurationError(RagEngineError):
    """Fatal setup problem; not recoverable at runtime."""


class DimensionMismatchError(ConfigurationError, ValueError):
    """A vector does not match the dimensionality of its store."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Vector dimension mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class QueryValidationError(RagEngineError, ValueError):
    """A query was rejected before any retrieval work."""


class ExportFormatError(RagEngineError, ValueError):
    """Unsupported history export format."""


class ToolProcessError(RagEngineError):
    """Lifecycle failure of a tool-provider worker process."""

    def __init__(self, server: str, message: str) -> None:
        super().__init__(message)
        self.server = server


class ToolSpawnError(ToolProcessError):
    """The worker executable could not be launched."""


class ToolExitedError(ToolProcessError):
    """The worker exited, before readiness or while serving calls."""

    def __init__(self, server: str, message: str, exit_code: int | None = None) -> None:
        super().__init__(server, message)
        self.exit_code = exit_code


class ToolStartupTimeout(ToolProcessError, TimeoutError):
    """The worker did not announce readiness in time."""


class ToolServerUnavailable(ToolProcessError):
    """The named worker is unknown or not ready."""


class ToolChannelClosed(ToolProcessError):
    """The worker's channel closed while a call was in flight."""


class ToolProtocolError(RagEngineError):
    """A line on the worker's output stream could not be decoded."""


class ToolCallError(RagEngineError):
    """The worker answered a call with an error object."""

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class RpcTimeoutError(RagEngineError, TimeoutError):
    """A call received no response within its timeout."""
