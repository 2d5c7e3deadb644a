"""Domain errors used by llmwatch services."""


class LLMWatchError(Exception):
    """Base exception for user-facing llmwatch errors."""


class ConfigError(LLMWatchError):
    """Raised when configuration cannot be located, parsed or validated."""

    exit_code = 2


class EndpointError(LLMWatchError):
    """Raised inside an endpoint client when the stream reports an error.

    Never escapes ``execute()``; it is converted into a failed ExecutionResult.
    """


class SuiteError(LLMWatchError):
    """Raised when a suite run cannot be completed or stored."""

    exit_code = 1
