"""
Exception classes shared across Advisor_bot.

Every error raised on purpose derives from AdvisorBotError, so callers at the
conversation boundary can turn any of them into a reply for the user.
"""


class AdvisorBotError(Exception):
    """Base class for all Advisor_bot errors."""


class ConfigurationError(AdvisorBotError):
    """A required API key, credential or setting is missing or inconsistent."""


class ProviderError(AdvisorBotError):
    """An upstream API (LLM, embeddings, Gmail, Calendar, HubSpot) failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ValidationError(AdvisorBotError):
    """Tool arguments are missing or malformed."""


class UnknownToolError(AdvisorBotError):
    """The LLM asked for a tool that is not in the registry."""

    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class MaxIterationsExceeded(AdvisorBotError):
    """The agent loop ran out of iterations while tools were still requested."""

    def __init__(self, max_iterations: int):
        super().__init__("Max iterations reached")
        self.max_iterations = max_iterations


class NotFoundError(AdvisorBotError):
    """A referenced entity (user, conversation, contact) does not exist."""

    def __init__(self, resource: str, identifier: object = None):
        detail = f"{resource} not found" if identifier is None else f"{resource} not found: {identifier}"
        super().__init__(detail)
        self.resource = resource
        self.identifier = identifier
