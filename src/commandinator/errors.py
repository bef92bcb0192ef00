"""Exception types raised by the routing engine.

Two families:
- InputError / IgnoredError: caused by what a user typed. The bot runner
  turns an InputError into a reply and drops an IgnoredError quietly.
- Everything else is a defect in bot code or configuration and is
  propagated to the caller.
"""


class CommandinatorError(Exception):
    """Base class for engine errors."""


class InputError(CommandinatorError):
    """A user-facing error caused by invalid input or missing permission.

    Attributes:
        message: Short description shown to the user
        hint: Suggestion on how to fix it
        code: Machine-readable reason (e.g., "arguments", "restricted")
    """

    def __init__(self, message: str, hint: str = "", code: str = None):
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.code = code

    def format(self) -> str:
        """Render the error as a chat reply."""
        if self.hint:
            return f"❌ {self.message}\n{self.hint}"
        return f"❌ {self.message}"


class IgnoredError(CommandinatorError):
    """Aborts a dispatch without replying to the user."""


class ConfigurationError(CommandinatorError):
    """The bot was wired up or configured incorrectly."""


class AwaitStateError(CommandinatorError):
    """An Await lifecycle method was called before the await was armed."""
