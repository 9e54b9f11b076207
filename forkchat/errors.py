"""Exception hierarchy shared across forkchat modules."""


class ForkchatError(Exception):
    """Base class for reportable, non-fatal runtime failures."""


class UserInputError(ForkchatError):
    """Raised for rejected commands: unknown command, bad argument, missing agent."""


class PersistenceError(ForkchatError):
    """Raised when an agent history cannot be read or written."""


class RemoteCallError(ForkchatError):
    """Raised when the completion endpoint fails or cannot be reached."""


class ConfigurationError(ForkchatError):
    """Raised for invalid configuration (missing credential, unknown model, bad TOML)."""
