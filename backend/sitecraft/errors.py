"""
Error taxonomy shared by every collaborator.

Everything raised on purpose derives from SitecraftError so the HTTP layer
and the build workflow can turn it into a readable failure message.
"""


class SitecraftError(Exception):
    """Base class for all expected failures."""


class ConfigurationError(SitecraftError):
    """A required credential or setting is missing."""


class FetchError(SitecraftError):
    """The root page (or a required resource) could not be retrieved."""

    def __init__(self, url: str, message: str):
        self.url = url
        super().__init__(f"Could not fetch {url}: {message}")


class UnparsableResponseError(SitecraftError):
    """No structured plan could be recovered from model output."""


class GenerationError(SitecraftError):
    """The text model rejected the request or is not configured."""


class SessionUnavailableError(SitecraftError):
    """The remote sandbox handle is invalid, expired or paused beyond recovery."""

    def __init__(self, session_id: str, message: str = ""):
        self.session_id = session_id
        detail = f": {message}" if message else ""
        super().__init__(
            f"Sandbox {session_id} is no longer available{detail}. "
            "Start a new session."
        )


class FileOperationError(SitecraftError):
    """A single write/read/delete inside the sandbox failed."""

    def __init__(self, path: str, operation: str, message: str):
        self.path = path
        self.operation = operation
        super().__init__(f"{operation} failed for {path}: {message}")


class CommandFailedError(SitecraftError):
    """A remote command exited with a non-zero status."""

    def __init__(self, command: str, exit_code: int, output: str = ""):
        self.command = command
        self.exit_code = exit_code
        self.output = output
        tail = output.strip()[-500:]
        super().__init__(
            f"`{command}` exited with code {exit_code}" + (f":\n{tail}" if tail else "")
        )


class InvalidTransitionError(SitecraftError):
    """A sandbox session was asked to skip or repeat a lifecycle step."""


class ApplyError(SitecraftError):
    """apply_plan aborted at a named step."""

    def __init__(self, step: str, cause: Exception, session_id: str | None = None):
        self.step = step
        self.cause = cause
        self.session_id = session_id
        super().__init__(f"Step '{step}' failed: {cause}")


class InvalidCredentialError(SitecraftError):
    """A publishing provider rejected the token."""

    def __init__(self, provider: str, message: str = "Invalid token"):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class PublishError(SitecraftError):
    """The provider accepted the token but failed to publish."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider} publish failed: {message}")
