"""Custom exceptions for tunnel management."""

from ..common.exceptions import IAPTunnelError


class TunnelError(IAPTunnelError):
    """Base exception for tunnel lifecycle errors."""

    pass


class LaunchError(TunnelError):
    """Raised when the tunneling executable cannot be resolved or started."""

    pass


class TunnelStartupError(TunnelError):
    """Raised when the tunnel subprocess exits before it becomes ready."""

    def __init__(
        self, message: str, diagnostics: str = "", returncode: int | None = None
    ):
        self.diagnostics = diagnostics
        self.returncode = returncode
        if diagnostics:
            message = f"{message}: {diagnostics.strip()}"
        super().__init__(message)


class TunnelTimeoutError(TunnelError):
    """Raised when the tunnel does not accept connections within the timeout."""

    def __init__(self, message: str, timeout: float):
        self.timeout = timeout
        super().__init__(message)


class TunnelNotFoundError(TunnelError):
    """Raised when a tunnel id does not match any known tunnel."""

    pass


class StaleRecordError(TunnelError):
    """Persisted record refers to a process that no longer exists."""

    pass


class TunnelWarning(TunnelError):
    """Non-fatal tunnel bookkeeping failure. Logged and reported, never raised."""

    def __init__(self, message: str, tunnel_id: int | None = None):
        self.tunnel_id = tunnel_id
        super().__init__(message)


class PersistenceWarning(TunnelWarning):
    """Saving, loading or deleting a persisted tunnel record failed."""

    pass


class TerminationWarning(TunnelWarning):
    """Tunnel subprocess could not be confirmed dead."""

    pass
