"""
Error taxonomy for the pooled storage service.

Every error carries a human-readable message; the HTTP layer maps
ValidationError to 400, NotFoundError to 404 and everything else to 500.
"""


class PoolServiceError(Exception):
    """Base class for all service errors"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ValidationError(PoolServiceError):
    """Malformed or unsupported input"""


class NotFoundError(PoolServiceError):
    """Referenced entity does not exist"""


class ConfigurationError(PoolServiceError):
    """Creating an rclone remote configuration failed"""


class CompositionError(ConfigurationError):
    """Building a union (or one of its chunkers) failed"""


class ConnectivityError(PoolServiceError):
    """Remote is unreachable or unauthorized"""


class QuotaUnavailableError(PoolServiceError):
    """Quota could not be queried or parsed; callers keep the stored values"""


class StateConflictError(PoolServiceError):
    """Operation is not allowed in the current state"""


class AlreadyRunningError(StateConflictError):
    pass


class NotRunningError(StateConflictError):
    pass


class AlreadyMountedError(StateConflictError):
    pass


class MountError(PoolServiceError):
    """Mount command failed"""


class UnmountError(MountError):
    """Both unmount mechanisms failed"""


class MountTimeoutError(MountError, TimeoutError):
    """Mount never became visible within the polling budget"""


class PersistenceError(PoolServiceError):
    """Database write failed"""
