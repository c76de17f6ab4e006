"""
Exception hierarchy for instance coordination.

Most failure modes in this package are recovered locally (stale records are
treated as absent, corrupt records as missing). These exceptions mark the
seams where a failure crosses a module boundary.
"""


class InstanceCoordinationError(Exception):
    """Base class for instance coordination errors."""

    pass


class ChannelUnavailableError(InstanceCoordinationError):
    """Raised when the broadcast channel cannot be created or is closed."""

    pass


class CorruptRecordError(InstanceCoordinationError, ValueError):
    """Raised by record parsers when stored data cannot be decoded.

    Readers catch this and treat the record as absent.
    """

    pass


class FocusRequestError(InstanceCoordinationError):
    """Raised when a focus request cannot reach the coordination port."""

    def __init__(self, host: str, port: int, reason: str):
        self.host = host
        self.port = port
        self.reason = reason
        super().__init__(f"Could not reach {host}:{port}: {reason}")


class TerminationError(InstanceCoordinationError):
    """Raised by a process probe when a signal could not be delivered."""

    def __init__(self, pid: int, reason: str):
        self.pid = pid
        self.reason = reason
        super().__init__(f"Failed to terminate PID {pid}: {reason}")
