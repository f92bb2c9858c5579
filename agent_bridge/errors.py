"""Error types raised by the agent bridge"""


class BridgeError(Exception):
    """Base class for bridge failures"""


class NotFoundError(BridgeError):
    """A user, team, task or the system identity does not exist"""

    def __init__(self, resource: str, resource_id: str = ""):
        self.resource = resource
        self.resource_id = resource_id
        detail = f"{resource} not found"
        if resource_id:
            detail = f"{resource} {resource_id} not found"
        super().__init__(detail)


class GenerationError(BridgeError):
    """Text generation call failed or timed out"""


class StreamDrainError(BridgeError):
    """The agent stream failed or did not complete in time"""


class ThreadBusyError(BridgeError):
    """Another worker holds the lease on a thread"""


class PlatformError(BridgeError):
    """The platform API answered with an unexpected status"""

    def __init__(self, message: str, status_code: int = 0):
        self.status_code = status_code
        super().__init__(message)


class ToolNotFoundError(BridgeError):
    """The agent asked for a capability that is not registered"""
