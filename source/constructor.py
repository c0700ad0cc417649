from enum import Enum

# -------------------------------------------------------------- #
# Server Manager Types
# -------------------------------------------------------------- #


class ServerManagerType(Enum):
    """Which set of external server handlers to construct."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"
