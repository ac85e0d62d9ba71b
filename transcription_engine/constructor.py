from enum import Enum

# -------------------------------------------------------------- #
# Engine Type
# -------------------------------------------------------------- #


class EngineType(Enum):
    """Selects which wiring the constructor functions build."""

    PRODUCTION = "production"
    TESTING = "testing"
