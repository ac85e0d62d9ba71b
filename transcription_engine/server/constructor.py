from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from transcription_engine.config import EngineConfig
    from transcription_engine.context import Context

from transcription_engine.constructor import EngineType
from transcription_engine.server.server import ServerManager

# -------------------------------------------------------------- #
# Constructor for Dynamic Creation of Server Manager
# -------------------------------------------------------------- #


def construct_server_manager(
    engine_type: EngineType,
    context: "Context",
    config: "EngineConfig | None" = None,
) -> "ServerManager":
    """Construct and return a ServerManager instance for the given engine type."""

    if engine_type == EngineType.PRODUCTION:
        from transcription_engine.server.production.constructor import construct_server_manager

        return construct_server_manager(context, config)
    elif engine_type == EngineType.TESTING:
        from transcription_engine.server.testing.constructor import construct_server_manager

        return construct_server_manager(context)

    raise ValueError(f"Unsupported EngineType: {engine_type}")
