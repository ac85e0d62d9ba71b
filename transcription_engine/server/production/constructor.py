from typing import TYPE_CHECKING

from dotenv import load_dotenv

if TYPE_CHECKING:
    from transcription_engine.context import Context

from transcription_engine.config import EngineConfig
from transcription_engine.server.common import relay_client
from transcription_engine.server.server import ServerManager

load_dotenv(dotenv_path=".env.local")

# -------------------------------------------------------------- #
# Constructor for Production Server Manager
# -------------------------------------------------------------- #


def load_relay_client(config: EngineConfig) -> relay_client.TranscriptionRelayClient:
    """Load and return the transcription relay client."""
    return relay_client.construct_transcription_relay_client(config)


def construct_server_manager(
    context: "Context", config: EngineConfig | None = None
) -> ServerManager:
    """
    Construct and return a ServerManager instance.

    Args:
        context: Context instance to pass to ServerManager
        config: Engine configuration (read from the environment when omitted)

    Returns:
        Configured ServerManager instance
    """
    config = config or context.config or EngineConfig.from_env()
    if context.config is None:
        context.set_config(config)

    # create server manager
    server_manager = ServerManager(
        context=context,
        relay_client=load_relay_client(config),
    )

    return server_manager
