import asyncio
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from transcription_engine.config import EngineConfig
    from transcription_engine.server.server import ServerManager
    from transcription_engine.services.manager import ServicesManager

# -------------------------------------------------------------- #
# Context Class
# -------------------------------------------------------------- #


class Context:
    """
    Central context object that provides access to the server manager,
    the services manager and the engine configuration.

    Components reach each other through this object instead of being
    handed every collaborator individually.
    """

    def __init__(self, config: "EngineConfig | None" = None):
        self.server_manager: ServerManager | None = None
        self.services_manager: ServicesManager | None = None
        self.config: EngineConfig | None = config
        self._shutting_down: bool = False
        self._shutdown_event: asyncio.Event = asyncio.Event()

    def set_server_manager(self, server_manager: "ServerManager") -> None:
        """Set the server manager instance."""
        self.server_manager = server_manager

    def set_services_manager(self, services_manager: "ServicesManager") -> None:
        """Set the services manager instance."""
        self.services_manager = services_manager

    def set_config(self, config: "EngineConfig") -> None:
        """Set the engine configuration."""
        self.config = config

    def is_shutting_down(self) -> bool:
        """Check if the application is shutting down."""
        return self._shutting_down

    def mark_shutdown_started(self) -> None:
        """Mark that shutdown has been initiated."""
        self._shutting_down = True
        self._shutdown_event.set()

    def wait_for_shutdown(self) -> asyncio.Event:
        """Get the shutdown event for services to monitor."""
        return self._shutdown_event
