"""
Server manager for external services.

Holds the handlers for backends the engine talks to over the network. A
backend that fails to connect is recorded as degraded instead of aborting
startup: the relay then answers every chunk with an unavailable outcome and
the sessions keep running.
"""

import logging
from typing import TYPE_CHECKING

from transcription_engine.server.services import BaseServerHandler, TranscriptionRelayHandler

if TYPE_CHECKING:
    from transcription_engine.context import Context

logger = logging.getLogger(__name__)

RELAY_SERVER_NAME = "transcription_relay"

# -------------------------------------------------------------- #
# Server Manager
# -------------------------------------------------------------- #


class ServerManager:
    """Registry and lifecycle driver for backend handlers."""

    def __init__(
        self,
        context: "Context",
        relay_client: TranscriptionRelayHandler,
    ):
        self.context = context
        self._initialized = False
        self._servers: dict[str, BaseServerHandler] = {}
        self._degraded: set[str] = set()

        self.register(RELAY_SERVER_NAME, relay_client)

    def register(self, name: str, handler: BaseServerHandler) -> None:
        if name in self._servers:
            raise ValueError(f"Server '{name}' is already registered")
        self._servers[name] = handler

    def get_server(self, name: str) -> BaseServerHandler:
        try:
            return self._servers[name]
        except KeyError:
            raise KeyError(f"No server registered as '{name}'") from None

    # ------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------ #

    async def connect_all(self) -> None:
        """Connect every backend; failures leave that backend degraded."""
        self._degraded.clear()

        for name, server in self._servers.items():
            try:
                await server.connect()
                await server.on_startup()
            except Exception as e:
                self._degraded.add(name)
                logger.warning(f"[ServerManager] '{name}' failed to connect, running degraded: {e}")
                continue
            logger.info(f"[ServerManager] '{name}' ready ({type(server).__name__})")

        self._initialized = True
        logger.info(
            f"[ServerManager] {len(self._servers) - len(self._degraded)}/{len(self._servers)} "
            "servers connected"
        )

    async def disconnect_all(self) -> None:
        """Close every backend, continuing past individual failures."""
        for name, server in self._servers.items():
            try:
                await server.on_close()
                await server.disconnect()
            except Exception as e:
                logger.error(f"[ServerManager] Error disconnecting '{name}': {e}")

        self._initialized = False
        logger.info("[ServerManager] All servers disconnected")

    async def health_check_all(self) -> dict[str, bool]:
        """
        Check health of all registered servers.

        A handler whose check raises is reported as unhealthy.

        Returns:
            Dictionary mapping server names to health status
        """
        results = {}
        for name, server in self._servers.items():
            try:
                results[name] = await server.health_check()
            except Exception as e:
                logger.warning(f"[ServerManager] Health check for '{name}' raised: {e}")
                results[name] = False
        return results

    def list_servers(self) -> list[str]:
        return list(self._servers.keys())

    # ------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------ #

    @property
    def relay_client(self) -> TranscriptionRelayHandler:
        return self._servers[RELAY_SERVER_NAME]

    @property
    def degraded_servers(self) -> list[str]:
        return sorted(self._degraded)

    @property
    def is_initialized(self) -> bool:
        return self._initialized
