import asyncio
import logging

from chatrelay.bootstrap.config.settings import RelaySettings
from chatrelay.core.helpers.spawn import TaskSpawner
from chatrelay.core.models.config import ServerConfig
from chatrelay.core.transport.addr import format_addr
from chatrelay.core.transport.server import RelayServer


class ControlPlane:
    def __init__(self, config: RelaySettings) -> None:
        self._config = config
        self._loop = self._create_event_loop()
        self._spawner = TaskSpawner(loop=self._loop)
        self._server_config = self._build_server_config()
        self._server = RelayServer(
            config=self._server_config,
            spawner=self._spawner,
            loop=self._loop,
        )
        self._logger = logging.getLogger("chatrelay.controlplane")

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    @property
    def server(self) -> RelayServer:
        return self._server

    async def start(self, stop_event: asyncio.Event) -> None:
        await self._server.start()
        self._logger.info(
            f"Relay server started at {format_addr(self._server.listen)} "
            f"in {self._server_config.relay_mode} mode"
        )

        await stop_event.wait()
        self._logger.info("Stop signal received.")

        await self._server.shutdown()

        if remaining := self._spawner.remaining_tasks:
            self._logger.info(f"Waiting for {remaining} background tasks to complete.")
        await self._spawner.join()

    def _build_server_config(self) -> ServerConfig:
        server_config = self._config.server

        return ServerConfig(
            host=server_config.host,
            port=server_config.port,
            backlog=server_config.backlog,
            max_message_size=server_config.max_message_size,
            relay_mode=server_config.relay_mode,
            timeout_graceful_shutdown=server_config.timeout_graceful_shutdown,
        )

    @staticmethod
    def _create_event_loop() -> asyncio.AbstractEventLoop:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        return loop
