from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict, PydanticBaseSettingsSource, YamlConfigSettingsSource

from chatrelay.bootstrap.config.loader import get_configfile
from chatrelay.core.models.config import RelayMode


class ServerSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    host: Annotated[
        str,
        Field(
            description="Bind address of the relay. 0.0.0.0 listens on all interfaces.",
            default="0.0.0.0"
        )
    ]

    port: Annotated[
        int,
        Field(
            description="TCP port chat clients connect to.",
            default=8800,
            ge=0,
            le=65535
        )
    ]

    backlog: Annotated[
        int,
        Field(
            description="Maximum number of pending TCP connections.",
            default=100,
            gt=0
        )
    ]

    max_message_size: Annotated[
        int,
        Field(
            description=(
                "Maximum size in bytes of a single message.\n"
                "A client announcing a larger frame is disconnected."
            ),
            default=1 * 1024 * 1024,
            gt=0
        )
    ]

    relay_mode: Annotated[
        RelayMode,
        Field(
            description=(
                "How a received message is relayed:\n"
                "  forward   → to every other connected client\n"
                "  broadcast → to every connected client, the sender included"
            ),
            default=RelayMode.FORWARD
        )
    ]

    timeout_graceful_shutdown: Annotated[
        float,
        Field(
            description="Maximum time allowed for receive loops to end on shutdown.",
            default=5.0,
            ge=0
        )
    ]


class RelaySettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CHATRELAY_",
        env_nested_delimiter="__",
        extra="forbid"
    )

    server: Annotated[
        ServerSettings,
        Field(
            description=(
                "Relay server configuration.\n"
                "Controls where the relay listens, the size limit of messages,\n"
                "the relay policy and the graceful shutdown behavior."
            ),
            default_factory=ServerSettings
        )
    ]

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=get_configfile()),
        )
