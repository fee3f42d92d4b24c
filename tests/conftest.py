import os
from typing import Generator

import pytest
import yaml

from chatrelay.core.models.config import ServerConfig
from tests.helpers import FakeRelaySettings


@pytest.fixture
def server_config():
    return ServerConfig(
        host="127.0.0.1",
        port=0,
        backlog=10,
        max_message_size=1024,
        timeout_graceful_shutdown=1.0,
    )


@pytest.fixture
def config_file(tmp_path):
    file = tmp_path / "chatrelay.yaml"

    data = {
        "server": {
            "host": "127.0.0.1",
            "port": 0,
            "backlog": 10,
            "max_message_size": 1024,
            "relay_mode": "forward",
            "timeout_graceful_shutdown": 1,
        }
    }

    file.write_text(yaml.dump(data))
    return file


@pytest.fixture
def relay_settings(config_file) -> Generator[FakeRelaySettings, None, None]:
    backup = os.environ.copy()

    try:
        os.environ["TEST_CHATRELAY_CONFIG"] = str(config_file)
        yield FakeRelaySettings()
    finally:
        os.environ.clear()
        os.environ.update(backup)
