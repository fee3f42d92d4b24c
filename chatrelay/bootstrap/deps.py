import json
from functools import lru_cache

from pydantic import ValidationError

from chatrelay.bootstrap.config.settings import RelaySettings
from chatrelay.core.controlplane import ControlPlane


@lru_cache
def get_cp() -> ControlPlane:
    return ControlPlane(config=get_config())


@lru_cache
def get_config() -> RelaySettings:
    try:
        return RelaySettings()
    except FileNotFoundError as ex:
        raise SystemExit(f"Provide a correct configuration file path: {ex}")
    except ValidationError as ex:
        raise SystemExit(format_validation_error(ex))


def format_validation_error(ex: ValidationError) -> str:
    msg = ["Configuration validation failed:"]
    errs = json.loads(ex.json())
    for err in errs:
        msg.append(f"  {'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}")
    return "\n".join(msg)
