"""Configuration for mongodb-modeler.

Settings come from environment variables (optionally from a ``.env`` file);
``ConnectionSettings`` turns the host/credential fields the modeling tool
collects into a MongoDB URI and client options.
"""

import os
from functools import lru_cache
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote, urlencode

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .logging_config import get_logger

logger = get_logger(__name__)

ENV_PREFIX = "MONGO_MODELER_"


class Settings(BaseModel):
    """Runtime settings shared by the reverse and forward engineering paths."""
    mongo_uri: Optional[str] = None
    max_cap: int = 10000
    max_time_ms: int = 120000
    max_workers: int = 4
    samples_per_property: int = 20
    server_selection_timeout_ms: int = 5000


def _env_name(field: str) -> str:
    # mongo_uri is exposed as MONGO_MODELER_URI
    return ENV_PREFIX + ("URI" if field == "mongo_uri" else field.upper())


def _env_values() -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for name in Settings.model_fields:
        raw = os.getenv(_env_name(name))
        if raw is not None and raw != "":
            values[name] = raw
    return values


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get settings with environment override support. Loaded lazily, once."""
    load_dotenv(override=False)
    settings = Settings(**_env_values())
    logger.debug(f"Loaded settings: max_cap={settings.max_cap}, max_time_ms={settings.max_time_ms}, max_workers={settings.max_workers}")
    return settings


def clear_settings_cache() -> None:
    """Clear settings cache to force reload from current environment."""
    get_settings.cache_clear()


UNVALIDATED_SSL = "UNVALIDATED_SSL"
TRUST_CUSTOM_CA = "TRUST_CUSTOM_CA_SIGNED_CERTIFICATES"


class ConnectionSettings(BaseModel):
    """Connection fields as collected by the modeling tool."""
    uri: Optional[str] = Field(None, description="Full connection string; overrides every other field.")
    host: str = "localhost"
    port: int = 27017
    username: Optional[str] = None
    password: Optional[str] = None
    ssl_type: Optional[str] = Field(None, description="UNVALIDATED_SSL, TRUST_CUSTOM_CA_SIGNED_CERTIFICATES or unset.")
    cert_authority: Optional[str] = Field(None, description="CA file for TRUST_CUSTOM_CA_SIGNED_CERTIFICATES.")
    over_ssh: bool = Field(False, description="Connection goes through an already opened SSH tunnel.")

    def connection_params(self) -> Tuple[str, Dict[str, Any]]:
        """Returns the URI and the MongoClient keyword options."""
        if self.uri:
            return self.uri, {}

        credentials = ""
        if self.username:
            credentials = f"{quote(self.username, safe='')}:{quote(self.password or '', safe='')}@"
        params: Dict[str, str] = {"retryWrites": "false"}
        options: Dict[str, Any] = {}

        is_trust_custom = self.ssl_type == TRUST_CUSTOM_CA
        if (is_trust_custom and self.over_ssh) or self.ssl_type == UNVALIDATED_SSL:
            options.update(tls=True, tlsAllowInvalidHostnames=True, tlsAllowInvalidCertificates=True)
        else:
            params.update(replicaSet="rs0", readPreference="secondaryPreferred")
            if is_trust_custom:
                params["tls"] = "true"
                if self.cert_authority:
                    options["tlsCAFile"] = self.cert_authority

        return f"mongodb://{credentials}{self.host}:{self.port}/?{urlencode(params)}", options
