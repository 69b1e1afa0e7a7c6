# config.py
# Description: Configuration settings for the snapvault server and sync client.
#
# Imports
import configparser
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
#
# 3rd-party Libraries
from loguru import logger
#
########################################################################################################################
#
# Functions:

# --- Constants ---
DEFAULT_S3_ACCESS_KEY = "minioadmin"
DEFAULT_S3_SECRET_KEY = "supersecretpassword"
DEFAULT_ALLOWED_ORIGINS = "http://localhost:5173,http://127.0.0.1:5173"
CLIENT_CONFIG_SECTION = "Client"


def _split_csv(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def load_settings() -> Dict[str, Any]:
    """Loads all server settings from environment variables or defaults into a dictionary."""

    # --- Metadata Store ---
    meta_db_path = Path(os.getenv("META_DB_PATH", "./snapvault_data/server/meta.sqlite"))

    # --- Object Storage ---
    # Presigned URLs must be signed against the host the client will actually call.
    s3_endpoint_public = os.getenv("S3_ENDPOINT_PUBLIC", "http://127.0.0.1:9100")
    s3_region = os.getenv("S3_REGION", "us-east-1")
    s3_access_key = os.getenv("S3_ACCESS_KEY", DEFAULT_S3_ACCESS_KEY)
    s3_secret_key = os.getenv("S3_SECRET_KEY", DEFAULT_S3_SECRET_KEY)
    s3_bucket = os.getenv("S3_BUCKET", "snapvault")
    s3_key_prefix = os.getenv("S3_KEY_PREFIX", "photos")
    signed_url_expires = int(os.getenv("SIGNED_URL_EXPIRES_SECONDS", "600"))

    # --- Namespaces ---
    default_device_namespace = os.getenv("DEFAULT_DEVICE_NAMESPACE", "default")

    # --- HTTP ---
    allowed_origins = _split_csv(os.getenv("ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS))

    # --- Logging ---
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    config_dict = {
        "META_DB_PATH": meta_db_path,
        "S3_ENDPOINT_PUBLIC": s3_endpoint_public,
        "S3_REGION": s3_region,
        "S3_ACCESS_KEY": s3_access_key,
        "S3_SECRET_KEY": s3_secret_key,
        "S3_BUCKET": s3_bucket,
        "S3_KEY_PREFIX": s3_key_prefix,
        "SIGNED_URL_EXPIRES_SECONDS": signed_url_expires,
        "DEFAULT_DEVICE_NAMESPACE": default_device_namespace,
        "ALLOWED_ORIGINS": allowed_origins,
        "LOG_LEVEL": log_level,
    }

    if (config_dict["S3_ACCESS_KEY"] == DEFAULT_S3_ACCESS_KEY
            or config_dict["S3_SECRET_KEY"] == DEFAULT_S3_SECRET_KEY):
        logger.warning("Using development S3 credentials. Set S3_ACCESS_KEY and S3_SECRET_KEY for deployments.")

    return config_dict


def load_client_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Loads sync client settings.

    Precedence: environment variables, then the [Client] section of the INI file at
    `config_path` (if given and readable), then built-in defaults.
    """
    file_values: Dict[str, str] = {}
    if config_path:
        parser = configparser.ConfigParser()
        try:
            read_ok = parser.read(str(config_path), encoding="utf-8")
        except configparser.Error as e:
            logger.error(f"Could not parse client config {config_path}: {e}")
            read_ok = []
        if read_ok and parser.has_section(CLIENT_CONFIG_SECTION):
            # configparser lowercases keys
            file_values = {k.upper(): v for k, v in parser.items(CLIENT_CONFIG_SECTION)}
        elif config_path:
            logger.warning(f"No [{CLIENT_CONFIG_SECTION}] section found in {config_path}; using defaults.")

    def _get(key: str, default: str) -> str:
        return os.getenv(key, file_values.get(key, default))

    return {
        "API_BASE": _get("API_BASE", "http://127.0.0.1:8787"),
        "LOCAL_DB_PATH": Path(_get("LOCAL_DB_PATH", "./snapvault_data/client/photos.sqlite")),
        "DEVICE_ID_CACHE_PATH": Path(_get("DEVICE_ID_CACHE_PATH", "./snapvault_data/client/device_id.json")),
        "HTTP_TIMEOUT_SECONDS": int(_get("HTTP_TIMEOUT_SECONDS", "30")),
    }


settings = load_settings()

#
# End of config.py
#######################################################################################################################
