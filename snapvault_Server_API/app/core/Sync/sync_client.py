# sync_client.py
# Description: Assembles the client side of sync (local photo DB, device identity, HTTP transport,
# SyncManager) from the client config, and runs a pass from the command line.
#
# Usage:
#   python -m snapvault_Server_API.app.core.Sync.sync_client --config client.ini
#
# Imports
import argparse
import json
import logging
from typing import Any, Dict, List, Optional
#
# Third-Party Imports
import requests
#
# Local Imports
from snapvault_Server_API.app.core.config import load_client_config
from snapvault_Server_API.app.core.DB_Management.Photos_DB import PhotosDatabase, PhotosDBError
from snapvault_Server_API.app.core.Sync.core import SyncManager
from snapvault_Server_API.app.core.Sync.device_identity import DeviceIdentity
from snapvault_Server_API.app.core.Sync.exceptions import SyncError
from snapvault_Server_API.app.core.Sync.transport import HttpApiTransport
#
#######################################################################################################################
#
# Functions:

logger = logging.getLogger("SnapvaultSyncClient")


def create_sync_manager(config: Optional[Dict[str, Any]] = None,
                        session: Optional[requests.Session] = None) -> SyncManager:
    """
    Builds a SyncManager wired to the local database, device id cache and API named in `config`.

    Args:
        config: Result of `load_client_config()`. Loaded from the environment when omitted.
        session: Optional requests session for the HTTP transport.

    The caller owns the database connection: close it with `manager.db.close_connection()`.
    """
    if config is None:
        config = load_client_config()
    db = PhotosDatabase(config["LOCAL_DB_PATH"])
    transport = HttpApiTransport(config["API_BASE"], timeout=config["HTTP_TIMEOUT_SECONDS"], session=session)
    identity = DeviceIdentity(db, cache_path=config["DEVICE_ID_CACHE_PATH"])
    logger.info(f"Sync client ready: db={config['LOCAL_DB_PATH']} api={config['API_BASE']}")
    return SyncManager(db, transport, identity)


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one snapvault sync pass.")
    parser.add_argument("--config", help="Client INI file with a [Client] section.")
    parser.add_argument("--force", action="store_true",
                        help="Run even when sync is disabled in the local settings.")
    parser.add_argument("--reason", default="cli", help="Label recorded in the logs for this pass.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO).")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Runs one pass and prints its result as JSON. Returns 0 when the pass was ok."""
    args = _parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(),
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    try:
        manager = create_sync_manager(load_client_config(args.config))
    except PhotosDBError as e:
        logger.error(f"Could not open the local photo database: {e}")
        return 1

    try:
        if args.force:
            result = manager.sync_now(args.reason)
        else:
            result = manager.sync_if_enabled(args.reason)
    except SyncError as e:
        logger.error(f"Sync pass failed: {e}")
        return 1
    finally:
        manager.db.close_connection()

    print(json.dumps(result.to_dict()))
    return 0 if result.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())

#
# End of sync_client.py
#######################################################################################################################
