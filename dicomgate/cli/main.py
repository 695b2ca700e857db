#!/usr/bin/env python3
"""dicomgate CLI - management utility for the gateway."""

import argparse
import asyncio
import sys
from pathlib import Path

from dicomgate.services.dicom.client import DicomClient
from dicomgate.services.dicom.models import DicomNode
from dicomgate.services.gateway.cache import CacheStore
from dicomgate.settings import settings
from dicomgate.utils.db_manager import DatabaseManager
from dicomgate.utils.logger import logger

SETTINGS_TEMPLATE = """# dicomgate Configuration File

# Server settings
port = 5000
host = "127.0.0.1"

# Storage settings
storage_path = "./data"
cache_db_path = "./cache.db"

# Retrieve with C-GET; when false, C-MOVE to our own store listener (source)
use_cget = false

# Minutes a retrieved study is kept; negative disables caching
keep_cache_minutes = 60
clear_cache_on_startup = false

# Patient name queries
qido_min_chars = 3
qido_append_wildcard = true

[source]
aet = "DICOMGATE"
host = "127.0.0.1"
port = 9999

[target]
aet = "PACS"
host = "127.0.0.1"
port = 104
"""


def init_project(path: str) -> None:
    """Create a settings file and the storage directory in ``path``."""
    project_path = Path(path).resolve()
    (project_path / "data").mkdir(parents=True, exist_ok=True)

    settings_file = project_path / "settings.toml"
    if settings_file.exists():
        logger.warning(f"Settings file already exists: {settings_file}")
    else:
        settings_file.write_text(SETTINGS_TEMPLATE)
        logger.info(f"Created settings file: {settings_file}")

    logger.info(f"Project initialized at {project_path}")


def run_server(host: str | None = None, port: int | None = None) -> None:
    """Run the gateway server."""
    import uvicorn

    host = host or settings.host
    port = port or settings.port

    logger.info(f"Starting dicomgate at http://{host}:{port}")

    uvicorn.run(
        "dicomgate.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=settings.debug,
        log_level="info" if settings.debug else "warning",
    )


async def echo() -> int:
    """C-ECHO the configured archive; returns a process exit code."""
    client = DicomClient(max_pdu=settings.max_pdu)
    try:
        status = await client.echo(
            DicomNode(**settings.source.model_dump()), DicomNode(**settings.target.model_dump())
        )
    except Exception as e:
        logger.error(f"C-ECHO failed: {e}")
        return 1
    logger.info(f"C-ECHO status: {status}")
    return 0 if status == 0 else 1


async def sweep() -> int:
    """Evict every expired study once."""
    store = CacheStore(DatabaseManager(settings.cache_database_url))
    await store.init()
    try:
        evicted = await store.sweep(settings.storage_root)
    finally:
        await store.close()
    logger.info(f"Evicted {evicted} studies")
    return 0


def main() -> None:
    """Entry point of the ``dicomgate`` command."""
    parser = argparse.ArgumentParser(description="dicomgate management utility")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    init_parser = subparsers.add_parser("init", help="Create a settings file and data directory")
    init_parser.add_argument(
        "path", nargs="?", default=".", help="Project directory (default: current directory)"
    )

    run_parser = subparsers.add_parser("run", help="Run the gateway server")
    run_parser.add_argument("--host", type=str, default=None, help="Host to bind")
    run_parser.add_argument("--port", type=int, default=None, help="Port to bind")

    subparsers.add_parser("echo", help="Send a C-ECHO to the archive")
    subparsers.add_parser("sweep", help="Evict expired studies from storage")

    args = parser.parse_args()

    if args.command == "init":
        init_project(args.path)
    elif args.command == "run":
        run_server(args.host, args.port)
    elif args.command == "echo":
        sys.exit(asyncio.run(echo()))
    elif args.command == "sweep":
        sys.exit(asyncio.run(sweep()))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
