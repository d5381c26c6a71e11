"""
Pooled Storage Service Launcher

Starts the pooled storage manager API from the poolmgr/ package.

This service provides:
- Cloud account registration (rclone remotes) and quota tracking
- Storage pools composed into rclone union remotes
- Pool mount/unmount lifecycle
- Capacity statistics per account, per pool and overall

Usage:
    python scripts/run_pool_service.py --host 0.0.0.0 --port 8080

Environment Variables:
    POOLMGR_API_PORT: API port (default: 8080)
    POOLMGR_BIND_HOST: Bind address (default: 0.0.0.0)
    POOLMGR_LOG_LEVEL: Log level (default: INFO)
    POOLMGR_DATABASE_URL: SQLAlchemy database URL
    MOUNT_PATH: Root directory for pool mount points
    RCLONE_CONFIG_PATH: rclone configuration file
"""
import argparse
import os

import uvicorn

from poolmgr.config import Settings
from poolmgr.logging_config import setup_logging


def main() -> None:
    settings = Settings.from_env()

    parser = argparse.ArgumentParser(description="Run pooled storage manager service")
    parser.add_argument("--host", default=settings.bind_host)
    parser.add_argument("--port", type=int, default=settings.api_port)
    parser.add_argument("--log-level", default=settings.log_level)
    parser.add_argument("--log-file", default=settings.log_file)
    args = parser.parse_args()

    setup_logging("POOLMGR", level=args.log_level, log_file=args.log_file)

    print("=" * 60)
    print("Pooled Storage Manager")
    print("=" * 60)
    print(f"API Address: {args.host}:{args.port}")
    print(f"Database: {settings.database_url}")
    print(f"Mount root: {settings.mount_root}")
    print(f"rclone config: {settings.rclone_config_path}")
    print("=" * 60)

    # The app re-reads settings on import
    os.environ["POOLMGR_API_PORT"] = str(args.port)
    os.environ["POOLMGR_BIND_HOST"] = args.host

    uvicorn.run("poolmgr.service:app", host=args.host, port=args.port, reload=False, log_config=None)


if __name__ == "__main__":
    main()
