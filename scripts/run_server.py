#!/usr/bin/env python3
"""Start the Battle Card engine server.

Usage:
    python scripts/run_server.py --profile development
    python scripts/run_server.py --state data/battlecard_snapshot.json --check-config
"""

import argparse
import logging
import os
import sys
from pathlib import Path

import uvicorn

sys.path.insert(0, str(Path(__file__).parent.parent))

from battlecard.config.config_manager import ConfigManager


def parse_args():
    parser = argparse.ArgumentParser(description="Battle Card Engine")
    parser.add_argument("--port", type=int, default=8015, help="Server port (default: 8015)")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="Server host (default: 127.0.0.1)")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    parser.add_argument("--profile", type=str, default=None,
                        help="Config profile, e.g. manual or development (default: base config only)")
    parser.add_argument("--state", type=str, default=None,
                        help="Snapshot file to resume from and persist to")
    parser.add_argument("--log-level", type=str, default="info",
                        choices=["debug", "info", "warning", "error"])
    parser.add_argument("--check-config", action="store_true",
                        help="Validate the merged config and exit")
    return parser.parse_args()


def main():
    args = parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    # The app's lifespan reads these, including in --reload subprocesses
    if args.profile:
        os.environ["BATTLECARD_PROFILE"] = args.profile
    if args.state:
        os.environ["BATTLECARD__PERSISTENCE__SNAPSHOT_PATH"] = f'"{Path(args.state).resolve().as_posix()}"'

    config = ConfigManager()
    config.load(profile=args.profile)
    problems = config.validate()
    for problem in problems:
        logging.warning("Config: %s", problem)
    if args.check_config:
        print("Config OK" if not problems else f"{len(problems)} config problem(s)")
        sys.exit(1 if problems else 0)

    snapshot = config.get("persistence.snapshot_path") or "disabled"
    print(f"\n  Battle Card Engine")
    print(f"  Profile:   {args.profile or 'base'}")
    print(f"  Snapshot:  {snapshot}")
    print(f"  API:       http://{args.host}:{args.port}")
    print(f"  WebSocket: ws://{args.host}:{args.port}/ws")
    print(f"  Docs:      http://{args.host}:{args.port}/docs\n")

    uvicorn.run(
        "battlecard.server.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
