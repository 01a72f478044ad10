#!/usr/bin/env python3
"""
Launch script for the Flotilla Timeline backend.

Usage:
    python scripts/run_dashboard.py              # Production
    python scripts/run_dashboard.py --dev         # Development (hot reload)
    python scripts/run_dashboard.py --port 8080   # Custom port
"""

import argparse
import os
import subprocess
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Ensure project root is on PYTHONPATH
sys.path.insert(0, str(PROJECT_ROOT))
os.chdir(PROJECT_ROOT)


def main():
    from src.utils.config_loader import APIConfig, Config

    api_config = Config(Path(os.environ.get("CONFIG_DIR", "config"))).load_config("api.yaml", APIConfig)

    parser = argparse.ArgumentParser(description="Flotilla Timeline backend")
    parser.add_argument("--dev", action="store_true", help="Run in dev mode with hot reload")
    parser.add_argument("--host", default=api_config.host, help=f"Host to bind (default: {api_config.host})")
    parser.add_argument("--port", type=int, default=api_config.port, help=f"Port (default: {api_config.port})")
    args = parser.parse_args()

    if args.dev or api_config.reload:
        print("Starting in DEVELOPMENT mode...")
        print(f"  Backend:  http://{args.host}:{args.port}")
        print()

        env = os.environ.copy()
        env["PYTHONPATH"] = str(PROJECT_ROOT)
        subprocess.run(
            [
                sys.executable, "-m", "uvicorn",
                "src.api.main:app",
                "--host", args.host,
                "--port", str(args.port),
                "--reload",
                "--reload-dir", "src",
            ],
            cwd=str(PROJECT_ROOT),
            env=env,
        )
    else:
        print("Starting Flotilla Timeline backend...")
        print(f"  URL: http://{args.host}:{args.port}")
        print()

        import uvicorn
        uvicorn.run(
            "src.api.main:app",
            host=args.host,
            port=args.port,
            log_level="info",
        )


if __name__ == "__main__":
    main()
