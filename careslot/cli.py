"""Small CLI helpers wired to console scripts for developer convenience.

Usage (from project root):
  careslot-runserver --host=0.0.0.0 --port=8000 --no-reload
  careslot-worker                 # celery worker with the beat scheduler
  careslot-migrate                # defaults to `alembic upgrade head`
  careslot-token 42               # prints a bearer token for user 42
  careslot-init-env               # copies .env.example -> .env if missing
"""
from __future__ import annotations

import sys
import shutil
import subprocess
from pathlib import Path
from typing import List


def _args() -> List[str]:
    return sys.argv[1:]


def runserver() -> None:
    """Run Uvicorn programmatically. Accepts --host=, --port=, --reload / --no-reload."""
    import uvicorn

    host = "127.0.0.1"
    port = 8000
    reload = True

    for a in _args():
        if a.startswith("--host="):
            host = a.split("=", 1)[1]
        elif a.startswith("--port="):
            port = int(a.split("=", 1)[1])
        elif a == "--no-reload":
            reload = False
        elif a == "--reload":
            reload = True

    print(f"Starting uvicorn on {host}:{port} (reload={reload})")
    uvicorn.run("careslot.main:app", host=host, port=port, reload=reload)


def run_worker() -> None:
    """Celery worker plus the embedded beat scheduler (room provisioning retries)."""
    cmd = ["celery", "-A", "careslot.worker.celery_app", "worker", "--beat", "--loglevel=info"] + _args()
    subprocess.run(cmd, check=True)


def run_migrations() -> None:
    """Run alembic. If no args provided, runs `alembic upgrade head`."""
    args = _args() or ["upgrade", "head"]
    subprocess.run(["alembic"] + args, check=True)


def issue_token() -> None:
    """Print a bearer token for a user id; the role is looked up per request."""
    from careslot.core.security import create_access_token

    args = _args()
    if not args:
        print("usage: careslot-token <user_id>")
        sys.exit(2)
    print(create_access_token(int(args[0])))


def init_env() -> None:
    """Copy `.env.example` to `.env` if `.env` is missing."""
    root = Path(__file__).resolve().parents[1]
    src = root / ".env.example"
    dst = root / ".env"
    if dst.exists():
        print(f".env already exists at {dst}")
        return
    if not src.exists():
        print(f".env.example not found at {src}")
        return
    shutil.copy(src, dst)
    print(f"Created .env from .env.example at {dst}")


COMMANDS = {
    "runserver": runserver,
    "worker": run_worker,
    "migrate": run_migrations,
    "token": issue_token,
    "init-env": init_env,
}


if __name__ == "__main__":
    # Allow running the helpers directly: python -m careslot.cli runserver
    if len(sys.argv) <= 1 or sys.argv[1] not in COMMANDS:
        print(__doc__)
        sys.exit(0 if len(sys.argv) <= 1 else 2)
    command = COMMANDS[sys.argv.pop(1)]
    command()
