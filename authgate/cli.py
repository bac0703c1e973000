"""Developer commands exposed as project scripts.

Usage (from project root):
  authgate-runserver --host=0.0.0.0 --port=8000 --no-reload
  authgate-tests -k rate_limit
  authgate-migrate        # defaults to `alembic upgrade head`
  authgate-init-env       # copies .env.example -> .env if missing
  authgate-cleanup        # purge expired tokens, sessions and attempt logs

Each command can also be run as ``python -m authgate.cli <command> [args]``.
"""
from __future__ import annotations

import json
import sys
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Optional

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def _args() -> List[str]:
    return sys.argv[1:]


def _option(name: str) -> Optional[str]:
    prefix = f"--{name}="
    for arg in _args():
        if arg.startswith(prefix):
            return arg[len(prefix):]
    return None


def _run(cmd: List[str]) -> None:
    subprocess.run(cmd, check=True)


def runserver() -> None:
    """Serve ``authgate.main:app`` with uvicorn.

    ``--host=`` and ``--port=`` override 127.0.0.1:8000; ``--no-reload`` turns off auto-reload.
    """
    import uvicorn

    host = _option("host") or "127.0.0.1"
    port_value = _option("port") or "8000"
    if not port_value.isdigit():
        print(f"Invalid port {port_value!r}, using 8000")
        port_value = "8000"
    reload = "--no-reload" not in _args()

    print(f"Starting authgate on {host}:{port_value} (reload={reload})")
    uvicorn.run("authgate.main:app", host=host, port=int(port_value), reload=reload)


def run_tests() -> None:
    _run(["pytest", *_args()])


def run_migrations() -> None:
    """Forward arguments to alembic; with none, upgrade to head."""
    _run(["alembic", *(_args() or ["upgrade", "head"])])


def init_env() -> None:
    src = PROJECT_ROOT / ".env.example"
    dst = PROJECT_ROOT / ".env"
    if dst.exists():
        print(f"Keeping existing {dst}")
    elif not src.exists():
        print(f"No template found at {src}")
    else:
        shutil.copy(src, dst)
        print(f"Wrote {dst} from {src.name}")


def cleanup() -> None:
    """Run the maintenance sweep once and print what was removed."""
    from authgate.core.database import SessionLocal
    from authgate.core.logger import setup_logging
    from authgate.services.maintenance import run_cleanup

    setup_logging()
    db = SessionLocal()
    try:
        print(json.dumps(run_cleanup(db), indent=2))
    finally:
        db.close()


COMMANDS: Dict[str, Callable[[], None]] = {
    "runserver": runserver,
    "tests": run_tests,
    "migrate": run_migrations,
    "init-env": init_env,
    "cleanup": cleanup,
}


def main() -> None:
    if len(sys.argv) <= 1 or sys.argv[1] not in COMMANDS:
        print(__doc__)
        sys.exit(0 if len(sys.argv) <= 1 else 1)
    command = COMMANDS[sys.argv.pop(1)]
    command()


if __name__ == "__main__":
    main()
