"""Container entrypoint for the audit service.

Usage:
    python scripts/start.py api      # migrations, then uvicorn
    python scripts/start.py worker   # rq worker for the audit queue
"""

import os
import subprocess
import sys


def run_migrations() -> bool:
    """Apply pending alembic revisions."""
    print("Running database migrations...")
    try:
        result = subprocess.run(
            ["alembic", "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
        )
    except subprocess.CalledProcessError as e:
        print(f"Migration failed: {e.stderr}")
        return False
    print(result.stdout)
    return True


def start_api() -> None:
    """Replace this process with uvicorn serving the API."""
    port = os.getenv("PORT", "8000")
    host = os.getenv("API_HOST", "0.0.0.0")
    workers = os.getenv("API_WORKERS", "1")

    print(f"Starting audit API on {host}:{port} with {workers} worker(s)...")
    os.execvp(
        "uvicorn",
        [
            "uvicorn",
            "api.main:app",
            "--host",
            host,
            "--port",
            port,
            "--workers",
            workers,
            "--proxy-headers",
            "--forwarded-allow-ips",
            "*",
        ],
    )


def start_worker() -> None:
    from worker.main import run_worker

    run_worker()


def main() -> None:
    role = sys.argv[1] if len(sys.argv) > 1 else os.getenv("PROCESS_TYPE", "api")

    if role == "worker":
        start_worker()
        return
    if role != "api":
        sys.exit(f"Unknown process type: {role}")

    if os.getenv("RUN_MIGRATIONS", "true").lower() == "true" and not run_migrations():
        sys.exit(1)
    start_api()


if __name__ == "__main__":
    main()
