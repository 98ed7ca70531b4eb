#!/usr/bin/env python
"""
Run a Celery worker with the beat scheduler embedded, for local development.
"""

import subprocess
import sys


def main() -> int:
    cmd = [
        sys.executable,
        "-m",
        "celery",
        "-A",
        "tenantgate.platform.celery_app",
        "worker",
        "--beat",
        "--loglevel=info",
        "--queues=default,low_priority",
    ]
    print(f"Starting Celery worker with command: {' '.join(cmd)}")
    return subprocess.call(cmd)


if __name__ == "__main__":
    sys.exit(main())
