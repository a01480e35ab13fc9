#!/usr/bin/env python3
"""Unified entry point for the reminder engine.

Starts the API server, the MCP server and the scheduler worker as separate
processes. The worker owns the scheduler and the dispatcher, so the API
process is started with its in-process scheduler disabled.

If any process dies the others are stopped too; a process supervisor
(systemd, docker restart policy) is expected to restart the whole set.
"""

import logging
import os
import signal
import subprocess
import sys
import time
from typing import Dict, List, Tuple

import httpx

from config import settings

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("launcher")

# (name, script, environment overrides), in start order
SERVICES: List[Tuple[str, str, Dict[str, str]]] = [
    ("API server", "api_server.py", {"SCHEDULER_ENABLED": "false"}),
    ("MCP server", "mcp_server.py", {"MCP_TRANSPORT": "sse"}),
    ("scheduler worker", "background_worker.py", {}),
]

API_READY_TIMEOUT = 15

running: Dict[str, subprocess.Popen] = {}
shutdown_requested = False


def signal_handler(signum, frame):
    """First signal stops the services; a second one exits immediately."""
    global shutdown_requested
    if shutdown_requested:
        logger.warning("Force shutdown requested")
        sys.exit(1)
    shutdown_requested = True
    logger.info(f"Received signal {signum}, stopping services...")
    stop_services(0)


def stop_services(exit_code: int):
    for name, process in running.items():
        if process.poll() is None:
            logger.info(f"Terminating {name} (PID: {process.pid})")
            process.terminate()

    for name, process in running.items():
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            logger.warning(f"{name} did not exit in time, killing PID {process.pid}")
            process.kill()
            process.wait()

    logger.info("All services stopped")
    sys.exit(exit_code)


def start_service(name: str, script: str, cwd: str, env_overrides: Dict[str, str]) -> subprocess.Popen:
    """Launch one component with the current interpreter. Output goes to our console."""
    env = os.environ.copy()
    env.update(env_overrides)
    process = subprocess.Popen([sys.executable, script], cwd=cwd, env=env)
    running[name] = process
    logger.info(f"Started {name} (PID: {process.pid})")
    return process


def wait_for_api(timeout: float = API_READY_TIMEOUT) -> bool:
    """Poll /health until the API answers or the timeout passes."""
    host = "127.0.0.1" if settings.API_HOST == "0.0.0.0" else settings.API_HOST
    url = f"http://{host}:{settings.API_PORT}/health"
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            if httpx.get(url, timeout=2.0).status_code == 200:
                return True
        except httpx.HTTPError:
            pass
        time.sleep(0.5)
    return False


def main():
    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    logger.info("=" * 60)
    logger.info("Recurring Reminder Engine - Unified Startup")
    logger.info("=" * 60)

    current_dir = os.path.dirname(os.path.abspath(__file__))

    try:
        for name, script, env_overrides in SERVICES:
            start_service(name, script, current_dir, env_overrides)
            if script == "api_server.py" and not wait_for_api():
                logger.error(f"API server did not become healthy within {API_READY_TIMEOUT}s")
                stop_services(1)
    except OSError as e:
        logger.error(f"Error starting services: {e}")
        stop_services(1)

    logger.info(f"API:       http://{settings.API_HOST}:{settings.API_PORT} (docs at /docs)")
    logger.info(f"MCP (SSE): http://{settings.MCP_HOST}:{settings.MCP_PORT}/sse")
    logger.info(f"Scheduler: every {settings.SCHEDULER_INTERVAL}s, notifying {settings.NOTIFICATION_API_URL}")

    while not shutdown_requested:
        for name, process in running.items():
            if process.poll() is not None:
                logger.error(f"{name} (PID: {process.pid}) exited with code {process.returncode}")
                stop_services(1)
        time.sleep(5)


if __name__ == "__main__":
    main()
