import argparse
import atexit
import logging
import os
import signal
import socket
import subprocess
import sys
import time

import httpx
import tomli
import uvicorn
from dotenv import load_dotenv

from neptune.config import CONFIG_PATH_ENV, get_settings
from neptune.logging_config import setup_logging

# Audit worker subprocess, stopped on exit
worker_process = None


def wait_for_redis(host="localhost", port=6379, timeout=20):
    """
    Wait for Redis to become available.

    Returns:
        True if Redis accepts connections within the timeout, False otherwise
    """
    logging.info(f"Waiting for Redis to be available at {host}:{port}...")
    t0 = time.monotonic()
    while time.monotonic() - t0 < timeout:
        try:
            with socket.create_connection((host, port), timeout=1):
                logging.info("Redis is accepting connections.")
                return True
        except OSError:
            logging.debug(f"Redis not available yet, retrying... ({int(time.monotonic() - t0)}s elapsed)")
            time.sleep(0.3)

    logging.error(f"Redis not reachable after {timeout}s")
    return False


def start_audit_worker():
    """Start the ARQ audit worker as a subprocess logging to logs/worker.log."""
    global worker_process
    log_dir = os.path.join(os.getcwd(), "logs")
    os.makedirs(log_dir, exist_ok=True)
    worker_log_path = os.path.join(log_dir, "worker.log")

    worker_log = open(worker_log_path, "a")
    worker_log.write(f"\n\n--- Worker started at {time.strftime('%Y-%m-%d %H:%M:%S')} ---\n\n")
    worker_log.flush()

    worker_cmd = [sys.executable, "-m", "arq", "neptune.workers.audit_worker.WorkerSettings"]
    worker_process = subprocess.Popen(
        worker_cmd,
        stdout=worker_log,
        stderr=worker_log,
        env=dict(os.environ, PYTHONUNBUFFERED="1"),
    )
    logging.info(f"ARQ audit worker started with PID: {worker_process.pid}")
    logging.info(f"Worker logs available at: {worker_log_path}")


def cleanup_processes():
    """Stop the ARQ worker process on exit."""
    if worker_process and worker_process.poll() is None:
        logging.info(f"Stopping ARQ worker (PID: {worker_process.pid})...")
        worker_process.terminate()
        try:
            worker_process.wait(timeout=5)
            logging.info("ARQ worker stopped gracefully.")
        except subprocess.TimeoutExpired:
            logging.warning("ARQ worker did not terminate gracefully, sending SIGKILL.")
            worker_process.kill()


atexit.register(cleanup_processes)
signal.signal(signal.SIGINT, lambda sig, frame: sys.exit(0))
signal.signal(signal.SIGTERM, lambda sig, frame: sys.exit(0))


def ollama_base_url(config_path):
    """Return the api_base of the completion model when it is served by Ollama."""
    with open(config_path, "rb") as f:
        config = tomli.load(f)
    model_key = config.get("completion", {}).get("model")
    model_config = config.get("registered_models", {}).get(model_key, {})
    if "ollama" in model_config.get("model_name", ""):
        return model_config.get("api_base")
    return None


def check_ollama_running(base_url):
    try:
        response = httpx.get(f"{base_url}/api/tags", timeout=2)
        return response.status_code == 200
    except httpx.HTTPError:
        return False


def main():
    parser = argparse.ArgumentParser(description="Start the Neptune assistant server")
    parser.add_argument(
        "--log",
        choices=["debug", "info", "warning", "error"],
        default="info",
        help="Set the logging level",
    )
    parser.add_argument("--no-worker", action="store_true", help="Do not start the ARQ audit worker")
    parser.add_argument("--skip-ollama-check", action="store_true", help="Skip Ollama availability check")
    args = parser.parse_args()

    setup_logging(log_level=args.log.upper())
    load_dotenv()

    if not args.skip_ollama_check:
        base_url = ollama_base_url(os.environ.get(CONFIG_PATH_ENV, "neptune.toml"))
        if base_url and not check_ollama_running(base_url):
            print(f"ERROR: Ollama is not accessible at {base_url}")
            print("Run with --skip-ollama-check to bypass this check")
            sys.exit(1)

    # Load settings (this will validate all required env vars)
    settings = get_settings()

    if not wait_for_redis(host=settings.REDIS_HOST, port=settings.REDIS_PORT):
        logging.error("Cannot start server without Redis. Please ensure Redis is running.")
        sys.exit(1)

    if not args.no_worker:
        start_audit_worker()

    logging.info("Starting Uvicorn server...")
    uvicorn.run(
        "neptune.api:app",
        host=settings.HOST,
        port=settings.PORT,
        loop="asyncio",
        log_level=args.log,
        reload=settings.RELOAD,
    )


if __name__ == "__main__":
    main()
