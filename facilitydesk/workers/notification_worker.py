from __future__ import annotations

import argparse
import os
import threading
import uuid

from flask import Flask

from facilitydesk.db import close_db, get_db
from facilitydesk.notifications import build_email_sender, process_notification_outbox


class NotificationWorker:
    """Daemon thread draining ``notification_outbox`` on a fixed interval."""

    def __init__(self, app: Flask, *, sender=None) -> None:
        self.app = app
        self.interval_seconds = _int_config(app, "NOTIFICATION_WORKER_INTERVAL_SECONDS", 15, 1, 3600)
        self.batch_size = _int_config(app, "NOTIFICATION_WORKER_BATCH_SIZE", 25, 1, 1000)
        self.max_attempts = _int_config(app, "NOTIFICATION_MAX_ATTEMPTS", 5, 1, 50)
        self.sender = sender or build_email_sender(app.config)

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run_loop, name="notification-worker", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:  # noqa: BLE001
                self.app.logger.exception("notification_worker_batch_failed")
            self._stop_event.wait(self.interval_seconds)

    def run_once(self) -> dict:
        with self.app.app_context():
            db = get_db()
            try:
                return process_notification_outbox(
                    db,
                    sender=self.sender,
                    limit=self.batch_size,
                    max_attempts=self.max_attempts,
                    worker_request_id=f"worker-{uuid.uuid4().hex[:12]}",
                )
            finally:
                close_db()


def start_notification_worker(app: Flask) -> NotificationWorker | None:
    if not _should_start_worker(app):
        return None
    worker = NotificationWorker(app)
    worker.start()
    app.extensions["notification_worker"] = worker
    app.logger.info(
        "notification_worker_started",
        extra={"interval_seconds": worker.interval_seconds, "batch_size": worker.batch_size},
    )
    return worker


def _should_start_worker(app: Flask) -> bool:
    if not app.config.get("NOTIFICATION_WORKER_ENABLED", False):
        return False
    if app.config.get("TESTING"):
        return False
    if app.debug:
        run_main = os.environ.get("WERKZEUG_RUN_MAIN")
        if run_main and run_main.lower() != "true":
            return False
    return True


def _int_config(app: Flask, key: str, default: int, min_value: int, max_value: int) -> int:
    try:
        value = int(app.config.get(key, default))
    except (TypeError, ValueError):
        value = default
    return max(min_value, min(value, max_value))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Notification outbox worker.")
    parser.add_argument("--once", action="store_true", help="Process a single batch and exit.")
    parser.add_argument("--limit", type=int, default=0, help="Maximum entries per batch.")
    parser.add_argument("--interval", type=int, default=0, help="Seconds between batches.")
    return parser


def main() -> int:
    from facilitydesk import create_app

    args = _build_parser().parse_args()
    os.environ.setdefault("NOTIFICATION_WORKER_ENABLED", "false")
    os.environ.setdefault("DB_AUTO_INIT", "false")
    app = create_app()

    worker = NotificationWorker(app)
    if args.limit:
        worker.batch_size = max(1, int(args.limit))
    if args.interval:
        worker.interval_seconds = max(1, int(args.interval))

    if args.once:
        worker.run_once()
        return 0
    worker._run_loop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
