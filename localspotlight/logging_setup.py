# Copyright (c) 2026 Mohammed Hassan. All rights reserved.
# Proprietary and confidential. Unauthorized copying, modification, distribution, or use is prohibited.

"""
JSON logging for the console and the scheduler process.

Every line carries the request id (when inside a request), the service name
and the environment. Field names that look like credentials are masked
before the line leaves the process.
"""
import logging
import sys
import contextvars
import threading
import queue
import json
from datetime import datetime, timezone

import requests
from pythonjsonlogger import jsonlogger

from .config import settings

request_id_var = contextvars.ContextVar("request_id", default=None)

SERVICE_NAME = "localspotlight-console"
REDACTED = "***REDACTED***"
SENSITIVE_KEY_PARTS = ("token", "secret", "password", "key", "authorization", "cookie")

SHIP_BATCH_SIZE = 50
SHIP_WAIT_SECONDS = 3.0
SHIP_QUEUE_SIZE = 10000


def _utc_stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def is_sensitive(field_name: str) -> bool:
    name = field_name.lower()
    return any(part in name for part in SENSITIVE_KEY_PARTS)


class RedactingJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = log_record.get("timestamp") or _utc_stamp()
        log_record["level"] = (log_record.get("level") or record.levelname).upper()
        log_record["service_name"] = SERVICE_NAME
        log_record["environment"] = "production" if settings.axiom_token else "local"

        request_id = request_id_var.get()
        if request_id:
            log_record["request_id"] = request_id

        masked = {k: REDACTED for k, v in log_record.items() if isinstance(v, str) and is_sensitive(k)}
        log_record.update(masked)


class AxiomHandler(logging.Handler):
    """Queues formatted lines and posts them to the Axiom ingest API in batches."""

    def __init__(self):
        super().__init__()
        self.pending = queue.Queue(maxsize=SHIP_QUEUE_SIZE)
        self.shipper = threading.Thread(target=self._run, name="axiom-shipper", daemon=True)
        self.shipper.start()

    @property
    def ingest_url(self) -> str:
        return f"{settings.axiom_url.rstrip('/')}/v1/datasets/{settings.axiom_dataset}/ingest"

    def _run(self):
        batch = []
        while True:
            try:
                batch.append(self.pending.get(timeout=SHIP_WAIT_SECONDS))
            except queue.Empty:
                pass

            if batch and (len(batch) >= SHIP_BATCH_SIZE or self.pending.empty()):
                self._post(batch)
                batch = []

    def _post(self, batch):
        headers = {"Authorization": f"Bearer {settings.axiom_token}", "Content-Type": "application/json"}
        if settings.axiom_org_id:
            headers["X-Axiom-Org-Id"] = settings.axiom_org_id

        try:
            requests.post(self.ingest_url, headers=headers, json=batch, timeout=5.0)
        except requests.RequestException:
            # Lines already went to stdout.
            pass

    def emit(self, record):
        try:
            self.pending.put_nowait(json.loads(self.format(record)))
        except Exception:
            self.handleError(record)


def setup_logging():
    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())
    root.handlers.clear()

    formatter = RedactingJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    handlers = [logging.StreamHandler(sys.stdout)]
    if settings.axiom_token and settings.axiom_dataset:
        handlers.append(AxiomHandler())

    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for noisy in ("uvicorn.access", "apscheduler"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


_LEVELS = {"debug": logging.DEBUG, "warning": logging.WARNING, "error": logging.ERROR}


def log_event(event: str, level: str = "info", **fields):
    """Log `event` with `fields` as structured extras. `None` values are left out."""
    extra = {k: v for k, v in fields.items() if v is not None}
    extra["event"] = event
    logging.getLogger(SERVICE_NAME).log(_LEVELS.get(level.lower(), logging.INFO), event, extra=extra)
