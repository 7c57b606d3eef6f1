"""HTTP audit logging middleware shared by services."""
from __future__ import annotations

import logging
from pathlib import Path
from time import perf_counter

from fastapi import FastAPI, Request

from .config import get_settings
from .rate_limit import request_caller


def _build_logger(service_name: str) -> logging.Logger:
    logger = logging.getLogger(f"audit.{service_name}")
    if logger.handlers:
        return logger

    log_dir = Path(get_settings().log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    logger.setLevel(logging.INFO)
    handler = logging.FileHandler(log_dir / f"{service_name}.log")
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    # Engine modules log under the package name; send them to the same file.
    engine_logger = logging.getLogger("conference_hub")
    if not engine_logger.handlers:
        engine_logger.setLevel(logging.INFO)
        engine_logger.addHandler(handler)
    return logger


def add_audit_middleware(app: FastAPI, service_name: str) -> None:
    """Log one line per request; client errors and failures are logged as warnings."""
    logger = _build_logger(service_name)

    @app.middleware("http")
    async def audit_logger(request: Request, call_next):  # type: ignore[override]
        start = perf_counter()
        response = await call_next(request)
        duration_ms = (perf_counter() - start) * 1000
        target = request.url.path
        if request.url.query:
            target = f"{target}?{request.url.query}"
        logger.log(
            logging.WARNING if response.status_code >= 400 else logging.INFO,
            "%s %s | status=%s | caller=%s | duration=%.2fms",
            request.method,
            target,
            response.status_code,
            request_caller(request),
            duration_ms,
        )
        return response
