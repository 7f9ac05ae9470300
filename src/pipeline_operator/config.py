"""Controller settings loaded from environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

ENV_PREFIX = "PIPELINE_OPERATOR_"


@dataclass(frozen=True)
class ControllerSettings:
    workers: int = 1
    worker_loop_period: float = 1.0
    retry_base_delay: float = 0.005
    retry_max_delay: float = 1000.0
    qps: float = 10.0
    burst: int = 100
    metrics_port: int = 8080
    log_level: str = "INFO"
    devops_endpoint: str = "http://devops-apiserver.kubesphere-devops-system.svc"
    devops_timeout: float = 30.0


def env_int(
    name: str,
    default: int,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int:
    raw = os.getenv(name)
    if raw is None:
        value = default
    else:
        try:
            value = int(raw)
        except ValueError as exc:
            raise ValueError(f"{name} must be an integer") from exc

    if minimum is not None and value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {value}")
    if maximum is not None and value > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {value}")
    return value


def env_float(name: str, default: float, *, minimum: float | None = None) -> float:
    raw = os.getenv(name)
    if raw is None:
        value = default
    else:
        try:
            value = float(raw)
        except ValueError as exc:
            raise ValueError(f"{name} must be a number") from exc

    if minimum is not None and value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {value}")
    return value


def load_settings() -> ControllerSettings:
    """Build :class:`ControllerSettings` from the environment.

    Environment variables (with defaults):
        ``PIPELINE_OPERATOR_WORKERS`` number of sync workers (``1``).
        ``PIPELINE_OPERATOR_WORKER_LOOP_PERIOD`` seconds before a stopped worker restarts (``1``).
        ``PIPELINE_OPERATOR_RETRY_BASE_DELAY`` first retry delay in seconds (``0.005``).
        ``PIPELINE_OPERATOR_RETRY_MAX_DELAY`` retry delay cap in seconds (``1000``).
        ``PIPELINE_OPERATOR_QPS`` / ``PIPELINE_OPERATOR_BURST`` overall retry token bucket.
        ``PIPELINE_OPERATOR_METRICS_PORT`` Prometheus port (``8080``).
        ``PIPELINE_OPERATOR_LOG_LEVEL`` root log level (``INFO``).
        ``DEVOPS_ENDPOINT`` / ``DEVOPS_TIMEOUT`` DevOps service base URL and request timeout.
    """
    base_delay = env_float(f"{ENV_PREFIX}RETRY_BASE_DELAY", 0.005, minimum=0.0)
    max_delay = env_float(f"{ENV_PREFIX}RETRY_MAX_DELAY", 1000.0, minimum=0.0)
    if max_delay < base_delay:
        raise ValueError(
            f"{ENV_PREFIX}RETRY_MAX_DELAY must be >= {ENV_PREFIX}RETRY_BASE_DELAY, "
            f"got: {max_delay} < {base_delay}"
        )

    log_level = os.getenv(f"{ENV_PREFIX}LOG_LEVEL", "INFO").strip().upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ValueError(f"{ENV_PREFIX}LOG_LEVEL must be a logging level, got: {log_level!r}")

    endpoint = os.getenv("DEVOPS_ENDPOINT", ControllerSettings.devops_endpoint).strip()
    if not endpoint:
        raise ValueError("DEVOPS_ENDPOINT must be a non-empty string")

    return ControllerSettings(
        workers=env_int(f"{ENV_PREFIX}WORKERS", 1, minimum=1),
        worker_loop_period=env_float(f"{ENV_PREFIX}WORKER_LOOP_PERIOD", 1.0, minimum=0.0),
        retry_base_delay=base_delay,
        retry_max_delay=max_delay,
        qps=env_float(f"{ENV_PREFIX}QPS", 10.0, minimum=0.0),
        burst=env_int(f"{ENV_PREFIX}BURST", 100, minimum=1),
        metrics_port=env_int(f"{ENV_PREFIX}METRICS_PORT", 8080, minimum=1, maximum=65535),
        log_level=log_level,
        devops_endpoint=endpoint.rstrip("/"),
        devops_timeout=env_float("DEVOPS_TIMEOUT", 30.0, minimum=0.0),
    )
