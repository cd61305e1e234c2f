from __future__ import annotations

import logging
import time
from typing import Callable

from compliance_portal.config import settings


logger = logging.getLogger('compliance_portal.metrics')


def _timed(
    *,
    label: str,
    threshold_ms: int | None = None,
    log_label: str = 'timed',
) -> Callable[[Callable[..., object]], Callable[..., object]]:
    def decorator(func: Callable[..., object]) -> Callable[..., object]:
        threshold_value = threshold_ms if threshold_ms is not None else settings.metrics_slow_ms

        def wrapper(*args: object, **kwargs: object):
            started = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                duration_ms = (time.perf_counter() - started) * 1000.0
                if duration_ms >= threshold_value:
                    logger.info(
                        'service_timer label=%s duration_ms=%.2f event=%s',
                        label,
                        duration_ms,
                        log_label,
                    )

        wrapper.__name__ = getattr(func, '__name__', label)
        wrapper.__doc__ = func.__doc__
        return wrapper  # type: ignore[return-value]

    return decorator


def timed_service(label: str, *, threshold_ms: int | None = None) -> Callable[[Callable[..., object]], Callable[..., object]]:
    return _timed(label=label, threshold_ms=threshold_ms, log_label='service')


def timed_snapshot(label: str, *, threshold_ms: int | None = None) -> Callable[[Callable[..., object]], Callable[..., object]]:
    return _timed(label=label, threshold_ms=threshold_ms, log_label='snapshot')


def run_timed_job(label: str, fn: Callable[[], object]) -> object:
    start = time.perf_counter()
    logger.info('job_start name=%s', label)
    status = 'ok'
    try:
        return fn()
    except Exception:
        status = 'failed'
        duration_ms = (time.perf_counter() - start) * 1000.0
        logger.exception('job_failed name=%s duration_ms=%.2f', label, duration_ms)
        raise
    finally:
        duration_ms = (time.perf_counter() - start) * 1000.0
        logger.info('job_end name=%s status=%s duration_ms=%.2f', label, status, duration_ms)
