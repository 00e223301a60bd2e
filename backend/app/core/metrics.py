from collections import Counter
from threading import Lock
from typing import Dict, Counter as CounterType

_metrics: CounterType[str] = Counter()
_lock = Lock()


def _inc(key: str, amount: int = 1) -> None:
    with _lock:
        _metrics[key] += amount


def record_coupons_created(count: int) -> None:
    _inc("coupons_created", count)


def record_insufficient_credits() -> None:
    _inc("insufficient_credits")


def record_refund() -> None:
    _inc("credit_refunds")


def record_scan(scan_status: str) -> None:
    _inc(f"scans_{scan_status.lower()}")


def snapshot() -> Dict[str, int]:
    with _lock:
        return dict(_metrics)


def reset() -> None:
    with _lock:
        _metrics.clear()
