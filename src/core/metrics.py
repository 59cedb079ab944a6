"""In-process metrics collector with Prometheus text exposition."""

from __future__ import annotations

from collections import defaultdict
from threading import Lock
import time
from typing import Dict, Tuple


_lock = Lock()
_started_at = time.time()

_http_requests_total: Dict[Tuple[str, str, str], int] = defaultdict(int)
_http_request_duration_sum: Dict[Tuple[str, str], float] = defaultdict(float)
_http_request_duration_count: Dict[Tuple[str, str], int] = defaultdict(int)
_generations_total: Dict[Tuple[str, str], int] = defaultdict(int)
_generation_duration_sum: Dict[str, float] = defaultdict(float)
_poll_ticks_total: Dict[Tuple[str, str], int] = defaultdict(int)
_relay_requests_total: Dict[Tuple[str, str], int] = defaultdict(int)
_storage_errors_total: Dict[str, int] = defaultdict(int)


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _normalize_label(value: str, *, fallback: str = "unknown") -> str:
    normalized = (value or "").strip()
    return normalized or fallback


def record_http_request(*, method: str, path: str, status_code: int, duration_seconds: float) -> None:
    status = str(status_code)
    method_label = method.upper()
    path_label = path or "unknown"
    duration = max(duration_seconds, 0.0)

    with _lock:
        _http_requests_total[(method_label, path_label, status)] += 1
        _http_request_duration_sum[(method_label, path_label)] += duration
        _http_request_duration_count[(method_label, path_label)] += 1


def record_generation(*, provider: str, outcome: str, duration_seconds: float = 0.0) -> None:
    with _lock:
        _generations_total[(_normalize_label(provider), _normalize_label(outcome))] += 1
        _generation_duration_sum[_normalize_label(provider)] += max(duration_seconds, 0.0)


def record_poll_tick(*, provider: str, outcome: str) -> None:
    with _lock:
        _poll_ticks_total[(_normalize_label(provider), _normalize_label(outcome))] += 1


def record_relay_request(*, target_host: str, status: str) -> None:
    with _lock:
        _relay_requests_total[(_normalize_label(target_host), _normalize_label(status))] += 1


def record_storage_error(*, operation: str) -> None:
    with _lock:
        _storage_errors_total[_normalize_label(operation)] += 1


def generation_count(*, provider: str, outcome: str) -> int:
    with _lock:
        return _generations_total.get((provider, outcome), 0)


def render_prometheus_metrics(*, app_name: str, app_version: str, env: str) -> str:
    uptime = max(time.time() - _started_at, 0.0)

    with _lock:
        http_total = dict(_http_requests_total)
        duration_sum = dict(_http_request_duration_sum)
        duration_count = dict(_http_request_duration_count)
        generations_total = dict(_generations_total)
        generation_duration_sum = dict(_generation_duration_sum)
        poll_ticks_total = dict(_poll_ticks_total)
        relay_requests_total = dict(_relay_requests_total)
        storage_errors_total = dict(_storage_errors_total)

    lines = [
        "# HELP nano_build_info Build metadata.",
        "# TYPE nano_build_info gauge",
        (
            f'nano_build_info{{app_name="{_escape_label(app_name)}",'
            f'version="{_escape_label(app_version)}",env="{_escape_label(env)}"}} 1'
        ),
        "# HELP nano_process_uptime_seconds Process uptime in seconds.",
        "# TYPE nano_process_uptime_seconds gauge",
        f"nano_process_uptime_seconds {uptime:.6f}",
        "# HELP nano_http_requests_total Total HTTP requests.",
        "# TYPE nano_http_requests_total counter",
    ]

    for (method, path, status), value in sorted(http_total.items()):
        lines.append(
            (
                f'nano_http_requests_total{{method="{_escape_label(method)}",'
                f'path="{_escape_label(path)}",status="{_escape_label(status)}"}} {value}'
            )
        )

    lines.extend(
        [
            "# HELP nano_http_request_duration_seconds Request duration summary.",
            "# TYPE nano_http_request_duration_seconds summary",
        ]
    )
    for (method, path), value in sorted(duration_sum.items()):
        lines.append(
            (
                f'nano_http_request_duration_seconds_sum{{method="{_escape_label(method)}",'
                f'path="{_escape_label(path)}"}} {value:.6f}'
            )
        )
    for (method, path), value in sorted(duration_count.items()):
        lines.append(
            (
                f'nano_http_request_duration_seconds_count{{method="{_escape_label(method)}",'
                f'path="{_escape_label(path)}"}} {value}'
            )
        )

    lines.extend(
        [
            "# HELP nano_generations_total Generation outcomes per provider.",
            "# TYPE nano_generations_total counter",
        ]
    )
    for (provider, outcome), value in sorted(generations_total.items()):
        lines.append(
            (
                f'nano_generations_total{{provider="{_escape_label(provider)}",'
                f'outcome="{_escape_label(outcome)}"}} {value}'
            )
        )

    lines.extend(
        [
            "# HELP nano_generation_duration_seconds_sum Total time spent generating.",
            "# TYPE nano_generation_duration_seconds_sum counter",
        ]
    )
    for provider, value in sorted(generation_duration_sum.items()):
        lines.append(f'nano_generation_duration_seconds_sum{{provider="{_escape_label(provider)}"}} {value:.6f}')

    lines.extend(
        [
            "# HELP nano_poll_ticks_total Job poll ticks by outcome.",
            "# TYPE nano_poll_ticks_total counter",
        ]
    )
    for (provider, outcome), value in sorted(poll_ticks_total.items()):
        lines.append(
            (
                f'nano_poll_ticks_total{{provider="{_escape_label(provider)}",'
                f'outcome="{_escape_label(outcome)}"}} {value}'
            )
        )

    lines.extend(
        [
            "# HELP nano_relay_requests_total Relayed requests by target host.",
            "# TYPE nano_relay_requests_total counter",
        ]
    )
    for (target_host, status), value in sorted(relay_requests_total.items()):
        lines.append(
            (
                f'nano_relay_requests_total{{target_host="{_escape_label(target_host)}",'
                f'status="{_escape_label(status)}"}} {value}'
            )
        )

    lines.extend(
        [
            "# HELP nano_storage_errors_total Object store failures by operation.",
            "# TYPE nano_storage_errors_total counter",
        ]
    )
    for operation, value in sorted(storage_errors_total.items()):
        lines.append(f'nano_storage_errors_total{{operation="{_escape_label(operation)}"}} {value}')

    lines.append("")
    return "\n".join(lines)


def reset_metrics_for_tests() -> None:
    global _started_at
    with _lock:
        _http_requests_total.clear()
        _http_request_duration_sum.clear()
        _http_request_duration_count.clear()
        _generations_total.clear()
        _generation_duration_sum.clear()
        _poll_ticks_total.clear()
        _relay_requests_total.clear()
        _storage_errors_total.clear()
    _started_at = time.time()
