"""
Per-tool call counters for the bridge, exported as Prometheus text on /metrics.
"""
from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class CallStats:
    calls: int = 0
    total_latency_ms: float = 0.0
    # exception class name -> count
    failures: Counter = field(default_factory=Counter)

    @property
    def errors(self) -> int:
        return sum(self.failures.values())

    @property
    def avg_latency_ms(self) -> float:
        return self.total_latency_ms / self.calls if self.calls else 0.0


class InMemoryMetrics:
    """Thread-safe counters shared by the MCP tools and the HTTP app."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_tool: Dict[str, CallStats] = {}

    def record(self, tool: str, duration_ms: float, error: Optional[str] = None) -> None:
        """Count one call; `error` is the failing exception's class name, if any."""
        with self._lock:
            stats = self._by_tool.setdefault(tool, CallStats())
            stats.calls += 1
            stats.total_latency_ms += float(duration_ms)
            if error:
                stats.failures[error] += 1

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {
                tool: {
                    "calls": float(stats.calls),
                    "errors": float(stats.errors),
                    "avg_latency_ms": stats.avg_latency_ms,
                    "errors_by_type": dict(stats.failures),
                }
                for tool, stats in self._by_tool.items()
            }


_shared_metrics: Optional[InMemoryMetrics] = None


def get_shared_metrics() -> InMemoryMetrics:
    global _shared_metrics
    if _shared_metrics is None:
        _shared_metrics = InMemoryMetrics()
    return _shared_metrics


def set_shared_metrics(metrics: Optional[InMemoryMetrics]) -> None:
    global _shared_metrics
    _shared_metrics = metrics


def format_prometheus(metrics: InMemoryMetrics) -> str:
    lines: List[str] = [
        "# HELP fo_bridge_healthy Bridge health status",
        "# TYPE fo_bridge_healthy gauge",
        "fo_bridge_healthy 1",
    ]
    snapshot = sorted(metrics.snapshot().items())
    if not snapshot:
        return "\n".join(lines) + "\n"

    lines += ["# HELP fo_bridge_tool_calls_total Tool calls", "# TYPE fo_bridge_tool_calls_total counter"]
    lines += [f'fo_bridge_tool_calls_total{{tool="{tool}"}} {m["calls"]:g}' for tool, m in snapshot]

    lines += ["# HELP fo_bridge_tool_errors_total Failed tool calls by error type", "# TYPE fo_bridge_tool_errors_total counter"]
    for tool, m in snapshot:
        for error_type, count in sorted(m["errors_by_type"].items()):
            lines.append(f'fo_bridge_tool_errors_total{{tool="{tool}",type="{error_type}"}} {count}')

    lines += ["# HELP fo_bridge_tool_avg_latency_ms Average tool latency", "# TYPE fo_bridge_tool_avg_latency_ms gauge"]
    lines += [f'fo_bridge_tool_avg_latency_ms{{tool="{tool}"}} {m["avg_latency_ms"]:.3f}' for tool, m in snapshot]
    return "\n".join(lines) + "\n"
