"""Process resource utilization probe (psutil)."""

from __future__ import annotations

import os
import sys
import time
from collections.abc import Iterable
from datetime import datetime, timezone

import psutil

from .models import ProbeResult
from .probes import SyncProbe


class ResourceUtilizationProbe(SyncProbe):
    """Samples the current process and degrades on high memory or CPU usage.

    CPU usage is computed against this probe's previous sample, so each
    instance keeps its own baseline. The first sample falls back to the
    average over the process lifetime.
    """

    def __init__(
        self,
        memory_degraded_percent: float = 80.0,
        cpu_degraded_percent: float = 70.0,
        tags: Iterable[str] = (),
        timeout: float | None = None,
        process: psutil.Process | None = None,
    ) -> None:
        self.memory_degraded_percent = memory_degraded_percent
        self.cpu_degraded_percent = cpu_degraded_percent
        self.tags = frozenset(tags)
        self.timeout = timeout
        self._process = process or psutil.Process()
        # (wall clock, total cpu seconds) of the previous sample
        self._baseline: tuple[float, float] | None = None

    def run(self) -> ProbeResult:
        proc = self._process
        with proc.oneshot():
            cpu_times = proc.cpu_times()
            mem = proc.memory_info()
            memory_percent = round(min(max(proc.memory_percent(), 0.0), 100.0), 2)
            created = proc.create_time()
            threads = proc.num_threads()
            name = proc.name()

        now = time.time()
        cpu_total = cpu_times.user + cpu_times.system
        cpu_percent = self._cpu_percent(now, cpu_total, created)
        self._baseline = (now, cpu_total)

        metrics = {
            "ProcessName": name,
            "Is64BitProcess": sys.maxsize > 2**32,
            "ProcessorCount": os.cpu_count() or 1,
            "UptimeSeconds": round(max(now - created, 0.0), 2),
            "TotalProcessorTimeSeconds": round(cpu_total, 2),
            "CpuUsagePercent": cpu_percent,
            "MemoryUsagePercent": memory_percent,
            "WorkingSetBytes": mem.rss,
            "WorkingSetMegabytes": round(mem.rss / 1024 / 1024, 2),
            "VirtualMemoryBytes": mem.vms,
            "ThreadCount": threads,
            "TimestampUtc": datetime.fromtimestamp(now, timezone.utc).isoformat(),
        }

        if memory_percent >= self.memory_degraded_percent:
            return ProbeResult.degraded(
                f"Process memory usage {memory_percent}% exceeds "
                f"{self.memory_degraded_percent}% threshold.",
                data=metrics,
            )
        if cpu_percent >= self.cpu_degraded_percent:
            return ProbeResult.degraded(
                f"Process CPU usage {cpu_percent}% exceeds "
                f"{self.cpu_degraded_percent}% threshold.",
                data=metrics,
            )
        return ProbeResult.healthy("Resource utilization within defined thresholds.", data=metrics)

    def _cpu_percent(self, now: float, cpu_total: float, created: float) -> float:
        cpus = os.cpu_count() or 1
        if self._baseline is None:
            elapsed = max(now - created, 1e-3)
            used = cpu_total
        else:
            last_wall, last_cpu = self._baseline
            elapsed = max(now - last_wall, 1e-3)
            used = max(cpu_total - last_cpu, 0.0)
        return round(min(max(used / (cpus * elapsed) * 100, 0.0), 100.0), 2)
