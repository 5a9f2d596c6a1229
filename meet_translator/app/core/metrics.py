import time
from typing import Dict, List

from meet_translator.app.core.logger import logger


class LatencyTracker:
    """记录单个音频分片处理过程中的检查点 (毫秒)"""

    def __init__(self):
        self._start = time.perf_counter()
        self.checkpoints: Dict[str, float] = {}

    def _elapsed_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000

    def checkpoint(self, name: str) -> float:
        elapsed = self._elapsed_ms()
        self.checkpoints[name] = elapsed
        logger.debug(f"Checkpoint [{name}]: {elapsed:.1f}ms")
        return elapsed

    def duration(self, start: str, end: str) -> float:
        """两个检查点之间的耗时，任一检查点不存在时返回 0"""
        if start not in self.checkpoints or end not in self.checkpoints:
            return 0
        return max(self.checkpoints[end] - self.checkpoints[start], 0)

    def total_duration(self) -> float:
        return self._elapsed_ms()

    def get_metrics(self) -> Dict[str, float]:
        metrics = dict(self.checkpoints)
        metrics["total"] = self.total_duration()
        return metrics


class MetricsAggregator:
    """按阶段累计延迟样本，按需计算均值/中位数"""

    BUCKETS = ("recognition", "translation", "synthesis", "total")

    def __init__(self):
        self.samples: Dict[str, List[float]] = {name: [] for name in self.BUCKETS}

    def add_metric(self, bucket: str, value: float):
        if bucket not in self.samples:
            raise KeyError(f"Unknown metrics bucket: {bucket}")
        self.samples[bucket].append(value)

    def average(self, bucket: str) -> float:
        values = self.samples[bucket]
        if not values:
            return 0
        return sum(values) / len(values)

    def median(self, bucket: str) -> float:
        values = sorted(self.samples[bucket])
        if not values:
            return 0
        mid = len(values) // 2
        if len(values) % 2 == 0:
            return (values[mid - 1] + values[mid]) / 2
        return values[mid]

    def get_stats(self) -> Dict[str, Dict[str, float]]:
        return {
            name: {
                "avg": self.average(name),
                "median": self.median(name),
                "count": len(self.samples[name]),
            }
            for name in self.BUCKETS
        }

    def flush(self) -> Dict[str, Dict[str, float]]:
        """返回自上次 flush 以来的统计并清空样本"""
        stats = self.get_stats()
        for name in self.BUCKETS:
            self.samples[name] = []
        return stats
