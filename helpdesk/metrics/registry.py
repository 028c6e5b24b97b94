"""Process-local counters for ticket lifecycle events."""
from __future__ import annotations

from collections import defaultdict
from threading import Lock
from typing import Dict, Iterable, Mapping, Tuple

LabelValues = Tuple[str, ...]


class CounterMetric:
    """Monotonic counter, optionally split by label values."""

    def __init__(self, name: str, *, description: str = "", label_names: Iterable[str] | None = None) -> None:
        self.name = name
        self.description = description
        self.label_names: Tuple[str, ...] = tuple(label_names or ())
        self._values: Dict[LabelValues, float] = defaultdict(float)
        self._lock = Lock()

    def _label_values(self, labels: Mapping[str, str] | None) -> LabelValues:
        labels = labels or {}
        unknown = set(labels) - set(self.label_names)
        if unknown:
            raise ValueError(f"Metric '{self.name}' does not accept labels {sorted(unknown)}")
        missing = [name for name in self.label_names if name not in labels]
        if missing:
            raise ValueError(f"Missing labels {missing} for metric '{self.name}'")
        return tuple(labels[name] for name in self.label_names)

    def inc(self, amount: float = 1.0, *, labels: Mapping[str, str] | None = None) -> None:
        if amount < 0:
            raise ValueError("Counters can only increase")
        key = self._label_values(labels)
        with self._lock:
            self._values[key] += amount

    def value(self, *, labels: Mapping[str, str] | None = None) -> float:
        key = self._label_values(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def snapshot(self) -> Dict[LabelValues, float]:
        with self._lock:
            return dict(self._values)


class MetricsRegistry:
    """Registry that hands out counters by name."""

    def __init__(self) -> None:
        self._metrics: Dict[str, CounterMetric] = {}
        self._lock = Lock()

    def counter(
        self,
        name: str,
        *,
        description: str = "",
        label_names: Iterable[str] | None = None,
    ) -> CounterMetric:
        with self._lock:
            if name not in self._metrics:
                self._metrics[name] = CounterMetric(name, description=description, label_names=label_names)
            return self._metrics[name]

    def metrics(self) -> Tuple[CounterMetric, ...]:
        with self._lock:
            return tuple(self._metrics.values())

    def render_prometheus(self) -> str:
        """Render every counter in the Prometheus text exposition format."""

        lines: list[str] = []
        for metric in self.metrics():
            lines.append(f"# HELP {metric.name} {metric.description}")
            lines.append(f"# TYPE {metric.name} counter")
            for label_values, value in sorted(metric.snapshot().items()):
                label_text = ""
                if label_values:
                    pairs = [f'{name}="{item}"' for name, item in zip(metric.label_names, label_values)]
                    label_text = "{" + ",".join(pairs) + "}"
                lines.append(f"{metric.name}{label_text} {value}")
        return "\n".join(lines) + ("\n" if lines else "")
