"""
Sink de mètriques injectable

Els parsers reben el sink com a paràmetre: cap comptador global a nivell de
mòdul, de manera que el nucli es pot provar aïllat.
"""
import logging
from collections import defaultdict
from typing import Protocol

log = logging.getLogger("passport.metrics")


class MetricsSink(Protocol):
    def increment(self, name: str, value: int = 1, **tags) -> None: ...

    def observe(self, name: str, value: float, **tags) -> None: ...


class NullMetricsSink:
    """No fa res. Per defecte als parsers."""

    def increment(self, name: str, value: int = 1, **tags) -> None:
        return None

    def observe(self, name: str, value: float, **tags) -> None:
        return None


class LoggingMetricsSink:
    """Emet cada mètrica com un registre JSON (via el formatter de main.py)."""

    def __init__(self, logger: logging.Logger = log):
        self._log = logger

    def increment(self, name: str, value: int = 1, **tags) -> None:
        self._log.info("metric", extra={"metric": name, "kind": "counter", "value": value, **tags})

    def observe(self, name: str, value: float, **tags) -> None:
        self._log.info("metric", extra={"metric": name, "kind": "histogram", "value": value, **tags})


class InMemoryMetricsSink:
    """Acumula en memòria. Pensat per a tests."""

    def __init__(self):
        self.counters: dict[str, int] = defaultdict(int)
        self.observations: dict[str, list[float]] = defaultdict(list)

    def increment(self, name: str, value: int = 1, **tags) -> None:
        self.counters[name] += value

    def observe(self, name: str, value: float, **tags) -> None:
        self.observations[name].append(value)


NULL_METRICS = NullMetricsSink()
