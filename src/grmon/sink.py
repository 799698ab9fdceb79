"""
Where samples go after a scraper builds them.

SampleSink is the append channel scrapers push into (safe to share between
threads). SampleStore holds the latest full sample set per descriptor, so
label combinations that vanish from one scrape to the next get dropped
instead of lingering.
"""

from __future__ import annotations

import queue
import threading
from typing import Dict, Iterable, List

from grmon.metrics import MetricDescriptor, Sample


class SampleSink:

    def __init__(self):
        self._queue: "queue.SimpleQueue[Sample]" = queue.SimpleQueue()

    def push(self, sample: Sample):
        if not isinstance(sample, Sample):
            raise TypeError(f"expected a Sample, got {type(sample).__name__}")
        self._queue.put(sample)

    def drain(self) -> List[Sample]:
        """Everything pushed so far, in push order."""
        samples = []
        while True:
            try:
                samples.append(self._queue.get_nowait())
            except queue.Empty:
                return samples


class SampleStore:

    def __init__(self):
        self._lock = threading.Lock()
        self._by_descriptor: Dict[str, List[Sample]] = {}

    def replace(self, samples: Iterable[Sample], descriptors: Iterable[MetricDescriptor]):
        """Swap in the new sample set for each of `descriptors`.

        A descriptor listed here with no samples is cleared. Descriptors not
        listed keep whatever they had.
        """
        fresh: Dict[str, List[Sample]] = {d.name: [] for d in descriptors}
        for sample in samples:
            fresh.setdefault(sample.name, []).append(sample)

        with self._lock:
            for name, group in fresh.items():
                if group:
                    self._by_descriptor[name] = group
                else:
                    self._by_descriptor.pop(name, None)

    def samples(self) -> List[Sample]:
        with self._lock:
            return [s for group in self._by_descriptor.values() for s in group]

    def get(self, name: str) -> List[Sample]:
        with self._lock:
            return list(self._by_descriptor.get(name, []))

    def __len__(self) -> int:
        with self._lock:
            return sum(len(group) for group in self._by_descriptor.values())
