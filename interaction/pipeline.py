"""Per-tick orchestration: sample -> match -> classify -> weight -> apply."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional

from interaction.attribution.aggregate import AggregationStore
from interaction.attribution.classifier import Classification, InteractionClassifier, Outcome
from interaction.errors import DetectionFailure, UnknownIdentity
from interaction.recognition.matcher import Matcher
from interaction.sampling.frame_source import FrameSampler
from interaction.sampling.scheduler import SamplingScheduler
from interaction.types import AggregateEdge, InteractionEvent, MatchResult, Probe

LOGGER = logging.getLogger("interaction.pipeline")


@dataclass
class TickResult:
    outcome: Outcome
    matches: List[MatchResult] = field(default_factory=list)
    event: Optional[InteractionEvent] = None
    edge: Optional[AggregateEdge] = None
    detection_failed: bool = False
    dropped: bool = False

    @property
    def applied(self) -> bool:
        return self.edge is not None


class InteractionPipeline:
    """Runs one detection cycle per call to ``run_tick``.

    Matching fans out over a thread pool, one call per detected face;
    classification and the aggregation apply run serially afterwards, so a
    tick emits and applies at most one event. Per-tick failures are logged
    and contained here.
    """

    def __init__(
        self,
        sampler: FrameSampler,
        matcher: Matcher,
        classifier: InteractionClassifier,
        store: AggregationStore,
        match_workers: int = 4,
    ) -> None:
        self.sampler = sampler
        self.matcher = matcher
        self.classifier = classifier
        self.store = store
        self.match_workers = match_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()
        self.scheduler: Optional[SamplingScheduler] = None

    def set_owner(self, owner_id: Optional[str]) -> None:
        self.classifier.set_owner(owner_id)

    def _pool(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.match_workers, thread_name_prefix="match")
            return self._executor

    def _match_all(self, probes: List[Probe]) -> List[MatchResult]:
        if not probes:
            return []
        if len(probes) == 1:
            return [self.matcher.match(probes[0].embedding)]
        return list(self._pool().map(lambda probe: self.matcher.match(probe.embedding), probes))

    def run_tick(self) -> TickResult:
        detection_failed = False
        try:
            probes = self.sampler.sample()
        except DetectionFailure as exc:
            LOGGER.warning("Detection failed; treating tick as empty sample: %s", exc)
            probes = []
            detection_failed = True

        matches = self._match_all(probes)
        classification: Classification = self.classifier.classify(list(zip(probes, matches)))
        result = TickResult(
            outcome=classification.outcome,
            matches=matches,
            event=classification.event,
            detection_failed=detection_failed,
        )
        LOGGER.debug(
            "Tick: probes=%d present=%s owner=%s outcome=%s",
            len(probes),
            sorted(classification.present_ids),
            classification.owner_id,
            classification.outcome.value,
        )
        if classification.event is None:
            return result

        try:
            result.edge = self.store.apply(classification.event)
        except UnknownIdentity as exc:
            LOGGER.error("Dropped interaction event %s: %s", classification.event.to_dict(), exc)
            result.dropped = True
            return result
        LOGGER.info(
            "Interaction %s -> %s weight=%d total=%d",
            classification.event.sender_id,
            classification.event.receiver_id,
            classification.event.weight,
            result.edge.cumulative_weight,
        )
        return result

    def start(self, period_s: float = 2.0) -> SamplingScheduler:
        if self.scheduler is not None and self.scheduler.running:
            return self.scheduler
        self.scheduler = SamplingScheduler(self.run_tick, period_s=period_s, name="interaction")
        self.scheduler.start()
        return self.scheduler

    def stop(self, timeout: Optional[float] = None) -> None:
        """Cancel scheduling, wait for the in-flight tick, then release the pool.

        The pool is rebuilt on demand, so the pipeline can be started again.
        """
        if self.scheduler is not None:
            finished = self.scheduler.stop(wait=True, timeout=timeout)
            if not finished:
                LOGGER.warning("In-flight tick did not finish within %.1fs", timeout or 0.0)
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
