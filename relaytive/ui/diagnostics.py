"""Live Diagnostics

Collects the scalar metrics shown on the debug screen: VAD energy and flux,
codebook health, the latest classification confidence and the current unit
string. Components push updates as they work; readers take an immutable
snapshot.
"""

import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from relaytive.models.enums import EmbeddingDefect, FailureKind, VADState
from relaytive.models.features import PhoneticTranscription
from relaytive.models.frames import VADResult
from relaytive.models.results import CodebookStatistics
from relaytive.config.config_loader import config


@dataclass(frozen=True)
class DiagnosticsSnapshot:
    """Point-in-time copy of the live metrics"""
    energy_db: float
    spectral_flux: float
    vad_state: VADState
    active_clusters: int
    cluster_purity: float
    last_confidence: Optional[float]
    unit_string: str
    readable_spelling: Optional[str]
    failure_counts: Dict[str, int] = field(default_factory=dict)
    defect_counts: Dict[str, int] = field(default_factory=dict)
    timestamp: float = 0.0

    @property
    def has_degenerate_embeddings(self) -> bool:
        return bool(self.defect_counts)


class DiagnosticsMonitor:
    """Thread-safe holder of the latest pipeline metrics.

    Attributes:
        history_size: Number of recent confidences kept
        confidence_history: Recent (timestamp, confidence) pairs
    """

    def __init__(self, history_size: Optional[int] = None):
        self.history_size = history_size if history_size is not None else config.get('diagnostics.history_size', 100)
        self.confidence_history = deque(maxlen=self.history_size)
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._energy_db = -80.0
            self._spectral_flux = 0.0
            self._vad_state = VADState.SILENCE
            self._active_clusters = 0
            self._cluster_purity = 0.0
            self._last_confidence: Optional[float] = None
            self._unit_string = ""
            self._readable_spelling: Optional[str] = None
            self._failures = Counter()
            self._defects = Counter()
            self.confidence_history.clear()

    def record_vad(self, result: VADResult) -> None:
        with self._lock:
            self._energy_db = result.energy_db
            self._spectral_flux = result.spectral_flux
            self._vad_state = result.state

    def record_codebook(self, statistics: CodebookStatistics) -> None:
        with self._lock:
            self._active_clusters = statistics.active_clusters
            self._cluster_purity = statistics.purity

    def record_transcription(self, transcription: PhoneticTranscription) -> None:
        with self._lock:
            self._unit_string = transcription.unit_string
            self._readable_spelling = transcription.readable_spelling

    def record_confidence(self, confidence: float) -> None:
        with self._lock:
            self._last_confidence = float(confidence)
            self.confidence_history.append((time.time(), float(confidence)))

    def record_failure(self, kind: FailureKind, defect: Optional[EmbeddingDefect] = None) -> None:
        with self._lock:
            self._failures[kind.value] += 1
            if defect is not None:
                self._defects[defect.value] += 1

    def recent_confidences(self) -> List[float]:
        with self._lock:
            return [c for _, c in self.confidence_history]

    def snapshot(self) -> DiagnosticsSnapshot:
        with self._lock:
            return DiagnosticsSnapshot(
                energy_db=self._energy_db,
                spectral_flux=self._spectral_flux,
                vad_state=self._vad_state,
                active_clusters=self._active_clusters,
                cluster_purity=self._cluster_purity,
                last_confidence=self._last_confidence,
                unit_string=self._unit_string,
                readable_spelling=self._readable_spelling,
                failure_counts=dict(self._failures),
                defect_counts=dict(self._defects),
                timestamp=time.time(),
            )
