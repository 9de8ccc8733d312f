"""Data models for derived audio features and learned state snapshots"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

from relaytive.models.frames import AudioWindow


class SnapshotError(ValueError):
    """Exception raised when a serialized snapshot cannot be decoded"""
    pass


@dataclass
class AudioSegment:
    """Sub-span of a training example with its embedding

    Attributes:
        start_time: Start within the parent utterance (seconds)
        end_time: End within the parent utterance (seconds)
        embedding: Embedding of the sub-buffer
        parent_example_id: Id of the TrainingExample the segment came from
        confidence: Energy/duration based quality score in [0, 1]
        parent_duration: Duration of the parent utterance (seconds)
        id: Unique segment id
    """
    start_time: float
    end_time: float
    embedding: np.ndarray
    parent_example_id: str
    confidence: float
    parent_duration: float = 0.0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    @property
    def relative_position(self) -> float:
        """Start time as a fraction of the parent utterance, in [0, 1]"""
        if self.parent_duration <= 0:
            return 0.0
        return float(min(1.0, max(0.0, self.start_time / self.parent_duration)))

    def is_valid(self, min_confidence: float = 0.1) -> bool:
        return (
            self.start_time < self.end_time
            and self.embedding is not None
            and self.embedding.size > 0
            and self.confidence > min_confidence
        )


@dataclass
class PhoneticTranscription:
    """Run-collapsed sequence of unit ids for one utterance

    Attributes:
        unit_ids: Unit ids with no two adjacent entries equal
        unit_string: Space separated rendering, e.g. "U12 U7 U3"
        readable_spelling: Symbol-mapped rendering when a symbol map is loaded
        unit_times: Start time (seconds) of the first frame of each unit
    """
    unit_ids: List[int]
    unit_string: str
    readable_spelling: Optional[str] = None
    unit_times: List[float] = field(default_factory=list)

    def __post_init__(self):
        assert all(a != b for a, b in zip(self.unit_ids, self.unit_ids[1:])), \
            "Unit ids must be run-collapsed"

    @classmethod
    def empty(cls) -> "PhoneticTranscription":
        return cls(unit_ids=[], unit_string="")

    @property
    def is_empty(self) -> bool:
        return not self.unit_ids

    @property
    def duration(self) -> float:
        if len(self.unit_times) < 2:
            return 0.0
        return self.unit_times[-1] - self.unit_times[0]


@dataclass
class TrainingExample:
    """Caregiver-created mapping from an utterance to its meaning

    The audio is frozen on creation; the explanation and verified flag stay
    editable. The whole-utterance embedding and transcription are computed
    once and cached.
    """
    audio: AudioWindow
    explanation: str
    verified: bool = False
    embedding: Optional[np.ndarray] = None
    transcription: Optional[PhoneticTranscription] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: float = field(default_factory=time.time)

    def __post_init__(self):
        samples = np.array(self.audio.samples, dtype=np.float32, copy=True)
        samples.flags.writeable = False
        self.audio = AudioWindow(samples=samples, sample_rate=self.audio.sample_rate)

    @property
    def duration(self) -> float:
        return self.audio.duration

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None and self.embedding.size > 0

    def cache_embedding(self, embedding: np.ndarray) -> None:
        """Store the whole-utterance embedding unless one is already cached"""
        if not self.has_embedding:
            self.embedding = np.asarray(embedding, dtype=np.float32)

    def cache_transcription(self, transcription: PhoneticTranscription) -> None:
        if self.transcription is None:
            self.transcription = transcription


@dataclass
class CodebookSnapshot:
    """Serializable state of the frame quantizer

    Attributes:
        centroids: K x D array of unit-norm centroids
        cluster_counts: Observations assigned to each centroid
        total_observations: Total vectors observed
        k: Codebook size
        dim: Embedding dimension
        timestamp: When the snapshot was taken
    """
    centroids: np.ndarray
    cluster_counts: List[int]
    total_observations: int
    k: int
    dim: int
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self):
        assert self.centroids.shape == (self.k, self.dim), "Centroid matrix must be k x dim"
        assert len(self.cluster_counts) == self.k, "One count per centroid"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "centroids": self.centroids.astype(float).tolist(),
            "cluster_counts": [int(c) for c in self.cluster_counts],
            "total_observations": int(self.total_observations),
            "k": self.k,
            "dim": self.dim,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CodebookSnapshot":
        try:
            return cls(
                centroids=np.asarray(data["centroids"], dtype=np.float32).reshape(
                    int(data["k"]), int(data["dim"])
                ),
                cluster_counts=[int(c) for c in data["cluster_counts"]],
                total_observations=int(data["total_observations"]),
                k=int(data["k"]),
                dim=int(data["dim"]),
                timestamp=float(data.get("timestamp", time.time())),
            )
        except (KeyError, TypeError, ValueError, AssertionError) as e:
            raise SnapshotError(f"Invalid codebook snapshot: {e}") from e


@dataclass
class MeaningCentroid:
    """Classifier state for one caregiver meaning

    Attributes:
        meaning: Caregiver meaning text
        centroid: Unit-norm embedding centroid
        exemplars: Most recent phonetic unit strings (oldest first)
        update_count: Times this meaning has been reinforced
    """
    meaning: str
    centroid: np.ndarray
    exemplars: List[str] = field(default_factory=list)
    update_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "meaning": self.meaning,
            "centroid": self.centroid.astype(float).tolist(),
            "exemplars": list(self.exemplars),
            "update_count": int(self.update_count),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MeaningCentroid":
        try:
            return cls(
                meaning=str(data["meaning"]),
                centroid=np.asarray(data["centroid"], dtype=np.float32),
                exemplars=[str(s) for s in data.get("exemplars", [])],
                update_count=int(data.get("update_count", 0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise SnapshotError(f"Invalid meaning centroid: {e}") from e
