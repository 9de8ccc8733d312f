"""Data models for audio windows and voice activity"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from relaytive.models.enums import VADState


@dataclass
class AudioWindow:
    """Mono audio buffer at a single sample rate

    Attributes:
        samples: PCM samples as a 1-D float numpy array, nominally in [-1, 1]
        sample_rate: Sample rate in Hz (e.g., 16000)
    """
    samples: np.ndarray
    sample_rate: int

    def __post_init__(self):
        """Validate audio window data integrity.

        Raises:
            AssertionError: If the sample rate is not positive or samples are not 1-D
        """
        assert self.sample_rate > 0, "Sample rate must be positive"
        assert isinstance(self.samples, np.ndarray), "Samples must be numpy array"
        assert self.samples.ndim == 1, "Samples must be mono (1-D)"

    @property
    def duration(self) -> float:
        """Duration in seconds"""
        return len(self.samples) / float(self.sample_rate)

    @property
    def is_empty(self) -> bool:
        return len(self.samples) == 0

    def slice(self, start_time: float, end_time: float) -> "AudioWindow":
        """Return the sub-window between two times (seconds), clamped to the buffer"""
        start = max(0, int(round(start_time * self.sample_rate)))
        end = min(len(self.samples), int(round(end_time * self.sample_rate)))
        if end <= start:
            return AudioWindow(samples=self.samples[:0], sample_rate=self.sample_rate)
        return AudioWindow(samples=self.samples[start:end], sample_rate=self.sample_rate)


@dataclass
class VoicedSegment:
    """A span of detected speech

    Attributes:
        start_time: Segment start (seconds, buffer-relative)
        end_time: Segment end (seconds, buffer-relative)
        confidence: 1.0 for segments closed by the detector, lower for segments
            cut off at the end of the buffer
    """
    start_time: float
    end_time: float
    confidence: float = 1.0

    def __post_init__(self):
        assert self.end_time > self.start_time, "Segment end must follow its start"
        assert 0.0 <= self.confidence <= 1.0, "Confidence must be in [0, 1]"

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def is_valid(self, min_duration: float = 0.05, min_confidence: float = 0.5) -> bool:
        return self.duration > min_duration and self.confidence > min_confidence


@dataclass
class VADResult:
    """Per-frame output of the voice activity detector

    Attributes:
        is_speech: Whether the detector considers this frame part of speech
        energy_db: Windowed RMS energy in dB
        spectral_flux: Positive spectral flux against the previous frame
        state: Detector state after this frame
        timestamp: Frame start time (seconds since the last reset)
        speech_start: Set on the frame that enters speech_start
        speech_end: Set on the frame that returns to silence from hangover
    """
    is_speech: bool
    energy_db: float
    spectral_flux: float
    state: VADState
    timestamp: float
    speech_start: Optional[float] = None
    speech_end: Optional[float] = None
