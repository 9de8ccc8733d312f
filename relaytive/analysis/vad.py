"""Voice Activity Detection Module

This module detects speech in a stream of short audio frames. Each frame is
scored by its Hann-windowed RMS energy (dB) and its spectral flux against the
previous frame; a small state machine debounces false starts and holds a
hangover so trailing sounds are not truncated.

States:
    silence -> speech_start -> speech -> hangover -> silence
"""

import logging
from collections import deque
from typing import List, Optional

import numpy as np

from relaytive.models.enums import VADState
from relaytive.models.frames import VADResult, VoicedSegment
from relaytive.config.config_loader import config


logger = logging.getLogger(__name__)


SILENT_ENERGY_DB = -80.0
ENERGY_FLOOR_DB = -100.0


def _next_power_of_two(n: int) -> int:
    size = 1
    while size < n:
        size *= 2
    return size


class VoiceActivityDetector:
    """Streaming energy + spectral-flux voice activity detector.

    Attributes:
        sample_rate: Sample rate of incoming frames (Hz)
        frame_size: Samples per analysis frame
        hop_size: Samples between consecutive frames
        energy_threshold_start: Energy (dB) that opens a speech segment
        energy_threshold_end: Energy (dB) below which speech is considered ended
        min_speech_frames: Active frames needed to confirm speech
        max_hangover_frames: Inactive frames tolerated before returning to silence
    """

    def __init__(
        self,
        sample_rate: Optional[int] = None,
        frame_size: Optional[int] = None,
        hop_size: Optional[int] = None,
        energy_threshold_start: Optional[float] = None,
        energy_threshold_end: Optional[float] = None
    ):
        """Initialize the detector from configuration, with optional overrides."""
        self.sample_rate = sample_rate if sample_rate is not None else config.get('audio.sample_rate', 16000)
        self.frame_size = frame_size if frame_size is not None else config.get('vad.frame_size', 320)
        self.hop_size = hop_size if hop_size is not None else config.get('vad.hop_size', 160)
        self.energy_threshold_start = (
            energy_threshold_start if energy_threshold_start is not None
            else config.get('vad.energy_threshold_start', -35.0)
        )
        self.energy_threshold_end = (
            energy_threshold_end if energy_threshold_end is not None
            else config.get('vad.energy_threshold_end', -40.0)
        )
        self.flux_threshold_factor = config.get('vad.flux_threshold_factor', 2.5)
        self.flux_min_history = config.get('vad.flux_min_history', 5)
        self.min_segment_duration = config.get('vad.min_segment_duration', 0.05)
        self.min_segment_confidence = config.get('vad.min_segment_confidence', 0.5)

        frames_per_second = self.sample_rate / float(self.hop_size)
        self.min_speech_frames = int(config.get('vad.min_speech_duration', 0.1) * frames_per_second)
        self.max_hangover_frames = int(config.get('vad.max_hangover_duration', 0.2) * frames_per_second)

        self.fft_size = _next_power_of_two(self.frame_size)
        self.window = np.hanning(self.frame_size).astype(np.float32)

        self._flux_history = deque(maxlen=config.get('vad.flux_history_size', 20))
        self.reset()

        logger.info(
            f"VoiceActivityDetector initialized: frame={self.frame_size}, hop={self.hop_size}, "
            f"sr={self.sample_rate}, thresholds=({self.energy_threshold_start}, "
            f"{self.energy_threshold_end}) dB"
        )

    def reset(self) -> None:
        """Return to silence and clear all frame history."""
        self.state = VADState.SILENCE
        self._frame_index = 0
        self._speech_frames = 0
        self._hangover_frames = 0
        self._segment_start: Optional[float] = None
        self._previous_magnitude: Optional[np.ndarray] = None
        self._flux_history.clear()
        self.latest_result: Optional[VADResult] = None

    def _energy_db(self, windowed: np.ndarray) -> float:
        rms = float(np.sqrt(np.mean(windowed.astype(np.float64) ** 2)))
        if rms <= 1e-10:
            return ENERGY_FLOOR_DB
        return 20.0 * np.log10(rms)

    def _spectral_flux(self, windowed: np.ndarray) -> float:
        """Sum of positive magnitude increases against the previous frame."""
        spectrum = np.fft.rfft(windowed, n=self.fft_size)
        magnitude = np.abs(spectrum[: self.fft_size // 2])
        previous = self._previous_magnitude
        self._previous_magnitude = magnitude
        if previous is None:
            return 0.0
        diff = magnitude - previous
        return float(np.sum(diff[diff > 0]))

    def _flux_threshold(self) -> float:
        if len(self._flux_history) < self.flux_min_history:
            return 0.0
        return float(np.median(self._flux_history)) * self.flux_threshold_factor

    def process_frame(self, frame: np.ndarray) -> VADResult:
        """Advance the detector by one frame.

        Frames shorter than ``frame_size`` never raise: they produce a silence
        result and do not touch the state machine.

        Args:
            frame: Audio samples; only the first ``frame_size`` are used

        Returns:
            VADResult for this frame
        """
        timestamp = self._frame_index * self.hop_size / float(self.sample_rate)
        samples = np.asarray(frame, dtype=np.float32)

        if samples.ndim != 1 or len(samples) < self.frame_size or not np.all(np.isfinite(samples[:self.frame_size])):
            result = VADResult(
                is_speech=False,
                energy_db=SILENT_ENERGY_DB,
                spectral_flux=0.0,
                state=VADState.SILENCE,
                timestamp=timestamp,
            )
            self.latest_result = result
            return result

        windowed = samples[: self.frame_size] * self.window
        energy_db = self._energy_db(windowed)
        flux = self._spectral_flux(windowed)
        threshold = self._flux_threshold()
        self._flux_history.append(flux)

        energy_active = energy_db > self.energy_threshold_start
        energy_inactive = energy_db < self.energy_threshold_end
        flux_active = threshold > 0 and flux > threshold
        active = energy_active or flux_active

        speech_start = None
        speech_end = None

        if self.state == VADState.SILENCE:
            if active:
                self.state = VADState.SPEECH_START
                self._speech_frames = 1
                self._segment_start = timestamp
                speech_start = timestamp

        elif self.state == VADState.SPEECH_START:
            if energy_inactive and not flux_active:
                # False start
                self.state = VADState.SILENCE
                self._speech_frames = 0
                self._segment_start = None
            else:
                self._speech_frames += 1
                if self._speech_frames >= self.min_speech_frames:
                    self.state = VADState.SPEECH

        elif self.state == VADState.SPEECH:
            if not active:
                self.state = VADState.HANGOVER
                self._hangover_frames = 1

        elif self.state == VADState.HANGOVER:
            if active:
                self.state = VADState.SPEECH
                self._hangover_frames = 0
            else:
                self._hangover_frames += 1
                if self._hangover_frames >= self.max_hangover_frames:
                    self.state = VADState.SILENCE
                    self._hangover_frames = 0
                    self._speech_frames = 0
                    speech_end = timestamp

        self._frame_index += 1

        result = VADResult(
            is_speech=self.state in (VADState.SPEECH_START, VADState.SPEECH, VADState.HANGOVER),
            energy_db=energy_db,
            spectral_flux=flux,
            state=self.state,
            timestamp=timestamp,
            speech_start=speech_start,
            speech_end=speech_end,
        )
        self.latest_result = result
        return result

    def process_buffer(self, samples: np.ndarray) -> List[VoicedSegment]:
        """Detect voiced segments in a whole buffer.

        The detector is reset first so segment times are relative to the start
        of the buffer. A segment still open when the buffer ends is closed at
        the buffer duration with reduced confidence.

        Args:
            samples: Mono audio at ``sample_rate``

        Returns:
            Valid voiced segments in time order
        """
        self.reset()
        samples = np.asarray(samples, dtype=np.float32)
        if samples.ndim != 1 or len(samples) < self.frame_size:
            return []

        segments: List[VoicedSegment] = []
        open_start: Optional[float] = None

        for start in range(0, len(samples) - self.frame_size + 1, self.hop_size):
            result = self.process_frame(samples[start:start + self.frame_size])
            if result.speech_start is not None:
                open_start = result.speech_start
            if result.state == VADState.SILENCE and result.speech_end is None:
                open_start = None
            if result.speech_end is not None and open_start is not None:
                if result.speech_end > open_start:
                    segments.append(VoicedSegment(open_start, result.speech_end, 1.0))
                open_start = None

        buffer_duration = len(samples) / float(self.sample_rate)
        if open_start is not None and self.state in (VADState.SPEECH, VADState.HANGOVER):
            if buffer_duration > open_start:
                segments.append(VoicedSegment(open_start, buffer_duration, 0.8))

        valid = [
            s for s in segments
            if s.is_valid(self.min_segment_duration, self.min_segment_confidence)
        ]
        logger.debug(f"VAD found {len(valid)} voiced segments in {buffer_duration:.2f}s")
        return valid
