"""Unit tests for the Voice Activity Detector"""

import numpy as np
import pytest

from relaytive.analysis.vad import VoiceActivityDetector
from relaytive.models.enums import VADState


@pytest.fixture
def vad():
    return VoiceActivityDetector(sample_rate=16000, frame_size=320, hop_size=160,
                                 energy_threshold_start=-35.0, energy_threshold_end=-40.0)


class TestVoiceActivityDetector:
    """Test suite for VoiceActivityDetector"""

    def test_initialization(self, vad):
        assert vad.state == VADState.SILENCE
        assert vad.fft_size == 512
        assert vad.min_speech_frames == 10
        assert vad.max_hangover_frames == 20
        assert vad.latest_result is None

    def test_short_frame_is_silence(self, vad):
        result = vad.process_frame(np.ones(100, dtype=np.float32))
        assert result.is_speech is False
        assert result.state == VADState.SILENCE
        assert vad.state == VADState.SILENCE

    def test_non_finite_frame_is_silence(self, vad):
        frame = np.ones(320, dtype=np.float32)
        frame[5] = np.nan
        result = vad.process_frame(frame)
        assert result.is_speech is False

    def test_silent_frames_stay_silent(self, vad):
        for _ in range(20):
            result = vad.process_frame(np.zeros(320, dtype=np.float32))
        assert result.state == VADState.SILENCE
        assert result.energy_db == pytest.approx(-100.0)

    def test_loud_frame_starts_speech(self, vad, tone):
        result = vad.process_frame(tone(440.0, 0.02))
        assert result.state == VADState.SPEECH_START
        assert result.speech_start == pytest.approx(0.0)
        assert result.is_speech is True

    def test_sustained_speech_reaches_speech_state(self, vad, tone):
        samples = tone(440.0, 0.5)
        states = []
        for start in range(0, len(samples) - 320 + 1, 160):
            states.append(vad.process_frame(samples[start:start + 320]).state)
        assert VADState.SPEECH in states

    def test_false_start_returns_to_silence(self, vad, tone):
        vad.process_frame(tone(440.0, 0.02))
        result = vad.process_frame(np.zeros(320, dtype=np.float32))
        assert result.state == VADState.SILENCE

    def test_hangover_then_silence(self, vad, tone):
        samples = np.concatenate([tone(440.0, 0.5), np.zeros(16000, dtype=np.float32)])
        saw_hangover = False
        speech_end = None
        for start in range(0, len(samples) - 320 + 1, 160):
            result = vad.process_frame(samples[start:start + 320])
            saw_hangover = saw_hangover or result.state == VADState.HANGOVER
            if result.speech_end is not None:
                speech_end = result.speech_end
        assert saw_hangover
        assert speech_end is not None
        assert vad.state == VADState.SILENCE

    def test_reset(self, vad, tone):
        vad.process_frame(tone(440.0, 0.02))
        vad.reset()
        assert vad.state == VADState.SILENCE
        assert vad.latest_result is None


class TestProcessBuffer:
    """Test suite for whole-buffer segmentation"""

    def test_detects_voiced_span(self, vad, tone):
        samples = np.concatenate([
            np.zeros(8000, dtype=np.float32),
            tone(440.0, 0.6),
            np.zeros(16000, dtype=np.float32),
        ])
        segments = vad.process_buffer(samples)
        assert len(segments) == 1
        segment = segments[0]
        assert segment.start_time == pytest.approx(0.5, abs=0.05)
        assert segment.end_time > 1.1
        assert segment.confidence == 1.0

    def test_open_segment_closed_at_end(self, vad, tone):
        samples = np.concatenate([np.zeros(8000, dtype=np.float32), tone(440.0, 0.6)])
        segments = vad.process_buffer(samples)
        assert len(segments) == 1
        assert segments[0].end_time == pytest.approx(len(samples) / 16000.0)
        assert segments[0].confidence == pytest.approx(0.8)

    def test_silence_has_no_segments(self, vad):
        assert vad.process_buffer(np.zeros(16000, dtype=np.float32)) == []

    def test_short_buffer_has_no_segments(self, vad):
        assert vad.process_buffer(np.zeros(100, dtype=np.float32)) == []

    def test_times_are_buffer_relative(self, vad, tone):
        samples = np.concatenate([np.zeros(8000, dtype=np.float32), tone(440.0, 0.6)])
        first = vad.process_buffer(samples)
        second = vad.process_buffer(samples)
        assert first[0].start_time == pytest.approx(second[0].start_time)
