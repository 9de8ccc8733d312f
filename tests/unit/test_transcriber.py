"""Unit tests for the Phonetic Transcriber"""

import numpy as np
import pytest

from relaytive.analysis.quantizer import FrameQuantizer
from relaytive.analysis.transcriber import PhoneticTranscriber
from relaytive.analysis.vad import VoiceActivityDetector
from relaytive.models.enums import FailureKind
from relaytive.models.frames import AudioWindow
from relaytive.ui.diagnostics import DiagnosticsMonitor


@pytest.fixture
def diagnostics():
    return DiagnosticsMonitor(history_size=10)


@pytest.fixture
def transcriber(mel_extractor, diagnostics):
    quantizer = FrameQuantizer(dim=40, k=16, seed=11)
    return PhoneticTranscriber(
        mel_extractor,
        quantizer,
        vad=VoiceActivityDetector(sample_rate=16000),
        diagnostics=diagnostics,
        frame_size=320,
        hop_size=320,
        max_frames_per_segment=40,
    )


class TestPhoneticTranscriber:
    """Test suite for PhoneticTranscriber"""

    @pytest.mark.asyncio
    async def test_empty_window(self, transcriber):
        result = await transcriber.transcribe(AudioWindow(np.zeros(0, dtype=np.float32), 16000))
        assert result.is_empty
        assert result.unit_string == ""

    @pytest.mark.asyncio
    async def test_silence_gives_empty_transcription(self, transcriber, silence):
        result = await transcriber.transcribe(silence(1.0))
        assert result.is_empty
        assert transcriber.quantizer.total_observations == 0

    @pytest.mark.asyncio
    async def test_tone_produces_units(self, transcriber, utterance):
        result = await transcriber.transcribe(utterance(440.0, 2500.0))
        assert not result.is_empty
        assert result.unit_string == " ".join(f"U{u}" for u in result.unit_ids)
        assert len(result.unit_times) == len(result.unit_ids)
        assert transcriber.quantizer.total_observations > 0
        assert transcriber.total_frames_processed == transcriber.quantizer.total_observations

    @pytest.mark.asyncio
    async def test_no_adjacent_repeats(self, transcriber, utterance):
        result = await transcriber.transcribe(utterance(440.0, 1000.0, 440.0))
        for a, b in zip(result.unit_ids, result.unit_ids[1:]):
            assert a != b

    @pytest.mark.asyncio
    async def test_frame_cap(self, transcriber, utterance):
        await transcriber.transcribe(utterance(440.0, 1000.0, 2500.0, 4000.0))
        assert transcriber.quantizer.total_observations <= 40

    @pytest.mark.asyncio
    async def test_symbol_map(self, transcriber, utterance):
        transcriber.load_symbol_map({i: chr(ord('a') + i) for i in range(16)})
        result = await transcriber.transcribe(utterance(440.0, 2500.0))
        assert result.readable_spelling is not None
        assert len(result.readable_spelling) == len(result.unit_ids)

    def test_symbol_map_from_yaml(self, transcriber, tmp_path):
        path = tmp_path / "symbols.yaml"
        path.write_text("0: a\n1: b\n")
        assert transcriber.load_symbol_map(path) == 2
        assert transcriber.symbol_map == {0: "a", 1: "b"}

    def test_missing_symbol_map_file(self, transcriber, tmp_path):
        assert transcriber.load_symbol_map(tmp_path / "missing.yaml") == 0

    @pytest.mark.asyncio
    async def test_failing_extractor_gives_empty_transcription(self, failing_extractor, utterance, diagnostics):
        transcriber = PhoneticTranscriber(
            failing_extractor,
            FrameQuantizer(dim=40, k=16, seed=1),
            vad=VoiceActivityDetector(sample_rate=16000),
            diagnostics=diagnostics,
            hop_size=320,
            max_frames_per_segment=5,
        )
        result = await transcriber.transcribe(utterance(440.0))
        assert result.is_empty
        assert diagnostics.snapshot().failure_counts[FailureKind.RESOURCE.value] > 0

    @pytest.mark.asyncio
    async def test_diagnostics_updated(self, transcriber, utterance, diagnostics):
        result = await transcriber.transcribe(utterance(440.0, 2500.0))
        snapshot = diagnostics.snapshot()
        assert snapshot.unit_string == result.unit_string
        assert snapshot.active_clusters > 0

    @pytest.mark.asyncio
    async def test_statistics(self, transcriber, utterance):
        await transcriber.transcribe(utterance(440.0))
        stats = transcriber.statistics()
        assert stats.total_frames_processed > 0
        assert stats.active_clusters >= 1
        assert stats.has_symbol_mapping is False

    @pytest.mark.asyncio
    async def test_codebook_roundtrip(self, transcriber, utterance):
        await transcriber.transcribe(utterance(440.0))
        snapshot = transcriber.get_codebook()
        fresh = PhoneticTranscriber(transcriber.extractor, FrameQuantizer(dim=40, k=16, seed=2))
        assert fresh.load_codebook(snapshot) is True
        assert fresh.quantizer.total_observations == snapshot.total_observations
