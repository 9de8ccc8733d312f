"""Phonetic Transcription Module

This module turns an utterance into a compact string of personal phonetic
units. Voiced spans found by the VAD are cut into overlapping frames; every
frame is embedded, quantized by the online codebook and the resulting unit ids
are run-collapsed and rendered as "U<id> U<id> ...".

Every transcription also trains the codebook, so the unit inventory keeps
adapting to the speaker.
"""

import logging
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

import numpy as np
import yaml

from relaytive.analysis.quantizer import FrameQuantizer
from relaytive.analysis.unit_strings import collapse_repeats, format_unit_string, render_symbols
from relaytive.analysis.vad import VoiceActivityDetector
from relaytive.input.extractor import GuardedExtractor
from relaytive.models.features import CodebookSnapshot, PhoneticTranscription
from relaytive.models.frames import AudioWindow
from relaytive.models.results import TranscriptionStatistics
from relaytive.ui.diagnostics import DiagnosticsMonitor
from relaytive.config.config_loader import config


logger = logging.getLogger(__name__)


class PhoneticTranscriber:
    """Transcribes audio into run-collapsed unit id sequences.

    Attributes:
        extractor: Guarded embedding extractor used per frame
        quantizer: Online codebook shared with the rest of the pipeline
        vad: Voice activity detector used to find voiced spans
        frame_size: Samples per transcription frame
        hop_size: Samples between frames
        max_frames_per_segment: Cap on frames embedded per voiced span
        symbol_map: Optional unit-id to symbol table
        total_frames_processed: Frames successfully quantized so far
    """

    def __init__(
        self,
        extractor: GuardedExtractor,
        quantizer: FrameQuantizer,
        vad: Optional[VoiceActivityDetector] = None,
        diagnostics: Optional[DiagnosticsMonitor] = None,
        frame_size: Optional[int] = None,
        hop_size: Optional[int] = None,
        max_frames_per_segment: Optional[int] = None
    ):
        self.extractor = extractor
        self.quantizer = quantizer
        self.vad = vad or VoiceActivityDetector()
        self.diagnostics = diagnostics
        self.frame_size = frame_size if frame_size is not None else config.get('transcriber.frame_size', 320)
        self.hop_size = hop_size if hop_size is not None else config.get('transcriber.hop_size', 160)
        self.max_frames_per_segment = (
            max_frames_per_segment if max_frames_per_segment is not None else config.get('transcriber.max_frames_per_segment', 200)
        )
        self.symbol_map: Dict[int, str] = {}
        self.total_frames_processed = 0

        symbol_path = config.get('transcriber.symbol_map')
        if symbol_path:
            self.load_symbol_map(symbol_path)

    def load_symbol_map(self, source: Union[Mapping[int, str], str, Path]) -> int:
        """Load a unit-id to symbol table from a mapping or a YAML file.

        Returns:
            Number of entries loaded (0 if the file could not be read)
        """
        if isinstance(source, (str, Path)):
            try:
                with open(source, 'r') as f:
                    source = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Could not load symbol map from {source}: {e}")
                return 0
        self.symbol_map = {int(k): str(v) for k, v in dict(source).items()}
        logger.info(f"Loaded symbol map with {len(self.symbol_map)} entries")
        return len(self.symbol_map)

    def _frames(self, samples: np.ndarray):
        """Yield (offset, frame) pairs, capped at max_frames_per_segment."""
        count = 0
        for start in range(0, len(samples) - self.frame_size + 1, self.hop_size):
            if count >= self.max_frames_per_segment:
                break
            yield start, samples[start:start + self.frame_size]
            count += 1

    async def transcribe(self, window: AudioWindow) -> PhoneticTranscription:
        """Transcribe an utterance.

        Empty input, no voiced speech or a failing extractor all produce an
        empty transcription rather than an error.

        Args:
            window: Utterance audio

        Returns:
            PhoneticTranscription with no two adjacent equal unit ids
        """
        if window.is_empty:
            return PhoneticTranscription.empty()

        samples = np.asarray(window.samples, dtype=np.float32)
        segments = self.vad.process_buffer(samples)
        if self.diagnostics is not None and self.vad.latest_result is not None:
            self.diagnostics.record_vad(self.vad.latest_result)

        unit_ids: List[int] = []
        unit_times: List[float] = []

        for segment in segments:
            segment_window = window.slice(segment.start_time, segment.end_time)
            if len(segment_window.samples) <= self.frame_size:
                continue

            raw_ids: List[int] = []
            raw_times: List[float] = []
            for offset, frame in self._frames(segment_window.samples):
                windowed = frame * self.vad.window if len(self.vad.window) == len(frame) else frame
                outcome = await self.extractor.embed(
                    AudioWindow(samples=windowed.astype(np.float32), sample_rate=window.sample_rate)
                )
                if not outcome.ok:
                    if self.diagnostics is not None:
                        self.diagnostics.record_failure(outcome.failure, outcome.defect)
                    continue
                unit_id = self.quantizer.observe(outcome.embedding)
                if unit_id is None:
                    continue
                raw_ids.append(unit_id)
                raw_times.append(segment.start_time + offset / float(window.sample_rate))
                self.total_frames_processed += 1

            # Collapse against the running sequence so repeats across spans merge too
            for uid, t in zip(raw_ids, raw_times):
                if not unit_ids or unit_ids[-1] != uid:
                    unit_ids.append(uid)
                    unit_times.append(t)

        collapsed = collapse_repeats(unit_ids)
        transcription = PhoneticTranscription(
            unit_ids=collapsed,
            unit_string=format_unit_string(collapsed),
            readable_spelling=render_symbols(collapsed, self.symbol_map),
            unit_times=unit_times,
        )

        if self.diagnostics is not None:
            self.diagnostics.record_transcription(transcription)
            self.diagnostics.record_codebook(self.quantizer.statistics())

        logger.debug(
            f"Transcribed {window.duration:.2f}s into {len(collapsed)} units "
            f"from {len(segments)} voiced segments"
        )
        return transcription

    def statistics(self) -> TranscriptionStatistics:
        codebook = self.quantizer.statistics()
        return TranscriptionStatistics(
            total_frames_processed=self.total_frames_processed,
            active_clusters=codebook.active_clusters,
            cluster_utilization=codebook.utilization,
            cluster_purity=codebook.purity,
            has_symbol_mapping=bool(self.symbol_map),
        )

    def get_codebook(self) -> CodebookSnapshot:
        return self.quantizer.snapshot()

    def load_codebook(self, snapshot: CodebookSnapshot) -> bool:
        return self.quantizer.load_snapshot(snapshot)
