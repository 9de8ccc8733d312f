"""Signal analysis modules: voice activity, quantization and unit strings"""

from relaytive.analysis.vad import VoiceActivityDetector
from relaytive.analysis.quantizer import FrameQuantizer
from relaytive.analysis.unit_strings import string_distance

__all__ = [
    'VoiceActivityDetector',
    'FrameQuantizer',
    'string_distance',
]
