"""Embedding extraction backends and guards"""

from relaytive.input.extractor import (
    GuardedExtractor,
    MelEmbeddingExtractor,
    create_extractor,
    peak_normalize,
    prepare_window,
)

__all__ = [
    "GuardedExtractor",
    "MelEmbeddingExtractor",
    "create_extractor",
    "peak_normalize",
    "prepare_window",
]
