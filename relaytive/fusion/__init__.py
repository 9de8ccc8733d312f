"""Classification and resolution of utterances into caregiver meanings"""

from relaytive.fusion.classifier import NearestCentroidClassifier
from relaytive.fusion.resolution import ResolutionPolicy

__all__ = [
    'NearestCentroidClassifier',
    'ResolutionPolicy',
]
