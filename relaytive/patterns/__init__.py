"""Pattern discovery, validation, matching and scheduling"""

from relaytive.patterns.discovery import (
    DiscoveryOutcome,
    PatternDiscoveryConfig,
    PatternMiner,
    derive_meaning,
)
from relaytive.patterns.validator import PatternValidator, ValidationReport
from relaytive.patterns.matcher import CompositionalMatchingConfig, PatternMatcher
from relaytive.patterns.report import PatternQualityReport, analyze_pattern_quality
from relaytive.patterns.scheduler import DiscoveryScheduler, PatternLibrary

__all__ = [
    # Discovery
    'DiscoveryOutcome',
    'PatternDiscoveryConfig',
    'PatternMiner',
    'derive_meaning',
    # Validation
    'PatternValidator',
    'ValidationReport',
    # Matching
    'CompositionalMatchingConfig',
    'PatternMatcher',
    # Reporting
    'PatternQualityReport',
    'analyze_pattern_quality',
    # Scheduling
    'DiscoveryScheduler',
    'PatternLibrary',
]
