"""
Chart patterns and historical analogs.
"""

from .signature import PatternSignature, generate_signature, signature_similarity
from .analog_miner import (
    AnalogMiner, AnalogMatch, AnalogOutcome, HistoricalAnalog, PatternDatabase,
)
from .detector import (
    PatternDetector, Pattern, DetectionResult, find_peaks, find_valleys,
    detect_double_top, detect_double_bottom, detect_head_and_shoulders,
    detect_triangle, detect_breakout, detect_gap,
)

__all__ = [
    # Signatures
    'PatternSignature',
    'generate_signature',
    'signature_similarity',

    # Analogs
    'AnalogMiner',
    'AnalogMatch',
    'AnalogOutcome',
    'HistoricalAnalog',
    'PatternDatabase',

    # Detector
    'PatternDetector',
    'Pattern',
    'DetectionResult',
    'find_peaks',
    'find_valleys',
    'detect_double_top',
    'detect_double_bottom',
    'detect_head_and_shoulders',
    'detect_triangle',
    'detect_breakout',
    'detect_gap',
]
