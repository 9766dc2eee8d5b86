"""
Rules Engine Normalizer Package
"""

from .event_normalizer import EventNormalizer, DEVICE_SEVERITY_CONFIDENCE

__all__ = ["EventNormalizer", "DEVICE_SEVERITY_CONFIDENCE"]
