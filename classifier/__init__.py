"""
Deed Classifier Package

Suggests whether a natural-language deed description is good or bad, using
an LLM when one is configured and a keyword heuristic otherwise.
"""

from .deed_classifier import DeedClassifier, DeedClassification

__all__ = [
    "DeedClassifier",
    "DeedClassification",
]
