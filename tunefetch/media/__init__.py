"""
Media Processing Layer.

This package owns the contract with the external extraction tool, metadata
tagging, and output integrity validation.
"""

from .extractor import Extractor
from .tagger import Tagger

__all__ = ["Extractor", "Tagger"]
