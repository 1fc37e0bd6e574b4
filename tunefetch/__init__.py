"""
tunefetch: turns media URLs into tagged MP3 files through a supervised job engine.
"""

__version__ = "1.0.0"
