"""
tunefetch: a concurrent track downloader.

Fetches tracks from several source platforms, reconciles metadata from
independent providers and writes tagged audio files, many tracks at a time.
"""

__version__ = "0.4.0"
