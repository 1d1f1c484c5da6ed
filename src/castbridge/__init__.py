"""
castbridge - Google Cast discovery, stereo pair routing and audio delivery
"""

__version__ = "1.0.0"
