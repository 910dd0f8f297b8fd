"""
cachewatch - Continuous prompt caching monitor for OpenAI-compatible APIs
"""

__version__ = "1.0.0"
