"""
Partial cache probe: shared system prompt, different user messages
"""
from ..prompts import PROMPTS
from .base import TwoCallProbe


class PartialCacheProbe(TwoCallProbe):
    name = "partial_cache"
    system_prompt = PROMPTS["large"]
    first_message = "What is 2+2?"
    second_message = "What is 3+3?"
    note = "Different user messages - tests system prompt caching"
