"""
Basic probe: the identical request twice
"""
from ..prompts import PROMPTS
from .base import TwoCallProbe


class BasicProbe(TwoCallProbe):
    """Second identical call should be served largely from cache"""

    name = "basic"
    system_prompt = PROMPTS["large"]
    first_message = "Say hello."
    second_message = "Say hello."
