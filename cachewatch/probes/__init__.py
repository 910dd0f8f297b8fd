"""
cachewatch probes
Each probe sends a small fixed sequence of requests to one model and
decides from the usage counters whether prompt caching took effect
"""
from typing import Dict, List, Sequence

from ..core import PROBE_NAMES
from .base import BaseProbe, ProbeContext
from .basic import BasicProbe
from .partial_cache import PartialCacheProbe
from .persistence import PersistenceProbe
from .prompt_sizes import PromptSizesProbe
from .ttl import TTLProbe

PROBES: Dict[str, BaseProbe] = {
    probe.name: probe
    for probe in (BasicProbe(), PromptSizesProbe(), PartialCacheProbe(), PersistenceProbe(), TTLProbe())
}


def get_probes(names: Sequence[str] = PROBE_NAMES) -> List[BaseProbe]:
    """Enabled probes in their fixed execution order"""
    unknown = set(names) - set(PROBES)
    if unknown:
        raise KeyError(f"Unknown probes: {', '.join(sorted(unknown))}")
    return [PROBES[name] for name in PROBE_NAMES if name in names]


__all__ = [
    "BaseProbe",
    "ProbeContext",
    "BasicProbe",
    "PromptSizesProbe",
    "PartialCacheProbe",
    "PersistenceProbe",
    "TTLProbe",
    "PROBES",
    "get_probes",
]
