"""
TTL probe: request pairs separated by growing delays
"""
import logging

from ..core import ProbeResult, TTLDetails
from ..prompts import PROMPTS
from .base import PairedProbe, ProbeContext, format_delay

logger = logging.getLogger(__name__)


class TTLProbe(PairedProbe):
    """How long a cached prefix survives"""

    name = "ttl"
    message = "Test."

    async def run(self, ctx: ProbeContext) -> ProbeResult:
        result = self.new_result(ctx)
        details = TTLDetails()
        result.details = details
        polluted = False

        for delay in ctx.ttl_delays:
            label = format_delay(delay)
            logger.debug("%s: ttl pair with %s wait", ctx.model_id, label)
            entry, first_hit = await self.run_pair(ctx, result, label, PROMPTS["large"], self.message, delay)
            details.delays[label] = entry
            polluted = polluted or first_hit

        self.finish(result, list(details.delays.values()))
        result.success = result.failed_count == 0
        self.note_isolation(result, polluted, ctx)
        return result
