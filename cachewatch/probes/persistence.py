"""
Persistence probe: N identical requests in a row
"""
from ..core import PersistenceDetails, ProbeResult, cache_hit_rate
from ..prompts import PROMPTS
from .base import BaseProbe, ProbeContext


class PersistenceProbe(BaseProbe):
    """Cache should keep holding across repeated requests; the last one decides"""

    name = "persistence"
    message = "Count."

    async def run(self, ctx: ProbeContext) -> ProbeResult:
        result = self.new_result(ctx)
        details = PersistenceDetails()
        result.details = details
        total = max(1, ctx.persistence_requests)
        polluted = False

        for attempt in range(1, total + 1):
            outcome = await self.send(ctx, PROMPTS["large"], self.message)
            outcome.attempt = attempt
            details.requests.append(outcome)
            if outcome.failed:
                result.record_call_error(attempt, outcome)
            elif attempt == 1 and outcome.usage.cached_tokens > 0:
                polluted = True
            await ctx.sleep(ctx.delay_between_requests)

        failed = len(result.errors)
        result.attempted_count = total
        result.failed_count = failed
        result.success = failed == 0
        if failed:
            result.error = f"{failed} of {total} attempts failed"

        last = details.requests[-1]
        if not last.failed:
            result.caching_observed = last.usage.cached_tokens > 0
            result.cache_hit_rate = cache_hit_rate(last.usage)

        self.note_isolation(result, polluted, ctx)
        return result
