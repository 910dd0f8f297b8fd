"""
Prompt sizes probe: one request pair per prompt size
"""
from ..core import ProbeResult, SizesDetails
from ..prompts import PROMPT_SIZES, PROMPTS
from .base import PairedProbe, ProbeContext


class PromptSizesProbe(PairedProbe):
    """Shows the prompt length at which a provider starts caching"""

    name = "prompt_sizes"
    message = "Hi."

    async def run(self, ctx: ProbeContext) -> ProbeResult:
        result = self.new_result(ctx)
        details = SizesDetails()
        result.details = details
        polluted = False

        for size in PROMPT_SIZES:
            entry, first_hit = await self.run_pair(
                ctx, result, size, PROMPTS[size], self.message, ctx.delay_between_requests
            )
            details.sizes[size] = entry
            polluted = polluted or first_hit

        self.finish(result, list(details.sizes.values()))
        result.success = result.failed_count == 0 and len(details.sizes) == len(PROMPT_SIZES)
        self.note_isolation(result, polluted, ctx)
        return result
