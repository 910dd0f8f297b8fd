"""
cachewatch - Probe infrastructure
Base classes shared by every cache probe
"""
import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

from ..api import ChatRequest
from ..core import (
    ISOLATION_ENABLED_NOTE,
    POLLUTION_WARNING,
    BasicDetails,
    CallOutcome,
    PairEntry,
    ProbeResult,
    cache_hit_rate,
)


@dataclass
class ProbeContext:
    """Everything a probe needs to talk to one model"""
    model_id: str
    caller: Any
    max_tokens: int = 50
    cache_control_placement: str = "system"
    delay_between_requests: float = 3.0
    request_timeout: float = 30.0
    persistence_requests: int = 3
    ttl_delays: Sequence[float] = (5.0, 30.0)
    isolation_token: Optional[str] = None
    correlation_id: Optional[str] = None
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    @classmethod
    def from_config(cls, config, model_id: str, caller, isolation_token: Optional[str] = None,
                    sleep=asyncio.sleep) -> 'ProbeContext':
        return cls(
            model_id=model_id,
            caller=caller,
            max_tokens=config.max_tokens,
            cache_control_placement=config.cache_control_placement,
            delay_between_requests=config.delay_between_requests,
            request_timeout=config.request_timeout,
            persistence_requests=config.persistence_requests,
            ttl_delays=config.ttl_delays,
            isolation_token=isolation_token if config.inject_isolation_token else None,
            correlation_id=isolation_token,
            sleep=sleep,
        )


def format_delay(seconds: float) -> str:
    """Label used for TTL delays, e.g. 5 -> "5s", 2.5 -> "2.5s" """
    return f"{seconds:g}s"


def mean(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


class BaseProbe(ABC):
    """Base class for all probes"""

    name: str = ""

    async def send(self, ctx: ProbeContext, system_prompt: str, user_message: str) -> CallOutcome:
        request = ChatRequest(
            model_id=ctx.model_id,
            system_prompt=system_prompt,
            user_message=user_message,
            max_tokens=ctx.max_tokens,
            cache_control_placement=ctx.cache_control_placement,
            isolation_token=ctx.isolation_token,
            correlation_id=ctx.correlation_id,
        )
        return await ctx.caller.call(request, ctx.request_timeout)

    def new_result(self, ctx: ProbeContext) -> ProbeResult:
        return ProbeResult(probe_name=self.name, model_id=ctx.model_id, isolation_token=ctx.isolation_token)

    @staticmethod
    def note_isolation(result: ProbeResult, polluted: bool, ctx: ProbeContext):
        if polluted:
            result.isolation_note = POLLUTION_WARNING
        elif ctx.isolation_token:
            result.isolation_note = ISOLATION_ENABLED_NOTE

    @abstractmethod
    async def run(self, ctx: ProbeContext) -> ProbeResult:
        """Execute the probe against ctx.model_id"""


class TwoCallProbe(BaseProbe):
    """Same system prompt twice; the second call's cache ratio is the verdict"""

    system_prompt: str = ""
    first_message: str = ""
    second_message: str = ""
    note: Optional[str] = None

    async def run(self, ctx: ProbeContext) -> ProbeResult:
        result = self.new_result(ctx)
        details = BasicDetails(kind=self.name)
        result.details = details

        first = await self.send(ctx, self.system_prompt, self.first_message)
        details.first_request = first
        if first.failed:
            result.error = first.error
            result.error_kind = first.error_kind
            return result

        polluted = first.usage.cached_tokens > 0
        await ctx.sleep(ctx.delay_between_requests)

        second = await self.send(ctx, self.system_prompt, self.second_message)
        details.second_request = second
        if second.failed:
            result.error = second.error
            result.error_kind = second.error_kind
            if polluted:
                result.isolation_note = POLLUTION_WARNING
            return result

        result.success = True
        result.caching_observed = second.usage.cached_tokens > 0
        result.cache_hit_rate = cache_hit_rate(second.usage)
        details.note = self.note
        self.note_isolation(result, polluted, ctx)
        return result


class PairedProbe(BaseProbe):
    """Several request pairs, each judged by its second call"""

    async def run_pair(self, ctx: ProbeContext, result: ProbeResult, label: str,
                       system_prompt: str, message: str, wait: float) -> Tuple[PairEntry, bool]:
        """Run one pair; returns the entry and whether its first call hit the cache"""
        first = await self.send(ctx, system_prompt, message)
        if first.failed:
            result.record_call_error(label, first)
            return PairEntry(first_request=first, error=first.error), False

        polluted = first.usage.cached_tokens > 0
        await ctx.sleep(wait)

        second = await self.send(ctx, system_prompt, message)
        if second.failed:
            result.record_call_error(label, second)
            return PairEntry(first_request=first, second_request=second, error=second.error), polluted

        entry = PairEntry(
            first_request=first,
            second_request=second,
            tokens=second.usage.prompt_tokens,
            cached=second.usage.cached_tokens,
            rate=cache_hit_rate(second.usage),
        )
        return entry, polluted

    @staticmethod
    def finish(result: ProbeResult, entries: List[PairEntry]):
        attempted = sum(1 for entry in entries for _ in entry.iter_requests())
        failed = len(result.errors)
        rates = [e.rate for e in entries if not e.failed]
        result.attempted_count = attempted
        result.failed_count = failed
        result.caching_observed = any(e.cached > 0 for e in entries if not e.failed)
        result.cache_hit_rate = mean(rates)
        if failed:
            result.error = f"{failed} of {attempted} attempts failed"
