# services/fallback_chain.py
"""Ordered provider failover with per-attempt timeouts and a short-TTL availability cache"""
import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from docintel.config import settings
from docintel.core.domain import (
    CompletionOptions, CompletionResult, EmbeddingResult, Prompt, ProviderDescriptor,
    ProviderStatus,
)
from docintel.core.enums import Capability, ChainState, ProviderKind
from docintel.core.errors import AllProvidersUnavailable, ProviderFailure
from docintel.core.interfaces import IAIProvider

logger = logging.getLogger(settings.LOGGER_NAME)

T = TypeVar("T")


# ============ AVAILABILITY CACHE ============

@dataclass(frozen=True)
class _Observation:
    available: bool
    reason: Optional[str]
    checked_at: datetime
    stamp: float


class ProviderAvailabilityCache:
    """
    Last observed availability per provider, trusted for `ttl_seconds`.

    Only a hint: a stale "available" entry costs at most one failed attempt,
    after which the failure overwrites it. A fresh "unavailable" entry moves the
    provider to the back of the chain; it never removes it.
    """

    def __init__(self, ttl_seconds: float = settings.PROVIDER_STATUS_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, _Observation] = {}

    def record(self, name: str, available: bool, reason: Optional[str] = None) -> _Observation:
        entry = _Observation(
            available=available,
            reason=reason,
            checked_at=datetime.now(timezone.utc),
            stamp=self._clock(),
        )
        self._entries[name] = entry
        return entry

    def get(self, name: str) -> Optional[_Observation]:
        """Fresh observation or None."""
        entry = self._entries.get(name)
        if entry is None or self._clock() - entry.stamp > self.ttl_seconds:
            return None
        return entry

    def unavailable_reason(self, name: str) -> Optional[str]:
        entry = self.get(name)
        if entry is None or entry.available:
            return None
        return f"marked unavailable at {entry.checked_at.isoformat()}: {entry.reason}"


# ============ PER-OPERATION STATE ============

class ChainRun:
    """State of one embed/complete operation walking the chain."""

    def __init__(self, operation: str):
        self.operation = operation
        self.state = ChainState.NOT_STARTED
        self.current: Optional[str] = None
        self.attempts: List[str] = []
        self.failures: List[ProviderFailure] = []

    def skip(self, provider: str, reason: str) -> None:
        self.failures.append(ProviderFailure(provider, f"skipped: {reason}"))
        logger.debug(f"[CHAIN] {self.operation}: skipping {provider} ({reason})")

    def trying(self, provider: str) -> None:
        self.state = ChainState.TRYING if not self.attempts else ChainState.TRYING_NEXT
        self.current = provider
        self.attempts.append(provider)
        logger.debug(f"[CHAIN] {self.operation}: trying {provider}")

    def failed(self, provider: str, reason: str) -> None:
        self.failures.append(ProviderFailure(provider, reason))
        logger.warning(f"[CHAIN] {self.operation}: {provider} failed ({reason}), advancing")

    def succeeded(self, provider: str) -> None:
        self.state = ChainState.SUCCEEDED
        if len(self.attempts) > 1:
            logger.info(f"[CHAIN] {self.operation}: served by fallback provider {provider}")

    def exhausted(self) -> AllProvidersUnavailable:
        self.state = ChainState.ALL_FAILED
        self.current = None
        logger.error(f"[CHAIN] {self.operation}: all providers failed after {len(self.attempts)} attempts")
        return AllProvidersUnavailable(self.operation, self.failures)


# ============ CHAIN ============

class ProviderFallbackChain:
    """
    Tries providers in fixed priority order until one succeeds.

    Each provider gets exactly one attempt per operation, bounded by
    `timeout_seconds`. Providers that lack the capability or model, or cannot
    fit the prompt, are skipped. Providers recently seen failing are tried after
    the others, so every eligible provider is attempted before the chain gives
    up. Every call runs its own ChainRun; the availability cache is the only
    shared state.
    """

    def __init__(
        self,
        providers: List[IAIProvider],
        timeout_seconds: float = settings.PROVIDER_TIMEOUT_SECONDS,
        probe_timeout_seconds: float = settings.PROVIDER_PROBE_TIMEOUT_SECONDS,
        cache: Optional[ProviderAvailabilityCache] = None,
        local_first: bool = True,
    ):
        if local_first:
            # Stable: keeps configured priority within each kind
            providers = sorted(providers, key=lambda p: p.describe().kind != ProviderKind.LOCAL)
        self.providers = list(providers)
        self.timeout_seconds = timeout_seconds
        self.probe_timeout_seconds = probe_timeout_seconds
        self.cache = cache or ProviderAvailabilityCache()

    # ============ OPERATIONS ============

    async def embed(self, texts: List[str], model: str) -> EmbeddingResult:
        def ineligible(desc: ProviderDescriptor) -> Optional[str]:
            if not desc.supports(Capability.EMBED):
                return "embedding not supported"
            if not desc.serves_embedding_model(model):
                return f"does not serve embedding model '{model}'"
            return None

        return await self._run(
            "embed", ineligible, lambda provider: provider.embed(texts, model)
        )

    async def complete(self, prompt: Prompt, options: CompletionOptions) -> CompletionResult:
        prompt_tokens = prompt.estimated_tokens()

        def ineligible(desc: ProviderDescriptor) -> Optional[str]:
            if not desc.supports(Capability.COMPLETE):
                return "completion not supported"
            if desc.max_context_tokens and prompt_tokens > desc.max_context_tokens:
                return f"prompt of ~{prompt_tokens} tokens exceeds context of {desc.max_context_tokens}"
            return None

        return await self._run(
            "complete", ineligible, lambda provider: provider.complete(prompt, options)
        )

    async def _run(
        self,
        operation: str,
        ineligible: Callable[[ProviderDescriptor], Optional[str]],
        call: Callable[[IAIProvider], Awaitable[T]],
    ) -> T:
        run = ChainRun(operation)
        candidates: List[IAIProvider] = []
        deferred: List[IAIProvider] = []
        for provider in self.providers:
            desc = provider.describe()
            skip_reason = ineligible(desc)
            if skip_reason:
                run.skip(desc.name, skip_reason)
            elif self.cache.unavailable_reason(desc.name):
                logger.debug(f"[CHAIN] {operation}: {desc.name} recently failed, trying it last")
                deferred.append(provider)
            else:
                candidates.append(provider)

        for provider in candidates + deferred:
            desc = provider.describe()
            run.trying(desc.name)
            try:
                result = await asyncio.wait_for(call(provider), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                reason = f"timed out after {self.timeout_seconds}s"
            except Exception as e:
                reason = str(e) or e.__class__.__name__
            else:
                self.cache.record(desc.name, True)
                run.succeeded(desc.name)
                return result

            self.cache.record(desc.name, False, reason)
            run.failed(desc.name, reason)

        raise run.exhausted()

    # ============ STATUS ============

    async def status(self, refresh: bool = False) -> Dict[str, ProviderStatus]:
        """
        Availability of every provider in priority order.

        Fresh cache entries are reused unless `refresh` is set; the rest are probed
        concurrently without running a real operation.
        """

        async def check(provider: IAIProvider) -> ProviderStatus:
            desc = provider.describe()
            entry = None if refresh else self.cache.get(desc.name)
            if entry is None:
                try:
                    available = await asyncio.wait_for(provider.probe(), timeout=self.probe_timeout_seconds)
                    reason = None if available else "probe failed"
                except asyncio.TimeoutError:
                    available, reason = False, f"probe timed out after {self.probe_timeout_seconds}s"
                except Exception as e:
                    available, reason = False, str(e) or e.__class__.__name__
                entry = self.cache.record(desc.name, available, reason)

            return ProviderStatus(
                name=desc.name,
                kind=desc.kind,
                available=entry.available,
                capabilities=sorted(c.value for c in desc.capabilities),
                checked_at=entry.checked_at,
                reason=entry.reason,
            )

        statuses = await asyncio.gather(*(check(p) for p in self.providers))
        return {s.name: s for s in statuses}

    def describe(self) -> List[Dict[str, Any]]:
        """Fallback order with served models (no credentials)."""
        return [
            {
                "priority": index + 1,
                "name": desc.name,
                "kind": desc.kind.value,
                "capabilities": sorted(c.value for c in desc.capabilities),
                "embedding_models": dict(desc.embedding_models),
                "chat_models": list(desc.chat_models),
                "max_context_tokens": desc.max_context_tokens,
            }
            for index, desc in enumerate(p.describe() for p in self.providers)
        ]
