# services/provider_registry.py
"""Builds the provider fallback chain from configuration"""
import importlib
import logging
from typing import Dict, List, Optional, Tuple

from docintel.config import Settings, settings
from docintel.core.interfaces import IAIProvider
from docintel.services.fallback_chain import ProviderAvailabilityCache, ProviderFallbackChain

logger = logging.getLogger(settings.LOGGER_NAME)

# provider name -> (module, class). Imported lazily so an unused backend's
# dependencies (e.g. torch for sentence-transformers) are never loaded.
PROVIDER_CLASSES: Dict[str, Tuple[str, str]] = {
    "ollama": ("docintel.infrastructure.ai_providers", "OllamaProvider"),
    "openai": ("docintel.infrastructure.ai_providers", "OpenAIProvider"),
    "gemini": ("docintel.infrastructure.ai_providers", "GeminiProvider"),
    "sentence_transformers": ("docintel.infrastructure.embedding_services", "SentenceTransformerProvider"),
}


def _is_enabled(name: str, config: Settings) -> bool:
    if name == "ollama":
        return config.OLLAMA_ENABLED
    if name == "sentence_transformers":
        return config.SENTENCE_TRANSFORMERS_ENABLED
    if name == "openai":
        return bool(config.OPENAI_API_KEY)
    if name == "gemini":
        return bool(config.GEMINI_API_KEY)
    return True


def create_provider(name: str) -> IAIProvider:
    """
    Instantiate a provider by its configured name.

    Raises:
        ValueError: If the name is unknown or its class cannot be imported.
    """
    key = name.strip().lower()
    if key not in PROVIDER_CLASSES:
        raise ValueError(f"Unsupported AI provider specified: '{name}'")

    module_name, class_name = PROVIDER_CLASSES[key]
    try:
        module = importlib.import_module(module_name)
        provider_class = getattr(module, class_name)
    except (ImportError, AttributeError) as e:
        raise ValueError(f"Cannot load AI provider '{name}': {e}")

    provider = provider_class()
    logger.debug(f"Instantiated AI provider: {key}")
    return provider


def build_providers(config: Settings = settings) -> List[IAIProvider]:
    """Providers in configured priority order, skipping disabled or unconfigured ones."""
    providers = []
    for name in config.PROVIDER_PRIORITY:
        if not _is_enabled(name, config):
            logger.info(f"AI provider '{name}' disabled or not configured, leaving it out of the chain")
            continue
        providers.append(create_provider(name))
    if not providers:
        logger.warning("No AI providers configured; every embed/complete call will fail")
    return providers


def build_chain(config: Settings = settings,
                providers: Optional[List[IAIProvider]] = None) -> ProviderFallbackChain:
    chain = ProviderFallbackChain(
        providers if providers is not None else build_providers(config),
        timeout_seconds=config.PROVIDER_TIMEOUT_SECONDS,
        probe_timeout_seconds=config.PROVIDER_PROBE_TIMEOUT_SECONDS,
        cache=ProviderAvailabilityCache(config.PROVIDER_STATUS_TTL_SECONDS),
    )
    order = " -> ".join(p.describe().name for p in chain.providers) or "(empty)"
    logger.info(f"AI provider fallback order: {order}")
    return chain
