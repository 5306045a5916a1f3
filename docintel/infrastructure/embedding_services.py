# infrastructure/embedding_services.py
"""In-process embedding provider with L2 normalization for consistent cosine scoring"""
import asyncio
import logging
from typing import Dict, List

import numpy as np
from sentence_transformers import SentenceTransformer

from docintel.config import settings
from docintel.core.domain import (
    CompletionOptions, CompletionResult, EmbeddingResult, Prompt, ProviderDescriptor,
)
from docintel.core.enums import Capability, ProviderKind
from docintel.core.errors import ProviderError
from docintel.core.interfaces import IAIProvider

logger = logging.getLogger(settings.LOGGER_NAME)


class SentenceTransformerProvider(IAIProvider):
    """
    Local sentence-transformers model, embedding only.

    No egress cost and no network dependency once the model is cached. Vectors
    are L2-normalized so that cosine similarity equals the dot product.
    """

    _models: Dict[str, SentenceTransformer] = {}  # Shared per model name

    def __init__(self, model_name: str = settings.SENTENCE_TRANSFORMERS_MODEL,
                 dimension: int = settings.SENTENCE_TRANSFORMERS_DIMENSION,
                 name: str = "sentence_transformers"):
        self.model_name = model_name
        self.dimension = dimension
        self._name = name
        self._descriptor = ProviderDescriptor(
            name=name,
            kind=ProviderKind.LOCAL,
            capabilities=frozenset({Capability.EMBED}),
            embedding_models={model_name: dimension},
            chat_models=[],
            max_context_tokens=0,
        )

    def describe(self) -> ProviderDescriptor:
        return self._descriptor

    def _load_model(self) -> SentenceTransformer:
        """Loads the heavy model only once per process."""
        model = SentenceTransformerProvider._models.get(self.model_name)
        if model is not None:
            return model

        try:
            logger.info(f"Attempting to load model {self.model_name} from local cache...")
            model = SentenceTransformer(self.model_name, local_files_only=True)
            logger.info(f"Successfully loaded {self.model_name} from local cache.")
        except Exception as e:
            logger.warning(
                f"Model {self.model_name} not found in cache. Attempting online download. "
                f"This may take a few minutes. Error: {e}"
            )
            model = SentenceTransformer(self.model_name)
            logger.info(f"Successfully downloaded and loaded {self.model_name}.")

        SentenceTransformerProvider._models[self.model_name] = model
        return model

    @staticmethod
    def _l2_normalize(arr: np.ndarray) -> np.ndarray:
        """
        L2 normalize vectors to unit length (||v|| = 1).

        Args:
            arr: (N, D) array of N vectors with D dimensions

        Returns:
            (N, D) array of unit-normalized vectors
        """
        norms = np.linalg.norm(arr, axis=1, keepdims=True)
        norms[norms == 0] = 1e-12  # Avoid division by zero
        return arr / norms

    async def embed(self, texts: List[str], model: str) -> EmbeddingResult:
        if model != self.model_name:
            raise ProviderError(f"{self._name} does not serve embedding model '{model}'")

        encoder = await asyncio.to_thread(self._load_model)
        raw = await asyncio.to_thread(encoder.encode, texts, convert_to_tensor=False)
        normalized = self._l2_normalize(np.array(raw, dtype="float32").reshape(len(texts), -1))

        if normalized.shape[1] != self.dimension:
            raise ProviderError(
                f"{self.model_name} produced {normalized.shape[1]} dimensions, "
                f"declared {self.dimension}"
            )
        return EmbeddingResult(
            vectors=normalized.tolist(),
            model=self.model_name,
            provider=self._name,
            dimension=self.dimension,
        )

    async def complete(self, prompt: Prompt, options: CompletionOptions) -> CompletionResult:
        raise ProviderError(f"{self._name} cannot generate completions")

    async def probe(self) -> bool:
        """Available once the model can be loaded; loading is cached afterwards."""
        try:
            await asyncio.to_thread(self._load_model)
            return True
        except Exception as e:
            logger.warning(f"[PROBE] {self._name} unavailable: {e}")
            return False
