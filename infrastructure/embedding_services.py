# infrastructure/embedding_services.py
"""Embedding generation with L2 normalization for consistent similarity scoring"""
import asyncio
import logging
from typing import List, Optional

import numpy as np
from sentence_transformers import SentenceTransformer

from config import settings
from core.errors import EmbeddingFailed
from core.interfaces import IEmbeddingService
from utils.vectors import l2_normalize

logger = logging.getLogger(settings.LOGGER_NAME)


class SentenceTransformerEmbedding(IEmbeddingService):
    """
    Sentence transformer producing unit vectors.

    With ||v|| = 1 cosine similarity is a plain dot product, so chunk and
    query embeddings can be compared with one threshold everywhere.
    The model is loaded once per instance; the app keeps one instance on
    its state.
    """

    def __init__(self, model_name: Optional[str] = None, batch_size: Optional[int] = None):
        self.model_name = model_name or settings.EMBEDDING_MODEL_NAME
        self.batch_size = batch_size or settings.EMBEDDING_BATCH_SIZE
        self.model = self._load_model(self.model_name)

    @staticmethod
    def _load_model(model_name: str) -> SentenceTransformer:
        try:
            logger.info(f"[EMBED] Attempting to load model {model_name} from local cache...")
            model = SentenceTransformer(model_name, local_files_only=True)
            logger.info(f"[EMBED] Successfully loaded {model_name} from local cache.")
        except Exception as e:
            logger.warning(
                f"[EMBED] Model {model_name} not found in cache. Attempting online download. "
                f"This may take a few minutes. Error: {e}"
            )
            model = SentenceTransformer(model_name)
            logger.info(f"[EMBED] Successfully downloaded and loaded {model_name}.")
        return model

    async def embed_many(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        try:
            raw = await asyncio.to_thread(
                self.model.encode,
                texts,
                batch_size=self.batch_size,
                convert_to_tensor=False,
            )
        except Exception as e:
            logger.error(f"[EMBED] Failed to embed {len(texts)} texts: {e}", exc_info=True)
            raise EmbeddingFailed() from e

        normalized = l2_normalize(np.array(raw, dtype="float32").reshape(len(texts), -1))
        return normalized.tolist()

    async def embed(self, text: str) -> List[float]:
        embeddings = await self.embed_many([text])
        return embeddings[0]
