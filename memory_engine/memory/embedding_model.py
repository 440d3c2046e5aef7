"""In-process embedding model bootstrap.

Architectural role:
    Provides a single shared `SentenceTransformer` instance for the
    `sentence_transformers` embedding provider. The loader decides CPU vs CUDA
    execution once and reuses the initialized model across subsequent calls.

Design intent:
    - Keep model initialization centralized and lazy (no import cost unless the
      provider is selected).
    - Apply a conservative VRAM gate before enabling GPU execution.
"""

import asyncio
import logging
import os
import threading

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

EMBED_MODEL = os.getenv("SENTENCE_TRANSFORMER_MODEL", "intfloat/multilingual-e5-small")
_model = None
_model_lock = threading.Lock()


def has_enough_vram(min_required_mb: int = 800) -> bool:
    """Return whether enough free GPU memory is available for embeddings.

    Args:
        min_required_mb: Minimum required free VRAM in megabytes.

    Returns:
        `True` when CUDA is available and free VRAM exceeds the threshold.
    """
    import torch

    if not torch.cuda.is_available():
        return False

    free_mem, _total_mem = torch.cuda.mem_get_info()
    free_mb = free_mem / 1024 / 1024

    logger.info("Free VRAM: %.0f MB", free_mb)

    return free_mb > min_required_mb


def get_model(model_name: str = EMBED_MODEL):
    """Return the process-wide `SentenceTransformer`, loading it on first use.

    The first caller picks the device; later callers get the same instance
    whatever `model_name` they pass. A failed CUDA probe falls back to CPU.
    """
    global _model

    with _model_lock:
        if _model is not None:
            return _model

        logger.info("Loading embedding model %s", model_name)

        try:
            use_gpu = has_enough_vram()
        except Exception:
            logger.warning("CUDA probe failed, using CPU embeddings", exc_info=True)
            use_gpu = False

        if not use_gpu:
            os.environ["CUDA_VISIBLE_DEVICES"] = ""

        from sentence_transformers import SentenceTransformer

        device = "cuda" if use_gpu else "cpu"
        _model = SentenceTransformer(model_name, device=device)
        logger.info("Embedding model loaded on %s", device.upper())

        return _model


class SentenceTransformerEmbeddingsClient:
    """Embeddings client backed by the shared in-process model."""

    def __init__(self, model_name: str = EMBED_MODEL):
        self.model = model_name

    def _encode(self, text: str) -> list[float]:
        model = get_model(self.model)
        vector = model.encode([text], normalize_embeddings=True)[0]
        return [float(v) for v in vector]

    async def embed(self, text: str) -> list[float]:
        return await asyncio.to_thread(self._encode, text)
