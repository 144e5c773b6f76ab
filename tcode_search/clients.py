from __future__ import annotations

"""
External model clients: embedding services and the reasoning model.

Each client is a small object with an async method; stages receive them by
injection, so tests hand in fakes with the same shape. A collaborator with
no credentials is represented by a ``Disabled*`` client that raises
``ConfigurationAbsent``; ``bounded_call`` turns that into the stage fallback.
"""

import asyncio
import json
import os
import re
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import openai
from loguru import logger

from . import config
from .errors import ConfigurationAbsent, MalformedResponse


# -------------------------------------------------------------------
# Embeddings
# -------------------------------------------------------------------

class EmbeddingService:
    """``embed(text) -> vector``; ``embed_many`` is used for index builds."""

    name = "none"
    enabled = False

    async def embed(self, text: str) -> List[float]:
        raise NotImplementedError

    async def embed_many(self, texts: Sequence[str]) -> np.ndarray:
        vectors = [await self.embed(t) for t in texts]
        return np.asarray(vectors, dtype="float32")


class DisabledEmbeddingService(EmbeddingService):
    async def embed(self, text: str) -> List[float]:
        raise ConfigurationAbsent("no embedding service configured")


class OpenAIEmbeddingService(EmbeddingService):
    enabled = True

    def __init__(self, api_key: Optional[str] = None, model: str = config.OPENAI_EMBEDDING_MODEL, client=None):
        self.model = model
        self.name = f"openai:{model}"
        self.client = client or openai.AsyncOpenAI(api_key=api_key)

    async def embed(self, text: str) -> List[float]:
        resp = await self.client.embeddings.create(model=self.model, input=text)
        return [float(x) for x in resp.data[0].embedding]

    async def embed_many(self, texts: Sequence[str], batch_size: int = 256) -> np.ndarray:
        out: List[List[float]] = []
        for start in range(0, len(texts), batch_size):
            batch = list(texts[start : start + batch_size])
            resp = await self.client.embeddings.create(model=self.model, input=batch)
            out.extend([float(x) for x in d.embedding] for d in resp.data)
            logger.info("Embedded {}/{} texts", len(out), len(texts))
        return np.asarray(out, dtype="float32")


_ENCODER_CACHE: Dict[str, object] = {}


def _ensure_hf_env() -> None:
    for key, val in config.HF_ENV_VARS.items():
        if key not in os.environ:
            os.environ[key] = val


def load_local_encoder(model_name: str = config.BGE_ENCODER_MODEL):
    """Load (once per process) a SentenceTransformer encoder."""
    # torch is heavy; only pay for the import when a local encoder is used
    from sentence_transformers import SentenceTransformer

    model = _ENCODER_CACHE.get(model_name)
    if model is None:
        _ensure_hf_env()
        logger.info("Loading dense encoder model: {}", model_name)
        model = SentenceTransformer(model_name)
        _ENCODER_CACHE[model_name] = model
    return model


class SentenceTransformerEmbeddingService(EmbeddingService):
    """Local encoder; vectors are L2-normalised."""

    enabled = True

    def __init__(self, model_name: str = config.BGE_ENCODER_MODEL, model=None):
        self.model_name = model_name
        self.name = f"local:{model_name}"
        self._model = model

    def _encoder(self):
        if self._model is None:
            self._model = load_local_encoder(self.model_name)
        return self._model

    def _encode(self, texts: List[str]) -> np.ndarray:
        vecs = self._encoder().encode(
            texts,
            batch_size=64,
            convert_to_numpy=True,
            normalize_embeddings=True,
        )
        return np.asarray(vecs, dtype="float32")

    async def embed(self, text: str) -> List[float]:
        vecs = await asyncio.to_thread(self._encode, [text])
        return vecs[0].tolist()

    async def embed_many(self, texts: Sequence[str]) -> np.ndarray:
        return await asyncio.to_thread(self._encode, list(texts))


def build_embedding_service(settings: config.SearchSettings) -> EmbeddingService:
    backend = settings.embedding_backend
    if backend == "auto":
        backend = "openai" if settings.openai_api_key else "local"

    if backend == "openai":
        if not settings.openai_api_key:
            logger.info("EMBEDDING_BACKEND=openai but OPENAI_API_KEY is not set; semantic search disabled")
            return DisabledEmbeddingService()
        return OpenAIEmbeddingService(api_key=settings.openai_api_key, model=settings.embedding_model)
    if backend == "local":
        return SentenceTransformerEmbeddingService(settings.local_encoder_model)

    logger.info("Embedding backend '{}'; semantic search disabled", backend)
    return DisabledEmbeddingService()


# -------------------------------------------------------------------
# Reasoning model
# -------------------------------------------------------------------

class ReasoningModel:
    """``complete(system, user, json_mode) -> text``."""

    enabled = False

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        json_mode: bool = False,
        temperature: float = 0.3,
        max_tokens: int = 1000,
    ) -> str:
        raise NotImplementedError


class DisabledReasoningModel(ReasoningModel):
    async def complete(self, system_prompt, user_prompt, json_mode=False, temperature=0.3, max_tokens=1000) -> str:
        raise ConfigurationAbsent("no reasoning model configured")


class OpenAIReasoningModel(ReasoningModel):
    enabled = True

    def __init__(self, api_key: Optional[str] = None, model: str = config.OPENAI_CHAT_MODEL, client=None):
        self.model = model
        self.client = client or openai.AsyncOpenAI(api_key=api_key)

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        json_mode: bool = False,
        temperature: float = 0.3,
        max_tokens: int = 1000,
    ) -> str:
        kwargs: Dict[str, Any] = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs,
        )
        content = response.choices[0].message.content
        if not content:
            raise MalformedResponse("empty completion")
        return content


def build_reasoning_model(settings: config.SearchSettings) -> ReasoningModel:
    if not settings.openai_api_key:
        logger.info("OPENAI_API_KEY not set; expansion, rerank, judge and deep reasoning use fallbacks")
        return DisabledReasoningModel()
    return OpenAIReasoningModel(api_key=settings.openai_api_key, model=settings.chat_model)


_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_json_reply(text: str) -> Dict[str, Any]:
    """Decode a JSON object reply, tolerating markdown fences."""
    if not text:
        raise MalformedResponse("empty reply")
    cleaned = _FENCE_RE.sub("", text.strip())
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise MalformedResponse(f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedResponse(f"expected an object, got {type(data).__name__}")
    return data
