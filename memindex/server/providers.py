"""Hosted embedding providers for memindex-server."""

import logging

logger = logging.getLogger(__name__)


class VoyageEmbed:
    """Embedding provider using Voyage AI."""

    def __init__(self, api_key: str, model: str = "voyage-3-lite"):
        import voyageai
        self._client = voyageai.Client(api_key=api_key)
        self._model = model

    def embed(self, text: str) -> list[float]:
        result = self._client.embed([text], model=self._model, input_type="document")
        return result.embeddings[0]

    def embed_query(self, text: str) -> list[float]:
        result = self._client.embed([text], model=self._model, input_type="query")
        return result.embeddings[0]


class OpenAIEmbed:
    """Embedding provider using OpenAI's API. `dims` shortens text-embedding-3 vectors server-side."""

    def __init__(self, api_key: str, model: str = "text-embedding-3-small", dims: int | None = None):
        from openai import OpenAI
        self._client = OpenAI(api_key=api_key)
        self._model = model
        self._dims = dims

    def embed(self, text: str) -> list[float]:
        kwargs = {"input": text, "model": self._model}
        if self._dims:
            kwargs["dimensions"] = self._dims
        response = self._client.embeddings.create(**kwargs)
        return response.data[0].embedding

    def embed_query(self, text: str) -> list[float]:
        return self.embed(text)


def create_embed(provider: str, api_key: str = "", model: str = "", base_url: str = "", dims: int = 768):
    """Factory for embedding providers."""
    if provider == "ollama":
        from memindex.providers.ollama import OllamaEmbed
        kwargs = {"dims": dims}
        if model:
            kwargs["model"] = model
        if base_url:
            kwargs["base_url"] = base_url
        return OllamaEmbed(**kwargs)
    elif provider == "voyage":
        return VoyageEmbed(api_key=api_key, model=model or "voyage-3-lite")
    elif provider == "openai":
        return OpenAIEmbed(api_key=api_key, model=model or "text-embedding-3-small", dims=dims)
    else:
        raise ValueError(f"Unknown embed provider: {provider}. Use 'ollama', 'voyage', or 'openai'.")
