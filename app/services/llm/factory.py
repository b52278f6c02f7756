from app.config import Settings
from app.services.llm.base import LLMProvider
from app.services.llm.gemini_provider import EmbeddingSink, GeminiProvider
from app.services.llm.openai_provider import OpenAIProvider


def build_provider(settings: Settings, embedding_sink: EmbeddingSink | None = None) -> LLMProvider:
    """Instantiate the backend selected by LLM_PROVIDER."""
    provider = settings.LLM_PROVIDER.strip().lower()
    if provider == "openai":
        return OpenAIProvider(
            api_key=settings.OPENAI_API_KEY,
            webhook_secret=settings.OPENAI_WEBHOOK_SECRET,
            chat_model=settings.OPENAI_CHAT_MODEL,
            embedding_model=settings.OPENAI_EMBEDDING_MODEL,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            embedding_dimensions=settings.EMBEDDING_DIMENSIONS,
        )
    if provider == "gemini":
        return GeminiProvider(
            api_key=settings.GEMINI_API_KEY,
            chat_model=settings.GEMINI_CHAT_MODEL,
            embedding_model=settings.GEMINI_EMBEDDING_MODEL,
            embedding_sink=embedding_sink,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            embedding_dimensions=settings.EMBEDDING_DIMENSIONS,
        )
    raise ValueError(f"Unknown LLM_PROVIDER: {settings.LLM_PROVIDER!r}")
