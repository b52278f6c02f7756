import logging
import re
import time
from typing import Awaitable, Callable

from google import genai
from google.genai import types

from app.services.llm.base import LLMProvider
from app.services.llm.prompts import (
    ANSWER_MESSAGE_FORMAT,
    ANSWER_MESSAGE_PROMPT,
    SUGGEST_CARTS_PROMPT,
    format_cart_request,
)
from app.services.llm.schemas import AnswerMessage, SuggestCarts

logger = logging.getLogger(__name__)

EmbeddingSink = Callable[[list[dict]], Awaitable[int]]

_FENCED_JSON = re.compile(r"```(?:json)?\s*\n(.*?)\n\s*```", re.DOTALL)


def extract_json_content(text: str) -> str:
    """Pull the JSON document out of a reply that may wrap it in a code fence."""
    match = _FENCED_JSON.search(text or "")
    if match:
        return match.group(1).strip()
    return (text or "").strip()


class GeminiProvider(LLMProvider):
    """generate_content backend. Every turn replays the whole conversation."""

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        chat_model: str = "gemini-2.5-flash",
        embedding_model: str = "gemini-embedding-exp-03-07",
        embedding_sink: EmbeddingSink | None = None,
        timeout: float = 30.0,
        embedding_dimensions: int = 1536,
    ):
        super().__init__(timeout=timeout, embedding_dimensions=embedding_dimensions)
        if not api_key:
            raise ValueError("GEMINI_API_KEY is required")
        self.chat_model = chat_model
        self.embedding_model = embedding_model
        self._embedding_sink = embedding_sink
        self._client = genai.Client(api_key=api_key)

    async def _complete_turn(self, message, prior_turn_ref, prior_messages):
        # No server-side state; prior_turn_ref is not needed here.
        contents = [
            types.Content(
                role="user" if item["role"] == "user" else "model",
                parts=[types.Part(text=item["content"])],
            )
            for item in prior_messages
        ]
        contents.append(types.Content(role="user", parts=[types.Part(text=message)]))

        response = await self._client.aio.models.generate_content(
            model=self.chat_model,
            contents=contents,
            config=types.GenerateContentConfig(
                system_instruction=ANSWER_MESSAGE_PROMPT + "\n" + ANSWER_MESSAGE_FORMAT,
                response_mime_type="application/json",
                response_json_schema=AnswerMessage.model_json_schema(),
            ),
        )
        return extract_json_content(response.text), self._turn_ref(response)

    async def _embed(self, text: str) -> list[float]:
        result = await self._client.aio.models.embed_content(
            model=self.embedding_model,
            contents=text,
            config=self._embed_config(),
        )
        if not result.embeddings:
            return []
        return result.embeddings[0].values or []

    async def _assemble_carts(self, candidates: list[dict], original_input: str):
        response = await self._client.aio.models.generate_content(
            model=self.chat_model,
            contents=format_cart_request(candidates, original_input),
            config=types.GenerateContentConfig(
                system_instruction=SUGGEST_CARTS_PROMPT,
                response_mime_type="application/json",
                response_json_schema=SuggestCarts.model_json_schema(),
            ),
        )
        return extract_json_content(response.text)

    async def _submit_batch_embedding(self, products: list[dict]) -> None:
        # Embeds inline and hands the vectors straight to the sink.
        if self._embedding_sink is None:
            raise RuntimeError("GeminiProvider needs an embedding sink to embed the catalog")

        result = await self._client.aio.models.embed_content(
            model=self.embedding_model,
            contents=[product["name"] for product in products],
            config=self._embed_config(),
        )
        records = []
        for product, embedding in zip(products, result.embeddings or []):
            if not embedding.values or len(embedding.values) != self.embedding_dimensions:
                logger.error(f"No usable embedding returned for product {product['id']}")
                continue
            records.append({"product_id": product["id"], "embedding": list(embedding.values)})

        saved = await self._embedding_sink(records)
        logger.info(f"Stored {saved} of {len(products)} product embeddings")

    async def _ingest_batch_result(self, raw_payload, headers):
        # Catalog embedding completes inline; there are no notifications to process.
        return None

    def _embed_config(self) -> types.EmbedContentConfig:
        return types.EmbedContentConfig(
            task_type="SEMANTIC_SIMILARITY",
            output_dimensionality=self.embedding_dimensions,
        )

    @staticmethod
    def _turn_ref(response) -> str:
        return response.response_id or f"gemini-{int(time.time() * 1000)}"
