import json
import logging

import httpx
from openai import AsyncOpenAI, InvalidWebhookSignatureError

from app.errors import WebhookVerificationError
from app.services.llm.base import LLMProvider
from app.services.llm.prompts import (
    ANSWER_MESSAGE_PROMPT,
    SUGGEST_CARTS_PROMPT,
    format_cart_request,
)
from app.services.llm.schemas import AnswerMessage, SuggestCarts

logger = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """Responses API backend. Conversation continuity rides on `previous_response_id`."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        webhook_secret: str | None = None,
        chat_model: str = "gpt-4.1-nano",
        embedding_model: str = "text-embedding-3-small",
        timeout: float = 30.0,
        embedding_dimensions: int = 1536,
    ):
        super().__init__(timeout=timeout, embedding_dimensions=embedding_dimensions)
        if not api_key:
            raise ValueError("OPENAI_API_KEY is required")
        self.chat_model = chat_model
        self.embedding_model = embedding_model
        self._http = httpx.AsyncClient(timeout=timeout)
        self._client = AsyncOpenAI(
            api_key=api_key,
            webhook_secret=webhook_secret or None,
            http_client=self._http,
            max_retries=0,
        )

    async def _complete_turn(self, message, prior_turn_ref, prior_messages):
        # History lives server-side; prior_messages is not needed here.
        extra = {"previous_response_id": prior_turn_ref} if prior_turn_ref else {}
        response = await self._client.responses.parse(
            model=self.chat_model,
            instructions=ANSWER_MESSAGE_PROMPT,
            input=message,
            text_format=AnswerMessage,
            **extra,
        )
        logger.debug(f"Turn reply {response.id}: {response.output_parsed}")
        return response.output_parsed, response.id

    async def _embed(self, text: str) -> list[float]:
        response = await self._client.embeddings.create(
            model=self.embedding_model,
            input=text,
        )
        return response.data[0].embedding

    async def _assemble_carts(self, candidates: list[dict], original_input: str):
        response = await self._client.responses.parse(
            model=self.chat_model,
            instructions=SUGGEST_CARTS_PROMPT,
            input=format_cart_request(candidates, original_input),
            text_format=SuggestCarts,
        )
        return response.output_parsed

    async def _submit_batch_embedding(self, products: list[dict]) -> None:
        jsonl_content = "\n".join(
            json.dumps({
                "custom_id": str(product["id"]),
                "method": "POST",
                "url": "/v1/embeddings",
                "body": {"model": self.embedding_model, "input": product["name"]},
            })
            for product in products
        )
        uploaded = await self._client.files.create(
            file=("products.jsonl", jsonl_content.encode("utf-8"), "application/jsonl"),
            purpose="batch",
        )
        logger.info(f"Uploaded batch input file: {uploaded.id}")

        batch = await self._client.batches.create(
            input_file_id=uploaded.id,
            endpoint="/v1/embeddings",
            completion_window="24h",
        )
        logger.info(f"Created embedding batch {batch.id} for {len(products)} products")

    async def _ingest_batch_result(self, raw_payload: str, headers: dict[str, str]) -> list[dict] | None:
        try:
            event = self._client.webhooks.unwrap(raw_payload, headers)
        except InvalidWebhookSignatureError as exc:
            raise WebhookVerificationError("Invalid webhook signature") from exc

        if event.type != "batch.completed":
            logger.info(f"Ignoring webhook event {event.type}")
            return None

        batch = await self._client.batches.retrieve(event.data.id)
        if not batch.output_file_id:
            logger.warning(f"Batch {batch.id} has no output file")
            return None

        content = await self._client.files.content(batch.output_file_id)
        return parse_embedding_batch_output(content.text)

    async def close(self) -> None:
        await self._client.close()
        await self._http.aclose()


def parse_embedding_batch_output(text: str) -> list[dict]:
    """Parse a Batch API output file of embedding requests, skipping failed lines."""
    records = []
    for line in text.splitlines():
        if not line.strip():
            continue
        data = json.loads(line)
        body = (data.get("response") or {}).get("body") or {}
        items = body.get("data") or []
        if not items:
            logger.warning(f"No embedding in batch output for custom_id {data.get('custom_id')}")
            continue
        records.append({
            "product_id": int(data["custom_id"]),
            "embedding": items[0]["embedding"],
        })
    return records
