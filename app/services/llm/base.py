import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, TypeVar

from pydantic import BaseModel, ValidationError

from app.errors import MarketplaceError, ProviderError
from app.services.llm.schemas import AnswerMessage, SuggestCarts, SuggestCartsAction

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


@dataclass
class ProposedAction:
    type: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class TurnResult:
    reply_text: str
    proposed_action: ProposedAction | None
    turn_ref: str


class LLMProvider(ABC):
    """Contract every language-model backend implements.

    Subclasses only talk to their SDK through the `_`-prefixed hooks. The public
    methods add what must hold for every backend: a bounded timeout per call,
    SDK failures surfaced as `ProviderError`, schema validation of structured
    output and the embedding size check.

    Callers always pass both the continuity handle and the full prior history;
    a backend uses whichever its API needs.
    """

    name = "llm"

    def __init__(self, timeout: float = 30.0, embedding_dimensions: int = 1536):
        self.timeout = timeout
        self.embedding_dimensions = embedding_dimensions

    # -- Public contract --

    async def complete_turn(
        self,
        message: str,
        prior_turn_ref: str | None = None,
        prior_messages: list[dict] | None = None,
    ) -> TurnResult:
        """Answer one user message. `prior_messages` items are `{"content", "role"}`."""
        raw, turn_ref = await self._guard(
            "complete_turn",
            self._complete_turn(message, prior_turn_ref, list(prior_messages or [])),
        )
        answer = self._validate(AnswerMessage, raw, "turn reply")

        proposed = None
        if isinstance(answer.action, SuggestCartsAction):
            proposed = ProposedAction(
                type=answer.action.type,
                payload=answer.action.payload.model_dump(),
            )
        return TurnResult(reply_text=answer.message, proposed_action=proposed, turn_ref=turn_ref)

    async def embed(self, text: str) -> list[float]:
        vector = await self._guard("embed", self._embed(text))
        if not vector or len(vector) != self.embedding_dimensions:
            size = len(vector) if vector else 0
            raise ProviderError(
                f"{self.name} returned an embedding of size {size}, "
                f"expected {self.embedding_dimensions}"
            )
        return [float(x) for x in vector]

    async def assemble_carts(self, candidates: list[dict], original_input: str) -> SuggestCarts:
        """Ask the model for per-store carts built only from `candidates`."""
        raw = await self._guard("assemble_carts", self._assemble_carts(candidates, original_input))
        suggestion = self._validate(SuggestCarts, raw, "cart suggestion")
        check_carts_against_candidates(suggestion, candidates)
        return suggestion

    async def submit_batch_embedding(self, products: list[dict]) -> None:
        """Register an asynchronous embedding job for `[{"id", "name"}]` products."""
        if not products:
            return
        await self._guard("submit_batch_embedding", self._submit_batch_embedding(products))

    async def ingest_batch_result(self, raw_payload: str, headers: dict[str, str]) -> list[dict] | None:
        """Turn a completion notification into `[{"product_id", "embedding"}]`.

        None means the notification is not something this backend acts on.
        """
        return await self._guard(
            "ingest_batch_result",
            self._ingest_batch_result(raw_payload, headers),
        )

    async def close(self) -> None:
        """Release SDK resources. Backends without any keep the default."""

    # -- Backend hooks --

    @abstractmethod
    async def _complete_turn(
        self,
        message: str,
        prior_turn_ref: str | None,
        prior_messages: list[dict],
    ) -> tuple[Any, str]:
        """Return the raw structured reply (JSON text, dict or model) and its turn handle."""

    @abstractmethod
    async def _embed(self, text: str) -> list[float]: ...

    @abstractmethod
    async def _assemble_carts(self, candidates: list[dict], original_input: str) -> Any: ...

    @abstractmethod
    async def _submit_batch_embedding(self, products: list[dict]) -> None: ...

    @abstractmethod
    async def _ingest_batch_result(self, raw_payload: str, headers: dict[str, str]) -> list[dict] | None: ...

    # -- Helpers --

    async def _guard(self, operation: str, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.warning(f"{self.name}.{operation} timed out after {self.timeout}s")
            raise ProviderError(f"{self.name} {operation} timed out") from exc
        except MarketplaceError:
            raise
        except Exception as exc:
            logger.exception(f"{self.name}.{operation} failed")
            raise ProviderError(f"{self.name} {operation} failed") from exc

    def _validate(self, model: type[M], raw: Any, what: str) -> M:
        try:
            if isinstance(raw, (str, bytes)):
                return model.model_validate_json(raw)
            if isinstance(raw, BaseModel):
                raw = raw.model_dump()
            return model.model_validate(raw)
        except ValidationError as exc:
            logger.warning(f"{self.name} returned an invalid {what}: {exc}")
            raise ProviderError(f"{self.name} returned an invalid {what}") from exc


def check_carts_against_candidates(suggestion: SuggestCarts, candidates: list[dict]) -> None:
    """Reject carts that reference a store or product that was never offered."""
    offered = {
        group["store_id"]: {product["id"] for product in group["products"]}
        for group in candidates
    }
    for cart in suggestion.carts:
        if cart.store_id not in offered:
            raise ProviderError(f"Cart references unknown store {cart.store_id}")
        unknown = sorted(p.id for p in cart.products if p.id not in offered[cart.store_id])
        if unknown:
            raise ProviderError(
                f"Cart for store {cart.store_id} references products outside the candidates: {unknown}"
            )
