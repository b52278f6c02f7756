from fastapi import APIRouter, Depends, Query, Request
from app.dependencies import get_db_path, get_provider
from app.errors import WebhookVerificationError
from app.models.schemas import EmbeddingSubmission, WebhookAck
from app.services import embeddings
from app.services.llm.base import LLMProvider

router = APIRouter(tags=["catalog"])


@router.post("/api/catalog/embeddings", response_model=EmbeddingSubmission, status_code=202)
async def submit_catalog_embeddings(
    limit: int = Query(default=500, ge=1, le=5000),
    db_path: str = Depends(get_db_path),
    provider: LLMProvider = Depends(get_provider),
):
    submitted = await embeddings.submit_missing_embeddings(db_path, provider, limit=limit)
    return EmbeddingSubmission(submitted=submitted)


@router.post("/webhooks/openai", response_model=WebhookAck)
async def openai_webhook(
    request: Request,
    db_path: str = Depends(get_db_path),
    provider: LLMProvider = Depends(get_provider),
):
    # Signature verification needs the body exactly as it was sent.
    try:
        raw_body = (await request.body()).decode("utf-8")
    except UnicodeDecodeError as exc:
        raise WebhookVerificationError("Webhook body is not valid UTF-8") from exc
    saved = await embeddings.ingest_notification(db_path, provider, raw_body, dict(request.headers))
    return WebhookAck(saved=saved)
