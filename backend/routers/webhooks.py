# routers/webhooks.py — Inbound provider webhooks
# Flow: headers -> repository identity -> integration lookup ->
# signature check with that integration's secret -> normalize -> reconcile.
# Nothing is written before the signature has been verified.
import json
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from board_store import BoardStore
from database import get_db_session
from dependencies import get_broadcaster, get_github_client
from errors import AuthenticationError, NotFoundError, ValidationError
from github_client import GitHubClient
from github_events import extract_repository, normalize
from integration_registry import IntegrationRegistry, parse_provider
from realtime import BroadcastSink
from reconciler import BoardReconciler
from signatures import verify_signature

router = APIRouter(tags=["Webhooks"])
logger = logging.getLogger("taskforge.webhooks")

EVENT_HEADER = "X-GitHub-Event"
DELIVERY_HEADER = "X-GitHub-Delivery"
SIGNATURE_HEADER = "X-Hub-Signature-256"


def _decode_body(raw_body: bytes) -> dict:
    try:
        payload = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        raise ValidationError("Request body is not valid JSON", code="invalid_json")
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object", code="invalid_json")
    return payload


@router.post("/webhooks/{provider}")
async def receive_webhook(
    provider: str,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    sink: BroadcastSink = Depends(get_broadcaster),
    github: GitHubClient = Depends(get_github_client),
):
    """Handle one webhook delivery; answers ``{received, processed}``."""
    raw_body = await request.body()
    event_type = request.headers.get(EVENT_HEADER)
    delivery_id = request.headers.get(DELIVERY_HEADER)
    signature = request.headers.get(SIGNATURE_HEADER)

    if not event_type or not delivery_id:
        logger.warning(f"Webhook rejected: missing event or delivery header (provider={provider})")
        raise ValidationError("Missing event or delivery headers", code="missing_headers")
    if not signature:
        logger.warning(f"Webhook rejected: missing signature delivery={delivery_id}")
        raise AuthenticationError("Missing signature", code="missing_signature")

    parse_provider(provider)
    payload = _decode_body(raw_body)
    try:
        owner, name = extract_repository(payload)
    except ValidationError as e:
        logger.warning(f"Webhook rejected: {e.message} field={e.field} delivery={delivery_id}")
        raise

    registry = IntegrationRegistry(db)
    integration = await registry.find_by_repo(provider, owner, name)
    if integration is None:
        logger.warning(f"Webhook for unknown repository {owner}/{name} delivery={delivery_id}")
        raise NotFoundError("Integration not found", code="integration_not_found")

    if not verify_signature(raw_body, signature, integration.webhook_secret or ""):
        logger.warning(f"Invalid signature for {integration.full_name} delivery={delivery_id}")
        raise AuthenticationError("Invalid signature")

    try:
        event = normalize(event_type, payload)
    except ValidationError as e:
        logger.warning(
            f"Malformed {event_type} payload field={e.field} delivery={delivery_id}: {e.message}"
        )
        raise

    logger.info(f"Webhook {event_type} for {integration.full_name} delivery={delivery_id}")
    reconciler = BoardReconciler(BoardStore(db), sink, github)
    result = await reconciler.reconcile(event, integration)
    return {"received": True, "processed": result.processed}
