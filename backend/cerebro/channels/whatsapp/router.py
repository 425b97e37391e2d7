"""Endpoints del canal WhatsApp (Evolution API)."""

import json

from fastapi import APIRouter, Depends, Request

from cerebro.api.deps import get_engine
from cerebro.services.checkpoints import CheckpointEngine

from . import service

router = APIRouter(prefix="/whatsapp", tags=["whatsapp"])


@router.post("/webhook", summary="Webhook de recepción de Evolution")
async def whatsapp_webhook(
    request: Request,
    engine: CheckpointEngine = Depends(get_engine),
) -> dict[str, str]:
    """Procesa mensajes entrantes; siempre responde 200 para que Evolution no reintente."""
    body = await request.body()
    try:
        payload = json.loads(body) if body else None
    except ValueError:
        payload = None
    result = await service.handle_incoming_message(payload, engine)
    return {"status": result}
