"""Rutas consumidas por n8n para conducir conversaciones por checkpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from cerebro.api.deps import get_engine
from cerebro.services.checkpoints import CheckpointEngine
from cerebro.services.conversations import ConversationNotFoundError

router = APIRouter(prefix="", tags=["conversations"])


class StartConversationPayload(BaseModel):
    """Alta de una conversación para un lead nuevo."""

    client_phone: str = Field(..., min_length=1, description="Número del cliente sin sufijo de WhatsApp.")
    client_name: str | None = Field(default=None, description="Nombre para mostrar del cliente.")
    source: str = Field(default="ads", description="Origen del lead.")


class ActivateCheckpointPayload(BaseModel):
    """Activa un checkpoint y arma su timeout."""

    client_phone: str = Field(..., min_length=1)
    checkpoint_id: str = Field(..., min_length=1)
    message: str | None = Field(default=None, description="Mensaje enviado al cliente en este paso.")
    step_data: Any = Field(default=None, description="Datos opacos del paso del flujo.")
    timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Tiempo para responder; usa el valor configurado cuando se omite.",
    )


class CompleteConversationPayload(BaseModel):
    client_phone: str = Field(..., min_length=1)


class CheckpointStatusResponse(BaseModel):
    success: bool = True
    client_phone: str
    client_name: str
    current_checkpoint: str | None
    waiting_for_response: bool
    total_checkpoints_passed: int
    last_activity: datetime
    expires_at: datetime
    instance: str
    instance_apikey: str | None
    status: str


def _not_found(exc: ConversationNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@router.post("/start-conversation", summary="Inicia una conversación y asigna instancia")
async def start_conversation(
    payload: StartConversationPayload,
    engine: CheckpointEngine = Depends(get_engine),
) -> dict[str, Any]:
    started = engine.start_conversation(
        payload.client_phone, payload.client_name, source=payload.source
    )
    conversation = started.conversation
    body: dict[str, Any] = {
        "success": True,
        "status": "created" if started.created else "existing",
        "client_phone": conversation.client_id,
        "instance": conversation.instance,
        "instance_apikey": started.instance_api_key,
        "current_checkpoint": conversation.current_checkpoint,
    }
    if started.created:
        body["conversation_id"] = f"conv_{int(conversation.created_at.timestamp() * 1000)}"
    return body


@router.post("/activate-checkpoint", summary="Activa un checkpoint para el cliente")
async def activate_checkpoint(
    payload: ActivateCheckpointPayload,
    engine: CheckpointEngine = Depends(get_engine),
) -> dict[str, Any]:
    try:
        conversation = engine.activate(
            payload.client_phone,
            payload.checkpoint_id,
            payload.timeout_seconds,
            message=payload.message,
            step_data=payload.step_data,
        )
    except ConversationNotFoundError as exc:
        raise _not_found(exc) from exc
    return {
        "success": True,
        "checkpoint": payload.checkpoint_id,
        "client": payload.client_phone,
        "expires_at": conversation.expires_at.isoformat(),
    }


@router.post("/complete-conversation", summary="Marca la conversación como concluida")
async def complete_conversation(
    payload: CompleteConversationPayload,
    engine: CheckpointEngine = Depends(get_engine),
) -> dict[str, Any]:
    try:
        conversation = engine.complete_conversation(payload.client_phone)
    except ConversationNotFoundError as exc:
        raise _not_found(exc) from exc
    return {"success": True, "client": conversation.client_id, "status": conversation.status.value}


@router.get(
    "/checkpoint-status/{client_phone}",
    response_model=CheckpointStatusResponse,
    summary="Estado del checkpoint de un cliente",
)
async def checkpoint_status(
    client_phone: str,
    engine: CheckpointEngine = Depends(get_engine),
) -> CheckpointStatusResponse:
    try:
        conversation = engine.get_conversation(client_phone)
    except ConversationNotFoundError as exc:
        raise _not_found(exc) from exc
    return CheckpointStatusResponse(
        client_phone=conversation.client_id,
        client_name=conversation.client_name,
        current_checkpoint=conversation.current_checkpoint,
        waiting_for_response=conversation.waiting_for_response,
        total_checkpoints_passed=conversation.total_checkpoints_passed,
        last_activity=conversation.last_activity,
        expires_at=conversation.expires_at,
        instance=conversation.instance,
        instance_apikey=engine.pool.api_key(conversation.instance),
        status=conversation.status.value,
    )
