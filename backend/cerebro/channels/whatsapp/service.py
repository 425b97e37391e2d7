"""Servicios del canal WhatsApp vía Evolution API."""

from typing import Any

from pydantic import ValidationError

from cerebro.core.logging import get_logger, log_event
from cerebro.services.checkpoints import CheckpointEngine, InboundMessage

from .schemas import EvolutionWebhook

logger = get_logger("cerebro.channels.whatsapp")


def parse_inbound(payload: Any) -> InboundMessage | None:
    """Normaliza el payload de Evolution; retorna `None` si no trae un mensaje válido."""
    try:
        webhook = EvolutionWebhook.model_validate(payload)
    except ValidationError:
        return None
    data = webhook.data
    return InboundMessage(
        client_id=data.client_number,
        text=data.message.text if data.message else "",
        from_me=data.key.from_me,
        push_name=data.push_name,
    )


async def handle_incoming_message(payload: Any, engine: CheckpointEngine) -> str:
    """Resuelve el checkpoint pendiente del remitente, si existe."""
    message = parse_inbound(payload)
    if message is None:
        log_event(logger, "whatsapp.payload_ignored")
        return "ignored"

    log_event(
        logger,
        "whatsapp.message_received",
        client_phone=message.client_id,
        from_me=message.from_me,
        preview=message.text[:30],
    )
    result = engine.handle_inbound(message)
    if result is None:
        return "accepted"
    return "checkpoint_passed"
