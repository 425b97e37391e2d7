"""Cliente del webhook de n8n que recibe los eventos de checkpoints."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx

from cerebro.core.config import settings
from cerebro.core.logging import get_logger, log_event

logger = get_logger(__name__)

USER_AGENT = "Cerebro-Multi-Checkpoint/1.0"


class NotifierError(RuntimeError):
    """Falla de entrega hacia n8n; nunca se propaga fuera del notificador."""


@dataclass(slots=True)
class NotifyResult:
    success: bool
    status: int | None = None
    data: Any = None
    error: str | None = None


class WorkflowNotifier:
    """Envía eventos a n8n con entrega best-effort.

    `dispatch` agenda el envío como tarea asíncrona sin esperar el resultado;
    `notify` hace el POST y traduce cualquier falla a un `NotifyResult`.
    """

    def __init__(
        self,
        url: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url or settings.n8n_webhook_url
        self._timeout = timeout if timeout is not None else settings.notifier_timeout_seconds
        self._transport = transport
        self._pending: set[asyncio.Task[NotifyResult]] = set()

    @property
    def url(self) -> str:
        return self._url

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._url, headers=headers, json=payload)
        except httpx.InvalidURL as exc:
            raise NotifierError(f"URL inválida para n8n: {exc}") from exc
        except httpx.HTTPError as exc:
            raise NotifierError(f"Error de red al notificar n8n: {exc}") from exc

        if response.status_code >= 400:
            raise NotifierError(f"HTTP {response.status_code}: {response.reason_phrase}")
        return response

    async def notify(self, event_type: str, payload: dict[str, Any]) -> NotifyResult:
        log_event(logger, "notifier.sending", event_type=event_type)
        try:
            response = await self._post(payload)
        except NotifierError as exc:
            logger.error(
                "notifier.failed",
                extra={"event_type": event_type, "error": str(exc), "client_phone": payload.get("client_phone")},
            )
            return NotifyResult(success=False, error=str(exc))

        try:
            data = response.json()
        except ValueError:
            data = response.text or None
        log_event(logger, "notifier.sent", event_type=event_type, status=response.status_code)
        return NotifyResult(success=True, status=response.status_code, data=data)

    def dispatch(self, event_type: str, payload: dict[str, Any]) -> asyncio.Task[NotifyResult]:
        """Agenda `notify` en el event loop actual sin esperar su resultado."""
        task = asyncio.get_running_loop().create_task(self.notify(event_type, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Espera las notificaciones pendientes (usado al apagar el servicio)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
