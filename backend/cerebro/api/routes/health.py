"""Endpoint de salud mínimo para validaciones rápidas."""
from fastapi import APIRouter, Depends

from cerebro.api.deps import get_sweeper
from cerebro.services.sweeper import RetentionSweeper

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", summary="Estado del servicio")
def healthcheck(sweeper: RetentionSweeper = Depends(get_sweeper)) -> dict[str, str | bool]:
    """Indica que la API está viva y si el barrido de retención está corriendo."""
    return {"status": "ok", "sweeper_running": sweeper.running}
