"""Reporte de estado del sistema y administración de instancias."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from cerebro.api.deps import get_engine, get_notifier, get_sweeper
from cerebro.core.logging import recent_logs
from cerebro.services.checkpoints import CheckpointEngine, InstanceNotFoundError
from cerebro.services.notifier import WorkflowNotifier
from cerebro.services.sweeper import RetentionSweeper

router = APIRouter(prefix="", tags=["status"])


def _humanize(seconds: float) -> str:
    if seconds % 3600 == 0:
        return f"{int(seconds // 3600)} horas"
    if seconds % 60 == 0:
        return f"{int(seconds // 60)} minutos"
    return f"{seconds:g} segundos"


@router.get("/status", summary="Estado completo del sistema")
async def system_status(
    engine: CheckpointEngine = Depends(get_engine),
    notifier: WorkflowNotifier = Depends(get_notifier),
    sweeper: RetentionSweeper = Depends(get_sweeper),
) -> dict[str, Any]:
    snapshot = engine.snapshot()
    conversations = [
        {
            "phone": item.client_id,
            "client_name": item.client_name,
            "instance": item.instance,
            "current_checkpoint": item.current_checkpoint,
            "waiting_for_response": item.waiting_for_response,
            "total_checkpoints_passed": item.total_checkpoints_passed,
            "status": item.status.value,
            "created_at": item.created_at,
            "last_activity": item.last_activity,
            "expires_at": item.expires_at,
        }
        for item in snapshot.conversations
    ]
    instance_stats = [
        {"instance": instance.name, "active": instance.active, **asdict(stats)}
        for instance, stats in snapshot.instances
    ]
    total_passed = sum(item["total_checkpoints_passed"] for item in conversations)
    checkpoint_stats = {
        "total_conversations_active": sum(1 for item in conversations if item["status"] == "active"),
        "waiting_for_response": sum(1 for item in conversations if item["waiting_for_response"]),
        "total_checkpoints_passed_today": snapshot.counters.checkpoints_passed_today,
        "timeouts_today": snapshot.counters.timeouts_today,
        "leads_today": snapshot.counters.leads_today,
        "avg_checkpoints_per_conversation": (
            round(total_passed / len(conversations), 1) if conversations else 0
        ),
    }
    return {
        "system_status": "online",
        "timestamp": snapshot.taken_at.isoformat(),
        "local_time": engine.local_time(snapshot.taken_at),
        "conversations": conversations,
        "instance_stats": instance_stats,
        "checkpoint_stats": checkpoint_stats,
        "counters": snapshot.counters.as_dict(),
        "recent_checkpoints": [asdict(entry) for entry in snapshot.recent_checkpoints],
        "system_logs": recent_logs.recent(100),
        "n8n_webhook_url": notifier.url,
        "config": {
            "checkpoint_timeout": _humanize(engine.checkpoint_timeout.total_seconds()),
            "data_retention": _humanize(sweeper.retention.total_seconds()),
            "cleanup_interval": _humanize(sweeper.interval.total_seconds()),
        },
    }


@router.post("/instances/{name}/block", summary="Bloquea una instancia de Evolution")
async def block_instance(name: str, engine: CheckpointEngine = Depends(get_engine)) -> dict[str, Any]:
    try:
        stats = engine.block_instance(name)
    except InstanceNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return {"success": True, "instance": name, "blocked": stats.blocked, "health_score": stats.health_score}
