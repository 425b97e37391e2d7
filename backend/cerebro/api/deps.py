"""Dependencias compartidas por las rutas HTTP."""

from fastapi import Request

from cerebro.services.checkpoints import CheckpointEngine
from cerebro.services.notifier import WorkflowNotifier
from cerebro.services.sweeper import RetentionSweeper


def get_engine(request: Request) -> CheckpointEngine:
    """Retorna el motor de checkpoints asociado a la aplicación."""
    return request.app.state.engine


def get_notifier(request: Request) -> WorkflowNotifier:
    return request.app.state.notifier


def get_sweeper(request: Request) -> RetentionSweeper:
    return request.app.state.sweeper
