"""Ejecución de trabajo desacoplado de la respuesta HTTP."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import BackgroundTasks

from app.core.logging import get_logger

logger = get_logger("app.tasks")


async def _guarded(label: str, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> None:
    start = time.perf_counter()
    try:
        await func(*args, **kwargs)
    except Exception:
        logger.exception(
            "task.failed",
            extra={"task": label, "duration_ms": round((time.perf_counter() - start) * 1000, 2)},
        )
        return
    logger.debug(
        "task.completed",
        extra={"task": label, "duration_ms": round((time.perf_counter() - start) * 1000, 2)},
    )


def run_detached(
    background_tasks: BackgroundTasks,
    label: str,
    func: Callable[..., Awaitable[Any]],
    *args: Any,
    **kwargs: Any,
) -> None:
    """Agenda `func` para después de enviar la respuesta.

    El resultado sólo queda en logs: cualquier excepción se registra con la
    etiqueta `label` y nunca llega al cliente que ya recibió su respuesta.
    """
    background_tasks.add_task(_guarded, label, func, *args, **kwargs)
