"""Action handler registry — maps an action kind to an async handler.

Rules and automations name an action kind ("daily_summary", "device_command",
...); the registry resolves it to a coroutine function. Unknown kinds are a
ValidationError rather than a silent no-op.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from aura.errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionContext:
    """What the handler knows about the firing rule/automation."""

    source_id: str
    source_name: str
    fired_at: datetime
    device_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ActionResult:
    success: bool
    message: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


ActionHandler = Callable[[dict[str, Any], ActionContext], Awaitable[ActionResult]]


class ActionRegistry:
    """Registry of action handlers keyed by action kind."""

    def __init__(self):
        self._handlers: dict[str, ActionHandler] = {}

    def register(self, kind: str, handler: ActionHandler, replace: bool = False):
        """Register ``handler`` for ``kind``.

        Raises:
            ValueError: kind already registered and ``replace`` is False.
        """
        if kind in self._handlers and not replace:
            raise ValueError(f"Action handler {kind} already registered")
        self._handlers[kind] = handler
        logger.debug("Registered action handler: %s", kind)

    def kinds(self) -> list[str]:
        return sorted(self._handlers)

    def has(self, kind: str) -> bool:
        return kind in self._handlers

    async def execute(self, kind: str, params: dict[str, Any], context: ActionContext) -> ActionResult:
        handler = self._handlers.get(kind)
        if handler is None:
            raise ValidationError(f"unknown action kind {kind!r}")
        return await handler(params, context)
