"""Device / Automation Registry — single writer for device state and automations.

Devices and automations live in an in-memory map mirroring the ``devices``
and ``automations`` tables. Every mutation persists first and commits to
memory only after the store accepted it. Device state updates are
serialized per device id; after a committed update the registered state
listeners (the rule engine's device-trigger check) run before the call
returns.
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import Any

from aura.automation.models import Automation, Device, DeviceStatus, InteractionType, parse_enum
from aura.automation.triggers import DeviceTrigger
from aura.errors import NotFoundError, NotInitializedError, ValidationError
from aura.hub.constants import (
    EVENT_AUTOMATION_CHANGED,
    EVENT_DEVICE_STATE_CHANGED,
    MODULE_REGISTRY,
    SOURCE_SYSTEM,
    USAGE_COMMAND,
)
from aura.hub.core import AutomationHub, Module
from aura.modules.context_store import ContextStore

StateListener = Callable[[Device], Awaitable[Any]]


class DeviceRegistry(Module):
    """Authoritative device and automation map for the bound user."""

    def __init__(self, hub: AutomationHub, context: ContextStore):
        super().__init__(MODULE_REGISTRY, hub)
        self.context = context
        self._devices: dict[str, Device] = {}
        self._automations: dict[str, Automation] = {}
        self._device_locks: dict[str, asyncio.Lock] = {}
        self._automation_lock = asyncio.Lock()
        self._listeners: list[StateListener] = []
        self._initialized = False

    async def initialize(self):
        """Load devices and automations from storage; malformed records are skipped."""
        self.logger.info("Device registry initializing...")
        user_id = self.context.user_id

        devices = {}
        for raw in await self.hub.store.list_devices(user_id):
            try:
                device = Device.from_dict(raw)
            except ValidationError as e:
                self.logger.warning("Skipping stored device %s: %s", raw.get("id"), e)
                continue
            devices[device.id] = device

        automations = {}
        for raw in await self.hub.store.list_automations(user_id):
            try:
                automation = Automation.from_dict(raw)
            except ValidationError as e:
                self.logger.warning("Skipping stored automation %s: %s", raw.get("id"), e)
                continue
            automations[automation.id] = automation

        self._devices = devices
        self._automations = automations
        self._initialized = True
        self.logger.info("Loaded %d devices and %d automations", len(devices), len(automations))

    async def shutdown(self):
        self._initialized = False

    def add_state_listener(self, listener: StateListener):
        """Register an async callback run after every committed state update."""
        self._listeners.append(listener)

    def _require_initialized(self):
        if not self._initialized:
            raise NotInitializedError("Device registry not initialized")

    def _lock_for(self, device_id: str) -> asyncio.Lock:
        lock = self._device_locks.get(device_id)
        if lock is None:
            lock = self._device_locks[device_id] = asyncio.Lock()
        return lock

    # ── Devices ─────────────────────────────────────────────────────────

    async def add_device(self, data: dict[str, Any]) -> Device:
        """Register a new device.

        Raises:
            ValidationError: malformed record or duplicate id
        """
        self._require_initialized()
        device = Device.from_dict(data)
        async with self._lock_for(device.id):
            if device.id in self._devices:
                raise ValidationError(f"device {device.id!r} already exists")
            await self.hub.store.upsert_device(self.context.user_id, device.to_dict())
            self._devices[device.id] = device
        self.logger.info("Added device %s (%s)", device.id, device.type)
        return device.copy()

    async def update_device_state(
        self, device_id: str, state: dict[str, Any], source: str | None = None
    ) -> Device:
        """Merge ``state`` into the device's state. The only device-state write path.

        ``source`` tags the audit interaction; writes made by the core itself
        pass SOURCE_SYSTEM so pattern mining and usage counts skip them.

        Device-triggered automations are evaluated against the committed
        state before this returns.

        Raises:
            NotInitializedError: registry not initialized
            NotFoundError: unknown device id
            PersistenceError / UpstreamTimeoutError: store rejected the write
        """
        self._require_initialized()
        if not isinstance(state, dict):
            raise ValidationError("device state update must be a mapping")

        async with self._lock_for(device_id):
            current = self._devices.get(device_id)
            if current is None:
                raise NotFoundError(f"unknown device {device_id!r}")
            updated = replace(current, state={**current.state, **state})
            await self.hub.store.upsert_device(self.context.user_id, updated.to_dict())
            self._devices[device_id] = updated
            previous_state = dict(current.state)

        metadata = {"device_id": device_id, "device_type": updated.type.value, "state": dict(state)}
        if source:
            metadata["source"] = source
        try:
            await self.context.record(
                InteractionType.COMMAND_EXECUTION, {"command": f"set {device_id}", "device_id": device_id}, metadata
            )
            if source != SOURCE_SYSTEM:
                await self.context.record_usage(USAGE_COMMAND, {"command": f"set {device_id}"})
        except Exception as e:
            self.logger.warning("State of %s committed but audit interaction failed: %s", device_id, e)

        snapshot = updated.copy()
        for listener in list(self._listeners):
            try:
                await listener(snapshot)
            except Exception as e:
                self.logger.error("State listener failed for %s: %s", device_id, e)

        await self.hub.publish(
            EVENT_DEVICE_STATE_CHANGED,
            {"device_id": device_id, "previous": previous_state, "state": dict(updated.state)},
        )
        return snapshot

    async def set_device_status(self, device_id: str, status: str) -> Device:
        self._require_initialized()
        new_status = parse_enum(DeviceStatus, status, "device status")
        async with self._lock_for(device_id):
            current = self._devices.get(device_id)
            if current is None:
                raise NotFoundError(f"unknown device {device_id!r}")
            updated = replace(current, status=new_status, state=dict(current.state))
            await self.hub.store.upsert_device(self.context.user_id, updated.to_dict())
            self._devices[device_id] = updated
        return updated.copy()

    async def remove_device(self, device_id: str):
        self._require_initialized()
        async with self._lock_for(device_id):
            if device_id not in self._devices:
                raise NotFoundError(f"unknown device {device_id!r}")
            await self.hub.store.delete_device(self.context.user_id, device_id)
            del self._devices[device_id]
        self._device_locks.pop(device_id, None)
        self.logger.info("Removed device %s", device_id)

    def get_devices(self, device_type: str | None = None) -> list[Device]:
        """Copies of registered devices, optionally filtered by type."""
        return [d.copy() for d in self._devices.values() if device_type is None or d.type == device_type]

    def get_device(self, device_id: str) -> Device | None:
        device = self._devices.get(device_id)
        return device.copy() if device else None

    # ── Automations ─────────────────────────────────────────────────────

    async def create_automation(self, data: dict[str, Any]) -> Automation:
        """Validate, persist and register an automation.

        A missing id is generated. Raises ValidationError on malformed
        definitions or a duplicate id.
        """
        self._require_initialized()
        data = dict(data)
        data.setdefault("id", f"automation_{uuid.uuid4().hex[:12]}")
        automation = Automation.from_dict(data)

        async with self._automation_lock:
            if automation.id in self._automations:
                raise ValidationError(f"automation {automation.id!r} already exists")
            await self.hub.store.upsert_automation(self.context.user_id, automation.to_dict())
            self._automations[automation.id] = automation

        self.logger.info("Created automation %s (%s)", automation.id, automation.name)
        await self.hub.publish(EVENT_AUTOMATION_CHANGED, {"id": automation.id, "change": "created"})
        return automation

    async def toggle_automation(self, automation_id: str, enabled: bool) -> Automation:
        """Enable or disable an automation.

        Raises:
            NotFoundError: unknown automation id
        """
        self._require_initialized()
        async with self._automation_lock:
            current = self._automations.get(automation_id)
            if current is None:
                raise NotFoundError(f"unknown automation {automation_id!r}")
            updated = replace(current, enabled=bool(enabled))
            await self.hub.store.upsert_automation(self.context.user_id, updated.to_dict())
            self._automations[automation_id] = updated

        await self.hub.publish(
            EVENT_AUTOMATION_CHANGED, {"id": automation_id, "change": "enabled" if enabled else "disabled"}
        )
        return updated

    async def replace_automation(self, automation_id: str, data: dict[str, Any]) -> Automation:
        """Swap the whole definition of an existing automation (id preserved)."""
        self._require_initialized()
        automation = Automation.from_dict({**data, "id": automation_id})
        async with self._automation_lock:
            if automation_id not in self._automations:
                raise NotFoundError(f"unknown automation {automation_id!r}")
            await self.hub.store.upsert_automation(self.context.user_id, automation.to_dict())
            self._automations[automation_id] = automation

        await self.hub.publish(EVENT_AUTOMATION_CHANGED, {"id": automation_id, "change": "replaced"})
        return automation

    async def delete_automation(self, automation_id: str):
        self._require_initialized()
        async with self._automation_lock:
            if automation_id not in self._automations:
                raise NotFoundError(f"unknown automation {automation_id!r}")
            await self.hub.store.delete_automation(self.context.user_id, automation_id)
            del self._automations[automation_id]
        await self.hub.publish(EVENT_AUTOMATION_CHANGED, {"id": automation_id, "change": "deleted"})

    def get_automations(self) -> list[Automation]:
        return list(self._automations.values())

    def get_automation(self, automation_id: str) -> Automation | None:
        return self._automations.get(automation_id)

    def find_automation_by_name(self, name: str) -> Automation | None:
        for automation in self._automations.values():
            if automation.name == name:
                return automation
        return None

    def device_automations(self, device_id: str) -> list[Automation]:
        """Enabled automations triggered by ``device_id``."""
        return [
            a
            for a in self._automations.values()
            if a.enabled and isinstance(a.trigger, DeviceTrigger) and a.trigger.device_id == device_id
        ]
