"""RPC method registry: maps JSON-RPC method names to controller calls."""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import TYPE_CHECKING, Any

from chatbridge.infra.browser.platforms import supported_platforms
from chatbridge.infra.rpc.serialization import jsonable, serialize_event, serialize_profile

if TYPE_CHECKING:
    from chatbridge.context import AppContext

logger = logging.getLogger(__name__)


class MethodRegistry:
    """Dispatch table mapping RPC method names to controller calls."""

    def __init__(self, ctx: AppContext) -> None:
        self._ctx = ctx
        self._methods: dict[str, Any] = {}
        self._register_all()

    def _register_all(self) -> None:
        # Server
        self._methods["server.ping"] = self._server_ping
        self._methods["server.status"] = self._server_status

        # Conversation
        self._methods["conversation.start"] = self._conversation_start
        self._methods["conversation.stop"] = self._conversation_stop
        self._methods["conversation.continue"] = self._conversation_continue
        self._methods["conversation.state"] = self._conversation_state
        self._methods["conversation.history"] = self._conversation_history
        self._methods["conversation.clear_history"] = self._conversation_clear_history
        self._methods["conversation.update_config"] = self._conversation_update_config
        self._methods["conversation.ask"] = self._conversation_ask

        # Agents (pool and tab-side reports)
        self._methods["agent.register"] = self._agent_register
        self._methods["agent.remove"] = self._agent_remove
        self._methods["agent.list"] = self._agent_list
        self._methods["agent.check_availability"] = self._agent_check_availability
        self._methods["agent.update_availability"] = self._agent_update_availability
        self._methods["agent.check_registration"] = self._agent_check_registration
        self._methods["agent.response"] = self._agent_response
        self._methods["agent.closed"] = self._agent_closed

        # Participant slots
        self._methods["participant.assign"] = self._participant_assign
        self._methods["participant.release"] = self._participant_release
        self._methods["participant.add_slot"] = self._participant_add_slot
        self._methods["participant.reorder"] = self._participant_reorder

        # Tabs
        self._methods["tab.open"] = self._tab_open

        # Events
        self._methods["events.list_recent"] = self._events_list_recent

    @staticmethod
    def _validate_str(params: dict, key: str, required: bool = True) -> None:
        """Validate that a string param exists and is non-empty."""
        val = params.get(key)
        if required and (val is None or not isinstance(val, str) or not val.strip()):
            raise ValueError(f"Missing or empty required parameter: {key}")
        if val is not None and not isinstance(val, str):
            raise ValueError(f"{key} must be a string")

    @staticmethod
    def _validate_int(params: dict, key: str, required: bool = True, minimum: int = 0) -> None:
        val = params.get(key)
        if val is None:
            if required:
                raise ValueError(f"Missing required parameter: {key}")
            return
        if isinstance(val, bool) or not isinstance(val, int):
            raise ValueError(f"{key} must be an integer")
        if val < minimum:
            raise ValueError(f"{key} must be >= {minimum}")

    async def dispatch(self, method: str, params: dict) -> Any:
        """Dispatch an RPC method call. Returns a JSON-safe result."""
        handler = self._methods.get(method)
        if handler is None:
            raise ValueError(f"Unknown method: {method}")
        return jsonable(await handler(params))

    def has_method(self, method: str) -> bool:
        return method in self._methods

    # --- Server ---

    async def _server_ping(self, params: dict) -> str:
        return "pong"

    async def _server_status(self, params: dict) -> dict:
        session = self._ctx.controller.session
        return {
            "status": "running",
            "active": session.active,
            "participants": len(session.filled_participants),
            "activation_mode": session.config.activation_mode.value,
            "platforms": supported_platforms(self._ctx.config.platforms),
            "timeout_profiles": [
                serialize_profile(p) for p in self._ctx.learner.profiles.values()
            ],
        }

    # --- Conversation ---

    async def _conversation_start(self, params: dict) -> dict:
        self._validate_str(params, "topic", required=False)
        self._validate_str(params, "template_id", required=False)
        return await self._ctx.controller.start(
            topic=params.get("topic"),
            template_id=params.get("template_id"),
        )

    async def _conversation_stop(self, params: dict) -> dict:
        return await self._ctx.controller.stop()

    async def _conversation_continue(self, params: dict) -> dict:
        self._validate_int(params, "participant_index")
        self._validate_str(params, "message")
        return await self._ctx.controller.continue_conversation(
            params["participant_index"], params["message"],
        )

    async def _conversation_state(self, params: dict) -> dict:
        return await self._ctx.controller.get_state()

    async def _conversation_history(self, params: dict) -> dict:
        return await self._ctx.controller.get_history()

    async def _conversation_clear_history(self, params: dict) -> dict:
        return await self._ctx.controller.clear_history()

    async def _conversation_update_config(self, params: dict) -> dict:
        updates = params.get("updates", params)
        if not isinstance(updates, dict):
            raise ValueError("updates must be an object")
        return await self._ctx.controller.update_config(updates)

    async def _conversation_ask(self, params: dict) -> dict:
        self._validate_int(params, "participant_index")
        self._validate_str(params, "text")
        timeout_s = params.get("timeout_s")
        return await self._ctx.controller.ask(
            params["participant_index"],
            params["text"],
            timeout_s=float(timeout_s) if timeout_s is not None else None,
        )

    # --- Agents ---

    async def _agent_register(self, params: dict) -> dict:
        self._validate_str(params, "tab_handle")
        self._validate_str(params, "platform_id")
        return await self._ctx.controller.register_agent(
            params["tab_handle"], params["platform_id"], params.get("title", ""),
        )

    async def _agent_remove(self, params: dict) -> dict:
        self._validate_str(params, "tab_handle")
        return await self._ctx.controller.remove_agent(params["tab_handle"])

    async def _agent_list(self, params: dict) -> dict:
        return await self._ctx.controller.list_agents()

    async def _agent_check_availability(self, params: dict) -> dict:
        self._validate_str(params, "tab_handle")
        return await self._ctx.controller.check_availability(params["tab_handle"])

    async def _agent_update_availability(self, params: dict) -> dict:
        self._validate_str(params, "tab_handle")
        availability = params.get("availability")
        if not isinstance(availability, dict):
            raise ValueError("availability must be an object")
        return await self._ctx.controller.update_availability(params["tab_handle"], availability)

    async def _agent_check_registration(self, params: dict) -> dict:
        self._validate_str(params, "tab_handle")
        return await self._ctx.controller.check_registration(params["tab_handle"])

    async def _agent_response(self, params: dict) -> dict:
        self._validate_str(params, "tab_handle")
        self._validate_str(params, "text")
        self._validate_str(params, "request_id", required=False)
        return await self._ctx.controller.on_tab_response(
            params["tab_handle"], params["text"], params.get("request_id"),
        )

    async def _agent_closed(self, params: dict) -> dict:
        self._validate_str(params, "tab_handle")
        return await self._ctx.controller.on_tab_closed(params["tab_handle"])

    # --- Participants ---

    async def _participant_assign(self, params: dict) -> dict:
        self._validate_str(params, "tab_handle")
        self._validate_int(params, "slot_order", minimum=1)
        return await self._ctx.controller.assign_participant(
            params["tab_handle"], params["slot_order"],
        )

    async def _participant_release(self, params: dict) -> dict:
        self._validate_int(params, "slot_order", minimum=1)
        return await self._ctx.controller.release_participant(params["slot_order"])

    async def _participant_add_slot(self, params: dict) -> dict:
        self._validate_int(params, "slot_order", required=False, minimum=1)
        return await self._ctx.controller.add_slot(params.get("slot_order"))

    async def _participant_reorder(self, params: dict) -> dict:
        self._validate_int(params, "from_slot", minimum=1)
        self._validate_int(params, "to_slot", minimum=1)
        return await self._ctx.controller.reorder(params["from_slot"], params["to_slot"])

    # --- Tabs ---

    async def _tab_open(self, params: dict) -> dict:
        self._validate_str(params, "url")
        info = await self._ctx.host.open_tab(params["url"])
        return {"success": True, "tab": asdict(info)}

    # --- Events ---

    async def _events_list_recent(self, params: dict) -> list[dict]:
        self._validate_int(params, "limit", required=False, minimum=1)
        events = await self._ctx.event_repo.list_recent(limit=params.get("limit", 50))
        return [serialize_event(e) for e in events]
