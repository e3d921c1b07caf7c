# src/handlers/bot_handlers.py
"""
Default conversation handlers.

They only route on session state; menus, catalogue content and image
analysis live outside this service.
"""

import logging
from typing import Any, Dict, Optional

from src.core.pipeline import EventContext, MiddlewarePipeline
from src.models.event_models import EventType
from src.models.session_state import Location, Role, Session

logger = logging.getLogger(__name__)

ROLE_CALLBACKS = {
    "role_customer": Role.CUSTOMER,
    "role_store_owner": Role.STORE_OWNER,
    "role_shipper": Role.SHIPPER,
}

HELP_TEXT = (
    "/start - choose your role\n"
    "/help - show this help\n"
    "Share a location to find nearby stores, or use AI Photo Analysis from the menu."
)


def _command_name(payload: Any) -> str:
    text = str(payload or "").strip()
    return text.split()[0].lower() if text else ""


async def enter_admin_mode(ctx: EventContext, session: Session) -> str:
    ctx.require_admin("enter_admin_mode")
    session.role = Role.SUPER_ADMIN
    return "Welcome, admin. System management tools are unlocked."


async def handle_command(ctx: EventContext, session: Session) -> Optional[str]:
    command = _command_name(ctx.payload)

    if command == "/start":
        session.role = Role.UNSET
        session.awaiting_photo = False
        return "Welcome! Please choose your role to continue."
    if command == "/help":
        return HELP_TEXT
    if command == "/admin":
        return await enter_admin_mode(ctx, session)

    return f"Unknown command {command or '(empty)'}. Send /help for the list of commands."


async def handle_callback(ctx: EventContext, session: Session) -> Optional[str]:
    data = str(ctx.payload or "")

    if data in ROLE_CALLBACKS:
        session.role = ROLE_CALLBACKS[data]
        return f"Role set to {session.role.value.replace('_', ' ')}."
    if data == "role_admin":
        return await enter_admin_mode(ctx, session)
    if data == "upload_photo":
        session.awaiting_photo = True
        return "Send me a photo and I will look at its colours."

    logger.debug(f"Ignoring unknown callback {data!r} from user {ctx.user_id}")
    return None


async def handle_photo(ctx: EventContext, session: Session) -> str:
    if not session.awaiting_photo:
        return 'To analyze a photo, press "AI Photo Analysis" in the menu first.'

    session.awaiting_photo = False
    session.extra["photos_submitted"] = int(session.extra.get("photos_submitted", 0)) + 1
    return "Analyzing your photo..."


async def handle_location(ctx: EventContext, session: Session) -> str:
    payload: Dict[str, Any] = ctx.payload or {}
    lat = payload.get("lat", payload.get("latitude"))
    lng = payload.get("lng", payload.get("longitude"))
    if lat is None or lng is None:
        raise ValueError(f"Location payload without coordinates: {payload!r}")

    session.location = Location(lat=lat, lng=lng)
    return "Location saved."


async def handle_message(ctx: EventContext, session: Session) -> str:
    if session.role == Role.UNSET:
        return "Send /start to pick a role first."
    return "Use the menu buttons or send /help to see what I can do."


def register_default_handlers(pipeline: MiddlewarePipeline) -> MiddlewarePipeline:
    pipeline.register(EventType.COMMAND, handle_command)
    pipeline.register(EventType.CALLBACK, handle_callback)
    pipeline.register(EventType.PHOTO, handle_photo)
    pipeline.register(EventType.LOCATION, handle_location)
    pipeline.register(EventType.MESSAGE, handle_message)
    return pipeline
