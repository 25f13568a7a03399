"""Authentication tool: auth_get_user."""

from typing import Any, Dict, Mapping

from ..conversions import millis_to_iso
from ..errors import validation_error
from . import ToolHandler


def is_email(identifier: str) -> bool:
    """Identifiers containing '@' are looked up as emails, anything else as a UID."""
    return "@" in identifier


def user_payload(user: Any) -> Dict[str, Any]:
    metadata = getattr(user, "user_metadata", None)
    return {
        "uid": user.uid,
        "email": user.email,
        "emailVerified": bool(user.email_verified),
        "displayName": user.display_name,
        "photoURL": user.photo_url,
        "phoneNumber": user.phone_number,
        "disabled": bool(user.disabled),
        "providerData": [
            {
                "providerId": p.provider_id,
                "uid": p.uid,
                "email": p.email,
                "displayName": p.display_name,
            }
            for p in (user.provider_data or [])
        ],
        "customClaims": dict(user.custom_claims or {}),
        "metadata": {
            "creationTime": millis_to_iso(getattr(metadata, "creation_timestamp", None)),
            "lastSignInTime": millis_to_iso(getattr(metadata, "last_sign_in_timestamp", None)),
            "lastRefreshTime": millis_to_iso(getattr(metadata, "last_refresh_timestamp", None)),
        },
    }


class AuthGetUserTool(ToolHandler):
    """Tool for looking up a Firebase Authentication user."""

    description = (
        "Get a Firebase Authentication user by email or UID. "
        "Identifiers containing '@' are treated as emails."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "identifier": {"type": "string", "minLength": 1, "description": "User email or UID"},
        },
        "required": ["identifier"],
    }

    def __init__(self, clients, backend, audit_logger=None):
        super().__init__("auth_get_user", clients, backend, audit_logger)

    async def run_tool(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        identifier = arguments["identifier"].strip()
        if not identifier:
            raise validation_error("identifier cannot be blank")

        users = self.clients.users
        if is_email(identifier):
            user = await self.backend.call(users.get_user_by_email, identifier)
        else:
            user = await self.backend.call(users.get_user, identifier)
        return user_payload(user)
