"""BidEval API authentication and actor context extraction.

Service-to-service calls authenticate with an API key in the
X-BidEval-API-Key header. Keys are resolved against a JSON registry held in
BIDEVAL_API_KEYS_JSON:

    {"<api key>": {"actor_id": "u-1", "name": "Jane", "roles": ["EVALUATOR"]}}

Fails closed on missing or invalid credentials. Unknown roles are rejected.
"""

import hmac
import json
import logging
import os
from typing import Annotated

from fastapi import Depends, Request
from pydantic import BaseModel, ValidationError

from bideval.api.errors import BidEvalHttpError
from bideval.services.evaluations.capabilities import ALL_ROLES, Actor

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-BidEval-API-Key"
BIDEVAL_API_KEYS_ENV = "BIDEVAL_API_KEYS_JSON"


class ActorContext(BaseModel):
    """Authenticated caller of a request."""

    actor_id: str
    name: str
    roles: frozenset[str] = frozenset()

    def to_actor(self) -> Actor:
        """Convert to the service-layer Actor."""
        return Actor(actor_id=self.actor_id, roles=self.roles, name=self.name)


class ApiKeyRecord(BaseModel):
    """API key registry entry.

    The actor_id is a stable, non-secret identifier for the key holder; it is
    the identity recorded as creator, evaluator and audit actor.
    """

    actor_id: str
    name: str
    roles: list[str] = []


def _load_api_key_registry() -> dict[str, ApiKeyRecord]:
    """Load API key registry from environment variable.

    Returns:
        Dict mapping API key strings to ApiKeyRecord objects.
        Returns empty dict if env var missing or invalid JSON.
    """
    raw = os.environ.get(BIDEVAL_API_KEYS_ENV)
    if not raw:
        return {}

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Failed to parse %s; treating as empty registry", BIDEVAL_API_KEYS_ENV)
        return {}

    if not isinstance(parsed, dict):
        logger.warning("%s is not a dict; treating as empty registry", BIDEVAL_API_KEYS_ENV)
        return {}

    registry: dict[str, ApiKeyRecord] = {}
    for key, value in parsed.items():
        if not isinstance(key, str) or not isinstance(value, dict):
            continue
        try:
            registry[key] = ApiKeyRecord.model_validate(value)
        except ValidationError:
            continue

    return registry


def _constant_time_lookup(
    provided_key: str, registry: dict[str, ApiKeyRecord]
) -> ApiKeyRecord | None:
    """Look up API key using constant-time comparison.

    Iterates all keys and uses hmac.compare_digest for each comparison.
    """
    matched_record: ApiKeyRecord | None = None
    provided_bytes = provided_key.encode("utf-8")

    for registered_key, record in registry.items():
        if hmac.compare_digest(provided_bytes, registered_key.encode("utf-8")):
            matched_record = record

    return matched_record


def _normalize_roles(roles: list[str]) -> frozenset[str]:
    """Normalize and validate roles, rejecting unknown roles (fail-closed).

    Raises:
        BidEvalHttpError: 401 if any role is unknown.
    """
    normalized: set[str] = set()
    for role in roles:
        upper_role = role.upper().strip()
        if upper_role not in ALL_ROLES:
            raise BidEvalHttpError(
                status_code=401,
                code="UNAUTHORIZED",
                message="Invalid credentials",
            )
        normalized.add(upper_role)
    return frozenset(normalized)


def authenticate_request(request: Request) -> ActorContext:
    """Resolve the X-BidEval-API-Key header into an ActorContext.

    Raises:
        BidEvalHttpError: 401 if the key is missing, unknown or carries an
            unknown role.
    """
    api_key = request.headers.get(API_KEY_HEADER)
    if not api_key:
        raise BidEvalHttpError(status_code=401, code="UNAUTHORIZED", message="Missing API key")

    record = _constant_time_lookup(api_key, _load_api_key_registry())
    if record is None:
        raise BidEvalHttpError(status_code=401, code="UNAUTHORIZED", message="Invalid API key")

    return ActorContext(
        actor_id=record.actor_id,
        name=record.name,
        roles=_normalize_roles(record.roles),
    )


async def require_actor(request: Request) -> ActorContext:
    """FastAPI dependency that enforces authentication.

    Stores the actor context in request.state for downstream use.
    """
    actor_ctx = authenticate_request(request)
    request.state.actor_context = actor_ctx
    return actor_ctx


RequireActor = Annotated[ActorContext, Depends(require_actor)]
