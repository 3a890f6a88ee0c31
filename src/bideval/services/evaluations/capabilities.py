"""Role-based capability checks for evaluation operations.

Every service operation asks the checker once before doing any work. The
default RoleCapabilityChecker combines a role -> capability table with
ownership: a procurement officer manages only the evaluations they created,
while chairs and admins manage any.

Roles:
- PROCUREMENT_OFFICER: creates and runs evaluations for their RFQs
- EVALUATOR: scores submissions of evaluations they are assigned to
- EVALUATION_CHAIR: facilitates consensus and finalization
- ADMIN: everything
- AUDITOR: read-only access to every evaluation
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, StrEnum
from typing import Protocol, runtime_checkable

from bideval.models.evaluation import Evaluation


class Role(str, Enum):
    """Platform roles recognised by the evaluation service."""

    PROCUREMENT_OFFICER = "PROCUREMENT_OFFICER"
    EVALUATOR = "EVALUATOR"
    EVALUATION_CHAIR = "EVALUATION_CHAIR"
    ADMIN = "ADMIN"
    AUDITOR = "AUDITOR"


ALL_ROLES: frozenset[str] = frozenset(r.value for r in Role)


class Capability(StrEnum):
    """Operations guarded by the capability checker."""

    CREATE = "create"
    UPDATE = "update"
    START = "start"
    MANAGE_EVALUATORS = "manage_evaluators"
    SCORE = "score"
    BUILD_CONSENSUS = "build_consensus"
    FINALIZE = "finalize"
    DISPUTE = "dispute"
    CANCEL = "cancel"
    READ = "read"
    READ_ALL = "read_all"


@dataclass(frozen=True, slots=True)
class Actor:
    """The authenticated caller of an operation."""

    actor_id: str
    roles: frozenset[str] = field(default_factory=frozenset)
    name: str | None = None

    def has_role(self, role: Role) -> bool:
        return role.value in self.roles


_OWNER_SCOPED: frozenset[Capability] = frozenset(
    {
        Capability.UPDATE,
        Capability.START,
        Capability.MANAGE_EVALUATORS,
        Capability.CANCEL,
        Capability.FINALIZE,
    }
)

ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.PROCUREMENT_OFFICER: frozenset(
        {
            Capability.CREATE,
            Capability.UPDATE,
            Capability.START,
            Capability.MANAGE_EVALUATORS,
            Capability.CANCEL,
            Capability.FINALIZE,
            Capability.DISPUTE,
            Capability.READ,
        }
    ),
    Role.EVALUATOR: frozenset({Capability.SCORE, Capability.DISPUTE, Capability.READ}),
    Role.EVALUATION_CHAIR: frozenset(
        {
            Capability.MANAGE_EVALUATORS,
            Capability.SCORE,
            Capability.BUILD_CONSENSUS,
            Capability.FINALIZE,
            Capability.DISPUTE,
            Capability.READ,
            Capability.READ_ALL,
        }
    ),
    Role.ADMIN: frozenset(Capability),
    Role.AUDITOR: frozenset({Capability.READ, Capability.READ_ALL}),
}

# Roles whose grant of an owner-scoped capability is not limited to their own evaluations
_UNSCOPED_ROLES: frozenset[Role] = frozenset({Role.EVALUATION_CHAIR, Role.ADMIN})


@runtime_checkable
class CapabilityChecker(Protocol):
    """Answers whether an actor may perform an operation."""

    def can_create(self, actor: Actor) -> bool: ...

    def can_update(self, actor: Actor, evaluation: Evaluation) -> bool: ...

    def can_start(self, actor: Actor, evaluation: Evaluation) -> bool: ...

    def can_manage_evaluators(self, actor: Actor, evaluation: Evaluation) -> bool: ...

    def can_score(self, actor: Actor, evaluation: Evaluation) -> bool: ...

    def can_build_consensus(self, actor: Actor, evaluation: Evaluation) -> bool: ...

    def can_finalize(self, actor: Actor, evaluation: Evaluation) -> bool: ...

    def can_dispute(self, actor: Actor, evaluation: Evaluation) -> bool: ...

    def can_cancel(self, actor: Actor, evaluation: Evaluation) -> bool: ...

    def can_read(self, actor: Actor, evaluation: Evaluation) -> bool: ...

    def can_read_all(self, actor: Actor) -> bool: ...


class RoleCapabilityChecker:
    """Capability checker driven by ROLE_CAPABILITIES plus ownership."""

    def _roles(self, actor: Actor) -> list[Role]:
        return [r for r in Role if r.value in actor.roles]

    def _granted(self, actor: Actor, capability: Capability) -> bool:
        return any(capability in ROLE_CAPABILITIES[r] for r in self._roles(actor))

    def _granted_for(self, actor: Actor, capability: Capability, evaluation: Evaluation) -> bool:
        for role in self._roles(actor):
            if capability not in ROLE_CAPABILITIES[role]:
                continue
            if capability not in _OWNER_SCOPED or role in _UNSCOPED_ROLES:
                return True
            if evaluation.created_by == actor.actor_id:
                return True
        return False

    def can_create(self, actor: Actor) -> bool:
        return self._granted(actor, Capability.CREATE)

    def can_update(self, actor: Actor, evaluation: Evaluation) -> bool:
        return self._granted_for(actor, Capability.UPDATE, evaluation)

    def can_start(self, actor: Actor, evaluation: Evaluation) -> bool:
        return self._granted_for(actor, Capability.START, evaluation)

    def can_manage_evaluators(self, actor: Actor, evaluation: Evaluation) -> bool:
        return self._granted_for(actor, Capability.MANAGE_EVALUATORS, evaluation)

    def can_score(self, actor: Actor, evaluation: Evaluation) -> bool:
        return self._granted_for(actor, Capability.SCORE, evaluation)

    def can_build_consensus(self, actor: Actor, evaluation: Evaluation) -> bool:
        return self._granted_for(actor, Capability.BUILD_CONSENSUS, evaluation)

    def can_finalize(self, actor: Actor, evaluation: Evaluation) -> bool:
        return self._granted_for(actor, Capability.FINALIZE, evaluation)

    def can_dispute(self, actor: Actor, evaluation: Evaluation) -> bool:
        return self._granted(actor, Capability.DISPUTE) and self.can_read(actor, evaluation)

    def can_cancel(self, actor: Actor, evaluation: Evaluation) -> bool:
        return self._granted_for(actor, Capability.CANCEL, evaluation)

    def can_read(self, actor: Actor, evaluation: Evaluation) -> bool:
        if self.can_read_all(actor):
            return True
        if not self._granted(actor, Capability.READ):
            return False
        return evaluation.created_by == actor.actor_id or evaluation.is_member(actor.actor_id)

    def can_read_all(self, actor: Actor) -> bool:
        return self._granted(actor, Capability.READ_ALL)
