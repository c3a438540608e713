from __future__ import annotations

from dataclasses import dataclass

from app.models import ActorKind


@dataclass(frozen=True, slots=True)
class Actor:
    """Who performed a write; stored on audit columns as ``kind:id``."""

    kind: ActorKind
    actor_id: str

    @classmethod
    def system(cls, name: str) -> Actor:
        return cls(kind=ActorKind.SYSTEM, actor_id=name)

    @classmethod
    def operator(cls, name: str) -> Actor:
        return cls(kind=ActorKind.OPERATOR, actor_id=name)

    @property
    def label(self) -> str:
        return f"{self.kind.value.lower()}:{self.actor_id}"


SCHEDULER_ACTOR = Actor.system("reconciliation-scheduler")
MANUAL_ACTOR = Actor.system("reconciliation-manual")
FORCED_ACTOR = Actor.system("reconciliation-forced")
