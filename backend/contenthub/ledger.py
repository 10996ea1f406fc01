"""
Status state machines for every work entity.

Pure definitions: no I/O. Every write of a status column goes through
services.claims, which checks the requested move against these tables first.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Optional


IMAGE_JOB = "image_job"
SOURCE_IMAGE = "source_image"
IMAGE_TRANSLATION = "image_translation"
TRANSLATION = "translation"
AB_TEST = "ab_test"
META_CAMPAIGN = "meta_campaign"
META_AD = "meta_ad"


class UnknownEntityError(KeyError):
    pass


@dataclass(frozen=True)
class EntityLedger:
    name: str
    states: FrozenSet[str]
    initial: str
    working: FrozenSet[str]
    terminal: FrozenSet[str]
    recovery: Optional[str]
    # target state -> states it may be entered from
    transitions: Dict[str, FrozenSet[str]] = field(default_factory=dict)

    def can_transition(self, from_state: str, to_state: str) -> bool:
        if from_state not in self.states or to_state not in self.states:
            return False
        return from_state in self.transitions.get(to_state, frozenset())


def _ledger(
    name: str,
    *,
    initial: str,
    working: Iterable[str],
    terminal: Iterable[str],
    recovery: Optional[str],
    transitions: Dict[str, Iterable[str]],
    extra_states: Iterable[str] = (),
) -> EntityLedger:
    states = {initial, *working, *terminal, *extra_states, *transitions}
    for sources in transitions.values():
        states.update(sources)
    return EntityLedger(
        name=name,
        states=frozenset(states),
        initial=initial,
        working=frozenset(working),
        terminal=frozenset(terminal),
        recovery=recovery,
        transitions={target: frozenset(sources) for target, sources in transitions.items()},
    )


LEDGERS: Dict[str, EntityLedger] = {
    IMAGE_JOB: _ledger(
        IMAGE_JOB,
        initial="draft",
        working=("expanding", "processing"),
        terminal=("completed", "failed"),
        recovery="failed",
        extra_states=("ready",),
        transitions={
            "expanding": ("draft",),
            "ready": ("draft", "expanding"),
            "processing": ("ready", "completed", "failed"),
            "completed": ("processing",),
            "failed": ("processing",),
        },
    ),
    SOURCE_IMAGE: _ledger(
        SOURCE_IMAGE,
        initial="pending",
        working=("processing",),
        terminal=("completed", "failed"),
        recovery="failed",
        transitions={
            "pending": ("failed",),
            "processing": ("pending", "failed"),
            "completed": ("processing",),
            "failed": ("processing",),
        },
    ),
    IMAGE_TRANSLATION: _ledger(
        IMAGE_TRANSLATION,
        initial="pending",
        working=("processing",),
        terminal=("completed", "failed"),
        recovery="failed",
        transitions={
            "pending": ("failed", "processing"),
            "processing": ("pending", "failed", "completed"),
            "completed": ("processing",),
            "failed": ("processing",),
        },
    ),
    TRANSLATION: _ledger(
        TRANSLATION,
        initial="draft",
        working=("translating", "publishing"),
        terminal=("translated", "published", "error"),
        recovery="error",
        transitions={
            "translating": ("draft", "translated", "published", "error"),
            "translated": ("translating", "publishing"),
            "publishing": ("translated", "published"),
            "published": ("publishing",),
            "error": ("translating", "publishing"),
        },
    ),
    AB_TEST: _ledger(
        AB_TEST,
        initial="draft",
        working=(),
        terminal=("completed",),
        recovery=None,
        transitions={
            "active": ("draft",),
            "completed": ("active",),
        },
    ),
    META_CAMPAIGN: _ledger(
        META_CAMPAIGN,
        initial="draft",
        working=("pushing",),
        terminal=("pushed", "error"),
        recovery="error",
        transitions={
            "pushing": ("draft", "error"),
            "pushed": ("pushing",),
            "error": ("pushing",),
        },
    ),
    META_AD: _ledger(
        META_AD,
        initial="pending",
        working=("uploading",),
        terminal=("pushed", "error"),
        recovery="error",
        transitions={
            "uploading": ("pending", "error"),
            "pushed": ("uploading",),
            "error": ("uploading",),
        },
    ),
}


def ledger_for(entity: str) -> EntityLedger:
    try:
        return LEDGERS[entity]
    except KeyError:
        raise UnknownEntityError(entity) from None


def can_transition(entity: str, from_state: str, to_state: str) -> bool:
    return ledger_for(entity).can_transition(from_state, to_state)


def is_terminal(entity: str, state: str) -> bool:
    return state in ledger_for(entity).terminal


def is_working(entity: str, state: str) -> bool:
    return state in ledger_for(entity).working


def working_states(entity: str) -> FrozenSet[str]:
    return ledger_for(entity).working


def recovery_state(entity: str) -> Optional[str]:
    return ledger_for(entity).recovery


def initial_state(entity: str) -> str:
    return ledger_for(entity).initial
