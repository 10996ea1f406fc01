from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, List, Optional, Sequence, Union

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import ClaimConflictError
from ..ledger import ledger_for
from ..logger import logger
from ..models import utcnow

StaleAfter = Union[timedelta, float, int, None]


@dataclass(frozen=True)
class ClaimResult:
    claimed: bool
    current_status: Optional[str] = None
    recovered_stale: bool = False


def _as_timedelta(stale_after: StaleAfter) -> Optional[timedelta]:
    if stale_after is None:
        return None
    if isinstance(stale_after, timedelta):
        return stale_after
    return timedelta(seconds=float(stale_after))


def _check_moves(entity: str, sources: Iterable[str], target: str) -> None:
    ledger = ledger_for(entity)
    for source in sources:
        if not ledger.can_transition(source, target):
            raise ValueError(f"{entity}: illegal transition {source!r} -> {target!r}")


async def _conditional_update(
    session: AsyncSession,
    model,
    entity_id: str,
    status_attr: str,
    sources: Sequence[str],
    values: dict,
    *extra_where,
) -> bool:
    status_col = getattr(model, status_attr)
    stmt = (
        update(model)
        .where(model.id == entity_id, status_col.in_(list(sources)), *extra_where)
        .values(**values)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def claim(
    session: AsyncSession,
    entity: str,
    model,
    entity_id: str,
    allowed_sources: Sequence[str],
    target: str,
    stale_after: StaleAfter = None,
    status_attr: str = "status",
    error_attr: str = "error_message",
    values: Optional[dict] = None,
) -> ClaimResult:
    """
    Atomically move one row into a working state.

    Succeeds only if the stored status is one of `allowed_sources`. When the row
    sits in a working state older than `stale_after`, it is first moved to the
    entity's recovery state and the claim is retried once. A denied claim is an
    ordinary outcome and is reported through `ClaimResult.claimed`.
    """
    _check_moves(entity, allowed_sources, target)
    ledger = ledger_for(entity)
    payload = {status_attr: target, "updated_at": utcnow(), **(values or {})}

    claimed = await _conditional_update(session, model, entity_id, status_attr, allowed_sources, payload)
    await session.commit()
    if claimed:
        logger.info(
            f"Claimed {entity} {entity_id} -> {target}",
            extra={"entity": entity, "entity_id": entity_id, "target": target},
        )
        return ClaimResult(claimed=True)

    recovered = False
    cutoff_window = _as_timedelta(stale_after)
    if cutoff_window is not None and ledger.recovery:
        stale_sources = [
            s for s in ledger.working
            if s not in allowed_sources and ledger.can_transition(s, ledger.recovery)
        ]
        if stale_sources:
            cutoff = utcnow() - cutoff_window
            recovered = await _conditional_update(
                session,
                model,
                entity_id,
                status_attr,
                stale_sources,
                {
                    status_attr: ledger.recovery,
                    error_attr: f"Recovered stale claim (no progress for {int(cutoff_window.total_seconds())}s)",
                    "updated_at": utcnow(),
                },
                model.updated_at < cutoff,
            )
            await session.commit()

        if recovered:
            logger.warning(
                f"Recovered stale claim on {entity} {entity_id}",
                extra={"entity": entity, "entity_id": entity_id, "recovery_state": ledger.recovery},
            )
            payload["updated_at"] = utcnow()
            claimed = await _conditional_update(session, model, entity_id, status_attr, allowed_sources, payload)
            await session.commit()
            if claimed:
                return ClaimResult(claimed=True, recovered_stale=True)

    current = await session.scalar(select(getattr(model, status_attr)).where(model.id == entity_id))
    logger.info(
        f"Claim denied for {entity} {entity_id} (status={current})",
        extra={"entity": entity, "entity_id": entity_id, "current_status": current, "target": target},
    )
    return ClaimResult(claimed=False, current_status=current, recovered_stale=recovered)


async def ensure_claimed(
    session: AsyncSession,
    entity: str,
    model,
    entity_id: str,
    allowed_sources: Sequence[str],
    target: str,
    **kwargs: Any,
) -> ClaimResult:
    """Same as `claim`, but a denied claim raises ClaimConflictError (HTTP 409)."""
    result = await claim(session, entity, model, entity_id, allowed_sources, target, **kwargs)
    if not result.claimed:
        raise ClaimConflictError(entity, entity_id, result.current_status)
    return result


async def transition(
    session: AsyncSession,
    entity: str,
    model,
    entity_id: str,
    from_states: Union[str, Sequence[str]],
    to_state: str,
    status_attr: str = "status",
    commit: bool = True,
    expect_moved: bool = True,
    **values: Any,
) -> bool:
    """
    Single conditional write from `from_states` to `to_state`.

    Used to release a claim with a terminal status and to advance parent
    statuses. Returns False when the row had already left `from_states`.
    With `commit=False` the write joins the caller's open transaction.
    """
    sources = [from_states] if isinstance(from_states, str) else list(from_states)
    _check_moves(entity, sources, to_state)
    moved = await _conditional_update(
        session,
        model,
        entity_id,
        status_attr,
        sources,
        {status_attr: to_state, "updated_at": utcnow(), **values},
    )
    if commit:
        await session.commit()
    if not moved and expect_moved:
        logger.warning(
            f"{entity} {entity_id} was no longer in {sources}, skipped write of '{to_state}'",
            extra={"entity": entity, "entity_id": entity_id, "to_state": to_state},
        )
    return moved


def failure_message(exc: BaseException) -> str:
    message = getattr(exc, "message", None) or str(exc)
    return message or type(exc).__name__


@asynccontextmanager
async def release_on_failure(
    session: AsyncSession,
    entity: str,
    model,
    entity_id: str,
    working_state: str,
    failure_state: Optional[str] = None,
    status_attr: str = "status",
    error_attr: str = "error_message",
    on_failure: Optional[Callable[[Exception, str], Awaitable[None]]] = None,
) -> AsyncIterator[None]:
    """
    Guard the work body of a claimed item.

    Any exception leaving the body writes the failure state (with the error
    message) before it propagates, so a claim is never left behind.
    """
    target = failure_state or ledger_for(entity).recovery
    try:
        yield
    except Exception as exc:
        message = failure_message(exc)
        logger.error(
            f"Work on {entity} {entity_id} failed: {message}",
            extra={"entity": entity, "entity_id": entity_id, "error": message},
        )
        await session.rollback()
        await transition(
            session,
            entity,
            model,
            entity_id,
            working_state,
            target,
            status_attr=status_attr,
            **{error_attr: message},
        )
        if on_failure is not None:
            try:
                await on_failure(exc, message)
            except Exception as hook_exc:
                await session.rollback()
                logger.error(
                    f"Failure hook for {entity} {entity_id} raised: {hook_exc}",
                    extra={"entity": entity, "entity_id": entity_id},
                )
        raise


async def reset_for_retry(
    session: AsyncSession,
    entity: str,
    model,
    scope: Any,
    from_states: Sequence[str],
    stale_after: StaleAfter = None,
    status_attr: str = "status",
    error_attr: str = "error_message",
) -> List[str]:
    """
    Reset failed items inside `scope` back to the entity's initial state.

    With `stale_after`, working items untouched for longer than that window
    are reset too. Returns the ids that were actually reset.
    """
    ledger = ledger_for(entity)
    _check_moves(entity, from_states, ledger.initial)
    status_col = getattr(model, status_attr)

    conditions = [status_col.in_(list(from_states))]
    window = _as_timedelta(stale_after)
    if window is not None:
        stale_sources = [s for s in ledger.working if ledger.can_transition(s, ledger.initial)]
        if stale_sources:
            conditions.append(
                and_(status_col.in_(stale_sources), model.updated_at < utcnow() - window)
            )

    stmt = (
        update(model)
        .where(scope, or_(*conditions))
        .values(**{status_attr: ledger.initial, error_attr: None, "updated_at": utcnow()})
        .returning(model.id)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    ids = [row[0] for row in result.all()]
    await session.commit()
    if ids:
        logger.info(
            f"Reset {len(ids)} {entity} rows for retry",
            extra={"entity": entity, "count": len(ids)},
        )
    return ids


async def recover_stale(
    session: AsyncSession,
    entity: str,
    model,
    stale_after: StaleAfter,
    status_attr: str = "status",
    error_attr: str = "error_message",
    dry_run: bool = False,
) -> List[str]:
    """
    Move every working row untouched for longer than `stale_after` into the
    entity's recovery state. With `dry_run` only the matching ids are returned.
    """
    ledger = ledger_for(entity)
    window = _as_timedelta(stale_after)
    if window is None or not ledger.recovery:
        return []
    sources = [s for s in ledger.working if ledger.can_transition(s, ledger.recovery)]
    if not sources:
        return []

    status_col = getattr(model, status_attr)
    condition = and_(status_col.in_(sources), model.updated_at < utcnow() - window)
    if dry_run:
        return list((await session.scalars(select(model.id).where(condition))).all())

    stmt = (
        update(model)
        .where(condition)
        .values(**{
            status_attr: ledger.recovery,
            error_attr: f"Recovered stale claim (no progress for {int(window.total_seconds())}s)",
            "updated_at": utcnow(),
        })
        .returning(model.id)
        .execution_options(synchronize_session=False)
    )
    ids = [row[0] for row in (await session.execute(stmt)).all()]
    await session.commit()
    if ids:
        logger.warning(
            f"Recovered {len(ids)} stale {entity} claims",
            extra={"entity": entity, "count": len(ids), "recovery_state": ledger.recovery},
        )
    return ids
