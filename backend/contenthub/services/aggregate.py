"""
Parent status derived from child statuses.

`recompute` is pure. The `advance_*` helpers apply its verdict through one
conditional write from the parent's in-progress state, so any number of
concurrent callers move the parent at most once.
"""
from __future__ import annotations

from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..ledger import IMAGE_JOB, IMAGE_TRANSLATION, META_AD, META_CAMPAIGN, SOURCE_IMAGE, ledger_for
from ..logger import logger
from ..models import ImageJob, ImageTranslation, MetaAd, MetaCampaign, SourceImage
from .claims import transition

EXPANSION = "expansion"
TRANSLATION = "translation"
CAMPAIGN_PUSH = "campaign_push"

_CHILD_ENTITY = {
    EXPANSION: SOURCE_IMAGE,
    TRANSLATION: IMAGE_TRANSLATION,
    CAMPAIGN_PUSH: META_AD,
}


def recompute(child_statuses: Iterable[str], pipeline: str) -> Optional[str]:
    """
    Next parent status, or None while any child is still pending or working.

    - expansion: `ready` once every expansion settled, whatever the outcome.
    - translation: `completed` with no failures, otherwise `failed`.
    - campaign_push: `pushed` if at least one ad pushed (or there are no ads),
      otherwise `error`.
    """
    try:
        ledger = ledger_for(_CHILD_ENTITY[pipeline])
    except KeyError:
        raise ValueError(f"Unknown pipeline: {pipeline}") from None

    statuses: List[str] = list(child_statuses)
    if any(s not in ledger.terminal for s in statuses):
        return None

    if pipeline == EXPANSION:
        return "ready"
    if pipeline == TRANSLATION:
        return "failed" if any(s == "failed" for s in statuses) else "completed"
    if not statuses or any(s == "pushed" for s in statuses):
        return "pushed"
    return "error"


async def _translation_statuses(session: AsyncSession, job_id: str) -> List[str]:
    rows = await session.execute(
        select(ImageTranslation.status)
        .join(SourceImage, ImageTranslation.source_image_id == SourceImage.id)
        .where(SourceImage.job_id == job_id)
    )
    return [r[0] for r in rows.all()]


async def _expansion_statuses(session: AsyncSession, job_id: str) -> List[str]:
    rows = await session.execute(select(SourceImage.expansion_status).where(SourceImage.job_id == job_id))
    return [r[0] for r in rows.all()]


async def advance_job_after_expansion(session: AsyncSession, job_id: str) -> bool:
    statuses = await _expansion_statuses(session, job_id)
    target = recompute(statuses, EXPANSION)
    if target is None:
        return False
    moved = await transition(session, IMAGE_JOB, ImageJob, job_id, "expanding", target, expect_moved=False)
    if moved:
        logger.info(f"Job {job_id} expansions settled -> {target}", extra={"job_id": job_id, "children": len(statuses)})
    return moved


async def advance_job_after_translation(session: AsyncSession, job_id: str) -> bool:
    statuses = await _translation_statuses(session, job_id)
    if not statuses:
        return False
    target = recompute(statuses, TRANSLATION)
    if target is None:
        return False
    failed = sum(1 for s in statuses if s == "failed")
    moved = await transition(
        session,
        IMAGE_JOB,
        ImageJob,
        job_id,
        "processing",
        target,
        expect_moved=False,
        error_message=f"{failed} of {len(statuses)} translations failed" if failed else None,
    )
    if moved:
        logger.info(
            f"Job {job_id} translations settled -> {target}",
            extra={"job_id": job_id, "children": len(statuses), "failed": failed},
        )
    return moved


async def advance_campaign_after_push(session: AsyncSession, campaign_id: str) -> bool:
    statuses = list((await session.scalars(select(MetaAd.status).where(MetaAd.campaign_id == campaign_id))).all())
    target = recompute(statuses, CAMPAIGN_PUSH)
    if target is None:
        return False
    failed = sum(1 for s in statuses if s == "error")
    moved = await transition(
        session,
        META_CAMPAIGN,
        MetaCampaign,
        campaign_id,
        "pushing",
        target,
        expect_moved=False,
        error_message=f"{failed} of {len(statuses)} ads failed" if failed else None,
    )
    if moved:
        logger.info(
            f"Campaign {campaign_id} ads settled -> {target}",
            extra={"campaign_id": campaign_id, "children": len(statuses), "failed": failed},
        )
    return moved
