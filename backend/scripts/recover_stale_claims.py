from __future__ import annotations

import argparse
import asyncio
from typing import Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from contenthub.config import settings
from contenthub.db import AsyncSessionLocal
from contenthub.ledger import IMAGE_TRANSLATION, META_AD, META_CAMPAIGN, SOURCE_IMAGE, TRANSLATION
from contenthub.logger import logger
from contenthub.models import ImageTranslation, MetaAd, MetaCampaign, SourceImage, Translation
from contenthub.services.aggregate import (
    advance_campaign_after_push,
    advance_job_after_expansion,
    advance_job_after_translation,
)
from contenthub.services.claims import recover_stale

# (entity, model, status column, error column)
SWEEP_TARGETS = [
    (SOURCE_IMAGE, SourceImage, "expansion_status", "expansion_error"),
    (IMAGE_TRANSLATION, ImageTranslation, "status", "error_message"),
    (TRANSLATION, Translation, "status", "error_message"),
    (META_CAMPAIGN, MetaCampaign, "status", "error_message"),
    (META_AD, MetaAd, "status", "error_message"),
]


async def _advance_parents(db: AsyncSession, found: Dict[str, List[str]]) -> int:
    """Recompute every job and campaign that lost a child to the sweep."""
    moved = 0
    if found[SOURCE_IMAGE]:
        job_ids = set((await db.scalars(
            select(SourceImage.job_id).where(SourceImage.id.in_(found[SOURCE_IMAGE]))
        )).all())
        for job_id in sorted(job_ids):
            moved += await advance_job_after_expansion(db, job_id)

    if found[IMAGE_TRANSLATION]:
        job_ids = set((await db.scalars(
            select(SourceImage.job_id)
            .join(ImageTranslation, ImageTranslation.source_image_id == SourceImage.id)
            .where(ImageTranslation.id.in_(found[IMAGE_TRANSLATION]))
        )).all())
        for job_id in sorted(job_ids):
            moved += await advance_job_after_translation(db, job_id)

    if found[META_AD]:
        campaign_ids = set((await db.scalars(
            select(MetaAd.campaign_id).where(MetaAd.id.in_(found[META_AD]))
        )).all())
        for campaign_id in sorted(campaign_ids):
            moved += await advance_campaign_after_push(db, campaign_id)
    return moved


async def recover_stale_claims(*, yes: bool, stale_after: int, session_factory=AsyncSessionLocal) -> Dict[str, List[str]]:
    found: Dict[str, List[str]] = {}
    parents_moved = 0
    async with session_factory() as db:
        for entity, model, status_attr, error_attr in SWEEP_TARGETS:
            found[entity] = await recover_stale(
                db, entity, model, stale_after,
                status_attr=status_attr, error_attr=error_attr, dry_run=not yes,
            )
        if yes:
            parents_moved = await _advance_parents(db, found)

    logger.warning(
        "Stale claim sweep" + ("" if yes else " (dry run)"),
        extra={
            "stale_after_s": stale_after,
            "counts": {k: len(v) for k, v in found.items()},
            "parents_moved": parents_moved,
        },
    )
    return found


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Move work items stuck in a working status into their recovery status.",
    )
    parser.add_argument(
        "--stale-after",
        type=int,
        default=settings.STALE_CLAIM_SECONDS,
        help="Seconds without progress before a claim counts as stale.",
    )
    parser.add_argument(
        "--yes",
        action="store_true",
        help="Apply the changes (default only reports what would change).",
    )
    return parser


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    found = asyncio.run(recover_stale_claims(yes=bool(args.yes), stale_after=args.stale_after))
    for entity, ids in found.items():
        print(f"{entity}: {len(ids)}")
    if not args.yes and any(found.values()):
        raise SystemExit("Dry run only. Re-run with --yes to recover these claims.")


if __name__ == "__main__":
    main()
