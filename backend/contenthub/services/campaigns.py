from __future__ import annotations

from typing import Callable, List

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import PipelineSettings
from ..exceptions import ClaimConflictError, EntityNotFoundError, InvalidStateError, RequestValidationFailed
from ..inference.meta_client import MetaClient
from ..ledger import META_AD, META_CAMPAIGN
from ..localization.languages import country_for
from ..logger import logger
from ..models import MetaAd, MetaCampaign, utcnow
from ..schemas import AdPushResult, PushCampaignResponse
from .aggregate import CAMPAIGN_PUSH, recompute
from .claims import claim, ensure_claimed, release_on_failure, transition
from .dispatch import run_bounded


async def _save_fields(session: AsyncSession, model, entity_id: str, **values) -> None:
    """Write platform ids; never touches the status column."""
    await session.execute(
        update(model)
        .where(model.id == entity_id)
        .values(updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    await session.commit()


async def _push_ad(
    ad_id: str,
    *,
    adset_id: str,
    meta: MetaClient,
    pipeline: PipelineSettings,
    session_factory: Callable[[], AsyncSession],
) -> str:
    async with session_factory() as session:
        result = await claim(
            session, META_AD, MetaAd, ad_id, ["pending", "error"], "uploading",
            stale_after=pipeline.stale_after_seconds,
            values={"error_message": None},
        )
        if not result.claimed:
            raise ClaimConflictError(META_AD, ad_id, result.current_status)

        ad = await session.get(MetaAd, ad_id)
        async with release_on_failure(session, META_AD, MetaAd, ad_id, "uploading"):
            if not ad.image_url:
                raise RequestValidationFailed(f"Ad {ad_id} has no image")
            if not ad.landing_page_url:
                raise RequestValidationFailed(f"Ad {ad_id} has no landing page URL")

            image_hash = ad.meta_image_hash or await meta.upload_image(ad.image_url)
            creative_id = await meta.create_creative(
                name=f"{ad.name} creative",
                image_hash=image_hash,
                primary_text=ad.ad_copy or "",
                link_url=ad.landing_page_url,
                headline=ad.headline,
            )
            meta_ad_id = await meta.create_ad(ad.name, adset_id, creative_id)
            await transition(
                session, META_AD, MetaAd, ad_id, "uploading", "pushed",
                meta_image_hash=image_hash,
                meta_creative_id=creative_id,
                meta_ad_id=meta_ad_id,
                error_message=None,
            )

    logger.info(f"Ad {ad_id} pushed as {meta_ad_id}", extra={"ad_id": ad_id, "meta_ad_id": meta_ad_id})
    return meta_ad_id


async def push_campaign(
    session: AsyncSession,
    campaign_id: str,
    *,
    meta: MetaClient,
    pipeline: PipelineSettings,
    session_factory: Callable[[], AsyncSession],
) -> PushCampaignResponse:
    """
    Push a campaign and every ad not yet pushed.

    Ads go out through bounded dispatch, each in its own session and under
    its own claim. At least one pushed ad makes the campaign `pushed`;
    each failing ad keeps its own `error` status and message.
    """
    campaign = await session.get(MetaCampaign, campaign_id)
    if not campaign:
        raise EntityNotFoundError("Campaign", campaign_id)
    if campaign.status == "pushed":
        raise InvalidStateError("Campaign", campaign_id, "pushed", "draft or error")

    await ensure_claimed(
        session, META_CAMPAIGN, MetaCampaign, campaign_id, ["draft", "error"], "pushing",
        stale_after=pipeline.stale_after_seconds,
        values={"error_message": None},
    )
    await session.refresh(campaign)

    async with release_on_failure(session, META_CAMPAIGN, MetaCampaign, campaign_id, "pushing"):
        meta_campaign_id = campaign.meta_campaign_id
        if not meta_campaign_id:
            meta_campaign_id = await meta.create_campaign(campaign.name, campaign.objective)
            await _save_fields(session, MetaCampaign, campaign_id, meta_campaign_id=meta_campaign_id)

        adset_id = campaign.meta_adset_id
        if not adset_id:
            if campaign.template_adset_id:
                adset_id = await meta.duplicate_ad_set(campaign.template_adset_id, meta_campaign_id, campaign.name)
            else:
                countries = list(campaign.countries or [])
                if not countries and campaign.language and country_for(campaign.language):
                    countries = [country_for(campaign.language)]
                if not countries:
                    raise RequestValidationFailed(f"Campaign {campaign_id} has no target countries")
                adset_id = await meta.create_ad_set(
                    name=f"{campaign.name} ad set",
                    campaign_id=meta_campaign_id,
                    daily_budget=campaign.daily_budget,
                    countries=countries,
                    start_time=campaign.start_time,
                    end_time=campaign.end_time,
                )
            await _save_fields(session, MetaCampaign, campaign_id, meta_adset_id=adset_id)

        ad_ids: List[str] = list((await session.scalars(
            select(MetaAd.id).where(MetaAd.campaign_id == campaign_id, MetaAd.status != "pushed")
        )).all())
        await session.commit()

        async def _worker(ad_id: str) -> str:
            return await _push_ad(
                ad_id, adset_id=adset_id, meta=meta, pipeline=pipeline, session_factory=session_factory,
            )

        outcomes = await run_bounded(ad_ids, pipeline.push_concurrency, _worker)

        ads = (await session.execute(
            select(MetaAd.id, MetaAd.status, MetaAd.meta_ad_id, MetaAd.error_message)
            .where(MetaAd.campaign_id == campaign_id)
        )).all()
        target = recompute([a.status for a in ads], CAMPAIGN_PUSH)
        failed = sum(1 for o in outcomes if not o.ok)
        if target is None:
            # An ad is still held by another request; its claim decides later.
            target = "error"
        await transition(
            session, META_CAMPAIGN, MetaCampaign, campaign_id, "pushing", target,
            error_message=f"{failed} of {len(outcomes)} ads failed" if failed else None,
        )

    logger.info(
        f"Campaign {campaign_id} push finished -> {target}",
        extra={"campaign_id": campaign_id, "ads": len(ad_ids), "failed": failed},
    )
    return PushCampaignResponse(
        campaign_id=campaign_id,
        status=target,
        meta_campaign_id=meta_campaign_id,
        meta_adset_id=adset_id,
        pushed=sum(1 for a in ads if a.status == "pushed"),
        failed=failed,
        ads=[
            AdPushResult(ad_id=a.id, status=a.status, meta_ad_id=a.meta_ad_id, error=a.error_message)
            for a in ads
        ],
    )
