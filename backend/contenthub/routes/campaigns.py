"""
Ad campaign routes
"""
from typing import Callable

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import PipelineSettings
from ..db import get_db
from ..dependencies import get_meta_client, get_pipeline_settings, get_session_factory
from ..inference.meta_client import MetaClient
from ..schemas import PushCampaignResponse
from ..services import campaigns

router = APIRouter(prefix="/campaigns", tags=["Campaigns"])


@router.post("/{campaign_id}/push", response_model=PushCampaignResponse)
async def push_campaign(
    campaign_id: str,
    db: AsyncSession = Depends(get_db),
    meta: MetaClient = Depends(get_meta_client),
    pipeline: PipelineSettings = Depends(get_pipeline_settings),
    session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),
):
    """Push the campaign, its ad set and every ad not yet pushed"""
    return await campaigns.push_campaign(
        db, campaign_id, meta=meta, pipeline=pipeline, session_factory=session_factory,
    )
