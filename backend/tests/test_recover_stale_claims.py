import pytest
from sqlalchemy import select

from contenthub.models import ImageJob, ImageTranslation, MetaAd, MetaCampaign, Translation, new_id
from scripts.recover_stale_claims import recover_stale_claims


@pytest.mark.asyncio
async def test_sweep_reports_then_recovers(session, session_factory, age_row):
    campaign = MetaCampaign(id=new_id(), name="Autumn", status="pushing")
    ad = MetaAd(id=new_id(), campaign_id=campaign.id, name="Ad", status="uploading")
    fresh = MetaAd(id=new_id(), campaign_id=campaign.id, name="Fresh ad", status="uploading")
    session.add_all([campaign, ad, fresh])
    await session.commit()
    await age_row(MetaCampaign, campaign.id, 3600)
    await age_row(MetaAd, ad.id, 3600)

    preview = await recover_stale_claims(yes=False, stale_after=600, session_factory=session_factory)
    assert preview["meta_campaign"] == [campaign.id]
    assert preview["meta_ad"] == [ad.id]
    assert preview["translation"] == []

    await recover_stale_claims(yes=True, stale_after=600, session_factory=session_factory)

    statuses = dict((await session.execute(select(MetaAd.id, MetaAd.status))).all())
    assert statuses == {ad.id: "error", fresh.id: "uploading"}
    assert await session.scalar(select(MetaCampaign.status)) == "error"
    assert (await session.scalars(select(Translation))).all() == []


@pytest.mark.asyncio
async def test_sweep_settles_the_job_of_a_swept_translation(session, session_factory, make_job, make_translations, age_row):
    job = await make_job(status="processing", expansions=())
    job_id = job.id
    done, stuck = await make_translations(job, ["completed", "processing"])
    await age_row(ImageTranslation, stuck.id, 3600)

    await recover_stale_claims(yes=False, stale_after=600, session_factory=session_factory)
    assert await session.scalar(select(ImageJob.status).where(ImageJob.id == job_id)) == "processing"

    found = await recover_stale_claims(yes=True, stale_after=600, session_factory=session_factory)

    assert found["image_translation"] == [stuck.id]
    assert await session.scalar(select(ImageTranslation.status).where(ImageTranslation.id == stuck.id)) == "failed"
    job_row = (await session.execute(
        select(ImageJob.status, ImageJob.error_message).where(ImageJob.id == job_id)
    )).one()
    assert job_row.status == "failed"
    assert job_row.error_message == "1 of 2 translations failed"


@pytest.mark.asyncio
async def test_sweep_settles_a_campaign_whose_last_ad_was_stuck(session, session_factory, age_row):
    campaign = MetaCampaign(id=new_id(), name="Winter", status="pushing")
    pushed = MetaAd(id=new_id(), campaign_id=campaign.id, name="Done", status="pushed")
    stuck = MetaAd(id=new_id(), campaign_id=campaign.id, name="Stuck", status="uploading")
    session.add_all([campaign, pushed, stuck])
    await session.commit()
    await age_row(MetaAd, stuck.id, 3600)

    found = await recover_stale_claims(yes=True, stale_after=600, session_factory=session_factory)

    assert found["meta_campaign"] == []
    assert found["meta_ad"] == [stuck.id]
    row = (await session.execute(
        select(MetaCampaign.status, MetaCampaign.error_message).where(MetaCampaign.id == campaign.id)
    )).one()
    assert row.status == "pushed"
    assert row.error_message == "1 of 2 ads failed"
