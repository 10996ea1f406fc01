import pytest
from sqlalchemy import select

from contenthub.exceptions import (
    ClaimConflictError,
    GenerationTimeoutError,
    InvalidStateError,
    RequestValidationFailed,
    UpstreamServiceError,
)
from contenthub.models import ImageJob, ImageTranslation, SourceImage, Version
from contenthub.services import image_jobs


async def _translations(session, job_id):
    rows = await session.scalars(
        select(ImageTranslation)
        .join(SourceImage, ImageTranslation.source_image_id == SourceImage.id)
        .where(SourceImage.job_id == job_id)
        .execution_options(populate_existing=True)
    )
    return list(rows.all())


async def _job_status(session, job_id):
    return await session.scalar(select(ImageJob.status).where(ImageJob.id == job_id))


@pytest.mark.asyncio
async def test_prepare_goes_to_expanding_for_vertical_output(session, make_job):
    job = await make_job(expansions=("completed", "failed"))

    result = await image_jobs.prepare_job(session, job.id)

    assert result.status == "expanding"
    assert result.sources_to_expand == 2
    statuses = (await session.scalars(
        select(SourceImage.expansion_status).where(SourceImage.job_id == job.id).order_by(SourceImage.processing_order)
    )).all()
    assert statuses == ["completed", "pending"]


@pytest.mark.asyncio
async def test_prepare_square_only_job_is_ready(session, make_job):
    job = await make_job(ratios=("1:1",))

    result = await image_jobs.prepare_job(session, job.id)

    assert result.status == "ready"
    with pytest.raises(InvalidStateError):
        await image_jobs.prepare_job(session, job.id)


@pytest.mark.asyncio
async def test_expansions_settle_job_to_ready(session, make_job, generator, storage, pipeline):
    job = await make_job(status="expanding", expansions=("pending", "pending"))
    job_id = job.id
    first, second = (await session.scalars(
        select(SourceImage).where(SourceImage.job_id == job_id).order_by(SourceImage.processing_order)
    )).all()
    generator.fail_for[second.original_url] = UpstreamServiceError("Generation task failed: blurry", "generation")

    done = await image_jobs.expand_source_image(
        session, job_id, first.id, generator=generator, storage=storage, pipeline=pipeline,
    )
    assert done.expansion_status == "completed"
    assert done.job_status == "expanding"
    assert done.expanded_url.startswith(f"https://storage.test/image-jobs/{job_id}/expansions/{first.id}/")
    assert generator.calls[0]["aspect_ratio"] == "9:16"

    with pytest.raises(UpstreamServiceError):
        await image_jobs.expand_source_image(
            session, job_id, second.id, generator=generator, storage=storage, pipeline=pipeline,
        )

    await session.refresh(second)
    assert second.expansion_status == "failed"
    assert "blurry" in second.expansion_error
    assert await _job_status(session, job_id) == "ready"


@pytest.mark.asyncio
async def test_fan_out_creates_one_row_per_source_language_and_ratio(session, make_job, pipeline):
    job = await make_job(status="ready", expansions=("completed", "completed", "failed"))

    result = await image_jobs.create_translations(session, job.id, pipeline)

    assert result.created == 10
    assert result.status == "processing"
    rows = await _translations(session, job.id)
    assert len(rows) == 10
    assert sum(1 for r in rows if r.aspect_ratio == "1:1") == 6
    assert sum(1 for r in rows if r.aspect_ratio == "9:16") == 4
    assert all(r.status == "pending" for r in rows)
    assert await _job_status(session, job.id) == "processing"


@pytest.mark.asyncio
async def test_fan_out_twice_is_rejected(session, make_job, pipeline):
    job = await make_job(status="ready", expansions=("completed",))
    await image_jobs.create_translations(session, job.id, pipeline)

    with pytest.raises(InvalidStateError):
        await image_jobs.create_translations(session, job.id, pipeline)

    assert len(await _translations(session, job.id)) == 4


@pytest.mark.asyncio
async def test_fan_out_without_sources(session, make_job, pipeline):
    job = await make_job(status="ready", expansions=())

    with pytest.raises(RequestValidationFailed):
        await image_jobs.create_translations(session, job.id, pipeline)


@pytest.mark.asyncio
async def test_translating_every_row_completes_the_job(session, make_job, generator, storage, pipeline):
    job = await make_job(status="ready", expansions=("completed",), languages=("sv",))
    created = await image_jobs.create_translations(session, job.id, pipeline)
    assert created.created == 2

    for translation_id in created.translation_ids:
        result = await image_jobs.translate_image(
            session, job.id, translation_id, generator=generator, storage=storage, pipeline=pipeline,
        )
        assert result.version_number == 1

    assert result.job_status == "completed"
    vertical = [c for c in generator.calls if c["aspect_ratio"] == "9:16"]
    assert vertical[0]["image_urls"] == ["https://uploads.test/source-0-tall.png"]
    rows = await _translations(session, job.id)
    assert all(r.status == "completed" and r.active_version_id for r in rows)


@pytest.mark.asyncio
async def test_failed_generation_records_a_failed_version(session, make_job, generator, storage, pipeline):
    job = await make_job(status="ready", expansions=("completed",), languages=("sv",), ratios=("1:1",))
    job_id = job.id
    created = await image_jobs.create_translations(session, job_id, pipeline)
    translation_id = created.translation_ids[0]
    generator.fail_for["https://uploads.test/source-0.png"] = UpstreamServiceError("Generation task failed: nsfw", "generation")

    with pytest.raises(UpstreamServiceError):
        await image_jobs.translate_image(
            session, job_id, translation_id, generator=generator, storage=storage, pipeline=pipeline,
        )

    versions = (await session.scalars(select(Version).where(Version.image_translation_id == translation_id))).all()
    assert len(versions) == 1
    assert versions[0].is_active is False
    assert "nsfw" in versions[0].error_message
    translation = (await _translations(session, job_id))[0]
    assert translation.status == "failed"
    assert await _job_status(session, job_id) == "failed"


@pytest.mark.asyncio
async def test_generation_timeout_is_recorded_on_the_translation(session, make_job, generator, storage, pipeline):
    job = await make_job(status="ready", expansions=("completed",), languages=("sv",), ratios=("1:1",))
    job_id = job.id
    created = await image_jobs.create_translations(session, job_id, pipeline)
    translation_id = created.translation_ids[0]
    generator.fail_for["https://uploads.test/source-0.png"] = GenerationTimeoutError("task-7", 280.0)

    with pytest.raises(GenerationTimeoutError):
        await image_jobs.translate_image(
            session, job_id, translation_id, generator=generator, storage=storage, pipeline=pipeline,
        )

    translation = (await _translations(session, job_id))[0]
    assert translation.status == "failed"
    assert "timed out" in translation.error_message
    version = await session.scalar(select(Version).where(Version.image_translation_id == translation_id))
    assert "timed out" in version.error_message
    assert await _job_status(session, job_id) == "failed"


@pytest.mark.asyncio
async def test_translating_a_failed_row_again_reopens_the_settled_job(session, make_job, generator, storage, pipeline):
    job = await make_job(status="ready", expansions=("completed",), languages=("sv",), ratios=("1:1",))
    job_id = job.id
    created = await image_jobs.create_translations(session, job_id, pipeline)
    translation_id = created.translation_ids[0]
    generator.fail_for["https://uploads.test/source-0.png"] = UpstreamServiceError("Generation task failed", "generation")
    with pytest.raises(UpstreamServiceError):
        await image_jobs.translate_image(
            session, job_id, translation_id, generator=generator, storage=storage, pipeline=pipeline,
        )
    assert await _job_status(session, job_id) == "failed"

    generator.fail_for.clear()
    result = await image_jobs.translate_image(
        session, job_id, translation_id, generator=generator, storage=storage, pipeline=pipeline,
    )

    assert result.version_number == 2
    assert result.job_status == "completed"
    translation = (await _translations(session, job_id))[0]
    assert translation.status == "completed"


@pytest.mark.asyncio
async def test_busy_translation_is_a_conflict(session, make_job, make_translations, generator, storage, pipeline):
    job = await make_job(status="processing")
    (busy,) = await make_translations(job, ["processing"])

    with pytest.raises(ClaimConflictError):
        await image_jobs.translate_image(
            session, job.id, busy.id, generator=generator, storage=storage, pipeline=pipeline,
        )
    assert generator.calls == []


@pytest.mark.asyncio
async def test_correction_pass_adds_new_active_version(session, make_job, analyzer, generator, storage, pipeline):
    job = await make_job(status="ready", expansions=("completed",), languages=("sv",), ratios=("1:1",))
    created = await image_jobs.create_translations(session, job.id, pipeline)
    translation_id = created.translation_ids[0]
    first = await image_jobs.translate_image(
        session, job.id, translation_id, generator=generator, storage=storage, pipeline=pipeline,
    )
    assert first.job_status == "completed"

    analyzer.image_analysis = {"quality_score": 60, "extracted_text": "Kop nu", "spelling_errors": ["Kop"]}
    verdict = await image_jobs.analyze_version(session, job.id, first.version_id, analyzer=analyzer, pipeline=pipeline)
    assert verdict.quality_score == 60
    assert verdict.needs_correction
    assert "Kop" in verdict.corrected_text

    second = await image_jobs.translate_image(
        session, job.id, translation_id, generator=generator, storage=storage, pipeline=pipeline,
        corrected_text=verdict.corrected_text, visual_instructions=verdict.visual_instructions,
    )
    assert second.version_number == 2
    assert second.job_status == "completed"
    assert "Kop" in generator.calls[-1]["prompt"]

    versions = (await session.scalars(
        select(Version)
        .where(Version.image_translation_id == translation_id)
        .order_by(Version.version_number)
        .execution_options(populate_existing=True)
    )).all()
    assert [v.is_active for v in versions] == [False, True]

    analyzer.image_analysis = {"quality_score": 50, "extracted_text": "Köp nu"}
    floored = await image_jobs.analyze_version(session, job.id, second.version_id, analyzer=analyzer, pipeline=pipeline)
    assert floored.raw_score == 50
    assert floored.quality_score == 60


@pytest.mark.asyncio
async def test_retry_resets_failed_rows_and_reopens_job(session, make_job, make_translations, age_row, pipeline):
    job = await make_job(status="failed")
    failed, done, stalled = await make_translations(job, ["failed", "completed", "processing"])
    await age_row(ImageTranslation, stalled.id, pipeline.stale_after_seconds + 60)

    result = await image_jobs.retry_translations(session, job.id, pipeline)
    assert result.translation_ids == [failed.id]
    assert result.job_status == "processing"

    result = await image_jobs.retry_translations(session, job.id, pipeline, include_stalled=True)
    assert result.translation_ids == [stalled.id]


@pytest.mark.asyncio
async def test_summary_counts_by_language(session, make_job, make_translations):
    job = await make_job(status="processing")
    await make_translations(job, ["completed", "completed", "failed", "pending"])

    summary = await image_jobs.get_job_summary(session, job.id)

    assert summary.total == 4
    assert summary.completed == 2
    assert summary.failed == 1
    assert summary.pending == 1
    assert summary.by_language == {"sv": {"completed": 2, "failed": 1, "pending": 1}}


@pytest.mark.asyncio
async def test_delete_job_removes_rows_and_stored_objects(session, make_job, generator, storage, pipeline):
    job = await make_job(status="ready", expansions=("completed",), languages=("sv",), ratios=("1:1",))
    created = await image_jobs.create_translations(session, job.id, pipeline)
    await image_jobs.translate_image(
        session, job.id, created.translation_ids[0], generator=generator, storage=storage, pipeline=pipeline,
    )
    storage.objects["image-jobs/other-job/keep.png"] = b"x"

    removed = await image_jobs.delete_job(session, job.id, storage=storage)

    assert removed == 1
    assert storage.removed_prefixes == [f"image-jobs/{job.id}/"]
    assert "image-jobs/other-job/keep.png" in storage.objects
    assert await session.get(ImageJob, job.id) is None
    assert (await session.scalars(select(Version))).all() == []
    assert (await session.scalars(select(SourceImage))).all() == []
