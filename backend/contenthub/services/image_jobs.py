"""
Image job pipeline: expansion, per-language translation, analysis and retry.

Every operation handles one unit of work per call. Status columns are only
written through the claim helpers; parent job status is only written by the
aggregator.
"""
from __future__ import annotations

import time
import uuid
from collections import defaultdict
from typing import Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..config import PipelineSettings
from ..exceptions import EntityNotFoundError, InvalidStateError, RequestValidationFailed
from ..inference.analysis_client import AnalysisClient
from ..inference.generation_client import GenerationClient
from ..ledger import IMAGE_JOB, IMAGE_TRANSLATION, SOURCE_IMAGE
from ..localization.prompts import EXPANSION_PROMPT, image_translation_prompt
from ..logger import logger
from ..models import ImageJob, ImageTranslation, SourceImage, Version, new_id
from ..schemas import (
    AnalyzeVersionResponse,
    CreateTranslationsResponse,
    ExpansionResponse,
    JobSummary,
    PrepareJobResponse,
    RetryTranslationsResponse,
    TranslateImageResponse,
)
from ..storage import ObjectStorage
from .aggregate import advance_job_after_expansion, advance_job_after_translation
from .claims import ensure_claimed, release_on_failure, reset_for_retry, transition
from .quality import build_correction_prompt, needs_correction, reconcile_score

SQUARE = "1:1"
VERTICAL = "9:16"


async def _get_job(session: AsyncSession, job_id: str, *options) -> ImageJob:
    # populate_existing: a job already in the identity map would otherwise skip the loader options.
    job = await session.scalar(
        select(ImageJob)
        .options(*options)
        .where(ImageJob.id == job_id)
        .execution_options(populate_existing=True)
    )
    if not job:
        logger.warning(f"Image job not found: {job_id}")
        raise EntityNotFoundError("Image job", job_id)
    return job


async def _job_status(session: AsyncSession, job_id: str) -> Optional[str]:
    return await session.scalar(select(ImageJob.status).where(ImageJob.id == job_id))


async def _reopen_job(session: AsyncSession, job_id: str) -> bool:
    """Settled job goes back to processing when one of its translations is claimed again."""
    return await transition(
        session, IMAGE_JOB, ImageJob, job_id, ("completed", "failed"), "processing",
        expect_moved=False, error_message=None,
    )


async def _generate_and_store(
    generator: GenerationClient,
    storage: ObjectStorage,
    pipeline: PipelineSettings,
    prompt: str,
    source_url: str,
    aspect_ratio: str,
    path_prefix: str,
    resolution: Optional[str] = None,
) -> str:
    result = await generator.generate(
        prompt,
        [source_url],
        aspect_ratio=aspect_ratio,
        resolution=resolution or pipeline.generation_resolution,
        poll_interval=pipeline.poll_interval_seconds,
        max_wait=pipeline.max_wait_seconds,
    )
    data = await generator.download(result.urls[0])
    return await storage.put(f"{path_prefix}/{uuid.uuid4()}.png", data, "image/png")


async def prepare_job(session: AsyncSession, job_id: str) -> PrepareJobResponse:
    """
    Leave draft: to `expanding` when vertical output needs expansions first,
    otherwise straight to `ready`.
    """
    job = await _get_job(session, job_id, selectinload(ImageJob.source_images))

    source_ids = [s.id for s in job.source_images]
    wants_vertical = VERTICAL in (job.target_ratios or [])
    target = "expanding" if wants_vertical and source_ids else "ready"

    moved = await transition(
        session, IMAGE_JOB, ImageJob, job_id, "draft", target, commit=False, expect_moved=False,
    )
    if not moved:
        await session.rollback()
        current = await _job_status(session, job_id)
        raise InvalidStateError("Image job", job_id, current, "draft")

    if target == "expanding":
        # Failed expansions from an earlier attempt start over.
        await session.execute(
            update(SourceImage)
            .where(SourceImage.job_id == job_id, SourceImage.expansion_status == "failed")
            .values(expansion_status="pending", expansion_error=None)
            .execution_options(synchronize_session=False)
        )
    await session.commit()

    logger.info(f"Job {job_id} prepared -> {target}", extra={"job_id": job_id, "sources": len(source_ids)})
    return PrepareJobResponse(
        job_id=job_id,
        status=target,
        sources_to_expand=len(source_ids) if target == "expanding" else 0,
    )


async def expand_source_image(
    session: AsyncSession,
    job_id: str,
    source_image_id: str,
    *,
    generator: GenerationClient,
    storage: ObjectStorage,
    pipeline: PipelineSettings,
) -> ExpansionResponse:
    source = await session.scalar(
        select(SourceImage).where(SourceImage.id == source_image_id, SourceImage.job_id == job_id)
    )
    if not source:
        raise EntityNotFoundError("Source image", source_image_id)
    original_url = source.original_url

    await ensure_claimed(
        session, SOURCE_IMAGE, SourceImage, source_image_id,
        ["pending", "failed"], "processing",
        stale_after=pipeline.stale_after_seconds,
        status_attr="expansion_status",
        error_attr="expansion_error",
        values={"expansion_error": None},
    )

    try:
        async with release_on_failure(
            session, SOURCE_IMAGE, SourceImage, source_image_id, "processing",
            status_attr="expansion_status", error_attr="expansion_error",
        ):
            expanded_url = await _generate_and_store(
                generator, storage, pipeline, EXPANSION_PROMPT, original_url, VERTICAL,
                f"image-jobs/{job_id}/expansions/{source_image_id}",
            )
            await transition(
                session, SOURCE_IMAGE, SourceImage, source_image_id, "processing", "completed",
                status_attr="expansion_status", expanded_url=expanded_url, expansion_error=None,
            )
    finally:
        await advance_job_after_expansion(session, job_id)

    return ExpansionResponse(
        source_image_id=source_image_id,
        expansion_status="completed",
        expanded_url=expanded_url,
        job_status=await _job_status(session, job_id),
    )


async def create_translations(
    session: AsyncSession,
    job_id: str,
    pipeline: PipelineSettings,
) -> CreateTranslationsResponse:
    """
    Fan a ready job out into one translation row per source, language and ratio.

    The job moves ready -> processing in the same transaction that inserts the
    rows, so a second caller either sees no rows and `ready`, or both.
    Vertical rows exist only for sources whose expansion completed.
    """
    job = await _get_job(session, job_id, selectinload(ImageJob.source_images))
    if not job.source_images:
        raise RequestValidationFailed(f"Image job {job_id} has no source images")

    languages = list(job.target_languages or pipeline.default_languages)
    ratios = list(job.target_ratios or [SQUARE])
    sources = [(s.id, s.expansion_status, s.expanded_url) for s in job.source_images]

    moved = await transition(
        session, IMAGE_JOB, ImageJob, job_id, "ready", "processing",
        commit=False, expect_moved=False,
    )
    if not moved:
        await session.rollback()
        current = await _job_status(session, job_id)
        raise InvalidStateError("Image job", job_id, current, "ready")

    rows: List[ImageTranslation] = []
    for source_id, expansion_status, expanded_url in sources:
        for language in languages:
            if SQUARE in ratios:
                rows.append(ImageTranslation(id=new_id(), source_image_id=source_id, language=language, aspect_ratio=SQUARE))
            if VERTICAL in ratios and expansion_status == "completed" and expanded_url:
                rows.append(ImageTranslation(id=new_id(), source_image_id=source_id, language=language, aspect_ratio=VERTICAL))

    session.add_all(rows)
    await session.commit()

    logger.info(
        f"Created {len(rows)} translations for job {job_id}",
        extra={"job_id": job_id, "count": len(rows), "languages": languages, "ratios": ratios},
    )
    return CreateTranslationsResponse(
        job_id=job_id,
        status="processing",
        created=len(rows),
        translation_ids=[r.id for r in rows],
    )


async def translate_image(
    session: AsyncSession,
    job_id: str,
    translation_id: str,
    *,
    generator: GenerationClient,
    storage: ObjectStorage,
    pipeline: PipelineSettings,
    corrected_text: Optional[str] = None,
    visual_instructions: Optional[str] = None,
) -> TranslateImageResponse:
    """
    Generate one translated image and record it as a new active Version.

    A call with correction hints may redo a completed translation. A failed
    attempt is still recorded as an inactive Version carrying the error.
    """
    row = (await session.execute(
        select(ImageTranslation, SourceImage)
        .join(SourceImage, ImageTranslation.source_image_id == SourceImage.id)
        .where(ImageTranslation.id == translation_id)
    )).first()
    if not row:
        raise EntityNotFoundError("Image translation", translation_id)
    translation, source = row
    if source.job_id != job_id:
        raise RequestValidationFailed(f"Translation {translation_id} does not belong to job {job_id}")

    language = translation.language
    aspect_ratio = translation.aspect_ratio or SQUARE
    if aspect_ratio == VERTICAL and source.expanded_url:
        source_url = source.expanded_url
    else:
        source_url = source.original_url

    is_correction = bool(corrected_text or visual_instructions)
    allowed = ["completed", "failed"] if is_correction else ["pending", "failed"]
    await ensure_claimed(
        session, IMAGE_TRANSLATION, ImageTranslation, translation_id, allowed, "processing",
        stale_after=pipeline.stale_after_seconds,
    )
    # A job holding a working translation is processing again, whatever it settled to.
    await _reopen_job(session, job_id)

    last_number = await session.scalar(
        select(func.max(Version.version_number)).where(Version.image_translation_id == translation_id)
    )
    version_number = (last_number or 0) + 1
    started = time.monotonic()

    async def _record_failed_version(_exc: Exception, message: str) -> None:
        session.add(Version(
            id=new_id(),
            image_translation_id=translation_id,
            version_number=version_number,
            error_message=message,
            generation_time_seconds=round(time.monotonic() - started, 2),
            corrected_text=corrected_text,
            visual_instructions=visual_instructions,
            is_active=False,
        ))
        await session.commit()

    try:
        async with release_on_failure(
            session, IMAGE_TRANSLATION, ImageTranslation, translation_id, "processing",
            on_failure=_record_failed_version,
        ):
            prompt = image_translation_prompt(language, corrected_text, visual_instructions)
            translated_url = await _generate_and_store(
                generator, storage, pipeline, prompt, source_url, aspect_ratio,
                f"image-jobs/{job_id}/{translation_id}",
            )
            elapsed = round(time.monotonic() - started, 2)

            await session.execute(
                update(Version)
                .where(Version.image_translation_id == translation_id, Version.is_active.is_(True))
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
            version = Version(
                id=new_id(),
                image_translation_id=translation_id,
                version_number=version_number,
                translated_url=translated_url,
                generation_time_seconds=elapsed,
                corrected_text=corrected_text,
                visual_instructions=visual_instructions,
                is_active=True,
            )
            session.add(version)
            await session.flush()
            await transition(
                session, IMAGE_TRANSLATION, ImageTranslation, translation_id, "processing", "completed",
                translated_url=translated_url, active_version_id=version.id, error_message=None,
            )
    finally:
        await advance_job_after_translation(session, job_id)

    logger.info(
        f"Translation {translation_id} v{version_number} completed in {elapsed}s",
        extra={"job_id": job_id, "translation_id": translation_id, "language": language, "aspect_ratio": aspect_ratio},
    )
    return TranslateImageResponse(
        translation_id=translation_id,
        status="completed",
        version_id=version.id,
        version_number=version_number,
        translated_url=translated_url,
        generation_time_seconds=elapsed,
        job_status=await _job_status(session, job_id),
    )


async def analyze_version(
    session: AsyncSession,
    job_id: str,
    version_id: str,
    *,
    analyzer: AnalysisClient,
    pipeline: PipelineSettings,
) -> AnalyzeVersionResponse:
    """
    Score a generated version against its source image.

    A version produced by a correction pass never scores below the best
    earlier analysed version of the same translation.
    """
    row = (await session.execute(
        select(Version, ImageTranslation, SourceImage)
        .join(ImageTranslation, Version.image_translation_id == ImageTranslation.id)
        .join(SourceImage, ImageTranslation.source_image_id == SourceImage.id)
        .where(Version.id == version_id)
    )).first()
    if not row:
        raise EntityNotFoundError("Version", version_id)
    version, translation, source = row
    if source.job_id != job_id:
        raise RequestValidationFailed(f"Version {version_id} does not belong to job {job_id}")
    if not version.translated_url:
        raise RequestValidationFailed(f"Version {version_id} has no generated image to analyze")

    if translation.aspect_ratio == VERTICAL and source.expanded_url:
        original_url = source.expanded_url
    else:
        original_url = source.original_url

    analysis = await analyzer.analyze_image(original_url, version.translated_url, translation.language)

    corrections_applied = bool(version.corrected_text or version.visual_instructions)
    previous_score = None
    if corrections_applied:
        previous_score = await session.scalar(
            select(Version.quality_score)
            .where(
                Version.image_translation_id == version.image_translation_id,
                Version.version_number < version.version_number,
                Version.quality_score.is_not(None),
            )
            .order_by(Version.version_number.desc())
            .limit(1)
        )

    final_score = reconcile_score(analysis.score, previous_score, corrections_applied)
    if final_score != analysis.score:
        logger.info(
            f"Score floor applied to version {version_id}: {analysis.score} -> {final_score}",
            extra={"version_id": version_id, "raw_score": analysis.score, "previous_score": previous_score},
        )

    stored = analysis.model_dump()
    stored["score"] = final_score
    version.quality_score = final_score
    version.quality_analysis = stored
    version.extracted_text = analysis.extracted_text
    await session.commit()

    below = needs_correction(final_score, pipeline)
    prompt = build_correction_prompt(analysis) if below else None
    return AnalyzeVersionResponse(
        version_id=version_id,
        quality_score=final_score,
        raw_score=analysis.score,
        extracted_text=analysis.extracted_text,
        analysis=analysis,
        needs_correction=below,
        corrected_text=prompt.corrected_text if prompt else None,
        visual_instructions=prompt.visual_instructions if prompt else None,
    )


async def retry_translations(
    session: AsyncSession,
    job_id: str,
    pipeline: PipelineSettings,
    include_stalled: bool = False,
) -> RetryTranslationsResponse:
    await _get_job(session, job_id)
    scope = ImageTranslation.source_image_id.in_(
        select(SourceImage.id).where(SourceImage.job_id == job_id)
    )
    ids = await reset_for_retry(
        session, IMAGE_TRANSLATION, ImageTranslation, scope, ["failed"],
        stale_after=pipeline.stale_after_seconds if include_stalled else None,
    )
    if ids:
        await _reopen_job(session, job_id)
    return RetryTranslationsResponse(
        job_id=job_id,
        reset=len(ids),
        translation_ids=ids,
        job_status=await _job_status(session, job_id),
    )


async def get_job_summary(session: AsyncSession, job_id: str) -> JobSummary:
    job = await _get_job(session, job_id)
    rows = (await session.execute(
        select(ImageTranslation.language, ImageTranslation.status, func.count())
        .join(SourceImage, ImageTranslation.source_image_id == SourceImage.id)
        .where(SourceImage.job_id == job_id)
        .group_by(ImageTranslation.language, ImageTranslation.status)
    )).all()

    totals: Dict[str, int] = defaultdict(int)
    by_language: Dict[str, Dict[str, int]] = defaultdict(dict)
    for language, status, count in rows:
        totals[status] += count
        by_language[language][status] = count

    return JobSummary(
        job_id=job_id,
        status=job.status,
        total=sum(totals.values()),
        completed=totals["completed"],
        failed=totals["failed"],
        pending=totals["pending"],
        processing=totals["processing"],
        by_language=dict(by_language),
        updated_at=job.updated_at,
    )


async def delete_job(session: AsyncSession, job_id: str, *, storage: ObjectStorage) -> int:
    """Remove stored objects under the job's prefix, then the job with all its rows."""
    job = await _get_job(
        session,
        job_id,
        selectinload(ImageJob.source_images)
        .selectinload(SourceImage.translations)
        .selectinload(ImageTranslation.versions),
    )

    removed = await storage.remove_prefix(f"image-jobs/{job_id}/")
    await session.delete(job)
    await session.commit()
    logger.info(f"Deleted image job {job_id}", extra={"job_id": job_id, "storage_objects": removed})
    return removed
