"""
Page translation pipeline: translate, fix, analyze, page-image swap and A/B tests.
"""
from __future__ import annotations

import uuid
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import PipelineSettings
from ..exceptions import EntityNotFoundError, RequestValidationFailed, UpstreamServiceError
from ..inference.analysis_client import AnalysisClient
from ..inference.generation_client import GenerationClient
from ..ledger import TRANSLATION
from ..localization.prompts import page_image_prompt
from ..logger import logger
from ..models import ABTest, Page, Translation, utcnow
from ..rendering.html_text import extract_readable_text
from ..rendering.image_probe import generation_shape
from ..schemas import (
    AnalyzeTranslationResponse,
    Correction,
    DeleteABTestResponse,
    FixTranslationResponse,
    PageQualityAnalysis,
    PreviousContext,
    TranslatePageImageResponse,
    TranslationResponse,
)
from ..storage import ObjectStorage
from .claims import ensure_claimed, release_on_failure, transition
from .patcher import apply_corrections, replace_image_src
from .quality import needs_correction, reconcile_score

# Concurrent page-image swaps on one translation retry their markup write this often.
MAX_PATCH_ATTEMPTS = 3


def _to_response(t: Translation) -> TranslationResponse:
    return TranslationResponse(
        id=t.id,
        page_id=t.page_id,
        language=t.language,
        variant=t.variant,
        status=t.status,
        quality_score=t.quality_score,
        seo_title=t.seo_title,
        seo_description=t.seo_description,
        slug=t.slug,
    )


async def _get_translation(session: AsyncSession, translation_id: str) -> Translation:
    translation = await session.get(Translation, translation_id)
    if not translation:
        logger.warning(f"Translation not found: {translation_id}")
        raise EntityNotFoundError("Translation", translation_id)
    return translation


async def _get_or_create_translation(session: AsyncSession, page_id: str, language: str, variant: str) -> Translation:
    query = select(Translation).where(
        Translation.page_id == page_id,
        Translation.language == language,
        Translation.variant == variant,
    )
    translation = await session.scalar(query)
    if translation:
        return translation

    session.add(Translation(page_id=page_id, language=language, variant=variant, status="draft"))
    try:
        await session.commit()
    except IntegrityError:
        # Another request created the same (page, language, variant) first.
        await session.rollback()
    return await session.scalar(query)


async def translate_page(
    session: AsyncSession,
    page_id: str,
    language: str,
    variant: str = "a",
    *,
    translator: AnalysisClient,
    pipeline: PipelineSettings,
) -> TranslationResponse:
    page = await session.get(Page, page_id)
    if not page:
        raise EntityNotFoundError("Page", page_id)
    original_html, slug = page.original_html, page.slug

    translation = await _get_or_create_translation(session, page_id, language, variant)
    translation_id = translation.id

    await ensure_claimed(
        session, TRANSLATION, Translation, translation_id,
        ["draft", "translated", "published", "error"], "translating",
        stale_after=pipeline.stale_after_seconds,
        values={"error_message": None},
    )

    async with release_on_failure(session, TRANSLATION, Translation, translation_id, "translating"):
        result = await translator.translate_html(original_html, language)
        await transition(
            session, TRANSLATION, Translation, translation_id, "translating", "translated",
            translated_html=result["translated_html"],
            seo_title=result.get("seo_title"),
            seo_description=result.get("seo_description"),
            slug=slug,
            quality_score=None,
            quality_analysis=None,
            error_message=None,
        )

    logger.info(
        f"Page {page_id} translated to {language}/{variant}",
        extra={"page_id": page_id, "translation_id": translation_id, "language": language},
    )
    await session.refresh(translation)
    return _to_response(translation)


def _stored_analysis(translation: Translation) -> Optional[PageQualityAnalysis]:
    raw = translation.quality_analysis
    if not raw:
        return None
    return PageQualityAnalysis.model_validate(raw)


async def fix_translation(
    session: AsyncSession,
    translation_id: str,
    *,
    pipeline: PipelineSettings,
) -> FixTranslationResponse:
    """
    Apply the analyzer's suggested corrections to the stored markup.

    The result carries what the next analysis needs to judge the fix:
    applied corrections, previous score and previous issues.
    """
    translation = await _get_translation(session, translation_id)
    analysis = _stored_analysis(translation)
    if not analysis or not analysis.suggested_corrections:
        raise RequestValidationFailed(f"Translation {translation_id} has no suggested corrections")
    previous_score = translation.quality_score
    previous_issues = analysis.issues
    corrections: List[Correction] = list(analysis.suggested_corrections)

    await ensure_claimed(
        session, TRANSLATION, Translation, translation_id,
        ["translated", "published", "error"], "translating",
        stale_after=pipeline.stale_after_seconds,
    )

    async with release_on_failure(session, TRANSLATION, Translation, translation_id, "translating"):
        current_html = await session.scalar(
            select(Translation.translated_html).where(Translation.id == translation_id)
        )
        if not current_html:
            raise RequestValidationFailed(f"Translation {translation_id} has no translated content")
        outcome = apply_corrections(current_html, corrections)
        await transition(
            session, TRANSLATION, Translation, translation_id, "translating", "translated",
            translated_html=outcome.content, error_message=None,
        )

    if outcome.failed:
        logger.warning(
            f"{len(outcome.failed)} corrections found no match in translation {translation_id}",
            extra={"translation_id": translation_id, "failed": outcome.failed},
        )
    logger.info(
        f"Applied {outcome.applied} corrections to translation {translation_id}",
        extra={"translation_id": translation_id, "applied": outcome.applied},
    )
    return FixTranslationResponse(
        translation_id=translation_id,
        applied=outcome.applied,
        failed=outcome.failed,
        applied_corrections=outcome.applied_corrections,
        previous_score=previous_score,
        previous_issues=previous_issues,
        status="translated",
    )


async def analyze_translation(
    session: AsyncSession,
    translation_id: str,
    previous_context: Optional[PreviousContext] = None,
    *,
    analyzer: AnalysisClient,
    pipeline: PipelineSettings,
) -> AnalyzeTranslationResponse:
    row = (await session.execute(
        select(Translation, Page.original_html)
        .join(Page, Translation.page_id == Page.id)
        .where(Translation.id == translation_id)
    )).first()
    if not row:
        raise EntityNotFoundError("Translation", translation_id)
    translation, original_html = row
    if not translation.translated_html:
        raise RequestValidationFailed(f"Translation {translation_id} has no translated content to analyze")

    context = previous_context or PreviousContext()
    analysis = await analyzer.analyze_page(
        extract_readable_text(original_html),
        extract_readable_text(translation.translated_html),
        translation.language,
        prior_corrections=context.applied_corrections,
        previous_issues=context.previous_issues,
        previous_score=context.previous_score,
    )

    corrections_applied = bool(context.applied_corrections)
    final_score = reconcile_score(analysis.score, context.previous_score, corrections_applied)
    if final_score != analysis.score:
        logger.info(
            f"Score floor applied to translation {translation_id}: {analysis.score} -> {final_score}",
            extra={"translation_id": translation_id, "raw_score": analysis.score, "previous_score": context.previous_score},
        )

    stored = analysis.model_dump()
    stored["score"] = final_score
    translation.quality_score = final_score
    translation.quality_analysis = stored
    await session.commit()

    return AnalyzeTranslationResponse(
        translation_id=translation_id,
        quality_score=final_score,
        raw_score=analysis.score,
        analysis=analysis,
        needs_correction=needs_correction(final_score, pipeline, page=True),
    )


async def _patch_markup(
    session: AsyncSession,
    translation_id: str,
    old_src: str,
    new_src: str,
    image_index: Optional[int],
) -> Optional[str]:
    """
    Swap one image reference with a compare-and-set write of the whole markup.

    Returns the strategy that matched, or None when the reference was not found.
    """
    for attempt in range(1, MAX_PATCH_ATTEMPTS + 1):
        current = await session.scalar(
            select(Translation.translated_html).where(Translation.id == translation_id)
        )
        if not current:
            return None
        result = replace_image_src(current, old_src, new_src, image_index)
        if not result.changed:
            logger.warning(
                f"Image reference not found in translation {translation_id}",
                extra={"translation_id": translation_id, "image_url": old_src[:120], "image_index": image_index},
            )
            return None

        written = await session.execute(
            update(Translation)
            .where(Translation.id == translation_id, Translation.translated_html == current)
            .values(translated_html=result.html, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        if written.rowcount == 1:
            return result.strategy
        logger.info(
            f"Markup of translation {translation_id} changed underneath, retrying ({attempt}/{MAX_PATCH_ATTEMPTS})",
            extra={"translation_id": translation_id, "attempt": attempt},
        )

    logger.warning(
        f"Gave up patching translation {translation_id} after {MAX_PATCH_ATTEMPTS} attempts",
        extra={"translation_id": translation_id},
    )
    return None


async def translate_page_image(
    session: AsyncSession,
    translation_id: str,
    image_url: str,
    language: Optional[str] = None,
    image_index: Optional[int] = None,
    aspect_ratio: Optional[str] = None,
    *,
    generator: GenerationClient,
    storage: ObjectStorage,
    pipeline: PipelineSettings,
) -> TranslatePageImageResponse:
    translation = await _get_translation(session, translation_id)
    language = language or translation.language

    try:
        probe = await generator.download(image_url)
    except UpstreamServiceError as e:
        logger.warning(f"Could not probe {image_url[:120]}: {e.message}", extra={"translation_id": translation_id})
        probe = None
    shape = generation_shape(probe, aspect_ratio, pipeline.generation_resolution)

    result = await generator.generate(
        page_image_prompt(language),
        [image_url],
        aspect_ratio=shape.aspect_ratio,
        resolution=shape.resolution,
        poll_interval=pipeline.poll_interval_seconds,
        max_wait=pipeline.max_wait_seconds,
    )
    data = await generator.download(result.urls[0])
    new_url = await storage.put(f"page-images/{translation_id}/{uuid.uuid4()}.png", data, "image/png")

    strategy = await _patch_markup(session, translation_id, image_url, new_url, image_index)
    return TranslatePageImageResponse(
        translation_id=translation_id,
        original_url=image_url,
        translated_url=new_url,
        strategy=strategy,
        replaced=strategy is not None,
        aspect_ratio=shape.aspect_ratio,
        resolution=shape.resolution,
    )


async def delete_ab_test(session: AsyncSession, test_id: str) -> DeleteABTestResponse:
    """Delete an A/B test and its variant translation; the control stays."""
    test = await session.get(ABTest, test_id)
    if not test:
        raise EntityNotFoundError("A/B test", test_id)
    variant_id = test.variant_id
    control_id = test.control_id

    await session.delete(test)
    await session.flush()
    deleted_variant = None
    if variant_id and variant_id != control_id:
        result = await session.execute(delete(Translation).where(Translation.id == variant_id))
        if result.rowcount:
            deleted_variant = variant_id
    await session.commit()

    logger.info(
        f"Deleted A/B test {test_id}",
        extra={"test_id": test_id, "variant_id": deleted_variant, "control_id": control_id},
    )
    return DeleteABTestResponse(test_id=test_id, deleted_variant_id=deleted_variant)
