"""
Page translation routes
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import PipelineSettings
from ..db import get_db
from ..dependencies import get_analysis_client, get_generation_client, get_pipeline_settings, get_storage
from ..inference.analysis_client import AnalysisClient
from ..inference.generation_client import GenerationClient
from ..schemas import (
    AnalyzeTranslationRequest,
    AnalyzeTranslationResponse,
    DeleteABTestResponse,
    FixTranslationResponse,
    TranslatePageImageRequest,
    TranslatePageImageResponse,
    TranslatePageRequest,
    TranslationResponse,
)
from ..services import pages
from ..storage import ObjectStorage

router = APIRouter(tags=["Translations"])


@router.post("/pages/{page_id}/translate", response_model=TranslationResponse)
async def translate_page(
    page_id: str,
    body: TranslatePageRequest,
    db: AsyncSession = Depends(get_db),
    translator: AnalysisClient = Depends(get_analysis_client),
    pipeline: PipelineSettings = Depends(get_pipeline_settings),
):
    return await pages.translate_page(
        db, page_id, body.language, body.variant, translator=translator, pipeline=pipeline,
    )


@router.post("/translations/{translation_id}/fix", response_model=FixTranslationResponse)
async def fix_translation(
    translation_id: str,
    db: AsyncSession = Depends(get_db),
    pipeline: PipelineSettings = Depends(get_pipeline_settings),
):
    """Apply the stored suggested corrections"""
    return await pages.fix_translation(db, translation_id, pipeline=pipeline)


@router.post("/translations/{translation_id}/analyze", response_model=AnalyzeTranslationResponse)
async def analyze_translation(
    translation_id: str,
    body: AnalyzeTranslationRequest = None,
    db: AsyncSession = Depends(get_db),
    analyzer: AnalysisClient = Depends(get_analysis_client),
    pipeline: PipelineSettings = Depends(get_pipeline_settings),
):
    previous_context = body.previous_context if body else None
    return await pages.analyze_translation(
        db, translation_id, previous_context, analyzer=analyzer, pipeline=pipeline,
    )


@router.post("/translations/{translation_id}/images", response_model=TranslatePageImageResponse)
async def translate_page_image(
    translation_id: str,
    body: TranslatePageImageRequest,
    db: AsyncSession = Depends(get_db),
    generator: GenerationClient = Depends(get_generation_client),
    storage: ObjectStorage = Depends(get_storage),
    pipeline: PipelineSettings = Depends(get_pipeline_settings),
):
    """Translate one image on a translated page and swap it into the markup"""
    return await pages.translate_page_image(
        db, translation_id, body.image_url, body.language, body.image_index, body.aspect_ratio,
        generator=generator, storage=storage, pipeline=pipeline,
    )


@router.delete("/ab-tests/{test_id}", response_model=DeleteABTestResponse)
async def delete_ab_test(test_id: str, db: AsyncSession = Depends(get_db)):
    return await pages.delete_ab_test(db, test_id)
