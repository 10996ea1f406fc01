"""
Image job routes
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import PipelineSettings
from ..db import get_db
from ..dependencies import get_analysis_client, get_generation_client, get_pipeline_settings, get_storage
from ..inference.analysis_client import AnalysisClient
from ..inference.generation_client import GenerationClient
from ..logger import logger
from ..schemas import (
    AnalyzeVersionResponse,
    CreateTranslationsResponse,
    ExpansionResponse,
    JobSummary,
    PrepareJobResponse,
    RetryTranslationsRequest,
    RetryTranslationsResponse,
    TranslateImageRequest,
    TranslateImageResponse,
)
from ..services import image_jobs
from ..storage import ObjectStorage

router = APIRouter(prefix="/image-jobs", tags=["Image jobs"])


@router.post("/{job_id}/prepare", response_model=PrepareJobResponse)
async def prepare_job(job_id: str, db: AsyncSession = Depends(get_db)):
    """Move a draft job on to expansion or straight to ready"""
    return await image_jobs.prepare_job(db, job_id)


@router.post("/{job_id}/sources/{source_image_id}/expand", response_model=ExpansionResponse)
async def expand_source_image(
    job_id: str,
    source_image_id: str,
    db: AsyncSession = Depends(get_db),
    generator: GenerationClient = Depends(get_generation_client),
    storage: ObjectStorage = Depends(get_storage),
    pipeline: PipelineSettings = Depends(get_pipeline_settings),
):
    """Expand one square source image to 9:16"""
    logger.info(f"Expansion request for source {source_image_id}", extra={"job_id": job_id})
    return await image_jobs.expand_source_image(
        db, job_id, source_image_id, generator=generator, storage=storage, pipeline=pipeline,
    )


@router.post("/{job_id}/translations", response_model=CreateTranslationsResponse, status_code=201)
async def create_translations(
    job_id: str,
    db: AsyncSession = Depends(get_db),
    pipeline: PipelineSettings = Depends(get_pipeline_settings),
):
    """Create one translation per source, language and ratio"""
    return await image_jobs.create_translations(db, job_id, pipeline)


@router.post("/{job_id}/translations/{translation_id}/translate", response_model=TranslateImageResponse)
async def translate_image(
    job_id: str,
    translation_id: str,
    body: TranslateImageRequest = None,
    db: AsyncSession = Depends(get_db),
    generator: GenerationClient = Depends(get_generation_client),
    storage: ObjectStorage = Depends(get_storage),
    pipeline: PipelineSettings = Depends(get_pipeline_settings),
):
    """Generate one translated image (optionally a correction pass)"""
    body = body or TranslateImageRequest()
    return await image_jobs.translate_image(
        db, job_id, translation_id,
        generator=generator, storage=storage, pipeline=pipeline,
        corrected_text=body.corrected_text, visual_instructions=body.visual_instructions,
    )


@router.post("/{job_id}/versions/{version_id}/analyze", response_model=AnalyzeVersionResponse)
async def analyze_version(
    job_id: str,
    version_id: str,
    db: AsyncSession = Depends(get_db),
    analyzer: AnalysisClient = Depends(get_analysis_client),
    pipeline: PipelineSettings = Depends(get_pipeline_settings),
):
    """Score a generated version against its source"""
    return await image_jobs.analyze_version(db, job_id, version_id, analyzer=analyzer, pipeline=pipeline)


@router.post("/{job_id}/retry", response_model=RetryTranslationsResponse)
async def retry_translations(
    job_id: str,
    body: RetryTranslationsRequest = None,
    db: AsyncSession = Depends(get_db),
    pipeline: PipelineSettings = Depends(get_pipeline_settings),
):
    """Reset failed (and optionally stalled) translations to pending"""
    body = body or RetryTranslationsRequest()
    return await image_jobs.retry_translations(db, job_id, pipeline, include_stalled=body.include_stalled)


@router.get("/{job_id}/summary", response_model=JobSummary)
async def get_job_summary(job_id: str, db: AsyncSession = Depends(get_db)):
    return await image_jobs.get_job_summary(db, job_id)


@router.delete("/{job_id}")
async def delete_job(
    job_id: str,
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    """Delete a job, its rows and its stored images"""
    removed = await image_jobs.delete_job(db, job_id, storage=storage)
    return {"job_id": job_id, "deleted": True, "storage_objects": removed}
