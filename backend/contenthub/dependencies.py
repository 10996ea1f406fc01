"""
FastAPI dependencies for external collaborators.

Tests swap these through `app.dependency_overrides`.
"""
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from .config import PipelineSettings
from .db import get_session_factory as _session_factory
from .inference.analysis_client import AnalysisClient
from .inference.generation_client import GenerationClient
from .inference.meta_client import MetaClient
from .storage import ObjectStorage, get_storage as _get_storage


def get_pipeline_settings() -> PipelineSettings:
    return PipelineSettings.from_settings()


def get_generation_client() -> GenerationClient:
    return GenerationClient()


def get_analysis_client() -> AnalysisClient:
    return AnalysisClient()


def get_meta_client() -> MetaClient:
    return MetaClient()


def get_storage() -> ObjectStorage:
    return _get_storage()


def get_session_factory() -> Callable[[], AsyncSession]:
    return _session_factory()
