import asyncio
import io
from datetime import timedelta
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from PIL import Image
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from contenthub.config import PipelineSettings
from contenthub.exceptions import UpstreamServiceError
from contenthub.inference.generation_client import TaskSucceeded
from contenthub.models import Base, ImageJob, ImageTranslation, SourceImage, new_id, utcnow
from contenthub.schemas import ImageQualityAnalysis, PageQualityAnalysis


def png_bytes(width: int = 64, height: int = 64) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), (200, 120, 40)).save(buf, format="PNG")
    return buf.getvalue()


class FakeGenerator:
    def __init__(self):
        self.calls: List[Dict] = []
        self.fail_for: Dict[str, Exception] = {}
        self.download_bytes = png_bytes()

    async def generate(self, prompt, image_urls, aspect_ratio="2:3", resolution="2K", seed=None,
                       poll_interval=3.0, max_wait=280.0):
        self.calls.append({
            "prompt": prompt,
            "image_urls": list(image_urls),
            "aspect_ratio": aspect_ratio,
            "resolution": resolution,
        })
        for url in image_urls:
            if url in self.fail_for:
                raise self.fail_for[url]
        return TaskSucceeded(urls=(f"https://cdn.test/result-{len(self.calls)}.png",), cost_time_ms=1200)

    async def download(self, url: str) -> bytes:
        return self.download_bytes


class FakeStorage:
    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.removed_prefixes: List[str] = []

    async def put(self, path: str, data: bytes, content_type: str = "image/png") -> str:
        self.objects[path] = data
        return f"https://storage.test/{path}"

    async def remove_prefix(self, prefix: str) -> int:
        self.removed_prefixes.append(prefix)
        keys = [k for k in self.objects if k.startswith(prefix)]
        for k in keys:
            del self.objects[k]
        return len(keys)


class FakeAnalyzer:
    def __init__(self):
        self.image_analysis: Optional[dict] = None
        self.page_analysis: Optional[dict] = None
        self.page_calls: List[Dict] = []

    async def analyze_image(self, original_url, translated_url, language):
        return ImageQualityAnalysis.model_validate(self.image_analysis)

    async def analyze_page(self, original_text, translated_text, language, prior_corrections=None,
                           previous_issues=None, previous_score=None):
        self.page_calls.append({"original": original_text, "translated": translated_text, "previous_score": previous_score})
        return PageQualityAnalysis.model_validate(self.page_analysis)

    async def translate_html(self, html, language):
        return {
            "translated_html": html.replace("Hello", "Hej"),
            "seo_title": "Titel",
            "seo_description": "Beskrivning",
        }


class FakeMeta:
    def __init__(self, failing_images=()):
        self.failing_images = set(failing_images)
        self.in_flight = 0
        self.max_in_flight = 0
        self.ads_created: List[str] = []

    async def create_campaign(self, name, objective, status="PAUSED"):
        return "mc-1"

    async def create_ad_set(self, name, campaign_id, daily_budget, countries, start_time=None, end_time=None, **_kwargs):
        return "as-1"

    async def duplicate_ad_set(self, template_adset_id, campaign_id, name):
        return "as-copy"

    async def upload_image(self, image_url):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            if image_url in self.failing_images:
                raise UpstreamServiceError("Invalid image", "meta")
            return f"hash-{image_url.rsplit('/', 1)[-1]}"
        finally:
            self.in_flight -= 1

    async def create_creative(self, name, image_hash, primary_text, link_url, headline=None, **_kwargs):
        return f"cr-{image_hash}"

    async def create_ad(self, name, adset_id, creative_id, status="PAUSED"):
        ad_id = f"ad-{len(self.ads_created) + 1}"
        self.ads_created.append(ad_id)
        return ad_id


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'contenthub.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, class_=AsyncSession)
    yield factory
    await engine.dispose()


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def pipeline():
    return PipelineSettings(poll_interval_seconds=0.0, max_wait_seconds=5.0)


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def analyzer():
    return FakeAnalyzer()


async def _age_row(session: AsyncSession, model, entity_id: str, seconds: int) -> None:
    await session.execute(
        update(model)
        .where(model.id == entity_id)
        .values(updated_at=utcnow() - timedelta(seconds=seconds))
        .execution_options(synchronize_session=False)
    )
    await session.commit()


@pytest.fixture
def age_row(session):
    async def _age(model, entity_id: str, seconds: int) -> None:
        await _age_row(session, model, entity_id, seconds)

    return _age


@pytest.fixture
def make_job(session):
    async def _make(
        status="draft",
        expansions=("pending",),
        languages=("sv", "da"),
        ratios=("1:1", "9:16"),
    ) -> ImageJob:
        job = ImageJob(
            id=new_id(),
            name="Spring sale",
            status=status,
            target_languages=list(languages),
            target_ratios=list(ratios),
        )
        session.add(job)
        for order, expansion in enumerate(expansions):
            session.add(SourceImage(
                id=new_id(),
                job_id=job.id,
                original_url=f"https://uploads.test/source-{order}.png",
                processing_order=order,
                expansion_status=expansion,
                expanded_url=f"https://uploads.test/source-{order}-tall.png" if expansion == "completed" else None,
            ))
        await session.commit()
        return job

    return _make


@pytest.fixture
def make_translations(session):
    async def _make(job: ImageJob, statuses) -> List[ImageTranslation]:
        source = SourceImage(
            id=new_id(),
            job_id=job.id,
            original_url="https://uploads.test/extra.png",
            expansion_status="completed",
        )
        session.add(source)
        rows = [
            ImageTranslation(id=new_id(), source_image_id=source.id, language="sv", aspect_ratio="1:1", status=s)
            for s in statuses
        ]
        session.add_all(rows)
        await session.commit()
        return rows

    return _make


@pytest.fixture
def make_png():
    return png_bytes


@pytest.fixture
def make_meta():
    return FakeMeta
