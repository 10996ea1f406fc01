import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)

Base = declarative_base()


def utcnow() -> datetime:
    # Naive UTC keeps staleness comparisons identical on Postgres and SQLite.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class ImageJob(Base):
    __tablename__ = "image_jobs"
    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    product = Column(String, nullable=True)
    status = Column(String, nullable=False, default="draft")
    target_languages = Column(JSON, nullable=False, default=list)
    target_ratios = Column(JSON, nullable=False, default=lambda: ["1:1", "9:16"])
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    source_images = relationship(
        "SourceImage",
        back_populates="job",
        cascade="all, delete-orphan",
        order_by="SourceImage.processing_order",
    )


class SourceImage(Base):
    __tablename__ = "source_images"
    id = Column(String, primary_key=True, default=new_id)
    job_id = Column(String, ForeignKey("image_jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    original_url = Column(String, nullable=False)
    filename = Column(String, nullable=True)
    processing_order = Column(Integer, nullable=True)
    expansion_status = Column(String, nullable=False, default="pending")
    expanded_url = Column(String, nullable=True)
    expansion_error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    job = relationship("ImageJob", back_populates="source_images")
    translations = relationship(
        "ImageTranslation",
        back_populates="source_image",
        cascade="all, delete-orphan",
    )


class ImageTranslation(Base):
    __tablename__ = "image_translations"
    id = Column(String, primary_key=True, default=new_id)
    source_image_id = Column(String, ForeignKey("source_images.id", ondelete="CASCADE"), nullable=False, index=True)
    language = Column(String, nullable=False)
    aspect_ratio = Column(String, nullable=False, default="1:1")
    status = Column(String, nullable=False, default="pending")
    translated_url = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)
    active_version_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    source_image = relationship("SourceImage", back_populates="translations")
    versions = relationship(
        "Version",
        back_populates="image_translation",
        cascade="all, delete-orphan",
        order_by="Version.version_number",
    )


class Version(Base):
    """One generation attempt. Rows are never rewritten apart from `is_active`."""
    __tablename__ = "versions"
    id = Column(String, primary_key=True, default=new_id)
    image_translation_id = Column(String, ForeignKey("image_translations.id", ondelete="CASCADE"), nullable=False, index=True)
    version_number = Column(Integer, nullable=False)
    translated_url = Column(String, nullable=True)
    quality_score = Column(Integer, nullable=True)
    quality_analysis = Column(JSON, nullable=True)
    extracted_text = Column(Text, nullable=True)
    generation_time_seconds = Column(Float, nullable=True)
    error_message = Column(Text, nullable=True)
    corrected_text = Column(Text, nullable=True)
    visual_instructions = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)

    image_translation = relationship("ImageTranslation", back_populates="versions")


class Page(Base):
    __tablename__ = "pages"
    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    product = Column(String, nullable=True)
    slug = Column(String, nullable=False)
    source_url = Column(String, nullable=True)
    original_html = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow)


class Translation(Base):
    __tablename__ = "translations"
    __table_args__ = (UniqueConstraint("page_id", "language", "variant", name="uq_translation_page_language_variant"),)
    id = Column(String, primary_key=True, default=new_id)
    page_id = Column(String, ForeignKey("pages.id", ondelete="CASCADE"), nullable=False, index=True)
    language = Column(String, nullable=False)
    variant = Column(String, nullable=False, default="a")
    status = Column(String, nullable=False, default="draft")
    translated_html = Column(Text, nullable=True)
    seo_title = Column(String, nullable=True)
    seo_description = Column(String, nullable=True)
    slug = Column(String, nullable=True)
    quality_score = Column(Integer, nullable=True)
    quality_analysis = Column(JSON, nullable=True)
    published_url = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    page = relationship("Page")


class ABTest(Base):
    __tablename__ = "ab_tests"
    id = Column(String, primary_key=True, default=new_id)
    page_id = Column(String, ForeignKey("pages.id", ondelete="CASCADE"), nullable=False)
    language = Column(String, nullable=False)
    status = Column(String, nullable=False, default="draft")
    control_id = Column(String, ForeignKey("translations.id"), nullable=False)
    variant_id = Column(String, ForeignKey("translations.id"), nullable=True)
    split = Column(Integer, nullable=False, default=50)
    winner = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class MetaCampaign(Base):
    __tablename__ = "meta_campaigns"
    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    image_job_id = Column(String, ForeignKey("image_jobs.id", ondelete="SET NULL"), nullable=True)
    meta_campaign_id = Column(String, nullable=True)
    meta_adset_id = Column(String, nullable=True)
    template_adset_id = Column(String, nullable=True)
    objective = Column(String, nullable=False, default="OUTCOME_TRAFFIC")
    countries = Column(JSON, nullable=False, default=list)
    language = Column(String, nullable=True)
    daily_budget = Column(Integer, nullable=False, default=0)
    start_time = Column(String, nullable=True)
    end_time = Column(String, nullable=True)
    status = Column(String, nullable=False, default="draft")
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    ads = relationship(
        "MetaAd",
        back_populates="campaign",
        cascade="all, delete-orphan",
    )


class MetaAd(Base):
    __tablename__ = "meta_ads"
    id = Column(String, primary_key=True, default=new_id)
    campaign_id = Column(String, ForeignKey("meta_campaigns.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    image_url = Column(String, nullable=True)
    ad_copy = Column(Text, nullable=True)
    headline = Column(String, nullable=True)
    landing_page_url = Column(String, nullable=True)
    aspect_ratio = Column(String, nullable=True)
    meta_image_hash = Column(String, nullable=True)
    meta_creative_id = Column(String, nullable=True)
    meta_ad_id = Column(String, nullable=True)
    status = Column(String, nullable=False, default="pending")
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    campaign = relationship("MetaCampaign", back_populates="ads")
