"""
Pydantic schemas for request/response validation and external service payloads
"""
from pydantic import AliasChoices, BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

# ===== Common Schemas =====

class HealthResponse(BaseModel):
    status: str
    service: str

class StatusResponse(BaseModel):
    id: str
    status: str

# ===== Quality Analysis Schemas =====

class Correction(BaseModel):
    find: str
    replace: str = ""

class ImageQualityAnalysis(BaseModel):
    score: int = Field(ge=0, le=100, validation_alias=AliasChoices("score", "quality_score"))
    extracted_text: str = ""
    spelling_errors: List[str] = Field(default_factory=list)
    grammar_issues: List[str] = Field(default_factory=list)
    missing_text: List[str] = Field(default_factory=list)
    overall_assessment: str = ""

class PageQualityAnalysis(BaseModel):
    score: int = Field(ge=0, le=100, validation_alias=AliasChoices("score", "quality_score"))
    fluency_issues: List[str] = Field(default_factory=list)
    grammar_issues: List[str] = Field(default_factory=list)
    context_errors: List[str] = Field(default_factory=list)
    name_localization: List[str] = Field(default_factory=list)
    overall_assessment: str = ""
    suggested_corrections: List[Correction] = Field(default_factory=list)

    @property
    def issues(self) -> List[str]:
        return [*self.fluency_issues, *self.grammar_issues, *self.context_errors]

class PreviousContext(BaseModel):
    """What the last fix pass did; lets the analyzer judge instead of re-flagging."""
    previous_score: Optional[int] = None
    applied_corrections: List[Correction] = Field(default_factory=list)
    previous_issues: List[str] = Field(default_factory=list)

# ===== Image Job Schemas =====

class SourceImageSummary(BaseModel):
    id: str
    original_url: str
    expansion_status: str
    expanded_url: Optional[str] = None
    expansion_error: Optional[str] = None

class PrepareJobResponse(BaseModel):
    job_id: str
    status: str
    sources_to_expand: int = 0

class ExpansionResponse(BaseModel):
    source_image_id: str
    expansion_status: str
    expanded_url: Optional[str] = None
    job_status: str

class CreateTranslationsResponse(BaseModel):
    job_id: str
    status: str
    created: int
    translation_ids: List[str]

class TranslateImageRequest(BaseModel):
    corrected_text: Optional[str] = None
    visual_instructions: Optional[str] = None

class TranslateImageResponse(BaseModel):
    translation_id: str
    status: str
    version_id: str
    version_number: int
    translated_url: str
    generation_time_seconds: float
    job_status: str

class AnalyzeVersionResponse(BaseModel):
    version_id: str
    quality_score: int
    raw_score: int
    extracted_text: str
    analysis: ImageQualityAnalysis
    needs_correction: bool
    corrected_text: Optional[str] = None
    visual_instructions: Optional[str] = None

class RetryTranslationsRequest(BaseModel):
    include_stalled: bool = False

class RetryTranslationsResponse(BaseModel):
    job_id: str
    reset: int
    translation_ids: List[str]
    job_status: str

class JobSummary(BaseModel):
    job_id: str
    status: str
    total: int
    completed: int
    failed: int
    pending: int
    processing: int
    by_language: Dict[str, Dict[str, int]] = Field(default_factory=dict)
    updated_at: Optional[datetime] = None

# ===== Page Translation Schemas =====

class TranslatePageRequest(BaseModel):
    language: str
    variant: str = "a"

class TranslationResponse(BaseModel):
    id: str
    page_id: str
    language: str
    variant: str
    status: str
    quality_score: Optional[int] = None
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    slug: Optional[str] = None

class FixTranslationResponse(BaseModel):
    translation_id: str
    applied: int
    failed: List[str]
    applied_corrections: List[Correction]
    previous_score: Optional[int] = None
    previous_issues: List[str] = Field(default_factory=list)
    status: str

class AnalyzeTranslationRequest(BaseModel):
    previous_context: Optional[PreviousContext] = None

class AnalyzeTranslationResponse(BaseModel):
    translation_id: str
    quality_score: int
    raw_score: int
    analysis: PageQualityAnalysis
    needs_correction: bool

class TranslatePageImageRequest(BaseModel):
    image_url: str
    language: Optional[str] = None
    image_index: Optional[int] = Field(default=None, ge=0)
    aspect_ratio: Optional[str] = None

class TranslatePageImageResponse(BaseModel):
    translation_id: str
    original_url: str
    translated_url: str
    strategy: Optional[str] = None
    replaced: bool
    aspect_ratio: str
    resolution: str

class DeleteABTestResponse(BaseModel):
    test_id: str
    deleted_variant_id: Optional[str] = None

# ===== Campaign Schemas =====

class AdPushResult(BaseModel):
    ad_id: str
    status: str
    meta_ad_id: Optional[str] = None
    error: Optional[str] = None

class PushCampaignResponse(BaseModel):
    campaign_id: str
    status: str
    meta_campaign_id: Optional[str] = None
    meta_adset_id: Optional[str] = None
    pushed: int
    failed: int
    ads: List[AdPushResult]

# ===== Generation Schemas =====

class GenerationInput(BaseModel):
    prompt: str
    image_input: List[str]
    aspect_ratio: str = "2:3"
    resolution: str = "2K"
    output_format: str = "png"
    seed: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
