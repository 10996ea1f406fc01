from __future__ import annotations

from typing import NamedTuple, Optional

from ..config import PipelineSettings
from ..schemas import ImageQualityAnalysis


class CorrectionPrompt(NamedTuple):
    corrected_text: str
    visual_instructions: str


def reconcile_score(
    new_score: int,
    previous_score: Optional[int] = None,
    corrections_applied: bool = False,
) -> int:
    """
    Final score to record for a fresh analysis.

    After a correction pass the score may not drop below what was recorded
    before the pass. Without corrections, or on a first analysis, the new
    score stands as reported.
    """
    if previous_score is None or not corrections_applied:
        return new_score
    return max(new_score, previous_score)


def needs_correction(score: Optional[int], settings: PipelineSettings, *, page: bool = False) -> bool:
    enabled = settings.page_quality_enabled if page else settings.quality_enabled
    threshold = settings.page_quality_threshold if page else settings.quality_threshold
    if not enabled or score is None:
        return False
    return score < threshold


def build_correction_prompt(analysis: ImageQualityAnalysis) -> CorrectionPrompt:
    """Turn an image analysis into instructions for a regeneration pass."""
    corrections = []
    if analysis.spelling_errors:
        corrections.append(f"Fix spelling errors: {', '.join(analysis.spelling_errors)}")
    if analysis.grammar_issues:
        corrections.append(f"Fix grammar: {', '.join(analysis.grammar_issues)}")
    if analysis.missing_text:
        corrections.append(f"Include missing text: {', '.join(analysis.missing_text)}")

    if analysis.extracted_text:
        corrected_text = f"The translated text should read: {analysis.extracted_text}\n" + "\n".join(corrections)
    else:
        corrected_text = "\n".join(corrections)

    visual_parts = [analysis.overall_assessment]
    if corrections:
        visual_parts.append(f"Please correct these issues: {'; '.join(corrections)}")
    visual_instructions = "\n".join(p for p in visual_parts if p)

    return CorrectionPrompt(corrected_text=corrected_text.strip(), visual_instructions=visual_instructions)
