from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

from .languages import NAME_EXAMPLES, NEVER_TRANSLATE, language_label


EXPANSION_PROMPT = (
    "Expand this square (1:1) image to a 9:16 vertical format.\n"
    "Keep the ENTIRE original image content EXACTLY as-is. Do not modify, redraw, or alter any "
    "existing elements, text, colors, or layout.\n"
    "Extend the background/canvas vertically (top and bottom) to fill the 9:16 ratio.\n"
    "The extended areas should seamlessly blend with the existing background style.\n"
    "Do NOT add any new text, logos, or design elements.\n"
    "The original content should remain centered in the expanded canvas."
)


def join_prompt_parts(parts: Iterable[Optional[str]]) -> str:
    cleaned: List[str] = []
    for part in parts:
        if not part:
            continue
        value = part.strip()
        if not value:
            continue
        cleaned.append(value)
    return "\n\n".join(cleaned)


def short_localization_note(language: str) -> Optional[str]:
    """
    Cultural localisation block for image pipelines.

    Swedish is the source culture, so it gets no note.
    """
    if language == "sv":
        return None
    label = language_label(language)
    examples = ", ".join(f"{src} → {dst}" for src, dst in NAME_EXAMPLES.get(language, [])[:3])
    lines = [
        "CULTURAL LOCALISATION (MANDATORY):",
        f"- Replace ALL Swedish/English person names with culturally appropriate {label} names."
        + (f" Examples: {examples}." if examples else ""),
        f"- Translate ALL UI text (Reply/Svar, Comment/Kommentar, dates like \"X dagar sedan\") to {label}.",
        f"- The result should look as if ORIGINALLY CREATED for a {label} audience.",
        "- PRESERVE: Product images, star ratings, brand names, overall layout.",
    ]
    return "\n".join(lines)


def image_translation_prompt(
    language: str,
    corrected_text: Optional[str] = None,
    visual_instructions: Optional[str] = None,
) -> str:
    label = language_label(language)
    base = (
        f"Recreate this exact image but translate all text from English to {label}. "
        "Keep the same visual style, layout, colors, and design. Only translate the text."
    )
    if not corrected_text and not visual_instructions:
        return join_prompt_parts([base, short_localization_note(language)])

    return join_prompt_parts([
        base,
        f"IMPORTANT - Use these exact corrected translations:\n{corrected_text}" if corrected_text else None,
        f"ADDITIONAL VISUAL INSTRUCTIONS:\n{visual_instructions}" if visual_instructions else None,
    ])


def page_image_prompt(language: str) -> str:
    label = language_label(language)
    return join_prompt_parts([
        f"Recreate this exact image but translate all text to {label}. The source text may be in any "
        "language (English, Swedish, or other). Keep the same visual style, layout, colors, and design. "
        "Only translate the text.",
        "NEVER TRANSLATE these brand names and certificates, keep them EXACTLY as-is: "
        + ", ".join(NEVER_TRANSLATE) + ".",
        short_localization_note(language),
    ])


IMAGE_ANALYSIS_PROMPT = (
    "Compare an English ad image with its {label} translation. Return JSON:\n"
    '{{"quality_score":<0-100>,"spelling_errors":[],"grammar_issues":[],"missing_text":[],'
    '"overall_assessment":"<1-2 sentences>","extracted_text":"<all visible text in translated image>"}}\n\n'
    "Scoring: 90-100 perfect, 70-89 minor issues, 50-69 noticeable problems, 0-49 major errors. "
    "Be strict, one misspelled word reduces score."
)


def image_analysis_prompt(language: str) -> str:
    return IMAGE_ANALYSIS_PROMPT.format(label=language_label(language))


def page_analysis_prompt(
    language: str,
    applied_corrections: Optional[List[Tuple[str, str]]] = None,
    previous_issues: Optional[List[str]] = None,
    previous_score: Optional[int] = None,
) -> str:
    label = language_label(language)
    parts = [
        f"You are a senior quality analyst for translated web pages. You evaluate {label} translations "
        f"of English landing pages. The page should read as if ORIGINALLY WRITTEN in {label}.",
        "PROTECTED BRAND NAMES, never translated and never flagged: " + ", ".join(NEVER_TRANSLATE) + ".",
        "Respond with JSON:\n"
        '{"quality_score": <0-100>, "fluency_issues": [], "grammar_issues": [], "context_errors": [], '
        '"name_localization": [], "overall_assessment": "<2-3 sentences>", '
        '"suggested_corrections": [{"find": "exact visible text", "replace": "corrected text"}]}',
        "For EVERY issue include a correction. \"find\" is the visible text exactly as a reader sees it, "
        "without markup. Each correction applies to all occurrences on the page.",
        "Scoring: 90-100 native quality, 75-89 minor issues, 50-74 noticeable problems, 0-49 poor.",
        "Write issue descriptions and overall_assessment in English.",
    ]
    if applied_corrections:
        corrections = "\n".join(f'- "{find}" -> "{replace}"' for find, replace in applied_corrections)
        issues = "\n".join(f"- {i}" for i in previous_issues or []) or "none"
        parts.append(
            "CORRECTIONS ALREADY APPLIED, DO NOT RE-REPORT:\n"
            f"{corrections}\n\nPreviously identified issues (now resolved):\n{issues}"
        )
        if previous_score is not None:
            parts.append(
                f"The previous score was {previous_score}. Only a genuinely new critical issue "
                "justifies a lower score."
            )
    return join_prompt_parts(parts)


def page_translation_prompt(language: str) -> str:
    label = language_label(language)
    return join_prompt_parts([
        f"You are a senior native {label} copywriter and translator. Translate and localise the "
        f"visible text of this HTML page from English to {label} so it reads as if originally "
        f"written in {label}.",
        "Do not touch HTML tags, attributes, URLs, variables or scripts. Keep numbers and prices.",
        "Keep brand names unchanged: " + ", ".join(NEVER_TRANSLATE) + ".",
        "Return ONLY valid JSON: "
        '{"translated_html": "<full page>", "seo_title": "<title>", "seo_description": "<meta description>"}',
    ])
