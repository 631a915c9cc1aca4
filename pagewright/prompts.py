"""Prompt templates for unit mode and document mode."""

from __future__ import annotations

import json

from .structures import Chunk, LocalizationRequest

UNIT_SYSTEM_INSTRUCTION = (
    "You are a localization expert. Return ONLY a JSON array with no additional text."
)
DOCUMENT_SYSTEM_INSTRUCTION = (
    "You are a professional content localization expert. Return ONLY valid HTML "
    "code with no additional text or formatting."
)

RTL_LANGUAGES = frozenset(
    {"arabic", "hebrew", "persian", "farsi", "urdu", "pashto", "yiddish"}
)

_RULE = "-" * 60


def is_rtl(language: str) -> bool:
    return language.strip().lower() in RTL_LANGUAGES


def _target_block(request: LocalizationRequest) -> str:
    lines = [f"Target Language: {request.target_language}"]
    if request.target_country:
        lines.append(f"Target Country: {request.target_country}")
    lines.append(f"Writing Style: {request.writing_style}")
    lines.append(f"Target Audience: {request.audience}")
    if request.instructions:
        lines.append("")
        lines.append("Additional Instructions:")
        lines.append(request.instructions.strip())
    return "\n".join(lines)


def build_unit_prompt(chunk: Chunk, request: LocalizationRequest) -> str:
    """Prompt asking for a JSON array keyed by unit id."""

    payload = json.dumps(chunk.payload(), ensure_ascii=False, indent=2)
    country_hint = (
        f" for readers in {request.target_country}" if request.target_country else ""
    )
    return f"""You are a professional content localization expert.

{_RULE}
LOCALIZATION TASK
{_RULE}

{_target_block(request)}

{_RULE}
TEXT CONTENT TO LOCALIZE
{_RULE}

{payload}

Items whose context is "section-group" hold a whole page section as an outline:
**bold** lines are headings, [bracketed] lines are buttons and "•" lines are
list items. Keep that outline, the markers and the number of blank-line
separated parts unchanged.

{_RULE}
OUTPUT FORMAT
{_RULE}

Return a JSON array with the localized text for each id:

[
  {{"id": "TEXT_0", "localized": "Your localized text here"}},
  {{"id": "TEXT_1", "localized": "Another localized text"}}
]

IMPORTANT:
- Return ONLY the JSON array (no markdown, no explanations)
- Keep the same ids
- Localize all text to {request.target_language}{country_hint}
- Adapt cultural references, names, currencies and dates
- Maintain the tone and style
- Start with [ and end with ]

BEGIN:"""


def build_document_prompt(html: str, request: LocalizationRequest) -> str:
    """Prompt asking for the complete rewritten document."""

    rtl_attribute = ' dir="rtl"' if is_rtl(request.target_language) else ""
    return f"""You are a professional content localization system.

{_RULE}
HTML DOCUMENT TO LOCALIZE
{_RULE}

{html}

{_RULE}
LOCALIZATION REQUIREMENTS
{_RULE}

{_target_block(request)}

{_RULE}
CRITICAL RULES
{_RULE}

1. Change ONLY textual content - preserve the exact HTML structure
2. Keep all ids, classes and attributes unchanged
3. Preserve all formatting and indentation
4. Keep all functionality - only text changes
5. For right-to-left languages (Hebrew, Arabic): add dir="rtl" to <html>
6. Keep code comments in the original language
7. Adapt dates, currencies and phone numbers to the target country
8. Adapt names, addresses and businesses to the local market
9. Localize the <title> and <meta name="description"> content
10. Do NOT modify <script> tags or JavaScript code

{_RULE}
OUTPUT FORMAT
{_RULE}

Return ONLY the complete updated HTML document.
Start with <!DOCTYPE html> and end with </html>.
Do NOT add explanations, commentary or markdown code fences.

Example of the expected shape:
<!DOCTYPE html>
<html lang="{request.target_language}"{rtl_attribute}>
<head>
    <title>Your Localized Title</title>
</head>
<body>
    <h1>Your Localized Heading</h1>
</body>
</html>

BEGIN - Return the HTML now:"""
