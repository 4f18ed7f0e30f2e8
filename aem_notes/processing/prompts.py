"""Prompt templates for the transcription and enhancement passes."""

from __future__ import annotations

from typing import Optional

__all__ = ["build_enhancement_prompt", "build_transcription_prompt"]


_TRANSCRIPTION_TEMPLATE = """
You are an expert educational content transcriber specialising in mathematics and
engineering. Convert the attached PDF lecture into well-structured HTML while keeping
its academic rigour and improving its pedagogical flow.

PRIMARY OBJECTIVES
1. Complete fidelity: transcribe ALL content, without omission or paraphrasing.
2. Mathematical accuracy: convert every piece of notation to LaTeX.
3. Educational structure: organise the material for student comprehension.
4. Logical flow: concepts must build on one another.

TRANSCRIPTION STANDARDS
Mathematics:
  - Inline math as \\(expression\\) for variables and short formulas.
  - Block equations as \\[expression\\] for major equations and derivations.
  - Preserve the exact notation and symbols of the source.
Content organisation:
  - Main topics as <h2>, subtopics as <h3>.
  - <div class="definition"> for formal definitions.
  - <div class="theorem"> for important results.
  - <div class="example"> for worked problems.
  - <div class="solution"> for step-by-step workings.
  - <div class="formula"> for key formulas.
  - <div class="method"> for systematic procedures.
Structure:
  - Place definitions before their applications and follow theory with examples.
  - Keep the instructor's teaching sequence and the original problem numbering.
  - Include every derivation step in a formal academic tone.

HTML OUTPUT STRUCTURE
<div id="{lecture_id}" class="lecture-content" data-unit="{unit}">
   <h1>{title}</h1>
   [SYSTEMATICALLY ORGANISED CONTENT]
</div>

CRITICAL REQUIREMENTS
- Output ONLY the HTML container with its content.
- NO explanatory text or commentary.
- Use the exact ID provided: {lecture_id}
"""


_ENHANCEMENT_TEMPLATE = """
You are an educational content designer for STEM subjects. Transform the HTML below
into a pedagogically superior format that improves comprehension and retention.

FORMATTING
  - <h1> lecture title, <h2> major topics, <h3> key concepts, <h4> supporting details.
  - Containers: <div class="definition">, <div class="theorem">, <div class="formula">,
    <div class="example">, <div class="solution">, <div class="method">, and
    <blockquote> for important notes.
  - Inline math stays \\(expression\\); block equations \\[expression\\] go inside
    <div class="math-display"> (use <div class="math-display numbered"> for
    equations referenced later).
  - <div class="step"> for individual solution steps, <ol> for procedures, <ul> for
    properties, <div class="highlight"> for key takeaways.
  - <hr class="section-divider"> between major topic sections.

CONTENT PRESERVATION RULES
- Do NOT remove, summarise or alter any content, example, solution or equation.
- Keep the instructor's teaching sequence and notation.

OUTPUT REQUIREMENTS
<div id="{lecture_id}" class="lecture-content" data-unit="{unit}">
   [PEDAGOGICALLY ENHANCED CONTENT]
</div>

CONSTRAINTS
- Use the exact ID provided: {lecture_id}
- Output ONLY the enhanced HTML container, with no meta-commentary.

CONTENT TO ENHANCE:
{content}
"""


def build_transcription_prompt(
    *,
    lecture_id: str,
    unit: str,
    title: str,
    custom_prompt: Optional[str] = None,
) -> str:
    """Return the first-pass prompt, or *custom_prompt* verbatim when non-blank."""

    if custom_prompt and custom_prompt.strip():
        return custom_prompt
    return _TRANSCRIPTION_TEMPLATE.format(lecture_id=lecture_id, unit=unit, title=title)


def build_enhancement_prompt(*, lecture_id: str, unit: str, content: str) -> str:
    """Return the second-pass prompt wrapping the first-pass HTML in *content*."""

    return _ENHANCEMENT_TEMPLATE.format(lecture_id=lecture_id, unit=unit, content=content)
