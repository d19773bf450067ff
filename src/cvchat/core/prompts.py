# src/cvchat/core/prompts.py
from dataclasses import dataclass
from typing import List, Optional, Tuple

from cvchat.core.constants import HIGH_CONFIDENCE, MEDIUM_CONFIDENCE
from cvchat.core.ports import SkillRecord
from cvchat.core.projects import ProjectMatch

SYSTEM = """
You answer recruiter questions about the candidate's professional profile.
Always reply in the first person, in British English.

Style
- At most {max_sentences} short sentences, no filler openers ("I've worked with...", "My expertise spans...").
- Start with a strong verb: implemented, engineered, delivered, architected, modernised.
- One measurable outcome per skill; never combine outcomes of different skills.
- Close with the employer or project named in the context when one is given.

Facts
- Use ONLY the skills in the context. Never invent skills, outcomes, projects or timeframes.
- Years are total career experience. Never present them as time spent on one project.
- Use the exact numbers from the context.
""".strip()


@dataclass
class ScoredSkill:
    skill: SkillRecord
    similarity: float


def confidence_label(score: float) -> str:
    if score >= HIGH_CONFIDENCE:
        return "high"
    if score >= MEDIUM_CONFIDENCE:
        return "medium"
    return "low"


def _skill_block(i: int, m: ScoredSkill) -> str:
    s = m.skill
    head = f"{i}. {s.name} - {s.experience_years} years"
    if s.level:
        head += f", {s.level}"
    if s.recency:
        head += f" ({s.recency})"
    lines = [head]
    for label, value in (
        ("Category", s.category),
        ("Action", s.action),
        ("Effect", s.effect),
        ("Outcome", s.outcome),
        ("Project", s.related_project),
        ("Employer", s.employer),
        ("Summary", s.summary),
    ):
        if value:
            lines.append(f"   {label}: {value}")
    lines.append(f"   Similarity: {m.similarity:.3f}")
    return "\n".join(lines)


class PromptBuilder:
    def __init__(self, max_sentences: int = 3):
        self.max_sentences = max_sentences

    def system_prompt(self) -> str:
        return SYSTEM.format(max_sentences=self.max_sentences)

    def user_prompt(self, query: str, matches: List[ScoredSkill], project: Optional[ProjectMatch] = None) -> str:
        top = matches[0].similarity if matches else 0.0
        parts = [f'Question: "{query}"']
        if project:
            parts.append(
                f"Project context: this question is about {project.name}. Every skill below was used at "
                f"{project.name}; describe what was done there, not total career years."
            )
        parts.append(f"Matching skills (confidence: {confidence_label(top)}, top score: {top:.3f}):")
        parts.append("\n\n".join(_skill_block(i, m) for i, m in enumerate(matches, 1)))
        return "\n\n".join(parts)

    def build(self, query: str, matches: List[ScoredSkill], project: Optional[ProjectMatch] = None) -> Tuple[str, str]:
        return self.system_prompt(), self.user_prompt(query, matches, project)
