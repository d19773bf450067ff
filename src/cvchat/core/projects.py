# src/cvchat/core/projects.py
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from cvchat.core.ports import SkillRecord


@dataclass(frozen=True)
class ProjectMatch:
    name: str
    aliases: tuple

    def terms(self) -> List[str]:
        return [t.lower() for t in (self.name, *self.aliases) if t]


class ProjectDetector:
    """Lookup table of project/employer name -> aliases, matched case-insensitively."""

    def __init__(self, projects: Optional[Dict[str, List[str]]] = None):
        self._projects: Dict[str, List[str]] = {}
        for name, aliases in (projects or {}).items():
            self.add(name, aliases)

    def add(self, name: str, aliases: Optional[List[str]] = None) -> None:
        self._projects[name] = [a for a in (aliases or []) if a]

    def known(self) -> List[str]:
        return list(self._projects)

    def detect(self, query: str) -> Optional[ProjectMatch]:
        text = (query or "").lower()
        for name, aliases in self._projects.items():
            for term in [name, *aliases]:
                if re.search(r"\b" + re.escape(term.lower()) + r"\b", text):
                    return ProjectMatch(name=name, aliases=tuple(aliases))
        return None

    @staticmethod
    def matches(record: SkillRecord, project: ProjectMatch) -> bool:
        tags = " ".join(t for t in (record.related_project, record.employer) if t).lower()
        if not tags:
            return False
        return any(term in tags for term in project.terms())
