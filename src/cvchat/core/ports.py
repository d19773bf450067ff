from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Protocol


@dataclass
class SkillRecord:
    id: int
    stable_id: str
    name: str
    experience: Optional[str] = None
    experience_years: int = 0
    proficiency_percent: Optional[int] = None
    level: Optional[str] = None
    category: Optional[str] = None
    summary: Optional[str] = None
    recency: Optional[str] = None
    action: Optional[str] = None
    effect: Optional[str] = None
    outcome: Optional[str] = None
    related_project: Optional[str] = None
    employer: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def embedding_text(self) -> str:
        # name first; the narrative fields carry most of the semantic signal
        parts = [self.name]
        if self.experience:
            parts.append(self.experience)
        if self.level:
            parts.append(self.level)
        if self.category:
            parts.append(self.category)
        for extra in (self.summary, self.action, self.effect, self.outcome, self.related_project):
            if extra:
                parts.append(extra)
        return " ".join(parts)


@dataclass
class VectorMatch:
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def skill_id(self) -> Optional[int]:
        sid = self.metadata.get("id")
        return int(sid) if sid is not None else None


class IEmbedder(Protocol):
    dim: int

    def embed(self, text: str) -> List[float]: ...
    def embed_many(self, texts: List[str]) -> List[List[float]]: ...


class IVectorIndex(Protocol):
    def query(self, vector: List[float], top_k: int) -> List[VectorMatch]: ...
    def upsert(self, records: List[Dict[str, Any]]) -> None: ...
    def health(self) -> bool: ...
    def set_current_version(self, version: Optional[int]) -> None: ...
    def prune(self, keep_version: int) -> int: ...


class IKeyValueCache(Protocol):
    def get(self, key: str) -> Any: ...
    def put(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None: ...
    def delete(self, key: str) -> None: ...
    def add(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool: ...
    def incr(self, key: str, amount: float, ttl_seconds: Optional[int] = None) -> float: ...


class ISkillStore(Protocol):
    def get_skill(self, skill_id: int) -> Optional[SkillRecord]: ...
    def list_skills(self, limit: int, offset: int = 0) -> List[SkillRecord]: ...
    def list_skill_ids(self, limit: int) -> List[int]: ...
    def count_skills(self) -> int: ...
    def ping(self) -> bool: ...
    def next_index_version(self) -> int: ...
    def begin_index(self, version: int, item_type: str = "skills") -> None: ...
    def complete_index(self, version: int, total: int) -> None: ...
    def last_index(self) -> Optional[Dict[str, Any]]: ...


class ILLM(Protocol):
    def answer(self, system: str, prompt: str) -> str: ...
