import re

import pytest

from cvchat.adapters.kv_memory import MemoryKV
from cvchat.adapters.skills_sqlite import SqliteSkillStore
from cvchat.adapters.vs_numpy import NumpyIndex
from cvchat.core.config import AppConfig
from cvchat.core.errors import EmbeddingError, InferenceError, VectorIndexUnavailable
from cvchat.core.services import build_services

KEYWORDS = ["python", "aws", "lambda", "react", "kubernetes", "terraform", "golang", "typescript"]

SKILLS = [
    {
        "id": 1, "stable_id": "sk-python", "name": "Python", "experience": "8 years",
        "experience_years": 8, "level": "Expert", "category": "Programming",
        "summary": "Backend APIs and automation", "action": "Built backend services",
        "effect": "Faster delivery", "outcome": "Cut release time by 40%",
        "related_project": "CCHQ", "employer": "Conservative Party",
    },
    {
        "id": 2, "stable_id": "sk-aws-lambda", "name": "AWS Lambda", "experience": "5 years",
        "experience_years": 5, "level": "Advanced", "category": "Cloud",
        "summary": "Serverless event processing", "action": "Migrated batch jobs",
        "effect": "Lower running costs", "outcome": "Reduced hosting spend by 30%",
        "related_project": "Wairbut", "employer": "Wairbut",
    },
    {
        "id": 3, "stable_id": "sk-react", "name": "React", "experience": "4 years",
        "experience_years": 4, "level": "Advanced", "category": "Frontend",
        "summary": "Single page apps", "related_project": "CCHQ", "employer": "Conservative Party",
    },
    {
        "id": 4, "stable_id": "sk-k8s", "name": "Kubernetes", "experience": "3 years",
        "experience_years": 3, "level": "Intermediate", "category": "Platform",
        "summary": "Container orchestration", "employer": "Acme",
    },
]


class FakeEmbedder:
    """Bag-of-keywords vectors: one axis per keyword, so similarities are easy to reason about."""

    def __init__(self, fail_times: int = 0):
        self.dim = len(KEYWORDS)
        self.fail_times = fail_times
        self.calls = 0

    def embed(self, text):
        self.calls += 1
        if self.fail_times > 0:
            self.fail_times -= 1
            raise EmbeddingError("model timed out")
        words = re.findall(r"[a-z]+", text.lower())
        return [float(words.count(k)) for k in KEYWORDS]

    def embed_many(self, texts):
        return [self.embed(t) for t in texts]


class FakeLLM:
    def __init__(self, reply="I engineered backend services at CCHQ. I cut release time by 40%.", fail=False):
        self.reply = reply
        self.fail = fail
        self.calls = []

    def answer(self, system, prompt):
        self.calls.append((system, prompt))
        if self.fail:
            raise InferenceError("model unavailable")
        return self.reply


class BrokenIndex:
    def __init__(self):
        self.current = None

    def query(self, vector, top_k):
        raise VectorIndexUnavailable("connection refused")

    def upsert(self, records):
        raise VectorIndexUnavailable("connection refused")

    def health(self):
        return False

    def set_current_version(self, version):
        self.current = version

    def prune(self, keep_version):
        raise VectorIndexUnavailable("connection refused")


def sync_spawn(fn):
    fn()


@pytest.fixture
def config(tmp_path):
    return AppConfig(
        embed_dim=len(KEYWORDS),
        db_path=":memory:",
        index_dir=str(tmp_path / "index"),
        schedule_enabled=False,
    )


@pytest.fixture
def store():
    s = SqliteSkillStore(":memory:")
    s.seed(SKILLS)
    return s


@pytest.fixture
def cache():
    return MemoryKV()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def index(tmp_path):
    return NumpyIndex(str(tmp_path / "index"), dim=len(KEYWORDS))


@pytest.fixture
def services(config, store, cache, embedder, index, llm):
    return build_services(
        config, embedder=embedder, index=index, cache=cache, store=store, llm=llm, spawn=sync_spawn,
    )


@pytest.fixture
def indexed(services):
    services.indexer.run()
    return services
