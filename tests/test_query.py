from datetime import datetime, timezone

import pytest

from cvchat.core.constants import NO_MATCH_REPLY
from cvchat.core.errors import EmbeddingError, RetrievalError, ScheduleError, ValidationError
from cvchat.core.projects import ProjectDetector
from cvchat.core.query import QueryOrchestrator, query_cache_key
from cvchat.core.schedule import ScheduleGate
from cvchat.core.services import build_services
from cvchat.core.validation import normalize_query

from conftest import BrokenIndex, FakeEmbedder, FakeLLM, sync_spawn

Q = "What Python experience do you have?"


def test_miss_then_cache_hit(indexed, llm):
    first = indexed.query.handle(Q)

    assert first["source"] == "vector-index"
    assert first["cached"] is False and first["degraded"] is False
    assert [r["name"] for r in first["results"]] == ["Python"]
    r = first["results"][0]
    assert r == {
        "id": 1, "name": "Python", "similarity": pytest.approx(1.0), "years": 8,
        "level": "Expert", "category": "Programming", "summary": "Backend APIs and automation",
    }
    assert first["assistantReply"] == "I engineered backend services at CCHQ. I cut release time by 40%."
    assert len(llm.calls) == 1

    second = indexed.query.handle("  what python EXPERIENCE do you have?")
    assert second["source"] == "cache" and second["cached"] is True
    assert second["results"] == first["results"]
    assert len(llm.calls) == 1


def test_cache_key_uses_normalized_query():
    assert query_cache_key(normalize_query("A  B")) == query_cache_key(normalize_query("a b"))
    assert query_cache_key("x").startswith("query:")


def test_results_are_capped_and_thresholded(indexed):
    indexed.config.min_similarity = 0.0
    out = indexed.query.handle("Tell me about python and aws lambda work")
    assert 0 < len(out["results"]) <= indexed.config.top_k
    sims = [r["similarity"] for r in out["results"]]
    assert sims == sorted(sims, reverse=True)


def test_min_similarity_drops_weak_matches(indexed):
    out = indexed.query.handle("Tell me about aws work please")
    # aws-only query vs the "aws lambda" skill scores about 0.707
    assert [r["name"] for r in out["results"]] == ["AWS Lambda"]
    indexed.config.min_similarity = 0.8
    out = indexed.query.handle("Tell me about aws work again")
    assert out["results"] == []


def test_no_match_is_not_a_failure(indexed, llm):
    out = indexed.query.handle("Have you shipped anything in golang?")
    assert out["results"] == []
    assert out["assistantReply"] == NO_MATCH_REPLY
    assert out["degraded"] is False
    assert llm.calls == []


def test_fallback_when_index_unavailable(indexed, config, store, cache, llm):
    broken = build_services(
        config, embedder=FakeEmbedder(), index=BrokenIndex(), cache=cache, store=store, llm=llm, spawn=sync_spawn,
    )
    out = broken.query.handle("Which python projects have you led?")
    assert out["source"] == "fallback"
    assert [r["id"] for r in out["results"]] == [1]


def test_index_and_fallback_both_empty_raises(config, store, cache, llm):
    svc = build_services(
        config, embedder=FakeEmbedder(), index=BrokenIndex(), cache=cache, store=store, llm=llm, spawn=sync_spawn,
    )
    with pytest.raises(RetrievalError) as ei:
        svc.query.handle(Q)
    assert ei.value.status_code == 500


def test_inference_failure_degrades_and_is_not_cached(indexed, cache):
    indexed.query.llm = FakeLLM(fail=True)
    out = indexed.query.handle(Q)

    assert out["degraded"] is True and out["degradedReason"] == "inference"
    assert out["assistantReply"] is None
    assert [r["name"] for r in out["results"]] == ["Python"]
    assert cache.get(query_cache_key(normalize_query(Q))) is None


def test_quota_exhausted_skips_llm(indexed, llm):
    indexed.quota.record(indexed.config.daily_quota_limit)
    out = indexed.query.handle(Q)
    assert out["degraded"] is True and out["degradedReason"] == "quota"
    assert llm.calls == []


def test_successful_inference_records_quota(indexed):
    indexed.query.handle(Q)
    st = indexed.quota.status()
    assert st["used"] == indexed.config.quota_cost_per_call
    assert st["inference_count"] == 1


def test_embedding_retried_once(indexed):
    indexed.query.embedder = FakeEmbedder(fail_times=1)
    assert indexed.query.handle(Q)["results"]

    indexed.query.embedder = FakeEmbedder(fail_times=2)
    with pytest.raises(EmbeddingError):
        indexed.query.handle("What python frameworks do you know?")


def test_project_filter_prefers_matching_records(indexed):
    indexed.config.min_similarity = 0.0
    out = indexed.query.handle("What python and aws did you use at Wairbut?")
    assert [r["name"] for r in out["results"]] == ["AWS Lambda"]
    _, prompt = indexed.query.llm.calls[-1]
    assert "Project context" in prompt and "Wairbut" in prompt


def test_project_alias_is_detected(indexed):
    out = indexed.query.handle("What python did you use at Conservative HQ?")
    assert [r["name"] for r in out["results"]] == ["Python"]
    _, prompt = indexed.query.llm.calls[-1]
    assert "this question is about CCHQ" in prompt


def test_project_filter_keeps_all_when_nothing_matches(indexed):
    indexed.query.projects = ProjectDetector({"Globex": ["globex corp"]})
    out = indexed.query.handle("What aws work did you do at Globex?")
    assert [r["name"] for r in out["results"]] == ["AWS Lambda"]


def test_invalid_query_never_reaches_llm(indexed, llm):
    with pytest.raises(ValidationError):
        indexed.query.handle("short")
    assert llm.calls == []


def test_schedule_gate_blocks_out_of_hours(indexed):
    saturday = datetime(2025, 1, 18, 12, 0, tzinfo=timezone.utc)
    indexed.query.schedule = ScheduleGate(clock=lambda: saturday, bypass_phrase="recruiter pass")
    with pytest.raises(ScheduleError):
        indexed.query.handle(Q)
    assert indexed.query.handle(Q, bypass_schedule=True)["results"]
    assert indexed.query.handle("recruiter pass: " + Q)["results"]


def test_out_of_hours_wins_over_invalid_payload(indexed, embedder):
    sunday = datetime(2025, 1, 19, 12, 0, tzinfo=timezone.utc)
    indexed.query.schedule = ScheduleGate(clock=lambda: sunday)
    before = embedder.calls

    for bad in ("", "   ", None, "!!!!!!!!!!!!", "x" * 1000):
        with pytest.raises(ScheduleError):
            indexed.query.handle(bad)
    assert embedder.calls == before

    with pytest.raises(ValidationError):
        indexed.query.handle("", bypass_schedule=True)


def test_cache_write_is_handed_to_spawn(config, store, cache, index, llm):
    pending = []
    svc = build_services(config, embedder=FakeEmbedder(), index=index, cache=cache, store=store, llm=llm,
                         spawn=pending.append)
    svc.indexer.run()
    svc.query.handle(Q)

    key = query_cache_key(normalize_query(Q))
    assert cache.get(key) is None
    pending[0]()
    assert cache.get(key)["query"] == Q


def test_orchestrator_defaults_build_helpers(config, store, cache, index, llm):
    qo = QueryOrchestrator(FakeEmbedder(), index, cache, store, llm=llm, config=config, spawn=sync_spawn)
    assert qo.schedule.enabled is False
    assert qo.quota.limit == config.daily_quota_limit


def test_typescript_question_ranks_typescript_first(indexed, store):
    store.seed([{
        "id": 5, "stable_id": "sk-ts", "name": "TypeScript", "experience": "6 years",
        "experience_years": 6, "level": "Expert", "category": "Programming",
    }])
    indexed.indexer.run()

    out = indexed.query.handle("What is your experience with TypeScript?")

    assert out["results"][0]["name"] == "TypeScript"
    assert out["results"][0]["similarity"] >= indexed.config.min_similarity


def test_empty_query_makes_no_external_calls(indexed, embedder, llm):
    before = embedder.calls
    with pytest.raises(ValidationError):
        indexed.query.handle("")
    assert embedder.calls == before
    assert llm.calls == []
