import threading

import pytest

from hidoc.services.param_matcher import ParamVectorIndex, build_vector, clamp_limit, cosine, tokenize

ROWS = [
    {"param_code": "GLU_FAST", "target_min": 70, "target_max": 100, "preferred_unit": "mg/dL",
     "description": "Fasting Blood Glucose", "notes": "8-12 hours fasting", "organ_system": "Metabolic"},
    {"param_code": "BP_SYS", "target_min": 90, "target_max": 120, "preferred_unit": "mmHg",
     "description": "Systolic Blood Pressure", "notes": "Resting measurement", "organ_system": "Cardiovascular"},
    {"param_code": "HBA1C", "target_min": 4.0, "target_max": 5.6, "preferred_unit": "%",
     "description": "Hemoglobin A1c", "notes": "3-month average glucose", "organ_system": "Metabolic"},
]


def test_tokenize_drops_stop_words_and_maps_synonyms():
    assert tokenize("The BP of a patient, and A1C + sugar!") == ["bloodpressure", "patient", "hba1c", "glucose"]


def test_tokenize_keeps_percent():
    assert tokenize("HbA1c 6.5%") == ["hba1c", "5%"]


def test_cosine_bounds():
    a = build_vector(["glucose", "fasting", "glucose"])
    assert cosine(a, a) == pytest.approx(1.0)
    assert cosine(a, build_vector(["pressure"])) == 0.0
    assert cosine({}, a) == 0.0
    partial = cosine(a, build_vector(["glucose", "blood"]))
    assert 0.0 < partial < 1.0


@pytest.mark.parametrize("limit,expected", [(None, 5), (0, 1), (-3, 1), (7, 7), (50, 20), ("x", 5)])
def test_clamp_limit(limit, expected):
    assert clamp_limit(limit) == expected


def test_match_ranks_closest_first():
    index = ParamVectorIndex(lambda: ROWS)
    results = index.match("fasting blood sugar", 5)
    assert results[0]["param_code"] == "GLU_FAST"
    assert results[0]["preferred_unit"] == "mg/dL"
    scores = [r["score"] for r in results]
    assert scores == sorted(scores, reverse=True)
    assert all(0 < s <= 1 for s in scores)


def test_match_respects_limit_and_drops_zero_scores():
    index = ParamVectorIndex(lambda: ROWS)
    assert len(index.match("blood", 1)) == 1
    assert index.match("zzz unrelated", 5) == []
    assert index.match("", 5) == []


def test_scores_are_rounded():
    index = ParamVectorIndex(lambda: ROWS)
    for r in index.match("blood glucose pressure", 5):
        assert r["score"] == round(r["score"], 4)


def test_seed_corpus_finds_a1c(param_index):
    assert param_index.match("my a1c result", 3)[0]["param_code"] == "HBA1C"
    assert "GLU_FAST" in param_index.known_codes()


def test_index_rebuilds_after_ttl():
    loads = []
    clock = {"t": 0.0}

    def loader():
        loads.append(1)
        return ROWS

    index = ParamVectorIndex(loader, ttl_seconds=300, clock=lambda: clock["t"])
    index.match("glucose", 5)
    index.match("pressure", 5)
    assert len(loads) == 1
    clock["t"] = 301.0
    index.match("glucose", 5)
    assert len(loads) == 2
    index.invalidate()
    index.get("HBA1C")
    assert len(loads) == 3


def test_concurrent_readers_see_complete_corpus():
    index = ParamVectorIndex(lambda: ROWS, ttl_seconds=0)
    seen = []

    def worker():
        for _ in range(50):
            seen.append(len(index.known_codes()))

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert set(seen) == {3}
