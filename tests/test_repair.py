"""修复引擎测试：任何输入都得到合规章节包。"""

import json

import pytest
from conftest import DRAGON_EVENT, bundle_text, make_bundle

from daytale.engine.repair import PLACEHOLDER_ANCHORS, RepairContext, RepairEngine
from daytale.engine.set_piece import classify
from daytale.engine.validator import BundleValidator
from daytale.models.bundle import Anchors, ValidationIssue


@pytest.fixture
def engine():
    return RepairEngine()


def _context(world, event=DRAGON_EVENT, previous_summary=""):
    return RepairContext(
        user_event=event,
        previous_summary=previous_summary,
        world=world,
        verdict=classify(event),
        request_id="req_test",
        day=3,
    )


def _revalidate(bundle):
    return BundleValidator().validate(json.dumps(bundle.to_wire(), ensure_ascii=False))


def test_unparseable_output_yields_compliant_bundle(engine, world):
    issues = [ValidationIssue(field="*", kind="parse")]
    bundle = engine.repair(None, issues, _context(world))

    assert 2 <= len(bundle.event_keywords) <= 4
    assert all(kw in DRAGON_EVENT for kw in bundle.event_keywords)
    assert any(kw in bundle.title for kw in bundle.event_keywords)
    assert bundle.chapter == "一二和布布继续他们的旅程。" + DRAGON_EVENT
    assert bundle.next_summary == world.initial_summary
    assert len(bundle.suggestions) == 5
    assert all(s.uses_anchors for s in bundle.suggestions)

    # 除正文长度提示外，修复结果能再次通过校验
    result = _revalidate(bundle)
    assert result.ok
    assert [w.field for w in result.warnings] == ["chapter"]


def test_unparseable_output_anchors_come_from_event(engine, world):
    bundle = engine.repair(None, [ValidationIssue(field="*", kind="parse")], _context(world))
    assert bundle.anchors.A == "一二和布布在石桥"
    assert bundle.anchors.B == "下与巨龙搏斗"
    assert bundle.anchors.C == PLACEHOLDER_ANCHORS["C"]


def test_derive_keywords_pads_with_set_piece_hits(engine):
    keywords = engine.derive_keywords(DRAGON_EVENT, classify(DRAGON_EVENT))
    assert keywords == ["一二和布布在石桥下与巨龙", "巨龙", "龙", "搏斗"]


def test_derive_keywords_splits_on_punctuation(engine):
    event = "穿过森林，寻找古老遗迹"
    assert engine.derive_keywords(event, classify(event)) == ["穿过森林", "寻找古老遗迹"]


def test_derive_keywords_short_event_uses_halves(engine):
    assert engine.derive_keywords("休息", classify("休息")) == ["休息", "休", "息"]


def test_repair_keywords_keeps_usable_model_keywords(engine, world):
    keywords = engine.repair_keywords(["石桥", "巨龙", "搏斗", "一二", "布布"], _context(world))
    assert keywords == ["石桥", "巨龙", "搏斗", "一二"]


def test_repair_keywords_drops_words_not_in_event(engine, world):
    keywords = engine.repair_keywords(["石桥", "月光"], _context(world))
    assert keywords == ["石桥", "一二和布布在石桥下与巨龙"]


def test_title_templates(engine):
    assert engine.repair_title("", ["巨龙"], "石桥") == "《在石桥的巨龙》"
    assert engine.repair_title("", ["巨龙"]) == "《巨龙之日》"
    assert engine.repair_title("月光", ["一二和布布在石桥"]) == "《一二和布布在石桥》"
    assert engine.repair_title("", ["龙"]) == "《龙的一天》"


def test_title_kept_when_compliant(engine):
    assert engine.repair_title("石桥下的巨龙搏斗", ["巨龙"], "石桥") == "石桥下的巨龙搏斗"


def test_only_failed_fields_are_replaced(engine, world):
    raw = bundle_text(title="月光下的漫长旅途")
    result = BundleValidator().validate(raw)
    assert result.failed_fields == {"title"}

    bundle = engine.repair(result.parsed, result.issues, _context(world))
    original = make_bundle()
    assert bundle.title == "《在断裂的石桥的石桥》"
    assert bundle.event_keywords == original["event_keywords"]
    assert bundle.chapter == original["chapter"]
    assert bundle.next_summary == original["next_story_state_summary"]
    assert bundle.anchors == Anchors(**original["anchors"])
    assert [s.text for s in bundle.suggestions] == [
        s["text"] for s in original["tomorrow_suggestions"]
    ]


def test_invalid_suggestions_are_dropped_and_filled(engine, world):
    suggestions = make_bundle()["tomorrow_suggestions"]
    suggestions[1] = {"text": "去看看", "usesAnchors": ["D"]}
    result = BundleValidator().validate(bundle_text(tomorrow_suggestions=suggestions))
    assert result.failed_fields == {"tomorrow_suggestions"}

    event = "在森林深处发现一片古老遗迹"
    bundle = engine.repair(result.parsed, result.issues, _context(world, event=event))
    texts = [s.text for s in bundle.suggestions]
    assert len(texts) == 5
    assert "去看看" not in texts
    assert texts[:4] == [s["text"] for i, s in enumerate(suggestions) if i != 1]
    assert texts[4] == "一二在断裂的石桥附近侦察，寻找隐藏的入口或标记"
    assert bundle.suggestions[4].uses_anchors == ["A"]


def test_major_set_piece_fills_with_continuations(engine, world):
    anchors = Anchors(A="断裂的石桥", B="巨龙守护的东西", C="布布右臂麻木")
    fill = engine.repair_suggestions(None, anchors, _context(world))
    assert len(fill) == 5
    assert "继续应对这场强敌之战" in fill[0].text
    assert fill[0].uses_anchors == ["B"]
    assert "布布右臂麻木" in fill[1].text
    assert fill[1].uses_anchors == ["C"]


def test_minor_day_fill_has_no_continuations(engine, world):
    anchors = Anchors(A="断裂的石桥", B="巨龙守护的东西", C="布布右臂麻木")
    fill = engine.repair_suggestions(None, anchors, _context(world, event="在森林深处发现遗迹"))
    assert all("继续应对" not in s.text for s in fill)
    assert [s.uses_anchors for s in fill] == [["A"], ["B"], ["C"], ["A", "B"], ["A", "B", "C"]]


def test_anchors_keep_valid_values_and_extract_the_rest(engine):
    anchors = engine.repair_anchors(
        {"A": "断裂的石桥", "B": "  "}, "布布挡住龙焰。一二点亮光之屏障"
    )
    assert anchors.A == "断裂的石桥"
    assert anchors.B == "一二点亮光之屏障"
    assert anchors.C == PLACEHOLDER_ANCHORS["C"]


def test_anchors_fall_back_to_placeholders(engine):
    anchors = engine.repair_anchors(None, "")
    assert anchors.model_dump() == PLACEHOLDER_ANCHORS


def test_summary_falls_back_to_previous(engine, world):
    context = _context(world, previous_summary="旧摘要一。旧摘要二。")
    assert engine.repair_summary(None, context) == "旧摘要一。旧摘要二。"


def test_summary_is_truncated_not_rewritten(engine, world):
    summary = engine.repair_summary("第一句。第二句。第三句。第四句。", _context(world))
    assert summary == "第一句。第二句。第三句。"
