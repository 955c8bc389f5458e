"""大场面检测：确定性地判断今日事件是否属于多日重大冲突。

纯函数，无 I/O。匹配方式是对原始事件文本做子串包含（不分词、不做词形还原），
下游提示词的行为依赖这一语义，不要改成按词边界匹配。
"""

from __future__ import annotations

from daytale.models.bundle import SetPieceType, SetPieceVerdict

# 强大敌人
ENEMY_KEYWORDS: tuple[str, ...] = (
    "巨龙", "恶龙", "古龙", "龙", "魔王", "巨兽", "巨人", "亡灵军团", "军团",
)

# 战斗/对抗
CONFLICT_KEYWORDS: tuple[str, ...] = (
    "搏斗", "死战", "血战", "决战", "大战", "围攻", "突围", "追杀", "逃亡", "破阵",
)

# 灾变
DISASTER_KEYWORDS: tuple[str, ...] = (
    "崩塌", "灾变", "暴走", "失控", "爆裂", "封印松动", "封印失效",
)

ESCAPE_TRIGGERS = frozenset({"逃亡", "突围", "追杀"})
SIEGE_TRIGGERS = frozenset({"围攻", "军团"})
SIEGE_COMPOUNDS: tuple[str, ...] = ("围城", "攻城")
DECISIVE_TRIGGERS = frozenset({"决战", "死战", "搏斗"})


def _hits(event: str, keywords: tuple[str, ...]) -> list[str]:
    return [kw for kw in keywords if kw in event]


def classify(event_text: str) -> SetPieceVerdict:
    """对今日事件做大场面分类。

    规则顺序：
    1. 命中敌人词 → boss_fight
    2. 命中冲突词 → 按子集细分为 escape / siege / boss_fight
    3. 命中灾变词 → disaster（覆盖之前的类型）
    4. 敌人词与冲突词同时命中 → 必为重大，类型缺省为 boss_fight
    5. 无命中 → 非重大、unknown
    """
    event = event_text.strip()
    matched: list[str] = []
    kind: SetPieceType = "unknown"
    is_major = False

    enemy_hits = _hits(event, ENEMY_KEYWORDS)
    if enemy_hits:
        matched.extend(enemy_hits)
        kind = "boss_fight"
        is_major = True

    conflict_hits = _hits(event, CONFLICT_KEYWORDS)
    if conflict_hits:
        matched.extend(conflict_hits)
        hit_set = set(conflict_hits)
        if hit_set & ESCAPE_TRIGGERS:
            kind = "escape"
        elif hit_set & SIEGE_TRIGGERS or any(c in event for c in SIEGE_COMPOUNDS):
            kind = "siege"
        elif hit_set & DECISIVE_TRIGGERS:
            kind = "boss_fight"
        elif not is_major:
            # 大战、血战、破阵等其余冲突词
            kind = "boss_fight"
        is_major = True

    disaster_hits = _hits(event, DISASTER_KEYWORDS)
    if disaster_hits:
        matched.extend(disaster_hits)
        kind = "disaster"
        is_major = True

    if enemy_hits and conflict_hits:
        is_major = True
        if kind == "unknown":
            kind = "boss_fight"

    return SetPieceVerdict(
        is_major=is_major,
        type=kind,
        matched_keywords=frozenset(matched),
    )
