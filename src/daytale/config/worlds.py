"""世界注册表：从 YAML 加载只读的世界配置。"""

from __future__ import annotations

import functools
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field

_WORLDS_FILE = Path(__file__).parent / "worlds.yaml"

DEFAULT_WORLD_ID = "middle_earth"

EntityLevel = Literal["forbidden", "limited", "allowed"]


class EntityPolicy(BaseModel):
    """新命名实体的引入策略。"""

    model_config = ConfigDict(frozen=True)

    new_named_characters: EntityLevel = Field(default="limited")
    new_named_places: EntityLevel = Field(default="limited")


class Principal(BaseModel):
    """主角之一及其标志性动作类型。"""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="角色名")
    signature_action: str = Field(description="该角色每章至少出现一次的标志性动作")


class WorldConfig(BaseModel):
    """世界配置（启动时加载，管线只读）。"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="世界唯一标识")
    display_name: str = Field(default="", description="展示名称")
    description: str = Field(default="", description="一句话描述")
    initial_summary: str = Field(description="新故事的初始权威摘要")
    prompt_snippet: str = Field(description="世界身份规则：类型、语调、角色、关系")
    boundary_rules: str = Field(default="", description="叙事边界规则（场景可发生的范围）")
    action_style: str = Field(default="", description="动作风格")
    entity_policy: EntityPolicy | None = Field(default=None, description="实体引入策略")
    long_arc: str = Field(default="", description="长线走向指导")
    principals: tuple[Principal, Principal] = Field(description="两位主角")
    set_piece_guidance: tuple[str, ...] = Field(
        default=(), description="多日大场面的分阶段指导"
    )

    @property
    def principal_names(self) -> tuple[str, str]:
        return (self.principals[0].name, self.principals[1].name)


class WorldRegistry:
    """按 id 查找世界配置。"""

    def __init__(self, worlds: list[WorldConfig]):
        self._worlds = {w.id: w for w in worlds}

    def get(self, world_id: str | None) -> WorldConfig | None:
        if not world_id:
            return None
        return self._worlds.get(world_id)

    def require(self, world_id: str | None) -> WorldConfig:
        """返回世界配置；未指定时回落到默认世界，不存在时抛出 KeyError。"""
        world = self.get(world_id or DEFAULT_WORLD_ID)
        if world is None:
            raise KeyError(f"未知世界: {world_id}")
        return world

    def all(self) -> list[WorldConfig]:
        return list(self._worlds.values())

    def __contains__(self, world_id: object) -> bool:
        return world_id in self._worlds

    def __len__(self) -> int:
        return len(self._worlds)


def load_worlds_from_yaml(path: str | Path) -> WorldRegistry:
    """从 YAML 文件加载世界注册表。"""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    worlds = [WorldConfig.model_validate(item) for item in data.get("worlds", [])]
    return WorldRegistry(worlds)


@functools.lru_cache(maxsize=1)
def default_worlds() -> WorldRegistry:
    """加载随包附带的世界注册表。"""
    return load_worlds_from_yaml(_WORLDS_FILE)
