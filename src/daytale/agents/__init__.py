"""提示词组装与模型响应处理。"""

from daytale.agents.composer import PromptComposer, render_entity_policy, render_world_snippet
from daytale.agents.utils import (
    extract_json_object,
    extract_response_text,
    extract_text,
    find_first_json_object,
)

__all__ = [
    "PromptComposer",
    "extract_json_object",
    "extract_response_text",
    "extract_text",
    "find_first_json_object",
    "render_entity_policy",
    "render_world_snippet",
]
