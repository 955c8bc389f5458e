"""配置：管线参数与世界注册表。"""

from daytale.config.settings import ModelConfig, PipelineConfig, load_pipeline_config
from daytale.config.worlds import WorldConfig, WorldRegistry, default_worlds

__all__ = [
    "ModelConfig",
    "PipelineConfig",
    "WorldConfig",
    "WorldRegistry",
    "default_worlds",
    "load_pipeline_config",
]
