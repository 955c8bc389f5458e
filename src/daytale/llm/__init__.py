"""外部生成服务的调用封装。"""

from daytale.llm.client import CallMeta, GenerationClient, new_request_id
from daytale.llm.factory import init_model

__all__ = ["CallMeta", "GenerationClient", "init_model", "new_request_id"]
