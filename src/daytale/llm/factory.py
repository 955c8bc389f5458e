"""根据 ModelConfig 初始化 langchain 聊天模型。"""

from __future__ import annotations

import os

from langchain_core.language_models import BaseChatModel

from daytale.config.settings import ModelConfig


def init_model(model_config: ModelConfig) -> BaseChatModel:
    """根据配置初始化 LLM。

    json_mode=True 时在模型构造阶段开启严格 JSON 响应格式。
    """
    provider = model_config.provider.lower()

    if provider == "google":
        from langchain_google_genai import ChatGoogleGenerativeAI

        kwargs: dict = {
            "model": model_config.model_name,
            "temperature": model_config.temperature,
            "max_output_tokens": model_config.max_tokens,
            "timeout": model_config.timeout,
        }
        if model_config.api_key:
            kwargs["google_api_key"] = model_config.api_key
        if model_config.json_mode:
            kwargs["response_mime_type"] = "application/json"
        # 故事中的战斗描写默认不做文本安全拦截（DAYTALE_GEMINI_SAFETY_MODE=default 恢复）
        safety_mode = os.environ.get("DAYTALE_GEMINI_SAFETY_MODE", "off").strip().lower()
        if safety_mode == "off":
            kwargs["safety_settings"] = {
                "HARM_CATEGORY_HARASSMENT": "BLOCK_NONE",
                "HARM_CATEGORY_HATE_SPEECH": "BLOCK_NONE",
                "HARM_CATEGORY_SEXUALLY_EXPLICIT": "BLOCK_NONE",
                "HARM_CATEGORY_DANGEROUS_CONTENT": "BLOCK_NONE",
            }
        return ChatGoogleGenerativeAI(**kwargs)
    elif provider == "openai":
        from langchain_openai import ChatOpenAI

        kwargs = {
            "model": model_config.model_name,
            "temperature": model_config.temperature,
            "max_tokens": model_config.max_tokens,
            "timeout": model_config.timeout,
        }
        if model_config.api_key:
            kwargs["api_key"] = model_config.api_key
        if model_config.json_mode:
            kwargs["model_kwargs"] = {"response_format": {"type": "json_object"}}
        return ChatOpenAI(**kwargs)
    else:
        # 通过 langchain 的通用接口
        from langchain.chat_models import init_chat_model

        return init_chat_model(
            f"{provider}:{model_config.model_name}",
            temperature=model_config.temperature,
            max_tokens=model_config.max_tokens,
        )
