"""生成客户端测试：单次调用、错误转换与调用日志。"""

import asyncio

import pytest
from conftest import FailingModel, ScriptedModel, SlowModel
from langchain_core.messages import HumanMessage, SystemMessage

from daytale.errors import GenerationError
from daytale.llm.client import CallMeta, GenerationClient
from daytale.utils.call_log import TRUNCATED_MARKER, MemoryCallLog


class BrokenSink:
    def record(self, record):
        raise OSError("disk full")


def _meta(**kwargs):
    defaults = {"operation": "chapter_bundle", "route": "generate_next", "day": 2, "revision": 1}
    defaults.update(kwargs)
    return CallMeta(**defaults)


def test_success_writes_one_record(call_log):
    usage = {"input_tokens": 120, "output_tokens": 40, "total_tokens": 160}
    model = ScriptedModel(["  章节内容  "], usage=usage)
    client = GenerationClient(model, model_name="fake-chapter", sink=call_log)

    text = asyncio.run(client.invoke("请写一章", _meta(story_id="s1"), system_instruction="你是作家"))

    assert text == "章节内容"
    records, _ = call_log.list()
    assert len(records) == 1
    record = records[0]
    assert record.status == "success"
    assert record.operation == "chapter_bundle"
    assert record.route == "generate_next"
    assert record.model == "fake-chapter"
    assert record.day == 2
    assert record.story_id == "s1"
    assert record.tokens_in == 120
    assert record.tokens_out == 40
    assert record.output_redacted == "章节内容"
    assert record.request_id.startswith("req_")


def test_system_instruction_goes_first():
    model = ScriptedModel(["ok"])
    client = GenerationClient(model, model_name="fake")
    asyncio.run(client.invoke("正文请求", system_instruction="系统指令"))

    messages = model.calls[0]
    assert isinstance(messages[0], SystemMessage)
    assert isinstance(messages[1], HumanMessage)
    assert messages[1].content == "正文请求"


def test_transport_failure_becomes_generation_error(call_log):
    model = FailingModel()
    client = GenerationClient(model, model_name="fake", sink=call_log)

    with pytest.raises(GenerationError):
        asyncio.run(client.invoke("请写一章", _meta()))

    assert model.calls == 1
    records, _ = call_log.list()
    assert [r.status for r in records] == ["error"]
    assert "ConnectionError" in records[0].error
    assert records[0].output_redacted is None


def test_empty_response_is_generation_error(call_log):
    client = GenerationClient(ScriptedModel(["   "]), model_name="fake", sink=call_log)
    with pytest.raises(GenerationError, match="空响应"):
        asyncio.run(client.invoke("请写一章"))
    assert call_log.list(status="error")[0][0].error == "模型返回空响应"


def test_timeout_is_generation_error(call_log):
    client = GenerationClient(SlowModel(), model_name="fake", sink=call_log, timeout=0.05)
    with pytest.raises(GenerationError, match="超时"):
        asyncio.run(client.invoke("请写一章"))
    assert len(call_log) == 1


def test_log_failure_does_not_affect_result():
    client = GenerationClient(ScriptedModel(["结果"]), model_name="fake", sink=BrokenSink())
    assert asyncio.run(client.invoke("请写一章")) == "结果"


def test_input_is_redacted_and_truncated():
    log = MemoryCallLog()
    client = GenerationClient(ScriptedModel(["ok"]), model_name="fake", sink=log, log_max_chars=60)
    secret = "sk-" + "a1b2c3d4e5" * 3
    prompt = f"key {secret} end " + "字" * 100

    asyncio.run(client.invoke(prompt))

    record = log.list()[0][0]
    assert secret not in record.input_redacted
    assert record.input_redacted.startswith("key sk-*** end ")
    assert record.input_redacted.endswith(TRUNCATED_MARKER)
    assert len(record.input_redacted) == 60 + len(TRUNCATED_MARKER)


def test_no_sink_still_returns_text():
    client = GenerationClient(ScriptedModel(["ok"]), model_name="fake")
    assert asyncio.run(client.invoke("请写一章")) == "ok"
