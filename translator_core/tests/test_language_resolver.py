import asyncio

import httpx

from translator_core.domain.models import SettingsSnapshot
from translator_core.language.resolver import LanguageResolver, language_name, normalize_code, resolve_target
from translator_core.providers.openai_compat import OpenAICompatClient

from conftest import FakeJsonResponse, detection_reply


def snapshot(**overrides):
    data = {"apiKey": "sk-test-key", "apiProvider": "openai"}
    data.update(overrides)
    return SettingsSnapshot.from_mapping(data)


def test_resolve_target_rules():
    assert resolve_target("ko", "ko", "en") == "en"
    assert resolve_target("en", "ko", "en") == "ko"
    assert resolve_target("auto", "ko", "en") == "ko"


def test_resolve_target_region_qualified_codes():
    assert resolve_target("zh", "zh-TW", "en") == "en"
    assert resolve_target("pt-br", "pt", "en") == "en"
    assert resolve_target("", "ko", "en") == "ko"


def test_resolve_target_secondary_collision_is_allowed():
    # 原文是学习语言时，替换后仍然翻译成同一种语言
    assert resolve_target("en", "en", "en") == "en"


def test_normalize_code():
    assert normalize_code(" KO.\n") == "ko"
    assert normalize_code('"ja"') == "ja"
    assert normalize_code("en (English)") == "en"
    assert normalize_code("klingon") == "auto"
    assert normalize_code("") == "auto"


def test_language_name_default():
    assert language_name("ko") == "Korean"
    assert language_name("xx") == "English"
    assert language_name(None) == "English"


def test_language_name_region_qualified():
    assert language_name("pt-BR") == "Portuguese"
    assert language_name("zh_TW") == "Chinese"
    assert language_name("xx-YY") == "English"


def test_detect_sends_constrained_request(fake_http):
    fake_http.post_responses.append(detection_reply("ja"))
    resolver = LanguageResolver(OpenAICompatClient())
    code = asyncio.run(resolver.detect("こんにちは", snapshot()))
    assert code == "ja"
    call = fake_http.post_calls[0]
    assert call["url"] == "https://api.openai.com/v1/chat/completions"
    assert call["json"]["temperature"] == 0.1
    assert call["json"]["max_tokens"] == 10
    assert "stream" not in call["json"]
    assert "ko(Korean)" in call["json"]["messages"][0]["content"]
    assert "こんにちは" in call["json"]["messages"][1]["content"]


def test_detect_falls_back_to_auto(fake_http):
    resolver = LanguageResolver(OpenAICompatClient())
    fake_http.post_responses.extend([
        httpx.ConnectError("connection refused"),
        FakeJsonResponse(status_code=500, reason_phrase="Internal Server Error"),
        FakeJsonResponse(raw="not json"),
        FakeJsonResponse({"choices": []}),
        FakeJsonResponse({"choices": [{"message": {"content": None}}]}),
    ])

    async def run_all():
        return [await resolver.detect("hello", snapshot()) for _ in range(5)]

    assert asyncio.run(run_all()) == ["auto"] * 5


def test_detect_without_required_key_makes_no_call(fake_http):
    resolver = LanguageResolver(OpenAICompatClient())
    assert asyncio.run(resolver.detect("hello", snapshot(apiKey=""))) == "auto"
    assert fake_http.calls == []


def test_effective_target_switches_to_learning_language(fake_http):
    fake_http.default_detection = "ko"
    resolver = LanguageResolver(OpenAICompatClient())
    detected, target = asyncio.run(resolver.effective_target("안녕하세요", snapshot(), "ko", "en"))
    assert (detected, target) == ("ko", "en")
