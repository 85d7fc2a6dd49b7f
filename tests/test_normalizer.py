import base64

import pytest

from relaychat.errors import NoImageUrlError
from relaychat.services.normalizer import (
    FALLBACK_CHAT_CONTENT,
    CdnRewriteRule,
    MockUrlPolicy,
    extract_image,
    normalize_chat,
    normalize_image,
    rewrite_rules_from_config,
)
from relaychat.utils.media import placeholder_svg, truncate_prompt

NO_MOCK = MockUrlPolicy()
MOCK = MockUrlPolicy(markers=("mock-error",))


def decode_svg(data_url):
    prefix = "data:image/svg+xml;base64,"
    assert data_url.startswith(prefix)
    return base64.b64decode(data_url[len(prefix):]).decode("utf-8")


# ---- chat ----

def test_chat_simplified_shape():
    result = normalize_chat({"id": "abc", "content": "Hello"})
    assert result.id == "abc"
    assert result.role == "assistant"
    assert result.content == "Hello"


def test_chat_openai_shape():
    raw = {"id": "chatcmpl-1", "choices": [{"message": {"role": "assistant", "content": "Hi there"}}], "created": 1}
    assert normalize_chat(raw).content == "Hi there"


def test_chat_prefers_top_level_content():
    raw = {"content": "top", "choices": [{"message": {"content": "nested"}}]}
    assert normalize_chat(raw).content == "top"


def test_chat_synthesizes_id():
    assert normalize_chat({"content": "x"}, now_ms=1234).id == "assistant-1234"


@pytest.mark.parametrize(
    "raw",
    [
        {},
        None,
        [],
        "plain text",
        42,
        {"id": None, "content": None},
        {"choices": []},
        {"choices": None},
        {"choices": ["nope"]},
        {"choices": [{"message": None}]},
        {"choices": [{"message": {"content": None}}]},
        {"choices": [{"message": {"content": ["part"]}}]},
        {"content": {"nested": True}, "unexpected": [1, 2, 3]},
    ],
)
def test_chat_never_raises(raw):
    result = normalize_chat(raw, now_ms=7)
    assert isinstance(result.content, str)
    assert result.content == FALLBACK_CHAT_CONTENT
    assert result.id == "assistant-7"


# ---- image url precedence ----

def test_image_data_url_wins_over_url():
    assert normalize_image({"data": [{"url": "A"}], "url": "B"}, "p", is_mock=NO_MOCK, rewrites=()).url == "A"


def test_image_url_wins_over_image_url():
    assert normalize_image({"url": "B", "imageUrl": "C"}, "p", is_mock=NO_MOCK, rewrites=()).url == "B"


def test_image_url_field_last_resort():
    assert normalize_image({"imageUrl": "C"}, "p", is_mock=NO_MOCK, rewrites=()).url == "C"


def test_image_skips_empty_data_entry():
    assert normalize_image({"data": [{"url": ""}], "url": "B"}, "p", is_mock=NO_MOCK, rewrites=()).url == "B"


@pytest.mark.parametrize("raw", [{}, None, {"data": []}, {"data": [{}]}, {"url": None}, "https://x/y.png"])
def test_image_without_url_raises(raw):
    with pytest.raises(NoImageUrlError):
        normalize_image(raw, "p", is_mock=NO_MOCK, rewrites=())


def test_revised_prompt_from_data_or_prompt():
    raw = {"data": [{"url": "https://img.test/a.png", "revised_prompt": "a fox, photo"}]}
    assert normalize_image(raw, "fox", is_mock=NO_MOCK, rewrites=()).revised_prompt == "a fox, photo"
    assert normalize_image({"url": "https://img.test/a.png"}, "fox", is_mock=NO_MOCK, rewrites=()).revised_prompt == "fox"


# ---- mock substitution ----

def test_mock_url_becomes_placeholder_with_prompt():
    result = normalize_image({"data": [{"url": "https://mock-error.example/x.png"}]}, "a red fox", is_mock=MOCK, rewrites=())
    assert result.substituted_mock
    assert "mock-error" not in result.url
    assert "a red fox" in decode_svg(result.url)


def test_long_prompt_is_truncated_in_placeholder():
    prompt = "a very long prompt describing a fox in the snow at dusk"
    result = normalize_image({"url": "https://mock-error.example/x.png"}, prompt, is_mock=MOCK, rewrites=())
    svg = decode_svg(result.url)
    assert prompt[:30] + "..." in svg
    assert prompt not in svg


def test_truncate_prompt_boundary():
    assert truncate_prompt("x" * 30) == "x" * 30
    assert truncate_prompt("x" * 31) == "x" * 30 + "..."


def test_placeholder_escapes_markup():
    assert "<script>" not in placeholder_svg("<script>")


def test_genuine_marker_overrides_mock_marker():
    policy = MockUrlPolicy(markers=("mock",), genuine_markers=("cdn.vendor.test",))
    assert policy.is_mock("https://mock.example/a.png")
    assert not policy.is_mock("https://cdn.vendor.test/mock/a.png")


def test_custom_predicate_is_used():
    seen = []

    def never(url):
        seen.append(url)
        return False

    result = normalize_image({"url": "https://mock-error.example/x.png"}, "p", is_mock=never, rewrites=())
    assert result.url == "https://mock-error.example/x.png"
    assert seen == ["https://mock-error.example/x.png"]


# ---- CDN rewriting ----

def test_cdn_rewrite_moves_file_under_target_base():
    rule = CdnRewriteRule(source_host="api.redbuilder.io", target_base="https://multi.redbuilder.io/generations")
    result = normalize_image({"url": "https://api.redbuilder.io/files/abc.png"}, "p", is_mock=NO_MOCK, rewrites=[rule])
    assert result.url == "https://multi.redbuilder.io/generations/abc.png"
    assert result.fallback_url == "https://api.redbuilder.io/files/abc.png"


def test_configured_rewrite_targets_generations_path():
    (rule,) = rewrite_rules_from_config()
    assert rule.rewrite("https://api.redbuilder.io/v1/images/x9.png") == "https://multi.redbuilder.io/generations/x9.png"


def test_cdn_rewrite_to_bare_host_keeps_filename_and_original():
    rule = CdnRewriteRule(source_host="images.bad.test", target_base="cdn.good.test")
    result = normalize_image({"url": "https://images.bad.test/gen/2024/abc.png?sig=1"}, "p", is_mock=NO_MOCK, rewrites=[rule])
    assert result.url == "https://cdn.good.test/abc.png"
    assert result.fallback_url == "https://images.bad.test/gen/2024/abc.png?sig=1"


def test_cdn_rewrite_ignores_other_hosts():
    rule = CdnRewriteRule(source_host="images.bad.test", target_base="cdn.good.test")
    result = normalize_image({"url": "https://other.test/abc.png"}, "p", is_mock=NO_MOCK, rewrites=[rule])
    assert result.url == "https://other.test/abc.png"
    assert result.fallback_url is None


def test_extract_image_applies_no_corrections():
    result = extract_image({"url": "https://mock-error.example/x.png"}, "p")
    assert result.url == "https://mock-error.example/x.png"
    assert not result.substituted_mock
