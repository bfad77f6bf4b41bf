"""Test suite for parameter normalization and the provider adapters."""

from anthropic.types import Message, TextBlock, Usage
from openai.types.chat import ChatCompletion, ChatCompletionMessage
from openai.types.chat.chat_completion import Choice
from openai.types.completion_usage import CompletionUsage

from tool_gateway.adapters import (
    AnthropicRequestAdapter,
    GeminiRequestAdapter,
    OpenAIRequestAdapter,
)
from tool_gateway.attachments import EncodedImage
from tool_gateway.params import normalize_params, params_from_arguments
from tool_gateway.types import ConversationTurn, GenerationRequest

IMAGE = EncodedImage(media_type="image/png", data="aGVsbG8=")


def _request(**overrides):
    fields = dict(
        prompt="What next?",
        system_prompt="You are helpful",
        history=[
            ConversationTurn(index=0, role="user", content="first"),
            ConversationTurn(index=1, role="assistant", content="answer"),
            ConversationTurn(index=2, role="tool", content="exit code 1"),
        ],
    )
    fields.update(overrides)
    return GenerationRequest(**fields)


class TestParamsNormalization:
    """Test parameter normalization functionality."""

    def test_standard_and_extra_split(self):
        """Standard keys stay, unknown keys move into extra."""
        params = normalize_params({"temperature": 0.7, "max_tokens": 100, "reasoning_effort": "high"})

        assert params["temperature"] == 0.7
        assert params["max_tokens"] == 100
        assert params["extra"] == {"reasoning_effort": "high"}

    def test_none_values_dropped(self):
        """None values never reach an adapter."""
        params = normalize_params({"temperature": None, "seed": 3, "extra": {"x": None}})

        assert "temperature" not in params
        assert params["seed"] == 3
        assert params["extra"] == {}

    def test_empty_params(self):
        assert normalize_params(None) == {"extra": {}}

    def test_explicit_extra_wins(self):
        params = normalize_params({"verbosity": "low", "extra": {"verbosity": "high"}})

        assert params["extra"]["verbosity"] == "high"

    def test_thinking_mode_maps_to_reasoning_effort(self):
        assert params_from_arguments(0.2, "max")["extra"] == {"reasoning_effort": "high"}
        assert params_from_arguments(None, "minimal")["extra"] == {"reasoning_effort": "low"}
        assert params_from_arguments() == {"extra": {}}


class TestOpenAIAdapter:
    """Test OpenAI adapter functionality."""

    def test_messages_in_order(self):
        result = OpenAIRequestAdapter().to_provider(_request(), "gpt-4.1")

        roles = [m["role"] for m in result["messages"]]
        assert roles == ["system", "user", "assistant", "user", "user"]
        assert result["messages"][3]["content"] == "[tool output]\nexit code 1"
        assert result["messages"][-1]["content"] == "What next?"

    def test_images_become_data_url_parts(self):
        result = OpenAIRequestAdapter().to_provider(_request(history=[]), "gpt-4.1", [IMAGE])

        parts = result["messages"][-1]["content"]
        assert parts[0] == {"type": "text", "text": "What next?"}
        assert parts[1]["image_url"]["url"] == "data:image/png;base64,aGVsbG8="

    def test_reasoning_model_params(self):
        """Reasoning models take max_completion_tokens and no sampling params."""
        request = _request(params={"temperature": 0.3, "max_tokens": 500, "reasoning_effort": "low"})

        result = OpenAIRequestAdapter().to_provider(request, "o3")

        assert "temperature" not in result
        assert "max_tokens" not in result
        assert result["max_completion_tokens"] == 500
        assert result["reasoning_effort"] == "low"

    def test_chat_model_drops_reasoning_effort(self):
        request = _request(params={"temperature": 0.3, "reasoning_effort": "low"})

        result = OpenAIRequestAdapter().to_provider(request, "gpt-4.1")

        assert result["temperature"] == 0.3
        assert "reasoning_effort" not in result

    def test_from_provider(self):
        completion = ChatCompletion(
            id="cmpl-1",
            choices=[
                Choice(
                    finish_reason="stop",
                    index=0,
                    message=ChatCompletionMessage(role="assistant", content="Done."),
                )
            ],
            created=0,
            model="gpt-4.1-2025-04-14",
            object="chat.completion",
            usage=CompletionUsage(prompt_tokens=12, completion_tokens=3, total_tokens=15),
        )

        result = OpenAIRequestAdapter().from_provider(completion)

        assert result.text == "Done."
        assert result.finish_reason == "stop"
        assert result.model == "gpt-4.1-2025-04-14"
        assert result.usage == {"input_tokens": 12, "output_tokens": 3, "total_tokens": 15}

    def test_from_provider_without_content(self):
        completion = ChatCompletion(
            id="cmpl-2",
            choices=[
                Choice(
                    finish_reason="length",
                    index=0,
                    message=ChatCompletionMessage(role="assistant", content=None),
                )
            ],
            created=0,
            model="o3",
            object="chat.completion",
        )

        result = OpenAIRequestAdapter().from_provider(completion)

        assert result.text == ""
        assert result.usage == {}


class TestGeminiAdapter:
    def test_thinking_model_keeps_both(self):
        request = _request(params={"temperature": 0.3, "max_tokens": 200, "reasoning_effort": "high"})

        result = GeminiRequestAdapter().to_provider(request, "gemini-2.5-pro")

        assert result["temperature"] == 0.3
        assert result["max_tokens"] == 200
        assert result["reasoning_effort"] == "high"

    def test_older_model_drops_reasoning_effort(self):
        request = _request(params={"reasoning_effort": "high"})

        assert "reasoning_effort" not in GeminiRequestAdapter().to_provider(request, "gemini-1.5-flash")


class TestAnthropicAdapter:
    def test_system_is_separate(self):
        result = AnthropicRequestAdapter().to_provider(_request(), "claude-sonnet-4-0")

        assert result["system"] == "You are helpful"
        assert all(m["role"] != "system" for m in result["messages"])
        assert result["max_tokens"] == 4096

    def test_images_precede_text(self):
        result = AnthropicRequestAdapter().to_provider(
            _request(history=[]), "claude-sonnet-4-0", [IMAGE]
        )

        blocks = result["messages"][-1]["content"]
        assert blocks[0]["type"] == "image"
        assert blocks[0]["source"] == {"type": "base64", "media_type": "image/png", "data": "aGVsbG8="}
        assert blocks[-1] == {"type": "text", "text": "What next?"}

    def test_params_translation(self):
        request = _request(params={"stop": "END", "seed": 7, "reasoning_effort": "low", "max_tokens": 10})

        result = AnthropicRequestAdapter().to_provider(request, "claude-sonnet-4-0")

        assert result["stop_sequences"] == ["END"]
        assert result["max_tokens"] == 10
        assert "seed" not in result
        assert "reasoning_effort" not in result

    def test_from_provider(self):
        message = Message(
            id="msg_1",
            type="message",
            role="assistant",
            model="claude-sonnet-4-0",
            content=[TextBlock(type="text", text="Hello "), TextBlock(type="text", text="there")],
            stop_reason="end_turn",
            stop_sequence=None,
            usage=Usage(input_tokens=8, output_tokens=2),
        )

        result = AnthropicRequestAdapter().from_provider(message)

        assert result.text == "Hello there"
        assert result.finish_reason == "end_turn"
        assert result.usage["total_tokens"] == 10
