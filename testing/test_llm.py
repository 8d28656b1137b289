"""Tests for the OpenAI model service, using a fake client."""

from types import SimpleNamespace

from proof_engine.config import settings
from proof_engine.models import Message
from proof_engine.services.llm import LLMService


class FakeCompletions:
    def __init__(self, reply):
        self.reply = reply
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        message = SimpleNamespace(content=self.reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeOpenAI:
    def __init__(self, reply="ok"):
        self.chat = SimpleNamespace(completions=FakeCompletions(reply))


def test_call_evaluation_is_deterministic():
    client = FakeOpenAI('{"is_teaching": true}')
    llm = LLMService(client=client)

    assert llm.call_evaluation("classify this") == '{"is_teaching": true}'

    [call] = client.chat.completions.calls
    assert call["temperature"] == 0
    assert call["model"] == settings.EVALUATION_MODEL
    assert call["messages"] == [{"role": "user", "content": "classify this"}]


def test_call_tutor_sends_grade_prompt_and_history():
    client = FakeOpenAI("Let me explain fractions.")
    llm = LLMService(client=client)
    history = [
        Message(role="system", content="internal"),
        Message(role="user", content="What is a fraction?"),
        Message(role="assistant", content="A fraction is part of a whole."),
    ]

    text = llm.call_tutor("Tell me more", history, grade_level=10)

    assert text == "Let me explain fractions."
    [call] = client.chat.completions.calls
    assert call["model"] == settings.TUTOR_MODEL
    messages = call["messages"]
    assert messages[0]["role"] == "system"
    assert "grade 10" in messages[0]["content"]
    assert [m["role"] for m in messages[1:]] == ["user", "assistant", "user"]
    assert messages[-1]["content"] == "Tell me more"


def test_empty_model_reply_is_empty_string():
    llm = LLMService(client=FakeOpenAI(None))

    assert llm.call_evaluation("x") == ""
