"""Scripted model provider and chunk builders shared by the agent and server tests."""

MODEL = "gpt-4o-mini"


def text(content):
    return {"content": content, "tool_calls": []}


def call(name, arguments, call_id="call_0"):
    return {"content": "", "tool_calls": [{"id": call_id, "function": {"name": name, "arguments": arguments}}]}


class FakeProvider:
    """Replays one list of chunks per chat_stream call and records what it was sent."""

    supports_tool_choice = True

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []
        self.closed = False

    async def chat_stream(self, model, messages, tools=None, tool_choice="auto"):
        self.calls.append({
            "model": model,
            "messages": [dict(m) for m in messages],
            "tools": tools,
            "tool_choice": tool_choice,
        })
        chunks = self.responses.pop(0) if self.responses else [text("Done.")]
        for chunk in chunks:
            yield chunk

    async def close(self):
        self.closed = True
