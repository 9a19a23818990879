"""Minimal demonstration of streaming a reply from a Foundry agent."""

import os

from foundry_core import ChatSession, foundry_provider

if __name__ == "__main__":
    model = foundry_provider(ChatSession(agent_id=os.environ["FOUNDRY_AGENT_ID"]))
    question = "用两句话介绍一下你自己"
    print("User:", question)
    print("Agent: ", end="", flush=True)
    for event in model.stream([{"role": "user", "content": question}]):
        if event.kind == "text-delta":
            print(event.text_delta, end="", flush=True)
        elif event.kind == "error":
            print(f"\n[error] {event.error}")
    print()
    print("Thread:", model.session.thread_id)
