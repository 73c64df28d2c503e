"""Minimal demonstration of the chat service."""

from chat_core import run_chat

if __name__ == "__main__":
    question = "东京今天天气怎么样？"
    result = run_chat(user_id="demo-user", thread_id="demo-thread", username="demo", message=question)
    print("User:", question)
    print("Assistant:", result["text"])
    print("Model:", result["model"], "Tier:", result["tier"])
