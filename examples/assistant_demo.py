"""Minimal demonstration of the farming assistant."""

from agri_assistant.api.service import get_history, run_assistant_turn

if __name__ == "__main__":
    for question in ("What equipment can I rent?", "Please book the Drone for 3 acres."):
        data = run_assistant_turn(question)
        print("User:", question)
        print(f"Assistant [{data['tier']}]:", data["reply"])
        for call in data["tool_trace"]:
            print("  tool:", call["name"], call["arguments"], "->", call["result"])
    print("Turns stored:", len(get_history()))
