"""
RELAY CHAT TERMINAL CLIENT
==========================

PURPOSE:
A command-line composer for the relay, driving the same ChatSession and
ConversationController a browser front end would. Handy for trying the relay
without building a UI, and for watching retries and status changes happen.

USAGE:
    python cli.py

    Make sure the relay is running first: python run.py

COMMANDS:
    /imagine <prompt>, /img <prompt> - Generate an image (sent like any other message)
    /attach <url>  - Attach an image URL (or data URL) to the next message
    /model <id>    - Pin a model; "/model auto" follows the input again
    /models        - List the models the relay reports
    /status        - Show the conversation status
    /new           - Start a new chat
    /quit or /exit - Exit
"""

import asyncio
import logging

from relaychat.services.events import ModelChanged, Topic
from relaychat.services.session import ChatSession

LOCAL_COMMANDS = ("/attach", "/model", "/models", "/status", "/new", "/quit", "/exit")


def print_header():
    print("\n" + "=" * 60)
    print("Relay Chat - terminal client")
    print("=" * 60)
    print("\nCommands:")
    print("  /imagine <prompt> - Generate an image")
    print("  /attach <url>     - Attach an image to the next message")
    print("  /model <id|auto>  - Pin a model or follow the input")
    print("  /models           - List models")
    print("  /status           - Show status")
    print("  /new              - Start a new chat")
    print("  /quit             - Exit")
    print("=" * 60 + "\n")


def is_local_command(text: str) -> bool:
    word = text.split(maxsplit=1)[0].lower() if text else ""
    return word in LOCAL_COMMANDS


async def handle_local_command(session: ChatSession, text: str) -> bool:
    """Run a client-side command. Returns False when the user asked to quit."""
    parts = text.split(maxsplit=1)
    command = parts[0].lower()
    argument = parts[1].strip() if len(parts) > 1 else ""
    controller = session.controller

    if command in ("/quit", "/exit"):
        return False
    if command == "/new":
        controller.new_chat()
        print("Started a new chat.")
    elif command == "/attach":
        if argument:
            controller.attach_image(argument)
            print("Image attached to the next message.")
        else:
            controller.clear_image()
            print("Attachment cleared.")
    elif command == "/model":
        if not argument or argument.lower() == "auto":
            session.router.unpin()
        else:
            session.router.select_model(argument)
    elif command == "/models":
        for model in session.router.catalog.models:
            marker = "*" if model.id == session.router.selected_model else " "
            print(f" {marker} {model.name:<16} {model.type.value:<15} {model.id}")
    elif command == "/status":
        status = controller.status
        print(f"Status: {status.value} (LED: {status.led}), model: {session.router.selected_model}")
        if controller.last_error:
            print(f"Last error: {controller.last_error}")
    return True


async def main():
    print_header()
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    async with ChatSession() as session:
        session.bus.subscribe(
            Topic.MODEL_CHANGED,
            lambda event: print(f"[model] {event.model_id} ({event.operation_type})") if isinstance(event, ModelChanged) else None,
        )
        await session.start()
        controller = session.controller

        while True:
            try:
                text = (await asyncio.to_thread(input, "\nYou: ")).strip()
            except (KeyboardInterrupt, EOFError):
                print("\nGoodbye!")
                break

            if is_local_command(text):
                if not await handle_local_command(session, text):
                    print("\nGoodbye!")
                    break
                continue

            seen = len(controller.messages)
            accepted = await controller.submit(text)
            if not accepted:
                if controller.validation_message:
                    print(f"Error: {controller.validation_message}")
                continue

            for message in controller.messages[seen:]:
                if message.role == "assistant":
                    print(f"Assistant: {message.content}")
            if controller.error and not controller.append_error_messages:
                print(f"Error: {controller.last_error}")


# Run the interactive loop when this file is executed (python cli.py).
if __name__ == "__main__":
    asyncio.run(main())
