import asyncio

import httpx

import cli
from config import DEFAULT_CHAT_MODEL
from relaychat.services.session import ChatSession


def make_session():
    return ChatSession(base_url="http://relay.test", transport=httpx.MockTransport(lambda request: httpx.Response(500)))


def test_local_commands_are_recognised():
    assert cli.is_local_command("/new")
    assert cli.is_local_command("/MODEL gpt")
    assert not cli.is_local_command("/imagine a red fox")
    assert not cli.is_local_command("hello")
    assert not cli.is_local_command("")


def test_model_command_pins_and_unpins():
    async def scenario():
        async with make_session() as session:
            await cli.handle_local_command(session, "/model my-model")
            pinned = (session.router.selected_model, session.router.pinned)
            await cli.handle_local_command(session, "/model auto")
            return pinned, (session.router.selected_model, session.router.pinned)

    pinned, unpinned = asyncio.run(scenario())
    assert pinned == ("my-model", True)
    assert unpinned == (DEFAULT_CHAT_MODEL, False)


def test_attach_new_and_quit_commands():
    async def scenario():
        async with make_session() as session:
            controller = session.controller
            await cli.handle_local_command(session, "/attach https://img.test/cat.png")
            attached = controller.attached_image
            controller.set_input("draft")
            await cli.handle_local_command(session, "/new")
            keep_going = await cli.handle_local_command(session, "/quit")
            return attached, controller.input, keep_going

    attached, text, keep_going = asyncio.run(scenario())
    assert attached == "https://img.test/cat.png"
    assert text == ""
    assert keep_going is False
