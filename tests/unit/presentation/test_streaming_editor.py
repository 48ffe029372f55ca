"""
Tests for the live message controller.
"""

import asyncio

import pytest

from infrastructure.telegram.edit_rate_limiter import EditRateLimiter
from infrastructure.telegram.message_editor import MessageEditor
from presentation.handlers.streaming.editor import RawMessageParts, StreamingEditor
from presentation.keyboards.keyboards import Keyboards
from tests.fakes import PARSE_ERROR, FakeBot, FakeClock, bad_request, no_sleep

CHAT = 1
MESSAGE = 100


def make_editor(bot, clock=None, sleep=no_sleep, idle_interval=1000.0, get_buttons=None, limiter=None):
    clock = clock or FakeClock()
    limiter = limiter or EditRateLimiter(clock=clock)
    return StreamingEditor(
        MessageEditor(bot, limiter, sleep=sleep),
        CHAT,
        MESSAGE,
        get_buttons=get_buttons,
        idle_interval=idle_interval,
        clock=clock,
    )


class TestUpdateContent:
    """StreamingEditor.update_content tests"""

    @pytest.mark.asyncio
    async def test_non_final_render_has_status_line(self):
        bot = FakeBot()
        editor = make_editor(bot, get_buttons=Keyboards.stop_button)

        assert await editor.update_content("Hello")

        assert bot.edits[0]["text"] == "Hello\n✽ Thinking..."
        assert bot.edits[0]["reply_markup"] == Keyboards.stop_button()
        editor.stop()

    @pytest.mark.asyncio
    async def test_final_render_is_idempotent(self):
        """Repeating the same final render does not touch Telegram"""
        bot = FakeBot()
        editor = make_editor(bot)
        editor.stop()

        assert await editor.update_content("Done", is_final=True)
        assert await editor.update_content("Done", is_final=True)

        assert len(bot.edit_attempts) == 1
        assert editor.last_content == "Done"

    @pytest.mark.asyncio
    async def test_repeated_streaming_render_is_idempotent(self):
        """The same render under the same Stop keyboard is sent once"""
        bot = FakeBot()
        editor = make_editor(bot, get_buttons=Keyboards.stop_button)

        assert await editor.update_content("Hello")
        assert await editor.update_content("Hello")

        assert len(bot.edit_attempts) == 1
        editor.stop()

    @pytest.mark.asyncio
    async def test_final_render_replaces_keyboard(self):
        """Dropping the Stop keyboard is an edit even when the text matches"""
        bot = FakeBot()
        editor = make_editor(bot, get_buttons=Keyboards.stop_button)

        assert await editor.update_content("Hello")
        editor.stop()
        assert await editor.update_content(editor.last_content, is_final=True)

        assert len(bot.edits) == 2
        assert bot.edits[-1]["reply_markup"] is None

    @pytest.mark.asyncio
    async def test_stopped_editor_rejects_streaming_updates(self):
        bot = FakeBot()
        editor = make_editor(bot)
        editor.stop()

        assert not await editor.update_content("late chunk")
        assert bot.edit_attempts == []

    @pytest.mark.asyncio
    async def test_stale_edit_is_discarded(self):
        """Of two edits waiting for a slot, only the newer one is sent"""
        bot = FakeBot()
        clock = FakeClock()
        limiter = EditRateLimiter(clock=clock)
        limiter.record_edit(CHAT)
        gate = asyncio.Event()

        async def gated_sleep(delay):
            await gate.wait()

        editor = make_editor(bot, clock=clock, sleep=gated_sleep, limiter=limiter)

        older = asyncio.create_task(editor.update_content("older"))
        newer = asyncio.create_task(editor.update_content("newer"))
        await asyncio.sleep(0)
        gate.set()

        assert await older is False
        assert await newer is True
        assert [edit["text"] for edit in bot.edits] == ["newer\n✽ Thinking..."]
        assert not editor.state.edit_in_progress
        editor.stop()

    @pytest.mark.asyncio
    async def test_markup_fallback_once(self):
        """Rejected markup is retried once with the safe render"""
        bot = FakeBot()
        bot.edit_errors.append(bad_request(PARSE_ERROR))
        editor = make_editor(bot)
        editor.stop()
        editor.set_raw_parts(RawMessageParts(text="a <b> **c**", was_stopped=True))

        assert await editor.update_content("<b>broken", is_final=True)

        assert len(bot.edit_attempts) == 2
        assert bot.edits[0]["text"] == "a &lt;b&gt; **c**\n\n[stopped]"

    @pytest.mark.asyncio
    async def test_markup_fallback_gives_up(self):
        """A second rejection is reported, not retried again"""
        bot = FakeBot()
        bot.edit_errors.extend([bad_request(PARSE_ERROR), bad_request(PARSE_ERROR)])
        editor = make_editor(bot)
        editor.stop()
        editor.set_raw_parts(RawMessageParts(text="x"))

        assert not await editor.update_content("<b>broken", is_final=True)
        assert len(bot.edit_attempts) == 2

    @pytest.mark.asyncio
    async def test_no_fallback_without_raw_parts(self):
        bot = FakeBot()
        bot.edit_errors.append(bad_request(PARSE_ERROR))
        editor = make_editor(bot)
        editor.stop()

        assert not await editor.update_content("<b>broken", is_final=True)
        assert len(bot.edit_attempts) == 1


class TestIdleRotation:
    """Idle status rotation tests"""

    @pytest.mark.asyncio
    async def test_idle_rotation_advances_status(self):
        """Without new content the status line rotates"""
        bot = FakeBot()
        buttons = Keyboards.stop_button()
        editor = make_editor(
            bot,
            clock=FakeClock(),
            idle_interval=0.01,
            get_buttons=lambda: buttons,
        )

        for _ in range(50):
            if bot.edits:
                break
            await asyncio.sleep(0.01)
        editor.stop()

        assert bot.edits
        assert bot.edits[0]["text"] == "◐ Processing..."
        assert bot.edits[0]["reply_markup"] == buttons

    @pytest.mark.asyncio
    async def test_idle_rotation_keeps_content(self):
        """Only the status line is replaced"""
        bot = FakeBot()
        editor = make_editor(bot, idle_interval=0.01, get_buttons=Keyboards.stop_button)
        editor.state.last_content = "Partial answer\n✽ Thinking..."

        for _ in range(50):
            if bot.edits:
                break
            await asyncio.sleep(0.01)
        editor.stop()

        assert bot.edits[0]["text"] == "Partial answer\n◐ Processing..."

    @pytest.mark.asyncio
    async def test_idle_rotation_replaces_single_line_content(self):
        """Content without a newline is taken for a bare status line"""
        bot = FakeBot()
        editor = make_editor(bot, idle_interval=0.01, get_buttons=Keyboards.stop_button)
        editor.state.last_content = "Hello"

        for _ in range(50):
            if bot.edits:
                break
            await asyncio.sleep(0.01)
        editor.stop()

        assert bot.edits[0]["text"] == "◐ Processing..."

    @pytest.mark.parametrize("content, expected", [
        ("", "◐ Processing..."),
        ("Hello", "◐ Processing..."),
        ("✽ Thinking...", "◐ Processing..."),
        ("Hello\n✽ Thinking...", "Hello\n◐ Processing..."),
        ("one\ntwo\n✽ Thinking...", "one\ntwo\n◐ Processing..."),
        ("one\ntwo", "one\n◐ Processing..."),
        ("ends with newline\n", "ends with newline\n\n◐ Processing..."),
    ])
    @pytest.mark.asyncio
    async def test_idle_text_replaces_last_line(self, content, expected):
        """The last line is taken to be the status line"""
        editor = make_editor(FakeBot())
        editor.state.last_content = content

        assert editor._idle_text("◐ Processing...") == expected
        editor.stop()

    @pytest.mark.asyncio
    async def test_idle_rotation_stops_after_finalize(self):
        """No buttons means the turn is over"""
        bot = FakeBot()
        editor = make_editor(bot, idle_interval=0.01, get_buttons=lambda: None)

        for _ in range(50):
            if editor.is_stopped:
                break
            await asyncio.sleep(0.01)

        assert editor.is_stopped
        assert bot.edits == []


class HeldBot(FakeBot):
    """Holds the first edit in flight until ``release`` is set"""

    def __init__(self):
        super().__init__()
        self.holding = asyncio.Event()
        self.release = asyncio.Event()
        self._hold_next = True

    async def edit_message_text(self, **kwargs):
        if self._hold_next:
            self._hold_next = False
            self.holding.set()
            await self.release.wait()
        return await super().edit_message_text(**kwargs)


async def wait_for_edits(bot, count):
    for _ in range(100):
        if len(bot.edits) >= count:
            return
        await asyncio.sleep(0.01)


class TestOvertakenIdleEdit:
    """An idle edit already sent when newer content arrives"""

    @pytest.mark.asyncio
    async def test_newer_content_survives_late_idle_edit(self):
        bot = HeldBot()
        editor = make_editor(bot, idle_interval=0.01, get_buttons=Keyboards.stop_button)
        editor.state.last_content = "OLD\n✽ Thinking..."
        await asyncio.wait_for(bot.holding.wait(), 1)
        in_flight = editor.state.idle_edit

        assert await editor.update_content("NEW")
        bot.release.set()

        assert await asyncio.wait_for(in_flight, 1) is False
        assert editor.last_content.startswith("NEW\n")

        sent = len(bot.edits)
        await wait_for_edits(bot, sent + 1)
        editor.stop()

        assert bot.edits[0]["text"] == "NEW\n◐ Processing..."
        assert bot.edits[-1]["text"].startswith("NEW\n")
        assert editor.last_content.startswith("NEW\n")

    @pytest.mark.asyncio
    async def test_final_render_lands_after_idle_edit(self):
        bot = HeldBot()
        editor = make_editor(bot, idle_interval=0.01, get_buttons=Keyboards.stop_button)
        editor.state.last_content = "partial\n✽ Thinking..."
        await asyncio.wait_for(bot.holding.wait(), 1)

        editor.stop()
        final = asyncio.create_task(editor.update_content("complete", is_final=True))
        await asyncio.sleep(0)
        assert bot.edits == []

        bot.release.set()

        assert await asyncio.wait_for(final, 1)
        assert [edit["text"] for edit in bot.edits] == ["partial\n◐ Processing...", "complete"]
        assert bot.edits[-1]["reply_markup"] is None
        assert editor.last_content == "complete"


class TestStatusAndDelete:
    """update_status_only and delete tests"""

    @pytest.mark.asyncio
    async def test_status_only(self):
        bot = FakeBot()
        editor = make_editor(bot)

        assert await editor.update_status_only(Keyboards.stop_button())

        assert bot.edits[0]["text"] == "✽ Thinking..."
        editor.stop()

    @pytest.mark.asyncio
    async def test_delete_stops_and_removes_message(self):
        bot = FakeBot()
        editor = make_editor(bot)

        assert await editor.delete()

        assert editor.is_stopped
        assert bot.deleted == [(CHAT, MESSAGE)]
        assert not await editor.update_content("late")
