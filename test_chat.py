import asyncio
import json
import unittest
from datetime import datetime
from unittest import mock

from pixie.db.base import BanInfo
from pixie.discord.chat import (
    ANALYZING_STATUS,
    SEARCHING_STATUS,
    WEATHER_STATUS,
    StatusReply,
    TypingIndicator,
    ban_notice,
    denied_embed,
    split_message,
)
from pixie.discord.client import CooldownTable
from pixie.discord.commands import invite_url, models_table, parse_channel_list
from pixie.discord.errors import admin_ids

INVITE = "https://discord.gg/pixie"


class FakeSent:
    def __init__(self, content):
        self.content = content
        self.edits = []

    async def edit(self, content):
        self.edits.append(content)
        self.content = content


class FakeChannel:
    def __init__(self):
        self.sent = []
        self.typing_calls = 0

    async def send(self, content):
        self.sent.append(content)

    async def typing(self):
        self.typing_calls += 1


class FakeMessage:
    def __init__(self):
        self.channel = FakeChannel()
        self.replies = []

    async def reply(self, content, mention_author=True):
        sent = FakeSent(content)
        self.replies.append(sent)
        return sent


class BanNoticeTest(unittest.TestCase):
    def test_temporary_ban_names_the_expiry(self):
        text = ban_notice(BanInfo("spam", datetime(2030, 1, 2, 3, 4)), INVITE)
        self.assertEqual(
            text,
            "You are banned until 2030-01-02 03:04 UTC\n\n"
            "If you believe this is a mistake, please join our support server: https://discord.gg/pixie",
        )

    def test_permanent_ban(self):
        text = ban_notice(BanInfo("spam", None), INVITE)
        self.assertTrue(text.startswith("You are permanently banned."))
        self.assertIn(INVITE, text)

    def test_server_ban_wording(self):
        self.assertEqual(ban_notice(BanInfo(None, None), subject="This server is"), "This server is permanently banned.")

    def test_denied_embed(self):
        embed = denied_embed("nope")
        self.assertEqual(embed.title, "Access Denied")
        self.assertEqual(embed.description, "nope")


class SplitMessageTest(unittest.TestCase):
    def test_short_text_is_one_chunk(self):
        self.assertEqual(split_message("  hello  "), ["hello"])
        self.assertEqual(split_message("   "), [])

    def test_prefers_line_breaks(self):
        text = "a" * 15 + "\n" + "b" * 10
        self.assertEqual(split_message(text, 20), ["a" * 15, "b" * 10])

    def test_hard_split_without_whitespace(self):
        chunks = split_message("x" * 45, 20)
        self.assertEqual([len(c) for c in chunks], [20, 20, 5])

    def test_every_chunk_fits(self):
        text = " ".join(["word"] * 1000)
        self.assertTrue(all(len(c) <= 2000 for c in split_message(text)))


class StatusReplyTest(unittest.IsolatedAsyncioTestCase):
    async def test_search_progress_then_answer_in_the_same_message(self):
        message = FakeMessage()
        status = StatusReply(message)
        callbacks = status.callbacks()

        await callbacks.search_started()
        await callbacks.search_results([object(), object()])
        await status.deliver("Here is what I found.")

        self.assertEqual(len(message.replies), 1)
        sent = message.replies[0]
        self.assertEqual(sent.edits, [ANALYZING_STATUS, "Here is what I found."])
        self.assertEqual(sent.content, "Here is what I found.")

    async def test_answer_without_progress_is_a_new_reply(self):
        message = FakeMessage()
        await StatusReply(message).deliver("Hi!")
        self.assertEqual([r.content for r in message.replies], ["Hi!"])

    async def test_results_without_status_message_do_nothing(self):
        message = FakeMessage()
        await StatusReply(message).callbacks().search_results([])
        self.assertEqual(message.replies, [])

    async def test_weather_status(self):
        message = FakeMessage()
        await StatusReply(message).callbacks().weather_started()
        self.assertEqual(message.replies[0].content, WEATHER_STATUS)
        self.assertNotEqual(WEATHER_STATUS, SEARCHING_STATUS)

    async def test_long_answers_overflow_into_the_channel(self):
        message = FakeMessage()
        await StatusReply(message).deliver("line\n" * 600)
        self.assertEqual(len(message.replies), 1)
        self.assertEqual(len(message.channel.sent), 1)


class TypingIndicatorTest(unittest.IsolatedAsyncioTestCase):
    async def test_refreshes_until_exit(self):
        channel = FakeChannel()
        async with TypingIndicator(channel, interval=0.01):
            await asyncio.sleep(0.05)
        calls = channel.typing_calls
        self.assertGreaterEqual(calls, 2)

        await asyncio.sleep(0.03)
        self.assertEqual(channel.typing_calls, calls)

    async def test_stops_when_the_block_raises(self):
        channel = FakeChannel()
        indicator = TypingIndicator(channel, interval=0.01)
        with self.assertRaises(RuntimeError):
            async with indicator:
                await asyncio.sleep(0)
                raise RuntimeError("boom")
        self.assertIsNone(indicator._task)


class CommandHelpersTest(unittest.TestCase):
    def test_parse_channel_list(self):
        self.assertEqual(parse_channel_list("none"), "[]")
        self.assertEqual(parse_channel_list("*"), '["*"]')
        self.assertEqual(
            json.loads(parse_channel_list("<#423456789012345678>, 523456789012345678")),
            ["423456789012345678", "523456789012345678"],
        )

    def test_models_table_lists_every_model(self):
        table = models_table("ollama")
        for name in ("llama3.1:8b", "qwen3:14b", "gemma3:12b", "mistral:7b"):
            self.assertIn(name, table)

    def test_invite_url(self):
        self.assertEqual(
            invite_url("123456789012345678"),
            "https://discord.com/oauth2/authorize?client_id=123456789012345678&permissions=412317191168&scope=bot",
        )

    def test_admin_ids(self):
        self.assertEqual(admin_ids({"permissions": {"bot_admin_ids": ["123456789012345678"]}}), [123456789012345678])
        self.assertEqual(admin_ids({}), [])


class CooldownTableTest(unittest.TestCase):
    def test_cooldown_expires(self):
        table = CooldownTable()
        with mock.patch("pixie.discord.client.time.monotonic", return_value=100.0):
            self.assertEqual(table.remaining(1, "models"), 0.0)
            table.start(1, "models", 15)
            self.assertEqual(table.remaining(1, "models"), 15.0)
            self.assertEqual(table.remaining(2, "models"), 0.0)
        with mock.patch("pixie.discord.client.time.monotonic", return_value=116.0):
            self.assertEqual(table.remaining(1, "models"), 0.0)

    def test_expired_entries_are_dropped_when_a_cooldown_starts(self):
        table = CooldownTable()
        with mock.patch("pixie.discord.client.time.monotonic", return_value=100.0):
            for user_id in range(50):
                table.start(user_id, "invite", 15)
            table.start(999, "models", 60)
        self.assertEqual(len(table), 51)

        with mock.patch("pixie.discord.client.time.monotonic", return_value=120.0):
            table.start(1, "clear", 15)
            self.assertEqual(len(table), 2)
            self.assertAlmostEqual(table.remaining(999, "models"), 40.0)


if __name__ == "__main__":
    unittest.main()
