import unittest
from types import SimpleNamespace

from sqlalchemy import func, select

from fakes import CHANNEL_ID, GUILD_ID, USER_ID, memory_database
from pixie.auth.resolver import PermissionResolver
from pixie.db.channels import ChannelOperations
from pixie.db.conversations import ConversationOperations
from pixie.db.guilds import GuildMemberOperations, GuildOperations
from pixie.db.identifiers import ExternalId
from pixie.db.logs import BotLogOperations
from pixie.db.models import Channel, Conversation
from pixie.db.permissions import PermissionOperations
from pixie.db.users import UserOperations
from pixie.discord import events
from pixie.discord.chat import NO_PERMISSION_REPLY, handle_guild_message
from pixie.discord.client import CooldownTable, PixieCommandTree

USER = ExternalId(USER_ID)
GUILD = ExternalId(GUILD_ID)
CHANNEL = ExternalId(CHANNEL_ID)
BOT_USER_ID = 623456789012345678
INVITE = "https://discord.gg/pixie"


class FakeAIClient:
    def __init__(self, reply="Hello from Pixie!"):
        self.reply = reply
        self.calls = []

    async def handle_message(self, message, user, guild=None, options=None):
        self.calls.append((message, user, guild))
        return self.reply


class FakeSent:
    def __init__(self, content):
        self.content = content

    async def edit(self, content):
        self.content = content


class FakeTextChannel:
    def __init__(self):
        self.id = int(CHANNEL_ID)
        self.name = "general"
        self.topic = None
        self.nsfw = False
        self.sent = []

    async def send(self, content):
        self.sent.append(content)

    async def typing(self):
        pass


class FakeMessage:
    def __init__(self, content, author, guild=None, mentions=()):
        self.id = 1
        self.content = content
        self.author = author
        self.guild = guild
        self.channel = FakeTextChannel()
        self.mentions = list(mentions)
        self.reference = None
        self.replies = []

    async def reply(self, content=None, *, embed=None, mention_author=True):
        self.replies.append(SimpleNamespace(content=content, embed=embed))
        return FakeSent(content)


def make_author(user_id=USER_ID, bot=False):
    return SimpleNamespace(id=int(user_id), name="alice", discriminator="0", display_avatar=None, bot=bot, roles=[])


def make_guild():
    return SimpleNamespace(id=int(GUILD_ID), name="Test Guild", member_count=3, channels=[object()])


class BotTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.db = await memory_database()
        self.ai_client = FakeAIClient()
        self.bot = SimpleNamespace(
            user=SimpleNamespace(id=BOT_USER_ID),
            config={"support_invite": INVITE},
            user_ops=UserOperations(self.db),
            guild_ops=GuildOperations(self.db),
            member_ops=GuildMemberOperations(self.db),
            channel_ops=ChannelOperations(self.db),
            permission_ops=PermissionOperations(self.db),
            bot_log=BotLogOperations(self.db),
            resolver=PermissionResolver(self.db),
            ai_client=self.ai_client,
        )
        await self.bot.resolver.seed_default_permissions()
        await self.bot.user_ops.upsert(USER, "alice")
        await self.bot.guild_ops.upsert(GUILD, "Test Guild")

    async def asyncTearDown(self):
        await self.db.disconnect()

    def mention(self, text="hello"):
        return FakeMessage(f"<@{BOT_USER_ID}> {text}", make_author(), make_guild(), mentions=[self.bot.user])


class GuildMessageTest(BotTestCase):
    async def test_member_with_use_ai_gets_an_answer(self):
        await self.bot.member_ops.upsert(USER, GUILD, permissions=["use_ai"])
        message = self.mention()

        await handle_guild_message(self.bot, message)

        self.assertEqual(len(self.ai_client.calls), 1)
        incoming, user, guild = self.ai_client.calls[0]
        self.assertEqual(incoming.content, message.content)
        self.assertEqual(incoming.bot_user_id, str(BOT_USER_ID))
        self.assertEqual((user, guild), (USER, GUILD))
        self.assertEqual([r.content for r in message.replies], ["Hello from Pixie!"])

    async def test_message_not_addressed_to_the_bot_is_ignored(self):
        await self.bot.member_ops.upsert(USER, GUILD, permissions=["use_ai"])
        message = FakeMessage("just chatting", make_author(), make_guild())

        with self.assertLogs("pixie.discord.chat", "DEBUG") as logs:
            await handle_guild_message(self.bot, message)

        self.assertIn("not directed at bot", logs.output[0])
        self.assertEqual(message.replies, [])
        self.assertEqual(self.ai_client.calls, [])
        self.assertEqual(await self.bot.bot_log.recent(), [])

    async def test_banned_guild_gets_the_server_notice(self):
        await self.bot.member_ops.upsert(USER, GUILD, permissions=["use_ai"])
        await self.bot.guild_ops.ban(GUILD, "raids")
        message = self.mention()

        await handle_guild_message(self.bot, message)

        self.assertEqual(self.ai_client.calls, [])
        self.assertEqual(len(message.replies), 1)
        self.assertTrue(message.replies[0].embed.description.startswith("This server is permanently banned."))
        warnings = await self.bot.bot_log.recent(level="warning")
        self.assertEqual(warnings[0].message, "Banned guild attempted access")

    async def test_member_banned_in_the_guild_is_refused(self):
        await self.bot.member_ops.upsert(USER, GUILD, permissions=["use_ai"])
        await self.bot.member_ops.ban(USER, GUILD, "trolling")
        message = self.mention()

        await handle_guild_message(self.bot, message)

        self.assertEqual(self.ai_client.calls, [])
        self.assertEqual(message.replies[0].embed.title, "Access Denied")
        self.assertTrue(message.replies[0].embed.description.startswith("You are permanently banned."))

    async def test_member_without_use_ai_is_refused(self):
        await self.bot.member_ops.upsert(USER, GUILD)
        message = self.mention()

        await handle_guild_message(self.bot, message)

        self.assertEqual(self.ai_client.calls, [])
        self.assertEqual([r.content for r in message.replies], [NO_PERMISSION_REPLY])


class OnMessageTest(BotTestCase):
    async def test_banned_user_gets_the_ban_notice(self):
        await self.bot.member_ops.upsert(USER, GUILD, permissions=["use_ai"])
        await self.bot.user_ops.ban(USER, "spam")
        message = self.mention()

        await events.on_message(self.bot, message)

        self.assertEqual(self.ai_client.calls, [])
        self.assertEqual(len(message.replies), 1)
        embed = message.replies[0].embed
        self.assertEqual(embed.title, "Access Denied")
        self.assertIn("You are permanently banned.", embed.description)
        self.assertIn(INVITE, embed.description)

    async def test_banned_user_is_refused_in_direct_messages(self):
        await self.bot.user_ops.ban(USER, "spam")
        message = FakeMessage("hello", make_author())

        await events.on_message(self.bot, message)

        self.assertEqual(self.ai_client.calls, [])
        self.assertIsNotNone(message.replies[0].embed)

    async def test_bots_are_ignored(self):
        message = FakeMessage("hello", make_author("723456789012345678", bot=True))

        await events.on_message(self.bot, message)

        self.assertEqual(message.replies, [])
        self.assertIsNone(await self.bot.user_ops.get(ExternalId("723456789012345678")))

    async def test_direct_message_reaches_the_ai_client(self):
        self.bot.config["dm"] = {"enable_weather": True}
        message = FakeMessage("what's up?", make_author())

        await events.on_message(self.bot, message)

        incoming, user, guild = self.ai_client.calls[0]
        self.assertEqual((incoming.content, user, guild), ("what's up?", USER, None))
        self.assertEqual([r.content for r in message.replies], ["Hello from Pixie!"])

    async def test_unknown_author_is_registered(self):
        author = make_author("823456789012345678")
        message = FakeMessage("hi", author)

        await events.on_message(self.bot, message)

        user = await self.bot.user_ops.get(ExternalId("823456789012345678"))
        self.assertEqual(user.username, "alice")


class ChannelDeleteTest(BotTestCase):
    async def test_deleted_channel_takes_its_conversations(self):
        await ConversationOperations(self.db).create_or_update_conversation(
            USER, CHANNEL, [{"role": "user", "content": "hi"}], guild_id=GUILD
        )
        channel = SimpleNamespace(id=int(CHANNEL_ID), name="general", guild=make_guild())

        await events.on_guild_channel_delete(self.bot, channel)

        async with self.db.session() as session:
            self.assertEqual(await session.scalar(select(func.count()).select_from(Channel)), 0)
            self.assertEqual(await session.scalar(select(func.count()).select_from(Conversation)), 0)


class FakeResponse:
    def __init__(self):
        self.sent = []

    async def send_message(self, content=None, *, embed=None, ephemeral=False):
        self.sent.append(SimpleNamespace(content=content, embed=embed, ephemeral=ephemeral))


class InteractionCheckTest(BotTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        # The check only needs the cooldown table from the tree
        self.tree = object.__new__(PixieCommandTree)
        self.tree.cooldowns = CooldownTable()

    def interaction(self, permission=None):
        command = SimpleNamespace(qualified_name="settings update", extras={"permission": permission} if permission else {})
        return SimpleNamespace(
            client=self.bot,
            command=command,
            user=make_author(),
            guild_id=int(GUILD_ID),
            response=FakeResponse(),
        )

    async def test_member_ban_blocks_commands(self):
        await self.bot.member_ops.upsert(USER, GUILD, permissions=["use_ai"])
        await self.bot.member_ops.ban(USER, GUILD, "trolling")
        interaction = self.interaction()

        self.assertFalse(await self.tree.interaction_check(interaction))
        self.assertEqual(interaction.response.sent[0].embed.title, "Access Denied")
        self.assertTrue(interaction.response.sent[0].ephemeral)

    async def test_lifted_member_ban_lets_commands_through(self):
        await self.bot.member_ops.upsert(USER, GUILD, permissions=["use_ai"])
        await self.bot.member_ops.ban(USER, GUILD, "trolling")
        await self.bot.member_ops.unban(USER, GUILD)

        self.assertTrue(await self.tree.interaction_check(self.interaction()))

    async def test_missing_command_permission(self):
        await self.bot.member_ops.upsert(USER, GUILD, permissions=["use_ai"])
        interaction = self.interaction("manage_users")

        self.assertFalse(await self.tree.interaction_check(interaction))
        self.assertEqual(interaction.response.sent[0].embed.title, "Missing Permissions")


if __name__ == "__main__":
    unittest.main()
