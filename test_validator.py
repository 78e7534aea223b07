import json
import unittest
from datetime import datetime, timedelta, timezone

from sqlalchemy import update

from fakes import GUILD_ID, USER_ID, memory_database
from pixie.db.guilds import GuildMemberOperations, GuildOperations
from pixie.db.identifiers import ExternalId
from pixie.db.models import User, utcnow
from pixie.db.users import UserOperations
from pixie.db.validator import (
    ValidationError,
    parse_allowed_channels,
    validate_ban,
    validate_channel,
    validate_guild_settings,
)

USER = ExternalId(USER_ID)
GUILD = ExternalId(GUILD_ID)


class GuildSettingsValidationTest(unittest.TestCase):
    def test_valid_update(self):
        self.assertEqual(
            validate_guild_settings({"ai_provider": "groq", "ai_model": "gemma2-9b-it", "temperature": 1.2}),
            [],
        )

    def test_every_problem_is_reported(self):
        reasons = validate_guild_settings({
            "ai_provider": "anthropic",
            "max_tokens": 5000,
            "temperature": 3,
            "max_conversation_length": 0,
            "allowed_channels": "not json",
            "ai_enabled": "yes",
            "colour": "blue",
        })
        self.assertEqual(len(reasons), 7)
        self.assertIn("Max tokens must be between 1 and 4096", reasons)
        self.assertIn("Temperature must be between 0 and 2", reasons)
        self.assertIn("Max conversation length must be between 1 and 50", reasons)
        self.assertIn("Allowed channels must be a valid JSON array string", reasons)

    def test_model_is_checked_against_the_current_provider(self):
        self.assertEqual(validate_guild_settings({"ai_model": "gpt-4o"}, current_provider="openai"), [])
        self.assertTrue(validate_guild_settings({"ai_model": "gpt-4o"}, current_provider="ollama"))

    def test_allowed_channels(self):
        self.assertEqual(parse_allowed_channels('["1", 2]'), ["1", "2"])
        self.assertEqual(parse_allowed_channels("{}"), [])
        self.assertEqual(parse_allowed_channels("broken"), [])
        self.assertEqual(parse_allowed_channels(None), [])


class RecordValidationTest(unittest.TestCase):
    def test_ban(self):
        self.assertEqual(validate_ban(True, "spam"), [])
        self.assertEqual(validate_ban(True, ""), ["Ban reason is required when banning"])
        self.assertEqual(
            validate_ban(True, "spam", utcnow() - timedelta(days=1)),
            ["Ban expiration date must be in the future"],
        )
        self.assertEqual(validate_ban(True, "spam", "tomorrow"), ["Invalid ban expiration date"])

    def test_channel(self):
        self.assertEqual(validate_channel("general", "text"), [])
        self.assertEqual(validate_channel("", "forum"), ["Channel name is required", "Invalid channel type"])


class GuildSettingsUpdateTest(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.db = await memory_database()
        self.guilds = GuildOperations(self.db)
        await self.guilds.upsert(GUILD, "Test Guild")

    async def asyncTearDown(self):
        await self.db.disconnect()

    async def test_defaults_are_created_with_the_guild(self):
        settings = await self.guilds.get_settings(GUILD)
        self.assertTrue(settings.ai_enabled)
        self.assertEqual(settings.ai_provider, "openai")
        self.assertEqual(settings.allowed_channels, "[]")

    async def test_unknown_guild_has_no_settings(self):
        self.assertIsNone(await self.guilds.get_settings(ExternalId("999999999999999999")))

    async def test_switching_provider_falls_back_to_its_default_model(self):
        settings = await self.guilds.update_settings(GUILD, {"ai_provider": "groq"})
        self.assertEqual(settings.ai_provider, "groq")
        self.assertEqual(settings.ai_model, "mixtral-8x7b-32768")

    async def test_invalid_update_changes_nothing(self):
        with self.assertRaises(ValidationError) as ctx:
            await self.guilds.update_settings(GUILD, {"max_tokens": 0, "enable_weather": True})
        self.assertEqual(ctx.exception.reasons, ["Max tokens must be between 1 and 4096"])

        settings = await self.guilds.get_settings(GUILD)
        self.assertFalse(settings.enable_weather)

    async def test_allowed_channels_round_trip(self):
        await self.guilds.update_settings(GUILD, {"allowed_channels": json.dumps(["*"])})
        settings = await self.guilds.get_settings(GUILD)
        self.assertEqual(parse_allowed_channels(settings.allowed_channels), ["*"])


class BanTest(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.db = await memory_database()
        self.users = UserOperations(self.db)
        await self.users.upsert(USER, "alice")

    async def asyncTearDown(self):
        await self.db.disconnect()

    async def test_permanent_ban(self):
        await self.users.ban(USER, "spam")
        ban = await self.users.active_ban(USER)
        self.assertEqual(ban.reason, "spam")
        self.assertIsNone(ban.expires_at)

        await self.users.unban(USER)
        self.assertIsNone(await self.users.active_ban(USER))

    async def test_expired_ban_is_lifted(self):
        await self.users.ban(USER, "spam", utcnow() + timedelta(hours=1))
        self.assertIsNotNone(await self.users.active_ban(USER))

        async with self.db.session() as session:
            await session.execute(update(User).values(ban_expires_at=utcnow() - timedelta(minutes=1)))
            await session.commit()

        self.assertIsNone(await self.users.active_ban(USER))
        user = await self.users.get(USER)
        self.assertFalse(user.is_banned)
        self.assertIsNone(user.ban_reason)

    async def test_aware_expiry_is_stored_as_naive_utc(self):
        expiry = datetime(2099, 6, 1, 14, 30, tzinfo=timezone(timedelta(hours=2)))
        await self.users.ban(USER, "spam", expiry)

        ban = await self.users.active_ban(USER)
        self.assertEqual(ban.expires_at, datetime(2099, 6, 1, 12, 30))
        self.assertIsNone(ban.expires_at.tzinfo)

        await GuildOperations(self.db).upsert(GUILD, "Test Guild")
        guild = await GuildOperations(self.db).ban(GUILD, "raids", expiry)
        self.assertEqual(guild.ban_expires_at, datetime(2099, 6, 1, 12, 30))

    async def test_ban_requires_a_reason(self):
        with self.assertRaises(ValidationError):
            await self.users.ban(USER, "")

    async def test_member_ban_is_scoped_to_the_guild(self):
        await GuildOperations(self.db).upsert(GUILD, "Test Guild")
        members = GuildMemberOperations(self.db)
        await members.upsert(USER, GUILD)
        await members.ban(USER, GUILD, "trolling")

        self.assertEqual((await members.active_ban(USER, GUILD)).reason, "trolling")
        self.assertIsNone(await self.users.active_ban(USER))


if __name__ == "__main__":
    unittest.main()
