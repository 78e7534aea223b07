import os
import tempfile
import unittest
from unittest import mock

import yaml

from pixie.config.loader import get_config
from pixie.config.validator import ConfigValidationError, parse_cron, validate_config

TOKEN_ENV = {"DISCORD_TOKEN": "token", "OPENAI_API_KEY": "sk-test"}


def write_config(data):
    handle = tempfile.NamedTemporaryFile("w", suffix=".yaml", delete=False, encoding="utf-8")
    with handle:
        yaml.safe_dump(data, handle)
    return handle.name


class ParseCronTest(unittest.TestCase):
    def test_wildcards_are_left_out(self):
        self.assertEqual(parse_cron("0 3 * * *"), {"second": 0, "minute": "0", "hour": "3"})
        self.assertEqual(
            parse_cron("*/5 * 1 6 mon"),
            {"second": 0, "minute": "*/5", "day": "1", "month": "6", "day_of_week": "mon"},
        )

    def test_wrong_field_count(self):
        with self.assertRaises(ValueError):
            parse_cron("0 3 * *")


@mock.patch.dict(os.environ, TOKEN_ENV, clear=True)
class ValidateConfigTest(unittest.TestCase):
    def test_minimal_config_passes(self):
        validate_config({"client_id": "123456789012345678", "default_provider": "groq"})

    def test_token_is_required(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(ConfigValidationError), self.assertLogs("pixie.config.validator", "ERROR") as logs:
                validate_config({})
        self.assertTrue(any("Missing Discord token" in line for line in logs.output))

    def test_every_error_is_counted(self):
        cfg = {
            "client_id": "abc",
            "default_provider": "openai",
            "default_model": "llama3.1:8b",
            "temperature": 5,
            "max_tokens": 0,
            "permissions": {"bot_admin_ids": ["123"]},
            "conversation_cleanup": {"enabled": True, "cron": "every day", "days_old": 0},
        }
        with self.assertRaises(ConfigValidationError) as ctx, self.assertLogs("pixie.config.validator", "ERROR"):
            validate_config(cfg)
        self.assertIn("7 error(s)", str(ctx.exception))

    def test_enabled_cleanup_needs_a_cron(self):
        with self.assertRaises(ConfigValidationError), self.assertLogs("pixie.config.validator", "ERROR") as logs:
            validate_config({"conversation_cleanup": {"enabled": True}})
        self.assertTrue(any("missing required field: 'cron'" in line for line in logs.output))

    def test_disabled_cleanup_is_not_checked(self):
        validate_config({"conversation_cleanup": {"enabled": False, "cron": "nonsense"}})

    def test_missing_credentials_only_warn(self):
        with mock.patch.dict(os.environ, {"DISCORD_TOKEN": "token"}, clear=True):
            with self.assertLogs("pixie.config.validator", "WARNING") as logs:
                validate_config({"dm": {"enable_web_search": True}})
        output = "\n".join(logs.output)
        self.assertIn("OPENAI_API_KEY is not set", output)
        self.assertIn("TAVILY_API_KEY is not set", output)


@mock.patch.dict(os.environ, TOKEN_ENV, clear=True)
class GetConfigTest(unittest.TestCase):
    def test_token_comes_from_the_environment(self):
        path = write_config({"default_provider": "openai", "default_model": "gpt-4o"})
        self.addCleanup(os.remove, path)

        cfg = get_config(path)
        self.assertEqual(cfg["bot_token"], "token")
        self.assertEqual(cfg["default_model"], "gpt-4o")

    def test_database_url_override(self):
        path = write_config({"database_url": "sqlite+aiosqlite:///file.db"})
        self.addCleanup(os.remove, path)

        with mock.patch.dict(os.environ, {"DATABASE_URL": "postgresql+asyncpg://db/pixie"}):
            self.assertEqual(get_config(path)["database_url"], "postgresql+asyncpg://db/pixie")

    def test_config_path_from_environment(self):
        path = write_config({"status_message": "hello"})
        self.addCleanup(os.remove, path)

        with mock.patch.dict(os.environ, {"CONFIG_PATH": path}):
            self.assertEqual(get_config()["status_message"], "hello")

    def test_missing_file_exits(self):
        with self.assertRaises(SystemExit) as ctx, self.assertLogs(level="ERROR"):
            get_config("/nonexistent/config.yaml")
        self.assertEqual(ctx.exception.code, 1)

    def test_invalid_config_exits(self):
        path = write_config({"default_provider": "anthropic"})
        self.addCleanup(os.remove, path)

        with self.assertRaises(SystemExit) as ctx, self.assertLogs(level="ERROR"):
            get_config(path)
        self.assertEqual(ctx.exception.code, 1)


if __name__ == "__main__":
    unittest.main()
