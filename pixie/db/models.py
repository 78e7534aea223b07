"""SQLAlchemy ORM models for the bot's users, guilds, permissions and conversations."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Naive UTC timestamp; every datetime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ── Permission assignment join tables ───────────────────────────────────────

user_permissions = Table(
    "user_permissions",
    Base.metadata,
    Column("user_id", ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)

guild_permissions = Table(
    "guild_permissions",
    Base.metadata,
    Column("guild_id", ForeignKey("guilds.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)

guild_member_permissions = Table(
    "guild_member_permissions",
    Base.metadata,
    Column("guild_member_id", ForeignKey("guild_members.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    """A Discord user the bot has seen at least once."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    discord_id: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    username: Mapped[Optional[str]] = mapped_column(String(100))
    discriminator: Mapped[Optional[str]] = mapped_column(String(10))
    avatar: Mapped[Optional[str]] = mapped_column(Text)

    is_bot_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_banned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ban_reason: Mapped[Optional[str]] = mapped_column(Text)
    ban_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    permissions: Mapped[list["Permission"]] = relationship(secondary=user_permissions)


class Guild(Base):
    """A Discord guild (server) the bot is a member of."""

    __tablename__ = "guilds"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    discord_id: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, default="Unknown Guild")
    icon: Mapped[Optional[str]] = mapped_column(Text)

    is_banned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ban_reason: Mapped[Optional[str]] = mapped_column(Text)
    ban_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    settings: Mapped[Optional["GuildSettings"]] = relationship(
        back_populates="guild", uselist=False, lazy="selectin"
    )
    permissions: Mapped[list["Permission"]] = relationship(secondary=guild_permissions)


class GuildSettings(Base):
    """Per-guild AI configuration (one row per guild)."""

    __tablename__ = "guild_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(
        ForeignKey("guilds.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    ai_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    ai_provider: Mapped[str] = mapped_column(String(20), default="openai", nullable=False)
    ai_model: Mapped[str] = mapped_column(String(100), default="gpt-4o-mini", nullable=False)
    temperature: Mapped[float] = mapped_column(Float, default=0.7, nullable=False)
    max_tokens: Mapped[int] = mapped_column(Integer, default=2000, nullable=False)
    max_conversation_length: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    # JSON array of channel snowflakes, "*" allows every channel
    allowed_channels: Mapped[str] = mapped_column(Text, default="[]", nullable=False)
    enable_reasoning: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    enable_web_search: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    enable_weather: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    guild: Mapped["Guild"] = relationship(back_populates="settings")


class GuildMember(Base):
    """Membership of a user in a guild."""

    __tablename__ = "guild_members"
    __table_args__ = (UniqueConstraint("user_id", "guild_id", name="uq_guild_member"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    guild_id: Mapped[int] = mapped_column(ForeignKey("guilds.id", ondelete="CASCADE"), nullable=False)

    is_guild_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_banned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ban_reason: Mapped[Optional[str]] = mapped_column(Text)
    ban_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    joined_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    permissions: Mapped[list["Permission"]] = relationship(secondary=guild_member_permissions)


class Permission(Base):
    """A named capability assignable to users, guilds and guild members."""

    __tablename__ = "permissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)


class Channel(Base):
    """A guild channel or a DM channel (guild_id is NULL for DMs)."""

    __tablename__ = "channels"
    __table_args__ = (
        UniqueConstraint("discord_id", "guild_id", name="uq_channel_guild"),
        # NULL guild ids never collide in the constraint above
        Index(
            "uq_channel_dm",
            "discord_id",
            unique=True,
            sqlite_where=text("guild_id IS NULL"),
            postgresql_where=text("guild_id IS NULL"),
        ),
        CheckConstraint("type IN ('text', 'voice', 'DM')", name="check_channel_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    discord_id: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    guild_id: Mapped[Optional[int]] = mapped_column(ForeignKey("guilds.id", ondelete="CASCADE"))
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(10), nullable=False, default="text")
    is_nsfw: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Conversation(Base):
    """Message history for one (user, channel) pair."""

    __tablename__ = "conversations"
    __table_args__ = (UniqueConstraint("user_id", "channel_id", name="uq_conversation_user_channel"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    channel_id: Mapped[int] = mapped_column(ForeignKey("channels.id", ondelete="CASCADE"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    messages: Mapped[list["Message"]] = relationship(
        back_populates="conversation", order_by="Message.id"
    )


class Message(Base):
    """A single immutable chat turn."""

    __tablename__ = "messages"
    __table_args__ = (
        CheckConstraint("role IN ('user', 'assistant', 'system')", name="check_message_role"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[int] = mapped_column(
        ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    conversation: Mapped["Conversation"] = relationship(back_populates="messages")


class BotLog(Base):
    """Append-only operational event record."""

    __tablename__ = "bot_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    level: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_json: Mapped[Optional[str]] = mapped_column("metadata", Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
