from __future__ import annotations

from datetime import datetime, UTC

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

CLAIM_TYPES = ("fact", "value", "policy")
STANCES = ("supports", "contradicts")
REPLY_STATUSES = ("pending", "accepted", "rejected")

MAX_CLAIM_LENGTH = 300


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _in(column: str, values: tuple[str, ...]) -> str:
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


class Base(DeclarativeBase):
    pass


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)


class Claim(Base):
    __tablename__ = "claims"
    __table_args__ = (
        CheckConstraint(f"length(text) <= {MAX_CLAIM_LENGTH}", name="ck_claims_text_length"),
        CheckConstraint(_in("claim_type", CLAIM_TYPES), name="ck_claims_claim_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    text: Mapped[str] = mapped_column(String(MAX_CLAIM_LENGTH), nullable=False)
    claim_type: Mapped[str] = mapped_column(String(20), nullable=False)
    author_id: Mapped[str] = mapped_column(String(64), ForeignKey("profiles.id"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, index=True)

    author: Mapped[Profile] = relationship("Profile")
    replies: Mapped[list[Reply]] = relationship(
        "Reply", back_populates="claim", cascade="all, delete-orphan",
        order_by="Reply.id",
    )


class Reply(Base):
    __tablename__ = "replies"
    __table_args__ = (
        CheckConstraint(_in("stance", STANCES), name="ck_replies_stance"),
        CheckConstraint(_in("status", REPLY_STATUSES), name="ck_replies_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    parent_claim_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("claims.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    stance: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False, index=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    author_id: Mapped[str] = mapped_column(String(64), ForeignKey("profiles.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    claim: Mapped[Claim] = relationship("Claim", back_populates="replies")
    author: Mapped[Profile] = relationship("Profile")
    thread: Mapped[Thread | None] = relationship(
        "Thread", back_populates="reply", uselist=False, cascade="all, delete-orphan",
    )


class Thread(Base):
    __tablename__ = "threads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # unique: at most one thread per reply
    reply_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("replies.id", ondelete="CASCADE"), nullable=False, unique=True,
    )
    claim_owner_id: Mapped[str] = mapped_column(String(64), ForeignKey("profiles.id"), nullable=False)
    reply_author_id: Mapped[str] = mapped_column(String(64), ForeignKey("profiles.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    reply: Mapped[Reply] = relationship("Reply", back_populates="thread")
    messages: Mapped[list[Message]] = relationship(
        "Message", back_populates="thread", cascade="all, delete-orphan",
        order_by="Message.id",
    )

    @property
    def participants(self) -> frozenset[str]:
        return frozenset((self.claim_owner_id, self.reply_author_id))

    def is_participant(self, actor_id: str | None) -> bool:
        return actor_id is not None and actor_id in self.participants


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    thread_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("threads.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    sender_id: Mapped[str] = mapped_column(String(64), ForeignKey("profiles.id"), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, index=True)

    thread: Mapped[Thread] = relationship("Thread", back_populates="messages")
    sender: Mapped[Profile] = relationship("Profile")
