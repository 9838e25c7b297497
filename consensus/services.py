"""Business logic for claims, the reply lifecycle, and private threads.

Every mutating operation here is its own unit of work: it validates, checks
the actor's permission, writes, and commits (rolling back on failure). The
FastAPI app and the tests call these functions directly.
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from consensus.errors import Forbidden, InvalidTransition, NotFound, ValidationError
from consensus.feed import MessageFeed
from consensus.models import (
    CLAIM_TYPES, MAX_CLAIM_LENGTH, REPLY_STATUSES, STANCES,
    Claim, Message, Profile, Reply, Thread,
)
from consensus.utils import clean_text, iso

log = logging.getLogger(__name__)

DEFAULT_CLAIM_LIMIT = 50


# ---------------------------------------------------------------------------
# Lookup helpers
# ---------------------------------------------------------------------------


def get_entity(session: Session, model, entity_id):
    return session.execute(select(model).where(model.id == entity_id)).scalars().first()


def require_entity(session: Session, model, entity_id, label: str = "Entity"):
    obj = get_entity(session, model, entity_id)
    if obj is None:
        raise NotFound(f"{label} {entity_id} not found")
    return obj


def _commit(session: Session) -> None:
    try:
        session.commit()
    except Exception:
        session.rollback()
        raise


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def _name(profile: Profile | None) -> str | None:
    return profile.display_name if profile is not None else None


def profile_summary(profile: Profile) -> dict:
    return {"id": profile.id, "display_name": profile.display_name, "created_at": iso(profile.created_at)}


def claim_summary(claim: Claim, reply_count: int | None = None) -> dict:
    return {
        "id": claim.id, "text": claim.text, "claim_type": claim.claim_type,
        "author_id": claim.author_id, "author_name": _name(claim.author),
        "created_at": iso(claim.created_at),
        "reply_count": len(claim.replies) if reply_count is None else reply_count,
    }


def reply_summary(reply: Reply, viewer_id: str | None = None) -> dict:
    thread = reply.thread
    visible = thread is not None and thread.is_participant(viewer_id)
    return {
        "id": reply.id, "parent_claim_id": reply.parent_claim_id, "text": reply.text,
        "stance": reply.stance, "status": reply.status,
        "rejection_reason": reply.rejection_reason,
        "author_id": reply.author_id, "author_name": _name(reply.author),
        "created_at": iso(reply.created_at),
        "thread_id": thread.id if visible else None,
    }


def thread_summary(thread: Thread) -> dict:
    return {
        "id": thread.id, "reply_id": thread.reply_id,
        "claim_owner_id": thread.claim_owner_id, "reply_author_id": thread.reply_author_id,
        "created_at": iso(thread.created_at),
    }


def message_summary(message: Message) -> dict:
    return {
        "id": message.id, "thread_id": message.thread_id, "sender_id": message.sender_id,
        "sender_name": _name(message.sender), "body": message.body,
        "created_at": iso(message.created_at),
    }


def group_by_status(replies: list[dict]) -> dict[str, list[dict]]:
    groups: dict[str, list[dict]] = {status: [] for status in REPLY_STATUSES}
    for item in replies:
        groups[item["status"]].append(item)
    return groups


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


def ensure_profile(
    session: Session, actor_id: str, email: str | None = None, full_name: str | None = None,
) -> Profile:
    """Return the actor's profile, creating it the first time the identity is seen.

    Concurrent first requests for one identity race on the insert; the loser
    rolls back and returns the row the winner committed.
    """
    profile = session.get(Profile, actor_id)
    if profile is not None:
        return profile
    profile = Profile(id=actor_id, display_name=clean_text(full_name) or clean_text(email) or None)
    session.add(profile)
    try:
        _commit(session)
    except IntegrityError:
        log.debug("Profile for %s was created concurrently", actor_id)
        existing = session.get(Profile, actor_id)
        if existing is None:
            raise
        return existing
    log.info("Created profile for %s", actor_id)
    return profile


def get_profile(session: Session, profile_id: str) -> Profile:
    profile = session.get(Profile, profile_id)
    if profile is None:
        raise NotFound(f"Profile {profile_id} not found")
    return profile


def update_profile(session: Session, actor_id: str, display_name: str | None) -> Profile:
    profile = get_profile(session, actor_id)
    name = clean_text(display_name)
    if len(name) > 200:
        raise ValidationError("Display name must be 200 characters or less")
    profile.display_name = name or None
    _commit(session)
    return profile


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------


def validate_claim_text(text: str | None) -> str:
    # the limit applies to the text as submitted, surrounding whitespace included
    if len(text or "") > MAX_CLAIM_LENGTH:
        raise ValidationError(f"Claim must be {MAX_CLAIM_LENGTH} characters or less")
    text = clean_text(text)
    if not text:
        raise ValidationError("Claim cannot be empty")
    return text


def create_claim(session: Session, author_id: str, text: str, claim_type: str) -> Claim:
    text = validate_claim_text(text)
    if claim_type not in CLAIM_TYPES:
        raise ValidationError(f"claim_type must be one of: {', '.join(CLAIM_TYPES)}")
    claim = Claim(text=text, claim_type=claim_type, author_id=author_id)
    session.add(claim)
    _commit(session)
    log.info("Claim %s created by %s", claim.id, author_id)
    return claim


def list_claims(session: Session, limit: int = DEFAULT_CLAIM_LIMIT) -> list[dict]:
    """Newest claims first, each with its reply count."""
    counts = (
        select(Reply.parent_claim_id, func.count(Reply.id).label("n"))
        .group_by(Reply.parent_claim_id)
        .subquery()
    )
    rows = session.execute(
        select(Claim, func.coalesce(counts.c.n, 0))
        .outerjoin(counts, counts.c.parent_claim_id == Claim.id)
        .options(selectinload(Claim.author))
        .order_by(Claim.created_at.desc(), Claim.id.desc())
        .limit(limit)
    ).all()
    return [claim_summary(claim, reply_count=n) for claim, n in rows]


def get_claim(session: Session, claim_id: int) -> Claim:
    return require_entity(session, Claim, claim_id, "Claim")


def claim_detail(session: Session, claim: Claim, viewer_id: str | None = None) -> dict:
    replies = list_replies(session, claim.id, viewer_id)
    base = claim_summary(claim, reply_count=len(replies))
    base["replies"] = replies
    base["replies_by_status"] = group_by_status(replies)
    return base


def delete_claim(session: Session, claim_id: int, actor_id: str) -> None:
    """Delete a claim and, by cascade, its replies, threads and messages."""
    claim = get_claim(session, claim_id)
    if claim.author_id != actor_id:
        raise Forbidden("Only the claim author can delete it")
    session.delete(claim)
    _commit(session)
    log.info("Claim %s deleted by %s", claim_id, actor_id)


# ---------------------------------------------------------------------------
# Replies and the review lifecycle
# ---------------------------------------------------------------------------


def provision_thread(session: Session, reply: Reply) -> Thread:
    """Attach the private thread for *reply* inside the caller's transaction.

    A second call for the same reply returns the existing thread unchanged.
    """
    existing = session.execute(
        select(Thread).where(Thread.reply_id == reply.id)
    ).scalars().first()
    if existing is not None:
        log.debug("Thread already provisioned for reply %s; ignoring", reply.id)
        return existing
    thread = Thread(reply=reply, claim_owner_id=reply.claim.author_id, reply_author_id=reply.author_id)
    session.add(thread)
    session.flush()
    return thread


def create_reply_with_thread(
    session: Session, claim_id: int, author_id: str, text: str, stance: str,
) -> tuple[Reply, Thread]:
    """Insert a pending reply and its thread as a single unit of work."""
    claim = get_claim(session, claim_id)
    text = clean_text(text)
    if not text:
        raise ValidationError("Reply cannot be empty")
    if stance not in STANCES:
        raise ValidationError(f"stance must be one of: {', '.join(STANCES)}")
    if claim.author_id == author_id:
        log.info("Claim %s author is replying to their own claim", claim.id)

    try:
        reply = Reply(claim=claim, text=text, stance=stance, status="pending", author_id=author_id)
        session.add(reply)
        session.flush()
        thread = provision_thread(session, reply)
        session.commit()
    except Exception:
        session.rollback()
        raise
    log.info("Reply %s (%s) on claim %s created with thread %s", reply.id, stance, claim.id, thread.id)
    return reply, thread


def _review(session: Session, reply_id: int, actor_id: str, target: str, reason: str | None = None) -> Reply:
    reply = require_entity(session, Reply, reply_id, "Reply")
    if reply.claim.author_id != actor_id:
        raise Forbidden("Only the claim author can review its replies")
    if reply.status == target:
        return reply
    if reply.status != "pending":
        raise InvalidTransition(f"Reply {reply_id} is already {reply.status}")
    reply.status = target
    if target == "rejected":
        reply.rejection_reason = clean_text(reason) or None
    _commit(session)
    log.info("Reply %s %s by %s", reply_id, target, actor_id)
    return reply


def accept_reply(session: Session, reply_id: int, actor_id: str) -> Reply:
    return _review(session, reply_id, actor_id, "accepted")


def reject_reply(session: Session, reply_id: int, actor_id: str, reason: str | None = None) -> Reply:
    return _review(session, reply_id, actor_id, "rejected", reason)


def list_replies(session: Session, claim_id: int, viewer_id: str | None = None) -> list[dict]:
    get_claim(session, claim_id)
    replies = session.execute(
        select(Reply)
        .where(Reply.parent_claim_id == claim_id)
        .options(selectinload(Reply.author), selectinload(Reply.thread))
        .order_by(Reply.created_at, Reply.id)
    ).scalars().all()
    return [reply_summary(r, viewer_id) for r in replies]


# ---------------------------------------------------------------------------
# Threads and messages
# ---------------------------------------------------------------------------


def get_thread(session: Session, thread_id: int, actor_id: str) -> Thread:
    thread = require_entity(session, Thread, thread_id, "Thread")
    if not thread.is_participant(actor_id):
        raise Forbidden("Only the two participants can access this thread")
    return thread


def thread_context(thread: Thread, viewer_id: str) -> dict:
    """Thread with the reply and parent claim it discusses."""
    reply = thread.reply
    return {
        **thread_summary(thread),
        "reply": reply_summary(reply, viewer_id),
        "claim": claim_summary(reply.claim),
    }


def list_threads(session: Session, actor_id: str) -> list[dict]:
    threads = session.execute(
        select(Thread)
        .where(or_(Thread.claim_owner_id == actor_id, Thread.reply_author_id == actor_id))
        .order_by(Thread.created_at.desc(), Thread.id.desc())
    ).scalars().all()
    return [thread_summary(t) for t in threads]


def list_messages(session: Session, thread_id: int, actor_id: str) -> list[Message]:
    get_thread(session, thread_id, actor_id)
    return list(session.execute(
        select(Message)
        .where(Message.thread_id == thread_id)
        .options(selectinload(Message.sender))
        .order_by(Message.created_at, Message.id)
    ).scalars().all())


def send_message(
    session: Session, thread_id: int, actor_id: str, body: str, feed: MessageFeed | None = None,
) -> Message:
    """Append a message as *actor_id* and publish it to the thread's subscribers."""
    get_thread(session, thread_id, actor_id)
    body = clean_text(body)
    if not body:
        raise ValidationError("Message cannot be empty")
    message = Message(thread_id=thread_id, sender_id=actor_id, body=body)
    session.add(message)
    _commit(session)
    if feed is not None:
        feed.publish(thread_id, message_summary(message))
    return message


def message_payloads(messages: list[Message]) -> list[dict[str, Any]]:
    return [message_summary(m) for m in messages]
