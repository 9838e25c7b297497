from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Generator

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session

from consensus import services
from consensus.auth import Identity, get_identity, get_optional_identity
from consensus.db import init_db, session_generator
from consensus.errors import ConsensusError
from consensus.feed import MessageFeed, get_feed
from consensus.schemas import (
    ClaimCreate,
    ClaimDetail,
    ClaimOut,
    MessageCreate,
    MessageOut,
    ProfileOut,
    ProfileUpdate,
    ReplyCreate,
    ReplyOut,
    ReplyReject,
    ThreadDetail,
    ThreadOut,
)

log = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 15.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Consensus",
    version="0.1.0",
    description=(
        "Structured public discussion with private resolution. "
        "Users post claims, others reply with a stance, and every reply opens a "
        "private two-party thread between the claim author and the reply author. "
        "Authenticated routes expect a bearer session token."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Profiles", "description": "The caller's profile and public profiles."},
        {"name": "Claims", "description": "Public claims: post, browse, delete."},
        {"name": "Replies", "description": "Replies to claims and the claim author's review."},
        {"name": "Threads", "description": "Private two-party threads, messages and live events."},
    ],
)


@app.exception_handler(ConsensusError)
async def consensus_error_handler(request: Request, exc: ConsensusError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    yield from session_generator()


def current_actor(
    identity: Identity = Depends(get_identity), session: Session = Depends(db_session),
) -> str:
    services.ensure_profile(session, identity.actor_id, identity.email, identity.full_name)
    return identity.actor_id


def optional_actor(
    identity: Identity | None = Depends(get_optional_identity), session: Session = Depends(db_session),
) -> str | None:
    if identity is None:
        return None
    services.ensure_profile(session, identity.actor_id, identity.email, identity.full_name)
    return identity.actor_id


# ---------------------------------------------------------------------------
# Routes: Profiles
# ---------------------------------------------------------------------------


@app.get("/api/me", response_model=ProfileOut, tags=["Profiles"], summary="Get the caller's profile")
async def get_me(actor: str = Depends(current_actor), session: Session = Depends(db_session)):
    return services.profile_summary(services.get_profile(session, actor))


@app.put("/api/me", response_model=ProfileOut, tags=["Profiles"], summary="Update the caller's display name")
async def update_me(body: ProfileUpdate, actor: str = Depends(current_actor),
                    session: Session = Depends(db_session)):
    return services.profile_summary(services.update_profile(session, actor, body.display_name))


@app.get("/api/profiles/{profile_id}", response_model=ProfileOut, tags=["Profiles"], summary="Get a public profile")
async def get_profile(profile_id: str, session: Session = Depends(db_session)):
    return services.profile_summary(services.get_profile(session, profile_id))


# ---------------------------------------------------------------------------
# Routes: Claims
# ---------------------------------------------------------------------------


@app.get("/api/claims", response_model=list[ClaimOut], tags=["Claims"],
         summary="List recent claims, newest first, with reply counts")
async def list_claims(
    limit: int = Query(services.DEFAULT_CLAIM_LIMIT, ge=1, le=200),
    session: Session = Depends(db_session),
):
    return services.list_claims(session, limit=limit)


@app.post("/api/claims", response_model=ClaimOut, status_code=201, tags=["Claims"], summary="Post a claim")
async def create_claim(body: ClaimCreate, actor: str = Depends(current_actor),
                       session: Session = Depends(db_session)):
    claim = services.create_claim(session, actor, body.text, body.claim_type)
    return services.claim_summary(claim, reply_count=0)


@app.get("/api/claims/{claim_id}", response_model=ClaimDetail, tags=["Claims"],
         summary="Get a claim with its replies grouped by status")
async def get_claim(claim_id: int, actor: str | None = Depends(optional_actor),
                    session: Session = Depends(db_session)):
    return services.claim_detail(session, services.get_claim(session, claim_id), actor)


@app.delete("/api/claims/{claim_id}", tags=["Claims"],
            summary="Delete a claim with its replies, threads and messages (author only)")
async def delete_claim(claim_id: int, actor: str = Depends(current_actor),
                       session: Session = Depends(db_session)):
    services.delete_claim(session, claim_id, actor)
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Replies
# ---------------------------------------------------------------------------


@app.get("/api/claims/{claim_id}/replies", response_model=list[ReplyOut], tags=["Replies"],
         summary="List replies to a claim, oldest first")
async def list_replies(claim_id: int, actor: str | None = Depends(optional_actor),
                       session: Session = Depends(db_session)):
    return services.list_replies(session, claim_id, actor)


@app.post("/api/claims/{claim_id}/replies", response_model=ReplyOut, status_code=201, tags=["Replies"],
          summary="Reply to a claim; opens the private thread with the claim author")
async def create_reply(claim_id: int, body: ReplyCreate, actor: str = Depends(current_actor),
                       session: Session = Depends(db_session)):
    reply, _ = services.create_reply_with_thread(session, claim_id, actor, body.text, body.stance)
    return services.reply_summary(reply, actor)


@app.post("/api/replies/{reply_id}/accept", response_model=ReplyOut, tags=["Replies"],
          summary="Accept a pending reply (claim author only)")
async def accept_reply(reply_id: int, actor: str = Depends(current_actor),
                       session: Session = Depends(db_session)):
    return services.reply_summary(services.accept_reply(session, reply_id, actor), actor)


@app.post("/api/replies/{reply_id}/reject", response_model=ReplyOut, tags=["Replies"],
          summary="Reject a pending reply with an optional public reason (claim author only)")
async def reject_reply(reply_id: int, body: ReplyReject | None = None, actor: str = Depends(current_actor),
                       session: Session = Depends(db_session)):
    reason = body.reason if body is not None else None
    return services.reply_summary(services.reject_reply(session, reply_id, actor, reason), actor)


# ---------------------------------------------------------------------------
# Routes: Threads
# ---------------------------------------------------------------------------


@app.get("/api/threads", response_model=list[ThreadOut], tags=["Threads"],
         summary="List threads the caller participates in")
async def list_threads(actor: str = Depends(current_actor), session: Session = Depends(db_session)):
    return services.list_threads(session, actor)


@app.get("/api/threads/{thread_id}", response_model=ThreadDetail, tags=["Threads"],
         summary="Get a thread with the reply and claim it discusses (participants only)")
async def get_thread(thread_id: int, actor: str = Depends(current_actor),
                     session: Session = Depends(db_session)):
    return services.thread_context(services.get_thread(session, thread_id, actor), actor)


@app.get("/api/threads/{thread_id}/messages", response_model=list[MessageOut], tags=["Threads"],
         summary="List thread messages, oldest first (participants only)")
async def list_messages(thread_id: int, actor: str = Depends(current_actor),
                        session: Session = Depends(db_session)):
    return services.message_payloads(services.list_messages(session, thread_id, actor))


@app.post("/api/threads/{thread_id}/messages", response_model=MessageOut, status_code=201, tags=["Threads"],
          summary="Send a message to the other participant")
async def send_message(thread_id: int, body: MessageCreate, actor: str = Depends(current_actor),
                       session: Session = Depends(db_session), message_feed: MessageFeed = Depends(get_feed)):
    message = services.send_message(session, thread_id, actor, body.body, feed=message_feed)
    return services.message_summary(message)


@app.get("/api/threads/{thread_id}/events", tags=["Threads"],
         summary="Live stream of new thread messages (Server-Sent Events, participants only)")
async def thread_events(thread_id: int, actor: str = Depends(current_actor),
                        session: Session = Depends(db_session), message_feed: MessageFeed = Depends(get_feed)):
    services.get_thread(session, thread_id, actor)

    async def stream():
        async with message_feed.subscribe(thread_id) as sub:
            yield f"data: {json.dumps({'type': 'subscribed', 'thread_id': thread_id})}\n\n"
            while True:
                payload = await sub.get(timeout=KEEPALIVE_SECONDS)
                if payload is None:
                    yield ": keepalive\n\n"
                    continue
                yield f"data: {json.dumps({'type': 'message', 'message': payload})}\n\n"

    return StreamingResponse(stream(), media_type="text/event-stream")


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("consensus.app:app", host="127.0.0.1", port=8000, reload=True)


if __name__ == "__main__":
    main()
