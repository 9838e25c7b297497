"""Pydantic request/response schemas for the Consensus API."""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

ClaimType = Literal["fact", "value", "policy"]
Stance = Literal["supports", "contradicts"]
ReplyStatus = Literal["pending", "accepted", "rejected"]


class ProfileOut(BaseModel):
    id: str
    display_name: str | None = None
    created_at: str | None = None


class ProfileUpdate(BaseModel):
    display_name: str | None = None


class ClaimCreate(BaseModel):
    # length and blank checks live in the service layer so they answer 400
    text: str
    claim_type: ClaimType


class ClaimOut(BaseModel):
    id: int
    text: str
    claim_type: ClaimType
    author_id: str
    author_name: str | None = None
    created_at: str | None = None
    reply_count: int = 0


class ReplyCreate(BaseModel):
    text: str
    stance: Stance


class ReplyReject(BaseModel):
    reason: str | None = None


class ReplyOut(BaseModel):
    id: int
    parent_claim_id: int
    text: str
    stance: Stance
    status: ReplyStatus
    rejection_reason: str | None = None
    author_id: str
    author_name: str | None = None
    created_at: str | None = None
    thread_id: int | None = None


class RepliesByStatus(BaseModel):
    accepted: list[ReplyOut] = []
    pending: list[ReplyOut] = []
    rejected: list[ReplyOut] = []


class ClaimDetail(ClaimOut):
    replies: list[ReplyOut] = []
    replies_by_status: RepliesByStatus = RepliesByStatus()


class ThreadOut(BaseModel):
    id: int
    reply_id: int
    claim_owner_id: str
    reply_author_id: str
    created_at: str | None = None


class ThreadDetail(ThreadOut):
    reply: ReplyOut
    claim: ClaimOut


class MessageCreate(BaseModel):
    body: str


class MessageOut(BaseModel):
    id: int
    thread_id: int
    sender_id: str
    sender_name: str | None = None
    body: str
    created_at: str | None = None
