# Copyright (c) 2026 Mohammed Hassan. All rights reserved.
# Proprietary and confidential. Unauthorized copying, modification, distribution, or use is prohibited.

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, DateTime, Date, JSON, ForeignKey, Boolean, Float, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything is stored in UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class User(Base):
    """Profile row mirroring the hosted auth user of the same id."""
    __tablename__ = "users"
    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String, nullable=False, index=True)
    name = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    memberships = relationship("OrgMember", back_populates="user")


class Org(Base):
    __tablename__ = "orgs"
    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    plan = Column(String, default="free")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    members = relationship("OrgMember", back_populates="org")
    locations = relationship("GbpLocation", back_populates="org")
    google_connections = relationship("GoogleConnection", back_populates="org")


class OrgMember(Base):
    __tablename__ = "org_members"
    id = Column(String(36), primary_key=True, default=new_id)
    org_id = Column(String(36), ForeignKey("orgs.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    role = Column(String, nullable=False, default="viewer")  # owner, admin, editor, viewer
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    org = relationship("Org", back_populates="members")
    user = relationship("User", back_populates="memberships")

    __table_args__ = (UniqueConstraint("org_id", "user_id", name="uq_org_user"),)


class GoogleConnection(Base):
    __tablename__ = "connections_google"
    id = Column(String(36), primary_key=True, default=new_id)
    org_id = Column(String(36), ForeignKey("orgs.id"), nullable=False, index=True)
    account_id = Column(String, nullable=False)  # "accounts/{id}"
    refresh_token_enc = Column(Text, nullable=False)
    scopes = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    org = relationship("Org", back_populates="google_connections")

    __table_args__ = (UniqueConstraint("org_id", "account_id", name="uq_connection_org_account"),)


class GbpAccount(Base):
    __tablename__ = "gbp_accounts"
    id = Column(String(36), primary_key=True, default=new_id)
    org_id = Column(String(36), ForeignKey("orgs.id"), nullable=False, index=True)
    google_account_name = Column(String, nullable=False)
    display_name = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    locations = relationship("GbpLocation", back_populates="account")

    __table_args__ = (UniqueConstraint("org_id", "google_account_name", name="uq_account_org_name"),)


class GbpLocation(Base):
    __tablename__ = "gbp_locations"
    id = Column(String(36), primary_key=True, default=new_id)
    org_id = Column(String(36), ForeignKey("orgs.id"), nullable=False, index=True)
    account_id = Column(String(36), ForeignKey("gbp_accounts.id"), nullable=True)
    google_location_name = Column(String, nullable=False)  # "locations/{id}"
    title = Column(String, nullable=True)
    is_managed = Column(Boolean, default=True)
    meta = Column(JSON, nullable=True)
    sync_state = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    org = relationship("Org", back_populates="locations")
    account = relationship("GbpAccount", back_populates="locations")
    reviews = relationship("GbpReview", back_populates="location")

    __table_args__ = (UniqueConstraint("org_id", "google_location_name", name="uq_location_org_name"),)


class GbpReview(Base):
    __tablename__ = "gbp_reviews"
    id = Column(String(36), primary_key=True, default=new_id)
    org_id = Column(String(36), ForeignKey("orgs.id"), nullable=False, index=True)
    location_id = Column(String(36), ForeignKey("gbp_locations.id"), nullable=False, index=True)
    review_id = Column(String, nullable=False)
    author = Column(String, nullable=True)
    rating = Column(Integer, nullable=True)
    text = Column(Text, nullable=True)
    reply = Column(Text, nullable=True)
    state = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    location = relationship("GbpLocation", back_populates="reviews")

    __table_args__ = (UniqueConstraint("location_id", "review_id", name="uq_review_location"),)


class AiGeneration(Base):
    __tablename__ = "ai_generations"
    id = Column(String(36), primary_key=True, default=new_id)
    org_id = Column(String(36), ForeignKey("orgs.id"), nullable=False, index=True)
    location_id = Column(String(36), ForeignKey("gbp_locations.id"), nullable=False)
    kind = Column(String, nullable=False)  # post, qna, reply, image
    input = Column(JSON, nullable=False)
    output = Column(JSON, nullable=True)
    status = Column(String, default="pending")
    model = Column(String, nullable=True)
    costs = Column(Float, nullable=True)
    risk_score = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class PostCandidate(Base):
    __tablename__ = "post_candidates"
    id = Column(String(36), primary_key=True, default=new_id)
    org_id = Column(String(36), ForeignKey("orgs.id"), nullable=False, index=True)
    location_id = Column(String(36), ForeignKey("gbp_locations.id"), nullable=False, index=True)
    generation_id = Column(String(36), ForeignKey("ai_generations.id"), nullable=True)
    schema = Column(JSON, nullable=False, default=dict)
    images = Column(JSON, nullable=True, default=list)
    status = Column(String, default="pending")  # pending, approved, rejected
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    location = relationship("GbpLocation")


class Schedule(Base):
    __tablename__ = "schedules"
    id = Column(String(36), primary_key=True, default=new_id)
    org_id = Column(String(36), ForeignKey("orgs.id"), nullable=False, index=True)
    location_id = Column(String(36), ForeignKey("gbp_locations.id"), nullable=False, index=True)
    target_type = Column(String, nullable=False)  # post_candidate, gbp_post
    target_id = Column(String, nullable=False)
    publish_at = Column(DateTime(timezone=True), nullable=False, index=True)
    status = Column(String, default="pending", index=True)
    provider_ref = Column(String, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    next_retry_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    meta = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class GbpPost(Base):
    __tablename__ = "gbp_posts"
    id = Column(String(36), primary_key=True, default=new_id)
    org_id = Column(String(36), ForeignKey("orgs.id"), nullable=False, index=True)
    location_id = Column(String(36), ForeignKey("gbp_locations.id"), nullable=False, index=True)
    google_post_name = Column(String, nullable=False)
    summary = Column(Text, nullable=True)
    topic_type = Column(String, nullable=True)
    call_to_action_type = Column(String, nullable=True)
    call_to_action_url = Column(Text, nullable=True)
    event_title = Column(String, nullable=True)
    event_start_date = Column(Date, nullable=True)
    event_end_date = Column(Date, nullable=True)
    offer_coupon_code = Column(String, nullable=True)
    offer_redeem_url = Column(Text, nullable=True)
    offer_terms = Column(Text, nullable=True)
    media_urls = Column(JSON, nullable=True)
    state = Column(String, nullable=True)
    search_url = Column(Text, nullable=True)
    meta = Column(JSON, nullable=True)
    google_create_time = Column(DateTime(timezone=True), nullable=True)
    google_update_time = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (UniqueConstraint("org_id", "google_post_name", name="uq_post_org_name"),)


class AutomationPolicy(Base):
    __tablename__ = "automation_policies"
    id = Column(String(36), primary_key=True, default=new_id)
    org_id = Column(String(36), ForeignKey("orgs.id"), nullable=False, index=True)
    location_id = Column(String(36), ForeignKey("gbp_locations.id"), nullable=True)
    content_type = Column(String, nullable=False)  # post, qna, reply, image
    mode = Column(String, default="off")  # off, auto_create, autopilot
    max_per_week = Column(Integer, nullable=True)
    quiet_hours = Column(JSON, nullable=True)  # {"start": "HH:MM", "end": "HH:MM"} in UTC
    risk_threshold = Column(Float, nullable=True)
    require_disclaimers = Column(Boolean, default=False)
    delete_window_sec = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class SafetyRule(Base):
    __tablename__ = "safety_rules"
    id = Column(String(36), primary_key=True, default=new_id)
    org_id = Column(String(36), ForeignKey("orgs.id"), nullable=False, index=True)
    banned_terms = Column(JSON, nullable=True)
    required_phrases = Column(JSON, nullable=True)
    blocked_categories = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(String(36), primary_key=True, default=new_id)
    org_id = Column(String(36), ForeignKey("orgs.id"), nullable=False, index=True)
    actor_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    action = Column(String, nullable=False)
    target = Column(Text, nullable=True)
    meta = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
