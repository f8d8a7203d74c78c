"""
SQLAlchemy 2.0 ORM models for the Spielebasar store.
Types stay portable so the same schema runs on PostgreSQL and SQLite.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class CompetitionORM(Base):
    __tablename__ = "competitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    competition_id: Mapped[int] = mapped_column(Integer, unique=True, nullable=False, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(200))
    sequence_no: Mapped[Optional[int]] = mapped_column(Integer)
    age_group: Mapped[Optional[str]] = mapped_column(String(100))
    gender_id: Mapped[Optional[int]] = mapped_column(Integer)
    gender: Mapped[Optional[str]] = mapped_column(String(50))
    association_id: Mapped[Optional[int]] = mapped_column(Integer)
    association: Mapped[Optional[str]] = mapped_column(String(200))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class FixtureORM(Base):
    __tablename__ = "fixtures"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    fixture_id: Mapped[int] = mapped_column(Integer, unique=True, nullable=False, index=True)
    competition_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    competition_name: Mapped[Optional[str]] = mapped_column(String(200))
    match_day: Mapped[Optional[int]] = mapped_column(Integer)
    match_no: Mapped[Optional[int]] = mapped_column(Integer)
    kickoff_date: Mapped[Optional[str]] = mapped_column(String(20))
    kickoff_time: Mapped[Optional[str]] = mapped_column(String(10))
    venue: Mapped[Optional[str]] = mapped_column(String(200))
    home_team_name: Mapped[Optional[str]] = mapped_column(String(200))
    guest_team_name: Mapped[Optional[str]] = mapped_column(String(200))
    withdrawn: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancelled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    slot_a_raw: Mapped[Optional[str]] = mapped_column(String(100))
    slot_a_club_name: Mapped[Optional[str]] = mapped_column(String(200))
    slot_a_listed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    slot_a_claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    slot_a_contact: Mapped[Optional[str]] = mapped_column(String(200))
    slot_a_claimant: Mapped[Optional[str]] = mapped_column(String(200))
    slot_a_bonus: Mapped[Optional[int]] = mapped_column(Integer)
    slot_a_note: Mapped[Optional[str]] = mapped_column(Text)

    slot_b_raw: Mapped[Optional[str]] = mapped_column(String(100))
    slot_b_club_name: Mapped[Optional[str]] = mapped_column(String(200))
    slot_b_listed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    slot_b_claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    slot_b_contact: Mapped[Optional[str]] = mapped_column(String(200))
    slot_b_claimant: Mapped[Optional[str]] = mapped_column(String(200))
    slot_b_bonus: Mapped[Optional[int]] = mapped_column(Integer)
    slot_b_note: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ClubORM(Base):
    __tablename__ = "clubs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    club_id: Mapped[int] = mapped_column(Integer, unique=True, nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    last_refreshed: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class UserORM(Base):
    """Marketplace accounts. Owned by the auth service; read here for recipients only."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    clubs: Mapped[Optional[list]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=True, default=list
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
