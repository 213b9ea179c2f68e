"""SQLAlchemy models for local SQLite score storage.

Stores the outcome of every processed coop and one row per scored player.
Raw coop statuses are not kept; they are fetched live from EggCoop.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class CoopScore(Base):
    """One processed coop, successful or not."""

    __tablename__ = "coop_scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contract_id: Mapped[str] = mapped_column(String(100), nullable=False)
    coop_code: Mapped[str] = mapped_column(String(100), nullable=False)
    grade: Mapped[str | None] = mapped_column(String(10), nullable=True)
    season_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    green_scroll: Mapped[bool] = mapped_column(Boolean, default=False)
    player_count: Mapped[int] = mapped_column(Integer, default=0)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    computed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    players: Mapped[list["PlayerScore"]] = relationship(
        back_populates="coop", cascade="all, delete-orphan", lazy="selectin"
    )

    __table_args__ = (
        Index("ix_coop_contract_code", "contract_id", "coop_code"),
    )


class PlayerScore(Base):
    """CS bounds and their inputs for one player in one coop."""

    __tablename__ = "player_scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    coop_score_id: Mapped[int] = mapped_column(ForeignKey("coop_scores.id"), nullable=False)
    contract_id: Mapped[str] = mapped_column(String(100), nullable=False)
    coop_code: Mapped[str] = mapped_column(String(100), nullable=False)
    ei_uuid: Mapped[str] = mapped_column(String(100), nullable=False)
    user_name: Mapped[str] = mapped_column(String(200), nullable=False)
    eggs_shipped: Mapped[float] = mapped_column(Float, nullable=False)
    contribution_ratio: Mapped[float] = mapped_column(Float, nullable=False)
    contribution_factor: Mapped[float] = mapped_column(Float, nullable=False)
    completion_time_bonus: Mapped[float] = mapped_column(Float, nullable=False)
    time_to_complete_factor: Mapped[float] = mapped_column(Float, nullable=False)
    green_scroll: Mapped[bool] = mapped_column(Boolean, default=False)
    buff_value: Mapped[float] = mapped_column(Float, nullable=False)
    team_work: Mapped[float] = mapped_column(Float, nullable=False)
    upper_team_work: Mapped[float] = mapped_column(Float, nullable=False)
    cs: Mapped[float] = mapped_column(Float, nullable=False)
    upper_cs: Mapped[float] = mapped_column(Float, nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    computed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    coop: Mapped[CoopScore] = relationship(back_populates="players")

    __table_args__ = (
        Index("ix_player_uuid", "ei_uuid"),
        Index("ix_player_contract_cs", "contract_id", "cs"),
    )


class IngestionMeta(Base):
    """Track when the last season run happened."""

    __tablename__ = "ingestion_meta"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
