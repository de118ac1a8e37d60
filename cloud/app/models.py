from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from datetime import datetime

class Base(DeclarativeBase):
    pass

class Run(Base):
    __tablename__ = "runs"
    id: Mapped[str] = mapped_column(UUID(as_uuid=True), primary_key=True, server_default=sa.text("uuid_generate_v4()"))
    trigger: Mapped[str] = mapped_column(sa.Text, nullable=False)
    docker_image: Mapped[str | None] = mapped_column(sa.Text, nullable=True)  # raw override as requested
    image: Mapped[str] = mapped_column(sa.Text, nullable=False)  # resolved repository:tag
    sdks: Mapped[list] = mapped_column(JSONB, nullable=False, server_default=sa.text("'[]'::jsonb"))
    status: Mapped[str] = mapped_column(sa.Text, nullable=False)  # queued|running|passed|failed
    summary_json: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    logs: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    error: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(sa.TIMESTAMP(timezone=True), nullable=True)

class SdkResult(Base):
    __tablename__ = "sdk_results"
    __table_args__ = (sa.UniqueConstraint("run_id", "sdk", name="uq_sdk_results_run_sdk"),)
    id: Mapped[str] = mapped_column(UUID(as_uuid=True), primary_key=True, server_default=sa.text("uuid_generate_v4()"))
    run_id: Mapped[str] = mapped_column(UUID(as_uuid=True), sa.ForeignKey("runs.id", ondelete="CASCADE"), nullable=False)
    sdk: Mapped[str] = mapped_column(sa.Text, nullable=False)
    status: Mapped[str] = mapped_column(sa.Text, nullable=False)  # passed|failed|errored
    failed_step: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    failed_step_name: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    commit: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    error: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    output: Mapped[str | None] = mapped_column(sa.Text, nullable=True)

class Lease(Base):
    __tablename__ = "leases"
    run_id: Mapped[str] = mapped_column(UUID(as_uuid=True), sa.ForeignKey("runs.id", ondelete="CASCADE"), primary_key=True)
    agent_id: Mapped[str] = mapped_column(sa.Text, nullable=False)
    leased_at: Mapped[datetime] = mapped_column(sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(sa.TIMESTAMP(timezone=True), nullable=False)
