from __future__ import annotations

import datetime
import json
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    create_engine,
    select,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, sessionmaker

from settings import DATABASE_URL


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _ensure_aware(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


class Base(DeclarativeBase):
    """Metadata for table/session/ticket rows."""

    pass


class VenueTable(Base):
    __tablename__ = "venue_tables"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(80), nullable=False, unique=True)
    area: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    sessions: Mapped[List["TableSession"]] = relationship(
        back_populates="table", cascade="all, delete-orphan"
    )


class TableSession(Base):
    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    table_id: Mapped[int] = mapped_column(ForeignKey("venue_tables.id", ondelete="CASCADE"), nullable=False)
    opened_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    closed_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    table: Mapped[VenueTable] = relationship(back_populates="sessions")
    tickets: Mapped[List["Ticket"]] = relationship(
        back_populates="session", cascade="all, delete-orphan"
    )


class Ticket(Base):
    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)
    label: Mapped[str] = mapped_column(String(12), nullable=False)
    started_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    price_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    auto_ended: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    note: Mapped[str | None] = mapped_column(String(255), nullable=True)

    session: Mapped[TableSession] = relationship(back_populates="tickets")


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(60), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Session")
    target_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payloadJSON: Mapped[str] = mapped_column(String(4000), nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


engine = create_engine(
    DATABASE_URL,
    echo=False,
    future=True,
)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, future=True)


def init_database() -> None:
    Base.metadata.create_all(engine)
    if engine.dialect.name != "sqlite":
        return
    with engine.begin() as conn:
        columns = {
            row[1]: True
            for row in conn.execute(text("PRAGMA table_info(tickets)"))
        }
        # Older databases predate auto-ended tracking and ticket notes.
        if "auto_ended" not in columns:
            conn.execute(text("ALTER TABLE tickets ADD COLUMN auto_ended BOOLEAN NOT NULL DEFAULT 0"))
        if "note" not in columns:
            conn.execute(text("ALTER TABLE tickets ADD COLUMN note VARCHAR(255)"))


# ---------------------------------------------------------------------------
# Serialization


def table_to_dict(table: VenueTable) -> Dict[str, Any]:
    return {"id": table.id, "name": table.name, "area": table.area or ""}


def session_to_dict(table_session: TableSession) -> Dict[str, Any]:
    return {
        "id": table_session.id,
        "table_id": table_session.table_id,
        "opened_at": _ensure_aware(table_session.opened_at),
        "closed_at": _ensure_aware(table_session.closed_at),
    }


def ticket_to_dict(ticket: Ticket) -> Dict[str, Any]:
    return {
        "id": ticket.id,
        "session_id": ticket.session_id,
        "label": ticket.label,
        "started_at": _ensure_aware(ticket.started_at),
        "ended_at": _ensure_aware(ticket.ended_at),
        "minutes": ticket.minutes,
        "price_cents": ticket.price_cents,
        "auto_ended": bool(ticket.auto_ended),
        "note": ticket.note,
    }


# ---------------------------------------------------------------------------
# Tables and sessions


def get_or_create_table(session, name: str, area: str = "") -> VenueTable:
    name = (name or "").strip()
    if not name:
        raise ValueError("Table name is required.")
    table = session.scalars(select(VenueTable).where(VenueTable.name == name)).first()
    if table:
        return table
    table = VenueTable(name=name, area=(area or "").strip())
    session.add(table)
    session.commit()
    session.refresh(table)
    return table


def get_table(session, table_id: int) -> VenueTable:
    table = session.get(VenueTable, table_id)
    if not table:
        raise ValueError(f"Table with id {table_id} was not found.")
    return table


def list_tables(session) -> List[Dict[str, Any]]:
    stmt = select(VenueTable).order_by(VenueTable.area.asc(), VenueTable.name.asc())
    return [table_to_dict(table) for table in session.scalars(stmt)]


def get_open_session(session, table_id: int) -> Optional[TableSession]:
    stmt = (
        select(TableSession)
        .where(TableSession.table_id == table_id, TableSession.closed_at.is_(None))
        .order_by(TableSession.opened_at.desc(), TableSession.id.desc())
    )
    return session.scalars(stmt).first()


def get_or_create_open_session(session, table_id: int, opened_at: Optional[datetime.datetime] = None) -> TableSession:
    get_table(session, table_id)
    existing = get_open_session(session, table_id)
    if existing:
        return existing
    table_session = TableSession(table_id=table_id, opened_at=_ensure_aware(opened_at) or _utcnow())
    session.add(table_session)
    session.commit()
    session.refresh(table_session)
    return table_session


def close_session(session, table_session: TableSession, closed_at: datetime.datetime) -> TableSession:
    table_session.closed_at = _ensure_aware(closed_at)
    session.commit()
    session.refresh(table_session)
    return table_session


# ---------------------------------------------------------------------------
# Tickets


def get_ticket(session, ticket_id: int) -> Ticket:
    ticket = session.get(Ticket, ticket_id)
    if not ticket:
        raise ValueError(f"Ticket with id {ticket_id} was not found.")
    return ticket


def list_session_tickets(session, session_id: int, *, only_open: bool = False) -> List[Ticket]:
    stmt = (
        select(Ticket)
        .where(Ticket.session_id == session_id)
        .order_by(Ticket.started_at.asc(), Ticket.id.asc())
    )
    if only_open:
        stmt = stmt.where(Ticket.ended_at.is_(None))
    return list(session.scalars(stmt))


def count_session_tickets(session, session_id: int) -> int:
    return len(list_session_tickets(session, session_id))


def add_tickets(
    session,
    session_id: int,
    labels: Iterable[str],
    started_at: Optional[datetime.datetime] = None,
) -> List[Ticket]:
    start = _ensure_aware(started_at) or _utcnow()
    tickets = [Ticket(session_id=session_id, label=label, started_at=start) for label in labels]
    session.add_all(tickets)
    session.commit()
    for ticket in tickets:
        session.refresh(ticket)
    return tickets


def apply_ticket_charge(
    session,
    ticket: Ticket,
    *,
    ended_at: datetime.datetime,
    minutes: int,
    price_cents: int,
    auto_ended: Optional[bool] = None,
) -> Ticket:
    """Stage the end stamp and charge on a ticket row; the caller commits."""
    ticket.ended_at = _ensure_aware(ended_at)
    ticket.minutes = int(minutes)
    ticket.price_cents = int(price_cents)
    if auto_ended is not None:
        ticket.auto_ended = bool(auto_ended)
    session.flush()
    return ticket


def reopen_ticket(session, ticket: Ticket) -> Ticket:
    ticket.ended_at = None
    ticket.minutes = None
    ticket.price_cents = None
    ticket.auto_ended = False
    session.commit()
    session.refresh(ticket)
    return ticket


def record_audit_log(
    session,
    user_id: str,
    action: str,
    target_type: str = "Session",
    target_id: Optional[int] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    log = AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        payloadJSON=json.dumps(payload or {}, default=str),
    )
    session.add(log)
    session.commit()
    return log
