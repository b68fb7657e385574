from typing import Optional
from datetime import datetime
from .utils import now_utc
from sqlmodel import SQLModel, Field


class User(SQLModel, table=True):
    """Account created on first magic-link sign-in; there is no password."""
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, sa_column_kwargs={"unique": True})
    created_at: datetime | None = Field(default_factory=now_utc)


class Session(SQLModel, table=True):
    """Server-side session store for signed-in clients.

    session_token is a secure random string handed to the client after a
    magic link is verified and mapped to a user_id here. expires_at is
    checked on every lookup; expired rows are deleted lazily.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    session_token: str = Field(sa_column_kwargs={"unique": True, "index": True})
    user_id: int = Field(foreign_key="user.id", index=True)
    created_at: datetime | None = Field(default_factory=now_utc)
    expires_at: Optional[datetime] = None


class CalendarTask(SQLModel, table=True):
    """One task attached to one calendar day of one user.

    ``date`` holds the YYYY-MM-DD day key. Keys sort lexicographically in
    calendar order, so month range queries are plain string comparisons.
    """
    __tablename__ = "task"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    date: str = Field(index=True)
    text: str
    done: bool = Field(default=False)
    created_at: datetime | None = Field(default_factory=now_utc, index=True)
    updated_at: datetime | None = Field(default_factory=now_utc)
