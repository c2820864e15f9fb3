# db.py
"""
Tables and engine of the chart backend.

One table per entity (patients, daily_logs, attachments). Nested chart
structures are JSON columns with camelCase keys; see records.py for the
mapping to the chart dataclasses. Every row carries the schema version it
was written with and an optimistic-lock version.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine

SCHEMA_VERSION = 1

# Next to the code, like any other local deployment file
DEFAULT_DATABASE_URL = "sqlite:///cardioedad.db"

_IN_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")

class PatientRow(SQLModel, table=True):
    __tablename__ = "patients"

    pk: Optional[int] = Field(default=None, primary_key=True)   # Admission order
    id: str = Field(index=True, unique=True)
    name: str = ""
    age: int = 0
    gender: str = "Masculino"
    bed_number: str = ""
    unit: str = "UTI"
    status: str = Field(default="active", index=True)
    admission_date: str = ""
    estimated_weight: Optional[float] = None
    admission_history: str = ""
    personal_history: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    home_medications: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    diagnostic_hypotheses: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    medical_prescription: str = ""
    vasoactive_drugs: str = ""
    sedation_analgesia: str = ""
    devices_list: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    ventilation: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))

    schema_version: int = SCHEMA_VERSION
    version: int = 1
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

class DailyLogRow(SQLModel, table=True):
    __tablename__ = "daily_logs"

    pk: Optional[int] = Field(default=None, primary_key=True)   # Creation order
    id: str = Field(index=True, unique=True)
    patient_id: str = Field(foreign_key="patients.id", index=True)
    date: str
    vital_signs: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    notes: str = ""
    prescriptions: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    conducts: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    labs: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    fluid_balance: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))

    schema_version: int = SCHEMA_VERSION
    version: int = 1
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

class AttachmentRow(SQLModel, table=True):
    __tablename__ = "attachments"

    pk: Optional[int] = Field(default=None, primary_key=True)
    id: str = Field(index=True, unique=True)
    patient_id: str = Field(foreign_key="patients.id", index=True)
    name: str
    type: str = "file"   # 'image' | 'file'
    url: str

    schema_version: int = SCHEMA_VERSION
    created_at: datetime = Field(default_factory=datetime.now)

def create_db_engine(url: str = DEFAULT_DATABASE_URL, echo: bool = False):
    if not url.startswith("sqlite"):
        return create_engine(url, echo=echo)
    # FastAPI runs handlers on worker threads; an in-memory database is one shared connection
    pool = {"poolclass": StaticPool} if url in _IN_MEMORY_URLS else {}
    return create_engine(url, echo=echo, connect_args={"check_same_thread": False}, **pool)

def init_db(engine):
    """
    Create all tables in the database.
    Call this once at application startup.
    """
    SQLModel.metadata.create_all(engine)

def get_session(engine) -> Session:
    """
    Return a new SQLModel Session.
    Rows stay readable after commit, so results can be built outside the transaction.
    """
    return Session(engine, expire_on_commit=False)
