"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic event envelopes and response schemas, see schemas.py.
"""

from sqlalchemy import Column, Integer, String, Text, UniqueConstraint

from status_relay.storage import Base


class Message(Base):
    """
    One outbound send as recorded by the sending component.

    Table: messages
    `status` is the latest status seen for the send as a whole. It is a
    last-write-wins display field and may move backwards when the transport
    reorders events; the per-recipient history lives in TimelineEntry.
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    instance_id = Column(String, nullable=False, index=True)
    recipient = Column(Text, nullable=False)  # delimited list, may fan out
    external_id = Column(String, nullable=True, index=True)
    status = Column(String, nullable=False, default="pending", index=True)
    body = Column(Text, nullable=True)
    created_at = Column(String, nullable=False, index=True)  # YYYY-MM-DDTHH:MM:SSZ only; ordered as text


class TimelineEntry(Base):
    """
    Delivery milestones of one recipient for one send.

    Table: report_time
    Unique on (instance_id, recipient, external_id): a send to N recipients
    owns N rows. Each *_at column is written at most once.
    """
    __tablename__ = "report_time"
    __table_args__ = (
        UniqueConstraint(
            "instance_id", "recipient", "external_id",
            name="uq_report_time_instance_recipient_external",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    instance_id = Column(String, nullable=False, index=True)
    recipient = Column(String, nullable=False, index=True)
    external_id = Column(String, nullable=False, index=True)
    initiated_at = Column(String, nullable=True)
    sent_at = Column(String, nullable=True)
    delivered_at = Column(String, nullable=True)
    read_at = Column(String, nullable=True)
    failed_at = Column(String, nullable=True)
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)
