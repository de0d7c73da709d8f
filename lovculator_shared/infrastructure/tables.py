"""
Core table definitions for the external tables the gateway reads.

The schema is owned by the main web application; these definitions only
describe the columns queried here.
"""

from sqlalchemy import JSON, Column, DateTime, Integer, MetaData, String, Table

from lovculator_shared.config.settings import settings

metadata = MetaData()

# connect-pg-simple layout
session_store = Table(
    settings.session_table,
    metadata,
    Column("sid", String, primary_key=True),
    Column("sess", JSON, nullable=False),
    Column("expire", DateTime(timezone=True), nullable=False),
)

conversation_participants = Table(
    "conversation_participants",
    metadata,
    Column("conversation_id", Integer, primary_key=True),
    Column("user_id", Integer, primary_key=True),
)
