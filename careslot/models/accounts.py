"""Account read model using SQLAlchemy Core.

Owned and written by the account subsystem; the scheduling core only reads
it to resolve party roles.
"""

from sqlalchemy import Boolean, Column, MetaData, Table, Text, Uuid, func, text

from careslot.models.appointments import UTCDateTime

metadata = MetaData()

accounts = Table(
    "accounts",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("role", Text, nullable=False, server_default=text("'patient'")),
    Column("full_name", Text),
    # Account state
    Column("is_active", Boolean, nullable=False, server_default=text("true")),
    # Audit
    Column("created_at", UTCDateTime, nullable=False, server_default=func.now()),
)
