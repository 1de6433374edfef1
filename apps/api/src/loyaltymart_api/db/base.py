from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

# Matches the index and foreign key names in alembic/versions.
NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base shared by the mart and accrual ledgers."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)
