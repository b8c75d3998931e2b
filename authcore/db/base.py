# authcore/db/base.py
from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

# Nomes determinísticos para índices/constraints (Alembic autogenerate e
# tradução de IntegrityError dependem deles)
NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_N_name)s",
    "uq": "uq_%(table_name)s_%(column_0_N_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """
    Classe base declarativa da qual todos os modelos ORM herdarão.
    """
    metadata = MetaData(naming_convention=NAMING_CONVENTION)
