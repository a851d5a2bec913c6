"""SQLAlchemy implementation of KeyValueStore."""

from typing import Optional

from sqlalchemy.orm import Session

from coinfolio.repositories.sqlalchemy.orm_models import KeyValueORM


class SqlAlchemyKeyValueStore:
    """SQLAlchemy-backed key-value store; every `set` commits on its own."""

    def __init__(self, db: Session):
        self._db = db

    def get(self, key: str) -> Optional[str]:
        """Return the stored value for `key`."""
        orm_entry = self._db.get(KeyValueORM, key)
        return orm_entry.value if orm_entry else None

    def set(self, key: str, value: str) -> None:
        """Insert or replace the value for `key`."""
        orm_entry = self._db.get(KeyValueORM, key)
        if orm_entry:
            orm_entry.value = value
        else:
            self._db.add(KeyValueORM(key=key, value=value))
        try:
            self._db.commit()
        except Exception:
            self._db.rollback()
            raise

    def delete(self, key: str) -> None:
        """Delete `key` if present."""
        self._db.query(KeyValueORM).filter(KeyValueORM.key == key).delete()
        self._db.commit()

    def keys(self, prefix: str = "") -> list[str]:
        """List keys starting with `prefix`, sorted."""
        query = self._db.query(KeyValueORM.key)
        if prefix:
            query = query.filter(KeyValueORM.key.startswith(prefix, autoescape=True))
        return [row[0] for row in query.order_by(KeyValueORM.key).all()]
