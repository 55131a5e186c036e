"""
Database Helper Utilities for Concurrency Control

Provides:
- Database dialect detection (PostgreSQL vs SQLite)
- Constraint-backed insert-ignore and upsert primitives
- Queue polling with SKIP LOCKED
"""

import logging
from typing import Dict, List, Type, TypeVar
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy.dialects import postgresql, sqlite

logger = logging.getLogger(__name__)

T = TypeVar('T')


def dialect_name(db: Session) -> str:
    try:
        return db.get_bind().dialect.name
    except Exception:
        return ""


def is_postgres(db: Session) -> bool:
    """Check if the database is PostgreSQL"""
    return dialect_name(db) == 'postgresql'


def is_sqlite(db: Session) -> bool:
    """Check if the database is SQLite"""
    return dialect_name(db) == 'sqlite'


def _dialect_insert(db: Session, model):
    """Return a dialect insert construct that supports ON CONFLICT, or None."""
    if is_postgres(db):
        return postgresql.insert(model)
    if is_sqlite(db):
        return sqlite.insert(model)
    return None


def insert_ignore(
    db: Session,
    model: Type[T],
    values: Dict,
    conflict_columns: List[str]
) -> bool:
    """
    Insert a row unless it violates the unique key on conflict_columns.

    Uses INSERT ... ON CONFLICT DO NOTHING where the dialect supports it,
    otherwise a savepoint around a plain insert. The store is the source
    of truth: a concurrent writer that wins the race makes this return
    False exactly like a pre-existing row would.

    Returns:
        True if a row was inserted, False if the conflict swallowed it
    """
    stmt = _dialect_insert(db, model)

    if stmt is not None:
        stmt = stmt.values(**values).on_conflict_do_nothing(index_elements=conflict_columns)
        result = db.execute(stmt)
        return (result.rowcount or 0) > 0

    try:
        with db.begin_nested():
            db.add(model(**values))
            db.flush()
        return True
    except IntegrityError:
        logger.debug(f"insert_ignore conflict on {model.__name__} {conflict_columns}")
        return False


def upsert(
    db: Session,
    model: Type[T],
    values: Dict,
    conflict_columns: List[str],
    update_columns: List[str]
) -> None:
    """
    INSERT ... ON CONFLICT DO UPDATE for the given unique key.

    Falls back to lookup-then-write inside a savepoint for other dialects.
    """
    stmt = _dialect_insert(db, model)

    if stmt is not None:
        stmt = stmt.values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=conflict_columns,
            set_={col: stmt.excluded[col] for col in update_columns}
        )
        db.execute(stmt)
        return

    filters = [getattr(model, col) == values[col] for col in conflict_columns]
    existing = db.query(model).filter(*filters).first()
    if existing:
        for col in update_columns:
            setattr(existing, col, values[col])
        db.flush()
    else:
        with db.begin_nested():
            db.add(model(**values))
            db.flush()


def get_pending_with_skip_locked(
    db: Session,
    model: Type[T],
    filter_condition,
    order_by=None,
    limit: int = 50
) -> list:
    """
    Get pending records with skip_locked to prevent worker race conditions.

    Only PostgreSQL honours the lock; SQLite runs a single writer anyway.
    """
    query = db.query(model).filter(filter_condition)

    if order_by is not None:
        query = query.order_by(order_by)

    if is_postgres(db):
        query = query.with_for_update(skip_locked=True)

    return query.limit(limit).all()
