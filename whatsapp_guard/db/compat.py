"""
פונקציות SQL תואמות דיאלקט — PostgreSQL + SQLite.

ספירת המכסות נשענת על INSERT ... ON CONFLICT DO UPDATE, שקיים בשני
הדיאלקטים אבל דרך מחלקות insert נפרדות ב-SQLAlchemy
(PostgreSQL בפרודקשן, SQLite בבדיקות).
"""
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def upsert_insert(session: AsyncSession, table):
    """מחזיר insert() של הדיאלקט הפעיל, עם on_conflict_do_update זמין.

    Raises:
        NotImplementedError: דיאלקט בלי upsert אטומי (למשל MySQL) — לא נתמך.
    """
    dialect_name = session.get_bind().dialect.name
    try:
        insert_factory = _UPSERT_DIALECTS[dialect_name]
    except KeyError:
        raise NotImplementedError(
            f"Atomic upsert is not supported for dialect '{dialect_name}'"
        ) from None
    return insert_factory(table)
