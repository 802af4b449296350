from typing import Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from relay.models import IdentityMapping
from relay.models.types import utcnow

MUTABLE_FIELDS = frozenset({"ai_conversation_id", "ai_contact_id", "display_name", "blocked"})


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"upsert is not supported on {dialect}")


def get_mapping(db: Session, user_id: str) -> Optional[IdentityMapping]:
    return db.query(IdentityMapping).filter(IdentityMapping.user_id == user_id).first()


def upsert_mapping(db: Session, user_id: str, **fields) -> None:
    """Insert or merge a mapping; only the supplied fields change."""
    unknown = set(fields) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown mapping fields: {sorted(unknown)}")

    now = utcnow()
    insert = _insert_for(db)
    values = {"user_id": user_id, "created_at": now, "updated_at": now, **fields}
    values.setdefault("blocked", False)
    stmt = insert(IdentityMapping).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[IdentityMapping.user_id],
        set_={**fields, "updated_at": now},
    )
    db.execute(stmt)
    db.commit()
    # Rows already loaded in this session would otherwise shadow the upsert.
    db.expire_all()


def get_or_create_mapping(db: Session, user_id: str, display_name: Optional[str] = None) -> IdentityMapping:
    """Find mapping by user_id or create it; refreshes a changed display name."""
    mapping = get_mapping(db, user_id)
    if mapping is None:
        fields = {"display_name": display_name} if display_name else {}
        upsert_mapping(db, user_id, **fields)
        return get_mapping(db, user_id)

    if display_name and mapping.display_name != display_name:
        upsert_mapping(db, user_id, display_name=display_name)
        return get_mapping(db, user_id)

    return mapping


def set_blocked(db: Session, user_id: str, blocked: bool) -> None:
    upsert_mapping(db, user_id, blocked=blocked)


def toggle_blocked(db: Session, user_id: str) -> bool:
    mapping = get_mapping(db, user_id)
    new_status = not (mapping.blocked if mapping else False)
    set_blocked(db, user_id, new_status)
    return new_status
