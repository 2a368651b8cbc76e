from typing import Iterable, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ChatBackend.models.character_model import Character


def _visible_to(user_id: int):
    return or_(Character.user_id == user_id, Character.user_id.is_(None))


# Own characters plus shared presets, oldest first
def list_characters(session: Session, user_id: int) -> list[Character]:
    return (
        session.query(Character)
        .filter(_visible_to(user_id))
        .order_by(Character.created_at, Character.id)
        .all()
    )


def get_visible_character(session: Session, user_id: int, character_id: int) -> Optional[Character]:
    return session.query(Character).filter(Character.id == character_id, _visible_to(user_id)).first()


def create_character(
    session: Session,
    user_id: Optional[int],
    *,
    name: str,
    description: str,
    system_prompt: str = "",
    greeting: Optional[str] = None,
    avatar_color: str = "#3B82F6",
) -> Character:
    char = Character(
        user_id=user_id,
        name=name,
        description=description,
        system_prompt=system_prompt,
        greeting=greeting,
        avatar_color=avatar_color,
    )
    session.add(char)
    session.flush()
    return char


# Deletes only when `user_id` owns the row; shared presets are never deletable here
def delete_owned_character(session: Session, user_id: int, character_id: int) -> bool:
    char = session.query(Character).filter_by(id=character_id, user_id=user_id).first()
    if char is None:
        return False
    session.delete(char)
    session.flush()
    return True


def count_shared_characters(session: Session) -> int:
    return session.query(func.count(Character.id)).filter(Character.user_id.is_(None)).scalar() or 0


def create_shared_characters(session: Session, rows: Iterable[dict]) -> int:
    created = 0
    for row in rows:
        create_character(
            session,
            None,
            name=row["name"],
            description=row["description"],
            system_prompt=row.get("system_prompt") or "",
            greeting=row.get("greeting") or None,
            avatar_color=row.get("avatar_color") or "#3B82F6",
        )
        created += 1
    return created
