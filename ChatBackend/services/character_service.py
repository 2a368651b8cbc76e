import json
import logging
import pathlib

from sqlalchemy.orm import Session

from ChatBackend.crud.characters import (count_shared_characters, create_character, create_shared_characters, delete_owned_character, get_visible_character, list_characters)
from ChatBackend.errors import NotFound
from ChatBackend.schemas.chat import CharacterIn, CharacterOut

logger = logging.getLogger(__name__)
_BACKEND_DIR = pathlib.Path(__file__).resolve().parents[1]
DEFAULT_CHARACTERS_PATH = _BACKEND_DIR / "resources" / "default_characters.json"


class CharacterService:
    def __init__(self, db: Session):
        self.db = db

    def list_characters(self, *, user_id: int) -> list[CharacterOut]:
        return [CharacterOut.model_validate(c) for c in list_characters(self.db, user_id)]

    def get_character(self, *, user_id: int, character_id: int) -> CharacterOut:
        char = get_visible_character(self.db, user_id, character_id)
        if char is None:
            raise NotFound("Character not found")
        return CharacterOut.model_validate(char)

    def create_character(self, *, user_id: int, payload: CharacterIn) -> CharacterOut:
        char = create_character(
            self.db,
            user_id,
            name=payload.name,
            description=payload.description,
            system_prompt=payload.system_prompt,
            greeting=payload.greeting,
            avatar_color=payload.avatar_color,
        )
        self.db.commit()
        self.db.refresh(char)
        return CharacterOut.model_validate(char)

    # Idempotent: a missing or non-owned id deletes nothing
    def delete_character(self, *, user_id: int, character_id: int) -> bool:
        deleted = delete_owned_character(self.db, user_id, character_id)
        self.db.commit()
        if not deleted:
            logger.info("characters.delete.noop: user=%s character=%s", user_id, character_id)
        return deleted


# Inserts the shared preset characters once, when none exist yet
def seed_default_characters(db: Session, path: pathlib.Path = DEFAULT_CHARACTERS_PATH) -> int:
    if count_shared_characters(db) > 0:
        return 0
    rows = json.loads(path.read_text(encoding="utf-8"))
    created = create_shared_characters(db, rows)
    db.commit()
    logger.info("characters.seed: created=%d", created)
    return created
