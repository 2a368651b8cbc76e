from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from ChatBackend.auth import require_auth
from ChatBackend.database import get_db
from ChatBackend.schemas.chat import CharacterIn, CharacterOut
from ChatBackend.services.character_service import CharacterService


router = APIRouter(prefix="/api/characters", tags=["characters"])


# Lists the caller's characters plus shared presets
@router.get("")
def list_characters(request: Request, db: Session = Depends(get_db)) -> list[CharacterOut]:
    user_id = require_auth(request, db)
    return CharacterService(db).list_characters(user_id=user_id)


@router.get("/{character_id}")
def get_character(character_id: int, request: Request, db: Session = Depends(get_db)) -> CharacterOut:
    user_id = require_auth(request, db)
    return CharacterService(db).get_character(user_id=user_id, character_id=character_id)


@router.post("", status_code=201)
def create_character(payload: CharacterIn, request: Request, db: Session = Depends(get_db)) -> CharacterOut:
    user_id = require_auth(request, db)
    return CharacterService(db).create_character(user_id=user_id, payload=payload)


# Deletes an owned character (and its conversations); other ids are a no-op
@router.delete("/{character_id}", status_code=204)
def delete_character(character_id: int, request: Request, db: Session = Depends(get_db)) -> Response:
    user_id = require_auth(request, db)
    CharacterService(db).delete_character(user_id=user_id, character_id=character_id)
    return Response(status_code=204)
