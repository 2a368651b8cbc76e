from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from ChatBackend.auth import end_session, login, register, require_auth, require_user, session_token, start_session
from ChatBackend.config import Settings
from ChatBackend.database import get_db
from ChatBackend.schemas.chat import CredentialsIn, UserOut


router = APIRouter(prefix="/api/auth", tags=["auth"])


def _set_session_cookie(response: Response, settings: Settings, token: str) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_ttl_days * 24 * 3600,
        httponly=True,
        samesite="lax",
        secure=settings.session_cookie_secure,
        path="/",
    )


# Creates an account and signs it in
@router.post("/register", status_code=201)
def register_user(payload: CredentialsIn, request: Request, response: Response, db: Session = Depends(get_db)) -> UserOut:
    settings = request.app.state.settings
    user = register(db, payload.username, payload.password)
    token = start_session(db, user.id, settings.session_ttl_days)
    db.commit()
    _set_session_cookie(response, settings, token)
    return UserOut.model_validate(user)


@router.post("/login")
def login_user(payload: CredentialsIn, request: Request, response: Response, db: Session = Depends(get_db)) -> UserOut:
    settings = request.app.state.settings
    user = login(db, payload.username, payload.password)
    token = start_session(db, user.id, settings.session_ttl_days)
    db.commit()
    _set_session_cookie(response, settings, token)
    return UserOut.model_validate(user)


# Ends the server-side session and clears the cookie
@router.post("/logout", status_code=204)
def logout_user(request: Request, db: Session = Depends(get_db)) -> Response:
    require_auth(request, db)
    end_session(db, session_token(request))
    db.commit()
    response = Response(status_code=204)
    response.delete_cookie(request.app.state.settings.session_cookie_name, path="/")
    return response


@router.get("/me")
def current_user(request: Request, db: Session = Depends(get_db)) -> UserOut:
    return UserOut.model_validate(require_user(request, db))
