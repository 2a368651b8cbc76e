from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ChatBackend.models.user_model import AuthSession, User


def get_user(session: Session, user_id: int) -> Optional[User]:
    return session.get(User, user_id)


def get_user_by_username(session: Session, username: str) -> Optional[User]:
    return session.query(User).filter_by(username=username).first()


def create_user(session: Session, username: str, password_credential: str) -> User:
    user = User(username=username, password=password_credential)
    session.add(user)
    session.flush()
    return user


def create_auth_session(session: Session, token: str, user_id: int, expires_at: datetime) -> AuthSession:
    row = AuthSession(id=token, user_id=user_id, expires_at=expires_at)
    session.add(row)
    session.flush()
    return row


def get_auth_session(session: Session, token: str) -> Optional[AuthSession]:
    return session.get(AuthSession, token)


def delete_auth_session(session: Session, token: str) -> None:
    session.query(AuthSession).filter_by(id=token).delete(synchronize_session=False)
    session.flush()
