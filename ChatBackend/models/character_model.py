from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from ChatBackend.database import Base
from ChatBackend.models.user_model import utcnow


# Persona definitions; user_id NULL marks a shared preset visible to everyone
class Character(Base):
    __tablename__ = "characters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=True)
    name = Column(String(50), nullable=False)
    description = Column(String(200), nullable=False)
    system_prompt = Column(Text, nullable=False, default="")
    greeting = Column(Text, nullable=True)
    avatar_color = Column(String(16), nullable=False, default="#3B82F6")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    conversations = relationship(
        "Conversation",
        back_populates="character",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
