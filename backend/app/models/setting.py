"""
Setting Model
Persisted key/value settings (storage provider selection and credentials).
"""

import uuid
from sqlalchemy import Column, String, Text

from app.database import Base


class Setting(Base):
    __tablename__ = "settings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    key = Column(String(100), unique=True, nullable=False, index=True)
    value = Column(Text, nullable=False)

    def __repr__(self):
        return f"<Setting(key='{self.key}')>"
