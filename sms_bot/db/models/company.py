"""
Bus Company Model
"""
import uuid
from sqlalchemy import Column, String, JSON

from sms_bot.db.database import Base


class Company(Base):
    __tablename__ = "companies"

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    name = Column(String(200), nullable=False)
    phones = Column(JSON, nullable=False, default=list)  # first entry is the customer line
