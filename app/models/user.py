from sqlalchemy import Boolean, Column, String, DateTime
from sqlalchemy.sql import func
from app.core.database import Base
from app.utils.id_utils import generate_id

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=generate_id)
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String)
    is_admin = Column(Boolean, nullable=False, default=False)
    subscription_status = Column(String, nullable=True)  # free, paid, cancelled, etc.
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
