from sqlalchemy import Column, String, JSON, TIMESTAMP
from sqlalchemy.sql import func
from .db import Base

class DeviceState(Base):
    __tablename__ = "device_states"
    id = Column(String, primary_key=True)  # platform device id
    state = Column(JSON, nullable=False)
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
