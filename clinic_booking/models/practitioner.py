from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, JSON
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ..core.database import Base

class Practitioner(Base):
    __tablename__ = "practitioners"
    
    id = Column(Integer, primary_key=True, index=True)
    # Fixed at creation; the practitioner never moves between clinics
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)
    
    # Professional information
    name = Column(String(200), nullable=False)
    specializations = Column(JSON, nullable=False, default=list)
    bio = Column(Text, nullable=True)
    
    # Contact information
    email = Column(String(255), nullable=True)
    phone = Column(String(20), nullable=True)
    
    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    
    # Relationships
    clinic = relationship("Clinic", back_populates="practitioners")
    availability = relationship("PractitionerAvailability", back_populates="practitioner")
    appointments = relationship("Appointment", back_populates="practitioner")
    
    def __repr__(self):
        return f"<Practitioner(id={self.id}, name='{self.name}', clinic_id={self.clinic_id})>"
