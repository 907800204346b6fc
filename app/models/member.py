import uuid
from sqlalchemy import Column, String, Boolean, DECIMAL, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship
from app.db.session import Base
from app.db.types import UTCDateTime, utcnow

class Member(Base):
    __tablename__ = "members"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    vip_status = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, default=utcnow)

    approvals = relationship("MemberApproval", back_populates="member", cascade="all, delete-orphan")
    credits = relationship("MemberCredit", back_populates="member", cascade="all, delete-orphan")

    @property
    def is_approved(self) -> bool:
        return any(a.approved for a in self.approvals)

    @property
    def is_active_vip(self) -> bool:
        return bool(self.vip_status) and self.is_approved

class MemberApproval(Base):
    __tablename__ = "member_approvals"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    member_id = Column(Uuid, ForeignKey("members.id"), nullable=False, index=True)
    approved = Column(Boolean, nullable=False, default=False)
    reason = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow)

    member = relationship("Member", back_populates="approvals")

class MemberCredit(Base):
    """Ledger row; positive amounts are top-ups, negative amounts are spends."""
    __tablename__ = "member_credits"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    member_id = Column(Uuid, ForeignKey("members.id"), nullable=False, index=True)
    amount = Column(DECIMAL(10, 2), nullable=False)
    description = Column(String(255), nullable=True)
    reference = Column(String(100), nullable=True)
    created_at = Column(UTCDateTime, default=utcnow)

    member = relationship("Member", back_populates="credits")
