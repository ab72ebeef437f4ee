import enum
from sqlalchemy import Column, String, DateTime, Enum, ForeignKey, Integer, Text

from roadworks.core.db import Base


class ReviewStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ACCEPTED_BY_AUTHORITY = "accepted_by_authority"


class Evidence(Base):
    __tablename__ = "evidence"

    id = Column(String, primary_key=True)  # EV-xxxxxxxx
    work_order_id = Column(String, ForeignKey("work_orders.id"), index=True, nullable=False)

    type = Column(String, nullable=False)  # photo, document, report, cad, other
    title = Column(String, nullable=True)
    description = Column(Text, nullable=True)

    file_ref = Column(String, nullable=False)       # path under UPLOAD_DIR
    file_name = Column(String, nullable=True)
    mime_type = Column(String, nullable=True)
    size_bytes = Column(Integer, nullable=True)

    submitted_by = Column(String, ForeignKey("users.id"), nullable=False)
    submitter_role = Column(String, nullable=False)
    submitted_at = Column(DateTime(timezone=True), nullable=False)

    # Written only through EventStore compare-and-swap
    review_status = Column(Enum(ReviewStatus), default=ReviewStatus.PENDING, nullable=False, index=True)

    # Peer review (pending -> approved | rejected)
    reviewed_by = Column(String, nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    review_notes = Column(Text, nullable=True)

    # Authority decision (approved -> accepted_by_authority | rejected)
    decision_by = Column(String, nullable=True)     # role of the deciding actor
    decision_at = Column(DateTime(timezone=True), nullable=True)
    decision_notes = Column(Text, nullable=True)
