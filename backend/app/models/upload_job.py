"""Upload job model backing the per-selection status feed."""
import enum
import json
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Enum, Float, Text

from app.db.database import Base


class UploadJobStatus(str, enum.Enum):
    """Upload job status enumeration."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class UploadJob(Base):
    """One multi-account upload batch run in the background."""

    __tablename__ = "upload_jobs"

    id = Column(Integer, primary_key=True, index=True)
    status = Column(Enum(UploadJobStatus), default=UploadJobStatus.PENDING, nullable=False)

    # Progress tracking
    progress = Column(Float, default=0.0, nullable=False)  # 0.0 to 100.0
    message = Column(String(1024), nullable=True)

    # Inputs
    video_path = Column(String(4096), nullable=False)
    video_filename = Column(String(1024), nullable=True)
    video_mime_type = Column(String(255), nullable=True)
    selections = Column(Text, nullable=False)  # JSON list of selections

    # Results/errors
    results = Column(Text, nullable=True)  # JSON list of selection results
    error = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<UploadJob(id={self.id}, status={self.status})>"

    def result_list(self):
        """Decode stored selection results."""
        if not self.results:
            return []
        return json.loads(self.results)

    def to_dict(self):
        """Convert to dictionary."""
        return {
            "id": self.id,
            "status": self.status.value,
            "progress": self.progress,
            "message": self.message,
            "video_filename": self.video_filename,
            "results": self.result_list(),
            "error": self.error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
