from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, func

from cropdoctor.database import Base

ERROR_MESSAGE_LIMIT = 500


class CropImage(Base):
    __tablename__ = "crop_images"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    image_url = Column(String, nullable=False)
    file_name = Column(String)
    storage_key = Column(String)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    # None = pending, False = analysis failed, True = analysis succeeded
    ai_analysis_completed = Column(Boolean, nullable=True, default=None)

    disease_name = Column(Text)
    cure_instructions = Column(Text)
    next_steps_if_not_curable = Column(Text)

    ai_error_message = Column(String(ERROR_MESSAGE_LIMIT))
    analyzed_at = Column(DateTime(timezone=True))

    @property
    def status(self) -> str:
        if self.ai_analysis_completed is True:
            return "success"
        if self.ai_analysis_completed is False or self.ai_error_message:
            return "failed"
        return "pending"

    def to_dict(self):
        """Convert the record to a dictionary for API responses."""
        return {
            "id": self.id,
            "image_url": self.image_url,
            "file_name": self.file_name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "status": self.status,
            "ai_analysis_completed": self.ai_analysis_completed,
            "disease_name": self.disease_name,
            "cure_instructions": self.cure_instructions,
            "next_steps_if_not_curable": self.next_steps_if_not_curable,
            "ai_error_message": self.ai_error_message,
            "analyzed_at": self.analyzed_at.isoformat() if self.analyzed_at else None,
        }
