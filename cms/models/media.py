"""
Media Model for CMS Service.

A media row is a reference to an image or video hosted elsewhere; upload and
transcoding happen outside the CMS.
"""

import enum
import uuid

from cms.models import db, DateTimeUTC, utcnow, isoformat


class MediaType(enum.Enum):
    """Kind of media file."""
    IMAGE = 'image'
    VIDEO = 'video'


class Media(db.Model):
    """
    SQLAlchemy model representing a media reference.

    Attributes:
        id: Unique UUID identifier
        name: Display name (shown as current-media telemetry)
        url: Playable URL
        type: 'image' or 'video'
        duration: Play time in seconds (fallback for slot duration)
        created_at: Timestamp when the media was registered
    """

    __tablename__ = 'media'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(300), nullable=False)
    url = db.Column(db.String(1000), nullable=True)
    type = db.Column(db.String(10), nullable=False, default=MediaType.IMAGE.value)
    duration = db.Column(db.Integer, nullable=True)
    created_at = db.Column(DateTimeUTC, default=utcnow)

    @property
    def is_video(self):
        return self.type == MediaType.VIDEO.value

    def to_dict(self):
        """
        Serialize the media to a dictionary for API responses.

        Returns:
            Dictionary containing all media fields
        """
        return {
            'id': self.id,
            'name': self.name,
            'url': self.url,
            'type': self.type,
            'duration': self.duration,
            'created_at': isoformat(self.created_at),
        }

    def __repr__(self):
        return f'<Media {self.name}>'
