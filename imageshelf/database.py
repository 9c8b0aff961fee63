from sqlalchemy import Column, Integer, String, JSON, UniqueConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# --- SQLAlchemy ORM Models ---
# Used by SqlImageStore only; the default store keeps everything in one JSON document.

class ImageRow(Base):
    __tablename__ = 'images'
    # Autoincrement sequence keeps insertion order for search results.
    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), unique=True, nullable=False, index=True)
    filename = Column(String, unique=True, nullable=False)
    original_name = Column(String, nullable=False)
    url = Column(String, nullable=False)
    # Ordered list of tags exactly as given, duplicates included.
    tags = Column(JSON, nullable=False, default=list)
    created_at = Column(String, nullable=False)

class TagRow(Base):
    __tablename__ = 'tags'
    seq = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    # Lower-cased copy of the name; the tag index is case-insensitive.
    name_key = Column(String, nullable=False)
    __table_args__ = (UniqueConstraint('name_key', name='_tag_name_key_uc'),)
