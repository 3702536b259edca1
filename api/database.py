from datetime import datetime, timezone

import sqlalchemy as sa
from databases import Database

from config import DATABASE_URL

# Works with SQLite (default) or PostgreSQL
database = Database(DATABASE_URL)
metadata = sa.MetaData()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


videos = sa.Table(
    "videos",
    metadata,
    # UUID string, generated by the API when the draft is created
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("user_id", sa.String(64), nullable=False, index=True),
    sa.Column("title", sa.String(255), nullable=False),
    sa.Column("description", sa.Text, nullable=False, default=""),
    sa.Column("thumbnail_url", sa.Text, nullable=True),
    sa.Column("video_url", sa.Text, nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, default=utcnow),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, default=utcnow),
)


def create_tables():
    """
    Create database tables directly using SQLAlchemy metadata.
    Existing tables are left untouched.
    """
    engine = sa.create_engine(DATABASE_URL)
    metadata.create_all(engine)
    engine.dispose()


if __name__ == "__main__":
    create_tables()
    print("Database tables created successfully!")
