"""
Seed data for initial database setup.

Only the fallback categories: rows that no keyword rule claims land in
"Divers", so there has to be one per kind on a fresh database.
"""

import logging

from sqlalchemy.orm import Session

from ..models import KINDS, Category

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [("Divers", kind) for kind in KINDS]


def seed_categories(db: Session) -> int:
    """Seed the fallback categories if the categories table is empty. Returns how many were added."""
    if db.query(Category).count() > 0:
        return 0

    logger.info("Seeding database with fallback categories...")
    for name, kind in DEFAULT_CATEGORIES:
        db.add(Category(name=name, kind=kind))
    db.commit()
    return len(DEFAULT_CATEGORIES)
