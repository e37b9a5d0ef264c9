"""
Database Initialization - Create tables and seed reference data.

Tables are created from the ORM metadata. Seeding fills in the quota
presets and the built-in scenarios when the database is empty; existing
rows are left untouched.
"""
from typing import Optional

from sqlalchemy.orm import Session

from coach.core.logging_config import get_logger
from coach.database.connection import DatabaseConnection, get_database
from coach.database.models import Base, QuotaPreset, Scenario

logger = get_logger(__name__)


QUOTA_PRESETS = [
    {
        "name": "quick-chat",
        "label": "Quick chat",
        "description": "Brief exploration of a scenario",
        "quota": {"tokens": 10000},
        "sort_order": 0,
    },
    {
        "name": "short-conversation",
        "label": "Short conversation",
        "description": "Standard conversation length",
        "quota": {"tokens": 25000},
        "is_default": True,
        "sort_order": 1,
    },
    {
        "name": "therapy-session",
        "label": "Therapy session",
        "description": "Extended deep-dive conversation",
        "quota": {"tokens": 50000},
        "sort_order": 2,
    },
]

SCENARIOS = [
    {
        "name": "Angry Uncle at Thanksgiving",
        "slug": "angry-uncle-thanksgiving",
        "description": (
            "Practice navigating political disagreements with a family member "
            "during a holiday dinner."
        ),
        "partner_persona": "Your uncle who has strong political opinions",
        "partner_system_prompt": (
            "You are an uncle at a Thanksgiving dinner with strong, contentious "
            "political views. You are passionate and sometimes interrupt, but you "
            "care about your family and can be reasoned with if approached "
            "thoughtfully. Open with a provocative statement about current events."
        ),
        "coach_system_prompt": (
            "You are a conversation coach helping the user handle a political "
            "argument with their uncle. Suggest de-escalation techniques, "
            "empathetic responses and common ground. Be concise and focus on what "
            "the user should say next."
        ),
    },
    {
        "name": "Difficult Coworker Feedback",
        "slug": "difficult-coworker",
        "description": (
            "Practice giving constructive feedback to a defensive coworker about "
            "missed deadlines."
        ),
        "partner_persona": "A coworker who becomes defensive when receiving feedback",
        "partner_system_prompt": (
            "You are a coworker who gets defensive when criticised. You make "
            "excuses at first and may become emotional, but you can be reached if "
            "the other person is patient and empathetic."
        ),
        "coach_system_prompt": (
            "You are a conversation coach helping the user give difficult feedback. "
            "Encourage 'I' statements, acknowledging emotions, focusing on specific "
            "behaviours and working toward a shared solution."
        ),
    },
]


def init_tables(db: Optional[DatabaseConnection] = None) -> bool:
    """
    Create all tables if they don't exist.

    Returns:
        True if tables were created successfully
    """
    db = db or get_database()
    try:
        Base.metadata.create_all(db.engine)
        logger.info("Database tables initialized successfully")
        return True
    except Exception as e:
        logger.error(f"Failed to initialize database tables: {e}")
        raise


def is_database_empty(session: Session) -> bool:
    """True when there are no scenarios or no quota presets."""
    return session.query(Scenario).count() == 0 or session.query(QuotaPreset).count() == 0


def seed_database(session: Session) -> None:
    """Insert missing quota presets and scenarios, keyed by name/slug."""
    for preset in QUOTA_PRESETS:
        exists = session.query(QuotaPreset).filter(QuotaPreset.name == preset["name"]).first()
        if exists is None:
            session.add(QuotaPreset(**preset))

    for scenario in SCENARIOS:
        exists = session.query(Scenario).filter(Scenario.slug == scenario["slug"]).first()
        if exists is None:
            session.add(Scenario(**scenario))

    session.flush()
    logger.info(
        f"Seeded presets ({', '.join(p['name'] for p in QUOTA_PRESETS)}) "
        f"and {len(SCENARIOS)} scenarios"
    )


def seed_if_empty(db: Optional[DatabaseConnection] = None) -> bool:
    """Seed reference data on a fresh database. Returns True if seeding ran."""
    db = db or get_database()
    with db.get_session() as session:
        if not is_database_empty(session):
            return False
        seed_database(session)
        return True


if __name__ == "__main__":
    from coach.core.config import get_settings
    from coach.core.logging_config import setup_logging

    setup_logging(get_settings().log_level, log_to_file=False)
    init_tables()
    seed_if_empty()
