import logging

from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select

from app.core.config import get_settings
from app import models  # noqa: F401 - ensures models are registered with metadata

logger = logging.getLogger(__name__)

settings = get_settings()
engine = create_engine(settings.database_url, echo=settings.debug)

DEFAULT_CONTENT = {
    "clan_name": "🏰 Guerrieri del Nord",
    "clan_description": "Clan competitivo italiano specializzato nelle Clan War League. Unisciti a noi per conquistare la gloria!",
    "clan_rules": "Partecipazione obbligatoria alle CWL\nDonazioni minime: 1000 al mese\nRispetto e comunicazione nel chat clan\nTH12+ per partecipare alle CWL",
    "member_count": "47/50 Membri",
    "clan_trophies": "52,340 Trofei",
    "cwl_league": "Crystal I",
    "cwl_status": "Giorno 5/7 - In corso",
    "cwl_wins": "4/6",
}


def enable_sqlite_foreign_keys(target_engine) -> None:
    """Turn on ON DELETE CASCADE enforcement for SQLite connections."""
    if target_engine.dialect.name != "sqlite":
        return

    @event.listens_for(target_engine, "connect")
    def _set_pragma(dbapi_connection, connection_record):  # noqa: ARG001
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


enable_sqlite_foreign_keys(engine)


def seed_default_content(session: Session) -> None:
    """Insert default page texts, keeping any key that already exists."""
    existing = set(session.exec(select(models.Content.key)).all())
    missing = {k: v for k, v in DEFAULT_CONTENT.items() if k not in existing}
    for key, value in missing.items():
        session.add(models.Content(key=key, value=value))
    if missing:
        session.commit()
        logger.info("Seeded %d default content entries", len(missing))


def init_db() -> None:
    """Create tables and seed content; called during startup."""
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        seed_default_content(session)


def get_session():
    """Yield a session for dependency injection."""
    with Session(engine) as session:
        yield session
