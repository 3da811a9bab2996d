"""User preferences and the singleton application state record."""

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict
import logging

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Connection

from prism_ingest.core.db import ApplicationState, application_state, user_preferences

if TYPE_CHECKING:
    from prism_ingest.core.database_manager import DatabaseManager

logger = logging.getLogger(__name__)

APPLICATION_STATE_FIELDS = ("active_file_id", "preferences")


def ensure_application_state(conn: Connection) -> ApplicationState:
    """Return the application state, creating it on first use."""
    row = conn.execute(
        select(application_state).order_by(application_state.c.id).limit(1)
    ).mappings().first()
    if row is not None:
        return ApplicationState.from_row(row)

    state = ApplicationState(last_active_at=datetime.now())
    conn.execute(insert(application_state).values(
        active_file_id=state.active_file_id,
        last_active_at=state.last_active_at,
        preferences=state.preferences,
        version=state.version,
    ))
    logger.debug("Created application state")
    return state


def write_application_state(conn: Connection, **changes: Any) -> ApplicationState:
    """Merge ``changes`` into the application state and bump its version.

    Raises:
        ValueError: If a field other than active_file_id or preferences is given
    """
    unknown = set(changes) - set(APPLICATION_STATE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown application state field(s): {', '.join(sorted(unknown))}")

    current = ensure_application_state(conn)
    values = dict(changes, last_active_at=datetime.now(), version=current.version + 1)
    conn.execute(update(application_state).values(**values))
    return ApplicationState(
        last_active_at=values["last_active_at"],
        active_file_id=changes.get("active_file_id", current.active_file_id),
        preferences=changes.get("preferences", current.preferences),
        version=values["version"],
    )


class PreferenceStore:
    """Key/value preferences and application state on a DatabaseManager.

    Args:
        db_manager: Storage whose engine and lock are shared
    """

    def __init__(self, db_manager: "DatabaseManager"):
        self.db_manager = db_manager

    @property
    def engine(self):
        return self.db_manager.engine

    def set_preference(self, key: str, value: Any) -> None:
        """Insert or overwrite a preference; a key is never stored twice."""
        with self.db_manager._lock, self.engine.begin() as conn:
            existing = conn.execute(
                select(user_preferences.c.version).where(user_preferences.c.key == key)
            ).scalar()
            if existing is None:
                conn.execute(insert(user_preferences).values(
                    key=key, value=value, updated_at=datetime.now(), version=1
                ))
            else:
                conn.execute(
                    update(user_preferences)
                    .where(user_preferences.c.key == key)
                    .values(value=value, updated_at=datetime.now(), version=existing + 1)
                )
        logger.debug(f"Set preference '{key}'")

    def get_preference(self, key: str, default: Any = None) -> Any:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(user_preferences.c.value).where(user_preferences.c.key == key)
            ).first()
        return row[0] if row is not None else default

    def get_all_preferences(self) -> Dict[str, Any]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(user_preferences.c.key, user_preferences.c.value).order_by(user_preferences.c.key)
            ).all()
        return {key: value for key, value in rows}

    def update_application_state(self, **changes: Any) -> ApplicationState:
        """Merge the given fields into the application state.

        Only the fields passed are changed, so ``active_file_id=None`` clears
        the active file while omitting it keeps the current one.
        """
        with self.db_manager._lock, self.engine.begin() as conn:
            state = write_application_state(conn, **changes)
        logger.debug(f"Application state updated to version {state.version}")
        return state

    def get_application_state(self) -> ApplicationState:
        with self.engine.begin() as conn:
            return ensure_application_state(conn)
