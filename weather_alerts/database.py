"""
Database module for the Weather Alert service.

Handles SQLite persistence with:
- Users and their one-to-one alert preferences
- Append-only weather readings (history is exact-as-fetched)
- Append-only alert log, one row per email actually sent
"""

import sqlite3
import threading
import logging
from typing import List, Dict, Any, Optional

from .errors import ConfigError, ConflictError, PersistenceError
from .models import (
    AlertLogEntry,
    CityLocation,
    Preference,
    User,
    WeatherReading,
    new_id,
    utc_now,
)

logger = logging.getLogger(__name__)

SQLITE_SCHEME = "sqlite://"
MEMORY_DB = ":memory:"


def resolve_sqlite_path(database_url: str) -> str:
    """
    Translate a DATABASE_URL into a path sqlite3 can open.

    Accepts ``sqlite:///relative.db``, ``sqlite:////abs/path.db``,
    ``sqlite://`` / ``sqlite://:memory:`` and bare filesystem paths.
    """
    if "://" not in database_url:
        return database_url
    if not database_url.startswith(SQLITE_SCHEME):
        scheme = database_url.split("://", 1)[0]
        raise ConfigError(f"Unsupported database scheme: {scheme}")

    rest = database_url[len(SQLITE_SCHEME):]
    if rest in ("", "/", MEMORY_DB, "/" + MEMORY_DB):
        return MEMORY_DB
    return rest[1:] if rest.startswith("/") else rest


class Database:
    """
    SQLite database wrapper with thread-safe operations.

    One connection in autocommit mode is shared by API handlers and the
    scheduler thread; the lock serialises every statement.
    """

    def __init__(self, database_url: str) -> None:
        self._db_path = resolve_sqlite_path(database_url)
        self._lock = threading.Lock()
        self._conn = None
        self._connect()
        self.init_schema()
        logger.info(f"Database initialized at {self._db_path}")

    def _connect(self) -> None:
        """Establish database connection with WAL mode."""
        try:
            self._conn = sqlite3.connect(
                self._db_path,
                check_same_thread=False,
                isolation_level=None
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open database {self._db_path}: {e}") from e

    def init_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        statements = [
            """
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT NOT NULL UNIQUE,
                city TEXT NOT NULL,
                country TEXT NOT NULL CHECK (length(country) = 2),
                created_at TEXT NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_users_city ON users(city)",
            """
            CREATE TABLE IF NOT EXISTS user_preferences (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
                min_temp INTEGER,
                max_temp INTEGER,
                alert_on_rain INTEGER NOT NULL DEFAULT 0,
                alert_on_snow INTEGER NOT NULL DEFAULT 0,
                alert_on_storm INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS weather_readings (
                id TEXT PRIMARY KEY,
                city TEXT NOT NULL,
                country TEXT NOT NULL,
                temperature REAL NOT NULL,
                feels_like REAL NOT NULL,
                conditions TEXT NOT NULL,
                description TEXT,
                humidity INTEGER NOT NULL,
                wind_speed REAL NOT NULL,
                pressure INTEGER NOT NULL,
                fetched_at TEXT NOT NULL
            )
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_readings_city_fetched
            ON weather_readings(city COLLATE NOCASE, fetched_at DESC)
            """,
            """
            CREATE TABLE IF NOT EXISTS alert_logs (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                alert_type TEXT NOT NULL,
                message TEXT NOT NULL,
                sent_at TEXT NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_alerts_user ON alert_logs(user_id)",
            "CREATE INDEX IF NOT EXISTS idx_alerts_sent ON alert_logs(sent_at DESC)",
        ]
        with self._lock:
            try:
                for statement in statements:
                    self._conn.execute(statement)
            except sqlite3.Error as e:
                raise PersistenceError(f"Schema initialization failed: {e}") from e

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                logger.error(f"Query failed: {e}")
                raise PersistenceError(str(e)) from e

    # =========================================================================
    # User Operations
    # =========================================================================

    def create_user(self, email: str, city: str, country: str) -> User:
        """
        Insert a user together with default (empty) preferences.

        Raises:
            ConflictError: if the email is already registered.
        """
        user = User(
            id=new_id(),
            email=email,
            city=city,
            country=country.upper(),
            created_at=utc_now(),
        )
        defaults = Preference(user_id=user.id, created_at=user.created_at,
                              updated_at=user.created_at)

        with self._lock:
            try:
                self._conn.execute("BEGIN")
                self._conn.execute("""
                    INSERT INTO users (id, email, city, country, created_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (user.id, user.email, user.city, user.country, user.created_at))
                self._conn.execute("""
                    INSERT INTO user_preferences
                    (id, user_id, created_at, updated_at)
                    VALUES (?, ?, ?, ?)
                """, (defaults.id, user.id, defaults.created_at, defaults.updated_at))
                self._conn.execute("COMMIT")
            except sqlite3.IntegrityError as e:
                self._conn.execute("ROLLBACK")
                raise ConflictError(f"User with email {email} already exists") from e
            except sqlite3.Error as e:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                logger.error(f"Failed to create user: {e}")
                raise PersistenceError(str(e)) from e

        logger.info(f"User created: {user.email} - {user.city}, {user.country}")
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        rows = self._query("SELECT * FROM users WHERE id = ?", (user_id,))
        return _to_user(rows[0]) if rows else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        rows = self._query("SELECT * FROM users WHERE email = ?", (email,))
        return _to_user(rows[0]) if rows else None

    def list_users(self) -> List[User]:
        """All users, newest first."""
        rows = self._query("SELECT * FROM users ORDER BY created_at DESC, rowid DESC")
        return [_to_user(row) for row in rows]

    def get_users_in_city(self, city: str, country: str) -> List[User]:
        """Users registered to a city, matched case-insensitively."""
        rows = self._query("""
            SELECT * FROM users
            WHERE LOWER(city) = LOWER(?) AND UPPER(country) = UPPER(?)
            ORDER BY created_at ASC, rowid ASC
        """, (city, country))
        return [_to_user(row) for row in rows]

    def get_user_cities(self) -> List[CityLocation]:
        """Distinct (city, country) pairs among registered users."""
        rows = self._query("""
            SELECT MIN(city) AS city, UPPER(country) AS country FROM users
            GROUP BY LOWER(city), UPPER(country)
            ORDER BY LOWER(city) ASC
        """)
        return [CityLocation(city=row["city"], country=row["country"]) for row in rows]

    # =========================================================================
    # Preference Operations
    # =========================================================================

    def get_preferences(self, user_id: str) -> Optional[Preference]:
        rows = self._query(
            "SELECT * FROM user_preferences WHERE user_id = ?", (user_id,)
        )
        return _to_preference(rows[0]) if rows else None

    def upsert_preferences(
        self,
        user_id: str,
        min_temp: Optional[int],
        max_temp: Optional[int],
        alert_on_rain: bool,
        alert_on_snow: bool,
        alert_on_storm: bool
    ) -> Preference:
        """Replace every preference field at once (last write wins)."""
        now = utc_now()
        self._query("""
            INSERT INTO user_preferences
            (id, user_id, min_temp, max_temp, alert_on_rain, alert_on_snow,
             alert_on_storm, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                min_temp = excluded.min_temp,
                max_temp = excluded.max_temp,
                alert_on_rain = excluded.alert_on_rain,
                alert_on_snow = excluded.alert_on_snow,
                alert_on_storm = excluded.alert_on_storm,
                updated_at = excluded.updated_at
        """, (new_id(), user_id, min_temp, max_temp, int(alert_on_rain),
              int(alert_on_snow), int(alert_on_storm), now, now))

        logger.info(f"Preferences updated for user: {user_id}")
        return self.get_preferences(user_id)

    # =========================================================================
    # Weather Reading Operations (Append-Only)
    # =========================================================================

    def insert_reading(self, reading: WeatherReading) -> None:
        self._query("""
            INSERT INTO weather_readings
            (id, city, country, temperature, feels_like, conditions, description,
             humidity, wind_speed, pressure, fetched_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (reading.id, reading.city, reading.country, reading.temperature,
              reading.feels_like, reading.conditions, reading.description,
              reading.humidity, reading.wind_speed, reading.pressure,
              reading.fetched_at))

    def get_latest_reading(self, city: str) -> Optional[WeatherReading]:
        history = self.get_weather_history(city, 1)
        return history[0] if history else None

    def get_weather_history(self, city: str, limit: int = 24) -> List[WeatherReading]:
        """Most recent readings for a city, newest first."""
        rows = self._query("""
            SELECT * FROM weather_readings
            WHERE city = ? COLLATE NOCASE
            ORDER BY fetched_at DESC, rowid DESC
            LIMIT ?
        """, (city, limit))
        return [_to_reading(row) for row in rows]

    # =========================================================================
    # Alert Log Operations (Append-Only)
    # =========================================================================

    def log_alert(self, user_id: str, alert_type: str, message: str) -> AlertLogEntry:
        entry = AlertLogEntry(
            id=new_id(),
            user_id=user_id,
            alert_type=alert_type,
            message=message,
            sent_at=utc_now(),
        )
        self._query("""
            INSERT INTO alert_logs (id, user_id, alert_type, message, sent_at)
            VALUES (?, ?, ?, ?, ?)
        """, (entry.id, entry.user_id, entry.alert_type, entry.message, entry.sent_at))
        return entry

    def get_user_alerts(self, user_id: str, limit: int = 50) -> List[AlertLogEntry]:
        rows = self._query("""
            SELECT * FROM alert_logs
            WHERE user_id = ?
            ORDER BY sent_at DESC, rowid DESC
            LIMIT ?
        """, (user_id, limit))
        return [_to_alert(row) for row in rows]

    def get_all_alerts(self, limit: int = 100) -> List[AlertLogEntry]:
        rows = self._query("""
            SELECT * FROM alert_logs
            ORDER BY sent_at DESC, rowid DESC
            LIMIT ?
        """, (limit,))
        return [_to_alert(row) for row in rows]

    # =========================================================================
    # Status
    # =========================================================================

    def get_data_summary(self) -> Dict[str, Any]:
        """Get summary of all data in database."""
        with self._lock:
            try:
                counts = {
                    table: self._conn.execute(
                        f"SELECT COUNT(*) FROM {table}"
                    ).fetchone()[0]
                    for table in ("users", "weather_readings", "alert_logs")
                }
            except sqlite3.Error as e:
                raise PersistenceError(str(e)) from e

        return {
            "user_count": counts["users"],
            "reading_count": counts["weather_readings"],
            "alert_count": counts["alert_logs"],
        }

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
                logger.info("Database connection closed")


def _to_user(row: sqlite3.Row) -> User:
    return User(**dict(row))


def _to_preference(row: sqlite3.Row) -> Preference:
    data = dict(row)
    for flag in ("alert_on_rain", "alert_on_snow", "alert_on_storm"):
        data[flag] = bool(data[flag])
    return Preference(**data)


def _to_reading(row: sqlite3.Row) -> WeatherReading:
    return WeatherReading(**dict(row))


def _to_alert(row: sqlite3.Row) -> AlertLogEntry:
    return AlertLogEntry(**dict(row))
