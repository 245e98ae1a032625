import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional, Tuple

from sqlalchemy import create_engine, func, text
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool

from app.errors import DuplicateKey, StoreUnavailable
from app.schemas import MessageType, StoredMessage

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()


def _utc_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class MessageStore:
    """
    Durable message log backed by a pooled SQLAlchemy engine.

    One instance is created at startup and shared by every request
    handler. At most pool_size + max_overflow connections are open at a
    time; up to max_waiting further callers queue for pool_timeout
    seconds, and anything beyond that fails fast with StoreUnavailable.

    Duplicate message_id inserts are rejected with DuplicateKey; existing
    rows are never overwritten.
    """

    def __init__(
        self,
        url: str,
        pool_size: int = 5,
        max_overflow: int = 5,
        pool_timeout: float = 10.0,
        max_waiting: int = 20,
    ):
        connect_args = {}
        if url.startswith("sqlite"):
            # Sessions are used from FastAPI's worker threads
            connect_args["check_same_thread"] = False

        self.engine = create_engine(
            url,
            connect_args=connect_args,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_pre_ping=True,
            echo=False,
        )
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self._slots = threading.BoundedSemaphore(pool_size + max_overflow + max_waiting)

    @classmethod
    def from_settings(cls, settings) -> "MessageStore":
        return cls(
            settings.database_url,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            max_waiting=settings.DB_MAX_WAITING,
        )

    @contextmanager
    def session(self) -> Iterator[Session]:
        """
        Yield a session from the pool.

        Connectivity loss and pool exhaustion surface as StoreUnavailable.
        """
        if not self._slots.acquire(blocking=False):
            logger.error("Database request queue full")
            raise StoreUnavailable("too many requests waiting for a database connection")
        try:
            with self.SessionLocal() as db:
                yield db
        except PoolTimeoutError as e:
            logger.error(f"Timed out waiting for a database connection: {e}")
            raise StoreUnavailable("timed out waiting for a database connection") from e
        except (OperationalError, InterfaceError) as e:
            logger.error(f"Database unavailable: {e}")
            raise StoreUnavailable("database unavailable") from e
        finally:
            self._slots.release()

    def init_db(self) -> None:
        """
        Create tables and prove the database is reachable.
        Called during application startup; any failure is fatal.
        """
        logger.debug(f"Initializing database at {self.engine.url!r}")
        # Import models to register them with Base.metadata
        from app.models import Message, WebhookDelivery  # noqa: F401

        try:
            Base.metadata.create_all(bind=self.engine)
            with self.session() as db:
                db.execute(text("SELECT 1"))
        except (OperationalError, InterfaceError) as e:
            logger.error(f"Failed to initialize database: {e}")
            raise StoreUnavailable("database unavailable at startup") from e
        logger.info("Database initialized successfully")

    def check_health(self) -> bool:
        """True if the database answers and the messages table exists."""
        from app.models import Message

        try:
            with self.session() as db:
                db.execute(text("SELECT 1"))
                db.query(Message.id).limit(1).all()
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info("Database pool closed")

    # =========================================================================
    # Message Repository
    # =========================================================================

    def insert(self, record: StoredMessage) -> None:
        """
        Append a message to the log.

        Raises:
            DuplicateKey: a row with record.message_id already exists
            IntegrityError: any other constraint violation
            StoreUnavailable: the database could not be reached
        """
        from app.models import Message

        logger.debug(
            "Inserting message",
            extra={"message_id": record.message_id, "type": record.type.value},
        )
        with self.session() as db:
            db.add(Message(
                message_id=record.message_id,
                from_phone=record.from_phone,
                to_phone=record.to_phone,
                body=record.body,
                type=record.type.value,
                timestamp=_utc_naive(record.timestamp),
                created_at=_utc_naive(datetime.now(timezone.utc)),
            ))
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                # Only the message_id unique constraint counts as a duplicate
                exists = db.query(Message.id).filter(Message.message_id == record.message_id).first()
                if exists is None:
                    logger.error(f"Integrity error storing message {record.message_id}: {e.orig}")
                    raise
                logger.info("Duplicate message rejected", extra={"message_id": record.message_id})
                raise DuplicateKey(record.message_id) from e
            except Exception:
                db.rollback()
                raise
        logger.info("Message stored", extra={"message_id": record.message_id, "type": record.type.value})

    def archive_delivery(self, payload: str) -> int:
        """Store a raw webhook body verbatim and return its row id."""
        from app.models import WebhookDelivery

        with self.session() as db:
            delivery = WebhookDelivery(
                payload=payload,
                received_at=_utc_naive(datetime.now(timezone.utc)),
            )
            db.add(delivery)
            try:
                db.commit()
            except Exception:
                db.rollback()
                raise
            logger.debug(f"Webhook delivery archived: {delivery.id}")
            return delivery.id

    def get_message(self, message_id: str) -> Optional[StoredMessage]:
        from app.models import Message

        with self.session() as db:
            row = db.query(Message).filter(Message.message_id == message_id).first()
            return StoredMessage.model_validate(row) if row else None

    def count_messages(self) -> int:
        from app.models import Message

        with self.session() as db:
            return db.query(func.count(Message.id)).scalar() or 0

    def list_messages(
        self,
        limit: int = 50,
        offset: int = 0,
        type: Optional[MessageType] = None,
        from_phone: Optional[str] = None,
    ) -> Tuple[list[StoredMessage], int]:
        """
        Page through the log ordered by timestamp ASC, message_id ASC.

        Returns:
            Tuple of (messages, total count matching filters)
        """
        from app.models import Message

        with self.session() as db:
            query = db.query(Message)
            if type is not None:
                query = query.filter(Message.type == MessageType(type).value)
            if from_phone:
                query = query.filter(Message.from_phone == from_phone)

            total = query.count()
            rows = (
                query.order_by(Message.timestamp.asc(), Message.message_id.asc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            messages = [StoredMessage.model_validate(row) for row in rows]

        logger.debug(f"Retrieved {len(messages)} of {total} messages")
        return messages, total
