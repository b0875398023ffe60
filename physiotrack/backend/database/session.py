import copy
import threading
from collections.abc import Sequence

from sqlalchemy import create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from core.config import Settings
from database.store import Document, DocumentStore, Filter, MemoryDocumentStore, OrderBy
from models.base import Base
from models.document import StoredDocument
from services.seed_service import seed_demo_data


def make_engine(database_url: str) -> Engine:
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # A single shared connection, otherwise every session sees an empty database.
        return create_engine(database_url, connect_args=connect_args, poolclass=StaticPool, future=True)
    return create_engine(database_url, connect_args=connect_args, future=True)


class SqlDocumentStore(DocumentStore):
    """Document store persisted in one SQLAlchemy table, JSON payload per row."""

    def __init__(self, engine: Engine, enforce_indexes: bool = False):
        super().__init__(enforce_indexes=enforce_indexes)
        self.engine = engine
        self.session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
        # Serialises read-merge-write so concurrent field updates on one row do not drop each other.
        self._write_lock = threading.Lock()

    def create_schema(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def _session(self) -> Session:
        return self.session_factory()

    def _insert(self, path: str, doc_id: str, data: Document) -> None:
        with self._write_lock, self._session() as db:
            row = db.get(StoredDocument, (path, doc_id))
            if row:
                row.data = data
            else:
                db.add(StoredDocument(collection=path, id=doc_id, data=data))
            db.commit()

    def _fetch(self, path: str, doc_id: str) -> Document | None:
        with self._session() as db:
            row = db.get(StoredDocument, (path, doc_id))
            return copy.deepcopy(row.data) if row else None

    def _merge(self, path: str, doc_id: str, fields: Document) -> bool:
        with self._write_lock, self._session() as db:
            row = db.get(StoredDocument, (path, doc_id))
            if not row:
                return False
            # JSON columns are not mutation-tracked; assign a fresh dict.
            row.data = {**row.data, **fields}
            db.add(row)
            db.commit()
            return True

    def _load_collection(self, path: str) -> list[Document]:
        with self._session() as db:
            rows = db.scalars(
                select(StoredDocument)
                .where(StoredDocument.collection == path)
                .order_by(StoredDocument.created_at.asc())
            ).all()
            return [{**copy.deepcopy(r.data), "id": r.id} for r in rows]

    def _fetch_many(self, path: str, doc_ids: Sequence[str]) -> list[Document]:
        if not doc_ids:
            return []
        with self._session() as db:
            rows = db.scalars(
                select(StoredDocument).where(
                    StoredDocument.collection == path, StoredDocument.id.in_(list(doc_ids))
                )
            ).all()
            return [{**copy.deepcopy(r.data), "id": r.id} for r in rows]

    def _candidates(
        self, path: str, filters: Sequence[Filter], order_by: OrderBy | None, limit: int | None
    ) -> list[Document]:
        if filters or order_by is None or limit is None:
            return super()._candidates(path, filters, order_by, limit)

        # Unfiltered first-N queries are ordered and cut in the database. Ordered
        # fields hold numbers (epoch milliseconds); missing values sort first
        # ascending and last descending, ties in insertion order.
        key = StoredDocument.data[order_by.field].as_float()
        ordering = key.desc().nulls_last() if order_by.descending else key.asc().nulls_first()
        with self._session() as db:
            rows = db.scalars(
                select(StoredDocument)
                .where(StoredDocument.collection == path)
                .order_by(ordering, StoredDocument.created_at.asc())
                .limit(limit)
            ).all()
            return [{**copy.deepcopy(r.data), "id": r.id} for r in rows]


def build_store(cfg: Settings) -> DocumentStore:
    if cfg.store_backend == "memory":
        store: DocumentStore = MemoryDocumentStore(enforce_indexes=cfg.store_enforce_indexes)
    elif cfg.store_backend == "sql":
        store = SqlDocumentStore(make_engine(cfg.database_url), enforce_indexes=cfg.store_enforce_indexes)
    else:
        raise ValueError(f"Unknown store backend: {cfg.store_backend}")
    return store


def init_db(store: DocumentStore) -> None:
    # Create tables (MVP). For production, use Alembic migrations.
    if isinstance(store, SqlDocumentStore):
        store.create_schema()

    # Seed demo users/template/assignment (idempotent).
    seed_demo_data(store)
