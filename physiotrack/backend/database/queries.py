import logging
from collections.abc import Sequence

from core.errors import IndexRequiredError
from database.store import Document, DocumentStore, Filter, OrderBy, sort_documents

logger = logging.getLogger(__name__)


def query_ordered(
    store: DocumentStore,
    path: str,
    filters: Sequence[Filter],
    order_by: OrderBy,
    limit: int | None = None,
) -> list[Document]:
    """
    Run an ordered query; if the backend needs a composite index it does not
    have, fall back to the plain filtered query and sort client side.
    """
    try:
        return store.query(path, filters, order_by, limit)
    except IndexRequiredError as exc:
        logger.warning("Ordered query failed (%s), sorting client side", exc)
        docs = sort_documents(store.query(path, filters), order_by)
        return docs[:limit] if limit is not None else docs
