class StoreError(Exception):
    """Base class for document store failures."""


class DocumentNotFoundError(StoreError):
    def __init__(self, path: str, doc_id: str):
        super().__init__(f"Document {path}/{doc_id} not found.")
        self.path = path
        self.doc_id = doc_id


class IndexRequiredError(StoreError):
    """
    Raised by stores that enforce composite indexes when a query combines
    filters with an ordering on a different field and no index is declared.
    """

    def __init__(self, collection: str, fields: tuple[str, ...], order_field: str):
        super().__init__(
            f"Query on '{collection}' filtering {list(fields)} ordered by '{order_field}' requires an index."
        )
        self.collection = collection
        self.fields = fields
        self.order_field = order_field


class DeviceError(Exception):
    """Opening or reading a measurement device failed."""


class WebhookError(Exception):
    """The automation webhook could not be reached or answered with an error status."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code
