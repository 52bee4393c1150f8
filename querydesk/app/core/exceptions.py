class UnsupportedDatabaseType(ValueError):
    """Raised when a database kind has no entry in the dialect table."""


class DataSourceNotFound(LookupError):
    def __init__(self, data_source_id):
        super().__init__(f"DataSource not found with id: {data_source_id}")
        self.data_source_id = data_source_id


class SavedQueryNotFound(LookupError):
    def __init__(self, query_id):
        super().__init__(f"Query not found with id: {query_id}")
        self.query_id = query_id


class SchemaDiscoveryError(ConnectionError):
    """Raised when a schema cannot be read from the target database."""


class QueryExecutionFault(RuntimeError):
    """
    Raised when query execution fails for a reason other than the database rejecting
    the statement. The execution record is stored before this propagates.
    """

    def __init__(self, message: str, execution_id=None):
        super().__init__(message)
        self.execution_id = execution_id
