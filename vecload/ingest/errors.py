class FatalStartupError(Exception):
    """
    Raised when the pipeline cannot start.

    Either the inference service could not be reached while probing its
    health, it never became ready within the configured bounds, or the
    target collection could not be prepared in the vector store.
    """

    msg = "pipeline startup failed"


class StoreError(Exception):
    """
    Raised when a batch upsert against the vector store fails.

    Attributes:
        points (int): The number of points in the batch that was not stored.
    """

    msg = "vector store upsert failed"

    def __init__(self, message: str, points: int):
        super().__init__(message)
        self.points = points
