class ApiError(Exception):
    """An error that is rendered to the client as a JSON response."""

    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        if self.payload is not None:
            return dict(self.payload)
        return {"error": self.message}


class ExternalApiError(Exception):
    """Raised when a third-party service (Meta Graph, LLM provider) fails."""
