class FeedPipeError(Exception):
    """Base class for pipeline errors."""


class SourceFetchError(FeedPipeError):
    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to fetch source '{url}': {reason}")
        self.url = url
        self.reason = reason


class MetadataFetchError(FeedPipeError):
    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to fetch metadata for '{url}': {reason}")
        self.url = url
        self.reason = reason


class StoreCorruptedError(FeedPipeError):
    def __init__(self, key: str, reason: str):
        super().__init__(f"Processed store '{key}' could not be decoded: {reason}")
        self.key = key


class UnauthorizedError(FeedPipeError):
    pass


class InvalidCursorError(FeedPipeError):
    pass
