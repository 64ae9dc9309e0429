import requests


class SyncError(Exception):
    """Base error for the sync pipeline; `status_code` is what the API answers with."""

    status_code = 500


class ConfigurationError(SyncError):
    status_code = 400


class SyncAlreadyRunning(SyncError):
    status_code = 409

    def __init__(self, strategy):
        self.strategy = strategy
        super().__init__(f"A '{strategy}' sync is already running")


class FinaleApiError(requests.exceptions.HTTPError):
    retriable = False

    def __init__(self, message, status_code=None, response=None):
        super().__init__(message, response=response)
        self.status_code = status_code


class TransientApiError(FinaleApiError):
    """429, 5xx, timeouts and dropped connections: worth retrying."""

    retriable = True


class RetriesExhausted(TransientApiError):
    def __init__(self, message, attempts, cause=None, status_code=None, response=None):
        super().__init__(message, status_code=status_code, response=response)
        self.attempts = attempts
        self.cause = cause
