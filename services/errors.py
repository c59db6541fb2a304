"""Error taxonomy shared by the dashboard, the public pages and the JSON API.

Every error carries a one-line message that is safe to show to the user.
Routes catch ``VideoPopError`` and turn it into a flash message or a JSON
``{"error": ...}`` body; nothing here is retried automatically.
"""

from __future__ import annotations


class VideoPopError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(VideoPopError):
    status_code = 404


class ValidationError(VideoPopError):
    status_code = 400


class StorageError(VideoPopError):
    status_code = 500


class AuthError(VideoPopError):
    status_code = 403
