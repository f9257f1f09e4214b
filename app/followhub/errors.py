"""
Error taxonomy shared by the services and the request handlers.

Handlers recover ValidationFailed/DuplicateConstraint into re-rendered views,
Unauthorized into a login redirect (or 401 on the login form itself), and
StorageFailure into a generic "try again" message.
"""
from __future__ import annotations


class FollowHubError(Exception):
    message = "Unexpected error."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class ValidationFailed(FollowHubError):
    message = "Invalid input."

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors) or self.message)
        self.errors = list(errors)


class DuplicateConstraint(FollowHubError):
    message = "Username or email already exists."

    def __init__(self, fields: list[str] | tuple[str, ...] = (), message: str | None = None):
        super().__init__(message)
        self.fields = list(fields)


class NotFound(FollowHubError):
    message = "Not found."


class Unauthorized(FollowHubError):
    message = "Invalid username or password."


class SelfFollow(FollowHubError):
    message = "You cannot follow yourself."


class StorageFailure(FollowHubError):
    message = "Something went wrong. Please try again."
