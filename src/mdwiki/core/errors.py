"""Exception hierarchy for mdwiki.

User-recoverable errors carry a ``message`` that is safe to show on the
originating form. ``RepositoryError`` marks infrastructure faults that the
HTTP layer turns into a 500 response.
"""


class WikiError(Exception):
    """Base exception for all mdwiki errors."""

    default_message = "Something went wrong."

    def __init__(self, message: str | None = None, context: dict | None = None):
        self.message = message or self.default_message
        self.context = context or {}
        super().__init__(self.message)


# Path resolution


class PathError(WikiError):
    """The requested path cannot be mapped to a page file."""

    default_message = "Invalid page path."


class TraversalError(PathError):
    """The path would escape the wiki root."""

    default_message = "Path is outside the wiki."


class InvalidPathError(PathError):
    """The path does not name a Markdown page."""

    default_message = "Only Markdown pages can be edited."


class ReservedPathError(PathError):
    """The path collides with a generator file or an application route."""

    default_message = "This name is reserved."


class DepthError(PathError):
    """The page would be nested too deeply."""

    default_message = "Pages cannot be nested that deeply."


# Authentication


class AuthError(WikiError):
    """Base class for authentication failures."""

    default_message = "Authentication required."


class InvalidCredentialsError(AuthError):
    default_message = "Invalid username/password."


class UnauthenticatedError(AuthError):
    default_message = "Please log in to edit pages."


# Repository store


class StoreError(WikiError):
    """Base class for repository store failures."""


class NotFoundError(StoreError):
    default_message = "Page not found."


class AlreadyExistsError(StoreError):
    default_message = "A page with this name already exists."


class WriteFailedError(StoreError):
    """The file write did not complete; nothing was committed."""

    default_message = "Could not save the page."


class CommitFailedError(StoreError):
    """The file was written but recording it in git failed."""

    default_message = "The page was saved but could not be committed."


# Uploads


class UploadError(WikiError):
    default_message = "Upload failed."


class UnsupportedTypeError(UploadError):
    default_message = "Unsupported image type."


class TooLargeError(UploadError):
    default_message = "Upload is too large."


# Infrastructure


class VCSCommandError(WikiError):
    """A git command exited with an error or timed out."""

    default_message = "git command failed."


class RepositoryError(WikiError):
    """The git repository or the git binary is unusable."""

    default_message = "The wiki repository is unavailable."
