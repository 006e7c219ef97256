"""Edit coordinator: authorization, path resolution and commit per request.

Each request walks ``received → authorizing → resolving_path → writing →
committing → done`` and stops at the first error state. Nothing is retried;
the caller shows the outcome and the user may resubmit.
"""

import logging
from collections.abc import Callable

from fastapi.concurrency import run_in_threadpool

from mdwiki.core.auth import Authenticator
from mdwiki.core.errors import (
    AlreadyExistsError,
    CommitFailedError,
    DepthError,
    NotFoundError,
    PathError,
    UnauthenticatedError,
    VCSCommandError,
    WriteFailedError,
)
from mdwiki.core.models import Commit, EditOutcome, EditState, Identity, WikiPath
from mdwiki.core.paths import PathResolver
from mdwiki.core.storage import RepositoryStore

logger = logging.getLogger(__name__)

# Error states, most specific exception first.
_ERROR_STATES: list[tuple[type[Exception], EditState]] = [
    (UnauthenticatedError, EditState.UNAUTHORIZED),
    (PathError, EditState.INVALID_PATH),
    (NotFoundError, EditState.NOT_FOUND),
    (AlreadyExistsError, EditState.ALREADY_EXISTS),
    (WriteFailedError, EditState.WRITE_FAILED),
    (CommitFailedError, EditState.COMMIT_FAILED),
]


def normalize_content(content: str) -> bytes:
    """Browser forms submit CRLF line endings; pages are stored with LF."""
    return content.replace("\r\n", "\n").encode("utf-8")


class EditCoordinator:
    """Runs create and edit requests against the repository store."""

    def __init__(
        self,
        authenticator: Authenticator,
        resolver: PathResolver,
        store: RepositoryStore,
        max_depth: int = 4,
    ):
        self.authenticator = authenticator
        self.resolver = resolver
        self.store = store
        self.max_depth = max_depth

    async def create(self, token: str | None, file: str, content: str) -> EditOutcome:
        """Create a new page at ``file``."""

        def resolve(requested: str) -> WikiPath:
            path = self.resolver.resolve(requested.replace(" ", "_"))
            if path.depth > self.max_depth:
                raise DepthError(context={"path": str(path)})
            return path

        def mutate(path: WikiPath, identity: Identity) -> Commit:
            return self.store.create(
                path, normalize_content(content), identity, f"Create {path}"
            )

        return await self._run(token, file, content, resolve, mutate)

    async def edit(self, token: str | None, file: str, content: str) -> EditOutcome:
        """Replace the content of the existing page at ``file``."""

        def mutate(path: WikiPath, identity: Identity) -> Commit:
            return self.store.update(
                path, normalize_content(content), identity, f"Edit {path}"
            )

        return await self._run(token, file, content, self.resolver.resolve, mutate)

    async def load(self, token: str | None, file: str) -> EditOutcome:
        """Fetch a page for the edit form, with its last commit if known."""
        outcome = self._start("")
        try:
            self._enter(outcome, EditState.AUTHORIZING)
            self.authenticator.authenticate(token)
            self._enter(outcome, EditState.RESOLVING_PATH)
            path = self.resolver.resolve(file)
            outcome.path = path
            outcome.content = await run_in_threadpool(self.store.read_text, path)
        except tuple(exc for exc, _ in _ERROR_STATES) as e:
            return self._fail(outcome, e)

        try:
            history = await run_in_threadpool(self.store.history, path, 1)
            outcome.commit = history[0] if history else None
        except VCSCommandError:
            logger.warning("Could not read history of %s", path)
        self._enter(outcome, EditState.DONE)
        return outcome

    async def _run(
        self,
        token: str | None,
        file: str,
        content: str,
        resolve: Callable[[str], WikiPath],
        mutate: Callable[[WikiPath, Identity], Commit],
    ) -> EditOutcome:
        outcome = self._start(content)
        try:
            self._enter(outcome, EditState.AUTHORIZING)
            identity = self.authenticator.authenticate(token)

            self._enter(outcome, EditState.RESOLVING_PATH)
            outcome.path = resolve(file)

            self._enter(outcome, EditState.WRITING)
            # Runs to completion in a worker thread even if the client goes away.
            try:
                outcome.commit = await run_in_threadpool(mutate, outcome.path, identity)
            except CommitFailedError:
                self._enter(outcome, EditState.COMMITTING)
                raise
            self._enter(outcome, EditState.COMMITTING)
        except tuple(exc for exc, _ in _ERROR_STATES) as e:
            return self._fail(outcome, e)

        self._enter(outcome, EditState.DONE)
        return outcome

    @staticmethod
    def _start(content: str) -> EditOutcome:
        return EditOutcome(
            state=EditState.RECEIVED, history=[EditState.RECEIVED], content=content
        )

    @staticmethod
    def _enter(outcome: EditOutcome, state: EditState) -> None:
        outcome.state = state
        outcome.history.append(state)

    def _fail(self, outcome: EditOutcome, error: Exception) -> EditOutcome:
        for exc_type, state in _ERROR_STATES:
            if isinstance(error, exc_type):
                self._enter(outcome, state)
                break
        outcome.message = getattr(error, "message", str(error))
        logger.warning(
            "Request for %r stopped in %s: %s",
            str(outcome.path) if outcome.path else None,
            outcome.state.value,
            outcome.message,
        )
        return outcome
