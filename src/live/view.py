"""Bookmark view actions: create, delete and logout."""
import logging
from dataclasses import dataclass
from uuid import UUID

from pydantic import ValidationError

from live.backend import BookmarkBackend
from live.store import BookmarkStore
from schemas.bookmark import BookmarkCreate
from schemas.session import SessionUser
from services.exceptions import BackendError

logger = logging.getLogger(__name__)

LOGIN_PATH = "/auth/login"

FILL_ALL_FIELDS = "Please fill in all fields"
ADD_FAILED = "Failed to add bookmark"
DELETE_FAILED = "Failed to delete bookmark"


@dataclass
class ActionResult:
    """Outcome of a view action, for the page or live socket to present."""

    ok: bool
    alert: str | None = None
    redirect: str | None = None
    invalid: bool = False


@dataclass
class BookmarkForm:
    """Current contents of the creation form."""

    title: str = ""
    url: str = ""

    def clear(self) -> None:
        """Reset both fields."""
        self.title = ""
        self.url = ""


class BookmarkView:
    """
    Mutations issued from the bookmark page.

    The view never edits the list itself: new rows show up through the realtime
    channel, and deletes are followed by a refetch of the store (when the view is
    attached to one) in case the delete event was missed.
    """

    def __init__(
        self,
        backend: BookmarkBackend,
        user: SessionUser,
        store: BookmarkStore | None = None,
    ) -> None:
        self._backend = backend
        self._user = user
        self._store = store
        self.form = BookmarkForm()

    async def add_bookmark(self, title: str, url: str) -> ActionResult:
        """Validate the form and insert a bookmark owned by the current user."""
        self.form.title = title
        self.form.url = url
        if not title.strip() or not url.strip():
            return ActionResult(ok=False, alert=FILL_ALL_FIELDS, invalid=True)

        try:
            data = BookmarkCreate(title=title, url=url)
        except ValidationError as e:
            return ActionResult(ok=False, alert=e.errors()[0]["msg"], invalid=True)

        try:
            await self._backend.insert_bookmark(self._user.id, data)
        except BackendError:
            logger.exception("Error adding bookmark for user %s", self._user.id)
            return ActionResult(ok=False, alert=ADD_FAILED)

        self.form.clear()
        return ActionResult(ok=True)

    async def delete_bookmark(self, bookmark_id: UUID, confirmed: bool) -> ActionResult:
        """Delete a bookmark after the user confirmed; declining is a no-op."""
        if not confirmed:
            return ActionResult(ok=False)

        try:
            deleted = await self._backend.delete_bookmark(self._user.id, bookmark_id)
        except BackendError:
            logger.exception("Error deleting bookmark %s", bookmark_id)
            return ActionResult(ok=False, alert=DELETE_FAILED)

        if not deleted:
            logger.info("Bookmark %s was already gone", bookmark_id)
        if self._store is not None:
            await self._store.refetch()
        return ActionResult(ok=True)

    async def logout(self) -> ActionResult:
        """Sign out, then send the user to the login page."""
        try:
            await self._backend.sign_out()
        except BackendError:
            logger.exception("Error signing out user %s", self._user.id)
        return ActionResult(ok=True, redirect=LOGIN_PATH)
