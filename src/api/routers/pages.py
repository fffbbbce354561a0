"""
Bookmark pages.

`GET /bookmarks` is the session gate for the page UI: without a session it
redirects to the login page. The page works with plain form posts; when the
browser opens the live socket the list is kept current without reloads.
"""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_async_session, get_optional_session, get_request_backend
from api.rendering import templates
from live.backend import BookmarkBackend
from live.view import LOGIN_PATH, BookmarkForm, BookmarkView
from schemas.bookmark import BookmarkResponse
from schemas.session import Session
from services import bookmark_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["pages"])

BOOKMARKS_PATH = "/bookmarks"


async def _render_bookmarks(
    request: Request,
    db: AsyncSession,
    session: Session,
    alert: str | None = None,
    form: BookmarkForm | None = None,
    status_code: int = 200,
) -> HTMLResponse:
    rows = await bookmark_service.get_bookmarks(db, session.user.id)
    return templates.TemplateResponse(
        request,
        "bookmarks.html",
        {
            "user": session.user,
            "bookmarks": [BookmarkResponse.model_validate(row) for row in rows],
            "loading": False,
            "alert": alert,
            "form": form or BookmarkForm(),
        },
        status_code=status_code,
    )


@router.get("/", include_in_schema=False)
async def index() -> RedirectResponse:
    """Send visitors to the bookmark page (which sends them on to login if needed)."""
    return RedirectResponse(BOOKMARKS_PATH, status_code=303)


@router.get("/bookmarks", response_class=HTMLResponse, response_model=None)
async def bookmarks_page(
    request: Request,
    session: Session | None = Depends(get_optional_session),
    db: AsyncSession = Depends(get_async_session),
) -> Response:
    """Show the signed-in user's bookmarks, newest first."""
    if session is None:
        return RedirectResponse(LOGIN_PATH, status_code=303)
    return await _render_bookmarks(request, db, session)


@router.post("/bookmarks", response_class=HTMLResponse, response_model=None)
async def create_bookmark_form(
    request: Request,
    title: str = Form(default=""),
    url: str = Form(default=""),
    session: Session | None = Depends(get_optional_session),
    backend: BookmarkBackend = Depends(get_request_backend),
    db: AsyncSession = Depends(get_async_session),
) -> Response:
    """Create a bookmark from the page form."""
    if session is None:
        return RedirectResponse(LOGIN_PATH, status_code=303)

    view = BookmarkView(backend, session.user)
    result = await view.add_bookmark(title, url)
    if result.ok:
        return RedirectResponse(BOOKMARKS_PATH, status_code=303)

    # Keep what the user typed so they can correct it
    status_code = 400 if result.invalid else 503
    return await _render_bookmarks(
        request, db, session, alert=result.alert, form=view.form, status_code=status_code,
    )


@router.get(
    "/bookmarks/{bookmark_id}/delete", response_class=HTMLResponse, response_model=None,
)
async def confirm_delete_page(
    request: Request,
    bookmark_id: UUID,
    session: Session | None = Depends(get_optional_session),
    db: AsyncSession = Depends(get_async_session),
) -> Response:
    """Ask the user to confirm a delete (the page form has no confirm() dialog)."""
    if session is None:
        return RedirectResponse(LOGIN_PATH, status_code=303)
    bookmark = await bookmark_service.get_bookmark(db, session.user.id, bookmark_id)
    if bookmark is None:
        return RedirectResponse(BOOKMARKS_PATH, status_code=303)
    return templates.TemplateResponse(
        request,
        "confirm_delete.html",
        {"user": session.user, "bookmark": BookmarkResponse.model_validate(bookmark)},
    )


@router.post(
    "/bookmarks/{bookmark_id}/delete", response_class=HTMLResponse, response_model=None,
)
async def delete_bookmark_form(
    request: Request,
    bookmark_id: UUID,
    confirm: str = Form(default=""),
    session: Session | None = Depends(get_optional_session),
    backend: BookmarkBackend = Depends(get_request_backend),
    db: AsyncSession = Depends(get_async_session),
) -> Response:
    """Delete a bookmark once confirmed; anything but confirm=yes leaves it in place."""
    if session is None:
        return RedirectResponse(LOGIN_PATH, status_code=303)

    view = BookmarkView(backend, session.user)
    result = await view.delete_bookmark(bookmark_id, confirmed=confirm == "yes")
    if result.alert:
        return await _render_bookmarks(request, db, session, alert=result.alert, status_code=503)
    return RedirectResponse(BOOKMARKS_PATH, status_code=303)
