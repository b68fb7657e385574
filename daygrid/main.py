from contextlib import asynccontextmanager
from datetime import date
from typing import Optional
import logging
import sys

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import auth as auth_mod
from . import config
from .auth import get_current_user
from .calendar_grid import WEEK_LABELS, build_weeks, in_month, month_label
from .db import init_db
from .models import User
from .utils import day_key, normalize_email, parse_day_key

logger = logging.getLogger(__name__)
# Ensure INFO-level messages from this module appear on the server console when
# no handlers are configured (safe fallback for development/testing).
if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter('%(asctime)s %(levelname)s:%(name)s: %(message)s')
    handler.setFormatter(formatter)
    logger.addHandler(handler)
logger.setLevel(logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # The application should not start without a proper secret: magic links
    # and access tokens are only as good as the key that signs them.
    if not config.SECRET_KEY or config.SECRET_KEY == config.SECRET_KEY_FALLBACK:
        raise RuntimeError("SECRET_KEY not set or insecure fallback in use; set the SECRET_KEY environment variable before starting the server")
    await init_db()
    logger.info('starting server using DATABASE_URL=%s', config.DATABASE_URL)
    if config.DEV_MODE:
        logger.info('DEV_MODE enabled: /auth/magic-link echoes sign-in tokens')
    yield


app = FastAPI(lifespan=lifespan)

from .tasks_api import router as tasks_router  # noqa: E402

app.include_router(tasks_router)


class MagicLinkRequest(BaseModel):
    email: str


class VerifyRequest(BaseModel):
    token: str


def _request_session_token(request: Request) -> Optional[str]:
    return request.headers.get('X-Session-Token') or request.cookies.get('session_token')


@app.get('/health')
async def health():
    return {'ok': True}


@app.post('/auth/magic-link')
async def request_magic_link(req: MagicLinkRequest):
    """Email a one-time sign-in link. Unknown addresses get an account on verify."""
    try:
        email = normalize_email(req.email)
    except ValueError:
        raise HTTPException(status_code=422, detail='invalid email address')
    token = auth_mod.create_magic_link_token(email)
    auth_mod.deliver_magic_link(email, auth_mod.magic_link_url(token))
    out = {'ok': True}
    if config.DEV_MODE:
        out['token'] = token
    return out


@app.post('/auth/verify')
async def verify_magic_link(req: VerifyRequest):
    email = auth_mod.verify_magic_link_token(req.token)
    if not email:
        raise HTTPException(status_code=401, detail='invalid or expired sign-in link')
    user = await auth_mod.get_or_create_user(email)
    session_token = await auth_mod.create_session_for_user(user)
    access_token = auth_mod.create_access_token(user)
    logger.info('user_id=%s signed in', user.id)
    resp = JSONResponse({
        'session_token': session_token,
        'access_token': access_token,
        'token_type': 'bearer',
        'user': auth_mod.user_out(user),
    })
    resp.set_cookie('session_token', session_token, httponly=True, samesite='lax')
    return resp


@app.get('/auth/session')
async def read_session(current_user: Optional[User] = Depends(get_current_user)):
    return {'user': auth_mod.user_out(current_user) if current_user else None}


@app.post('/auth/logout')
async def logout(request: Request):
    session_token = _request_session_token(request)
    if session_token:
        await auth_mod.delete_session(session_token)
    resp = JSONResponse({'ok': True})
    resp.delete_cookie('session_token')
    return resp


@app.get('/calendar/month')
async def calendar_month(anchor: Optional[str] = None):
    """Week rows for the month containing ``anchor`` (default: this month)."""
    if anchor:
        try:
            anchor_date = parse_day_key(anchor)
        except ValueError:
            raise HTTPException(status_code=422, detail='anchor must be YYYY-MM-DD')
    else:
        anchor_date = date.today()
    weeks = [
        [{'key': day_key(d), 'day': d.day, 'in_month': in_month(d, anchor_date)} for d in row]
        for row in build_weeks(anchor_date)
    ]
    return {'label': month_label(anchor_date), 'week_labels': list(WEEK_LABELS), 'weeks': weeks}
