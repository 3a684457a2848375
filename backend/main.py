import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from fastapi import Cookie, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
import psycopg2
import psycopg2.extras
from pydantic import BaseModel
from dotenv import load_dotenv
from jose import JWTError, jwt

_project_root = Path(__file__).resolve().parents[1]
if str(_project_root) not in sys.path:
    sys.path.append(str(_project_root))

load_dotenv()

try:
    from backend.config import EntitlementConfig, load_entitlement_config
    from backend.app.entitlements import StoreUnavailableError
    from backend.app.routes.entitlements import router as entitlements_router
    from backend.app.services.entitlements import ensure_entitlement_schema
except ModuleNotFoundError as exc:
    if exc.name != "backend":
        raise
    from config import EntitlementConfig, load_entitlement_config  # type: ignore[no-redef]
    from app.entitlements import StoreUnavailableError  # type: ignore[no-redef]
    from app.routes.entitlements import router as entitlements_router  # type: ignore[no-redef]
    from app.services.entitlements import ensure_entitlement_schema  # type: ignore[no-redef]


CONFIG: EntitlementConfig = load_entitlement_config()

DB_CFG = CONFIG.db_settings()

JWT_SECRET_KEY = CONFIG.jwt_secret_key
JWT_ALGORITHM = "HS256"
JWT_EXP_MINUTES = 60 * 24 * 7  # 7 days
SESSION_COOKIE_NAME = CONFIG.session_cookie_name

logger = logging.getLogger("entitlements")

ADMIN_ROLES = {"admin"}


class CurrentUser(BaseModel):
    id: int
    username: str
    role: str
    organization_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


def get_conn():
    return psycopg2.connect(**DB_CFG)


def create_access_token(*, subject: str, expires_delta: Optional[timedelta] = None) -> str:
    payload = {"sub": subject}
    if expires_delta is None:
        expires_delta = timedelta(minutes=JWT_EXP_MINUTES)
    expire = datetime.utcnow() + expires_delta
    payload["exp"] = expire
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def get_user_by_id(uid: int) -> Optional[CurrentUser]:
    with get_conn() as conn, conn.cursor(cursor_factory=psycopg2.extras.DictCursor) as cur:
        cur.execute(
            "SELECT id, username, role, organization_id FROM users WHERE id = %s",
            (uid,),
        )
        row = cur.fetchone()
    if not row:
        return None
    return CurrentUser(**dict(row))


def resolve_user_from_session_token(session_token: str) -> Optional[CurrentUser]:
    try:
        payload = jwt.decode(session_token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
        subject = payload.get("sub")
        if subject is None:
            return None
        user_id = int(subject)
    except (JWTError, ValueError):
        return None

    return get_user_by_id(user_id)


def get_current_user(session_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME)) -> CurrentUser:
    if not session_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    user = resolve_user_from_session_token(session_token)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user


try:
    from backend import app_context
except ModuleNotFoundError as exc:
    if exc.name != "backend":
        raise
    import app_context  # type: ignore[no-redef]

app_context.configure(get_conn=get_conn, get_current_user=get_current_user)


app = FastAPI(title="Entitlements API")

# Vite proxy origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(entitlements_router)


@app.on_event("startup")
def setup_entitlement_schema() -> None:
    try:
        ensure_entitlement_schema()
    except StoreUnavailableError:
        logger.exception("Unable to ensure entitlement schema at startup")
