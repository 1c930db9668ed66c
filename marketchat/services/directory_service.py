# file: marketchat/services/directory_service.py

import logging
from typing import Iterable

import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketchat.core.errors import DirectoryError
from marketchat.core.settings import settings
from marketchat.models.users import User
from marketchat.schemas.users import DirectoryEntry

logger = logging.getLogger("directory_service")

FORMER_USER_NAME = "Former user"

# remote profiles still use the old "user" role name for customers
ROLE_ALIASES = {"user": "customer"}


def normalize_role(role: str | None) -> str:
    role = (role or "").strip().lower()
    return ROLE_ALIASES.get(role, role)


def placeholder_entry(user_id: str) -> DirectoryEntry:
    """Entry shown for a participant that no longer resolves in the directory."""
    return DirectoryEntry(
        id=user_id,
        display_name=FORMER_USER_NAME,
        avatar_url=None,
        role="unknown",
        former=True,
    )


def unresolved_entry(user_id: str) -> DirectoryEntry:
    """Entry used when the directory cannot be reached at all."""
    return DirectoryEntry(id=user_id, display_name=user_id, avatar_url=None, role="unknown")


def resolve_entries(directory, user_ids: Iterable[str], tolerate_errors: bool = False) -> dict[str, DirectoryEntry]:
    """
    Batched lookup that never leaves a hole: missing users become
    placeholder entries. With tolerate_errors a directory outage yields
    bare entries instead of raising.
    """
    wanted = sorted(set(user_ids))
    try:
        found = directory.get_users(wanted) if wanted else {}
    except (DirectoryError, SQLAlchemyError) as e:
        if not tolerate_errors:
            raise
        logger.warning(f"[Directory] lookup failed, using bare entries for {len(wanted)} users: {e}")
        return {uid: unresolved_entry(uid) for uid in wanted}
    return {uid: found.get(uid) or placeholder_entry(uid) for uid in wanted}


# ============================================================
# Local directory (users table)
# ============================================================

class SqlDirectory:
    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _to_entry(user: User) -> DirectoryEntry:
        return DirectoryEntry(
            id=user.id,
            display_name=user.full_name,
            avatar_url=user.avatar_url,
            role=normalize_role(user.role),
        )

    def get_user(self, user_id: str) -> DirectoryEntry | None:
        user = self.db.get(User, user_id)
        return self._to_entry(user) if user else None

    def get_users(self, user_ids: list[str]) -> dict[str, DirectoryEntry]:
        if not user_ids:
            return {}
        users = self.db.query(User).filter(User.id.in_(user_ids)).all()
        return {u.id: self._to_entry(u) for u in users}


# ============================================================
# Remote directory (profile service over HTTP)
# ============================================================

class HttpDirectory:
    def __init__(self, base_url: str | None = None, api_key: str | None = None, timeout: int | None = None):
        self.base_url = (base_url if base_url is not None else settings.DIRECTORY_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.DIRECTORY_API_KEY
        self.timeout = timeout or settings.DIRECTORY_TIMEOUT
        self.session = requests.Session()

        if not self.base_url:
            logger.error("❌ DIRECTORY_BASE_URL not set.")

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

    def _get(self, path: str, params: dict | None = None) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            r = self.session.get(url, params=params, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"[Directory] GET {url} failed: {e}")
            raise DirectoryError(str(e)) from e

        logger.debug(f"[Directory] GET {url} -> {r.status_code}")
        return r

    @staticmethod
    def _to_entry(data: dict) -> DirectoryEntry:
        return DirectoryEntry(
            id=str(data["id"]),
            display_name=data.get("full_name") or data.get("display_name") or "",
            avatar_url=data.get("avatar_url"),
            role=normalize_role(data.get("role")),
        )

    def get_user(self, user_id: str) -> DirectoryEntry | None:
        r = self._get(f"/users/{user_id}")

        if r.status_code == 404:
            return None
        if r.status_code >= 400:
            raise DirectoryError(f"directory returned {r.status_code}: {r.text}")

        return self._to_entry(r.json())

    def get_users(self, user_ids: list[str]) -> dict[str, DirectoryEntry]:
        if not user_ids:
            return {}

        r = self._get("/users", params={"ids": ",".join(user_ids)})
        if r.status_code >= 400:
            raise DirectoryError(f"directory returned {r.status_code}: {r.text}")

        payload = r.json()
        rows = payload.get("users", []) if isinstance(payload, dict) else payload
        entries = [self._to_entry(row) for row in rows]
        return {e.id: e for e in entries}


_http_directory: HttpDirectory | None = None


def get_directory_for(db: Session):
    """
    Returns the directory backend configured in settings.
    """
    global _http_directory

    if settings.DIRECTORY_BACKEND == "http":
        if _http_directory is None:
            _http_directory = HttpDirectory()
        return _http_directory

    return SqlDirectory(db)
