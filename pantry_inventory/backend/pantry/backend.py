"""
Backend client
--------------
The one object through which the pantry talks to its relational backend and
auth service. Two surfaces:

* ``backend.auth``  - password sign-in/sign-up, the current session, sign-out,
  token refresh and auth-state-change subscriptions.
* ``backend.table(name)`` - a small chainable query builder over the
  ``users``, ``items`` and ``withdrawals`` tables::

      result = await (
          backend.table("withdrawals")
          .select("*", embed={"item": ("items", ["name", "unit"])})
          .gte("withdrawn_at", start)
          .order("withdrawn_at", desc=True)
          .execute()
      )

Every call either returns a value or raises ``BackendError``; callers decide
what the user sees.
"""
import warnings
# suppress the passlib crypt deprecation warning
warnings.filterwarnings(
    "ignore",
    category=DeprecationWarning,
    module="passlib.utils"
)
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from jose import jwt, JWTError
from passlib.context import CryptContext
from sqlalchemy import Table, select, insert, update, delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pantry import config
from pantry.database import Base
from pantry.models import AuthUser, AuthSession, new_id

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

MIN_PASSWORD_LENGTH = 6

# owned by the auth service, never reachable through table()
AUTH_TABLES = {AuthUser.__tablename__, AuthSession.__tablename__}


class BackendError(Exception):
    """A failed call against the backend."""


class AuthApiError(BackendError):
    """The auth service refused the request."""


@dataclass(frozen=True)
class AuthIdentity:
    id: str
    email: str


@dataclass(frozen=True)
class Session:
    access_token: str
    session_id: str
    user: AuthIdentity
    expires_at: datetime
    token_type: str = "bearer"


class AuthEvent(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


AuthListener = Callable[[AuthEvent, Optional[Session]], Awaitable[None]]


class Subscription:
    def __init__(self, listeners: List[AuthListener], callback: AuthListener):
        self._listeners = listeners
        self._callback = callback

    @property
    def active(self) -> bool:
        return self._callback in self._listeners

    def unsubscribe(self):
        if self._callback in self._listeners:
            self._listeners.remove(self._callback)


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class AuthClient:
    """Password auth with JWT access tokens backed by ``auth_sessions`` rows.

    The client holds at most one current session, like a browser tab would.
    Sign-out deletes the session row, which revokes every token issued for it.
    """

    def __init__(
        self,
        db: AsyncSession,
        secret: str = config.JWT_SECRET,
        expire_minutes: int = config.ACCESS_TOKEN_EXPIRE_MINUTES,
    ):
        self._db = db
        self._secret = secret
        self._expire = timedelta(minutes=expire_minutes)
        self._session: Optional[Session] = None
        self._listeners: List[AuthListener] = []

    def on_auth_state_change(self, callback: AuthListener) -> Subscription:
        self._listeners.append(callback)
        return Subscription(self._listeners, callback)

    async def _emit(self, event: AuthEvent, session: Optional[Session]):
        for listener in list(self._listeners):
            await listener(event, session)

    def _issue(self, identity: AuthIdentity, session_id: str) -> Session:
        expires_at = datetime.utcnow() + self._expire
        token = jwt.encode(
            {"sub": identity.id, "email": identity.email, "sid": session_id, "exp": expires_at},
            self._secret,
            algorithm=config.JWT_ALGORITHM,
        )
        return Session(access_token=token, session_id=session_id, user=identity, expires_at=expires_at)

    async def _session_row(self, session_id: str, user_id: str) -> Optional[AuthSession]:
        try:
            result = await self._db.execute(
                select(AuthSession).where(AuthSession.id == session_id, AuthSession.user_id == user_id)
            )
        except SQLAlchemyError as e:
            raise BackendError(f"Session lookup failed: {e}") from e
        return result.scalars().first()

    async def get_session(self) -> Optional[Session]:
        session = self._session
        if session is None:
            return None
        if session.expires_at <= datetime.utcnow():
            logger.info(f"Session {session.session_id} expired")
            self._session = None
            return None
        if await self._session_row(session.session_id, session.user.id) is None:
            logger.info(f"Session {session.session_id} was revoked")
            self._session = None
            return None
        return session

    async def set_session(self, access_token: str) -> Session:
        """Restore a session from an access token issued earlier."""
        try:
            claims = jwt.decode(access_token, self._secret, algorithms=[config.JWT_ALGORITHM])
        except JWTError as e:
            raise AuthApiError(f"Invalid token: {e}") from e
        user_id, session_id = claims.get("sub"), claims.get("sid")
        if not user_id or not session_id:
            raise AuthApiError("Invalid token: missing claims")
        if await self._session_row(session_id, user_id) is None:
            raise AuthApiError("Session not found")
        self._session = Session(
            access_token=access_token,
            session_id=session_id,
            user=AuthIdentity(id=user_id, email=claims.get("email", "")),
            expires_at=datetime.utcfromtimestamp(claims["exp"]),
        )
        return self._session

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        email = _normalize_email(email)
        try:
            result = await self._db.execute(select(AuthUser).where(AuthUser.email == email))
            identity = result.scalars().first()
        except SQLAlchemyError as e:
            raise BackendError(f"Sign-in lookup failed: {e}") from e
        if not identity or not pwd_context.verify(password, identity.password_hash):
            raise AuthApiError("Invalid login credentials")

        signed_in = AuthIdentity(id=identity.id, email=identity.email)
        session_id = new_id()
        try:
            self._db.add(AuthSession(id=session_id, user_id=signed_in.id))
            await self._db.commit()
        except SQLAlchemyError as e:
            await self._db.rollback()
            raise BackendError(f"Could not open session: {e}") from e

        self._session = self._issue(signed_in, session_id)
        await self._emit(AuthEvent.SIGNED_IN, self._session)
        return self._session

    async def sign_up(self, email: str, password: str) -> AuthIdentity:
        email = _normalize_email(email)
        if "@" not in email:
            raise AuthApiError("Unable to validate email address: invalid format")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise AuthApiError(f"Password should be at least {MIN_PASSWORD_LENGTH} characters")
        try:
            result = await self._db.execute(select(AuthUser).where(AuthUser.email == email))
            if result.scalars().first():
                raise AuthApiError("User already registered")
            identity = AuthIdentity(id=new_id(), email=email)
            self._db.add(AuthUser(id=identity.id, email=email, password_hash=pwd_context.hash(password)))
            await self._db.commit()
        except SQLAlchemyError as e:
            await self._db.rollback()
            raise BackendError(f"Sign-up failed: {e}") from e
        return identity

    async def sign_out(self):
        session, self._session = self._session, None
        if session is not None:
            try:
                await self._db.execute(delete(AuthSession).where(AuthSession.id == session.session_id))
                await self._db.commit()
            except SQLAlchemyError as e:
                await self._db.rollback()
                raise BackendError(f"Sign-out failed: {e}") from e
        await self._emit(AuthEvent.SIGNED_OUT, None)

    async def refresh_session(self) -> Session:
        current = await self.get_session()
        if current is None:
            raise AuthApiError("Auth session missing")
        try:
            await self._db.execute(
                update(AuthSession)
                .where(AuthSession.id == current.session_id)
                .values(refreshed_at=datetime.utcnow())
            )
            await self._db.commit()
        except SQLAlchemyError as e:
            await self._db.rollback()
            raise BackendError(f"Refresh failed: {e}") from e
        self._session = self._issue(current.user, current.session_id)
        await self._emit(AuthEvent.TOKEN_REFRESHED, self._session)
        return self._session


@dataclass
class QueryResult:
    # list of rows, a single row after single(), or None for head-only counts
    data: Any
    count: Optional[int] = None


Embed = Tuple[str, Sequence[str]]


class TableQuery:
    def __init__(self, db: AsyncSession, table: Table):
        self._db = db
        self._table = table
        self._action = "select"
        self._columns: Union[str, Sequence[str]] = "*"
        self._embeds: Dict[str, Embed] = {}
        self._count: Optional[str] = None
        self._head = False
        self._records: List[Dict[str, Any]] = []
        self._patch: Dict[str, Any] = {}
        self._filters = []
        self._order = []
        self._single = False

    # -- actions ---------------------------------------------------------

    def select(self, columns: Union[str, Sequence[str]] = "*", *, embed: Optional[Dict[str, Embed]] = None,
               count: Optional[str] = None, head: bool = False) -> "TableQuery":
        self._action = "select"
        self._columns = columns
        self._embeds = dict(embed or {})
        self._count = count
        self._head = head
        return self

    def insert(self, record: Union[Dict[str, Any], List[Dict[str, Any]]]) -> "TableQuery":
        self._action = "insert"
        self._records = [record] if isinstance(record, dict) else list(record)
        return self

    def update(self, patch: Dict[str, Any]) -> "TableQuery":
        self._action = "update"
        self._patch = dict(patch)
        return self

    def delete(self) -> "TableQuery":
        self._action = "delete"
        return self

    # -- filters ---------------------------------------------------------

    def _column(self, name: str):
        try:
            return self._table.c[name]
        except KeyError:
            raise BackendError(f'column {self._table.name}.{name} does not exist') from None

    def eq(self, column: str, value: Any) -> "TableQuery":
        self._filters.append(self._column(column) == value)
        return self

    def gt(self, column: str, value: Any) -> "TableQuery":
        self._filters.append(self._column(column) > value)
        return self

    def gte(self, column: str, value: Any) -> "TableQuery":
        self._filters.append(self._column(column) >= value)
        return self

    def lte(self, column: str, value: Any) -> "TableQuery":
        self._filters.append(self._column(column) <= value)
        return self

    def order(self, column: str, desc: bool = False) -> "TableQuery":
        col = self._column(column)
        self._order.append(col.desc() if desc else col.asc())
        return self

    def single(self) -> "TableQuery":
        self._single = True
        return self

    # -- execution -------------------------------------------------------

    def _foreign_key(self, target: Table):
        keys = [fk for fk in self._table.foreign_keys if fk.column.table is target]
        if len(keys) != 1:
            raise BackendError(
                f"Could not embed {target.name} in {self._table.name}: "
                f"expected one relationship, found {len(keys)}"
            )
        return keys[0].parent, keys[0].column

    def _select_statement(self):
        if self._columns == "*":
            base = list(self._table.c)
        else:
            base = [self._column(name) for name in self._columns]
        stmt = select(*base)
        source = self._table
        labels = []
        for alias, (table_name, names) in self._embeds.items():
            target = _lookup_table(table_name)
            local, remote = self._foreign_key(target)
            joined = target.alias(f"embed_{alias}")
            source = source.outerjoin(joined, local == joined.c[remote.name])
            key_label = f"embed_{alias}_key"
            stmt = stmt.add_columns(joined.c[remote.name].label(key_label))
            fields = []
            for name in names:
                if name not in joined.c:
                    raise BackendError(f"column {table_name}.{name} does not exist")
                label = f"embed_{alias}_{name}"
                stmt = stmt.add_columns(joined.c[name].label(label))
                fields.append((name, label))
            labels.append((alias, key_label, fields))
        stmt = stmt.select_from(source).where(*self._filters).order_by(*self._order)
        return stmt, [c.name for c in base], labels

    async def _run_select(self) -> QueryResult:
        count = None
        if self._count:
            count_stmt = select(func.count()).select_from(self._table).where(*self._filters)
            count = (await self._db.execute(count_stmt)).scalar_one()
            if self._head:
                return QueryResult(data=None, count=count)

        stmt, base_names, labels = self._select_statement()
        rows = []
        for mapping in (await self._db.execute(stmt)).mappings().all():
            row = {name: mapping[name] for name in base_names}
            for alias, key_label, fields in labels:
                if mapping[key_label] is None:
                    row[alias] = None
                else:
                    row[alias] = {name: mapping[label] for name, label in fields}
            rows.append(row)
        return QueryResult(data=rows, count=count)

    async def _run_write(self) -> QueryResult:
        columns = list(self._table.c)
        rows = []
        if self._action == "insert":
            for record in self._records:
                result = await self._db.execute(insert(self._table).values(**record).returning(*columns))
                rows.extend(dict(r) for r in result.mappings().all())
        elif self._action == "update":
            stmt = update(self._table).where(*self._filters).values(**self._patch).returning(*columns)
            rows = [dict(r) for r in (await self._db.execute(stmt)).mappings().all()]
        else:
            stmt = delete(self._table).where(*self._filters).returning(*columns)
            rows = [dict(r) for r in (await self._db.execute(stmt)).mappings().all()]
        await self._db.commit()
        return QueryResult(data=rows, count=len(rows))

    async def execute(self) -> QueryResult:
        try:
            if self._action == "select":
                result = await self._run_select()
            else:
                result = await self._run_write()
        except SQLAlchemyError as e:
            await self._db.rollback()
            raise BackendError(f"{self._action} on {self._table.name} failed: {e}") from e

        if self._single:
            if not isinstance(result.data, list) or len(result.data) != 1:
                raise BackendError("JSON object requested, multiple (or no) rows returned")
            result.data = result.data[0]
        return result


def _lookup_table(name: str) -> Table:
    table = Base.metadata.tables.get(name)
    if table is None or name in AUTH_TABLES:
        raise BackendError(f'relation "{name}" does not exist')
    return table


class Backend:
    """Auth plus table access, bound to one database session."""

    def __init__(self, db: AsyncSession, **auth_options):
        self.db = db
        self.auth = AuthClient(db, **auth_options)

    def table(self, name: str) -> TableQuery:
        return TableQuery(self.db, _lookup_table(name))
