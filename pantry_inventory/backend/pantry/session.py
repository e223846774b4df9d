"""
session.py
----------
Owns the signed-in pantry user for one client. Bootstraps from the backend
session, follows auth-state-change events and exposes sign-in, sign-up,
sign-out and refresh. Consumers only read ``manager.state``.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from pantry.backend import AuthApiError, AuthEvent, Backend, BackendError, Session, Subscription
from pantry.config import AUTH_INIT_TIMEOUT
from pantry.schemas import UserSchema

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Email ou senha incorretos."
SIGN_IN_FAILED = "Erro ao fazer login. Tente novamente."
PROFILE_LOAD_FAILED = "Erro ao carregar dados do usuário."
NOT_APPROVED = "Sua conta ainda não foi aprovada pelo administrador."
SIGN_UP_FAILED = "Erro ao criar conta. Verifique os dados e tente novamente."
PROFILE_CREATE_FAILED = "Erro ao criar perfil do usuário."


@dataclass(frozen=True)
class SessionState:
    user: Optional[UserSchema] = None
    loading: bool = True


class SessionManager:
    def __init__(self, backend: Backend, init_timeout: float = AUTH_INIT_TIMEOUT):
        self._backend = backend
        self._init_timeout = init_timeout
        self._state = SessionState()
        self._subscription: Optional[Subscription] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def user(self) -> Optional[UserSchema]:
        return self._state.user

    @property
    def loading(self) -> bool:
        return self._state.loading

    def _set(self, user: Optional[UserSchema]):
        self._state = SessionState(user=user, loading=False)

    async def __aenter__(self) -> "SessionManager":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()

    async def start(self) -> SessionState:
        if self._subscription is None:
            self._subscription = self._backend.auth.on_auth_state_change(self._on_auth_state_change)
        try:
            user = await asyncio.wait_for(self._bootstrap(), timeout=self._init_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Session initialization timed out after {self._init_timeout}s")
            user = None
        self._set(user)
        return self._state

    def close(self):
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def _bootstrap(self) -> Optional[UserSchema]:
        try:
            session = await self._backend.auth.get_session()
        except BackendError as e:
            logger.error(f"Session error: {e}")
            return None
        return await self._resolve(session)

    async def _resolve(self, session: Optional[Session]) -> Optional[UserSchema]:
        if session is None:
            logger.info("No active session")
            return None
        return await self._load_user(session.user.id)

    async def _load_user(self, user_id: str) -> Optional[UserSchema]:
        try:
            result = await (
                self._backend.table("users").select("*").eq("id", user_id).single().execute()
            )
        except BackendError as e:
            logger.error(f"User fetch error for {user_id}: {e}")
            return None
        return UserSchema.model_validate(result.data)

    async def _on_auth_state_change(self, event: AuthEvent, session: Optional[Session]):
        logger.info(f"Auth state changed: {event.value}")
        if event == AuthEvent.SIGNED_OUT:
            session = None
        self._set(await self._resolve(session))

    async def sign_in(self, email: str, password: str) -> Optional[str]:
        """Returns None on success, otherwise the message to show."""
        logger.info(f"Attempting sign in for {email}")
        try:
            session = await self._backend.auth.sign_in_with_password(email, password)
        except AuthApiError as e:
            logger.warning(f"Sign in refused for {email}: {e}")
            return INVALID_CREDENTIALS
        except BackendError as e:
            logger.error(f"Sign in error for {email}: {e}")
            return SIGN_IN_FAILED

        user = await self._load_user(session.user.id)
        if user is None:
            await self.sign_out()
            return PROFILE_LOAD_FAILED
        if not user.is_approved:
            logger.info(f"User {email} not approved yet, signing out")
            await self.sign_out()
            return NOT_APPROVED

        self._set(user)
        logger.info(f"User {email} signed in")
        return None

    async def sign_up(self, email: str, password: str, full_name: str) -> Optional[str]:
        """Creates the auth identity and a pending, non-admin profile."""
        logger.info(f"Attempting sign up for {email}")
        try:
            identity = await self._backend.auth.sign_up(email, password)
        except BackendError as e:
            logger.error(f"Sign up error for {email}: {e}")
            return SIGN_UP_FAILED

        try:
            await self._backend.table("users").insert({
                "id": identity.id,
                "email": identity.email,
                "full_name": full_name,
                "is_super_admin": False,
                "is_approved": False,
            }).execute()
        except BackendError as e:
            logger.error(f"User profile creation error for {email}: {e}")
            return PROFILE_CREATE_FAILED

        logger.info(f"User profile created for {email}")
        return None

    async def sign_out(self):
        try:
            await self._backend.auth.sign_out()
        except BackendError as e:
            logger.error(f"Sign out error: {e}")
        self._set(None)

    async def refresh_user(self):
        try:
            session = await self._backend.auth.get_session()
        except BackendError as e:
            logger.error(f"Refresh user error: {e}")
            session = None
        self._set(await self._resolve(session))
