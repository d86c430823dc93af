"""Service layer for registration, login and the signed-in user's session."""
import logging

from pydantic import ValidationError as PydanticValidationError

from ..core.api_client import ApiClient
from ..core.session import SessionStore
from ..core.transport import ApiResponse
from ..schemas.user import (
    AuthResult,
    LoginCredentials,
    RegisterData,
    UserIdentity,
    normalize_auth_response,
    normalize_user,
    user_payload,
)
from ..shared.api_errors import ApiError, UnknownError, ValidationError

logger = logging.getLogger(__name__)


class AuthService:
    """
    Authentication endpoints.

    login and register are never retried: a repeated registration would hit
    a conflict, and failed credentials must surface immediately. logout and
    get_profile are retried.
    """

    def __init__(self, api: ApiClient, session: SessionStore) -> None:
        self.api = api
        self.session = session

    def _start_session(self, response: ApiResponse) -> AuthResult:
        result = self.api.parse(response, normalize_auth_response)
        self.session.set_session(result.user, result.token)
        return result

    async def register(self, data: RegisterData) -> AuthResult:
        """Create an account (multipart, optional avatar) and sign in."""
        files = {"avatar": data.avatar} if data.avatar is not None else None
        response = await self.api.request(
            "POST", "/users/register", retry=False, form=data.to_form(), files=files,
        )
        result = self._start_session(response)
        logger.info("user_registered user_id=%s", result.user.id)
        return result

    async def login(self, email: str, password: str) -> AuthResult:
        """
        Sign in with email and password.

        Raises:
            ValidationError: If either field is empty (no request is sent),
                or the server rejects the input.
            AuthError: If the credentials are wrong.
        """
        try:
            credentials = LoginCredentials(email=email, password=password)
        except PydanticValidationError as e:
            raise ValidationError("Email and password are required.") from e
        response = await self.api.request(
            "POST", "/users/login", retry=False, json=credentials.model_dump(),
        )
        result = self._start_session(response)
        logger.info("user_logged_in user_id=%s", result.user.id)
        return result

    async def logout(self) -> None:
        """
        Sign out.

        The local session is always cleared, even when the server call fails;
        a failed server logout is logged, not raised. No request is sent when
        already anonymous.
        """
        if self.session.get_token() is None:
            self.session.logout()
            return
        try:
            await self.api.request("POST", "/users/logout", retry=True, auth=True)
        except ApiError as e:
            logger.warning("logout_request_failed category=%s status=%s", e.category, e.status)
        finally:
            self.session.logout()

    async def get_profile(self) -> UserIdentity | None:
        """Fetch the signed-in user's profile and merge it into the session."""
        response = await self.api.request("GET", "/users/profile/me", retry=True, auth=True)
        payload = user_payload(response.data)
        if not payload:
            raise UnknownError("Unexpected response from the server.")
        token = self.session.get_token()
        if self.session.get_user() is None and token is not None:
            # Credential without a stored identity: the profile becomes the identity
            user = self.api.parse(response, normalize_user)
            self.session.set_session(user, token)
            return user
        return self.session.update_user(payload)

    def is_authenticated(self) -> bool:
        return self.session.is_authenticated()

    def get_current_user(self) -> UserIdentity | None:
        return self.session.get_user()

    def get_token(self) -> str | None:
        return self.session.get_token()
