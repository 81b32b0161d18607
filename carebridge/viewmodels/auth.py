import datetime as dt
from enum import Enum

from loguru import logger

from carebridge.domain.exceptions import BackendError
from carebridge.domain.models import Role
from carebridge.services.auth import AuthService, AuthState

MIN_PASSWORD_LENGTH = 6


class Destination(str, Enum):
    """Screen the app should show for the current auth state."""

    LOADING = "loading"
    LOGIN = "login"
    SET_PASSWORD = "set_password"
    PATIENT_HOME = "patient_home"
    STAFF_HOME = "staff_home"
    ADMIN_HOME = "admin_home"


_HOME_FOR_ROLE = {
    Role.PATIENT: Destination.PATIENT_HOME,
    Role.STAFF: Destination.STAFF_HOME,
    Role.ADMIN: Destination.ADMIN_HOME,
}


class AuthViewModel:
    """Holds the auth state and turns auth failures into a message."""

    def __init__(self, auth: AuthService) -> None:
        self._auth = auth
        self.is_loading = False
        self.error_message: str | None = None

    @property
    def state(self) -> AuthState:
        return self._auth.state

    @property
    def destination(self) -> Destination:
        state = self.state
        if not state.is_resolved:
            return Destination.LOADING
        if not state.is_authenticated or state.role is None:
            return Destination.LOGIN
        if state.must_set_password:
            return Destination.SET_PASSWORD
        return _HOME_FOR_ROLE[state.role]

    async def restore(self) -> bool:
        self.error_message = None
        try:
            await self._auth.restore_session()
            return True
        except BackendError as exc:
            logger.warning("Session restore failed: {}", exc)
            self.error_message = str(exc)
            return False
        except Exception:
            logger.exception("Unexpected error restoring session")
            self.error_message = "An unexpected error occurred while restoring your session."
            return False

    async def login(self, email: str, password: str) -> bool:
        if not email or not password:
            self.error_message = "Please enter your email and password."
            return False

        self.is_loading = True
        self.error_message = None
        try:
            await self._auth.login(email.strip(), password)
            return self.state.is_authenticated
        except BackendError as exc:
            logger.warning("Login failed: {}", exc)
            self.error_message = str(exc)
            return False
        except Exception:
            logger.exception("Unexpected error during login")
            self.error_message = "An unexpected error occurred while signing in."
            return False
        finally:
            self.is_loading = False

    async def sign_up(
        self,
        email: str,
        password: str,
        full_name: str,
        phone_number: str | None = None,
        date_of_birth: dt.date | None = None,
        gender: str | None = None,
    ) -> bool:
        if len(password) < MIN_PASSWORD_LENGTH:
            self.error_message = f"Password must be at least {MIN_PASSWORD_LENGTH} characters."
            return False

        self.is_loading = True
        self.error_message = None
        try:
            await self._auth.sign_up(
                email.strip(),
                password,
                full_name.strip(),
                phone_number=phone_number,
                date_of_birth=date_of_birth,
                gender=gender,
            )
            return True
        except BackendError as exc:
            logger.warning("Sign up failed: {}", exc)
            self.error_message = str(exc)
            return False
        except Exception:
            logger.exception("Unexpected error during sign up")
            self.error_message = "An unexpected error occurred while creating your account."
            return False
        finally:
            self.is_loading = False

    async def handle_auth_callback(self, url: str) -> bool:
        self.error_message = None
        try:
            await self._auth.handle_auth_callback(url)
            return True
        except BackendError as exc:
            logger.warning("Auth callback failed: {}", exc)
            self.error_message = str(exc)
            return False
        except Exception:
            logger.exception("Unexpected error handling auth callback")
            self.error_message = "An unexpected error occurred while verifying your sign-in link."
            return False

    async def set_password(self, password: str, confirmation: str) -> bool:
        """Finish onboarding (first-time staff) or flag the password as set."""
        if len(password) < MIN_PASSWORD_LENGTH:
            self.error_message = f"Password must be at least {MIN_PASSWORD_LENGTH} characters."
            return False
        if password != confirmation:
            self.error_message = "Passwords do not match."
            return False

        self.is_loading = True
        self.error_message = None
        try:
            await self._auth.set_password(password, onboarding=self.state.needs_onboarding)
            return True
        except BackendError as exc:
            logger.warning("Setting password failed: {}", exc)
            self.error_message = str(exc)
            return False
        except Exception:
            logger.exception("Unexpected error setting password")
            self.error_message = "An unexpected error occurred while setting your password."
            return False
        finally:
            self.is_loading = False

    async def sign_out(self) -> bool:
        self.error_message = None
        try:
            await self._auth.sign_out()
            return True
        except BackendError as exc:
            logger.warning("Sign out failed: {}", exc)
            self.error_message = str(exc)
            return False
        except Exception:
            logger.exception("Unexpected error signing out")
            self.error_message = "An unexpected error occurred while signing out."
            return False
