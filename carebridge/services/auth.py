import datetime as dt
from dataclasses import dataclass
from uuid import UUID

from loguru import logger

from carebridge.backend.parsing_helpers import extract_auth_code, parse_first
from carebridge.backend.ports import BackendClientProtocol
from carebridge.backend.query import Query
from carebridge.domain.exceptions import (
    AccountInactiveError,
    AuthenticationError,
    BackendError,
    NotAuthenticatedError,
)
from carebridge.domain.models import AuthUser, Profile, Role, Staff
from carebridge.services.patients import PatientService
from carebridge.services.staff import StaffService

DEFAULT_STAFF_DEPARTMENT = "Nurse"
INVITE_SLOT_DAYS = 14


@dataclass
class AuthState:
    """Who is signed in and where they should land."""

    is_authenticated: bool = False
    role: Role | None = None
    must_set_password: bool = False
    needs_onboarding: bool = False
    is_resolved: bool = False

    def reset(self) -> None:
        self.is_authenticated = False
        self.role = None
        self.must_set_password = False
        self.needs_onboarding = False


class AuthService:
    """Sign-up, sign-in, magic-link onboarding and role resolution."""

    def __init__(
        self,
        client: BackendClientProtocol,
        patients: PatientService | None = None,
        staff_service: StaffService | None = None,
        redirect_url: str = "ihms://auth-callback",
    ) -> None:
        self._client = client
        self._patients = patients or PatientService(client)
        self._staff = staff_service or StaffService(client)
        self._redirect_url = redirect_url
        self.state = AuthState()

    def current_user(self) -> AuthUser | None:
        session = self._client.session
        return session.user if session else None

    def current_user_id(self) -> UUID | None:
        user = self.current_user()
        return user.id if user else None

    def require_user_id(self) -> UUID:
        user_id = self.current_user_id()
        if user_id is None:
            raise NotAuthenticatedError("User not authenticated")
        return user_id

    async def restore_session(self) -> AuthState:
        """Re-derive the auth state from the client's current session."""
        self.state.is_resolved = False
        try:
            session = self._client.session
            if session is None or session.is_expired():
                self.state.reset()
                return self.state
            self.state.is_authenticated = True
            await self.resolve_role()
            return self.state
        finally:
            self.state.is_resolved = True

    async def resolve_role(self) -> Role | None:
        """Read the profile and decide the landing role.

        A missing profile means a staff member signing in for the first time
        through an invite link: they must set a password before continuing.
        """
        user_id = self.current_user_id()
        if user_id is None:
            self.state.reset()
            return None

        rows = await self._client.select(
            "profiles", Query("role, is_active, has_set_password").eq("id", user_id).limit(1)
        )
        profile = parse_first(Profile, rows)

        if profile is None:
            logger.info("No profile found; treating user as first-time staff")
            self.state.must_set_password = True
            self.state.needs_onboarding = True
            self.state.role = Role.STAFF
            return self.state.role

        if not profile.is_active:
            self.state.reset()
            raise AccountInactiveError("Account inactive")

        role = profile.resolved_role
        if role is None:
            logger.warning("Profile has unknown role '{}'", profile.role)
            self.state.reset()
            return None

        self.state.must_set_password = role == Role.STAFF and not profile.has_set_password
        self.state.needs_onboarding = False
        self.state.role = role
        logger.info("Resolved role: {}", role.value)
        return role

    async def sign_up(
        self,
        email: str,
        password: str,
        full_name: str,
        phone_number: str | None = None,
        date_of_birth: dt.date | None = None,
        gender: str | None = None,
    ) -> AuthState:
        """Register a patient: auth user, patient row and profile row."""
        logger.info("Signing up new patient")
        try:
            await self._client.sign_up(email, password, {"full_name": full_name})
            session = await self._client.sign_in(email, password)
            user_id = session.user.id

            await self._patients.create(
                user_id,
                full_name,
                email,
                phone_number=phone_number,
                date_of_birth=date_of_birth,
                gender=gender,
            )
            await self._client.insert(
                "profiles",
                {
                    "id": str(user_id),
                    "full_name": full_name,
                    "email": email,
                    "role": Role.PATIENT.value,
                    "is_active": True,
                    "has_set_password": True,
                },
            )
        except BackendError:
            self.state.reset()
            raise
        return await self.restore_session()

    async def login(self, email: str, password: str) -> AuthState:
        try:
            await self._client.sign_in(email, password)
        except BackendError:
            self.state.reset()
            raise
        return await self.restore_session()

    async def handle_auth_callback(self, url: str) -> AuthState:
        code = extract_auth_code(url)
        if code is None:
            raise AuthenticationError("Invalid auth callback")
        await self._client.exchange_code_for_session(code)
        return await self.restore_session()

    async def set_password(self, password: str, *, onboarding: bool) -> AuthState:
        """Set the signed-in user's password.

        During onboarding this also creates the staff and profile rows from
        the metadata attached to the invite.
        """
        user = await self._client.update_user(password=password)
        user_id = str(user.id)
        email = user.email or ""

        if onboarding:
            full_name = user.metadata_string("full_name") or email
            department_id = user.metadata_string("department_id") or DEFAULT_STAFF_DEPARTMENT
            await self._client.upsert(
                "staff",
                {
                    "id": user_id,
                    "full_name": full_name,
                    "email": email,
                    "department_id": department_id,
                    "designation": None,
                    "phone": None,
                },
                on_conflict="id",
            )
            await self._client.upsert(
                "profiles",
                {
                    "id": user_id,
                    "full_name": full_name,
                    "email": email,
                    "role": Role.STAFF.value,
                    "is_active": True,
                    "has_set_password": True,
                },
                on_conflict="id",
            )
            logger.info("Staff onboarding completed for user {}", user_id)
        else:
            await self._client.update(
                "profiles", {"has_set_password": True}, Query().eq("id", user_id)
            )

        self.state.must_set_password = False
        self.state.needs_onboarding = False
        self.state.is_authenticated = True
        self.state.is_resolved = True
        await self.resolve_role()
        return self.state

    async def invite_staff(
        self,
        full_name: str,
        email: str,
        department_id: str,
        designation: str = "Doctor",
        today: dt.date | None = None,
    ) -> Staff:
        """Send a magic-link invite, create the staff row and stock two weeks of slots."""
        logger.info("Inviting staff member to department {}", department_id)
        await self._client.sign_in_with_otp(
            email,
            redirect_to=self._redirect_url,
            metadata={"full_name": full_name, "department_id": department_id},
        )
        staff = await self._staff.create(full_name, email, department_id, designation)

        start = today or dt.date.today()
        await self._staff.create_slots_for_range(
            staff.id, start, start + dt.timedelta(days=INVITE_SLOT_DAYS), weekdays_only=True
        )
        logger.info("Staff {} invited with default slots", staff.id)
        return staff

    async def sign_out(self) -> None:
        await self._client.sign_out()
        self.state.reset()

    async def current_user_name(self) -> str:
        user = self.current_user()
        if user is None:
            return "Admin"
        try:
            rows = await self._client.select(
                "profiles", Query("full_name").eq("id", user.id).limit(1)
            )
        except BackendError as exc:
            logger.warning("Could not load profile name: {}", exc)
            rows = []
        name = rows[0].get("full_name") if rows else None
        return name or user.metadata_string("full_name") or "Admin"
