"""Tests for the local authentication provider."""

import asyncio

import pytest

from src.config import AuthSettings
from src.services.auth import AuthError, LocalAuthProvider
from src.services.storage.database import UserRecord


@pytest.fixture
def provider(database, clock):
    settings = AuthSettings(session_ttl_hours=1, otp_ttl_minutes=15)
    return LocalAuthProvider(database, settings=settings, clock=clock)


class TestPasswordSignIn:
    """Tests for sign-up and password sign-in."""

    def test_sign_up_opens_session(self, provider):
        """Test sign-up returns a live session for the new user."""
        session = asyncio.run(provider.sign_up("Ana@Example.com ", "secret1"))

        assert session.user.email == "ana@example.com"
        assert asyncio.run(provider.get_user(session.token)) == session.user

    def test_password_is_hashed(self, provider, database):
        """Test the clear password never reaches the users table."""
        asyncio.run(provider.sign_up("ana@example.com", "secret1"))
        with database.session() as session:
            stored = session.query(UserRecord).one().password_hash
        assert "secret1" not in stored

    def test_duplicate_email(self, provider):
        """Test an email registers once, case-insensitively."""
        asyncio.run(provider.sign_up("ana@example.com", "secret1"))
        with pytest.raises(AuthError, match="Email already registered"):
            asyncio.run(provider.sign_up("ANA@example.com", "secret2"))

    def test_sign_in(self, provider):
        """Test the right password opens a new session."""
        first = asyncio.run(provider.sign_up("ana@example.com", "secret1"))
        second = asyncio.run(provider.sign_in_with_password("ana@example.com", "secret1"))

        assert second.user == first.user
        assert second.token != first.token

    @pytest.mark.parametrize("email,password", [
        ("ana@example.com", "wrong12"),
        ("nobody@example.com", "secret1"),
    ])
    def test_bad_credentials_share_one_message(self, provider, email, password):
        """Test unknown email and wrong password are indistinguishable."""
        asyncio.run(provider.sign_up("ana@example.com", "secret1"))
        with pytest.raises(AuthError, match="Invalid login credentials"):
            asyncio.run(provider.sign_in_with_password(email, password))


class TestSessions:
    """Tests for session tokens."""

    def test_unknown_token(self, provider):
        """Test unknown and empty tokens resolve to no user."""
        assert asyncio.run(provider.get_user("nope")) is None
        assert asyncio.run(provider.get_user(None)) is None

    def test_session_expires(self, provider, clock):
        """Test a session is dead after its TTL."""
        session = asyncio.run(provider.sign_up("ana@example.com", "secret1"))
        clock.advance(hours=1)
        assert asyncio.run(provider.get_user(session.token)) is None

    def test_sign_out(self, provider):
        """Test signing out kills only that session."""
        first = asyncio.run(provider.sign_up("ana@example.com", "secret1"))
        second = asyncio.run(provider.sign_in_with_password("ana@example.com", "secret1"))

        asyncio.run(provider.sign_out(first.token))

        assert asyncio.run(provider.get_user(first.token)) is None
        assert asyncio.run(provider.get_user(second.token)) is not None


class TestOneTimeLink:
    """Tests for one-time sign-in tokens."""

    def test_creates_unknown_user(self, provider):
        """Test a link for a new email creates the account."""
        token = asyncio.run(provider.sign_in_with_otp("new@example.com"))
        session = asyncio.run(provider.verify_otp("new@example.com", token))
        assert session.user.email == "new@example.com"

    def test_existing_user_keeps_id(self, provider):
        """Test a link signs in the existing account."""
        registered = asyncio.run(provider.sign_up("ana@example.com", "secret1"))
        token = asyncio.run(provider.sign_in_with_otp("ana@example.com"))

        session = asyncio.run(provider.verify_otp("ana@example.com", token))
        assert session.user.id == registered.user.id

    def test_token_is_single_use(self, provider):
        """Test a link cannot be used twice."""
        token = asyncio.run(provider.sign_in_with_otp("ana@example.com"))
        asyncio.run(provider.verify_otp("ana@example.com", token))

        with pytest.raises(AuthError, match="invalid or has expired"):
            asyncio.run(provider.verify_otp("ana@example.com", token))

    def test_token_expires(self, provider, clock):
        """Test a link is dead after its TTL."""
        token = asyncio.run(provider.sign_in_with_otp("ana@example.com"))
        clock.advance(minutes=15)

        with pytest.raises(AuthError):
            asyncio.run(provider.verify_otp("ana@example.com", token))

    def test_token_bound_to_email(self, provider):
        """Test a link only works for the email it was issued to."""
        asyncio.run(provider.sign_up("bruno@example.com", "secret1"))
        token = asyncio.run(provider.sign_in_with_otp("ana@example.com"))

        with pytest.raises(AuthError):
            asyncio.run(provider.verify_otp("bruno@example.com", token))

    def test_session_token_is_not_a_link(self, provider):
        """Test a session token cannot be replayed as a link."""
        session = asyncio.run(provider.sign_up("ana@example.com", "secret1"))
        with pytest.raises(AuthError):
            asyncio.run(provider.verify_otp("ana@example.com", session.token))


class TestAccountChanges:
    """Tests for password and identity updates."""

    def test_update_password(self, provider):
        """Test a new password replaces the old one."""
        session = asyncio.run(provider.sign_up("ana@example.com", "secret1"))
        asyncio.run(provider.update_password(session.token, "secret22", current_password="secret1"))

        with pytest.raises(AuthError):
            asyncio.run(provider.sign_in_with_password("ana@example.com", "secret1"))
        assert asyncio.run(provider.sign_in_with_password("ana@example.com", "secret22"))

    def test_update_password_wrong_current(self, provider):
        """Test a wrong current password blocks the change."""
        session = asyncio.run(provider.sign_up("ana@example.com", "secret1"))

        with pytest.raises(AuthError, match="Current password is incorrect"):
            asyncio.run(provider.update_password(session.token, "secret22", current_password="nope"))
        assert asyncio.run(provider.sign_in_with_password("ana@example.com", "secret1"))

    def test_update_password_requires_session(self, provider):
        """Test a dead session cannot change a password."""
        with pytest.raises(AuthError, match="User not authenticated"):
            asyncio.run(provider.update_password("nope", "secret22"))

    def test_update_user_email(self, provider):
        """Test the email can change and is used for the next sign-in."""
        session = asyncio.run(provider.sign_up("ana@example.com", "secret1"))
        user = asyncio.run(provider.update_user(session.token, email="Ana.Ruiz@example.com"))

        assert user.email == "ana.ruiz@example.com"
        assert asyncio.run(provider.sign_in_with_password("ana.ruiz@example.com", "secret1"))

    def test_update_user_email_taken(self, provider):
        """Test an email owned by someone else is refused."""
        asyncio.run(provider.sign_up("bruno@example.com", "secret1"))
        session = asyncio.run(provider.sign_up("ana@example.com", "secret1"))

        with pytest.raises(AuthError, match="Email already registered"):
            asyncio.run(provider.update_user(session.token, email="bruno@example.com"))

    def test_update_user_full_name(self, provider, store):
        """Test the full name lands on the profile."""
        session = asyncio.run(provider.sign_up("ana@example.com", "secret1"))
        asyncio.run(provider.update_user(session.token, full_name="Ana Ruiz"))

        profile = asyncio.run(store.for_user(session.user.id).get_profile())
        assert profile.full_name == "Ana Ruiz"
        assert profile.general_limit == 0
