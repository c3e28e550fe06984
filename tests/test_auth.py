"""Unit tests for session tokens and identity management."""
import pytest
import jwt
from datetime import timedelta

from lendingdesk.core.auth import (
    ALGORITHM,
    SECRET_KEY,
    SESSION_EXPIRE_MINUTES,
    create_session_token,
    decode_session_token,
)
from lendingdesk.core.errors import AuthenticationRequired, UsernameTaken, ValidationError
from lendingdesk.domain.user import Identity, Role
from lendingdesk.services.identity import hash_password, verify_password

PASSWORD = "correct-horse-battery"


@pytest.fixture
def identity():
    return Identity(id="user_001", username="ayesha", role=Role.TEACHER)


class TestSessionTokens:
    """Test session token creation and validation."""

    def test_round_trip(self, identity):
        token_data = decode_session_token(create_session_token(identity))

        assert token_data.sub == identity.id
        assert token_data.username == identity.username
        assert token_data.role == Role.TEACHER

    def test_token_contains_required_claims(self, identity):
        payload = jwt.decode(create_session_token(identity), SECRET_KEY, algorithms=[ALGORITHM])

        assert {"sub", "username", "role", "exp", "iat"} <= set(payload)

    def test_expired_token(self, identity):
        token = create_session_token(identity, expires_delta=timedelta(hours=-1))

        with pytest.raises(AuthenticationRequired) as exc_info:
            decode_session_token(token)

        assert exc_info.value.reason == "Session expired"

    def test_tampered_token(self, identity):
        token = jwt.encode(
            {"sub": identity.id, "username": identity.username, "role": "admin", "exp": 9999999999},
            "some-other-secret",
            algorithm=ALGORITHM,
        )

        with pytest.raises(AuthenticationRequired):
            decode_session_token(token)

    def test_malformed_token(self):
        with pytest.raises(AuthenticationRequired):
            decode_session_token("not.a.valid.jwt.token")

    def test_session_lasts_three_hours(self):
        assert SESSION_EXPIRE_MINUTES == 180


class TestPasswords:

    def test_hash_is_bcrypt(self):
        hashed = hash_password("secret")

        assert hashed.startswith("$2")
        assert hashed != "secret"
        assert verify_password("secret", hashed)
        assert not verify_password("wrong", hashed)

    def test_malformed_hash_never_matches(self):
        assert not verify_password("secret", "plaintext")


class TestIdentityService:

    def test_register_defaults_to_student(self, identities, store):
        identity = identities.register_user("ayesha", PASSWORD)

        assert identity.role == Role.STUDENT
        stored = store.find_user_by_username("ayesha")
        assert stored.password_hash != PASSWORD

    def test_register_with_role(self, identities):
        assert identities.register_user("root", PASSWORD, "admin").role == Role.ADMIN

    @pytest.mark.parametrize("username, password", [("", PASSWORD), ("ayesha", ""), (None, None)])
    def test_register_requires_fields(self, identities, username, password):
        with pytest.raises(ValidationError):
            identities.register_user(username, password)

    def test_register_rejects_unknown_role(self, identities):
        with pytest.raises(ValidationError):
            identities.register_user("ayesha", PASSWORD, "librarian")

    def test_username_taken(self, identities, student):
        with pytest.raises(UsernameTaken):
            identities.register_user(student.username, "another-password")

    def test_authenticate(self, identities, student):
        assert identities.authenticate("ayesha", PASSWORD) == student

    def test_authenticate_failures_are_indistinguishable(self, identities, student):
        assert identities.authenticate("ayesha", "wrong") is None
        assert identities.authenticate("nobody", PASSWORD) is None
        assert identities.authenticate(None, None) is None

    def test_register_rejects_password_over_72_bytes(self, identities, store):
        with pytest.raises(ValidationError) as exc_info:
            identities.register_user("longpw", "x" * 80)

        assert exc_info.value.detail == "Password too long"
        assert store.find_user_by_username("longpw") is None

    def test_register_accepts_72_byte_password(self, identities):
        password = "x" * 72

        identities.register_user("longpw", password)

        assert identities.authenticate("longpw", password) is not None

    def test_multibyte_password_counts_bytes(self, identities):
        # 36 characters, 108 bytes
        with pytest.raises(ValidationError):
            identities.register_user("longpw", "密" * 36)

    def test_authenticate_overlong_password_fails_quietly(self, identities, student, caplog):
        assert identities.authenticate("ayesha", "x" * 80) is None
        assert "not a valid bcrypt hash" not in caplog.text
