"""
User administration and session lifecycle tests (service layer).
"""

from datetime import timedelta

import pytest

from carparts.errors import ConflictError, InvalidStateError, PermissionDeniedError, ValidationError
from carparts.models import SessionToken, User
from carparts.roles import ADMIN, GENERAL, SUPERADMIN
from carparts.services import auth_service, session_service, user_service
from carparts.services.auth_service import PasswordValidationError
from carparts.time_utils import utcnow
from carparts.validation import LineItemInput


class TestRegistration:

    def test_public_registration_yields_general(self, db_session):
        user = user_service.register_user("newbie", "Password123!")
        assert user.role == GENERAL
        assert user.is_active is True
        assert user.password_hash != "Password123!"

    def test_public_registration_cannot_request_admin(self, db_session):
        with pytest.raises(PermissionDeniedError):
            user_service.register_user("sneaky", "Password123!", role=ADMIN)

    def test_admin_creates_admin_but_not_superadmin(self, db_session, admin_user):
        created = user_service.register_user("deputy", "Password123!", role=ADMIN, actor=admin_user)
        assert created.role == ADMIN

        with pytest.raises(PermissionDeniedError):
            user_service.register_user("boss", "Password123!", role=SUPERADMIN, actor=admin_user)

    def test_general_user_cannot_create_accounts(self, db_session, general_user):
        with pytest.raises(PermissionDeniedError):
            user_service.register_user("friend", "Password123!", actor=general_user)

    def test_duplicate_username(self, db_session, general_user):
        with pytest.raises(ConflictError):
            user_service.register_user(general_user.username, "Password123!")

    def test_weak_password(self, db_session):
        with pytest.raises(PasswordValidationError):
            user_service.register_user("shorty", "short")

    def test_username_required(self, db_session):
        with pytest.raises(ValidationError):
            user_service.register_user("   ", "Password123!")


class TestAuthenticate:

    def test_valid_credentials(self, db_session, general_user):
        user = auth_service.authenticate(general_user.username, "Password123!")
        assert user is not None
        assert user.last_login_at is not None

    def test_wrong_password(self, db_session, general_user):
        assert auth_service.authenticate(general_user.username, "wrong-password") is None

    def test_inactive_user(self, db_session, make_user):
        user = make_user("ghost", is_active=False)
        assert auth_service.authenticate(user.username, "Password123!") is None

    def test_malformed_hash_never_matches(self):
        assert auth_service.verify_password("Password123!", "not-a-bcrypt-hash") is False


class TestSessions:

    def test_only_hash_is_stored(self, db_session, general_user):
        record, token = session_service.create_session(general_user.id)
        assert record.token_hash == session_service.hash_token(token)
        assert record.token_hash != token
        assert session_service.validate_session(token).id == general_user.id

    def test_idle_session_is_revoked(self, db_session, general_user):
        record, token = session_service.create_session(general_user.id)
        record.last_used_at = utcnow() - timedelta(hours=3)
        db_session.commit()

        assert session_service.validate_session(token) is None
        db_session.expire_all()
        assert db_session.get(SessionToken, record.id).is_revoked is True

    def test_expired_session(self, db_session, general_user):
        record, token = session_service.create_session(general_user.id)
        record.expires_at = utcnow() - timedelta(minutes=1)
        db_session.commit()
        assert session_service.validate_session(token) is None

    def test_logout_revokes(self, db_session, general_user):
        _, token = session_service.create_session(general_user.id)
        assert session_service.revoke_session(token) is True
        assert session_service.validate_session(token) is None
        assert session_service.revoke_session(token) is False

    def test_cleanup_removes_old_revoked_sessions(self, db_session, general_user):
        record, token = session_service.create_session(general_user.id)
        session_service.revoke_session(token)
        record.created_at = utcnow() - timedelta(days=31)
        db_session.commit()

        assert session_service.cleanup_expired_sessions() == 1
        assert db_session.query(SessionToken).count() == 0


class TestUserAdministration:

    def test_admin_does_not_see_superadmins(self, db_session, admin_user, superadmin_user, general_user):
        visible = {u.username for u in user_service.list_users(actor=admin_user)}
        assert superadmin_user.username not in visible
        assert {admin_user.username, general_user.username} <= visible

        everyone = {u.username for u in user_service.list_users(actor=superadmin_user)}
        assert superadmin_user.username in everyone

    def test_change_role(self, db_session, admin_user, general_user):
        updated = user_service.change_role(general_user.id, ADMIN, actor=admin_user)
        assert updated.role == ADMIN

    def test_admin_cannot_touch_superadmin(self, db_session, admin_user, superadmin_user):
        with pytest.raises(PermissionDeniedError):
            user_service.change_role(superadmin_user.id, GENERAL, actor=admin_user)
        with pytest.raises(PermissionDeniedError):
            user_service.deactivate_user(superadmin_user.id, actor=admin_user)

    def test_cannot_change_own_role(self, db_session, superadmin_user):
        with pytest.raises(InvalidStateError):
            user_service.change_role(superadmin_user.id, GENERAL, actor=superadmin_user)

    def test_deactivate_revokes_sessions(self, db_session, admin_user, general_user):
        _, token = session_service.create_session(general_user.id)

        user_service.deactivate_user(general_user.id, actor=admin_user)

        assert session_service.validate_session(token) is None
        db_session.expire_all()
        assert db_session.get(User, general_user.id).is_active is False
        with pytest.raises(InvalidStateError):
            user_service.deactivate_user(general_user.id, actor=admin_user)

        user_service.reactivate_user(general_user.id, actor=admin_user)
        assert auth_service.authenticate(general_user.username, "Password123!") is not None

    def test_cannot_deactivate_self(self, db_session, admin_user):
        with pytest.raises(InvalidStateError):
            user_service.deactivate_user(admin_user.id, actor=admin_user)

    def test_delete_user_without_activity(self, db_session, admin_user, make_user):
        idle = make_user("idle")
        session_service.create_session(idle.id)

        user_service.delete_user(idle.id, actor=admin_user)

        db_session.expire_all()
        assert db_session.get(User, idle.id) is None
        assert db_session.query(SessionToken).filter_by(user_id=idle.id).count() == 0

    def test_delete_user_with_activity_refused(self, db_session, admin_user, general_user, make_part):
        from carparts.services import sales_service

        part = make_part()
        sales_service.sell(
            [LineItemInput(part_id=part.id, quantity=1)],
            customer_name="Jane",
            actor=general_user,
        )

        with pytest.raises(InvalidStateError) as exc:
            user_service.delete_user(general_user.id, actor=admin_user)
        assert exc.value.details["activity"]["bills"] == 1
        db_session.expire_all()
        assert db_session.get(User, general_user.id) is not None
