from __future__ import annotations

from datetime import timedelta

import jwt
import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from quiz_league.core.errors import (
    AlreadyRegistered,
    Forbidden,
    NotFound,
    Unauthenticated,
    ValidationError,
)
from quiz_league.core.services.identity import (
    hash_password,
    map_token,
    map_user,
    normalize_phone,
    verify_password,
    verify_token,
)
from quiz_league.core.storage.tables import LoginAuditRow


def test_password_hash_is_salted_and_verifiable():
    first = hash_password("secret1")
    second = hash_password("secret1")

    assert first != second
    assert "secret1" not in first
    assert verify_password("secret1", first)
    assert not verify_password("secret2", first)
    assert not verify_password("secret1", None)
    assert not verify_password("secret1", "not-a-hash")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("555-0001", "5550001"), ("+47 (555) 000.12", "+4755500012"), ("5550001", "5550001")],
)
def test_phone_numbers_are_normalized(raw, expected):
    assert normalize_phone(raw) == expected


@pytest.mark.parametrize("raw", ["", "12345", "phone", "+1234567890123456"])
def test_invalid_phone_numbers_are_rejected(raw):
    with pytest.raises(ValidationError):
        normalize_phone(raw)


def test_issued_token_resolves_to_user(manager, settings, clock, register_player):
    issued = register_player()

    assert verify_token(issued.token, settings, clock) == issued.user.id
    assert manager.authenticate(issued.token) == issued.user.id
    assert issued.expires_at - issued.issued_at == timedelta(hours=24)


def test_token_carries_expected_claims(settings, register_player):
    issued = register_player()

    claims = jwt.decode(
        issued.token,
        settings.secret_key,
        algorithms=["HS256"],
        options={"verify_exp": False, "verify_iat": False},
    )

    assert claims["userId"] == issued.user.id
    assert claims["exp"] - claims["iat"] == 24 * 3600


def test_token_expires_after_a_day(manager, clock, register_player):
    issued = register_player()

    clock.advance(24 * 3600 - 1)
    assert manager.authenticate(issued.token) == issued.user.id

    clock.advance(1)
    with pytest.raises(Unauthenticated):
        manager.authenticate(issued.token)


def test_tampered_or_foreign_tokens_are_rejected(manager, settings, clock, register_player):
    issued = register_player()
    header, payload, signature = issued.token.split(".")
    tampered = ".".join([header, payload, signature[::-1]])
    foreign = jwt.encode(
        {"userId": issued.user.id, "iat": 0, "exp": 4102444800},
        "another-secret-key-for-quiz-league-tests",
        algorithm="HS256",
    )

    for token in (tampered, foreign, "", None, "abc.def"):
        assert verify_token(token, settings, clock) is None
    with pytest.raises(Unauthenticated):
        manager.authenticate(tampered)


def test_register_rejects_duplicates(manager):
    manager.register_user("Ada", "555-0001", email="ada@example.com", profile_url="https://example.com/ada")

    with pytest.raises(AlreadyRegistered):
        manager.register_user("Ada Again", "5550001")
    with pytest.raises(AlreadyRegistered):
        manager.register_user("Ada Again", "5550002", email="ADA@example.com")
    with pytest.raises(AlreadyRegistered):
        manager.register_user("Ada Again", "5550003", profile_url="https://example.com/ada")


def test_empty_optional_fields_do_not_collide(manager):
    first = manager.register_user("Ada", "5550001", email="", profile_url="  ")
    second = manager.register_user("Grace", "5550002")

    assert first.email is None and second.email is None
    assert first.profile_url is None


def test_register_requires_name(manager):
    with pytest.raises(ValidationError):
        manager.register_user("   ", "5550001")


def test_password_can_only_be_set_once(manager):
    user = manager.register_user("Ada", "5550001")
    manager.set_password(user.id, "secret1")

    with pytest.raises(ValidationError):
        manager.set_password(user.id, "secret2")


def test_password_minimum_length(manager):
    user = manager.register_user("Ada", "5550001")

    with pytest.raises(ValidationError):
        manager.set_password(user.id, "short")


def test_set_password_for_unknown_user(manager):
    with pytest.raises(NotFound):
        manager.set_password("missing", "secret1")


def test_login_issues_token_and_records_audit(manager, session_factory, register_player):
    register_player(phone="5550001", password="secret1")

    issued = manager.login("555 0001", "secret1")

    assert manager.authenticate(issued.token) == issued.user.id
    with session_factory() as db:
        audit_rows = db.scalar(select(func.count()).select_from(LoginAuditRow))
    # One row for the initial password, one for the login.
    assert audit_rows == 2


@pytest.mark.parametrize(("phone", "password"), [("5550001", "wrong-pass"), ("5550009", "secret1"), ("abc", "x")])
def test_login_failures_are_unauthenticated(manager, register_player, phone, password):
    register_player(phone="5550001", password="secret1")

    with pytest.raises(Unauthenticated):
        manager.login(phone, password)


def test_login_without_password_set_fails(manager):
    manager.register_user("Ada", "5550001")

    with pytest.raises(Unauthenticated):
        manager.login("5550001", "anything")


def test_failed_audit_write_does_not_block_login(manager, register_player, monkeypatch):
    register_player(phone="5550001", password="secret1")

    def broken_audit(self, issued):
        raise OperationalError("INSERT INTO login_audit", {}, Exception("disk full"))

    monkeypatch.setattr("quiz_league.core.services.identity.IdentityService.record_login", broken_audit)

    issued = manager.login("5550001", "secret1")

    assert manager.authenticate(issued.token) == issued.user.id


def test_admin_bootstrap_is_idempotent(manager):
    first = manager.bootstrap_admin()
    second = manager.bootstrap_admin()

    assert first.is_admin
    assert second.id == first.id
    assert len(manager.list_users()) == 1


def test_require_admin(manager, admin_token, register_player):
    player = register_player()

    assert manager.require_admin(admin_token).is_admin
    with pytest.raises(Forbidden):
        manager.require_admin(player.token)
    with pytest.raises(Unauthenticated):
        manager.require_admin(None)


def test_admin_resets_player_password(manager, admin_token, register_player):
    player = register_player(phone="5550001", password="secret1")

    manager.reset_password(player.user.id, "fresh-secret")

    with pytest.raises(Unauthenticated):
        manager.login("5550001", "secret1")
    assert manager.login("5550001", "fresh-secret").user.id == player.user.id


def test_admin_accounts_are_protected(manager, admin_token):
    admin = manager.get_current_user(admin_token)

    with pytest.raises(Forbidden):
        manager.reset_password(admin.id, "new-password")
    with pytest.raises(Forbidden):
        manager.delete_user(admin.id)


def test_delete_user_removes_attempts(manager, make_quiz, register_player):
    quiz = make_quiz()
    player = register_player()
    manager.start_quiz(player.token, quiz.id)
    manager.submit_result(player.user.id, player.user.id, quiz.id, [])

    manager.delete_user(player.user.id)

    assert manager.list_results() == []
    assert manager.list_sessions() == []
    with pytest.raises(NotFound):
        manager.get_current_user(player.token)


def test_user_payloads_never_include_password_hash(register_player):
    issued = register_player()

    assert "passwordHash" not in map_user(issued.user)
    assert "password_hash" not in map_token(issued)["user"]
    assert map_token(issued)["user"]["passwordSet"] is True


def test_registration_race_is_reported_as_already_registered(manager, monkeypatch):
    manager.register_user("Ada", "5550001")
    # Simulate a concurrent registration that committed after the duplicate checks ran.
    monkeypatch.setattr(
        "quiz_league.core.services.identity.IdentityService._exists",
        lambda self, condition: False,
    )

    with pytest.raises(AlreadyRegistered):
        manager.register_user("Ada Twin", "555-0001")

    assert [user.name for user in manager.list_users() if user.phone == "5550001"] == ["Ada"]
