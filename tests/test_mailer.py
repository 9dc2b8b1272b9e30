"""
tests/test_mailer.py -- Email confirmation tokens and GET /api/mailer/confirm-email.

SMTP is not configured in the test environment, so send_email_confirmation()
takes the skip path unless a test installs a mocked FastMail; the link itself is exercised by minting the token the
mail would carry.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

from aiosmtplib import SMTPRecipientsRefused
from conftest import USER_EMAIL, auth_headers

from auth.tokens import bearer, create_access_token, create_email_token


def test_confirm_email_marks_user_confirmed(api_client):
    token = create_email_token(api_client.user)
    resp = api_client.client.get("/api/mailer/confirm-email", params={"token": token})
    assert resp.status_code == 200
    assert resp.json()["message"] == "Email confirmed."
    assert api_client.store.get_user(USER_EMAIL).is_confirmed is True

    # The cached copy was refreshed along with the row.
    resp = api_client.client.get(f"/api/user/{USER_EMAIL}", headers=auth_headers(api_client.user_token))
    assert resp.json()["is_confirmed"] is True


def test_confirm_email_without_token_returns_400(api_client):
    resp = api_client.client.get("/api/mailer/confirm-email")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "missing_token"


def test_confirm_email_with_garbage_token_returns_401(api_client):
    resp = api_client.client.get("/api/mailer/confirm-email", params={"token": "garbage"})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "invalid_token"


def test_access_token_is_not_a_confirmation_token(api_client):
    token = create_access_token(api_client.user)
    resp = api_client.client.get("/api/mailer/confirm-email", params={"token": token})
    assert resp.status_code == 401
    assert api_client.store.get_user(USER_EMAIL).is_confirmed is False


def test_confirmation_token_is_not_an_access_token(api_client):
    token = bearer(create_email_token(api_client.user))
    resp = api_client.client.get(f"/api/user/{USER_EMAIL}", headers=auth_headers(token))
    assert resp.status_code == 401


def test_confirmation_token_for_deleted_user_is_rejected(api_client):
    token = create_email_token(api_client.user)
    api_client.store.delete_user(api_client.user.id)
    api_client.cache.delete(api_client.user.id, USER_EMAIL)
    resp = api_client.client.get("/api/mailer/confirm-email", params={"token": token})
    assert resp.status_code == 401


def test_send_is_skipped_without_smtp_settings(api_client):
    mailer = api_client.client.app.state.mailer
    assert mailer.fast_mail is None
    assert asyncio.run(mailer.send_email_confirmation(api_client.user)) is False


def test_confirmation_url_points_at_confirm_route(api_client):
    mailer = api_client.client.app.state.mailer
    assert mailer.confirmation_url("abc").endswith("/api/mailer/confirm-email?token=abc")


def test_register_survives_smtp_refusal(api_client):
    """A send error after the row is written is logged; the account still exists."""
    mailer = api_client.client.app.state.mailer
    mailer.fast_mail = MagicMock()
    mailer.fast_mail.send_message = AsyncMock(side_effect=SMTPRecipientsRefused([]))

    resp = api_client.client.post(
        "/api/auth/register",
        json={"email": "bounce@example.com", "password": "N3w!pass", "password_repeat": "N3w!pass"},
    )
    assert resp.status_code == 201
    mailer.fast_mail.send_message.assert_awaited_once()
    assert api_client.store.get_user("bounce@example.com") is not None


def test_send_returns_false_on_smtp_error(api_client):
    mailer = api_client.client.app.state.mailer
    mailer.fast_mail = MagicMock()
    mailer.fast_mail.send_message = AsyncMock(side_effect=SMTPRecipientsRefused([]))
    assert asyncio.run(mailer.send_email_confirmation(api_client.user)) is False
