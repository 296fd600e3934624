"""
End-to-end tests for the /api/v1/auth endpoints.

Run with: pytest tests/test_auth_api.py -v
"""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy import select, update

from healthvault.models.audit_log import AuditAction, AuditLog, AuditStatus
from healthvault.models.profile import Patient
from healthvault.services.auth_service import FORGOT_PASSWORD_MESSAGE
from healthvault.services.email_service import EmailService, get_email_service

from conftest import API, CHROME_UA, PASSWORD, login, post_with_refresh_cookie


def bearer(access_token: str) -> dict:
    return {"Authorization": f"Bearer {access_token}"}


async def failed_login_entries(session_factory, email: str):
    async with session_factory() as db:
        result = await db.execute(
            select(AuditLog).where(AuditLog.email == email, AuditLog.action == AuditAction.FAILED_LOGIN)
        )
        return list(result.scalars().all())


# ============================================
# Service health
# ============================================

class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

        response = await client.get("/api/v1/health")
        assert response.status_code == 200


# ============================================
# OTP registration
# ============================================

class TestOtpRegistration:
    """send-otp followed by verify-otp."""

    @pytest.mark.asyncio
    async def test_registers_verified_patient_and_signs_in(self, client, mailer, session_factory):
        response = await client.post(f"{API}/send-otp", json={"email": "Jane@Example.com"})
        assert response.status_code == 200
        assert response.json() == {"message": "OTP sent successfully to your email"}
        otp = mailer.otps["jane@example.com"]

        response = await client.post(f"{API}/verify-otp", json={
            "email": "jane@example.com",
            "otp": otp,
            "full_name": "Jane Doe",
            "password": PASSWORD,
            "role": "patient",
            "dob": "1990-05-01",
            "gender": "Female",
            "bloodGroup": "O+",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["accessToken"]
        assert body["user"] == {
            "email": "jane@example.com",
            "full_name": "Jane Doe",
            "email_verified": True,
            "role": "patient",
        }
        assert response.cookies.get("refreshToken")
        set_cookie = response.headers["set-cookie"].lower()
        assert "httponly" in set_cookie
        assert "samesite=strict" in set_cookie

        async with session_factory() as db:
            patient = (await db.execute(select(Patient))).scalar_one()
        assert patient.email == "jane@example.com"
        assert patient.gender == "female"
        assert patient.blood_group == "O+"
        assert patient.date_of_birth == date(1990, 5, 1)

    @pytest.mark.asyncio
    async def test_otp_is_single_use(self, client, mailer):
        await client.post(f"{API}/send-otp", json={"email": "jane@example.com"})
        payload = {
            "email": "jane@example.com",
            "otp": mailer.otps["jane@example.com"],
            "full_name": "Jane Doe",
            "password": PASSWORD,
        }
        assert (await client.post(f"{API}/verify-otp", json=payload)).status_code == 200

        response = await client.post(f"{API}/verify-otp", json=payload)

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_or_expired_code"

    @pytest.mark.asyncio
    async def test_wrong_otp(self, client, mailer):
        await client.post(f"{API}/send-otp", json={"email": "jane@example.com"})
        wrong = "000000" if mailer.otps["jane@example.com"] != "000000" else "111111"

        response = await client.post(f"{API}/verify-otp", json={
            "email": "jane@example.com",
            "otp": wrong,
            "full_name": "Jane Doe",
            "password": PASSWORD,
        })

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_or_expired_code"

    @pytest.mark.asyncio
    async def test_existing_email_is_duplicate(self, client, mailer, create_user):
        await create_user(email="jane@example.com")
        await client.post(f"{API}/send-otp", json={"email": "jane@example.com"})

        response = await client.post(f"{API}/verify-otp", json={
            "email": "jane@example.com",
            "otp": mailer.otps["jane@example.com"],
            "full_name": "Jane Doe",
            "password": PASSWORD,
        })

        assert response.status_code == 409
        assert response.json()["error"] == "duplicate_user"

    @pytest.mark.asyncio
    async def test_admin_role_rejected(self, client):
        response = await client.post(f"{API}/verify-otp", json={
            "email": "jane@example.com",
            "otp": "123456",
            "full_name": "Jane Doe",
            "password": PASSWORD,
            "role": "admin",
        })

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_delivery_failure(self, client, mailer):
        mailer.fail = True

        response = await client.post(f"{API}/send-otp", json={"email": "jane@example.com"})

        assert response.status_code == 500
        assert response.json()["error"] == "email_delivery_failed"

    @pytest.mark.asyncio
    async def test_smtp_error_on_welcome_email_still_registers(self, app, client, mailer):
        await client.post(f"{API}/send-otp", json={"email": "jane@example.com"})
        smtp_mailer = EmailService()
        smtp_mailer.smtp_host = "smtp.example.com"
        smtp_mailer.smtp_user = "mailer@example.com"
        smtp_mailer.smtp_password = "pässword"
        smtp_mailer.is_configured = True
        app.dependency_overrides[get_email_service] = lambda: smtp_mailer

        with patch("healthvault.services.email_service.smtplib.SMTP") as smtp:
            smtp.return_value.__enter__.return_value.login.side_effect = UnicodeEncodeError(
                "ascii", "pässword", 1, 2, "ordinal not in range(128)"
            )
            response = await client.post(f"{API}/verify-otp", json={
                "email": "jane@example.com",
                "otp": mailer.otps["jane@example.com"],
                "full_name": "Jane Doe",
                "password": PASSWORD,
            })

        assert response.status_code == 200
        assert response.json()["accessToken"]
        assert response.cookies.get("refreshToken")

    @pytest.mark.asyncio
    async def test_send_otp_rate_limited_per_email(self, client):
        for _ in range(5):
            response = await client.post(f"{API}/send-otp", json={"email": "jane@example.com"})
            assert response.status_code == 200

        response = await client.post(f"{API}/send-otp", json={"email": "jane@example.com"})

        assert response.status_code == 429
        assert response.json()["error"] == "rate_limited"
        assert int(response.headers["retry-after"]) > 0


# ============================================
# Direct registration + email verification
# ============================================

class TestDirectRegistration:
    """register, verify-email and resend-verification."""

    @pytest.mark.asyncio
    async def test_register_verify_then_login(self, client, mailer):
        response = await client.post(f"{API}/register", json={
            "email": "Jane@Example.com",
            "password": PASSWORD,
            "full_name": "Jane Doe",
        })
        assert response.status_code == 200
        assert response.json()["email"] == "jane@example.com"

        response = await login(client)
        assert response.status_code == 403
        assert response.json()["error"] == "email_not_verified"
        assert response.json()["email_verified"] is False

        token = mailer.verification_tokens["jane@example.com"]
        response = await client.post(f"{API}/verify-email", json={"token": token})
        assert response.status_code == 200

        response = await login(client)
        assert response.status_code == 200
        assert response.json()["user"]["email_verified"] is True

    @pytest.mark.asyncio
    async def test_duplicate_registration(self, client):
        body = {"email": "jane@example.com", "password": PASSWORD, "full_name": "Jane Doe"}
        assert (await client.post(f"{API}/register", json=body)).status_code == 200

        response = await client.post(f"{API}/register", json={**body, "email": "JANE@example.com"})

        assert response.status_code == 409
        assert response.json()["error"] == "duplicate_user"

    @pytest.mark.asyncio
    async def test_registration_survives_failed_email(self, client, mailer):
        mailer.fail = True

        response = await client.post(f"{API}/register", json={
            "email": "jane@example.com",
            "password": PASSWORD,
            "full_name": "Jane Doe",
        })

        assert response.status_code == 200
        assert "could not be sent" in response.json()["message"]
        assert "jane@example.com" in mailer.verification_tokens

    @pytest.mark.asyncio
    async def test_weak_password_rejected(self, client):
        response = await client.post(f"{API}/register", json={
            "email": "jane@example.com",
            "password": "weakpass",
            "full_name": "Jane Doe",
        })

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["detail"].startswith("Password must contain")
        assert body["errors"] == [{"field": "password", "message": body["detail"]}]

    @pytest.mark.asyncio
    async def test_verification_token_single_use(self, client, mailer):
        await client.post(f"{API}/register", json={
            "email": "jane@example.com",
            "password": PASSWORD,
            "full_name": "Jane Doe",
        })
        token = mailer.verification_tokens["jane@example.com"]
        assert (await client.post(f"{API}/verify-email", json={"token": token})).status_code == 200

        response = await client.post(f"{API}/verify-email", json={"token": token})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_or_expired_code"

    @pytest.mark.asyncio
    async def test_resend_replaces_previous_link(self, client, mailer):
        await client.post(f"{API}/register", json={
            "email": "jane@example.com",
            "password": PASSWORD,
            "full_name": "Jane Doe",
        })
        first = mailer.verification_tokens["jane@example.com"]

        response = await client.post(f"{API}/resend-verification", json={"email": "jane@example.com"})
        assert response.status_code == 200
        second = mailer.verification_tokens["jane@example.com"]

        assert (await client.post(f"{API}/verify-email", json={"token": first})).status_code == 400
        assert (await client.post(f"{API}/verify-email", json={"token": second})).status_code == 200

    @pytest.mark.asyncio
    async def test_resend_for_verified_or_unknown_email(self, client, create_user):
        await create_user(email="jane@example.com", email_verified=True)

        response = await client.post(f"{API}/resend-verification", json={"email": "jane@example.com"})
        assert response.status_code == 400
        assert response.json()["error"] == "already_verified"

        response = await client.post(f"{API}/resend-verification", json={"email": "nobody@example.com"})
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


# ============================================
# Login + lockout
# ============================================

class TestLogin:
    """Password login and the failed-attempt lockout."""

    @pytest.mark.asyncio
    async def test_password_with_surrounding_spaces_logs_in_as_typed(self, client, mailer):
        """The password is trimmed the same way when it is set and when it is checked."""
        await client.post(f"{API}/register", json={
            "email": "jane@example.com",
            "password": " Str0ng!Pass ",
            "full_name": "Jane Doe",
        })
        token = mailer.verification_tokens["jane@example.com"]
        assert (await client.post(f"{API}/verify-email", json={"token": token})).status_code == 200

        response = await login(client, password=" Str0ng!Pass ")

        assert response.status_code == 200
        assert (await login(client, password="Str0ng!Pass")).status_code == 200

    @pytest.mark.asyncio
    async def test_unknown_user_and_wrong_password_look_the_same(self, client, create_user, session_factory):
        await create_user()

        unknown = await login(client, email="nobody@example.com")
        wrong = await login(client, password="Wr0ng!Pass")

        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()
        assert len(await failed_login_entries(session_factory, "nobody@example.com")) == 1
        assert len(await failed_login_entries(session_factory, "jane@example.com")) == 1

    @pytest.mark.asyncio
    async def test_lockout_after_five_failures_then_expires(self, client, create_user, session_factory):
        await create_user()
        for _ in range(5):
            response = await login(client, password="Wr0ng!Pass")
            assert response.status_code == 401

        # Even the correct password is refused while locked
        response = await login(client)
        assert response.status_code == 429
        assert response.json()["error"] == "too_many_attempts"
        assert response.headers["retry-after"] == str(15 * 60)

        async with session_factory() as db:
            await db.execute(
                update(AuditLog)
                .values(timestamp=datetime.now(timezone.utc) - timedelta(minutes=16))
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        response = await login(client)
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_lockout_hits_do_not_extend_lockout(self, client, create_user, session_factory):
        await create_user()
        for _ in range(5):
            await login(client, password="Wr0ng!Pass")
        for _ in range(3):
            assert (await login(client)).status_code == 429

        assert len(await failed_login_entries(session_factory, "jane@example.com")) == 5

    @pytest.mark.asyncio
    async def test_login_sets_cookie_and_records_device(self, client, create_user):
        await create_user()

        response = await login(client, headers={"User-Agent": CHROME_UA})

        assert response.status_code == 200
        assert response.json()["user"]["email"] == "jane@example.com"
        assert response.cookies.get("refreshToken")

        sessions = await client.get(f"{API}/sessions", headers=bearer(response.json()["accessToken"]))
        assert sessions.json()["sessions"][0]["device_info"] == "Desktop - Windows - Chrome"


# ============================================
# Refresh + logout
# ============================================

class TestRefreshAndLogout:
    """Refresh-token rotation and logout."""

    @pytest.mark.asyncio
    async def test_refresh_without_cookie(self, client):
        response = await client.post(f"{API}/refresh")

        assert response.status_code == 401
        assert response.json()["error"] == "no_token"

    @pytest.mark.asyncio
    async def test_refresh_rotates_and_rejects_replay(self, client, create_user):
        await create_user()
        first = (await login(client)).cookies.get("refreshToken")

        response = await post_with_refresh_cookie(client, f"{API}/refresh", first)
        assert response.status_code == 200
        assert response.json()["accessToken"]
        second = response.cookies.get("refreshToken")
        assert second and second != first

        replay = await post_with_refresh_cookie(client, f"{API}/refresh", first)
        assert replay.status_code == 401
        assert replay.json()["error"] == "invalid_token"

        response = await post_with_refresh_cookie(client, f"{API}/refresh", second)
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_access_token_from_refresh_works(self, client, create_user):
        await create_user()
        refresh = (await login(client)).cookies.get("refreshToken")

        response = await post_with_refresh_cookie(client, f"{API}/refresh", refresh)
        profile = await client.get(f"{API}/profile", headers=bearer(response.json()["accessToken"]))

        assert profile.status_code == 200

    @pytest.mark.asyncio
    async def test_logout_revokes_and_is_idempotent(self, client, create_user, session_factory):
        await create_user()
        refresh = (await login(client)).cookies.get("refreshToken")

        first = await post_with_refresh_cookie(client, f"{API}/logout", refresh)
        second = await post_with_refresh_cookie(client, f"{API}/logout", refresh)
        client.cookies.clear()
        third = await client.post(f"{API}/logout")

        for response in (first, second, third):
            assert response.status_code == 200
            assert response.json() == {"message": "Logged out successfully"}

        response = await post_with_refresh_cookie(client, f"{API}/refresh", refresh)
        assert response.status_code == 401

        async with session_factory() as db:
            result = await db.execute(select(AuditLog).where(AuditLog.action == AuditAction.LOGOUT))
            assert {e.status for e in result.scalars().all()} == {AuditStatus.SUCCESS}


# ============================================
# Password reset
# ============================================

class TestPasswordReset:
    """forgot-password and reset-password."""

    @pytest.mark.asyncio
    async def test_same_message_for_known_and_unknown_email(self, client, create_user, mailer):
        await create_user()

        known = await client.post(f"{API}/forgot-password", json={"email": "jane@example.com"})
        unknown = await client.post(f"{API}/forgot-password", json={"email": "nobody@example.com"})

        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json() == {"message": FORGOT_PASSWORD_MESSAGE}
        assert list(mailer.reset_tokens) == ["jane@example.com"]

    @pytest.mark.asyncio
    async def test_delivery_failure_for_known_email(self, client, create_user, mailer):
        await create_user()
        mailer.fail = True

        known = await client.post(f"{API}/forgot-password", json={"email": "jane@example.com"})
        unknown = await client.post(f"{API}/forgot-password", json={"email": "nobody@example.com"})

        assert known.status_code == 500
        assert known.json()["error"] == "email_delivery_failed"
        assert unknown.status_code == 200

    @pytest.mark.asyncio
    async def test_reset_changes_password_and_revokes_sessions(self, client, create_user, mailer):
        await create_user()
        old_refresh = (await login(client)).cookies.get("refreshToken")
        await client.post(f"{API}/forgot-password", json={"email": "jane@example.com"})
        token = mailer.reset_tokens["jane@example.com"]

        response = await client.post(f"{API}/reset-password", json={"token": token, "newPassword": "N3w!Password"})
        assert response.status_code == 200
        assert ("password_changed", "jane@example.com") in mailer.sent

        assert (await post_with_refresh_cookie(client, f"{API}/refresh", old_refresh)).status_code == 401
        assert (await login(client)).status_code == 401
        assert (await login(client, password="N3w!Password")).status_code == 200

        replay = await client.post(f"{API}/reset-password", json={"token": token, "newPassword": "An0ther!Pass"})
        assert replay.status_code == 400
        assert replay.json()["error"] == "invalid_or_expired_code"

    @pytest.mark.asyncio
    async def test_forgot_password_rate_limited_per_email(self, client):
        for _ in range(3):
            assert (await client.post(f"{API}/forgot-password", json={"email": "jane@example.com"})).status_code == 200

        response = await client.post(f"{API}/forgot-password", json={"email": "jane@example.com"})

        assert response.status_code == 429
        assert response.json()["error"] == "rate_limited"


# ============================================
# Current user views
# ============================================

class TestAccountViews:
    """profile, activity, sessions and revoke-session."""

    @pytest.mark.asyncio
    async def test_profile_requires_valid_access_token(self, client, create_user):
        await create_user()
        signed_in = await login(client)

        response = await client.get(f"{API}/profile", headers=bearer(signed_in.json()["accessToken"]))
        assert response.status_code == 200
        user = response.json()["user"]
        assert user["email"] == "jane@example.com"
        assert "hashed_password" not in user

        missing = await client.get(f"{API}/profile")
        assert missing.status_code == 401
        assert missing.json()["error"] == "invalid_token"

        # A refresh token is not an access token
        refresh = signed_in.cookies.get("refreshToken")
        confused = await client.get(f"{API}/profile", headers=bearer(refresh))
        assert confused.status_code == 401

    @pytest.mark.asyncio
    async def test_activity_lists_own_events(self, client, create_user):
        await create_user()
        await create_user(email="other@example.com")
        await login(client, password="Wr0ng!Pass")
        access_token = (await login(client)).json()["accessToken"]
        await login(client, email="other@example.com")

        response = await client.get(f"{API}/activity", headers=bearer(access_token))

        assert response.status_code == 200
        activities = response.json()["activities"]
        assert [(a["action"], a["status"]) for a in activities] == [
            ("login", "success"),
            ("failed_login", "failure"),
        ]

    @pytest.mark.asyncio
    async def test_list_and_revoke_sessions(self, client, create_user):
        await create_user()
        access_token = (await login(client)).json()["accessToken"]
        await login(client)

        sessions = (await client.get(f"{API}/sessions", headers=bearer(access_token))).json()["sessions"]
        assert len(sessions) == 2

        response = await client.post(
            f"{API}/revoke-session",
            json={"sessionId": sessions[0]["id"]},
            headers=bearer(access_token),
        )
        assert response.status_code == 200
        assert response.json() == {"message": "Session revoked successfully"}

        remaining = (await client.get(f"{API}/sessions", headers=bearer(access_token))).json()["sessions"]
        assert [s["id"] for s in remaining] == [sessions[1]["id"]]

        again = await client.post(
            f"{API}/revoke-session",
            json={"sessionId": sessions[0]["id"]},
            headers=bearer(access_token),
        )
        assert again.status_code == 404

    @pytest.mark.asyncio
    async def test_cannot_revoke_another_users_session(self, client, create_user):
        await create_user()
        await create_user(email="other@example.com")
        owner_token = (await login(client)).json()["accessToken"]
        intruder_token = (await login(client, email="other@example.com")).json()["accessToken"]
        session_id = (await client.get(f"{API}/sessions", headers=bearer(owner_token))).json()["sessions"][0]["id"]

        response = await client.post(
            f"{API}/revoke-session",
            json={"sessionId": session_id},
            headers=bearer(intruder_token),
        )

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"
        owner_sessions = (await client.get(f"{API}/sessions", headers=bearer(owner_token))).json()["sessions"]
        assert len(owner_sessions) == 1
