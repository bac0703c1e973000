"""Passkey ceremonies and management.

The cryptographic checks belong to py_webauthn; here they are replaced with
fakes so the tests exercise challenge handling, persistence and the rules
around credential ownership.
"""
from types import SimpleNamespace

import pytest
from webauthn.helpers import bytes_to_base64url
from webauthn.helpers.exceptions import InvalidAuthenticationResponse, InvalidRegistrationResponse

import authgate.services.webauthn_service as webauthn_module
from authgate.cache.store import MemoryStore
from authgate.models.webauthn import WebAuthnCredential
from authgate.services.webauthn_service import WebAuthnService

RAW_ID = b"credential-one"
CREDENTIAL_ID = bytes_to_base64url(RAW_ID)


def _browser_credential(credential_id=CREDENTIAL_ID):
    return {
        "id": credential_id,
        "rawId": credential_id,
        "type": "public-key",
        "response": {"transports": ["internal", "hybrid"]},
    }


@pytest.fixture
def service():
    return WebAuthnService(MemoryStore(), challenge_ttl=60)


@pytest.fixture
def fake_registration(monkeypatch):
    calls = []

    def verify(**kwargs):
        calls.append(kwargs)
        return SimpleNamespace(
            credential_id=RAW_ID,
            credential_public_key=b"public-key-bytes",
            sign_count=0,
            credential_device_type="multi_device",
            credential_backed_up=True,
        )

    monkeypatch.setattr(webauthn_module, "verify_registration_response", verify)
    return calls


@pytest.fixture
def fake_authentication(monkeypatch):
    calls = []

    def verify(**kwargs):
        calls.append(kwargs)
        return SimpleNamespace(new_sign_count=kwargs["credential_current_sign_count"] + 1, user_verified=True)

    monkeypatch.setattr(webauthn_module, "verify_authentication_response", verify)
    return calls


def _add_credential(db, user, credential_id=CREDENTIAL_ID, **fields):
    record = WebAuthnCredential(
        user_id=user.id,
        credential_id=credential_id,
        public_key=b"public-key-bytes",
        sign_count=fields.pop("sign_count", 3),
        transports=["internal"],
        **fields,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def test_registration_round(db_session, user, service, fake_registration):
    started = service.registration_options(db_session, user)
    assert started["ceremony_id"]
    assert started["options"]["rp"]["id"] == "localhost"
    assert started["options"]["challenge"]

    result = service.verify_registration(
        db_session, user, started["ceremony_id"], _browser_credential(), nickname="Laptop"
    )
    assert result.ok
    record = result.value
    assert record.credential_id == CREDENTIAL_ID
    assert record.nickname == "Laptop"
    assert record.backed_up is True
    assert record.device_type == "multi_device"
    assert record.transports == ["internal", "hybrid"]
    assert fake_registration[0]["expected_challenge"]


def test_registration_challenge_is_single_use(db_session, user, service, fake_registration):
    started = service.registration_options(db_session, user)
    assert service.verify_registration(db_session, user, started["ceremony_id"], _browser_credential()).ok

    replay = service.verify_registration(db_session, user, started["ceremony_id"], _browser_credential())
    assert replay.error_code == "CHALLENGE_EXPIRED"
    assert service.verify_registration(db_session, user, "never-issued", _browser_credential()).error_code == (
        "CHALLENGE_EXPIRED"
    )


def test_registration_challenge_bound_to_user(db_session, make_user, service, fake_registration):
    owner, intruder = make_user(), make_user()
    started = service.registration_options(db_session, owner)
    result = service.verify_registration(db_session, intruder, started["ceremony_id"], _browser_credential())
    assert result.error_code == "FORBIDDEN"


def test_registration_rejects_duplicates(db_session, user, service, fake_registration):
    _add_credential(db_session, user)
    started = service.registration_options(db_session, user)
    assert [c["id"] for c in started["options"]["excludeCredentials"]] == [CREDENTIAL_ID]

    result = service.verify_registration(db_session, user, started["ceremony_id"], _browser_credential())
    assert result.error_code == "CONFLICT"


def test_registration_verification_failure(db_session, user, service, monkeypatch):
    def reject(**kwargs):
        raise InvalidRegistrationResponse("bad attestation")

    monkeypatch.setattr(webauthn_module, "verify_registration_response", reject)
    started = service.registration_options(db_session, user)
    result = service.verify_registration(db_session, user, started["ceremony_id"], _browser_credential())
    assert result.error_code == "VALIDATION_ERROR"
    assert db_session.query(WebAuthnCredential).count() == 0


def test_authentication_round(db_session, user, service, fake_authentication, clock):
    _add_credential(db_session, user, sign_count=3)
    started = service.authentication_options(db_session, username=user.username)
    assert started.ok
    assert [c["id"] for c in started.value["options"]["allowCredentials"]] == [CREDENTIAL_ID]

    result = service.verify_authentication(db_session, started.value["ceremony_id"], _browser_credential())
    assert result.ok
    stored = result.value
    assert stored.user_id == user.id
    assert stored.sign_count == 4
    assert stored.last_used_at == clock.now
    assert fake_authentication[0]["credential_public_key"] == b"public-key-bytes"

    replay = service.verify_authentication(db_session, started.value["ceremony_id"], _browser_credential())
    assert replay.error_code == "CHALLENGE_EXPIRED"


def test_discoverable_authentication(db_session, user, service, fake_authentication):
    _add_credential(db_session, user)
    started = service.authentication_options(db_session)
    assert started.value["options"].get("allowCredentials", []) == []
    assert service.verify_authentication(db_session, started.value["ceremony_id"], _browser_credential()).ok


def test_authentication_options_unknown_user(db_session, user, service):
    assert service.authentication_options(db_session, username="nobody_here").error_code == "NOT_FOUND"
    assert service.authentication_options(db_session, username=user.username).error_code == "NOT_FOUND"


def test_authentication_rejections(db_session, make_user, service, monkeypatch):
    owner, other = make_user(), make_user()
    _add_credential(db_session, owner)
    _add_credential(db_session, other, credential_id=bytes_to_base64url(b"credential-two"))

    unknown = service.authentication_options(db_session)
    result = service.verify_authentication(
        db_session, unknown.value["ceremony_id"], _browser_credential(bytes_to_base64url(b"missing"))
    )
    assert result.error_code == "UNAUTHORIZED"

    # Challenge issued for one user, answered with another user's passkey
    scoped = service.authentication_options(db_session, username=owner.username)
    result = service.verify_authentication(
        db_session, scoped.value["ceremony_id"], _browser_credential(bytes_to_base64url(b"credential-two"))
    )
    assert result.error_code == "FORBIDDEN"

    def reject(**kwargs):
        raise InvalidAuthenticationResponse("bad signature")

    monkeypatch.setattr(webauthn_module, "verify_authentication_response", reject)
    started = service.authentication_options(db_session, username=owner.username)
    result = service.verify_authentication(db_session, started.value["ceremony_id"], _browser_credential())
    assert result.error_code == "UNAUTHORIZED"


def test_rename_and_list(db_session, make_user, service):
    owner, other = make_user(), make_user()
    record = _add_credential(db_session, owner)
    assert service.rename_credential(db_session, other.id, record.id, "Stolen").error_code == "NOT_FOUND"
    assert service.rename_credential(db_session, owner.id, record.id, "Phone").value.nickname == "Phone"
    assert [c.id for c in service.list_credentials(db_session, owner.id)] == [record.id]
    assert service.list_credentials(db_session, other.id) == []


def test_last_authentication_method_is_kept(db_session, make_user, service):
    passkey_only = make_user(password=None)
    record = _add_credential(db_session, passkey_only)
    result = service.delete_credential(db_session, passkey_only, record.id)
    assert result.error_code == "LAST_AUTH_METHOD"
    assert result.status_code == 400

    second = _add_credential(db_session, passkey_only, credential_id=bytes_to_base64url(b"credential-two"))
    assert service.delete_credential(db_session, passkey_only, record.id).ok
    assert service.delete_credential(db_session, passkey_only, second.id).error_code == "LAST_AUTH_METHOD"


def test_password_or_google_allows_removing_last_passkey(db_session, make_user, service):
    with_password = make_user()
    record = _add_credential(db_session, with_password)
    assert service.delete_credential(db_session, with_password, record.id).ok

    google_only = make_user(password=None, google_id="google-sub-1", oauth_provider="google")
    record = _add_credential(db_session, google_only, credential_id=bytes_to_base64url(b"credential-g"))
    assert service.delete_credential(db_session, google_only, record.id).ok


async def test_passkey_sign_in_and_removal_over_http(async_client, db_session, make_user, fake_authentication):
    passkey_only = make_user(password=None)
    record = _add_credential(db_session, passkey_only)

    r = await async_client.post("/auth/passkey/authenticate/options", json={"username": passkey_only.username})
    assert r.status_code == 200
    ceremony_id = r.json()["data"]["ceremony_id"]

    r = await async_client.post(
        "/auth/passkey/authenticate/verify",
        json={"ceremony_id": ceremony_id, "credential": _browser_credential()},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["data"]["user"]["id"] == passkey_only.id
    assert async_client.cookies.get("session-token")

    headers = {
        "Authorization": f"Bearer {body['data']['tokens']['access_token']}",
        "X-CSRF-Token": async_client.cookies.get("csrf-token"),
    }
    r = await async_client.get("/auth/passkey", headers=headers)
    assert r.status_code == 200
    assert [p["id"] for p in r.json()["data"]] == [record.id]

    r = await async_client.delete(f"/auth/passkey/{record.id}", headers=headers)
    assert r.status_code == 400
    error = r.json()["error"]
    assert error["code"] == "LAST_AUTH_METHOD"

    r = await async_client.post(
        "/auth/passkey/authenticate/verify",
        json={"ceremony_id": ceremony_id, "credential": _browser_credential()},
    )
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "CHALLENGE_EXPIRED"
