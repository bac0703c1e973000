"""Passkey registration and authentication ceremonies.

Each ceremony is two requests. The options call stores the challenge in the
shared store under a one-off ceremony id; the verify call pops it, so a
challenge can be answered at most once and never comes from the client.
"""
from typing import List, Optional
import json
import logging
import secrets

from sqlalchemy.orm import Session
from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    options_to_json,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url
from webauthn.helpers.exceptions import InvalidAuthenticationResponse, InvalidRegistrationResponse
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from authgate.cache.cache_service import kv_store
from authgate.cache.store import KeyValueStore
from authgate.core.config import settings
from authgate.core.constants import ErrorKind
from authgate.models.user import User
from authgate.models.webauthn import WebAuthnCredential
from authgate.utils import helpers
from authgate.utils.result import Err, Ok, Result

logger = logging.getLogger(__name__)

REGISTRATION = "registration"
AUTHENTICATION = "authentication"


def _transports(values: Optional[List[str]]) -> Optional[List[AuthenticatorTransport]]:
    if not values:
        return None
    parsed = []
    for value in values:
        try:
            parsed.append(AuthenticatorTransport(value))
        except ValueError:
            logger.debug(f"Ignoring unknown transport {value!r}")
    return parsed or None


def _descriptor(credential: WebAuthnCredential) -> PublicKeyCredentialDescriptor:
    return PublicKeyCredentialDescriptor(
        id=base64url_to_bytes(credential.credential_id),
        transports=_transports(credential.transports),
    )


def _enum_value(value):
    return getattr(value, "value", value)


class WebAuthnService:
    def __init__(self, store: KeyValueStore, challenge_ttl: Optional[int] = None):
        self.store = store
        self.challenge_ttl = challenge_ttl or settings.WEBAUTHN_CHALLENGE_TTL_SECONDS

    # -- ceremony state -------------------------------------------------

    def _remember(self, kind: str, challenge: bytes, user_id: Optional[int]) -> str:
        ceremony_id = secrets.token_urlsafe(16)
        state = json.dumps({
            "kind": kind,
            "challenge": bytes_to_base64url(challenge),
            "user_id": user_id,
        })
        self.store.set(f"webauthn:{ceremony_id}", state, ttl=self.challenge_ttl)
        return ceremony_id

    def _consume(self, kind: str, ceremony_id: str) -> Optional[dict]:
        if not ceremony_id:
            return None
        raw = self.store.pop(f"webauthn:{ceremony_id}")
        if not raw:
            return None
        state = json.loads(raw)
        if state.get("kind") != kind:
            return None
        return state

    @staticmethod
    def _challenge_expired() -> Err:
        return Err(
            ErrorKind.VALIDATION_ERROR,
            "Passkey challenge expired or already used. Start again.",
            "CHALLENGE_EXPIRED",
        )

    # -- registration ---------------------------------------------------

    def registration_options(self, db: Session, user: User) -> dict:
        existing = db.query(WebAuthnCredential).filter(WebAuthnCredential.user_id == user.id).all()
        options = generate_registration_options(
            rp_id=settings.WEBAUTHN_RP_ID,
            rp_name=settings.WEBAUTHN_RP_NAME,
            user_id=str(user.id).encode("utf-8"),
            user_name=user.username,
            user_display_name=user.username,
            attestation=AttestationConveyancePreference.NONE,
            exclude_credentials=[_descriptor(c) for c in existing],
            authenticator_selection=AuthenticatorSelectionCriteria(
                resident_key=ResidentKeyRequirement.PREFERRED,
                user_verification=UserVerificationRequirement.PREFERRED,
            ),
            timeout=self.challenge_ttl * 1000,
        )
        ceremony_id = self._remember(REGISTRATION, options.challenge, user.id)
        return {"ceremony_id": ceremony_id, "options": json.loads(options_to_json(options))}

    def verify_registration(
        self,
        db: Session,
        user: User,
        ceremony_id: str,
        credential: dict,
        nickname: Optional[str] = None,
    ) -> Result:
        state = self._consume(REGISTRATION, ceremony_id)
        if not state:
            return self._challenge_expired()
        if state.get("user_id") != user.id:
            return Err(ErrorKind.FORBIDDEN, "Passkey challenge belongs to another user")

        try:
            verification = verify_registration_response(
                credential=credential,
                expected_challenge=base64url_to_bytes(state["challenge"]),
                expected_origin=settings.WEBAUTHN_ORIGIN,
                expected_rp_id=settings.WEBAUTHN_RP_ID,
            )
        except InvalidRegistrationResponse as e:
            logger.warning(f"Passkey registration rejected for user {user.id}: {e}")
            return Err(ErrorKind.VALIDATION_ERROR, "Passkey registration verification failed")

        credential_id = bytes_to_base64url(verification.credential_id)
        if db.query(WebAuthnCredential.id).filter(WebAuthnCredential.credential_id == credential_id).first():
            return Err(ErrorKind.CONFLICT, "This passkey is already registered")

        record = WebAuthnCredential(
            user_id=user.id,
            credential_id=credential_id,
            public_key=verification.credential_public_key,
            sign_count=verification.sign_count,
            device_type=_enum_value(verification.credential_device_type),
            backed_up=bool(verification.credential_backed_up),
            transports=(credential.get("response") or {}).get("transports"),
            nickname=nickname,
        )
        db.add(record)
        db.commit()
        db.refresh(record)
        logger.info(f"Passkey registered for user {user.id}")
        return Ok(record)

    # -- authentication -------------------------------------------------

    def authentication_options(self, db: Session, username: Optional[str] = None) -> Result:
        """Challenge for a sign-in. Without a username any discoverable passkey may answer."""
        allow_credentials = []
        user_id = None
        if username:
            user = db.query(User).filter(User.username == username).first()
            credentials = user.webauthn_credentials if user else []
            if not credentials:
                return Err(ErrorKind.NOT_FOUND, "No passkeys found for this user")
            allow_credentials = [_descriptor(c) for c in credentials]
            user_id = user.id

        options = generate_authentication_options(
            rp_id=settings.WEBAUTHN_RP_ID,
            allow_credentials=allow_credentials,
            user_verification=UserVerificationRequirement.PREFERRED,
            timeout=self.challenge_ttl * 1000,
        )
        ceremony_id = self._remember(AUTHENTICATION, options.challenge, user_id)
        return Ok({"ceremony_id": ceremony_id, "options": json.loads(options_to_json(options))})

    def verify_authentication(self, db: Session, ceremony_id: str, credential: dict) -> Result:
        state = self._consume(AUTHENTICATION, ceremony_id)
        if not state:
            return self._challenge_expired()

        credential_id = credential.get("rawId") or credential.get("id")
        stored = None
        if credential_id:
            stored = (
                db.query(WebAuthnCredential)
                .filter(WebAuthnCredential.credential_id == credential_id)
                .first()
            )
        if not stored:
            return Err(ErrorKind.UNAUTHORIZED, "Passkey not recognised")
        if state.get("user_id") is not None and state["user_id"] != stored.user_id:
            return Err(ErrorKind.FORBIDDEN, "Passkey does not belong to this user")

        try:
            verification = verify_authentication_response(
                credential=credential,
                expected_challenge=base64url_to_bytes(state["challenge"]),
                expected_rp_id=settings.WEBAUTHN_RP_ID,
                expected_origin=settings.WEBAUTHN_ORIGIN,
                credential_public_key=stored.public_key,
                credential_current_sign_count=stored.sign_count,
            )
        except InvalidAuthenticationResponse as e:
            logger.warning(f"Passkey authentication rejected for credential {stored.id}: {e}")
            return Err(ErrorKind.UNAUTHORIZED, "Passkey authentication failed")

        stored.sign_count = verification.new_sign_count
        stored.last_used_at = helpers.utcnow()
        db.commit()
        return Ok(stored)

    # -- management -----------------------------------------------------

    @staticmethod
    def list_credentials(db: Session, user_id: int) -> List[WebAuthnCredential]:
        return (
            db.query(WebAuthnCredential)
            .filter(WebAuthnCredential.user_id == user_id)
            .order_by(WebAuthnCredential.created_at.desc())
            .all()
        )

    @staticmethod
    def _owned(db: Session, user_id: int, credential_pk: str) -> Optional[WebAuthnCredential]:
        return (
            db.query(WebAuthnCredential)
            .filter(WebAuthnCredential.id == credential_pk, WebAuthnCredential.user_id == user_id)
            .first()
        )

    @staticmethod
    def rename_credential(db: Session, user_id: int, credential_pk: str, nickname: str) -> Result:
        record = WebAuthnService._owned(db, user_id, credential_pk)
        if not record:
            return Err(ErrorKind.NOT_FOUND, "Passkey not found")
        record.nickname = nickname
        db.commit()
        return Ok(record)

    @staticmethod
    def delete_credential(db: Session, user: User, credential_pk: str) -> Result:
        """Remove a passkey unless it is the user's only way back in."""
        record = WebAuthnService._owned(db, user.id, credential_pk)
        if not record:
            return Err(ErrorKind.NOT_FOUND, "Passkey not found")

        remaining = (
            db.query(WebAuthnCredential)
            .filter(WebAuthnCredential.user_id == user.id, WebAuthnCredential.id != record.id)
            .count()
        )
        if remaining == 0 and not user.has_password and not user.google_id:
            return Err(
                ErrorKind.VALIDATION_ERROR,
                "Cannot delete your last authentication method. Set a password or add another passkey first.",
                "LAST_AUTH_METHOD",
            )

        db.delete(record)
        db.commit()
        logger.info(f"Passkey {credential_pk} removed for user {user.id}")
        return Ok(True)


webauthn_service = WebAuthnService(kv_store)
