"""
auth/devices.py -- Device/IP trust tracking.

Each account keeps a list of recognized fingerprints (channel + identifier).
A login from a fingerprint not on the list does not get a session. Instead a
confirmation token is stored (digest, expiry, and the pending fingerprint, in
one UPDATE) and a confirmation link is emailed. Following the link appends
the pending fingerprint to the list and clears the three pending fields --
again in one UPDATE, conditioned on the token digest still being there, so a
link works exactly once. The UPDATE also requires the account to be active,
so a link emailed before a deactivation cannot open a session after it.

Fingerprints come from the request:
  X-Client-Channel: web (default) | ios | android
  web     -> identifier is the client IP
  mobile  -> identifier is the X-Device-Id header (falls back to client IP)

Layer rule: no imports from api/ or teams/. Starlette's Request is used only
for its type in fingerprint_from_request().
"""

from __future__ import annotations

import logging

from starlette.requests import Request

from auth.models import Account, AccountStatus, Channel, DeviceFingerprint
from auth.notifier import Notification, Notifier, redact_email
from auth.store import AccountStore, to_iso
from auth.tokens import expiry_from_now, generate_single_use_token, hash_token
from core.config import Settings
from core.errors import AccountInactive, NotFound, TokenInvalidOrExpired

logger = logging.getLogger("teamgate.auth.devices")


def fingerprint_from_request(request: Request) -> DeviceFingerprint:
    """Derive the client fingerprint for the channel the request claims to come from."""
    raw_channel = request.headers.get("X-Client-Channel", Channel.web.value).strip().lower()
    try:
        channel = Channel(raw_channel)
    except ValueError:
        channel = Channel.web
    client_ip = request.client.host if request.client else "unknown"
    if channel is Channel.web:
        return DeviceFingerprint(channel=channel, identifier=client_ip)
    device_id = request.headers.get("X-Device-Id", "").strip()
    return DeviceFingerprint(channel=channel, identifier=device_id or client_ip)


class DeviceTrustTracker:
    def __init__(self, store: AccountStore, notifier: Notifier, settings: Settings) -> None:
        self.store = store
        self.notifier = notifier
        self.settings = settings

    def is_recognized(self, account: Account, fingerprint: DeviceFingerprint) -> bool:
        return fingerprint in account.devices

    def record_pending_confirmation(self, account: Account, fingerprint: DeviceFingerprint) -> str:
        """Store a confirmation token for fingerprint, email the link, return the raw token.

        Overwrites any earlier pending confirmation for the account.
        Raises DeliveryError if the email cannot be sent.
        """
        raw = generate_single_use_token()
        expires = to_iso(expiry_from_now(self.settings.confirmation_token_ttl_seconds))
        updated = self.store.update(
            account.id,
            {
                "login_token_hash": hash_token(raw),
                "login_token_expires_at": expires,
                "pending_fingerprint": fingerprint,
            },
        )
        if updated == 0:
            raise NotFound("Account not found.")

        link = f"{self.settings.frontend_url.rstrip('/')}/confirm-login?token={raw}"
        self.notifier.send(
            Notification(
                recipient=account.email,
                subject="Unrecognized Login Attempt - Confirmation Required",
                body=(
                    f"Dear {account.display_name},\n\n"
                    f"A login attempt was detected from an unrecognized {fingerprint.channel.value} "
                    f"client ({fingerprint.identifier}). If this was you, confirm it here: {link}\n\n"
                    "If it was not you, ignore this email and change your password."
                ),
            )
        )
        logger.warning(
            "Unrecognized %s fingerprint for %s -- confirmation required",
            fingerprint.channel.value,
            redact_email(account.email),
        )
        return raw

    def confirm(self, raw_token: str) -> Account:
        """Trust the pending fingerprint behind raw_token and return the updated account.

        Raises TokenInvalidOrExpired if the token is unknown, expired, or spent,
        and AccountInactive if the account was deactivated after the link was sent.
        """
        digest = hash_token(raw_token)
        account = self.store.find_by_token("login_token_hash", digest)
        if account is None or account.pending_fingerprint is None:
            raise TokenInvalidOrExpired()
        if not account.is_active:
            logger.warning("Device confirmation refused for inactive account id=%s", account.id)
            raise AccountInactive()

        devices = list(account.devices)
        if account.pending_fingerprint not in devices:
            devices.append(account.pending_fingerprint)

        updated = self.store.update(
            account.id,
            {
                "devices": devices,
                "login_token_hash": None,
                "login_token_expires_at": None,
                "pending_fingerprint": None,
            },
            expect={"login_token_hash": digest, "status": AccountStatus.active},
            unexpired="login_token_expires_at",
        )
        if updated == 0:
            raise TokenInvalidOrExpired()

        logger.info("Device confirmed for account id=%s", account.id)
        account.devices = devices
        account.login_token_hash = None
        account.login_token_expires_at = None
        account.pending_fingerprint = None
        return account
