"""
Composition Root
================

Wires configuration, storage, secrets and the auth components together.
Nothing in the package holds process-wide state; everything is built
here and handed down explicitly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from masterguard.core.api import ApiClient, ResponseCache
from masterguard.core.auth import (
    AuthGateway,
    CredentialVerifier,
    LocalCredentialVerifier,
    LoginAttemptTracker,
    SessionManager,
)
from masterguard.core.config import SecureConfig
from masterguard.core.crypto import TokenCipher
from masterguard.core.logging import configure_root_logger
from masterguard.core.secrets import SESSION_TOKEN_KEY_NAME, FileSecretStore
from masterguard.db import KeyValueStore, MemoryStore, SessionStore, SqliteStore
from masterguard.security.audit import AlertStore, SecurityEventLog, StoreAuditSink
from masterguard.utils.clock import Clock, utc_now


@dataclass(frozen=True, slots=True)
class Services:
    """Everything a host application needs, built once at startup."""
    config: SecureConfig
    store: KeyValueStore
    event_log: SecurityEventLog
    alerts: AlertStore
    gateway: AuthGateway
    verifier: CredentialVerifier

    def api_client(self, token_provider=None) -> ApiClient:
        """Outbound client configured from ``config.api``."""
        api = self.config.api
        return ApiClient(
            api.base_url,
            token_provider=token_provider,
            cache=ResponseCache(api.cache_ttl_seconds, api.cache_max_entries),
            retry_attempts=api.retry_attempts,
            retry_delay_seconds=api.retry_delay_seconds,
            timeout_seconds=api.timeout_seconds,
        )

    def shutdown(self) -> None:
        self.gateway.shutdown()
        self.event_log.stop()


def build_store(config: SecureConfig) -> KeyValueStore:
    if config.store.backend == "memory":
        return MemoryStore()
    return SqliteStore(config.paths.database_path, timeout_seconds=config.store.timeout_seconds)


def build_services(
    config: SecureConfig,
    store: Optional[KeyValueStore] = None,
    verifier: Optional[CredentialVerifier] = None,
    secret_store: Optional[FileSecretStore] = None,
    clock: Clock = utc_now,
    start_background: bool = True,
) -> Services:
    """
    Build the full service graph.

    Args:
        config: Loaded configuration
        store: Keyed store (built from ``config.store`` if None)
        verifier: Identity provider (store-backed Argon2id verifier if None)
        secret_store: Source of the token encryption key
        clock: Time source for every component
        start_background: Start the event flusher and session monitors
    """
    log = logging.getLogger("masterguard.bootstrap")

    if store is None:
        config.ensure_directories()
        store = build_store(config)

    secret_store = secret_store or FileSecretStore(config.paths.secrets_dir)
    cipher = TokenCipher(secret_store.ensure(SESSION_TOKEN_KEY_NAME))

    events = config.events
    event_log = SecurityEventLog(
        StoreAuditSink(store),
        batch_size=events.batch_size,
        batch_timeout_seconds=events.batch_timeout_seconds,
        ring_capacity=events.ring_capacity,
        clock=clock,
    )
    alerts = AlertStore(store, clock=clock)
    event_log.add_alert_handler(alerts)

    verifier = verifier or LocalCredentialVerifier(store)
    tracker = LoginAttemptTracker(
        store,
        max_attempts=config.lockout.max_login_attempts,
        lockout_seconds=config.lockout.lockout_duration_seconds,
        clock=clock,
    )
    sessions = SessionManager(
        SessionStore(store),
        cipher,
        event_log,
        timeout_seconds=config.session.timeout_seconds,
        clock=clock,
    )
    gateway = AuthGateway(
        verifier,
        tracker,
        sessions,
        event_log,
        master_role=config.session.master_role,
        monitor_interval_seconds=config.session.monitor_interval_seconds,
        activity_debounce_seconds=config.session.activity_debounce_seconds,
        start_monitors=start_background,
        clock=clock,
    )

    if start_background:
        event_log.start()

    log.info("MasterGuard services ready (store=%s)", type(store).__name__)

    return Services(
        config=config,
        store=store,
        event_log=event_log,
        alerts=alerts,
        gateway=gateway,
        verifier=verifier,
    )


def configure_logging(config: SecureConfig) -> None:
    """Install the filtered root handlers described by ``config.logging``."""
    log_dir = config.paths.log_dir if config.logging.enable_file else None
    if log_dir is not None:
        config.ensure_directories()
    configure_root_logger(config.logging, log_dir)
