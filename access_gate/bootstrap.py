"""
Access Gate — process wiring.

Configures structured logging and builds an access manager from settings:
1. Initializes the audit ledger, when a database URL is configured
2. Creates the access manager with the configured admin account
3. Applies the declarative policy document, when one is configured
"""

from __future__ import annotations

import logging

import structlog

from access_gate.config import GatewaySettings, settings as default_settings
from access_gate.ledger.service import AuditLedger
from access_gate.manager import AccessManager
from access_gate.policy.document import apply_policy_document, load_policy_document

logger = logging.getLogger(__name__)


def configure_logging(settings: GatewaySettings = default_settings) -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            (
                structlog.dev.ConsoleRenderer()
                if settings.log_format != "json"
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(level=settings.log_level.upper(), format="%(levelname)s %(name)s %(message)s")


def build_access_manager(settings: GatewaySettings = default_settings) -> AccessManager:
    """Wire ledger, manager and policy document from ``settings``."""
    log = structlog.get_logger()

    ledger = None
    if settings.ledger_database_url:
        ledger = AuditLedger(settings.ledger_database_url)
        ledger.initialize()
        log.info("access_gate.bootstrap.ledger_ready")

    manager = AccessManager(
        settings.admin_account,
        address=settings.manager_address,
        ledger=ledger,
    )

    if settings.policy_file:
        document = load_policy_document(settings.policy_file)
        apply_policy_document(manager, document, caller=settings.admin_account)
        log.info(
            "access_gate.bootstrap.policy_applied",
            policy_file=settings.policy_file,
            targets=len(document.targets),
        )

    log.info(
        "access_gate.bootstrap.ready",
        manager_address=manager.address,
        ledger=ledger is not None,
    )
    return manager
