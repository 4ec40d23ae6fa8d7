import logging
from datetime import datetime
from typing import Callable

from ..db.db_client import AsyncPostgresClient
from ..services.audit_service import AuditService
from ..tools.audit_sink import SYSTEM_SUBJECT, AuditSink
from ..tools.clock import utcnow

logger = logging.getLogger(__name__)


async def purge_expired_session_tokens_task(db_client: AsyncPostgresClient, clock: Callable[[], datetime] = utcnow):
    """
    Periodic garbage collection of expired session tokens across all classes.
    Correctness never depends on it: expired tokens are rejected at validation.
    """
    logger.info("Running purge_expired_session_tokens_task...")
    try:
        deleted = await db_client.purge_expired_session_tokens(clock())
        logger.info(f"Purged {deleted} expired session tokens.")
        return deleted
    except Exception as e:
        # Zamanlayıcı bir sonraki turda tekrar dener.
        logger.error(f"Failed to purge expired session tokens: {e}", exc_info=True)
        return 0


async def audit_retention_task(db_client: AsyncPostgresClient, retention_days: int,
                               clock: Callable[[], datetime] = utcnow):
    """Deletes audit logs older than `retention_days`, recorded as AUDIT_CLEANUP by 'system'."""
    logger.info(f"Running audit_retention_task (retention {retention_days} days)...")
    service = AuditService(db_client=db_client, audit=AuditSink(db_client), clock=clock)
    try:
        result = await service.cleanup(SYSTEM_SUBJECT, retention_days)
        return result["deletedCount"]
    except Exception as e:
        logger.error(f"Audit retention cleanup failed: {e}", exc_info=True)
        return 0
