"""Lifecycle audit trail service."""

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.admin import AuditLog


class AuditService:
    """Service for append-only booking and payment audit logging.

    Entries are added to the caller's session, so they commit or roll back
    together with the change they describe.
    """

    async def log_action(
        self,
        db: AsyncSession,
        action: str,
        resource_type: str,
        resource_id: UUID,
        user_id: UUID | None = None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        source: str = "api",
    ) -> AuditLog:
        """Log an applied action.

        Args:
            db: Database session
            action: Action name (e.g., "booking_cancelled")
            resource_type: Resource type ("booking", "payment", "vehicle")
            resource_id: Resource ID
            user_id: User performing the action, None for gateway/system
            old_values: Previous state
            new_values: New state
            source: Where the change came from (api, webhook, system)

        Returns:
            Created audit log entry
        """
        audit = AuditLog(
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            old_values=old_values,
            new_values=new_values,
            source=source,
        )
        db.add(audit)
        return audit

    async def log_booking_transition(
        self,
        db: AsyncSession,
        booking_id: UUID,
        old_status: str | None,
        new_status: str,
        user_id: UUID | None = None,
        source: str = "api",
        **extra: Any,
    ) -> AuditLog:
        """Log booking status change."""
        return await self.log_action(
            db=db,
            action=f"booking_{new_status}",
            resource_type="booking",
            resource_id=booking_id,
            user_id=user_id,
            old_values={"status": old_status} if old_status else None,
            new_values={"status": new_status, **extra},
            source=source,
        )

    async def log_payment_transition(
        self,
        db: AsyncSession,
        payment_id: UUID,
        old_status: str | None,
        new_status: str,
        amount: int | None = None,
        user_id: UUID | None = None,
        source: str = "api",
    ) -> AuditLog:
        """Log payment status change."""
        return await self.log_action(
            db=db,
            action=f"payment_{new_status}",
            resource_type="payment",
            resource_id=payment_id,
            user_id=user_id,
            old_values={"status": old_status} if old_status else None,
            new_values={"status": new_status, "amount": amount} if amount else {"status": new_status},
            source=source,
        )

    async def history(
        self,
        db: AsyncSession,
        resource_type: str,
        resource_id: UUID,
    ) -> list[AuditLog]:
        """Audit entries for one resource, oldest first."""
        result = await db.execute(
            select(AuditLog)
            .where(AuditLog.resource_type == resource_type, AuditLog.resource_id == resource_id)
            .order_by(AuditLog.created_at)
        )
        return list(result.scalars().all())


audit_service = AuditService()
