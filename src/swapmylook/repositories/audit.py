"""AuditEntry repository."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from swapmylook.models.audit import AuditEntry


class AuditRepository:
    """Repository for AuditEntry entities (append-only)."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, entry: AuditEntry) -> AuditEntry:
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_for_user(self, user_id: UUID, entry_type: str | None = None) -> list[AuditEntry]:
        """Audit trail for a user, oldest first.

        Args:
            user_id: User whose entries to return
            entry_type: Optional filter ("generation" or "subscription_change")

        Returns:
            Matching entries ordered by creation time
        """
        query = select(AuditEntry).where(AuditEntry.user_id == user_id)  # type: ignore[arg-type]
        if entry_type is not None:
            query = query.where(AuditEntry.type == entry_type)  # type: ignore[arg-type]
        result = await self.session.execute(query.order_by(AuditEntry.created_at.asc()))  # type: ignore[attr-defined]
        return list(result.scalars().all())
