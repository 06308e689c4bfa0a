"""User repository."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from swapmylook.models.user import User


class UserRepository:
    """Repository for User entities.

    Lookup methods mirror the identifiers a payment webhook may carry: our own
    user id (checkout metadata), the provider subscription id, or the provider
    customer id.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, user: User) -> User:
        """Persist new user.

        Args:
            user: User entity to persist

        Returns:
            Persisted user with generated ID
        """
        self.session.add(user)
        await self.session.flush()
        return user

    async def get_by_id(self, user_id: UUID) -> User | None:
        result = await self.session.execute(
            select(User).where(User.id == user_id).execution_options(populate_existing=True)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, user_id: UUID) -> User | None:
        """Retrieve user with a row lock (quota checks, subscription updates)."""
        result = await self.session.execute(
            select(User)
            .where(User.id == user_id)  # type: ignore[arg-type]
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> User | None:
        result = await self.session.execute(select(User).where(User.email == email.lower()))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def get_by_provider_subscription_id(self, subscription_id: str) -> User | None:
        result = await self.session.execute(
            select(User)
            .where(User.provider_subscription_id == subscription_id)  # type: ignore[arg-type]
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def get_by_provider_customer_id(self, customer_id: str) -> User | None:
        result = await self.session.execute(
            select(User)
            .where(User.provider_customer_id == customer_id)  # type: ignore[arg-type]
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()
