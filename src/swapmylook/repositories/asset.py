"""ImageAsset repository."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from swapmylook.models.asset import AssetKind, ImageAsset


class ImageAssetRepository:
    """Repository for ImageAsset entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, asset: ImageAsset) -> ImageAsset:
        """Persist new asset record.

        Args:
            asset: ImageAsset entity to persist

        Returns:
            Persisted asset with generated ID
        """
        self.session.add(asset)
        await self.session.flush()
        return asset

    async def get_by_id(self, asset_id: UUID) -> ImageAsset | None:
        result = await self.session.execute(select(ImageAsset).where(ImageAsset.id == asset_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def get_owned(self, asset_id: UUID, owner_id: UUID) -> ImageAsset | None:
        """Retrieve asset only if it belongs to ``owner_id``.

        Args:
            asset_id: Asset identifier
            owner_id: Expected owner

        Returns:
            ImageAsset if it exists and is owned by the user, None otherwise
        """
        result = await self.session.execute(
            select(ImageAsset).where(
                ImageAsset.id == asset_id,  # type: ignore[arg-type]
                ImageAsset.owner_id == owner_id,  # type: ignore[arg-type]
            )
        )
        return result.scalar_one_or_none()

    async def list_by_owner(
        self, owner_id: UUID, kind: AssetKind | None = None
    ) -> list[ImageAsset]:
        query = select(ImageAsset).where(ImageAsset.owner_id == owner_id)  # type: ignore[arg-type]
        if kind is not None:
            query = query.where(ImageAsset.kind == kind)  # type: ignore[arg-type]
        result = await self.session.execute(query.order_by(ImageAsset.created_at.desc()))  # type: ignore[attr-defined]
        return list(result.scalars().all())
