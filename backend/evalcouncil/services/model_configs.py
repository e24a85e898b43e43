from __future__ import annotations

from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..exceptions import ConflictError, ModelNotFoundError
from ..logger import logger
from ..models import AXModelConfig
from ..schemas import AXModelConfigCreate, AXModelConfigUpdate


async def seed_default_models(db: AsyncSession) -> int:
    """Populate the panel catalogue from settings when it is empty. Returns rows added."""
    count = (await db.execute(select(func.count(AXModelConfig.id)))).scalar_one()
    if count:
        return 0

    for entry in settings.AX_MODELS:
        db.add(
            AXModelConfig(
                model_id=entry["model_id"],
                display_name=entry["display_name"],
                provider=entry["provider"],
                provider_model_id=entry["provider_model_id"],
                is_enabled=entry.get("is_enabled", True),
                sort_order=entry.get("sort_order", 0),
            )
        )
    try:
        await db.commit()
    except IntegrityError:
        # Another process seeded concurrently.
        await db.rollback()
        return 0

    logger.info("Seeded AX model catalogue", extra={"models": len(settings.AX_MODELS)})
    return len(settings.AX_MODELS)


async def list_models(db: AsyncSession, enabled_only: bool = True) -> List[AXModelConfig]:
    stmt = select(AXModelConfig).order_by(AXModelConfig.sort_order, AXModelConfig.model_id)
    if enabled_only:
        stmt = stmt.where(AXModelConfig.is_enabled.is_(True))
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_enabled_model(db: AsyncSession, model_id: str) -> AXModelConfig:
    result = await db.execute(
        select(AXModelConfig).where(
            AXModelConfig.model_id == model_id,
            AXModelConfig.is_enabled.is_(True),
        )
    )
    model = result.scalar_one_or_none()
    if model is None:
        raise ModelNotFoundError(model_id)
    return model


async def create_model(db: AsyncSession, data: AXModelConfigCreate) -> AXModelConfig:
    model = AXModelConfig(
        model_id=data.model_id.strip(),
        display_name=data.display_name,
        provider=data.provider,
        provider_model_id=data.provider_model_id,
        is_enabled=data.is_enabled,
        sort_order=data.sort_order,
    )
    db.add(model)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Model {data.model_id} already exists", "DUPLICATE_MODEL")
    await db.refresh(model)
    logger.info("AX model created", extra={"model_id": model.model_id})
    return model


async def update_model(db: AsyncSession, model_id: str, changes: AXModelConfigUpdate) -> Optional[AXModelConfig]:
    result = await db.execute(select(AXModelConfig).where(AXModelConfig.model_id == model_id))
    model = result.scalar_one_or_none()
    if model is None:
        return None

    if changes.display_name is not None:
        model.display_name = changes.display_name
    if changes.provider is not None:
        model.provider = changes.provider
    if changes.provider_model_id is not None:
        model.provider_model_id = changes.provider_model_id
    if changes.is_enabled is not None:
        model.is_enabled = changes.is_enabled
    if changes.sort_order is not None:
        model.sort_order = changes.sort_order

    await db.commit()
    await db.refresh(model)
    logger.info("AX model updated", extra={"model_id": model_id, "is_enabled": model.is_enabled})
    return model


async def delete_model(db: AsyncSession, model_id: str) -> bool:
    result = await db.execute(delete(AXModelConfig).where(AXModelConfig.model_id == model_id))
    await db.commit()
    return result.rowcount > 0
