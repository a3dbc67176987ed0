"""Admin endpoints for prompts, models and voice."""

from fastapi import APIRouter, Depends

from app.admin.dependencies import require_admin_api_key
from app.runtime_settings.models import AppSettings, AppSettingsUpdate
from app.runtime_settings.service import AppSettingsProvider
from app.transformations.dependencies import get_settings_provider


router = APIRouter(prefix="/settings", tags=["Settings"], dependencies=[Depends(require_admin_api_key)])


@router.get("", response_model=AppSettings)
async def get_app_settings(provider: AppSettingsProvider = Depends(get_settings_provider)):
    return await provider.refresh()


@router.put("", response_model=AppSettings)
async def update_app_settings(
    body: AppSettingsUpdate,
    provider: AppSettingsProvider = Depends(get_settings_provider),
):
    return await provider.save(body)


@router.post("/reset", response_model=AppSettings)
async def reset_app_settings(provider: AppSettingsProvider = Depends(get_settings_provider)):
    return await provider.reset()
