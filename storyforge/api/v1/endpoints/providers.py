from typing import List
from fastapi import APIRouter, Depends, HTTPException

from storyforge.api.deps import get_provider_registry
from storyforge.services.providers.registry import ProviderConfig, ProviderRegistry, ProviderStatus

router = APIRouter()

@router.get("/providers", response_model=List[ProviderConfig])
async def list_providers(registry: ProviderRegistry = Depends(get_provider_registry)):
    """
    Lists the registered generation providers and their configuration.
    """
    return registry.list_providers()

@router.get("/providers/{provider_id}/status", response_model=ProviderStatus)
async def get_provider_status(provider_id: str, registry: ProviderRegistry = Depends(get_provider_registry)):
    status = await registry.provider_status(provider_id)
    if not status:
        raise HTTPException(status_code=404, detail="Provider not found")
    return status
