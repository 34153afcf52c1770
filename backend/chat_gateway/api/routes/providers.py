from fastapi import APIRouter

from chat_gateway.api.deps import AugmenterDep, RegistryDep

router = APIRouter(tags=["providers"])


@router.get("/providers")
async def list_providers(registry: RegistryDep, augmenter: AugmenterDep):
    providers = []
    for descriptor in registry.descriptors():
        entry = descriptor.to_public()
        entry["configured"] = registry.is_configured(descriptor.id)
        entry["enabled"] = registry.is_enabled(descriptor.id)
        providers.append(entry)
    return {
        "providers": providers,
        "configuredProviders": registry.configured_ids(),
        "contentstackConfigured": augmenter.is_configured,
        "contentstackStatus": augmenter.status(),
    }
