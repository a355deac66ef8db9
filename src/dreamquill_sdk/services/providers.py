"""Provider operations via transport."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import TypeAdapter

from ..transport import RequestSpec, Transport
from ..types import HealthStatus, ProviderConfig, ProviderState

_MODEL_NAMES = TypeAdapter(list[str])


def _model_names(data: Any) -> list[str]:
    if isinstance(data, dict):
        data = data.get("models")
    return _MODEL_NAMES.validate_python(data)


def _save_payload(
    config: ProviderConfig, set_default: bool, telemetry_enabled: bool | None
) -> dict[str, Any]:
    payload: dict[str, Any] = config.model_dump(include=set(ProviderConfig.model_fields))
    payload["set_default"] = set_default
    if telemetry_enabled is not None:
        payload["telemetry_enabled"] = telemetry_enabled
    return payload


@dataclass
class ProviderAPI:
    """Provider operations.

    Every mutation returns the full ProviderState after the change.
    """

    _transport: Transport

    async def fetch_state(self) -> ProviderState:
        """Get all providers and the default selection."""
        return await self._transport.request(
            RequestSpec("GET", "/providers", parse=ProviderState.model_validate)
        )

    async def create(
        self,
        config: ProviderConfig,
        *,
        set_default: bool = False,
        telemetry_enabled: bool | None = None,
    ) -> ProviderState:
        """Add a provider.

        Args:
            config: Provider settings
            set_default: Make it the default provider
            telemetry_enabled: Also update the telemetry switch (unchanged if None)
        """
        return await self._transport.request(
            RequestSpec(
                "POST",
                "/providers",
                body=_save_payload(config, set_default, telemetry_enabled),
                parse=ProviderState.model_validate,
            )
        )

    async def update(
        self,
        provider_id: int,
        config: ProviderConfig,
        *,
        set_default: bool = False,
        telemetry_enabled: bool | None = None,
    ) -> ProviderState:
        """Replace the settings of a provider."""
        return await self._transport.request(
            RequestSpec(
                "PUT",
                f"/providers/{provider_id}",
                body=_save_payload(config, set_default, telemetry_enabled),
                parse=ProviderState.model_validate,
            )
        )

    async def remove(self, provider_id: int) -> ProviderState:
        """Delete a provider."""
        return await self._transport.request(
            RequestSpec("DELETE", f"/providers/{provider_id}", parse=ProviderState.model_validate)
        )

    async def select_default(self, provider_id: int) -> ProviderState:
        """Make a provider the default."""
        return await self._transport.request(
            RequestSpec(
                "POST", f"/providers/{provider_id}/select", parse=ProviderState.model_validate
            )
        )

    async def list_models(self, provider_id: int | None = None) -> list[str]:
        """List model names offered by a provider (the default one if None)."""
        return await self._transport.request(
            RequestSpec(
                "GET", "/models", query={"provider_id": provider_id}, parse=_model_names
            )
        )

    async def health_check(self, provider_id: int | None = None) -> HealthStatus:
        """Probe a stored provider."""
        return await self._transport.request(
            RequestSpec(
                "GET", "/health", query={"provider_id": provider_id}, parse=HealthStatus.model_validate
            )
        )

    async def health_check_preview(self, config: ProviderConfig) -> HealthStatus:
        """Probe unsaved provider settings."""
        return await self._transport.request(
            RequestSpec(
                "POST",
                "/health/preview",
                body=config.model_dump(include=set(ProviderConfig.model_fields)),
                parse=HealthStatus.model_validate,
            )
        )
