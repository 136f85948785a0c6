"""Runtime settings endpoints: read, patch and apply skip-frame presets."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from posecache.api.schemas.models import ConfigSchema
from posecache.api.services.state import get_settings, reload_settings
from posecache.core.config.presets import list_presets, preset_patch
from posecache.core.config.settings import settings_to_dict

router = APIRouter()


@router.get("/config", response_model=ConfigSchema)
def get_config() -> ConfigSchema:
    """Return the effective settings (YAML defaults plus `PC_*` overrides plus patches)."""

    settings = get_settings()
    return ConfigSchema(**settings_to_dict(settings))


@router.get("/config/presets")
def get_presets() -> dict[str, list[dict[str, object]]]:
    """List the skip-frame presets (id, label and the settings they patch)."""

    return {"presets": list_presets()}


@router.post("/config/presets/{preset_id}", response_model=ConfigSchema)
def apply_preset(preset_id: str) -> ConfigSchema:
    """Patch the settings with a preset and rebuild the pipeline.

    Rebuilding drops the body ROI cache, so the next frame runs full inference.
    """

    try:
        patch = preset_patch(preset_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Unknown preset") from None
    settings = reload_settings(patch)
    return ConfigSchema(**settings_to_dict(settings))


@router.post("/config", response_model=ConfigSchema)
def update_config(cfg: ConfigSchema) -> ConfigSchema:
    """Replace the in-memory settings and rebuild the pipeline.

    Changes are not written back; persist them in the YAML file named by
    `PC_CONFIG` or in `PC_*` environment variables.
    """

    settings = reload_settings(cfg.model_dump())
    return ConfigSchema(**settings_to_dict(settings))
