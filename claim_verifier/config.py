"""
Runtime configuration, read once at startup.

All knobs come from environment variables (a `.env` file is loaded by the
entry points). The resulting Settings object is frozen: the core never sees
configuration change underneath it.
"""

from __future__ import annotations

import os
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ─── Defaults ───────────────────────────────────────────────────────

DEFAULT_OTHER_TAGS: tuple[str, ...] = (
    "hero", "paladin", "dark knight", "warrior", "arch mage", "bishop",
    "magician", "bowmaster", "marksman", "pathfinder", "archer", "night lord",
    "shadower", "dual blade", "thief", "buccaneer", "corsair", "cannoneer",
    "pirate", "dawn warrior", "blaze wizard", "wind archer", "night walker",
    "thunder breaker", "mihile", "aran", "evan", "mercedes", "phantom",
    "luminous", "shade", "battle mage", "wild hunter", "mechanic", "xenon",
    "blaster", "demon slayer", "demon avenger", "kaiser", "angelic buster",
    "cadena", "kanna", "hayato", "illium", "ark", "adele", "khali", "lara",
    "hoyoung", "lynn", "zero", "kinesis", "ren",
)

MB = 1024 * 1024


class Settings(BaseModel):
    """Immutable verification settings."""

    model_config = ConfigDict(frozen=True)

    # Claim requirements
    required_tag: str = "kain"
    required_level: int = 240
    level_floor: int = 100
    level_ceiling: int = 300
    other_tags: tuple[str, ...] = DEFAULT_OTHER_TAGS

    # Anti-abuse
    cooldown_seconds: float = 5 * 60
    cooldown_sweep_seconds: float = 5 * 60
    max_file_size: int = 10 * MB
    allowed_content_types: tuple[str, ...] = (
        "image/png", "image/jpeg", "image/jpg", "image/webp",
    )
    allowed_extensions: tuple[str, ...] = (".png", ".jpg", ".jpeg", ".webp")

    # Secondary evidence
    third_party_author_id: str = "571433717834711040"

    # Recognition
    ocr_language: str = "eng"
    ocr_char_whitelist: str = (
        "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789.:"
    )
    ocr_page_seg_mode: int = 11  # sparse text
    ocr_workers: int = Field(default=4, ge=1)
    max_variant_width: int = 3000
    upscale_factor: float = Field(default=2.0, gt=0.0, le=2.0)
    remote_provider: Literal["none", "ocrspace", "openai"] = "none"
    ocr_space_api_key: Optional[str] = None
    ocr_space_endpoint: str = "https://api.ocr.space/parse/image"
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-5"

    # Time bounds (seconds)
    fetch_timeout: float = 15.0
    remote_timeout: float = 20.0
    processing_timeout: float = 60.0

    @model_validator(mode="after")
    def _check_level_bounds(self) -> Settings:
        if not self.level_floor <= self.required_level <= self.level_ceiling:
            raise ValueError(
                f"required_level {self.required_level} must lie within "
                f"[{self.level_floor}, {self.level_ceiling}]"
            )
        return self

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from `VERIFIER_*` environment variables."""
        env = os.environ
        values: dict[str, object] = {}

        simple = {
            "required_tag": "VERIFIER_REQUIRED_TAG",
            "third_party_author_id": "VERIFIER_THIRD_PARTY_AUTHOR_ID",
            "ocr_language": "VERIFIER_OCR_LANGUAGE",
            "remote_provider": "VERIFIER_REMOTE_OCR_PROVIDER",
            "openai_model": "VERIFIER_OPENAI_MODEL",
        }
        numeric = {
            "required_level": "VERIFIER_REQUIRED_LEVEL",
            "level_floor": "VERIFIER_LEVEL_FLOOR",
            "level_ceiling": "VERIFIER_LEVEL_CEILING",
            "cooldown_seconds": "VERIFIER_COOLDOWN_SECONDS",
            "cooldown_sweep_seconds": "VERIFIER_COOLDOWN_SWEEP_SECONDS",
            "max_file_size": "VERIFIER_MAX_FILE_SIZE",
            "ocr_workers": "VERIFIER_OCR_WORKERS",
            "max_variant_width": "VERIFIER_MAX_VARIANT_WIDTH",
            "fetch_timeout": "VERIFIER_FETCH_TIMEOUT",
            "processing_timeout": "VERIFIER_PROCESSING_TIMEOUT",
        }
        listed = {
            "allowed_content_types": "VERIFIER_ALLOWED_CONTENT_TYPES",
            "allowed_extensions": "VERIFIER_ALLOWED_EXTENSIONS",
            "other_tags": "VERIFIER_OTHER_TAGS",
        }

        for field_name, var in simple.items():
            if env.get(var):
                values[field_name] = env[var].strip()
        for field_name, var in numeric.items():
            if env.get(var):
                values[field_name] = env[var].strip()  # pydantic coerces
        for field_name, var in listed.items():
            if env.get(var):
                values[field_name] = tuple(
                    item.strip().lower() for item in env[var].split(",") if item.strip()
                )

        values["ocr_space_api_key"] = env.get("OCR_SPACE_API_KEY") or None
        values["openai_api_key"] = env.get("OPENAI_API_KEY") or None
        return cls(**values)
