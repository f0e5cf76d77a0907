# mediarelay/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"

    # Security
    allowed_origins: list[str] = ["*"]
    rate_limit_per_minute: int = 30
    metrics_token: str | None = None  # Optional token for /metrics (open in dev when unset)

    # Canonical host (the restricted upstream we resolve ids against)
    canonical_host: str = "https://www.youtube.com"
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    )

    # Timeouts (seconds). Discovery probes are the shortest, tunneling the longest.
    discovery_timeout: float = 3.0
    native_timeout: float = 10.0
    library_timeout: float = 20.0
    mirror_a_timeout: float = 8.0
    mirror_b_timeout: float = 10.0
    tunnel_timeout: float = 30.0

    # Fleet racing
    fleet_subset_size: int = 6       # Endpoints consulted per race
    client_wave_size: int = 4        # Client-side probe batch size

    # Native extractor device profiles, tried in order
    native_profiles: str = "ANDROID_VR,TVHTML5_SIMPLY_EMBEDDED_PLAYER,TVHTML5"

    # Mirror table overrides (comma-separated). Empty = built-in tables.
    piped_endpoints: str = ""
    invidious_endpoints: str = ""
    innertube_hosts: str = ""
    decipher_helpers: str = ""

    # External link surfaced when every internal path fails
    fallback_url_template: str = "https://cobalt.tools/#https://www.youtube.com/watch?v={content_id}"

    # Feature Flags
    enable_request_logging: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def is_staging(self) -> bool:
        return self.app_env == "staging"

    @property
    def profile_order(self) -> list[str]:
        return [p.strip() for p in self.native_profiles.split(",") if p.strip()]

    def fallback_url_for(self, content_id: str) -> str:
        """External manual-completion link for a content id"""
        return self.fallback_url_template.format(content_id=content_id)

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        missing = []
        required_fields = [
            ("metrics_token", self.metrics_token),
        ]
        for field_name, value in required_fields:
            if not value:
                missing.append(field_name)

        return missing


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if s.is_production and s.allowed_origins == ["*"]:
        warnings.append("prod: allowed_origins=['*'] (CORS is wide open).")

    if s.fleet_subset_size < 1:
        warnings.append("fleet_subset_size < 1: mirror fleets will never be consulted.")

    if s.client_wave_size < 1:
        warnings.append("client_wave_size < 1: client-side probe waves will be empty.")

    if s.discovery_timeout > s.tunnel_timeout:
        warnings.append("discovery_timeout exceeds tunnel_timeout (probes should be the shortest calls).")

    if not s.profile_order:
        warnings.append("native_profiles is empty: the native extractor phase will always fail.")

    if "{content_id}" not in s.fallback_url_template:
        warnings.append("fallback_url_template has no {content_id} placeholder.")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()

    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}")

settings = Settings()
validate_or_warn(settings)
