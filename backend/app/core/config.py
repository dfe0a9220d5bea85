from functools import lru_cache
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .leagues import DEFAULT_LEAGUES, LeagueConfig


def _ensure_sqlalchemy_postgres_scheme(value: str) -> str:
    if not value.lower().startswith("postgres"):
        return value

    parsed = urlparse(value)
    scheme = parsed.scheme.lower()

    if scheme in {"postgres", "postgresql"}:
        scheme = "postgresql+psycopg"

    if scheme not in {"postgresql+psycopg", "postgresql+asyncpg"}:
        scheme = "postgresql+psycopg"

    query_params = dict(parse_qsl(parsed.query, keep_blank_values=True))
    query_params.setdefault("sslmode", "require")
    new_query = urlencode(query_params, doseq=True)

    return urlunparse(parsed._replace(scheme=scheme, query=new_query))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    database_url: AnyUrl | str = Field(
        default="sqlite:///./data/matchpass.db",
        description="SQLAlchemy compatible database URL",
    )
    production_db_url: AnyUrl | str | None = Field(
        default=None,
        description="Postgres connection string used when ENVIRONMENT=production",
    )
    schedule_utc_offset_hours: float = Field(
        default=7.0,
        description="Offset of the canonical scheduling timezone from UTC (WIB is +7)",
        ge=-12,
        le=14,
    )
    schedule_timezone_label: str = Field(
        default="WIB",
        description="Human readable label for the canonical scheduling timezone",
    )
    automation_slot_minutes: int = Field(
        default=5,
        description="Length of each scheduled automation slot in minutes",
        ge=1,
        le=60,
    )
    enabled_leagues: list[str] | str = Field(
        default_factory=lambda: ["NBA", "EPL", "LALIGA"],
        description="Comma-separated list or array of league codes served by the storefront",
    )
    league_overrides: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description="Per-league schedule overrides keyed by league code",
    )
    entry_fee: float = Field(
        default=0.5,
        description="Token amount charged to unlock a single prediction",
        gt=0,
    )
    payout_fraction: float = Field(
        default=0.8,
        description="Share of the prize pool transferred to the raffle winner",
    )
    token_symbol: str = Field(default="CARV", description="Token accepted for purchases and payouts")
    payout_api_url: AnyUrl | str | None = Field(
        default=None,
        description="Treasury service endpoint that submits token transfers",
    )
    payout_api_key: str | None = Field(
        default=None,
        description="Bearer token presented to the treasury service",
    )
    payout_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout applied to treasury payout requests",
        gt=0,
    )
    worker_api_key: str | None = Field(
        default=None,
        description="Shared secret required by scheduler worker endpoints",
    )
    thesportsdb_base_url: AnyUrl = Field(
        default="https://www.thesportsdb.com/api/v1/json",
        description="Base URL for TheSportsDB API",
    )
    thesportsdb_api_key: str = Field(default="3", description="TheSportsDB API key segment")
    espn_base_url: AnyUrl = Field(
        default="https://site.api.espn.com/apis/site/v2/sports",
        description="Base URL for ESPN public scoreboard API",
    )
    football_data_base_url: AnyUrl = Field(
        default="https://api.football-data.org/v4",
        description="Base URL for football-data.org API",
    )
    football_data_api_key: str | None = Field(
        default=None,
        description="football-data.org token; the provider is skipped when unset",
    )
    feed_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout applied to sports feed requests",
        gt=0,
    )
    reconcile_lookback_hours: int = Field(
        default=72,
        description="Only reconcile matches that started within the last N hours",
        ge=1,
    )
    team_match_threshold: float = Field(
        default=0.6,
        description="Minimum fuzzy score for a feed fixture to be considered the same match",
        ge=0,
        le=1,
    )

    def league_config(self, league: str) -> LeagueConfig:
        code = league.strip().upper()
        base = DEFAULT_LEAGUES.get(code)
        overrides = self.league_overrides.get(code, {})
        if base is None and not overrides:
            raise KeyError(f"Unknown league '{league}'")
        payload = dict(base or {"code": code, "name": code})
        payload.update(overrides)
        payload["code"] = code
        return LeagueConfig.model_validate(payload)

    def league_configs(self) -> list[LeagueConfig]:
        return [self.league_config(code) for code in self.enabled_leagues]

    @field_validator("enabled_leagues", mode="after")
    @classmethod
    def _parse_enabled_leagues(cls, value: Any) -> list[str]:
        if value in (None, "", []):
            return []
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, (list, tuple, set)):
            codes: list[str] = []
            for item in value:
                code = str(item).strip().upper()
                if code and code not in codes:
                    codes.append(code)
            return codes
        raise ValueError(
            "ENABLED_LEAGUES must be provided as a list or comma-separated string"
        )

    @field_validator("league_overrides", mode="after")
    @classmethod
    def _normalize_override_keys(cls, value: dict[str, dict[str, Any]]) -> dict[str, dict[str, Any]]:
        return {str(key).strip().upper(): dict(item) for key, item in value.items()}

    @field_validator("payout_fraction")
    @classmethod
    def _validate_payout_fraction(cls, value: float) -> float:
        if not 0 < value <= 1:
            raise ValueError("payout_fraction must be within (0, 1]")
        return value

    @field_validator("database_url", "production_db_url", mode="before")
    @classmethod
    def _normalize_postgres_urls(cls, value: Any) -> Any:
        if value is None or not isinstance(value, str):
            return value
        if value.startswith("postgres://"):
            return "postgresql://" + value[len("postgres://") :]
        return value

    @property
    def resolved_database_url(self) -> str:
        environment = self.environment.lower()
        if environment == "production":
            if not self.production_db_url:
                raise ValueError(
                    "PRODUCTION_DB_URL must be set when ENVIRONMENT=production"
                )
            return _ensure_sqlalchemy_postgres_scheme(str(self.production_db_url))
        return _ensure_sqlalchemy_postgres_scheme(str(self.database_url))


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
