import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

DEFAULT_API_URL = "https://api.charli3.io"

# Keys used for persisted overrides in the local_settings table
API_URL_SETTING = "charli3_api_base_url"
BEARER_TOKEN_SETTING = "charli3_api_bearer_token"


class Settings(BaseModel):
    # API Configuration
    api_url: str = Field(default="", alias="CHARLI3_API_URL")
    bearer_token: str = Field(default="", alias="CHARLI3_BEARER_TOKEN")
    request_timeout: float = Field(default=30.0, alias="REQUEST_TIMEOUT")
    max_concurrent_requests: int = Field(default=5, alias="MAX_CONCURRENT_REQUESTS")

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./marketfeed.db", alias="DATABASE_URL"
    )
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")

    # Application defaults
    default_dex: str = Field(default="Aggregate", alias="DEFAULT_DEX")
    stream_key: str = Field(default="", alias="STREAM_KEY")
    chart_symbol: str = Field(default="", alias="CHART_SYMBOL")
    chart_resolution: str = Field(default="1d", alias="CHART_RESOLUTION")
    cache_sweep_minutes: int = Field(default=15, alias="CACHE_SWEEP_INTERVAL")
    debug: bool = Field(default=False, alias="DEBUG")

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment (after .env is loaded)."""
        values = {
            field.alias: os.environ[field.alias]
            for field in cls.model_fields.values()
            if field.alias and field.alias in os.environ
        }
        return cls.model_validate(values)


class ApiConfig:
    """
    Resolves the API base URL and bearer token.

    Precedence: explicit override > persisted local setting > environment
    default. Resolved values are memoised until reset_cache() is called.
    """

    def __init__(
        self,
        settings: Settings,
        persisted: dict[str, str] | None = None,
        api_url: str | None = None,
        bearer_token: str | None = None,
    ):
        self._settings = settings
        self._persisted = dict(persisted or {})
        self._override_url = api_url
        self._override_token = bearer_token
        self._api_url: str | None = None
        self._bearer_token: str | None = None

    @property
    def api_url(self) -> str:
        if self._api_url:
            return self._api_url

        self._api_url = (
            self._override_url
            or self._persisted.get(API_URL_SETTING)
            or self._settings.api_url
            or DEFAULT_API_URL
        ).rstrip("/")
        return self._api_url

    @property
    def bearer_token(self) -> str:
        if self._bearer_token:
            return self._bearer_token

        token = (
            self._override_token
            or self._persisted.get(BEARER_TOKEN_SETTING)
            or self._settings.bearer_token
        )
        # An empty token is not memoised so a later update is picked up
        if token:
            self._bearer_token = token
        return token or ""

    def update_persisted(self, values: dict[str, str]) -> None:
        """Replace persisted values (e.g. after the user saves new credentials)."""
        self._persisted = dict(values)
        self.reset_cache()

    def reset_cache(self) -> None:
        """Forget resolved values so the next access re-applies precedence."""
        self._api_url = None
        self._bearer_token = None

    def is_configured(self) -> bool:
        return bool(self.api_url) and bool(self.bearer_token)

    def get_config_info(self) -> dict[str, object]:
        """Report where each value comes from (for diagnostics)."""
        if self._override_url:
            url_source = "override"
        elif self._persisted.get(API_URL_SETTING):
            url_source = "local"
        elif self._settings.api_url:
            url_source = "env"
        else:
            url_source = "default"

        if self._override_token:
            token_source = "override"
        elif self._persisted.get(BEARER_TOKEN_SETTING):
            token_source = "local"
        elif self._settings.bearer_token:
            token_source = "env"
        else:
            token_source = "none"

        return {
            "api_url_source": url_source,
            "bearer_token_source": token_source,
            "is_configured": self.is_configured(),
        }
