"""Configuration for publishing results to Azure DevOps."""

from collections.abc import Mapping, Sequence
from typing import Literal
from urllib.parse import quote

from pydantic import BaseModel, Field, SecretStr

ENCRYPTED_PREFIX = "ENCRYPTED:"


class ProxyAuth(BaseModel):
    """Credentials for an authenticating proxy."""

    username: str
    password: SecretStr


class ProxyConfig(BaseModel):
    """Outbound proxy settings."""

    enabled: bool = False
    protocol: Literal["http", "https", "socks5"] = "http"
    host: str = ""
    port: int = 8080
    auth: ProxyAuth | None = None
    bypass_list: Sequence[str] = Field(
        default_factory=list,
        description="Substrings of target URLs that must not go through the proxy",
    )

    @property
    def url(self) -> str:
        """Proxy URL including credentials, if any."""
        credentials = ""
        if self.auth is not None:
            password = quote(self.auth.password.get_secret_value(), safe="")
            credentials = f"{quote(self.auth.username, safe='')}:{password}@"
        return f"{self.protocol}://{credentials}{self.host}:{self.port}"

    def should_bypass(self, url: str) -> bool:
        """Check if the given URL matches the bypass list."""
        return any(pattern in url for pattern in self.bypass_list)


class ArtifactUploads(BaseModel):
    """Which captured artifact kinds are attached to test results."""

    screenshots: bool = True
    videos: bool = True
    har: bool = False
    traces: bool = False
    logs: bool = True


class BugTemplate(BaseModel):
    """Fields applied to bugs created for failed scenarios."""

    title: str = "Test Failed: {scenario_name}"
    severity: str = "3 - Medium"
    priority: int = Field(default=2, ge=1, le=4)
    assigned_to: str | None = None
    area_path: str | None = None
    iteration_path: str | None = None
    tags: Sequence[str] = Field(default_factory=lambda: ["automated-test-failure"])


class AdoConfig(BaseModel):
    """Configuration for the Azure DevOps publisher."""

    enabled: bool = True
    organization: str
    project: str
    pat: SecretStr
    api_version: str = "7.0"
    api_base_url: str = "https://dev.azure.com"
    proxy: ProxyConfig = Field(default_factory=ProxyConfig)
    timeout: float = Field(default=30.0, gt=0, description="Request timeout (s)")
    retry_count: int = Field(default=3, ge=1, description="Attempts per request")
    retry_delay: float = Field(
        default=2.0, ge=0, description="Base delay between attempts (s)"
    )
    update_test_cases: bool = True
    create_bugs_on_failure: bool = False
    uploads: ArtifactUploads = Field(default_factory=ArtifactUploads)
    bug_template: BugTemplate = Field(default_factory=BugTemplate)
    default_bug_assignee: str | None = None
    run_name: str = "Automated Test Run"


def config_from_env(environ: Mapping[str, str]) -> AdoConfig:
    """Build configuration from ``ADO_*`` environment variables.

    Timeouts and delays are given in milliseconds in the environment. A proxy
    password of the form ``ENCRYPTED:<KEY>`` is read from the variable
    ``<KEY>`` instead.
    """

    def get(key: str, default: str = "") -> str:
        return environ.get(key, "").strip() or default

    def flag(key: str, default: bool) -> bool:
        value = get(key)
        if not value:
            return default
        return value.lower() in {"1", "true", "yes", "on"}

    def millis(key: str, default: float) -> float:
        value = get(key)
        return float(value) / 1000 if value else default

    def listing(key: str) -> list[str]:
        return [item.strip() for item in get(key).split(",") if item.strip()]

    auth = None
    if flag("ADO_PROXY_AUTH_REQUIRED", False):
        password = get("ADO_PROXY_PASSWORD")
        if password.startswith(ENCRYPTED_PREFIX):
            password = get(password.removeprefix(ENCRYPTED_PREFIX))
        auth = ProxyAuth(username=get("ADO_PROXY_USERNAME"), password=password)

    proxy = ProxyConfig(
        enabled=flag("ADO_PROXY_ENABLED", False),
        protocol=get("ADO_PROXY_PROTOCOL", "http"),
        host=get("ADO_PROXY_HOST"),
        port=int(get("ADO_PROXY_PORT", "8080")),
        auth=auth,
        bypass_list=listing("ADO_PROXY_BYPASS_LIST"),
    )

    uploads = ArtifactUploads(
        screenshots=flag("ADO_UPLOAD_SCREENSHOTS", True),
        videos=flag("ADO_UPLOAD_VIDEOS", True),
        har=flag("ADO_UPLOAD_HAR", False),
        traces=flag("ADO_UPLOAD_TRACES", False),
        logs=flag("ADO_UPLOAD_LOGS", True),
    )

    assignee = get("DEFAULT_BUG_ASSIGNEE") or None

    return AdoConfig(
        enabled=flag("ADO_INTEGRATION_ENABLED", True),
        organization=get("ADO_ORGANIZATION"),
        project=get("ADO_PROJECT"),
        pat=get("ADO_PAT"),
        api_version=get("ADO_API_VERSION", "7.0"),
        api_base_url=get("ADO_API_BASE_URL", "https://dev.azure.com"),
        proxy=proxy,
        timeout=millis("ADO_API_TIMEOUT", 30.0),
        retry_count=int(get("ADO_API_RETRY_COUNT", "3")),
        retry_delay=millis("ADO_API_RETRY_DELAY", 2.0),
        update_test_cases=flag("ADO_UPDATE_TEST_CASES", True),
        create_bugs_on_failure=flag("ADO_CREATE_BUGS_ON_FAILURE", False),
        uploads=uploads,
        default_bug_assignee=assignee,
        run_name=get("ADO_TEST_RUN_NAME", "Automated Test Run"),
    )
