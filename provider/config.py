import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


@dataclass
class ProviderConfig:
    base_url: str = os.getenv("DIGITALOCEAN_API_URL", "https://api.digitalocean.com")
    api_prefix: str = "/v2"
    token: str = os.getenv("DIGITALOCEAN_TOKEN", "")

    timeout: float = float(os.getenv("PROVIDER_TIMEOUT", "30.0"))
    # droplet and volume deletes
    delete_timeout: float = float(os.getenv("PROVIDER_DELETE_TIMEOUT", "15.0"))

    retry_count: int = int(os.getenv("PROVIDER_RETRY_COUNT", "3"))
    retry_delay: float = float(os.getenv("PROVIDER_RETRY_DELAY", "1.0"))

    @property
    def droplets_url(self) -> str:
        return f"{self.api_prefix}/droplets"

    @property
    def volumes_url(self) -> str:
        return f"{self.api_prefix}/volumes"

    @property
    def bandwidth_metrics_url(self) -> str:
        return f"{self.api_prefix}/monitoring/metrics/droplet/bandwidth"


provider_config = ProviderConfig()
