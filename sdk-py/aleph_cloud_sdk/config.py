"""
SDK configuration

Defaults point at the public network; every field can be overridden from
the environment with SDKConfig.from_env().
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .constants import (
    CRN_LIST_URL,
    CRN_RELEASES_URL,
    CCN_RELEASES_URL,
    DEFAULT_API_SERVER,
    DNS_API_URL,
    SCHEDULER_URL,
)
from .http import DEFAULT_TIMEOUT

LOG_FORMAT = "%(asctime)s [%(name)s] [%(levelname)s] %(message)s"


@dataclass
class SDKConfig:
    api_server: str = DEFAULT_API_SERVER
    scheduler_url: str = SCHEDULER_URL
    crn_list_url: str = CRN_LIST_URL
    dns_api_url: str = DNS_API_URL
    crn_releases_url: str = CRN_RELEASES_URL
    ccn_releases_url: str = CCN_RELEASES_URL
    http_timeout: float = DEFAULT_TIMEOUT
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SDKConfig":
        """Build a config from ALEPH_* environment variables."""
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            api_server=env.get("ALEPH_API_SERVER", defaults.api_server),
            scheduler_url=env.get("ALEPH_SCHEDULER_URL", defaults.scheduler_url),
            crn_list_url=env.get("ALEPH_CRN_LIST_URL", defaults.crn_list_url),
            dns_api_url=env.get("ALEPH_DNS_API_URL", defaults.dns_api_url),
            crn_releases_url=env.get("ALEPH_CRN_RELEASES_URL", defaults.crn_releases_url),
            ccn_releases_url=env.get("ALEPH_CCN_RELEASES_URL", defaults.ccn_releases_url),
            http_timeout=float(env.get("ALEPH_HTTP_TIMEOUT", defaults.http_timeout)),
            log_level=env.get("ALEPH_LOG_LEVEL", defaults.log_level).upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    """Attach a stream handler to the SDK logger (for scripts, not libraries)."""
    sdk_logger = logging.getLogger("aleph_cloud_sdk")
    sdk_logger.setLevel(level.upper())
    if not any(isinstance(h, logging.StreamHandler) for h in sdk_logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        sdk_logger.addHandler(handler)
