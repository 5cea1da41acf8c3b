#!/usr/bin/env python3
"""cf-ddns - Cloudflare Dynamic DNS Updater

Keeps Cloudflare A/AAAA records in sync with the host's current public IP
addresses. Each run detects the public IPv4/IPv6 address once, then for every
configured domain compares the existing Cloudflare record against the desired
content, TTL and proxy flag and only creates or updates records that drifted.

Configuration file (YAML, default: cf-ddns.yaml):

    cloudflare:
      api_token: "..."          # recommended; or api_key + email
      api_key: ""
      email: ""
      zone_id: ""               # optional, auto-detected from the domain root
    domains:
      - name: home.example.com
        record_types: both      # "A", "AAAA" or "both" (default: both)
        ttl: 300                # default: 300
        proxied: false          # default: false
    interval: 300               # seconds between runs, 0 = run once
    verbose: false
    log_file: ""

    Relative config paths are searched in /etc/cf-ddns (Linux), the current
    directory and next to the executable. A missing ".yaml" suffix is added
    automatically as a second candidate.

Environment variables:

    Credentials (override the config file when set):
        CF_API_TOKEN           Cloudflare API token
        CF_API_KEY             Cloudflare global API key (requires CF_API_EMAIL)
        CF_API_EMAIL           Cloudflare account email
        CF_ZONE_ID             Static zone id, skips the zone lookup

    Runtime:
        CF_DDNS_CONFIG         Config file path (default: cf-ddns.yaml)
        CF_DDNS_INTERVAL       Override the update interval in seconds
        CF_DDNS_LOG_FILE       Log file path (default: log to stderr)
        LOG_LEVEL              DEBUG, INFO, WARNING, ERROR (default: INFO)

Command line flags take precedence over both:

    --config/-c PATH, --verbose/-v, --log PATH, --once, --version
"""

from __future__ import annotations

import argparse
import ipaddress
import logging
import os
import string
import sys
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import dns.exception
import dns.resolver
import requests
import yaml

VERSION = "0.3.0"
APP_NAME = "Cloudflare DDNS Updater"

# =============================================================================
# Configuration
# =============================================================================

CLOUDFLARE_API_BASE = "https://api.cloudflare.com/client/v4"

DEFAULT_CONFIG_FILE = os.getenv("CF_DDNS_CONFIG", "cf-ddns.yaml")
DEFAULT_LOG_FILE = os.getenv("CF_DDNS_LOG_FILE", "")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

SYSTEM_CONFIG_DIR = "/etc/cf-ddns"

DEFAULT_TTL = 300
API_TIMEOUT_SECONDS = 30.0
IP_DETECT_TIMEOUT_SECONDS = 10.0
DNS_LOOKUP_TIMEOUT_SECONDS = 5.0

IPV4_SERVICES = (
    "https://ipv4.icanhazip.com",
    "https://api.ipify.org",
    "https://ipv4.ident.me",
    "https://v4.ident.me",
)

IPV6_SERVICES = (
    "https://ipv6.icanhazip.com",
    "https://api6.ipify.org",
    "https://ipv6.ident.me",
    "https://v6.ident.me",
)

RECORD_TYPE_CHOICES = ("A", "AAAA", "BOTH")

# =============================================================================
# Logging Setup
# =============================================================================

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
VERBOSE_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(filename)s:%(lineno)d %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False, log_file: str = "", level: str = LOG_LEVEL) -> None:
    """Configure the root logger for the process.

    Verbose mode forces DEBUG and adds source locations. When a log file is
    given, output is appended to it instead of stderr.
    """
    if verbose:
        log_level = logging.DEBUG
        fmt = VERBOSE_LOG_FORMAT
    else:
        log_level = getattr(logging, level.upper(), logging.INFO)
        fmt = LOG_FORMAT

    if log_file:
        handler: logging.Handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    else:
        handler = logging.StreamHandler()

    logging.basicConfig(
        level=log_level,
        format=fmt,
        datefmt=LOG_DATE_FORMAT,
        handlers=[handler],
        force=True,
    )
    if log_file:
        logger.info(f"Logging to file: {log_file}")


# =============================================================================
# Errors
# =============================================================================


class DDNSError(Exception):
    """Base class for all updater errors."""


class ConfigInvalid(DDNSError):
    """Configuration could not be loaded or failed validation."""


class DetectionError(DDNSError):
    """No IP echo service returned a usable address for a family."""

    def __init__(self, family: int, message: str = ""):
        self.family = family
        super().__init__(message or f"failed to get IPv{family} address from all services")


class ProviderError(DDNSError):
    """A Cloudflare API call failed.

    ``code`` is only set when Cloudflare reported an error in the response
    envelope. Transport and parse failures carry ``code=None``.
    """

    def __init__(self, message: str = "Cloudflare API request failed", code: Optional[int] = None):
        self.message = message
        self.code = code
        if code is not None:
            super().__init__(f"Cloudflare API error: {message} (code: {code})")
        else:
            super().__init__(message)


class ZoneNotFound(ProviderError):
    """No zone matches the requested name."""


class CreateFailed(ProviderError):
    """Creating a DNS record failed."""


class UpdateFailed(ProviderError):
    """Updating a DNS record failed."""


# =============================================================================
# Enums
# =============================================================================


class Action(Enum):
    """Outcome of reconciling one (domain, record type) pair."""

    NOOP = "noop"
    CREATE = "create"
    UPDATE = "update"
    SKIPPED = "skipped"
    FAILED = "failed"


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class CloudflareConfig:
    """Cloudflare API credentials and optional static zone id."""

    api_token: str = ""
    api_key: str = ""
    email: str = ""
    zone_id: str = ""


@dataclass(frozen=True)
class DomainTarget:
    """A DNS name to keep pointed at this host."""

    name: str
    record_types: str = "BOTH"
    ttl: int = DEFAULT_TTL
    proxied: bool = False

    def wants_a(self) -> bool:
        return self.record_types.upper() in ("A", "BOTH")

    def wants_aaaa(self) -> bool:
        return self.record_types.upper() in ("AAAA", "BOTH")


@dataclass(frozen=True)
class Config:
    """Complete updater configuration."""

    cloudflare: CloudflareConfig = field(default_factory=CloudflareConfig)
    domains: Tuple[DomainTarget, ...] = ()
    interval: int = 0
    verbose: bool = False
    log_file: str = ""


@dataclass(frozen=True)
class Zone:
    """A Cloudflare zone."""

    id: str
    name: str

    @classmethod
    def from_api(cls, data: Any) -> "Zone":
        if not isinstance(data, dict) or not isinstance(data.get("id"), str):
            raise ProviderError(f"failed to parse zone: {data!r}")
        return cls(id=data["id"], name=str(data.get("name") or ""))


@dataclass(frozen=True)
class DNSRecord:
    """A Cloudflare DNS record. ``id`` is empty until Cloudflare assigns one."""

    type: str
    name: str
    content: str
    ttl: int = DEFAULT_TTL
    proxied: bool = False
    id: str = ""

    @classmethod
    def from_api(cls, data: Any) -> "DNSRecord":
        if not isinstance(data, dict):
            raise ProviderError(f"failed to parse DNS record: {data!r}")
        try:
            return cls(
                id=str(data.get("id") or ""),
                type=str(data["type"]),
                name=str(data["name"]),
                content=str(data["content"]),
                ttl=int(data.get("ttl") or 0),
                proxied=bool(data.get("proxied", False)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError(f"failed to parse DNS record: {e}") from e

    def to_payload(self) -> Dict[str, Any]:
        """Full record body for create/update calls."""
        return {
            "type": self.type,
            "name": self.name,
            "content": self.content,
            "ttl": self.ttl,
            "proxied": self.proxied,
        }

    def matches(self, other: "DNSRecord") -> bool:
        """True when content, TTL and proxy flag all agree."""
        return (
            _normalize_content(self.content) == _normalize_content(other.content)
            and self.ttl == other.ttl
            and self.proxied == other.proxied
        )


def _normalize_content(content: str) -> str:
    """Canonical form of an address so "2001:DB8:0::5" equals "2001:db8::5"."""
    try:
        return ipaddress.ip_address(content.strip()).compressed
    except ValueError:
        return content.strip().lower()


@dataclass(frozen=True)
class PairResult:
    """Result of processing one record type for one domain."""

    domain: str
    record_type: str
    action: Action
    error: str = ""


@dataclass
class RunReport:
    """Everything that happened during one update run."""

    ipv4: str = ""
    ipv6: str = ""
    results: List[PairResult] = field(default_factory=list)

    def failures(self) -> List[PairResult]:
        return [r for r in self.results if r.action == Action.FAILED]

    def changes(self) -> List[PairResult]:
        return [r for r in self.results if r.action in (Action.CREATE, Action.UPDATE)]

    def count(self, action: Action) -> int:
        return sum(1 for r in self.results if r.action == action)

    @property
    def ok(self) -> bool:
        return not self.failures()

    def summary(self) -> str:
        return (
            f"{self.count(Action.CREATE)} created, {self.count(Action.UPDATE)} updated, "
            f"{self.count(Action.NOOP)} unchanged, {self.count(Action.SKIPPED)} skipped, "
            f"{self.count(Action.FAILED)} failed"
        )


# =============================================================================
# Utility Functions
# =============================================================================


def _parse_bool(value: Any, *, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_int(value: Any, field_name: str, *, default: int = 0) -> int:
    if value is None or value == "":
        return default
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ConfigInvalid(f"{field_name}: expected an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigInvalid(f"{field_name}: expected an integer, got {value!r}") from None


def is_valid_ipv4(ip: str) -> bool:
    """Check for exactly four dot-separated decimal octets in 0-255."""
    parts = ip.split(".")
    if len(parts) != 4:
        return False

    for part in parts:
        if not 1 <= len(part) <= 3:
            return False
        if any(char not in string.digits for char in part):
            return False
        if int(part) > 255:
            return False

    return True


def is_valid_ipv6(ip: str) -> bool:
    """Loose IPv6 check: 3-8 colon-separated groups of up to four hex digits.

    "::" compression is accepted without verifying the group count it implies.
    """
    if ":" not in ip:
        return False

    parts = ip.split(":")
    if not 3 <= len(parts) <= 8:
        return False

    for part in parts:
        if len(part) > 4:
            return False
        if any(char not in string.hexdigits for char in part):
            return False

    return True


def extract_root_domain(domain: str) -> str:
    """Return the last two labels of a DNS name.

    No public suffix handling: "a.example.co.uk" yields "co.uk".
    """
    parts = domain.split(".")
    if len(parts) <= 2:
        return domain
    return ".".join(parts[-2:])


def get_config_file_mtime(config_path: str) -> float:
    """Get modification time of config file, returns 0 if file doesn't exist."""
    try:
        return os.path.getmtime(config_path) if os.path.exists(config_path) else 0.0
    except OSError:
        return 0.0


def find_config_file(filename: str, search_dirs: Optional[List[str]] = None) -> str:
    """Locate the config file.

    Absolute paths are used as-is. Relative names are tried in the system
    config directory (Linux only), the working directory and the directory of
    the running script, each with and without an added ".yaml" suffix.
    """
    path = Path(filename)
    if path.is_absolute():
        if path.is_file():
            return str(path)
        raise ConfigInvalid(f"config file not found: {filename}")

    filenames = [filename]
    if path.suffix.lower() not in (".yaml", ".yml"):
        filenames.append(f"{filename}.yaml")

    if search_dirs is None:
        search_dirs = []
        if sys.platform.startswith("linux"):
            search_dirs.append(SYSTEM_CONFIG_DIR)
        search_dirs.append(os.getcwd())
        search_dirs.append(str(Path(sys.argv[0]).resolve().parent))

    for directory in search_dirs:
        for name in filenames:
            candidate = Path(directory) / name
            if candidate.is_file():
                return str(candidate)

    raise ConfigInvalid(f"config file not found: {filename}")


# =============================================================================
# Config Loading and Validation
# =============================================================================


def parse_config(data: Mapping[str, Any]) -> Config:
    """Build a Config from a parsed YAML document. Defaults are applied later."""
    cf_data = data.get("cloudflare") or {}
    if not isinstance(cf_data, dict):
        raise ConfigInvalid("cloudflare: expected a mapping")

    cloudflare = CloudflareConfig(
        api_token=str(cf_data.get("api_token") or "").strip(),
        api_key=str(cf_data.get("api_key") or "").strip(),
        email=str(cf_data.get("email") or "").strip(),
        zone_id=str(cf_data.get("zone_id") or "").strip(),
    )

    raw_domains = data.get("domains") or []
    if not isinstance(raw_domains, list):
        raise ConfigInvalid("domains: expected a list")

    domains: List[DomainTarget] = []
    for i, item in enumerate(raw_domains):
        if not isinstance(item, dict):
            raise ConfigInvalid(f"domain[{i}]: expected a mapping, got {item!r}")
        domains.append(
            DomainTarget(
                name=str(item.get("name") or "").strip(),
                record_types=str(item.get("record_types") or "").strip(),
                ttl=_parse_int(item.get("ttl"), f"domain[{i}].ttl"),
                proxied=_parse_bool(item.get("proxied"), default=False),
            )
        )

    return Config(
        cloudflare=cloudflare,
        domains=tuple(domains),
        interval=_parse_int(data.get("interval"), "interval"),
        verbose=_parse_bool(data.get("verbose"), default=False),
        log_file=str(data.get("log_file") or "").strip(),
    )


def apply_env_overrides(config: Config, environ: Optional[Mapping[str, str]] = None) -> Config:
    """Let non-empty CF_* environment variables replace file settings."""
    env = os.environ if environ is None else environ

    cf = config.cloudflare
    cloudflare = CloudflareConfig(
        api_token=env.get("CF_API_TOKEN", "").strip() or cf.api_token,
        api_key=env.get("CF_API_KEY", "").strip() or cf.api_key,
        email=env.get("CF_API_EMAIL", "").strip() or cf.email,
        zone_id=env.get("CF_ZONE_ID", "").strip() or cf.zone_id,
    )

    interval = config.interval
    raw_interval = env.get("CF_DDNS_INTERVAL", "").strip()
    if raw_interval:
        interval = _parse_int(raw_interval, "CF_DDNS_INTERVAL")

    return replace(config, cloudflare=cloudflare, interval=interval)


def load_config(path: str, environ: Optional[Mapping[str, str]] = None) -> Config:
    """Read and parse a YAML config file, then apply environment overrides."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigInvalid(f"failed to read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigInvalid(f"failed to parse config file {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigInvalid(f"config file {path} must contain a mapping")

    return apply_env_overrides(parse_config(data), environ)


def validate_config(config: Config) -> Config:
    """Validate configuration and return a copy with defaults applied.

    All problems are logged, then raised together as ConfigInvalid.
    """
    errors = []

    cf = config.cloudflare
    if not cf.api_token and not (cf.api_key and cf.email):
        errors.append("either api_token or both api_key and email must be provided")

    if not config.domains:
        errors.append("at least one domain must be configured")

    if config.interval < 0:
        errors.append("interval must not be negative")

    domains: List[DomainTarget] = []
    for i, domain in enumerate(config.domains):
        if not domain.name:
            errors.append(f"domain[{i}]: name is required")

        record_types = (domain.record_types or "BOTH").upper()
        if record_types not in RECORD_TYPE_CHOICES:
            errors.append(f"domain[{i}]: record_types must be 'A', 'AAAA', or 'both'")

        if domain.ttl < 0:
            errors.append(f"domain[{i}]: ttl must not be negative")

        domains.append(
            replace(domain, record_types=record_types, ttl=domain.ttl or DEFAULT_TTL)
        )

    if errors:
        for error in errors:
            logger.error(error)
        raise ConfigInvalid("; ".join(errors))

    return replace(config, domains=tuple(domains))


# =============================================================================
# IP Detection
# =============================================================================


class IPDetector:
    """Finds the host's public address by asking IP echo services in order."""

    def __init__(
        self,
        *,
        ipv4_services: Tuple[str, ...] = IPV4_SERVICES,
        ipv6_services: Tuple[str, ...] = IPV6_SERVICES,
        timeout_seconds: float = IP_DETECT_TIMEOUT_SECONDS,
        logger: Optional[logging.Logger] = None,
    ):
        self._services = {4: ipv4_services, 6: ipv6_services}
        self._validators: Dict[int, Callable[[str], bool]] = {
            4: is_valid_ipv4,
            6: is_valid_ipv6,
        }
        self._timeout = timeout_seconds
        self._session = requests.Session()
        self._logger = logger or logging.getLogger(__name__)

    def detect(self, family: int) -> str:
        """Return the first valid address reported for ``family`` (4 or 6)."""
        if family not in self._services:
            raise ValueError(f"unsupported address family: {family}")

        is_valid = self._validators[family]
        for service in self._services[family]:
            ip = self._fetch(service)
            if ip is None:
                continue
            if is_valid(ip):
                return ip
            self._logger.debug(f"Ignoring invalid IPv{family} response from {service}: {ip!r}")

        raise DetectionError(family)

    def get_ipv4(self) -> str:
        return self.detect(4)

    def get_ipv6(self) -> str:
        return self.detect(6)

    def _fetch(self, url: str) -> Optional[str]:
        try:
            response = self._session.get(url, timeout=self._timeout)
        except requests.exceptions.RequestException as e:
            self._logger.debug(f"IP service {url} unreachable: {e}")
            return None

        if response.status_code != 200:
            self._logger.debug(f"HTTP {response.status_code} from {url}")
            return None

        return response.text.strip()


# =============================================================================
# Cloudflare Provider Client
# =============================================================================


class DNSProvider(ABC):
    """Zone and record operations the updater needs from the DNS host."""

    @abstractmethod
    def resolve_zone(self, domain: str) -> str:
        """Return the zone id for a root domain."""
        pass

    @abstractmethod
    def list_records(self, zone_id: str, name: str, record_type: str) -> List[DNSRecord]:
        """Return matching records in provider order. Empty means absent."""
        pass

    @abstractmethod
    def create_record(self, zone_id: str, record: DNSRecord) -> DNSRecord:
        """Create a record and return it with its assigned id."""
        pass

    @abstractmethod
    def update_record(self, zone_id: str, record_id: str, record: DNSRecord) -> DNSRecord:
        """Replace every field of an existing record."""
        pass


class CloudflareClient(DNSProvider):
    """Cloudflare v4 API client.

    Every response is an envelope ``{success, errors, result}``. The envelope
    is checked first; ``result`` is then decoded into the shape the calling
    operation expects.
    """

    def __init__(
        self,
        config: CloudflareConfig,
        *,
        base_url: str = CLOUDFLARE_API_BASE,
        timeout_seconds: float = API_TIMEOUT_SECONDS,
        logger: Optional[logging.Logger] = None,
    ):
        self._config = config
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._logger = logger or logging.getLogger(__name__)
        self._session = requests.Session()
        self._session.headers.update(self._auth_headers())

    def _auth_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._config.api_token:
            headers["Authorization"] = f"Bearer {self._config.api_token}"
        else:
            headers["X-Auth-Key"] = self._config.api_key
            headers["X-Auth-Email"] = self._config.email
        return headers

    def close(self) -> None:
        """Release the pooled HTTP connections."""
        self._session.close()

    def resolve_zone(self, domain: str) -> str:
        if self._config.zone_id:
            return self._config.zone_id

        result = self._request("GET", "zones", params={"name": domain})
        if not isinstance(result, list):
            raise ProviderError(f"failed to parse zones response: {result!r}")
        if not result:
            raise ZoneNotFound(f"zone not found for domain {domain}")

        return Zone.from_api(result[0]).id

    def list_records(self, zone_id: str, name: str, record_type: str) -> List[DNSRecord]:
        result = self._request(
            "GET",
            f"zones/{zone_id}/dns_records",
            params={"name": name, "type": record_type},
        )
        if not isinstance(result, list):
            raise ProviderError(f"failed to parse DNS records response: {result!r}")
        return [DNSRecord.from_api(item) for item in result]

    def create_record(self, zone_id: str, record: DNSRecord) -> DNSRecord:
        try:
            result = self._request(
                "POST", f"zones/{zone_id}/dns_records", payload=record.to_payload()
            )
            return DNSRecord.from_api(result)
        except ProviderError as e:
            raise CreateFailed(e.message, code=e.code) from e

    def update_record(self, zone_id: str, record_id: str, record: DNSRecord) -> DNSRecord:
        try:
            result = self._request(
                "PUT",
                f"zones/{zone_id}/dns_records/{record_id}",
                payload=record.to_payload(),
            )
            return DNSRecord.from_api(result)
        except ProviderError as e:
            raise UpdateFailed(e.message, code=e.code) from e

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, str]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Perform one API call and return the unwrapped ``result`` value."""
        url = f"{self._base_url}/{path}"
        try:
            response = self._session.request(
                method, url, params=params, json=payload, timeout=self._timeout
            )
        except requests.exceptions.RequestException as e:
            raise ProviderError(f"request failed: {e}") from e

        try:
            envelope = response.json()
        except ValueError as e:
            raise ProviderError(f"failed to parse response: {e}") from e

        if not isinstance(envelope, dict):
            raise ProviderError(
                f"failed to parse response: expected object, got {type(envelope).__name__}"
            )

        if not envelope.get("success"):
            errors = envelope.get("errors") or []
            if isinstance(errors, list) and errors and isinstance(errors[0], dict):
                first = errors[0]
                raise ProviderError(str(first.get("message") or ""), code=first.get("code"))
            raise ProviderError()

        return envelope.get("result")


# =============================================================================
# Diagnostic DNS Lookup
# =============================================================================


def check_current_resolution(
    name: str,
    record_type: str,
    *,
    timeout_seconds: float = DNS_LOOKUP_TIMEOUT_SECONDS,
    log: Optional[logging.Logger] = None,
) -> List[str]:
    """Log what ``name`` currently resolves to in public DNS. Never raises."""
    log = log or logger
    log.debug(f"Performing DNS lookup to check current resolution for {name} ({record_type} record)...")

    try:
        resolver = dns.resolver.Resolver()
        resolver.lifetime = timeout_seconds
        answer = resolver.resolve(name, record_type)
    except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
        log.debug(f"No {record_type} records found in DNS for {name}")
        return []
    except dns.exception.DNSException as e:
        log.debug(f"DNS lookup failed for {name} ({record_type} record): {e}")
        return []

    addresses = [rdata.to_text() for rdata in answer]
    log.debug(f"Current DNS resolution for {name} ({record_type}): {addresses}")
    return addresses


# =============================================================================
# Core Updater
# =============================================================================


class DDNSUpdater:
    """Reconciles Cloudflare records with the detected public addresses.

    Domains and record types are processed one at a time. A failure while
    resolving a zone only affects that domain; a failure while listing,
    creating or updating only affects that (domain, record type) pair.
    """

    def __init__(
        self,
        config: Config,
        *,
        client: Optional[DNSProvider] = None,
        ip_detector: Optional[IPDetector] = None,
        verbose: bool = False,
        dns_check: Callable[..., Any] = check_current_resolution,
        logger: Optional[logging.Logger] = None,
    ):
        self._logger = logger or logging.getLogger(__name__)
        self._owns_client = client is None
        self._verbose_flag = verbose
        self.config = config
        self.client = client or CloudflareClient(config.cloudflare, logger=self._logger)
        self.ip_detector = ip_detector or IPDetector(logger=self._logger)
        self.verbose = verbose or config.verbose
        self._dns_check = dns_check

    def reload(self, config: Config) -> None:
        """Switch to a new configuration for subsequent runs."""
        self.config = config
        self.verbose = self._verbose_flag or config.verbose
        if self._owns_client:
            self.client.close()
            self.client = CloudflareClient(config.cloudflare, logger=self._logger)

    def update(self) -> RunReport:
        """Run one full update. Raises ConfigInvalid before any network call."""
        try:
            config = validate_config(self.config)
        except ConfigInvalid as e:
            raise ConfigInvalid(f"configuration validation failed: {e}") from e

        self._logger.debug("Starting DNS update process...")

        report = RunReport()
        if any(d.wants_a() for d in config.domains):
            report.ipv4 = self._detect(4)
        if any(d.wants_aaaa() for d in config.domains):
            report.ipv6 = self._detect(6)

        for domain in config.domains:
            self._logger.debug(f"Processing domain: {domain.name}")
            results = self.update_domain(domain, report.ipv4, report.ipv6)
            report.results.extend(results)
            if not any(r.action == Action.FAILED for r in results):
                self._logger.debug(f"Successfully processed domain: {domain.name}")

        self._logger.info(f"Run complete: {report.summary()}")
        return report

    def _detect(self, family: int) -> str:
        try:
            ip = self.ip_detector.detect(family)
        except DetectionError as e:
            self._logger.warning(f"Failed to get IPv{family} address: {e}")
            return ""
        self._logger.debug(f"Current IPv{family} address: {ip}")
        return ip

    def update_domain(self, domain: DomainTarget, ipv4: str, ipv6: str) -> List[PairResult]:
        """Reconcile every selected record type of one domain."""
        pairs: List[Tuple[str, str, int]] = []
        if domain.wants_a():
            pairs.append(("A", ipv4, 4))
        if domain.wants_aaaa():
            pairs.append(("AAAA", ipv6, 6))

        zone_id = ""
        zone_error = ""
        if any(address for _, address, _ in pairs):
            root = extract_root_domain(domain.name)
            self._logger.debug(f"Getting zone ID for domain: {root}")
            try:
                zone_id = self.client.resolve_zone(root)
                self._logger.debug(f"Zone ID found: {zone_id}")
            except ProviderError as e:
                zone_error = str(e)
                self._logger.error(f"Failed to update domain {domain.name}: failed to get zone ID: {e}")

        results: List[PairResult] = []
        for record_type, address, family in pairs:
            if not address:
                self._logger.debug(
                    f"Skipping {record_type} record for {domain.name}: no IPv{family} address this run"
                )
                results.append(PairResult(domain.name, record_type, Action.SKIPPED))
            elif zone_error:
                results.append(PairResult(domain.name, record_type, Action.FAILED, zone_error))
            else:
                results.append(self.reconcile(zone_id, domain, record_type, address))
        return results

    def reconcile(
        self, zone_id: str, domain: DomainTarget, record_type: str, content: str
    ) -> PairResult:
        """Bring one record in line with the desired content, TTL and proxy flag."""
        self._logger.debug(f"Checking {record_type} record for {domain.name} (target IP: {content})")

        if self.verbose:
            self._dns_check(domain.name, record_type, log=self._logger)

        def failed(message: str, error: Exception) -> PairResult:
            self._logger.error(f"Failed to {message} {record_type} record for {domain.name}: {error}")
            return PairResult(domain.name, record_type, Action.FAILED, str(error))

        try:
            existing = self.client.list_records(zone_id, domain.name, record_type)
        except ProviderError as e:
            return failed("get existing", e)
        self._logger.debug(f"Found {len(existing)} existing {record_type} record(s) for {domain.name}")

        desired = DNSRecord(
            type=record_type,
            name=domain.name,
            content=content,
            ttl=domain.ttl,
            proxied=domain.proxied,
        )

        if not existing:
            self._logger.info(f"Creating {record_type} record for {domain.name} with IP {content}")
            try:
                self.client.create_record(zone_id, desired)
            except ProviderError as e:
                return failed("create", e)
            self._logger.info(f"Successfully created {record_type} record for {domain.name}")
            return PairResult(domain.name, record_type, Action.CREATE)

        current = existing[0]
        if len(existing) > 1:
            self._logger.warning(
                f"Found {len(existing)} {record_type} records for {domain.name}; "
                f"only the first ({current.id}) is managed"
            )
        self._logger.debug(
            f"Current {record_type} record for {domain.name}: "
            f"IP={current.content}, TTL={current.ttl}, Proxied={current.proxied}"
        )

        if current.matches(desired):
            self._logger.debug(f"{record_type} record for {domain.name} is already up to date")
            return PairResult(domain.name, record_type, Action.NOOP)

        self._logger.info(
            f"Updating {record_type} record for {domain.name}: "
            f"{current.content} (ttl={current.ttl}, proxied={current.proxied}) -> "
            f"{content} (ttl={domain.ttl}, proxied={domain.proxied})"
        )
        try:
            self.client.update_record(zone_id, current.id, desired)
        except ProviderError as e:
            return failed("update", e)
        self._logger.info(f"Successfully updated {record_type} record for {domain.name}")
        return PairResult(domain.name, record_type, Action.UPDATE)


# =============================================================================
# Scheduling
# =============================================================================


def _log_report(report: RunReport) -> None:
    if report.ok:
        logger.info("DNS records updated successfully")
    else:
        logger.warning(f"DNS update finished with {len(report.failures())} failed record(s)")


def run_scheduled(
    updater: DDNSUpdater,
    interval: int,
    *,
    config_path: str = "",
    sleep: Callable[[float], Any] = time.sleep,
    max_runs: Optional[int] = None,
) -> int:
    """Run updates every ``interval`` seconds until interrupted.

    A failed run is logged and the next one still happens. When
    ``config_path`` is set, the file is reloaded whenever its mtime changes.
    Returns the number of runs performed.
    """
    runs = 0
    last_mtime = get_config_file_mtime(config_path) if config_path else 0.0

    try:
        while True:
            if config_path:
                mtime = get_config_file_mtime(config_path)
                if mtime != last_mtime:
                    last_mtime = mtime
                    logger.info(f"Config change detected in: {Path(config_path).name}")
                    try:
                        config = validate_config(load_config(config_path))
                        updater.reload(config)
                        if config.interval > 0:
                            interval = config.interval
                        else:
                            logger.warning(
                                "Reloaded interval is 0 (run once); ignored while running "
                                f"continuously, keeping {interval} seconds"
                            )
                    except ConfigInvalid as e:
                        logger.error(f"Failed to reload configuration: {e}")
                        logger.warning("Continuing with previous configuration")

            try:
                _log_report(updater.update())
            except Exception as e:
                logger.error(f"Failed to update DNS records: {e}", exc_info=True)

            runs += 1
            if max_runs is not None and runs >= max_runs:
                break

            logger.info(f"Waiting {interval} seconds before next update...")
            sleep(interval)

    except KeyboardInterrupt:
        logger.info("Shutting down gracefully...")

    return runs


# =============================================================================
# Main
# =============================================================================


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="cf-ddns",
        description="Keep Cloudflare A/AAAA records pointed at this host's public IP",
    )
    parser.add_argument(
        "--config",
        "-c",
        default=DEFAULT_CONFIG_FILE,
        help=f"Path to configuration file (default: {DEFAULT_CONFIG_FILE})",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument(
        "--log",
        default=DEFAULT_LOG_FILE,
        help="Log file path (optional, logs to stderr if not specified)",
    )
    parser.add_argument(
        "--once", action="store_true", help="Run once and exit (ignore interval setting)"
    )
    parser.add_argument(
        "--version", action="store_true", help="Show version information and exit"
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)

    if args.version:
        print(f"{APP_NAME} v{VERSION}")
        sys.exit(0)

    setup_logging(args.verbose)
    logger.info(f"{APP_NAME} v{VERSION}")

    try:
        config_path = find_config_file(args.config)
        config = load_config(config_path)
    except ConfigInvalid as e:
        logger.error(f"Failed to load configuration: {e}")
        sys.exit(1)

    try:
        setup_logging(args.verbose or config.verbose, args.log or config.log_file)
    except OSError as e:
        logger.error(f"Failed to setup logging: {e}")
        sys.exit(1)

    logger.info(f"Loaded configuration from: {config_path}")

    try:
        config = validate_config(config)
    except ConfigInvalid as e:
        logger.error(f"Configuration validation failed: {e}")
        sys.exit(1)

    updater = DDNSUpdater(config, verbose=args.verbose)

    if args.once or config.interval <= 0:
        try:
            _log_report(updater.update())
        except ConfigInvalid as e:
            logger.error(f"Failed to update DNS records: {e}")
            sys.exit(1)
        return

    logger.info(f"Starting continuous mode with {config.interval} second interval")
    run_scheduled(updater, config.interval, config_path=config_path)


if __name__ == "__main__":
    main()
