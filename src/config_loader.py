"""

Configuration loader for the listing harvester
Reads and validates settings.yaml
"""

import yaml
import os
from pathlib import Path
from typing import Dict, Any, Optional
from datetime import datetime
import logging

logger = logging.getLogger(__name__)

SEARCH_MODES = ("keyword", "category", "custom_url")
ENDPOINT_ENV_VAR = "HARVEST_BROWSER_ENDPOINT"


class ConfigValidationError(ValueError):
    """Raised when configuration fails invariant validation."""
    pass


def _validate_non_negative(value: Any, field: str) -> None:
    """Validate that a numeric value is non-negative."""
    if value is not None and float(value) < 0:
        raise ConfigValidationError(
            f"Invalid config: '{field}' must be non-negative, got {value}"
        )


def _validate_positive(value: Any, field: str) -> None:
    """Validate that a numeric value is positive (> 0)."""
    if value is not None and float(value) <= 0:
        raise ConfigValidationError(
            f"Invalid config: '{field}' must be positive (> 0), got {value}"
        )


def _validate_min_max_pair(min_val: Any, max_val: Any, min_field: str, max_field: str) -> None:
    """Validate that min_val <= max_val for a delay/range pair."""
    if min_val is not None and max_val is not None:
        if float(min_val) > float(max_val):
            raise ConfigValidationError(
                f"Invalid config: '{min_field}' ({min_val}) must be <= '{max_field}' ({max_val})"
            )


class ConfigLoader:
    """Loads and validates configuration from YAML file"""

    def __init__(self, config_path: str = "config/settings.yaml"):
        self.config_path = Path(config_path)
        self.config: Dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        """Load config from YAML file"""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self.config = yaml.safe_load(f) or {}
            logger.info(f"✓ Config loaded from {self.config_path}")
        except yaml.YAMLError as e:
            logger.error(f"Error parsing config file: {e}")
            raise

        if not isinstance(self.config, dict):
            raise ConfigValidationError(f"Invalid config: {self.config_path} must contain a mapping")

        self._validate_invariants()

    def _validate_invariants(self) -> None:
        """Validate configuration invariants. Raises ConfigValidationError on failure."""
        mode = self.get_search_mode()
        if mode not in SEARCH_MODES:
            raise ConfigValidationError(
                f"Invalid config: 'search.mode' must be one of {', '.join(SEARCH_MODES)}, got {mode!r}"
            )
        if mode == "custom_url" and not self.get('search.custom_url'):
            raise ConfigValidationError("Invalid config: 'search.custom_url' is required in custom_url mode")

        # Request pacing (milliseconds)
        min_delay = self.get('scraper.delay.min')
        max_delay = self.get('scraper.delay.max')
        _validate_non_negative(min_delay, 'scraper.delay.min')
        _validate_non_negative(max_delay, 'scraper.delay.max')
        _validate_min_max_pair(min_delay, max_delay, 'scraper.delay.min', 'scraper.delay.max')

        # Harvest settings
        workers = self.get('scraper.workers')
        if workers is not None and int(workers) < 1:
            raise ConfigValidationError(f"Invalid config: 'scraper.workers' must be >= 1, got {workers}")
        _validate_non_negative(self.get('scraper.max_pages'), 'scraper.max_pages')
        _validate_non_negative(self.get('scraper.retry_attempts'), 'scraper.retry_attempts')
        _validate_non_negative(self.get('scraper.page_retry_backoff'), 'scraper.page_retry_backoff')
        _validate_positive(self.get('scraper.safety_ceiling'), 'scraper.safety_ceiling')
        _validate_positive(self.get('scraper.poll_interval'), 'scraper.poll_interval')

        # Browser timeouts (must be positive)
        _validate_positive(self.get('browser.page_timeout'), 'browser.page_timeout')
        _validate_positive(self.get('browser.navigation_timeout'), 'browser.navigation_timeout')
        _validate_non_negative(self.get('browser.settle_delay'), 'browser.settle_delay')

        logger.debug("✓ Config invariants validated")

    def get(self, key: str, default: Any = None) -> Any:
        """Get config value by dot notation (e.g., 'scraper.delay.min')"""
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k, default)
            else:
                return default

        return value

    # === Search Config ===

    def get_search_mode(self) -> str:
        return self.get('search.mode', 'keyword')

    def get_keyword(self) -> str:
        return self.get('search.keyword', '') or ''

    def get_category(self) -> str:
        return self.get('search.category', '') or ''

    def get_custom_url(self) -> str:
        return self.get('search.custom_url', '') or ''

    def get_base_url(self) -> str:
        """Listing root used for keyword search and as the default start page"""
        return self.get('search.base_url', 'https://www.jobthai.com/th/jobs')

    def get_keyword_param(self) -> str:
        return self.get('search.keyword_param', 'keyword')

    def get_category_url_template(self) -> str:
        return self.get('search.category_url_template', 'https://www.jobthai.com/หางาน/{category}')

    # === Listing Config ===

    def get_link_selector(self) -> str:
        """Selector matching record links on a listing page"""
        return self.get('listing.link_selector', 'a[href*="/job/"]')

    def get_id_pattern(self) -> str:
        """Regex with one group capturing the record id from a link href"""
        return self.get('listing.id_pattern', r'/job/(\d+)')

    # === Scraper Config ===

    def get_workers(self) -> int:
        return int(self.get('scraper.workers', 3))

    def get_max_pages(self) -> int:
        """Page cap for the listing walk (0 = unbounded)"""
        return int(self.get('scraper.max_pages', 0))

    def get_retry_attempts(self) -> int:
        return int(self.get('scraper.retry_attempts', 3))

    def get_page_retry_backoff(self) -> float:
        """Fixed wait in seconds before retrying a failed listing page"""
        return float(self.get('scraper.page_retry_backoff', 5))

    def get_safety_ceiling(self) -> int:
        return int(self.get('scraper.safety_ceiling', 500))

    def get_poll_interval(self) -> float:
        """Seconds an idle worker waits before checking the queue again"""
        return float(self.get('scraper.poll_interval', 0.5))

    def get_min_delay(self) -> float:
        """Get minimum delay between requests in seconds"""
        return float(self.get('scraper.delay.min', 1000)) / 1000

    def get_max_delay(self) -> float:
        """Get maximum delay between requests in seconds"""
        return float(self.get('scraper.delay.max', 3000)) / 1000

    # === Browser Config ===

    def get_browser_endpoint(self) -> str:
        """Driver endpoint; the environment overrides the file"""
        return os.getenv(ENDPOINT_ENV_VAR) or self.get('browser.endpoint', '') or ''

    def get_browser_connect_mode(self) -> str:
        return self.get('browser.connect_mode', 'cdp')

    def is_headless(self) -> bool:
        """Check if browser should run in headless mode"""
        return bool(self.get('browser.headless', True))

    def get_page_timeout(self) -> int:
        """Get page load timeout in milliseconds"""
        return int(self.get('browser.page_timeout', 30) * 1000)

    def get_navigation_timeout(self) -> int:
        """Get navigation timeout in milliseconds"""
        return int(self.get('browser.navigation_timeout', 45) * 1000)

    def get_settle_delay(self) -> float:
        """Extra seconds to wait after the page goes idle"""
        return float(self.get('browser.settle_delay', 2))

    # === Output Config ===

    def get_output_path(self) -> Path:
        return Path(self.get('output.json_file', 'output/jobs.json'))

    def get_metrics_path(self) -> Optional[Path]:
        template = self.get('output.metrics_file', '')
        if not template:
            return None
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        return Path(template.replace('{timestamp}', timestamp))

    # === Logging Config ===

    def get_log_level(self) -> str:
        """Get logging level"""
        return self.get('logging.level', 'INFO')

    def get_log_file(self) -> Path:
        """Get log file path with timestamp"""
        template = self.get('logging.log_file', 'logs/harvest_{timestamp}.log')
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        filename = template.replace('{timestamp}', timestamp)
        return Path(filename)

    def set_max_pages(self, max_pages: int) -> None:
        """Persist a new page cap back into the YAML file"""
        scraper = self.config.setdefault('scraper', {})
        scraper['max_pages'] = int(max_pages)
        with open(self.config_path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(self.config, f, allow_unicode=True, sort_keys=False)
        logger.info("Updated %s with scraper.max_pages=%s", self.config_path, max_pages)

    def __repr__(self) -> str:
        return f"<Config: mode={self.get_search_mode()}, workers={self.get_workers()}>"


# Convenience function
def load_config(config_path: str = "config/settings.yaml") -> ConfigLoader:
    """Load configuration from file"""
    return ConfigLoader(config_path)
