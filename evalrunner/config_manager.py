"""
Configuration manager for evaluation runner settings and the learner mapping.
"""
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from .models import RunnerSettings


class ConfigManager:
    """Manages runner configuration and resolves Discord users to learners."""

    # Default configuration values
    DEFAULT_API_BASE_URL = "http://localhost:3001"
    DEFAULT_REQUEST_TIMEOUT = 10.0
    DEFAULT_TICK_INTERVAL = 1.0
    DEFAULT_PASS_THRESHOLD = 70.0
    DEFAULT_HISTORY_LIMIT = 50
    DEFAULT_TIMER_REFRESH_INTERVAL = 10

    # Validation limits
    MIN_REQUEST_TIMEOUT = 1
    MAX_REQUEST_TIMEOUT = 120
    MAX_TICK_INTERVAL = 5
    MIN_HISTORY_LIMIT = 1
    MAX_HISTORY_LIMIT = 200
    MIN_TIMER_REFRESH_INTERVAL = 1
    MAX_TIMER_REFRESH_INTERVAL = 60

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self._settings = RunnerSettings()
        self._learners: Dict[int, int] = {}

    def get_settings(self) -> RunnerSettings:
        """
        Get a copy of the current settings.

        Returns:
            RunnerSettings object with current configuration
        """
        return RunnerSettings(
            api_base_url=self._settings.api_base_url,
            request_timeout=self._settings.request_timeout,
            tick_interval=self._settings.tick_interval,
            pass_threshold=self._settings.pass_threshold,
            history_limit=self._settings.history_limit,
            timer_refresh_interval=self._settings.timer_refresh_interval
        )

    @staticmethod
    def _failure(error: str, user_message: str) -> Dict[str, Any]:
        return {'success': False, 'error': error, 'user_message': user_message}

    @staticmethod
    def _success(message: str, user_message: str) -> Dict[str, Any]:
        return {'success': True, 'message': message, 'user_message': user_message}

    def set_api_base_url(self, url: str) -> Dict[str, Any]:
        """
        Set the backend base URL.

        Args:
            url: http(s) URL of the evaluation backend

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(url, str) or not url.strip():
            error_msg = "API base URL must be a non-empty string"
            self.logger.error(error_msg)
            return self._failure(error_msg, "❌ Invalid input: Expected a URL")

        parsed = urlparse(url.strip())
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            error_msg = f"API base URL must be an http(s) URL, got {url!r}"
            self.logger.error(error_msg)
            return self._failure(error_msg, f"❌ Invalid URL: {url}")

        self._settings.api_base_url = url.strip().rstrip('/')
        self.logger.info(f"API base URL set to {self._settings.api_base_url}")
        return self._success(
            f"API base URL set to {self._settings.api_base_url}",
            f"✅ Backend set to {self._settings.api_base_url}"
        )

    def _set_number(
        self,
        attribute: str,
        label: str,
        value: Any,
        minimum: float,
        maximum: float,
        integer: bool = False,
        exclusive_minimum: bool = False
    ) -> Dict[str, Any]:
        allowed = (int,) if integer else (int, float)
        if isinstance(value, bool) or not isinstance(value, allowed):
            expected = "an integer" if integer else "a number"
            error_msg = f"{label} must be {expected}, got {type(value).__name__}"
            self.logger.error(error_msg)
            return self._failure(error_msg, f"❌ Invalid input: Expected {expected}, got {type(value).__name__}")

        too_small = value <= minimum if exclusive_minimum else value < minimum
        if too_small:
            bound = "greater than" if exclusive_minimum else "at least"
            error_msg = f"{label} must be {bound} {minimum}"
            self.logger.error(error_msg)
            return self._failure(error_msg, f"❌ {label} too small: must be {bound} {minimum}")

        if value > maximum:
            error_msg = f"{label} cannot exceed {maximum}"
            self.logger.error(error_msg)
            return self._failure(error_msg, f"❌ {label} too large: Maximum is {maximum}")

        setattr(self._settings, attribute, value)
        self.logger.info(f"{label} set to {value}")
        return self._success(f"{label} set to {value}", f"✅ {label} set to {value}")

    def set_request_timeout(self, seconds: float) -> Dict[str, Any]:
        return self._set_number(
            'request_timeout', "Request timeout", seconds,
            self.MIN_REQUEST_TIMEOUT, self.MAX_REQUEST_TIMEOUT
        )

    def set_tick_interval(self, seconds: float) -> Dict[str, Any]:
        return self._set_number(
            'tick_interval', "Tick interval", seconds,
            0, self.MAX_TICK_INTERVAL, exclusive_minimum=True
        )

    def set_pass_threshold(self, percentage: float) -> Dict[str, Any]:
        return self._set_number('pass_threshold', "Pass threshold", percentage, 0, 100)

    def set_history_limit(self, limit: int) -> Dict[str, Any]:
        return self._set_number(
            'history_limit', "History limit", limit,
            self.MIN_HISTORY_LIMIT, self.MAX_HISTORY_LIMIT, integer=True
        )

    def set_timer_refresh_interval(self, seconds: int) -> Dict[str, Any]:
        return self._set_number(
            'timer_refresh_interval', "Timer refresh interval", seconds,
            self.MIN_TIMER_REFRESH_INTERVAL, self.MAX_TIMER_REFRESH_INTERVAL, integer=True
        )

    def set_learner_mapping(self, mapping: Dict[Any, Any]) -> Dict[str, Any]:
        """
        Replace the Discord user id -> learner id mapping.

        Keys and values may be ints or digit strings (JSON object keys are strings).
        """
        if not isinstance(mapping, dict):
            error_msg = f"Learner mapping must be an object, got {type(mapping).__name__}"
            self.logger.error(error_msg)
            return self._failure(error_msg, "❌ Invalid learner mapping")

        learners: Dict[int, int] = {}
        for user_id, learner_id in mapping.items():
            try:
                learners[int(user_id)] = int(learner_id)
            except (TypeError, ValueError):
                error_msg = f"Invalid learner mapping entry: {user_id!r} -> {learner_id!r}"
                self.logger.error(error_msg)
                return self._failure(error_msg, f"❌ Invalid learner mapping entry for {user_id}")

        self._learners = {}
        for user_id, learner_id in learners.items():
            self.link_learner(user_id, learner_id)
        self.logger.info(f"Learner mapping loaded with {len(learners)} entries")
        return self._success(
            f"Learner mapping loaded with {len(learners)} entries",
            f"✅ {len(learners)} learners linked"
        )

    def link_learner(self, user_id: int, learner_id: int) -> None:
        self._learners[int(user_id)] = int(learner_id)
        self.logger.debug(f"Discord user {user_id} linked to learner {learner_id}")

    def get_learner_id(self, user_id: int) -> Optional[int]:
        """Resolve a Discord user to a learner id, None if not linked."""
        return self._learners.get(int(user_id))

    def apply_config(self, config: Dict[str, Any]) -> List[str]:
        """
        Apply a loaded config.json dictionary on top of the defaults.

        Invalid values are logged and skipped so defaults stay in place.
        The learner mapping is only replaced when the config carries one.

        Returns:
            List of error messages for skipped values
        """
        self.reset_to_defaults()
        errors: List[str] = []
        api_config = config.get('api', {}) or {}
        session_config = config.get('session', {}) or {}
        history_config = config.get('history', {}) or {}

        setters = [
            (api_config, 'base_url', self.set_api_base_url),
            (api_config, 'request_timeout', self.set_request_timeout),
            (session_config, 'tick_interval', self.set_tick_interval),
            (session_config, 'timer_refresh_interval', self.set_timer_refresh_interval),
            (history_config, 'pass_threshold', self.set_pass_threshold),
            (history_config, 'limit', self.set_history_limit),
        ]
        for section, key, setter in setters:
            if key in section:
                result = setter(section[key])
                if not result['success']:
                    errors.append(result['error'])

        if 'learners' in config:
            result = self.set_learner_mapping(config['learners'])
            if not result['success']:
                errors.append(result['error'])

        return errors

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._settings = RunnerSettings(
            api_base_url=self.DEFAULT_API_BASE_URL,
            request_timeout=self.DEFAULT_REQUEST_TIMEOUT,
            tick_interval=self.DEFAULT_TICK_INTERVAL,
            pass_threshold=self.DEFAULT_PASS_THRESHOLD,
            history_limit=self.DEFAULT_HISTORY_LIMIT,
            timer_refresh_interval=self.DEFAULT_TIMER_REFRESH_INTERVAL
        )
        self.logger.info("All settings reset to default values")

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {
            "valid": True,
            "issues": []
        }
        settings = self._settings

        parsed = urlparse(settings.api_base_url or "")
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid API base URL: {settings.api_base_url}")

        if not (self.MIN_REQUEST_TIMEOUT <= settings.request_timeout <= self.MAX_REQUEST_TIMEOUT):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid request timeout: {settings.request_timeout}")

        if not (0 < settings.tick_interval <= self.MAX_TICK_INTERVAL):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid tick interval: {settings.tick_interval}")

        if not (0 <= settings.pass_threshold <= 100):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid pass threshold: {settings.pass_threshold}")

        if not (self.MIN_HISTORY_LIMIT <= settings.history_limit <= self.MAX_HISTORY_LIMIT):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid history limit: {settings.history_limit}")

        return validation_result

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        s = self._settings
        return (
            f"Runner Settings:\n"
            f"• Backend: {s.api_base_url}\n"
            f"• Request timeout: {s.request_timeout} seconds\n"
            f"• Pass threshold: {s.pass_threshold:g}%\n"
            f"• History limit: {s.history_limit} attempts\n"
            f"• Timer refresh: every {s.timer_refresh_interval} seconds\n"
            f"• Linked learners: {len(self._learners)}"
        )
