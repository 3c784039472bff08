"""
Configuration module for the Paperless-ngx OCR batch engine.

This module centralizes the loading and validation of all configuration
parameters from environment variables. It provides a single `Settings`
class that acts as a container for all configurable values, ensuring
that they are defined in one place and can be easily imported and used
throughout the application.
"""

import os
from typing import Literal

_TRUE_VALUES = ("true", "1", "yes", "on")
_FALSE_VALUES = ("false", "0", "no", "off")


class Settings:
    """
    A container for all configuration settings, loaded from environment variables.

    This class centralizes configuration, providing default values for optional
    settings and raising errors for missing required settings.
    """

    # --- Paperless-ngx API Configuration ---
    PAPERLESS_URL: str
    PAPERLESS_TOKEN: str
    REQUEST_TIMEOUT: int

    # --- OCR Service Configuration ---
    OCR_SERVICE_URL: str
    OCR_CLEAN_TEXT: bool
    OCR_MIN_CONFIDENCE: str
    OCR_PRESERVE_LAYOUT: bool
    OCR_INCLUDE_CONFIDENCE: bool
    OCR_INCLUDE_BBOXES: bool
    OCR_FORCE_OCR: bool
    OCR_REQUEST_TIMEOUT: int
    OCR_HEALTH_TIMEOUT: int
    OCR_INTER_DOCUMENT_DELAY: float

    # --- Storage ---
    LEDGER_DATABASE_URL: str
    THUMBNAIL_CACHE_DIR: str

    # --- Paperless-ngx Tag IDs ---
    PRE_TAG_ID: int
    POST_TAG_ID: int | None
    ERROR_TAG_ID: int | None

    # --- Daemon Configuration ---
    POLL_INTERVAL: int
    MAX_RETRIES: int
    MAX_RETRY_BACKOFF_SECONDS: int

    # --- Logging ---
    LOG_LEVEL: str
    LOG_FORMAT: Literal["console", "json"]

    def __init__(self):
        """
        Loads settings from environment variables and performs validation.
        """
        # --- Paperless-ngx API Configuration ---
        self.PAPERLESS_URL = os.getenv("PAPERLESS_URL", "http://paperless:8000").rstrip(
            "/"
        )
        self.PAPERLESS_TOKEN = self._get_required_env("PAPERLESS_TOKEN")
        self.REQUEST_TIMEOUT = self._get_positive_int("REQUEST_TIMEOUT", 30)

        # --- OCR Service Configuration ---
        self.OCR_SERVICE_URL = os.getenv(
            "OCR_SERVICE_URL", "http://localhost:8123"
        ).rstrip("/")
        self.OCR_CLEAN_TEXT = self._get_bool("OCR_CLEAN_TEXT", True)
        self.OCR_MIN_CONFIDENCE = os.getenv("OCR_MIN_CONFIDENCE", "0.4")
        try:
            confidence = float(self.OCR_MIN_CONFIDENCE)
        except ValueError:
            raise ValueError("OCR_MIN_CONFIDENCE must be a number") from None
        if not 0.0 <= confidence <= 1.0:
            raise ValueError("OCR_MIN_CONFIDENCE must be between 0 and 1")
        self.OCR_PRESERVE_LAYOUT = self._get_bool("OCR_PRESERVE_LAYOUT", True)
        self.OCR_INCLUDE_CONFIDENCE = self._get_bool("OCR_INCLUDE_CONFIDENCE", True)
        self.OCR_INCLUDE_BBOXES = self._get_bool("OCR_INCLUDE_BBOXES", True)
        self.OCR_FORCE_OCR = self._get_bool("OCR_FORCE_OCR", False)
        self.OCR_REQUEST_TIMEOUT = self._get_positive_int("OCR_REQUEST_TIMEOUT", 300)
        self.OCR_HEALTH_TIMEOUT = self._get_positive_int("OCR_HEALTH_TIMEOUT", 5)
        self.OCR_INTER_DOCUMENT_DELAY = max(
            0.0, float(os.getenv("OCR_INTER_DOCUMENT_DELAY", "0.1"))
        )

        # --- Storage ---
        self.LEDGER_DATABASE_URL = os.getenv(
            "LEDGER_DATABASE_URL", "sqlite:///data/ocr_processing.db"
        )
        self.THUMBNAIL_CACHE_DIR = os.getenv("THUMBNAIL_CACHE_DIR", "data/thumbnails")

        # --- Paperless-ngx Tag IDs ---
        self.PRE_TAG_ID = int(os.getenv("PRE_TAG_ID", 443))
        post_tag = os.getenv("POST_TAG_ID", "").strip()
        self.POST_TAG_ID = int(post_tag) if post_tag else None
        error_tag = os.getenv("ERROR_TAG_ID", "").strip()
        self.ERROR_TAG_ID = int(error_tag) if error_tag else None

        # --- Daemon Configuration ---
        self.POLL_INTERVAL = int(os.getenv("POLL_INTERVAL", 15))
        self.MAX_RETRIES = int(os.getenv("MAX_RETRIES", 20))
        self.MAX_RETRY_BACKOFF_SECONDS = int(os.getenv("MAX_RETRY_BACKOFF_SECONDS", 30))

        # --- Logging ---
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_FORMAT = os.getenv("LOG_FORMAT", "console").lower()
        if self.LOG_FORMAT not in ("console", "json"):
            raise ValueError("LOG_FORMAT must be 'console' or 'json'")

    def _get_required_env(self, var_name: str) -> str:
        """
        Gets a required environment variable, raising an error if it's not set.
        """
        value = os.getenv(var_name)
        if value is None:
            raise ValueError(f"Required environment variable '{var_name}' is not set.")
        return value

    def _get_bool(self, var_name: str, default: bool) -> bool:
        """Parse a boolean-like environment variable."""
        value = os.getenv(var_name)
        if value is None or not value.strip():
            return default
        normalized = value.strip().lower()
        if normalized in _TRUE_VALUES:
            return True
        if normalized in _FALSE_VALUES:
            return False
        raise ValueError(f"{var_name} must be a boolean (true/false)")

    def _get_positive_int(self, var_name: str, default: int) -> int:
        value = int(os.getenv(var_name, default))
        if value < 1:
            raise ValueError(f"{var_name} must be >= 1")
        return value

    def ocr_form_fields(self) -> dict[str, str]:
        """Return the form fields sent alongside every OCR upload."""
        return {
            "clean_text": _as_form_bool(self.OCR_CLEAN_TEXT),
            "min_confidence": self.OCR_MIN_CONFIDENCE,
            "preserve_layout": _as_form_bool(self.OCR_PRESERVE_LAYOUT),
            "include_confidence": _as_form_bool(self.OCR_INCLUDE_CONFIDENCE),
            "include_bboxes": _as_form_bool(self.OCR_INCLUDE_BBOXES),
            "force_ocr": _as_form_bool(self.OCR_FORCE_OCR),
        }


def _as_form_bool(value: bool) -> str:
    return "true" if value else "false"
