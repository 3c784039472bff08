"""
Common building blocks shared by the OCR engine and its entry points.

This package contains reusable, domain-agnostic code:

- configuration loading (environment variables)
- Paperless-ngx API client and thumbnail cache
- retry/backoff helpers
- a small polling daemon loop
- logging configuration
"""
