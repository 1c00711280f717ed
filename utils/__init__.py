"""Utility modules for Signal Engine."""
from utils.logger import setup_logging
from utils.rate_limiter import RateLimiter
from utils.http_client import HTTPClient, APIError
from utils.cancellation import CancellationToken, CycleCancelled
