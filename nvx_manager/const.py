"""Constants for the NVX manager."""

from __future__ import annotations

# Target product family
PRODUCT_PREFIX = "DM-NVX"

# Device web endpoints
LOGIN_PATH = "/userlogin.html"
LOGOUT_PATH = "/logout"
DEVICE_PATH = "/Device"

# Session handshake
TRACKID_COOKIE = "TRACKID"
XSRF_RESPONSE_HEADER = "CREST-XSRF-TOKEN"
XSRF_REQUEST_HEADER = "X-CREST-XSRF-TOKEN"

# Timeouts (seconds)
DEFAULT_TIMEOUT = 10
WRITE_TIMEOUT = 15
LOGOUT_TIMEOUT = 5
REACHABILITY_TIMEOUT = 3

# Configuration keys
CONF_DISCOVERY_TIMEOUT = "discovery_timeout"
CONF_REFRESH_INTERVAL = "refresh_interval"
CONF_REQUEST_TIMEOUT = "request_timeout"
CONF_TRANSPORTS = "transports"
CONF_CERT_POLICY = "cert_policy"

# Default values
DEFAULT_DISCOVERY_TIMEOUT = 5.0  # seconds
DEFAULT_REFRESH_INTERVAL = 30  # seconds
DEFAULT_IDENTIFY_DURATION = 30  # seconds

# Limits (in seconds)
MIN_DISCOVERY_TIMEOUT = 0.5
MAX_DISCOVERY_TIMEOUT = 60.0
MIN_REFRESH_INTERVAL = 10
MAX_REFRESH_INTERVAL = 300
MIN_REQUEST_TIMEOUT = 1
MAX_REQUEST_TIMEOUT = 60
