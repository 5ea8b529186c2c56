#!/usr/bin/env python3
"""
Configuration utilities for the inheritance audit.

This module provides:
- Reading the rclone configuration and extracting the OneDrive access token
- Loading audit settings (state/results directories, session budget, page
  capacity) from an optional INI file
"""

import configparser
import json
import os
from datetime import datetime, timezone
from typing import List, NamedTuple, Optional

RCLONE_CONF_PATH = "~/.config/rclone/rclone.conf"
AUDIT_CONF_PATH = "~/.config/inheritance-audit/audit.conf"
ONEDRIVE_REMOTE_TYPES = ("onedrive", "onedrivebusiness", "sharepoint")

DEFAULT_STATE_DIR = "~/.local/share/inheritance-audit"
DEFAULT_RESULTS_DIR = "~/InheritanceAudit"
# Sessions stop after 20 minutes; resume continues from the queue
DEFAULT_SESSION_BUDGET_SECONDS = 20 * 60
DEFAULT_PAGE_CAPACITY = 50000


class AuditSettings(NamedTuple):
    state_dir: str
    results_dir: str
    session_budget_seconds: float = DEFAULT_SESSION_BUDGET_SECONDS
    page_capacity: int = DEFAULT_PAGE_CAPACITY
    organization_domain: str = ""


def _read_rclone_config(conf_path: str) -> Optional[configparser.ConfigParser]:
    conf_path = os.path.expanduser(conf_path)
    if not os.path.exists(conf_path):
        return None
    config = configparser.ConfigParser()
    config.read(conf_path)
    return config


def find_onedrive_remotes(conf_path: str = RCLONE_CONF_PATH) -> List[str]:
    """
    Find all OneDrive remotes in rclone configuration.

    Returns:
        List of OneDrive remote names
    """
    config = _read_rclone_config(conf_path)
    if config is None:
        return []
    return [name for name in config.sections()
            if config[name].get("type", "").lower() in ONEDRIVE_REMOTE_TYPES]


def token_expired(expiry_str: str, now: Optional[datetime] = None) -> bool:
    """
    Check an rclone token expiry (e.g. 2025-07-23T15:50:44.457921153+10:00).

    Unparseable values count as not expired; Graph will reject the token
    if it really is.
    """
    # fromisoformat() accepts at most microseconds
    if "." in expiry_str:
        head, _, tail = expiry_str.partition(".")
        digits = len(tail) - len(tail.lstrip("0123456789"))
        expiry_str = f"{head}.{tail[:min(digits, 6)]}{tail[digits:]}"
    try:
        expiry_time = datetime.fromisoformat(expiry_str)
    except ValueError:
        print(f"Warning: Could not parse token expiry time '{expiry_str}'")
        return False
    if expiry_time.tzinfo is None:
        expiry_time = expiry_time.replace(tzinfo=timezone.utc)
    return (now or datetime.now(timezone.utc)) >= expiry_time


def get_access_token(rclone_remote: Optional[str] = None, conf_path: str = RCLONE_CONF_PATH) -> Optional[str]:
    """
    Extract access token from rclone.conf for the specified remote.

    Args:
        rclone_remote: Name of the OneDrive remote in rclone.conf.
                      If None, the first OneDrive entry is used.
        conf_path: Location of rclone.conf

    Returns:
        Access token string if successful, None otherwise
    """
    config = _read_rclone_config(conf_path)
    if config is None:
        print(f"Error: rclone config not found at {conf_path}")
        print("Please configure rclone first: rclone config")
        return None

    if rclone_remote is None:
        onedrive_remotes = find_onedrive_remotes(conf_path)
        if not onedrive_remotes:
            print("Error: No OneDrive remotes found in rclone configuration")
            print("Please configure OneDrive first: rclone config")
            return None
        rclone_remote = onedrive_remotes[0]
        if len(onedrive_remotes) > 1:
            print(f"Found {len(onedrive_remotes)} OneDrive remotes, using the first: {rclone_remote}")

    if rclone_remote not in config:
        print(f"Error: Remote '{rclone_remote}' not found in {conf_path}")
        print(f"Available remotes: {list(config.sections())}")
        return None

    token_json = config[rclone_remote].get("token")
    if not token_json:
        print(f"Error: No token found for remote '{rclone_remote}' in {conf_path}")
        print("Please authenticate first: rclone authorize onedrive")
        return None

    try:
        token = json.loads(token_json)
    except ValueError as e:
        print(f"Error: Could not parse token JSON: {e}")
        return None

    expiry_str = token.get("expiry")
    if expiry_str and token_expired(expiry_str):
        print(f"❌ Error: Token has expired (expiry: {expiry_str})")
        print("To fix this, please refresh your rclone token:")
        print(f"   rclone config reconnect {rclone_remote}:")
        return None

    access_token = token.get("access_token")
    if not access_token:
        print("Error: No access_token in token JSON")
        print("Token may be expired. Please re-authenticate: rclone authorize onedrive")
        return None

    return access_token


def _positive(value: str, key: str, cast):
    try:
        number = cast(value)
    except ValueError:
        raise ValueError(f"Invalid value for '{key}': {value!r}") from None
    if number <= 0:
        raise ValueError(f"'{key}' must be positive, got {value!r}")
    return number


def load_audit_settings(conf_path: str = AUDIT_CONF_PATH, **overrides) -> AuditSettings:
    """
    Load audit settings from the [audit] section of an INI file.

    Missing file or keys fall back to defaults. Keyword overrides that are
    not None (typically CLI flags) win over the file.

    Raises:
        ValueError: if a numeric setting is not a positive number
    """
    values = {
        "state_dir": DEFAULT_STATE_DIR,
        "results_dir": DEFAULT_RESULTS_DIR,
        "session_budget_seconds": str(DEFAULT_SESSION_BUDGET_SECONDS),
        "page_capacity": str(DEFAULT_PAGE_CAPACITY),
        "organization_domain": "",
    }

    path = os.path.expanduser(conf_path)
    if os.path.exists(path):
        config = configparser.ConfigParser()
        config.read(path)
        if config.has_section("audit"):
            for key in values:
                if config.has_option("audit", key):
                    values[key] = config.get("audit", key)

    for key, value in overrides.items():
        if key not in values:
            raise ValueError(f"Unknown audit setting: {key}")
        if value is not None:
            values[key] = str(value)

    return AuditSettings(
        state_dir=os.path.expanduser(values["state_dir"]),
        results_dir=os.path.expanduser(values["results_dir"]),
        session_budget_seconds=_positive(values["session_budget_seconds"], "session_budget_seconds", float),
        page_capacity=_positive(values["page_capacity"], "page_capacity", int),
        organization_domain=values["organization_domain"].strip(),
    )
