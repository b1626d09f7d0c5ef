"""
iac_runner.naming — Deterministic resource names for one installation.

Fingerprint algorithm:
    - Join org, repo and account id with "-" and a trailing newline
    - SHA256 of that string
    - First FINGERPRINT_LENGTH hex characters

The same (org, repo, account) always yields the same names, so a retried
install adopts the resources from the previous attempt instead of minting
new ones. Every name carries the fingerprint, so repositories whose truncated
names collide (or same-named repos in different orgs) still get distinct names.
"""

from __future__ import annotations

import hashlib
import re

from iac_runner.models import ResourceNames

FINGERPRINT_LENGTH = 8

STATE_STORE_PREFIX = "tf-state-"
LOCK_TABLE_PREFIX = "tf-lock-"
TRUST_ROLE_PREFIX = "github-actions-terraform-"

# (max length, characters removed after normalisation)
_BUCKET_LIMITS = (63, re.compile(r"[^a-z0-9.-]"))
_TABLE_LIMITS = (255, re.compile(r"[^a-zA-Z0-9_.-]"))
_ROLE_LIMITS = (64, re.compile(r"[^\w+=,.@-]"))


def fingerprint(org: str, repo: str, account_id: str) -> str:
    """Return the short stable hash shared by all names of an installation."""
    canonical = f"{org}-{repo}-{account_id}\n"
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def _normalise(raw: str, limits: tuple[int, re.Pattern[str]]) -> str:
    max_length, disallowed = limits
    name = raw.lower().replace("_", "-")
    name = disallowed.sub("", name)
    return name[:max_length]


def state_store_name(repo: str, suffix: str) -> str:
    return _normalise(f"{STATE_STORE_PREFIX}{repo[:20]}-{suffix}", _BUCKET_LIMITS)


def lock_table_name(repo: str, suffix: str) -> str:
    return _normalise(f"{LOCK_TABLE_PREFIX}{repo[:20]}-{suffix}", _TABLE_LIMITS)


def trust_role_name(repo: str, suffix: str) -> str:
    # 25 + 30 + 1 + 8 fills the 64-character IAM limit exactly.
    return _normalise(f"{TRUST_ROLE_PREFIX}{repo[:30]}-{suffix}", _ROLE_LIMITS)


def derive_names(org: str, repo: str, account_id: str) -> ResourceNames:
    """Compute the state-store, lock-table and trust-role names."""
    suffix = fingerprint(org, repo, account_id)
    return ResourceNames(
        state_store=state_store_name(repo, suffix),
        lock_table=lock_table_name(repo, suffix),
        trust_role=trust_role_name(repo, suffix),
    )
