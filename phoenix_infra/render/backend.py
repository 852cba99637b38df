"""``backend.tf`` renderer, replacing ``${BACKEND_*}`` tokens.

Text-level token replacement keeps the generated file byte-stable across
runs: the same inputs always render the same bytes.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional

logger = logging.getLogger(__name__)

# ── constants ────────────────────────────────────────────────────────

REQUIRED_KEYS: FrozenSet[str] = frozenset(
    {
        "BACKEND_BUCKET",
        "BACKEND_KEY",
        "BACKEND_REGION",
        "BACKEND_LOCK_TABLE",
    },
)

BACKEND_TEMPLATE = """\
# Terraform Remote Backend Configuration
# S3 state storage with DynamoDB locking, generated by `phoenix migrate-backend`.

terraform {
  backend "s3" {
    bucket         = "${BACKEND_BUCKET}"
    key            = "${BACKEND_KEY}"
    region         = "${BACKEND_REGION}"
    encrypt        = true
    dynamodb_table = "${BACKEND_LOCK_TABLE}"
  }
}
"""


# ── public API ───────────────────────────────────────────────────────


def render_template(
    template_text: str,
    substitutions: Dict[str, str],
    *,
    required_keys: Optional[FrozenSet[str]] = None,
) -> str:
    """Replace all ``${KEY}`` tokens in *template_text*.

    Raises :class:`ValueError` if a required key is missing or empty.
    """
    if required_keys is None:
        required_keys = REQUIRED_KEYS

    missing: List[str] = sorted(
        k for k in required_keys if not substitutions.get(k)
    )
    if missing:
        raise ValueError(
            f"Missing required substitution key(s): {', '.join(missing)}"
        )

    result = template_text
    for key in sorted(substitutions):
        result = result.replace("${" + key + "}", substitutions[key])
    return result


def render_backend(*, bucket: str, key: str, region: str, lock_table: str) -> str:
    return render_template(
        BACKEND_TEMPLATE,
        {
            "BACKEND_BUCKET": bucket,
            "BACKEND_KEY": key,
            "BACKEND_REGION": region,
            "BACKEND_LOCK_TABLE": lock_table,
        },
    )


def write_backend_file(path: Path, content: str) -> bool:
    """Write *content* to *path*; return ``False`` if it was already identical."""
    if path.is_file() and path.read_text(encoding="utf-8") == content:
        logger.info("%s already up to date", path)
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    logger.info("Backend configuration written to %s", path)
    return True
