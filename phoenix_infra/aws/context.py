"""Resolved AWS identity for the remote state backend.

The backend lives in one account and region.  :class:`AWSContext` pins both
down once (profile, region, STS caller identity) and hands out boto3
clients bound to that session, so the S3 bucket and the DynamoDB lock
table are always created side by side.

Lookup order, first non-empty value wins:

- region: explicit argument (``backend.region``), ``AWS_DEFAULT_REGION``,
  ``AWS_REGION``, then ``us-east-1``
- profile: explicit argument (``aws_profile``), ``AWS_PROFILE``, then the
  boto3 default credential chain
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

FALLBACK_REGION = "us-east-1"


def resolve_region(region: Optional[str] = None) -> str:
    for candidate in (
        region,
        os.environ.get("AWS_DEFAULT_REGION"),
        os.environ.get("AWS_REGION"),
    ):
        if candidate:
            return candidate
    return FALLBACK_REGION


def resolve_profile(profile: Optional[str] = None) -> Optional[str]:
    """``None`` means boto3 picks credentials from its default chain."""
    return profile or os.environ.get("AWS_PROFILE") or None


def error_code(exc: BaseException) -> str:
    """AWS error code carried by a botocore ``ClientError``; ``""`` otherwise."""
    response = getattr(exc, "response", None)
    if not isinstance(response, dict):
        return ""
    return str(response.get("Error", {}).get("Code", ""))


@dataclass
class AWSContext:
    """Who we are in AWS, and where.

    Attributes:
        profile: Named profile, or ``None`` for the default chain.
        region: Region every client is bound to.
        account_id: Caller account; part of the default bucket name.
        caller_arn: Caller ARN, shown in logs only.
    """

    profile: Optional[str]
    region: str
    account_id: str = ""
    caller_arn: str = ""
    _session: Any = field(default=None, repr=False, compare=False)

    @classmethod
    def build(
        cls,
        region: Optional[str] = None,
        profile: Optional[str] = None,
    ) -> "AWSContext":
        """Open a session and confirm the credentials with STS.

        A missing profile, expired token or unreachable endpoint raises
        :class:`RuntimeError` naming the region.
        """
        profile = resolve_profile(profile)
        region = resolve_region(region)
        try:
            session = boto3.Session(profile_name=profile, region_name=region)
            caller = session.client("sts").get_caller_identity()
        except (BotoCoreError, ClientError) as exc:
            raise RuntimeError(
                f"AWS credentials invalid or inaccessible in region {region}: {exc}"
            ) from exc

        logger.debug("Using AWS identity %s in %s", caller["Arn"], region)
        return cls(
            profile=profile,
            region=region,
            account_id=caller["Account"],
            caller_arn=caller["Arn"],
            _session=session,
        )

    @property
    def session(self) -> boto3.Session:
        if self._session is None:
            self._session = boto3.Session(
                profile_name=self.profile, region_name=self.region,
            )
        return self._session

    def client(self, service: str, **kwargs: Any) -> Any:
        return self.session.client(service, **kwargs)
