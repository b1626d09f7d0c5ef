"""
iac_runner.aws — AWS control-plane operations used by the lifecycle flows.

Existence checks always go to the AWS APIs, never to Terraform state: on a
first run, or after a partial one, Terraform state may not know about a
resource that already exists.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import boto3
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    NoCredentialsError,
    PartialCredentialsError,
)

from iac_runner.exceptions import (
    AuthError,
    CleanupError,
    ConvergenceError,
    IacRunnerError,
    PreflightError,
)
from iac_runner.models import LockRecord

logger = logging.getLogger(__name__)

GITHUB_OIDC_ISSUER = "token.actions.githubusercontent.com"
LOCK_KEY_ATTRIBUTE = "LockID"
# The S3 backend keeps a "<bucket>/<key>-md5" digest row in the lock table.
DIGEST_SUFFIX = "-md5"
_DELETE_BATCH_SIZE = 1000
_CREDENTIAL_ERROR_CODES = frozenset(
    {
        "ExpiredToken",
        "ExpiredTokenException",
        "InvalidAccessKeyId",
        "InvalidClientTokenId",
        "SignatureDoesNotMatch",
        "UnrecognizedClientException",
    }
)
_AUTH_GUIDANCE = "Configure credentials (SSO, env vars, or ~/.aws/credentials) and retry."


def _error_code(exc: ClientError) -> str:
    return str((exc.response.get("Error") or {}).get("Code", ""))


def _aws_failure(
    action: str,
    exc: ClientError | BotoCoreError,
    error: type[IacRunnerError] = PreflightError,
) -> IacRunnerError:
    """Map a botocore failure onto the lifecycle error taxonomy."""
    if isinstance(exc, (NoCredentialsError, PartialCredentialsError)) or (
        isinstance(exc, ClientError) and _error_code(exc) in _CREDENTIAL_ERROR_CODES
    ):
        return AuthError(
            f"AWS credentials were rejected while trying to {action}. {_AUTH_GUIDANCE}\n\n{exc}"
        )
    return error(f"Failed to {action}: {exc}")


def client(service: str, *, region: str, endpoint_url: str | None = None) -> Any:
    """Create a boto3 client, routed to endpoint_url when one is configured."""
    return boto3.client(service, region_name=region, endpoint_url=endpoint_url)


@dataclass(frozen=True)
class AwsClients:
    s3: Any
    dynamodb: Any
    iam: Any
    sts: Any

    @classmethod
    def for_region(cls, region: str, *, endpoint_url: str | None = None) -> AwsClients:
        return cls(
            s3=client("s3", region=region, endpoint_url=endpoint_url),
            dynamodb=client("dynamodb", region=region, endpoint_url=endpoint_url),
            iam=client("iam", region=region, endpoint_url=endpoint_url),
            sts=client("sts", region=region, endpoint_url=endpoint_url),
        )


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


def caller_identity(sts_client: Any) -> tuple[str, str]:
    """Return (account_id, caller_arn). Raises AuthError when credentials fail."""
    try:
        identity = sts_client.get_caller_identity()
    except (ClientError, BotoCoreError) as exc:
        raise AuthError(f"AWS authentication failed. {_AUTH_GUIDANCE}\n\n{exc}") from exc
    return str(identity["Account"]), str(identity["Arn"])


def verify_account(sts_client: Any, expected_account: str, *, source: str) -> str:
    """Check the caller identity and that it resolves to the recorded account."""
    account_id, caller_arn = caller_identity(sts_client)
    logger.info("Authenticated as: %s (account: %s)", caller_arn, account_id)
    if expected_account and expected_account != account_id:
        raise PreflightError(
            f"Credentials resolve to account {account_id} but {source} was created in "
            f"account {expected_account}. Switch credentials and retry."
        )
    return account_id


# ---------------------------------------------------------------------------
# Existence checks
# ---------------------------------------------------------------------------


def bucket_exists(s3_client: Any, bucket: str) -> bool:
    try:
        s3_client.head_bucket(Bucket=bucket)
    except ClientError as exc:
        code = _error_code(exc)
        if code in {"404", "NoSuchBucket", "NotFound"}:
            return False
        if code in {"403", "Forbidden", "AccessDenied"}:
            # S3 names are global; 403 usually means another account owns it.
            raise PreflightError(
                f"S3 bucket {bucket} exists but is not accessible with these credentials; "
                "it may be owned by another AWS account."
            ) from exc
        raise _aws_failure(f"check bucket {bucket}", exc) from exc
    except BotoCoreError as exc:
        raise _aws_failure(f"check bucket {bucket}", exc) from exc
    return True


def table_exists(ddb_client: Any, table_name: str) -> bool:
    try:
        ddb_client.describe_table(TableName=table_name)
    except ClientError as exc:
        if _error_code(exc) == "ResourceNotFoundException":
            return False
        raise _aws_failure(f"check table {table_name}", exc) from exc
    except BotoCoreError as exc:
        raise _aws_failure(f"check table {table_name}", exc) from exc
    return True


def role_exists(iam_client: Any, role_name: str) -> bool:
    try:
        iam_client.get_role(RoleName=role_name)
    except ClientError as exc:
        if _error_code(exc) == "NoSuchEntity":
            return False
        raise _aws_failure(f"check role {role_name}", exc) from exc
    except BotoCoreError as exc:
        raise _aws_failure(f"check role {role_name}", exc) from exc
    return True


def find_github_oidc_provider_arn(iam_client: Any) -> str | None:
    """Return the ARN of the account's GitHub Actions OIDC provider, if present.

    IAM allows one provider per issuer URL, so a second create is rejected;
    callers import this ARN instead.
    """
    try:
        response = iam_client.list_open_id_connect_providers()
        for provider in response.get("OpenIDConnectProviderList", []):
            arn = provider.get("Arn")
            if not arn:
                continue
            if str(arn).endswith(f"oidc-provider/{GITHUB_OIDC_ISSUER}"):
                return str(arn)
            details = iam_client.get_open_id_connect_provider(OpenIDConnectProviderArn=arn)
            url = str(details.get("Url", "")).strip().removeprefix("https://")
            if url == GITHUB_OIDC_ISSUER:
                return str(arn)
    except (ClientError, BotoCoreError) as exc:
        raise _aws_failure("list OIDC providers", exc) from exc
    return None


# ---------------------------------------------------------------------------
# Terraform lock table
# ---------------------------------------------------------------------------


def scan_locks(ddb_client: Any, table_name: str) -> LockRecord:
    """Count held Terraform state locks. A missing table holds no locks.

    ``lock_id`` is the first readable LockID, or None when no row carries one.
    """
    lock_ids: list[str] = []
    paginator = ddb_client.get_paginator("scan")
    try:
        for page in paginator.paginate(TableName=table_name, ConsistentRead=True):
            for item in page.get("Items", []):
                lock_id = str((item.get(LOCK_KEY_ATTRIBUTE) or {}).get("S", ""))
                if lock_id.endswith(DIGEST_SUFFIX):
                    continue
                lock_ids.append(lock_id)
    except ClientError as exc:
        if _error_code(exc) == "ResourceNotFoundException":
            logger.debug("Lock table %s does not exist yet", table_name)
            return LockRecord(count=0)
        raise _aws_failure(f"scan lock table {table_name}", exc) from exc
    except BotoCoreError as exc:
        raise _aws_failure(f"scan lock table {table_name}", exc) from exc
    readable = [lock_id for lock_id in lock_ids if lock_id]
    return LockRecord(count=len(lock_ids), lock_id=readable[0] if readable else None)


def delete_lock(ddb_client: Any, table_name: str, lock_id: str) -> None:
    try:
        ddb_client.delete_item(
            TableName=table_name,
            Key={LOCK_KEY_ATTRIBUTE: {"S": lock_id}},
        )
    except (ClientError, BotoCoreError) as exc:
        raise _aws_failure(f"remove lock {lock_id}", exc) from exc


# ---------------------------------------------------------------------------
# Teardown helpers
# ---------------------------------------------------------------------------


def _delete_batch(s3_client: Any, bucket: str, objects: list[dict[str, str]]) -> None:
    response = s3_client.delete_objects(
        Bucket=bucket,
        Delete={"Objects": objects, "Quiet": True},
    )
    errors = response.get("Errors", [])
    if errors:
        first = errors[0]
        raise CleanupError(
            f"Failed to delete {len(errors)} object version(s) from {bucket}: "
            f"{first.get('Key')} ({first.get('Code')})"
        )


def drain_bucket(s3_client: Any, bucket: str) -> int:
    """Delete every object version and delete marker so the bucket can be removed.

    Returns the number of entries deleted. A missing bucket drains to zero.
    """
    deleted = 0
    paginator = s3_client.get_paginator("list_object_versions")
    try:
        for page in paginator.paginate(Bucket=bucket):
            entries = [
                {"Key": str(entry["Key"]), "VersionId": str(entry["VersionId"])}
                for kind in ("Versions", "DeleteMarkers")
                for entry in page.get(kind, [])
            ]
            for start in range(0, len(entries), _DELETE_BATCH_SIZE):
                batch = entries[start : start + _DELETE_BATCH_SIZE]
                _delete_batch(s3_client, bucket, batch)
                deleted += len(batch)
    except ClientError as exc:
        if _error_code(exc) in {"NoSuchBucket", "404", "NotFound"}:
            return deleted
        raise CleanupError(f"Failed to drain {bucket}: {exc}") from exc
    except BotoCoreError as exc:
        raise CleanupError(f"Failed to drain {bucket}: {exc}") from exc
    return deleted


def delete_bucket(s3_client: Any, bucket: str) -> bool:
    """Delete an (already drained) bucket. Returns False when it was missing."""
    try:
        s3_client.delete_bucket(Bucket=bucket)
    except ClientError as exc:
        if _error_code(exc) in {"NoSuchBucket", "404", "NotFound"}:
            return False
        raise _aws_failure(f"delete bucket {bucket}", exc, ConvergenceError) from exc
    except BotoCoreError as exc:
        raise _aws_failure(f"delete bucket {bucket}", exc, ConvergenceError) from exc
    return True


def delete_table(ddb_client: Any, table_name: str) -> bool:
    """Delete a DynamoDB table. Returns False when it was missing."""
    try:
        ddb_client.delete_table(TableName=table_name)
    except ClientError as exc:
        if _error_code(exc) == "ResourceNotFoundException":
            return False
        raise _aws_failure(f"delete table {table_name}", exc, ConvergenceError) from exc
    except BotoCoreError as exc:
        raise _aws_failure(f"delete table {table_name}", exc, ConvergenceError) from exc
    return True
