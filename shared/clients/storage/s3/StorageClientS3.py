import asyncio
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import ObjectNotFound, StorageUnavailable

# error codes S3 (and LocalStack, MinIO) answer for a missing key
_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}


class StorageClientS3:
    """Stores objects in an S3 bucket under their key, with server-side encryption.

    Without STORAGE_S3_ENDPOINT_URL the AWS default credential chain and
    endpoint are used. With it (LocalStack, MinIO) the static access key pair is
    used and requests are path-style.
    """

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._bucket = helper_config.get_string_val("STORAGE_S3_BUCKET")
        self._region = helper_config.get_string_val("STORAGE_S3_REGION", default="us-east-1")
        self._endpoint_url = helper_config.get_string_val("STORAGE_S3_ENDPOINT_URL", default="") or None
        self._access_key_id = helper_config.get_string_val("STORAGE_S3_ACCESS_KEY_ID", default="") or None
        self._secret_access_key = helper_config.get_string_val("STORAGE_S3_SECRET_ACCESS_KEY", default="") or None
        self._encryption = helper_config.get_string_val("STORAGE_S3_SERVER_SIDE_ENCRYPTION", default="AES256")
        self.timeout = helper_config.get_number_val("STORAGE_TIMEOUT", default=30.0)
        if self._endpoint_url and not (self._access_key_id and self._secret_access_key):
            raise ValueError(
                "STORAGE_S3_ACCESS_KEY_ID and STORAGE_S3_SECRET_ACCESS_KEY are required with STORAGE_S3_ENDPOINT_URL."
            )
        self._client: Any = None

    def get_engine_name(self) -> str:
        return "s3"

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    def _create_client(self) -> Any:
        config = Config(
            region_name=self._region,
            connect_timeout=self.timeout,
            read_timeout=self.timeout,
            retries={"max_attempts": 3, "mode": "standard"},
            s3={"addressing_style": "path" if self._endpoint_url else "auto"},
        )
        if not self._endpoint_url:
            return boto3.session.Session().client("s3", config=config)
        return boto3.session.Session().client(
            "s3",
            endpoint_url=self._endpoint_url,
            aws_access_key_id=self._access_key_id,
            aws_secret_access_key=self._secret_access_key,
            config=config,
        )

    async def boot(self, s3_client: Any = None) -> None:
        """Create the S3 client.

        Args:
            s3_client: Optional pre-built botocore client, e.g. one wrapped in a Stubber in tests.
        """
        self._client = s3_client or await asyncio.to_thread(self._create_client)
        self.logging.debug("S3 object storage in bucket '%s' (%s)", self._bucket, self._endpoint_url or "aws")

    async def close(self) -> None:
        if self._client is not None:
            await asyncio.to_thread(self._client.close)
            self._client = None

    ##########################################
    ############### OPERATIONS ###############
    ##########################################

    async def _call(self, operation: str, key: str, **params) -> dict:
        """Run one S3 API call in a worker thread.

        Raises:
            ObjectNotFound: If S3 reports the key as missing.
            StorageUnavailable: On any other S3 or connection error.
        """
        if self._client is None:
            raise RuntimeError("S3 client not initialised. Call boot() before making requests.")
        method = getattr(self._client, operation)
        try:
            return await asyncio.to_thread(method, Bucket=self._bucket, Key=key, **params)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                raise ObjectNotFound(f"No object stored under '{key}'.") from exc
            self.logging.error("S3 %s of '%s' failed: %s", operation, key, exc)
            raise StorageUnavailable(f"S3 {operation} of '{key}' failed: {code or exc}") from exc
        except BotoCoreError as exc:
            self.logging.error("S3 %s of '%s' failed: %s", operation, key, exc)
            raise StorageUnavailable(f"S3 bucket '{self._bucket}' is unreachable: {exc}") from exc

    async def put(self, key: str, data: bytes) -> None:
        params: dict = {"Body": data, "ContentType": "application/octet-stream"}
        if self._encryption:
            params["ServerSideEncryption"] = self._encryption
        await self._call("put_object", key, **params)

    async def get(self, key: str) -> bytes:
        response = await self._call("get_object", key)
        body = response["Body"]
        try:
            return await asyncio.to_thread(body.read)
        except BotoCoreError as exc:
            raise StorageUnavailable(f"Reading object '{key}' from S3 failed: {exc}") from exc
        finally:
            body.close()

    async def delete(self, key: str) -> None:
        try:
            await self._call("delete_object", key)
        except ObjectNotFound:
            return
