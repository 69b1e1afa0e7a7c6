# S3_Storage.py
# Description: Presigned URL issuance for the photo object store (any S3-compatible endpoint).
#
# Imports
import logging
from typing import Optional
#
# 3rd-party Libraries
import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
#
########################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_SECONDS = 600


class StorageError(Exception):
    """Raised when a signed URL cannot be produced."""
    pass


def build_object_key(prefix: str, device_id: str, photo_id: str) -> str:
    """Object keys are `<prefix>/<deviceId>/<photoId>`; an empty prefix drops the first segment."""
    prefix = (prefix or "").strip("/")
    parts = [p for p in (prefix, device_id, photo_id) if p]
    return "/".join(parts)


class S3BlobSigner:
    """
    Produces single-object, time-limited PUT/GET URLs. Signing happens locally,
    so no call reaches the object store until a client uses the URL.
    """

    def __init__(self, endpoint_url: str, access_key: str, secret_key: str, bucket: str,
                 region: str = "us-east-1", expires_in: int = DEFAULT_EXPIRES_SECONDS, client=None):
        self.bucket_name = bucket
        self.expires_in = int(expires_in)
        self.endpoint_url = endpoint_url
        self.client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            config=Config(
                signature_version="s3v4",
                s3={"addressing_style": "path"},
                retries={"max_attempts": 3, "mode": "adaptive"},
            ),
        )
        logger.info(f"S3 signer initialized for bucket '{bucket}' at {endpoint_url}")

    def _presign(self, method: str, key: str, content_type: Optional[str] = None) -> str:
        params = {"Bucket": self.bucket_name, "Key": key}
        if content_type:
            params["ContentType"] = content_type
        try:
            return self.client.generate_presigned_url(method, Params=params, ExpiresIn=self.expires_in)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to generate {method} URL for {key}: {e}")
            raise StorageError(f"Could not sign {method} for {key}") from e

    def presign_upload(self, key: str, content_type: Optional[str] = None) -> str:
        """URL for a plain HTTP PUT of the object bytes. When a content type is signed, the PUT must send it."""
        return self._presign("put_object", key, content_type)

    def presign_download(self, key: str) -> str:
        return self._presign("get_object", key)

#
# End of S3_Storage.py
#######################################################################################################################
