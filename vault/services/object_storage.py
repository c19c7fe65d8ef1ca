"""
Blob store integration.

객체 쓰기/읽기는 Swift 형식 object API를 사용합니다
(``{storage_url}/{container}/{object}``, ``X-Auth-Token`` 헤더).
임시 조회 URL은 boto3로 S3 호환 API를 통해 서명합니다.

객체 이름은 ``{user_id}/{content_hash}.jpg`` 형식이므로 같은 내용을 재시도 업로드하면
같은 객체를 덮어씁니다.
"""
import logging
from typing import Optional
from urllib.parse import urlparse

import boto3
import httpx
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from vault.config import get_settings
from vault.utils.metrics import record_external_request

logger = logging.getLogger("vault.storage")


class StorageError(Exception):
    """Blob store request failed."""


class TransientStorageError(StorageError):
    """Timeout, transport error or 5xx; safe to retry."""


def object_name_for(user_id: int, content_hash: str, extension: str = "jpg") -> str:
    return f"{user_id}/{content_hash}.{extension}"


class ObjectStorageService:
    """
    Service for interacting with the blob store.

    컨테이너 관리 전략:
    1. 단일 컨테이너 사용
    2. 사용자별 폴더 구조: {user_id}/{content_hash}.jpg
    3. 5xx, 타임아웃, 전송 오류는 TransientStorageError (재시도 가능)
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = get_settings()
        self._transport = transport
        self._s3_client = None

    def _object_url(self, object_name: str) -> str:
        container = self.settings.storage_container
        base = self.settings.storage_url.rstrip("/")
        if object_name.startswith(f"{container}/"):
            return f"{base}/{object_name}"
        return f"{base}/{container}/{object_name}"

    def _headers(self, content_type: Optional[str] = None) -> dict[str, str]:
        headers = {}
        if self.settings.storage_token:
            headers["X-Auth-Token"] = self.settings.storage_token
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def upload_file(
        self,
        file_content: bytes,
        object_name: str,
        content_type: str,
    ) -> str:
        """
        Upload a file to the blob store.

        Args:
            file_content: The file content as bytes
            object_name: Object path inside the container (e.g. 1/ab12....jpg)
            content_type: MIME type of the file

        Returns:
            The storage path of the uploaded object (object_name)

        Raises:
            TransientStorageError: timeout, transport error or 5xx
            StorageError: any other rejection
        """
        url = self._object_url(object_name)
        try:
            async with record_external_request("blob_store"):
                async with self._client(self.settings.storage_timeout_seconds) as client:
                    response = await client.put(
                        url,
                        content=file_content,
                        headers=self._headers(content_type),
                    )
                # 5xx는 재시도 대상
                if response.status_code >= 500:
                    raise TransientStorageError(f"Upload failed: HTTP {response.status_code}")
                if response.status_code not in (200, 201):
                    raise StorageError(f"Upload failed: HTTP {response.status_code}")
        except httpx.HTTPError as e:
            logger.error("File upload HTTP error", exc_info=e, extra={"event": "storage", "object": object_name})
            raise TransientStorageError("File upload failed") from e
        except StorageError as e:
            logger.error("File upload failed", extra={"event": "storage", "object": object_name, "error": str(e)})
            raise
        return object_name

    async def download_file(self, object_name: str) -> bytes:
        """
        Download a file from the blob store.

        Args:
            object_name: Object path inside the container

        Returns:
            The file content as bytes
        """
        url = self._object_url(object_name)
        try:
            async with record_external_request("blob_store"):
                async with self._client(self.settings.storage_timeout_seconds) as client:
                    response = await client.get(url, headers=self._headers())
                if response.status_code >= 500:
                    raise TransientStorageError(f"Download failed: HTTP {response.status_code}")
                if response.status_code != 200:
                    raise StorageError(f"Download failed: HTTP {response.status_code}")
                return response.content
        except httpx.HTTPError as e:
            logger.error("File download HTTP error", exc_info=e, extra={"event": "storage", "object": object_name})
            raise TransientStorageError("File download failed") from e

    def _get_s3_client(self):
        """
        Get or create the S3 client used for signed URLs.

        Returns:
            Configured boto3 S3 client
        """
        if self._s3_client is not None:
            return self._s3_client

        if not self.settings.s3_access_key or not self.settings.s3_secret_key:
            raise StorageError(
                "S3 API credentials not configured. "
                "Please set S3_ACCESS_KEY and S3_SECRET_KEY environment variables."
            )

        # 호스트만 사용 (경로가 붙으면 bucket 이름으로 해석됨)
        endpoint = (self.settings.s3_endpoint_url or "").strip()
        if endpoint:
            parsed = urlparse(endpoint if "://" in endpoint else f"https://{endpoint}")
            endpoint = f"{parsed.scheme or 'https'}://{parsed.netloc or parsed.path.split('/')[0]}"

        self._s3_client = boto3.client(
            "s3",
            aws_access_key_id=self.settings.s3_access_key,
            aws_secret_access_key=self.settings.s3_secret_key,
            endpoint_url=endpoint or None,
            region_name=self.settings.s3_region_name,
            config=Config(
                signature_version="s3v4",
                s3={"addressing_style": "path"},
            ),
        )
        return self._s3_client

    def create_signed_url(self, object_name: str, expires_in: Optional[int] = None) -> str:
        """
        Create a temporary GET URL for one object.

        Args:
            object_name: Object path inside the container
            expires_in: Lifetime in seconds (default from settings)

        Returns:
            Presigned URL
        """
        if expires_in is None:
            expires_in = self.settings.signed_url_expire_seconds

        s3_client = self._get_s3_client()
        try:
            return s3_client.generate_presigned_url(
                ClientMethod="get_object",
                Params={
                    "Bucket": self.settings.storage_container,
                    "Key": object_name,
                },
                ExpiresIn=expires_in,
                HttpMethod="GET",
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "Signed URL generation failed",
                exc_info=e,
                extra={"event": "storage", "object": object_name},
            )
            raise StorageError("Failed to generate signed URL") from e


# Singleton instance
_storage_service: Optional[ObjectStorageService] = None


def get_storage_service() -> ObjectStorageService:
    """Get the singleton storage service instance."""
    global _storage_service
    if _storage_service is None:
        _storage_service = ObjectStorageService()
    return _storage_service
