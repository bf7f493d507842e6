"""Cloud Storage sink — uploads result payloads as objects.

Uses the JSON API simple (media) upload:
    POST /upload/storage/v1/b/{bucket}/o?uploadType=media&name={path}
"""

import logging
from urllib.parse import quote

from rtdb_profiler.credentials import Credential
from rtdb_profiler.sinks.base import BaseSinkClient

logger = logging.getLogger(__name__)


class StorageSink(BaseSinkClient):
    """Uploads bytes to a Cloud Storage bucket.

    Args:
        bucket: Bucket name (e.g. "my-project.appspot.com")
        credential: Credential providing the bearer token
        base_url: Storage API root (overridable for emulators/tests)
    """

    sink_name = "storage"

    def __init__(
        self,
        bucket: str,
        credential: Credential | None = None,
        base_url: str = "https://storage.googleapis.com",
        **kwargs,
    ) -> None:
        super().__init__(base_url=base_url, credential=credential, **kwargs)
        self.bucket = bucket

    async def upload(
        self,
        path: str,
        payload: bytes,
        content_type: str = "application/json",
    ) -> dict:
        """Upload payload to gs://<bucket>/<path>.

        Returns:
            Object resource returned by the API

        Raises:
            SinkError: If the upload fails
        """
        logger.info("Writing profiler results to cloud storage path: %s...", path)
        resource = await self._request(
            "POST",
            f"/upload/storage/v1/b/{quote(self.bucket, safe='')}/o",
            params={"uploadType": "media", "name": path},
            content=payload,
            headers={"Content-Type": content_type},
        )
        logger.info("Successfully uploaded to %s/%s (%d bytes)", self.bucket, path, len(payload))
        return resource
