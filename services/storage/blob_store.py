from dataclasses import dataclass

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from config import Config
from logger import get_logger


log = get_logger("blob_store")

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class BlobStoreError(Exception):
    pass


@dataclass(frozen=True)
class BlobObject:
    key: str
    size: int = 0


class S3BlobStore:
    name = "s3"

    def __init__(self, client=None, region=None):
        self._client = client or boto3.client(
            "s3", region_name=region or Config.AWS_REGION
        )

    def list_objects(self, prefix, bucket):
        """Lista paginada de todos los objetos bajo prefix/."""
        prefix = prefix.rstrip("/") + "/" if prefix else ""
        objects = []
        token = None
        try:
            while True:
                params = {"Bucket": bucket, "Prefix": prefix}
                if token:
                    params["ContinuationToken"] = token
                response = self._client.list_objects_v2(**params)
                for item in response.get("Contents", []):
                    key = item["Key"]
                    # Marcadores de carpeta
                    if key.endswith("/"):
                        continue
                    objects.append(BlobObject(key=key, size=int(item.get("Size", 0))))
                if not response.get("IsTruncated"):
                    break
                token = response.get("NextContinuationToken")
        except (BotoCoreError, ClientError) as exc:
            raise BlobStoreError(f"Error listando s3://{bucket}/{prefix}: {exc}") from exc
        return objects

    def list_keys(self, prefix, bucket):
        return [obj.key for obj in self.list_objects(prefix, bucket)]

    def exists(self, key, bucket):
        try:
            self._client.head_object(Bucket=bucket, Key=key)
            return True
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in NOT_FOUND_CODES:
                return False
            raise BlobStoreError(f"Error consultando s3://{bucket}/{key}: {exc}") from exc
        except BotoCoreError as exc:
            raise BlobStoreError(f"Error consultando s3://{bucket}/{key}: {exc}") from exc

    def get_bytes(self, key, bucket):
        try:
            response = self._client.get_object(Bucket=bucket, Key=key)
            return response["Body"].read()
        except (BotoCoreError, ClientError) as exc:
            raise BlobStoreError(f"Error leyendo s3://{bucket}/{key}: {exc}") from exc

    def get_text(self, key, bucket, encoding="utf-8-sig"):
        return self.get_bytes(key, bucket).decode(encoding)

    def copy_object(self, source_key, target_key, source_bucket, target_bucket):
        """Copia server-side (sin descarga local)."""
        try:
            self._client.copy_object(
                Bucket=target_bucket,
                Key=target_key,
                CopySource={"Bucket": source_bucket, "Key": source_key}
            )
        except (BotoCoreError, ClientError) as exc:
            raise BlobStoreError(
                f"Error copiando s3://{source_bucket}/{source_key} -> "
                f"s3://{target_bucket}/{target_key}: {exc}"
            ) from exc
        log.debug("Copiado %s -> %s", source_key, target_key)


_store_instance = None


def get_blob_store():
    global _store_instance
    if _store_instance is not None:
        return _store_instance

    _store_instance = S3BlobStore()
    log.info("Blob store backend: %s (%s)", _store_instance.name, Config.AWS_REGION)
    return _store_instance
