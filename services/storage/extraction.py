import json
from dataclasses import dataclass

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from config import Config
from logger import get_logger


log = get_logger("extraction")


@dataclass(frozen=True)
class ExtractionResult:
    success: bool
    message: str = ""

    def to_dict(self):
        return {"success": self.success, "message": self.message}


def archive_url(bucket, key):
    return f"https://{bucket}.s3.amazonaws.com/{key}"


class LambdaExtractionClient:
    """Invoca la función remota que descomprime un ZIP dentro del bucket."""

    def __init__(self, function_name=None, client=None, region=None):
        self.function_name = (
            Config.LAMBDA_ZIP_EXTRACTOR_NAME if function_name is None else function_name
        )
        self._client = client
        self._region = region or Config.AWS_REGION

    @property
    def configured(self):
        return bool(self.function_name)

    def _lambda(self):
        if self._client is None:
            self._client = boto3.client("lambda", region_name=self._region)
        return self._client

    def extract(self, source_url, source_bucket, target_bucket, target_prefix):
        if not self.configured:
            return ExtractionResult(
                False, "Extraction function not configured (LAMBDA_ZIP_EXTRACTOR_NAME)"
            )

        payload = {
            "zipUrl": source_url,
            "sourceBucket": source_bucket,
            "targetBucket": target_bucket,
            "targetPrefix": target_prefix,
        }
        try:
            response = self._lambda().invoke(
                FunctionName=self.function_name,
                InvocationType="RequestResponse",
                Payload=json.dumps(payload).encode("utf-8")
            )
        except (BotoCoreError, ClientError) as exc:
            log.error("Error invocando %s: %s", self.function_name, exc)
            return ExtractionResult(False, f"Invocation failed: {exc}")

        raw = response.get("Payload")
        body = raw.read() if hasattr(raw, "read") else (raw or b"")
        if response.get("FunctionError"):
            return ExtractionResult(False, f"Function error: {body[:500]!r}")
        return parse_extraction_response(body)


def parse_extraction_response(body):
    """Acepta {success, message} directo o envuelto en {statusCode, body}."""
    try:
        data = json.loads(body or b"{}")
        if isinstance(data, dict) and "body" in data:
            inner = data["body"]
            data = json.loads(inner) if isinstance(inner, (str, bytes)) else inner
    except (TypeError, ValueError) as exc:
        return ExtractionResult(False, f"Invalid extraction response: {exc}")

    if not isinstance(data, dict):
        return ExtractionResult(False, "Invalid extraction response")
    return ExtractionResult(bool(data.get("success")), str(data.get("message", "")))


def get_extraction_client():
    return LambdaExtractionClient()
