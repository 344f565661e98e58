from functools import lru_cache

import boto3
from botocore.config import Config

from backend.config import Settings, get_settings


@lru_cache
def get_session(
    region_name: str,
    aws_access_key_id: str | None = None,
    aws_secret_access_key: str | None = None,
) -> boto3.Session:
    session_kwargs = {
        "region_name": region_name,
    }
    if aws_access_key_id and aws_secret_access_key:
        session_kwargs.update(
            aws_access_key_id=aws_access_key_id,
            aws_secret_access_key=aws_secret_access_key,
        )

    return boto3.Session(**session_kwargs)


def create_bedrock_client(settings: Settings | None = None):
    settings = settings or get_settings()
    # single attempt; failures surface to the caller
    config = Config(
        read_timeout=int(settings.llm_timeout_seconds) + 5,
        retries={"max_attempts": 1, "mode": "standard"},
    )
    session = get_session(settings.aws_region, settings.aws_access_key_id, settings.aws_secret_access_key)
    return session.client("bedrock-runtime", region_name=settings.aws_region, config=config)
