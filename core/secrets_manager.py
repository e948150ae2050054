"""SecretsManager supporting the process environment, a local .env and AWS SSM.

The webhook secret and operator API key are read through this class so the
same code path serves local development and AWS deployments.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv
from loguru import logger

try:  # optional import for AWS mode
    import boto3  # type: ignore
except ImportError:  # pragma: no cover - optional
    boto3 = None  # type: ignore


class SecretsManager:
    """
    Three-mode secrets manager:
    - env: reads the process environment (a .env file is loaded if present)
    - local: like env, but a .env file must exist
    - aws: loads from AWS SSM Parameter Store
    """

    def __init__(self, mode: str = "env", env_file: str = ".env"):
        self.mode = mode.lower().strip()
        self.env_file = env_file
        self._cache: Dict[str, str] = {}

        if self.mode == "env":
            load_dotenv(self.env_file)
        elif self.mode == "local":
            self._load_local_env()
        elif self.mode == "aws":
            self._init_aws()
        else:
            raise ValueError(f"Unknown secrets mode: {self.mode}")

    # -------------------------
    # LOCAL MODE
    # -------------------------
    def _load_local_env(self) -> None:
        env_path = Path(self.env_file)
        if not env_path.exists():
            raise FileNotFoundError(
                ".env file not found. Copy .env.example to .env and fill in values."
            )
        load_dotenv(env_path)

    # -------------------------
    # AWS MODE
    # -------------------------
    def _init_aws(self) -> None:
        if boto3 is None:
            raise RuntimeError("boto3 is required for AWS secrets mode")
        self.ssm = boto3.client("ssm")

    def _get_aws_secret(self, key: str) -> Optional[str]:
        try:
            response = self.ssm.get_parameter(
                Name=key,
                WithDecryption=True,
            )
            return response.get("Parameter", {}).get("Value")
        except Exception as e:
            logger.warning(f"Could not read SSM parameter {key}: {e}")
            return None

    # -------------------------
    # PUBLIC API
    # -------------------------
    def get_secret(self, key: str, default: Optional[str] = None) -> Optional[str]:
        if self.mode != "aws":
            return os.getenv(key) or default

        if key in self._cache:
            return self._cache[key]

        value = self._get_aws_secret(key)
        # Cache only non-empty values
        if value:
            self._cache[key] = value
            return value

        return default

    def clear_cache(self) -> None:
        self._cache.clear()
