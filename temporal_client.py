"""Temporal client factory.

Connects to a local Temporal server or to Temporal Cloud, depending on
which credentials are present in the environment.
"""

import os
from typing import Optional
import ssl
from pathlib import Path

# Load .env file if it exists
from dotenv import load_dotenv
env_path = Path(__file__).resolve().parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

from temporalio.client import Client


DEFAULT_ENDPOINT = "localhost:7233"


async def get_temporal_client() -> Client:
    """Create and return a Temporal client.

    Reads configuration from environment variables:
    - TEMPORAL_ENDPOINT: host:port (default "localhost:7233")
    - TEMPORAL_NAMESPACE: Namespace (default "default")
    - TEMPORAL_API_KEY: Cloud API key; when unset, connects without TLS
    - TEMPORAL_CERT_PATH: Path to client certificate (optional, for mTLS)

    Returns:
        Connected Temporal client
    """
    endpoint = os.getenv("TEMPORAL_ENDPOINT", DEFAULT_ENDPOINT)
    namespace = os.getenv("TEMPORAL_NAMESPACE", "default")
    api_key = os.getenv("TEMPORAL_API_KEY")
    cert_path = os.getenv("TEMPORAL_CERT_PATH")

    if not api_key:
        return await Client.connect(endpoint, namespace=namespace)

    tls_config: Optional[ssl.SSLContext] = ssl.create_default_context()
    if cert_path:
        tls_config.load_cert_chain(cert_path)

    # Temporal Cloud takes the API key as an authorization header
    return await Client.connect(
        target_host=endpoint,
        namespace=namespace,
        tls=tls_config,
        api_key=api_key,
    )
