"""
epochrewards/archive.py

Content-addressed archive for epoch records and program metadata.

Two backends:
1. MemoryObjectStore - Tests and dry runs
2. PinataObjectStore - IPFS pinning through the Pinata API

EpochArchive sits on top of either one and deals in Epoch / Metadata
objects, validating everything it reads back.
"""

import hashlib
import json
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

import requests

from .epoch import Epoch, Metadata
from .errors import ChainError, ConfigError, SchemaError, TransientError

logger = logging.getLogger("epochrewards.archive")


# ============================================================================
# CONSTANTS
# ============================================================================

PINATA_API_URL = "https://api.pinata.cloud"
PINATA_TIMEOUT = 30

METADATA_NAME = "rFoxMetadata.json"


# ============================================================================
# STORAGE BACKENDS
# ============================================================================

class ObjectStore(ABC):
    """Abstract base class for content-addressed JSON stores."""

    @abstractmethod
    def put(self, name: str, content: dict) -> str:
        """Store a JSON document, return its content hash."""
        pass

    @abstractmethod
    def get(self, content_hash: str) -> dict:
        """Fetch a JSON document by content hash."""
        pass


def _canonical(content: dict) -> bytes:
    return json.dumps(content, sort_keys=True, separators=(",", ":")).encode()


class MemoryObjectStore(ObjectStore):
    """In-memory store; hashes are sha256 of the canonical JSON."""

    def __init__(self):
        self._objects: Dict[str, bytes] = {}
        self.names: Dict[str, str] = {}    # hash -> pin name

    def put(self, name: str, content: dict) -> str:
        data = _canonical(content)
        content_hash = hashlib.sha256(data).hexdigest()
        self._objects[content_hash] = data
        self.names[content_hash] = name
        return content_hash

    def get(self, content_hash: str) -> dict:
        data = self._objects.get(content_hash)
        if data is None:
            raise ChainError(f"no object with hash {content_hash}", status_code=404)
        return json.loads(data)


class PinataObjectStore(ObjectStore):
    """Pin JSON to IPFS through Pinata and read it back through a gateway."""

    def __init__(
        self,
        api_key: str,
        secret_api_key: str,
        gateway_url: str,
        gateway_api_key: str,
        api_url: str = PINATA_API_URL,
        timeout: int = PINATA_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        for name, value in (
            ("PINATA_API_KEY", api_key),
            ("PINATA_SECRET_API_KEY", secret_api_key),
            ("PINATA_GATEWAY_URL", gateway_url),
            ("PINATA_GATEWAY_API_KEY", gateway_api_key),
        ):
            if not value:
                raise ConfigError(f"{name} not set, please fill out your environment")
        self.api_url = api_url.rstrip("/")
        self.gateway_url = gateway_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._auth_headers = {
            "pinata_api_key": api_key,
            "pinata_secret_api_key": secret_api_key,
        }
        self._gateway_headers = {"x-pinata-gateway-token": gateway_api_key}

    def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise TransientError(f"{method} {url} failed: {e}")
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientError(f"{method} {url}: HTTP {response.status_code}", response.status_code)
        if response.status_code >= 400:
            raise ChainError(f"{method} {url}: HTTP {response.status_code}", response.status_code)
        try:
            return response.json()
        except ValueError:
            raise SchemaError(f"{method} {url}: response is not JSON")

    def test_authentication(self) -> None:
        self._request("GET", f"{self.api_url}/data/testAuthentication", headers=self._auth_headers)

    def put(self, name: str, content: dict) -> str:
        body = {"pinataContent": content, "pinataMetadata": {"name": name}}
        data = self._request(
            "POST", f"{self.api_url}/pinning/pinJSONToIPFS",
            headers=self._auth_headers, json=body,
        )
        content_hash = data.get("IpfsHash")
        if not isinstance(content_hash, str) or not content_hash:
            raise SchemaError(f"pin response for {name} has no IpfsHash")
        return content_hash

    def get(self, content_hash: str) -> dict:
        return self._request("GET", f"{self.gateway_url}/ipfs/{content_hash}", headers=self._gateway_headers)


# ============================================================================
# EPOCH ARCHIVE
# ============================================================================

class EpochArchive:
    """Typed access to epochs and metadata in an ObjectStore."""

    def __init__(self, store: ObjectStore):
        self.store = store

    def add_epoch(self, epoch: Epoch) -> str:
        name = f"rFoxEpoch{epoch.number}_{epoch.distribution_status.value}.json"
        content_hash = self.store.put(name, epoch.to_dict())
        logger.info(f"rFOX Epoch #{epoch.number} IPFS hash: {content_hash}")
        return content_hash

    def get_epoch(self, content_hash: str) -> Epoch:
        try:
            epoch = Epoch.from_dict(self.store.get(content_hash))
        except SchemaError as e:
            raise SchemaError(f"The contents of IPFS hash ({content_hash}) are not valid epoch contents: {e}")
        logger.info(
            f"Loaded {epoch.month} rFOX epoch #{epoch.number}: "
            f"{epoch.total_distribution} base units to "
            f"{sum(1 for _ in epoch.iter_distributions())} addresses"
        )
        return epoch

    def add_metadata(self, metadata: Metadata) -> str:
        content_hash = self.store.put(METADATA_NAME, metadata.to_dict())
        logger.info(f"rFOX Metadata IPFS hash: {content_hash}")
        return content_hash

    def get_metadata(self, content_hash: str) -> Metadata:
        try:
            return Metadata.from_dict(self.store.get(content_hash))
        except SchemaError as e:
            raise SchemaError(f"The contents of IPFS hash ({content_hash}) are not valid metadata contents: {e}")

    def update_metadata_epoch(self, metadata: Metadata, number: int, epoch_hash: str) -> str:
        """Point metadata at a new record for epoch `number` and pin it."""
        return self.add_metadata(metadata.with_epoch_hash(number, epoch_hash))
