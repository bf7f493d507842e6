"""Credential loading for the Cloud Storage / Cloud Logging sinks.

Fallback order:
1. Explicit credential (mapping or JSON string) passed by the caller
2. SERVICE_ACCOUNT environment variable (JSON)
3. Local service account file (SERVICE_ACCOUNT_PATH, ./serviceAccount.json)

The sinks authenticate with a bearer access token taken from GCP_ACCESS_TOKEN
or an "access_token" entry in the credential material. Minting tokens from a
private key is left to external tooling (e.g. `gcloud auth print-access-token`).
"""

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from rtdb_profiler.config import Settings, settings as default_settings
from rtdb_profiler.errors import CredentialError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    """Resolved credential material."""

    access_token: str
    project_id: str | None = None
    source: str = "unknown"
    info: Mapping[str, Any] = field(default_factory=dict, repr=False)

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}


def _parse(raw: str, source: str) -> dict[str, Any]:
    try:
        info = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.error("Error parsing credential from %s", source)
        raise CredentialError(f"Invalid credential JSON in {source}: {e}") from e
    if not isinstance(info, dict):
        raise CredentialError(f"Credential in {source} must be a JSON object")
    return info


def _load_info(
    explicit: Mapping[str, Any] | str | None,
    config: Settings,
) -> tuple[dict[str, Any], str]:
    if explicit is not None:
        if isinstance(explicit, str):
            return _parse(explicit, "explicit credential"), "explicit"
        return dict(explicit), "explicit"

    if config.service_account:
        return _parse(config.service_account, "SERVICE_ACCOUNT"), "env"

    path = Path(config.service_account_path)
    if path.exists():
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise CredentialError(f"Cannot read {path}: {e}") from e
        return _parse(raw, str(path)), "file"

    return {}, "none"


def load_credential(
    explicit: Mapping[str, Any] | str | None = None,
    config: Settings | None = None,
) -> Credential:
    """Resolve credentials using the documented fallback order.

    Args:
        explicit: Credential override (mapping or JSON string)
        config: Settings to read from (default: global settings)

    Returns:
        Credential with an access token and (if known) a project id

    Raises:
        CredentialError: If no credential material or token is available,
            or if the material is not valid JSON
    """
    config = config or default_settings
    info, source = _load_info(explicit, config)

    token = config.gcp_access_token or info.get("access_token")
    if not token:
        if source == "none":
            raise CredentialError(
                "No credential found: set GCP_ACCESS_TOKEN, SERVICE_ACCOUNT, "
                f"or provide {config.service_account_path}"
            )
        raise CredentialError(
            f"Credential from {source} has no access token. Service account keys are "
            "not exchanged for tokens here: set GCP_ACCESS_TOKEN (e.g. from "
            "`gcloud auth print-access-token`) alongside the service account"
        )

    logger.info("Loaded credential from %s", source)
    return Credential(
        access_token=token,
        project_id=info.get("project_id"),
        source=source,
        info=info,
    )


def resolve_project(
    explicit: str | None,
    credential: Credential | None = None,
    config: Settings | None = None,
) -> str | None:
    """Project id: explicit → GCP_PROJECT → credential project_id."""
    config = config or default_settings
    return explicit or config.gcp_project or (credential.project_id if credential else None)
