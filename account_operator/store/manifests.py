from pathlib import Path
from typing import Any

import yaml
from humps import decamelize
from loguru import logger

from account_operator.exceptions.store import ManifestError
from account_operator.models.account import Account
from account_operator.models.account_claim import AccountClaim
from account_operator.models.account_pool import AccountPool
from account_operator.models.common import BaseObject
from account_operator.models.secret import Secret

MODELS: dict[str, type[BaseObject]] = {
    model.kind: model for model in (Account, AccountClaim, AccountPool, Secret)
}


def parse_manifest(document: dict[str, Any]) -> BaseObject:
    """Build an object from a camelCase manifest document.

    Label keys and secret data are kept as written.
    """
    kind = document.get("kind")
    model = MODELS.get(str(kind))
    if model is None:
        raise ManifestError(f"Unsupported manifest kind: {kind}")

    metadata = document.get("metadata") or {}
    labels = metadata.get("labels") or {}
    data = document.get("data") or {}
    body = decamelize({key: value for key, value in document.items() if key != "data"})
    body.pop("kind", None)
    body.setdefault("metadata", {})["labels"] = labels
    if model is Secret:
        body["data"] = data
    return model.model_validate(body)


def load_manifests(path: str | Path) -> list[BaseObject]:
    """Read every object defined in the yaml files under `path` (or the file itself)."""
    root = Path(path)
    files = sorted([*root.glob("*.yaml"), *root.glob("*.yml")]) if root.is_dir() else [root]
    objects: list[BaseObject] = []
    for file in files:
        for document in yaml.safe_load_all(file.read_text("utf-8")):
            if not document:
                continue
            objects.append(parse_manifest(document))
        logger.debug(f"Loaded manifests from {file}")
    return objects
