from pathlib import Path

import pytest

from account_operator.core.state import AccountState
from account_operator.exceptions.store import ManifestError
from account_operator.models.account import Account
from account_operator.models.account_claim import AccountClaim
from account_operator.models.account_pool import AccountPool
from account_operator.models.secret import Secret
from account_operator.store.manifests import load_manifests, parse_manifest

MANIFESTS = """
kind: AccountPool
metadata:
  name: default
  namespace: aws-account-operator
spec:
  poolSize: 3
---
kind: Account
metadata:
  name: osd-creds-mgmt-abc123
  namespace: aws-account-operator
  labels:
    iamUserId: abc123
spec:
  awsAccountId: "123456789012"
  legalEntity:
    name: Acme
    id: acme-1
status:
  state: Ready
---
kind: AccountClaim
metadata:
  name: my-claim
  namespace: customer
spec:
  byoc: true
  byocAwsAccountId: "210987654321"
  byocSecretRef:
    name: byoc-creds
    namespace: customer
---
kind: Secret
metadata:
  name: aws-account-operator-credentials
  namespace: aws-account-operator
data:
  aws_access_key_id: AKIAEXAMPLE
  aws_secret_access_key: secret
"""


class TestManifests:
    def test_load_every_kind(self, tmp_path: Path) -> None:
        """
        Arrange: a yaml file holding one object of every kind
        Act: load the directory
        Assert: camelCase fields land on the models and labels keep their keys
        """
        (tmp_path / "objects.yaml").write_text(MANIFESTS)

        objects = load_manifests(tmp_path)

        pool, account, claim, secret = objects
        assert isinstance(pool, AccountPool) and pool.spec.pool_size == 3
        assert isinstance(account, Account)
        assert account.spec.aws_account_id == "123456789012"
        assert account.spec.legal_entity.id == "acme-1"
        assert account.status.state == AccountState.READY
        assert account.metadata.labels == {"iamUserId": "abc123"}
        assert isinstance(claim, AccountClaim)
        assert claim.spec.byoc_secret_ref.name == "byoc-creds"
        assert isinstance(secret, Secret)
        assert secret.access_key_id == "AKIAEXAMPLE"

    def test_unknown_kind_raises(self) -> None:
        with pytest.raises(ManifestError):
            parse_manifest({"kind": "Deployment", "metadata": {"name": "x"}})
