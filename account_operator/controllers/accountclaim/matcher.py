from dataclasses import dataclass
from enum import StrEnum

from loguru import logger

from account_operator.config.settings import OperatorSettings
from account_operator.exceptions.store import ConflictError
from account_operator.models.account import Account
from account_operator.models.account_claim import AccountClaim
from account_operator.models.common import ObjectMeta
from account_operator.store.base import ObjectStore
from account_operator.utils.misc import generate_short_uid

BIND_ATTEMPTS = 3
ACCOUNT_NAME_PREFIX = "osd-creds-mgmt"


class MatchOutcome(StrEnum):
    BOUND = "Bound"
    RESERVED = "Reserved"
    UNAVAILABLE = "Unavailable"


@dataclass
class MatchResult:
    outcome: MatchOutcome
    claim: AccountClaim
    account: Account | None = None


class PoolMatcher:
    """Assigns a pending claim to the best available pool account, or reserves a new one."""

    def __init__(self, store: ObjectStore, settings: OperatorSettings) -> None:
        self.store = store
        self.settings = settings

    def target_pool(self, claim: AccountClaim) -> str:
        if self.settings.is_default_pool(claim.spec.account_pool):
            return self.settings.default_pool_name
        return claim.spec.account_pool

    def in_target_pool(self, account: Account, pool: str) -> bool:
        if self.settings.is_default_pool(pool):
            return self.settings.is_default_pool(account.spec.account_pool)
        return account.spec.account_pool == pool

    def is_candidate(self, account: Account, claim: AccountClaim, pool: str) -> bool:
        if account.spec.byoc or account.is_deleting or not account.is_available():
            return False
        if not self.in_target_pool(account, pool):
            return False
        # a reused account stays with the legal entity that used it before
        entity = account.spec.legal_entity
        if account.status.reused and entity.id and not entity.matches(claim.spec.legal_entity):
            return False
        return True

    def select(self, accounts: list[Account], claim: AccountClaim) -> Account | None:
        """Reused with the same legal entity, then any reused, then the first listed"""
        pool = self.target_pool(claim)
        candidates = [a for a in accounts if self.is_candidate(a, claim, pool)]
        if not candidates:
            return None

        for account in candidates:
            if account.status.reused and account.spec.legal_entity.matches(
                claim.spec.legal_entity
            ):
                return account
        for account in candidates:
            if account.status.reused:
                return account
        return candidates[0]

    async def find_linked(self, claim: AccountClaim) -> Account | None:
        """An account already pointing at the claim, left by an interrupted bind"""
        for account in await self.store.list(Account):
            if account.is_claimed_by(claim.name, claim.namespace) and not account.is_deleting:
                return account
        return None

    async def match(self, claim: AccountClaim) -> MatchResult:
        if linked := await self.find_linked(claim):
            logger.info(f"Account {linked.name} already linked to claim, completing bind")
            return await self.complete_bind(claim, linked)

        for attempt in range(1, BIND_ATTEMPTS + 1):
            account = self.select(await self.store.list(Account), claim)
            if account is None:
                break
            try:
                account = await self.link_account(account, claim)
            except ConflictError:
                logger.info(
                    f"Account {account.name} changed while binding (attempt {attempt}), matching again"
                )
                continue
            return await self.complete_bind(claim, account)

        pool = self.target_pool(claim)
        if self.settings.pool_config(pool).create_on_demand:
            account = await self.create_reserved_account(claim, pool)
            claim = await self.link_claim(claim, account)
            return MatchResult(MatchOutcome.RESERVED, claim, account)

        return MatchResult(MatchOutcome.UNAVAILABLE, claim)

    async def complete_bind(self, claim: AccountClaim, account: Account) -> MatchResult:
        """Finish a bind once the account names the claim. Never moves on to another account."""
        if account.is_ready():
            account = await self.mark_claimed(account, claim)
        claim = await self.link_claim(claim, account)
        return MatchResult(MatchOutcome.BOUND, claim, account)

    async def link_account(self, account: Account, claim: AccountClaim) -> Account:
        account.spec.claim_link = claim.name
        account.spec.claim_link_namespace = claim.namespace
        account.spec.legal_entity = claim.spec.legal_entity.model_copy()
        account = await self.store.update(account)
        logger.info(f"Linked account {account.name} to claim {claim.namespace}/{claim.name}")
        return account

    async def mark_claimed(self, account: Account, claim: AccountClaim) -> Account:
        attempt = 1
        while not account.status.claimed:
            account.status.claimed = True
            try:
                return await self.store.update_status(account)
            except ConflictError:
                if attempt >= BIND_ATTEMPTS:
                    raise
                attempt += 1
                account = await self.store.get(Account, account.namespace, account.name)
                if not account.is_claimed_by(claim.name, claim.namespace):
                    raise
        return account

    async def link_claim(self, claim: AccountClaim, account: Account) -> AccountClaim:
        attempt = 1
        while True:
            claim.spec.account_link = account.name
            try:
                return await self.store.update(claim)
            except ConflictError:
                if attempt >= BIND_ATTEMPTS:
                    raise
                attempt += 1
                claim = await self.store.get(AccountClaim, claim.namespace, claim.name)

    async def create_reserved_account(self, claim: AccountClaim, pool: str) -> Account:
        account = Account(
            metadata=ObjectMeta(
                name=f"{ACCOUNT_NAME_PREFIX}-{generate_short_uid()}",
                namespace=self.settings.aws.operator_namespace,
            )
        )
        account.spec.claim_link = claim.name
        account.spec.claim_link_namespace = claim.namespace
        account.spec.legal_entity = claim.spec.legal_entity.model_copy()
        account.spec.account_pool = pool
        account.spec.regions = list(claim.spec.regions)
        account = await self.store.create(account)
        logger.info(f"No pool account available, created {account.name} for the claim")
        return account
