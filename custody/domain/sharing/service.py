"""Share-code issuance, redemption and owner management."""
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from fastapi.concurrency import run_in_threadpool
from opentelemetry import trace

from custody.core.rate_limiter import FailedAttemptLimiter
from custody.domain.interfaces import DocumentAccessStore, DocumentStore, ShareCodeStore
from custody.domain.models import (
    AccessAction,
    CategoryTag,
    DocumentAccessEvent,
    ShareCode,
    ShareCodeStatus,
    VaultDocument,
    utcnow,
)
from custody.errors import ForbiddenError, InvalidTransitionError, NotFoundError, ValidationError
from custody.utils.id import prefixed_id
from .access_log import AccessLogger
from .codes import (
    RAW_CODE_MIN_LENGTH,
    compose_code,
    derive_prefix,
    generate_raw_code,
    hash_code,
    hash_legacy_code,
    parse_code,
    validate_ownership,
    validate_raw_code,
)
from .lifecycle import check_transition, effective_state, ensure_redeemable

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

INVALID_CODE_MESSAGE = "Invalid share code."


@dataclass(frozen=True)
class IssuedShareCode:
    share_code: ShareCode
    # Shown to the owner once; only the digest is stored.
    full_code: str


@dataclass(frozen=True)
class RedemptionGrant:
    share_code_id: str
    owner_user_id: str
    code_name: str
    categories: Tuple[CategoryTag, ...]
    expires_at: datetime


class ShareCodeService:
    def __init__(
        self,
        share_codes: ShareCodeStore,
        events: DocumentAccessStore,
        documents: DocumentStore,
        access_logger: AccessLogger,
        limiter: FailedAttemptLimiter,
        expiry_days: int = 5,
        min_code_length: int = RAW_CODE_MIN_LENGTH,
    ):
        self.share_codes = share_codes
        self.events = events
        self.documents = documents
        self.access_logger = access_logger
        self.limiter = limiter
        self.expiry_days = expiry_days
        self.min_code_length = min_code_length

    def issue_code(
        self,
        owner_user_id: str,
        code_name: str,
        categories: List[CategoryTag],
        raw_code: Optional[str] = None,
        description: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> IssuedShareCode:
        if not code_name or not code_name.strip():
            raise ValidationError("Code name is required.")
        if not categories:
            raise ValidationError("Select at least one document category.")

        raw_code = raw_code.strip() if raw_code else generate_raw_code()
        problem = validate_raw_code(raw_code, self.min_code_length)
        if problem:
            raise ValidationError(problem)

        prefix = derive_prefix(owner_user_id)
        digest = hash_code(raw_code, owner_user_id)
        for existing in self.share_codes.list_by_prefix(prefix):
            if existing.owner_user_id == owner_user_id and hmac.compare_digest(existing.code_hash, digest):
                raise ValidationError("This code is already in use. Choose a different code.")

        now = now or utcnow()
        code = ShareCode(
            share_code_id=prefixed_id("sc"),
            owner_user_id=owner_user_id,
            code_name=code_name.strip(),
            description=description,
            owner_prefix=prefix,
            code_hash=digest,
            categories=list(dict.fromkeys(categories)),
            created_at=now,
            expires_at=now + timedelta(days=self.expiry_days),
        )
        self.share_codes.put_share_code(code)
        logger.info(f"Issued share code {code.share_code_id} for owner={owner_user_id}")
        return IssuedShareCode(share_code=code, full_code=compose_code(raw_code, owner_user_id))

    def _match(self, full_code: str) -> Optional[ShareCode]:
        parsed = parse_code(full_code)
        if parsed is not None:
            for candidate in self.share_codes.list_by_prefix(parsed.prefix):
                digest = hash_code(parsed.raw_code, candidate.owner_user_id)
                if hmac.compare_digest(candidate.code_hash, digest) and validate_ownership(
                    full_code, candidate.owner_user_id
                ):
                    return candidate

        # Codes issued before owner prefixes were introduced.
        legacy = self.share_codes.find_legacy(hash_legacy_code(full_code))
        if legacy is not None and legacy.owner_prefix is None:
            return legacy
        return None

    async def redeem_code(
        self,
        full_code: str,
        client_address: str,
        now: Optional[datetime] = None,
    ) -> RedemptionGrant:
        """Resolve a third-party code to a grant.

        Raises:
            RateLimitedError: the address is locked out.
            ForbiddenError: unknown code (counts towards the lockout).
            ShareCodeInactiveError: the code is expired or revoked.
        """
        now = now or utcnow()
        with tracer.start_as_current_span("sharing.redeem_code"):
            await self.limiter.check(client_address, now)

            code = await run_in_threadpool(self._match, full_code or "")
            if code is None:
                await self.limiter.register_failure(client_address, now)
                logger.warning(f"Share code redemption failed: address={client_address}")
                raise ForbiddenError(INVALID_CODE_MESSAGE)

            ensure_redeemable(code, now)
            await self.limiter.reset(client_address)

            return RedemptionGrant(
                share_code_id=code.share_code_id,
                owner_user_id=code.owner_user_id,
                code_name=code.code_name,
                categories=tuple(code.categories),
                expires_at=code.expires_at,
            )

    def _owned_code(self, share_code_id: str, owner_user_id: str) -> ShareCode:
        code = self.share_codes.get_share_code(share_code_id)
        if code is None:
            raise NotFoundError("share_code", share_code_id)
        if code.owner_user_id != owner_user_id:
            logger.warning(f"Share code access denied: share_code={share_code_id} principal={owner_user_id}")
            raise ForbiddenError(principal_id=owner_user_id)
        return code

    def revoke_code(self, share_code_id: str, owner_user_id: str, now: Optional[datetime] = None) -> ShareCode:
        now = now or utcnow()
        code = self._owned_code(share_code_id, owner_user_id)
        check_transition(code, ShareCodeStatus.REVOKED, now)
        expected = {ShareCodeStatus.ACTIVE, ShareCodeStatus.EXPIRED}
        if not self.share_codes.update_status(share_code_id, ShareCodeStatus.REVOKED, now, expected=expected):
            # Revoked concurrently.
            raise InvalidTransitionError(ShareCodeStatus.REVOKED.value, ShareCodeStatus.REVOKED.value)
        logger.info(f"Revoked share code {share_code_id}")
        return code.model_copy(update={"status": ShareCodeStatus.REVOKED, "revoked_at": now})

    def list_codes(self, owner_user_id: str, now: Optional[datetime] = None) -> List[ShareCode]:
        now = now or utcnow()
        return [
            code.model_copy(update={"status": effective_state(code, now)})
            for code in self.share_codes.list_for_owner(owner_user_id)
        ]

    def list_access_events(self, share_code_id: str, owner_user_id: str, limit: int = 100) -> List[DocumentAccessEvent]:
        self._owned_code(share_code_id, owner_user_id)
        return self.events.list_events(share_code_id, limit=limit)

    def list_shared_documents(self, grant: RedemptionGrant) -> List[VaultDocument]:
        return self.documents.list_documents(grant.owner_user_id, list(grant.categories))

    def authorize_document(self, grant: RedemptionGrant, document_id: str) -> VaultDocument:
        doc = self.documents.get_document(document_id)
        if doc is None or doc.owner_user_id != grant.owner_user_id or doc.category not in grant.categories:
            logger.warning(f"Shared document denied: share_code={grant.share_code_id} document={document_id}")
            raise ForbiddenError()
        return doc

    async def access_document(
        self,
        full_code: str,
        document_id: str,
        action: AccessAction,
        client_address: str,
        user_agent: str = "unknown",
        now: Optional[datetime] = None,
    ) -> Tuple[VaultDocument, DocumentAccessEvent]:
        """Redeem, authorize one document and log the view or download."""
        now = now or utcnow()
        grant = await self.redeem_code(full_code, client_address, now)
        doc = await run_in_threadpool(self.authorize_document, grant, document_id)
        event = await self.access_logger.log_access(
            grant.share_code_id,
            doc.document_id,
            action,
            client_address=client_address,
            user_agent=user_agent,
            now=now,
        )
        return doc, event
