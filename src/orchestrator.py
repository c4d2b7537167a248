"""
Main Orchestrator for Personal Budget

This module ties together all the components and defines the
end-to-end flows for:
1. Groups (create / update / delete / list)
2. Transactions (same, with PEN/USD entry)
3. Profile and general limit
4. Authentication (sign-up, sign-in, one-time link, sign-out, password)
5. Dashboard read (summary, balances, groups, recent transactions)

DESIGN DECISION: The orchestrator enforces the boundaries:
- No identity, no operation (checked before anything else)
- No mutation without validated input
- Every statement is scoped to the caller through `store.for_user`
- Every mutation and every rejection is audited

Failures never raise past a flow method. They come back as
`ActionResult(success=False, error=...)`. The only exception is the
dashboard read, which raises AuthError so the page can send the visitor
to sign-in.

After any successful mutation callers must treat earlier reads as stale.
Reads always recompute from the current rows.
"""

from typing import Any, Mapping, NamedTuple, Optional
from urllib.parse import urlencode
from uuid import UUID

import structlog

from src.audit import AuditLogger, create_correlation_id
from src.config import Settings, get_settings
from src.models.audit import AuditEventType
from src.models.budget import (
    ActionResult,
    AuthenticatedUser,
    Currency,
    DashboardView,
    GroupInput,
)
from src.queries import allocated_percentage
from src.services.auth import AuthError, AuthProviderInterface, LocalAuthProvider
from src.services.exchange import ExchangeRateService, RateCache
from src.services.storage import (
    BudgetStorageInterface,
    BudgetStoreInterface,
    Database,
    OwnershipError,
    PersistenceError,
    SqlAuditStorage,
    SqlBudgetStore,
)
from src.validation import (
    ERROR_MESSAGES,
    ValidationError,
    clean_group,
    clean_profile,
    clean_transaction,
    parse_number,
    sanitize_string,
    validate_credentials,
    validate_email,
    validate_password_change,
)


logger = structlog.get_logger(__name__)


def _parse_id(value: Any) -> Optional[UUID]:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(sanitize_string(value))
    except ValueError:
        return None


class _ScopedFlow:
    """
    Shared plumbing of the flows that act on one user's rows.
    """

    entity_type = ""

    def __init__(
        self,
        store: BudgetStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._audit_logger = audit_logger or AuditLogger()

    def _scoped(self, user: Optional[AuthenticatedUser]) -> BudgetStorageInterface:
        """Repository bound to `user`. Raises AuthError without one."""
        if user is None:
            raise AuthError("User not authenticated")
        return self._store.for_user(user.id)

    def _not_found(self) -> ActionResult:
        return ActionResult.fail(f"{self.entity_type.capitalize()} not found")

    async def _rejected(
        self,
        error: Exception,
        action: str,
        user: Optional[AuthenticatedUser],
        correlation_id: UUID,
    ) -> ActionResult:
        """Turn a failure into a result and audit it."""
        user_id = user.id if user else None

        if isinstance(error, AuthError):
            await self._audit_logger.log_auth_failed(
                action=f"{action} {self.entity_type}",
                error_message=str(error),
                correlation_id=correlation_id,
            )
            return ActionResult.fail(str(error))

        if isinstance(error, ValidationError):
            await self._audit_logger.log_validation_failed(
                entity_type=self.entity_type,
                errors=error.errors,
                user_id=user_id,
                correlation_id=correlation_id,
            )
            return ActionResult.fail(str(error), error.errors)

        logger.error(
            "persistence_failed",
            action=action,
            entity_type=self.entity_type,
            user_id=str(user_id) if user_id else None,
            error=str(error),
        )
        await self._audit_logger.log_persistence_error(
            action=f"{action} {self.entity_type}",
            error_message=str(error),
            user_id=user_id,
            correlation_id=correlation_id,
        )
        return ActionResult.fail(f"Failed to {action} {self.entity_type}: {error}")

    async def _denied(
        self,
        user: AuthenticatedUser,
        entity_id: Optional[UUID],
        action: str,
        correlation_id: UUID,
    ) -> ActionResult:
        if entity_id is not None:
            await self._audit_logger.log_ownership_denied(
                entity_type=self.entity_type,
                entity_id=entity_id,
                user_id=user.id,
                action=action,
                correlation_id=correlation_id,
            )
        return self._not_found()


class GroupFlow(_ScopedFlow):
    """
    Orchestrates group mutations.

    Percentages summing above 100 do not block a save. The result carries
    a warning message instead.
    """

    entity_type = "group"

    async def _allocation_warning(self, storage: BudgetStorageInterface) -> Optional[str]:
        total = allocated_percentage(await storage.list_groups())
        if total > 100:
            return f"Group percentages add up to {total:g}%, above 100%"
        return None

    async def create(
        self,
        user: Optional[AuthenticatedUser],
        data: Mapping[str, Any],
    ) -> ActionResult:
        """
        Create a group for `user`.

        Returns:
            Result whose data is the new group id
        """
        correlation_id = create_correlation_id()
        try:
            storage = self._scoped(user)
            group_input = clean_group(data)
            group = await storage.create_group(group_input)
            warning = await self._allocation_warning(storage)
        except (AuthError, ValidationError, PersistenceError) as e:
            return await self._rejected(e, "create", user, correlation_id)

        await self._audit_logger.log_created(
            entity_type=self.entity_type,
            entity_id=group.id,
            user_id=user.id,
            details={"name": group.name, "percentage": group.percentage},
            correlation_id=correlation_id,
        )
        return ActionResult.ok(data=group.id, message=warning)

    async def update(
        self,
        user: Optional[AuthenticatedUser],
        group_id: Any,
        data: Mapping[str, Any],
    ) -> ActionResult:
        correlation_id = create_correlation_id()
        try:
            storage = self._scoped(user)
            target = _parse_id(group_id)
            if target is None or await storage.get_group(target) is None:
                return await self._denied(user, target, "update", correlation_id)

            group_input = clean_group(data)
            affected = await storage.update_group(target, group_input)
            if affected == 0:
                return await self._denied(user, target, "update", correlation_id)
            warning = await self._allocation_warning(storage)
        except (AuthError, ValidationError, PersistenceError) as e:
            return await self._rejected(e, "update", user, correlation_id)

        await self._audit_logger.log_updated(
            entity_type=self.entity_type,
            entity_id=target,
            user_id=user.id,
            details=group_input.model_dump(),
            correlation_id=correlation_id,
        )
        return ActionResult.ok(data=target, message=warning)

    async def delete(
        self,
        user: Optional[AuthenticatedUser],
        group_id: Any,
    ) -> ActionResult:
        """
        Delete a group and, through the store cascade, its transactions.
        """
        correlation_id = create_correlation_id()
        try:
            storage = self._scoped(user)
            target = _parse_id(group_id)
            affected = await storage.delete_group(target) if target else 0
            if affected == 0:
                return await self._denied(user, target, "delete", correlation_id)
        except (AuthError, PersistenceError) as e:
            return await self._rejected(e, "delete", user, correlation_id)

        await self._audit_logger.log_deleted(
            entity_type=self.entity_type,
            entity_id=target,
            user_id=user.id,
            correlation_id=correlation_id,
        )
        return ActionResult.ok(data=target)

    async def list(self, user: Optional[AuthenticatedUser]) -> ActionResult:
        """Groups of `user`, name ascending."""
        correlation_id = create_correlation_id()
        try:
            groups = await self._scoped(user).list_groups()
        except (AuthError, PersistenceError) as e:
            return await self._rejected(e, "list", user, correlation_id)
        return ActionResult.ok(data=groups)


class TransactionFlow(_ScopedFlow):
    """
    Orchestrates transaction mutations.

    Amounts are stored in PEN. Input carrying `currency: "USD"` is
    converted with the cached exchange rate before validation.
    """

    entity_type = "transaction"

    def __init__(
        self,
        store: BudgetStoreInterface,
        rate_service: Optional[ExchangeRateService] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(store, audit_logger)
        self._rate_service = rate_service or ExchangeRateService()

    def _in_pen(self, data: Mapping[str, Any]) -> dict:
        """Copy of `data` with the amount expressed in PEN."""
        converted = dict(data)
        raw_currency = converted.pop("currency", None) or Currency.PEN
        currency = sanitize_string(getattr(raw_currency, "value", raw_currency)).upper()
        amount = parse_number(converted.get("amount"))

        if currency not in {c.value for c in Currency}:
            raise ValidationError({"currency": ERROR_MESSAGES["invalid_type"]})

        if amount is not None and currency != Currency.PEN.value:
            converted["amount"] = round(
                self._rate_service.convert(amount, currency, Currency.PEN), 2
            )
        return converted

    async def create(
        self,
        user: Optional[AuthenticatedUser],
        data: Mapping[str, Any],
    ) -> ActionResult:
        """
        Record an income or expense for `user`.

        Returns:
            Result whose data is the new transaction id
        """
        correlation_id = create_correlation_id()
        try:
            storage = self._scoped(user)
            txn_input = clean_transaction(self._in_pen(data))
            txn = await storage.create_transaction(txn_input)
        except OwnershipError:
            return await self._group_denied(user, data, correlation_id)
        except (AuthError, ValidationError, PersistenceError) as e:
            return await self._rejected(e, "create", user, correlation_id)

        await self._audit_logger.log_created(
            entity_type=self.entity_type,
            entity_id=txn.id,
            user_id=user.id,
            details={
                "amount": txn.amount,
                "type": txn.type.value,
                "group_id": str(txn.group_id) if txn.group_id else None,
            },
            correlation_id=correlation_id,
        )
        return ActionResult.ok(data=txn.id)

    async def _group_denied(
        self,
        user: AuthenticatedUser,
        data: Mapping[str, Any],
        correlation_id: UUID,
    ) -> ActionResult:
        group_id = _parse_id(data.get("group_id"))
        if group_id is not None:
            await self._audit_logger.log_ownership_denied(
                entity_type="group",
                entity_id=group_id,
                user_id=user.id,
                action="assign transaction",
                correlation_id=correlation_id,
            )
        return ActionResult.fail("Group not found", {"group_id": "Group not found"})

    async def update(
        self,
        user: Optional[AuthenticatedUser],
        transaction_id: Any,
        data: Mapping[str, Any],
    ) -> ActionResult:
        correlation_id = create_correlation_id()
        try:
            storage = self._scoped(user)
            target = _parse_id(transaction_id)
            if target is None or await storage.get_transaction(target) is None:
                return await self._denied(user, target, "update", correlation_id)

            txn_input = clean_transaction(self._in_pen(data))
            affected = await storage.update_transaction(target, txn_input)
            if affected == 0:
                return await self._denied(user, target, "update", correlation_id)
        except OwnershipError:
            return await self._group_denied(user, data, correlation_id)
        except (AuthError, ValidationError, PersistenceError) as e:
            return await self._rejected(e, "update", user, correlation_id)

        await self._audit_logger.log_updated(
            entity_type=self.entity_type,
            entity_id=target,
            user_id=user.id,
            details={"amount": txn_input.amount, "type": txn_input.type.value},
            correlation_id=correlation_id,
        )
        return ActionResult.ok(data=target)

    async def delete(
        self,
        user: Optional[AuthenticatedUser],
        transaction_id: Any,
    ) -> ActionResult:
        correlation_id = create_correlation_id()
        try:
            storage = self._scoped(user)
            target = _parse_id(transaction_id)
            affected = await storage.delete_transaction(target) if target else 0
            if affected == 0:
                return await self._denied(user, target, "delete", correlation_id)
        except (AuthError, PersistenceError) as e:
            return await self._rejected(e, "delete", user, correlation_id)

        await self._audit_logger.log_deleted(
            entity_type=self.entity_type,
            entity_id=target,
            user_id=user.id,
            correlation_id=correlation_id,
        )
        return ActionResult.ok(data=target)

    async def list(
        self,
        user: Optional[AuthenticatedUser],
        limit: Optional[int] = None,
    ) -> ActionResult:
        """Transactions of `user`, newest first."""
        correlation_id = create_correlation_id()
        try:
            transactions = await self._scoped(user).list_transactions(limit=limit)
        except (AuthError, PersistenceError) as e:
            return await self._rejected(e, "list", user, correlation_id)
        return ActionResult.ok(data=transactions)


class ProfileFlow(_ScopedFlow):
    """
    Orchestrates profile reads and updates.

    Name and email go through the auth provider; the general limit is
    stored with the profile.
    """

    entity_type = "profile"

    def __init__(
        self,
        store: BudgetStoreInterface,
        auth_provider: AuthProviderInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(store, audit_logger)
        self._auth = auth_provider

    async def load(self, user: Optional[AuthenticatedUser]) -> ActionResult:
        correlation_id = create_correlation_id()
        try:
            storage = self._scoped(user)
            profile = await storage.get_profile() or await storage.save_profile()
        except (AuthError, PersistenceError) as e:
            return await self._rejected(e, "load", user, correlation_id)
        return ActionResult.ok(data=profile)

    async def update(self, token: Optional[str], data: Mapping[str, Any]) -> ActionResult:
        """
        Update full name, email and, when given, the general limit.
        """
        correlation_id = create_correlation_id()
        user = None
        try:
            user = await self._auth.get_user(token)
            storage = self._scoped(user)
            profile_input = clean_profile(data)
            user = await self._auth.update_user(
                token,
                email=profile_input.email,
                full_name=profile_input.full_name,
            )
            if profile_input.general_limit is not None:
                await storage.save_profile(general_limit=profile_input.general_limit)
        except (AuthError, ValidationError, PersistenceError) as e:
            return await self._rejected(e, "update", user, correlation_id)

        await self._audit_logger.log_updated(
            entity_type=self.entity_type,
            entity_id=user.id,
            user_id=user.id,
            details=profile_input.model_dump(exclude={"email"}),
            correlation_id=correlation_id,
        )
        return ActionResult.ok(data=user, message="Profile updated successfully")


class AuthFlow:
    """
    Orchestrates sign-up, sign-in and account changes.

    Each step validates input, passes through to the provider and wraps
    provider errors. A first sign-in of any kind initializes the user's
    profile and default groups.
    """

    def __init__(
        self,
        auth_provider: AuthProviderInterface,
        store: BudgetStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[Settings] = None,
    ):
        self._auth = auth_provider
        self._store = store
        self._audit_logger = audit_logger or AuditLogger()
        self._settings = settings or get_settings()

    async def initialize_user_defaults(self, user: AuthenticatedUser) -> bool:
        """
        Create the profile and default groups once.

        Returns:
            True if defaults were created, False if the user already had them
        """
        storage = self._store.for_user(user.id)
        if await storage.get_profile() is not None:
            return False

        app = self._settings.app
        defaults = app.default_groups_list
        for name, percentage, can_spend in defaults:
            await storage.create_group(
                GroupInput(name=name, percentage=percentage, can_spend=can_spend)
            )
        # the profile marks the defaults as done, so it is written last
        await storage.save_profile(general_limit=app.default_general_limit)
        logger.info("user_defaults_initialized", user_id=str(user.id))
        return True

    async def _seed_defaults(self, user: AuthenticatedUser) -> bool:
        """
        Initialize defaults without failing the sign-in around it.

        The account already exists at this point. A failure is logged and
        retried on the next sign-in, which finds no profile.
        """
        try:
            return await self.initialize_user_defaults(user)
        except (PersistenceError, ValueError) as e:
            logger.error(
                "user_defaults_failed",
                user_id=str(user.id),
                error=str(e),
            )
            return False

    async def _failed(
        self,
        action: str,
        error: Exception,
        email: Optional[str],
        correlation_id: UUID,
    ) -> ActionResult:
        await self._audit_logger.log_auth_failed(
            action=action,
            error_message=str(error),
            email=email,
            correlation_id=correlation_id,
        )
        field_errors = error.errors if isinstance(error, ValidationError) else None
        return ActionResult.fail(f"{action.capitalize()} failed: {error}", field_errors)

    def _min_length(self) -> int:
        return self._settings.auth.min_password_length

    async def sign_up(self, data: Mapping[str, Any]) -> ActionResult:
        """
        Returns:
            Result whose data is the new AuthSession
        """
        correlation_id = create_correlation_id()
        email = sanitize_string(data.get("email"))
        try:
            errors = validate_credentials(data, self._min_length())
            if errors:
                raise ValidationError(errors)
            session = await self._auth.sign_up(email, data.get("password"))
            await self._seed_defaults(session.user)
        except (AuthError, ValidationError, PersistenceError) as e:
            return await self._failed("sign up", e, email, correlation_id)

        await self._audit_logger.log_auth_event(
            event_type=AuditEventType.USER_SIGNED_UP,
            email=session.user.email,
            user_id=session.user.id,
            correlation_id=correlation_id,
        )
        return ActionResult.ok(data=session, message="Account created")

    async def sign_in(self, data: Mapping[str, Any]) -> ActionResult:
        correlation_id = create_correlation_id()
        email = sanitize_string(data.get("email"))
        try:
            errors = validate_credentials(data, self._min_length())
            if errors:
                raise ValidationError(errors)
            session = await self._auth.sign_in_with_password(email, data.get("password"))
            await self._seed_defaults(session.user)
        except (AuthError, ValidationError, PersistenceError) as e:
            return await self._failed("sign in", e, email, correlation_id)

        await self._audit_logger.log_auth_event(
            event_type=AuditEventType.USER_SIGNED_IN,
            email=session.user.email,
            user_id=session.user.id,
            correlation_id=correlation_id,
        )
        return ActionResult.ok(data=session)

    async def request_sign_in_link(self, data: Mapping[str, Any]) -> ActionResult:
        """
        Issue a one-time sign-in link.

        There is no mailer; the link is logged and returned in `data`.
        """
        correlation_id = create_correlation_id()
        email = sanitize_string(data.get("email")).lower()
        try:
            errors = validate_email({"email": email})
            if errors:
                raise ValidationError(errors)
            token = await self._auth.sign_in_with_otp(email)
        except (AuthError, ValidationError, PersistenceError) as e:
            return await self._failed("send sign-in link", e, email, correlation_id)

        query = urlencode({"email": email, "token": token})
        link = f"{self._settings.auth.site_url}/?{query}"
        logger.info("sign_in_link_issued", email=email, link=link)
        await self._audit_logger.log_auth_event(
            event_type=AuditEventType.SIGN_IN_LINK_SENT,
            email=email,
            correlation_id=correlation_id,
        )
        return ActionResult.ok(data=link, message="Check your email for the sign-in link")

    async def verify_sign_in_link(self, email: str, token: str) -> ActionResult:
        correlation_id = create_correlation_id()
        try:
            session = await self._auth.verify_otp(email, token)
            await self._seed_defaults(session.user)
        except (AuthError, PersistenceError) as e:
            return await self._failed("sign in", e, email, correlation_id)

        await self._audit_logger.log_auth_event(
            event_type=AuditEventType.USER_SIGNED_IN,
            email=session.user.email,
            user_id=session.user.id,
            correlation_id=correlation_id,
        )
        return ActionResult.ok(data=session)

    async def sign_out(self, token: Optional[str]) -> ActionResult:
        correlation_id = create_correlation_id()
        try:
            user = await self._auth.get_user(token)
            if user is None:
                raise AuthError("User not authenticated")
            await self._auth.sign_out(token)
        except (AuthError, PersistenceError) as e:
            return await self._failed("sign out", e, None, correlation_id)

        await self._audit_logger.log_auth_event(
            event_type=AuditEventType.USER_SIGNED_OUT,
            email=user.email,
            user_id=user.id,
            correlation_id=correlation_id,
        )
        return ActionResult.ok()

    async def current_user(self, token: Optional[str]) -> Optional[AuthenticatedUser]:
        """The signed-in user, None when the token is missing or expired."""
        return await self._auth.get_user(token)

    async def update_password(
        self,
        token: Optional[str],
        data: Mapping[str, Any],
    ) -> ActionResult:
        correlation_id = create_correlation_id()
        user = None
        try:
            user = await self._auth.get_user(token)
            if user is None:
                raise AuthError("User not authenticated")
            errors = validate_password_change(data, self._min_length())
            if errors:
                raise ValidationError(errors)
            await self._auth.update_password(
                token,
                new_password=data.get("new_password"),
                current_password=data.get("current_password"),
            )
        except (AuthError, ValidationError, PersistenceError) as e:
            email = user.email if user else None
            return await self._failed("update password", e, email, correlation_id)

        await self._audit_logger.log_auth_event(
            event_type=AuditEventType.PASSWORD_UPDATED,
            email=user.email,
            user_id=user.id,
            correlation_id=correlation_id,
        )
        return ActionResult.ok(message="Password updated successfully")


class DashboardFlow:
    """
    Builds the dashboard: summary, balances, groups and recent transactions.
    """

    def __init__(
        self,
        store: BudgetStoreInterface,
        settings: Optional[Settings] = None,
    ):
        self._store = store
        self._settings = settings or get_settings()

    async def load(self, user: Optional[AuthenticatedUser]) -> DashboardView:
        """
        Raises:
            AuthError: If there is no signed-in user
            PersistenceError: If the store cannot be read
        """
        if user is None:
            raise AuthError("User not authenticated")

        storage = self._store.for_user(user.id)
        return DashboardView(
            summary=await storage.get_user_summary(),
            balances=await storage.get_user_balances(),
            groups=await storage.list_groups(),
            recent_transactions=await storage.list_transactions(
                limit=self._settings.app.recent_transactions_limit
            ),
        )

    async def read(self, user: Optional[AuthenticatedUser]) -> ActionResult:
        """
        `load` for the page: a store failure comes back as a failed result.

        Raises:
            AuthError: If there is no signed-in user
        """
        try:
            view = await self.load(user)
        except PersistenceError as e:
            logger.error("dashboard_load_failed", user_id=str(user.id), error=str(e))
            return ActionResult.fail(f"Failed to load dashboard: {e}")
        return ActionResult.ok(data=view)


class AppComponents(NamedTuple):
    database: Database
    auth_flow: AuthFlow
    group_flow: GroupFlow
    transaction_flow: TransactionFlow
    profile_flow: ProfileFlow
    dashboard_flow: DashboardFlow
    rate_service: ExchangeRateService


def create_app_components(
    database_url: Optional[str] = None,
    rate_cache: Optional[RateCache] = None,
    persist_audit: bool = True,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        database_url: Overrides DATABASE_URL (e.g. "sqlite://" for tests).
        rate_cache: Shared exchange rate slot. A new one if None.
        persist_audit: Whether audit events go to the audit_events table
                    as well as the local log.
    """
    settings = get_settings()

    database = Database(url=database_url, settings=settings.database)
    database.connect()

    if persist_audit:
        audit_logger = AuditLogger(SqlAuditStorage(database))
    else:
        audit_logger = AuditLogger()  # Local-only logging

    store = SqlBudgetStore(database)
    auth_provider = LocalAuthProvider(database, settings=settings.auth)
    rate_service = ExchangeRateService(
        cache=rate_cache or RateCache(),
        settings=settings.exchange_rate,
    )

    return AppComponents(
        database=database,
        auth_flow=AuthFlow(auth_provider, store, audit_logger, settings),
        group_flow=GroupFlow(store, audit_logger),
        transaction_flow=TransactionFlow(store, rate_service, audit_logger),
        profile_flow=ProfileFlow(store, auth_provider, audit_logger),
        dashboard_flow=DashboardFlow(store, settings),
        rate_service=rate_service,
    )
