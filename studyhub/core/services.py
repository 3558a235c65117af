"""
Service container.

Every external collaborator (identity verifier, entitlement store, AI
client, billing provider) is constructed here once per process, stored on
app.state.services by the lifespan hook, and closed at shutdown. Tests pass
their own collaborators to build_services.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from studyhub.core.config import Settings
from studyhub.core.database import build_engine, create_all_tables
from studyhub.features.ai.gemini import GeminiClient
from studyhub.features.billing.provider import BillingProvider
from studyhub.features.billing.service import PaymentSessionFactory, WebhookReconciler
from studyhub.features.billing.stripe_provider import StripeProvider
from studyhub.features.entitlements.gate import EntitlementGate
from studyhub.features.entitlements.store import (
    EntitlementStore,
    InMemoryEntitlementStore,
    SqlEntitlementStore,
)
from studyhub.features.identity.verifier import IdentityVerifier, JwtIdentityVerifier

logger = logging.getLogger("studyhub")


@dataclass
class Services:
    settings: Settings
    store: EntitlementStore
    verifier: IdentityVerifier
    gate: EntitlementGate
    inference: GeminiClient
    payments: PaymentSessionFactory
    reconciler: WebhookReconciler

    async def aclose(self) -> None:
        await self.inference.aclose()
        engine = getattr(self.store, "engine", None)
        if engine is not None:
            engine.dispose()


def build_store(cfg: Settings) -> EntitlementStore:
    if cfg.DATABASE_URL:
        engine = build_engine(cfg.DATABASE_URL)
        create_all_tables(engine)
        return SqlEntitlementStore(engine)
    logger.warning("DATABASE_URL not set; using in-memory entitlement store")
    return InMemoryEntitlementStore()


def build_services(
    cfg: Settings,
    *,
    store: Optional[EntitlementStore] = None,
    verifier: Optional[IdentityVerifier] = None,
    inference: Optional[GeminiClient] = None,
    billing_provider: Optional[BillingProvider] = None,
) -> Services:
    store = store if store is not None else build_store(cfg)
    verifier = verifier or JwtIdentityVerifier.from_settings(cfg)
    inference = inference or GeminiClient.from_settings(cfg)
    billing_provider = billing_provider or StripeProvider(cfg.STRIPE_SECRET_KEY, cfg.STRIPE_WEBHOOK_SECRET)

    gate = EntitlementGate(
        verifier,
        store,
        free_word_limit=cfg.FREE_WORD_LIMIT,
        server_side_limit=cfg.USAGE_LIMIT_SERVER_CHECK,
    )
    return Services(
        settings=cfg,
        store=store,
        verifier=verifier,
        gate=gate,
        inference=inference,
        payments=PaymentSessionFactory(billing_provider, cfg.STRIPE_PRICE_ID, cfg.FRONTEND_URL),
        reconciler=WebhookReconciler(billing_provider, store),
    )
