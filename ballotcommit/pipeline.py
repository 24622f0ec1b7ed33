from collections.abc import Callable
from dataclasses import dataclass

import requests

from .algorand_client import AlgorandLedgerClient
from .backend_client import BackendRecordClient
from .claim_tokens import ClaimSigner
from .confirm_agent import BackendConfirmAgent
from .config import Settings
from .coordinator import SubmissionCoordinator
from .endpoints import EndpointResolver, FailoverEndpointResolver, StaticEndpointResolver
from .ledger_agent import LedgerClient, LedgerCommitAgent
from .scheduler import RetryScheduler


@dataclass
class Pipeline:
    coordinator: SubmissionCoordinator
    backend: BackendRecordClient
    claim_signer: ClaimSigner


def build_resolver(settings: Settings, session: requests.Session | None = None) -> EndpointResolver:
    if len(settings.backend_urls) == 1:
        return StaticEndpointResolver(settings.backend_urls[0])
    return FailoverEndpointResolver(settings.backend_urls, session=session)


def build_pipeline(
    settings: Settings,
    ledger: LedgerClient | None = None,
    resolver: EndpointResolver | None = None,
    session: requests.Session | None = None,
    decrypt_secret: Callable[[str], str] | None = None,
    scheduler: RetryScheduler | None = None,
) -> Pipeline:
    """Composition root: wires one coordinator and its collaborators from settings."""
    session = session or requests.Session()
    backend = BackendRecordClient(
        resolver or build_resolver(settings, session),
        auth_token=settings.auth_token,
        timeout=settings.http_timeout,
        session=session,
    )
    signer = ClaimSigner(settings.claim_signing_secret)
    ledger_agent_kwargs = {"decrypt_secret": decrypt_secret} if decrypt_secret else {}
    ledger_agent = LedgerCommitAgent(
        ledger or AlgorandLedgerClient.from_settings(settings),
        backend,
        **ledger_agent_kwargs,
    )
    coordinator = SubmissionCoordinator(
        ledger_agent,
        BackendConfirmAgent(backend),
        vote_history=backend,
        claim_signer=signer,
        scheduler=scheduler,
        max_retries=settings.max_retries,
        retry_base_delay=settings.retry_base_delay,
        claim_ttl=settings.claim_ttl,
        request_ttl=settings.request_ttl,
        status_ttl=settings.status_ttl,
    )
    return Pipeline(coordinator=coordinator, backend=backend, claim_signer=signer)
