"""Construction of the federation service graph from one `FederationConfig`."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from activitypub_stage.core.config import FederationConfig, load_federation_config
from activitypub_stage.services.actors import ActorDirectory, KeypairFactory
from activitypub_stage.services.blocklist import Blocklist
from activitypub_stage.services.collections import CollectionBuilder
from activitypub_stage.services.delivery import DeliveryService
from activitypub_stage.services.gate import FederationGate
from activitypub_stage.services.inbox import InboxProcessor
from activitypub_stage.services.interactions import InteractionService
from activitypub_stage.services.key_cache import RemoteKeyCache, build_key_cache
from activitypub_stage.services.publisher import Publisher
from activitypub_stage.services.signatures import (
    HttpSignatureVerifier,
    RemoteActorFetcher,
    SignaturePolicy,
    SignatureSigner,
)
from activitypub_stage.services.webfinger import WebFingerResolver


@dataclass
class FederationServices:
    config: FederationConfig
    directory: ActorDirectory
    webfinger: WebFingerResolver
    blocklist: Blocklist
    gate: FederationGate
    collections: CollectionBuilder
    interactions: InteractionService
    key_cache: RemoteKeyCache
    fetcher: RemoteActorFetcher
    verifier: HttpSignatureVerifier
    policy: SignaturePolicy
    signer: SignatureSigner
    delivery: DeliveryService
    inbox: InboxProcessor
    publisher: Publisher

    @classmethod
    def build(
        cls,
        config: FederationConfig,
        *,
        key_cache: RemoteKeyCache | None = None,
        fetch_client: httpx.AsyncClient | None = None,
        delivery_client: httpx.AsyncClient | None = None,
        keypair_factory: KeypairFactory | None = None,
    ) -> FederationServices:
        directory = ActorDirectory(config, keypair_factory)
        blocklist = Blocklist()
        gate = FederationGate(directory)
        collections = CollectionBuilder(config, directory, gate)
        interactions = InteractionService(config, gate)
        cache = key_cache or build_key_cache(config)
        fetcher = RemoteActorFetcher(config, fetch_client)
        signer = SignatureSigner()
        delivery = DeliveryService(config, blocklist, signer, delivery_client)
        return cls(
            config=config,
            directory=directory,
            webfinger=WebFingerResolver(config, directory),
            blocklist=blocklist,
            gate=gate,
            collections=collections,
            interactions=interactions,
            key_cache=cache,
            fetcher=fetcher,
            verifier=HttpSignatureVerifier(config, cache, fetcher),
            policy=SignaturePolicy(config),
            signer=signer,
            delivery=delivery,
            inbox=InboxProcessor(config, directory, blocklist, delivery, collections, interactions),
            publisher=Publisher(directory, gate, collections, delivery),
        )

    async def close(self) -> None:
        await self.fetcher.close()
        await self.delivery.close()


class _FederationServicesSingleton:
    """Singleton wrapper for the process-wide service graph."""

    _instance: FederationServices | None = None

    @classmethod
    def get_instance(cls) -> FederationServices:
        if cls._instance is None:
            cls._instance = FederationServices.build(load_federation_config())
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None


def get_services() -> FederationServices:
    """Return the singleton federation service graph."""
    return _FederationServicesSingleton.get_instance()


def reset_services() -> None:
    _FederationServicesSingleton.reset()
