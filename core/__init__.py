"""
Core module for ServerWrecker.

This package contains the swarm orchestration, account resolution,
authentication, proxy allocation and configuration components that drive a
bot swarm against a single target server.

Submodules:
    config: Application settings (``WreckerSettings``, ``SwarmOptions``) via Pydantic.
    orchestrator: ``SwarmOrchestrator`` build/connect engine with pause and stop.
    accounts: ``CredentialResolver`` turning account lists into credentials.
    auth: Offline identities and the Yggdrasil ``IdentityProvider``.
    proxy_manager: Proxy registry and per-run round-robin ``ProxyAllocator``.
    registry: Factory registry mapping protocol versions to bot classes.
    monitoring: Rich status table for a running swarm.
    logging_setup: Compressed rotating file + safe console logging.
"""
