# ABOUTME: Scylla Cloud client package initialization
# ABOUTME: Exposes version information for the provisioning client

"""
Scylla Cloud client - submit cluster operations and wait for them to finish.

=============================================================================
PACKAGE STRUCTURE OVERVIEW
=============================================================================

scylla_cloud/
├── __init__.py          <- Package entry point
├── config.py            <- Settings (env vars, retry and safety knobs)
├── models.py            <- Typed views of API payloads
├── metadata.py          <- Provider/region/instance/version catalog
├── poller.py            <- Waits for cluster requests to finish
├── reconciler.py        <- Create/resize/delete orchestration
└── utils/
    ├── errors.py        <- Failure classification
    ├── codes.txt        <- Backend error code table
    ├── transport.py     <- Request execution, envelope decoding, retries
    ├── client.py        <- Typed endpoint methods
    ├── logging.py       <- structlog setup, masking, audit trail
    └── safety.py        <- Read-only and destructive-operation guards

Typical use:

    settings = load_settings()
    async with ScyllaCloudClient(settings.instance) as client:
        metadata = await MetadataCache.build(client)
        reconciler = ClusterReconciler(client, metadata, OperationPoller(client))
        state = await reconciler.create(spec)
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
