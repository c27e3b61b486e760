"""
External store synchronization.

The private database is the system of record. This package keeps a public
spreadsheet store eventually consistent with it:

- publisher: Outbox of changed records and their external row form
- ingest: Turns external order intake rows into orders, exactly once
- token_provider: Service-account bearer tokens (signed JWT assertion)
- sheets_client: Async HTTP client for the spreadsheet values API with retries
- bridge: SyncBridge, the cancellable background task driving both directions

Usage:
    from bakehouse.services.sync.bridge import SyncBridge

    bridge = SyncBridge.from_config()
    await bridge.start()
    ...
    await bridge.stop()
"""
