"""Services package - Business logic layer for Bakehouse.

This package contains all service modules that provide business logic
and database operations for the application.

Architecture:
- Services: Stateless functions organized by domain
- Transactions: Managed via session_scope() context manager; every public
  function accepts an optional ``session`` to join a caller's transaction
- Exceptions: Consistent error handling via the ServiceError hierarchy
- Validation: Input validation before database operations

Core Modules:
- capacity_ledger: Bake slot booking counts and reservation handles
- order_intake_service: Validate, price and accept orders
- recipe_scaler: Scale recipes to a loaf count and cost them
- prep_sheet_service: Per bake date production plans
- production_ledger: Post-bake production records, splits and payments
- sync: One-way publish / ingest against the external store

Catalog and Reporting Modules:
- location_service, bake_slot_service, flavor_service, recipe_service,
  ingredient_service, customer_service, order_service,
  extra_production_service, analytics_service, public_catalog

Infrastructure:
- exceptions: Custom exception classes for service layer errors
- database: Session management and database utilities
- logging_utils: Structured operation logging
- operation_catalog: Capability-checked entry point for the presentation layer
- health_service: Background health file writer

Modules are imported directly (``from bakehouse.services import
capacity_ledger``); this package does not import them eagerly so that the
configuration layer can depend on ``exceptions`` without cycles.
"""
