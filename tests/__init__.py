# Storefront Test Suite
#
# This package contains:
# - Storage contract tests, run against both backends (test_catalog, test_accounts,
#   test_settings_logs, test_orders)
# - Backend-specific tests (test_snapshot_store, test_sql_store)
# - Concurrency tests for order placement (test_concurrency)
# - Snapshot -> relational migration tests (test_migration)
# - CLI and error translation tests (test_cli, test_errors)
#
# Run with: python -m pytest
