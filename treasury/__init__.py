"""Treasury rebalancing agent.

This package contains the building blocks of the unattended rebalancing agent:

- agent: scheduler loop, plugin registry, opportunity ranking
- plugins: venue adapters (home rebalance, gateway yield, external pool yield)
- positions: cross-venue position and pending-bridge state machine
- keystore: encrypted custodial keys for the secondary chain
- telemetry: explicit logger, action recorder, action formatting
- market_data: yield/price data sources with synthetic fallbacks
- chain: vault, gateway, lending, bridge and pool clients (live and paper)
- persistence: persistence boundary (interfaces)
- storage: concrete persistence implementations (SQLite, in-memory)

Default mode is dry-run: paper clients, no transactions are signed.
"""
