"""Scheduler loop, plugin registry and opportunity ranking.

Import the submodules directly (`treasury.agent.scheduler`,
`treasury.agent.registry`); plugins depend on `treasury.agent.ranker`.
"""
