"""Forge extraction pipeline.

Pulls namespaces, repositories, members, merge requests (with their commits,
diffs, notes and timeline events) and deployments from GitHub and GitLab,
fans paginated resources out over an SQS queue, upserts everything into
PostgreSQL by external identity, and reconciles git commit identities
against provider members.
"""
