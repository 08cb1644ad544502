"""
GraphQeLves - GraphQL Traffic Inspector.

GraphQeLves reconstructs GraphQL operations (queries, mutations, subscriptions, batched
and persisted variants) from HTTP transactions captured by browser developer tools. It
provides an MCP server interface for AI agents and an HTTP API for the inspection panel.
"""

__version__ = "1.0"
