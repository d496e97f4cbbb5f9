"""
Read-only bridge to Dynamics 365 Finance & Operations customers and vendors,
exposed as MCP tools and a small HTTP query API.
"""
