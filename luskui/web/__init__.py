"""aiohttp server: REST routes, SSE streaming and static assets."""
