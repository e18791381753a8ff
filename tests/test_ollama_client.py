"""Tests for the Ollama completion client against a local aiohttp server."""

from __future__ import annotations

import pytest
from aiohttp import web
from aiohttp import test_utils

from chatterm.core.errors import CompletionError
from chatterm.services.ollama_client import OllamaCompletionService


async def start_server(generate_handler) -> test_utils.TestServer:
    async def tags(request: web.Request) -> web.Response:
        return web.json_response({"models": [{"name": "llama3.2:latest", "size": 2019393189}]})

    app = web.Application()
    app.router.add_post("/api/generate", generate_handler)
    app.router.add_get("/api/tags", tags)
    server = test_utils.TestServer(app)
    await server.start_server()
    return server


def base_url(server: test_utils.TestServer) -> str:
    return str(server.make_url("")).rstrip("/")


@pytest.mark.asyncio
async def test_generate_returns_response_field() -> None:
    received: list[dict] = []

    async def handler(request: web.Request) -> web.Response:
        received.append(await request.json())
        return web.json_response({"model": "llama3.2", "response": "Hi!", "done": True})

    server = await start_server(handler)
    client = OllamaCompletionService(base_url(server) + "/")
    try:
        assert await client.generate("llama3.2", "Say hi") == "Hi!"
        assert received == [{"model": "llama3.2", "prompt": "Say hi", "stream": False}]
        assert await client.is_available()
        assert await client.list_models() == ["llama3.2:latest"]
    finally:
        await client.close()
        await server.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, body, match",
    [
        (500, "model not loaded", "500"),
        (200, "{not json", "parse"),
        (200, '{"done": true}', "response"),
    ],
)
async def test_generate_failures(status: int, body: str, match: str) -> None:
    async def handler(request: web.Request) -> web.Response:
        return web.Response(status=status, text=body, content_type="application/json")

    server = await start_server(handler)
    client = OllamaCompletionService(base_url(server))
    try:
        with pytest.raises(CompletionError, match=match):
            await client.generate("llama3.2", "hello")
    finally:
        await client.close()
        await server.close()


@pytest.mark.asyncio
async def test_generate_connection_refused() -> None:
    async def handler(request: web.Request) -> web.Response:
        return web.json_response({"response": "unused"})

    server = await start_server(handler)
    url = base_url(server)
    await server.close()

    client = OllamaCompletionService(url)
    try:
        with pytest.raises(CompletionError):
            await client.generate("llama3.2", "hello")
        assert not await client.is_available()
        assert await client.list_models() == []
    finally:
        await client.close()
