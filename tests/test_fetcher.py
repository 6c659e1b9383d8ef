"""Tests for the web fetcher against a local aiohttp server."""

import asyncio
from collections import Counter

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from webspider.crawler.fetcher import WebFetcher
from webspider.errors import FetchErrorKind


@pytest.fixture
def hits():
    return Counter()


@pytest.fixture
async def server(hits):
    async def ok(request):
        hits['ok'] += 1
        return web.Response(text='<a href="/next">next</a>', content_type='text/html')

    async def flaky(request):
        hits['flaky'] += 1
        return web.Response(status=500, text='boom')

    async def recovers(request):
        hits['recovers'] += 1
        if hits['recovers'] < 2:
            return web.Response(status=503)
        return web.Response(text='finally', content_type='text/html')

    async def missing(request):
        hits['missing'] += 1
        return web.Response(status=404)

    async def loop(request):
        hits['loop'] += 1
        raise web.HTTPFound('/loop')

    async def redirect(request):
        raise web.HTTPMovedPermanently('/ok')

    async def slow(request):
        hits['slow'] += 1
        await asyncio.sleep(1)
        return web.Response(text='late')

    async def user_agent(request):
        return web.Response(text=request.headers.get('User-Agent', ''), content_type='text/plain')

    async def big(request):
        return web.Response(body=b'x' * 4096, content_type='text/html')

    async def truncated(request):
        hits['truncated'] += 1
        response = web.StreamResponse()
        response.content_type = 'text/html'
        response.content_length = 1000
        await response.prepare(request)
        await response.write(b'<html><body>')
        request.transport.close()
        return response

    async def choices(request):
        hits['choices'] += 1
        return web.Response(status=300, headers={'Location': '/ok'})

    app = web.Application()
    app.router.add_get('/ok', ok)
    app.router.add_get('/flaky', flaky)
    app.router.add_get('/recovers', recovers)
    app.router.add_get('/missing', missing)
    app.router.add_get('/loop', loop)
    app.router.add_get('/redirect', redirect)
    app.router.add_get('/slow', slow)
    app.router.add_get('/ua', user_agent)
    app.router.add_get('/big', big)
    app.router.add_get('/truncated', truncated)
    app.router.add_get('/choices', choices)

    test_server = TestServer(app)
    await test_server.start_server()
    yield test_server
    await test_server.close()


@pytest.fixture
async def fetcher():
    async with WebFetcher(user_agent="webspider-test/1.0", request_timeout=5,
                          max_retries=2, backoff_base=0, max_redirects=3) as web_fetcher:
        yield web_fetcher


def url(server, path):
    return str(server.make_url(path))


class TestFetch:

    async def test_success_returns_body_and_status(self, server, fetcher, hits):
        result = await fetcher.fetch(url(server, '/ok'))
        assert result.ok
        assert result.status_code == 200
        assert b'href="/next"' in result.body
        assert result.is_html
        assert result.attempts == 1
        assert hits['ok'] == 1

    async def test_sends_user_agent(self, server, fetcher):
        result = await fetcher.fetch(url(server, '/ua'))
        assert result.body == b'webspider-test/1.0'
        assert not result.is_html

    async def test_5xx_retried_until_budget_exhausted(self, server, fetcher, hits):
        result = await fetcher.fetch(url(server, '/flaky'))
        assert not result.ok
        assert result.error.kind is FetchErrorKind.INVALID_RESPONSE
        assert result.status_code == 500
        assert result.attempts == 3
        assert hits['flaky'] == 3
        assert fetcher.get_stats()['retries'] == 2

    async def test_transient_5xx_recovers(self, server, fetcher, hits):
        result = await fetcher.fetch(url(server, '/recovers'))
        assert result.ok
        assert result.attempts == 2
        assert hits['recovers'] == 2

    async def test_4xx_is_not_retried(self, server, fetcher, hits):
        result = await fetcher.fetch(url(server, '/missing'))
        assert result.error.kind is FetchErrorKind.INVALID_RESPONSE
        assert result.error.status_code == 404
        assert hits['missing'] == 1

    async def test_redirect_is_followed(self, server, fetcher):
        result = await fetcher.fetch(url(server, '/redirect'))
        assert result.ok
        assert result.final_url.endswith('/ok')

    async def test_redirect_loop_is_too_many_redirects(self, server, fetcher, hits):
        result = await fetcher.fetch(url(server, '/loop'))
        assert result.error.kind is FetchErrorKind.TOO_MANY_REDIRECTS
        assert result.attempts == 1
        assert hits['loop'] <= 4

    async def test_timeout(self, server, hits):
        async with WebFetcher(user_agent="t", max_retries=1, backoff_base=0) as fetcher:
            result = await fetcher.fetch(url(server, '/slow'), timeout=0.2)
        assert result.error.kind is FetchErrorKind.TIMEOUT
        assert result.attempts == 2
        assert hits['slow'] == 2

    async def test_connection_failure(self):
        async with WebFetcher(user_agent="t", max_retries=1, backoff_base=0) as fetcher:
            result = await fetcher.fetch("http://127.0.0.1:1/")
        assert result.error.kind is FetchErrorKind.CONNECTION_FAILED
        assert result.attempts == 2

    async def test_oversized_body_is_rejected(self, server):
        async with WebFetcher(user_agent="t", max_content_size=1024) as fetcher:
            result = await fetcher.fetch(url(server, '/big'))
        assert result.error.kind is FetchErrorKind.INVALID_RESPONSE

    async def test_no_retry_after_cancellation(self, server, hits):
        cancel_event = asyncio.Event()
        cancel_event.set()
        async with WebFetcher(user_agent="t", max_retries=2, backoff_base=0,
                              cancel_event=cancel_event) as fetcher:
            result = await fetcher.fetch(url(server, '/flaky'))
        assert not result.ok
        assert hits['flaky'] == 1

    async def test_default_timeout_applies_without_override(self, server, hits):
        async with WebFetcher(user_agent="t", request_timeout=0.2, max_retries=0) as fetcher:
            result = await asyncio.wait_for(fetcher.fetch(url(server, '/slow')), timeout=0.8)
        assert result.error.kind is FetchErrorKind.TIMEOUT
        assert hits['slow'] == 1

    async def test_connection_lost_mid_body_is_retried(self, server, hits):
        async with WebFetcher(user_agent="t", max_retries=2, backoff_base=0) as fetcher:
            result = await fetcher.fetch(url(server, '/truncated'), timeout=2)
        assert result.error.kind is FetchErrorKind.CONNECTION_FAILED
        assert result.attempts == 3
        assert hits['truncated'] == 3

    async def test_unfollowed_3xx_is_invalid_response(self, server, fetcher, hits):
        result = await fetcher.fetch(url(server, '/choices'))
        assert result.error.kind is FetchErrorKind.INVALID_RESPONSE
        assert result.status_code == 300
        assert hits['choices'] == 1

    async def test_redirect_with_redirects_disabled(self, server):
        async with WebFetcher(user_agent="t", max_redirects=0) as fetcher:
            result = await fetcher.fetch(url(server, '/redirect'))
        assert result.error.kind is FetchErrorKind.TOO_MANY_REDIRECTS
        assert result.status_code == 301
