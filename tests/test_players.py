"""Tests for local player reachability checks"""

from unittest.mock import MagicMock

import requests

from mediasync.core.events import EventChannel
from mediasync.playback.players import (
    DefaultLocalPlayer,
    PortablePlayer,
    UrlReachabilityCache,
    host_from_url,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def make_cache(ttl=180.0, reachable=True):
    session = MagicMock(spec=requests.Session)
    if not reachable:
        session.head.side_effect = requests.exceptions.ConnectionError("refused")
    clock = FakeClock()
    return UrlReachabilityCache(ttl, session=session, clock=clock), session, clock


class TestUrlReachabilityCache:
    """Per-host probe caching"""

    def test_host_from_url(self):
        assert host_from_url("HTTP://Media.Example.com:8096/a/b") == "media.example.com:8096"

    def test_result_cached_per_host(self):
        """Two URLs on one host share a single probe"""
        cache, session, _ = make_cache()

        assert cache.can_access("http://host:8096/one")
        assert cache.can_access("http://host:8096/two")

        assert session.head.call_count == 1

    def test_unreachable_cached(self):
        cache, session, _ = make_cache(reachable=False)

        assert not cache.can_access("http://down/a")
        assert not cache.can_access("http://down/b")
        assert session.head.call_count == 1

    def test_expired_entry_probed_again(self):
        cache, session, clock = make_cache(ttl=180.0)
        cache.can_access("http://host/a")

        clock.now += 181.0
        cache.can_access("http://host/a")

        assert session.head.call_count == 2

    def test_clear(self):
        cache, session, _ = make_cache()
        cache.can_access("http://host/a")

        cache.clear()

        assert len(cache) == 0


class TestPlayers:
    """File, directory and URL access rules"""

    def test_default_player_filesystem(self, temp_dir):
        media = temp_dir / "movie.mkv"
        media.write_bytes(b"x")
        player = DefaultLocalPlayer(url_cache=make_cache()[0])

        assert player.can_access_file(str(media))
        assert not player.can_access_file(str(temp_dir / "missing.mkv"))
        assert player.can_access_directory(str(temp_dir))

    def test_custom_headers_not_supported(self):
        """URLs needing custom headers are refused without probing"""
        cache, session, _ = make_cache()
        player = DefaultLocalPlayer(url_cache=cache)

        assert not player.can_access_url("http://host/a", requires_custom_request_headers=True)
        session.head.assert_not_called()

    def test_portable_player_has_no_filesystem(self, temp_dir):
        player = PortablePlayer(url_cache=make_cache()[0])

        assert not player.can_access_file(str(temp_dir))
        assert not player.can_access_directory(str(temp_dir))
        assert player.can_access_url("http://host/a", requires_custom_request_headers=False)

    def test_default_ttls(self):
        assert DefaultLocalPlayer().url_cache.ttl == 180.0
        assert PortablePlayer().url_cache.ttl == 7200.0

    def test_network_change_clears_cache(self):
        """A network change forgets cached results until close()"""
        network_changed = EventChannel("network_changed")
        cache, session, _ = make_cache()
        player = PortablePlayer(url_cache=cache, network_changed=network_changed)
        player.can_access_url("http://host/a", False)

        network_changed.broadcast(None)
        player.can_access_url("http://host/a", False)

        assert session.head.call_count == 2

        player.close()
        assert len(network_changed) == 0

    def test_injected_cache_shared_between_players(self):
        """An empty cache handed to two players is the one both use"""
        shared, session, _ = make_cache()
        local = DefaultLocalPlayer(url_cache=shared)
        portable = PortablePlayer(url_cache=shared)

        local.can_access_url("http://host/a", False)
        portable.can_access_url("http://host/b", False)

        assert local.url_cache is shared
        assert portable.url_cache is shared
        assert session.head.call_count == 1

    def test_subscribes_to_channel_without_handlers(self):
        network_changed = EventChannel("network_changed")

        DefaultLocalPlayer(url_cache=make_cache()[0], network_changed=network_changed)

        assert len(network_changed) == 1
