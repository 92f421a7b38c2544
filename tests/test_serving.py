"""Tests for the cache-first image server."""
from concurrent.futures import ThreadPoolExecutor
from io import BytesIO

import pytest
from PIL import Image as PILImage

from image_cache import DiskCacheStore, build_cache_key
from models import TransformRequest
from serving import ImageServer, ImageServingError, find_source_file


@pytest.fixture
def dirs(tmp_path):
    first, second = tmp_path / "first", tmp_path / "second"
    first.mkdir()
    second.mkdir()
    return first, second


@pytest.fixture
def server(tmp_path, dirs):
    return ImageServer(DiskCacheStore(tmp_path / "cache"), dirs)


class TestFindSourceFile:

    def test_first_match_wins(self, dirs):
        first, second = dirs
        (first / "a.png").write_bytes(b"1")
        (second / "a.png").write_bytes(b"2")
        assert find_source_file("a.png", dirs) == first / "a.png"

    def test_falls_through_to_later_directories(self, dirs):
        (dirs[1] / "b.png").write_bytes(b"2")
        assert find_source_file("b.png", dirs) == dirs[1] / "b.png"

    def test_absent(self, dirs):
        assert find_source_file("missing.png", dirs) is None

    def test_ignores_directories_and_traversal(self, dirs, tmp_path):
        (dirs[0] / "sub").mkdir()
        (tmp_path / "secret.png").write_bytes(b"x")
        assert find_source_file("sub", dirs) is None
        assert find_source_file("../secret.png", dirs) is None
        assert find_source_file("..", dirs) is None

    def test_overlong_name_is_not_found(self, dirs):
        assert find_source_file("x" * 300 + ".png", dirs) is None


class TestImageServer:

    def test_renders_and_caches(self, server, dirs, image_bytes):
        (dirs[0] / "a.png").write_bytes(image_bytes(40, 20))
        request = TransformRequest(source_filename="a.png", width=20, format="webp")
        first = server.serve(request)
        assert first.content_type == "image/webp"
        assert server.cache.get(build_cache_key(request), ".webp") == first.payload

    def test_cache_hit_returns_stored_bytes(self, server, dirs, image_bytes):
        (dirs[0] / "a.png").write_bytes(image_bytes())
        request = TransformRequest(source_filename="a.png", width=10)
        server.cache.put(build_cache_key(request), b"cached-bytes", ".png")
        out = server.serve(request)
        assert out.payload == b"cached-bytes"
        assert out.content_type == "image/png"

    def test_repeat_requests_are_identical(self, server, dirs, image_bytes):
        (dirs[0] / "a.png").write_bytes(image_bytes())
        request = TransformRequest(source_filename="a.png", width=16, format="jpg", quality=70)
        assert server.serve(request).payload == server.serve(request).payload

    def test_cached_jpg_keeps_jpeg_content_type(self, server, dirs, image_bytes):
        (dirs[0] / "a.png").write_bytes(image_bytes())
        request = TransformRequest(source_filename="a.png", format="jpg")
        server.serve(request)
        assert server.serve(request).content_type == "image/jpeg"

    def test_missing_source_uses_placeholder(self, server):
        out = server.serve(TransformRequest(source_filename="nope.png", width=100, height=100))
        im = PILImage.open(BytesIO(out.payload))
        assert im.size == (100, 100)

    def test_placeholder_size_setting(self, tmp_path, dirs):
        server = ImageServer(DiskCacheStore(tmp_path / "c"), dirs, placeholder_size=48)
        out = server.serve(TransformRequest(source_filename="nope.png"))
        assert PILImage.open(BytesIO(out.payload)).size == (48, 48)

    def test_overlong_name_uses_placeholder(self, server):
        out = server.serve(TransformRequest(source_filename="x" * 300 + ".png", width=40, height=40))
        assert PILImage.open(BytesIO(out.payload)).size == (40, 40)

    def test_quality_defaults_when_format_given(self, tmp_path, dirs):
        noisy = PILImage.effect_noise((96, 96), 64).convert("RGB")
        buf = BytesIO()
        noisy.save(buf, format="PNG")
        (dirs[0] / "n.png").write_bytes(buf.getvalue())
        server = ImageServer(DiskCacheStore(tmp_path / "c"), dirs, default_quality=20)
        implicit = server.serve(TransformRequest(source_filename="n.png", format="jpeg"))
        explicit = server.serve(TransformRequest(source_filename="n.png", format="jpeg", quality=20))
        assert implicit.payload == explicit.payload

    def test_corrupt_source_is_an_error(self, server, dirs):
        (dirs[0] / "broken.png").write_bytes(b"")
        with pytest.raises(ImageServingError) as excinfo:
            server.serve(TransformRequest(source_filename="broken.png"))
        assert str(excinfo.value)
        assert list(server.cache.cache_dir.glob("*")) == []

    def test_invalid_format_is_an_error(self, server):
        with pytest.raises(ImageServingError):
            server.serve(TransformRequest(source_filename="a.png", format="../../x"))

    def test_cache_write_failure_still_serves(self, tmp_path, dirs, image_bytes):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        server = ImageServer(DiskCacheStore(blocker / "cache"), dirs)
        (dirs[0] / "a.png").write_bytes(image_bytes())
        out = server.serve(TransformRequest(source_filename="a.png", format="png"))
        assert PILImage.open(BytesIO(out.payload)).format == "PNG"

    def test_expired_entry_is_regenerated(self, tmp_path, dirs, image_bytes):
        now = [1000.0]
        store = DiskCacheStore(tmp_path / "cache", ttl=1, clock=lambda: now[0])
        server = ImageServer(store, dirs)
        (dirs[0] / "a.png").write_bytes(image_bytes())
        request = TransformRequest(source_filename="a.png")
        key = build_cache_key(request)
        store.put(key, b"stale", ".png")
        now[0] += 2
        out = server.serve(request)
        assert out.payload != b"stale"
        assert store.get(key, ".png") == out.payload

    def test_hook_called_after_write(self, tmp_path, dirs):
        seen = []
        server = ImageServer(DiskCacheStore(tmp_path / "c"), dirs, on_cache_write=seen.append)
        request = TransformRequest(source_filename="x.png", width=8)
        server.serve(request)
        server.serve(request)
        assert seen == [build_cache_key(request)]

    def test_hook_failure_is_ignored(self, tmp_path, dirs):
        def boom(key):
            raise RuntimeError("notify failed")

        server = ImageServer(DiskCacheStore(tmp_path / "c"), dirs, on_cache_write=boom)
        assert server.serve(TransformRequest(source_filename="x.png", width=8)).payload

    def test_concurrent_identical_requests(self, server, dirs, image_bytes):
        (dirs[0] / "a.png").write_bytes(image_bytes(120, 80))
        request = TransformRequest(source_filename="a.png", width=60, format="webp", quality=60)
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: server.serve(request).payload, range(16)))
        assert len(set(results)) == 1
        assert server.cache.get(build_cache_key(request), ".webp") == results[0]
