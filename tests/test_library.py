"""
End-to-end tests for the Library context.
"""

import asyncio
import json

import pytest

from svgshelf.errors import NotFoundError, ParseError
from svgshelf.library import Library
from svgshelf.thesaurus import Thesaurus
from tests.conftest import make_zip, svg


def _names(results):
    return [a.name for a in results]


class TestLoading:
    """Tests for loading, restoring and reloading archives."""

    @pytest.mark.asyncio
    async def test_load_indexes_assets(self, library_config, sample_archive):
        """Should index every entry with stable ids."""
        library = Library(library_config, thesaurus=Thesaurus({"cloud": ["sky"]}))
        result = await library.load_archive(sample_archive, "logos.zip")

        assert result.stats.total == 4
        assert result.stats.ignored == 1
        assert _names(library.search("")) == ["Berry.svg", "Blue Sky.svg", "Cloud.svg", "Rocket.svg"]
        assert [a.id for a in library.assets] == [0, 1, 2, 3]
        assert _names(library.search("cloud")) == ["Cloud.svg", "Blue Sky.svg"]
        await library.close()

    @pytest.mark.asyncio
    async def test_restore_from_cache(self, library_config, sample_archive):
        """Should restore the last imported archive from the cache."""
        first = Library(library_config)
        await first.load_archive(sample_archive, "logos.zip")
        await first.close()

        second = Library(library_config)
        result = await second.restore()

        assert result is not None
        assert second.metadata.name == "logos.zip"
        assert second.metadata.count == 4
        assert len(second.assets) == 4
        assert "rocket" in await second.get_svg("Rocket.svg")
        await second.close()

    @pytest.mark.asyncio
    async def test_restore_with_empty_cache(self, library_config):
        """Should restore nothing from an empty cache."""
        library = Library(library_config)
        assert await library.restore() is None
        assert library.assets == ()
        await library.close()

    @pytest.mark.asyncio
    async def test_corrupt_archive_leaves_library_empty(self, library_config, sample_archive):
        """Should empty the library when a reload fails to parse."""
        library = Library(library_config)
        await library.load_archive(sample_archive)

        with pytest.raises(ParseError):
            await library.load_archive(b"not a zip", "bad.zip")

        assert library.assets == ()
        assert library.search("") == []
        await library.close()

    @pytest.mark.asyncio
    async def test_corrupt_archive_clears_metadata(self, library_config, sample_archive):
        """Should drop the previous archive's metadata when a reload fails to parse."""
        library = Library(library_config)
        await library.load_archive(sample_archive, "logos.zip")
        assert library.metadata.name == "logos.zip"

        with pytest.raises(ParseError):
            await library.load_archive(b"not a zip", "bad.zip")

        assert library.metadata is None
        assert library.last_result is None
        assert library.assets == ()
        await library.close()

    @pytest.mark.asyncio
    async def test_reload_replaces_assets(self, library_config, sample_archive):
        """Should replace assets on reload."""
        library = Library(library_config)
        await library.load_archive(sample_archive)
        await library.load_archive(make_zip({"Other.svg": svg()}))

        assert _names(library.search("")) == ["Other.svg"]
        assert library.search("rocket") == []
        await library.close()

    @pytest.mark.asyncio
    async def test_keywords_from_config(self, library_config, sample_archive):
        """Should attach keywords from the configured artifact."""
        library_config.path.mkdir(parents=True)
        (library_config.path / "keywords.json").write_text(json.dumps({
            "items": [{"file": "Rocket.svg", "keywords": ["launch", "space"]}],
        }))
        library_config.keywords_path = "keywords.json"

        library = Library(library_config)
        await library.load_archive(sample_archive)

        assert _names(library.search("launch")) == ["Rocket.svg"]
        assert _names(library.search("", filter_mode="with_keywords")) == ["Rocket.svg"]
        await library.close()


class TestPreferences:
    """Tests for favorites and last use through the library."""

    @pytest.mark.asyncio
    async def test_favorite_survives_reload(self, library_config, sample_archive):
        """Should keep favorites across a reload."""
        library = Library(library_config)
        await library.load_archive(sample_archive)
        library.set_favorite("Rocket.svg", True)
        await library.close()

        again = Library(library_config)
        await again.restore()
        assert again.get_asset("Rocket.svg").is_favorite
        assert _names(again.search("", sort_mode="favorites"))[0] == "Rocket.svg"
        await again.close()

    @pytest.mark.asyncio
    async def test_toggle_favorite(self, library_config, sample_archive):
        """Should flip the favorite flag."""
        library = Library(library_config)
        await library.load_archive(sample_archive)
        assert library.toggle_favorite("Cloud.svg") is True
        assert library.toggle_favorite("Cloud.svg") is False
        await library.close()

    @pytest.mark.asyncio
    async def test_unknown_asset(self, library_config, sample_archive):
        """Should raise NotFoundError for an unknown asset."""
        library = Library(library_config)
        await library.load_archive(sample_archive)
        with pytest.raises(NotFoundError):
            library.set_favorite("Nope.svg", True)
        with pytest.raises(NotFoundError):
            await library.get_svg("Nope.svg")
        await library.close()

    @pytest.mark.asyncio
    async def test_default_modes_from_config(self, library_config, sample_archive):
        """Should search with the configured sort and filter."""
        library_config.default_sort = "favorites"
        library = Library(library_config)
        await library.load_archive(sample_archive)
        library.set_favorite("Rocket.svg", True)
        assert _names(library.search(""))[0] == "Rocket.svg"
        await library.close()


class TestRenderingAndInsertion:
    """Tests for rendering results and inserting from the library."""

    @pytest.mark.asyncio
    async def test_show_renders_results(self, library_config, sample_archive, view, frames):
        """Should render search results to the view."""
        library = Library(library_config, view=view, frames=frames)
        await library.load_archive(sample_archive)

        results = library.show("sky")
        frames.run_all()

        assert _names(results) == ["Blue Sky.svg"]
        assert [t.asset.name for t in view.tiles] == ["Blue Sky.svg"]
        assert view.observed == ["Blue Sky.svg"]
        await library.close()

    @pytest.mark.asyncio
    async def test_reload_revokes_handles(self, library_config, sample_archive, view, frames):
        """Should revoke render handles on reload."""
        library = Library(library_config, view=view, frames=frames)
        await library.load_archive(sample_archive)
        asset = library.get_asset("Rocket.svg")
        handle = await library.renderer.on_visible(asset)
        assert handle in library.renderer.handles

        await library.load_archive(sample_archive)

        assert handle not in library.renderer.handles
        assert library.get_asset("Rocket.svg").render_handle is None
        await library.close()

    @pytest.mark.asyncio
    async def test_insert_records_use(self, library_config, sample_archive, host):
        """Should record last use after inserting."""
        library = Library(library_config, host=host)
        await library.load_archive(sample_archive)

        await library.insert("Cloud.svg")
        await asyncio.sleep(0)
        await library.insert("Berry.svg")

        assert len(host.inserted) == 2
        assert _names(library.search("", sort_mode="recent"))[:2] == ["Berry.svg", "Cloud.svg"]
        await library.close()

        again = Library(library_config)
        await again.restore()
        assert again.get_asset("Berry.svg").last_used_at is not None
        await again.close()

    @pytest.mark.asyncio
    async def test_insert_without_host(self, library_config, sample_archive):
        """Should refuse to insert without a host document."""
        library = Library(library_config)
        await library.load_archive(sample_archive)
        with pytest.raises(RuntimeError):
            library.insert("Cloud.svg")
        await library.close()
