"""Tests for metadata records, the store and latest-version resolution."""

import json

import pytest

from tilesync.errors import NoValidRecords, NotFound
from tilesync.maps.metadata import (
    DEFAULT_ATTRIBUTION,
    MapMetadata,
    build_metadata,
    parse_timestamp,
)
from tilesync.storage.metadata_store import (
    MetadataStore,
    compare_versions,
    resolve_latest_by_upload_time,
    resolve_latest_by_version,
)

from conftest import event_names, events_named


def record(map_id, version='1.0.0', created_at='2024-01-01T00:00:00.000Z', **kwargs):
    r = build_metadata(map_id, 'city.mbtiles', size=10, checksum='abc', version=version, **kwargs)
    r.created_at = created_at
    r.updated_at = created_at
    return r


class TestMapMetadata:
    """Record defaults and the persisted document shape."""

    def test_defaults_from_filename(self):
        r = build_metadata('id-1', 'Downtown.MBTILES', size=42, checksum='ff')
        assert r.name == 'Downtown'
        assert r.description == 'Map uploaded from Downtown.MBTILES'
        assert r.version == '1.0.0'
        assert r.artifact_filename == 'id-1.mbtiles'
        assert r.bounds_info.attribution == DEFAULT_ATTRIBUTION
        assert r.created_at == r.updated_at
        assert r.created_at.endswith('Z')
        assert r.tile_checksums is None

    def test_caller_fields_win(self):
        r = build_metadata('id-1', 'a.mbtiles', 1, 'ff', name='Harbour',
                           description='New piers', version='2.1.0')
        assert (r.name, r.description, r.version) == ('Harbour', 'New piers', '2.1.0')

    def test_persisted_keys(self):
        data = record('id-1').to_dict()
        assert set(data) == {
            'mapId', 'name', 'basename', 'description', 'createdAt', 'updatedAt',
            'version', 'metadata', 'size', 'checksum',
        }
        assert set(data['metadata']) == {
            'bounds', 'center', 'format', 'minzoom', 'maxzoom', 'attribution',
        }

    def test_tile_checksums_serialized_when_present(self):
        r = record('id-1', tile_checksums={'0/0/0': 'aa'})
        assert r.to_dict()['tileChecksums'] == {'0/0/0': 'aa'}
        assert MapMetadata.from_json(r.to_json()) == r

    def test_missing_required_key(self):
        with pytest.raises(KeyError):
            MapMetadata.from_dict({'mapId': 'x'})

    def test_parse_timestamp_naive_is_utc(self):
        aware = parse_timestamp('2024-01-01T00:00:00Z')
        naive = parse_timestamp('2024-01-01T00:00:00')
        assert aware == naive


class TestMetadataStore:
    """Lookup, listing and persistence."""

    @pytest.mark.asyncio
    async def test_persist_and_get(self, tmp_path):
        store = MetadataStore(tmp_path)
        r = record('id-1', tile_checksums={'1/0/0': 'aa'})
        path = await store.persist(r)

        assert path == tmp_path / 'metadata' / 'id-1.json'
        assert json.loads(path.read_text())['mapId'] == 'id-1'
        assert await store.get('id-1') == r
        assert await store.exists('id-1')

    @pytest.mark.asyncio
    async def test_get_missing(self, tmp_path):
        store = MetadataStore(tmp_path)
        with pytest.raises(NotFound):
            await store.get('nope')

    @pytest.mark.asyncio
    async def test_get_rejects_path_ids(self, tmp_path):
        store = MetadataStore(tmp_path)
        for bad in ('', '..', '../etc', 'a\\b'):
            with pytest.raises(NotFound):
                await store.get(bad)

    @pytest.mark.asyncio
    async def test_get_corrupt_record_is_not_found(self, tmp_path, log, log_capture):
        store = MetadataStore(tmp_path, log=log)
        store.ensure_directory()
        store.metadata_path('bad').write_text('{not json')

        with pytest.raises(NotFound):
            await store.get('bad')
        assert event_names(log_capture) == ['metadata_read_error']
        assert log_capture.entries[0]['log_level'] == 'error'

    @pytest.mark.asyncio
    async def test_listing_skips_corrupt_files(self, tmp_path, log, log_capture):
        store = MetadataStore(tmp_path, log=log)
        await store.persist(record('good'))
        store.metadata_path('bad').write_text('{not json')
        store.metadata_path('partial').write_text(json.dumps({'mapId': 'partial'}))
        (store.metadata_dir / 'notes.txt').write_text('ignored')

        records = await store.list_records()

        assert [r.map_id for r in records] == ['good']
        skipped = events_named(log_capture, 'metadata_parse_skipped')
        assert sorted(e['file'] for e in skipped) == ['bad.json', 'partial.json']

    @pytest.mark.asyncio
    async def test_listing_without_directory(self, tmp_path):
        store = MetadataStore(tmp_path / 'missing')
        assert await store.list_records() == []

    @pytest.mark.asyncio
    async def test_persist_overwrites(self, tmp_path):
        store = MetadataStore(tmp_path)
        r = record('id-1')
        await store.persist(r)
        r.description = 'changed'
        await store.persist(r)
        assert (await store.get('id-1')).description == 'changed'

    @pytest.mark.asyncio
    async def test_delete(self, tmp_path):
        store = MetadataStore(tmp_path)
        await store.persist(record('id-1'))
        assert await store.delete('id-1') is True
        assert await store.delete('id-1') is False

    @pytest.mark.asyncio
    async def test_latest_by_version_empty(self, tmp_path):
        store = MetadataStore(tmp_path)
        with pytest.raises(NoValidRecords):
            await store.latest_by_version()


class TestVersionResolution:
    """Latest by version number and by upload time."""

    def test_compare_versions(self):
        assert compare_versions('1.10.0', '1.2.0') == 1
        assert compare_versions('1.2', '1.2.0') == 0
        assert compare_versions('1.0-beta', '1.0') == 0
        assert compare_versions('0.9', '1.0') == -1

    def test_only_plain_ascii_digits_count(self):
        # int() would accept all of these
        assert compare_versions('1_0', '2') == -1
        assert compare_versions('1. 3', '1.2') == -1
        assert compare_versions('\u0663.0', '1.0') == -1
        assert compare_versions('+5', '0') == 0

    def test_underscore_version_does_not_win(self):
        records = [record('a', '2.0.0'), record('b', '10_0')]
        assert resolve_latest_by_version(records).map_id == 'a'

    def test_numeric_not_lexicographic(self):
        records = [record('a', '1.2.0'), record('b', '1.10.0'), record('c', '2.0.0')]
        assert resolve_latest_by_version(records).version == '2.0.0'
        assert resolve_latest_by_version(records[:2]).version == '1.10.0'

    def test_equal_versions_keep_first(self):
        records = [record('a', '1.2'), record('b', '1.2.0')]
        latest = resolve_latest_by_version(records)
        assert latest.map_id == 'a'
        assert latest.version == '1.2'

    def test_empty(self):
        with pytest.raises(NoValidRecords):
            resolve_latest_by_version([])

    def test_by_upload_time(self, log, log_capture):
        records = [
            record('old', created_at='2024-01-01T00:00:00.000Z'),
            record('broken', created_at='yesterday'),
            record('new', created_at='2024-03-01T12:00:00.000Z'),
        ]
        assert resolve_latest_by_upload_time(records, log=log).map_id == 'new'
        assert event_names(log_capture) == ['timestamp_parse_skipped']

    def test_by_upload_time_nothing_valid(self, log):
        with pytest.raises(NoValidRecords):
            resolve_latest_by_upload_time([record('x', created_at='')], log=log)
