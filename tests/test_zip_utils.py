"""Tests for bundling staged files into a zip archive."""

import zipfile

import pytest

from mediagrab_backend.errors import NotFoundError, ValidationError
from mediagrab_backend.security import new_session_id
from mediagrab_backend.staging import stage_media
from mediagrab_backend.zip_utils import BundleAsset, build_bundle, parse_asset_reference


class TestParseAssetReference:
    def test_public_path_with_session(self):
        sid = new_session_id()
        assert parse_asset_reference(f"/api/downloads/a.jpg?session={sid}") == ("a.jpg", sid)

    def test_session_is_normalized(self):
        sid = new_session_id()
        assert parse_asset_reference(f"/api/downloads/a.jpg?session={sid.upper()}") == ("a.jpg", sid)

    def test_bare_filename(self):
        assert parse_asset_reference("123-abcd.mp4") == ("123-abcd.mp4", None)

    @pytest.mark.parametrize(
        "reference",
        [
            "/api/downloads/../secret.txt",
            "/api/downloads/a%2F..%2Fb.jpg",
            "/etc/passwd",
            "https://evil.test/api/x.jpg",
            "nested/a.jpg",
            "..",
        ],
    )
    def test_rejects_unsafe_references(self, reference):
        with pytest.raises(ValidationError, match="Invalid asset path"):
            parse_asset_reference(reference)

    def test_rejects_bad_session(self):
        with pytest.raises(ValidationError, match="Invalid session ID"):
            parse_asset_reference("/api/downloads/a.jpg?session=../../tmp")

    @pytest.mark.parametrize("reference", ["", "   "])
    def test_missing_reference(self, reference):
        with pytest.raises(ValidationError, match="Missing download URL"):
            parse_asset_reference(reference)


def _stage_two(directories, sid):
    photo = stage_media(directories, sid, b"photo-bytes", "image/jpeg")
    clip = stage_media(directories, sid, b"clip-bytes" * 10, "video/mp4")
    return photo, clip


class TestBuildBundle:
    def test_zips_exactly_the_requested_files(self, directories):
        sid = new_session_id()
        photo, clip = _stage_two(directories, sid)

        result = build_bundle(
            directories,
            [BundleAsset(photo.public_path), BundleAsset(clip.public_path)],
        )

        assert result.session_id == sid
        assert result.path.parent == (directories.root / sid).resolve()
        assert result.zip_url == f"/api/downloads/{result.filename}?session={sid}"
        with zipfile.ZipFile(result.path) as zf:
            assert sorted(zf.namelist()) == sorted([photo.filename, clip.filename])
            assert zf.read(photo.filename) == b"photo-bytes"
            assert all(info.compress_type == zipfile.ZIP_DEFLATED for info in zf.infolist())

    def test_no_partial_archive_left_behind(self, directories):
        sid = new_session_id()
        photo, _ = _stage_two(directories, sid)
        build_bundle(directories, [BundleAsset(photo.public_path)])
        assert not any(p.name.endswith(".part") for p in (directories.root / sid).iterdir())

    def test_explicit_session_overrides_references(self, directories):
        sid = new_session_id()
        photo, _ = _stage_two(directories, sid)
        result = build_bundle(directories, [BundleAsset(photo.filename)], session_id=sid)
        assert result.session_id == sid

    def test_display_names_are_flattened_and_deduped(self, directories):
        sid = new_session_id()
        photo, clip = _stage_two(directories, sid)

        result = build_bundle(
            directories,
            [
                BundleAsset(photo.public_path, "../../holiday.jpg"),
                BundleAsset(clip.public_path, "holiday.jpg"),
                BundleAsset(photo.public_path, "holiday.jpg"),
            ],
        )

        assert result.entries == ("holiday.jpg", "holiday (1).jpg", "holiday (2).jpg")

    def test_missing_file_is_not_found(self, directories):
        sid = new_session_id()
        directories.ensure(sid)
        with pytest.raises(NotFoundError, match="Asset file not found"):
            build_bundle(directories, [BundleAsset(f"/api/downloads/missing.jpg?session={sid}")])

    def test_no_assets(self, directories):
        with pytest.raises(ValidationError, match="No assets provided"):
            build_bundle(directories, [])

    def test_invalid_reference_is_rejected(self, directories):
        with pytest.raises(ValidationError):
            build_bundle(directories, [BundleAsset("/api/downloads/../../etc/passwd")])

    def test_other_sessions_files_are_not_reachable(self, directories):
        owner, other = new_session_id(), new_session_id()
        photo, _ = _stage_two(directories, owner)
        directories.ensure(other)
        with pytest.raises(NotFoundError):
            build_bundle(directories, [BundleAsset(photo.filename)], session_id=other)
