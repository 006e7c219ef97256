"""Unit tests for application configuration."""

from pathlib import Path
from unittest.mock import patch

from mdwiki.config import Settings


class TestSettings:
    def test_defaults(self):
        with patch.dict("os.environ", {}, clear=True):
            s = Settings(_env_file=None)
            assert s.wiki_root == Path("./mdwiki")
            assert s.source_dir == "src"
            assert s.index_filename == "README.md"
            assert s.max_upload_bytes == 8 * 1024 * 1024
            assert s.session_ttl == 86400
            assert s.users == {}
            assert s.users_file is None
            assert s.debug is False
            assert s.app_title == "mdwiki"

    def test_from_env(self):
        env = {
            "MDWIKI_WIKI_ROOT": "/tmp/wiki",
            "MDWIKI_DEBUG": "true",
            "MDWIKI_APP_TITLE": "Team Wiki",
            "MDWIKI_MAX_UPLOAD_BYTES": "10485760",
            "MDWIKI_SESSION_TTL": "600",
            "MDWIKI_MANAGE_SUMMARY": "false",
        }
        with patch.dict("os.environ", env, clear=True):
            s = Settings(_env_file=None)
            assert s.wiki_root == Path("/tmp/wiki")
            assert s.debug is True
            assert s.app_title == "Team Wiki"
            assert s.max_upload_bytes == 10 * 1024 * 1024
            assert s.session_ttl == 600
            assert s.manage_summary is False

    def test_users_from_json_env(self):
        env = {"MDWIKI_USERS": '{"alice": "pbkdf2_sha256$1$00$00"}'}
        with patch.dict("os.environ", env, clear=True):
            s = Settings(_env_file=None)
            assert s.users == {"alice": "pbkdf2_sha256$1$00$00"}

    def test_derived_paths(self):
        s = Settings(_env_file=None, wiki_root=Path("/srv/wiki"), assets_dir="img")
        assert s.source_path == Path("/srv/wiki/src")
        assert s.assets_path == Path("/srv/wiki/src/img")
