"""Tests for SUMMARY.md generation."""

from mdwiki.core.summary import SUMMARY_HEAD, build_summary, iter_tree


def make_tree(root, files):
    for name, content in files.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)


class TestBuildSummary:
    def test_empty_root(self, tmp_path):
        assert build_summary(tmp_path) == SUMMARY_HEAD

    def test_missing_root(self, tmp_path):
        assert build_summary(tmp_path / "nope") == SUMMARY_HEAD

    def test_nested_pages(self, tmp_path):
        make_tree(
            tmp_path,
            {
                "README.md": "# Home",
                "SUMMARY.md": "old",
                "faq.md": "",
                "guide/README.md": "# guide",
                "guide/getting_started.md": "",
                "guide/advanced/README.md": "",
                "guide/advanced/tuning.md": "",
            },
        )
        assert build_summary(tmp_path) == SUMMARY_HEAD + (
            "- [faq](faq.md)\n"
            "- [guide](guide/README.md)\n"
            "  - [advanced](guide/advanced/README.md)\n"
            "    - [tuning](guide/advanced/tuning.md)\n"
            "  - [getting started](guide/getting_started.md)\n"
        )

    def test_skips_assets_hidden_and_non_markdown(self, tmp_path):
        make_tree(
            tmp_path,
            {
                "images/cat.md": "",
                ".drafts/secret.md": "",
                ".page.md.abc.tmp": "",
                "notes.txt": "",
                "index.md": "",
                "page.md": "",
            },
        )
        entries = list(iter_tree(tmp_path))
        assert [(str(p), d) for p, d in entries] == [("page.md", False)]

    def test_custom_assets_dir(self, tmp_path):
        make_tree(tmp_path, {"media/a.md": "", "images/b.md": ""})
        entries = [str(p) for p, _ in iter_tree(tmp_path, assets_dir="media")]
        assert entries == ["images", "images/b.md"]
