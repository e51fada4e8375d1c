"""Tests for the format-preserving document model."""

import math

import pytest

from cratefix.document import HandleKind, parse
from cratefix.errors import ParseError, StaleHandle


ROUND_TRIP_CORPUS = {
    "crlf": "[package]\r\nname = \"demo\"\r\n\r\n[dependencies]\r\nserde = \"1.0\" # pinned\r\n",
    "multiline-strings": (
        "[package]\n"
        "description = \"\"\"\n"
        "A crate with a \\\n"
        "    long description.\"\"\"\n"
        "readme = '''\n"
        "raw \\n text'''\n"
    ),
    "array-tables": (
        "[[bin]]\n"
        "name = \"first\"\n"
        "path = \"src/first.rs\"\n"
        "\n"
        "[[bin]]\n"
        "name = \"second\"\n"
    ),
    "datetimes": (
        "[package.metadata]\n"
        "released = 1979-05-27T07:32:00Z\n"
        "local = 1979-05-27 07:32:00.999\n"
        "day = 1979-05-27\n"
        "time = 07:32:00\n"
    ),
    "numbers": (
        "[package.metadata]\n"
        "ratio = 6.25e-2\n"
        "big = +inf\n"
        "odd = nan\n"
        "mask = 0xDEAD_BEEF\n"
        "mode = 0o755\n"
        "count = 1_000\n"
    ),
    "spaced-dotted-header": (
        "[ target . \"cfg(unix)\" . dependencies ]\n"
        "libc = '0.2'\n"
    ),
    "multiline-array-with-comments": (
        "[features]\n"
        "default = [\n"
        "    \"std\", # always\n"
        "    # \"alloc\",\n"
        "    \"derive\",\n"
        "]\n"
    ),
    "no-trailing-newline": "[dependencies]\nserde = \"1.0\"",
    "byte-order-mark": "\ufeff[package]\nname = \"demo\"\n",
    "nested-inline-tables": (
        "[dependencies]\n"
        "serde = {version=\"1.0\",features=[\"derive\"],   optional = true}\n"
        "tokio = { version = \"1\", features = [], default-features = false }\n"
    ),
}


class TestDocumentReading:
    """Test parsing and read access."""

    def test_untouched_document_renders_identically(self):
        """Should reproduce the input byte for byte."""
        text = (
            "# top comment\n"
            "[package]\n"
            "name    = 'demo'   # aligned\n"
            "version = \"0.1.0\"\n"
            "\n"
            "[dependencies]\n"
            "serde = { version = \"1.0\", features = [ \"derive\" ] }\n"
            "rand.version = \"0.8\"\n"
            "\n"
            "[dependencies.tokio]\n"
            "version = \"1\"\n"
        )
        assert parse(text).render() == text

    def test_as_dict_merges_every_declaration_form(self):
        """Should expose headers, dotted keys and inline tables as nested data."""
        document = parse(
            "[dependencies]\n"
            "serde = { version = \"1.0\" }\n"
            "rand.version = \"0.8\"\n"
            "\n"
            "[dependencies.tokio]\n"
            "version = \"1\"\n"
        )
        assert document.get(("dependencies", "serde", "version")) == "1.0"
        assert document.get(("dependencies", "rand")) == {"version": "0.8"}
        assert document.get(("dependencies", "tokio", "version")) == "1"
        assert document.get(("dependencies", "missing"), "fallback") == "fallback"

    def test_keys_lists_children_in_text_order(self):
        """Should list direct children across tables without duplicates."""
        document = parse(
            "[dependencies]\n"
            "serde = \"1.0\"\n"
            "rand.version = \"0.8\"\n"
            "\n"
            "[dependencies.tokio]\n"
            "version = \"1\"\n"
        )
        assert document.keys(("dependencies",)) == ["serde", "rand", "tokio"]

    def test_declarations_report_handle_kinds(self):
        """Should tell table, value and dotted declarations apart."""
        document = parse(
            "[dependencies]\n"
            "serde = \"1.0\"\n"
            "rand.version = \"0.8\"\n"
            "\n"
            "[dependencies.tokio]\n"
            "version = \"1\"\n"
        )
        assert document.locate(("dependencies", "serde")).kind is HandleKind.VALUE
        assert document.locate(("dependencies", "rand")).kind is HandleKind.DOTTED
        assert document.locate(("dependencies", "tokio")).kind is HandleKind.TABLE
        assert document.locate(("dependencies", "missing")) is None

    def test_parse_error_reports_line_and_column(self):
        """Should point at the offending character."""
        with pytest.raises(ParseError) as exc_info:
            parse('[package]\nname = "demo"\nversion = \n')
        assert exc_info.value.line == 3
        assert exc_info.value.column == 11

    def test_unclosed_header_is_a_parse_error(self):
        """Should reject a table header without its closing bracket."""
        with pytest.raises(ParseError):
            parse("[dependencies\nserde = \"1.0\"\n")

    @pytest.mark.parametrize("text", list(ROUND_TRIP_CORPUS.values()), ids=list(ROUND_TRIP_CORPUS))
    def test_round_trip_corpus(self, text):
        """Should render every manifest shape back unchanged."""
        assert parse(text).render() == text

    def test_corpus_values(self):
        """Should decode the less common value kinds."""
        metadata = parse(ROUND_TRIP_CORPUS["datetimes"]).get(("package", "metadata"))
        assert metadata["released"] == "1979-05-27T07:32:00Z"
        assert metadata["day"] == "1979-05-27"
        assert metadata["time"] == "07:32:00"

        numbers = parse(ROUND_TRIP_CORPUS["numbers"]).get(("package", "metadata"))
        assert numbers["ratio"] == 0.0625
        assert math.isinf(numbers["big"])
        assert math.isnan(numbers["odd"])
        assert numbers["mask"] == 0xDEADBEEF
        assert numbers["mode"] == 0o755
        assert numbers["count"] == 1000

        strings = parse(ROUND_TRIP_CORPUS["multiline-strings"]).get(("package",))
        assert strings["description"] == "A crate with a long description."
        assert strings["readme"] == "raw \\n text"

        bins = parse(ROUND_TRIP_CORPUS["array-tables"]).get(("bin",))
        assert [item["name"] for item in bins] == ["first", "second"]

        target = parse(ROUND_TRIP_CORPUS["spaced-dotted-header"])
        assert target.get(("target", "cfg(unix)", "dependencies", "libc")) == "0.2"

    def test_byte_order_mark_is_not_part_of_the_first_key(self):
        """Should parse a manifest saved with a byte order mark."""
        document = parse("\ufeff[package]\nname = \"demo\"\n")
        assert document.get(("package", "name")) == "demo"
        assert document.locate(("package",)).kind is HandleKind.TABLE


class TestDocumentEditing:
    """Test text-splicing edits."""

    def test_set_scalar_keeps_literal_quotes(self):
        """Should keep single-quoted strings single-quoted."""
        document = parse("[package]\nname = 'demo'  # the crate\n")
        handle = document.locate(("package", "name"))
        document.set_scalar(handle, "other")
        assert document.render() == "[package]\nname = 'other'  # the crate\n"

    def test_stale_handle_is_rejected(self):
        """Should refuse a handle taken before the last edit."""
        document = parse("[package]\nname = \"demo\"\nversion = \"0.1.0\"\n")
        handle = document.locate(("package", "name"))
        document.set_scalar(document.locate(("package", "version")), "0.2.0")
        with pytest.raises(StaleHandle):
            document.set_scalar(handle, "other")

    def test_insert_value_follows_sibling_indentation(self):
        """Should append after the last entry with the same indentation."""
        document = parse("[dependencies]\n  serde = \"1.0\"\n")
        document.insert_value(document.locate(("dependencies",)), "rand", "0.8")
        assert document.render() == "[dependencies]\n  serde = \"1.0\"\n  rand = \"0.8\"\n"

    def test_insert_value_into_inline_table(self):
        """Should add a pair before the closing brace."""
        document = parse("[dependencies]\nserde = { version = \"1.0\" }\n")
        document.insert_value(document.locate(("dependencies", "serde")), "optional", True)
        assert document.render() == "[dependencies]\nserde = { version = \"1.0\", optional = true }\n"

    def test_insert_table_after_its_relatives(self):
        """Should place a new table next to tables sharing its parent."""
        document = parse(
            "[package]\n"
            "name = \"demo\"\n"
            "\n"
            "[target.\"cfg(unix)\".dependencies]\n"
            "libc = \"0.2\"\n"
            "\n"
            "[features]\n"
            "default = []\n"
        )
        handle = document.insert_table(("target", "cfg(unix)"), "dev-dependencies")
        assert handle.kind is HandleKind.TABLE
        assert document.render() == (
            "[package]\n"
            "name = \"demo\"\n"
            "\n"
            "[target.\"cfg(unix)\".dependencies]\n"
            "libc = \"0.2\"\n"
            "\n"
            "[target.\"cfg(unix)\".dev-dependencies]\n"
            "\n"
            "[features]\n"
            "default = []\n"
        )

    def test_extend_multiline_array_keeps_layout(self):
        """Should add one item per line and keep the trailing comma."""
        document = parse("[features]\ndefault = [\n    \"std\",\n]\n")
        document.extend_array(document.locate(("features", "default")), ["alloc"])
        assert document.render() == "[features]\ndefault = [\n    \"std\",\n    \"alloc\",\n]\n"

    def test_remove_array_item(self):
        """Should drop an item together with its separator."""
        document = parse("[features]\ndefault = [\"std\", \"alloc\", \"derive\"]\n")
        document.remove_array_item(document.locate(("features", "default")), 1)
        assert document.render() == "[features]\ndefault = [\"std\", \"derive\"]\n"

    def test_remove_key_takes_attached_comment(self):
        """Should delete the comment lines directly above a key."""
        document = parse("[dependencies]\n# serialization\nserde = \"1.0\"\nrand = \"0.8\"\n")
        document.remove(document.locate(("dependencies", "serde")))
        assert document.render() == "[dependencies]\nrand = \"0.8\"\n"

    def test_remove_last_table_drops_separator(self):
        """Should not leave a trailing blank line behind."""
        document = parse(
            "[package]\nname = \"demo\"\n\n[dependencies]\nserde = \"1.0\"\n\n[dev-dependencies]\n"
        )
        document.remove(document.locate(("dev-dependencies",)))
        assert document.render() == "[package]\nname = \"demo\"\n\n[dependencies]\nserde = \"1.0\"\n"

    def test_remove_middle_table(self):
        """Should keep exactly one blank line between the neighbours."""
        document = parse(
            "[package]\n"
            "name = \"demo\"\n"
            "\n"
            "[dev-dependencies]\n"
            "rand = \"0.8\"\n"
            "\n"
            "[features]\n"
            "default = []\n"
        )
        document.remove(document.locate(("dev-dependencies",)))
        assert document.render() == "[package]\nname = \"demo\"\n\n[features]\ndefault = []\n"

    def test_transaction_rolls_back_on_error(self):
        """Should restore the original text when the block raises."""
        text = "[package]\nname = \"demo\"\n"
        document = parse(text)
        with pytest.raises(RuntimeError):
            with document.transaction():
                document.set_scalar(document.locate(("package", "name")), "other")
                raise RuntimeError("boom")
        assert document.render() == text
        assert document.get(("package", "name")) == "demo"

    def test_insert_value_keeps_crlf(self):
        """Should end inserted lines the way the document does."""
        document = parse("[dependencies]\r\nserde = \"1.0\"\r\n")
        document.insert_value(document.locate(("dependencies",)), "rand", "0.8")
        assert document.render() == "[dependencies]\r\nserde = \"1.0\"\r\nrand = \"0.8\"\r\n"

    def test_insert_table_keeps_crlf(self):
        """Should separate and end a new table with CRLF."""
        document = parse("[package]\r\nname = \"demo\"\r\n")
        document.insert_table((), "dependencies")
        assert "\n" not in document.render().replace("\r\n", "")

    def test_remove_key_keeps_crlf(self):
        """Should remove a whole CRLF line."""
        document = parse("[dependencies]\r\nserde = \"1.0\"\r\nrand = \"0.8\"\r\n")
        document.remove(document.locate(("dependencies", "serde")))
        assert document.render() == "[dependencies]\r\nrand = \"0.8\"\r\n"

    def test_edit_after_byte_order_mark(self):
        """Should keep the byte order mark in front of the edited text."""
        document = parse("\ufeff[package]\nname = \"demo\"\n")
        document.set_scalar(document.locate(("package", "name")), "other")
        assert document.render() == "\ufeff[package]\nname = \"other\"\n"
