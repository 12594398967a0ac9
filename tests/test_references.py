"""Tests for COPY / INCLUDE reference extraction."""

from cobolgraph_cli.references import (
    canonical_module_name,
    count_references,
    extract_reference_edges,
    extract_references,
)


class TestExtractReferences:
    """Tests for extract_references."""

    def test_plain_copy(self):
        """Bare COPY statements get the copybook extension."""
        assert extract_references("       COPY EMPREC.\n") == ["EMPREC.cpy"]

    def test_quoted_and_extension_forms(self):
        """Quoted names and explicit extensions resolve to the same canonical form."""
        text = "\n".join(
            [
                "       COPY 'ALPHA'.",
                '       COPY "BETA".',
                "       COPY GAMMA.cpy.",
                "       COPY DELTA.CBL.",
            ]
        )
        assert extract_references(text) == ["ALPHA.cpy", "BETA.cpy", "GAMMA.cpy", "DELTA.CBL"]

    def test_include_statement(self):
        """EXEC SQL INCLUDE counts as a reference."""
        assert extract_references("           EXEC SQL INCLUDE SQLCA END-EXEC.") == ["SQLCA.cpy"]

    def test_case_insensitive_keyword(self):
        assert extract_references("       copy lowerbook.") == ["lowerbook.cpy"]

    def test_duplicates_removed_first_seen_order(self):
        """Repeated references collapse to one entry, keeping first-seen order."""
        text = "       COPY B.\n       COPY A.\n       COPY B.\n       copy b.\n"
        assert extract_references(text) == ["B.cpy", "A.cpy"]

    def test_comment_lines_skipped(self):
        """Fixed-format comments (column 7) and free-format *> comments are ignored."""
        text = "      * COPY NOTME.\n      / COPY NORME.\n       *> COPY NOPE.\n       COPY YES.\n"
        assert extract_references(text) == ["YES.cpy"]

    def test_hyphenated_identifier_not_matched(self):
        """A keyword embedded in a longer identifier is not a reference."""
        assert extract_references("       MOVE WS-COPY X TO Y.") == []

    def test_unknown_extension_dropped(self):
        """Only known COBOL extensions are kept; anything else gets .cpy."""
        assert extract_references("       COPY FOO.txt.") == ["FOO.cpy"]

    def test_empty_and_garbage_input(self):
        """No matches or malformed input yields an empty list without raising."""
        assert extract_references("") == []
        assert extract_references("COPY") == []
        assert extract_references("COPY '") == []
        assert extract_references(None) == []


class TestReferenceEdges:
    """Tests for occurrence-level extraction."""

    def test_edges_keep_duplicates_and_lines(self):
        text = "       COPY A.\n       DISPLAY 'X'.\n       COPY A.\n"
        edges = extract_reference_edges("P.cbl", text)

        assert [(e.target, e.line_number) for e in edges] == [("A.cpy", 1), ("A.cpy", 3)]
        assert all(e.source == "P.cbl" and e.kind == "COPY" for e in edges)
        assert edges[0].context == "COPY A."

    def test_include_kind(self):
        edges = extract_reference_edges("P.cbl", "EXEC SQL INCLUDE SQLCA END-EXEC.")
        assert edges[0].kind == "INCLUDE"

    def test_count_references(self):
        counts = count_references("COPY A.\nCOPY a.\nCOPY B.\n")
        assert counts["A.cpy"] == 2
        assert counts["B.cpy"] == 1


def test_canonical_module_name():
    """Extension is appended only when missing."""
    assert canonical_module_name("X") == "X.cpy"
    assert canonical_module_name("X.cpy") == "X.cpy"
    assert canonical_module_name("'X'") == "X.cpy"
    assert canonical_module_name("PROG.cob") == "PROG.cob"
