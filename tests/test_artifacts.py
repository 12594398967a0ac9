"""Tests for writing generated artifacts."""

from pathlib import Path

import pytest

from cobolgraph_cli.artifacts import sanitize_file_name, target_path, write_artifacts
from cobolgraph_cli.models import GeneratedArtifact


def _artifact(
    file_name: str, content: str = "public class Main {}", package: str = "com.acme", origin: str = "MAIN.cbl"
) -> GeneratedArtifact:
    return GeneratedArtifact(
        file_name=file_name,
        content=content,
        package_name=package,
        type_name="Main",
        origin_unit_id=origin,
    )


class TestSanitizeFileName:
    """Model-supplied keys become safe file names."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("Main.java", "Main.java"),
            ("Main", "Main.java"),
            ("src/main/java/Main.java", "Main.java"),
            ("..\\..\\evil.java", "evil.java"),
            ("Ma:in?.java", "Main.java"),
            ("pom.xml", "pom.xml"),
            ("application.properties", "application.properties"),
            ("notes.txt", "notes.txt.java"),
        ],
    )
    def test_names(self, raw, expected):
        assert sanitize_file_name(raw) == expected

    @pytest.mark.parametrize("raw", ["", "   ", "public class Foo {", "@Entity", "..", "/"])
    def test_rejected(self, raw):
        assert sanitize_file_name(raw) == ""


class TestTargetPath:
    """Java files go under their package directory."""

    def test_java_under_package(self, temp_dir: Path):
        assert target_path(_artifact("Main.java"), temp_dir) == temp_dir / "com" / "acme" / "Main.java"

    def test_build_file_at_root(self, temp_dir: Path):
        assert target_path(_artifact("pom.xml", "<project/>"), temp_dir) == temp_dir / "pom.xml"

    def test_bad_name_falls_back_to_type(self, temp_dir: Path):
        artifact = _artifact("public class Payroll {", "public class Payroll {}")
        assert target_path(artifact, temp_dir) == temp_dir / "com" / "acme" / "Payroll.java"


def test_write_artifacts(temp_dir: Path):
    written, errors = write_artifacts([_artifact("Main.java"), _artifact("pom.xml", "<project/>")], temp_dir)

    assert errors == []
    assert written == [temp_dir / "com" / "acme" / "Main.java", temp_dir / "pom.xml"]
    assert written[0].read_text() == "public class Main {}"


def test_write_errors_are_collected(temp_dir: Path):
    # A file where the package directory should be makes mkdir fail.
    (temp_dir / "com").write_text("in the way")

    written, errors = write_artifacts([_artifact("Main.java"), _artifact("pom.xml", "<project/>")], temp_dir)

    assert written == [temp_dir / "pom.xml"]
    assert len(errors) == 1
    assert "Main.java (from MAIN.cbl)" in errors[0]


class TestPathClashes:
    """Two artifacts never end up in the same file."""

    def test_build_files_from_different_programs(self, temp_dir: Path):
        artifacts = [
            _artifact("pom.xml", "<p1/>", origin="P1.cbl"),
            _artifact("pom.xml", "<p2/>", origin="P2.cbl"),
        ]

        written, errors = write_artifacts(artifacts, temp_dir)

        assert errors == []
        assert written == [temp_dir / "pom.xml", temp_dir / "P2" / "pom.xml"]
        assert (temp_dir / "pom.xml").read_text() == "<p1/>"
        assert (temp_dir / "P2" / "pom.xml").read_text() == "<p2/>"

    def test_same_class_from_different_programs(self, temp_dir: Path):
        artifacts = [_artifact("Main.java", origin="P1.cbl"), _artifact("Main.java", origin="P2.cbl")]

        written, errors = write_artifacts(artifacts, temp_dir)

        assert errors == []
        assert written[1] == temp_dir / "P2" / "com" / "acme" / "Main.java"

    def test_duplicate_from_same_program_is_an_error(self, temp_dir: Path):
        artifacts = [_artifact("Main.java", "first", origin="P1.cbl"), _artifact("Main", "second", origin="P1.cbl")]

        written, errors = write_artifacts(artifacts, temp_dir)

        assert written == [temp_dir / "com" / "acme" / "Main.java"]
        assert written[0].read_text() == "first"
        assert len(errors) == 1
        assert "duplicate output path" in errors[0]

    def test_relocated_path_taken_too(self, temp_dir: Path):
        artifacts = [
            _artifact("pom.xml", "<a/>", origin="P1.cbl"),
            _artifact("pom.xml", "<b/>", origin="P2.cbl"),
            _artifact("pom.xml", "<c/>", origin="P2.cob"),
        ]

        written, errors = write_artifacts(artifacts, temp_dir)

        assert len(set(written)) == 2
        assert len(errors) == 1
        assert "(from P2.cob)" in errors[0]
