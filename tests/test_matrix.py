"""
Tests for job matrix expansion
"""

import pytest

from ci_orchestrator.exceptions import ConfigurationError
from ci_orchestrator.main import JobOutcome, JobTemplate
from ci_orchestrator.matrix import expand, expand_all, is_tolerant, validate_template


def make_template(**kwargs) -> JobTemplate:
    kwargs.setdefault("name", "tests")
    kwargs.setdefault("command", "cargo test")
    return JobTemplate(**kwargs)


class TestExpand:
    """Tests for expand()"""

    def test_no_axes_yields_single_instance(self):
        """A template without a matrix expands to exactly one instance"""
        instances = expand(make_template())

        assert len(instances) == 1
        assert instances[0].axis_assignment == {}
        assert instances[0].name == "tests"
        assert instances[0].outcome == JobOutcome.PENDING

    def test_cartesian_product_size(self):
        """Instance count is the product of axis lengths"""
        template = make_template(
            axes=(
                ("os", ("windows-latest", "macos-latest", "ubuntu-latest")),
                ("rust_version", ("stable", "1.74.0")),
            ),
        )
        instances = expand(template)

        assert len(instances) == 6
        assignments = [tuple(i.axis_assignment.items()) for i in instances]
        assert len(set(assignments)) == 6

    def test_first_axis_varies_slowest(self):
        """Enumeration order is stable with the first axis slowest"""
        template = make_template(axes=(("os", ("linux", "mac")), ("rust", ("stable", "1.74"))))
        names = [i.name for i in expand(template)]

        assert names == [
            "tests (linux, stable)",
            "tests (linux, 1.74)",
            "tests (mac, stable)",
            "tests (mac, 1.74)",
        ]
        assert [i.index for i in expand(template)] == [0, 1, 2, 3]

    def test_command_placeholders_rendered(self):
        """${{ matrix.<axis> }} is replaced by the assigned value"""
        template = make_template(
            command="cross test --target ${{ matrix.target }}",
            axes=(("target", ("aarch64-unknown-linux-gnu",)),),
        )
        instance = expand(template)[0]

        assert instance.command == "cross test --target aarch64-unknown-linux-gnu"

    def test_expand_all_concatenates(self):
        """expand_all expands every template in order"""
        first = make_template(name="a", axes=(("x", (1, 2)),))
        second = make_template(name="b")

        instances = expand_all([first, second])

        assert [i.template.name for i in instances] == ["a", "a", "b"]


class TestTolerance:
    """Tests for tolerance resolution"""

    def test_template_wide_tolerance(self):
        """tolerant=True applies to every instance"""
        instances = expand(make_template(tolerant=True, axes=(("x", (1, 2)),)))
        assert all(i.tolerant for i in instances)

    def test_tolerance_predicate_on_axis_value(self):
        """Only instances whose assignment matches tolerant_when are tolerant"""
        template = make_template(
            name="cargo-deny",
            command="cargo deny check ${{ matrix.checks }}",
            axes=(("checks", ("advisories", "bans licenses sources")),),
            tolerant_when={"checks": ("advisories",)},
        )
        tolerant = {i.axis_assignment["checks"]: i.tolerant for i in expand(template)}

        assert tolerant == {"advisories": True, "bans licenses sources": False}

    def test_predicate_requires_every_axis(self):
        """A multi-axis predicate needs all axes to match"""
        template = make_template(
            axes=(("os", ("linux", "mac")), ("rust", ("stable", "nightly"))),
            tolerant_when={"os": ("mac",), "rust": ("nightly",)},
        )
        assert is_tolerant(template, {"os": "mac", "rust": "nightly"})
        assert not is_tolerant(template, {"os": "mac", "rust": "stable"})
        assert not is_tolerant(template, {"os": "linux", "rust": "nightly"})

    def test_not_tolerant_by_default(self):
        assert not is_tolerant(make_template(), {})


class TestValidation:
    """Tests for template validation"""

    def test_empty_axis_rejected(self):
        """An axis with no values is a configuration error"""
        with pytest.raises(ConfigurationError, match="no values"):
            expand(make_template(axes=(("os", ()),)))

    def test_duplicate_axis_rejected(self):
        with pytest.raises(ConfigurationError, match="duplicate"):
            validate_template(make_template(axes=(("os", ("a",)), ("os", ("b",)))))

    def test_unknown_tolerance_axis_rejected(self):
        with pytest.raises(ConfigurationError, match="tolerant_when"):
            validate_template(
                make_template(axes=(("os", ("a",)),), tolerant_when={"checks": ("x",)})
            )

    def test_unknown_placeholder_rejected(self):
        with pytest.raises(ConfigurationError, match="unknown axis 'target'"):
            validate_template(make_template(command="build ${{ matrix.target }}"))

    def test_expand_all_fails_before_returning_anything(self):
        """One bad template fails the whole expansion"""
        good = make_template(name="good")
        bad = make_template(name="bad", axes=(("os", ()),))

        with pytest.raises(ConfigurationError):
            expand_all([good, bad])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
